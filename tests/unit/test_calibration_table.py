"""
Unit tests for fossil records and the calibration table.

Tests fossil table parsing, deduplication by taxon set, orphan removal,
min-age sorting with name labels and treePL serialization.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from supersmart.core.exceptions import MalformedInputError
from supersmart.models.calibration import CalibrationTable, read_fossil_table


def _table() -> CalibrationTable:
    return (
        CalibrationTable()
        .add_row(nfos="1", name="a", taxa=("101", "201"), min_age=20.0, max_age=30.0)
        .add_row(nfos="2", name="b", taxa=("201", "101"), min_age=25.0, max_age=45.0)
        .add_row(nfos="3", name="c", taxa=("301", "302"), min_age=5.0, max_age=8.0)
    )


class TestReadFossilTable:
    """Tests for read_fossil_table."""

    def test_headers_are_normalized(self, tmp_path: Path):
        path = tmp_path / "fossils.tsv"
        path.write_text(
            "NFos\tFossil Name\tCalibrated_Taxon\tCrownVsStem\tMinAge\tMaxAge\n"
            "1\tfirst\tAlpha, Beta\tstem\t10.5\t20\n"
            "2\tsecond\t31\tcrown\t3\t\n"
        )

        records = read_fossil_table(path)

        assert len(records) == 2
        assert records[0].calibrated_taxa == ("Alpha", "Beta")
        assert records[0].is_stem
        assert records[0].min_age == 10.5
        assert records[1].max_age is None
        assert not records[1].is_stem

    def test_missing_column(self, tmp_path: Path):
        path = tmp_path / "fossils.tsv"
        path.write_text("name\tminage\nx\t3\n")

        with pytest.raises(MalformedInputError, match="calibrated_taxa"):
            read_fossil_table(path)

    def test_non_numeric_age(self, tmp_path: Path):
        path = tmp_path / "fossils.tsv"
        path.write_text("nfos\tcalibratedtaxon\tminage\n1\tAlpha\told\n")

        with pytest.raises(MalformedInputError, match="fossil 1"):
            read_fossil_table(path)


class TestCalibrationTable:
    """Tests for table transformations."""

    def test_deduplicate_keeps_oldest_max_age(self):
        table = _table().deduplicate()

        assert [p.nfos for p in table] == ["2", "3"]
        assert table.rows[0].max_age == 45.0

    def test_deduplicate_is_idempotent(self):
        once = _table().deduplicate()
        assert once.deduplicate() == once

    def test_deduplicate_keeps_earlier_on_tie(self):
        table = (
            CalibrationTable()
            .add_row(nfos="1", name="a", taxa=("1", "2"), max_age=10.0)
            .add_row(nfos="2", name="b", taxa=("1", "2"), max_age=10.0)
        )
        assert [p.nfos for p in table.deduplicate()] == ["1"]

    def test_remove_orphan_taxa(self):
        table = _table().add_row(nfos="4", name="d", taxa=("101", "101"), min_age=1.0)

        kept = table.remove_orphan_taxa()

        assert [p.nfos for p in kept] == ["1", "2", "3"]

    def test_sort_by_min_age_labels_names(self):
        table = _table().sort_by_min_age()

        assert [p.nfos for p in table] == ["3", "1", "2"]
        assert [p.name for p in table] == ["ct0_c", "ct1_a", "ct2_b"]

    def test_sort_relabels_without_stacking_prefixes(self):
        table = _table().sort_by_min_age().sort_by_min_age()
        assert table.rows[0].name == "ct0_c"

    def test_transformations_return_new_tables(self):
        table = _table()
        table.deduplicate()
        assert len(table) == 3

    def test_to_treepl(self):
        table = CalibrationTable().add_row(nfos="7", name="x", taxa=("101", "201"), min_age=5.0, max_age=12.5)

        assert table.to_treepl() == "mrca = NFos7 101 201\nmax = NFos7 12.5\nmin = NFos7 5\n"

    def test_empty_table_serializes_to_nothing(self):
        assert CalibrationTable().to_treepl() == ""

    def test_tsv_round_trip(self, tmp_path: Path):
        path = tmp_path / "calibration-table.tsv"
        table = _table().deduplicate()

        table.to_tsv(path)

        assert CalibrationTable.from_tsv(path) == table
