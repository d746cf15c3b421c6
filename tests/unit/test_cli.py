"""Tests for the smrt command line.

Each stage command is invoked with CliRunner against a temporary working
directory. Network lookups, inference engines and treePL are replaced by
mocks; everything else runs for real.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from supersmart.cli.main import app
from supersmart.clients.ncbi_taxonomy import LineageEntry, TaxonRecord
from supersmart.core.decomposition.clades import Clade, write_manifest
from supersmart.core.phylogeny.tree_io import parse_newick, read_tree, read_trees, terminal_names
from supersmart.models.calibration import CalibrationTable
from supersmart.models.taxonomy import TaxaTable

runner = CliRunner()

MISROOTED = "(101:1,(102:1,((201:1,202:1):1,(301:1,302:1):1):1):1);"
DATED = "((101:6,201:6):4,(301:3,302:3):7);"


def _invoke(*args: str):
    return runner.invoke(app, list(args))


# =============================================================================
# General
# =============================================================================


class TestMain:
    """Tests for the top-level application."""

    def test_version(self):
        result = _invoke("--version")

        assert result.exit_code == 0
        assert "supersmart version" in result.output

    def test_help_lists_stages(self):
        result = _invoke("--help")

        assert result.exit_code == 0
        for command in ("taxize", "bbmerge", "bbinfer", "consense", "bbdecompose", "cladegraft"):
            assert command in result.output


# =============================================================================
# Taxonomy
# =============================================================================


class TestTaxize:
    """Tests for taxize with a mocked NCBI client."""

    @pytest.fixture
    def names_file(self, tmp_path: Path) -> Path:
        path = tmp_path / "names.txt"
        path.write_text("Homo sapiens\nNonexistus\n")
        return path

    @staticmethod
    def _client_class(known: dict[str, TaxonRecord]) -> MagicMock:
        client = MagicMock()
        client.resolve.side_effect = known.get
        cls = MagicMock()
        cls.return_value.__enter__.return_value = client
        return cls

    def test_writes_taxa_table(self, tmp_path: Path, names_file: Path):
        record = TaxonRecord(
            "9606", "Homo sapiens", "species", (LineageEntry("9605", "Homo", "genus"),)
        )
        with patch(
            "supersmart.clients.ncbi_taxonomy.NCBITaxonomyClient",
            self._client_class({"Homo sapiens": record}),
        ):
            result = _invoke("taxize", "-i", str(names_file), "-w", str(tmp_path))

        assert result.exit_code == 0, result.output
        table = TaxaTable.from_tsv(tmp_path / "species.tsv")
        assert table.species() == ["9606"]
        assert table.genus_of("9606") == "9605"

    def test_nothing_resolved(self, tmp_path: Path, names_file: Path):
        with patch("supersmart.clients.ncbi_taxonomy.NCBITaxonomyClient", self._client_class({})):
            result = _invoke("taxize", "-i", str(names_file), "-w", str(tmp_path))

        assert result.exit_code == 1
        assert "None of the names could be resolved" in result.output

    def test_unknown_rank(self, tmp_path: Path, names_file: Path):
        result = _invoke("taxize", "-i", str(names_file), "-e", "clade", "-w", str(tmp_path))

        assert result.exit_code == 1
        assert "Unknown rank 'clade'" in result.output


class TestClassify:
    """Tests for classify."""

    def test_writes_classification_tree(self, tmp_path: Path, taxa_file: Path):
        result = _invoke("classify", "-w", str(tmp_path))

        assert result.exit_code == 0, result.output
        text = (tmp_path / "classification-tree.dnd").read_text()
        assert text == "(((101,102)11,(201,202)21)1,((301,302)31)2)9;\n"

    def test_missing_taxa_table(self, tmp_path: Path):
        result = _invoke("classify", "-w", str(tmp_path))

        assert result.exit_code == 1
        assert "not found" in result.output


# =============================================================================
# Backbone
# =============================================================================


class TestBbmerge:
    """Tests for bbmerge."""

    def test_writes_supermatrix(self, tmp_path: Path, taxa_file: Path, alignment_list: Path):
        result = _invoke("bbmerge", "-w", str(tmp_path), "-e", "1")

        assert result.exit_code == 0, result.output
        header = (tmp_path / "supermatrix.phy").read_text().splitlines()[0].split()
        assert header[0] == "3"
        assert (tmp_path / "markers-backbone.tsv").exists()

    def test_unknown_format(self, tmp_path: Path, taxa_file: Path, alignment_list: Path):
        result = _invoke("bbmerge", "-w", str(tmp_path), "-f", "clustal")

        assert result.exit_code == 1
        assert "Unknown matrix format" in result.output

    def test_unknown_included_taxon(self, tmp_path: Path, taxa_file: Path, alignment_list: Path):
        result = _invoke("bbmerge", "-w", str(tmp_path), "-i", "Nonexistus")

        assert result.exit_code == 1
        assert "Nonexistus" in result.output


class TestBbinfer:
    """Tests for bbinfer."""

    def test_options_reach_configuration(self, tmp_path: Path):
        (tmp_path / "supermatrix.phy").write_text("3 4\n101 ACGT\n201 ACGA\n301 ACTT\n")
        with patch("supersmart.core.inference.infer_backbone", return_value=3) as infer:
            result = _invoke("bbinfer", "-w", str(tmp_path), "-i", "phyml", "-b", "3")

        assert result.exit_code == 0, result.output
        assert "Wrote 3 backbone tree(s)" in result.output
        config = infer.call_args.args[2]
        assert config.inference_tool == "phyml"
        assert config.bootstrap == 3

    def test_unknown_engine(self, tmp_path: Path):
        (tmp_path / "supermatrix.phy").write_text("3 4\n101 ACGT\n201 ACGA\n301 ACTT\n")

        result = _invoke("bbinfer", "-w", str(tmp_path), "-i", "mrbayes")

        assert result.exit_code == 1
        assert "Unknown inference engine 'mrbayes'" in result.output

    def test_missing_supermatrix(self, tmp_path: Path):
        result = _invoke("bbinfer", "-w", str(tmp_path))

        assert result.exit_code == 1
        assert "not found" in result.output


class TestBbreroot:
    """Tests for bbreroot."""

    def test_taxonomy_rooting_by_default(self, tmp_path: Path, taxa_file: Path):
        (tmp_path / "backbone.dnd").write_text(MISROOTED + "\n" + MISROOTED + "\n")

        result = _invoke("bbreroot", "-w", str(tmp_path))

        assert result.exit_code == 0, result.output
        trees = read_trees(tmp_path / "backbone-rerooted.dnd")
        assert len(trees) == 2
        root_sets = sorted(sorted(terminal_names(c)) for c in trees[0].root.clades)
        assert ["301", "302"] in root_sets

    def test_outgroup_rooting(self, tmp_path: Path, taxa_file: Path):
        (tmp_path / "backbone.dnd").write_text(MISROOTED + "\n")

        result = _invoke("bbreroot", "-w", str(tmp_path), "-g", "Gamma")

        assert result.exit_code == 0, result.output
        tree = read_tree(tmp_path / "backbone-rerooted.dnd")
        assert sorted(terminal_names(tree)) == ["101", "102", "201", "202", "301", "302"]

    def test_outgroup_mode_needs_outgroup(self, tmp_path: Path, taxa_file: Path):
        result = _invoke("bbreroot", "-w", str(tmp_path), "-m", "outgroup")

        assert result.exit_code == 1
        assert "--outgroup is required" in result.output

    def test_unknown_mode(self, tmp_path: Path):
        result = _invoke("bbreroot", "-w", str(tmp_path), "-m", "random")

        assert result.exit_code == 1


class TestBbcalibrate:
    """Tests for bbcalibrate with calibration mocked."""

    def test_writes_chronograms_and_table(self, tmp_path: Path, taxa_file: Path):
        (tmp_path / "backbone-rerooted.dnd").write_text(DATED + "\n")
        (tmp_path / "supermatrix.phy").write_text("4 1200\n")
        fossils = tmp_path / "fossils.tsv"
        fossils.write_text(
            "NFos\tFossil Name\tCalibrated_Taxon\tCrownVsStem\tMinAge\tMaxAge\n"
            "1\tfirst\tGamma\tcrown\t2\t5\n"
        )
        run = MagicMock(chronograms=[parse_newick(DATED)], table=CalibrationTable())

        with patch("supersmart.core.phylogeny.calibration.calibrate_trees", return_value=run) as calibrate:
            result = _invoke("bbcalibrate", "-w", str(tmp_path), "-f", str(fossils))

        assert result.exit_code == 0, result.output
        assert calibrate.call_args.kwargs["numsites"] == 1200
        assert len(calibrate.call_args.args[1]) == 1
        assert read_tree(tmp_path / "chronogram.dnd")
        assert (tmp_path / "calibration-table.tsv").exists()


class TestConsense:
    """Tests for consense."""

    @pytest.fixture
    def sample(self, tmp_path: Path) -> Path:
        path = tmp_path / "chronogram.dnd"
        path.write_text(
            "((101:1,102:1):1,(201:1,301:1):1);\n"
            "((101:1,102:1):1,(201:1,301:1):1);\n"
            "(101:1,(102:1,(201:1,301:1):1):1);\n"
        )
        return path

    def test_nexus_output_by_default(self, tmp_path: Path, sample: Path):
        result = _invoke("consense", "-w", str(tmp_path))

        assert result.exit_code == 0, result.output
        assert (tmp_path / "consensus.nex").read_text().startswith("#NEXUS")

    def test_newick_with_counts(self, tmp_path: Path, sample: Path):
        result = _invoke("consense", "-w", str(tmp_path), "-o", "consensus.dnd")

        assert result.exit_code == 0, result.output
        tree = read_tree(tmp_path / "consensus.dnd")
        supports = [c.confidence for c in tree.get_nonterminals() if c.confidence is not None]
        assert max(supports) == 3

    def test_newick_with_probabilities(self, tmp_path: Path, sample: Path):
        result = _invoke("consense", "-w", str(tmp_path), "-o", "consensus.dnd", "--prob")

        assert result.exit_code == 0, result.output
        tree = read_tree(tmp_path / "consensus.dnd")
        supports = [c.confidence for c in tree.get_nonterminals() if c.confidence is not None]
        assert supports
        assert all(s <= 1.0 for s in supports)

    def test_unknown_method(self, tmp_path: Path, sample: Path):
        result = _invoke("consense", "-w", str(tmp_path), "-m", "strict")

        assert result.exit_code == 1
        assert "Unknown consensus method" in result.output


# =============================================================================
# Clades
# =============================================================================


class TestCladeCommands:
    """Tests for the clade stage commands."""

    def test_clademerge_without_clades(self, tmp_path: Path):
        result = _invoke("clademerge", "-w", str(tmp_path))

        assert result.exit_code == 1
        assert "No clade directories" in result.output

    def test_cladeinfer_unknown_engine(self, tmp_path: Path):
        result = _invoke("cladeinfer", "-w", str(tmp_path), "-i", "mrbayes")

        assert result.exit_code == 1
        assert "Unknown inference engine" in result.output

    def test_bbdecompose_writes_clades(self, tmp_path: Path, taxa_file: Path, alignment_list: Path):
        (tmp_path / "consensus.nex").write_text(DATED + "\n")

        result = _invoke("bbdecompose", "-w", str(tmp_path))

        assert result.exit_code == 0, result.output
        assert (tmp_path / "clade0" / "clade.yaml").exists()
        assert (tmp_path / "markers-clades.tsv").exists()

    def test_cladegraft(self, tmp_path: Path, taxa_file: Path):
        (tmp_path / "consensus.nex").write_text(DATED + "\n")
        directory = tmp_path / "clade0"
        directory.mkdir()
        write_manifest(Clade(clade_id="clade0", exemplars=("101", "201"), members=("102", "202")), directory)
        (directory / "clade0.dnd").write_text("((101:1,102:1):1,(201:1,202:1):1);\n")

        result = _invoke("cladegraft", "-w", str(tmp_path))

        assert result.exit_code == 0, result.output
        final = read_tree(tmp_path / "final.dnd")
        assert sorted(terminal_names(final)) == [
            "Alpha_one", "Alpha_two", "Beta_one", "Beta_two", "Gamma_one", "Gamma_two",
        ]

    def test_cladegraft_skips_clade_without_tree(self, tmp_path: Path, taxa_file: Path):
        (tmp_path / "consensus.nex").write_text(DATED + "\n")
        directory = tmp_path / "clade0"
        directory.mkdir()
        write_manifest(Clade(clade_id="clade0", exemplars=("101", "201"), members=("102", "202")), directory)

        result = _invoke("cladegraft", "-w", str(tmp_path))

        assert result.exit_code == 0, result.output
        assert "Attached beside their genus: 2" in result.output
        final = read_tree(tmp_path / "final.dnd")
        assert sorted(terminal_names(final)) == [
            "Alpha_one", "Alpha_two", "Beta_one", "Beta_two", "Gamma_one", "Gamma_two",
        ]
