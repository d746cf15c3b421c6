"""
Unit tests for bootstrap resampling and starting trees.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from supersmart.core.decomposition.supermatrix import phylip_dimensions
from supersmart.core.exceptions import MalformedInputError, MissingInputFileError
from supersmart.core.inference.bootstrap import bootstrap_matrix, read_phylip, resample_columns
from supersmart.core.inference.starting import make_usertree, random_tree
from supersmart.core.phylogeny.tree_io import parse_newick, terminal_names, to_newick

ROWS = {
    "101": "ACGTACGT",
    "102": "ACGTACGA",
    "201": "ACGAACGT",
    "301": "TCGTAC-?",
}


@pytest.fixture
def matrix(tmp_path: Path) -> Path:
    path = tmp_path / "supermatrix.phy"
    path.write_text("4 8\n" + "".join(f"{t} {s}\n" for t, s in ROWS.items()))
    return path


def _is_bifurcating(tree) -> bool:
    return all(len(c.clades) == 2 for c in tree.get_nonterminals())


class TestReadPhylip:
    """Tests for read_phylip."""

    def test_rows(self, matrix: Path):
        assert read_phylip(matrix) == ROWS

    def test_missing(self, tmp_path: Path):
        with pytest.raises(MissingInputFileError):
            read_phylip(tmp_path / "absent.phy")

    def test_malformed(self, tmp_path: Path):
        path = tmp_path / "bad.phy"
        path.write_text("four eight\n101 ACGT\n")
        with pytest.raises(MalformedInputError):
            read_phylip(path)


class TestResampling:
    """Tests for column resampling."""

    def test_shape_is_kept(self):
        resampled = resample_columns(ROWS, seed=3)

        assert list(resampled) == list(ROWS)
        assert all(len(s) == 8 for s in resampled.values())

    def test_columns_come_from_the_matrix(self):
        resampled = resample_columns(ROWS, seed=3)

        original = {tuple(s[j] for s in ROWS.values()) for j in range(8)}
        for j in range(8):
            assert tuple(s[j] for s in resampled.values()) in original

    def test_seed_is_reproducible(self):
        assert resample_columns(ROWS, seed=5) == resample_columns(ROWS, seed=5)

    def test_bootstrap_matrix_file(self, matrix: Path, tmp_path: Path):
        out = bootstrap_matrix(matrix, tmp_path / "supermatrix.bootstrap.1.phy", seed=2)

        assert phylip_dimensions(out) == (4, 8)
        assert sorted(read_phylip(out)) == sorted(ROWS)


class TestStartingTrees:
    """Tests for make_usertree and random_tree."""

    def test_random_tree_is_bifurcating(self):
        tree = random_tree(list("ABCDEFG"), np.random.default_rng(1))

        assert sorted(terminal_names(tree)) == list("ABCDEFG")
        assert _is_bifurcating(tree)

    def test_seed_is_reproducible(self):
        taxa = list("ABCDEF")

        assert to_newick(make_usertree(taxa, seed=4)) == to_newick(make_usertree(taxa, seed=4))

    def test_too_few_taxa(self):
        with pytest.raises(ValueError, match="at least 3 taxa"):
            make_usertree(["A", "B", "A"])

    def test_from_start_tree(self):
        start = parse_newick("((A:1,B:1)90:1,(C:1,D:1,E:1):1,X:1);")

        tree = make_usertree(list("ABCDEF"), start=start)

        assert sorted(terminal_names(tree)) == list("ABCDEF")
        assert _is_bifurcating(tree)
        assert all(c.confidence is None for c in tree.get_nonterminals())

    def test_start_tree_is_not_modified(self):
        start = parse_newick("((A:1,B:1):1,(C:1,D:1,E:1):1);")
        before = to_newick(start)

        make_usertree(list("ABCDE"), start=start)

        assert to_newick(start) == before
