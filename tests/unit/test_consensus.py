"""
Unit tests for consensus trees.

Tests burn-in handling, majority-rule support values, the TreeAnnotator
route (with a mocked tool) and conversion of support to counts.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from supersmart.core.phylogeny.consensus import (
    apply_burnin,
    consense,
    majority_consensus,
    support_as_counts,
)
from supersmart.core.phylogeny.tree_io import mrca, parse_newick, terminal_names


def _sample() -> list:
    """Three trees in which the split AB|CDE occurs twice."""
    return [
        parse_newick("((A:1,B:1):1,C:2,(D:1,E:1):1);"),
        parse_newick("((A:1,B:1):1,D:2,(C:1,E:1):1);"),
        parse_newick("((A:1,C:1):1,B:2,(D:1,E:1):1);"),
    ]


def _split_support(tree, side: set[str]):
    """Confidence of the node separating ``side`` from the other tips."""
    everything = set(terminal_names(tree))
    for clade in tree.get_nonterminals():
        names = set(terminal_names(clade))
        if names in (side, everything - side):
            return clade.confidence
    return None


class TestBurnin:
    """Tests for apply_burnin."""

    def test_drops_leading_fraction(self):
        kept, dropped = apply_burnin(list(range(10)), 0.25)
        assert dropped == 2
        assert kept == list(range(2, 10))

    def test_zero_burnin(self):
        kept, dropped = apply_burnin([1, 2, 3], 0.0)
        assert (kept, dropped) == ([1, 2, 3], 0)

    def test_invalid_fraction(self):
        with pytest.raises(ValueError, match="burnin"):
            apply_burnin([1], 1.0)


class TestMajorityConsensus:
    """Tests for the Bio.Phylo majority-rule consensus."""

    def test_support_is_a_probability(self):
        tree = majority_consensus(_sample())

        assert _split_support(tree, {"A", "B"}) == pytest.approx(2 / 3)
        supports = [c.confidence for c in tree.get_nonterminals() if c.confidence is not None]
        assert supports
        assert all(0.0 < s <= 1.0 for s in supports)

    def test_root_and_tip_confidences_are_cleared(self):
        tree = majority_consensus(_sample())

        assert tree.root.confidence is None
        assert all(tip.confidence is None for tip in tree.get_terminals())

    def test_empty_sample(self):
        with pytest.raises(ValueError, match="zero trees"):
            majority_consensus([])

    def test_consense_reports_trees_used(self):
        result = consense(_sample() + _sample(), burnin=0.5)

        assert result.burnin == 3
        assert result.n_trees == 3

    def test_support_as_counts(self):
        result = consense(_sample())
        support_as_counts(result.tree, result.n_trees)

        assert _split_support(result.tree, {"A", "B"}) == 2


class TestTreeAnnotatorConsensus:
    """Tests for the TreeAnnotator route with a mocked tool."""

    def test_runs_tool_and_reads_posterior(self):
        def fake_run(*, infile: Path, outfile: Path, burnin: int, heights: str, limit: float):
            assert infile.read_text().startswith("#NEXUS")
            outfile.write_text(
                "#NEXUS\nBegin trees;\n"
                "\ttree TREE1 = [&R] ((A:1,B:1)[&posterior=0.9]:1,(C:1,D:1):1);\nEnd;\n"
            )

        tool = MagicMock()
        tool.run_or_raise.side_effect = fake_run

        result = consense(_sample() * 4, burnin=0.25, method="treeannotator", tool=tool)

        assert result.n_trees == 9
        assert tool.run_or_raise.call_args.kwargs["burnin"] == 3
        assert mrca(result.tree, ["A", "B"]).confidence == pytest.approx(0.9)
