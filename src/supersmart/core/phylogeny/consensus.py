"""
Consensus trees from bootstrap replicates or posterior samples.

Two methods are available: a majority-rule consensus computed with
Bio.Phylo, and TreeAnnotator's maximum clade credibility tree. Either way
the support of every internal node ends up as its ``confidence``, as a
probability or as the number of trees supporting it.
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from supersmart.core.exceptions import EmptyInputFileError
from supersmart.core.phylogeny.tree_io import read_trees, to_nexus
from supersmart.external.treeannotator import Heights, TreeAnnotator

if TYPE_CHECKING:
    from Bio.Phylo.BaseTree import Tree

logger = logging.getLogger(__name__)

ConsensusMethod = Literal["majority", "treeannotator"]


@dataclass(frozen=True)
class ConsensusResult:
    """Consensus tree with its support scale."""

    tree: Tree
    n_trees: int
    burnin: int


def apply_burnin(trees: list[Tree], fraction: float) -> tuple[list[Tree], int]:
    """Drop the leading ``int(fraction * n)`` trees; returns (kept, dropped)."""
    if not 0.0 <= fraction < 1.0:
        msg = f"burnin must be in [0, 1), got {fraction}"
        raise ValueError(msg)
    skip = int(fraction * len(trees))
    return trees[skip:], skip


def majority_consensus(trees: list[Tree], cutoff: float = 0.0) -> Tree:
    """
    Majority-rule consensus with support as a probability in [0, 1].

    Args:
        trees: Trees over the same tip set.
        cutoff: Minimum fraction of trees a clade must appear in.
    """
    from Bio.Phylo.Consensus import majority_consensus as bio_majority

    if not trees:
        msg = "Cannot build a consensus of zero trees"
        raise ValueError(msg)
    consensus = bio_majority(trees, cutoff)
    # Bio.Phylo reports support in percent
    for clade in consensus.get_nonterminals():
        if clade.confidence is not None:
            clade.confidence = float(clade.confidence) / 100.0
    for tip in consensus.get_terminals():
        tip.confidence = None
    consensus.root.confidence = None
    return consensus


def treeannotator_consensus(
    trees: list[Tree],
    *,
    burnin: int = 0,
    heights: Heights = "median",
    limit: float = 0.0,
    tool: TreeAnnotator | None = None,
    workdir: Path | None = None,
) -> Tree:
    """
    Maximum clade credibility tree from TreeAnnotator.

    The trees are written to a temporary NEXUS file; ``burnin`` is the
    number of leading trees TreeAnnotator skips. Posterior values are
    read back as node confidences.
    """
    tool = tool or TreeAnnotator()
    with tempfile.TemporaryDirectory(dir=workdir) as tmp:
        infile = Path(tmp) / "sample.nex"
        outfile = Path(tmp) / "consensus.nex"
        infile.write_text(to_nexus(trees))
        tool.run_or_raise(infile=infile, outfile=outfile, burnin=burnin, heights=heights, limit=limit)
        if not outfile.exists() or outfile.stat().st_size == 0:
            raise EmptyInputFileError(outfile, "TreeAnnotator output")
        return read_trees(outfile)[0]


def consense(
    trees: list[Tree],
    *,
    burnin: float = 0.0,
    method: ConsensusMethod = "majority",
    limit: float = 0.0,
    heights: Heights = "median",
    tool: TreeAnnotator | None = None,
) -> ConsensusResult:
    """
    Summarise a tree sample into one consensus tree.

    Args:
        trees: Replicates or posterior sample, in sampling order.
        burnin: Fraction of leading trees to discard.
        method: ``majority`` (Bio.Phylo) or ``treeannotator``.
        limit: Minimum support for a clade to be kept (majority) or
            annotated (TreeAnnotator).
        heights: Node height summary for TreeAnnotator.
    """
    if method == "treeannotator":
        skip = int(burnin * len(trees))
        tree = treeannotator_consensus(trees, burnin=skip, heights=heights, limit=limit, tool=tool)
        n_used = len(trees) - skip
    else:
        kept, skip = apply_burnin(trees, burnin)
        tree = majority_consensus(kept, cutoff=limit)
        n_used = len(kept)
    logger.info("Built %s consensus of %d trees (burn-in %d)", method, n_used, skip)
    return ConsensusResult(tree=tree, n_trees=n_used, burnin=skip)


def support_as_counts(tree: Tree, n_trees: int) -> None:
    """Convert probability support to supporting-tree counts, in place."""
    for clade in tree.get_nonterminals():
        if clade.confidence is not None:
            clade.confidence = int(float(clade.confidence) * n_trees + 0.5)
