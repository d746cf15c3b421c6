"""
Starting trees for engines that require one (ExaML).

A starting tree must be fully bifurcating and hold exactly the matrix
taxa. It is derived from a given tree (a previous estimate, or the
classification tree) when there is one, otherwise it is random.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np

from supersmart.core.phylogeny.tree_io import copy_tree, terminal_names

if TYPE_CHECKING:
    from Bio.Phylo.BaseTree import Clade, Tree

logger = logging.getLogger(__name__)


def _join_randomly(children: list[Clade], rng: np.random.Generator, branch_length: float) -> list[Clade]:
    """Join random pairs until two subtrees remain."""
    from Bio.Phylo.BaseTree import Clade

    nodes = list(children)
    while len(nodes) > 2:
        i, j = sorted(rng.choice(len(nodes), size=2, replace=False).tolist())
        joined = Clade(branch_length=branch_length, clades=[nodes[i], nodes[j]])
        del nodes[j]
        nodes[i] = joined
    return nodes


def random_tree(taxa: Sequence[str], rng: np.random.Generator) -> Tree:
    from Bio.Phylo.BaseTree import Clade, Tree

    tips = [Clade(name=t, branch_length=1.0) for t in taxa]
    return Tree(root=Clade(clades=_join_randomly(tips, rng, 1.0)), rooted=False)


def make_usertree(taxa: Sequence[str], *, start: Tree | None = None, seed: int = 1) -> Tree:
    """
    Bifurcating tree over ``taxa`` for use as a starting tree.

    With ``start``, tips not in ``taxa`` are pruned, taxa missing from it
    are attached to the root, and every multifurcation is resolved at
    random. Without it the whole topology is random.

    Raises:
        ValueError: With fewer than three taxa.
    """
    if len(set(taxa)) < 3:
        msg = f"A starting tree needs at least 3 taxa, got {len(set(taxa))}"
        raise ValueError(msg)
    rng = np.random.default_rng(seed)
    if start is None:
        return random_tree(list(dict.fromkeys(taxa)), rng)

    from Bio.Phylo.BaseTree import Clade

    tree = copy_tree(start)
    wanted = set(taxa)
    for name in terminal_names(tree):
        if name not in wanted:
            tree.prune(name)

    present = set(terminal_names(tree))
    missing = [t for t in dict.fromkeys(taxa) if t not in present]
    if missing:
        logger.info("Attaching %d taxa missing from the starting tree to its root", len(missing))
        tree.root.clades.extend(Clade(name=t, branch_length=1.0) for t in missing)

    for clade in list(tree.find_clades(order="level")):
        if len(clade.clades) > 2:
            clade.clades = _join_randomly(clade.clades, rng, 0.0)
        if clade.branch_length is None and clade is not tree.root:
            clade.branch_length = 1.0
    for clade in tree.get_nonterminals():
        clade.name = None
        clade.confidence = None
    return tree
