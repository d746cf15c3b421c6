"""
Rerooting of backbone trees.

Three strategies are supported: by explicit outgroup, at the midpoint, and
by taxonomy. Taxonomy rooting tries every internal node as root and keeps
the rooting that minimises the number of species falling inside the MRCA
of a higher taxon they do not belong to, at every informative rank.

Node support is tied to bipartitions, not to node objects, so it is
reassigned after rerooting from the bipartitions of the input tree.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Literal

from supersmart.core.exceptions import TaxonNotFoundError
from supersmart.core.phylogeny.tree_io import copy_tree, find_terminal, remove_internal_names
from supersmart.models.taxonomy import Rank, TaxaTable

if TYPE_CHECKING:
    from Bio.Phylo.BaseTree import Clade, Tree

logger = logging.getLogger(__name__)

RerootMode = Literal["outgroup", "taxonomy", "midpoint"]


# =============================================================================
# Support bookkeeping
# =============================================================================


def _split_key(tips: Iterable[str], all_tips: frozenset[str], anchor: str) -> frozenset[str]:
    """Canonical side of a bipartition: the side without ``anchor``."""
    side = frozenset(tips)
    return all_tips - side if anchor in side else side


def support_by_split(tree: Tree) -> dict[frozenset[str], float]:
    """Map each internal bipartition to the support of the node defining it."""
    all_tips = frozenset(t.name for t in tree.get_terminals())
    anchor = min(all_tips)
    support = {}
    for clade in tree.get_nonterminals():
        if clade is tree.root or clade.confidence is None:
            continue
        key = _split_key((t.name for t in clade.get_terminals()), all_tips, anchor)
        support[key] = clade.confidence
    return support


def reassign_support(tree: Tree, support: dict[frozenset[str], float]) -> None:
    """Set clade confidences from a bipartition-to-support map."""
    all_tips = frozenset(t.name for t in tree.get_terminals())
    anchor = min(all_tips)
    tree.root.confidence = None
    for clade in tree.get_nonterminals():
        if clade is tree.root:
            continue
        key = _split_key((t.name for t in clade.get_terminals()), all_tips, anchor)
        clade.confidence = support.get(key)


# =============================================================================
# Strategies
# =============================================================================


def reroot_outgroup(tree: Tree, outgroup: Iterable[str]) -> Tree:
    """
    Root on the branch leading to the MRCA of the outgroup tips.

    Raises:
        TaxonNotFoundError: If none of the outgroup names is a tip of the tree.
    """
    names = list(outgroup)
    result = copy_tree(tree)
    tips = [t for n in names if (t := find_terminal(result, n)) is not None]
    missing = [n for n in names if find_terminal(result, n) is None]
    if missing:
        logger.warning("Outgroup taxa not in tree: %s", ", ".join(missing))
    if not tips:
        raise TaxonNotFoundError(", ".join(names))

    support = support_by_split(tree)
    target = tips[0] if len(tips) == 1 else result.common_ancestor(*tips)
    if target is result.root:
        # the outgroup spans the root: root on the complement instead
        ingroup = [t for t in result.get_terminals() if t not in tips]
        target = result.common_ancestor(*ingroup) if len(ingroup) > 1 else ingroup[0]
    result.root_with_outgroup(target)
    reassign_support(result, support)
    remove_internal_names(result)
    return result


def reroot_midpoint(tree: Tree) -> Tree:
    """Root at the midpoint of the longest tip-to-tip path."""
    result = copy_tree(tree)
    support = support_by_split(tree)
    result.root_at_midpoint()
    reassign_support(result, support)
    remove_internal_names(result)
    return result


def count_paraphyletic_species(tree: Tree, taxa: TaxaTable, rank: Rank) -> int:
    """
    Paraphyly score of a rooted tree at one rank.

    For every taxon at ``rank``, counts the tips under the MRCA of its
    species that do not belong to it.
    """
    tip_names = {t.name for t in tree.get_terminals()}
    members: dict[str, list[str]] = {}
    for species in taxa.species():
        if species not in tip_names:
            continue
        group = taxa.rank_of(species, rank)
        if group:
            members.setdefault(group, []).append(species)

    count = 0
    for species in members.values():
        tips = [find_terminal(tree, s) for s in species]
        mrca = tips[0] if len(tips) == 1 else tree.common_ancestor(*tips)
        under = {t.name for t in mrca.get_terminals()}
        count += len(under - set(species))
    return count


def _candidate_roots(tree: Tree) -> list[Clade]:
    return list(tree.get_nonterminals())


def reroot_taxonomy(tree: Tree, taxa: TaxaTable, ranks: list[Rank] | None = None) -> Tree:
    """
    Root the tree so that higher taxa are as monophyletic as possible.

    Every internal node (in preorder, the root first) is tried as the
    outgroup. For each rank the set of optimal candidates is computed;
    the first candidate in the intersection of those sets wins. When the
    intersection is empty the input tree is returned unchanged.
    """
    ranks = ranks if ranks is not None else taxa.informative_ranks(lowest=Rank.GENUS)
    if not ranks:
        logger.warning("No informative taxonomic rank, keeping the input rooting")
        return copy_tree(tree)

    support = support_by_split(tree)
    candidates: list[Tree] = []
    scores: dict[Rank, list[int]] = {r: [] for r in ranks}

    for i in range(len(_candidate_roots(tree))):
        current = copy_tree(tree)
        node = _candidate_roots(current)[i]
        if node is not current.root:
            current.root_with_outgroup(node)
        logger.debug("Scoring rooting %d", i + 1)
        candidates.append(current)
        for rank in ranks:
            scores[rank].append(count_paraphyletic_species(current, taxa, rank))

    best: set[int] | None = None
    for rank in ranks:
        minimum = min(scores[rank])
        optimal = {i for i, s in enumerate(scores[rank]) if s == minimum}
        best = optimal if best is None else best & optimal

    if not best:
        logger.warning("Found no optimal rerooted tree, keeping the input rooting")
        return copy_tree(tree)
    if len(best) > 1:
        logger.info("Found %d optimal rootings, using the first", len(best))

    result = candidates[min(best)]
    reassign_support(result, support)
    remove_internal_names(result)
    return result


def reroot(
    tree: Tree,
    mode: RerootMode,
    *,
    taxa: TaxaTable | None = None,
    outgroup: list[str] | None = None,
) -> Tree:
    """Dispatch to one of the rerooting strategies."""
    if mode == "outgroup":
        if not outgroup:
            msg = "Outgroup rooting needs at least one outgroup taxon"
            raise ValueError(msg)
        return reroot_outgroup(tree, outgroup)
    if mode == "midpoint":
        return reroot_midpoint(tree)
    if taxa is None:
        msg = "Taxonomy rooting needs a taxa table"
        raise ValueError(msg)
    return reroot_taxonomy(tree, taxa)


def resolve_outgroup(names: Iterable[str], taxa: TaxaTable | None) -> list[str]:
    """
    Map outgroup names or ids to the terminal ids used as tip labels.

    Higher taxa expand to all of their species in the taxa table.

    Raises:
        TaxonNotFoundError: If a name cannot be resolved.
    """
    resolved: list[str] = []
    for name in names:
        if taxa is None or name.isdigit():
            ids = [name]
        else:
            taxon = taxa.lookup_name(name)
            if taxon is None:
                raise TaxonNotFoundError(name)
            ids = [taxon]
        if taxa is not None:
            expanded = taxa.species_for(ids)
            ids = expanded or ids
        resolved.extend(i for i in ids if i not in resolved)
    return resolved
