"""
Grafting of clade trees onto the calibrated backbone.

Each clade was decomposed from a backbone node, recorded by the backbone
exemplars it subtends. The attachment node is found again from those
exemplars; the clade tree is rescaled linearly so that its root height
equals the age of the attachment node and then replaces the subtree below
it. The clade tree holds the exemplars as well as the remaining members of
its genera. Species that no clade tree holds (clades skipped for lack of
markers, taxa dropped from a clade matrix) are attached beside their genus,
so every species of the taxa table ends up exactly once in the final tree.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from supersmart.core.exceptions import GraftError
from supersmart.core.phylogeny.rerooting import reroot_midpoint, reroot_outgroup
from supersmart.core.phylogeny.tree_io import (
    copy_tree,
    find_terminal,
    mrca,
    parent_map,
    strip_quotes,
    subtree_height,
    terminal_names,
)
from supersmart.models.taxonomy import taxon_sort_key

if TYPE_CHECKING:
    from Bio.Phylo.BaseTree import Clade, Tree

    from supersmart.models.taxonomy import TaxaTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CladeTree:
    """An inferred clade tree with the key of its attachment point.

    Attributes:
        clade_id: Name of the clade directory, e.g. ``clade3``.
        exemplars: Backbone tips whose MRCA is the attachment node.
        tree: The clade tree, rooted and without outgroup.
        taxa: Every taxon assigned to the clade, for completeness checks.
    """

    clade_id: str
    exemplars: tuple[str, ...]
    tree: Tree
    taxa: tuple[str, ...] = ()


@dataclass
class GraftReport:
    """Final tree, the outcome per clade and the species placed by genus.

    Attributes:
        attached: Species added beside their genus because no grafted
            clade tree held them.
        unknown: Tips that are not species of the taxa table.
    """

    tree: Tree
    grafted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    attached: list[str] = field(default_factory=list)
    unknown: list[str] = field(default_factory=list)


def prepare_clade_tree(tree: Tree, outgroup: Iterable[str] = ()) -> Tree:
    """
    Root a clade tree and remove its outgroup.

    Trees with outgroup tips are rooted on them and the outgroup is pruned;
    trees without are rooted at the midpoint.
    """
    result = copy_tree(tree)
    strip_quotes(result)
    present = [name for name in outgroup if find_terminal(result, name) is not None]
    if not present:
        return reroot_midpoint(result)

    ingroup = set(terminal_names(result)) - set(present)
    if not ingroup:
        raise GraftError(
            message="Clade tree holds outgroup taxa only",
            suggestion="Check the outgroup listed in the clade manifest.",
        )
    rooted = reroot_outgroup(result, present)
    for name in present:
        rooted.prune(find_terminal(rooted, name))
    return rooted


def scale_branch_lengths(tree: Tree, factor: float) -> None:
    """Multiply every branch length by ``factor``; negatives become zero."""
    for clade in tree.find_clades():
        if clade.branch_length is not None:
            clade.branch_length = max(0.0, clade.branch_length * factor)


def _new_tip(name: str, branch_length: float) -> Clade:
    from Bio.Phylo.Newick import Clade as NewickClade

    return NewickClade(branch_length=branch_length, name=name)


def graft_clade(backbone: Tree, clade: CladeTree) -> None:
    """
    Replace the subtree at the clade's attachment node, in place.

    An internal attachment node keeps its age and the clade root takes its
    place. A tip attachment (a genus with a single exemplar) is split at
    the middle of its stem, which becomes the clade root. Backbone tips
    below the attachment node that the clade tree lacks are kept as
    children of the clade root, at their backbone ages.

    Raises:
        GraftError: If the exemplars are not in the backbone, or either the
            clade tree or the attachment point has no usable branch lengths.
    """
    attachment = mrca(backbone, clade.exemplars)
    if attachment is None:
        raise GraftError(
            message=f"{clade.clade_id}: none of its exemplars is in the backbone",
            suggestion="Graft onto the backbone the clades were decomposed from.",
        )
    missing = [e for e in clade.exemplars if find_terminal(backbone, e) is None]
    if missing:
        logger.warning("%s: exemplars not in backbone: %s", clade.clade_id, ", ".join(missing))

    subtree = copy_tree(clade.tree)
    strip_quotes(subtree)
    height = subtree_height(subtree.root)
    if height <= 0.0:
        raise GraftError(
            message=f"{clade.clade_id}: clade tree has no branch lengths",
            suggestion="Infer clade trees with an engine that reports branch lengths.",
        )

    age = subtree_height(attachment)
    if attachment.clades:
        target = age
    else:
        target = (attachment.branch_length or 0.0) / 2
    if target <= 0.0:
        raise GraftError(
            message=f"{clade.clade_id}: attachment node has age zero",
            suggestion="Graft onto a calibrated backbone.",
        )

    # backbone tip ages, taken before the subtree is replaced
    incoming = set(terminal_names(subtree))
    displaced = {
        tip.name: age - attachment.distance(tip)
        for tip in attachment.get_terminals()
        if tip.name and tip.name not in incoming
    }

    scale_branch_lengths(subtree, target / height)
    if attachment is backbone.root:
        logger.info("%s spans the whole backbone", clade.clade_id)
    if not attachment.clades:
        attachment.branch_length -= target
        attachment.name = None
    attachment.clades = list(subtree.root.clades)
    for name, tip_age in displaced.items():
        attachment.clades.append(_new_tip(name, max(0.0, target - tip_age)))
    if displaced:
        logger.warning(
            "%s: backbone taxa not in the clade tree are kept at the attachment node: %s",
            clade.clade_id, ", ".join(sorted(displaced, key=taxon_sort_key)),
        )
    logger.debug(
        "Grafted %s: %d tips, scaled by %.4g",
        clade.clade_id, len(subtree.get_terminals()), target / height,
    )

    tips = set(terminal_names(backbone))
    absent = sorted(set(clade.taxa) - tips, key=taxon_sort_key)
    if absent:
        logger.warning(
            "%s: %d taxa are not in the clade tree: %s",
            clade.clade_id, len(absent), ", ".join(absent),
        )


def attach_missing_taxa(tree: Tree, taxa: TaxaTable) -> list[str]:
    """
    Add species of the taxa table that are not tips of ``tree``, in place.

    A missing species joins its genus: it becomes a child of the MRCA of
    the genus' tips (or of the parent of a lone tip), at the same age as
    those tips. Species without any genus-mate in the tree are attached to
    the root. Returns the added species.
    """
    present = set(terminal_names(tree))
    missing = [s for s in taxa.species() if s not in present]
    parents = parent_map(tree)
    for species in missing:
        genus = taxa.genus_of(species)
        mates = [t for t in present if genus is not None and taxa.genus_of(t) == genus]
        anchor = mrca(tree, mates) if mates else None
        if anchor is None:
            logger.warning("Species %s has no genus-mate in the tree, attaching it to the root", species)
            node, reference = tree.root, tree.root.get_terminals()[0]
        elif anchor.clades:
            node, reference = anchor, anchor.get_terminals()[0]
        else:
            node, reference = parents.get(anchor, tree.root), anchor
        tip = _new_tip(species, node.distance(reference))
        node.clades.append(tip)
        parents[tip] = node
        present.add(species)
    if missing:
        logger.info("Attached %d species missing from the clade trees beside their genus", len(missing))
    return missing


def deduplicate_tips(tree: Tree) -> list[str]:
    """Prune repeated tips, keeping the first in preorder. Returns the removed names."""
    seen: set[str] = set()
    duplicates = []
    for tip in list(tree.get_terminals()):
        if tip.name in seen:
            duplicates.append(tip)
        else:
            seen.add(tip.name)
    for tip in duplicates:
        logger.warning("Taxon %s occurs more than once in the grafted tree, pruning", tip.name)
        tree.prune(tip)
    return [t.name for t in duplicates]


def remap_to_names(tree: Tree, taxa: TaxaTable) -> None:
    """
    Relabel tips with display names, keeping the id as ``[&ti=<id>]``.

    Spaces in names become underscores.
    """
    for tip in tree.get_terminals():
        if not tip.name:
            continue
        taxon_id = tip.name
        name = taxa.display_name(taxon_id)
        tip.name = "_".join(name.split())
        tip.comment = f"&ti={taxon_id}"


def graft_all(
    backbone: Tree,
    clades: Sequence[CladeTree],
    *,
    taxa: TaxaTable | None = None,
) -> GraftReport:
    """
    Graft every clade onto a copy of the backbone.

    Clades that cannot be grafted are logged and skipped. When ``taxa`` is
    given, species still missing from the tree are attached beside their
    genus (see :func:`attach_missing_taxa`), so the final tree holds every
    species of the table once, and tips are relabelled with display names.
    """
    result = copy_tree(backbone)
    strip_quotes(result)
    report = GraftReport(tree=result)

    for clade in clades:
        try:
            graft_clade(result, clade)
        except GraftError as e:
            logger.warning("Skipping %s: %s", clade.clade_id, e.message)
            report.skipped.append(clade.clade_id)
            continue
        report.grafted.append(clade.clade_id)

    deduplicate_tips(result)
    if taxa is not None:
        report.attached = attach_missing_taxa(result, taxa)
        known = set(taxa.species())
        report.unknown = sorted((t for t in terminal_names(result) if t not in known), key=taxon_sort_key)
        if report.unknown:
            logger.warning("Final tree holds taxa not in the taxa table: %s", ", ".join(report.unknown))
        logger.info(
            "Final tree holds %d of %d species",
            len(result.get_terminals()) - len(report.unknown), len(known),
        )
        remap_to_names(result, taxa)
    logger.info(
        "Grafted %d of %d clades, final tree has %d tips",
        len(report.grafted), len(clades), len(result.get_terminals()),
    )
    return report
