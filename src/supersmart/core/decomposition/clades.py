"""
Clade decomposition of the calibrated backbone.

Every genus represented in the backbone is located at the MRCA of its
exemplars. That node is widened until no genus is split between the
inside and the outside of its subtree; the outermost of these closed nodes
become the clade attachment points. A clade holds the exemplars below its
attachment node (they key the node for grafting) and all other species of
the genera found there. Genera without exemplars join the clade whose
genera share their lowest classification ancestor.

Each clade then receives the clusters that are dense and conserved enough
for its taxa, and is written to ``<workdir>/clade<N>/`` together with a
``clade.yaml`` manifest.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Self

import polars as pl
import yaml

from supersmart.core.constants import CLADE_DIR_PATTERN, CLADE_MANIFEST, MIN_TAXA_FOR_TREE
from supersmart.core.decomposition.exemplars import genus_key
from supersmart.core.exceptions import MalformedInputError
from supersmart.core.io_utils import atomic_write, require_input, write_tsv
from supersmart.core.phylogeny.tree_io import mrca, parent_map, terminal_names
from supersmart.models.taxonomy import taxon_sort_key

if TYPE_CHECKING:
    from Bio.Phylo.BaseTree import Clade as TreeNode
    from Bio.Phylo.BaseTree import Tree

    from supersmart.models.alignment import AlignmentCluster
    from supersmart.models.config import PipelineConfig
    from supersmart.models.taxonomy import ClassificationTree, TaxaTable

logger = logging.getLogger(__name__)


# =============================================================================
# Clade model and manifest
# =============================================================================


@dataclass(frozen=True)
class Clade:
    """A group of taxa decomposed from one backbone node.

    Attributes:
        clade_id: Directory name, ``clade<N>``.
        exemplars: Backbone tips below the attachment node.
        members: Species of the clade's genera that are not exemplars.
        genera: Genus identifiers covered by the clade.
        outgroup: Taxa added to root the clade tree, if any.
        markers: Alignment file names written for the clade.
        matrix_taxa: Taxa that made it into the clade alignments.
    """

    clade_id: str
    exemplars: tuple[str, ...]
    members: tuple[str, ...]
    genera: tuple[str, ...] = ()
    outgroup: tuple[str, ...] = ()
    markers: tuple[str, ...] = ()
    matrix_taxa: tuple[str, ...] = ()

    @property
    def taxa(self) -> tuple[str, ...]:
        """Exemplars and members, in identifier order."""
        return tuple(sorted({*self.exemplars, *self.members}, key=taxon_sort_key))

    @property
    def number(self) -> int:
        match = CLADE_DIR_PATTERN.match(self.clade_id)
        return int(match.group(1)) if match else -1

    def to_manifest(self) -> dict[str, Any]:
        return {key: list(value) if isinstance(value, tuple) else value for key, value in asdict(self).items()}

    @classmethod
    def from_manifest(cls, data: dict[str, Any]) -> Self:
        return cls(
            clade_id=str(data["clade_id"]),
            exemplars=tuple(str(t) for t in data.get("exemplars") or ()),
            members=tuple(str(t) for t in data.get("members") or ()),
            genera=tuple(str(t) for t in data.get("genera") or ()),
            outgroup=tuple(str(t) for t in data.get("outgroup") or ()),
            markers=tuple(str(t) for t in data.get("markers") or ()),
            matrix_taxa=tuple(str(t) for t in data.get("matrix_taxa") or ()),
        )


def write_manifest(clade: Clade, directory: Path) -> Path:
    path = directory / CLADE_MANIFEST
    with atomic_write(path) as handle:
        yaml.safe_dump(clade.to_manifest(), handle, default_flow_style=False, sort_keys=False)
    return path


def read_manifest(directory: Path) -> Clade:
    """
    Read ``clade.yaml`` from a clade directory.

    Raises:
        MissingInputFileError: If there is no manifest.
        MalformedInputError: If it is not a mapping with a clade id.
    """
    path = require_input(directory / CLADE_MANIFEST, "clade manifest")
    data = yaml.safe_load(path.read_text())
    if not isinstance(data, dict) or "clade_id" not in data:
        raise MalformedInputError(path, "expected a mapping with a clade_id")
    return Clade.from_manifest(data)


def clade_directories(workdir: Path) -> list[Path]:
    """``clade<N>`` directories of a working directory, by clade number."""
    found = []
    for path in workdir.iterdir():
        match = CLADE_DIR_PATTERN.match(path.name)
        if match and path.is_dir():
            found.append((int(match.group(1)), path))
    return [path for _, path in sorted(found)]


# =============================================================================
# Decomposition
# =============================================================================


def _closed_node(tree: Tree, start: TreeNode, members: dict[str, list[str]], genus_of: dict[str, str]) -> TreeNode:
    """Widen ``start`` until every genus below it lies entirely below it."""
    node = start
    while True:
        under = set(terminal_names(node))
        outside = [
            tip
            for genus in {genus_of[t] for t in under if t in genus_of}
            for tip in members[genus]
            if tip not in under
        ]
        if not outside:
            return node
        node = mrca(tree, [*under, *outside])


def attachment_nodes(tree: Tree, taxa: TaxaTable) -> list[TreeNode]:
    """
    Outermost closed nodes, in preorder.

    A genus represented by a single exemplar starts from the exemplar's
    parent, so that it is grouped with its sister lineage, unless that
    parent is the root: a lone genus at the base of the backbone (typically
    the outgroup after rerooting) keeps its own tip as attachment point.
    """
    known = set(taxa.species())
    genus_of = {t: genus_key(taxa, t) for t in terminal_names(tree) if t in known}
    unknown = [t for t in terminal_names(tree) if t not in known]
    if unknown:
        logger.warning("Backbone tips not in the taxa table: %s", ", ".join(unknown))

    members: dict[str, list[str]] = {}
    for tip, genus in genus_of.items():
        members.setdefault(genus, []).append(tip)

    parents = parent_map(tree)
    closed: dict[int, TreeNode] = {}
    for genus in sorted(members, key=taxon_sort_key):
        start = mrca(tree, members[genus])
        parent = parents.get(start)
        if not start.clades and parent is not None and parent is not tree.root:
            start = parent
        node = _closed_node(tree, start, members, genus_of)
        closed[id(node)] = node

    inner: set[int] = set()
    for node in closed.values():
        inner.update(id(c) for c in node.find_clades() if c is not node)
    return [c for c in tree.find_clades(order="preorder") if id(c) in closed and id(c) not in inner]


def _home_for(
    genus: str,
    clades: Sequence[dict[str, Any]],
    classification: ClassificationTree | None,
) -> int | None:
    """Index of the clade sharing the lowest classification ancestor with ``genus``."""
    if classification is None or genus not in classification:
        return None
    best: tuple[int, int] | None = None
    for index, clade in enumerate(clades):
        common = classification.mrca([genus, *clade["genera"]])
        if common is None:
            continue
        depth = len(classification.lineage(common))
        if best is None or depth > best[0]:
            best = (depth, index)
    return best[1] if best else None


def decompose_backbone(
    tree: Tree,
    taxa: TaxaTable,
    classification: ClassificationTree | None = None,
) -> list[Clade]:
    """
    Partition the non-exemplar taxa into clades.

    Every species of the taxa table that is not a backbone tip ends up in
    exactly one clade. Genera whose species are all exemplars produce no
    clade. When an orphan genus finds no clade to join, all clades merge
    into a single clade attached at the backbone root.
    """
    tips = set(terminal_names(tree))
    by_genus: dict[str, list[str]] = {}
    for species in taxa.species():
        by_genus.setdefault(genus_key(taxa, species), []).append(species)

    groups: list[dict[str, Any]] = []
    for node in attachment_nodes(tree, taxa):
        exemplars = [t for t in terminal_names(node) if t in tips]
        genera = sorted({g for t in exemplars if (g := genus_key(taxa, t)) in by_genus}, key=taxon_sort_key)
        groups.append({"exemplars": exemplars, "genera": genera})

    placed = {g for group in groups for g in group["genera"]}
    orphans = [g for g in sorted(by_genus, key=taxon_sort_key) if g not in placed]
    homeless = []
    for genus in orphans:
        index = _home_for(genus, groups, classification)
        if index is None:
            homeless.append(genus)
            continue
        logger.info("Genus %s has no exemplar, joining the clade of %s", genus, ", ".join(groups[index]["genera"]))
        groups[index]["genera"].append(genus)

    if homeless:
        logger.warning(
            "Genera %s share no classification ancestor with any clade; "
            "decomposing at the backbone root",
            ", ".join(homeless),
        )
        groups = [
            {
                "exemplars": sorted(tips, key=taxon_sort_key),
                "genera": sorted(by_genus, key=taxon_sort_key),
            }
        ]

    clades = []
    for group in groups:
        members = [s for g in group["genera"] for s in by_genus[g] if s not in tips]
        if not members:
            logger.debug("Genera %s are fully represented by exemplars", ", ".join(group["genera"]))
            continue
        clades.append(
            Clade(
                clade_id=f"clade{len(clades)}",
                exemplars=tuple(sorted(group["exemplars"], key=taxon_sort_key)),
                members=tuple(sorted(set(members), key=taxon_sort_key)),
                genera=tuple(group["genera"]),
            )
        )
    logger.info("Decomposed the backbone into %d clades", len(clades))
    return clades


def outgroup_candidates(tree: Tree, clade: Clade) -> list[str]:
    """Tips of the sister subtree of the clade's attachment node."""
    node = mrca(tree, clade.exemplars)
    if node is None:
        return []
    parent = parent_map(tree).get(node)
    if parent is None:
        logger.warning("%s is attached at the root and has no outgroup", clade.clade_id)
        return []
    return [t for sister in parent.clades if sister is not node for t in terminal_names(sister)]


# =============================================================================
# Marker selection
# =============================================================================


@dataclass(frozen=True)
class CladeMarker:
    """A cluster chosen for a clade.

    Attributes:
        source: Full cluster, for writing ingroup and outgroup sequences.
        ingroup: Cluster restricted to the clade taxa.
        density: Fraction of the clade taxa present.
        distance: Mean pairwise distance of the ingroup sequences.
    """

    source: AlignmentCluster
    ingroup: AlignmentCluster
    density: float
    distance: float

    @property
    def marker(self) -> str:
        return self.source.cluster_id


@dataclass(frozen=True)
class CladeSelection:
    """A clade with its markers, ready to be written."""

    clade: Clade
    markers: tuple[CladeMarker, ...] = ()
    dropped: tuple[str, ...] = field(default=())


def select_clade_markers(
    clade: Clade,
    clusters: Iterable[AlignmentCluster],
    config: PipelineConfig,
) -> tuple[list[CladeMarker], list[str]]:
    """
    Clusters and taxa for one clade matrix.

    A cluster qualifies with at least three clade taxa, a mean distance up
    to ``clade_max_distance`` and a density of at least
    ``clade_min_density``. Clusters in which no taxon reaches
    ``clade_taxon_min_markers`` are dropped, the rest are capped at
    ``clade_max_markers``, densest first. Taxa left with fewer than
    ``clade_taxon_min_markers`` markers are excluded from the matrix;
    exemplars stay as long as they have any marker.

    Returns:
        (markers, kept taxa)
    """
    ingroup = clade.taxa
    candidates = []
    for cluster in clusters:
        sub = cluster.restrict(ingroup)
        if sub.coverage < MIN_TAXA_FOR_TREE:
            continue
        distance = sub.mean_distance
        if distance > config.clade_max_distance:
            logger.debug(
                "%s is too divergent for %s (%.3f > %.3f)",
                cluster.cluster_id, clade.clade_id, distance, config.clade_max_distance,
            )
            continue
        density = sub.coverage / len(ingroup)
        if density < config.clade_min_density:
            logger.debug(
                "%s is not dense enough for %s (%.2f < %.2f)",
                cluster.cluster_id, clade.clade_id, density, config.clade_min_density,
            )
            continue
        candidates.append(CladeMarker(cluster, sub, density, distance))

    minimum = config.clade_taxon_min_markers
    counts = Counter(t for m in candidates for t in m.ingroup.taxa)
    candidates = [m for m in candidates if any(counts[t] >= minimum for t in m.ingroup.taxa)]
    candidates.sort(key=lambda m: (-m.density, m.marker))
    capped = candidates[: config.clade_max_markers]

    counts = Counter(t for m in capped for t in m.ingroup.taxa)
    exemplars = set(clade.exemplars)
    kept = [t for t in ingroup if counts[t] >= minimum or (t in exemplars and counts[t] > 0)]
    dropped = [t for t in ingroup if t not in kept]
    if dropped and capped:
        logger.warning(
            "%s: %d taxa have fewer than %d markers and are left out: %s",
            clade.clade_id, len(dropped), minimum, ", ".join(dropped),
        )

    markers = []
    for marker in capped:
        sub = marker.ingroup.restrict(kept)
        if sub.coverage < MIN_TAXA_FOR_TREE:
            continue
        markers.append(CladeMarker(marker.source, sub, marker.density, marker.distance))
    return markers, kept


def choose_outgroup(candidates: Sequence[str], markers: Sequence[CladeMarker], limit: int) -> list[str]:
    """Up to ``limit`` candidates, most widely sequenced across the markers first."""
    counts = Counter(t for m in markers for t in m.source.taxa)
    ranked = sorted(
        (t for t in dict.fromkeys(candidates) if counts[t] > 0),
        key=lambda t: (-counts[t], taxon_sort_key(t)),
    )
    return ranked[:limit]


def select_clades(
    tree: Tree,
    clades: Sequence[Clade],
    clusters: Sequence[AlignmentCluster],
    config: PipelineConfig,
    *,
    add_outgroup: bool = False,
) -> list[CladeSelection]:
    """
    Markers (and optional outgroup) for every clade.

    Clades without any qualifying cluster, or with fewer than three taxa
    left, are reported and skipped.
    """
    selections = []
    for clade in clades:
        markers, kept = select_clade_markers(clade, clusters, config)
        if not markers:
            logger.warning("%s has no qualifying alignment and is skipped", clade.clade_id)
            continue
        if len(kept) < MIN_TAXA_FOR_TREE:
            logger.warning("%s has fewer than %d taxa with markers and is skipped", clade.clade_id, MIN_TAXA_FOR_TREE)
            continue

        outgroup: list[str] = []
        if add_outgroup and config.clade_max_outgroup > 0:
            outgroup = choose_outgroup(outgroup_candidates(tree, clade), markers, config.clade_max_outgroup)
            if outgroup:
                logger.info("Adding outgroup %s to %s", ", ".join(outgroup), clade.clade_id)

        selections.append(
            CladeSelection(
                clade=Clade(
                    clade_id=clade.clade_id,
                    exemplars=clade.exemplars,
                    members=clade.members,
                    genera=clade.genera,
                    outgroup=tuple(outgroup),
                    markers=tuple(f"{m.marker}.fa" for m in markers),
                    matrix_taxa=tuple(kept),
                ),
                markers=tuple(markers),
                dropped=tuple(t for t in clade.taxa if t not in kept),
            )
        )
    return selections


# =============================================================================
# Output
# =============================================================================


def write_clade(selection: CladeSelection, workdir: Path) -> Path:
    """Write the clade's alignments and manifest to ``workdir/clade<N>``."""
    clade = selection.clade
    directory = workdir / clade.clade_id
    directory.mkdir(parents=True, exist_ok=True)
    keep = [*clade.matrix_taxa, *clade.outgroup]
    for marker in selection.markers:
        marker.source.restrict(keep).to_fasta(directory / f"{marker.marker}.fa")
    write_manifest(clade, directory)
    logger.info("Wrote %s: %d taxa, %d markers", clade.clade_id, len(clade.matrix_taxa), len(selection.markers))
    return directory


def clade_markers_table(selections: Iterable[CladeSelection]) -> pl.DataFrame:
    """Summary of the markers chosen per clade."""
    rows = [
        {
            "clade": s.clade.clade_id,
            "marker": m.marker,
            "taxa": m.ingroup.coverage,
            "density": round(m.density, 4),
            "distance": round(m.distance, 6),
        }
        for s in selections
        for m in s.markers
    ]
    return pl.DataFrame(
        rows,
        schema={
            "clade": pl.Utf8,
            "marker": pl.Utf8,
            "taxa": pl.Int64,
            "density": pl.Float64,
            "distance": pl.Float64,
        },
    )


def write_clade_markers(selections: Iterable[CladeSelection], path: Path) -> None:
    write_tsv(clade_markers_table(selections), path)
