"""
Backbone exemplar selection.

From the pool of orthologous clusters, chooses a few representative taxa
per genus (the exemplars) and the clusters that give every exemplar enough
markers for the backbone supermatrix. Taxa and clusters left out here are
still available for the clade decomposition.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from supersmart.core.exceptions import DecompositionError
from supersmart.models.taxonomy import taxon_sort_key

if TYPE_CHECKING:
    from supersmart.models.alignment import AlignmentCluster
    from supersmart.models.config import PipelineConfig
    from supersmart.models.taxonomy import TaxaTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackboneSelection:
    """Exemplar taxa and the clusters chosen to place them.

    Attributes:
        exemplars: Selected taxa in identifier order.
        clusters: Selected clusters, restricted to the exemplars, in pool order.
        genera: Genus of every exemplar (the taxon itself when it has none).
        participation: Number of usable clusters each exemplar occurs in.
    """

    exemplars: tuple[str, ...]
    clusters: tuple[AlignmentCluster, ...]
    genera: dict[str, str] = field(default_factory=dict)
    participation: dict[str, int] = field(default_factory=dict)

    def exemplars_by_genus(self) -> dict[str, list[str]]:
        groups: dict[str, list[str]] = {}
        for taxon in self.exemplars:
            groups.setdefault(self.genera.get(taxon, taxon), []).append(taxon)
        return groups

    def marker_counts(self) -> dict[str, int]:
        """Number of selected clusters holding each exemplar."""
        counts = dict.fromkeys(self.exemplars, 0)
        for cluster in self.clusters:
            for taxon in cluster.taxa:
                counts[taxon] = counts.get(taxon, 0) + 1
        return counts


def genus_key(taxa: TaxaTable, taxon_id: str) -> str:
    """Genus of a terminal taxon, or the taxon itself when it has none."""
    return taxa.genus_of(taxon_id) or taxon_id


def usable_clusters(
    clusters: Iterable[AlignmentCluster],
    known_taxa: Iterable[str],
    max_distance: float,
) -> list[AlignmentCluster]:
    """
    Clusters restricted to known taxa, without the saturated ones.

    Sequences of taxa that are not in the run are ignored; clusters whose
    mean pairwise distance exceeds ``max_distance`` are dropped.
    """
    known = set(known_taxa)
    kept = []
    for cluster in clusters:
        restricted = cluster.restrict(known)
        if not restricted.sequences:
            logger.debug("Cluster %s holds no taxon of this run", cluster.cluster_id)
            continue
        if restricted.mean_distance > max_distance:
            logger.info(
                "Cluster %s is too divergent for the backbone (%.3f > %.3f)",
                cluster.cluster_id, restricted.mean_distance, max_distance,
            )
            continue
        kept.append(restricted)
    return kept


def connected_components(clusters: Sequence[AlignmentCluster], taxa: Iterable[str]) -> list[set[str]]:
    """Components of the graph linking taxa that share a cluster."""
    adjacency: dict[str, set[str]] = {t: set() for t in taxa}
    for cluster in clusters:
        members = [t for t in cluster.taxa if t in adjacency]
        for taxon in members:
            adjacency[taxon].update(m for m in members if m != taxon)

    components = []
    seen: set[str] = set()
    for start in sorted(adjacency, key=taxon_sort_key):
        if start in seen:
            continue
        component = {start}
        queue = deque([start])
        seen.add(start)
        while queue:
            for neighbour in adjacency[queue.popleft()]:
                if neighbour not in seen:
                    seen.add(neighbour)
                    component.add(neighbour)
                    queue.append(neighbour)
        components.append(component)
    return components


def largest_component(components: Sequence[set[str]]) -> set[str]:
    """Largest component; ties go to the one holding the smallest identifier."""
    if not components:
        return set()
    return min(
        components,
        key=lambda c: (-len(c), taxon_sort_key(min(c, key=taxon_sort_key))),
    )


def select_markers(
    clusters: Sequence[AlignmentCluster],
    exemplars: Sequence[str],
    min_coverage: int,
    max_coverage: int,
) -> list[int]:
    """
    Greedy choice of backbone markers; returns indices into ``clusters``.

    Exemplars are visited from the least to the most sequenced. Each takes
    its clusters with the most exemplars first until it has
    ``min_coverage`` markers. A cluster is passed over when every exemplar
    in it already has ``max_coverage`` markers.
    """
    wanted = set(exemplars)
    members = [[t for t in c.taxa if t in wanted] for c in clusters]
    clusters_of: dict[str, list[int]] = {t: [] for t in exemplars}
    for index, taxa in enumerate(members):
        for taxon in taxa:
            clusters_of[taxon].append(index)
    for taxon in clusters_of:
        clusters_of[taxon].sort(key=lambda i: (-len(members[i]), i))

    order = sorted(exemplars, key=lambda t: (len(clusters_of[t]), taxon_sort_key(t)))
    markers: Counter[str] = Counter()
    selected: set[int] = set()

    for taxon in order:
        for index in clusters_of[taxon]:
            if markers[taxon] >= min_coverage:
                break
            if index in selected:
                continue
            if all(markers[t] >= max_coverage for t in members[index]):
                continue
            selected.add(index)
            markers.update(members[index])
        if markers[taxon] < min_coverage:
            logger.debug(
                "Exemplar %s has %d of %d markers", taxon, markers[taxon], min_coverage
            )
    return sorted(selected)


def select_backbone(
    clusters: Sequence[AlignmentCluster],
    taxa: TaxaTable,
    config: PipelineConfig,
    *,
    include_taxa: Iterable[str] = (),
) -> BackboneSelection:
    """
    Choose backbone exemplars and their markers.

    1. Drop clusters above ``backbone_max_distance``.
    2. Candidates are taxa in at least ``backbone_min_coverage`` clusters,
       restricted to the largest connected group of co-occurring taxa.
    3. Per genus, keep at most ``backbone_exemplars_per_genus`` candidates,
       ranked by cluster count and then identifier. Taxa in
       ``include_taxa`` are always kept.
    4. Select markers greedily (see :func:`select_markers`).

    Raises:
        DecompositionError: If no exemplar can be selected.
    """
    usable = usable_clusters(clusters, taxa.species(), config.backbone_max_distance)
    logger.info("%d of %d clusters are usable for the backbone", len(usable), len(clusters))

    participation: Counter[str] = Counter()
    for cluster in usable:
        participation.update(cluster.taxa)

    covered = [t for t, n in participation.items() if n >= config.backbone_min_coverage]
    candidates = largest_component(connected_components(usable, covered))
    logger.info(
        "%d taxa occur in at least %d clusters, %d of them form the largest connected group",
        len(covered), config.backbone_min_coverage, len(candidates),
    )

    forced = []
    for taxon in dict.fromkeys(include_taxa):
        if participation[taxon] == 0:
            logger.warning("Taxon %s is not in any usable cluster and cannot be included", taxon)
            continue
        forced.append(taxon)

    groups: dict[str, list[str]] = {}
    for taxon in (*candidates, *forced):
        group = groups.setdefault(genus_key(taxa, taxon), [])
        if taxon not in group:
            group.append(taxon)

    cap = config.backbone_exemplars_per_genus
    exemplars: list[str] = []
    for genus in sorted(groups, key=taxon_sort_key):
        pinned = [t for t in forced if genus_key(taxa, t) == genus]
        ranked = sorted(
            (t for t in groups[genus] if t not in pinned),
            key=lambda t: (-participation[t], taxon_sort_key(t)),
        )
        if len(pinned) > cap:
            logger.warning("Genus %s: %d included taxa exceed the cap of %d", genus, len(pinned), cap)
        chosen = [*pinned, *ranked][: max(cap, len(pinned))]
        logger.debug("Genus %s: exemplars %s", genus, ", ".join(chosen))
        exemplars.extend(chosen)

    if not exemplars:
        raise DecompositionError(
            message="No backbone exemplar could be selected",
            suggestion=(
                "Lower BACKBONE_MIN_COVERAGE or raise BACKBONE_MAX_DISTANCE, "
                "or check that the alignments carry taxon|<id> deflines."
            ),
        )

    exemplars.sort(key=taxon_sort_key)
    indices = select_markers(
        usable, exemplars, config.backbone_min_coverage, config.backbone_max_coverage
    )
    selected = tuple(usable[i].restrict(exemplars) for i in indices)
    logger.info("Selected %d exemplars and %d markers", len(exemplars), len(selected))

    return BackboneSelection(
        exemplars=tuple(exemplars),
        clusters=selected,
        genera={t: genus_key(taxa, t) for t in exemplars},
        participation={t: participation[t] for t in exemplars},
    )
