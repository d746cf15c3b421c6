"""
Per-clade matrices (clademerge).

Concatenates the alignments written to a clade directory into a relaxed
phylip matrix for the inference engines and a NEXUS matrix with one
charset per marker.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from io import StringIO
from pathlib import Path
from typing import TYPE_CHECKING

from supersmart.core.decomposition.clades import Clade, read_manifest
from supersmart.core.decomposition.supermatrix import Supermatrix, concatenate_clusters, write_matrix
from supersmart.core.io_utils import atomic_write
from supersmart.models.alignment import load_clusters

if TYPE_CHECKING:
    from supersmart.models.config import PipelineConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CladeMatrix:
    """Matrices written for one clade."""

    clade: Clade
    phylip: Path
    nexus: Path
    matrix: Supermatrix


def write_nexus_matrix(matrix: Supermatrix, path: Path) -> None:
    """Write the matrix as NEXUS with a ``charset`` per marker partition."""
    from Bio import AlignIO
    from Bio.Nexus import Nexus

    buffer = StringIO()
    AlignIO.write(matrix.to_alignment(), buffer, "nexus")
    nexus = Nexus.Nexus(buffer.getvalue())
    nexus.charsets = {p.marker: list(range(p.start - 1, p.end)) for p in matrix.partitions}
    with atomic_write(path) as handle:
        nexus.write_nexus_data(filename=handle)


def merge_clade(directory: Path, config: PipelineConfig) -> CladeMatrix | None:
    """
    Build the matrices of one clade directory.

    Returns None, with a warning, when the clade has no alignment left.
    """
    clade = read_manifest(directory)
    files = []
    for name in clade.markers:
        path = directory / name
        if path.exists():
            files.append(path)
        else:
            logger.warning("%s: listed alignment %s is missing", clade.clade_id, name)

    clusters = load_clusters(files)[: config.clade_max_markers]
    if not clusters:
        logger.warning("%s has no alignments, skipping", clade.clade_id)
        return None

    counts = Counter(t for c in clusters for t in c.taxa)
    wanted = list(dict.fromkeys([*(clade.matrix_taxa or clade.taxa), *clade.outgroup]))
    always = {*clade.exemplars, *clade.outgroup}
    taxa = [
        t for t in wanted
        if counts[t] >= config.clade_taxon_min_markers or (t in always and counts[t] > 0)
    ]
    absent = [t for t in wanted if t not in taxa]
    if absent:
        logger.info("%s: leaving out %d taxa with too few markers", clade.clade_id, len(absent))

    matrix = concatenate_clusters(clusters, taxa)
    phylip = directory / f"{clade.clade_id}.phy"
    nexus = directory / f"{clade.clade_id}.nex"
    write_matrix(matrix, phylip, "phylip")
    write_nexus_matrix(matrix, nexus)
    logger.info(
        "%s: %d taxa, %d markers, %d sites",
        clade.clade_id, matrix.ntax, len(matrix.partitions), matrix.nchar,
    )
    return CladeMatrix(clade=clade, phylip=phylip, nexus=nexus, matrix=matrix)
