"""
Concatenation of alignment clusters into a supermatrix.

Used for the backbone (exemplars over the selected markers) and for every
clade matrix. Each taxon contributes its least gapped sequence per
cluster; taxa missing from a cluster are padded with ``?``. Columns that
hold no information for any taxon are removed and the marker partitions
shrink accordingly.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import numpy as np
import polars as pl

from supersmart.core.constants import MISSING_CHARS, MISSING_DATA_CHAR
from supersmart.core.distances import encode_sequences
from supersmart.core.exceptions import DecompositionError, MalformedInputError
from supersmart.core.io_utils import atomic_write, require_input, write_tsv

if TYPE_CHECKING:
    from Bio.Align import MultipleSeqAlignment

    from supersmart.models.alignment import AlignmentCluster

logger = logging.getLogger(__name__)

MatrixFormat = Literal["phylip", "fasta", "nexus"]

# Bio.AlignIO format names
MATRIX_FORMATS: dict[str, str] = {
    "phylip": "phylip-relaxed",
    "fasta": "fasta",
    "nexus": "nexus",
}

_MISSING_CODES = np.frombuffer("".join(sorted(MISSING_CHARS)).encode(), dtype=np.uint8)


@dataclass(frozen=True)
class Partition:
    """Columns of one marker in the matrix (1-based, inclusive)."""

    marker: str
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class Supermatrix:
    """Concatenated alignment with its marker bookkeeping.

    Attributes:
        rows: Taxon identifier to concatenated sequence, in taxon order.
        partitions: Marker column ranges after gap-column removal.
        sources: (taxon, marker, sequence id) for every contributed sequence.
    """

    rows: dict[str, str]
    partitions: tuple[Partition, ...]
    sources: tuple[tuple[str, str, str], ...] = ()

    @property
    def taxa(self) -> list[str]:
        return list(self.rows)

    @property
    def ntax(self) -> int:
        return len(self.rows)

    @property
    def nchar(self) -> int:
        return len(next(iter(self.rows.values()), ""))

    def to_alignment(self) -> MultipleSeqAlignment:
        from Bio.Align import MultipleSeqAlignment
        from Bio.Seq import Seq
        from Bio.SeqRecord import SeqRecord

        records = []
        for taxon, sequence in self.rows.items():
            record = SeqRecord(Seq(sequence), id=taxon, description="")
            record.annotations["molecule_type"] = "DNA"
            records.append(record)
        return MultipleSeqAlignment(records)

    def markers_table(self) -> pl.DataFrame:
        """One row per contributed sequence: taxon, marker, sequence id."""
        return pl.DataFrame(
            {
                "taxon": [s[0] for s in self.sources],
                "marker": [s[1] for s in self.sources],
                "seq_id": [s[2] for s in self.sources],
            },
            schema={"taxon": pl.Utf8, "marker": pl.Utf8, "seq_id": pl.Utf8},
        )


def concatenate_clusters(clusters: Sequence[AlignmentCluster], taxa: Sequence[str]) -> Supermatrix:
    """
    Concatenate clusters over the given taxa.

    Raises:
        DecompositionError: If there are no clusters or no taxa.
    """
    if not clusters or not taxa:
        raise DecompositionError(
            message="Cannot build a matrix without clusters and taxa",
            suggestion="Relax the marker selection thresholds.",
        )

    pieces: dict[str, list[str]] = {t: [] for t in taxa}
    sources: list[tuple[str, str, str]] = []
    lengths: list[tuple[str, int]] = []

    for cluster in clusters:
        for taxon in taxa:
            best = cluster.best_sequence(taxon)
            if best is None:
                pieces[taxon].append(MISSING_DATA_CHAR * cluster.length)
                continue
            if len(cluster.sequences_for(taxon)) > 1:
                logger.debug(
                    "Taxon %s has several sequences in %s, using %s",
                    taxon, cluster.cluster_id, best.seq_id,
                )
            pieces[taxon].append(best.sequence)
            sources.append((taxon, cluster.cluster_id, best.seq_id))
        lengths.append((cluster.cluster_id, cluster.length))

    rows = {t: "".join(p) for t, p in pieces.items()}
    matrix = encode_sequences(list(rows.values()))
    informative = ~np.all(np.isin(matrix, _MISSING_CODES), axis=0)
    removed = int((~informative).sum())
    if removed:
        logger.info("Removed %d gap-only columns from the matrix", removed)
        keep = np.flatnonzero(informative)
        rows = {t: "".join(s[j] for j in keep) for t, s in rows.items()}

    partitions = []
    offset = 0
    position = 1
    for marker, length in lengths:
        kept = int(informative[offset:offset + length].sum())
        offset += length
        if kept == 0:
            logger.debug("Marker %s has no informative column left", marker)
            continue
        partitions.append(Partition(marker, position, position + kept - 1))
        position += kept

    return Supermatrix(rows=rows, partitions=tuple(partitions), sources=tuple(sources))


def write_matrix(matrix: Supermatrix, path: Path, fmt: MatrixFormat = "phylip") -> None:
    """Write the matrix with Bio.AlignIO, atomically."""
    from Bio import AlignIO

    if fmt not in MATRIX_FORMATS:
        msg = f"Unknown matrix format '{fmt}', expected one of {', '.join(MATRIX_FORMATS)}"
        raise ValueError(msg)
    with atomic_write(path) as handle:
        AlignIO.write(matrix.to_alignment(), handle, MATRIX_FORMATS[fmt])
    logger.info("Wrote %d x %d matrix to %s", matrix.ntax, matrix.nchar, path)


def write_markers_table(matrix: Supermatrix, path: Path) -> None:
    write_tsv(matrix.markers_table(), path)


def phylip_dimensions(path: Path) -> tuple[int, int]:
    """
    Number of taxa and sites from a phylip header.

    Raises:
        MalformedInputError: If the first line is not ``<ntax> <nchar>``.
    """
    require_input(path, "phylip matrix")
    with path.open() as handle:
        header = handle.readline().split()
    try:
        ntax, nchar = int(header[0]), int(header[1])
    except (IndexError, ValueError) as e:
        raise MalformedInputError(path, "first line is not a phylip header") from e
    return ntax, nchar
