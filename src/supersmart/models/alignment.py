"""
Alignment cluster model and FASTA loading.

An alignment cluster is one aligned orthologous locus: an ordered set of
(taxon, sequence) pairs sharing a coordinate system. Clusters are read once
from the aligned FASTA files listed by the orthology stage and are never
mutated; filtering and restriction produce new clusters.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from functools import cached_property
from pathlib import Path

from supersmart.core.constants import MISSING_CHARS, TAXON_DEFLINE_PATTERN
from supersmart.core.exceptions import (
    EmptyInputFileError,
    MalformedInputError,
    MissingInputFileError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlignedSequence:
    """Single aligned sequence with the taxon it was sampled from."""

    seq_id: str
    taxon_id: str
    sequence: str

    @property
    def missing(self) -> int:
        """Number of gap or ambiguous positions."""
        return sum(1 for c in self.sequence if c in MISSING_CHARS)


@dataclass(frozen=True)
class ClusterStats:
    """Summary statistics of one alignment cluster."""

    cluster_id: str
    n_sequences: int
    n_taxa: int
    length: int
    mean_distance: float

    def to_dict(self) -> dict[str, object]:
        return {
            "cluster_id": self.cluster_id,
            "n_sequences": self.n_sequences,
            "n_taxa": self.n_taxa,
            "length": self.length,
            "mean_distance": round(self.mean_distance, 6),
        }


@dataclass(frozen=True)
class AlignmentCluster:
    """An aligned orthologous cluster.

    Attributes:
        cluster_id: Identifier, by default the FASTA file stem.
        sequences: Aligned sequences in file order.
        path: Source file, if the cluster was read from disk.
    """

    cluster_id: str
    sequences: tuple[AlignedSequence, ...]
    path: Path | None = None

    def __post_init__(self) -> None:
        lengths = {len(s.sequence) for s in self.sequences}
        if len(lengths) > 1:
            msg = (
                f"Cluster {self.cluster_id} is not aligned: sequence lengths "
                f"{sorted(lengths)}"
            )
            raise ValueError(msg)

    def __len__(self) -> int:
        return len(self.sequences)

    @property
    def length(self) -> int:
        """Number of aligned columns."""
        return len(self.sequences[0].sequence) if self.sequences else 0

    @cached_property
    def taxa(self) -> tuple[str, ...]:
        """Distinct taxon identifiers in order of first appearance."""
        return tuple(dict.fromkeys(s.taxon_id for s in self.sequences))

    @property
    def coverage(self) -> int:
        """Number of distinct taxa in the cluster."""
        return len(self.taxa)

    @cached_property
    def mean_distance(self) -> float:
        """Mean pairwise p-distance between all sequences."""
        from supersmart.core.distances import mean_pairwise_distance

        return mean_pairwise_distance(self)

    def stats(self) -> ClusterStats:
        return ClusterStats(
            cluster_id=self.cluster_id,
            n_sequences=len(self.sequences),
            n_taxa=self.coverage,
            length=self.length,
            mean_distance=self.mean_distance,
        )

    def sequences_for(self, taxon_id: str) -> list[AlignedSequence]:
        return [s for s in self.sequences if s.taxon_id == taxon_id]

    def best_sequence(self, taxon_id: str) -> AlignedSequence | None:
        """The sequence of ``taxon_id`` with the fewest gaps, first on ties."""
        candidates = self.sequences_for(taxon_id)
        if not candidates:
            return None
        return min(candidates, key=lambda s: s.missing)

    def density(self, taxa: Iterable[str]) -> float:
        """Fraction of the given taxa represented in this cluster."""
        wanted = set(taxa)
        if not wanted:
            return 0.0
        return len(wanted.intersection(self.taxa)) / len(wanted)

    def restrict(self, taxa: Iterable[str]) -> AlignmentCluster:
        """New cluster holding only sequences of the given taxa."""
        keep = set(taxa)
        return replace(
            self,
            sequences=tuple(s for s in self.sequences if s.taxon_id in keep),
        )

    def to_fasta(self, path: Path) -> None:
        """Write the cluster as aligned FASTA, keeping the original deflines."""
        with path.open("w") as handle:
            for seq in self.sequences:
                handle.write(f">{seq.seq_id}\n{seq.sequence}\n")


def taxon_from_defline(defline: str) -> str | None:
    """Extract the taxon identifier from a ``...|taxon|<id>|...`` defline."""
    match = TAXON_DEFLINE_PATTERN.search(defline)
    return match.group(1) if match else None


def read_alignment(path: Path, cluster_id: str | None = None) -> AlignmentCluster:
    """
    Read an aligned FASTA file into an AlignmentCluster.

    Records whose defline carries no ``taxon|<id>`` field are skipped.

    Args:
        path: Aligned FASTA file.
        cluster_id: Identifier to use (defaults to the file stem).

    Raises:
        MissingInputFileError: If the file does not exist.
        MalformedInputError: If the sequences are not of equal length.
    """
    from Bio import SeqIO

    if not path.exists():
        raise MissingInputFileError(path, "alignment")

    sequences = []
    for record in SeqIO.parse(str(path), "fasta"):
        taxon = taxon_from_defline(record.description)
        if taxon is None:
            logger.debug("No taxon id in defline '%s' of %s", record.description, path)
            continue
        sequences.append(
            AlignedSequence(
                seq_id=record.description,
                taxon_id=taxon,
                sequence=str(record.seq),
            )
        )

    try:
        return AlignmentCluster(
            cluster_id=cluster_id or path.stem,
            sequences=tuple(sequences),
            path=path,
        )
    except ValueError as e:
        raise MalformedInputError(path, str(e)) from e


def read_alignment_list(path: Path) -> list[Path]:
    """
    Read a list file of alignment paths, one per line.

    Relative paths are resolved against the list file's directory when
    they do not exist relative to the current directory. Listed files
    that do not exist are reported and skipped.

    Raises:
        MissingInputFileError: If the list file does not exist.
        EmptyInputFileError: If the list file names no alignment.
    """
    if not path.exists():
        raise MissingInputFileError(path, "alignment list")

    result = []
    for line in path.read_text().splitlines():
        entry = line.strip()
        if not entry:
            continue
        candidate = Path(entry)
        if not candidate.exists() and not candidate.is_absolute():
            candidate = path.parent / entry
        if candidate.exists():
            result.append(candidate)
        else:
            logger.warning("Listed alignment %s does not exist, skipping", entry)

    if not result:
        raise EmptyInputFileError(path, "alignment list")
    return result


def load_clusters(paths: Iterable[Path]) -> list[AlignmentCluster]:
    """
    Read every listed alignment, skipping files that cannot be parsed.

    Identifiers are the file stems; clusters keep the order of ``paths``.
    """
    clusters = []
    for path in paths:
        try:
            cluster = read_alignment(path)
        except MalformedInputError as e:
            logger.warning("Skipping alignment: %s", e.message)
            continue
        if not cluster.sequences:
            logger.warning("Alignment %s holds no taxon-annotated sequences, skipping", path)
            continue
        clusters.append(cluster)
    return clusters
