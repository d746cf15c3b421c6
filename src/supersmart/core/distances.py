"""
Pairwise sequence distances and alignment statistics.

Distances are uncorrected p-distances: the fraction of differing sites
among the columns where neither sequence has a gap or ambiguity code.
These feed the distance and density predicates of both decomposition
passes and the divergence ranking of exemplar candidates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from supersmart.core.constants import MISSING_CHARS

if TYPE_CHECKING:
    from supersmart.models.alignment import AlignmentCluster

logger = logging.getLogger(__name__)

_MISSING_CODES = np.frombuffer("".join(sorted(MISSING_CHARS)).upper().encode(), dtype=np.uint8)


def encode_sequences(sequences: Sequence[str]) -> np.ndarray:
    """Encode equal-length sequences as an (n, L) uint8 array of upper-case bytes."""
    if not sequences:
        return np.zeros((0, 0), dtype=np.uint8)
    joined = "".join(s.upper() for s in sequences).encode("ascii", errors="replace")
    return np.frombuffer(joined, dtype=np.uint8).reshape(len(sequences), -1)


def p_distance_matrix(sequences: Sequence[str]) -> np.ndarray:
    """
    Pairwise p-distances between aligned sequences.

    Args:
        sequences: Aligned sequences of equal length.

    Returns:
        Symmetric (n, n) float matrix. Pairs without any comparable site
        are NaN; the diagonal is zero.
    """
    arr = encode_sequences(sequences)
    n = arr.shape[0]
    result = np.zeros((n, n), dtype=float)
    if n < 2:
        return result

    valid = ~np.isin(arr, _MISSING_CODES)
    for i in range(n - 1):
        both = valid[i] & valid[i + 1 :]
        compared = both.sum(axis=1)
        differing = ((arr[i] != arr[i + 1 :]) & both).sum(axis=1)
        with np.errstate(divide="ignore", invalid="ignore"):
            row = np.where(compared > 0, differing / compared, np.nan)
        result[i, i + 1 :] = row
        result[i + 1 :, i] = row
    return result


def mean_pairwise_distance(cluster: AlignmentCluster) -> float:
    """
    Mean p-distance over all sequence pairs of a cluster.

    Returns 0.0 for clusters with fewer than two sequences or without any
    comparable pair.
    """
    if len(cluster.sequences) < 2:
        return 0.0
    matrix = p_distance_matrix([s.sequence for s in cluster.sequences])
    upper = matrix[np.triu_indices_from(matrix, k=1)]
    if np.all(np.isnan(upper)):
        return 0.0
    return float(np.nanmean(upper))


@dataclass(frozen=True)
class DistanceMatrix:
    """Labelled symmetric distance matrix between taxa."""

    labels: tuple[str, ...]
    values: np.ndarray

    def __len__(self) -> int:
        return len(self.labels)

    def get(self, a: str, b: str) -> float:
        return float(self.values[self.labels.index(a), self.labels.index(b)])

    def pairs(self) -> list[tuple[str, str, float]]:
        """All (a, b, distance) pairs with a defined distance, a before b."""
        result = []
        for i in range(len(self.labels)):
            for j in range(i + 1, len(self.labels)):
                value = self.values[i, j]
                if not np.isnan(value):
                    result.append((self.labels[i], self.labels[j], float(value)))
        return result

    def mean(self) -> float:
        pairs = self.pairs()
        return float(np.mean([d for _, _, d in pairs])) if pairs else 0.0

    def farthest_pair(self) -> tuple[str, str] | None:
        """The most distant pair; ties go to the lexically smallest pair."""
        pairs = self.pairs()
        if not pairs:
            return None
        a, b, _ = min(pairs, key=lambda p: (-p[2], tuple(sorted((p[0], p[1])))))
        return tuple(sorted((a, b)))  # type: ignore[return-value]


def taxon_distance_matrix(
    cluster: AlignmentCluster,
    taxa: Iterable[str],
) -> DistanceMatrix:
    """
    Average p-distance between taxa of a cluster.

    When a taxon has several sequences, the distance between two taxa is
    the mean over all their sequence pairs. Taxa absent from the cluster
    are left out of the matrix.
    """
    present = [t for t in dict.fromkeys(taxa) if cluster.sequences_for(t)]
    seqs = [s for t in present for s in cluster.sequences_for(t)]
    owners = [s.taxon_id for s in seqs]
    full = p_distance_matrix([s.sequence for s in seqs])

    n = len(present)
    values = np.zeros((n, n), dtype=float)
    index = {t: [k for k, o in enumerate(owners) if o == t] for t in present}
    for i in range(n):
        for j in range(i + 1, n):
            block = full[np.ix_(index[present[i]], index[present[j]])]
            value = float(np.nanmean(block)) if not np.all(np.isnan(block)) else np.nan
            values[i, j] = values[j, i] = value
    return DistanceMatrix(labels=tuple(present), values=values)
