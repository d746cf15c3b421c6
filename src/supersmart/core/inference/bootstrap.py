"""Column resampling of supermatrices for bootstrap replicates."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from supersmart.core.decomposition.supermatrix import Partition, Supermatrix, write_matrix
from supersmart.core.distances import encode_sequences
from supersmart.core.exceptions import MalformedInputError
from supersmart.core.io_utils import require_input

logger = logging.getLogger(__name__)


def read_phylip(path: Path) -> dict[str, str]:
    """
    Taxon to sequence mapping of a relaxed phylip matrix.

    Raises:
        MalformedInputError: If Biopython cannot parse the matrix.
    """
    from Bio import AlignIO

    require_input(path, "phylip matrix")
    try:
        alignment = AlignIO.read(path, "phylip-relaxed")
    except ValueError as e:
        raise MalformedInputError(path, str(e)) from e
    return {record.id: str(record.seq) for record in alignment}


def resample_columns(rows: dict[str, str], seed: int) -> dict[str, str]:
    """Draw as many columns as the matrix has, with replacement."""
    taxa = list(rows)
    matrix = encode_sequences([rows[t] for t in taxa])
    rng = np.random.default_rng(seed)
    columns = rng.integers(0, matrix.shape[1], size=matrix.shape[1])
    sampled = matrix[:, columns]
    return {t: sampled[i].tobytes().decode("ascii") for i, t in enumerate(taxa)}


def bootstrap_matrix(matrix: Path, outfile: Path, seed: int) -> Path:
    """Write a column-resampled copy of ``matrix`` to ``outfile``."""
    rows = resample_columns(read_phylip(matrix), seed)
    nchar = len(next(iter(rows.values()), ""))
    resampled = Supermatrix(rows=rows, partitions=(Partition("bootstrap", 1, nchar),))
    write_matrix(resampled, outfile, "phylip")
    logger.debug("Bootstrap matrix %s written with seed %d", outfile.name, seed)
    return outfile
