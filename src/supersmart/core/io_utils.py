"""
I/O utilities shared by the pipeline stages.

Provides TSV serialization of polars DataFrames, input validation for
required stage inputs and atomic (temp-file-then-rename) writes so that a
failing stage never leaves a half-written output behind.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

import polars as pl

from supersmart.core.exceptions import EmptyInputFileError, MissingInputFileError


def require_input(path: Path, what: str = "input file") -> Path:
    """
    Check that a required input exists and is not empty.

    Raises:
        MissingInputFileError: If the path does not exist.
        EmptyInputFileError: If the file has zero size.
    """
    if not path.exists():
        raise MissingInputFileError(path, what)
    if path.is_file() and path.stat().st_size == 0:
        raise EmptyInputFileError(path, what)
    return path


@contextmanager
def atomic_write(path: Path, mode: str = "w") -> Generator[IO, None, None]:
    """
    Open a temporary file next to ``path`` and move it into place on success.

    If the body raises, the temporary file is removed and ``path`` is left
    untouched.

    Example:
        >>> with atomic_write(Path("tree.dnd")) as handle:
        ...     handle.write("(A,B);\\n")
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, mode) as handle:
            yield handle
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def write_tsv(df: pl.DataFrame, path: Path) -> None:
    """Write a DataFrame as tab-separated text, atomically."""
    with atomic_write(path) as handle:
        handle.write(df.write_csv(separator="\t"))


def read_tsv(path: Path, *, what: str = "table") -> pl.DataFrame:
    """Read a tab-separated table with every column as text."""
    require_input(path, what)
    return pl.read_csv(path, separator="\t", infer_schema_length=0, null_values=["NA", ""])
