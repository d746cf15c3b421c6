"""
Fossil records, calibration points and the calibration table.

A calibration point dates the MRCA of a set of terminal taxa. The table
groups points by their sorted taxon set, keeps the oldest maximum age for
each group and serializes to the ``mrca/min/max`` statements of a treePL
configuration file.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Literal, Self

import polars as pl

from supersmart.core.exceptions import MalformedInputError
from supersmart.core.io_utils import read_tsv, write_tsv

logger = logging.getLogger(__name__)

_LABEL_PREFIX = re.compile(r"^ct\d+_")

FOSSIL_COLUMNS = {
    "nfos": "nfos",
    "fossilname": "name",
    "calibratedtaxon": "calibrated_taxa",
    "crownvsstem": "crown_vs_stem",
    "minage": "min_age",
    "maxage": "max_age",
    "bestpracticescore": "best_practice_score",
}


def _to_float(value: object) -> float | None:
    if value is None or value == "":
        return None
    return float(value)  # type: ignore[arg-type]


@dataclass(frozen=True)
class FossilRecord:
    """One row of a fossil table.

    Attributes:
        nfos: Fossil number, used to label the calibrated node.
        name: Fossil name.
        calibrated_taxa: Names or NCBI ids of the taxa the fossil belongs to.
        crown_vs_stem: ``crown`` dates the MRCA, ``stem`` its parent.
        min_age: Minimum age (Ma).
        max_age: Maximum age (Ma).
        best_practice_score: Quality score of the fossil.
    """

    nfos: str
    name: str
    calibrated_taxa: tuple[str, ...]
    crown_vs_stem: Literal["crown", "stem"] = "crown"
    min_age: float | None = None
    max_age: float | None = None
    best_practice_score: float = 0.0

    @property
    def is_stem(self) -> bool:
        return self.crown_vs_stem == "stem"


def read_fossil_table(path: Path) -> list[FossilRecord]:
    """
    Read a tab-separated fossil table.

    Header names are matched case-insensitively, ignoring spaces and
    underscores (``CalibratedTaxon``, ``calibrated_taxon``). The calibrated
    taxon column may list several comma-separated taxa.

    Raises:
        MissingInputFileError: If the file does not exist.
        MalformedInputError: If a required column is missing or an age is
            not a number.
    """
    df = read_tsv(path, what="fossil table")
    rename = {}
    for column in df.columns:
        key = re.sub(r"[\s_]", "", column).lower()
        if key in FOSSIL_COLUMNS:
            rename[column] = FOSSIL_COLUMNS[key]
    df = df.rename(rename)

    missing = {"nfos", "calibrated_taxa"} - set(df.columns)
    if missing:
        raise MalformedInputError(path, f"missing column(s) {', '.join(sorted(missing))}")

    records = []
    for row in df.iter_rows(named=True):
        taxa = tuple(t.strip() for t in (row.get("calibrated_taxa") or "").split(",") if t.strip())
        try:
            records.append(
                FossilRecord(
                    nfos=str(row["nfos"]),
                    name=row.get("name") or str(row["nfos"]),
                    calibrated_taxa=taxa,
                    crown_vs_stem="stem" if (row.get("crown_vs_stem") or "").lower() == "stem" else "crown",
                    min_age=_to_float(row.get("min_age")),
                    max_age=_to_float(row.get("max_age")),
                    best_practice_score=_to_float(row.get("best_practice_score")) or 0.0,
                )
            )
        except ValueError as e:
            raise MalformedInputError(path, f"fossil {row['nfos']}: {e}") from e
    return records


@dataclass(frozen=True)
class CalibrationPoint:
    """Age constraint on the MRCA of a set of terminal taxa."""

    nfos: str
    name: str
    taxa: tuple[str, ...]
    min_age: float | None = None
    max_age: float | None = None

    @property
    def key(self) -> tuple[str, ...]:
        """Sorted taxon set: points with equal keys date the same node."""
        return tuple(sorted(set(self.taxa)))

    @property
    def label(self) -> str:
        return f"NFos{self.nfos}"


@dataclass(frozen=True)
class CalibrationTable:
    """Ordered collection of calibration points.

    Every transformation returns a new table.

    Example:
        >>> table = CalibrationTable().add_row(nfos="1", name="f", taxa=("1", "2"), min_age=5)
        >>> print(table.to_treepl())
        mrca = NFos1 1 2
        min = NFos1 5
    """

    rows: tuple[CalibrationPoint, ...] = ()

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[CalibrationPoint]:
        return iter(self.rows)

    def add_row(self, **kwargs: object) -> Self:
        point = CalibrationPoint(**kwargs)  # type: ignore[arg-type]
        return replace(self, rows=(*self.rows, point))

    def extend(self, points: Iterable[CalibrationPoint]) -> Self:
        return replace(self, rows=(*self.rows, *points))

    def deduplicate(self) -> Self:
        """
        Keep one point per taxon set: the one with the oldest ``max_age``.

        Groups keep the position of their first member. Ties keep the
        earlier row. Applying this twice gives the same table as once.
        """
        chosen: dict[tuple[str, ...], CalibrationPoint] = {}
        for point in self.rows:
            current = chosen.get(point.key)
            if current is None:
                chosen[point.key] = point
                continue
            logger.warning(
                "Fossils %s and %s calibrate the same node; keeping the older maximum age",
                current.nfos, point.nfos,
            )
            if _older(point, current):
                chosen[point.key] = point
        return replace(self, rows=tuple(chosen.values()))

    def remove_orphan_taxa(self) -> Self:
        """Drop points that constrain fewer than two taxa."""
        kept = tuple(p for p in self.rows if len(p.key) > 1)
        if len(kept) < len(self.rows):
            logger.info("Removed %d single-taxon calibration points", len(self.rows) - len(kept))
        return replace(self, rows=kept)

    def sort_by_min_age(self) -> Self:
        """
        Stable ascending sort by ``min_age`` with ``ct<i>_`` name labels.

        treePL is sensitive to the order of the calibrated nodes; the
        prefix makes the names sort in the same order as the rows.
        """
        ordered = sorted(self.rows, key=lambda p: p.min_age or 0.0)
        labelled = tuple(
            replace(p, name=f"ct{i}_{_LABEL_PREFIX.sub('', p.name)}")
            for i, p in enumerate(ordered)
        )
        return replace(self, rows=labelled)

    def to_treepl(self) -> str:
        """The ``mrca``, ``max`` and ``min`` statements for treePL."""
        lines = []
        for point in self.rows:
            lines.append(f"mrca = {point.label} {' '.join(point.taxa)}")
            if point.max_age:
                lines.append(f"max = {point.label} {point.max_age:g}")
            if point.min_age:
                lines.append(f"min = {point.label} {point.min_age:g}")
        return "\n".join(lines) + ("\n" if lines else "")

    def to_dataframe(self) -> pl.DataFrame:
        return pl.DataFrame(
            {
                "name": [p.name for p in self.rows],
                "nfos": [p.nfos for p in self.rows],
                "min_age": [p.min_age for p in self.rows],
                "max_age": [p.max_age for p in self.rows],
                "taxa": [",".join(p.taxa) for p in self.rows],
            },
            schema={
                "name": pl.Utf8,
                "nfos": pl.Utf8,
                "min_age": pl.Float64,
                "max_age": pl.Float64,
                "taxa": pl.Utf8,
            },
        )

    def to_tsv(self, path: Path) -> None:
        write_tsv(self.to_dataframe(), path)

    @classmethod
    def from_tsv(cls, path: Path) -> Self:
        df = read_tsv(path, what="calibration table")
        rows = tuple(
            CalibrationPoint(
                nfos=row["nfos"],
                name=row["name"] or row["nfos"],
                taxa=tuple(t for t in (row["taxa"] or "").split(",") if t),
                min_age=_to_float(row["min_age"]),
                max_age=_to_float(row["max_age"]),
            )
            for row in df.iter_rows(named=True)
        )
        return cls(rows=rows)


def _older(candidate: CalibrationPoint, current: CalibrationPoint) -> bool:
    if candidate.max_age is None:
        return False
    return current.max_age is None or candidate.max_age > current.max_age
