"""
Name resolution: from a list of taxon names to the taxa table.

Each name is resolved independently over the worker pool. Names that
cannot be resolved are logged and left out. Higher taxa can optionally be
expanded to all of their descendants at a lower rank before the table is
built.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from supersmart.core.constants import EXCLUDED_NAME_KEYWORDS
from supersmart.core.io_utils import require_input
from supersmart.core.parallel import WorkerPool
from supersmart.models.taxonomy import SPECIES_RANKS, Rank, TaxaTable

if TYPE_CHECKING:
    from supersmart.clients.ncbi_taxonomy import NCBITaxonomyClient, TaxonRecord

logger = logging.getLogger(__name__)

_BINOMIAL = re.compile(r"^[A-Z][a-z\-]+ [a-z\-]+$")


def read_names(path: Path) -> list[str]:
    """Read taxon names, one per line, ignoring blanks and ``#`` comments."""
    require_input(path, "names file")
    names = []
    for line in path.read_text().splitlines():
        name = line.strip()
        if name and not name.startswith("#"):
            names.append(name)
    return list(dict.fromkeys(names))


def is_excluded_name(name: str) -> bool:
    lowered = name.lower()
    return any(keyword in lowered for keyword in EXCLUDED_NAME_KEYWORDS)


def is_binomial(name: str) -> bool:
    """True for a plain ``Genus species`` name."""
    return bool(_BINOMIAL.match(name.strip()))


def filter_records(
    records: Iterable[TaxonRecord],
    *,
    binomials_only: bool = False,
) -> list[TaxonRecord]:
    """Drop unidentified or environmental taxa and, optionally, non-binomials."""
    kept: dict[str, TaxonRecord] = {}
    for record in records:
        if is_excluded_name(record.name):
            logger.info("Skipping '%s': unidentified or environmental sample", record.name)
            continue
        rank = Rank.parse(record.rank)
        if binomials_only and rank in SPECIES_RANKS and not is_binomial(record.name):
            logger.info("Skipping '%s': not a binomial name", record.name)
            continue
        kept.setdefault(record.taxon_id, record)
    return list(kept.values())


def resolve_names(
    names: list[str],
    client: NCBITaxonomyClient,
    *,
    pool: WorkerPool | None = None,
    expand_rank: Rank | None = None,
    binomials_only: bool = False,
) -> TaxaTable:
    """
    Resolve names to a taxa table.

    Args:
        names: Scientific names.
        client: Taxonomy lookup service.
        pool: Worker pool for per-name lookups (sequential by default).
        expand_rank: When given, every resolved taxon above this rank is
            replaced by its descendants at the rank.
        binomials_only: Drop species whose name is not a binomial.
    """
    pool = pool or WorkerPool()
    wanted = [n for n in names if not is_excluded_name(n)]
    for name in set(names) - set(wanted):
        logger.info("Skipping '%s': unidentified or environmental sample", name)

    resolved = [r for r in pool.map(client.resolve, wanted, label="name lookup") if r is not None]
    logger.info("Resolved %d of %d names", len(resolved), len(wanted))

    if expand_rank is not None:
        resolved = _expand(resolved, client, expand_rank, pool)

    records = filter_records(resolved, binomials_only=binomials_only)
    return TaxaTable.from_records(r.to_record() for r in records)


def _expand(
    records: list[TaxonRecord],
    client: NCBITaxonomyClient,
    rank: Rank,
    pool: WorkerPool,
) -> list[TaxonRecord]:
    keep: list[TaxonRecord] = []
    to_expand: list[TaxonRecord] = []
    for record in records:
        parsed = Rank.parse(record.rank)
        if parsed is not None and parsed.level < rank.level:
            to_expand.append(record)
        else:
            keep.append(record)

    outcomes = pool.map_results(
        lambda r: client.expand(r.taxon_id, rank), to_expand, label="taxon expansion"
    )
    for outcome in outcomes:
        if outcome.ok and outcome.value:
            logger.info(
                "Expanded %s to %d taxa at rank %s",
                outcome.item.name, len(outcome.value), rank.value,
            )
            keep.extend(outcome.value)
        else:
            logger.warning("Could not expand %s, keeping it as is", outcome.item.name)
            keep.append(outcome.item)
    return keep
