"""
Taxonomic data models: ranks, the taxa table and the classification tree.

The taxa table is the TSV written by ``smrt taxize``: one row per resolved
name with a taxon identifier per rank. The classification tree is an
immutable in-memory hierarchy built from that table and is the source of
genus membership, rank-aware traversal and MRCA queries for the
decomposition passes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Self

import polars as pl

from supersmart.core.exceptions import EmptyInputFileError, MissingInputFileError

logger = logging.getLogger(__name__)


class Rank(str, Enum):
    """NCBI taxonomic ranks, ordered from most to least inclusive."""

    SUPERKINGDOM = "superkingdom"
    KINGDOM = "kingdom"
    SUBKINGDOM = "subkingdom"
    SUPERPHYLUM = "superphylum"
    PHYLUM = "phylum"
    SUBPHYLUM = "subphylum"
    SUPERCLASS = "superclass"
    CLASS = "class"
    SUBCLASS = "subclass"
    INFRACLASS = "infraclass"
    SUPERORDER = "superorder"
    ORDER = "order"
    SUBORDER = "suborder"
    INFRAORDER = "infraorder"
    PARVORDER = "parvorder"
    SUPERFAMILY = "superfamily"
    FAMILY = "family"
    SUBFAMILY = "subfamily"
    TRIBE = "tribe"
    SUBTRIBE = "subtribe"
    GENUS = "genus"
    SUBGENUS = "subgenus"
    SPECIES_GROUP = "species group"
    SPECIES_SUBGROUP = "species subgroup"
    SPECIES = "species"
    SUBSPECIES = "subspecies"
    VARIETAS = "varietas"
    FORMA = "forma"

    @property
    def level(self) -> int:
        """Position in the rank ladder (0 = most inclusive)."""
        return RANK_ORDER.index(self)

    @classmethod
    def parse(cls, value: str) -> Rank | None:
        """Parse a rank name case-insensitively, returning None if unknown."""
        try:
            return cls(value.strip().lower().replace("_", " "))
        except ValueError:
            return None


RANK_ORDER: tuple[Rank, ...] = tuple(Rank)

# Ranks that denote terminal taxa (tips of the backbone and clade trees)
SPECIES_RANKS: tuple[Rank, ...] = (Rank.SPECIES, Rank.SUBSPECIES, Rank.VARIETAS, Rank.FORMA)

_NAME_SUFFIX = "_name"


def taxon_sort_key(taxon_id: str) -> tuple[int, int, str]:
    """Order numeric identifiers numerically, before any non-numeric ones."""
    if taxon_id.isdigit():
        return (0, int(taxon_id), taxon_id)
    return (1, 0, taxon_id)


# =============================================================================
# Taxa table
# =============================================================================


@dataclass(frozen=True)
class TaxaTable:
    """Resolved taxa with their identifiers at every known rank.

    Attributes:
        records: One mapping per row: ``name`` plus a taxon identifier (or
            None) for each rank column, and optional ``<rank>_name`` columns
            holding display names of higher taxa.
        ranks: Rank columns present in the table, most inclusive first.
    """

    records: tuple[dict[str, str | None], ...]
    ranks: tuple[Rank, ...]

    @classmethod
    def from_records(cls, records: Iterable[dict[str, str | None]]) -> Self:
        rows = tuple(dict(r) for r in records)
        present = {key for row in rows for key in row}
        ranks = tuple(r for r in RANK_ORDER if r.value in present)
        return cls(records=rows, ranks=ranks)

    @classmethod
    def from_tsv(cls, path: Path) -> Self:
        """
        Load a taxa table from TSV.

        Raises:
            MissingInputFileError: If the file does not exist.
            EmptyInputFileError: If the file has no rows.
        """
        if not path.exists():
            raise MissingInputFileError(path, "taxa table")
        if path.stat().st_size == 0:
            raise EmptyInputFileError(path, "taxa table")

        df = pl.read_csv(
            path,
            separator="\t",
            infer_schema_length=0,
            null_values=["NA", ""],
        )
        if df.height == 0:
            raise EmptyInputFileError(path, "taxa table")

        return cls.from_records(df.iter_rows(named=True))

    def to_tsv(self, path: Path) -> None:
        """Write the table as TSV with ``NA`` for unknown ranks."""
        columns = ["name", *(r.value for r in self.ranks)]
        extra = sorted(
            {k for row in self.records for k in row if k.endswith(_NAME_SUFFIX)}
        )
        columns.extend(extra)
        df = pl.DataFrame(
            [{c: row.get(c) for c in columns} for row in self.records],
            schema=dict.fromkeys(columns, pl.Utf8),
        )
        df.write_csv(path, separator="\t", null_value="NA")

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[dict[str, str | None]]:
        return iter(self.records)

    @staticmethod
    def terminal_id(record: dict[str, str | None]) -> str | None:
        """Identifier of the lowest species-level rank filled in for a row."""
        for rank in reversed(SPECIES_RANKS):
            value = record.get(rank.value)
            if value:
                return value
        return None

    def species(self) -> list[str]:
        """All terminal taxon identifiers, unique, in table order."""
        seen: dict[str, None] = {}
        for row in self.records:
            tid = self.terminal_id(row)
            if tid is not None:
                seen.setdefault(tid, None)
        return list(seen)

    def record_for(self, taxon_id: str) -> dict[str, str | None] | None:
        """First row whose terminal identifier is ``taxon_id``."""
        for row in self.records:
            if self.terminal_id(row) == taxon_id:
                return row
        return None

    def rank_of(self, taxon_id: str, rank: Rank) -> str | None:
        """Identifier at ``rank`` for the terminal taxon ``taxon_id``."""
        row = self.record_for(taxon_id)
        return row.get(rank.value) if row else None

    def genus_of(self, taxon_id: str) -> str | None:
        return self.rank_of(taxon_id, Rank.GENUS)

    def distinct(self, rank: Rank) -> list[str]:
        """Sorted distinct identifiers at ``rank``."""
        return sorted({row[rank.value] for row in self.records if row.get(rank.value)})

    def species_for(self, taxa: Iterable[str]) -> list[str]:
        """Terminal taxa lying below any of the given (higher or terminal) taxa."""
        wanted = set(taxa)
        result: dict[str, None] = {}
        for row in self.records:
            tid = self.terminal_id(row)
            if tid is None:
                continue
            if tid in wanted or any(row.get(r.value) in wanted for r in self.ranks):
                result.setdefault(tid, None)
        return list(result)

    def species_by_genus(self) -> dict[str, list[str]]:
        """Terminal taxa grouped by genus identifier (rows without a genus are skipped)."""
        groups: dict[str, list[str]] = {}
        for row in self.records:
            genus = row.get(Rank.GENUS.value)
            tid = self.terminal_id(row)
            if genus and tid and tid not in groups.setdefault(genus, []):
                groups[genus].append(tid)
        return groups

    def highest_informative_rank(self) -> Rank | None:
        """Most inclusive rank at which the table holds more than one taxon."""
        for rank in self.ranks:
            if len(self.distinct(rank)) > 1:
                return rank
        return None

    def informative_ranks(self, lowest: Rank = Rank.GENUS) -> list[Rank]:
        """Ranks from the highest informative one down to ``lowest``."""
        top = self.highest_informative_rank()
        if top is None:
            return []
        return [r for r in self.ranks if top.level <= r.level <= lowest.level]

    def lookup_name(self, name: str) -> str | None:
        """
        Resolve a display name to a taxon identifier.

        Species names are matched against the ``name`` column, higher taxa
        against the ``<rank>_name`` columns. Underscores and spaces are
        interchangeable and matching is case-insensitive.
        """
        wanted = _normalize_name(name)
        for row in self.records:
            if row.get("name") and _normalize_name(row["name"]) == wanted:
                return self.terminal_id(row)
        for row in self.records:
            for rank in self.ranks:
                label = row.get(rank.value + _NAME_SUFFIX)
                if label and _normalize_name(label) == wanted:
                    return row.get(rank.value)
        return None

    def display_name(self, taxon_id: str) -> str:
        """Human-readable name for a taxon identifier (falls back to the id)."""
        for row in self.records:
            if self.terminal_id(row) == taxon_id and row.get("name"):
                return str(row["name"])
            for rank in self.ranks:
                if row.get(rank.value) == taxon_id and row.get(rank.value + _NAME_SUFFIX):
                    return str(row[rank.value + _NAME_SUFFIX])
        return taxon_id


def _normalize_name(name: str) -> str:
    return " ".join(name.replace("_", " ").split()).lower()


# =============================================================================
# Classification tree
# =============================================================================


@dataclass(frozen=True)
class TaxonNode:
    """Read-only node of the classification tree."""

    taxon_id: str
    rank: Rank
    parent_id: str | None = None
    children: tuple[str, ...] = ()
    name: str = ""

    @property
    def is_leaf(self) -> bool:
        return not self.children


@dataclass(frozen=True)
class ClassificationTree:
    """Immutable taxonomic hierarchy with parent/child navigation.

    Nodes are keyed by taxon identifier. A taxon that appears under two
    different parents keeps the first parent seen; later conflicting
    placements are ignored, which collapses inconsistent ranks into
    polytomies instead of failing.
    """

    nodes: dict[str, TaxonNode] = field(default_factory=dict)
    roots: tuple[str, ...] = ()

    @classmethod
    def from_taxa_table(cls, table: TaxaTable) -> Self:
        parents: dict[str, str | None] = {}
        ranks: dict[str, Rank] = {}
        names: dict[str, str] = {}
        children: dict[str, list[str]] = {}

        for row in table.records:
            path: list[tuple[Rank, str]] = []
            for rank in table.ranks:
                value = row.get(rank.value)
                if value and all(value != seen for _, seen in path):
                    path.append((rank, value))
            if not path:
                continue

            previous: str | None = None
            for rank, taxon in path:
                if taxon not in parents:
                    parents[taxon] = previous
                    ranks[taxon] = rank
                    children.setdefault(taxon, [])
                    if previous is not None:
                        children[previous].append(taxon)
                elif parents[taxon] != previous and previous is not None:
                    logger.debug(
                        "Taxon %s already placed under %s, ignoring placement under %s",
                        taxon, parents[taxon], previous,
                    )
                label = row.get(rank.value + _NAME_SUFFIX)
                if label:
                    names.setdefault(taxon, str(label))
                previous = taxon

            terminal = path[-1][1]
            if row.get("name"):
                names.setdefault(terminal, str(row["name"]))

        nodes = {
            tid: TaxonNode(
                taxon_id=tid,
                rank=ranks[tid],
                parent_id=parents[tid],
                children=tuple(sorted(children[tid])),
                name=names.get(tid, tid),
            )
            for tid in parents
        }
        roots = tuple(sorted(tid for tid, p in parents.items() if p is None))
        return cls(nodes=nodes, roots=roots)

    def __contains__(self, taxon_id: object) -> bool:
        return taxon_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def node(self, taxon_id: str) -> TaxonNode:
        return self.nodes[taxon_id]

    def parent(self, taxon_id: str) -> TaxonNode | None:
        parent_id = self.nodes[taxon_id].parent_id
        return self.nodes[parent_id] if parent_id is not None else None

    def children(self, taxon_id: str) -> list[TaxonNode]:
        return [self.nodes[c] for c in self.nodes[taxon_id].children]

    def ancestors(self, taxon_id: str) -> list[str]:
        """Identifiers from the parent of ``taxon_id`` up to its root."""
        result = []
        current = self.nodes[taxon_id].parent_id
        while current is not None:
            result.append(current)
            current = self.nodes[current].parent_id
        return result

    def lineage(self, taxon_id: str) -> list[str]:
        """Identifiers from the root down to ``taxon_id`` inclusive."""
        return [*reversed(self.ancestors(taxon_id)), taxon_id]

    def descendants(self, taxon_id: str) -> list[str]:
        """All identifiers below ``taxon_id`` in depth-first order."""
        result: list[str] = []
        stack = list(reversed(self.nodes[taxon_id].children))
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(reversed(self.nodes[current].children))
        return result

    def leaves_under(self, taxon_id: str) -> list[str]:
        """Leaf identifiers in the subtree rooted at ``taxon_id``."""
        if self.nodes[taxon_id].is_leaf:
            return [taxon_id]
        return [d for d in self.descendants(taxon_id) if self.nodes[d].is_leaf]

    def ancestor_at_rank(self, taxon_id: str, rank: Rank) -> str | None:
        """The taxon at ``rank`` on the lineage of ``taxon_id``, if any."""
        for tid in self.lineage(taxon_id):
            if self.nodes[tid].rank == rank:
                return tid
        return None

    def iter_rank(self, rank: Rank) -> Iterator[TaxonNode]:
        """Nodes of the given rank in identifier order."""
        for tid in sorted(self.nodes, key=taxon_sort_key):
            if self.nodes[tid].rank == rank:
                yield self.nodes[tid]

    def mrca(self, taxa: Iterable[str]) -> str | None:
        """
        Most recent common ancestor of the given taxa.

        Unknown identifiers are ignored. Returns None when no taxon is known
        or when the taxa live in different root trees of the forest.
        """
        lineages = [self.lineage(t) for t in taxa if t in self.nodes]
        if not lineages:
            return None
        common: str | None = None
        for level in zip(*lineages, strict=False):
            if all(t == level[0] for t in level):
                common = level[0]
            else:
                break
        return common

    def sister_leaves(self, taxa: Iterable[str]) -> list[str]:
        """
        Leaves of the closest sister group of the given taxa.

        Walks up from the MRCA until a node with siblings is found and
        returns the leaves of those siblings. Returns an empty list when the
        MRCA is a root.
        """
        current = self.mrca(taxa)
        while current is not None:
            parent_id = self.nodes[current].parent_id
            if parent_id is None:
                logger.warning("Cannot determine sister taxa: ingroup MRCA is a root")
                return []
            siblings = [c for c in self.nodes[parent_id].children if c != current]
            if siblings:
                return [leaf for s in siblings for leaf in self.leaves_under(s)]
            current = parent_id
        return []

    def to_newick(self) -> str:
        """
        Serialize as Newick with taxon identifiers as labels.

        Unbranched interior nodes are kept, so every rank level appears as a
        labelled node. A forest is joined under an unlabelled root.
        """

        def render(taxon_id: str) -> str:
            node = self.nodes[taxon_id]
            if node.is_leaf:
                return taxon_id
            return "(" + ",".join(render(c) for c in node.children) + ")" + taxon_id

        if len(self.roots) == 1:
            return render(self.roots[0]) + ";"
        return "(" + ",".join(render(r) for r in self.roots) + ");"
