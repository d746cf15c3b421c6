"""Test data builders shared by the unit and integration tests."""

from __future__ import annotations

from pathlib import Path

from supersmart.models.alignment import AlignedSequence, AlignmentCluster

# species id -> (name, genus id, genus name, family id)
SPECIES = {
    "101": ("Alpha one", "11", "Alpha", "1"),
    "102": ("Alpha two", "11", "Alpha", "1"),
    "201": ("Beta one", "21", "Beta", "1"),
    "202": ("Beta two", "21", "Beta", "1"),
    "301": ("Gamma one", "31", "Gamma", "2"),
    "302": ("Gamma two", "31", "Gamma", "2"),
}

BASE = "ACGTACGTACGTACGTACGT"


def taxa_records(species: dict[str, tuple[str, str, str, str]] = SPECIES) -> list[dict[str, str | None]]:
    return [
        {
            "name": name,
            "order": "9",
            "family": family,
            "genus": genus,
            "species": sid,
            "genus_name": genus_name,
        }
        for sid, (name, genus, genus_name, family) in species.items()
    ]


def make_cluster(cluster_id: str, rows: dict[str, str]) -> AlignmentCluster:
    """Cluster with one sequence per taxon."""
    return AlignmentCluster(
        cluster_id=cluster_id,
        sequences=tuple(
            AlignedSequence(seq_id=f"gi|{i}|taxon|{taxon}", taxon_id=taxon, sequence=seq)
            for i, (taxon, seq) in enumerate(rows.items())
        ),
    )


def write_fasta(path: Path, rows: dict[str, str]) -> Path:
    with path.open("w") as handle:
        for i, (taxon, seq) in enumerate(rows.items()):
            handle.write(f">gi|{i}|taxon|{taxon}\n{seq}\n")
    return path


def variant(n: int) -> str:
    """``BASE`` with the first ``n`` sites mutated (p-distance n / 20 to BASE)."""
    swap = {"A": "C", "C": "G", "G": "T", "T": "A"}
    return "".join(swap[c] for c in BASE[:n]) + BASE[n:]
