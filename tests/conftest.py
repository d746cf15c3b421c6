"""
Shared pytest fixtures for supersmart tests.

Provides a small taxonomy (six species in three genera), aligned FASTA
clusters over it, trees and a fake resolver for the external binaries.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest

from supersmart.core.phylogeny.tree_io import parse_newick
from supersmart.external.base import ExternalTool
from supersmart.models.config import PipelineConfig
from supersmart.models.taxonomy import TaxaTable
from tests.helpers import SPECIES, taxa_records, variant, write_fasta

# =============================================================================
# Taxonomy
# =============================================================================


@pytest.fixture
def taxa_table() -> TaxaTable:
    """Six species in three genera and two families of one order."""
    return TaxaTable.from_records(taxa_records())


@pytest.fixture
def taxa_file(tmp_path: Path, taxa_table: TaxaTable) -> Path:
    path = tmp_path / "species.tsv"
    taxa_table.to_tsv(path)
    return path


# =============================================================================
# Alignments
# =============================================================================


@pytest.fixture
def alignment_list(tmp_path: Path) -> Path:
    """
    Four low-divergence clusters over all six species, listed in merged.txt.

    Every species differs from the base sequence at one site at most, so
    every cluster passes the default distance thresholds.
    """
    directory = tmp_path / "alignments"
    directory.mkdir()
    paths = []
    for k in range(4):
        rows = {sid: variant((i + k) % 2) for i, sid in enumerate(SPECIES)}
        paths.append(write_fasta(directory / f"marker{k}.fa", rows))
    listing = tmp_path / "merged.txt"
    listing.write_text("\n".join(str(p) for p in paths) + "\n")
    return listing


# =============================================================================
# Trees and configuration
# =============================================================================


@pytest.fixture
def dated_backbone():
    """Ultrametric backbone over exemplars of the three genera, root age 10."""
    return parse_newick("((101:6,201:6):4,(301:3,302:3):7);")


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig()


# =============================================================================
# External tools
# =============================================================================


@pytest.fixture
def fake_tools() -> Generator[None, None, None]:
    """Pretend every external binary is installed under /usr/bin."""
    ExternalTool.set_executable_resolver(lambda name: f"/usr/bin/{name}")
    yield
    ExternalTool.reset_executable_resolver()


@pytest.fixture(autouse=True)
def _clear_tool_cache() -> Generator[None, None, None]:
    ExternalTool.clear_cache()
    yield
    ExternalTool.clear_cache()


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Generator[None, None, None]:
    """Undo the logging setup done by CLI commands."""
    yield
    logger = logging.getLogger("supersmart")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
