"""
Explicit run context passed to pipeline components.

Bundles the immutable configuration, the working directory, the taxonomy
lookup and a logger so that no component relies on process-wide state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path

from supersmart.core.parallel import WorkerPool
from supersmart.models.config import PipelineConfig
from supersmart.models.taxonomy import ClassificationTree, TaxaTable


@dataclass(frozen=True)
class RunContext:
    """Everything a stage needs besides its own inputs.

    Attributes:
        config: Frozen pipeline configuration.
        workdir: Directory where stage outputs and intermediates go.
        taxa: Taxa table, when the stage needs taxonomy lookups.
        logger: Logger for stage-level messages.
    """

    config: PipelineConfig = field(default_factory=PipelineConfig)
    workdir: Path = field(default_factory=Path.cwd)
    taxa: TaxaTable | None = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("supersmart"))

    def with_taxa(self, taxa: TaxaTable) -> RunContext:
        return replace(self, taxa=taxa)

    def require_taxa(self) -> TaxaTable:
        if self.taxa is None:
            msg = "This step needs a taxa table in the run context"
            raise ValueError(msg)
        return self.taxa

    def classification(self) -> ClassificationTree:
        return ClassificationTree.from_taxa_table(self.require_taxa())

    def pool(self) -> WorkerPool:
        return WorkerPool.from_config(self.config)

    def path(self, name: str | Path) -> Path:
        """Resolve ``name`` against the working directory unless absolute."""
        p = Path(name)
        return p if p.is_absolute() else self.workdir / p
