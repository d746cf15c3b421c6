"""
Pydantic configuration model for the supersmart pipeline.

Holds the thresholds of the backbone and clade decomposition passes, the
inference engine settings and the pipeline-wide random seed. Configuration
is layered: model defaults, then a YAML file, then ``SUPERSMART_*``
environment variables, then explicit overrides from the command line.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal, Self

from pydantic import BaseModel, Field, ValidationError, model_validator

from supersmart.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "SUPERSMART_"


class PipelineConfig(BaseModel):
    """
    Run configuration shared by every pipeline stage.

    Keys are case-insensitive when read from YAML or the environment, so
    ``BACKBONE_MAX_DISTANCE: 0.2`` and ``backbone_max_distance: 0.2`` are
    equivalent. Unknown keys are reported and ignored so that configuration
    files written for newer versions still load.

    Backbone thresholds (exemplar selection):
        - backbone_max_distance: clusters with a higher mean pairwise
          distance are considered saturated and are not used
        - backbone_min_coverage: minimum number of clusters a taxon must
          take part in to be an exemplar candidate
        - backbone_max_coverage: marker selection adds no cluster whose
          exemplars all already have this many markers

    Clade thresholds (decomposition):
        - clade_max_distance: maximum mean distance of a clade alignment
        - clade_min_density: minimum fraction of clade taxa in an alignment
        - clade_taxon_min_markers: taxa with fewer markers are left out of
          the clade matrix
        - clade_max_markers: maximum number of markers per clade
    """

    # Backbone exemplar selection
    backbone_max_distance: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Maximum mean pairwise p-distance of a backbone cluster",
    )
    backbone_min_coverage: int = Field(
        default=3,
        ge=1,
        description="Minimum number of clusters per exemplar candidate",
    )
    backbone_max_coverage: int = Field(
        default=5,
        ge=1,
        description="Marker selection stops adding clusters for saturated exemplars",
    )
    backbone_exemplars_per_genus: int = Field(
        default=2,
        ge=1,
        description="Maximum number of backbone exemplars per genus",
    )

    # Clade decomposition
    clade_max_distance: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Maximum mean pairwise p-distance of a clade alignment",
    )
    clade_min_density: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Minimum fraction of clade taxa present in a clade alignment",
    )
    clade_taxon_min_markers: int = Field(
        default=2,
        ge=1,
        description="Minimum number of markers for a taxon to enter a clade matrix",
    )
    clade_max_markers: int = Field(
        default=10,
        ge=1,
        description="Maximum number of markers per clade",
    )
    clade_max_outgroup: int = Field(
        default=4,
        ge=0,
        description="Maximum number of outgroup taxa added to a clade",
    )

    # Inference
    inference_tool: str = Field(
        default="raxml",
        description="Inference engine tag: raxml, examl, exabayes or phyml",
    )
    bootstrap: int = Field(default=1, ge=1, description="Number of bootstrap replicates")
    random_seed: int = Field(default=1, ge=0, description="Seed threaded into every engine")
    nodes: int = Field(default=1, ge=1, description="Threads or MPI processes per engine run")
    workers: int = Field(default=1, ge=1, description="Size of the worker pool")
    worker_backend: Literal["thread", "process"] = Field(
        default="thread",
        description="Worker pool implementation",
    )

    mpirun_bin: str = Field(default="mpirun")
    raxml_bin: str = Field(default="raxmlHPC")
    raxml_model: str = Field(default="GTRGAMMA")
    raxml_runs: int = Field(default=1, ge=1)
    examl_bin: str = Field(default="examl")
    examl_parser_bin: str = Field(default="parse-examl")
    examl_model: str = Field(default="GAMMA")
    exabayes_bin: str = Field(default="exabayes")
    exabayes_numruns: int = Field(default=4, ge=1)
    exabayes_numchains: int = Field(default=2, ge=1)
    exabayes_numgens: int = Field(default=100_000, ge=1)
    exabayes_samplefreq: int = Field(default=100, ge=1)
    phyml_bin: str = Field(default="phyml")
    phyml_model: str = Field(default="GTR")

    # Consensus and calibration
    burnin: float = Field(default=0.1, ge=0.0, lt=1.0, description="Burn-in fraction")
    treeannotator_bin: str = Field(default="treeannotator")
    treepl_bin: str = Field(default="treePL")
    treepl_smooth: float = Field(default=100.0, gt=0.0)
    fossil_best_practice_cutoff: float = Field(default=0.0, ge=0.0)

    @model_validator(mode="after")
    def validate_coverage_range(self) -> Self:
        """Minimum coverage must not exceed maximum coverage."""
        if self.backbone_min_coverage > self.backbone_max_coverage:
            msg = (
                f"backbone_min_coverage ({self.backbone_min_coverage}) must be "
                f"<= backbone_max_coverage ({self.backbone_max_coverage})"
            )
            raise ValueError(msg)
        return self

    model_config = {"frozen": True}

    @classmethod
    def known_keys(cls) -> frozenset[str]:
        return frozenset(cls.model_fields)

    @classmethod
    def _normalize(cls, raw: Mapping[str, Any], source: str) -> dict[str, Any]:
        """Lower-case keys and drop (with a warning) the ones we do not know."""
        known = cls.known_keys()
        values: dict[str, Any] = {}
        for key, value in raw.items():
            name = str(key).strip().lower()
            if name not in known:
                logger.warning("Ignoring unknown configuration key '%s' in %s", key, source)
                continue
            if value is None or value == "":
                continue
            values[name] = value
        return values

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source: str = "mapping") -> Self:
        """Build a configuration from a plain mapping of (case-insensitive) keys."""
        return cls(**cls._normalize(raw, source))

    @classmethod
    def from_yaml(cls, path: Path) -> Self:
        """
        Load configuration from a YAML file.

        Args:
            path: Path to a YAML mapping of configuration keys.

        Returns:
            PipelineConfig populated from the file merged with defaults.

        Raises:
            FileNotFoundError: If the file does not exist.
            ConfigurationError: If the YAML is not a mapping.
        """
        import yaml

        raw = yaml.safe_load(path.read_text())
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigurationError(
                message=f"YAML config must be a mapping, got {type(raw).__name__}",
                suggestion="Write the configuration as KEY: value pairs.",
            )
        return cls.from_mapping(raw, source=str(path))

    def with_environment(self, environ: Mapping[str, str] | None = None) -> Self:
        """
        Return a copy with ``SUPERSMART_*`` environment variables applied.

        Args:
            environ: Environment mapping (defaults to ``os.environ``).
        """
        environ = os.environ if environ is None else environ
        raw = {
            key[len(ENV_PREFIX):]: value
            for key, value in environ.items()
            if key.startswith(ENV_PREFIX)
        }
        if not raw:
            return self
        return self.with_overrides(**self._normalize(raw, source="environment"))

    def with_overrides(self, **overrides: Any) -> Self:
        """Return a validated copy with the given fields replaced (None is skipped)."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        if not updates:
            return self
        return self.__class__(**{**self.model_dump(), **updates})

    def get(self, key: str) -> Any:
        """
        Look up a value by its (case-insensitive) key.

        Unknown keys produce a warning and ``None`` rather than an error.
        """
        name = key.lower()
        if name not in self.known_keys():
            logger.warning("Unknown configuration key '%s' requested", key)
            return None
        return getattr(self, name)

    def to_yaml(self, path: Path) -> None:
        """Write the effective configuration to a YAML file."""
        path.write_text(self.to_yaml_str())

    def to_yaml_str(self) -> str:
        """Serialize the configuration to YAML with upper-case keys."""
        import yaml

        data = {key.upper(): value for key, value in self.model_dump().items()}
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


def load_config(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> PipelineConfig:
    """
    Assemble the run configuration from all sources.

    Args:
        path: Optional YAML configuration file.
        environ: Environment mapping (defaults to ``os.environ``).
        **overrides: Explicit values, e.g. from command-line options.

    Returns:
        Validated, frozen PipelineConfig.

    Raises:
        ConfigurationError: If any value fails validation.
    """
    try:
        config = PipelineConfig.from_yaml(path) if path is not None else PipelineConfig()
        return config.with_environment(environ).with_overrides(**overrides)
    except ValidationError as e:
        raise ConfigurationError(
            message=f"Invalid configuration: {e}",
            suggestion="Check the configuration file and SUPERSMART_* variables.",
        ) from e
