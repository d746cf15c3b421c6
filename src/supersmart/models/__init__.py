"""Data models for the supersmart pipeline."""

from supersmart.models.alignment import AlignedSequence, AlignmentCluster, ClusterStats
from supersmart.models.calibration import (
    CalibrationPoint,
    CalibrationTable,
    FossilRecord,
    read_fossil_table,
)
from supersmart.models.config import PipelineConfig, load_config
from supersmart.models.taxonomy import ClassificationTree, Rank, TaxaTable, TaxonNode

__all__ = [
    "AlignedSequence",
    "AlignmentCluster",
    "CalibrationPoint",
    "CalibrationTable",
    "ClassificationTree",
    "ClusterStats",
    "FossilRecord",
    "PipelineConfig",
    "Rank",
    "TaxaTable",
    "TaxonNode",
    "load_config",
    "read_fossil_table",
]
