"""
Tree inference: engine adapters, bootstrap resampling and run drivers.
"""

from supersmart.core.inference.engines import (
    ENGINES,
    EngineRun,
    ExaBayesEngine,
    ExaMLEngine,
    InferenceEngine,
    PhyMLEngine,
    RAxMLEngine,
    get_engine,
)
from supersmart.core.inference.runner import CladeInference, infer_backbone, infer_clade, infer_clades

__all__ = [
    "ENGINES",
    "CladeInference",
    "EngineRun",
    "ExaBayesEngine",
    "ExaMLEngine",
    "InferenceEngine",
    "PhyMLEngine",
    "RAxMLEngine",
    "get_engine",
    "infer_backbone",
    "infer_clade",
    "infer_clades",
]
