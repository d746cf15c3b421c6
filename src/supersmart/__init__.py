"""
Supersmart: phylogenetic inference of large trees.

Builds a dated backbone tree over exemplar species, decomposes it into
clades, infers a tree per clade and grafts the clade trees back onto the
backbone.
"""

__version__ = "0.1.0"
__author__ = "Supersmart Team"

from supersmart.core.exceptions import SupersmartError
from supersmart.models.config import PipelineConfig, load_config

__all__ = [
    "PipelineConfig",
    "SupersmartError",
    "__version__",
    "load_config",
]
