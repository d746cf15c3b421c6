"""
Wrappers for the external phylogenetics binaries.

Provides Python interfaces to the tree search engines (RAxML, ExaML,
ExaBayes, PhyML), to treePL for dating and to TreeAnnotator for
summarising tree samples.
"""

from supersmart.external.base import (
    ExternalTool,
    MPITool,
    ToolExecutionError,
    ToolNotFoundError,
    ToolResult,
    ToolTimeoutError,
    UnsafePathError,
)
from supersmart.external.exabayes import ExaBayes
from supersmart.external.examl import ExaML, ExaMLParser
from supersmart.external.phyml import PhyML
from supersmart.external.raxml import RAxML
from supersmart.external.treeannotator import TreeAnnotator
from supersmart.external.treepl import TreePL

__all__ = [
    "ExaBayes",
    "ExaML",
    "ExaMLParser",
    "ExternalTool",
    "MPITool",
    "PhyML",
    "RAxML",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolResult",
    "ToolTimeoutError",
    "TreeAnnotator",
    "TreePL",
    "UnsafePathError",
]
