"""
Backbone and clade decomposition.

Selects backbone exemplars and their markers, concatenates supermatrices,
and partitions the calibrated backbone into clades with their own markers.
"""

from supersmart.core.decomposition.clade_matrix import CladeMatrix, merge_clade
from supersmart.core.decomposition.clades import (
    Clade,
    CladeMarker,
    CladeSelection,
    clade_directories,
    decompose_backbone,
    read_manifest,
    select_clades,
    write_clade,
    write_clade_markers,
)
from supersmart.core.decomposition.exemplars import BackboneSelection, select_backbone
from supersmart.core.decomposition.supermatrix import (
    Supermatrix,
    concatenate_clusters,
    phylip_dimensions,
    write_markers_table,
    write_matrix,
)

__all__ = [
    "BackboneSelection",
    "Clade",
    "CladeMarker",
    "CladeMatrix",
    "CladeSelection",
    "Supermatrix",
    "clade_directories",
    "concatenate_clusters",
    "decompose_backbone",
    "merge_clade",
    "phylip_dimensions",
    "read_manifest",
    "select_backbone",
    "select_clades",
    "write_clade",
    "write_clade_markers",
    "write_markers_table",
    "write_matrix",
]
