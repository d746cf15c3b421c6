"""
Shared constants for the supersmart pipeline.

Default file names match the names each stage looks for in the working
directory, so that stages can be chained without passing paths.
"""

from __future__ import annotations

import re

# =============================================================================
# Sequence data
# =============================================================================

# FASTA deflines carry the NCBI taxon id, e.g. ">gi|1234|seed_gi|99|taxon|9606"
TAXON_DEFLINE_PATTERN = re.compile(r"taxon\|(\d+)")

# Characters that carry no information in an aligned column
MISSING_CHARS = frozenset("-?Nn")

# Padding used for taxa missing from a marker in a supermatrix
MISSING_DATA_CHAR = "?"

# Minimum number of distinct taxa needed for a meaningful distance or tree
MIN_TAXA_FOR_TREE = 3

# =============================================================================
# Taxon name filters (taxize)
# =============================================================================

EXCLUDED_NAME_KEYWORDS = ("unidentified", "environmental sample", "environmental_sample")

# =============================================================================
# Default stage file names
# =============================================================================

DEFAULT_TAXA_FILE = "species.tsv"
DEFAULT_CLASSIFICATION_TREE = "classification-tree.dnd"
DEFAULT_ALIGNMENT_LIST = "merged.txt"
DEFAULT_SUPERMATRIX = "supermatrix.phy"
DEFAULT_BACKBONE_MARKERS = "markers-backbone.tsv"
DEFAULT_BACKBONE_TREE = "backbone.dnd"
DEFAULT_REROOTED_TREE = "backbone-rerooted.dnd"
DEFAULT_CHRONOGRAM = "chronogram.dnd"
DEFAULT_CALIBRATION_TABLE = "calibration-table.tsv"
DEFAULT_CONSENSUS_TREE = "consensus.nex"
DEFAULT_CLADE_MARKERS = "markers-clades.tsv"
DEFAULT_FINAL_TREE = "final.dnd"

CLADE_DIR_PATTERN = re.compile(r"^clade(\d+)$")
CLADE_MANIFEST = "clade.yaml"
