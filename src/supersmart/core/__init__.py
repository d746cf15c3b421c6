"""
Core pipeline components.

Taxonomy resolution, backbone and clade decomposition, tree inference and
the tree operations (rerooting, consensus, calibration, grafting) that
connect the pipeline stages.
"""
