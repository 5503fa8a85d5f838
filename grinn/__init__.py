"""
grinn: Active Subnetwork Extraction
===================================
Input normalization, maximum-weight connected subgraph extraction and
result assembly around the statistical core in `core`.
"""

from grinn.extraction import (
    Extractor,
    ExactExtractor,
    HeuristicExtractor,
    make_extractor,
    milp_available,
)

__all__ = [
    "Extractor",
    "ExactExtractor",
    "HeuristicExtractor",
    "make_extractor",
    "milp_available",
]

# Submodules
# - grinn.constants: defaults, method names, output encodings, identifier columns
# - grinn.normalization: edge/node/p-value input coercion
# - grinn.assembly: attribute reattachment and output encoding
