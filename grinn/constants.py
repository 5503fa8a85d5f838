#!/usr/bin/env python3
"""
Constants for grinn
===================
Pipeline defaults, method names, output encodings, the identifier
columns recognised in GUI input and the column names of node and edge
tables.
"""

from typing import List, Tuple

# ---------------------------------------------------------------------------
# PIPELINE DEFAULTS
# ---------------------------------------------------------------------------

DEFAULT_FDR: float = 0.05
DEFAULT_METHOD: str = "bionet"
DEFAULT_TIME_LIMIT: float = 60.0   # seconds, shared across network components
DEFAULT_RETURNAS: str = "dataframe"

# ---------------------------------------------------------------------------
# METHODS
# "sili" is recognised but not implemented yet.
# ---------------------------------------------------------------------------

KNOWN_METHODS: Tuple[str, ...] = ("bionet", "sili")
IMPLEMENTED_METHODS: Tuple[str, ...] = ("bionet",)

# ---------------------------------------------------------------------------
# OUTPUT ENCODINGS
# ---------------------------------------------------------------------------

RETURN_TYPES: Tuple[str, ...] = ("dataframe", "list", "json")

# ---------------------------------------------------------------------------
# IDENTIFIER COLUMNS (GUI input)
# Checked in order; the first column present in the p-value table is used
# and renamed to the canonical 'grinn' column.
# ---------------------------------------------------------------------------

CANONICAL_ID_COLUMN: str = "grinn"
ID_COLUMN_PRIORITY: List[str] = ["grinn", "PubChem", "pubchem", "uniprot", "ensembl"]

# Node list columns produced by the network builders
NODE_ID_COLUMN: str = "id"
NODE_GID_COLUMN: str = "gid"
# Columns kept from an attributed node table when `hasatt` is set
ATTRIBUTED_NODE_COLUMNS: int = 5

# Blank p-value cells are read as maximally non-significant
MISSING_PVALUE: float = 1.0

# ---------------------------------------------------------------------------
# RESULT COLUMNS
# ---------------------------------------------------------------------------

EDGE_COLUMNS: List[str] = ["source", "target"]
SCORE_COLUMN: str = "score"
FC_COLUMN: str = "fc"
