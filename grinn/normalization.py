#!/usr/bin/env python3
"""
Input Normalization
===================
Reconciles the heterogeneous inputs accepted by compute_subnetwork()
into the in-memory entities the core works on:

- edge tables           -> Network
- node tables           -> deduplicated node attribute table
- p-value vectors/tables -> PValueVector (node id -> float), blanks read as 1.0
- fold-change vectors   -> node id -> float
"""

import logging
from typing import Any, Dict, Hashable, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from core.data_structures import Network
from core.exceptions import InputError
from grinn.constants import (
    CANONICAL_ID_COLUMN, ID_COLUMN_PRIORITY, IMPLEMENTED_METHODS, KNOWN_METHODS,
    MISSING_PVALUE, NODE_ID_COLUMN,
)

logger = logging.getLogger(__name__)

PValueInput = Union[Mapping[Hashable, Any], pd.Series, pd.DataFrame]


def resolve_method(method: str) -> str:
    """
    Match a method name case-insensitively (unique prefixes allowed).

    Raises:
        InputError: for unknown or ambiguous names, and for methods that are
            recognised but not implemented yet
    """
    name = str(method).strip().lower()
    matches = [m for m in KNOWN_METHODS if m == name] or \
              [m for m in KNOWN_METHODS if name and m.startswith(name)]
    if len(matches) != 1:
        raise InputError(
            f"argument 'method' is not valid, choose one from the list: {','.join(KNOWN_METHODS)}"
        )
    resolved = matches[0]
    if resolved not in IMPLEMENTED_METHODS:
        raise InputError(f"method '{resolved}' is under development")
    return resolved


def _clean_value(value: Any) -> float:
    """Blank/missing -> MISSING_PVALUE, otherwise float()."""
    if value is None:
        return MISSING_PVALUE
    if isinstance(value, str):
        if value.strip() == "":
            return MISSING_PVALUE
        try:
            return float(value)
        except ValueError:
            raise InputError(f"Non-numeric p-value: {value!r}")
    try:
        f = float(value)
    except (TypeError, ValueError):
        raise InputError(f"Non-numeric p-value: {value!r}")
    if np.isnan(f):
        return MISSING_PVALUE
    return f


def _collapse(pairs) -> Dict[Hashable, float]:
    """Keep the first value per id; later duplicates are ignored."""
    out: Dict[Hashable, float] = {}
    n_dup = 0
    for node, value in pairs:
        if node is None or (isinstance(node, float) and np.isnan(node)):
            continue
        if node in out:
            n_dup += 1
            continue
        out[node] = _clean_value(value)
    if n_dup:
        logger.info(f"Collapsed {n_dup} duplicate p-value entr{'y' if n_dup == 1 else 'ies'}")
    return out


def dedupe_nodelist(nodelist: Optional[pd.DataFrame]) -> Optional[pd.DataFrame]:
    """Drop node records whose second column (external id) repeats."""
    if nodelist is None or nodelist.empty:
        return nodelist
    if nodelist.shape[1] < 2:
        raise InputError("node list needs at least an id column and an identifier column")
    key = nodelist.columns[1]
    deduped = nodelist.drop_duplicates(subset=key, keep='first').reset_index(drop=True)
    if len(deduped) < len(nodelist):
        logger.info(f"Removed {len(nodelist) - len(deduped)} duplicate node records on '{key}'")
    return deduped


def select_gui_columns(pval: pd.DataFrame, pcol: str) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Pick the identifier column and the statistic column of a GUI table.

    Returns:
        Tuple of (two-column p-value table, full input table with its
        identifier column renamed to 'grinn')
    """
    if not isinstance(pval, pd.DataFrame):
        raise InputError("pcol given but p-values are not a table")
    if pcol not in pval.columns:
        raise InputError(f"column '{pcol}' not found in p-value table")
    datinput = pval.copy()
    id_col = next((c for c in ID_COLUMN_PRIORITY if c in pval.columns), None)
    if id_col is None:
        logger.warning(
            f"No identifier column among {ID_COLUMN_PRIORITY}; using '{pval.columns[0]}'"
        )
        id_col = pval.columns[0]
    if id_col != CANONICAL_ID_COLUMN:
        datinput = datinput.rename(columns={id_col: CANONICAL_ID_COLUMN})
    return pval[[id_col, pcol]], datinput


def coerce_pvalues(pval: PValueInput,
                   nodelist: Optional[pd.DataFrame] = None,
                   internalid: bool = True) -> Dict[Hashable, float]:
    """
    Coerce any accepted p-value input into node id -> p-value.

    Args:
        pval: Mapping or Series (index = node id), or a DataFrame whose first
            column holds identifiers and second column the p-values
        nodelist: Node table (1st column node id, 2nd column external id);
            required when `internalid` is False
        internalid: If False, identifiers in a p-value table are external
            ids and are mapped to node ids through `nodelist`

    Returns:
        Dict of node id -> float; blanks become 1.0, duplicates keep the first

    Raises:
        InputError: on empty or malformed input
    """
    if pval is None:
        raise InputError("p-values are missing")

    if isinstance(pval, pd.DataFrame):
        if pval.shape[1] < 2:
            raise InputError("p-value table needs an identifier column and a value column")
        if internalid:
            pairs = zip(pval.iloc[:, 0].tolist(), pval.iloc[:, 1].tolist())
        else:
            if nodelist is None or nodelist.empty:
                raise InputError("a node list is required to map external ids (internalid=False)")
            id_of = dict(zip(nodelist.iloc[:, 1].tolist(), nodelist.iloc[:, 0].tolist()))
            pairs = []
            unmatched = 0
            for ext, value in zip(pval.iloc[:, 0].tolist(), pval.iloc[:, 1].tolist()):
                if ext not in id_of:
                    unmatched += 1
                    continue
                pairs.append((id_of[ext], value))
            if unmatched:
                logger.warning(f"{unmatched} p-value identifier(s) not found in node list")
        values = _collapse(pairs)
    elif isinstance(pval, pd.Series):
        values = _collapse(pval.items())
    elif isinstance(pval, Mapping):
        values = _collapse(pval.items())
    else:
        raise InputError(f"Unsupported p-value input type: {type(pval).__name__}")

    if not values:
        raise InputError("p-value vector is empty")
    return values


def coerce_fold_changes(fc: Optional[Union[Mapping[Hashable, Any], pd.Series]]) -> Dict[Hashable, float]:
    """Fold-change annotation as node id -> float (missing ids are simply absent)."""
    if fc is None:
        return {}
    items = fc.items() if isinstance(fc, (pd.Series, Mapping)) else None
    if items is None:
        raise InputError(f"Unsupported fold-change input type: {type(fc).__name__}")
    out = {}
    for node, value in items:
        if node not in out:
            try:
                out[node] = float(value)
            except (TypeError, ValueError):
                raise InputError(f"Non-numeric fold change for {node!r}: {value!r}")
    return out


def network_from_edgelist(edgelist: pd.DataFrame) -> Network:
    """
    Build a Network from an edge table.

    The first column is the source, the second the target; any further
    columns are kept as edge attributes.
    """
    if edgelist is None or not isinstance(edgelist, pd.DataFrame):
        raise InputError("edge list must be a DataFrame")
    if edgelist.shape[1] < 2:
        raise InputError("edge list needs a source and a target column")
    if edgelist.empty:
        raise InputError("edge list is empty")

    src, tgt = edgelist.columns[0], edgelist.columns[1]
    attr_cols = list(edgelist.columns[2:])
    edges = []
    attrs = {}
    for row in edgelist.itertuples(index=False):
        u, v = row[0], row[1]
        if pd.isna(u) or pd.isna(v):
            continue
        edges.append((u, v))
        if attr_cols:
            attrs.setdefault((u, v), {c: row[i + 2] for i, c in enumerate(attr_cols)})
    network = Network.from_edges(edges, edge_attributes=attrs)
    logger.info(
        f"Network from '{src}'/'{tgt}': {len(network.nodes)} nodes, {len(network.edges)} edges"
    )
    return network


def node_ids_from_nodelist(nodelist: Optional[pd.DataFrame]) -> Optional[set]:
    if nodelist is None or nodelist.empty:
        return None
    col = NODE_ID_COLUMN if NODE_ID_COLUMN in nodelist.columns else nodelist.columns[0]
    return set(nodelist[col].tolist())
