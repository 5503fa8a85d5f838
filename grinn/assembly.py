#!/usr/bin/env python3
"""
Result Assembly
===============
Reattaches node/edge attributes to an extracted Subnetwork and encodes
it as one of the supported output types:

    dataframe -> {'nodes': DataFrame, 'edges': DataFrame}
    list      -> {'nodes': [row dict, ...], 'edges': [row dict, ...]}
    json      -> {'nodes': JSON string, 'edges': JSON string}  (orient='records')

A failed or empty result is encoded as the empty variant of the same type.
"""

import logging
from typing import Any, Dict, Hashable, Mapping, Optional

import numpy as np
import pandas as pd

from core.data_structures import Network, Subnetwork
from core.exceptions import AssemblyError, InputError
from grinn.constants import (
    ATTRIBUTED_NODE_COLUMNS, CANONICAL_ID_COLUMN, EDGE_COLUMNS, FC_COLUMN,
    NODE_GID_COLUMN, NODE_ID_COLUMN, RETURN_TYPES, SCORE_COLUMN,
)

logger = logging.getLogger(__name__)

_MERGE_KEY = "_grinn_key"


def _as_key(values: pd.Series) -> pd.Series:
    """Identifiers as text; integral floats lose their '.0' so 1110.0 matches '1110'."""
    return values.map(lambda v: str(int(v)) if isinstance(v, float) and v.is_integer() else str(v))


def validate_returnas(returnas: str) -> str:
    if returnas not in RETURN_TYPES:
        raise InputError(f"Error: incorrect 'returnas' type '{returnas}', choose one of {RETURN_TYPES}")
    return returnas


def empty_result(returnas: str) -> Dict[str, Any]:
    """Empty encoding of the requested output type."""
    if validate_returnas(returnas) == "dataframe":
        return {'nodes': pd.DataFrame(), 'edges': pd.DataFrame()}
    return {'nodes': [], 'edges': []}


def node_table(subnetwork: Subnetwork,
               nodelist: Optional[pd.DataFrame] = None,
               fc: Optional[Mapping[Hashable, float]] = None,
               datinput: Optional[pd.DataFrame] = None,
               hasatt: bool = False) -> pd.DataFrame:
    """
    One row per selected node with its score, merged with node attributes.

    Args:
        subnetwork: Extracted subnetwork
        nodelist: Node attribute table; joined on its first column
        fc: Optional fold changes, added as column 'fc'
        datinput: Full GUI input table, joined on 'gid' == 'grinn'
        hasatt: Node table already carries GUI attributes; keep only its
            leading columns before joining `datinput` again
    """
    nodes = pd.DataFrame({
        NODE_ID_COLUMN: [n.node for n in subnetwork.nodes],
        SCORE_COLUMN: [n.score for n in subnetwork.nodes],
    })
    if nodelist is not None and not nodelist.empty:
        attrs = nodelist.copy()
        key = attrs.columns[0]
        attrs = attrs.drop(columns=[SCORE_COLUMN], errors='ignore')
        nodes = attrs.merge(nodes, left_on=key, right_on=NODE_ID_COLUMN, how='inner')
        if key != NODE_ID_COLUMN:
            nodes = nodes.drop(columns=[NODE_ID_COLUMN])
    if fc:
        id_col = nodes.columns[0]
        nodes[FC_COLUMN] = [fc.get(n, np.nan) for n in nodes[id_col]]
    if datinput is not None and NODE_GID_COLUMN in nodes.columns:
        if hasatt:
            nodes = nodes.iloc[:, :ATTRIBUTED_NODE_COLUMNS]
        right = datinput.assign(**{_MERGE_KEY: _as_key(datinput[CANONICAL_ID_COLUMN])})
        right = right.drop(columns=[CANONICAL_ID_COLUMN])
        nodes = nodes.assign(**{_MERGE_KEY: _as_key(nodes[NODE_GID_COLUMN])})
        nodes = nodes.merge(right, on=_MERGE_KEY, how='left').drop(columns=[_MERGE_KEY])
        nodes = nodes.astype(object).where(nodes.notna(), "")
    return nodes.reset_index(drop=True)


def edge_table(subnetwork: Subnetwork, network: Optional[Network] = None) -> pd.DataFrame:
    """
    One row per induced edge, with any edge attributes the network carries.

    Edges are reported in the source/target orientation of the input table.
    """
    records = []
    attrs = network.edge_attributes if network is not None else {}
    for edge in subnetwork.edges:
        u, v = network.oriented(edge) if network is not None else edge
        row = {EDGE_COLUMNS[0]: u, EDGE_COLUMNS[1]: v}
        row.update(attrs.get(edge, {}))
        records.append(row)
    return pd.DataFrame(records, columns=None if records else EDGE_COLUMNS)


def encode(nodes: pd.DataFrame, edges: pd.DataFrame, returnas: str) -> Dict[str, Any]:
    """Encode node and edge tables as the requested output type."""
    returnas = validate_returnas(returnas)
    if returnas == "dataframe":
        return {'nodes': nodes, 'edges': edges}
    if returnas == "list":
        return {'nodes': nodes.to_dict(orient='records'), 'edges': edges.to_dict(orient='records')}
    return {'nodes': nodes.to_json(orient='records'), 'edges': edges.to_json(orient='records')}


def assemble(subnetwork: Subnetwork,
             returnas: str = "dataframe",
             network: Optional[Network] = None,
             nodelist: Optional[pd.DataFrame] = None,
             fc: Optional[Mapping[Hashable, float]] = None,
             datinput: Optional[pd.DataFrame] = None,
             hasatt: bool = False) -> Dict[str, Any]:
    """
    Attach attributes to a subnetwork and encode it; empty stays empty.

    Raises:
        AssemblyError: if the node or edge tables cannot be joined
    """
    if subnetwork.is_empty:
        return empty_result(returnas)
    try:
        nodes = node_table(subnetwork, nodelist=nodelist, fc=fc, datinput=datinput, hasatt=hasatt)
        edges = edge_table(subnetwork, network)
    except (KeyError, TypeError, ValueError) as e:
        raise AssemblyError(f"could not attach attributes to the subnetwork: {e}") from e
    logger.info(f"Assembled {len(nodes)} nodes and {len(edges)} edges as {returnas}")
    return encode(nodes, edges, returnas)
