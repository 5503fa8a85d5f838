"""
Core Data Structures for grinn
==============================
Dataclasses representing networks, fitted null models, scored nodes,
subnetworks, pipeline configuration and pipeline results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Hashable, Iterable, List, Optional, Tuple

import networkx as nx

from core.exceptions import InputError

NodeId = Hashable
Edge = Tuple[NodeId, NodeId]


def node_sort_key(node: NodeId) -> str:
    """Ordering key for node ids of mixed type (ints and strings)."""
    return str(node)


def canonical_edge(u: NodeId, v: NodeId) -> Edge:
    """Undirected edge with endpoints in node_sort_key order."""
    return (u, v) if node_sort_key(u) <= node_sort_key(v) else (v, u)


class ExtractionMode(str, Enum):
    """Which extractor produced a subnetwork."""
    EXACT = "exact"
    HEURISTIC = "heuristic"


class PipelineStage(str, Enum):
    """States of the linear pipeline state machine."""
    NORMALIZING = "normalizing"
    FITTING = "fitting"
    SCORING = "scoring"
    EXTRACTING = "extracting"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class Network:
    """
    Simple undirected interaction network.

    Attributes:
        nodes: Node ids
        edges: Canonical undirected edges (no self loops, no duplicates)
        edge_attributes: Optional per-edge attribute dicts keyed by canonical edge
        edge_orientation: Canonical edge -> (source, target) as first given
    """
    nodes: FrozenSet[NodeId]
    edges: Tuple[Edge, ...]
    edge_attributes: Dict[Edge, Dict[str, Any]] = field(default_factory=dict, compare=False)
    edge_orientation: Dict[Edge, Edge] = field(default_factory=dict, compare=False)

    @classmethod
    def from_edges(cls, edges: Iterable[Edge],
                   nodes: Optional[Iterable[NodeId]] = None,
                   edge_attributes: Optional[Dict[Edge, Dict[str, Any]]] = None) -> "Network":
        """
        Build a network from raw edges; nodes default to the edge endpoints.

        When an edge is given more than once (in either direction), its first
        orientation and first attribute dict are kept.
        """
        orientation: Dict[Edge, Edge] = {}
        for u, v in edges:
            if u == v:
                continue
            orientation.setdefault(canonical_edge(u, v), (u, v))
        canon = list(orientation)
        node_set = set(nodes) if nodes is not None else set()
        if nodes is None:
            for u, v in canon:
                node_set.update((u, v))
        attrs = {}
        for e, a in (edge_attributes or {}).items():
            key = canonical_edge(*e)
            if key in orientation:
                attrs.setdefault(key, dict(a))
        canon.sort(key=lambda e: (node_sort_key(e[0]), node_sort_key(e[1])))
        return cls(nodes=frozenset(node_set), edges=tuple(canon),
                   edge_attributes=attrs, edge_orientation=orientation)

    def restrict_to(self, keep: Iterable[NodeId]) -> "Network":
        """Network induced on `keep`; edges with a missing endpoint are dropped."""
        keep = frozenset(keep) & self.nodes
        edges = tuple(e for e in self.edges if e[0] in keep and e[1] in keep)
        attrs = {e: a for e, a in self.edge_attributes.items() if e[0] in keep and e[1] in keep}
        orientation = {e: self.edge_orientation[e] for e in edges if e in self.edge_orientation}
        return Network(nodes=keep, edges=edges, edge_attributes=attrs, edge_orientation=orientation)

    def oriented(self, edge: Edge) -> Edge:
        """(source, target) of a canonical edge as it appeared in the input."""
        return self.edge_orientation.get(edge, edge)

    def to_graph(self) -> nx.Graph:
        G = nx.Graph()
        G.add_nodes_from(sorted(self.nodes, key=node_sort_key))
        G.add_edges_from(self.edges)
        return G

    def __len__(self):
        return len(self.nodes)

    def __contains__(self, node: NodeId) -> bool:
        return node in self.nodes


@dataclass(frozen=True)
class FittedNullModel:
    """
    Beta-uniform mixture fitted to a p-value distribution.

    Density: f(x) = a + (1 - a) * lam * x**(lam - 1)

    Attributes:
        a: Mixing weight of the uniform (null) component, in (0, 1)
        lam: Shape of the beta (signal) component, in (0, 1)
        n_pvalues: Number of p-values the model was fitted on
        log_likelihood: Log-likelihood at the optimum
    """
    a: float
    lam: float
    n_pvalues: int
    log_likelihood: float

    @property
    def pi_upper(self) -> float:
        """Upper bound on the proportion of true nulls, f(1)."""
        return self.a + (1.0 - self.a) * self.lam


@dataclass(frozen=True)
class ScoredNode:
    """Node with its p-value (None if unknown) and signed score (positive = signal)"""
    node: NodeId
    pvalue: Optional[float]
    score: float

    @property
    def is_signal(self) -> bool:
        return self.score > 0


@dataclass(frozen=True)
class Subnetwork:
    """
    Connected node-induced subgraph selected by an extractor.

    Attributes:
        nodes: Selected nodes with scores, sorted by node id
        edges: Induced edges, sorted
        mode: Extractor variant that produced the result
        partial: True if a time budget truncated the optimization
    """
    nodes: Tuple[ScoredNode, ...] = ()
    edges: Tuple[Edge, ...] = ()
    mode: Optional[ExtractionMode] = None
    partial: bool = False

    @classmethod
    def empty(cls, mode: Optional[ExtractionMode] = None) -> "Subnetwork":
        return cls(nodes=(), edges=(), mode=mode)

    @property
    def is_empty(self) -> bool:
        return len(self.nodes) == 0

    @property
    def node_ids(self) -> FrozenSet[NodeId]:
        return frozenset(n.node for n in self.nodes)

    @property
    def total_score(self) -> float:
        return float(sum(n.score for n in self.nodes))

    def to_graph(self) -> nx.Graph:
        G = nx.Graph()
        for n in self.nodes:
            G.add_node(n.node, score=n.score, pvalue=n.pvalue)
        G.add_edges_from(self.edges)
        return G

    def __len__(self):
        return len(self.nodes)

    def __contains__(self, node: NodeId) -> bool:
        return node in self.node_ids


@dataclass(frozen=True)
class PipelineConfig:
    """
    Immutable pipeline configuration.

    Attributes:
        fdr: Target false discovery rate, in (0, 1)
        method: Scoring method; only "bionet" is implemented
        time_limit: Optimizer wall-clock budget in seconds (None = unbounded)
        exact: Use the MILP extractor (True) or the heuristic (False)
        allow_heuristic_fallback: Use the heuristic if no MILP solver is available
        show_progress: Show a progress bar over network components
    """
    fdr: float = 0.05
    method: str = "bionet"
    time_limit: Optional[float] = 60.0
    exact: bool = True
    allow_heuristic_fallback: bool = True
    show_progress: bool = False

    def __post_init__(self):
        if not (0.0 < self.fdr < 1.0):
            raise InputError(f"fdr must be in (0, 1), got {self.fdr}")
        if self.time_limit is not None and self.time_limit <= 0:
            raise InputError(f"time_limit must be positive, got {self.time_limit}")


@dataclass
class PipelineResult:
    """
    Outcome of one pipeline invocation.

    A failed run always carries an empty subnetwork; `error` names the
    exception class and `diagnostic` its message. A successful run may also
    carry an empty subnetwork (no positive-scoring node), which is reported
    in `diagnostic`.
    """
    subnetwork: Subnetwork
    stage: PipelineStage
    error: Optional[str] = None
    diagnostic: str = ""
    model: Optional[FittedNullModel] = None
    threshold: Optional[float] = None
    scores: Dict[NodeId, float] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.stage == PipelineStage.DONE

    @property
    def is_empty(self) -> bool:
        return self.subnetwork.is_empty
