#!/usr/bin/env python3
"""
Subnetwork Extraction
=====================
Maximum-weight connected subgraph (MWCS) search over a node-scored network.

Extractor hierarchy:
1. ExactExtractor: prize-collecting rooted flow formulation solved as a
   mixed-integer linear program (scipy.optimize.milp / HiGHS). Provably
   optimal unless the time budget runs out, in which case the best
   incumbent is returned and flagged partial.
2. HeuristicExtractor: FastHeinz-style greedy growth of positive clusters
   through cheapest negative paths, followed by pruning. Fast, approximate.

Both treat every connected component of the network as an independent
instance and return the single best component solution, so results are
always connected. When no node scores above zero the result is empty.
"""

import logging
import time
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Hashable, List, Mapping, Optional, Set, Tuple

import networkx as nx
import numpy as np
from tqdm import tqdm

from core.data_structures import (
    ExtractionMode, Network, PipelineConfig, ScoredNode, Subnetwork,
    canonical_edge, node_sort_key,
)
from core.exceptions import OptimizationError, PartialOptimizationWarning

logger = logging.getLogger(__name__)

NodeId = Hashable


def milp_available() -> bool:
    """True if scipy provides the HiGHS MILP interface (scipy >= 1.9)."""
    try:
        from scipy.optimize import milp  # noqa: F401
    except ImportError:
        return False
    return True


# Total scores closer than this are ties
SCORE_TOLERANCE = 1e-9


def _selection_key(nodes: FrozenSet[NodeId]) -> Tuple[Tuple[int, str], ...]:
    """
    Tie-break order over node sets: the set holding the smallest node id
    that is not in both comes first.

    Sorted ids closed by a sentinel that sorts after every id, so a set
    never wins merely by being a prefix of another.
    """
    return tuple((0, s) for s in sorted(node_sort_key(n) for n in nodes)) + ((1, ""),)


def _better(score: float, nodes: FrozenSet[NodeId],
            best_score: float, best_nodes: Optional[FrozenSet[NodeId]]) -> bool:
    """Higher score wins; equal scores fall back to _selection_key order."""
    if best_nodes is None:
        return True
    if score > best_score + SCORE_TOLERANCE:
        return True
    if score < best_score - SCORE_TOLERANCE:
        return False
    return _selection_key(nodes) < _selection_key(best_nodes)


# ============================================================================
# COMPONENT ARENA
# ============================================================================

@dataclass
class ComponentArena:
    """
    Graph, connected components and node -> component index, built once.

    Components are ordered by decreasing total positive score so the most
    promising instances are solved first when a time budget applies.
    """
    graph: nx.Graph
    weights: Dict[NodeId, float]
    components: List[List[NodeId]] = field(default_factory=list)
    index: Dict[NodeId, int] = field(default_factory=dict)

    @classmethod
    def build(cls, network: Network, weights: Mapping[NodeId, float]) -> "ComponentArena":
        graph = network.to_graph()
        w = {n: float(weights[n]) for n in graph.nodes}
        comps = [sorted(c, key=node_sort_key) for c in nx.connected_components(graph)]
        comps.sort(key=lambda c: (-sum(max(w[n], 0.0) for n in c), node_sort_key(c[0])))
        index = {n: i for i, comp in enumerate(comps) for n in comp}
        return cls(graph=graph, weights=w, components=comps, index=index)

    def has_signal(self, i: int) -> bool:
        return any(self.weights[n] > 0 for n in self.components[i])

    def subgraph(self, i: int) -> nx.Graph:
        return self.graph.subgraph(self.components[i])


# ============================================================================
# EXTRACTORS
# ============================================================================

class Extractor(ABC):
    """
    Base class: component loop, best-component selection and result building.

    Subclasses implement `_solve_component`, returning the selected node set
    for one connected component and whether the answer is partial.
    """

    mode: ExtractionMode

    def __init__(self, time_limit: Optional[float] = None, show_progress: bool = False):
        self.time_limit = time_limit
        self.show_progress = show_progress
        self.solver_stats: Dict[str, int] = {'components': 0, 'solved': 0, 'partial': 0}

    @abstractmethod
    def _solve_component(self, graph: nx.Graph, weights: Dict[NodeId, float],
                         time_left: Optional[float]) -> Tuple[FrozenSet[NodeId], bool]:
        ...

    def extract(self, network: Network, scores: Mapping[NodeId, float],
                pvalues: Optional[Mapping[NodeId, float]] = None) -> Subnetwork:
        """
        Find the connected subgraph of `network` with maximal total score.

        Nodes without a score, and edges touching them, are ignored.

        Args:
            network: Interaction network
            scores: Node id -> signed score
            pvalues: Optional node id -> p-value, carried into the result

        Returns:
            Subnetwork (empty if no node scores above zero)
        """
        scored = network.restrict_to(n for n in scores if n in network.nodes)
        if len(scored.nodes) < len(network.nodes):
            logger.info(f"{len(network.nodes) - len(scored.nodes)} network nodes have no score")
        arena = ComponentArena.build(scored, scores)
        candidates = [i for i in range(len(arena.components)) if arena.has_signal(i)]
        self.solver_stats['components'] += len(arena.components)
        logger.info(
            f"{self.mode.value} extraction: {len(arena.components)} components, "
            f"{len(candidates)} with positive-scoring nodes"
        )
        if not candidates:
            logger.info("No positive-scoring node; returning empty subnetwork")
            return Subnetwork.empty(mode=self.mode)

        deadline = None if self.time_limit is None else time.monotonic() + self.time_limit
        best_nodes: Optional[FrozenSet[NodeId]] = None
        best_score = -np.inf
        partial = False

        for i in tqdm(candidates, desc="Components", disable=not self.show_progress):
            time_left = None if deadline is None else deadline - time.monotonic()
            nodes, comp_partial = self._solve_component(arena.subgraph(i), arena.weights, time_left)
            self.solver_stats['solved'] += 1
            if comp_partial:
                self.solver_stats['partial'] += 1
                partial = True
            if not nodes:
                continue
            total = sum(arena.weights[n] for n in nodes)
            if _better(total, nodes, best_score, best_nodes):
                best_nodes, best_score = nodes, total

        if best_nodes is None:
            return Subnetwork.empty(mode=self.mode)
        return self._build_subnetwork(arena.graph, best_nodes, arena.weights, pvalues, partial)

    def _build_subnetwork(self, graph: nx.Graph, nodes: FrozenSet[NodeId],
                          weights: Dict[NodeId, float],
                          pvalues: Optional[Mapping[NodeId, float]],
                          partial: bool) -> Subnetwork:
        induced = graph.subgraph(nodes)
        if not nx.is_connected(induced):
            raise OptimizationError(
                f"{self.mode.value} extractor returned a disconnected node set ({len(nodes)} nodes)"
            )
        ordered = sorted(nodes, key=node_sort_key)
        scored_nodes = tuple(
            ScoredNode(node=n, pvalue=float(pvalues[n]) if pvalues and n in pvalues else None,
                       score=weights[n])
            for n in ordered
        )
        edges = sorted(
            (canonical_edge(u, v) for u, v in induced.edges()),
            key=lambda e: (node_sort_key(e[0]), node_sort_key(e[1])),
        )
        sub = Subnetwork(nodes=scored_nodes, edges=tuple(edges), mode=self.mode, partial=partial)
        logger.info(
            f"Subnetwork: {len(sub.nodes)} nodes, {len(sub.edges)} edges, "
            f"score={sub.total_score:.3f}{' (partial)' if partial else ''}"
        )
        return sub


class HeuristicExtractor(Extractor):
    """
    FastHeinz-style heuristic.

    1. Positive nodes that touch each other form clusters.
    2. Starting from each cluster, repeatedly attach the cluster reachable
       through the cheapest path of negative nodes if the net gain is positive.
    3. Drop negative nodes whose removal keeps the selection connected.
    The best selection over all starting clusters is kept.
    """

    mode = ExtractionMode.HEURISTIC

    def _solve_component(self, graph: nx.Graph, weights: Dict[NodeId, float],
                         time_left: Optional[float]) -> Tuple[FrozenSet[NodeId], bool]:
        return self.solve_graph(graph, weights), False

    @staticmethod
    def _positive_clusters(graph: nx.Graph, weights: Dict[NodeId, float]) -> List[FrozenSet[NodeId]]:
        positive = [n for n in graph.nodes if weights[n] > 0]
        clusters = [frozenset(c) for c in nx.connected_components(graph.subgraph(positive))]
        clusters.sort(key=_selection_key)
        return clusters

    def solve_graph(self, graph: nx.Graph, weights: Dict[NodeId, float]) -> FrozenSet[NodeId]:
        clusters = self._positive_clusters(graph, weights)
        if not clusters:
            return frozenset()
        cluster_of = {n: c for c in clusters for n in c}

        best: Optional[FrozenSet[NodeId]] = None
        best_score = -np.inf
        for start in clusters:
            selected = self._grow(graph, weights, set(start), cluster_of)
            selected = self._prune(graph, weights, selected)
            score = sum(weights[n] for n in selected)
            if _better(score, frozenset(selected), best_score, best):
                best, best_score = frozenset(selected), score
        return best

    @staticmethod
    def _grow(graph: nx.Graph, weights: Dict[NodeId, float], selected: Set[NodeId],
              cluster_of: Dict[NodeId, FrozenSet[NodeId]]) -> Set[NodeId]:
        def entry_cost(u, v, d):
            return max(0.0, -weights[v])

        while True:
            dist, paths = nx.multi_source_dijkstra(
                graph, sources=sorted(selected, key=node_sort_key), weight=entry_cost
            )
            best_gain = 0.0
            best_add: Optional[Set[NodeId]] = None
            for target in sorted(dist, key=node_sort_key):
                if target in selected or weights[target] <= 0:
                    continue
                new_nodes = set(paths[target]) - selected
                for n in list(new_nodes):
                    if weights[n] > 0:
                        new_nodes |= cluster_of[n] - selected
                gain = sum(weights[n] for n in new_nodes)
                if gain > best_gain + 1e-12:
                    best_gain, best_add = gain, new_nodes
            if best_add is None:
                return selected
            selected |= best_add

    @staticmethod
    def _prune(graph: nx.Graph, weights: Dict[NodeId, float], selected: Set[NodeId]) -> Set[NodeId]:
        selected = set(selected)
        changed = True
        while changed and len(selected) > 1:
            changed = False
            induced = graph.subgraph(selected)
            cut = set(nx.articulation_points(induced))
            removable = [n for n in selected if weights[n] <= 0 and n not in cut]
            if removable:
                removable.sort(key=lambda n: (weights[n], node_sort_key(n)))
                selected.discard(removable[0])
                changed = True
        return selected


@dataclass
class FlowProblem:
    """Flow MILP of one component; the first len(nodes) variables are y, in node order."""
    nodes: List[NodeId]
    c: np.ndarray
    constraint: Any
    lower: np.ndarray
    upper: np.ndarray
    integrality: np.ndarray

    @property
    def n_vars(self) -> int:
        return len(self.c)


class ExactExtractor(Extractor):
    """
    Exact MWCS via a rooted single-commodity flow MILP.

    An auxiliary root may attach to one positive-score node; every other
    selected node must receive one unit of flow, and flow only travels
    along edges whose endpoints are both selected. This is the standard
    prize-collecting Steiner tree reduction of MWCS.

    Variables (per component with n nodes and m edges):
        y_v in {0,1}          node v selected
        r_v in {0,1}          v is attached to the root (only if score(v) > 0)
        f_uv, f_vu in [0, n]  flow along each edge direction

        max  sum_v score(v) * y_v
        s.t. sum_v r_v <= 1
             r_v <= y_v
             sum_in f(v) - sum_out f(v) + n * r_v >= y_v     for each v
             f_uv <= n * y_u,  f_uv <= n * y_v              for each arc

    Of several optimal selections, the first in _selection_key order is
    returned.
    """

    mode = ExtractionMode.EXACT

    def __init__(self, time_limit: Optional[float] = None, show_progress: bool = False):
        super().__init__(time_limit=time_limit, show_progress=show_progress)
        self.solver_stats['tied'] = 0
        self._fallback = HeuristicExtractor()

    def _solve_component(self, graph: nx.Graph, weights: Dict[NodeId, float],
                         time_left: Optional[float]) -> Tuple[FrozenSet[NodeId], bool]:
        if time_left is not None and time_left <= 0:
            msg = "time budget exhausted before component could be solved; using heuristic"
            logger.warning(msg)
            warnings.warn(msg, PartialOptimizationWarning)
            return self._fallback.solve_graph(graph, weights), True

        nodes = sorted(graph.nodes, key=node_sort_key)
        if len(nodes) == 1:
            return (frozenset(nodes) if weights[nodes[0]] > 0 else frozenset()), False
        return self._solve_milp(graph, nodes, weights, time_left)

    def _formulate(self, graph: nx.Graph, nodes: List[NodeId],
                   weights: Dict[NodeId, float]) -> FlowProblem:
        from scipy.optimize import LinearConstraint
        from scipy.sparse import coo_matrix

        n = len(nodes)
        idx = {v: i for i, v in enumerate(nodes)}
        arcs = []
        for u, v in graph.edges():
            arcs.append((idx[u], idx[v]))
            arcs.append((idx[v], idx[u]))
        n_arcs = len(arcs)
        n_vars = 2 * n + n_arcs
        Y, R, F = 0, n, 2 * n
        w = np.array([weights[v] for v in nodes], dtype=float)

        c = np.zeros(n_vars)
        c[Y:Y + n] = -w

        rows, cols, vals = [], [], []
        lb, ub = [], []
        row = 0

        # sum r <= 1
        for i in range(n):
            rows.append(row); cols.append(R + i); vals.append(1.0)
        lb.append(-np.inf); ub.append(1.0); row += 1

        # y_v - r_v >= 0
        for i in range(n):
            rows += [row, row]; cols += [Y + i, R + i]; vals += [1.0, -1.0]
            lb.append(0.0); ub.append(np.inf); row += 1

        # inflow - outflow + n*r_v - y_v >= 0
        cons_row = {i: row + i for i in range(n)}
        for i in range(n):
            rows += [cons_row[i], cons_row[i]]
            cols += [R + i, Y + i]
            vals += [float(n), -1.0]
            lb.append(0.0); ub.append(np.inf)
        for k, (a, b) in enumerate(arcs):
            rows += [cons_row[b], cons_row[a]]
            cols += [F + k, F + k]
            vals += [1.0, -1.0]
        row += n

        # n*y_u - f_uv >= 0 and n*y_v - f_uv >= 0
        for k, (a, b) in enumerate(arcs):
            for end in (a, b):
                rows += [row, row]; cols += [Y + end, F + k]; vals += [float(n), -1.0]
                lb.append(0.0); ub.append(np.inf); row += 1

        A = coo_matrix((vals, (rows, cols)), shape=(row, n_vars)).tocsr()
        constraint = LinearConstraint(A, lb=np.array(lb), ub=np.array(ub))

        upper = np.ones(n_vars)
        upper[R:R + n] = (w > 0).astype(float)
        upper[F:] = float(n)
        integrality = np.zeros(n_vars)
        integrality[:2 * n] = 1

        logger.debug(f"MILP: {n} nodes, {n_arcs} arcs, {n_vars} variables, {row} constraints")
        return FlowProblem(nodes=nodes, c=c, constraint=constraint,
                           lower=np.zeros(n_vars), upper=upper, integrality=integrality)

    @staticmethod
    def _options(deadline: Optional[float]) -> Dict[str, Any]:
        options = {'disp': False}
        if deadline is not None:
            options['time_limit'] = max(deadline - time.monotonic(), 1e-3)
        return options

    def _solve_milp(self, graph: nx.Graph, nodes: List[NodeId], weights: Dict[NodeId, float],
                    time_left: Optional[float]) -> Tuple[FrozenSet[NodeId], bool]:
        try:
            from scipy.optimize import milp, Bounds
        except ImportError:
            raise OptimizationError("scipy.optimize.milp not available (requires scipy >= 1.9)")

        deadline = None if time_left is None else time.monotonic() + time_left
        problem = self._formulate(graph, nodes, weights)
        result = milp(c=problem.c, constraints=[problem.constraint],
                      integrality=problem.integrality,
                      bounds=Bounds(lb=problem.lower, ub=problem.upper),
                      options=self._options(deadline))

        if result.status == 0:
            selected = self._decode(result.x, nodes)
            return self._canonical_optimum(problem, weights, selected, deadline), False
        if result.status == 1:
            if result.x is not None:
                msg = f"MILP stopped at time/iteration limit; returning best incumbent ({result.message})"
                logger.warning(msg)
                warnings.warn(msg, PartialOptimizationWarning)
                incumbent = self._decode(result.x, nodes)
                if incumbent and nx.is_connected(graph.subgraph(incumbent)):
                    return incumbent, True
            msg = "MILP stopped without a usable incumbent; using heuristic solution"
            logger.warning(msg)
            warnings.warn(msg, PartialOptimizationWarning)
            return self._fallback.solve_graph(graph, weights), True
        raise OptimizationError(f"MILP solver failed (status {result.status}): {result.message}")

    def _canonical_optimum(self, problem: FlowProblem, weights: Dict[NodeId, float],
                           selected: FrozenSet[NodeId],
                           deadline: Optional[float]) -> FrozenSet[NodeId]:
        """
        Among selections scoring as well as `selected`, the first in
        _selection_key order.

        One feasibility solve with a cut excluding `selected` settles the
        usual case of a unique optimum. Otherwise node ids are fixed in
        order: each is forced in, and kept if some optimal selection still
        contains it. If the time budget runs out the current optimum stands.
        """
        from scipy.optimize import milp, Bounds, LinearConstraint

        if not selected:
            return selected
        nodes = problem.nodes
        n = len(nodes)
        best_score = sum(weights[v] for v in selected)
        score_row = np.zeros(problem.n_vars)
        score_row[:n] = -problem.c[:n]

        def search(lower: np.ndarray, upper: np.ndarray, cuts=()):
            if deadline is not None and time.monotonic() >= deadline:
                return 1, None
            floor = LinearConstraint(score_row[np.newaxis, :],
                                     lb=np.array([best_score - 1e-6]), ub=np.array([np.inf]))
            res = milp(c=np.zeros(problem.n_vars), constraints=[problem.constraint, floor, *cuts],
                       integrality=problem.integrality, bounds=Bounds(lb=lower, ub=upper),
                       options=self._options(deadline))
            if res.status != 0 or res.x is None:
                return res.status, None
            found = self._decode(res.x, nodes)
            if not found or sum(weights[v] for v in found) < best_score - SCORE_TOLERANCE:
                return res.status, None
            return res.status, found

        cut = np.zeros(problem.n_vars)
        cut[:n] = [-1.0 if v in selected else 1.0 for v in nodes]
        no_good = LinearConstraint(cut[np.newaxis, :],
                                   lb=np.array([1.0 - len(selected)]), ub=np.array([np.inf]))
        _, other = search(problem.lower, problem.upper, (no_good,))
        if other is None:
            return selected

        current = other if _better(sum(weights[v] for v in other), other,
                                   best_score, selected) else selected
        best_score = max(best_score, sum(weights[v] for v in current))
        lower, upper = problem.lower.copy(), problem.upper.copy()
        for k, v in enumerate(nodes):
            if v not in current:
                trial = lower.copy()
                trial[k] = 1.0
                status, found = search(trial, upper)
                if status == 1:
                    logger.debug("Time budget reached while ordering tied optima")
                    break
                if found is None:
                    upper[k] = 0.0
                    continue
                current = found
                best_score = max(best_score, sum(weights[u] for u in found))
            lower[k] = 1.0
        self.solver_stats['tied'] += 1
        return current

    @staticmethod
    def _decode(x: np.ndarray, nodes: List[NodeId]) -> FrozenSet[NodeId]:
        return frozenset(v for i, v in enumerate(nodes) if x[i] > 0.5)


def make_extractor(config: PipelineConfig) -> Extractor:
    """
    Build the extractor selected by the configuration.

    With `config.exact` and no MILP solver available, falls back to the
    heuristic when `allow_heuristic_fallback` is set, else raises.

    Raises:
        OptimizationError: exact extraction requested, solver unavailable,
            fallback disabled
    """
    if config.exact:
        if milp_available():
            return ExactExtractor(time_limit=config.time_limit, show_progress=config.show_progress)
        if not config.allow_heuristic_fallback:
            raise OptimizationError("exact extraction requested but scipy.optimize.milp is unavailable")
        logger.warning("scipy.optimize.milp unavailable; falling back to heuristic extraction")
    return HeuristicExtractor(time_limit=config.time_limit, show_progress=config.show_progress)
