"""
Unit tests for core data structures.
"""

import networkx as nx
import pytest

from core.data_structures import (
    ExtractionMode, FittedNullModel, Network, PipelineConfig, PipelineResult,
    PipelineStage, ScoredNode, Subnetwork, canonical_edge, node_sort_key,
)
from core.exceptions import InputError


class TestNetwork:
    """Tests for Network"""

    def test_from_edges_canonicalises(self):
        net = Network.from_edges([("B", "A"), ("A", "B"), ("C", "B"), ("C", "C")])
        assert net.edges == (("A", "B"), ("B", "C"))
        assert net.nodes == frozenset("ABC")

    def test_explicit_nodes_keep_isolates(self):
        net = Network.from_edges([(1, 2)], nodes=[1, 2, 3])
        assert 3 in net
        assert len(net) == 3
        assert nx.number_connected_components(net.to_graph()) == 2

    def test_mixed_id_types_sortable(self):
        net = Network.from_edges([(10, "a"), (2, 10)])
        assert net.edges == ((10, 2), (10, "a"))
        assert canonical_edge("a", 10) == (10, "a")
        assert node_sort_key(7) == "7"

    def test_restrict_to(self):
        net = Network.from_edges([("A", "B"), ("B", "C")],
                                 edge_attributes={("B", "A"): {"w": 1}})
        sub = net.restrict_to(["A", "B", "Z"])
        assert sub.nodes == frozenset("AB")
        assert sub.edges == (("A", "B"),)
        assert sub.edge_attributes == {("A", "B"): {"w": 1}}

    def test_first_orientation_and_attributes_win(self):
        net = Network.from_edges([(9, 10), (10, 9)],
                                 edge_attributes={(9, 10): {"w": 1}, (10, 9): {"w": 2}})
        assert net.edges == ((10, 9),)
        assert net.oriented((10, 9)) == (9, 10)
        assert net.edge_attributes == {(10, 9): {"w": 1}}

    def test_restrict_to_keeps_orientation(self):
        net = Network.from_edges([("B", "A"), ("C", "B")])
        sub = net.restrict_to(["A", "B"])
        assert sub.oriented(("A", "B")) == ("B", "A")
        assert ("B", "C") not in sub.edge_orientation

    def test_attributes_ignored_in_equality(self):
        a = Network.from_edges([("A", "B")], edge_attributes={("A", "B"): {"w": 1}})
        b = Network.from_edges([("A", "B")])
        assert a == b


class TestModelAndNodes:

    def test_pi_upper(self):
        model = FittedNullModel(a=0.5, lam=0.2, n_pvalues=10, log_likelihood=0.0)
        assert model.pi_upper == pytest.approx(0.6)

    def test_scored_node_signal(self):
        assert ScoredNode("A", 0.01, 2.0).is_signal
        assert not ScoredNode("B", 0.9, -1.0).is_signal
        assert not ScoredNode("C", None, 0.0).is_signal


class TestSubnetwork:
    """Tests for Subnetwork"""

    def test_empty(self):
        sub = Subnetwork.empty(ExtractionMode.HEURISTIC)
        assert sub.is_empty
        assert len(sub) == 0
        assert sub.total_score == 0.0
        assert sub.mode == ExtractionMode.HEURISTIC

    def test_properties(self):
        sub = Subnetwork(nodes=(ScoredNode("A", 0.01, 2.0), ScoredNode("B", 0.02, -0.5)),
                         edges=(("A", "B"),), mode=ExtractionMode.EXACT)
        assert sub.node_ids == frozenset({"A", "B"})
        assert "A" in sub and "Z" not in sub
        assert sub.total_score == pytest.approx(1.5)
        G = sub.to_graph()
        assert G.nodes["A"]["score"] == 2.0
        assert G.has_edge("A", "B")


class TestPipelineConfig:
    """Tests for PipelineConfig validation"""

    def test_defaults(self):
        config = PipelineConfig()
        assert config.fdr == 0.05
        assert config.method == "bionet"
        assert config.exact

    @pytest.mark.parametrize("fdr", [0.0, 1.0, -0.1, 2.0])
    def test_bad_fdr(self, fdr):
        with pytest.raises(InputError):
            PipelineConfig(fdr=fdr)

    def test_unbounded_time_limit(self):
        assert PipelineConfig(time_limit=None).time_limit is None

    def test_frozen(self):
        with pytest.raises(Exception):
            PipelineConfig().fdr = 0.1


class TestPipelineResult:

    def test_ok_and_empty(self):
        done = PipelineResult(subnetwork=Subnetwork.empty(), stage=PipelineStage.DONE)
        failed = PipelineResult(subnetwork=Subnetwork.empty(), stage=PipelineStage.FAILED,
                                error="InputError")
        assert done.ok and done.is_empty
        assert not failed.ok
        assert done.warnings == [] and done.scores == {}
