"""
Unit Tests for Input Normalization
==================================
Tests for method resolution, node-table deduplication, p-value coercion
(blanks, duplicates, external ids, GUI tables) and edge-table parsing.
"""

import pytest
import pandas as pd
import numpy as np

from core.exceptions import InputError
from grinn.normalization import (
    resolve_method,
    dedupe_nodelist,
    select_gui_columns,
    coerce_pvalues,
    coerce_fold_changes,
    network_from_edgelist,
    node_ids_from_nodelist,
)


def _nodelist() -> pd.DataFrame:
    return pd.DataFrame({
        'id': [1, 2, 3, 4, 5],
        'gid': [1110, 10413, 196, 51, 196],   # 196 duplicated
        'nodename': ['Uracil', 'Ornithine', 'Malate', 'Citrate', 'Malate (dup)'],
    })


class TestResolveMethod:
    """Tests for resolve_method"""

    @pytest.mark.parametrize("name", ["bionet", "BioNet", "BIONET", "bio", " bionet "])
    def test_bionet_variants(self, name):
        assert resolve_method(name) == "bionet"

    def test_sili_under_development(self):
        with pytest.raises(InputError, match="under development"):
            resolve_method("sili")

    @pytest.mark.parametrize("name", ["heinz", "", "xyz"])
    def test_unknown_method(self, name):
        with pytest.raises(InputError, match="not valid"):
            resolve_method(name)


class TestNodeList:
    """Tests for dedupe_nodelist / node_ids_from_nodelist"""

    def test_duplicates_on_second_column_removed(self):
        deduped = dedupe_nodelist(_nodelist())
        assert len(deduped) == 4
        assert deduped['gid'].tolist() == [1110, 10413, 196, 51]
        # first occurrence kept
        assert deduped.loc[deduped['gid'] == 196, 'nodename'].item() == 'Malate'

    def test_none_passthrough(self):
        assert dedupe_nodelist(None) is None

    def test_single_column_rejected(self):
        with pytest.raises(InputError):
            dedupe_nodelist(pd.DataFrame({'id': [1, 2]}))

    def test_node_ids(self):
        assert node_ids_from_nodelist(_nodelist()) == {1, 2, 3, 4, 5}
        assert node_ids_from_nodelist(None) is None


class TestCoercePValues:
    """Tests for coerce_pvalues"""

    def test_mapping(self):
        assert coerce_pvalues({'A': 0.01, 'B': '0.5'}) == {'A': 0.01, 'B': 0.5}

    def test_series(self):
        s = pd.Series([0.01, 0.2], index=['A', 'B'])
        assert coerce_pvalues(s) == {'A': 0.01, 'B': 0.2}

    def test_blank_and_missing_become_one(self):
        df = pd.DataFrame({'node': ['A', 'B', 'C', 'D'], 'p': ['0.01', '', None, np.nan]})
        assert coerce_pvalues(df) == {'A': 0.01, 'B': 1.0, 'C': 1.0, 'D': 1.0}

    def test_duplicates_keep_first(self):
        df = pd.DataFrame({'node': ['A', 'A', 'B'], 'p': [0.01, 0.9, 0.5]})
        assert coerce_pvalues(df) == {'A': 0.01, 'B': 0.5}

    def test_only_first_two_columns_used(self):
        df = pd.DataFrame({'node': ['A'], 'p': [0.02], 'other': [0.9]})
        assert coerce_pvalues(df) == {'A': 0.02}

    def test_external_ids_mapped_through_nodelist(self):
        nodes = dedupe_nodelist(_nodelist())
        df = pd.DataFrame({'pubchem': [1110, 196, 99999], 'stat': [0.01, 0.03, 0.5]})
        pv = coerce_pvalues(df, nodelist=nodes, internalid=False)
        assert pv == {1: 0.01, 3: 0.03}

    def test_external_ids_need_nodelist(self):
        df = pd.DataFrame({'pubchem': [1110], 'stat': [0.01]})
        with pytest.raises(InputError):
            coerce_pvalues(df, nodelist=None, internalid=False)

    def test_non_numeric_rejected(self):
        with pytest.raises(InputError):
            coerce_pvalues({'A': 'significant'})

    def test_empty_rejected(self):
        with pytest.raises(InputError):
            coerce_pvalues({})
        with pytest.raises(InputError):
            coerce_pvalues(None)

    def test_unsupported_type(self):
        with pytest.raises(InputError):
            coerce_pvalues([0.1, 0.2])


class TestGUIColumns:
    """Tests for select_gui_columns"""

    def test_pubchem_column_selected_and_renamed(self):
        df = pd.DataFrame({'PubChem': [1110, 196], 'pval': [0.01, 0.2], 'fc': [2.0, 0.5]})
        pv, datinput = select_gui_columns(df, 'pval')
        assert list(pv.columns) == ['PubChem', 'pval']
        assert 'grinn' in datinput.columns
        assert 'PubChem' not in datinput.columns
        assert list(datinput.columns) == ['grinn', 'pval', 'fc']

    def test_priority_order(self):
        df = pd.DataFrame({'uniprot': ['P1'], 'grinn': ['g1'], 'pval': [0.1]})
        pv, _ = select_gui_columns(df, 'pval')
        assert pv.columns[0] == 'grinn'

    def test_missing_pcol(self):
        df = pd.DataFrame({'grinn': ['g1'], 'pval': [0.1]})
        with pytest.raises(InputError):
            select_gui_columns(df, 'padj')

    def test_not_a_table(self):
        with pytest.raises(InputError):
            select_gui_columns({'g1': 0.1}, 'pval')


class TestFoldChanges:

    def test_mapping_and_series(self):
        assert coerce_fold_changes({'A': '2.5'}) == {'A': 2.5}
        assert coerce_fold_changes(pd.Series([1.5], index=['B'])) == {'B': 1.5}
        assert coerce_fold_changes(None) == {}

    def test_non_numeric(self):
        with pytest.raises(InputError):
            coerce_fold_changes({'A': 'up'})


class TestEdgeList:
    """Tests for network_from_edgelist"""

    def test_basic(self):
        df = pd.DataFrame({'source': ['A', 'B', 'C'], 'target': ['B', 'C', 'D']})
        net = network_from_edgelist(df)
        assert net.nodes == frozenset('ABCD')
        assert net.edges == (('A', 'B'), ('B', 'C'), ('C', 'D'))

    def test_self_loops_and_duplicates_dropped(self):
        df = pd.DataFrame({'source': ['A', 'B', 'A', 'C'], 'target': ['B', 'A', 'A', 'C']})
        net = network_from_edgelist(df)
        assert net.edges == (('A', 'B'),)

    def test_edge_attributes_kept(self):
        df = pd.DataFrame({'source': ['B'], 'target': ['A'], 'type': ['Biochemical']})
        net = network_from_edgelist(df)
        assert net.edge_attributes[('A', 'B')] == {'type': 'Biochemical'}

    def test_reversed_duplicate_keeps_first_row(self):
        df = pd.DataFrame({'source': ['B', 'A'], 'target': ['A', 'B'], 'type': ['first', 'second']})
        net = network_from_edgelist(df)
        assert net.edges == (('A', 'B'),)
        assert net.edge_attributes[('A', 'B')] == {'type': 'first'}
        assert net.oriented(('A', 'B')) == ('B', 'A')

    def test_missing_endpoints_skipped(self):
        df = pd.DataFrame({'source': ['A', None], 'target': ['B', 'C']})
        assert network_from_edgelist(df).edges == (('A', 'B'),)

    @pytest.mark.parametrize("df", [
        pd.DataFrame({'source': []}),
        pd.DataFrame({'source': [], 'target': []}),
    ])
    def test_malformed(self, df):
        with pytest.raises(InputError):
            network_from_edgelist(df)

    def test_not_a_frame(self):
        with pytest.raises(InputError):
            network_from_edgelist([('A', 'B')])
