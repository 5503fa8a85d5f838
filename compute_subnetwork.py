#!/usr/bin/env python3
"""
grinn: Active Subnetwork Extraction
===================================
Identify the connected region of an interaction network that carries
more signal than expected by chance, at a controlled false discovery rate.

Pipeline (BioNet methodology):
1. Normalize edges, node table and p-values
2. Fit a beta-uniform mixture to the p-value distribution
3. Score nodes: positive below the FDR-derived p-value cutoff, negative above
4. Extract the maximum-weight connected subgraph (exact MILP or heuristic)
5. Reattach attributes and encode the result

References:
- Beisser D., Klau GW., Dandekar T., Müller T. and Dittrich MT. (2010)
  BioNet: an R-Package for the functional analysis of biological networks.
  Bioinformatics, 26(8):1129-30
- Dittrich MT., Klau GW., Rosenwald A., Dandekar T., Müller T. (2008)
  Identifying functional modules in protein-protein interaction networks:
  an integrated exact approach. Bioinformatics, 24(13):i223-31

Usage:
    python compute_subnetwork.py --edges edges.csv --pvalues pvals.csv --output results/
    python compute_subnetwork.py --edges edges.csv --nodes nodes.csv --pvalues pvals.csv \\
        --external-ids --fdr 0.1 --returnas json
"""

import logging
import warnings
from pathlib import Path
from typing import Any, Dict, Hashable, List, Mapping, Optional

import pandas as pd

from core.data_structures import (
    Network, PipelineConfig, PipelineResult, PipelineStage, Subnetwork,
)
from core.exceptions import InputError, PartialOptimizationWarning, SubnetworkError
from core.statistics import fdr_threshold, fit_bum_model, has_signal_component, score_pvalues
from grinn.assembly import assemble, empty_result, validate_returnas
from grinn.constants import DEFAULT_FDR, DEFAULT_METHOD, DEFAULT_RETURNAS, DEFAULT_TIME_LIMIT
from grinn.extraction import make_extractor
from grinn.normalization import (
    coerce_fold_changes, coerce_pvalues, dedupe_nodelist, network_from_edgelist,
    node_ids_from_nodelist, resolve_method, select_gui_columns,
)

logger = logging.getLogger(__name__)


def _partial_messages(caught) -> List[str]:
    """Messages of recorded PartialOptimizationWarnings; others are re-logged."""
    messages = []
    for w in caught:
        if issubclass(w.category, PartialOptimizationWarning):
            messages.append(str(w.message))
        else:
            logger.warning(f"{w.category.__name__}: {w.message}")
    return messages


# ============================================================================
# PIPELINE
# ============================================================================

class SubnetworkPipeline:
    """
    Linear state machine: NORMALIZING -> FITTING -> SCORING -> EXTRACTING
    -> ASSEMBLING -> DONE. Any SubnetworkError moves to FAILED and yields
    an empty subnetwork with a diagnostic; nothing is retried.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.stage = PipelineStage.NORMALIZING

    def _enter(self, stage: PipelineStage) -> None:
        logger.info(f"Pipeline: {self.stage.value} -> {stage.value}")
        self.stage = stage

    def run(self, network: Network, pvalues: Mapping[Hashable, float]) -> PipelineResult:
        """
        Run fitting, scoring and extraction on normalized input.

        Args:
            network: Interaction network
            pvalues: Node id -> p-value in [0, 1]

        Returns:
            PipelineResult; never raises for pipeline-stage errors
        """
        self.stage = PipelineStage.NORMALIZING
        model = threshold = None
        scores: Dict[Hashable, float] = {}
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", PartialOptimizationWarning)
            try:
                resolve_method(self.config.method)
                if not network.nodes:
                    raise InputError("network is empty")
                if not pvalues:
                    raise InputError("p-value vector is empty")
                scored_ids = [n for n in pvalues if n in network.nodes]
                if not scored_ids:
                    raise InputError("no p-value identifier matches a network node")

                self._enter(PipelineStage.FITTING)
                model = fit_bum_model(list(pvalues.values()))

                if has_signal_component(model):
                    self._enter(PipelineStage.SCORING)
                    threshold = fdr_threshold(model, self.config.fdr)
                    scores = score_pvalues(pvalues, model, self.config.fdr, threshold=threshold)

                    self._enter(PipelineStage.EXTRACTING)
                    extractor = make_extractor(self.config)
                    subnetwork = extractor.extract(network, scores, pvalues)
                else:
                    logger.warning(
                        f"p-values look uniform (a={model.a:.4f}, lam={model.lam:.4f}); "
                        f"no FDR cutoff, nothing to extract"
                    )
                    subnetwork = Subnetwork.empty()
            except SubnetworkError as e:
                failed_at = self.stage
                self._enter(PipelineStage.FAILED)
                logger.error(f"{type(e).__name__} during {failed_at.value}: {e}")
                logger.error("RETURN no network")
                return PipelineResult(
                    subnetwork=Subnetwork.empty(), stage=PipelineStage.FAILED,
                    error=type(e).__name__, diagnostic=str(e),
                    model=model, threshold=threshold, scores=scores,
                    warnings=_partial_messages(caught),
                )

        diagnostic = ""
        if threshold is None:
            diagnostic = ("no node scored above the FDR cutoff: the p-value distribution "
                          "has no signal component")
        elif subnetwork.is_empty:
            diagnostic = "no node scored above the FDR cutoff"
        elif subnetwork.partial:
            diagnostic = "optimizer time budget reached; best incumbent returned"
        self._enter(PipelineStage.ASSEMBLING)
        return PipelineResult(
            subnetwork=subnetwork, stage=PipelineStage.ASSEMBLING, diagnostic=diagnostic,
            model=model, threshold=threshold, scores=scores,
            warnings=_partial_messages(caught),
        )

    def finish(self, result: PipelineResult) -> PipelineResult:
        """Mark an assembled result as DONE."""
        if result.stage == PipelineStage.ASSEMBLING:
            self._enter(PipelineStage.DONE)
            result.stage = PipelineStage.DONE
        return result

    def fail(self, result: PipelineResult, error: SubnetworkError) -> PipelineResult:
        """Mark a result FAILED after the pipeline proper, e.g. while assembling."""
        failed_at = self.stage
        self._enter(PipelineStage.FAILED)
        logger.error(f"{type(error).__name__} during {failed_at.value}: {error}")
        logger.error("RETURN no network")
        result.subnetwork = Subnetwork.empty()
        result.stage = PipelineStage.FAILED
        result.error = type(error).__name__
        result.diagnostic = str(error)
        return result

    def extract(self, network: Network, pvalues: Mapping[Hashable, float]) -> PipelineResult:
        """run() followed by finish(), for callers that need no encoding."""
        return self.finish(self.run(network, pvalues))


# ============================================================================
# PUBLIC ENTRY POINT
# ============================================================================

def compute_subnetwork(edgelist: pd.DataFrame,
                       nodelist: Optional[pd.DataFrame] = None,
                       pval: Any = None,
                       fc: Optional[Mapping[Hashable, float]] = None,
                       fdr: float = DEFAULT_FDR,
                       pcol: Optional[str] = None,
                       internalid: bool = True,
                       method: str = DEFAULT_METHOD,
                       hasatt: bool = False,
                       returnas: str = DEFAULT_RETURNAS,
                       time_limit: Optional[float] = DEFAULT_TIME_LIMIT,
                       exact: bool = True,
                       return_result: bool = False):
    """
    Compute an active subnetwork from node p-values.

    Args:
        edgelist: Edge table; 1st column source, 2nd target, further columns
            are edge attributes
        nodelist: Node table; 1st column node id, 2nd column external id
            ('gid'), further columns node attributes
        pval: Node id -> p-value mapping/Series, or a table whose 1st column
            holds identifiers and 2nd column p-values
        fc: Optional node id -> fold change, reported as column 'fc'
        fdr: False discovery rate (default 0.05)
        pcol: Name of the p-value column in a GUI table (selects GUI mode)
        internalid: Identifiers in a p-value table are node ids (True) or
            external ids resolved through `nodelist` (False)
        method: Scoring method; only 'bionet' is implemented
        hasatt: Node table already carries GUI attributes
        returnas: 'dataframe', 'list' or 'json'
        time_limit: Optimizer time budget in seconds
        exact: Exact MILP extraction (True) or heuristic (False)
        return_result: Also return the PipelineResult with diagnostics

    Returns:
        {'nodes': ..., 'edges': ...} in the requested encoding; the empty
        encoding if anything failed or nothing was found. With
        `return_result`, a tuple (encoded, PipelineResult).
    """
    returnas = validate_returnas(returnas)

    def _fail(e: SubnetworkError):
        logger.error(f"{type(e).__name__}: {e}")
        logger.error("RETURN no network")
        result = PipelineResult(subnetwork=Subnetwork.empty(), stage=PipelineStage.FAILED,
                                error=type(e).__name__, diagnostic=str(e))
        out = empty_result(returnas)
        return (out, result) if return_result else out

    datinput = None
    try:
        config = PipelineConfig(fdr=fdr, method=resolve_method(method),
                                time_limit=time_limit, exact=exact)
        nodelist = dedupe_nodelist(nodelist)
        if pcol is not None:
            pval, datinput = select_gui_columns(pval, pcol)
        pvalues = coerce_pvalues(pval, nodelist=nodelist, internalid=internalid)
        fold_changes = coerce_fold_changes(fc)
        network = network_from_edgelist(edgelist)
        node_ids = node_ids_from_nodelist(nodelist)
        if node_ids is not None:
            network = network.restrict_to(node_ids)
    except SubnetworkError as e:
        return _fail(e)

    pipeline = SubnetworkPipeline(config)
    result = pipeline.run(network, pvalues)
    if result.stage == PipelineStage.FAILED:
        out = empty_result(returnas)
        return (out, result) if return_result else out

    try:
        out = assemble(result.subnetwork, returnas=returnas, network=network, nodelist=nodelist,
                       fc=fold_changes, datinput=datinput, hasatt=hasatt)
    except SubnetworkError as e:
        result = pipeline.fail(result, e)
        out = empty_result(returnas)
        return (out, result) if return_result else out
    result = pipeline.finish(result)
    return (out, result) if return_result else out


# ============================================================================
# COMMAND LINE
# ============================================================================

def _read_table(path: str, blank_is_missing: bool = True) -> pd.DataFrame:
    sep = '\t' if Path(path).suffix in ('.tsv', '.txt') else ','
    if not blank_is_missing:
        return pd.read_csv(path, sep=sep, keep_default_na=False)
    # Nullable dtypes keep integer id columns integral when a cell is blank
    return pd.read_csv(path, sep=sep).convert_dtypes()


def _write_output(out: Dict[str, Any], output_path: Path, returnas: str) -> None:
    output_path.mkdir(exist_ok=True, parents=True)
    if returnas == "dataframe":
        out['nodes'].to_csv(output_path / "subnetwork_nodes.csv", index=False)
        out['edges'].to_csv(output_path / "subnetwork_edges.csv", index=False)
    elif returnas == "json":
        (output_path / "subnetwork_nodes.json").write_text(
            out['nodes'] if isinstance(out['nodes'], str) else "[]")
        (output_path / "subnetwork_edges.json").write_text(
            out['edges'] if isinstance(out['edges'], str) else "[]")
    else:
        pd.DataFrame(out['nodes']).to_csv(output_path / "subnetwork_nodes.csv", index=False)
        pd.DataFrame(out['edges']).to_csv(output_path / "subnetwork_edges.csv", index=False)


def main(argv=None) -> int:
    import argparse

    parser = argparse.ArgumentParser(
        description="grinn - active subnetwork extraction (BUM scoring + maximum-weight connected subgraph)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python compute_subnetwork.py --edges edges.csv --pvalues pvals.csv
  python compute_subnetwork.py --edges edges.csv --pvalues pvals.csv --fdr 0.1 --heuristic
  python compute_subnetwork.py --edges edges.csv --nodes nodes.csv --pvalues stats.csv \\
      --pcol pvalue --returnas json --output results/
        """
    )
    parser.add_argument('--edges', type=str, required=True,
                        help='Edge table (CSV/TSV): source, target, [attributes...]')
    parser.add_argument('--nodes', type=str, default=None,
                        help='Node table (CSV/TSV): id, gid, [attributes...]')
    parser.add_argument('--pvalues', type=str, required=True,
                        help='p-value table (CSV/TSV): identifier, p-value, [...]')
    parser.add_argument('--pcol', type=str, default=None,
                        help='Name of the p-value column (GUI table mode)')
    parser.add_argument('--external-ids', action='store_true',
                        help='p-value identifiers are external ids mapped through the node table')
    parser.add_argument('--fdr', type=float, default=DEFAULT_FDR,
                        help=f'False discovery rate (default: {DEFAULT_FDR})')
    parser.add_argument('--method', type=str, default=DEFAULT_METHOD,
                        help=f'Scoring method (default: {DEFAULT_METHOD})')
    parser.add_argument('--time-limit', type=float, default=DEFAULT_TIME_LIMIT,
                        help=f'Optimizer time budget in seconds (default: {DEFAULT_TIME_LIMIT})')
    parser.add_argument('--heuristic', action='store_true',
                        help='Use heuristic instead of exact MILP extraction')
    parser.add_argument('--returnas', type=str, default="dataframe",
                        choices=['dataframe', 'list', 'json'],
                        help='Output encoding (default: dataframe, written as CSV)')
    parser.add_argument('--output', type=str, default='results',
                        help='Output directory (default: results)')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s:%(name)s:%(message)s')

    edgelist = _read_table(args.edges)
    nodelist = _read_table(args.nodes) if args.nodes else None
    pvals = _read_table(args.pvalues, blank_is_missing=False)

    out, result = compute_subnetwork(
        edgelist, nodelist=nodelist, pval=pvals, fdr=args.fdr, pcol=args.pcol,
        internalid=not args.external_ids, method=args.method, returnas=args.returnas,
        time_limit=args.time_limit, exact=not args.heuristic, return_result=True,
    )

    print("\n" + "=" * 60)
    print("ACTIVE SUBNETWORK")
    print("=" * 60)
    if result.ok and not result.is_empty:
        sub = result.subnetwork
        print(f"  Nodes: {len(sub.nodes)}  Edges: {len(sub.edges)}  Score: {sub.total_score:.3f}")
        print(f"  Mode: {sub.mode.value}{' (partial)' if sub.partial else ''}")
        if result.model is not None:
            print(f"  BUM fit: a={result.model.a:.4f}, lam={result.model.lam:.4f}, "
                  f"cutoff={result.threshold:.4g}")
    else:
        print(f"  No network ({result.error or 'empty'}): {result.diagnostic}")

    output_path = Path(args.output)
    _write_output(out, output_path, args.returnas)
    logger.info(f"Results saved to {output_path}")
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
