"""
grinn Core Modules
==================
Statistical and structural building blocks of active-subnetwork extraction.

This package contains:
- data_structures: Core data classes (Network, FittedNullModel, ScoredNode, Subnetwork, ...)
- exceptions: Error taxonomy (InputError, ModelFitError, ThresholdError, ...)
- statistics: Beta-uniform mixture fitting, FDR cutoffs and node scoring
"""

from .data_structures import (
    Network,
    FittedNullModel,
    ScoredNode,
    Subnetwork,
    PipelineConfig,
    PipelineResult,
    PipelineStage,
    ExtractionMode,
)

from .exceptions import (
    SubnetworkError,
    InputError,
    ModelFitError,
    ThresholdError,
    OptimizationError,
    AssemblyError,
    PartialOptimizationWarning,
)

from .statistics import (
    fit_bum_model,
    fdr_threshold,
    score_pvalue,
    score_pvalues,
    expected_fdr,
    has_signal_component,
)

__all__ = [
    # Data structures
    'Network',
    'FittedNullModel',
    'ScoredNode',
    'Subnetwork',
    'PipelineConfig',
    'PipelineResult',
    'PipelineStage',
    'ExtractionMode',
    # Errors
    'SubnetworkError',
    'InputError',
    'ModelFitError',
    'ThresholdError',
    'OptimizationError',
    'AssemblyError',
    'PartialOptimizationWarning',
    # Statistics
    'fit_bum_model',
    'fdr_threshold',
    'score_pvalue',
    'score_pvalues',
    'expected_fdr',
    'has_signal_component',
]

__version__ = '1.0.0'
