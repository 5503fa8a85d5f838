"""
Error Taxonomy for grinn Subnetwork Extraction
==============================================
Hard errors derive from SubnetworkError and abort the pipeline.
PartialOptimizationWarning is advisory: the result is usable but not
proven optimal.
"""


class SubnetworkError(Exception):
    """Base class for every hard error raised by the pipeline stages."""


class InputError(SubnetworkError):
    """Malformed or empty network / p-value input, or invalid configuration."""


class ModelFitError(SubnetworkError):
    """Beta-uniform mixture could not be fitted to the p-values."""


class ThresholdError(SubnetworkError):
    """No valid p-value cutoff exists for the requested FDR."""


class OptimizationError(SubnetworkError):
    """Solver unavailable or structurally failed (not a timeout)."""


class AssemblyError(SubnetworkError):
    """Attributes could not be reattached to an extracted subnetwork."""


class PartialOptimizationWarning(UserWarning):
    """Optimizer stopped at its time budget; best incumbent returned."""
