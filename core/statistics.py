"""
Statistical Methods for grinn
=============================
Beta-uniform mixture (BUM) fitting of p-value distributions, FDR-derived
p-value cutoffs and signed node scores.

The BUM model (Pounds & Morris, 2003) describes the p-values of a
screen as a mixture of a uniform null component and a beta(lam, 1)
signal component:

    f(x) = a + (1 - a) * lam * x**(lam - 1),    0 < a < 1, 0 < lam < 1

Node scores follow Dittrich et al. (2008): a p-value's score is its
log-likelihood ratio of signal against background, shifted so that the
FDR-derived cutoff scores exactly zero.
"""

import logging
from typing import Dict, Hashable, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy import optimize

from core.data_structures import FittedNullModel
from core.exceptions import InputError, ModelFitError, ThresholdError

logger = logging.getLogger(__name__)

# Fewer usable p-values than this cannot identify two parameters
MIN_FIT_PVALUES = 2
# Parameters are kept strictly inside (0, 1)
BUM_EPS = 1e-6
# Starting points (a, lam) for the likelihood optimisation
BUM_STARTS: Tuple[Tuple[float, float], ...] = (
    (0.5, 0.5), (0.1, 0.1), (0.9, 0.1), (0.1, 0.9), (0.9, 0.9), (0.5, 0.05),
)
# p-values of exactly zero are scored as if they were the smallest positive double
PVALUE_FLOOR = np.finfo(float).tiny


def validate_pvalues(pvalues: Sequence[float]) -> np.ndarray:
    """
    Coerce p-values to a float array and check they lie in [0, 1].

    Raises:
        InputError: if the vector is empty or contains values outside [0, 1]
    """
    x = np.asarray(list(pvalues), dtype=float)
    if x.size == 0:
        raise InputError("p-value vector is empty")
    bad = ~np.isfinite(x) | (x < 0.0) | (x > 1.0)
    if bad.any():
        raise InputError(
            f"{int(bad.sum())} p-value(s) outside [0, 1] or not finite "
            f"(e.g. {x[bad][:3].tolist()})"
        )
    return x


def bum_density(x: np.ndarray, a: float, lam: float) -> np.ndarray:
    """Density of the beta-uniform mixture at x."""
    x = np.asarray(x, dtype=float)
    return a + (1.0 - a) * lam * np.power(x, lam - 1.0)


def bum_log_likelihood(x: np.ndarray, a: float, lam: float) -> float:
    """Log-likelihood of the mixture for p-values x (all in (0, 1])."""
    return float(np.sum(np.log(bum_density(x, a, lam))))


def fit_bum_model(pvalues: Sequence[float],
                  starts: Sequence[Tuple[float, float]] = BUM_STARTS) -> FittedNullModel:
    """
    Fit a beta-uniform mixture to p-values by maximum likelihood.

    Exact zeros are undefined under the beta density and are dropped
    before fitting; they are handled at scoring time instead.

    Args:
        pvalues: p-values in [0, 1]
        starts: (a, lam) starting points; the best converged optimum is kept

    Returns:
        FittedNullModel with the uniform weight `a` and beta shape `lam`

    Raises:
        InputError: if the p-values are empty or out of range
        ModelFitError: if too few non-zero p-values remain, or no start converges
    """
    x = validate_pvalues(pvalues)
    n_zero = int(np.sum(x == 0.0))
    x = x[x > 0.0]
    if n_zero:
        logger.info(f"Excluding {n_zero} zero p-value(s) from BUM fit")
    if x.size < MIN_FIT_PVALUES:
        raise ModelFitError(
            f"BUM fit needs at least {MIN_FIT_PVALUES} non-zero p-values, got {x.size}"
        )

    log_x = np.log(x)

    def neg_log_lik(theta: np.ndarray) -> float:
        a, lam = theta
        dens = a + (1.0 - a) * lam * np.exp((lam - 1.0) * log_x)
        return -float(np.sum(np.log(dens)))

    bounds = [(BUM_EPS, 1.0 - BUM_EPS), (BUM_EPS, 1.0 - BUM_EPS)]
    best = None
    for a0, lam0 in starts:
        with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
            res = optimize.minimize(
                neg_log_lik, x0=np.array([a0, lam0]),
                method='L-BFGS-B', bounds=bounds,
            )
        if not np.isfinite(res.fun):
            continue
        # Strict '<' keeps the earliest start on ties (deterministic)
        if best is None or res.fun < best.fun - 1e-12:
            best = res

    if best is None:
        raise ModelFitError("BUM likelihood optimisation did not converge from any start")

    a, lam = (float(v) for v in best.x)
    model = FittedNullModel(a=a, lam=lam, n_pvalues=int(x.size), log_likelihood=-float(best.fun))

    on_bound = [name for name, v in (("a", a), ("lam", lam))
                if v <= 2 * BUM_EPS or v >= 1.0 - 2 * BUM_EPS]
    if on_bound:
        logger.warning(
            f"BUM fit reached a parameter bound ({', '.join(on_bound)}); "
            f"p-value distribution may carry no signal"
        )
    logger.info(
        f"BUM fit: a={a:.4f}, lam={lam:.4f}, n={x.size}, "
        f"logL={model.log_likelihood:.3f}"
    )
    return model


def has_signal_component(model: FittedNullModel) -> bool:
    """
    False if the fit collapsed onto the uniform distribution.

    With lam on its upper bound the beta component is itself uniform, and
    with a on its upper bound it carries no weight. Either way f(1) is 1
    and no p-value cutoff separates signal from background.
    """
    on_bound = model.lam >= 1.0 - 2 * BUM_EPS or model.a >= 1.0 - 2 * BUM_EPS
    return not on_bound and model.pi_upper < 1.0 - BUM_EPS


def expected_fdr(model: FittedNullModel, cutoff: float) -> float:
    """
    FDR implied by calling every p-value <= cutoff significant.

    FDR(t) = pi_upper * t / F(t),  F(t) = a*t + (1 - a)*t**lam
    """
    if cutoff <= 0:
        return 0.0
    cdf = model.a * cutoff + (1.0 - model.a) * cutoff ** model.lam
    return float(model.pi_upper * cutoff / cdf)


def fdr_threshold(model: FittedNullModel, fdr: float) -> float:
    """
    p-value cutoff at which the expected FDR equals `fdr`.

    Closed form of pi_upper * t / F(t) = fdr:

        t* = ((pi_upper - fdr * a) / (fdr * (1 - a))) ** (1 / (lam - 1))

    Raises:
        ThresholdError: if fdr is outside (0, 1) or no cutoff in (0, 1) exists
    """
    if not (0.0 < fdr < 1.0):
        raise ThresholdError(f"fdr must be in (0, 1), got {fdr}")
    a, lam = model.a, model.lam
    if not (0.0 < a < 1.0) or not (0.0 < lam < 1.0):
        raise ThresholdError(f"Model parameters out of range: a={a}, lam={lam}")

    base = (model.pi_upper - fdr * a) / (fdr * (1.0 - a))
    if base <= 0:
        raise ThresholdError(f"No FDR cutoff for fdr={fdr} (a={a:.4f}, lam={lam:.4f})")
    with np.errstate(over='ignore', under='ignore', divide='ignore'):
        tau = float(np.exp(np.log(base) / (lam - 1.0)))

    if not np.isfinite(tau) or not (0.0 < tau < 1.0):
        raise ThresholdError(
            f"FDR cutoff {tau!r} for fdr={fdr} is not inside (0, 1) "
            f"(a={a:.4f}, lam={lam:.4f})"
        )
    logger.info(f"FDR {fdr}: p-value cutoff {tau:.4g}")
    return tau


def score_pvalue(pvalue: float, model: FittedNullModel, threshold: float) -> float:
    """
    Signed score of a single p-value.

        score(p) = (lam - 1) * (ln p - ln t*)

    Positive below the cutoff, negative above it, zero at it. A p-value of
    zero receives the score of PVALUE_FLOOR, the maximal finite score.
    """
    p = max(float(pvalue), PVALUE_FLOOR)
    return (model.lam - 1.0) * (np.log(p) - np.log(threshold))


def score_pvalues(pvalues: Mapping[Hashable, float],
                  model: FittedNullModel,
                  fdr: float,
                  threshold: Optional[float] = None) -> Dict[Hashable, float]:
    """
    Score every node's p-value against the FDR cutoff.

    Args:
        pvalues: Node id -> p-value in [0, 1] (zeros allowed)
        model: Fitted BUM model
        fdr: Target false discovery rate
        threshold: Precomputed cutoff (computed from model and fdr when None)

    Returns:
        Dict of node id -> score (positive = signal, negative = background)
    """
    if threshold is None:
        threshold = fdr_threshold(model, fdr)
    ids = list(pvalues.keys())
    p = np.maximum(validate_pvalues(pvalues[k] for k in ids), PVALUE_FLOOR)
    scores = (model.lam - 1.0) * (np.log(p) - np.log(threshold))
    n_pos = int(np.sum(scores > 0))
    logger.info(f"Scored {len(ids)} nodes: {n_pos} positive, {len(ids) - n_pos} non-positive")
    return {k: float(s) for k, s in zip(ids, scores)}
