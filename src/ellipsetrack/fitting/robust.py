"""
M-estimator weights for the iteratively re-weighted conic fit.

Residual scale comes from the median absolute deviation; a noise floor
keeps exact data from producing a vanishing scale.
"""

import numpy as np

TUKEY_C = 4.6851
MAD_TO_SIGMA = 1.4826


def mad_scale(residuals, noise_threshold=0.0):
    """Robust standard deviation of residuals, floored at noise_threshold."""
    residuals = np.asarray(residuals, dtype=np.float64)
    if residuals.size == 0:
        return float(noise_threshold)
    med = np.median(residuals)
    sigma = MAD_TO_SIGMA * np.median(np.abs(residuals - med))
    if not np.isfinite(sigma):
        sigma = 0.0
    return float(max(sigma, noise_threshold))


def tukey_weights(residuals, scale, c=TUKEY_C):
    """
    Tukey biweight for each residual.

    Weights are 1 at zero residual and fall to 0 at |r| >= c * scale.
    """
    residuals = np.asarray(residuals, dtype=np.float64)
    if scale <= 0:
        return np.ones_like(residuals)
    u = residuals / (c * scale)
    weights = (1.0 - u * u) ** 2
    weights[np.abs(u) >= 1.0] = 0.0
    return weights
