"""
Robust least-squares estimation of the implicit conic.

Fits i^2 + K0 j^2 + 2 K1 ij + 2 K2 i + 2 K3 j + K4 = 0 (or the circle form
with K0 = 1, K1 = 0) to the tracked sites. The robust variant re-weights
the sites from their residuals until the weights settle, then drops the ones
whose weight falls below the rejection threshold.
"""

import numpy as np

from ellipsetrack.errors import DegenerateGeometryError, InsufficientPointsError
from ellipsetrack.fitting.parameters import conic_to_ellipse
from ellipsetrack.fitting.robust import mad_scale, tukey_weights
from ellipsetrack.models import ConicCoefficients, FitResult
from ellipsetrack.tracer import get_tracer, trace

ELLIPSE_MIN_POINTS = 5
CIRCLE_MIN_POINTS = 3
COLLINEAR_RATIO = 1e-9


def min_points(circle):
    """Number of distinct points needed to fit the conic of a mode."""
    return CIRCLE_MIN_POINTS if circle else ELLIPSE_MIN_POINTS


def _as_array(points):
    """Convert ImagePoints, Sites or (i, j) pairs to an (N, 2) array."""
    rows = []
    for p in points:
        if hasattr(p, "point"):
            p = p.point
        if hasattr(p, "i"):
            rows.append((p.i, p.j))
        else:
            rows.append((float(p[0]), float(p[1])))
    return np.asarray(rows, dtype=np.float64).reshape(-1, 2)


def count_distinct(pts):
    """Number of distinct rows of an (N, 2) array."""
    if len(pts) == 0:
        return 0
    return len(np.unique(np.round(pts, 9), axis=0))


def _check_collinear(pts):
    centered = pts - pts.mean(axis=0)
    eigenvalues = np.linalg.eigvalsh(centered.T @ centered)
    if eigenvalues[1] <= 0 or eigenvalues[0] / eigenvalues[1] < COLLINEAR_RATIO:
        raise DegenerateGeometryError("Points are collinear")


def _normalization(pts):
    """Centroid and isotropic scale that bring the points near unit size."""
    mean = pts.mean(axis=0)
    scale = np.mean(np.linalg.norm(pts - mean, axis=1)) / np.sqrt(2.0)
    if scale <= 0:
        scale = 1.0
    return mean, scale


def _design_matrix(uv, circle):
    u, v = uv[:, 0], uv[:, 1]
    ones = np.ones_like(u)
    if circle:
        a = np.column_stack([2 * u, 2 * v, ones])
        rhs = -(u * u + v * v)
    else:
        a = np.column_stack([v * v, 2 * u * v, 2 * u, 2 * v, ones])
        rhs = -(u * u)
    return a, rhs


def _denormalize(k, mean, scale):
    """Express normalized-frame coefficients in image coordinates."""
    k0, k1, k2, k3, k4 = k
    mi, mj = mean
    s = scale
    return ConicCoefficients(
        k0=k0,
        k1=k1,
        k2=s * k2 - mi - k1 * mj,
        k3=s * k3 - k0 * mj - k1 * mi,
        k4=(mi * mi + k0 * mj * mj + 2 * k1 * mi * mj
            - 2 * s * (k2 * mi + k3 * mj) + k4 * s * s),
    )


def fit_conic(points, circle=False, weights=None):
    """
    Weighted linear least-squares fit of the conic to points.

    Args:
        points: ImagePoints, Sites or (i, j) pairs
        circle: fit the three-parameter circle form
        weights: optional per-point weights (None means uniform)

    Returns:
        ConicCoefficients

    Raises InsufficientPointsError if too few distinct weighted points are
    given and DegenerateGeometryError if they are collinear or the solution
    is not a real ellipse.
    """
    pts = _as_array(points)
    if weights is None:
        weights = np.ones(len(pts))
    weights = np.asarray(weights, dtype=np.float64)

    usable = pts[weights > 0]
    required = min_points(circle)
    distinct = count_distinct(usable)
    if distinct < required:
        raise InsufficientPointsError(distinct, required)

    _check_collinear(usable)

    mean, scale = _normalization(usable)
    a, rhs = _design_matrix((pts - mean) / scale, circle)
    sqrt_w = np.sqrt(weights)
    solution, _, rank, _ = np.linalg.lstsq(a * sqrt_w[:, None], rhs * sqrt_w, rcond=None)
    if rank < a.shape[1]:
        raise DegenerateGeometryError(f"Rank deficient system (rank {rank} < {a.shape[1]})")

    if circle:
        k = (1.0, 0.0, solution[0], solution[1], solution[2])
    else:
        k = tuple(solution)
    coefficients = _denormalize(k, mean, scale)

    # raises DegenerateGeometryError for hyperbolas, parabolas and imaginary ellipses
    conic_to_ellipse(coefficients, circle=circle)

    return coefficients


def sampson_distances(coefficients, pts):
    """First-order geometric distance of each point to the conic."""
    k0, k1, k2, k3, k4 = coefficients.as_list()
    i, j = pts[:, 0], pts[:, 1]
    q = i * i + k0 * j * j + 2 * k1 * i * j + 2 * k2 * i + 2 * k3 * j + k4
    gi = 2 * (i + k1 * j + k2)
    gj = 2 * (k0 * j + k1 * i + k3)
    norm = np.maximum(np.hypot(gi, gj), 1e-12)
    return q / norm


def _polar_order(pts):
    """Indices of pts sorted by angle around their centroid."""
    centered = pts - pts.mean(axis=0)
    return np.argsort(np.arctan2(centered[:, 1], centered[:, 0]), kind="stable")


def consensus_start(pts, weights, circle=False):
    """
    Initial conic that is not dragged by a contiguous run of bad edges.

    Candidates are the fit on every point and the fits that leave out one
    block of a quarter of the points, taken in angular order around the
    centroid. The candidate with the smallest median absolute Sampson
    residual over all points wins.

    Raises the error of the fit on every point if no candidate can be fitted.
    """
    n = len(pts)
    usable = weights > 0
    masks = [np.ones(n, dtype=bool)]

    block = max(1, n // 4)
    if n - block >= min_points(circle):
        order = _polar_order(pts)
        for start in range(0, n, max(1, block // 3)):
            mask = np.ones(n, dtype=bool)
            mask[order[np.arange(start, start + block) % n]] = False
            masks.append(mask)

    best, best_score, first_error = None, np.inf, None
    for mask in masks:
        try:
            coefficients = fit_conic(pts[mask], circle=circle, weights=weights[mask])
        except (InsufficientPointsError, DegenerateGeometryError) as e:
            if first_error is None:
                first_error = e
            continue
        score = float(np.median(np.abs(sampson_distances(coefficients, pts[usable]))))
        if score < best_score:
            best, best_score = coefficients, score

    if best is None:
        raise first_error
    return best


@trace(label="robust_fit", arg_names=["sites", "threshold"])
def robust_fit(sites, threshold, circle=False, max_iterations=10, epsilon=1e-3,
               noise_threshold=2.0):
    """
    Iteratively re-weighted conic fit followed by outlier suppression.

    Weights start from the residuals of consensus_start. Each iteration
    solves the weighted system and converts the Sampson residual of every
    site to a Tukey weight; nothing is removed while the weights settle. The
    loop ends when no weight moved more than epsilon or after max_iterations
    solves. Sites whose final weight is below threshold are then suppressed
    and the conic is solved once more on the rest.

    Returns a FitResult whose sites carry their final robust weight.
    """
    tracer = get_tracer()

    active = list(sites)
    pts = _as_array(active)
    edge_weights = np.array([s.weight for s in active], dtype=np.float64)

    coefficients = consensus_start(pts, edge_weights, circle=circle)
    residuals = sampson_distances(coefficients, pts)
    robust = tukey_weights(residuals, mad_scale(residuals, noise_threshold))

    iterations = 0
    for iterations in range(1, max(1, max_iterations) + 1):
        coefficients = fit_conic(pts, circle=circle, weights=edge_weights * robust)
        residuals = sampson_distances(coefficients, pts)
        new_weights = tukey_weights(residuals, mad_scale(residuals, noise_threshold))
        change = float(np.max(np.abs(new_weights - robust)))
        robust = new_weights
        if change < epsilon:
            break

    suppressed = []
    rejected = robust < threshold
    if rejected.any():
        suppressed = [s for s, r in zip(active, rejected) if r]
        active = [s for s, r in zip(active, rejected) if not r]
        pts = pts[~rejected]
        edge_weights = edge_weights[~rejected]
        robust = robust[~rejected]
        tracer.event(f"Suppressed {len(suppressed)} sites", level="DEBUG", remaining=len(active))
        coefficients = fit_conic(pts, circle=circle, weights=edge_weights * robust)

    kept = [
        s.model_copy(update={"fit_weight": float(min(1.0, max(0.0, w)))})
        for s, w in zip(active, robust)
    ]

    tracer.event(f"Robust fit: {len(kept)} kept, {len(suppressed)} suppressed in {iterations} iterations")

    return FitResult(
        coefficients=coefficients,
        sites=kept,
        suppressed=suppressed,
        iterations=iterations,
    )
