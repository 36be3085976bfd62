"""
Parametric angles of sites and bounds of the tracked arc.

Angles live in [0, 2pi). The arc is delimited by the largest angular gap
between consecutive sites; when that gap wraps through 0, alpha2 is carried
past 2pi so that alpha1 <= alpha2 still holds.
"""

import math

import numpy as np

from ellipsetrack.models import TWO_PI, ArcBounds


def wrap_angle(alpha):
    """Map an angle into [0, 2pi)."""
    wrapped = math.fmod(alpha, TWO_PI)
    if wrapped < 0:
        wrapped += TWO_PI
    if wrapped >= TWO_PI - 1e-12:
        wrapped = 0.0
    return wrapped


def angle_of(point, parameters):
    """
    Parametric angle of point on the ellipse described by parameters.

    Inverts i = ic + b ce cos(a) - a se sin(a), j = jc + b se cos(a) + a ce sin(a).
    """
    di = point.i - parameters.center.i
    dj = point.j - parameters.center.j
    ce, se = parameters.cos_e, parameters.sin_e
    u = di * ce + dj * se  # along the major axis, b cos(alpha)
    v = -di * se + dj * ce  # along the minor axis, a sin(alpha)
    return wrap_angle(math.atan2(v / parameters.a, u / parameters.b))


def index_sites(sites, parameters):
    """Return the sites with alpha recomputed for the current parameters."""
    return [s.model_copy(update={"alpha": angle_of(s.point, parameters)}) for s in sites]


def arc_bounds(sites, parameters, full_gap):
    """
    Compute the bounds of the arc covered by sites.

    The arc is full when no gap between angularly consecutive sites exceeds
    full_gap. Otherwise the bounds are the two angles bordering the largest
    gap.
    """
    if not sites:
        return ArcBounds()

    alphas = np.sort(np.array([s.alpha for s in sites], dtype=np.float64))
    gaps = np.diff(np.append(alphas, alphas[0] + TWO_PI))
    largest = int(np.argmax(gaps))

    if len(alphas) > 1 and gaps[largest] <= full_gap:
        return ArcBounds(
            alpha1=0.0,
            alpha2=TWO_PI,
            point1=parameters.point_at(0.0),
            point2=parameters.point_at(0.0),
            full=True,
        )

    alpha1 = float(alphas[(largest + 1) % len(alphas)])
    alpha2 = float(alphas[largest])
    if alpha2 < alpha1:
        alpha2 += TWO_PI

    return ArcBounds(
        alpha1=alpha1,
        alpha2=alpha2,
        point1=parameters.point_at(alpha1),
        point2=parameters.point_at(alpha2),
        full=False,
    )


def order_sites(sites, bounds):
    """Sites ordered along the arc, starting at alpha1."""
    def key(site):
        return wrap_angle(site.alpha - bounds.alpha1)
    return sorted(sites, key=key)


def angular_distance(alpha, beta):
    """Smallest absolute difference between two angles."""
    d = wrap_angle(alpha - beta)
    return min(d, TWO_PI - d)
