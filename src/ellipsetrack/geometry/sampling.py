"""
Sampling of candidate sites along the current ellipse estimate.
"""

import math

from ellipsetrack.geometry.angles import angular_distance, wrap_angle
from ellipsetrack.models import TWO_PI, Site
from ellipsetrack.tracer import get_tracer, trace


@trace(label="sample_arc", arg_names=["parameters", "step"])
def sample_arc(parameters, alpha1, alpha2, step, min_separation=None):
    """
    Sample sites at evenly spaced parametric angles from alpha1 to alpha2.

    Args:
        parameters: EllipseParameters of the curve to sample
        alpha1, alpha2: arc bounds in radians, alpha1 <= alpha2
        step: angular step in radians
        min_separation: minimum angle between two sites (defaults to step / 2)

    Returns:
        list of Site with increasing alpha (wrapped into [0, 2pi))
    """
    tracer = get_tracer()

    if step <= 0:
        raise ValueError(f"Sampling step must be positive, got {step}")
    if min_separation is None:
        min_separation = step / 2

    span = alpha2 - alpha1
    full = span >= TWO_PI - 1e-9
    if full:
        count = max(1, int(round(TWO_PI / step)))
    else:
        count = int(math.floor(span / step + 1e-9)) + 1

    sites = []
    for k in range(count):
        alpha = wrap_angle(alpha1 + k * step)
        if sites and angular_distance(alpha, sites[-1].alpha) < min_separation:
            continue
        if full and sites and angular_distance(alpha, sites[0].alpha) < min_separation:
            continue
        sites.append(Site(point=parameters.point_at(alpha), alpha=alpha))

    tracer.event(f"Sampled {len(sites)} sites", level="DEBUG", alpha1=alpha1, alpha2=alpha2)

    return sites


def sample_ellipse(parameters, step):
    """Sample the whole curve starting at alpha = 0."""
    return sample_arc(parameters, 0.0, TWO_PI, step)


def expected_site_count(bounds, step):
    """Number of sites a fully populated arc should hold."""
    if bounds.full:
        return max(1, int(round(TWO_PI / step)))
    return int(math.floor(bounds.span / step + 1e-9)) + 1
