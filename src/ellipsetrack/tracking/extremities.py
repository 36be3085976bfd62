"""
Recovery of the arc extremities after sites were lost.

From each end of the tracked arc, candidate points are placed further along
the current ellipse estimate and handed to the edge search. Matches become
new sites; a side gives up after a few consecutive misses.
"""

from ellipsetrack.geometry.angles import wrap_angle
from ellipsetrack.models import TWO_PI, ArcBounds, Site
from ellipsetrack.tracer import get_tracer, trace


@trace(label="seek_extremities", arg_names=["bounds"])
def seek_extremities(image, parameters, bounds, edge_search, step, search_range,
                     max_steps=6, max_failures=2):
    """
    Extend the arc beyond alpha1 and alpha2.

    Args:
        image: current frame, passed through to the edge search
        parameters: current EllipseParameters
        bounds: current ArcBounds
        edge_search: EdgeSearch collaborator
        step: angular increment between candidates, radians
        search_range: edge search half-length, pixels
        max_steps: candidates tried per side
        max_failures: consecutive misses after which a side stops

    Returns:
        (new_sites, ArcBounds) where the bounds cover the matched candidates
    """
    tracer = get_tracer()

    if bounds.full:
        return [], bounds

    low, high = bounds.alpha1, bounds.alpha2
    probes = {-1: low, 1: high}
    failures = {-1: 0, 1: 0}
    tried = {-1: 0, 1: 0}
    new_sites = []

    def active(direction):
        return tried[direction] < max_steps and failures[direction] < max_failures

    while active(-1) or active(1):
        for direction in (-1, 1):
            if not active(direction):
                continue
            # the two probes met on the far side of the curve
            if TWO_PI - (probes[1] - probes[-1]) <= step:
                failures[-1] = failures[1] = max_failures
                break

            alpha = probes[direction] + direction * step
            probes[direction] = alpha
            tried[direction] += 1

            match = edge_search.search(image, parameters.point_at(alpha),
                                       parameters.normal_at(alpha), search_range)
            if match is None:
                failures[direction] += 1
                continue

            failures[direction] = 0
            new_sites.append(Site(point=match.point, weight=match.weight, alpha=wrap_angle(alpha)))
            if direction < 0:
                low = alpha
            else:
                high = alpha

    span = high - low
    if span >= TWO_PI - 1.5 * step:
        result = ArcBounds(
            alpha1=0.0,
            alpha2=TWO_PI,
            point1=parameters.point_at(0.0),
            point2=parameters.point_at(0.0),
            full=True,
        )
    else:
        alpha1 = wrap_angle(low)
        result = ArcBounds(
            alpha1=alpha1,
            alpha2=alpha1 + span,
            point1=parameters.point_at(low),
            point2=parameters.point_at(high),
            full=False,
        )

    tracer.event(f"Seek added {len(new_sites)} sites", span=span, full=result.full)

    return new_sites, result
