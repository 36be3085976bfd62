"""Pytest fixtures for ellipse tracker tests."""

import math
import tempfile

import numpy as np
import pytest

from ellipsetrack.edges import EdgeMatch
from ellipsetrack.geometry.angles import angle_of, wrap_angle
from ellipsetrack.models import EllipseParameters, ImagePoint


class SyntheticEdgeSearch:
    """
    Edge search that snaps candidates onto a known ellipse.

    visible(alpha) decides which parametric angles of the true ellipse can
    be found; outlier(alpha) returns a pixel offset along the normal to
    simulate a wrong edge.
    """

    def __init__(self, parameters, visible=None, outlier=None):
        self.parameters = parameters
        self.visible = visible or (lambda alpha: True)
        self.outlier = outlier or (lambda alpha: 0.0)
        self.calls = 0

    def search(self, image, point, normal, search_range):
        self.calls += 1
        alpha = angle_of(point, self.parameters)
        if not self.visible(alpha):
            return None
        target = self.parameters.point_at(alpha)
        offset = self.outlier(alpha)
        if offset:
            ni, nj = self.parameters.normal_at(alpha)
            target = ImagePoint(i=target.i + offset * ni, j=target.j + offset * nj)
        if point.distance(target) > search_range:
            return None
        return EdgeMatch(point=target, weight=1.0)


def visible_arc(start_deg, end_deg, tol=1e-6):
    """Predicate true for angles inside [start_deg, end_deg] (may wrap)."""
    start = math.radians(start_deg)
    span = math.radians(end_deg - start_deg)

    def visible(alpha):
        d = wrap_angle(alpha - start)
        return d <= span + tol or d >= 2 * math.pi - tol
    return visible


def points_on(parameters, count, start=0.0, stop=2 * math.pi):
    """Exact points of an ellipse at evenly spaced parametric angles."""
    alphas = np.linspace(start, stop, count, endpoint=(stop - start) < 2 * math.pi)
    return [parameters.point_at(float(a)) for a in alphas]


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def reference_ellipse():
    """Axis aligned ellipse centered at (100, 100)."""
    return EllipseParameters(center=ImagePoint(i=100, j=100), a=30, b=50, e=0.0)


@pytest.fixture
def tilted_ellipse():
    """Rotated ellipse away from the image origin."""
    return EllipseParameters(center=ImagePoint(i=120, j=90), a=25, b=60, e=0.6)


@pytest.fixture
def reference_circle():
    """Circle of radius 40 centered at (80, 110)."""
    return EllipseParameters(center=ImagePoint(i=80, j=110), a=40, b=40, e=0.0)


@pytest.fixture
def blank_frame():
    """Empty grayscale frame; synthetic edge searches ignore its content."""
    return np.zeros((240, 320), dtype=np.uint8)


@pytest.fixture
def rendered_frame(tilted_ellipse):
    """Grayscale frame with a filled bright ellipse on a dark background."""
    from ellipsetrack.display import draw_ellipse

    img = np.full((260, 260), 30, dtype=np.uint8)
    p = tilted_ellipse
    draw_ellipse(img, p.center, p.a, p.b, p.e, color=(220, 220, 220), thickness=-1)
    return img
