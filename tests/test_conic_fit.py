"""Tests for conic fitting and parameter extraction."""

import math

import numpy as np
import pytest

from conftest import points_on
from ellipsetrack.errors import DegenerateGeometryError, InsufficientPointsError
from ellipsetrack.fitting.conic import consensus_start, fit_conic, robust_fit, sampson_distances
from ellipsetrack.fitting.parameters import (
    canonical_parameters, conic_to_ellipse, ellipse_to_conic, normalize_orientation,
)
from ellipsetrack.models import ConicCoefficients, EllipseParameters, ImagePoint, Site


def assert_same_ellipse(actual, expected, tol=1e-6):
    assert actual.center.i == pytest.approx(expected.center.i, abs=tol)
    assert actual.center.j == pytest.approx(expected.center.j, abs=tol)
    assert actual.a == pytest.approx(expected.a, abs=tol)
    assert actual.b == pytest.approx(expected.b, abs=tol)
    # orientation is defined modulo pi
    diff = normalize_orientation(actual.e - expected.e)
    assert abs(diff) < tol


class TestFitConic:
    """Tests for the plain least-squares conic fit."""

    def test_recovers_axis_aligned_ellipse(self, reference_ellipse):
        """Twenty exact points give back center, axes and orientation."""
        points = points_on(reference_ellipse, 20)

        coefficients = fit_conic(points)
        parameters = conic_to_ellipse(coefficients)

        assert_same_ellipse(parameters, reference_ellipse)
        assert parameters.e == pytest.approx(0.0, abs=1e-6)

    def test_recovers_tilted_ellipse(self, tilted_ellipse):
        """Rotated ellipses round trip as well."""
        points = points_on(tilted_ellipse, 12)

        parameters = conic_to_ellipse(fit_conic(points))

        assert_same_ellipse(parameters, tilted_ellipse)

    def test_five_points_exact_fit(self, tilted_ellipse):
        """Five points determine the ellipse exactly."""
        points = points_on(tilted_ellipse, 5)

        parameters = conic_to_ellipse(fit_conic(points))

        assert_same_ellipse(parameters, tilted_ellipse, tol=1e-5)

    def test_points_on_partial_arc(self, reference_ellipse):
        """A half arc still recovers the whole ellipse."""
        points = points_on(reference_ellipse, 10, 0.0, math.pi)

        parameters = conic_to_ellipse(fit_conic(points))

        assert_same_ellipse(parameters, reference_ellipse, tol=1e-5)

    def test_accepts_coordinate_pairs(self, reference_ellipse):
        """Legacy (i, j) tuples are accepted at the boundary."""
        points = [p.as_tuple() for p in points_on(reference_ellipse, 8)]

        parameters = conic_to_ellipse(fit_conic(points))

        assert_same_ellipse(parameters, reference_ellipse)

    def test_circle_mode(self, reference_circle):
        """Circle mode fits three parameters and returns a == b."""
        points = points_on(reference_circle, 6)

        coefficients = fit_conic(points, circle=True)
        parameters = conic_to_ellipse(coefficients, circle=True)

        assert coefficients.k0 == 1.0
        assert coefficients.k1 == 0.0
        assert parameters.a == parameters.b
        assert parameters.a == pytest.approx(40.0, abs=1e-6)
        assert parameters.center.i == pytest.approx(80.0, abs=1e-6)
        assert parameters.center.j == pytest.approx(110.0, abs=1e-6)

    def test_circle_mode_on_ellipse_data_keeps_a_equal_b(self, reference_ellipse):
        """Circle mode forces equal axes even when the data is elongated."""
        points = points_on(reference_ellipse, 16)

        parameters = conic_to_ellipse(fit_conic(points, circle=True), circle=True)

        assert parameters.a == parameters.b

    def test_four_points_insufficient(self, reference_ellipse):
        """Four points cannot determine an ellipse."""
        points = points_on(reference_ellipse, 4)

        with pytest.raises(InsufficientPointsError) as excinfo:
            fit_conic(points)

        assert excinfo.value.count == 4
        assert excinfo.value.required == 5

    def test_duplicates_do_not_count(self, reference_ellipse):
        """Repeated points are counted once."""
        points = points_on(reference_ellipse, 4)
        points.append(points[0])

        with pytest.raises(InsufficientPointsError):
            fit_conic(points)

    def test_two_points_insufficient_for_circle(self, reference_circle):
        points = points_on(reference_circle, 2)

        with pytest.raises(InsufficientPointsError):
            fit_conic(points, circle=True)

    def test_zero_weight_points_ignored_for_count(self, reference_ellipse):
        points = points_on(reference_ellipse, 6)
        weights = [1, 1, 1, 1, 0, 0]

        with pytest.raises(InsufficientPointsError):
            fit_conic(points, weights=weights)

    def test_collinear_points_degenerate(self):
        """Five points on a line are not an ellipse."""
        points = [ImagePoint(i=10 + k, j=20 + 2 * k) for k in range(5)]

        with pytest.raises(DegenerateGeometryError):
            fit_conic(points)

    def test_hyperbola_degenerate(self):
        """Points of the hyperbola i^2 - j^2 = 100 are rejected."""
        points = [
            ImagePoint(i=10 * math.cosh(t), j=10 * math.sinh(t))
            for t in (-1.0, -0.5, 0.0, 0.5, 1.0, 1.5)
        ]

        with pytest.raises(DegenerateGeometryError):
            fit_conic(points)


class TestParameters:
    """Tests for conic to geometry conversion."""

    def test_round_trip_through_coefficients(self, tilted_ellipse):
        coefficients = ellipse_to_conic(tilted_ellipse)

        assert_same_ellipse(conic_to_ellipse(coefficients), tilted_ellipse, tol=1e-9)

    def test_coefficients_vanish_on_curve(self, tilted_ellipse):
        """The implicit equation is zero on the sampled curve."""
        coefficients = ellipse_to_conic(tilted_ellipse)

        for point in points_on(tilted_ellipse, 9):
            assert coefficients.evaluate(point) == pytest.approx(0.0, abs=1e-8)

    def test_canonical_swaps_axes(self):
        """a > b is swapped and e rotated by pi/2."""
        parameters = canonical_parameters((0, 0), 50, 30, 0.0)

        assert parameters.a == 30
        assert parameters.b == 50
        assert parameters.e == pytest.approx(-math.pi / 2)

    def test_orientation_range(self):
        for e in (-3.0, -1.6, 0.0, 1.2, 1.6, 3.1, 7.0):
            normalized = normalize_orientation(e)
            assert -math.pi / 2 <= normalized < math.pi / 2
            assert math.sin(2 * normalized) == pytest.approx(math.sin(2 * e), abs=1e-12)

    def test_near_circle_is_stable(self):
        """An almost round ellipse still yields finite, ordered axes."""
        expected = EllipseParameters(center=ImagePoint(i=60, j=70), a=40.0, b=40.0 + 1e-7, e=0.3)

        parameters = conic_to_ellipse(ellipse_to_conic(expected))

        assert parameters.a <= parameters.b
        assert parameters.a == pytest.approx(40.0, abs=1e-6)
        assert parameters.b == pytest.approx(40.0, abs=1e-6)
        assert parameters.center.i == pytest.approx(60.0, abs=1e-6)

    def test_imaginary_ellipse_rejected(self):
        """i^2 + j^2 + 1 = 0 has no real points."""
        coefficients = ConicCoefficients(k0=1.0, k1=0.0, k2=0.0, k3=0.0, k4=1.0)

        with pytest.raises(DegenerateGeometryError):
            conic_to_ellipse(coefficients)
        with pytest.raises(DegenerateGeometryError):
            conic_to_ellipse(coefficients, circle=True)

    def test_parabola_rejected(self):
        coefficients = ConicCoefficients(k0=1.0, k1=1.0, k2=0.0, k3=1.0, k4=0.0)

        with pytest.raises(DegenerateGeometryError):
            conic_to_ellipse(coefficients)


class TestRobustFit:
    """Tests for the re-weighted fit with suppression."""

    def _sites(self, parameters, count=36, outliers=(), offset=20.0):
        sites = []
        for k, point in enumerate(points_on(parameters, count)):
            if k in outliers:
                alpha = 2 * math.pi * k / count
                ni, nj = parameters.normal_at(alpha)
                point = ImagePoint(i=point.i + offset * ni, j=point.j + offset * nj)
            sites.append(Site(point=point))
        return sites

    def test_exact_data_keeps_all_sites(self, reference_ellipse):
        sites = self._sites(reference_ellipse)

        result = robust_fit(sites, threshold=0.2)

        assert len(result.sites) == 36
        assert result.suppressed == []
        assert result.iterations == 1
        assert all(s.fit_weight == pytest.approx(1.0) for s in result.sites)

    def test_outliers_suppressed(self, reference_ellipse):
        """Sites pushed off the curve are removed and the fit stays exact."""
        outliers = (3, 17, 29)
        sites = self._sites(reference_ellipse, outliers=outliers)

        result = robust_fit(sites, threshold=0.2)

        assert len(result.suppressed) == 3
        assert len(result.sites) == 33
        suppressed_points = {s.point for s in result.suppressed}
        assert suppressed_points == {sites[k].point for k in outliers}
        assert_same_ellipse(conic_to_ellipse(result.coefficients), reference_ellipse)

    def test_suppressed_sites_never_return(self, reference_ellipse):
        """Kept and suppressed sites are disjoint."""
        sites = self._sites(reference_ellipse, outliers=(5, 6))

        result = robust_fit(sites, threshold=0.2, max_iterations=20)

        kept = {s.point for s in result.sites}
        assert all(s.point not in kept for s in result.suppressed)
        assert len(kept) + len(result.suppressed) == len(sites)

    def test_zero_threshold_never_rejects(self, reference_ellipse):
        sites = self._sites(reference_ellipse, outliers=(3, 17, 29))

        result = robust_fit(sites, threshold=0.0)

        assert result.suppressed == []

    def test_iteration_cap(self, reference_ellipse):
        sites = self._sites(reference_ellipse, outliers=(3,), offset=6.0)

        result = robust_fit(sites, threshold=0.0, max_iterations=2)

        assert result.iterations <= 2

    def test_contiguous_outliers_suppressed(self, reference_ellipse):
        """A run of wrong edges at 40-60 deg is removed, not its inlier neighbours."""
        sites = self._sites(reference_ellipse, outliers=(4, 5, 6), offset=15.0)

        result = robust_fit(sites, threshold=0.2)

        assert {s.point for s in result.suppressed} == {sites[k].point for k in (4, 5, 6)}
        assert len(result.sites) == 33
        assert_same_ellipse(conic_to_ellipse(result.coefficients), reference_ellipse)
        assert result.iterations < 10

    def test_consensus_start_ignores_outlier_run(self, reference_ellipse):
        sites = self._sites(reference_ellipse, outliers=(4, 5, 6), offset=15.0)
        pts = np.array([s.point.as_tuple() for s in sites])

        coefficients = consensus_start(pts, np.ones(len(pts)))

        assert_same_ellipse(conic_to_ellipse(coefficients), reference_ellipse)

    def test_too_few_sites_raise(self, reference_ellipse):
        sites = self._sites(reference_ellipse, count=4)

        with pytest.raises(InsufficientPointsError):
            robust_fit(sites, threshold=0.2)

    def test_collinear_sites_raise(self):
        sites = [Site(point=ImagePoint(i=10.0 + k, j=20.0 + 2 * k)) for k in range(8)]

        with pytest.raises(DegenerateGeometryError):
            robust_fit(sites, threshold=0.2)

    def test_sampson_distance_is_zero_on_curve(self, tilted_ellipse):
        coefficients = ellipse_to_conic(tilted_ellipse)
        pts = np.array([p.as_tuple() for p in points_on(tilted_ellipse, 10)])

        distances = sampson_distances(coefficients, pts)

        assert np.allclose(distances, 0.0, atol=1e-8)

    def test_sampson_distance_approximates_offset(self, reference_circle):
        """For a circle the Sampson distance equals the radial offset."""
        coefficients = ellipse_to_conic(reference_circle)
        pts = np.array([[80 + 45.0, 110.0]])

        distances = sampson_distances(coefficients, pts)

        assert abs(distances[0]) == pytest.approx(5.0, rel=0.1)
