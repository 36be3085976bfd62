"""
Frame-by-frame ellipse tracker.

The tracker owns the site set, the conic coefficients and the geometric
parameters of one ellipse. Every frame it refines the sites through the
edge search it was built with, refits the conic robustly, recovers lost
extremities and recomputes angles, bounds and moments.

States: uninitialized -> initializing -> tracking -> lost. A lost tracker
keeps its last good parameters, bounds and moments for inspection and only
resumes after a new initialization.
"""

import dataclasses
import math

from ellipsetrack.config import EllipseConfig, MovingEdgeConfig, clamp_threshold
from ellipsetrack.errors import (
    DegenerateGeometryError, InsufficientPointsError, TrackerStateError, TrackingLostError,
)
from ellipsetrack.fitting.conic import fit_conic, robust_fit
from ellipsetrack.fitting.parameters import canonical_parameters, conic_to_ellipse, ellipse_to_conic
from ellipsetrack.geometry.angles import angle_of, arc_bounds, index_sites, order_sites, wrap_angle
from ellipsetrack.geometry.moments import compute_moments
from ellipsetrack.geometry.sampling import expected_site_count, sample_arc
from ellipsetrack.models import TWO_PI, ArcBounds, ImagePoint, Moments, Site, TrackerState
from ellipsetrack.tracer import get_tracer
from ellipsetrack.tracking.extremities import seek_extremities


class EllipseTracker:
    """
    Track an ellipse (or a circle) with moving edges.

    Args:
        edge_search: object implementing EdgeSearch.search
        moving_edge: MovingEdgeConfig with search range and sampling step
        ellipse: EllipseConfig with fit and recovery settings
    """

    def __init__(self, edge_search, moving_edge=None, ellipse=None):
        self._edge_search = edge_search
        self._me = dataclasses.replace(moving_edge or MovingEdgeConfig())
        self._cfg = dataclasses.replace(ellipse or EllipseConfig())

        self._circle = bool(self._cfg.circle)
        self._threshold = clamp_threshold(self._cfg.threshold_robust)

        self._state = TrackerState.UNINITIALIZED
        self._coefficients = None
        self._parameters = None
        self._bounds = ArcBounds()
        self._moments = Moments()
        self._sites = []
        self._starved_frames = 0
        self._frame_index = 0

    @classmethod
    def from_config(cls, edge_search, config):
        """Build a tracker from a TrackerConfig."""
        return cls(edge_search, moving_edge=config.moving_edge, ellipse=config.ellipse)

    # Configuration

    @property
    def circle(self):
        return self._circle

    @circle.setter
    def circle(self, value):
        self._circle = bool(value)

    @property
    def rejection_threshold(self):
        return self._threshold

    @rejection_threshold.setter
    def rejection_threshold(self, value):
        """Sites whose robust weight falls below this value are removed. Clamped to [0, 1]."""
        self._threshold = clamp_threshold(value)

    @property
    def step(self):
        """Angular sampling step in radians."""
        return math.radians(self._me.sample_step)

    # Snapshots

    @property
    def state(self):
        return self._state

    @property
    def coefficients(self):
        return self._coefficients

    @property
    def parameters(self):
        return self._parameters

    @property
    def center(self):
        return self._parameters.center if self._parameters else None

    @property
    def a(self):
        return self._parameters.a if self._parameters else None

    @property
    def b(self):
        return self._parameters.b if self._parameters else None

    @property
    def e(self):
        return self._parameters.e if self._parameters else None

    @property
    def equation_parameters(self):
        """(a, b, e) of the current ellipse."""
        if self._parameters is None:
            return None
        return (self._parameters.a, self._parameters.b, self._parameters.e)

    @property
    def bounds(self):
        return self._bounds

    @property
    def alpha1(self):
        """Smallest parametric angle of the tracked arc."""
        return self._bounds.alpha1

    @property
    def alpha2(self):
        """Highest parametric angle of the tracked arc."""
        return self._bounds.alpha2

    @property
    def sites(self):
        return tuple(self._sites)

    @property
    def moments(self):
        return self._moments

    @property
    def m00(self):
        return self._moments.m00

    @property
    def m10(self):
        return self._moments.m10

    @property
    def m01(self):
        return self._moments.m01

    @property
    def m11(self):
        return self._moments.m11

    @property
    def m20(self):
        return self._moments.m20

    @property
    def m02(self):
        return self._moments.m02

    @property
    def mu11(self):
        return self._moments.mu11

    @property
    def mu20(self):
        return self._moments.mu20

    @property
    def mu02(self):
        return self._moments.mu02

    # Initialization

    def initialize(self, points, track_arc=False):
        """
        Initialize from an ordered sequence of boundary points.

        At least 5 points are required (3 in circle mode). With track_arc the
        sampled arc runs from the first point to the last one through the
        intermediate points; otherwise the whole curve is sampled.

        Raises InsufficientPointsError or DegenerateGeometryError; the tracker
        then stays in the initializing state.
        """
        tracer = get_tracer()
        self._state = TrackerState.INITIALIZING
        pts = [ImagePoint.from_any(p) for p in points]

        with tracer.span("initialize", module="tracker", points=len(pts), circle=self._circle):
            coefficients = fit_conic(pts, circle=self._circle)
            parameters = conic_to_ellipse(coefficients, circle=self._circle)

            alpha1, alpha2 = 0.0, TWO_PI
            if track_arc:
                alpha1, alpha2 = _arc_through(pts, parameters)

            sites = sample_arc(parameters, alpha1, alpha2, self.step)
            self._start(coefficients, parameters, sites)

    def initialize_from_ellipse(self, center, a, b, e=0.0):
        """Seed the tracker with a known ellipse and sample the whole curve."""
        tracer = get_tracer()
        self._state = TrackerState.INITIALIZING

        center = ImagePoint.from_any(center)

        with tracer.span("initialize_from_ellipse", module="tracker", center=center, a=a, b=b, e=e):
            if self._circle and not math.isclose(a, b, rel_tol=1e-9):
                raise DegenerateGeometryError(f"Circle mode requires a == b (got a={a}, b={b})")
            parameters = canonical_parameters(center, a, b, e)
            coefficients = ellipse_to_conic(parameters)
            sites = sample_arc(parameters, 0.0, TWO_PI, self.step)
            self._start(coefficients, parameters, sites)

    def _start(self, coefficients, parameters, sites):
        self._starved_frames = 0
        self._frame_index = 0
        self._commit(coefficients, parameters, sites)
        self._set_state(TrackerState.TRACKING)

    # Tracking

    def track(self, image):
        """
        Process one frame.

        Raises TrackingLostError when the tracker is lost or becomes lost
        because too few sites survived for consecutive frames, and
        InsufficientPointsError or DegenerateGeometryError when no valid
        conic can be fitted even after recovery. The last two also move the
        tracker to the lost state.
        """
        if self._state == TrackerState.LOST:
            raise TrackingLostError("Tracker is lost; reinitialize before tracking")
        if self._state != TrackerState.TRACKING:
            raise TrackerStateError(f"Cannot track in state {self._state.value}")

        tracer = get_tracer()
        self._frame_index += 1
        tracer.set_frame(self._frame_index)

        with tracer.span("track", module="tracker", image=image):
            try:
                self._track_frame(image)
            except (InsufficientPointsError, DegenerateGeometryError) as e:
                self._lose(f"{type(e).__name__}: {e}")
                raise

            if len(self._sites) < self._cfg.min_sites:
                self._starved_frames += 1
                tracer.event(f"Only {len(self._sites)} sites left", level="WARN",
                             starved_frames=self._starved_frames)
                if self._starved_frames >= self._cfg.max_starved_frames:
                    self._lose("too few sites")
                    raise TrackingLostError(
                        f"{len(self._sites)} sites after recovery for "
                        f"{self._starved_frames} consecutive frames (minimum {self._cfg.min_sites})"
                    )
            else:
                self._starved_frames = 0

    def _track_frame(self, image):
        tracer = get_tracer()
        previous = self._parameters

        sites = self._refine(image, self._sites, previous)
        tracer.event(f"{len(sites)}/{len(self._sites)} sites matched")

        try:
            fit = self._fit(sites)
            coefficients = fit.coefficients
            parameters = conic_to_ellipse(coefficients, circle=self._circle)
        except (InsufficientPointsError, DegenerateGeometryError) as e:
            tracer.event(f"No conic from refined sites, recovering: {e}", level="WARN")
            fit = None

        if fit is not None:
            sites = index_sites(fit.sites, parameters)
        else:
            coefficients, parameters = self._coefficients, previous
            sites = index_sites(sites, previous)

        bounds = arc_bounds(sites, parameters, self._full_gap()) if sites else self._bounds

        if fit is None or len(sites) < self._cfg.min_sites or not bounds.full:
            sites, changed = self._recover(image, sites, parameters, bounds)
            if fit is None or changed:
                fit = self._fit(sites)
                coefficients = fit.coefficients
                parameters = conic_to_ellipse(coefficients, circle=self._circle)
                sites = fit.sites

        self._commit(coefficients, parameters, sites)

    def _refine(self, image, sites, parameters):
        """Move each site onto the nearest edge; sites without a match are dropped."""
        refined = []
        for site in sites:
            normal = parameters.normal_at(site.alpha)
            match = self._edge_search.search(image, site.point, normal, self._me.range)
            if match is None:
                continue
            refined.append(Site(point=match.point, weight=match.weight, alpha=site.alpha))
        return refined

    def _fit(self, sites):
        return robust_fit(
            sites,
            self._threshold,
            circle=self._circle,
            max_iterations=self._cfg.max_iterations,
            epsilon=self._cfg.weight_epsilon,
            noise_threshold=self._cfg.noise_threshold,
        )

    def _recover(self, image, sites, parameters, bounds):
        """
        Seek beyond the extremities, then resample the arc if it is still sparse.

        Returns (sites, changed).
        """
        tracer = get_tracer()

        added, bounds = seek_extremities(
            image, parameters, bounds, self._edge_search,
            step=self.step,
            search_range=self._me.range,
            max_steps=self._cfg.seek_max_steps,
            max_failures=self._cfg.seek_max_failures,
        )
        sites = list(sites) + added
        changed = bool(added)

        expected = expected_site_count(bounds, self.step)
        if len(sites) < self._cfg.resample_ratio * expected:
            candidates = sample_arc(parameters, bounds.alpha1, bounds.alpha2, self.step)
            resampled = self._refine(image, candidates, parameters)
            tracer.event(f"Resampled arc: {len(resampled)} of {len(candidates)} candidates matched")
            if len(resampled) > len(sites):
                sites = resampled
                changed = True

        return sites, changed

    def _commit(self, coefficients, parameters, sites):
        """Store a fit and refresh angles, bounds and moments."""
        sites = index_sites(sites, parameters)
        bounds = arc_bounds(sites, parameters, self._full_gap())
        self._coefficients = coefficients
        self._parameters = parameters
        self._bounds = bounds
        self._sites = order_sites(sites, bounds)
        self._moments = compute_moments(parameters)
        get_tracer().event("Committed fit", level="DEBUG", coefficients=coefficients,
                           parameters=parameters, bounds=bounds, sites=self._sites)

    def _full_gap(self):
        return 1.5 * self.step

    def _lose(self, reason):
        get_tracer().event(f"Tracking lost: {reason}", level="ERROR", frame=self._frame_index)
        self._set_state(TrackerState.LOST)

    def _set_state(self, state):
        if state != self._state:
            get_tracer().event(f"State {self._state.value} -> {state.value}")
        self._state = state

    def describe(self):
        """Human readable summary of the current ellipse."""
        if self._parameters is None:
            text = f"EllipseTracker({self._state.value})"
        else:
            p = self._parameters
            text = (
                f"EllipseTracker({self._state.value})\n"
                f"  K = {[round(k, 6) for k in self._coefficients.as_list()]}\n"
                f"  center = ({p.center.i:.3f}, {p.center.j:.3f})\n"
                f"  a = {p.a:.3f}  b = {p.b:.3f}  e = {math.degrees(p.e):.2f} deg\n"
                f"  alpha1 = {math.degrees(self.alpha1):.2f} deg  alpha2 = {math.degrees(self.alpha2):.2f} deg\n"
                f"  sites = {len(self._sites)}  m00 = {self._moments.m00:.2f}"
            )
        get_tracer().event(text.replace("\n", " |"))
        return text


def _arc_through(points, parameters):
    """Bounds of the arc from the first to the last point passing through the others."""
    first = angle_of(points[0], parameters)
    last = angle_of(points[-1], parameters)
    middle = angle_of(points[len(points) // 2], parameters)

    span = wrap_angle(last - first)
    if wrap_angle(middle - first) <= span:
        return first, first + span
    return last, last + wrap_angle(first - last)
