"""
Pydantic data models for the ellipse tracker.

Every value handed out by the tracker is one of these frozen models, so a
snapshot taken by a caller never changes under it.
"""

import math
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

TWO_PI = 2.0 * math.pi


class TrackerState(str, Enum):
    """Lifecycle states of an ellipse tracker."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    TRACKING = "tracking"
    LOST = "lost"


class ImagePoint(BaseModel):
    """A point in image coordinates (i = row, j = column)."""
    i: float
    j: float

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_any(cls, value):
        """Convert an ImagePoint or an (i, j) pair to an ImagePoint."""
        if isinstance(value, ImagePoint):
            return value
        i, j = value
        return cls(i=float(i), j=float(j))

    def as_tuple(self):
        return (self.i, self.j)

    def distance(self, other):
        return math.hypot(self.i - other.i, self.j - other.j)


class ConicCoefficients(BaseModel):
    """
    Coefficients of i^2 + K0 j^2 + 2 K1 ij + 2 K2 i + 2 K3 j + K4 = 0.

    In circle mode K0 is 1 and K1 is 0.
    """
    k0: float
    k1: float
    k2: float
    k3: float
    k4: float

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_array(cls, values):
        k0, k1, k2, k3, k4 = (float(v) for v in values)
        return cls(k0=k0, k1=k1, k2=k2, k3=k3, k4=k4)

    def as_list(self):
        return [self.k0, self.k1, self.k2, self.k3, self.k4]

    def evaluate(self, point):
        """Value of the implicit equation at point."""
        i, j = point.i, point.j
        return (i * i + self.k0 * j * j + 2 * self.k1 * i * j
                + 2 * self.k2 * i + 2 * self.k3 * j + self.k4)

    def gradient(self, point):
        """Gradient (dQ/di, dQ/dj) of the implicit equation at point."""
        i, j = point.i, point.j
        return (2 * (i + self.k1 * j + self.k2),
                2 * (self.k0 * j + self.k1 * i + self.k3))


class EllipseParameters(BaseModel):
    """
    Geometric form of the tracked ellipse.

    a is the semi-minor axis, b the semi-major axis and e the angle between
    the major axis and the i axis of the image frame. A point of the curve
    at parametric angle alpha is

        i = ic + b cos(e) cos(alpha) - a sin(e) sin(alpha)
        j = jc + b sin(e) cos(alpha) + a cos(e) sin(alpha)
    """
    center: ImagePoint
    a: float = Field(..., gt=0.0)
    b: float = Field(..., gt=0.0)
    e: float = 0.0

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def cos_e(self):
        return math.cos(self.e)

    @property
    def sin_e(self):
        return math.sin(self.e)

    def point_at(self, alpha):
        """Point of the curve at parametric angle alpha."""
        ca, sa = math.cos(alpha), math.sin(alpha)
        ce, se = self.cos_e, self.sin_e
        return ImagePoint(
            i=self.center.i + self.b * ce * ca - self.a * se * sa,
            j=self.center.j + self.b * se * ca + self.a * ce * sa,
        )

    def normal_at(self, alpha):
        """Outward unit normal (di, dj) at parametric angle alpha."""
        ca, sa = math.cos(alpha), math.sin(alpha)
        ce, se = self.cos_e, self.sin_e
        # normal in the ellipse frame is (cos/b, sin/a) scaled
        u, v = self.a * ca, self.b * sa
        norm = math.hypot(u, v)
        u, v = u / norm, v / norm
        return (u * ce - v * se, u * se + v * ce)


class Site(BaseModel):
    """A tracked boundary sample point."""
    point: ImagePoint
    weight: float = Field(default=1.0, ge=0.0)
    alpha: float = 0.0
    fit_weight: float = Field(default=1.0, ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class ArcBounds(BaseModel):
    """
    Angular extent of the tracked arc.

    alpha1 lies in [0, 2pi); alpha2 may exceed 2pi when the arc crosses the
    0/2pi seam, so alpha1 <= alpha2 always holds.
    """
    alpha1: float = 0.0
    alpha2: float = TWO_PI
    point1: Optional[ImagePoint] = None
    point2: Optional[ImagePoint] = None
    full: bool = True

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_order(self):
        if self.alpha1 > self.alpha2:
            raise ValueError(f"alpha1={self.alpha1} exceeds alpha2={self.alpha2}")
        return self

    @property
    def span(self):
        return self.alpha2 - self.alpha1


class Moments(BaseModel):
    """Raw and central geometric moments of the ellipse region."""
    m00: float = 0.0
    m10: float = 0.0
    m01: float = 0.0
    m11: float = 0.0
    m20: float = 0.0
    m02: float = 0.0
    mu11: float = 0.0
    mu20: float = 0.0
    mu02: float = 0.0

    model_config = ConfigDict(frozen=True, extra="forbid")


class FitResult(BaseModel):
    """Outcome of one robust conic fit."""
    coefficients: ConicCoefficients
    sites: List[Site] = Field(default_factory=list)
    suppressed: List[Site] = Field(default_factory=list)
    iterations: int = 0

    model_config = ConfigDict(frozen=True, extra="forbid")


class FrameResult(BaseModel):
    """Per-frame record produced when tracking a sequence."""
    frame_index: int
    state: TrackerState
    parameters: Optional[EllipseParameters] = None
    bounds: Optional[ArcBounds] = None
    moments: Optional[Moments] = None
    site_count: int = 0
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")
