"""Exceptions raised by the ellipse tracker."""


class EllipseTrackingError(Exception):
    """Base class for all tracking errors."""


class InsufficientPointsError(EllipseTrackingError):
    """Too few distinct points to fit the conic of the current mode."""

    def __init__(self, count, required):
        super().__init__(f"{count} distinct points available, {required} required")
        self.count = count
        self.required = required


class DegenerateGeometryError(EllipseTrackingError):
    """Fitted coefficients do not describe a real ellipse."""


class TrackingLostError(EllipseTrackingError):
    """The tracked arc could not be kept alive across frames."""


class TrackerStateError(EllipseTrackingError):
    """Operation not valid in the tracker's current state."""
