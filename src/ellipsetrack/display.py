"""
Overlay rendering of tracked ellipses.

Drawing goes through cv2.ellipse. OpenCV works in (x, y) = (j, i) with
angles measured clockwise in degrees, so the parametric angle alpha maps to
-alpha and the major axis angle e maps to 90 - e degrees.
"""

import math

import cv2
import numpy as np

from ellipsetrack.models import TWO_PI, ImagePoint

SHIFT = 4
SCALE = 1 << SHIFT


def resolve_color(image, color):
    """
    Adapt a BGR color to the pixel format of image.

    Gray images receive the luminance of the color as a scalar intensity.
    """
    if isinstance(color, (int, float)):
        color = (color, color, color)
    if image.ndim == 2 or image.shape[2] == 1:
        b, g, r = color[:3]
        return float(0.114 * b + 0.587 * g + 0.299 * r)
    return tuple(float(c) for c in color[:3])


def draw_ellipse(image, center, a, b, e, alpha1=0.0, alpha2=TWO_PI,
                 color=(0, 255, 0), thickness=1):
    """
    Draw the arc [alpha1, alpha2] of an ellipse in place.

    Args:
        image: gray or BGR numpy array
        center: ImagePoint or (i, j)
        a, b: semi-minor and semi-major axes
        e: major axis angle from the i axis, radians
        alpha1, alpha2: arc bounds, radians
        color: BGR color
        thickness: line thickness in pixels

    Returns:
        the image
    """
    center = ImagePoint.from_any(center)
    cv2.ellipse(
        image,
        (int(round(center.j * SCALE)), int(round(center.i * SCALE))),
        (int(round(b * SCALE)), int(round(a * SCALE))),
        90.0 - math.degrees(e),
        -math.degrees(alpha2),
        -math.degrees(alpha1),
        resolve_color(image, color),
        thickness,
        cv2.LINE_AA,
        SHIFT,
    )
    return image


def draw_sites(image, sites, color=(0, 0, 255), radius=2):
    """Mark site positions in place."""
    resolved = resolve_color(image, color)
    for site in sites:
        cv2.circle(
            image,
            (int(round(site.point.j * SCALE)), int(round(site.point.i * SCALE))),
            radius * SCALE,
            resolved,
            1,
            cv2.LINE_AA,
            SHIFT,
        )
    return image


def draw_tracker(image, tracker, color=(0, 255, 0), site_color=(0, 0, 255), thickness=1):
    """
    Render a copy of image with the tracker's current arc and sites.

    Returns the copy; an untracked tracker leaves the copy unchanged.
    """
    canvas = np.array(image, copy=True)
    parameters = tracker.parameters
    if parameters is None:
        return canvas

    bounds = tracker.bounds
    draw_ellipse(canvas, parameters.center, parameters.a, parameters.b, parameters.e,
                 bounds.alpha1, bounds.alpha2, color=color, thickness=thickness)
    draw_sites(canvas, tracker.sites, color=site_color)
    return canvas
