"""
Geometric moments of the region enclosed by the ellipse.

m_pq is the integral of i^p j^q over the region. Raw moments follow from the
closed form of the region's area and second moments; central moments are
obtained by translating back to the centroid.
"""

import math

from ellipsetrack.models import Moments


def compute_moments(parameters):
    """Raw and central moments of the ellipse region described by parameters."""
    ic, jc = parameters.center.i, parameters.center.j
    a, b = parameters.a, parameters.b
    ce, se = parameters.cos_e, parameters.sin_e

    m00 = math.pi * a * b
    m10 = m00 * ic
    m01 = m00 * jc

    # second moments about the center: b^2/4 along the major axis, a^2/4 along the minor one
    quarter = m00 / 4.0
    c20 = quarter * (b * b * ce * ce + a * a * se * se)
    c02 = quarter * (b * b * se * se + a * a * ce * ce)
    c11 = quarter * (b * b - a * a) * ce * se

    m20 = c20 + m00 * ic * ic
    m02 = c02 + m00 * jc * jc
    m11 = c11 + m00 * ic * jc

    return Moments(
        m00=m00,
        m10=m10,
        m01=m01,
        m11=m11,
        m20=m20,
        m02=m02,
        mu11=m11 - m10 * m01 / m00,
        mu20=m20 - m10 * m10 / m00,
        mu02=m02 - m01 * m01 / m00,
    )
