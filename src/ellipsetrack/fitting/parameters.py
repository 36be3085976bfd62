"""
Conversion between conic coefficients and geometric ellipse parameters.

The conic i^2 + K0 j^2 + 2 K1 ij + 2 K2 i + 2 K3 j + K4 = 0 has quadratic
part [[1, K1], [K1, K0]]. Its eigen-decomposition gives the axes and the
orientation; the symmetric solver keeps near-circular shapes stable where a
closed-form arctangent of (1 - K0) would not be.
"""

import math

import numpy as np

from ellipsetrack.errors import DegenerateGeometryError
from ellipsetrack.models import ConicCoefficients, EllipseParameters, ImagePoint


def normalize_orientation(e):
    """Map an axis angle into [-pi/2, pi/2)."""
    return (e + math.pi / 2) % math.pi - math.pi / 2


def canonical_parameters(center, a, b, e):
    """
    Build EllipseParameters with a <= b.

    When the given semi-axes are in the wrong order the labels are swapped
    and e is rotated by pi/2 so the curve itself is unchanged.
    """
    if a > b:
        a, b = b, a
        e = e + math.pi / 2
    return EllipseParameters(
        center=ImagePoint.from_any(center),
        a=float(a),
        b=float(b),
        e=normalize_orientation(e),
    )


def conic_to_ellipse(coefficients, circle=False):
    """
    Extract center, semi-axes and orientation from conic coefficients.

    Raises DegenerateGeometryError if the coefficients are not a real ellipse.
    """
    k0, k1, k2, k3, k4 = coefficients.as_list()

    if circle:
        ic, jc = -k2, -k3
        r2 = k2 * k2 + k3 * k3 - k4
        if not np.isfinite(r2) or r2 <= 0:
            raise DegenerateGeometryError(f"Imaginary circle (r^2={r2:.3g})")
        r = math.sqrt(r2)
        return EllipseParameters(center=ImagePoint(i=ic, j=jc), a=r, b=r, e=0.0)

    det = k0 - k1 * k1
    if not np.isfinite(det) or det <= 1e-12:
        raise DegenerateGeometryError(f"Conic is not an ellipse (K0 - K1^2 = {det:.3g})")

    ic = (k1 * k3 - k0 * k2) / det
    jc = (k1 * k2 - k3) / det

    # constant term once the conic is translated to its center
    f_center = k4 + k2 * ic + k3 * jc
    if not np.isfinite(f_center) or f_center >= 0:
        raise DegenerateGeometryError(f"Imaginary ellipse (centered constant {f_center:.3g})")

    eigenvalues, eigenvectors = np.linalg.eigh(np.array([[1.0, k1], [k1, k0]]))
    lambda_min, lambda_max = eigenvalues
    if lambda_min <= 0:
        raise DegenerateGeometryError(f"Non positive eigenvalue {lambda_min:.3g}")

    a = math.sqrt(-f_center / lambda_max)
    b = math.sqrt(-f_center / lambda_min)
    major = eigenvectors[:, 0]
    e = math.atan2(major[1], major[0])

    return canonical_parameters((ic, jc), a, b, e)


def ellipse_to_conic(parameters):
    """Coefficients of the conic equation for the given ellipse."""
    ic, jc = parameters.center.i, parameters.center.j
    a, b = parameters.a, parameters.b
    ce, se = parameters.cos_e, parameters.sin_e

    # quadratic form (d.u)^2/b^2 + (d.v)^2/a^2 - 1 with u major, v minor
    qa = ce * ce / (b * b) + se * se / (a * a)
    qb = ce * se * (1.0 / (b * b) - 1.0 / (a * a))
    qc = se * se / (b * b) + ce * ce / (a * a)
    qd = -(qa * ic + qb * jc)
    qe = -(qb * ic + qc * jc)
    qf = qa * ic * ic + 2 * qb * ic * jc + qc * jc * jc - 1.0

    return ConicCoefficients(k0=qc / qa, k1=qb / qa, k2=qd / qa, k3=qe / qa, k4=qf / qa)
