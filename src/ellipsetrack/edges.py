"""
Edge search collaborator used to refine site positions.

The tracker only depends on the EdgeSearch protocol. GradientEdgeSearch is a
reference implementation that looks for the strongest intensity step along
the curve normal.
"""

import hashlib
from typing import Optional, Protocol, Tuple

import cv2
import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from ellipsetrack.models import ImagePoint


class EdgeMatch(BaseModel):
    """Refined position of a site and the reliability of the match."""
    point: ImagePoint
    weight: float = Field(default=1.0, ge=0.0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class EdgeSearch(Protocol):
    """Capability to locate an edge near an approximate position."""

    def search(self, image, point: ImagePoint, normal: Tuple[float, float],
               search_range: int) -> Optional[EdgeMatch]:
        ...


class GradientEdgeSearch:
    """
    Search the strongest gradient along the normal of the curve.

    The image is blurred once per frame; the blurred copy is reused while the
    frame buffer and its content are unchanged. Each search samples a profile of
    2 * search_range + 1 pixels along the normal with bilinear interpolation
    and refines the gradient peak with a parabola.
    """

    def __init__(self, edge_threshold=20.0, blur_sigma=1.0):
        self.edge_threshold = edge_threshold
        self.blur_sigma = blur_sigma
        self._key = None
        self._prepared = None

    @classmethod
    def from_config(cls, moving_edge_config):
        return cls(
            edge_threshold=moving_edge_config.edge_threshold,
            blur_sigma=moving_edge_config.blur_sigma,
        )

    @staticmethod
    def _frame_key(image):
        digest = hashlib.blake2b(np.ascontiguousarray(image).tobytes(), digest_size=16).hexdigest()
        return (image.ctypes.data, image.shape, image.dtype.str, digest)

    def _prepare(self, image):
        key = self._frame_key(image)
        if key == self._key:
            return self._prepared
        gray = image
        if gray.ndim == 3:
            gray = cv2.cvtColor(gray, cv2.COLOR_BGR2GRAY)
        gray = gray.astype(np.float32)
        if self.blur_sigma > 0:
            gray = cv2.GaussianBlur(gray, (0, 0), self.blur_sigma)
        self._key = key
        self._prepared = gray
        return gray

    def search(self, image, point, normal, search_range):
        gray = self._prepare(image)
        height, width = gray.shape[:2]
        if not (0 <= point.i < height and 0 <= point.j < width):
            return None

        offsets = np.arange(-search_range, search_range + 1, dtype=np.float32)
        map_i = (point.i + offsets * normal[0]).astype(np.float32).reshape(1, -1)
        map_j = (point.j + offsets * normal[1]).astype(np.float32).reshape(1, -1)
        profile = cv2.remap(gray, map_j, map_i, interpolation=cv2.INTER_LINEAR,
                            borderMode=cv2.BORDER_REPLICATE)[0]

        magnitude = np.abs(np.gradient(profile))
        k = int(np.argmax(magnitude))
        peak = float(magnitude[k])
        if peak < self.edge_threshold:
            return None

        delta = 0.0
        if 0 < k < len(magnitude) - 1:
            denom = magnitude[k - 1] - 2 * magnitude[k] + magnitude[k + 1]
            if denom != 0:
                delta = float(np.clip(0.5 * (magnitude[k - 1] - magnitude[k + 1]) / denom, -0.5, 0.5))

        offset = float(offsets[k]) + delta
        refined = ImagePoint(i=point.i + offset * normal[0], j=point.j + offset * normal[1])
        weight = 1.0 - self.edge_threshold / peak if peak > 0 else 0.0
        return EdgeMatch(point=refined, weight=max(0.0, weight))
