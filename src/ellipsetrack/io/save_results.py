"""
Result saving utilities.

Handles writing tracking results as JSON and overlay images.
"""

import json
import os

import cv2

from ellipsetrack.tracer import get_tracer


def ensure_dir(path):
    """Create directory if it does not exist."""
    if path:
        os.makedirs(path, exist_ok=True)


def save_json(data, path, indent=2):
    """
    Save a dictionary, a Pydantic model or a list of them to JSON.
    """
    tracer = get_tracer()

    ensure_dir(os.path.dirname(path))

    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [d.model_dump(mode="json") if hasattr(d, "model_dump") else d for d in data]

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, default=str)

    tracer.event(f"Saved JSON: {path}")


def save_image(img, path):
    """Save an image to disk, creating the parent directory."""
    ensure_dir(os.path.dirname(path))
    if not cv2.imwrite(path, img):
        raise ValueError(f"Failed to write image: {path}")
    get_tracer().event(f"Saved image: {path}", level="DEBUG")
