"""
Frame loading for tracking runs.

Frames come either from a video file or from a directory of still images
read in sorted order. All frames are returned as grayscale arrays.
"""

import os

import cv2

from ellipsetrack.tracer import get_tracer, trace

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp", ".pgm", ".ppm", ".tif", ".tiff")


@trace(label="load_image", arg_names=["path"])
def load_image(path):
    """
    Load an image from disk as grayscale.

    Raises FileNotFoundError if path does not exist.
    Raises ValueError if image cannot be loaded.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Image not found: {path}")

    img = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
    if img is None:
        raise ValueError(f"Failed to load image: {path}")

    return img


def iter_frames(path):
    """
    Yield grayscale frames from a video file or an image directory.

    Raises FileNotFoundError if path does not exist.
    Raises ValueError if a video cannot be opened.
    """
    tracer = get_tracer()

    if not os.path.exists(path):
        raise FileNotFoundError(f"Input not found: {path}")

    if os.path.isdir(path):
        names = sorted(n for n in os.listdir(path) if n.lower().endswith(IMAGE_EXTENSIONS))
        tracer.event(f"Reading {len(names)} images from {path}")
        for name in names:
            yield load_image(os.path.join(path, name))
        return

    capture = cv2.VideoCapture(path)
    if not capture.isOpened():
        raise ValueError(f"Failed to open video: {path}")

    try:
        while True:
            ok, frame = capture.read()
            if not ok:
                break
            if frame.ndim == 3:
                frame = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
            yield frame
    finally:
        capture.release()
