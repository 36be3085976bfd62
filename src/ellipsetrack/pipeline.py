"""
Sequence runner for the ellipse tracker.

Feeds frames to an initialized tracker and records one FrameResult per
frame. The run stops at the first frame that loses the track.
"""

import os

from ellipsetrack.display import draw_tracker
from ellipsetrack.errors import EllipseTrackingError
from ellipsetrack.io.save_results import save_image
from ellipsetrack.models import FrameResult, TrackerState
from ellipsetrack.tracer import get_tracer, trace


def snapshot(tracker, frame_index, error=None):
    """FrameResult describing the tracker after a frame."""
    return FrameResult(
        frame_index=frame_index,
        state=tracker.state,
        parameters=tracker.parameters,
        bounds=tracker.bounds if tracker.parameters else None,
        moments=tracker.moments if tracker.parameters else None,
        site_count=len(tracker.sites),
        error=error,
    )


@trace(label="track_sequence")
def track_sequence(frames, tracker, overlay_dir=None):
    """
    Track an initialized tracker through frames.

    Args:
        frames: iterable of images
        tracker: EllipseTracker in the tracking state
        overlay_dir: optional directory receiving one overlay PNG per frame

    Returns:
        list of FrameResult, the last one carrying the error if tracking was lost
    """
    tracer = get_tracer()
    results = []

    for index, frame in enumerate(frames):
        error = None
        try:
            tracker.track(frame)
        except EllipseTrackingError as e:
            error = f"{type(e).__name__}: {e}"
            tracer.event(f"Frame {index} failed: {error}", level="WARN")

        results.append(snapshot(tracker, index, error))

        if overlay_dir:
            save_image(draw_tracker(frame, tracker), os.path.join(overlay_dir, f"frame_{index:05d}.png"))

        if tracker.state == TrackerState.LOST:
            break

    tracer.set_frame(None)
    tracer.event(f"Tracked {len(results)} frames, final state {tracker.state.value}")

    return results
