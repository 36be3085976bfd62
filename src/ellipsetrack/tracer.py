"""
Hierarchical runtime tracing for the ellipse tracker.

Provides structured, nested logging with timing information so a tracking
run can be followed frame by frame without stepping through code.
"""

import functools
import inspect
import json
import math
import sys
import time
from contextlib import contextmanager
from datetime import datetime

import numpy as np
from pydantic import BaseModel

from ellipsetrack.models import (
    ArcBounds, ConicCoefficients, EllipseParameters, ImagePoint, Site,
)


class TracerConfig:
    """Configuration for the tracer."""

    def __init__(self):
        self.enabled = False
        self.level = "INFO"
        self.file_path = None
        self.json_output = False
        self._file_handle = None

    def configure(self, enabled=False, level="INFO", file_path=None, json_output=False):
        """Configure tracer settings."""
        self.enabled = enabled
        self.level = level.upper()
        self.file_path = file_path
        self.json_output = json_output

        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None

        if file_path and enabled:
            self._file_handle = open(file_path, "w", encoding="utf-8")

    def close(self):
        """Close file handle if open."""
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None


class Tracer:
    """
    Hierarchical tracer for structured tracking logs.

    Supports nested spans with timing, argument summarization, and
    text or JSON output. Lines written while a frame is being tracked carry
    that frame index.
    """

    LEVELS = {"ERROR": 0, "WARN": 1, "INFO": 2, "DEBUG": 3}

    def __init__(self):
        self.config = TracerConfig()
        self._depth = 0
        self._span_stack = []
        self.frame = None

    def set_frame(self, index):
        """Tag following log lines with a frame index (None clears it)."""
        self.frame = index

    def _should_log(self, level):
        if not self.config.enabled:
            return False
        return self.LEVELS.get(level, 2) <= self.LEVELS.get(self.config.level, 2)

    def _format_timestamp(self):
        now = datetime.now()
        return now.strftime("%H:%M:%S.") + f"{now.microsecond // 1000:03d}"

    def _write(self, level, module, func, message, meta=None):
        """Write a log line."""
        if not self._should_log(level):
            return

        timestamp = self._format_timestamp()
        indent = "  " * self._depth
        location = f"{module}:{func}" if func else module
        frame_tag = f"[f{self.frame}] " if self.frame is not None else ""

        text_line = f"{timestamp} {level:<5} {frame_tag}{indent}{location}  {message}"

        print(text_line, file=sys.stderr)

        if self.config._file_handle:
            self.config._file_handle.write(text_line + "\n")
            self.config._file_handle.flush()

        if self.config.json_output:
            json_record = {
                "timestamp": timestamp,
                "level": level,
                "frame": self.frame,
                "depth": self._depth,
                "module": module,
                "function": func,
                "message": message,
                "meta": {k: summarize(v) for k, v in (meta or {}).items()},
            }
            json_line = json.dumps(json_record)
            print(json_line, file=sys.stderr)
            if self.config._file_handle:
                self.config._file_handle.write(json_line + "\n")

    @contextmanager
    def span(self, name, module="", **meta):
        """
        Context manager for a traced span.

        Logs start and end with timing information.
        """
        if not self.config.enabled:
            yield
            return

        start_time = time.perf_counter()
        meta_str = " ".join(f"{k}={summarize(v)}" for k, v in meta.items())
        self._write("INFO", module, name, f"start {meta_str}".strip())
        self._depth += 1
        self._span_stack.append((name, module, start_time))

        try:
            yield
        except Exception as e:
            elapsed = (time.perf_counter() - start_time) * 1000
            self._depth -= 1
            self._span_stack.pop()
            self._write("ERROR", module, name, f"failed dt={elapsed:.1f}ms error={type(e).__name__}: {str(e)[:100]}")
            raise
        else:
            elapsed = (time.perf_counter() - start_time) * 1000
            self._depth -= 1
            self._span_stack.pop()
            self._write("INFO", module, name, f"end ok dt={elapsed:.1f}ms")

    def event(self, message, level="INFO", **meta):
        """Log a one-off event within the current span."""
        if not self._should_log(level):
            return

        module = ""
        func = ""
        if self._span_stack:
            func, module, _ = self._span_stack[-1]

        meta_str = " ".join(f"{k}={summarize(v)}" for k, v in meta.items())
        full_message = f"{message} {meta_str}".strip()
        self._write(level, module, func, full_message, meta)


def summarize(obj, max_len=200):
    """
    Summarize an object for logging.

    Returns a compact string that never exceeds max_len chars. Ellipse
    parameters, arc bounds and site lists are reduced to the numbers worth
    reading in a trace; frames become their shape and dtype.
    """
    try:
        result = _summarize_impl(obj)
        if len(result) > max_len:
            return result[:max_len - 3] + "..."
        return result
    except Exception:
        return f"<{type(obj).__name__}>"


def _degrees(alpha):
    return f"{math.degrees(alpha):.1f}"


def _summarize_impl(obj):
    """Implementation of summarize without length capping."""
    if obj is None:
        return "None"

    if isinstance(obj, ImagePoint):
        return f"({obj.i:.2f},{obj.j:.2f})"

    if isinstance(obj, EllipseParameters):
        return (f"ellipse(c=({obj.center.i:.2f},{obj.center.j:.2f}),"
                f"a={obj.a:.2f},b={obj.b:.2f},e={_degrees(obj.e)}deg)")

    if isinstance(obj, ArcBounds):
        if obj.full:
            return "arc(full)"
        return f"arc({_degrees(obj.alpha1)}..{_degrees(obj.alpha2)}deg)"

    if isinstance(obj, ConicCoefficients):
        return "K=[" + ",".join(f"{k:.4g}" for k in obj.as_list()) + "]"

    if isinstance(obj, BaseModel):
        return f"{type(obj).__name__}({len(type(obj).model_fields)} fields)"

    # frames and residual vectors
    if isinstance(obj, np.ndarray):
        shape_str = "x".join(str(s) for s in obj.shape)
        return f"ndarray({obj.dtype},{shape_str})"

    if isinstance(obj, (list, tuple)):
        if obj and all(isinstance(s, Site) for s in obj):
            alphas = [s.alpha for s in obj]
            return f"sites(n={len(obj)},alpha={_degrees(min(alphas))}..{_degrees(max(alphas))}deg)"
        return f"{type(obj).__name__}(len={len(obj)})"

    if isinstance(obj, str):
        if len(obj) > 50:
            return f"str(len={len(obj)})"
        return repr(obj)

    if isinstance(obj, (bool, np.bool_)):
        return str(bool(obj))

    if isinstance(obj, (float, np.floating)):
        return f"{obj:.4g}"

    if isinstance(obj, (int, np.integer)):
        return str(obj)

    return f"<{type(obj).__name__}>"


def trace(label=None, arg_names=None):
    """
    Decorator to trace function execution.

    Wraps a function in a span that logs start/end with timing. Arguments
    listed in arg_names, positional or keyword, are summarized on the start
    line.
    """
    def decorator(func):
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if not _tracer.config.enabled:
                return func(*args, **kwargs)

            func_module = func.__module__.split(".")[-1] if func.__module__ else ""
            func_name = label or func.__name__

            meta = {}
            if arg_names:
                bound = signature.bind_partial(*args, **kwargs).arguments
                for name in arg_names:
                    if name in bound:
                        meta[name] = bound[name]

            with _tracer.span(func_name, module=func_module, **meta):
                return func(*args, **kwargs)

        return wrapper
    return decorator


# Global tracer instance
_tracer = Tracer()


def get_tracer():
    """Get the global tracer instance."""
    return _tracer


def configure_tracer(enabled=False, level="INFO", file_path=None, json_output=False):
    """Configure the global tracer."""
    _tracer.set_frame(None)
    _tracer.config.configure(
        enabled=enabled,
        level=level,
        file_path=file_path,
        json_output=json_output,
    )
