"""
Configuration management for the ellipse tracker.

Loads YAML configuration with sensible defaults for the moving-edge search,
the ellipse fit and runtime tracing.
"""

import os
from dataclasses import dataclass, field, fields

import yaml


def clamp_threshold(value):
    """Clamp a rejection threshold into [0, 1]."""
    return min(1.0, max(0.0, float(value)))


@dataclass
class MovingEdgeConfig:
    """Configuration shared with the edge search collaborator."""
    range: int = 10  # search half-length along the normal, pixels
    sample_step: float = 10.0  # degrees between sites
    edge_threshold: float = 20.0
    blur_sigma: float = 1.0


@dataclass
class EllipseConfig:
    """Configuration for the robust ellipse fit and arc recovery."""
    circle: bool = False
    threshold_robust: float = 0.2
    max_iterations: int = 10
    weight_epsilon: float = 1e-3
    noise_threshold: float = 2.0  # pixels
    min_sites: int = 6
    max_starved_frames: int = 2
    seek_max_steps: int = 6
    seek_max_failures: int = 2
    resample_ratio: float = 0.5

    def __post_init__(self):
        self.threshold_robust = clamp_threshold(self.threshold_robust)


@dataclass
class TracingConfig:
    """Configuration for runtime tracing."""
    enabled: bool = False
    level: str = "INFO"
    file_path: str = None
    json_output: bool = False


@dataclass
class TrackerConfig:
    """Complete tracker configuration."""
    moving_edge: MovingEdgeConfig = field(default_factory=MovingEdgeConfig)
    ellipse: EllipseConfig = field(default_factory=EllipseConfig)
    tracing: TracingConfig = field(default_factory=TracingConfig)


def load_config(config_path=None):
    """
    Load configuration from YAML file.

    Falls back to defaults for any missing values. Unknown keys are ignored.
    """
    config = TrackerConfig()

    if config_path and os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}

        config = _merge_config(config, yaml_data)

    return config


def _merge_config(config, yaml_data):
    """Merge YAML data into config dataclass."""
    for section in ("moving_edge", "ellipse", "tracing"):
        if section not in yaml_data:
            continue
        target = getattr(config, section)
        for key, value in (yaml_data[section] or {}).items():
            if hasattr(target, key):
                setattr(target, key, value)

    config.ellipse.threshold_robust = clamp_threshold(config.ellipse.threshold_robust)

    return config


def save_default_config(path):
    """Save default configuration to YAML file for reference."""
    config = TrackerConfig()

    yaml_data = {
        section: {f.name: getattr(getattr(config, section), f.name) for f in fields(getattr(config, section))}
        for section in ("moving_edge", "ellipse")
    }
    yaml_data["tracing"] = {
        "enabled": config.tracing.enabled,
        "level": config.tracing.level,
    }

    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(yaml_data, f, default_flow_style=False, sort_keys=False)
