"""
Signage Overlays Configuration

Engine-wide timing and capture settings. Per-overlay options (delays,
auto-close, coupon behaviour) live on each definition's settings; this module
holds what is fixed for the whole engine.
Supports environment variables, YAML files, and runtime overrides.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class TimingConfig:
    """Fixed durations shared by every overlay kind."""
    exit_transition_sec: float = 0.3  # Entrance and exit animations use the same value
    success_settle_sec: float = 3.0   # Confirmation stays readable before closing


@dataclass
class CaptureConfig:
    """Email capture and coupon issuance."""
    coupon_prefix: str = "EZK"
    coupon_suffix_length: int = 6
    default_tags: List[str] = field(default_factory=lambda: ["overlay-capture"])


@dataclass
class EngineConfig:
    """Top-level engine configuration."""
    timing: TimingConfig = field(default_factory=TimingConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)

    # Runtime
    debug: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load configuration from environment variables."""
        config = cls()

        if exit_sec := os.getenv("SIGNAGE_OVERLAYS_EXIT_SEC"):
            config.timing.exit_transition_sec = float(exit_sec)
        if settle := os.getenv("SIGNAGE_OVERLAYS_SETTLE_SEC"):
            config.timing.success_settle_sec = float(settle)

        if prefix := os.getenv("SIGNAGE_OVERLAYS_COUPON_PREFIX"):
            config.capture.coupon_prefix = prefix
        if tags := os.getenv("SIGNAGE_OVERLAYS_TAGS"):
            config.capture.default_tags = [t.strip() for t in tags.split(",") if t.strip()]

        config.debug = os.getenv("SIGNAGE_OVERLAYS_DEBUG", "").lower() in ("1", "true", "yes")
        config.log_level = os.getenv("SIGNAGE_OVERLAYS_LOG_LEVEL", "INFO")

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "EngineConfig":
        """Load configuration from a YAML file. A missing file yields defaults."""
        config = cls()

        if not path.exists():
            return config

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if "timing" in data:
            for k, v in data["timing"].items():
                if hasattr(config.timing, k):
                    setattr(config.timing, k, float(v))

        if "capture" in data:
            for k, v in data["capture"].items():
                if hasattr(config.capture, k):
                    setattr(config.capture, k, v)

        config.debug = bool(data.get("debug", False))
        config.log_level = data.get("log_level", "INFO")

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "timing": {
                "exit_transition_sec": self.timing.exit_transition_sec,
                "success_settle_sec": self.timing.success_settle_sec,
            },
            "capture": {
                "coupon_prefix": self.capture.coupon_prefix,
                "coupon_suffix_length": self.capture.coupon_suffix_length,
                "default_tags": list(self.capture.default_tags),
            },
            "debug": self.debug,
            "log_level": self.log_level,
        }


# Global config instance
_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config


def set_config(config: EngineConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
