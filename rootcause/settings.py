"""Tunable thresholds for root-cause localization.

The defaults below are tuned for typical metrics. A YAML file can override any of
them::

    beta: 0.3
    anomaly_delta_threshold: 0.9

Usage:
    from rootcause.settings import LocalizationSettings, load_settings
    settings = load_settings("rca.yaml")
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from rootcause.schema import MalformedInputError

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────
# Defaults
# ──────────────────────────────────────────────────

# Weight of the surprise score against explanatory power in the final blend.
DEFAULT_BETA = 0.5

# A cluster may hold at most this share of the comparison set.
ANOMALY_RATIO_THRESHOLD = 0.5

# A cluster must explain at least this share of the parent's deviation.
ANOMALY_DELTA_THRESHOLD = 0.95

# Accumulation stops once the next deviation is this many times smaller.
ANOMALY_PRE_DELTA_THRESHOLD = 2.0


@dataclass(frozen=True)
class LocalizationSettings:
    beta: float = DEFAULT_BETA
    anomaly_ratio_threshold: float = ANOMALY_RATIO_THRESHOLD
    anomaly_delta_threshold: float = ANOMALY_DELTA_THRESHOLD
    anomaly_pre_delta_threshold: float = ANOMALY_PRE_DELTA_THRESHOLD

    def __post_init__(self):
        for f in fields(self):
            raw = getattr(self, f.name)
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                raise MalformedInputError(f"Setting {f.name!r} must be a number, got {raw!r}")
            object.__setattr__(self, f.name, float(raw))

        if not 0.0 <= self.beta <= 1.0:
            raise MalformedInputError(f"beta must be within [0, 1], got {self.beta}")
        for name in (
            "anomaly_ratio_threshold",
            "anomaly_delta_threshold",
            "anomaly_pre_delta_threshold",
        ):
            if getattr(self, name) <= 0:
                raise MalformedInputError(f"{name} must be positive")

    def with_overrides(self, **overrides: Any) -> "LocalizationSettings":
        """Copy with the given non-None fields replaced."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def settings_from_mapping(raw: Optional[Mapping[str, Any]]) -> LocalizationSettings:
    """Build settings from a parsed mapping; unknown keys are rejected."""
    if raw is None:
        return LocalizationSettings()
    if not isinstance(raw, Mapping):
        raise MalformedInputError("Settings document must be a mapping")

    known = {f.name for f in fields(LocalizationSettings)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise MalformedInputError(f"Unknown settings: {', '.join(unknown)}")
    return LocalizationSettings(**dict(raw))


def load_settings(path: Union[str, Path]) -> LocalizationSettings:
    """Load settings from a YAML file.

    PyYAML is imported here rather than at module level so the analysis
    modules import cleanly without it.
    """
    import yaml

    settings_path = Path(path)
    if not settings_path.exists():
        raise MalformedInputError(f"Settings file not found: {settings_path}")

    with open(settings_path, "r") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise MalformedInputError(f"Invalid settings YAML in {settings_path}: {exc}") from exc

    settings = settings_from_mapping(raw)
    logger.debug("Loaded settings from %s: %s", settings_path, settings.to_dict())
    return settings
