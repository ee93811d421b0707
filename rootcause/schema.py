#!/usr/bin/env python3
"""Data model for dimensional root-cause localization.

A metric is observed per timestamp as a flat set of points. Each point carries
its actual value, the value a detector expected, an anomaly flag, and the
dimension combination it belongs to (e.g. ``{"country": "US", "device": "*"}``).
The aggregation symbol (``"*"`` above) marks a dimension that has been summed
over.

This module also holds the error types shared by the analysis modules and the
helpers that turn plain dicts (from JSON/YAML) into the model and back.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

# Dimension values form a closed set of hashable, comparable scalars.
DimensionValue = Union[str, int, float, bool]
Dimension = Mapping[str, DimensionValue]

DIMENSION_VALUE_TYPES = (str, int, float, bool)

DEFAULT_AGGREGATION_SYMBOL = "##SUM##"


# ──────────────────────────────────────────────────
# Errors
# ──────────────────────────────────────────────────


class RootCauseError(Exception):
    """Base class for root-cause localization errors."""


class MalformedInputError(RootCauseError, ValueError):
    """Raised when the input cannot be analyzed as given."""


class DegenerateScoreWarning(RuntimeWarning):
    """Issued when a score is undefined and replaced with a fallback value."""


# ──────────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────────


class AggregateType(enum.Enum):
    """How a rolled-up point combines its children."""

    UNKNOWN = "Unknown"
    SUM = "Sum"
    AVG = "Avg"
    MIN = "Min"
    MAX = "Max"

    @classmethod
    def parse(cls, raw: Any) -> "AggregateType":
        if isinstance(raw, cls):
            return raw
        if raw is None:
            return cls.UNKNOWN
        text = str(raw).strip().lower()
        for member in cls:
            if member.value.lower() == text or member.name.lower() == text:
                return member
        raise MalformedInputError(f"Unknown aggregation type: {raw!r}")


class AnomalyDirection(enum.Enum):
    """Whether a root cause sits above or below its expected value."""

    UP = "Up"
    DOWN = "Down"
    SAME = "Same"


# ──────────────────────────────────────────────────
# Dimension helpers
# ──────────────────────────────────────────────────


def _check_dimension(dimension: Mapping[str, Any]) -> Dict[str, DimensionValue]:
    """Copy a dimension mapping, rejecting values outside the closed value type."""
    checked: Dict[str, DimensionValue] = {}
    for key, value in dimension.items():
        if not isinstance(value, DIMENSION_VALUE_TYPES):
            raise MalformedInputError(
                f"Dimension {key!r} has unsupported value type "
                f"{type(value).__name__}"
            )
        checked[str(key)] = value
    return checked


def dimension_signature(dimension: Dimension) -> str:
    """Canonical string for a dimension combination.

    Keys are sorted and values rendered with ``repr`` so that ``"1"`` and
    ``1`` never collide. Every lookup keyed by dimension goes through here.
    """
    return ";".join(f"{key}={dimension[key]!r}" for key in sorted(dimension))


def substitute_dimension(
    dimension: Dimension, key: str, value: DimensionValue
) -> Mapping[str, DimensionValue]:
    """Return a new read-only dimension with ``key`` set to ``value``."""
    updated = dict(dimension)
    updated[key] = value
    return MappingProxyType(updated)


def contains_all(dimension: Dimension, required: Dimension) -> bool:
    """True when every required key is present in ``dimension`` with an equal value."""
    for key, value in required.items():
        if key not in dimension or dimension[key] != value:
            return False
    return True


# ──────────────────────────────────────────────────
# Model
# ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Point:
    """One observation of the metric for one dimension combination."""

    value: float
    expected_value: float
    is_anomaly: bool
    dimension: Mapping[str, DimensionValue]
    delta: float = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "value", float(self.value))
        object.__setattr__(self, "expected_value", float(self.expected_value))
        object.__setattr__(self, "is_anomaly", bool(self.is_anomaly))
        object.__setattr__(
            self, "dimension", MappingProxyType(_check_dimension(self.dimension))
        )
        object.__setattr__(self, "delta", self.value - self.expected_value)

    @property
    def signature(self) -> str:
        return dimension_signature(self.dimension)


@dataclass(frozen=True)
class MetricSlice:
    """All points observed at one timestamp."""

    timestamp: Any
    points: Tuple[Point, ...]

    def __post_init__(self):
        object.__setattr__(self, "points", tuple(self.points))


@dataclass(frozen=True)
class RootCauseLocalizationInput:
    """Everything needed to localize one anomaly.

    ``anomaly_dimension`` must match a point present in the slice at
    ``anomaly_timestamp``, otherwise there is nothing to explain and the
    result is empty.
    """

    anomaly_timestamp: Any
    anomaly_dimension: Mapping[str, DimensionValue]
    slices: Tuple[MetricSlice, ...]
    aggregation_symbol: DimensionValue = DEFAULT_AGGREGATION_SYMBOL
    aggregation_type: AggregateType = AggregateType.UNKNOWN

    def __post_init__(self):
        object.__setattr__(
            self,
            "anomaly_dimension",
            MappingProxyType(_check_dimension(self.anomaly_dimension)),
        )
        object.__setattr__(self, "slices", tuple(self.slices))
        object.__setattr__(
            self, "aggregation_type", AggregateType.parse(self.aggregation_type)
        )


@dataclass(frozen=True)
class RootCauseItem:
    """One explanation for the anomaly.

    ``path`` lists the dimension keys chosen to reach this cause; a single
    call always produces paths of length one (or zero when the anomaly
    itself is returned).
    """

    dimension: Mapping[str, DimensionValue]
    path: Tuple[str, ...] = ()
    score: float = 0.0
    direction: AnomalyDirection = AnomalyDirection.SAME

    def __post_init__(self):
        object.__setattr__(self, "dimension", MappingProxyType(dict(self.dimension)))
        object.__setattr__(self, "path", tuple(self.path))


@dataclass(frozen=True)
class RootCause:
    items: Tuple[RootCauseItem, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "items", tuple(self.items))


# ──────────────────────────────────────────────────
# Loading from plain dicts (JSON / YAML documents)
# ──────────────────────────────────────────────────


def _parse_timestamp(raw: Any) -> Any:
    """Parse ISO-8601 strings into datetimes; pass anything else through.

    Both the anomaly timestamp and the slice timestamps go through this, so
    equality holds whether the document spells them as strings or the YAML
    loader already produced datetimes.
    """
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return raw
    return raw


def _to_bool(raw: Any) -> bool:
    """CSV-style flags arrive as strings; "false"/"0"/"" mean False."""
    if isinstance(raw, str):
        return raw.strip().lower() not in ("", "0", "false", "no", "n")
    return bool(raw)


def _require(payload: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in payload:
        raise MalformedInputError(f"Missing {key!r} in {where}")
    return payload[key]


def load_point(row: Mapping[str, Any]) -> Point:
    """Build a Point from a dict with value/expected_value/is_anomaly/dimension."""
    if not isinstance(row, Mapping):
        raise MalformedInputError(f"Point must be a mapping, got {type(row).__name__}")
    dimension = _require(row, "dimension", "point")
    if not isinstance(dimension, Mapping):
        raise MalformedInputError("Point dimension must be a mapping")
    try:
        return Point(
            value=float(_require(row, "value", "point")),
            expected_value=float(_require(row, "expected_value", "point")),
            is_anomaly=_to_bool(row.get("is_anomaly", False)),
            dimension=dimension,
        )
    except (TypeError, ValueError) as exc:
        if isinstance(exc, MalformedInputError):
            raise
        raise MalformedInputError(f"Invalid point {dict(row)!r}: {exc}") from exc


def load_slices(raw_slices: Iterable[Mapping[str, Any]]) -> List[MetricSlice]:
    slices: List[MetricSlice] = []
    for raw in raw_slices:
        if not isinstance(raw, Mapping):
            raise MalformedInputError("Slice must be a mapping")
        slices.append(
            MetricSlice(
                timestamp=_parse_timestamp(_require(raw, "timestamp", "slice")),
                points=tuple(load_point(p) for p in raw.get("points") or []),
            )
        )
    return slices


def load_input(payload: Mapping[str, Any]) -> RootCauseLocalizationInput:
    """Build a RootCauseLocalizationInput from a parsed JSON/YAML document.

    Expected shape::

        {
          "anomaly_timestamp": "2024-01-01T00:00:00",
          "anomaly_dimension": {"country": "*", "device": "*"},
          "aggregation_symbol": "*",
          "aggregation_type": "Sum",
          "slices": [{"timestamp": ..., "points": [{"value": 50,
                      "expected_value": 10, "is_anomaly": true,
                      "dimension": {...}}]}]
        }
    """
    if not isinstance(payload, Mapping):
        raise MalformedInputError("Input document must be a mapping")
    anomaly_dimension = _require(payload, "anomaly_dimension", "input")
    if not isinstance(anomaly_dimension, Mapping):
        raise MalformedInputError("anomaly_dimension must be a mapping")
    return RootCauseLocalizationInput(
        anomaly_timestamp=_parse_timestamp(
            _require(payload, "anomaly_timestamp", "input")
        ),
        anomaly_dimension=anomaly_dimension,
        slices=tuple(load_slices(payload.get("slices") or [])),
        aggregation_symbol=payload.get("aggregation_symbol", DEFAULT_AGGREGATION_SYMBOL),
        aggregation_type=AggregateType.parse(payload.get("aggregation_type")),
    )


def root_cause_item_to_dict(item: RootCauseItem) -> Dict[str, Any]:
    return {
        "dimension": dict(item.dimension),
        "path": list(item.path),
        "score": item.score,
        "direction": item.direction.value,
    }


def root_cause_to_dict(root_cause: RootCause) -> Dict[str, Any]:
    """JSON-ready rendering of a result, items kept in ranked order."""
    return {"items": [root_cause_item_to_dict(item) for item in root_cause.items]}

