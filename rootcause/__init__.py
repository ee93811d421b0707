"""Dimensional root-cause localization for anomalous metric points.

Each call analyzes one layer of the dimension hierarchy and returns the
dimension values that most likely drove the anomaly.
"""

from rootcause.localize import RootCauseAnalyzer, analyze
from rootcause.schema import (
    AggregateType,
    AnomalyDirection,
    DegenerateScoreWarning,
    MalformedInputError,
    MetricSlice,
    Point,
    RootCause,
    RootCauseError,
    RootCauseItem,
    RootCauseLocalizationInput,
    load_input,
    root_cause_to_dict,
)
from rootcause.settings import LocalizationSettings, load_settings

__all__ = [
    "AggregateType",
    "AnomalyDirection",
    "DegenerateScoreWarning",
    "LocalizationSettings",
    "MalformedInputError",
    "MetricSlice",
    "Point",
    "RootCause",
    "RootCauseAnalyzer",
    "RootCauseError",
    "RootCauseItem",
    "RootCauseLocalizationInput",
    "analyze",
    "load_input",
    "load_settings",
    "root_cause_to_dict",
]
