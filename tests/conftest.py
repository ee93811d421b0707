"""Shared test fixtures for root-cause localization tests."""

from datetime import datetime

import pytest
from pathlib import Path

from rootcause.schema import (
    AggregateType,
    MetricSlice,
    Point,
    RootCauseLocalizationInput,
)

# Project root
ROOT = Path(__file__).parent.parent

AGG = "*"
ANOMALY_TS = datetime(2024, 1, 1, 12, 0)


@pytest.fixture
def make_point():
    """Factory: make_point(value, expected, is_anomaly, country="US", ...)."""

    def _make(value, expected, is_anomaly=False, **dimension):
        return Point(
            value=value,
            expected_value=expected,
            is_anomaly=is_anomaly,
            dimension=dimension,
        )

    return _make


@pytest.fixture
def make_input():
    """Factory wrapping points into a single-slice input at ANOMALY_TS."""

    def _make(points, anomaly_dimension, aggregation_type=AggregateType.SUM, timestamp=ANOMALY_TS):
        return RootCauseLocalizationInput(
            anomaly_timestamp=ANOMALY_TS,
            anomaly_dimension=anomaly_dimension,
            slices=[MetricSlice(timestamp=timestamp, points=points)],
            aggregation_symbol=AGG,
            aggregation_type=aggregation_type,
        )

    return _make


@pytest.fixture
def country_device_points(make_point):
    """Traffic by country x device where US/mobile alone spikes.

    Only the total, US/mobile, US/web and the UK rollup are reported; there
    is no US rollup point in the slice.
    """
    return [
        make_point(72, 30, True, country=AGG, device=AGG),
        make_point(50, 10, True, country="US", device="mobile"),
        make_point(12, 10, False, country="US", device="web"),
        make_point(10, 10, False, country="UK", device=AGG),
    ]


@pytest.fixture
def split_anomaly_points(make_point):
    """Two equal spikes (A, B) plus a small one (C) among three countries.

    A and B together cover the total deviation, but two of three siblings is
    too large a share to count as a compact explanation.
    """
    return [
        make_point(100, 40, True, country=AGG, device=AGG),
        make_point(50, 20, True, country="A", device=AGG),
        make_point(40, 10, True, country="B", device=AGG),
        make_point(15, 10, True, country="C", device=AGG),
    ]


@pytest.fixture
def dominant_child_points(make_point):
    """One country (A) carries almost the whole deviation among five."""
    return [
        make_point(160, 100, True, country=AGG, device=AGG),
        make_point(78, 20, True, country="A", device=AGG),
        make_point(21, 20, True, country="B", device=AGG),
        make_point(21, 20, True, country="C", device=AGG),
        make_point(20, 20, False, country="D", device=AGG),
        make_point(20, 20, False, country="E", device=AGG),
    ]


@pytest.fixture
def sample_payload():
    """Plain-dict input document, as read from JSON or YAML."""
    return {
        "anomaly_timestamp": "2024-01-01T12:00:00",
        "anomaly_dimension": {"country": AGG, "device": AGG},
        "aggregation_symbol": AGG,
        "aggregation_type": "Sum",
        "slices": [
            {
                "timestamp": "2024-01-01T11:00:00",
                "points": [
                    {"value": 30, "expected_value": 30, "is_anomaly": False,
                     "dimension": {"country": AGG, "device": AGG}},
                ],
            },
            {
                "timestamp": "2024-01-01T12:00:00",
                "points": [
                    {"value": 72, "expected_value": 30, "is_anomaly": True,
                     "dimension": {"country": AGG, "device": AGG}},
                    {"value": 50, "expected_value": 10, "is_anomaly": True,
                     "dimension": {"country": "US", "device": "mobile"}},
                    {"value": 12, "expected_value": 10, "is_anomaly": False,
                     "dimension": {"country": "US", "device": "web"}},
                    {"value": 10, "expected_value": 10, "is_anomaly": False,
                     "dimension": {"country": "UK", "device": AGG}},
                ],
            },
        ],
    }


@pytest.fixture
def split_anomaly_by_device(make_point, split_anomaly_points):
    """split_anomaly_points plus a device breakdown with half its values anomalous.

    The device split is more impure than the country split, so country is the
    dimension that gets clustered.
    """
    return split_anomaly_points + [
        make_point(60, 20, True, country=AGG, device="mobile"),
        make_point(20, 10, True, country=AGG, device="web"),
        make_point(10, 5, False, country=AGG, device="tablet"),
        make_point(10, 5, False, country=AGG, device="tv"),
    ]


@pytest.fixture
def dominant_child_by_device(make_point, dominant_child_points):
    """dominant_child_points plus a device breakdown, two of four anomalous."""
    return dominant_child_points + [
        make_point(100, 50, True, country=AGG, device="mobile"),
        make_point(30, 20, True, country=AGG, device="web"),
        make_point(15, 15, False, country=AGG, device="tablet"),
        make_point(15, 15, False, country=AGG, device="tv"),
    ]
