"""Narrow the anomalous children of a dimension to the ones that explain it.

Children are ordered so the largest deviation in the root's direction comes
first, then accumulated until they cover the root's deviation. The cluster
is only accepted when it explains most of the deviation while staying small
compared to the whole set of siblings; otherwise the caller falls back to
listing every anomalous value.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from rootcause.schema import Point
from rootcause.settings import LocalizationSettings

logger = logging.getLogger(__name__)


def order_by_deviation(anomalies: Sequence[Point], root: Point) -> List[Point]:
    """Ascending by delta, reversed when the root deviates upwards."""
    ordered = sorted(anomalies, key=lambda p: (p.delta, p.signature))
    if root.delta > 0:
        ordered.reverse()
    return ordered


def should_stop(
    accumulated: float,
    parent: float,
    current: float,
    previous: float,
    settings: LocalizationSettings,
) -> bool:
    """Stop before adding ``current`` once the parent is covered and deltas fall off.

    ``previous`` starts at 0, which makes the first step never stop.
    """
    if abs(accumulated) < abs(parent) * settings.anomaly_delta_threshold:
        return False
    if current == 0:
        return previous != 0
    return abs(previous) / abs(current) > settings.anomaly_pre_delta_threshold


def is_explanation(
    accumulated: float,
    parent: float,
    total_size: int,
    size: int,
    settings: LocalizationSettings,
) -> bool:
    if abs(accumulated) < abs(parent) * settings.anomaly_delta_threshold:
        return False
    if size == total_size and size == 1:
        return True
    return size <= total_size * settings.anomaly_ratio_threshold


def cluster_anomalies(
    anomalies: Sequence[Point],
    root: Point,
    comparison_points: Sequence[Point],
    dimension_key: str,
    settings: Optional[LocalizationSettings] = None,
) -> Optional[List[Point]]:
    """Return the explaining subset of ``anomalies``, or None if there is none.

    Args:
        anomalies: anomalous children under the selected dimension.
        root: the rolled-up anomaly point whose deviation is being explained.
        comparison_points: all siblings (child bucket, or leaves when the
            bucket is empty); their count bounds the cluster size.
        dimension_key: the selected dimension, used for logging only.
    """
    settings = settings or LocalizationSettings()
    ordered = order_by_deviation(anomalies, root)
    if len(ordered) == 1:
        return ordered

    accumulated = 0.0
    previous = 0.0
    cluster: List[Point] = []
    for anomaly in ordered:
        if should_stop(accumulated, root.delta, anomaly.delta, previous, settings):
            break
        accumulated += anomaly.delta
        cluster.append(anomaly)
        previous = anomaly.delta

    if is_explanation(accumulated, root.delta, len(comparison_points), len(cluster), settings):
        logger.debug(
            "Cluster on %s: %d of %d anomalies explain %.6f of %.6f",
            dimension_key,
            len(cluster),
            len(ordered),
            accumulated,
            root.delta,
        )
        return cluster

    logger.debug(
        "No compact cluster on %s (%d members, %d siblings, accumulated %.6f of %.6f)",
        dimension_key,
        len(cluster),
        len(comparison_points),
        accumulated,
        root.delta,
    )
    return None
