"""Index the points at the anomaly timestamp into aggregation trees.

The anomaly dimension splits its keys in two:
- aggregated keys hold the aggregation symbol and may be decomposed further
- detail keys hold a concrete value and act as a filter on the points

Every point that passes the filter is classified relative to the aggregated
keys: aggregated on all of them it is the root (the anomaly itself), on all
but one it is a child bucketed under the remaining key, on none it is a leaf.
Two trees are built, one over all matching points and one over the anomalous
ones only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from rootcause.schema import (
    Dimension,
    DimensionValue,
    MalformedInputError,
    Point,
    RootCauseLocalizationInput,
    contains_all,
    dimension_signature,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DimensionInfo:
    aggregated_keys: Tuple[str, ...]
    detail_keys: Tuple[str, ...]


@dataclass(frozen=True)
class PointTree:
    """One-level classification of a point set against the aggregated keys."""

    root: Optional[Point]
    children: Mapping[str, Tuple[Point, ...]]
    leaves: Tuple[Point, ...]

    def children_of(self, key: str) -> Tuple[Point, ...]:
        return self.children.get(key, ())


@dataclass(frozen=True)
class PointIndex:
    point_tree: PointTree
    anomaly_tree: PointTree
    points_by_signature: Mapping[str, Point]


def classify_dimensions(
    anomaly_dimension: Dimension, aggregation_symbol: DimensionValue
) -> DimensionInfo:
    """Split the anomaly dimension into aggregated and detail keys, keeping key order."""
    aggregated: List[str] = []
    detail: List[str] = []
    for key, value in anomaly_dimension.items():
        if value == aggregation_symbol:
            aggregated.append(key)
        else:
            detail.append(key)
    return DimensionInfo(aggregated_keys=tuple(aggregated), detail_keys=tuple(detail))


class PointTreeBuilder:
    """Accumulates points into a PointTree; ``build`` returns the frozen tree."""

    def __init__(self, aggregated_keys: Sequence[str], aggregation_symbol: DimensionValue):
        self.aggregated_keys = tuple(aggregated_keys)
        self.aggregation_symbol = aggregation_symbol
        self._root: Optional[Point] = None
        self._children: Dict[str, List[Point]] = {}
        self._leaves: List[Point] = []

    def add(self, point: Point) -> None:
        aggregated_count = 0
        next_key: Optional[str] = None
        for key in self.aggregated_keys:
            if point.dimension[key] == self.aggregation_symbol:
                aggregated_count += 1
            else:
                next_key = key

        if aggregated_count == len(self.aggregated_keys):
            self._root = point
        elif aggregated_count == len(self.aggregated_keys) - 1:
            self._children.setdefault(next_key, []).append(point)

        # With a single aggregated key a fully detailed point is also a child.
        if aggregated_count == 0:
            self._leaves.append(point)

    def build(self) -> PointTree:
        return PointTree(
            root=self._root,
            children=MappingProxyType(
                {key: tuple(points) for key, points in sorted(self._children.items())}
            ),
            leaves=tuple(self._leaves),
        )


def points_at_timestamp(src: RootCauseLocalizationInput) -> Tuple[Point, ...]:
    """Points of the slice at the anomaly timestamp; empty when there is none."""
    points: Tuple[Point, ...] = ()
    for metric_slice in src.slices:
        if metric_slice.timestamp == src.anomaly_timestamp:
            points = metric_slice.points
    return points


def index_points(src: RootCauseLocalizationInput, info: DimensionInfo) -> PointIndex:
    """Build the full tree, the anomaly tree and the signature lookup.

    Raises:
        MalformedInputError: a point at the anomaly timestamp lacks one of the
            anomaly dimension's keys.
    """
    detail_filter = {key: src.anomaly_dimension[key] for key in info.detail_keys}
    point_builder = PointTreeBuilder(info.aggregated_keys, src.aggregation_symbol)
    anomaly_builder = PointTreeBuilder(info.aggregated_keys, src.aggregation_symbol)
    by_signature: Dict[str, Point] = {}

    for point in points_at_timestamp(src):
        missing = [key for key in src.anomaly_dimension if key not in point.dimension]
        if missing:
            raise MalformedInputError(
                f"Point {dict(point.dimension)!r} is missing dimension keys: "
                f"{', '.join(sorted(missing))}"
            )
        if not contains_all(point.dimension, detail_filter):
            continue

        signature = dimension_signature(point.dimension)
        if signature in by_signature:
            # Known gap: later duplicates are dropped, first one wins.
            logger.debug("Dropping duplicate point for %s", signature)
            continue

        by_signature[signature] = point
        point_builder.add(point)
        if point.is_anomaly:
            anomaly_builder.add(point)

    index = PointIndex(
        point_tree=point_builder.build(),
        anomaly_tree=anomaly_builder.build(),
        points_by_signature=MappingProxyType(by_signature),
    )
    logger.debug(
        "Indexed %d points (%d leaves, %d anomalous leaves, child buckets %s)",
        len(by_signature),
        len(index.point_tree.leaves),
        len(index.anomaly_tree.leaves),
        sorted(index.point_tree.children),
    )
    return index
