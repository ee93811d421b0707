#!/usr/bin/env python3
"""Localize the root cause of an anomaly in a dimensioned metric.

Given an anomalous rolled-up point (e.g. total traffic with every dimension
aggregated), one call analyzes a single layer of the hierarchy:

1. Split the anomaly dimension into aggregated and detail keys
2. Index the points at the anomaly timestamp into aggregation trees
3. Select the dimension that best separates anomalous from normal points
4. Cluster the anomalous values of that dimension into a minimal explanation
5. Score each cause and tell whether it sits above or below expectation

To walk deeper, call again with a returned item's dimension as the new
anomaly dimension.

Usage (CLI):
    python -m rootcause.localize --input incident.json --beta 0.3

Usage (from Python):
    from rootcause.localize import analyze
    result = analyze(src)

Output: JSON to stdout.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from rootcause.clustering import cluster_anomalies
from rootcause.indexer import DimensionInfo, PointIndex, classify_dimensions, index_points
from rootcause.schema import (
    Dimension,
    MalformedInputError,
    RootCause,
    RootCauseError,
    RootCauseItem,
    RootCauseLocalizationInput,
    dimension_signature,
    load_input,
    root_cause_to_dict,
    substitute_dimension,
)
from rootcause.scoring import score_root_causes
from rootcause.selection import (
    select_best_dimension_from_children,
    select_best_dimension_from_leaves,
)
from rootcause.settings import LocalizationSettings, load_settings

logger = logging.getLogger(__name__)


def localize_by_dimension(
    index: PointIndex,
    anomaly_dimension: Dimension,
    info: DimensionInfo,
    settings: LocalizationSettings,
) -> List[RootCauseItem]:
    """Unscored root-cause items for one layer.

    Falls back to the anomaly itself when no dimension qualifies, and to
    every anomalous value of the chosen dimension when no compact cluster
    explains the deviation.
    """
    point_tree = index.point_tree
    anomaly_tree = index.anomaly_tree

    if not anomaly_tree.children:
        # No rolled-up children: judge the split on fully detailed points.
        best = select_best_dimension_from_leaves(
            point_tree.leaves, anomaly_tree.leaves, info.aggregated_keys
        )
    else:
        best = select_best_dimension_from_children(
            point_tree.children, anomaly_tree.children, info.aggregated_keys
        )

    if best is None:
        logger.debug("No eligible dimension; the anomaly explains itself")
        return [RootCauseItem(dimension=anomaly_dimension)]

    key = best.dimension_key
    values = None
    if key in anomaly_tree.children:
        comparison = point_tree.children_of(key) or point_tree.leaves
        cluster = cluster_anomalies(
            anomaly_tree.children[key], anomaly_tree.root, comparison, key, settings
        )
        if cluster is not None:
            values = [point.dimension[key] for point in cluster]

    if values is None:
        values = list(best.anomaly_distribution)

    if not values:
        logger.debug("Best dimension %s has no anomalous value; the anomaly explains itself", key)
        return [RootCauseItem(dimension=anomaly_dimension)]

    return [
        RootCauseItem(
            dimension=substitute_dimension(anomaly_dimension, key, value),
            path=(key,),
        )
        for value in values
    ]


def analyze(
    src: RootCauseLocalizationInput,
    beta: Optional[float] = None,
    settings: Optional[LocalizationSettings] = None,
) -> RootCause:
    """Analyze one layer of the hierarchy below ``src.anomaly_dimension``.

    Args:
        src: the anomaly and the metric slices around it.
        beta: weight of surprise in the final score; overrides ``settings.beta``.
        settings: thresholds; defaults are the documented constants.

    Returns:
        RootCause with items ranked by score. Empty when nothing is
        aggregated, when no slice matches the timestamp, or when the anomaly
        point itself is not flagged at that timestamp.

    Raises:
        MalformedInputError: a point lacks one of the anomaly dimension's keys,
            or beta is outside [0, 1].
    """
    settings = (settings or LocalizationSettings()).with_overrides(beta=beta)

    info = classify_dimensions(src.anomaly_dimension, src.aggregation_symbol)
    if not info.aggregated_keys:
        logger.info("Nothing to decompose: no aggregated dimension in %s",
                    dict(src.anomaly_dimension))
        return RootCause()

    index = index_points(src, info)
    if index.anomaly_tree.root is None or not index.points_by_signature:
        logger.info("No anomalous point for %s at %s",
                    dict(src.anomaly_dimension), src.anomaly_timestamp)
        return RootCause()

    items = localize_by_dimension(index, src.anomaly_dimension, info, settings)

    anomaly_point = index.points_by_signature.get(
        dimension_signature(src.anomaly_dimension), index.anomaly_tree.root
    )
    scored = score_root_causes(
        items,
        index.points_by_signature,
        anomaly_point,
        index.point_tree.leaves,
        src.aggregation_symbol,
        src.aggregation_type,
        settings.beta,
    )
    logger.info(
        "Localized %d root cause(s) along %s",
        len(scored),
        scored[0].path if scored else (),
    )
    return RootCause(items=scored)


class RootCauseAnalyzer:
    """Holds settings across calls; each ``analyze`` starts from scratch."""

    def __init__(self, settings: Optional[LocalizationSettings] = None, beta: Optional[float] = None):
        self.settings = (settings or LocalizationSettings()).with_overrides(beta=beta)

    @property
    def beta(self) -> float:
        return self.settings.beta

    def analyze(self, src: RootCauseLocalizationInput) -> RootCause:
        return analyze(src, settings=self.settings)


# ──────────────────────────────────────────────────
# CLI interface
# ──────────────────────────────────────────────────


def load_document(path: Path) -> Any:
    """Read a JSON or YAML input document, chosen by file suffix."""
    with open(path) as f:
        if path.suffix.lower() in (".yaml", ".yml"):
            import yaml

            try:
                return yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise MalformedInputError(f"Invalid YAML in {path}: {exc}") from exc
        try:
            return json.load(f)
        except json.JSONDecodeError as exc:
            raise MalformedInputError(f"Invalid JSON in {path}: {exc}") from exc


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for CLI usage."""
    parser = argparse.ArgumentParser(
        description="Localize the dimension values behind an anomalous metric point"
    )
    parser.add_argument(
        "--input", required=True,
        help="Path to a JSON or YAML document describing the anomaly and its slices"
    )
    parser.add_argument(
        "--beta", type=float, default=None,
        help="Weight of surprise against explanatory power (default: 0.5)"
    )
    parser.add_argument(
        "--config", default=None,
        help="Optional YAML file with localization settings"
    )
    parser.add_argument(
        "--log-level", default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level written to stderr (default: WARNING)"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point: load the input document, analyze, print JSON to stdout."""
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    input_path = Path(args.input)
    if not input_path.exists():
        print(json.dumps({"error": f"File not found: {args.input}"}))
        sys.exit(1)

    try:
        settings = load_settings(args.config) if args.config else LocalizationSettings()
        src = load_input(load_document(input_path))
        result = analyze(src, beta=args.beta, settings=settings)
    except RootCauseError as exc:
        print(json.dumps({"error": str(exc)}))
        sys.exit(1)

    print(json.dumps(root_cause_to_dict(result), indent=2))


if __name__ == "__main__":
    main()
