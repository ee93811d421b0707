"""Score and orient each root-cause candidate.

Two measures are blended with weight ``beta``:

- surprise: a symmetric divergence between the candidate's share of the
  expected value and its share of the actual value,
      p = expected / anomaly_expected,  q = value / anomaly_value
      S = 0.5 · (p·log2(2p/(p+q)) + q·log2(2q/(p+q)))
- explanatory power: the candidate's deviation as a fraction of the
  anomaly's deviation.

With several candidates both measures are normalized by their sums first,
explanatory power by absolute value. A lone candidate blends the raw values,
keeping the sign of its explanatory power.
The blend is clamped with ``max(1, ...)``, so scores are at least 1
rather than bounded to [0, 1].

Undefined ratios produce a DegenerateScoreWarning and a score of 0.0.
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from rootcause.schema import (
    AggregateType,
    AnomalyDirection,
    DegenerateScoreWarning,
    Dimension,
    DimensionValue,
    Point,
    RootCauseItem,
    dimension_signature,
)

logger = logging.getLogger(__name__)

DEGENERATE_SCORE = 0.0

NAN = float("nan")


def _ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return NAN
    return numerator / denominator


def _divergence_term(x: float, total: float) -> float:
    if x == 0:
        return 0.0
    if total == 0 or math.isnan(x) or math.isnan(total):
        return NAN
    share = 2 * x / total
    if share <= 0:
        return NAN
    return x * math.log2(share)


def surprise_score(candidate: Point, anomaly: Point) -> float:
    p = _ratio(candidate.expected_value, anomaly.expected_value)
    q = _ratio(candidate.value, anomaly.value)
    return 0.5 * (_divergence_term(p, p + q) + _divergence_term(q, p + q))


def explanatory_power(candidate: Point, anomaly: Point) -> float:
    return _ratio(candidate.delta, anomaly.delta)


def final_score(surprise: float, power: float, beta: float) -> float:
    """Blend the two measures; the clamp keeps scores at least 1."""
    return max(1.0, beta * surprise + (1 - beta) * power)


def direction_of(point: Point) -> AnomalyDirection:
    if point.expected_value < point.value:
        return AnomalyDirection.UP
    return AnomalyDirection.DOWN


def _combine(values: Sequence[float], aggregation_type: AggregateType) -> float:
    if aggregation_type is AggregateType.AVG:
        return sum(values) / len(values)
    if aggregation_type is AggregateType.MIN:
        return min(values)
    if aggregation_type is AggregateType.MAX:
        return max(values)
    return sum(values)


def synthesize_point(
    dimension: Dimension,
    leaves: Sequence[Point],
    aggregation_symbol: DimensionValue,
    aggregation_type: AggregateType,
) -> Optional[Point]:
    """Roll the matching leaves up into a point for ``dimension``.

    Used when a candidate's rolled-up point is not part of the slice. Leaves
    match when they agree with every concrete value of ``dimension``.
    """
    concrete = {k: v for k, v in dimension.items() if v != aggregation_symbol}
    matching = [
        leaf
        for leaf in leaves
        if all(leaf.dimension.get(k) == v for k, v in concrete.items())
    ]
    if not matching:
        return None
    return Point(
        value=_combine([p.value for p in matching], aggregation_type),
        expected_value=_combine([p.expected_value for p in matching], aggregation_type),
        is_anomaly=any(p.is_anomaly for p in matching),
        dimension=dimension,
    )


def _warn_degenerate(item: RootCauseItem, reason: str) -> None:
    warnings.warn(
        f"Score for {dict(item.dimension)!r} is undefined ({reason}); "
        f"using {DEGENERATE_SCORE}",
        DegenerateScoreWarning,
        stacklevel=3,
    )


def _guarded_score(item: RootCauseItem, surprise: float, power: float, beta: float) -> float:
    blend = beta * surprise + (1 - beta) * power
    if not math.isfinite(blend):
        _warn_degenerate(item, f"surprise={surprise}, explanatory power={power}")
        return DEGENERATE_SCORE
    return final_score(surprise, power, beta)


def score_root_causes(
    items: Sequence[RootCauseItem],
    points_by_signature: Mapping[str, Point],
    anomaly_point: Point,
    leaves: Sequence[Point],
    aggregation_symbol: DimensionValue,
    aggregation_type: AggregateType,
    beta: float,
) -> List[RootCauseItem]:
    """Return the items with score and direction filled in, best first.

    Items whose point cannot be found or synthesized keep direction Same and
    the fallback score.
    """
    resolved: List[Tuple[RootCauseItem, Optional[Point]]] = []
    for item in items:
        point = points_by_signature.get(dimension_signature(item.dimension))
        if point is None:
            point = synthesize_point(item.dimension, leaves, aggregation_symbol, aggregation_type)
            if point is not None:
                logger.debug("Synthesized point for %s", dimension_signature(item.dimension))
        resolved.append((item, point))

    raw: Dict[int, Tuple[float, float]] = {}
    for position, (item, point) in enumerate(resolved):
        if point is not None:
            raw[position] = (surprise_score(point, anomaly_point), explanatory_power(point, anomaly_point))

    normalize = len(items) > 1
    sum_surprise = sum(s for s, _ in raw.values())
    sum_power = sum(abs(ep) for _, ep in raw.values())

    scored: List[RootCauseItem] = []
    for position, (item, point) in enumerate(resolved):
        if point is None:
            _warn_degenerate(item, "no point for this dimension")
            scored.append(replace(item, score=DEGENERATE_SCORE, direction=AnomalyDirection.SAME))
            continue

        surprise, power = raw[position]
        if normalize:
            surprise = _ratio(surprise, sum_surprise)
            power = _ratio(abs(power), sum_power)
        scored.append(
            replace(
                item,
                score=_guarded_score(item, surprise, power, beta),
                direction=direction_of(point),
            )
        )

    scored.sort(key=lambda i: i.score, reverse=True)
    return scored
