"""Pick the dimension that best explains an anomaly.

Each aggregated key is a candidate split. For every candidate we count how
the points (and the anomalous points) distribute over the key's concrete
values, then score the split with an entropy criterion:

    H(n, k) = -(k/n)·log2(k/n) - (1 - k/n)·log2(1 - k/n)

At leaf level the score is a C4.5-style information gain, normalized into a
gain ratio by the split's intrinsic value so that high-cardinality keys are
not favored. At children level (when the anomaly tree has rolled-up child
points) the entropy of distinct child counts stands in directly for impurity,
so a lower ratio is better.

Selection rule, shared by both levels:
- every candidate counts toward the mean gain, including keys with no
  anomalous value
- a candidate is eligible if its anomalies sit on a single value, or its gain
  is at most the mean gain over all candidates
- single-value candidates beat multi-value ones
- within a category the better gain ratio wins; a candidate with zero
  intrinsic value (one value among all points) has no ratio and ranks first
- remaining ties go to the smallest key
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from rootcause.schema import DimensionValue, Point

logger = logging.getLogger(__name__)

Distribution = Mapping[DimensionValue, int]


@dataclass(frozen=True)
class BestDimension:
    """Scoring record for one candidate key."""

    dimension_key: str
    point_distribution: Distribution
    anomaly_distribution: Distribution
    gain: float
    gain_ratio: Optional[float]

    @property
    def is_single_valued(self) -> bool:
        return len(self.anomaly_distribution) == 1


# ──────────────────────────────────────────────────
# Entropy helpers
# ──────────────────────────────────────────────────


def entropy(total: int, anomalous: int) -> float:
    """Binary entropy of ``anomalous`` out of ``total``; 0 for pure or empty sets."""
    if total <= 0:
        return 0.0
    ratio = anomalous / total
    if ratio == 0 or ratio == 1:
        return 0.0
    return -(ratio * math.log2(ratio) + (1 - ratio) * math.log2(1 - ratio))


def _value_sort_key(value: DimensionValue) -> Tuple[str, DimensionValue]:
    return (type(value).__name__, value)


def value_distribution(points: Iterable[Point], key: str) -> Distribution:
    """Count points per value of ``key``, keyed in sorted value order."""
    counts = Counter(point.dimension[key] for point in points)
    return MappingProxyType(
        {value: counts[value] for value in sorted(counts, key=_value_sort_key)}
    )


def dimension_entropy(point_distribution: Distribution, anomaly_distribution: Distribution) -> float:
    """Per-value entropies weighted by each value's share of the points."""
    total = sum(point_distribution.values())
    if total == 0:
        return 0.0
    weighted = 0.0
    for value, anomalous in anomaly_distribution.items():
        count = point_distribution.get(value, 0)
        weighted += entropy(count, anomalous) * count / total
    return weighted


def intrinsic_value(point_distribution: Distribution) -> float:
    """Entropy of the split itself; 0 when the key has a single value."""
    total = sum(point_distribution.values())
    value = 0.0
    for count in point_distribution.values():
        if count > 0:
            share = count / total
            value -= math.log2(share) * share
    return value


def _gain_ratio(gain: float, split_info: float) -> Optional[float]:
    if split_info <= 0:
        return None
    return gain / split_info


# ──────────────────────────────────────────────────
# Candidate evaluation
# ──────────────────────────────────────────────────


def evaluate_leaf_candidates(
    points: Sequence[Point], anomalies: Sequence[Point], keys: Iterable[str]
) -> List[BestDimension]:
    total_entropy = entropy(len(points), len(anomalies))
    candidates: List[BestDimension] = []
    for key in sorted(keys):
        point_dis = value_distribution(points, key)
        anomaly_dis = value_distribution(anomalies, key)
        gain = total_entropy - dimension_entropy(point_dis, anomaly_dis)
        candidates.append(
            BestDimension(
                dimension_key=key,
                point_distribution=point_dis,
                anomaly_distribution=anomaly_dis,
                gain=gain,
                gain_ratio=_gain_ratio(gain, intrinsic_value(point_dis)),
            )
        )
    return candidates


def evaluate_children_candidates(
    point_children: Mapping[str, Sequence[Point]],
    anomaly_children: Mapping[str, Sequence[Point]],
    keys: Iterable[str],
) -> List[BestDimension]:
    candidates: List[BestDimension] = []
    for key in sorted(keys):
        point_dis = value_distribution(point_children.get(key, ()), key)
        anomaly_dis = value_distribution(anomaly_children.get(key, ()), key)
        impurity = entropy(len(point_dis), len(anomaly_dis))
        candidates.append(
            BestDimension(
                dimension_key=key,
                point_distribution=point_dis,
                anomaly_distribution=anomaly_dis,
                gain=impurity,
                gain_ratio=_gain_ratio(impurity, intrinsic_value(point_dis)),
            )
        )
    return candidates


def find_best_dimension(
    candidates: Sequence[BestDimension], prefer_higher_ratio: bool = True
) -> Optional[BestDimension]:
    """Apply the selection rule; None when no candidate is eligible.

    The mean gain is taken over every candidate. A candidate without any
    anomalous value stays in the pool; when it wins, the caller has no value
    to substitute and returns the anomaly itself.
    """
    if not candidates:
        return None

    mean_gain = sum(c.gain for c in candidates) / len(candidates)

    def eligible(candidate: BestDimension) -> bool:
        if candidate.is_single_valued:
            return True
        return candidate.gain <= mean_gain or math.isclose(
            candidate.gain, mean_gain, rel_tol=1e-12, abs_tol=1e-12
        )

    def rank(candidate: BestDimension):
        category = 0 if candidate.is_single_valued else 1
        if candidate.gain_ratio is None:
            ratio_rank = (0, 0.0)
        elif prefer_higher_ratio:
            ratio_rank = (1, -candidate.gain_ratio)
        else:
            ratio_rank = (1, candidate.gain_ratio)
        return (category, ratio_rank, candidate.dimension_key)

    for c in candidates:
        logger.debug(
            "Candidate %s: gain=%.6f ratio=%s anomalies=%s (mean gain %.6f)",
            c.dimension_key,
            c.gain,
            "n/a" if c.gain_ratio is None else f"{c.gain_ratio:.6f}",
            dict(c.anomaly_distribution),
            mean_gain,
        )

    pool = [c for c in candidates if eligible(c)]
    if not pool:
        return None
    return min(pool, key=rank)


def select_best_dimension_from_leaves(
    points: Sequence[Point], anomalies: Sequence[Point], keys: Iterable[str]
) -> Optional[BestDimension]:
    return find_best_dimension(
        evaluate_leaf_candidates(points, anomalies, keys), prefer_higher_ratio=True
    )


def select_best_dimension_from_children(
    point_children: Mapping[str, Sequence[Point]],
    anomaly_children: Mapping[str, Sequence[Point]],
    keys: Iterable[str],
) -> Optional[BestDimension]:
    return find_best_dimension(
        evaluate_children_candidates(point_children, anomaly_children, keys),
        prefer_higher_ratio=False,
    )
