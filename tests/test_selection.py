"""Tests for the entropy criterion and the best-dimension selection rule."""

import math
import random

import pytest

from rootcause.selection import (
    BestDimension,
    dimension_entropy,
    entropy,
    evaluate_children_candidates,
    evaluate_leaf_candidates,
    find_best_dimension,
    intrinsic_value,
    select_best_dimension_from_children,
    select_best_dimension_from_leaves,
    value_distribution,
)

AGG = "*"


def _candidate(key, gain, ratio, anomalies):
    return BestDimension(
        dimension_key=key,
        point_distribution={v: 1 for v in anomalies},
        anomaly_distribution={v: 1 for v in anomalies},
        gain=gain,
        gain_ratio=ratio,
    )


class TestEntropy:

    @pytest.mark.parametrize("n", [1, 2, 5, 10])
    def test_pure_sets_have_zero_entropy(self, n):
        assert entropy(n, 0) == 0.0
        assert entropy(n, n) == 0.0

    @pytest.mark.parametrize("n", [2, 4, 10, 100])
    def test_even_split_is_one(self, n):
        assert entropy(n, n // 2) == pytest.approx(1.0)

    def test_half_split_is_maximal(self):
        n = 10
        values = [entropy(n, k) for k in range(n + 1)]
        assert max(values) == pytest.approx(entropy(n, n // 2))

    def test_known_value(self):
        assert entropy(4, 1) == pytest.approx(0.811278, abs=1e-6)

    def test_empty_set(self):
        assert entropy(0, 0) == 0.0


class TestDistributions:

    def test_value_distribution_counts_and_sorts(self, make_point):
        points = [
            make_point(1, 1, country="US"),
            make_point(1, 1, country="DE"),
            make_point(1, 1, country="US"),
        ]
        dist = value_distribution(points, "country")
        assert list(dist.items()) == [("DE", 1), ("US", 2)]

    def test_intrinsic_value_is_non_negative(self):
        assert intrinsic_value({"a": 1, "b": 1}) == pytest.approx(1.0)
        assert intrinsic_value({"a": 1, "b": 1, "c": 1, "d": 1}) == pytest.approx(2.0)
        assert intrinsic_value({"a": 3, "b": 1}) >= 0

    def test_single_value_has_zero_intrinsic_value(self):
        assert intrinsic_value({"a": 7}) == 0.0
        assert intrinsic_value({}) == 0.0

    def test_dimension_entropy_weights_by_share(self):
        # value a: 2 points, 1 anomalous (H=1); value b: 2 points, none anomalous
        assert dimension_entropy({"a": 2, "b": 2}, {"a": 1}) == pytest.approx(0.5)


class TestLeafCandidates:

    def test_single_valued_key_has_no_gain_ratio(self, make_point):
        leaves = [
            make_point(50, 10, True, country="US", device="mobile"),
            make_point(12, 10, False, country="US", device="web"),
        ]
        anomalies = leaves[:1]
        by_key = {c.dimension_key: c for c in evaluate_leaf_candidates(leaves, anomalies, ["country", "device"])}

        assert by_key["country"].gain == pytest.approx(0.0)
        assert by_key["country"].gain_ratio is None
        assert by_key["device"].gain == pytest.approx(1.0)
        assert by_key["device"].gain_ratio == pytest.approx(1.0)

    def test_zero_intrinsic_value_ranks_first(self, make_point):
        leaves = [
            make_point(50, 10, True, country="US", device="mobile"),
            make_point(12, 10, False, country="US", device="web"),
        ]
        best = select_best_dimension_from_leaves(leaves, leaves[:1], ["device", "country"])
        assert best.dimension_key == "country"
        assert dict(best.anomaly_distribution) == {"US": 1}

    def test_single_anomalous_value_beats_multi_valued(self, make_point):
        leaves = [
            make_point(9, 1, True, a="1", b="x"),
            make_point(9, 1, True, a="1", b="y"),
            make_point(1, 1, False, a="2", b="x"),
            make_point(1, 1, False, a="2", b="y"),
        ]
        best = select_best_dimension_from_leaves(leaves, leaves[:2], ["a", "b"])
        assert best.dimension_key == "a"

    def test_no_anomalous_leaves_selects_an_empty_split(self, make_point):
        leaves = [make_point(1, 1, a="1", b="x"), make_point(1, 1, a="2", b="y")]
        best = select_best_dimension_from_leaves(leaves, [], ["a", "b"])
        assert best.dimension_key == "a"
        assert dict(best.anomaly_distribution) == {}


class TestChildrenCandidates:

    def test_lower_ratio_wins_among_single_valued(self, make_point):
        point_children = {
            "country": [make_point(1, 1, country=c, device=AGG) for c in "ABCD"],
            "device": [make_point(1, 1, country=AGG, device=d) for d in ("m", "w")],
        }
        anomaly_children = {
            "country": point_children["country"][:1],
            "device": point_children["device"][:1],
        }
        by_key = {
            c.dimension_key: c
            for c in evaluate_children_candidates(point_children, anomaly_children, ["country", "device"])
        }
        assert by_key["country"].gain_ratio == pytest.approx(entropy(4, 1) / 2.0)
        assert by_key["device"].gain_ratio == pytest.approx(1.0)

        best = select_best_dimension_from_children(point_children, anomaly_children, ["country", "device"])
        assert best.dimension_key == "country"

    def test_key_without_children_counts_toward_mean(self, make_point):
        point_children = {
            "country": [make_point(1, 1, country=c, device=AGG) for c in "ABCDE"],
        }
        anomaly_children = {"country": point_children["country"][:3]}
        by_key = {
            c.dimension_key: c
            for c in evaluate_children_candidates(point_children, anomaly_children, ["country", "device"])
        }
        assert by_key["device"].gain == 0.0
        assert by_key["country"].gain == pytest.approx(entropy(5, 3))

        # mean gain is entropy(5, 3) / 2, which leaves country ineligible
        best = select_best_dimension_from_children(point_children, anomaly_children, ["country", "device"])
        assert best.dimension_key == "device"
        assert dict(best.anomaly_distribution) == {}

    def test_key_without_anomalous_children_beats_above_mean_split(self, make_point):
        point_children = {
            "country": [make_point(1, 1, country=c, device=AGG) for c in ("US", "UK", "FR")],
            "device": [make_point(1, 1, country=AGG, device=d) for d in ("mobile", "web")],
        }
        anomaly_children = {"country": point_children["country"][:2]}
        best = select_best_dimension_from_children(point_children, anomaly_children, ["country", "device"])
        assert best.dimension_key == "device"
        assert dict(best.point_distribution) == {"mobile": 1, "web": 1}
        assert dict(best.anomaly_distribution) == {}

    def test_multi_valued_split_at_or_below_mean_is_kept(self, make_point):
        point_children = {
            "country": [make_point(1, 1, country=c, device=AGG) for c in "ABC"],
            "device": [make_point(1, 1, country=AGG, device=d) for d in ("m", "w", "t", "v")],
        }
        anomaly_children = {
            "country": point_children["country"],
            "device": point_children["device"][:2],
        }
        best = select_best_dimension_from_children(point_children, anomaly_children, ["country", "device"])
        # country impurity 0, device impurity 1: only country is at or below the mean
        assert best.dimension_key == "country"
        assert list(best.anomaly_distribution) == ["A", "B", "C"]


class TestFindBestDimension:

    def test_above_mean_multi_valued_candidates_are_ineligible(self):
        candidates = [
            _candidate("a", 0.9, 0.9, ["x", "y"]),
            _candidate("b", 0.1, 0.1, ["x", "y"]),
        ]
        assert find_best_dimension(candidates).dimension_key == "b"

    def test_single_valued_is_always_eligible(self):
        candidates = [
            _candidate("a", 0.9, 0.2, ["x"]),
            _candidate("b", 0.1, 5.0, ["x", "y"]),
        ]
        assert find_best_dimension(candidates).dimension_key == "a"

    def test_ratio_direction(self):
        candidates = [
            _candidate("a", 0.5, 0.2, ["x"]),
            _candidate("b", 0.5, 0.8, ["x"]),
        ]
        assert find_best_dimension(candidates, prefer_higher_ratio=True).dimension_key == "b"
        assert find_best_dimension(candidates, prefer_higher_ratio=False).dimension_key == "a"

    def test_ties_go_to_smallest_key(self):
        candidates = [
            _candidate("zeta", 0.5, 0.5, ["x"]),
            _candidate("alpha", 0.5, 0.5, ["x"]),
        ]
        assert find_best_dimension(candidates).dimension_key == "alpha"

    def test_no_candidates(self):
        assert find_best_dimension([]) is None

    def test_order_independent(self):
        candidates = [
            _candidate("a", 0.3, 0.4, ["x", "y"]),
            _candidate("b", 0.2, 0.6, ["x", "y"]),
            _candidate("c", 0.7, None, ["x"]),
            _candidate("d", 0.1, 0.9, ["x"]),
        ]
        expected = find_best_dimension(candidates).dimension_key
        rng = random.Random(7)
        for _ in range(10):
            shuffled = list(candidates)
            rng.shuffle(shuffled)
            assert find_best_dimension(shuffled).dimension_key == expected
        assert expected == "c"

    def test_gain_ratio_never_nan(self, make_point):
        leaves = [make_point(1, 1, True, a="1", b="x")]
        for candidate in evaluate_leaf_candidates(leaves, leaves, ["a", "b"]):
            assert candidate.gain_ratio is None or not math.isnan(candidate.gain_ratio)
