"""Tests for biased index choosers."""

from __future__ import annotations

from collections import Counter

import numpy as np
import pytest
from scipy import stats

from sparsenet.chooser import Chooser, ChooserPolicy, new_spatial, new_uniform
from sparsenet.coords import Coordinate, distances, random_coordinates
from sparsenet.errors import ChooserExhaustedError


def draw_all(ch: Chooser) -> list[int]:
    return [ch.choose() for _ in range(len(ch))]


def mean_draw_rank(input_coords, target, spread, policy, trials, seed=0):
    """Average position at which each input index is drawn."""
    rng = np.random.default_rng(seed)
    ranks = np.zeros(len(input_coords))
    for _ in range(trials):
        ch = new_spatial(input_coords, target, spread, rng, policy=policy)
        for pos, idx in enumerate(draw_all(ch)):
            ranks[idx] += pos
    return ranks / trials


class TestUniformChooser:
    """Tests for new_uniform."""

    @pytest.mark.parametrize("n", [1, 2, 7, 50])
    def test_yields_permutation(self, n):
        """Every index is drawn exactly once."""
        ch = new_uniform(n, np.random.default_rng(n))
        drawn = draw_all(ch)
        assert sorted(drawn) == list(range(n))
        assert len(ch) == 0

    def test_empty_chooser_is_legal(self):
        """A zero-size pool can be built."""
        ch = new_uniform(0)
        assert len(ch) == 0
        assert ch.remaining == ()

    def test_exhausted_raises(self):
        """Drawing past the pool raises."""
        ch = new_uniform(2, np.random.default_rng(0))
        ch.choose()
        ch.choose()
        with pytest.raises(ChooserExhaustedError):
            ch.choose()

    def test_exhausted_is_index_error(self):
        """The exhaustion error is an IndexError."""
        with pytest.raises(IndexError):
            new_uniform(0).choose()

    def test_negative_count(self):
        """Negative pool sizes are rejected."""
        with pytest.raises(ValueError, match="non-negative"):
            new_uniform(-1)

    def test_all_permutations_equally_likely(self):
        """Draw orders of a 3-element chooser should be uniform over all 6."""
        rng = np.random.default_rng(123)
        trials = 6000
        counts = Counter(tuple(draw_all(new_uniform(3, rng))) for _ in range(trials))

        assert len(counts) == 6
        _, p_value = stats.chisquare(list(counts.values()))
        assert p_value > 0.001

    def test_remaining_shows_draw_order(self):
        """remaining lists indices in the order they will be drawn."""
        ch = new_uniform(5, np.random.default_rng(9))
        expected = ch.remaining
        assert tuple(draw_all(ch)) == expected

    def test_policy_tag(self):
        """new_uniform tags its chooser UNIFORM."""
        assert new_uniform(3).policy is ChooserPolicy.UNIFORM


class TestNoisyRankChooser:
    """Tests for the NOISY_RANK spatial policy."""

    @pytest.fixture
    def inputs(self):
        return random_coordinates(40, np.random.default_rng(7))

    def test_yields_permutation(self, inputs):
        """Every input index is drawn exactly once."""
        ch = new_spatial(inputs, Coordinate(0.5, 0.5, 0.5), 1.0, np.random.default_rng(0))
        assert sorted(draw_all(ch)) == list(range(len(inputs)))

    def test_zero_spread_is_nearest_first(self, inputs):
        """Zero spread gives a pure nearest-first order."""
        target = Coordinate(0.2, 0.8, 0.1)
        ch = new_spatial(inputs, target, 0.0, np.random.default_rng(0))

        expected = np.argsort(distances(inputs, target), kind="stable").tolist()
        assert draw_all(ch) == expected

    def test_order_fixed_at_construction(self, inputs):
        """Draw order does not depend on later generator use."""
        rng = np.random.default_rng(5)
        ch = new_spatial(inputs, Coordinate(0.5, 0.5, 0.5), 0.3, rng)
        order = ch.remaining

        # Consuming the shared generator afterwards does not change the order.
        rng.random(100)
        assert tuple(draw_all(ch)) == order

    def test_negative_spread_rejected(self, inputs):
        """Negative spread is rejected."""
        with pytest.raises(ValueError, match="spread"):
            new_spatial(inputs, Coordinate(0.5, 0.5, 0.5), -1.0)

    def test_empty_inputs(self):
        """No inputs gives an empty chooser."""
        ch = new_spatial([], Coordinate(0.5, 0.5, 0.5), 1.0)
        assert len(ch) == 0

    def test_near_inputs_drawn_earlier(self, inputs):
        """Mean draw position rises with distance."""
        target = Coordinate(0.5, 0.5, 0.5)
        ranks = mean_draw_rank(inputs, target, 0.1, ChooserPolicy.NOISY_RANK, trials=200)

        rho, _ = stats.spearmanr(ranks, distances(inputs, target))
        assert rho > 0.8

    def test_larger_spread_weakens_bias(self, inputs):
        """A huge spread is less biased than a small one."""
        target = Coordinate(0.5, 0.5, 0.5)
        dists = distances(inputs, target)

        tight = mean_draw_rank(inputs, target, 0.05, ChooserPolicy.NOISY_RANK, trials=200)
        loose = mean_draw_rank(inputs, target, 100.0, ChooserPolicy.NOISY_RANK, trials=200)

        rho_tight, _ = stats.spearmanr(tight, dists)
        rho_loose, _ = stats.spearmanr(loose, dists)
        assert rho_tight > rho_loose


class TestSoftmaxWeightedChooser:
    """Tests for the SOFTMAX_WEIGHTED spatial policy."""

    policy = ChooserPolicy.SOFTMAX_WEIGHTED

    @pytest.fixture
    def inputs(self):
        return random_coordinates(40, np.random.default_rng(11))

    def test_yields_permutation(self, inputs):
        """Every input index is drawn exactly once."""
        ch = new_spatial(inputs, Coordinate(0.5, 0.5, 0.5), 1.0,
                         np.random.default_rng(0), policy=self.policy)
        assert sorted(draw_all(ch)) == list(range(len(inputs)))

    def test_weights_normalized(self, inputs):
        """Initial weights sum to one."""
        ch = new_spatial(inputs, Coordinate(0.1, 0.2, 0.3), 2.0, policy=self.policy)
        assert ch.total_weight == pytest.approx(1.0)

    def test_total_weight_shrinks(self, inputs):
        """Drawing removes weight from the running total."""
        ch = new_spatial(inputs, Coordinate(0.1, 0.2, 0.3), 2.0,
                         np.random.default_rng(1), policy=self.policy)
        before = ch.total_weight
        ch.choose()
        assert ch.total_weight < before

    def test_nearest_almost_always_first(self):
        """A much closer input is almost always drawn first."""
        near = Coordinate(0.5, 0.5, 0.6)   # distance 0.1
        far = Coordinate(0.5, 0.5, 1.0)    # distance 0.5
        target = Coordinate(0.5, 0.5, 0.5)
        rng = np.random.default_rng(3)

        firsts = [
            new_spatial([near, far], target, 1.0, rng, policy=self.policy).choose()
            for _ in range(2000)
        ]
        assert firsts.count(0) >= 1980

    def test_coincident_point_is_finite(self):
        """An input on top of the target gets a finite, dominant weight."""
        target = Coordinate(0.5, 0.5, 0.5)
        ch = new_spatial([target, Coordinate(0.0, 0.0, 0.0)], target, 1.0,
                         np.random.default_rng(0), policy=self.policy)
        assert np.isfinite(ch.total_weight)
        assert ch.choose() == 0

    def test_single_index(self):
        """A one-index pool yields that index, then is exhausted."""
        ch = new_spatial([Coordinate(0.3, 0.3, 0.3)], Coordinate(0.5, 0.5, 0.5), 1.0,
                         policy=self.policy)
        assert ch.choose() == 0
        with pytest.raises(ChooserExhaustedError):
            ch.choose()

    def test_nonpositive_spread_rejected(self, inputs):
        """Softmax weighting needs a positive spread."""
        with pytest.raises(ValueError, match="positive"):
            new_spatial(inputs, Coordinate(0.5, 0.5, 0.5), 0.0, policy=self.policy)

    def test_near_inputs_drawn_earlier(self, inputs):
        """Mean draw position rises with distance."""
        target = Coordinate(0.5, 0.5, 0.5)
        ranks = mean_draw_rank(inputs, target, 1.0, self.policy, trials=200)

        rho, _ = stats.spearmanr(ranks, distances(inputs, target))
        assert rho > 0.5

    @pytest.fixture
    def ranked_inputs(self):
        """Ten inputs at distances 0.05..0.50 from the centre, thirty beyond 0.7, shuffled."""
        target = Coordinate(0.5, 0.5, 0.5)
        points = [Coordinate(0.5 + 0.05 * (k + 1), 0.5, 0.5) for k in range(10)]
        angles = np.linspace(0, 2 * np.pi, 30, endpoint=False)
        points += [
            Coordinate(0.5, 0.5 + (0.7 + 0.005 * j) * np.cos(a), 0.5 + (0.7 + 0.005 * j) * np.sin(a))
            for j, a in enumerate(angles)
        ]
        order = np.random.default_rng(21).permutation(len(points))
        shuffled = [points[i] for i in order]
        nearest = np.argsort(distances(shuffled, target)).tolist()
        return shuffled, target, nearest

    def test_tiny_spread_draws_nearest_in_order(self, ranked_inputs):
        """With a very small spread the first ten draws are the ten nearest, in order."""
        inputs, target, nearest = ranked_inputs
        rng = np.random.default_rng(4)
        for _ in range(300):
            ch = new_spatial(inputs, target, 0.01, rng, policy=self.policy)
            assert draw_all(ch)[:10] == nearest[:10]

    def test_small_spread_keeps_bias_past_second_draw(self, ranked_inputs):
        """At spread 0.05 draw k is still the k-th nearest in most trials."""
        inputs, target, nearest = ranked_inputs
        rng = np.random.default_rng(5)
        trials = 300
        hits = np.zeros(10, dtype=int)
        for _ in range(trials):
            ch = new_spatial(inputs, target, 0.05, rng, policy=self.policy)
            for k in range(10):
                hits[k] += ch.choose() == nearest[k]

        assert np.all(hits >= 0.9 * trials)

    def test_total_weight_stays_positive(self, inputs):
        """The running total never collapses while indices remain."""
        rng = np.random.default_rng(6)
        for _ in range(50):
            ch = new_spatial(inputs, Coordinate(0.5, 0.5, 0.5), 0.05, rng, policy=self.policy)
            while len(ch) > 0:
                assert ch.total_weight > 0
                ch.choose()

    def test_underflowing_log_weights_keep_order(self):
        """Log-weights far apart are drawn heaviest first even though plain weights underflow."""
        ch = Chooser([3, 1, 2], ChooserPolicy.SOFTMAX_WEIGHTED,
                     rng=np.random.default_rng(0), log_weights=[0.0, -800.0, -1600.0])
        assert draw_all(ch) == [3, 1, 2]

    def test_total_rebuilt_after_dominant_draw(self):
        """Drawing a dominant weight leaves the exact sum of the small ones."""
        ch = Chooser([7, 8, 9], ChooserPolicy.SOFTMAX_WEIGHTED,
                     weights=[1.0, 1e-17, 3e-17], rng=np.random.default_rng(0))
        assert ch.choose() == 7
        assert ch.total_weight == pytest.approx(4e-17, rel=1e-9)
        assert sorted(draw_all(ch)) == [8, 9]

    def test_rounding_falls_back_to_last(self):
        """A draw that overshoots every bracket returns the last index."""
        ch = Chooser([4, 5, 6], ChooserPolicy.SOFTMAX_WEIGHTED, weights=[0.0, 0.0, 0.0],
                     rng=np.random.default_rng(0))
        assert ch.choose() == 6
        assert ch.remaining == (4, 5)


class TestChooserConstruction:
    """Tests for direct Chooser construction."""

    def test_weighted_requires_weights(self):
        """Weighted choosers need one weight per index."""
        with pytest.raises(ValueError, match="one weight per index"):
            Chooser([0, 1], ChooserPolicy.SOFTMAX_WEIGHTED)

    def test_uniform_policy_rejected_for_spatial(self):
        """UNIFORM is not a spatial policy."""
        with pytest.raises(ValueError, match="Unsupported"):
            new_spatial([Coordinate(0, 0, 0)], Coordinate(1, 1, 1), 1.0,
                        policy=ChooserPolicy.UNIFORM)

    def test_policy_from_string(self):
        """Policies can be given by value."""
        ch = Chooser([2, 0, 1], "noisy_rank")
        assert ch.policy is ChooserPolicy.NOISY_RANK
        assert draw_all(ch) == [2, 0, 1]

    def test_repr(self):
        """Test string representation."""
        assert "remaining=3" in repr(new_uniform(3))
