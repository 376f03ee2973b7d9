"""Tests for the reputation tier table and timing curve."""

import pytest

from kleos.config import ReputationTier, Settings
from kleos.services.stake_policy import StakePolicy


class TestReputationMultiplier:
    def test_default_tier_bands(self, policy):
        assert policy.reputation_multiplier(0) == 1.0
        assert policy.reputation_multiplier(99) == 1.0
        assert policy.reputation_multiplier(100) == 1.25
        assert policy.reputation_multiplier(149) == 1.25
        assert policy.reputation_multiplier(150) == 1.5
        assert policy.reputation_multiplier(199) == 1.5
        assert policy.reputation_multiplier(200) == 2.0
        assert policy.reputation_multiplier(350) == 2.0

    def test_tier_names(self, policy):
        assert policy.tier_for_score(0).name == "bronze"
        assert policy.tier_for_score(120).name == "silver"
        assert policy.tier_for_score(175).name == "gold"
        assert policy.tier_for_score(200).name == "platinum"

    def test_monotonic_over_score_range(self, policy):
        previous = policy.reputation_multiplier(0)
        for score in range(1, 400):
            current = policy.reputation_multiplier(score)
            assert current >= previous
            previous = current

    def test_custom_tiers_are_used(self):
        policy = StakePolicy(
            tiers=(
                ReputationTier(name="base", min_score=0, multiplier=1.0),
                ReputationTier(name="trusted", min_score=50, multiplier=1.1),
            )
        )
        assert policy.reputation_multiplier(49) == 1.0
        assert policy.reputation_multiplier(50) == 1.1
        assert policy.reputation_multiplier(500) == 1.1


class TestPolicyValidation:
    def test_rejects_empty_tiers(self):
        with pytest.raises(ValueError):
            StakePolicy(tiers=())

    def test_rejects_first_tier_above_zero(self):
        with pytest.raises(ValueError):
            StakePolicy(tiers=(ReputationTier(name="a", min_score=10, multiplier=1.0),))

    def test_rejects_unsorted_thresholds(self):
        with pytest.raises(ValueError):
            StakePolicy(
                tiers=(
                    ReputationTier(name="a", min_score=0, multiplier=1.0),
                    ReputationTier(name="b", min_score=150, multiplier=1.5),
                    ReputationTier(name="c", min_score=100, multiplier=1.25),
                )
            )

    def test_rejects_decreasing_multipliers(self):
        with pytest.raises(ValueError):
            StakePolicy(
                tiers=(
                    ReputationTier(name="a", min_score=0, multiplier=1.5),
                    ReputationTier(name="b", min_score=100, multiplier=1.2),
                )
            )

    def test_rejects_multiplier_below_one(self):
        with pytest.raises(ValueError):
            StakePolicy(tiers=(ReputationTier(name="a", min_score=0, multiplier=0.5),))

    def test_rejects_timing_max_below_one(self):
        with pytest.raises(ValueError):
            StakePolicy(timing_max_multiplier=0.9)

    def test_from_settings_sorts_tiers(self):
        settings = Settings(
            reputation_tiers=[
                ReputationTier(name="high", min_score=100, multiplier=2.0),
                ReputationTier(name="low", min_score=0, multiplier=1.0),
            ],
            timing_max_multiplier=1.5,
            max_multiplier=3,
        )
        policy = StakePolicy.from_settings(settings)
        assert [t.name for t in policy.tiers] == ["low", "high"]
        assert policy.timing_max_multiplier == 1.5


class TestTimingMultiplier:
    def test_maximum_at_and_before_start(self, policy):
        assert policy.timing_multiplier(1_000, 1_000, 2_000) == 1.25
        assert policy.timing_multiplier(500, 1_000, 2_000) == 1.25

    def test_one_at_and_after_end(self, policy):
        assert policy.timing_multiplier(2_000, 1_000, 2_000) == 1.0
        assert policy.timing_multiplier(5_000, 1_000, 2_000) == 1.0

    def test_linear_midpoint(self, policy):
        assert policy.timing_multiplier(1_500, 1_000, 2_000) == pytest.approx(1.125)

    def test_degenerate_window(self, policy):
        assert policy.timing_multiplier(1_000, 2_000, 2_000) == 1.0
        assert policy.timing_multiplier(1_000, 3_000, 2_000) == 1.0

    def test_non_increasing_over_window(self, policy):
        previous = policy.timing_multiplier(1_000, 1_000, 2_000)
        for now in range(1_000, 2_001, 7):
            current = policy.timing_multiplier(now, 1_000, 2_000)
            assert 1.0 <= current <= 1.25
            assert current <= previous
            previous = current
