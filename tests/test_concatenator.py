"""
Tests for trajectory concatenation: spacing and size invariants.
"""

import numpy as np
import pytest

from data.formats.data_format import CandidateTrajectory, OutputTrajectory
from trajectory.concatenator import (
    ConcatenatorConfig,
    build_concatenator_config,
    concatenate,
    spacing_ok,
)


def _candidate(s, y_offset: float = 0.0, speed: float = 5.0) -> CandidateTrajectory:
    s = np.asarray(s, dtype=float)
    n = len(s)
    zeros = np.zeros(n)
    return CandidateTrajectory(
        t=np.arange(n) * 0.2, x=s.copy(), y=np.full(n, y_offset), yaw=zeros, v=np.full(n, speed),
        a=zeros, curvature=zeros, s=s.copy(), s_d=np.full(n, speed), s_dd=zeros,
        d=np.full(n, y_offset), d_d=zeros, d_dd=zeros,
    )


CONFIG = ConcatenatorConfig(max_size=60, min_size=10, max_separation=2.0, min_separation=0.5)


class TestSpacing:
    def test_regular_sampling_is_copied(self):
        output = OutputTrajectory()
        result = concatenate(output, _candidate(np.arange(0.0, 20.0, 1.0)), CONFIG)
        assert result.appended == 20
        assert result.interpolated == 0
        assert len(output) == 20
        assert spacing_ok(output, CONFIG)
        assert result.sufficient

    def test_dense_samples_are_skipped(self):
        output = OutputTrajectory()
        concatenate(output, _candidate(np.arange(0.0, 10.0, 0.1)), CONFIG)
        assert spacing_ok(output, CONFIG)
        assert np.all(output.separations() >= CONFIG.min_separation - 1e-9)

    def test_coarse_samples_are_interpolated(self):
        output = OutputTrajectory()
        result = concatenate(output, _candidate([0.0, 7.0, 7.3, 20.0]), CONFIG)
        assert result.interpolated > 0
        assert spacing_ok(output, CONFIG)
        assert output[-1].x == pytest.approx(20.0)

    def test_irregular_sampling_keeps_invariant(self):
        rng = np.random.default_rng(7)
        for _ in range(25):
            steps = rng.uniform(0.05, 6.0, size=rng.integers(2, 80))
            s = np.concatenate(([0.0], np.cumsum(steps)))
            output = OutputTrajectory()
            concatenate(output, _candidate(s), CONFIG)
            assert spacing_ok(output, CONFIG)
            assert len(output) <= CONFIG.max_size


class TestSize:
    @pytest.mark.parametrize("length", [1, 5, 59, 60, 61, 200, 500])
    def test_size_bound(self, length):
        output = OutputTrajectory()
        concatenate(output, _candidate(np.arange(length, dtype=float)), CONFIG)
        assert len(output) <= CONFIG.max_size
        assert len(output) == min(length, CONFIG.max_size)

    def test_front_is_trimmed_behind_vehicle(self):
        output = OutputTrajectory()
        concatenate(output, _candidate(np.arange(0.0, 60.0, 1.0)), CONFIG)
        assert len(output) == 60

        result = concatenate(output, _candidate(np.arange(30.0, 200.0, 1.0)), CONFIG, vehicle_index=30)
        assert len(output) == CONFIG.max_size
        assert result.trimmed == 30
        assert output[0].x == pytest.approx(30.0)
        assert spacing_ok(output, CONFIG)

    def test_repeated_concatenation_stays_bounded(self):
        output = OutputTrajectory()
        start = 0.0
        for _ in range(40):
            concatenate(output, _candidate(np.arange(start, start + 50.0, 1.3)), CONFIG,
                        vehicle_index=output.nearest_index(start, 0.0))
            assert len(output) <= CONFIG.max_size
            assert spacing_ok(output, CONFIG)
            start += 3.0

    def test_insufficient_output_is_reported(self):
        output = OutputTrajectory()
        result = concatenate(output, _candidate([0.0, 1.0, 2.0]), CONFIG)
        assert not result.sufficient


class TestContinuation:
    def test_appends_only_past_committed_end(self):
        output = OutputTrajectory()
        concatenate(output, _candidate(np.arange(0.0, 20.0, 1.0)), CONFIG)
        result = concatenate(output, _candidate(np.arange(5.0, 40.0, 1.0)), CONFIG, vehicle_index=3)
        s_values = np.array([p.s for p in output])
        assert np.all(np.diff(s_values) > 0.0)
        assert result.appended == 20
        assert output[-1].s == pytest.approx(39.0)

    def test_committed_index_points_at_last_covered_sample(self):
        output = OutputTrajectory()
        concatenate(output, _candidate(np.arange(0.0, 20.0, 1.0)), CONFIG)
        candidate = _candidate(np.arange(5.0, 15.0, 1.0))
        result = concatenate(output, candidate, CONFIG, vehicle_index=3)
        assert result.appended == 0
        assert result.committed_index == len(candidate) - 1

    def test_large_junction_gap_is_a_discontinuity(self):
        output = OutputTrajectory()
        concatenate(output, _candidate(np.arange(0.0, 20.0, 1.0)), CONFIG)
        result = concatenate(output, _candidate(np.arange(0.0, 40.0, 1.0), y_offset=8.0), CONFIG)
        assert result.discontinuity
        assert result.appended == 0
        assert len(output) == 20

    def test_small_junction_gap_is_bridged(self):
        output = OutputTrajectory()
        concatenate(output, _candidate(np.arange(0.0, 20.0, 1.0)), CONFIG)
        result = concatenate(output, _candidate(np.arange(0.0, 40.0, 1.0), y_offset=2.5), CONFIG)
        assert not result.discontinuity
        assert result.interpolated > 0
        assert spacing_ok(output, CONFIG)


class TestConfig:
    def test_defaults_are_valid(self):
        assert ConcatenatorConfig().is_valid()

    def test_min_separation_above_half_max_falls_back(self):
        config = build_concatenator_config({"min_separation": 1.5, "max_separation": 2.0})
        assert config == ConcatenatorConfig()

    def test_min_size_above_max_size_falls_back(self):
        config = build_concatenator_config({"min_size": 80, "max_size": 60})
        assert config == ConcatenatorConfig()

    def test_valid_values_are_kept(self):
        config = build_concatenator_config({"max_size": 100, "min_separation": 0.3, "max_separation": 1.0})
        assert config.max_size == 100
        assert config.min_separation == 0.3
        assert config.max_separation == 1.0
