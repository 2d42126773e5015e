"""Tests for the signal processing pipeline."""

import numpy as np
import pytest

from barspeed.cv.physics import (
    GRAVITY, PipelineConfig, differentiate, process_tracking_data, time_window_average
)
from barspeed.cv.rep_segmenter import segment_and_summarize
from barspeed.cv.trajectory import TrackedPoint, Trajectory


def _trajectory(ys, fps=30.0):
    trajectory = Trajectory()
    for i, y in enumerate(ys):
        trajectory.append(0.0, y, i / fps)
    return trajectory


class TestTimeWindowAverage:

    def test_constant_signal_unchanged(self):
        times = np.arange(20) / 30.0
        values = np.full(20, 3.5)
        np.testing.assert_allclose(time_window_average(times, values, 100), values)

    def test_linear_signal_passes_through(self):
        times = np.arange(31) / 30.0
        values = 2.0 * times + 1.0
        np.testing.assert_allclose(time_window_average(times, values, 100), values, atol=1e-12)

    def test_window_is_in_time_not_samples(self):
        # Same signal at 30 and 60 fps: interior samples average the same span
        t30 = np.arange(31) / 30.0
        t60 = np.arange(61) / 60.0
        s30 = time_window_average(t30, np.sin(t30 * 3), 200)
        s60 = time_window_average(t60, np.sin(t60 * 3), 200)
        assert s30[15] == pytest.approx(s60[30], abs=1e-2)

    def test_spike_is_spread(self):
        times = np.arange(11) / 30.0
        values = np.zeros(11)
        values[5] = 1.0
        smoothed = time_window_average(times, values, 100)
        assert smoothed[5] < 1.0
        assert smoothed[4] > 0.0
        assert smoothed.sum() == pytest.approx(1.0, rel=0.2)

    def test_zero_window_is_identity(self):
        times = np.arange(5) / 30.0
        values = np.array([1.0, 5.0, 2.0, 8.0, 3.0])
        np.testing.assert_allclose(time_window_average(times, values, 0), values)

    def test_endpoints_unsmoothed_when_shrinking(self):
        times = np.arange(5) / 30.0
        values = np.array([9.0, 1.0, 1.0, 1.0, 9.0])
        smoothed = time_window_average(times, values, 100)
        assert smoothed[0] == 9.0
        assert smoothed[-1] == 9.0

    def test_truncated_window_averages_endpoints(self):
        times = np.arange(5) / 30.0
        values = np.array([9.0, 1.0, 1.0, 1.0, 9.0])
        smoothed = time_window_average(times, values, 100, shrink_at_ends=False)
        assert smoothed[0] == pytest.approx(5.0)
        assert smoothed[-1] == pytest.approx(5.0)
        assert smoothed[2] == pytest.approx(1.0)


class TestDifferentiate:

    def test_linear_derivative(self):
        times = np.arange(10) / 30.0
        np.testing.assert_allclose(differentiate(times, 4.0 * times), np.full(10, 4.0))

    def test_uses_true_time_step(self):
        times = np.array([0.0, 0.1, 0.15, 0.35])
        values = 2.0 * times
        np.testing.assert_allclose(differentiate(times, values), np.full(4, 2.0))

    def test_zero_dt_uses_nominal_interval(self):
        times = np.array([0.0, 0.0, 0.1])
        values = np.array([0.0, 1.0, 2.0])
        derivative = differentiate(times, values, nominal_interval=0.5)
        assert np.all(np.isfinite(derivative))
        assert derivative[0] == pytest.approx(2.0)

    def test_short_input(self):
        assert len(differentiate(np.array([0.0]), np.array([1.0]))) == 1


class TestProcessTrackingData:

    def test_output_aligned_with_input(self):
        trajectory = _trajectory([300 - 2 * i for i in range(40)])
        frames = process_tracking_data(trajectory, 500.0, 60.0)
        assert len(frames) == 40
        assert [f.time for f in frames] == [p.time for p in trajectory]

    @pytest.mark.parametrize("count", [0, 1, 2])
    def test_too_short_gives_no_data(self, count):
        frames = process_tracking_data(_trajectory([100.0] * count), 500.0, 60.0)
        assert frames == []
        assert segment_and_summarize(frames) == []

    @pytest.mark.parametrize("ppm,mass", [(0, 60), (-5, 60), (500, 0), (500, -1), (float("nan"), 60)])
    def test_invalid_parameters_give_no_data(self, ppm, mass):
        assert process_tracking_data(_trajectory([100.0] * 10), ppm, mass) == []

    def test_non_finite_positions_give_no_data(self):
        assert process_tracking_data(_trajectory([100.0, float("nan"), 100.0, 100.0]), 500.0, 60.0) == []

    def test_gravity_baseline(self):
        frames = process_tracking_data(_trajectory([240.0] * 30), 400.0, 80.0)
        for frame in frames:
            assert frame.velocity == pytest.approx(0.0)
            assert frame.force == pytest.approx(80.0 * GRAVITY)
            assert frame.smoothed_force == pytest.approx(80.0 * GRAVITY)

    def test_height_measured_upward_from_lowest_point(self):
        # Screen Y decreasing = bar moving up
        frames = process_tracking_data(_trajectory([300 - 5 * i for i in range(30)]), 1000.0, 50.0)
        assert frames[0].position_meters == pytest.approx(0.0, abs=1e-9)
        assert frames[-1].position_meters > frames[0].position_meters
        assert frames[15].velocity > 0

    def test_calibration_linearity(self):
        rng = np.random.default_rng(7)
        ys = 300 + np.cumsum(rng.normal(0, 2, 45))
        base = process_tracking_data(_trajectory(ys), 500.0, 70.0)
        scaled = process_tracking_data(_trajectory(ys * 2.0), 1000.0, 70.0)

        for a, b in zip(base, scaled):
            assert b.position_meters == pytest.approx(a.position_meters, abs=1e-9)
            assert b.velocity == pytest.approx(a.velocity, abs=1e-9)
            assert b.force == pytest.approx(a.force, abs=1e-6)

    def test_repeated_timestamps_stay_finite(self):
        points = [TrackedPoint(0.0, 100.0 - i, i / 30.0) for i in range(10)]
        points.insert(5, TrackedPoint(0.0, 95.0, points[5].time))
        frames = process_tracking_data(points, 500.0, 60.0)
        assert len(frames) == 11
        for frame in frames:
            assert np.isfinite(frame.velocity)
            assert np.isfinite(frame.force)

    def test_linear_rise_single_rep(self, linear_rise):
        frames = process_tracking_data(linear_rise, 1000.0, 100.0)
        assert len(frames) == 31

        reps = segment_and_summarize(frames)
        assert len(reps) == 1
        assert reps[0].mean_velocity == pytest.approx(0.5, abs=1e-6)
        assert reps[0].peak_force == pytest.approx(100.0 * GRAVITY, abs=1e-6)

    def test_custom_windows(self, linear_rise):
        config = PipelineConfig(position_smoothing_ms=200, velocity_smoothing_ms=50,
                                acceleration_smoothing_ms=150, peak_force_window_ms=300)
        frames = process_tracking_data(linear_rise, 1000.0, 100.0, config)
        assert frames[15].velocity == pytest.approx(0.5, abs=1e-6)

    def test_video_ending_mid_lift_smooths_final_force(self):
        # 0.5 m/s rise at 400 px/m, cut off mid-lift with the last sample 3 px high
        ys = [300.0 - 200.0 * i / 30.0 for i in range(40)]
        ys[-1] -= 3.0
        frames = process_tracking_data(_trajectory(ys), 400.0, 100.0)
        first, last = frames[0], frames[-1]

        assert first.smoothed_force == pytest.approx((frames[0].force + frames[1].force) / 2)
        assert last.smoothed_force == pytest.approx((frames[-2].force + frames[-1].force) / 2)
        assert last.force > 100.0 * GRAVITY
        assert abs(last.smoothed_force - 100.0 * GRAVITY) < abs(last.force - 100.0 * GRAVITY)

        reps = segment_and_summarize(frames)
        assert len(reps) == 1
        assert reps[0].peak_force == pytest.approx(max(f.smoothed_force for f in frames))
        assert reps[0].peak_force < last.force
