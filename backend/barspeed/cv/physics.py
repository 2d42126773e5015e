"""
Position -> velocity -> acceleration -> force pipeline.

SMOOTHING STRATEGY:
Every stage is smoothed with a time-window moving average (milliseconds, not
frame counts) so results stay consistent across frame rates and dropped
frames. Double differentiation amplifies tracking noise quadratically, so the
acceleration stage must be smoothed before force is computed.

Force models the lifter's total vertical effort against the bar:
    F = m * (a + g)
Horizontal motion is tracked but not used.
"""

import math
import logging
from dataclasses import dataclass, asdict
from typing import List, Optional, Sequence, Tuple

import numpy as np

from barspeed.cv.trajectory import TrackedPoint, Trajectory

logger = logging.getLogger(__name__)

GRAVITY = 9.81  # m/s^2


@dataclass(frozen=True)
class PipelineConfig:
    """Smoothing windows in milliseconds and numeric guards."""
    position_smoothing_ms: float = 100.0
    velocity_smoothing_ms: float = 100.0
    acceleration_smoothing_ms: float = 100.0
    # Rolling window for peak-force reporting, independent of the cascade
    peak_force_window_ms: float = 100.0
    # Substituted for any dt at or below dt_epsilon
    nominal_frame_interval: float = 1.0 / 30.0
    dt_epsilon: float = 1e-4
    min_points: int = 3


@dataclass(frozen=True)
class ProcessedFrame:
    """One row of pipeline output, aligned with the input trajectory."""
    time: float
    position_meters: float
    velocity: float
    acceleration: float
    force: float
    smoothed_force: float

    def to_dict(self) -> dict:
        return asdict(self)


def time_window_average(
    times: np.ndarray,
    values: np.ndarray,
    window_ms: float,
    shrink_at_ends: bool = True
) -> np.ndarray:
    """
    Centered moving average over a time window.

    Each output is the mean of all samples within +/- window/2 of the
    sample's own time. With `shrink_at_ends`, the half-window shrinks near
    the ends of the sequence to the distance to the nearest end so the
    window stays centered; a linear signal passes through unchanged, but
    the endpoints themselves are not smoothed. Without it, the full window
    is truncated to whatever samples exist, so endpoints still average
    with their neighbours. A sample whose window holds nothing passes
    through unsmoothed.
    """
    times = np.asarray(times, dtype=float)
    values = np.asarray(values, dtype=float)
    n = len(values)
    if n == 0 or window_ms <= 0:
        return values.copy()

    half = window_ms / 2000.0
    if shrink_at_ends:
        half = np.minimum(half, np.minimum(times - times[0], times[-1] - times))
    # Tolerance keeps samples sitting exactly on the window edge
    tol = 1e-9
    lo = np.searchsorted(times, times - half - tol, side="left")
    hi = np.searchsorted(times, times + half + tol, side="right")

    cumsum = np.concatenate(([0.0], np.cumsum(values)))
    counts = hi - lo
    sums = cumsum[hi] - cumsum[lo]
    return np.where(counts > 0, sums / np.maximum(counts, 1), values)


def differentiate(
    times: np.ndarray,
    values: np.ndarray,
    nominal_interval: float = 1.0 / 30.0,
    dt_epsilon: float = 1e-4
) -> np.ndarray:
    """
    Central difference using the true time step.

    Forward difference at the first sample, backward at the last. Any dt at
    or below `dt_epsilon` is replaced by `nominal_interval`.
    """
    times = np.asarray(times, dtype=float)
    values = np.asarray(values, dtype=float)
    n = len(values)
    if n < 2:
        return np.zeros(n)

    derivative = np.empty(n)

    dt = np.empty(n)
    dv = np.empty(n)
    dt[0] = times[1] - times[0]
    dv[0] = values[1] - values[0]
    dt[-1] = times[-1] - times[-2]
    dv[-1] = values[-1] - values[-2]
    if n > 2:
        dt[1:-1] = times[2:] - times[:-2]
        dv[1:-1] = values[2:] - values[:-2]

    # Central differences span two intervals
    nominal = np.full(n, nominal_interval)
    if n > 2:
        nominal[1:-1] = 2.0 * nominal_interval
    dt = np.where(dt <= dt_epsilon, nominal, dt)

    derivative[:] = dv / dt
    return derivative


def to_height_meters(ys: np.ndarray, pixels_per_meter: float) -> np.ndarray:
    """
    Screen Y (down) to height (up) in meters.

    Heights are measured from the lowest tracked point, i.e. the largest Y.
    """
    ys = np.asarray(ys, dtype=float)
    if len(ys) == 0:
        return ys.copy()
    return (ys.max() - ys) / pixels_per_meter


def _as_arrays(trajectory) -> Tuple[np.ndarray, np.ndarray]:
    if isinstance(trajectory, Trajectory):
        _, ys, ts = trajectory.as_arrays()
        return ys, ts
    points: Sequence[TrackedPoint] = list(trajectory)
    ys = np.array([p.y for p in points], dtype=float)
    ts = np.array([p.time for p in points], dtype=float)
    return ys, ts


def _is_positive(value) -> bool:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > 0


def process_tracking_data(
    trajectory,
    pixels_per_meter: float,
    mass: float,
    config: Optional[PipelineConfig] = None
) -> List[ProcessedFrame]:
    """
    Full pipeline: pixels -> meters -> smoothed position -> velocity ->
    acceleration -> force -> smoothed force.

    Args:
        trajectory: Trajectory or sequence of TrackedPoint (time-ordered)
        pixels_per_meter: Calibration scale, must be > 0
        mass: Bar mass in kg, must be > 0

    Returns:
        One ProcessedFrame per input point, or [] when the input is too
        short or the parameters are invalid.
    """
    config = config or PipelineConfig()

    if not _is_positive(pixels_per_meter):
        logger.warning(f"Invalid pixels_per_meter {pixels_per_meter}; no data")
        return []
    if not _is_positive(mass):
        logger.warning(f"Invalid mass {mass}; no data")
        return []

    ys, ts = _as_arrays(trajectory)
    if len(ts) < config.min_points:
        logger.info(f"Trajectory has {len(ts)} points (< {config.min_points}); no data")
        return []
    if not (np.all(np.isfinite(ys)) and np.all(np.isfinite(ts))):
        logger.warning("Trajectory contains non-finite values; no data")
        return []
    if np.any(np.diff(ts) < 0):
        logger.warning("Trajectory times are not ordered; no data")
        return []

    # Step 1: meters, height up
    heights = to_height_meters(ys, float(pixels_per_meter))
    mass = float(mass)

    # Step 2: position smoothing
    position = time_window_average(ts, heights, config.position_smoothing_ms)

    # Step 3: velocity
    velocity = differentiate(ts, position, config.nominal_frame_interval, config.dt_epsilon)
    velocity = time_window_average(ts, velocity, config.velocity_smoothing_ms)

    # Step 4: acceleration (smoothing here is critical for force)
    acceleration = differentiate(ts, velocity, config.nominal_frame_interval, config.dt_epsilon)
    acceleration = time_window_average(ts, acceleration, config.acceleration_smoothing_ms)

    # Step 5: force
    force = mass * (acceleration + GRAVITY)

    # Step 6: separate rolling average for peak reporting
    smoothed_force = time_window_average(ts, force, config.peak_force_window_ms, shrink_at_ends=False)

    return [
        ProcessedFrame(
            time=float(ts[i]),
            position_meters=float(position[i]),
            velocity=float(velocity[i]),
            acceleration=float(acceleration[i]),
            force=float(force[i]),
            smoothed_force=float(smoothed_force[i]),
        )
        for i in range(len(ts))
    ]
