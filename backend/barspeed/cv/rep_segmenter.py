"""
Repetition segmentation on the processed velocity curve.

A repetition is one concentric (lifting) phase, found by hysteresis:
- START: velocity rises above the "on" threshold
- END: velocity falls below the "off" threshold (off <= on)

Candidates shorter than the minimum frame count are discarded so that
tracking noise and unracking are not counted as reps. Zero reps is a valid
outcome.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from barspeed.cv.physics import ProcessedFrame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SegmenterConfig:
    """Hysteresis thresholds (m/s) and rep filters."""
    on_threshold: float = 0.10
    off_threshold: float = 0.05
    min_frames: int = 5
    # Slow creep and short twitches are not reps
    min_peak_velocity: float = 0.15
    min_duration_s: float = 0.35

    def __post_init__(self):
        if self.off_threshold > self.on_threshold:
            raise ValueError(
                f"off_threshold ({self.off_threshold}) must not exceed "
                f"on_threshold ({self.on_threshold})"
            )
        if self.min_frames < 1:
            raise ValueError(f"min_frames must be >= 1, got {self.min_frames}")


@dataclass(frozen=True)
class Repetition:
    """A detected concentric phase and its summary metrics."""
    start_index: int
    end_index: int
    start_time: float
    end_time: float
    mean_velocity: float
    peak_velocity: float
    peak_force: float

    @property
    def duration_seconds(self) -> float:
        return self.end_time - self.start_time

    @property
    def frame_count(self) -> int:
        return self.end_index - self.start_index + 1

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["duration_seconds"] = self.duration_seconds
        return data


@dataclass(frozen=True)
class RangeMetrics:
    """Metrics over a user-selected time range."""
    mean_velocity: float
    peak_force: float


@dataclass(frozen=True)
class SessionSummary:
    """Aggregate over all repetitions of a session."""
    rep_count: int
    mean_velocity: float
    peak_velocity: float
    peak_force: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def find_concentric_phases(
    frames: Sequence[ProcessedFrame],
    config: Optional[SegmenterConfig] = None
) -> List[tuple]:
    """Raw (start_index, end_index) hysteresis intervals, before any filtering."""
    config = config or SegmenterConfig()
    phases = []
    in_phase = False
    start_index = 0

    for i, frame in enumerate(frames):
        if not in_phase:
            if frame.velocity > config.on_threshold:
                in_phase = True
                start_index = i
        elif frame.velocity < config.off_threshold:
            in_phase = False
            phases.append((start_index, i - 1))

    # Phase still open at the end of the sequence
    if in_phase:
        phases.append((start_index, len(frames) - 1))

    return phases


def summarize_repetition(
    frames: Sequence[ProcessedFrame],
    start_index: int,
    end_index: int
) -> Repetition:
    """Metrics for frames[start_index..end_index] inclusive."""
    window = frames[start_index:end_index + 1]
    velocities = np.array([f.velocity for f in window], dtype=float)
    smoothed_forces = np.array([f.smoothed_force for f in window], dtype=float)

    # Mean over the lifting samples only
    positive = velocities[velocities > 0]
    mean_velocity = float(positive.mean()) if len(positive) else 0.0

    return Repetition(
        start_index=start_index,
        end_index=end_index,
        start_time=window[0].time,
        end_time=window[-1].time,
        mean_velocity=mean_velocity,
        peak_velocity=float(velocities.max()),
        peak_force=float(smoothed_forces.max()),
    )


def segment_and_summarize(
    frames: Sequence[ProcessedFrame],
    config: Optional[SegmenterConfig] = None
) -> List[Repetition]:
    """
    Partition processed frames into repetitions and summarize each.

    Every returned repetition satisfies
    end_index - start_index >= config.min_frames.
    """
    config = config or SegmenterConfig()
    if not frames:
        return []

    repetitions = []
    for start_index, end_index in find_concentric_phases(frames, config):
        if end_index - start_index < config.min_frames:
            logger.debug(
                f"Discarding phase {start_index}-{end_index}: "
                f"shorter than {config.min_frames} frames"
            )
            continue

        rep = summarize_repetition(frames, start_index, end_index)
        if rep.peak_velocity < config.min_peak_velocity:
            logger.debug(f"Discarding phase {start_index}-{end_index}: peak {rep.peak_velocity:.3f} m/s")
            continue
        if rep.duration_seconds < config.min_duration_s:
            logger.debug(f"Discarding phase {start_index}-{end_index}: {rep.duration_seconds:.3f}s")
            continue

        repetitions.append(rep)

    logger.info(f"Detected {len(repetitions)} repetitions in {len(frames)} frames")
    return repetitions


def calculate_range_metrics(
    frames: Sequence[ProcessedFrame],
    start_time: float,
    end_time: float
) -> RangeMetrics:
    """
    Mean velocity and peak smoothed force over a trimmed time range.

    Only samples with positive velocity count; an empty selection gives zeros.
    """
    selected = [
        f for f in frames
        if start_time <= f.time <= end_time and f.velocity > 0
    ]
    if not selected:
        return RangeMetrics(mean_velocity=0.0, peak_force=0.0)

    return RangeMetrics(
        mean_velocity=float(np.mean([f.velocity for f in selected])),
        peak_force=float(max(f.smoothed_force for f in selected)),
    )


def summarize_session(repetitions: Sequence[Repetition]) -> SessionSummary:
    """Session-level numbers: mean of rep means, best peaks."""
    if not repetitions:
        return SessionSummary(rep_count=0, mean_velocity=0.0, peak_velocity=0.0, peak_force=0.0)

    return SessionSummary(
        rep_count=len(repetitions),
        mean_velocity=float(np.mean([r.mean_velocity for r in repetitions])),
        peak_velocity=float(max(r.peak_velocity for r in repetitions)),
        peak_force=float(max(r.peak_force for r in repetitions)),
    )
