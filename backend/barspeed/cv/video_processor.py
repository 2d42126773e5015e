"""
Bar speed analysis pipeline.

PIPELINE STAGES:
1. Open the frame source and scale calibration to the processed frame size
2. Start a tracking session at the user-marked bar position
3. Frame loop: seek, track, accumulate trajectory (cancellable between frames)
4. Signal processing: position -> velocity -> acceleration -> force
5. Repetition segmentation and per-rep metrics
6. Session summary

Terminal statuses keep failure causes apart: the video could not be read,
the bar could not be followed, or there was not enough data to analyze.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from barspeed.config import Settings, get_settings
from barspeed.cv.calibration import Calibration
from barspeed.cv.physics import PipelineConfig, ProcessedFrame, process_tracking_data
from barspeed.cv.rep_segmenter import (
    Repetition, SegmenterConfig, SessionSummary, segment_and_summarize, summarize_session
)
from barspeed.cv.tracker import TrackResult, TrackerConfig, begin_session
from barspeed.cv.trajectory import Trajectory
from barspeed.cv.video_source import FrameSource, FrameSourceError, VideoFrameSource

logger = logging.getLogger(__name__)

# Decode failures this close to the stated end are treated as end of stream;
# container frame counts often overstate the decodable frames
TAIL_DECODE_FRAMES = 3


def convert_numpy_types(obj):
    """Recursively convert numpy types to Python native types for JSON serialization."""
    if isinstance(obj, dict):
        return {k: convert_numpy_types(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [convert_numpy_types(item) for item in obj]
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.bool_):
        return bool(obj)
    return obj


class SessionStatus:
    """Terminal status of an analysis session."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    VIDEO_ERROR = "video_error"            # could not read video
    TRACKING_FAILED = "tracking_failed"    # could not follow the bar
    INSUFFICIENT_DATA = "insufficient_data"  # not enough data to analyze


@dataclass
class ProcessingResult:
    """Complete result of one analysis session."""
    status: str = SessionStatus.COMPLETED

    # Tracking
    trajectory: Trajectory = field(default_factory=Trajectory)
    frames_tracked: int = 0
    frames_lost: int = 0
    reacquisitions: int = 0

    # Analysis
    frames: List[ProcessedFrame] = field(default_factory=list)
    repetitions: List[Repetition] = field(default_factory=list)
    summary: Optional[SessionSummary] = None

    # Calibration actually used (after any resize)
    pixels_per_meter: float = 0.0

    # Processing metadata
    video_duration_seconds: float = 0.0
    processing_time_seconds: float = 0.0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def rep_count(self) -> int:
        return len(self.repetitions)

    def to_dict(self) -> Dict[str, Any]:
        return convert_numpy_types({
            "status": self.status,
            "frames_tracked": self.frames_tracked,
            "frames_lost": self.frames_lost,
            "reacquisitions": self.reacquisitions,
            "pixels_per_meter": self.pixels_per_meter,
            "trajectory": self.trajectory.to_list(),
            "frames": [f.to_dict() for f in self.frames],
            "repetitions": [r.to_dict() for r in self.repetitions],
            "summary": self.summary.to_dict() if self.summary else None,
            "video_duration_seconds": self.video_duration_seconds,
            "processing_time_seconds": self.processing_time_seconds,
            "warnings": self.warnings,
            "errors": self.errors,
        })


def tracker_config_from_settings(settings: Settings) -> TrackerConfig:
    return TrackerConfig(sample_stride=settings.tracker_sample_stride)


def pipeline_config_from_settings(settings: Settings) -> PipelineConfig:
    return PipelineConfig(
        position_smoothing_ms=settings.position_smoothing_ms,
        velocity_smoothing_ms=settings.velocity_smoothing_ms,
        acceleration_smoothing_ms=settings.acceleration_smoothing_ms,
        peak_force_window_ms=settings.peak_force_window_ms,
    )


def segmenter_config_from_settings(settings: Settings) -> SegmenterConfig:
    return SegmenterConfig(
        on_threshold=settings.rep_on_threshold,
        off_threshold=settings.rep_off_threshold,
        min_frames=settings.rep_min_frames,
        min_peak_velocity=settings.rep_min_peak_velocity,
        min_duration_s=settings.rep_min_duration_s,
    )


class VideoProcessor:
    """
    Main analysis pipeline for one lift video.

    The per-frame step is not interruptible, but `cancel_check` is consulted
    before every frame so an aborted session releases the source promptly.
    """

    def __init__(
        self,
        mass_kg: float,
        calibration: Calibration,
        initial_position: Optional[Tuple[float, float]] = None,
        start_time: float = 0.0,
        end_time: Optional[float] = None,
        processing_fps: Optional[float] = None,
        progress_callback: Optional[Callable[[float], None]] = None,
        cancel_check: Optional[Callable[[], bool]] = None,
        frame_callback: Optional[Callable[[float, TrackResult], None]] = None,
        settings: Optional[Settings] = None
    ):
        """
        Initialize video processor.

        Args:
            mass_kg: Bar mass in kilograms
            calibration: Scale from the marked sleeve cap
            initial_position: Bar start point in source pixels (default: sleeve center)
            start_time: Where tracking starts, seconds
            end_time: Where tracking stops, seconds (default: end of video)
            processing_fps: Sampling rate for tracking (default: settings, 0 = every frame)
            progress_callback: Called with progress in [0, 1]
            cancel_check: Returns True when the session should stop
            frame_callback: Called with (time, TrackResult) after every frame
        """
        self.settings = settings or get_settings()
        self.mass_kg = mass_kg
        self.calibration = calibration
        self.initial_position = initial_position or calibration.origin_center
        self.start_time = max(0.0, start_time)
        self.end_time = end_time
        self.processing_fps = (
            processing_fps if processing_fps is not None else self.settings.processing_fps
        )
        self.progress_callback = progress_callback
        self.cancel_check = cancel_check
        self.frame_callback = frame_callback

        self.tracker_config = tracker_config_from_settings(self.settings)
        self.pipeline_config = pipeline_config_from_settings(self.settings)
        self.segmenter_config = segmenter_config_from_settings(self.settings)

    def process_video(self, video_path: str) -> ProcessingResult:
        """
        Track and analyze a video file.

        Args:
            video_path: Path to video file

        Returns:
            ProcessingResult with status, trajectory, curves and repetitions
        """
        logger.info(f"Starting video processing: {video_path}")
        try:
            source = VideoFrameSource(video_path, frame_width=self.settings.processing_frame_width)
        except FrameSourceError as e:
            logger.error(f"Failed to open video: {e}")
            result = ProcessingResult(status=SessionStatus.VIDEO_ERROR)
            result.errors.append(str(e))
            return result

        max_seconds = self.settings.max_video_duration_minutes * 60
        if source.duration > max_seconds:
            source.close()
            result = ProcessingResult(status=SessionStatus.VIDEO_ERROR)
            result.errors.append(
                f"Video too long: {source.duration:.0f}s (maximum: {max_seconds}s)"
            )
            return result

        return self.process_source(source)

    def process_source(self, source: FrameSource) -> ProcessingResult:
        """Run the full pipeline over any FrameSource. Always closes the source."""
        start = datetime.now()
        result = ProcessingResult()

        try:
            self._track(source, result)
        finally:
            source.close()

        if result.status in (SessionStatus.COMPLETED, SessionStatus.TRACKING_FAILED):
            self._analyze(result)

        result.processing_time_seconds = (datetime.now() - start).total_seconds()
        logger.info(
            f"Processing finished in {result.processing_time_seconds:.1f}s: "
            f"status={result.status}, {len(result.trajectory)} points, "
            f"{result.rep_count} reps"
        )
        return result

    def _track(self, source: FrameSource, result: ProcessingResult) -> None:
        # =========================================================
        # STAGE 1: Calibration for the processed frame size
        # =========================================================
        scale = getattr(source, "scale", 1.0)
        calibration = self.calibration.scaled(scale) if scale != 1.0 else self.calibration
        initial_position = (self.initial_position[0] * scale, self.initial_position[1] * scale)
        result.pixels_per_meter = calibration.pixels_per_meter
        result.video_duration_seconds = source.duration

        end_time = source.duration
        if self.end_time is not None:
            end_time = min(end_time, self.end_time)
        if self.start_time >= end_time:
            result.status = SessionStatus.INSUFFICIENT_DATA
            result.errors.append(
                f"Empty time range: {self.start_time:.2f}s - {end_time:.2f}s"
            )
            return

        interval = source.frame_interval
        if self.processing_fps and self.processing_fps > 0:
            interval = max(interval, 1.0 / self.processing_fps)
        span = end_time - self.start_time

        # =========================================================
        # STAGE 2-3: Tracking loop
        # =========================================================
        logger.info(
            f"Tracking {self.start_time:.2f}s - {end_time:.2f}s every {interval * 1000:.1f}ms, "
            f"target radius {calibration.target_radius_pixels:.1f}px"
        )

        session = None
        t = self.start_time
        # Tolerance so accumulated times never seek one frame past the end
        while t < end_time - 1e-6:
            if self.cancel_check is not None and self.cancel_check():
                logger.info(f"Session cancelled at t={t:.3f}s")
                result.status = SessionStatus.CANCELLED
                break

            try:
                frame = source.get_frame(t)
            except FrameSourceError as e:
                if session is not None and source.duration - t <= TAIL_DECODE_FRAMES * source.frame_interval:
                    logger.warning(f"Video ended early at t={t:.3f}s of {source.duration:.3f}s: {e}")
                    result.warnings.append(f"Last frames could not be decoded (from {t:.2f}s)")
                    break
                logger.error(f"Frame source failed at t={t:.3f}s: {e}")
                result.status = SessionStatus.VIDEO_ERROR
                result.errors.append(str(e))
                break

            if frame.time >= end_time:
                break

            if session is None:
                session = begin_session(
                    initial_position,
                    calibration.target_radius_pixels,
                    self.tracker_config,
                    reference_frame=frame,
                )

            track = session.track(frame)
            result.trajectory.append(track.position[0], track.position[1], frame.time)

            if self.frame_callback is not None:
                self.frame_callback(frame.time, track)

            if session.lost_streak > self.settings.max_consecutive_lost_frames:
                logger.warning(
                    f"Tracking failed: {session.lost_streak} consecutive lost frames "
                    f"at t={frame.time:.3f}s"
                )
                result.status = SessionStatus.TRACKING_FAILED
                result.errors.append(
                    f"Lost the bar for {session.lost_streak} frames at {frame.time:.2f}s"
                )
                break

            if self.progress_callback and session.frames_tracked % 5 == 0:
                self.progress_callback(min(1.0, (frame.time - self.start_time) / span))

            # Next frame at or after one interval later
            t = frame.time + interval

        if session is not None:
            result.frames_tracked = session.frames_tracked
            result.frames_lost = session.frames_lost
            result.reacquisitions = session.reacquisitions
            if session.frames_tracked and session.frames_lost / session.frames_tracked > 0.2:
                result.warnings.append(
                    f"Bar lost in {session.frames_lost} of {session.frames_tracked} frames"
                )

    def _analyze(self, result: ProcessingResult) -> None:
        # =========================================================
        # STAGE 4: Signal processing
        # =========================================================
        result.frames = process_tracking_data(
            result.trajectory,
            result.pixels_per_meter,
            self.mass_kg,
            self.pipeline_config,
        )
        if not result.frames:
            if result.status == SessionStatus.COMPLETED:
                result.status = SessionStatus.INSUFFICIENT_DATA
            result.errors.append(
                f"Not enough data to analyze ({len(result.trajectory)} tracked points)"
            )
            return

        # =========================================================
        # STAGE 5-6: Repetitions and summary
        # =========================================================
        result.repetitions = segment_and_summarize(result.frames, self.segmenter_config)
        result.summary = summarize_session(result.repetitions)

        if not result.repetitions:
            result.warnings.append("No repetitions detected")
