"""
Computer vision and signal processing core for bar speed analysis.

PIPELINE COMPONENTS:
1. Calibration: sleeve cap circle -> pixels per meter
2. VideoFrameSource: seekable RGB frames with presentation times
3. Tracker: colour-and-motion sleeve tracking with loss/re-acquisition
4. Trajectory: append-only pixel trajectory
5. Physics: time-windowed smoothing, velocity, acceleration, force
6. RepSegmenter: hysteresis rep detection and per-rep metrics
7. VideoProcessor: main orchestration pipeline

Usage:
    from barspeed.cv import begin_session, process_tracking_data, segment_and_summarize

    session = begin_session((x, y), radius, reference_frame=first_frame)
    for frame in frames:
        result = session.track(frame)
        trajectory.append(*result.position, frame.time)
    processed = process_tracking_data(trajectory, pixels_per_meter, mass)
    reps = segment_and_summarize(processed)
"""

from barspeed.cv.calibration import (
    Calibration, SLEEVE_DIAMETER_METERS, pixels_per_meter_from_radius, resolve_calibration
)
from barspeed.cv.video_source import (
    Frame, FrameSource, FrameSourceError, VideoFrameSource, VideoMetadata
)
from barspeed.cv.tracker import (
    ReferenceColor, TrackerConfig, TrackerState, TrackResult, TrackingSession,
    begin_session, track_frame
)
from barspeed.cv.trajectory import TrackedPoint, Trajectory
from barspeed.cv.physics import (
    GRAVITY, PipelineConfig, ProcessedFrame, differentiate, process_tracking_data,
    time_window_average
)
from barspeed.cv.rep_segmenter import (
    RangeMetrics, Repetition, SegmenterConfig, SessionSummary,
    calculate_range_metrics, segment_and_summarize, summarize_session
)
from barspeed.cv.video_processor import ProcessingResult, SessionStatus, VideoProcessor

__all__ = [
    # Calibration
    "Calibration",
    "SLEEVE_DIAMETER_METERS",
    "pixels_per_meter_from_radius",
    "resolve_calibration",

    # Frame source
    "Frame",
    "FrameSource",
    "FrameSourceError",
    "VideoFrameSource",
    "VideoMetadata",

    # Tracking
    "ReferenceColor",
    "TrackerConfig",
    "TrackerState",
    "TrackResult",
    "TrackingSession",
    "begin_session",
    "track_frame",
    "TrackedPoint",
    "Trajectory",

    # Signal processing
    "GRAVITY",
    "PipelineConfig",
    "ProcessedFrame",
    "differentiate",
    "process_tracking_data",
    "time_window_average",

    # Repetitions
    "RangeMetrics",
    "Repetition",
    "SegmenterConfig",
    "SessionSummary",
    "calculate_range_metrics",
    "segment_and_summarize",
    "summarize_session",

    # Main pipeline
    "ProcessingResult",
    "SessionStatus",
    "VideoProcessor",
]
