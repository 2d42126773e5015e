"""Analysis session model."""

import uuid
import json
from datetime import datetime
from typing import List, Optional
from sqlalchemy import Boolean, String, Integer, Float, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from barspeed.models.base import Base, TimestampMixin


class ProcessingStatus:
    """Analysis processing status."""
    PENDING = "pending"
    PROCESSING = "processing"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    VIDEO_ERROR = "video_error"
    TRACKING_FAILED = "tracking_failed"
    INSUFFICIENT_DATA = "insufficient_data"

    @classmethod
    def terminal(cls) -> List[str]:
        return [
            cls.COMPLETED,
            cls.CANCELLED,
            cls.FAILED,
            cls.VIDEO_ERROR,
            cls.TRACKING_FAILED,
            cls.INSUFFICIENT_DATA,
        ]


class AnalysisSession(Base, TimestampMixin):
    """
    One bar speed analysis: inputs, processing state and results.

    Inputs (calibration, start point, mass) are fixed once created.
    """

    __tablename__ = "analysis_sessions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    # Video
    video_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    video_duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    start_time: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    end_time: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Lift inputs
    mass_kg: Mapped[float] = mapped_column(Float, nullable=False)
    pixels_per_meter: Mapped[float] = mapped_column(Float, nullable=False)
    target_radius_px: Mapped[float] = mapped_column(Float, nullable=False)
    calibration_x: Mapped[float] = mapped_column(Float, nullable=False)
    calibration_y: Mapped[float] = mapped_column(Float, nullable=False)
    initial_x: Mapped[float] = mapped_column(Float, nullable=False)
    initial_y: Mapped[float] = mapped_column(Float, nullable=False)

    # Processing status
    processing_status: Mapped[str] = mapped_column(
        String(50),
        default=ProcessingStatus.PENDING,
        nullable=False,
        index=True
    )
    processing_progress: Mapped[float] = mapped_column(Float, default=0.0)
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    processing_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    # Tracking stats
    frames_tracked: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    frames_lost: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Summary
    rep_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    mean_velocity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    peak_velocity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    peak_force: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Processed curves (stored as JSON string for SQLite compatibility)
    _processed_frames: Mapped[Optional[str]] = mapped_column("processed_frames", Text, nullable=True)

    @property
    def processed_frames(self) -> Optional[List[dict]]:
        if self._processed_frames:
            return json.loads(self._processed_frames)
        return None

    @processed_frames.setter
    def processed_frames(self, value: Optional[List[dict]]):
        if value is not None:
            self._processed_frames = json.dumps(value)
        else:
            self._processed_frames = None

    # Relationships
    repetitions: Mapped[List["RepetitionRecord"]] = relationship(
        "RepetitionRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="RepetitionRecord.rep_number"
    )

    @property
    def is_terminal(self) -> bool:
        return self.processing_status in ProcessingStatus.terminal()

    def recalculate_summary(self) -> None:
        """Recalculate summary fields from stored repetitions."""
        reps = self.repetitions
        self.rep_count = len(reps)
        if reps:
            self.mean_velocity = sum(r.mean_velocity for r in reps) / len(reps)
            self.peak_velocity = max(r.peak_velocity for r in reps)
            self.peak_force = max(r.peak_force for r in reps)
        else:
            self.mean_velocity = None
            self.peak_velocity = None
            self.peak_force = None

    def __repr__(self) -> str:
        return (
            f"<AnalysisSession(id={self.id}, status={self.processing_status}, "
            f"reps={self.rep_count})>"
        )
