"""Stored repetition metrics."""

import uuid
from sqlalchemy import String, Integer, Float, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from barspeed.models.base import Base, TimestampMixin


class RepetitionRecord(Base, TimestampMixin):
    """One concentric phase of an analysis session."""

    __tablename__ = "repetitions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("analysis_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    rep_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Boundaries (indices into the processed frames, times in video seconds)
    start_index: Mapped[int] = mapped_column(Integer, nullable=False)
    end_index: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[float] = mapped_column(Float, nullable=False)
    end_time: Mapped[float] = mapped_column(Float, nullable=False)

    # Metrics
    mean_velocity: Mapped[float] = mapped_column(Float, nullable=False)
    peak_velocity: Mapped[float] = mapped_column(Float, nullable=False)
    peak_force: Mapped[float] = mapped_column(Float, nullable=False)

    session: Mapped["AnalysisSession"] = relationship("AnalysisSession", back_populates="repetitions")

    @property
    def duration_seconds(self) -> float:
        return self.end_time - self.start_time

    def __repr__(self) -> str:
        return (
            f"<RepetitionRecord(rep={self.rep_number}, "
            f"time={self.start_time:.2f}s-{self.end_time:.2f}s, "
            f"mean_velocity={self.mean_velocity:.2f})>"
        )
