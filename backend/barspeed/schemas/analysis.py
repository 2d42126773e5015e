"""Analysis session schemas."""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, model_validator


class AnalysisCreate(BaseModel):
    """
    Schema for starting an analysis.

    The sleeve circle is drawn on the first frame of the range and fixes the
    calibration for the whole session.
    """
    video_path: str = Field(..., min_length=1)
    mass_kg: float = Field(..., gt=0, description="Total bar mass in kilograms")

    # Sleeve cap circle, source pixels
    sleeve_center_x: float
    sleeve_center_y: float
    sleeve_radius_px: float = Field(..., gt=0)

    # Bar start point (default: sleeve center)
    initial_x: Optional[float] = None
    initial_y: Optional[float] = None

    start_time: float = Field(0.0, ge=0)
    end_time: Optional[float] = None

    @model_validator(mode="after")
    def validate_range(self) -> "AnalysisCreate":
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if (self.initial_x is None) != (self.initial_y is None):
            raise ValueError("initial_x and initial_y must be given together")
        return self


class RepetitionResponse(BaseModel):
    """One detected repetition."""
    rep_number: int
    start_index: int
    end_index: int
    start_time: float
    end_time: float
    mean_velocity: float
    peak_velocity: float
    peak_force: float

    class Config:
        from_attributes = True


class RangeMetricsResponse(BaseModel):
    """Metrics over a trimmed time range of the processed curves."""
    start_time: float
    end_time: float
    mean_velocity: float
    peak_force: float


class AnalysisResponse(BaseModel):
    """Schema for history list entries."""
    id: str
    video_path: str
    mass_kg: float
    pixels_per_meter: float
    start_time: float
    end_time: Optional[float]
    processing_status: str
    processing_progress: float
    processing_error: Optional[str] = None

    frames_tracked: int
    frames_lost: int

    rep_count: int
    mean_velocity: Optional[float] = None
    peak_velocity: Optional[float] = None
    peak_force: Optional[float] = None

    created_at: datetime

    class Config:
        from_attributes = True


class AnalysisDetailResponse(AnalysisResponse):
    """Full session with repetitions and processed curves."""
    video_duration_seconds: Optional[float] = None
    target_radius_px: float
    initial_x: float
    initial_y: float
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None
    repetitions: List[RepetitionResponse]
    processed_frames: Optional[List[Dict[str, Any]]] = None
    range_metrics: Optional[RangeMetricsResponse] = None


class AnalysisListResponse(BaseModel):
    """Schema for the session history."""
    items: List[AnalysisResponse]
    total: int
