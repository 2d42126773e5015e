"""Pydantic schemas for API request/response models."""

from barspeed.schemas.analysis import (
    AnalysisCreate,
    AnalysisResponse,
    AnalysisDetailResponse,
    AnalysisListResponse,
    RangeMetricsResponse,
    RepetitionResponse,
)

__all__ = [
    "AnalysisCreate",
    "AnalysisResponse",
    "AnalysisDetailResponse",
    "AnalysisListResponse",
    "RangeMetricsResponse",
    "RepetitionResponse",
]
