"""Database models."""

from barspeed.models.base import Base
from barspeed.models.analysis_session import AnalysisSession, ProcessingStatus
from barspeed.models.repetition import RepetitionRecord

__all__ = [
    "Base",
    "AnalysisSession",
    "ProcessingStatus",
    "RepetitionRecord",
]
