"""Session history persistence."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, desc, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, selectinload

from barspeed.config import get_settings
from barspeed.cv.physics import ProcessedFrame
from barspeed.cv.rep_segmenter import RangeMetrics, calculate_range_metrics
from barspeed.cv.video_processor import ProcessingResult
from barspeed.models.analysis_session import AnalysisSession
from barspeed.models.repetition import RepetitionRecord

logger = logging.getLogger(__name__)


def _session_query(session_id: str):
    return (
        select(AnalysisSession)
        .options(selectinload(AnalysisSession.repetitions))
        .where(AnalysisSession.id == session_id)
    )


def _history_query(limit: Optional[int]):
    if limit is None:
        limit = get_settings().history_limit
    return (
        select(AnalysisSession)
        .order_by(desc(AnalysisSession.created_at), desc(AnalysisSession.id))
        .limit(limit)
    )


def stored_range_metrics(
    analysis: AnalysisSession,
    start_time: Optional[float] = None,
    end_time: Optional[float] = None
) -> Optional[RangeMetrics]:
    """
    Range metrics recomputed from the stored processed frames.

    Missing bounds default to the session's first and last frame. None when
    the session has no processed frames.
    """
    if not analysis.processed_frames:
        return None
    frames = [ProcessedFrame(**f) for f in analysis.processed_frames]
    if start_time is None:
        start_time = frames[0].time
    if end_time is None:
        end_time = frames[-1].time
    return calculate_range_metrics(frames, start_time, end_time)


class SessionRepository:
    """
    Stores analysis sessions and their repetitions.

    Works on a sync SQLAlchemy session, as used by the Celery worker.
    Commits are left to the caller.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, session_id: str) -> Optional[AnalysisSession]:
        return self.db.execute(_session_query(session_id)).scalar_one_or_none()

    def store_result(self, analysis: AnalysisSession, result: ProcessingResult) -> AnalysisSession:
        """Copy a pipeline result onto the stored session, replacing earlier repetitions."""
        analysis.processing_status = result.status
        analysis.video_duration_seconds = result.video_duration_seconds
        analysis.frames_tracked = result.frames_tracked
        analysis.frames_lost = result.frames_lost
        analysis.processed_frames = [f.to_dict() for f in result.frames] or None
        if result.errors:
            analysis.processing_error = "; ".join(result.errors)

        analysis.repetitions.clear()
        for number, rep in enumerate(result.repetitions, 1):
            analysis.repetitions.append(RepetitionRecord(
                rep_number=number,
                start_index=rep.start_index,
                end_index=rep.end_index,
                start_time=rep.start_time,
                end_time=rep.end_time,
                mean_velocity=rep.mean_velocity,
                peak_velocity=rep.peak_velocity,
                peak_force=rep.peak_force,
            ))
        analysis.recalculate_summary()

        analysis.processing_progress = 1.0
        analysis.processing_completed_at = datetime.utcnow()
        self.db.flush()
        return analysis


class AsyncSessionRepository:
    """
    Async counterpart of SessionRepository for the API.

    `save` and `delete` commit; API requests are one unit of work each.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def save(self, analysis: AnalysisSession) -> AnalysisSession:
        self.db.add(analysis)
        await self.db.commit()
        await self.db.refresh(analysis)
        return analysis

    async def get(self, session_id: str) -> Optional[AnalysisSession]:
        result = await self.db.execute(_session_query(session_id))
        return result.scalar_one_or_none()

    async def list(self, limit: Optional[int] = None) -> List[AnalysisSession]:
        """Most recent sessions first, at most `limit` (default: settings.history_limit)."""
        result = await self.db.execute(_history_query(limit))
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.db.execute(select(func.count(AnalysisSession.id)))
        return result.scalar() or 0

    async def delete(self, session_id: str) -> bool:
        analysis = await self.get(session_id)
        if analysis is None:
            return False
        # Cascade deletes repetitions
        await self.db.delete(analysis)
        await self.db.commit()
        logger.info(f"Deleted analysis session {session_id}")
        return True
