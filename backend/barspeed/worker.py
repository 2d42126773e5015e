"""Celery worker for async bar speed analysis."""

import logging
from datetime import datetime
from typing import Optional

from celery import Celery
from sqlalchemy import select
from sqlalchemy.orm import Session

from barspeed.config import get_settings
from barspeed.cv.calibration import Calibration
from barspeed.cv.video_processor import VideoProcessor
from barspeed.database import SyncSessionLocal
from barspeed.models.analysis_session import AnalysisSession, ProcessingStatus
from barspeed.repository import SessionRepository

settings = get_settings()
logger = logging.getLogger(__name__)

# Create Celery app
celery_app = Celery(
    "barspeed",
    broker=settings.redis_url,
    backend=settings.redis_url
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max per task
    worker_prefetch_multiplier=1,  # Process one task at a time
)

# Frames between cancellation lookups
CANCEL_POLL_FRAMES = 10


def update_progress(db: Session, session_id: str, progress: float, status: Optional[str] = None):
    """Update processing progress in database."""
    analysis = db.get(AnalysisSession, session_id)
    if analysis:
        analysis.processing_progress = progress
        if status:
            analysis.processing_status = status
        db.commit()


def cancel_requested(db: Session, session_id: str) -> bool:
    """Read the cancel flag straight from the database."""
    return bool(db.execute(
        select(AnalysisSession.cancel_requested).where(AnalysisSession.id == session_id)
    ).scalar())


def build_processor(db: Session, analysis: AnalysisSession) -> VideoProcessor:
    """Processor wired to report progress and poll cancellation through `db`."""
    session_id = analysis.id
    calls = {"n": 0}

    def progress_callback(progress: float):
        update_progress(db, session_id, progress * 0.9)  # Reserve 10% for analysis

    def cancel_check() -> bool:
        calls["n"] += 1
        if calls["n"] % CANCEL_POLL_FRAMES != 1:
            return False
        return cancel_requested(db, session_id)

    calibration = Calibration(
        pixels_per_meter=analysis.pixels_per_meter,
        origin_center=(analysis.calibration_x, analysis.calibration_y),
        origin_radius=analysis.target_radius_px,
    )

    return VideoProcessor(
        mass_kg=analysis.mass_kg,
        calibration=calibration,
        initial_position=(analysis.initial_x, analysis.initial_y),
        start_time=analysis.start_time,
        end_time=analysis.end_time,
        progress_callback=progress_callback,
        cancel_check=cancel_check,
    )


@celery_app.task(bind=True, name="process_analysis")
def process_analysis_task(self, session_id: str):
    """
    Analyze a lift video asynchronously.

    Steps:
    1. Load the session and its calibration
    2. Track the bar through the selected range
    3. Compute velocity/force curves and repetitions
    4. Store results and repetitions

    Pipeline outcomes (video error, tracking failure, not enough data) are
    stored as the session status. Unexpected errors mark the session failed
    and are re-raised.
    """
    logger.info(f"Starting analysis for session {session_id}")

    db = SyncSessionLocal()
    repository = SessionRepository(db)

    try:
        analysis = repository.get(session_id)
        if not analysis:
            logger.error(f"Analysis session {session_id} not found")
            return {"error": "Analysis session not found"}

        if analysis.cancel_requested or analysis.is_terminal:
            logger.info(f"Session {session_id} is {analysis.processing_status}, skipping")
            if analysis.cancel_requested and not analysis.is_terminal:
                analysis.processing_status = ProcessingStatus.CANCELLED
                db.commit()
            return {"session_id": session_id, "status": analysis.processing_status}

        # Update status
        analysis.processing_status = ProcessingStatus.PROCESSING
        analysis.processing_started_at = datetime.utcnow()
        db.commit()

        processor = build_processor(db, analysis)
        result = processor.process_video(analysis.video_path)

        update_progress(db, session_id, 0.95, ProcessingStatus.ANALYZING)

        # Reload: progress updates committed in between
        analysis = repository.get(session_id)
        repository.store_result(analysis, result)
        db.commit()

        logger.info(
            f"Analysis finished for session {session_id}: status={analysis.processing_status}, "
            f"{analysis.rep_count} reps, {result.frames_tracked} frames"
        )

        return {
            "session_id": session_id,
            "status": analysis.processing_status,
            "rep_count": analysis.rep_count,
            "processing_time_seconds": result.processing_time_seconds
        }

    except Exception as e:
        logger.exception(f"Error processing session {session_id}: {e}")
        db.rollback()

        # Update error status
        analysis = db.get(AnalysisSession, session_id)
        if analysis:
            analysis.processing_status = ProcessingStatus.FAILED
            analysis.processing_error = str(e)
            db.commit()

        raise

    finally:
        db.close()
