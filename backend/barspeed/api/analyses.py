"""Analysis session API endpoints."""

import os
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from barspeed.config import get_settings
from barspeed.cv.calibration import resolve_calibration
from barspeed.database import get_db
from barspeed.models.analysis_session import AnalysisSession, ProcessingStatus
from barspeed.repository import AsyncSessionRepository, stored_range_metrics
from barspeed.schemas.analysis import (
    AnalysisCreate,
    AnalysisResponse,
    AnalysisDetailResponse,
    AnalysisListResponse,
    RangeMetricsResponse,
)

router = APIRouter()
settings = get_settings()


async def get_repository(db: AsyncSession = Depends(get_db)) -> AsyncSessionRepository:
    return AsyncSessionRepository(db)


async def _get_session_or_404(repository: AsyncSessionRepository, session_id: str) -> AnalysisSession:
    analysis = await repository.get(session_id)
    if not analysis:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Analysis session not found"
        )
    return analysis


@router.post("", response_model=AnalysisResponse, status_code=status.HTTP_201_CREATED)
async def create_analysis(
    request: AnalysisCreate,
    repository: AsyncSessionRepository = Depends(get_repository)
):
    """
    Start a bar speed analysis.

    The session is queued for background processing. Poll the session to
    follow progress.
    """
    if not os.path.exists(request.video_path):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Video file not found: {request.video_path}"
        )

    try:
        calibration = resolve_calibration(
            (request.sleeve_center_x, request.sleeve_center_y),
            request.sleeve_radius_px
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    initial_x = request.initial_x if request.initial_x is not None else request.sleeve_center_x
    initial_y = request.initial_y if request.initial_y is not None else request.sleeve_center_y

    analysis = await repository.save(AnalysisSession(
        video_path=request.video_path,
        mass_kg=request.mass_kg,
        pixels_per_meter=calibration.pixels_per_meter,
        target_radius_px=calibration.origin_radius,
        calibration_x=calibration.origin_center[0],
        calibration_y=calibration.origin_center[1],
        initial_x=initial_x,
        initial_y=initial_y,
        start_time=request.start_time,
        end_time=request.end_time,
        processing_status=ProcessingStatus.PENDING,
        processing_progress=0.0,
        rep_count=0,
        frames_tracked=0,
        frames_lost=0,
        cancel_requested=False,
    ))

    # Queue processing task
    from barspeed.worker import process_analysis_task
    process_analysis_task.delay(str(analysis.id))

    return analysis


@router.get("", response_model=AnalysisListResponse)
async def list_analyses(
    limit: Optional[int] = Query(None, ge=1, le=500),
    repository: AsyncSessionRepository = Depends(get_repository)
):
    """Session history, most recent first."""
    sessions = await repository.list(limit or settings.history_limit)
    return AnalysisListResponse(
        items=[AnalysisResponse.model_validate(s) for s in sessions],
        total=await repository.count()
    )


@router.get("/{session_id}", response_model=AnalysisDetailResponse)
async def get_analysis(
    session_id: str,
    start: Optional[float] = Query(None, ge=0, description="Range start, video seconds"),
    end: Optional[float] = Query(None, ge=0, description="Range end, video seconds"),
    repository: AsyncSessionRepository = Depends(get_repository)
):
    """
    Get a session with its repetitions and processed curves.

    With `start` and/or `end`, also returns mean velocity and peak force over
    that trimmed range.
    """
    if start is not None and end is not None and end < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end must not be before start"
        )

    analysis = await _get_session_or_404(repository, session_id)
    response = AnalysisDetailResponse.model_validate(analysis)

    if start is not None or end is not None:
        metrics = stored_range_metrics(analysis, start, end)
        if metrics is not None:
            response.range_metrics = RangeMetricsResponse(
                start_time=start if start is not None else analysis.processed_frames[0]["time"],
                end_time=end if end is not None else analysis.processed_frames[-1]["time"],
                mean_velocity=metrics.mean_velocity,
                peak_force=metrics.peak_force,
            )

    return response


@router.post("/{session_id}/cancel", response_model=AnalysisResponse)
async def cancel_analysis(
    session_id: str,
    repository: AsyncSessionRepository = Depends(get_repository)
):
    """
    Request cancellation.

    A queued session is cancelled immediately; a running one stops before
    its next frame.
    """
    analysis = await _get_session_or_404(repository, session_id)

    if analysis.is_terminal:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Session already finished ({analysis.processing_status})"
        )

    analysis.cancel_requested = True
    if analysis.processing_status == ProcessingStatus.PENDING:
        analysis.processing_status = ProcessingStatus.CANCELLED

    return await repository.save(analysis)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_analysis(
    session_id: str,
    repository: AsyncSessionRepository = Depends(get_repository)
):
    """Delete a session and its repetitions. The video file is left in place."""
    if not await repository.delete(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Analysis session not found"
        )
