"""
Matching API Router
REST endpoints for on-demand matching, persisted results, batch status and caseworker workflow
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional
from pydantic import BaseModel
import structlog

from app.database import get_db, get_session_factory
from app.services.matching_service import MatchingService

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["matching"])


class StatusUpdateRequest(BaseModel):
    """Request body for updating a match's workflow status"""
    status: str  # Pending, Recommended, Not Suitable, On Hold, Outreach Approved
    notes: Optional[str] = None
    reason_if_not_suitable: Optional[str] = None  # required for Not Suitable


class RecalculateRequest(BaseModel):
    """Request body for triggering recalculation (empty body = full run)"""
    pivot_type: Optional[str] = None
    pivot_id: Optional[int] = None


def get_matching_service(db: Session = Depends(get_db)) -> MatchingService:
    """
    Dependency for the matching facade
    Usage: service: MatchingService = Depends(get_matching_service)
    """
    if db is None:
        raise HTTPException(status_code=503, detail="Database not configured")

    from app.scheduler import get_recalculation_scheduler

    return MatchingService(
        db,
        session_factory=get_session_factory(),
        recalculation_scheduler=get_recalculation_scheduler()
    )


@router.post("/matching/{pivot_type}/{pivot_id}/run")
async def run_matching(
    pivot_type: str,
    pivot_id: int,
    persist: bool = Query(False, description="Replace the pivot's persisted current result set"),
    service: MatchingService = Depends(get_matching_service)
):
    """
    Run matching for one pivot now

    Bypasses the scheduler and the batch engine. Failures come back as
    success=false with a message, never as an error status.

    Args:
        pivot_type: "child" or "preference"
        pivot_id: Pivot record id
        persist: Save the result set (default: preview only)

    Returns:
        dict with success, message, ranked results, excluded candidates and summary
    """
    return service.run_matching_now(pivot_type, pivot_id, persist=persist)


@router.get("/matching/batch/status")
async def get_batch_status(service: MatchingService = Depends(get_matching_service)):
    """
    Get batch recalculation status

    Returns:
        dict with status, processed/total, error count, failures and run timestamps
    """
    return service.get_batch_status()


@router.post("/matching/recalculate", status_code=202)
async def trigger_recalculation(
    request: Optional[RecalculateRequest] = None,
    service: MatchingService = Depends(get_matching_service)
):
    """
    Trigger recalculation

    With pivot_type and pivot_id only that pivot is recalculated by the worker;
    without them a full run is requested through the debounced scheduler.

    Returns:
        dict with scope and status (scheduled, already_pending, deferred, enqueued)
    """
    request = request or RecalculateRequest()
    result = service.trigger_recalculation(request.pivot_type, request.pivot_id)
    logger.info("recalculation_triggered", **result)
    return result


@router.get("/matching/{pivot_type}/{pivot_id}/results")
async def get_current_results(
    pivot_type: str,
    pivot_id: int,
    service: MatchingService = Depends(get_matching_service)
):
    """
    Get the persisted current result set of a pivot

    Returns:
        dict with ranked results, excluded candidates and summary statistics
    """
    return service.get_current_results(pivot_type, pivot_id)


@router.get("/matching/{pivot_type}/{pivot_id}/history")
async def get_match_history(
    pivot_type: str,
    pivot_id: int,
    limit: int = Query(200, ge=1, le=1000, description="Maximum rows to return"),
    service: MatchingService = Depends(get_matching_service)
):
    """
    Get superseded result sets of a pivot, newest first
    """
    return service.get_match_history(pivot_type, pivot_id, limit=limit)


@router.patch("/matches/{result_id}/status")
async def update_match_status(
    result_id: int,
    request: StatusUpdateRequest,
    service: MatchingService = Depends(get_matching_service)
):
    """
    Update the workflow status of a match

    Args:
        result_id: MatchResult id
        request: New status, notes and (for Not Suitable) a reason

    Returns:
        The updated match result
    """
    return service.update_match_status(
        result_id,
        request.status,
        notes=request.notes,
        reason_if_not_suitable=request.reason_if_not_suitable
    )
