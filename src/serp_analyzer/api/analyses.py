"""Analysis history routes for the dashboard."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List

from ..database import get_db
from ..models.analysis_log import AnalysisLog
from ..models.user import User
from ..schemas import AnalysisLogInfo, DashboardStats
from ..services.audit import AuditLog
from .dependencies import get_current_user

router = APIRouter(prefix="/v1/analyses", tags=["Analyses"])


def _to_info(log: AnalysisLog) -> AnalysisLogInfo:
    return AnalysisLogInfo(
        request_id=log.request_id,
        status=log.status,
        keywords=log.keywords or [],
        country=log.country,
        page=log.page,
        results=log.results,
        api_keys_used=log.api_keys_used or [],
        error_message=log.error_message,
        processing_time=log.processing_time,
        created_at=log.created_at,
        completed_at=log.completed_at,
    )


@router.get("/", response_model=List[AnalysisLogInfo])
async def list_analyses(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Most recent analysis requests, newest first."""
    return [_to_info(log) for log in AuditLog(db).list_recent(current_user.id, limit)]


@router.get("/stats", response_model=DashboardStats)
async def get_stats(
    current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Overview numbers for the dashboard."""
    audit = AuditLog(db)
    stats = audit.stats(current_user.id)
    recent = [_to_info(log) for log in audit.list_recent(current_user.id, limit=5)]
    return DashboardStats(**stats, recent_analyses=recent)


@router.get("/{request_id}", response_model=AnalysisLogInfo)
async def get_analysis(
    request_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """One analysis request with its results."""
    log = AuditLog(db).get(current_user.id, request_id)
    if not log:
        raise HTTPException(status_code=404, detail=f"Analysis '{request_id}' not found")
    return _to_info(log)


@router.get("/{request_id}/serp-results")
async def get_serp_results(
    request_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Flattened SERP rows stored for a completed analysis."""
    audit = AuditLog(db)
    log = audit.get(current_user.id, request_id)
    if not log:
        raise HTTPException(status_code=404, detail=f"Analysis '{request_id}' not found")
    rows = audit.serp_results(log)
    return {
        "request_id": request_id,
        "count": len(rows),
        "results": [row.to_dict() for row in rows],
    }
