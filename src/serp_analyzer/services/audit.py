"""Audit trail of analysis requests (analysis_logs and serp_results)."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..models.analysis_log import AnalysisLog, AnalysisStatus
from ..models.api_key import APIKey, CredentialStatus
from ..models.serp_result import SerpResult

logger = structlog.get_logger(__name__)


class AuditLog:
    """Writes one row per request: inserted pending, finished exactly once."""

    def __init__(self, db: Session):
        self.db = db

    def start(
        self,
        user_id: str,
        keywords: List[str],
        country: Optional[str] = None,
        page: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> AnalysisLog:
        log = AnalysisLog(
            id=f"log_{uuid.uuid4().hex[:16]}",
            request_id=request_id or str(uuid.uuid4()),
            user_id=user_id,
            keywords=list(keywords),
            country=country,
            page=page,
            status=AnalysisStatus.PENDING.value,
        )
        self.db.add(log)
        self.db.commit()
        self.db.refresh(log)
        logger.info("analysis_started", request_id=log.request_id, keywords=len(keywords))
        return log

    def _finish(self, log: AnalysisLog, status: AnalysisStatus, processing_time: int):
        if log.status != AnalysisStatus.PENDING.value:
            raise ValueError(
                f"Analysis {log.request_id} is already {log.status} and cannot be reopened"
            )
        log.status = status.value
        log.processing_time = processing_time
        log.completed_at = datetime.now(timezone.utc)

    def complete(
        self,
        log: AnalysisLog,
        results: List[Dict[str, Any]],
        api_keys_used: List[str],
        processing_time: int,
    ) -> AnalysisLog:
        self._finish(log, AnalysisStatus.COMPLETED, processing_time)
        log.results = results
        log.api_keys_used = list(api_keys_used)
        self.db.commit()
        logger.info(
            "analysis_completed",
            request_id=log.request_id,
            results=len(results),
            processing_time=processing_time,
        )
        return log

    def fail(self, log: AnalysisLog, error_message: str, processing_time: int) -> AnalysisLog:
        self._finish(log, AnalysisStatus.FAILED, processing_time)
        log.error_message = error_message
        self.db.commit()
        logger.warning(
            "analysis_failed", request_id=log.request_id, error=error_message
        )
        return log

    def store_serp_results(self, log: AnalysisLog, results: List[Dict[str, Any]]) -> int:
        """Persist merged SERP entries of a completed analysis, one row each.

        Failures are logged and reported as 0 rows; the analysis itself has
        already been recorded.
        """
        rows = [
            SerpResult(
                analysis_log_id=log.id,
                keyword=result["keyword"],
                position=entry.get("position"),
                url=entry.get("url"),
                title=entry.get("title"),
                description=entry.get("description"),
                domain_authority=entry.get("domain_authority") or 0,
                page_authority=entry.get("page_authority") or 0,
                spam_score=entry.get("spam_score") or 0,
            )
            for result in results
            for entry in result.get("results") or []
        ]
        if not rows:
            return 0
        try:
            self.db.add_all(rows)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("serp_results_store_failed", request_id=log.request_id, error=str(e))
            return 0
        return len(rows)

    # ------------------------------------------------------------------
    # Dashboard queries
    # ------------------------------------------------------------------

    def get(self, user_id: str, request_id: str) -> Optional[AnalysisLog]:
        return (
            self.db.query(AnalysisLog)
            .filter(AnalysisLog.user_id == user_id, AnalysisLog.request_id == request_id)
            .first()
        )

    def list_recent(self, user_id: str, limit: int = 20) -> List[AnalysisLog]:
        return (
            self.db.query(AnalysisLog)
            .filter(AnalysisLog.user_id == user_id)
            .order_by(AnalysisLog.created_at.desc(), AnalysisLog.id.desc())
            .limit(limit)
            .all()
        )

    def serp_results(self, log: AnalysisLog) -> List[SerpResult]:
        return (
            self.db.query(SerpResult)
            .filter(SerpResult.analysis_log_id == log.id)
            .order_by(SerpResult.id.asc())
            .all()
        )

    def stats(self, user_id: str) -> Dict[str, Any]:
        """Counts shown on the dashboard overview."""
        keys = self.db.query(APIKey.status).filter(APIKey.user_id == user_id).all()
        analyses = (
            self.db.query(AnalysisLog.status)
            .filter(AnalysisLog.user_id == user_id)
            .all()
        )
        total_analyses = len(analyses)
        successful = sum(
            1 for (status,) in analyses if status == AnalysisStatus.COMPLETED.value
        )
        return {
            "total_api_keys": len(keys),
            "active_api_keys": sum(
                1 for (status,) in keys if status == CredentialStatus.ACTIVE.value
            ),
            "total_analyses": total_analyses,
            "successful_analyses": successful,
            "success_rate": (
                round(successful / total_analyses * 100, 2) if total_analyses else 0.0
            ),
        }
