"""Webhook endpoint: analyze a batch of keywords."""

import logging
import time

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..models.user import User
from ..schemas import AnalyzeRequest, AnalyzeResponse, ErrorResponse
from ..services.audit import AuditLog
from ..services.credentials import CredentialPool, NoCredentialsAvailable
from ..services.orchestrator import BatchOrchestrator, ClientFactory
from .dependencies import get_client_factory, get_webhook_user
from .rate_limit import limiter

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Analysis"])


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
@router.post("/api/analyze-serps", response_model=AnalyzeResponse, include_in_schema=False)
@limiter.limit(settings.rate_limit)
async def analyze_keywords(
    request: Request,
    body: AnalyzeRequest,
    user: User = Depends(get_webhook_user),
    client_factory: ClientFactory = Depends(get_client_factory),
    db: Session = Depends(get_db),
):
    """Run SERP + authority analysis for up to 30 keywords."""
    started = time.monotonic()
    audit = AuditLog(db)
    log = audit.start(user.id, body.keywords, country=body.region, page=body.page)
    request_id = log.request_id
    structlog.contextvars.bind_contextvars(request_id=request_id)

    logger.info(
        f"🚀 Starting SERP analysis {request_id} for user {user.id}: "
        f"{len(body.keywords)} keywords"
    )

    try:
        pool = CredentialPool(db)
        try:
            credentials = pool.list_usable(user.id)
        except NoCredentialsAvailable as e:
            logger.warning(f"❌ No API keys for user {user.id}")
            audit.fail(log, "No API keys available", _elapsed_ms(started))
            return JSONResponse(
                status_code=400,
                content=ErrorResponse(
                    error="no_api_keys", message=str(e), request_id=request_id
                ).model_dump(by_alias=True),
            )

        orchestrator = BatchOrchestrator(pool, client_factory=client_factory)
        outcome = await orchestrator.run(
            body.keywords,
            credentials,
            country=body.region,
            page=body.page,
            decision_config=body.decision_config,
        )

        processing_time = _elapsed_ms(started)
        stored_results = [result.model_dump() for result in outcome.results]
        audit.complete(log, stored_results, outcome.api_keys_used, processing_time)
        audit.store_serp_results(log, stored_results)

        logger.info(f"✅ Analysis {request_id} completed in {processing_time}ms")
        return AnalyzeResponse(
            request_id=request_id,
            keywords_processed=len(body.keywords),
            region=body.region,
            page=body.page,
            processing_time_ms=processing_time,
            results=outcome.results,
        )

    except Exception as e:
        logger.exception(f"❌ SERP analysis {request_id} failed: {e}")
        db.rollback()
        try:
            audit.fail(log, str(e) or e.__class__.__name__, _elapsed_ms(started))
        except Exception as update_error:
            logger.error(f"❌ Failed to update analysis log: {update_error}")

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="analysis_failed",
                message=str(e) or "An error occurred during SERP analysis",
                request_id=request_id,
            ).model_dump(by_alias=True),
        )
    finally:
        structlog.contextvars.unbind_contextvars("request_id")
