"""Runs a keyword batch across a user's credential pool.

Two strategies share the same per-keyword pipeline:

``parallel``
    Keywords are processed in batches of ``batch_size``. The keyword at
    position ``i`` gets ``credentials[i % len(credentials)]`` and a single
    attempt. A batch, including its credential updates, finishes before the
    next one starts.

``sequential``
    One keyword at a time with up to ``min(max_attempts, len(credentials))``
    attempts. A cursor owned by the ``run`` call moves to the next credential
    after every failure and carries over to the following keyword.

If the pool is smaller than a parallel batch, two keywords can share a
credential concurrently and the last status write wins.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import structlog
from pydantic import ValidationError

from ..config import settings
from ..models.api_key import APIKey
from ..providers.clients import ApifyClient, KeywordAnalysis
from ..providers.errors import (
    RemoteJobError,
    UnexpectedShape,
    classify_failure,
    describe_failure,
)
from ..schemas import DecisionConfig, KeywordResult, SerpEntry
from .credentials import CredentialPool
from .decision import ERROR, decide

logger = structlog.get_logger(__name__)

PARALLEL = "parallel"
SEQUENTIAL = "sequential"
STRATEGIES = (PARALLEL, SEQUENTIAL)

ClientFactory = Callable[[str], ApifyClient]


@dataclass
class BatchOutcome:
    results: List[KeywordResult]
    api_keys_used: List[str]
    processing_time_ms: int


def _fmt(value) -> str:
    return f"{value:g}" if isinstance(value, float) else str(value)


def build_keyword_result(
    keyword: str,
    credential: APIKey,
    analysis: KeywordAnalysis,
    config: DecisionConfig,
) -> KeywordResult:
    """Apply the decision rule and shape the per-keyword payload."""
    verdict = decide(analysis.entries, config)
    entries = [SerpEntry(**entry) for entry in analysis.entries]

    serp_results_text = "\n".join(
        f"Position: {entry.position}\n"
        f"Title: {entry.title or ''}\n"
        f"Description: {entry.description or ''}\n"
        f"URL: {entry.url}\n"
        f"DA: {_fmt(entry.domain_authority)}\n"
        f"PA: {_fmt(entry.page_authority)}\n"
        f"Spam Score: {_fmt(entry.spam_score)}\n"
        for entry in entries
    )

    return KeywordResult(
        keyword=keyword,
        api_key_used=credential.id,
        api_key_name=credential.key_name,
        decision=verdict.decision,
        average_authority=verdict.average_authority,
        low_authority_count=verdict.low_authority_count,
        domains=verdict.top_domains,
        results=entries,
        related_keywords=analysis.page.related_keywords,
        knowledge_panel=analysis.page.knowledge_panel,
        domains_text="\n".join(verdict.top_domains),
        related_keywords_text="\n".join(analysis.page.related_keywords),
        serp_results_text=serp_results_text,
    )


def error_result(keyword: str, message: str) -> KeywordResult:
    return KeywordResult(keyword=keyword, decision=ERROR, error=message)


class BatchOrchestrator:
    """Drives keyword analysis for one request."""

    def __init__(
        self,
        pool: CredentialPool,
        client_factory: Optional[ClientFactory] = None,
        strategy: Optional[str] = None,
        batch_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        self.pool = pool
        self.client_factory = client_factory or ApifyClient
        self.strategy = strategy or settings.orchestration_strategy
        if self.strategy not in STRATEGIES:
            raise ValueError(
                f"Unknown orchestration strategy '{self.strategy}'. Use one of {STRATEGIES}"
            )
        self.batch_size = batch_size or settings.batch_size
        self.max_attempts = max_attempts or settings.max_attempts_per_keyword

    async def run(
        self,
        keywords: List[str],
        credentials: List[APIKey],
        country: str,
        page: int = 1,
        decision_config: Optional[DecisionConfig] = None,
    ) -> BatchOutcome:
        if not credentials:
            raise ValueError("At least one credential is required")

        config = decision_config or DecisionConfig()
        started = time.monotonic()
        logger.info(
            "batch_started",
            keywords=len(keywords),
            credentials=len(credentials),
            strategy=self.strategy,
        )

        if self.strategy == SEQUENTIAL:
            results = await self._run_sequential(keywords, credentials, country, page, config)
        else:
            results = await self._run_parallel(keywords, credentials, country, page, config)

        used: List[str] = []
        for result in results:
            if result.api_key_used and result.api_key_used not in used:
                used.append(result.api_key_used)

        elapsed = int((time.monotonic() - started) * 1000)
        logger.info(
            "batch_finished",
            keywords=len(keywords),
            errors=sum(1 for r in results if r.decision == ERROR),
            processing_time_ms=elapsed,
        )
        return BatchOutcome(results=results, api_keys_used=used, processing_time_ms=elapsed)

    async def _run_parallel(self, keywords, credentials, country, page, config):
        results: List[KeywordResult] = []
        for start in range(0, len(keywords), self.batch_size):
            batch = keywords[start : start + self.batch_size]
            batch_results = await asyncio.gather(
                *(
                    self.attempt(
                        keyword,
                        credentials[(start + offset) % len(credentials)],
                        country,
                        page,
                        config,
                    )
                    for offset, keyword in enumerate(batch)
                )
            )
            results.extend(batch_results)
        return results

    async def _run_sequential(self, keywords, credentials, country, page, config):
        results: List[KeywordResult] = []
        cursor = 0
        max_attempts = min(self.max_attempts, len(credentials))

        for keyword in keywords:
            result = None
            for _ in range(max_attempts):
                credential = credentials[cursor % len(credentials)]
                result = await self.attempt(keyword, credential, country, page, config)
                if result.decision != ERROR:
                    break
                cursor += 1

            if result.decision == ERROR:
                result = error_result(
                    keyword,
                    f"All API keys failed or rate limited (last error: {result.error})",
                )
            results.append(result)
        return results

    async def attempt(
        self,
        keyword: str,
        credential: APIKey,
        country: str,
        page: int,
        config: DecisionConfig,
    ) -> KeywordResult:
        """Analyze one keyword with one credential and record the outcome.

        Remote failures, including payloads that do not fit ``SerpEntry``,
        demote the credential and come back as an ``Error`` result; anything
        else propagates.
        """
        log = logger.bind(keyword=keyword, credential_id=credential.id)
        log.info("keyword_attempt")
        try:
            async with self.client_factory(credential.api_key) as client:
                analysis = await client.analyze_keyword(keyword, country, page)
            try:
                result = build_keyword_result(keyword, credential, analysis, config)
            except ValidationError as e:
                raise UnexpectedShape(
                    f"Invalid SERP entry received from Apify: {e.errors()[0]['msg']}"
                ) from e
        except RemoteJobError as e:
            kind = classify_failure(e)
            self.pool.record_failure(credential, kind)
            message = describe_failure(kind, e)
            log.warning("keyword_failed", kind=kind.value, error=str(e))
            return error_result(keyword, message)

        self.pool.record_success(credential)
        log.info(
            "keyword_analyzed",
            decision=result.decision,
            results=len(result.results),
            low_authority_count=result.low_authority_count,
        )
        return result
