"""Apify client for the SERP scraper and domain authority actors.

Both actors follow the same asynchronous job protocol:

1. start a run and receive its id,
2. poll the run until it reaches a terminal status,
3. read the output dataset id from the finished run,
4. wait for the dataset to settle, then poll it until it has items.

Job completion does not guarantee the dataset is readable yet, which is why
step 4 starts with an unconditional settle delay.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import structlog

from ..config import settings
from .errors import (
    EmptyDataset,
    JobFailed,
    JobTimeout,
    MissingDataset,
    RemoteJobError,
    SubmissionError,
    UnexpectedShape,
)

logger = structlog.get_logger(__name__)

SUCCEEDED = "SUCCEEDED"
FAILED_STATUSES = {"FAILED", "ABORTED", "TIMED-OUT"}


@dataclass
class SerpPage:
    """First record of a SERP scraper dataset."""

    search_term: str
    results: List[Dict[str, Any]]
    related_keywords: List[str] = field(default_factory=list)
    knowledge_panel: Optional[Dict[str, Any]] = None

    @property
    def urls(self) -> List[str]:
        return [
            result["url"]
            for result in self.results
            if isinstance(result.get("url"), str) and result["url"]
        ]


@dataclass
class KeywordAnalysis:
    """SERP page plus its entries merged with authority metrics."""

    page: SerpPage
    entries: List[Dict[str, Any]]


def _number(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _position(value, fallback: int) -> int:
    if value is None or value == "":
        return fallback
    try:
        return int(value)
    except (TypeError, ValueError):
        raise UnexpectedShape(f"Invalid SERP position received from Apify: {value!r}")


def parse_serp_dataset(items: Any, keyword: str) -> SerpPage:
    """Extract the SERP record from a dataset payload.

    Accepts either a list whose first item holds ``results`` or a single
    object holding ``results``.
    """
    if isinstance(items, list) and items and isinstance(items[0], dict):
        record = items[0]
    elif isinstance(items, dict):
        record = items
    else:
        raise UnexpectedShape("Unexpected SERP data structure received from Apify")

    results = record.get("results")
    if not isinstance(results, list):
        raise UnexpectedShape("Unexpected SERP data structure received from Apify")

    related = record.get("related_keywords") or {}
    if isinstance(related, dict):
        related = related.get("keywords") or []
    related_keywords = []
    for item in related if isinstance(related, list) else []:
        if isinstance(item, dict):
            if item.get("keyword"):
                related_keywords.append(str(item["keyword"]))
        elif item:
            related_keywords.append(str(item))

    knowledge_panel = record.get("knowledge_panel")
    return SerpPage(
        search_term=record.get("search_term") or keyword,
        results=[result for result in results if isinstance(result, dict)],
        related_keywords=related_keywords,
        knowledge_panel=knowledge_panel if isinstance(knowledge_panel, dict) else None,
    )


def merge_metrics(
    serp_results: List[Dict[str, Any]], metrics: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Attach authority metrics to SERP results.

    Metrics are matched on exact equality between the SERP ``url`` and the
    metrics ``domain`` field. Results with no matching metrics score 0.
    """
    by_domain: Dict[str, Dict[str, Any]] = {}
    for row in metrics:
        if not isinstance(row, dict):
            raise UnexpectedShape("Invalid metrics data structure received from Apify")
        by_domain.setdefault(row.get("domain"), row)

    merged = []
    for index, result in enumerate(serp_results):
        url = result.get("url")
        if not isinstance(url, str) or not url:
            continue
        row = by_domain.get(url, {})
        merged.append(
            {
                "position": _position(result.get("position"), index + 1),
                "url": url,
                "title": result.get("title"),
                "description": result.get("description"),
                "domain_authority": _number(row.get("domain_authority")),
                "page_authority": _number(row.get("page_authority")),
                "spam_score": _number(row.get("spam_score")),
            }
        )
    return merged


class ApifyClient:
    """Runs Apify actors with a single API token.

    Use as an async context manager; the underlying ``httpx.AsyncClient`` lives
    for the duration of the block.
    """

    def __init__(
        self,
        api_token: str,
        *,
        base_url: Optional[str] = None,
        serp_actor_id: Optional[str] = None,
        metrics_actor_id: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_poll_attempts: Optional[int] = None,
        settle_delay: Optional[float] = None,
        max_dataset_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_token = api_token
        self.base_url = base_url or settings.apify_base_url
        self.serp_actor_id = serp_actor_id or settings.serp_actor_id
        self.metrics_actor_id = metrics_actor_id or settings.metrics_actor_id
        self.poll_interval = (
            settings.poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.max_poll_attempts = (
            settings.max_poll_attempts if max_poll_attempts is None else max_poll_attempts
        )
        self.settle_delay = (
            settings.dataset_settle_seconds if settle_delay is None else settle_delay
        )
        self.max_dataset_attempts = (
            settings.max_dataset_attempts
            if max_dataset_attempts is None
            else max_dataset_attempts
        )
        self.timeout = settings.http_timeout_seconds if timeout is None else timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self.log = logger.bind(api_key=api_token[:8])

    async def __aenter__(self) -> "ApifyClient":
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_token}"},
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if self._http is None:
            raise RuntimeError("ApifyClient must be used as an async context manager")
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteJobError(f"Network error calling Apify: {e}") from e

    @staticmethod
    def _payload(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _data(body: Any) -> Dict[str, Any]:
        """The ``data`` object of an API envelope, or an empty dict."""
        data = body.get("data") if isinstance(body, dict) else None
        return data if isinstance(data, dict) else {}

    @classmethod
    def _error_from_response(
        cls, response: httpx.Response, error_cls, what: str
    ) -> RemoteJobError:
        body = cls._payload(response)
        error = body.get("error") if isinstance(body, dict) else None
        error_type = None
        detail = response.text[:200]
        if isinstance(error, dict):
            error_type = error.get("type")
            detail = error.get("message") or detail
        message = f"{what} failed: {response.status_code} {response.reason_phrase}"
        if detail:
            message = f"{message} - {detail}"
        return error_cls(
            message, status_code=response.status_code, error_type=error_type
        )

    # ------------------------------------------------------------------
    # Job protocol
    # ------------------------------------------------------------------

    async def start_run(self, actor_id: str, payload: Dict[str, Any]) -> str:
        """Start an actor run and return its id."""
        response = await self._request("POST", f"/v2/acts/{actor_id}/runs", json=payload)
        if not response.is_success:
            raise self._error_from_response(response, SubmissionError, "Actor run")

        body = self._payload(response)
        if not isinstance(body, dict):
            raise SubmissionError(
                "Invalid JSON response from Apify run start",
                status_code=response.status_code,
            )
        run_id = self._data(body).get("id")
        if not run_id:
            raise SubmissionError("No run ID received from Apify")

        self.log.info("actor_run_started", actor=actor_id, run_id=run_id)
        return run_id

    async def wait_for_run(self, actor_id: str, run_id: str) -> Dict[str, Any]:
        """Poll a run until it succeeds; return the final run payload."""
        for attempt in range(1, self.max_poll_attempts + 1):
            await asyncio.sleep(self.poll_interval)

            response = await self._request("GET", f"/v2/acts/{actor_id}/runs/{run_id}")
            if not response.is_success:
                self.log.warning(
                    "run_status_error",
                    run_id=run_id,
                    status_code=response.status_code,
                    attempt=attempt,
                )
                continue

            run = self._data(self._payload(response))
            status = run.get("status")
            self.log.debug("run_status", run_id=run_id, status=status, attempt=attempt)

            if status == SUCCEEDED:
                return run
            if status in FAILED_STATUSES:
                meta = run.get("meta")
                reason = (
                    meta.get("errorMessage") if isinstance(meta, dict) else None
                ) or run.get("statusMessage")
                raise JobFailed(f"Actor run {status.lower()}: {reason or 'Unknown error'}")

        raise JobTimeout(
            f"Actor run {run_id} did not finish after {self.max_poll_attempts} status checks"
        )

    async def wait_for_dataset(self, dataset_id: str) -> Any:
        """Wait for the settle delay, then poll the dataset until it has items."""
        await asyncio.sleep(self.settle_delay)

        for attempt in range(1, self.max_dataset_attempts + 1):
            response = await self._request("GET", f"/v2/datasets/{dataset_id}/items")
            if response.is_success:
                items = self._payload(response)
                if items:
                    self.log.info(
                        "dataset_ready",
                        dataset_id=dataset_id,
                        items=len(items),
                        attempt=attempt,
                    )
                    return items
            else:
                self.log.warning(
                    "dataset_error",
                    dataset_id=dataset_id,
                    status_code=response.status_code,
                    attempt=attempt,
                )
            await asyncio.sleep(self.poll_interval)

        raise EmptyDataset(
            f"Dataset {dataset_id} is empty after {self.max_dataset_attempts} checks"
        )

    async def run_actor(self, actor_id: str, payload: Dict[str, Any]) -> Any:
        """Run an actor end to end and return its dataset items."""
        run_id = await self.start_run(actor_id, payload)
        run = await self.wait_for_run(actor_id, run_id)

        dataset_id = run.get("defaultDatasetId")
        if not dataset_id:
            raise MissingDataset(f"No dataset ID on completed run {run_id}")

        return await self.wait_for_dataset(dataset_id)

    # ------------------------------------------------------------------
    # Actors
    # ------------------------------------------------------------------

    async def fetch_serp(self, keyword: str, country: str, page: int = 1) -> SerpPage:
        """Scrape the Google results page for a keyword."""
        items = await self.run_actor(
            self.serp_actor_id, {"country": country, "keyword": keyword, "page": page}
        )
        return parse_serp_dataset(items, keyword)

    async def fetch_metrics(self, urls: List[str]) -> List[Dict[str, Any]]:
        """Fetch domain authority, page authority and spam score for URLs."""
        items = await self.run_actor(self.metrics_actor_id, {"url": urls})
        if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
            raise UnexpectedShape("Invalid metrics data structure received from Apify")
        return items

    async def analyze_keyword(
        self, keyword: str, country: str, page: int = 1
    ) -> KeywordAnalysis:
        """SERP scrape followed by authority metrics for the result URLs."""
        serp_page = await self.fetch_serp(keyword, country, page)
        urls = serp_page.urls
        if not urls:
            self.log.warning("serp_without_urls", keyword=keyword)
            raise UnexpectedShape("No URLs found in SERP results")

        metrics = await self.fetch_metrics(urls)
        try:
            entries = merge_metrics(serp_page.results, metrics)
        except (TypeError, ValueError, AttributeError) as e:
            raise UnexpectedShape(f"Invalid SERP or metrics data from Apify: {e}") from e
        return KeywordAnalysis(page=serp_page, entries=entries)

    async def verify_credential(self) -> Dict[str, Any]:
        """Check the token against the account endpoint."""
        response = await self._request("GET", "/v2/users/me")
        if not response.is_success:
            raise self._error_from_response(response, RemoteJobError, "Key check")
        return self._data(self._payload(response))
