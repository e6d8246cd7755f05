from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel
from typing import Annotated, List, Optional, Dict, Any, Literal
from datetime import datetime

from .config import settings


class CamelModel(BaseModel):
    """Base for webhook payloads, which use camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Analysis Schemas
# =============================================================================

Keyword = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class DecisionConfig(CamelModel):
    """Threshold rule deciding whether a keyword is worth writing for."""

    min_low_authority_count: int = Field(
        settings.min_low_authority_count,
        ge=0,
        description="Write when at least this many results fall below the threshold",
    )
    top_n_domains: int = Field(
        settings.top_n_domains, ge=1, description="Number of top URLs to return"
    )
    authority_threshold: float = Field(
        settings.authority_threshold,
        ge=0,
        description="Domain authority below which a result counts as weak",
    )


class AnalyzeRequest(CamelModel):
    """Webhook request body."""

    keywords: List[Keyword] = Field(
        ...,
        min_length=1,
        max_length=settings.max_keywords,
        description="Keywords to analyze",
    )
    region: str = Field(
        settings.default_country,
        validation_alias=AliasChoices("region", "country"),
        description="Country / region code passed to the SERP scraper",
    )
    page: int = Field(1, ge=1, description="SERP page to fetch")
    decision_config: DecisionConfig = Field(default_factory=DecisionConfig)


class SerpEntry(CamelModel):
    """A SERP result merged with its authority metrics."""

    position: int
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    domain_authority: float = 0
    page_authority: float = 0
    spam_score: float = 0


class KeywordResult(CamelModel):
    """Outcome for a single keyword of a batch."""

    keyword: str
    api_key_used: Optional[str] = None
    api_key_name: Optional[str] = None
    decision: Literal["Write", "Skip", "Error"]
    average_authority: float = 0
    low_authority_count: int = 0
    domains: List[str] = []
    results: List[SerpEntry] = []
    related_keywords: List[str] = []
    knowledge_panel: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    # Plain-text renderings for spreadsheet consumers
    domains_text: str = ""
    related_keywords_text: str = ""
    serp_results_text: str = ""


class AnalyzeResponse(CamelModel):
    """Webhook response."""

    request_id: str
    keywords_processed: int
    region: str
    page: int
    processing_time_ms: int
    results: List[KeywordResult]


# =============================================================================
# User Schemas
# =============================================================================


class UserCreateRequest(BaseModel):
    """Request to register a dashboard user."""

    email: str = Field(..., min_length=3, description="Login email")
    full_name: str = Field(..., min_length=1, description="Display name")


class UserResponse(BaseModel):
    """User information."""

    id: str
    email: str
    full_name: str
    created_at: Optional[datetime] = None


class WebhookTokenResponse(BaseModel):
    """Freshly issued webhook token; shown only once."""

    user_id: str
    webhook_token: str
    webhook_url: str


# =============================================================================
# API Key Schemas
# =============================================================================


class APIKeyRequest(BaseModel):
    """Request to store a new Apify API key."""

    key_name: str = Field(..., min_length=1, description="Friendly name for the key")
    api_key: str = Field(..., min_length=1, description="Apify API token")
    provider: str = Field("apify", description="Provider the key belongs to")


class APIKeyInfo(BaseModel):
    """API key information (without the actual key)."""

    id: str
    key_name: str
    provider: str
    status: str
    key_preview: str
    last_used: Optional[datetime] = None
    last_failed: Optional[datetime] = None
    failure_count: int
    created_at: Optional[datetime] = None


class APIKeyTestResponse(BaseModel):
    """Result of checking an API key against Apify."""

    id: str
    ok: bool
    status: str
    message: str


# =============================================================================
# Analysis Log Schemas
# =============================================================================


class AnalysisLogInfo(BaseModel):
    """Audit row as shown on the dashboard."""

    request_id: str
    status: str
    keywords: List[str]
    country: Optional[str] = None
    page: Optional[int] = None
    results: Optional[List[Dict[str, Any]]] = None
    api_keys_used: List[str] = []
    error_message: Optional[str] = None
    processing_time: Optional[int] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class DashboardStats(BaseModel):
    """Overview numbers for the dashboard landing page."""

    total_api_keys: int
    active_api_keys: int
    total_analyses: int
    successful_analyses: int
    success_rate: float
    recent_analyses: List[AnalysisLogInfo]


# =============================================================================
# Error Schemas
# =============================================================================


class ErrorResponse(CamelModel):
    """Standard error response."""

    error: str
    message: str
    request_id: Optional[str] = None
