"""Database models for SERP Analyzer."""

from .user import User
from .api_key import APIKey, CredentialStatus
from .analysis_log import AnalysisLog, AnalysisStatus
from .serp_result import SerpResult

__all__ = [
    "User",
    "APIKey",
    "CredentialStatus",
    "AnalysisLog",
    "AnalysisStatus",
    "SerpResult",
]
