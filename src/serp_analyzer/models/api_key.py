"""Third-party API key (credential) model."""

import enum

from sqlalchemy import Column, String, Integer, DateTime, Text
from sqlalchemy.sql import func
from ..database import Base


class CredentialStatus(str, enum.Enum):
    ACTIVE = "active"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"


# Statuses the orchestrator is allowed to rotate through
USABLE_STATUSES = [
    CredentialStatus.ACTIVE.value,
    CredentialStatus.FAILED.value,
    CredentialStatus.RATE_LIMITED.value,
]


class APIKey(Base):
    """An Apify API key belonging to a user, rotated by the orchestrator."""

    __tablename__ = "api_keys"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    key_name = Column(String, nullable=False)
    api_key = Column(Text, nullable=False)
    provider = Column(String, default="apify", nullable=False)
    status = Column(String, default=CredentialStatus.ACTIVE.value, nullable=False)
    last_used = Column(DateTime(timezone=True))
    last_failed = Column(DateTime(timezone=True))
    failure_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def preview(self) -> str:
        """Masked key for display."""
        if not self.api_key:
            return ""
        return f"{self.api_key[:8]}..."

    def __repr__(self):
        return f"<APIKey(id='{self.id}', name='{self.key_name}', status='{self.status}')>"
