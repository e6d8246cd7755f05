"""Credential pool: a user's Apify keys and their status transitions."""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..models.api_key import APIKey, CredentialStatus, USABLE_STATUSES
from ..providers.errors import FailureKind
from ..schemas import APIKeyRequest

logger = structlog.get_logger(__name__)


class NoCredentialsAvailable(Exception):
    """The user has no API key the orchestrator may use."""

    def __init__(self, user_id: str):
        super().__init__("No API keys available - please add at least one Apify API key")
        self.user_id = user_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def usable_order_key(credential: APIKey):
    """Never used first, then least recently used, then active before degraded."""
    last_used = credential.last_used
    if last_used is not None and last_used.tzinfo is None:
        last_used = last_used.replace(tzinfo=timezone.utc)
    created_at = credential.created_at
    if created_at is not None and created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return (
        last_used is not None,
        last_used or epoch,
        credential.status != CredentialStatus.ACTIVE.value,
        created_at or epoch,
    )


class CredentialPool:
    """Reads and updates the api_keys table for one database session.

    Every transition is committed as soon as it is applied, so a crash in the
    middle of a batch leaves the rows already touched in a consistent state.
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def list_usable(self, user_id: str) -> List[APIKey]:
        credentials = (
            self.db.query(APIKey)
            .filter(APIKey.user_id == user_id, APIKey.status.in_(USABLE_STATUSES))
            .all()
        )
        if not credentials:
            raise NoCredentialsAvailable(user_id)
        return sorted(credentials, key=usable_order_key)

    def record_success(self, credential: APIKey) -> APIKey:
        credential.status = CredentialStatus.ACTIVE.value
        credential.failure_count = 0
        credential.last_used = _utcnow()
        credential.last_failed = None
        self.db.commit()
        logger.info("credential_succeeded", credential_id=credential.id)
        return credential

    def record_failure(self, credential: APIKey, kind: FailureKind) -> APIKey:
        if kind is FailureKind.RATE_LIMITED:
            credential.status = CredentialStatus.RATE_LIMITED.value
        else:
            credential.status = CredentialStatus.FAILED.value
        credential.failure_count = (credential.failure_count or 0) + 1
        credential.last_failed = _utcnow()
        self.db.commit()
        logger.warning(
            "credential_failed",
            credential_id=credential.id,
            kind=kind.value,
            status=credential.status,
            failure_count=credential.failure_count,
        )
        return credential

    # ------------------------------------------------------------------
    # Dashboard management
    # ------------------------------------------------------------------

    def create(self, user_id: str, request: APIKeyRequest) -> APIKey:
        credential = APIKey(
            id=f"key_{uuid.uuid4().hex[:16]}",
            user_id=user_id,
            key_name=request.key_name,
            api_key=request.api_key.strip(),
            provider=request.provider,
            status=CredentialStatus.ACTIVE.value,
            failure_count=0,
        )
        self.db.add(credential)
        self.db.commit()
        self.db.refresh(credential)
        logger.info("credential_created", credential_id=credential.id, user_id=user_id)
        return credential

    def list_for_user(self, user_id: str) -> List[APIKey]:
        return (
            self.db.query(APIKey)
            .filter(APIKey.user_id == user_id)
            .order_by(APIKey.created_at.asc())
            .all()
        )

    def get_for_user(self, user_id: str, credential_id: str) -> Optional[APIKey]:
        return (
            self.db.query(APIKey)
            .filter(APIKey.id == credential_id, APIKey.user_id == user_id)
            .first()
        )

    def reset(self, credential: APIKey) -> APIKey:
        """Manually put a degraded key back into rotation."""
        credential.status = CredentialStatus.ACTIVE.value
        credential.failure_count = 0
        credential.last_failed = None
        self.db.commit()
        return credential

    def delete(self, credential: APIKey):
        credential_id = credential.id
        self.db.delete(credential)
        self.db.commit()
        logger.info("credential_deleted", credential_id=credential_id)
