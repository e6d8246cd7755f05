import logging
from typing import Optional

from fastapi import Depends, HTTPException, Header
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.user import User
from ..utils.auth import UserManager
from ..utils.tokens import TokenManager

logger = logging.getLogger(__name__)


def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


async def get_webhook_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the webhook bearer token to its user."""
    if not authorization:
        raise HTTPException(
            status_code=401, detail="Missing or invalid authorization header"
        )

    token = _extract_bearer(authorization)
    if not token:
        raise HTTPException(
            status_code=401,
            detail="Authorization header must be 'Bearer <webhook token>'",
        )

    user = UserManager(db).verify_webhook_token(token)
    if not user:
        logger.warning(f"Rejected webhook token {token[:8]}...")
        raise HTTPException(status_code=401, detail="Invalid authorization token")

    return user


async def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    """Dashboard auth: accepts a JWT session token or the webhook token."""
    token = _extract_bearer(authorization)
    if not token:
        raise HTTPException(
            status_code=401, detail="Missing or invalid authorization header"
        )

    if TokenManager.looks_like_jwt(token):
        token_data = TokenManager(db).verify_token(token)
        if not token_data:
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        return token_data["user"]

    user = UserManager(db).verify_webhook_token(token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid authorization token")
    return user


def get_client_factory():
    """Factory building an Apify client for a credential's API token."""
    from ..providers.clients import ApifyClient

    return ApifyClient
