from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional
from datetime import timedelta

from ..database import get_db
from ..utils.auth import UserManager
from ..utils.tokens import TokenManager

router = APIRouter(prefix="/auth", tags=["Token Authentication"])


class TokenRequest(BaseModel):
    """Request to create a new session token."""

    webhook_token: str = Field(..., description="Your webhook token")
    expires_in_hours: Optional[int] = Field(
        None, description="Token expiry in hours", ge=1, le=168
    )  # Max 7 days


class TokenResponse(BaseModel):
    """Token creation response."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: str
    user_id: str


class VerifyTokenRequest(BaseModel):
    """Request carrying a session token."""

    token: str = Field(..., description="Session token to check")


@router.post("/token", response_model=TokenResponse)
async def create_token(request: TokenRequest, db: Session = Depends(get_db)):
    """
    Exchange a webhook token for a JWT session token.

    The dashboard uses the session token so the long-lived webhook token does
    not have to be kept in the browser.
    """
    user = UserManager(db).verify_webhook_token(request.webhook_token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid webhook token")

    expires_in = (
        timedelta(hours=request.expires_in_hours) if request.expires_in_hours else None
    )
    token_data = TokenManager(db).create_token(user_id=user.id, expires_in=expires_in)
    return TokenResponse(**token_data)


@router.post("/verify")
async def verify_token(request: VerifyTokenRequest, db: Session = Depends(get_db)):
    """Check a session token and return its details."""
    token_data = TokenManager(db).verify_token(request.token)

    if not token_data:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return {
        "valid": True,
        "user_id": token_data["user_id"],
        "email": token_data["email"],
        "token_id": token_data["token_id"],
        "expires_at": token_data["expires_at"],
    }
