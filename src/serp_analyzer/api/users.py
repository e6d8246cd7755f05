import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..models.user import User
from ..schemas import UserCreateRequest, UserResponse, WebhookTokenResponse
from ..utils.auth import UserManager
from .dependencies import get_current_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/users", tags=["Users"])


def _webhook_url() -> str:
    return f"{settings.public_base_url.rstrip('/')}/analyze"


@router.post("/", response_model=WebhookTokenResponse, status_code=201)
async def register_user(request: UserCreateRequest, db: Session = Depends(get_db)):
    """Register a user. The webhook token is only returned here and on rotation."""
    try:
        user, token = UserManager(db).create_user(request)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))

    logger.info(f"✅ Registered user {user.id}")
    return WebhookTokenResponse(user_id=user.id, webhook_token=token, webhook_url=_webhook_url())


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Current user's profile."""
    return UserResponse(
        id=current_user.id,
        email=current_user.email,
        full_name=current_user.full_name,
        created_at=current_user.created_at,
    )


@router.post("/me/webhook-token", response_model=WebhookTokenResponse)
async def rotate_webhook_token(
    current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Issue a new webhook token; the previous one stops working."""
    token = UserManager(db).rotate_webhook_token(current_user)
    logger.info(f"🔑 Rotated webhook token for user {current_user.id}")
    return WebhookTokenResponse(
        user_id=current_user.id, webhook_token=token, webhook_url=_webhook_url()
    )


@router.get("/me/webhook")
async def get_webhook_info(current_user: User = Depends(get_current_user)):
    """Webhook URL and an example request for automation tools."""
    webhook_url = _webhook_url()
    example_body = {"keywords": ["best running shoes"], "region": settings.default_country, "page": 1}
    return {
        "webhook_url": webhook_url,
        "method": "POST",
        "headers": {
            "Authorization": "Bearer <your webhook token>",
            "Content-Type": "application/json",
        },
        "example_body": example_body,
        "max_keywords": settings.max_keywords,
        "rate_limit": settings.rate_limit,
    }
