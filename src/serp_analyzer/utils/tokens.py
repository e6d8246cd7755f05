import jwt
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session

from ..config import settings
from .auth import UserManager


class TokenManager:
    """Issues short-lived JWT session tokens for the dashboard."""

    def __init__(self, db: Session):
        self.db = db
        self.secret_key = settings.secret_key
        self.algorithm = "HS256"
        self.default_expiry = timedelta(hours=settings.jwt_expiry_hours)

    def create_token(
        self, user_id: str, expires_in: Optional[timedelta] = None
    ) -> Dict[str, Any]:
        """Create a JWT token for a user."""
        if expires_in is None:
            expires_in = self.default_expiry

        user = UserManager(self.db).get_user(user_id)
        if not user:
            raise ValueError("Invalid or inactive user")

        now = datetime.now(timezone.utc)
        expiry = now + expires_in

        payload = {
            "sub": user.id,
            "email": user.email,
            "iat": now,
            "exp": expiry,
            "jti": secrets.token_hex(16),
            "type": "access",
        }

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

        return {
            "access_token": token,
            "token_type": "bearer",
            "expires_in": int(expires_in.total_seconds()),
            "expires_at": expiry.isoformat(),
            "user_id": user.id,
        }

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Verify and decode a JWT token; None when invalid or expired."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.InvalidTokenError:
            return None

        user_id = payload.get("sub")
        if not user_id or payload.get("type") != "access":
            return None

        user = UserManager(self.db).get_user(user_id)
        if not user:
            return None

        return {
            "user_id": user_id,
            "email": payload.get("email"),
            "token_id": payload.get("jti"),
            "expires_at": payload.get("exp"),
            "user": user,
        }

    @staticmethod
    def looks_like_jwt(token: str) -> bool:
        return token.count(".") == 2
