import secrets
import hashlib
import uuid
from typing import Optional, Tuple
from sqlalchemy.orm import Session

from ..models.user import User
from ..schemas import UserCreateRequest


class UserManager:
    """Manages dashboard users and their webhook tokens."""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode()).hexdigest()

    def generate_webhook_token(self) -> Tuple[str, str]:
        """Generate a new webhook token and its hash."""
        from ..config import settings

        token = f"{settings.webhook_token_prefix}{secrets.token_urlsafe(32)}"
        return token, self.hash_token(token)

    def create_user(self, request: UserCreateRequest) -> Tuple[User, str]:
        """Create a user; returns the record and the plaintext webhook token."""
        existing = self.db.query(User).filter(User.email == request.email).first()
        if existing:
            raise ValueError(f"User with email '{request.email}' already exists")

        token, token_hash = self.generate_webhook_token()
        user = User(
            id=f"usr_{uuid.uuid4().hex[:16]}",
            email=request.email,
            full_name=request.full_name,
            webhook_token_hash=token_hash,
            is_active=True,
        )

        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)

        return user, token

    def rotate_webhook_token(self, user: User) -> str:
        """Replace the user's webhook token; the old one stops working."""
        token, token_hash = self.generate_webhook_token()
        user.webhook_token_hash = token_hash
        self.db.commit()
        return token

    def verify_webhook_token(self, token: str) -> Optional[User]:
        """Resolve a webhook token to its active user."""
        return (
            self.db.query(User)
            .filter(
                User.webhook_token_hash == self.hash_token(token),
                User.is_active == True,  # noqa: E712
            )
            .first()
        )

    def get_user(self, user_id: str) -> Optional[User]:
        return (
            self.db.query(User)
            .filter(User.id == user_id, User.is_active == True)  # noqa: E712
            .first()
        )
