"""
JWT Service for access token management.

Members authenticate with HS256 bearer tokens whose subject is the member
id. Token issuance by the identity provider is out of scope; this service
issues tokens for development and tests and verifies them on every request.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import BaseModel

from core.config import JWT_ACCESS_TOKEN_EXPIRE_MINUTES, JWT_SECRET_KEY


class TokenPayload(BaseModel):
    """Payload structure for JWT tokens."""
    sub: str  # Member ID
    email: str
    name: Optional[str] = None
    iat: Optional[int] = None  # Set by JWT service
    exp: Optional[int] = None  # Set by JWT service

    @property
    def member_id(self) -> int:
        return int(self.sub)


class JWTService:
    """Service for JWT token operations."""

    ALGORITHM = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES = JWT_ACCESS_TOKEN_EXPIRE_MINUTES

    @classmethod
    def create_access_token(cls, payload: TokenPayload, expires_delta: Optional[timedelta] = None) -> str:
        """Create a JWT access token."""
        to_encode = payload.model_dump(exclude_none=True)
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=cls.ACCESS_TOKEN_EXPIRE_MINUTES))
        to_encode.update({"exp": expire, "iat": now})
        return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=cls.ALGORITHM)

    @classmethod
    def verify_token(cls, token: str) -> Optional[TokenPayload]:
        """Verify and decode a JWT token."""
        try:
            payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[cls.ALGORITHM])
            return TokenPayload(**payload)
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None


jwt_service = JWTService()
