"""
Test utilities for reservation tests.
"""

import jwt
from datetime import datetime, timedelta, timezone
from typing import Dict

from core.config import JWT_SECRET_KEY
from models.member import Member


def create_jwt_token(member: Member, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Create a JWT token for member authentication."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(member.id),
        "email": member.email,
        "name": member.full_name,
        "exp": now + expires_in,
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm="HS256")


def auth_headers(member: Member, **extra: str) -> Dict[str, str]:
    """Authorization header for ``member`` plus any extra headers."""
    headers = {"Authorization": f"Bearer {create_jwt_token(member)}"}
    headers.update(extra)
    return headers
