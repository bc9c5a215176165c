# pyright: reportMissingTypeStubs=false
"""
Authentication dependencies for FastAPI.

Resolves the authenticated member from the bearer token. Authorization of
individual reservations (ownership) is checked by the reservation services.
"""

import logging
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from core.database import get_db
from models.member import Member
from services.jwt_service import jwt_service, TokenPayload

logger = logging.getLogger(__name__)


class MemberContext:
    """Authenticated member extracted from JWT token."""

    def __init__(self, member_id: int, email: str, name: str):
        self.member_id = member_id
        self.email = email
        self.name = name

    def __repr__(self) -> str:
        return f"MemberContext(member_id={self.member_id}, email={self.email})"


# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[TokenPayload]:
    """Extract and validate JWT token payload."""
    if not credentials:
        return None

    return jwt_service.verify_token(credentials.credentials)


def get_current_member(
    payload: Optional[TokenPayload] = Depends(get_token_payload),
    db: Session = Depends(get_db)
) -> MemberContext:
    """Get authenticated member context from JWT token."""
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication credentials not provided"
        )

    try:
        member_id = payload.member_id
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject"
        )

    member = db.query(Member).filter(Member.id == member_id).first()
    if not member:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Member not found"
        )

    if not member.is_active:
        logger.warning(f"Inactive member {member_id} attempted to authenticate")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Member account is inactive"
        )

    return MemberContext(member_id=member.id, email=member.email, name=member.full_name)
