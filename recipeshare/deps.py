"""FastAPI dependencies for the RecipeShare API.

Provides:
- Database session dependency
- Acting user resolution (X-User-Id header)
- Admin check for student verification

Token issuance and verification happen in front of this service; requests
reach it with the authenticated user's id in the X-User-Id header.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .db import get_db
from .models import User


def get_current_user(
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> User:
    """Resolve the acting user.

    Raises:
        HTTPException 401 if the header is missing or names no user
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")

    user = db.get(User, x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail=f"User '{x_user_id}' not found")
    return user


def get_current_user_optional(
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> Optional[User]:
    """Like get_current_user but returns None for anonymous callers."""
    try:
        return get_current_user(db=db, x_user_id=x_user_id)
    except HTTPException:
        return None


def get_admin_user(user: User = Depends(get_current_user)) -> User:
    """Resolve the acting user and require the admin flag.

    Raises:
        HTTPException 403 if the user is not an admin
    """
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
