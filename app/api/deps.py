"""
FastAPI dependencies (DB session, authentication, clock)
"""
from fastapi import Depends, Request, HTTPException, status
from sqlalchemy.orm import Session

from app.domain.recurrence import Clock
from app.infrastructure.db.session import get_db as _get_db
from app.infrastructure.db.models import User
from app.utils.clock import system_clock


# Re-export get_db for routers
get_db = _get_db


def get_clock() -> Clock:
    """Wall clock for use cases; tests override this dependency with a fixed clock."""
    return system_clock


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Current user from the signed session cookie.

    Raises:
        HTTPException(401): not logged in or user gone

    Usage:
        @router.get("/schedules")
        def list_schedules(user: User = Depends(get_current_user)):
            ...
    """
    user_id = request.session.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    return user
