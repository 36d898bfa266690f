"""Request-scoped dependencies for the API layer."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from taskhub_core import models
from taskhub_core.database import get_db

logger = logging.getLogger("taskhub-core.auth")


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> models.User:
    """
    Resolve the acting user.

    Credentials are verified upstream; by the time a request reaches this
    service the gateway has put the authenticated user's id in ``X-User-Id``.

    Raises:
        HTTPException: 401 if the header is missing, malformed, or names an
            unknown or inactive user
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user id")

    user = db.query(models.User).filter(
        models.User.id == user_id,
        models.User.is_active.is_(True),
        models.User.deleted_at.is_(None),
    ).first()
    if user is None:
        logger.warning(f"Rejected request for unknown or inactive user {user_id}")
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user
