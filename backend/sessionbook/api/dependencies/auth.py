# backend/sessionbook/api/dependencies/auth.py
"""
Actor resolution.

Authentication happens upstream of this service; the gateway forwards the
authenticated user's id in ``X-User-Id``. The id is resolved against the
users table on every request so role changes apply immediately.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ...models.user import User
from ...repositories.factory import RepositoryFactory
from .database import get_db

logger = logging.getLogger(__name__)


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> User:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    user = RepositoryFactory.create_user_repository(db).get_active(x_user_id)
    if user is None:
        logger.info("Rejected request for unknown or inactive user %s", x_user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown or inactive user",
        )
    return user
