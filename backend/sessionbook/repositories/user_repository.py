# backend/sessionbook/repositories/user_repository.py
"""
User Repository: actor lookups for authorization and notification addressing.
"""

from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.user import User
from .base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self, db: Session):
        super().__init__(db, User)

    def get_active(self, user_id: str) -> Optional[User]:
        user = self.get_by_id(user_id)
        if user is None or not user.is_active:
            return None
        return user

    def get_many(self, user_ids: Iterable[str]) -> List[User]:
        ids = [user_id for user_id in dict.fromkeys(user_ids) if user_id]
        if not ids:
            return []
        try:
            return self.db.query(User).filter(User.id.in_(ids)).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading users: {str(e)}")
            raise RepositoryException(f"Failed to load users: {str(e)}")

    def get_emails(self, user_ids: Iterable[str]) -> Dict[str, str]:
        """Map of user id to email for active users."""
        return {user.id: user.email for user in self.get_many(user_ids) if user.is_active}

    def lock_for_scheduling(self, user_ids: Iterable[str]) -> List[User]:
        """
        Row-lock the given users until the transaction ends.

        Booking writes that depend on a teacher's day (capacity, conflicts)
        take this lock first, so concurrent writers for the same teacher
        serialize. Ids are locked in sorted order. SQLite has no row locks
        and ignores the clause.
        """
        ids = sorted({user_id for user_id in user_ids if user_id})
        if not ids:
            return []
        try:
            return (
                self.db.query(User)
                .filter(User.id.in_(ids))
                .order_by(User.id)
                .with_for_update()
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking users {ids}: {str(e)}")
            raise RepositoryException(f"Failed to lock users: {str(e)}")
