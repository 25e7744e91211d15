"""
Repository layer for the booking engine.

Repositories encapsulate data access; services own transactions.
"""

from .base_repository import BaseRepository
from .event_outbox_repository import EventOutboxRepository
from .factory import RepositoryFactory
from .program_repository import ProgramRepository
from .session_repository import SessionRepository
from .user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "EventOutboxRepository",
    "ProgramRepository",
    "RepositoryFactory",
    "SessionRepository",
    "UserRepository",
]
