# backend/sessionbook/api/dependencies/__init__.py
"""
FastAPI dependencies for the session booking API.
"""

from .auth import get_current_user
from .database import get_db
from .services import get_availability_service, get_booking_service, get_directory_service

__all__ = [
    "get_availability_service",
    "get_booking_service",
    "get_current_user",
    "get_db",
    "get_directory_service",
]
