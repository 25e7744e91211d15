# backend/sessionbook/api/dependencies/services.py
"""
Service dependencies.

One request shares one database session across every service it touches.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.availability_service import AvailabilityService
from ...services.booking_service import SessionBookingService
from ...services.directory_service import DirectoryService
from .database import get_db


def get_directory_service(db: Session = Depends(get_db)) -> DirectoryService:
    return DirectoryService(db)


def get_availability_service(
    db: Session = Depends(get_db),
    directory: DirectoryService = Depends(get_directory_service),
) -> AvailabilityService:
    return AvailabilityService(db, directory=directory)


def get_booking_service(
    db: Session = Depends(get_db),
    directory: DirectoryService = Depends(get_directory_service),
) -> SessionBookingService:
    return SessionBookingService(db, directory=directory)
