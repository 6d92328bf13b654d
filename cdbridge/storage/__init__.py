"""
Storage and database module.
"""
from .models import Base, InstallationMapping, SetupIntent
from .database import DatabaseManager

__all__ = [
    "Base",
    "InstallationMapping",
    "SetupIntent",
    "DatabaseManager",
]
