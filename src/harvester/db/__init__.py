"""
Persistence for scraping results.
"""

from .repository import (
    DatabaseConnectionError,
    DatabaseError,
    DatabaseLockError,
    ResultsDatabase,
)

__all__ = [
    "DatabaseConnectionError",
    "DatabaseError",
    "DatabaseLockError",
    "ResultsDatabase",
]
