"""SQLAlchemy ORM models for the point-of-sale bridge."""

from backend.models.base import Base
from backend.models.legacy import (
    LegacyArticle,
    LegacyStockMovement,
    LegacyTicket,
    LegacyTicketLine,
)
from backend.models.selection import SelectedFolder
from backend.models.sync import SyncStatus

__all__ = [
    "Base",
    "LegacyArticle",
    "LegacyStockMovement",
    "LegacyTicket",
    "LegacyTicketLine",
    "SelectedFolder",
    "SyncStatus",
]
