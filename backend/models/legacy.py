"""Central-store copies of legacy point-of-sale tables."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.legacy.encoding import to_minor_units, to_number
from backend.models.base import Base
from backend.services.datetime_service import parse_legacy_datetime

if TYPE_CHECKING:
    from backend.legacy.base import Row


class LegacyRecordMixin:
    """Source tagging shared by every synced legacy table."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_file_hash: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    source_folder: Mapped[str] = mapped_column(Text, nullable=False)
    sync_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    quarter: Mapped[str | None] = mapped_column(String(8), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    @classmethod
    def key_columns(cls, row: Row) -> dict[str, Any]:
        raise NotImplementedError


class LegacyArticle(LegacyRecordMixin, Base):
    __tablename__ = "article"

    code: Mapped[str] = mapped_column(Text, nullable=False)
    libelle: Mapped[str] = mapped_column(Text, nullable=False, default="")
    code_fam: Mapped[str] = mapped_column(Text, nullable=False, default="")
    base_ttc: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("idx_article_code", "code"),)

    @classmethod
    def key_columns(cls, row: Row) -> dict[str, Any]:
        return {
            "code": row.get("Code", ""),
            "libelle": row.get("Libelle", ""),
            "code_fam": row.get("CodeFam", ""),
            "base_ttc": to_minor_units(row.get("BaseTTC")),
        }


class LegacyStockMovement(LegacyRecordMixin, Base):
    __tablename__ = "mouvementstock"

    code_article: Mapped[str] = mapped_column(Text, nullable=False)
    quantite: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    __table_args__ = (Index("idx_mouvementstock_code_article", "code_article"),)

    @classmethod
    def key_columns(cls, row: Row) -> dict[str, Any]:
        return {
            "code_article": row.get("CodeArticle", ""),
            "quantite": to_number(row.get("Quantite")),
        }


class LegacyTicket(LegacyRecordMixin, Base):
    __tablename__ = "ticket"

    legacy_id: Mapped[str] = mapped_column(Text, nullable=False)
    date_doc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @classmethod
    def key_columns(cls, row: Row) -> dict[str, Any]:
        return {
            "legacy_id": row.get("Id", ""),
            "date_doc": parse_legacy_datetime(row.get("DateDoc")),
        }


class LegacyTicketLine(LegacyRecordMixin, Base):
    __tablename__ = "ticketligne"

    code_doc: Mapped[str] = mapped_column(Text, nullable=False)
    designation: Mapped[str] = mapped_column(Text, nullable=False, default="")
    qte: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    __table_args__ = (Index("idx_ticketligne_code_doc", "code_doc"),)

    @classmethod
    def key_columns(cls, row: Row) -> dict[str, Any]:
        return {
            "code_doc": row.get("CodeDoc", ""),
            "designation": row.get("Designation", ""),
            "qte": to_number(row.get("Qte")),
        }


# Legacy table name -> central model, in ingestion order.
LEGACY_TABLES: dict[str, type[LegacyRecordMixin]] = {
    "Article": LegacyArticle,
    "Mouvementstock": LegacyStockMovement,
    "Ticket": LegacyTicket,
    "TicketLigne": LegacyTicketLine,
}
