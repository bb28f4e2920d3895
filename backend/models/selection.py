"""Selected point-of-sale folder."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base


class SelectedFolder(Base):
    """The folder the application currently works on, stored under a named slot."""

    __tablename__ = "selected_folder"

    slot: Mapped[str] = mapped_column(String(32), primary_key=True)
    folder_name: Mapped[str] = mapped_column(Text, nullable=False)
    folder_path: Mapped[str] = mapped_column(Text, nullable=False)
    access_file_path: Mapped[str] = mapped_column(Text, nullable=False)
    stored_file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    method: Mapped[str] = mapped_column(String(16), nullable=False)
    quarter: Mapped[str] = mapped_column(Text, nullable=False)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    article_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    selected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
