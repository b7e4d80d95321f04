"""
SQLAlchemy Models

Defines the database schema for the admission controller's sliding-window
records. Nothing else in the service is persisted by this package.
"""

from __future__ import annotations

from datetime import datetime
from typing import List

from sqlalchemy import (
    DateTime,
    Index,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Rate Window Model (Admission Control)
# ---------------------------------------------------------------------

class RateWindow(Base):
    """
    Request timestamps for one (identity, action) pair.

    `requests` holds epoch-millisecond timestamps in insertion order, capped
    at the action's request limit. `last_request_at` is the secondary index
    used by the periodic sweep.
    """
    __tablename__ = "rate_window"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    identity: Mapped[str] = mapped_column(String(191), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    requests: Mapped[List[int]] = mapped_column(JSONB, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    last_request_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_rate_window_last_request", "last_request_at"),
    )
