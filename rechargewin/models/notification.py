"""Durable outbound notification queue."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, or_, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from .base import ID_TYPE, Base
from .draw import NotificationStatus


class NotificationJob(Base):
    """One SMS waiting for, or already through, the outbound dispatcher."""

    __tablename__ = "notification_jobs"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    correlation_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    """Caller-supplied idempotency key; for winners ``"{draw_id}-{rank}-{slot}"``."""

    winner_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("draw_winners.id", ondelete="SET NULL"), nullable=True
    )
    msisdn: Mapped[str] = mapped_column(String(15), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=NotificationStatus.PENDING, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gateway: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    """Gateway that accepted the message, or the last one tried."""

    message_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __init__(
        self,
        *,
        correlation_id: str,
        msisdn: str,
        body: str,
        winner_id: Optional[int] = None,
    ) -> None:
        self.correlation_id = correlation_id
        self.msisdn = msisdn
        self.body = body
        self.winner_id = winner_id
        self.status = NotificationStatus.PENDING
        self.attempts = 0

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<NotificationJob(id={self.id}, correlation_id='{self.correlation_id}', "
            f"status={self.status}, attempts={self.attempts})>"
        )

    @classmethod
    def get_by_correlation_id(
        cls, session: Session, correlation_id: str
    ) -> Optional["NotificationJob"]:
        return session.scalar(select(cls).where(cls.correlation_id == correlation_id))

    @classmethod
    def due(cls, session: Session, *, max_attempts: int, limit: int) -> list["NotificationJob"]:
        """Return pending jobs and failed jobs that still have attempts left."""

        stmt = (
            select(cls)
            .where(
                or_(
                    cls.status == NotificationStatus.PENDING,
                    (cls.status == NotificationStatus.FAILED)
                    & (cls.attempts < max_attempts),
                )
            )
            .order_by(cls.id)
            .limit(limit)
        )
        return list(session.scalars(stmt))


__all__ = ["NotificationJob"]
