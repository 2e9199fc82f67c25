"""Top-up ledger models."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .subscriber import Subscriber


class TopUp(Base):
    """Immutable record of one airtime recharge event."""

    __tablename__ = "topups"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    msisdn: Mapped[str] = mapped_column(
        String(15), ForeignKey("subscribers.msisdn"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    awarded_points: Mapped[int] = mapped_column(Integer, nullable=False)
    """Points frozen from the point rules in force when the top-up was written."""

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    """Event time reported by the operator, not ingest time."""

    provider_txn_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    channel: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    subscriber: Mapped["Subscriber"] = relationship(back_populates="topups")

    __table_args__ = (Index("ix_topups_msisdn_timestamp", "msisdn", "timestamp"),)

    def __init__(
        self,
        *,
        msisdn: str,
        amount: Decimal,
        awarded_points: int,
        timestamp: datetime,
        provider_txn_id: Optional[str] = None,
        channel: Optional[str] = None,
        recorded_at: Optional[datetime] = None,
    ) -> None:
        self.msisdn = msisdn
        self.amount = amount
        self.awarded_points = awarded_points
        self.timestamp = timestamp
        self.provider_txn_id = provider_txn_id
        self.channel = channel
        if recorded_at is not None:
            self.recorded_at = recorded_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<TopUp(id={id}, msisdn={msisdn}, amount={amount}, points={points})>".format(
            id=self.id,
            msisdn=self.msisdn,
            amount=self.amount,
            points=self.awarded_points,
        )

    @classmethod
    def for_msisdn(cls, session: Session, msisdn: str) -> list["TopUp"]:
        """Return every top-up of ``msisdn`` in event-time order."""

        stmt = select(cls).where(cls.msisdn == msisdn).order_by(cls.timestamp, cls.id)
        return list(session.scalars(stmt))


class BlacklistEntry(Base):
    """An MSISDN barred from winning any draw."""

    __tablename__ = "blacklist"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    msisdn: Mapped[str] = mapped_column(String(15), nullable=False, unique=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __init__(
        self,
        *,
        msisdn: str,
        reason: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> None:
        self.msisdn = msisdn
        self.reason = reason
        self.created_by = created_by

    @classmethod
    def get_by_msisdn(cls, session: Session, msisdn: str) -> Optional["BlacklistEntry"]:
        return session.scalar(select(cls).where(cls.msisdn == msisdn))


__all__ = ["BlacklistEntry", "TopUp"]
