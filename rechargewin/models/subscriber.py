"""Subscriber registry model."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .topup import TopUp


class Subscriber(Base):
    """A mobile subscriber known to the promotion, keyed by MSISDN."""

    __tablename__ = "subscribers"

    msisdn: Mapped[str] = mapped_column(String(15), primary_key=True)
    """Normalized international MSISDN (digits only)."""

    last_digit: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    """Trailing decimal digit of ``msisdn``; matched against a draw's eligible digits."""

    opt_in_status: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True
    )
    """Current consent to participate in the promotion."""

    opt_in_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    """Time of the most recent opt-in."""

    opt_out_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    """Time of the most recent opt-out."""

    opt_in_channel: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    """Channel the latest opt-in arrived on (SMS, USSD, WEB...)."""

    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Accumulated points; only top-ups raise it and only an admin reset lowers it."""

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    """Optimistic lock counter bumped on every update."""

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

    topups: Mapped[list["TopUp"]] = relationship(
        back_populates="subscriber", order_by="TopUp.timestamp"
    )
    opt_in_periods: Mapped[list["OptInPeriod"]] = relationship(
        back_populates="subscriber", order_by="OptInPeriod.opted_in_at"
    )

    __mapper_args__ = {"version_id_col": version}

    def __init__(
        self,
        msisdn: str,
        *,
        opt_in_status: bool = False,
        opt_in_date: Optional[datetime] = None,
        opt_out_date: Optional[datetime] = None,
        opt_in_channel: Optional[str] = None,
        points: int = 0,
        created_at: Optional[datetime] = None,
    ) -> None:
        """Create a subscriber record.

        Parameters
        ----------
        msisdn : str
            Already-normalized MSISDN. ``last_digit`` is derived from it.
        opt_in_status : bool, default: False
            Initial consent flag. Subscribers created by a top-up start opted out.
        opt_in_date, opt_out_date : Optional[datetime]
            Timestamps of the latest opt-in / opt-out.
        opt_in_channel : Optional[str]
            Channel of the latest opt-in.
        points : int, default: 0
            Starting point balance.
        created_at : Optional[datetime]
            Explicit creation timestamp.
        """
        if not msisdn or not msisdn[-1].isdigit():
            raise ValueError("msisdn must end with a decimal digit")
        self.msisdn = msisdn
        self.last_digit = int(msisdn[-1])
        self.opt_in_status = opt_in_status
        self.opt_in_date = opt_in_date
        self.opt_out_date = opt_out_date
        self.opt_in_channel = opt_in_channel
        self.points = points
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<Subscriber(msisdn='{self.msisdn}', opt_in_status={self.opt_in_status}, "
            f"points={self.points})>"
        )

    @classmethod
    def get_by_msisdn(cls, session: Session, msisdn: str) -> Optional["Subscriber"]:
        """Retrieve a subscriber by normalized MSISDN."""

        return session.get(cls, msisdn)

    @classmethod
    def get_opted_in(cls, session: Session) -> list["Subscriber"]:
        """Return every currently opted-in subscriber ordered by MSISDN."""

        stmt = select(cls).where(cls.opt_in_status.is_(True)).order_by(cls.msisdn)
        return list(session.scalars(stmt))


class OptInPeriod(Base):
    """One uninterrupted span of consent, closed by the matching opt-out."""

    __tablename__ = "opt_in_periods"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    msisdn: Mapped[str] = mapped_column(
        String(15), ForeignKey("subscribers.msisdn"), nullable=False
    )
    opted_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    opted_out_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    """``None`` while the period is still open."""

    channel: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    subscriber: Mapped["Subscriber"] = relationship(back_populates="opt_in_periods")

    __table_args__ = (
        Index("ix_opt_in_periods_msisdn_opted_in_at", "msisdn", "opted_in_at"),
    )

    def __init__(
        self,
        *,
        opted_in_at: datetime,
        opted_out_at: Optional[datetime] = None,
        channel: Optional[str] = None,
        msisdn: Optional[str] = None,
    ) -> None:
        if msisdn is not None:
            self.msisdn = msisdn
        self.opted_in_at = opted_in_at
        self.opted_out_at = opted_out_at
        self.channel = channel

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<OptInPeriod(msisdn='{self.msisdn}', opted_in_at={self.opted_in_at}, "
            f"opted_out_at={self.opted_out_at})>"
        )

    @classmethod
    def covering(cls, at: datetime):
        """SQL condition: the period was open at instant ``at``."""

        return (cls.opted_in_at < at) & (
            (cls.opted_out_at.is_(None)) | (cls.opted_out_at >= at)
        )


__all__ = ["OptInPeriod", "Subscriber"]
