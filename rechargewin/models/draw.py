"""Database models for scheduled and executed draws."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
    select,
    text,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..errors import ImmutableDrawError
from .base import ID_TYPE, Base


class DrawStatus:
    """Lifecycle states of a :class:`Draw`."""

    SCHEDULED = "SCHEDULED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    ALL = (SCHEDULED, RUNNING, COMPLETED, FAILED)


class DrawType:
    DAILY = "DAILY"
    SATURDAY = "SATURDAY"

    ALL = (DAILY, SATURDAY)


class NotificationStatus:
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"

    ALL = (PENDING, SENT, FAILED)


class Draw(Base):
    """A prize draw for one (date, type), from scheduling through completion."""

    __tablename__ = "draws"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key; a retried draw always receives a new id."""

    draw_date: Mapped[date] = mapped_column(Date, nullable=False)
    draw_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DrawStatus.SCHEDULED
    )
    """One of :class:`DrawStatus`; mutated only through compare-and-swap updates."""

    eligible_digits: Mapped[list[int]] = mapped_column(JSON, nullable=False)
    """Sorted trailing digits that may win this draw."""

    lookback_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    """Length of the qualifying top-up window ending at the close of ``draw_date``."""

    prize_structure: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    """Prizes as ``{rank, name, amount, quantity}`` dicts in ascending rank order."""

    seed: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    """PRNG seed recorded when the draw started running; replaying it reproduces winners."""

    candidate_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    window_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    window_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    unawarded: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    """Prize slots left empty because the candidate pool ran out."""

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_of_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="SET NULL"), nullable=True
    )
    """Failed draw this one re-schedules, if any."""

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
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    executed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    winners: Mapped[list["DrawWinner"]] = relationship(
        back_populates="draw",
        order_by="DrawWinner.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        # Failed draws stay for audit, so uniqueness only covers live draws.
        Index(
            "uq_draws_date_type_active",
            "draw_date",
            "draw_type",
            unique=True,
            sqlite_where=text("status != 'FAILED'"),
            postgresql_where=text("status != 'FAILED'"),
        ),
        Index("ix_draws_status", "status"),
    )

    def __init__(
        self,
        *,
        draw_date: date,
        draw_type: str,
        eligible_digits: list[int],
        lookback_seconds: int,
        prize_structure: list[dict[str, Any]],
        status: str = DrawStatus.SCHEDULED,
        retry_of_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.draw_date = draw_date
        self.draw_type = draw_type
        self.eligible_digits = eligible_digits
        self.lookback_seconds = lookback_seconds
        self.prize_structure = prize_structure
        self.status = status
        self.retry_of_id = retry_of_id
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Draw(id={id}, date={date}, type={type}, status={status})>".format(
            id=self.id,
            date=self.draw_date,
            type=self.draw_type,
            status=self.status,
        )

    @property
    def total_prize_slots(self) -> int:
        return sum(int(prize["quantity"]) for prize in self.prize_structure)

    @classmethod
    def get_active(
        cls, session: Session, draw_date: date, draw_type: str
    ) -> Optional["Draw"]:
        """Return the non-failed draw for (``draw_date``, ``draw_type``) if any."""

        stmt = select(cls).where(
            cls.draw_date == draw_date,
            cls.draw_type == draw_type,
            cls.status != DrawStatus.FAILED,
        )
        return session.scalar(stmt)


class DrawWinner(Base):
    """One awarded prize slot of a completed draw."""

    __tablename__ = "draw_winners"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    """1-based position in the draw's ordered winner list."""

    msisdn: Mapped[str] = mapped_column(String(15), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    prize_name: Mapped[str] = mapped_column(String(100), nullable=False)
    prize_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    picked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notification_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=NotificationStatus.PENDING
    )
    notification_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notification_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    draw: Mapped["Draw"] = relationship(back_populates="winners")

    __table_args__ = (
        UniqueConstraint("draw_id", "msisdn", name="uq_draw_winners_draw_msisdn"),
        UniqueConstraint("draw_id", "position", name="uq_draw_winners_draw_position"),
    )

    def __init__(
        self,
        *,
        position: int,
        msisdn: str,
        rank: int,
        prize_name: str,
        prize_amount: int,
        picked_at: datetime,
        draw_id: Optional[int] = None,
        notification_status: str = NotificationStatus.PENDING,
    ) -> None:
        if draw_id is not None:
            self.draw_id = draw_id
        self.position = position
        self.msisdn = msisdn
        self.rank = rank
        self.prize_name = prize_name
        self.prize_amount = prize_amount
        self.picked_at = picked_at
        self.notification_status = notification_status

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<DrawWinner(draw_id={self.draw_id}, position={self.position}, "
            f"rank={self.rank}, notification_status={self.notification_status})>"
        )


# Columns that may never change once a draw is COMPLETED. Notification fields
# on winners stay writable so the dispatcher can report delivery outcomes.
_FROZEN_DRAW_FIELDS = (
    "status",
    "seed",
    "draw_date",
    "draw_type",
    "eligible_digits",
    "prize_structure",
    "lookback_seconds",
    "candidate_count",
    "window_start",
    "window_end",
    "unawarded",
    "executed_at",
    "winners",
)
_FROZEN_WINNER_FIELDS = (
    "draw_id",
    "position",
    "msisdn",
    "rank",
    "prize_name",
    "prize_amount",
    "picked_at",
)


def _persisted_status(draw: Draw) -> Optional[str]:
    """Return the status ``draw`` had when it was loaded, ignoring pending edits."""

    history = inspect(draw).attrs.status.history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def _owning_draw(session: Session, winner: DrawWinner) -> Optional[Draw]:
    state = inspect(winner)
    if "draw" not in state.unloaded:
        return winner.draw
    if winner.draw_id is None:
        return None
    return session.get(Draw, winner.draw_id)


@event.listens_for(Session, "before_flush")
def _guard_completed_draws(session: Session, flush_context, instances) -> None:
    """Reject flushes that rewrite the frozen state of a completed draw."""

    for obj in session.dirty:
        if isinstance(obj, Draw):
            if _persisted_status(obj) != DrawStatus.COMPLETED:
                continue
            state = inspect(obj)
            changed = [
                name for name in _FROZEN_DRAW_FIELDS if state.attrs[name].history.has_changes()
            ]
            if changed:
                raise ImmutableDrawError(
                    f"Draw {obj.id} is completed; cannot modify {', '.join(changed)}"
                )
        elif isinstance(obj, DrawWinner):
            draw = _owning_draw(session, obj)
            if draw is None or _persisted_status(draw) != DrawStatus.COMPLETED:
                continue
            state = inspect(obj)
            changed = [
                name
                for name in _FROZEN_WINNER_FIELDS
                if state.attrs[name].history.has_changes()
            ]
            if changed:
                raise ImmutableDrawError(
                    f"Winners of completed draw {draw.id} are frozen; "
                    f"cannot modify {', '.join(changed)}"
                )

    for obj in session.new:
        if isinstance(obj, DrawWinner):
            draw = _owning_draw(session, obj)
            if draw is not None and _persisted_status(draw) == DrawStatus.COMPLETED:
                raise ImmutableDrawError(
                    f"Cannot add winners to completed draw {draw.id}"
                )

    for obj in session.deleted:
        if isinstance(obj, Draw) and _persisted_status(obj) == DrawStatus.COMPLETED:
            raise ImmutableDrawError(f"Cannot delete completed draw {obj.id}")
        if isinstance(obj, DrawWinner):
            draw = _owning_draw(session, obj)
            if draw is not None and _persisted_status(draw) == DrawStatus.COMPLETED:
                raise ImmutableDrawError(
                    f"Cannot remove winners from completed draw {draw.id}"
                )


__all__ = [
    "Draw",
    "DrawStatus",
    "DrawType",
    "DrawWinner",
    "NotificationStatus",
]
