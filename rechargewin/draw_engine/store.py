"""Persistent record of scheduled and executed draws."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload, sessionmaker

from ..db.utils import as_utc, session_scope, utcnow
from ..errors import (
    DrawNotFound,
    DuplicateDraw,
    InvalidDrawConfig,
    InvalidInput,
    InvalidState,
)
from ..models import Draw, DrawStatus, DrawType, DrawWinner, NotificationStatus
from .digits import validate_digits
from .eligibility import DEFAULT_LOOKBACK
from .picker import PickedWinner
from .prizes import Prize, parse_prize_structure

logger = logging.getLogger(__name__)

LEGAL_TRANSITIONS = frozenset(
    {
        (DrawStatus.SCHEDULED, DrawStatus.RUNNING),
        (DrawStatus.RUNNING, DrawStatus.COMPLETED),
        (DrawStatus.RUNNING, DrawStatus.FAILED),
    }
)


def _validate_schedule(
    draw_date: date,
    draw_type: str,
    eligible_digits: Iterable[int],
    prize_structure: Iterable[Prize | Mapping[str, Any]],
    lookback: Optional[timedelta],
    default_lookback: Mapping[str, timedelta],
) -> tuple[list[int], list[dict[str, Any]], int]:
    if isinstance(draw_date, datetime) or not isinstance(draw_date, date):
        raise InvalidDrawConfig("draw_date must be a date")
    if draw_type not in DrawType.ALL:
        raise InvalidDrawConfig(f"draw_type must be one of {', '.join(DrawType.ALL)}")
    try:
        digits = validate_digits(eligible_digits)
    except InvalidInput as exc:
        raise InvalidDrawConfig(str(exc)) from exc
    if not digits:
        raise InvalidDrawConfig("eligible digits must not be empty")
    prizes = parse_prize_structure(prize_structure)
    window = lookback if lookback is not None else default_lookback[draw_type]
    if not isinstance(window, timedelta) or window <= timedelta(0):
        raise InvalidDrawConfig("lookback must be a positive timedelta")
    return sorted(digits), [prize.to_dict() for prize in prizes], int(window.total_seconds())


class DrawStore:
    """Repository over :class:`~rechargewin.models.Draw` and its winners.

    Status changes go through compare-and-swap ``UPDATE ... WHERE status =
    :expected`` statements; the affected row count tells the caller whether
    it won.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        default_lookback: Optional[Mapping[str, timedelta]] = None,
    ) -> None:
        self._session_factory = session_factory
        self._default_lookback = dict(DEFAULT_LOOKBACK)
        if default_lookback:
            self._default_lookback.update(default_lookback)

    @property
    def session_factory(self) -> sessionmaker:
        return self._session_factory

    @property
    def default_lookback(self) -> Mapping[str, timedelta]:
        return dict(self._default_lookback)

    # -------- scheduling --------
    def schedule(
        self,
        draw_date: date,
        draw_type: str,
        eligible_digits: Iterable[int],
        prize_structure: Sequence[Prize | Mapping[str, Any]],
        lookback: Optional[timedelta] = None,
        retry_of_id: Optional[int] = None,
    ) -> Draw:
        """Create a SCHEDULED draw.

        Parameters
        ----------
        draw_date : date
            Calendar day the draw covers.
        draw_type : str
            ``"DAILY"`` or ``"SATURDAY"``.
        eligible_digits : Iterable[int]
            Trailing digits that may win; must not be empty.
        prize_structure : Sequence[Prize | Mapping]
            Prizes to award, as :class:`Prize` objects or dicts.
        lookback : Optional[timedelta], default: None
            Qualifying window length; defaults per draw type.
        retry_of_id : Optional[int], default: None
            Failed draw this one replaces.

        Raises
        ------
        InvalidDrawConfig
            If any argument fails validation.
        DuplicateDraw
            If a non-failed draw already exists for (``draw_date``, ``draw_type``).
        """

        digits, prizes, lookback_seconds = _validate_schedule(
            draw_date,
            draw_type,
            eligible_digits,
            prize_structure,
            lookback,
            self._default_lookback,
        )
        try:
            with session_scope(self._session_factory) as session:
                if Draw.get_active(session, draw_date, draw_type) is not None:
                    raise DuplicateDraw(f"A {draw_type} draw already exists for {draw_date}")
                draw = Draw(
                    draw_date=draw_date,
                    draw_type=draw_type,
                    eligible_digits=digits,
                    lookback_seconds=lookback_seconds,
                    prize_structure=prizes,
                    retry_of_id=retry_of_id,
                )
                session.add(draw)
                session.flush()
                draw.winners  # loaded empty so the detached draw is complete
        except IntegrityError as exc:
            raise DuplicateDraw(f"A {draw_type} draw already exists for {draw_date}") from exc
        logger.info(f"Scheduled {draw_type} draw {draw.id} for {draw_date} digits={digits}")
        return draw

    def reschedule(self, failed_draw_id: int) -> Draw:
        """Schedule a fresh draw with the configuration of a FAILED one."""

        failed = self.get_by_id(failed_draw_id)
        if failed.status != DrawStatus.FAILED:
            raise InvalidState(
                f"Draw {failed_draw_id} is {failed.status}; only FAILED draws can be re-scheduled"
            )
        return self.schedule(
            failed.draw_date,
            failed.draw_type,
            failed.eligible_digits,
            failed.prize_structure,
            lookback=timedelta(seconds=failed.lookback_seconds),
            retry_of_id=failed.id,
        )

    # -------- reads --------
    def get_by_id(self, draw_id: int) -> Draw:
        with session_scope(self._session_factory) as session:
            draw = session.scalar(
                select(Draw).options(selectinload(Draw.winners)).where(Draw.id == draw_id)
            )
        if draw is None:
            raise DrawNotFound(f"Draw {draw_id} not found")
        return draw

    def get_by_date(self, draw_date: date, draw_type: Optional[str] = None) -> list[Draw]:
        """Return every draw (failed ones included) for ``draw_date``, oldest first."""

        stmt = (
            select(Draw)
            .options(selectinload(Draw.winners))
            .where(Draw.draw_date == draw_date)
            .order_by(Draw.id)
        )
        if draw_type is not None:
            stmt = stmt.where(Draw.draw_type == draw_type)
        with session_scope(self._session_factory) as session:
            return list(session.scalars(stmt))

    def list_by_status(self, status: str) -> list[Draw]:
        if status not in DrawStatus.ALL:
            raise InvalidInput(f"Unknown draw status {status!r}")
        stmt = (
            select(Draw)
            .options(selectinload(Draw.winners))
            .where(Draw.status == status)
            .order_by(Draw.draw_date, Draw.id)
        )
        with session_scope(self._session_factory) as session:
            return list(session.scalars(stmt))

    def count(self, status: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(Draw)
        if status is not None:
            stmt = stmt.where(Draw.status == status)
        with session_scope(self._session_factory) as session:
            return int(session.scalar(stmt) or 0)

    def winners_with_status(self, draw_id: int, status: str) -> list[DrawWinner]:
        stmt = (
            select(DrawWinner)
            .where(DrawWinner.draw_id == draw_id, DrawWinner.notification_status == status)
            .order_by(DrawWinner.position)
        )
        with session_scope(self._session_factory) as session:
            return list(session.scalars(stmt))

    # -------- state transitions --------
    def transition_status(
        self,
        draw_id: int,
        expected: str,
        target: str,
        *,
        error_message: Optional[str] = None,
    ) -> bool:
        """Move ``draw_id`` from ``expected`` to ``target`` if it is still ``expected``.

        Returns
        -------
        bool
            ``True`` when this call performed the transition, ``False`` when
            the draw was no longer in ``expected``.

        Raises
        ------
        InvalidState
            If (``expected``, ``target``) is not a legal transition.
        DrawNotFound
            If the draw does not exist.
        """

        if (expected, target) not in LEGAL_TRANSITIONS:
            raise InvalidState(f"Illegal draw transition {expected} -> {target}")

        now = utcnow()
        values: dict[str, Any] = {"status": target, "updated_at": now}
        if target == DrawStatus.RUNNING:
            values["started_at"] = now
        if target == DrawStatus.FAILED:
            values["error_message"] = error_message
        stmt = (
            update(Draw)
            .where(Draw.id == draw_id, Draw.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with session_scope(self._session_factory) as session:
            result = session.execute(stmt)
            if result.rowcount == 1:
                logger.info(f"Draw {draw_id}: {expected} -> {target}")
                return True
            if session.get(Draw, draw_id) is None:
                raise DrawNotFound(f"Draw {draw_id} not found")
        logger.info(f"Draw {draw_id}: transition {expected} -> {target} lost (status changed)")
        return False

    def record_seed(self, draw_id: int, seed: int) -> None:
        """Persist the PRNG seed of a RUNNING draw that has none yet."""

        stmt = (
            update(Draw)
            .where(Draw.id == draw_id, Draw.status == DrawStatus.RUNNING, Draw.seed.is_(None))
            .values(seed=seed, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        with session_scope(self._session_factory) as session:
            if session.execute(stmt).rowcount == 1:
                return
            draw = session.get(Draw, draw_id)
            if draw is None:
                raise DrawNotFound(f"Draw {draw_id} not found")
            raise InvalidState(
                f"Cannot record seed on draw {draw_id} (status={draw.status}, "
                f"seed {'set' if draw.seed is not None else 'unset'})"
            )

    def record_completion(
        self,
        draw_id: int,
        winners: Sequence[PickedWinner],
        seed: int,
        executed_at: datetime,
        *,
        candidate_count: int,
        window_start: datetime,
        window_end: datetime,
        unawarded: Sequence[Mapping[str, Any]] = (),
    ) -> Draw:
        """Write winners and flip RUNNING -> COMPLETED in one transaction.

        Either every winner row and the COMPLETED status are committed, or
        nothing is.

        Raises
        ------
        InvalidState
            If the draw is not RUNNING, its recorded seed differs from
            ``seed`` or the winner rows violate a uniqueness constraint.
        """

        try:
            with session_scope(self._session_factory) as session:
                draw = session.get(Draw, draw_id)
                if draw is None:
                    raise DrawNotFound(f"Draw {draw_id} not found")
                if draw.status != DrawStatus.RUNNING:
                    raise InvalidState(f"Draw {draw_id} is {draw.status}, expected RUNNING")
                if draw.seed is not None and draw.seed != seed:
                    raise InvalidState(f"Draw {draw_id} was started with a different seed")

                for winner in winners:
                    session.add(
                        DrawWinner(
                            draw_id=draw_id,
                            position=winner.position,
                            msisdn=winner.msisdn,
                            rank=winner.rank,
                            prize_name=winner.prize_name,
                            prize_amount=winner.prize_amount,
                            picked_at=as_utc(winner.picked_at),
                        )
                    )
                session.flush()

                result = session.execute(
                    update(Draw)
                    .where(Draw.id == draw_id, Draw.status == DrawStatus.RUNNING)
                    .values(
                        status=DrawStatus.COMPLETED,
                        seed=seed,
                        executed_at=as_utc(executed_at),
                        candidate_count=candidate_count,
                        window_start=as_utc(window_start),
                        window_end=as_utc(window_end),
                        unawarded=[dict(item) for item in unawarded],
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise InvalidState(f"Draw {draw_id} left RUNNING before completion")
        except IntegrityError as exc:
            raise InvalidState(f"Winners of draw {draw_id} violate a constraint: {exc}") from exc

        logger.info(f"Draw {draw_id} completed with {len(winners)} winners")
        return self.get_by_id(draw_id)

    def mark_failed(self, draw_id: int, error_message: str) -> bool:
        """RUNNING -> FAILED, keeping ``error_message`` for audit."""

        failed = self.transition_status(
            draw_id,
            DrawStatus.RUNNING,
            DrawStatus.FAILED,
            error_message=(error_message or "")[:2000],
        )
        if failed:
            logger.warning(f"Draw {draw_id} failed: {error_message}")
        return failed

    def update_notification_status(
        self, winner_id: int, status: str, error: Optional[str] = None
    ) -> DrawWinner:
        """Record a notification outcome on a winner."""

        if status not in NotificationStatus.ALL:
            raise InvalidInput(f"Unknown notification status {status!r}")
        with session_scope(self._session_factory) as session:
            winner = session.get(DrawWinner, winner_id)
            if winner is None:
                raise InvalidInput(f"Winner {winner_id} not found")
            winner.notification_status = status
            winner.notification_error = error
            winner.notification_updated_at = utcnow()
        return winner


__all__ = ["DrawStore", "LEGAL_TRANSITIONS"]
