"""Candidate pool selection for a draw."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import exists, func, select
from sqlalchemy.orm import sessionmaker

from ..db.utils import as_utc, session_scope
from ..errors import ConfigError, InvalidDrawConfig, InvalidInput
from ..models import BlacklistEntry, DrawType, OptInPeriod, Subscriber, TopUp
from .digits import validate_digits

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = {
    DrawType.DAILY: timedelta(days=1),
    DrawType.SATURDAY: timedelta(days=7),
}


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Return the tzinfo for an IANA zone name; ``None`` and ``"UTC"`` give UTC."""

    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown time zone {name!r}") from exc


def draw_window(
    draw_date: date, lookback: timedelta, tz: tzinfo = timezone.utc
) -> tuple[datetime, datetime]:
    """Return the half-open UTC window ``[start, end)`` for a draw.

    ``end`` is the local midnight following ``draw_date`` in ``tz``;
    ``start`` is ``end - lookback``.
    """

    if lookback <= timedelta(0):
        raise InvalidDrawConfig("lookback window must be positive")
    local_end = datetime.combine(draw_date + timedelta(days=1), time.min, tzinfo=tz)
    end = local_end.astimezone(timezone.utc)
    return end - lookback, end


@dataclass
class CandidatePool:
    """Qualifying subscribers of one draw.

    Attributes
    ----------
    window_start, window_end : datetime
        UTC bounds of the qualifying top-up window (end exclusive).
    candidates : dict[str, int]
        MSISDN to the number of qualifying top-ups in the window.
    """

    window_start: datetime
    window_end: datetime
    candidates: dict[str, int] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.candidates)

    def __bool__(self) -> bool:
        return bool(self.candidates)


class EligibilitySelector:
    """Reads subscribers and top-ups to build a draw's candidate pool."""

    def __init__(self, session_factory: sessionmaker, tz: tzinfo = timezone.utc) -> None:
        self._session_factory = session_factory
        self._tz = tz

    def select(
        self,
        draw_date: date,
        eligible_digits: Iterable[int],
        lookback: timedelta,
        *,
        tz: Optional[tzinfo] = None,
    ) -> CandidatePool:
        """Return every subscriber that may win a draw on ``draw_date``.

        A candidate has an opt-in period covering the end of the window, a
        trailing digit in ``eligible_digits``, no blacklist entry and at least
        one point-earning top-up inside the window.

        Raises
        ------
        InvalidDrawConfig
            If ``eligible_digits`` is empty or contains values outside 0-9.
        """

        try:
            digits = validate_digits(eligible_digits)
        except InvalidInput as exc:
            raise InvalidDrawConfig(str(exc)) from exc
        if not digits:
            raise InvalidDrawConfig("eligible digits must not be empty")

        start, end = draw_window(draw_date, lookback, tz or self._tz)
        opted_in_at_end = exists().where(
            OptInPeriod.msisdn == Subscriber.msisdn, OptInPeriod.covering(end)
        )
        blacklisted = exists().where(BlacklistEntry.msisdn == Subscriber.msisdn)
        stmt = (
            select(Subscriber.msisdn, func.count(TopUp.id))
            .join(TopUp, TopUp.msisdn == Subscriber.msisdn)
            .where(
                opted_in_at_end,
                Subscriber.last_digit.in_(sorted(digits)),
                TopUp.timestamp >= start,
                TopUp.timestamp < end,
                TopUp.awarded_points >= 1,
                ~blacklisted,
            )
            .group_by(Subscriber.msisdn)
        )

        with session_scope(self._session_factory) as session:
            rows = session.execute(stmt).all()

        pool = CandidatePool(
            window_start=as_utc(start),
            window_end=as_utc(end),
            candidates={msisdn: int(count) for msisdn, count in rows},
        )
        logger.info(
            f"Selected {pool.size} candidates for {draw_date} "
            f"digits={sorted(digits)} window=[{start.isoformat()}, {end.isoformat()})"
        )
        return pool


__all__ = [
    "CandidatePool",
    "DEFAULT_LOOKBACK",
    "EligibilitySelector",
    "draw_window",
    "resolve_timezone",
]
