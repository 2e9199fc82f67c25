"""Append-only top-up ledger."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..db.utils import as_utc, session_scope
from ..errors import InvalidInput, StorageUnavailable
from ..models import Subscriber, TopUp
from .msisdn import DEFAULT_COUNTRY_CODE, mask_msisdn, normalize_msisdn
from .point_rules import Amount, PointRules, to_amount

logger = logging.getLogger(__name__)


class TopUpLedger:
    """Writes recharge events and credits the subscriber's points atomically.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory for short-lived sessions; one session per call.
    point_rules : PointRules
        Table that freezes ``awarded_points`` on every top-up.
    country_code : str, default: "234"
        Prefix for nationally formatted MSISDNs.
    max_retries : int, default: 5
        How often a write that lost an optimistic-lock race is retried.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        point_rules: PointRules,
        *,
        country_code: str = DEFAULT_COUNTRY_CODE,
        max_retries: int = 5,
    ) -> None:
        self._session_factory = session_factory
        self._point_rules = point_rules
        self._country_code = country_code
        self._max_retries = max(1, max_retries)

    @property
    def point_rules(self) -> PointRules:
        return self._point_rules

    def record(
        self,
        msisdn: str,
        amount: Amount,
        timestamp: datetime,
        provider_txn_id: Optional[str] = None,
        channel: Optional[str] = None,
    ) -> TopUp:
        """Append a top-up and add its points to the subscriber.

        Unknown subscribers are created opted out. The top-up row and the
        points increment commit together or not at all.

        Returns
        -------
        TopUp
            The persisted (detached) top-up.

        Raises
        ------
        InvalidInput
            On a malformed MSISDN, a non-positive amount or a missing timestamp.
        StorageUnavailable
            If the database fails, or the write keeps losing races with
            concurrent ingests for the same MSISDN.
        """

        number = normalize_msisdn(msisdn, self._country_code)
        value = to_amount(amount)
        if value <= 0:
            raise InvalidInput("top-up amount must be positive")
        if not isinstance(timestamp, datetime):
            raise InvalidInput("top-up timestamp must be a datetime")
        event_time = as_utc(timestamp)
        points = self._point_rules.award(value)

        for attempt in range(1, self._max_retries + 1):
            try:
                topup = self._write(number, value, points, event_time, provider_txn_id, channel)
            except (StaleDataError, IntegrityError) as exc:
                logger.debug(
                    f"Top-up for {mask_msisdn(number)} lost a concurrent update "
                    f"({type(exc).__name__}), attempt {attempt}/{self._max_retries}"
                )
                continue
            logger.info(
                f"Recorded top-up {topup.id} for {mask_msisdn(number)}: "
                f"amount={value} points={points}"
            )
            return topup

        logger.error(f"Giving up top-up for {mask_msisdn(number)} after {self._max_retries} attempts")
        raise StorageUnavailable(
            f"Top-up for {mask_msisdn(number)} conflicted {self._max_retries} times"
        )

    def _write(
        self,
        number: str,
        value: Decimal,
        points: int,
        event_time: datetime,
        provider_txn_id: Optional[str],
        channel: Optional[str],
    ) -> TopUp:
        with session_scope(self._session_factory) as session:
            subscriber = Subscriber.get_by_msisdn(session, number)
            if subscriber is None:
                subscriber = Subscriber(number)
                session.add(subscriber)
            topup = TopUp(
                msisdn=number,
                amount=value,
                awarded_points=points,
                timestamp=event_time,
                provider_txn_id=provider_txn_id,
                channel=channel,
            )
            session.add(topup)
            subscriber.points = (subscriber.points or 0) + points
        return topup

    def list_for_msisdn(self, msisdn: str) -> list[TopUp]:
        number = normalize_msisdn(msisdn, self._country_code)
        with session_scope(self._session_factory) as session:
            return TopUp.for_msisdn(session, number)

    def list_between(self, start: datetime, end: datetime) -> list[TopUp]:
        """Return top-ups with ``start <= timestamp < end`` in event-time order."""

        stmt = (
            select(TopUp)
            .where(TopUp.timestamp >= as_utc(start), TopUp.timestamp < as_utc(end))
            .order_by(TopUp.timestamp, TopUp.id)
        )
        with session_scope(self._session_factory) as session:
            return list(session.scalars(stmt))

    def count(self, msisdn: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(TopUp)
        if msisdn is not None:
            stmt = stmt.where(TopUp.msisdn == normalize_msisdn(msisdn, self._country_code))
        with session_scope(self._session_factory) as session:
            return int(session.scalar(stmt) or 0)


__all__ = ["TopUpLedger"]
