"""Subscriber registry: opt-in state, points and the blacklist."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..db.utils import as_utc, session_scope, utcnow
from ..errors import InvalidInput
from ..models import BlacklistEntry, OptInPeriod, Subscriber
from .msisdn import DEFAULT_COUNTRY_CODE, mask_msisdn, normalize_msisdn

logger = logging.getLogger(__name__)


class SubscriberRegistry:
    """Keeps each MSISDN's opt-in status, opt-in dates and accumulated points.

    Subscribers are created lazily by the first opt-in (or by the first
    top-up, see :class:`~rechargewin.draw_engine.ledger.TopUpLedger`) and are
    never deleted.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        country_code: str = DEFAULT_COUNTRY_CODE,
        max_retries: int = 3,
    ) -> None:
        self._session_factory = session_factory
        self._country_code = country_code
        self._max_retries = max_retries

    def normalize(self, msisdn: str) -> str:
        return normalize_msisdn(msisdn, self._country_code)

    def opt_in(
        self,
        msisdn: str,
        at: Optional[datetime] = None,
        channel: Optional[str] = None,
    ) -> Subscriber:
        """Record consent for ``msisdn``, creating the subscriber if needed.

        Opting in an already opted-in subscriber keeps the original opt-in
        date so an earlier qualification is not lost. Each opt-in after an
        opt-out opens a new :class:`~rechargewin.models.OptInPeriod`; draws
        read consent from those periods rather than the latest dates.
        """

        number = self.normalize(msisdn)
        when = as_utc(at) if at is not None else utcnow()

        def apply(subscriber: Subscriber) -> None:
            if subscriber.opt_in_status:
                return
            subscriber.opt_in_status = True
            subscriber.opt_in_date = when
            subscriber.opt_in_channel = channel
            subscriber.opt_in_periods.append(OptInPeriod(opted_in_at=when, channel=channel))

        subscriber = self._upsert(number, apply)
        logger.info(f"Subscriber {mask_msisdn(number)} opted in via {channel or 'unknown'}")
        return subscriber

    def opt_out(self, msisdn: str, at: Optional[datetime] = None) -> Subscriber:
        number = self.normalize(msisdn)
        when = as_utc(at) if at is not None else utcnow()

        def apply(subscriber: Subscriber) -> None:
            if not subscriber.opt_in_status:
                return
            subscriber.opt_in_status = False
            subscriber.opt_out_date = when
            for period in subscriber.opt_in_periods:
                if period.opted_out_at is None:
                    period.opted_out_at = when

        subscriber = self._upsert(number, apply)
        logger.info(f"Subscriber {mask_msisdn(number)} opted out")
        return subscriber

    def get(self, msisdn: str) -> Optional[Subscriber]:
        number = self.normalize(msisdn)
        with session_scope(self._session_factory) as session:
            return Subscriber.get_by_msisdn(session, number)

    def reset_points(self, msisdn: str) -> Subscriber:
        """Administrative reset of a subscriber's points to zero.

        Raises
        ------
        InvalidInput
            If the subscriber does not exist.
        """

        number = self.normalize(msisdn)

        def apply(subscriber: Subscriber) -> None:
            subscriber.points = 0

        subscriber = self._upsert(number, apply, create=False)
        logger.warning(f"Points of {mask_msisdn(number)} reset by administrator")
        return subscriber

    def count(self, opted_in: Optional[bool] = None) -> int:
        stmt = select(func.count()).select_from(Subscriber)
        if opted_in is not None:
            stmt = stmt.where(Subscriber.opt_in_status.is_(opted_in))
        with session_scope(self._session_factory) as session:
            return int(session.scalar(stmt) or 0)

    # -------- blacklist --------
    def blacklist(
        self, msisdn: str, reason: Optional[str] = None, created_by: Optional[str] = None
    ) -> BlacklistEntry:
        """Bar ``msisdn`` from every future draw; idempotent."""

        number = self.normalize(msisdn)
        try:
            with session_scope(self._session_factory) as session:
                entry = BlacklistEntry.get_by_msisdn(session, number)
                if entry is None:
                    entry = BlacklistEntry(msisdn=number, reason=reason, created_by=created_by)
                    session.add(entry)
        except IntegrityError:
            # Lost a race with another blacklist call for the same number.
            with session_scope(self._session_factory) as session:
                entry = BlacklistEntry.get_by_msisdn(session, number)
        logger.info(f"Blacklisted {mask_msisdn(number)}")
        return entry

    def unblacklist(self, msisdn: str) -> bool:
        number = self.normalize(msisdn)
        with session_scope(self._session_factory) as session:
            entry = BlacklistEntry.get_by_msisdn(session, number)
            if entry is None:
                return False
            session.delete(entry)
        logger.info(f"Removed {mask_msisdn(number)} from blacklist")
        return True

    def is_blacklisted(self, msisdn: str) -> bool:
        number = self.normalize(msisdn)
        with session_scope(self._session_factory) as session:
            return BlacklistEntry.get_by_msisdn(session, number) is not None

    def _upsert(self, number: str, apply, *, create: bool = True) -> Subscriber:
        for attempt in range(1, self._max_retries + 1):
            try:
                with session_scope(self._session_factory) as session:
                    subscriber = Subscriber.get_by_msisdn(session, number)
                    if subscriber is None:
                        if not create:
                            raise InvalidInput(f"Unknown subscriber {mask_msisdn(number)}")
                        subscriber = Subscriber(number)
                        session.add(subscriber)
                    apply(subscriber)
                return subscriber
            except (StaleDataError, IntegrityError) as exc:
                if attempt == self._max_retries:
                    raise
                logger.debug(
                    f"Retrying update of {mask_msisdn(number)} after "
                    f"{type(exc).__name__} (attempt {attempt})"
                )
        raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["SubscriberRegistry"]
