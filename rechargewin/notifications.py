"""Winner notification hand-off and the SMS dispatcher that drains it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence

import requests
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .db.utils import session_scope, utcnow
from .draw_engine.messages import WINNER_TEMPLATE, MessageTemplates, format_amount
from .draw_engine.msisdn import mask_msisdn
from .draw_engine.orchestrator import correlation_id_for
from .errors import (
    DrawEngineError,
    NotificationDispatchFailed,
    SMSGatewayError,
    StorageUnavailable,
)
from .models import Draw, DrawWinner, NotificationJob, NotificationStatus

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[int, str, Optional[str]], object]


class SMSGateway(Protocol):
    name: str

    def send_sms(self, msisdn: str, message: str, correlation_id: Optional[str] = None) -> str: ...


class NotificationHandOff:
    """Durable queue the draw engine hands winner SMS jobs to.

    A job is committed before :meth:`enqueue` returns; delivery happens later
    in :class:`NotificationDispatcher`.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def enqueue(
        self,
        msisdn: str,
        message: str,
        correlation_id: str,
        winner_id: Optional[int] = None,
    ) -> NotificationJob:
        """Persist a PENDING job; an existing ``correlation_id`` returns that job.

        Raises
        ------
        NotificationDispatchFailed
            If the job could not be stored.
        """
        try:
            try:
                with session_scope(self._session_factory) as session:
                    job = NotificationJob.get_by_correlation_id(session, correlation_id)
                    if job is None:
                        job = NotificationJob(
                            correlation_id=correlation_id,
                            msisdn=msisdn,
                            body=message,
                            winner_id=winner_id,
                        )
                        session.add(job)
            except IntegrityError:
                # Another enqueue with the same correlation id committed first.
                with session_scope(self._session_factory) as session:
                    job = NotificationJob.get_by_correlation_id(session, correlation_id)
                if job is None:
                    raise
        except (StorageUnavailable, SQLAlchemyError) as exc:
            raise NotificationDispatchFailed(
                f"Could not enqueue notification {correlation_id}: {exc}"
            ) from exc

        logger.info(f"Enqueued notification {correlation_id} for {mask_msisdn(msisdn)}")
        return job

    def get(self, correlation_id: str) -> Optional[NotificationJob]:
        with session_scope(self._session_factory) as session:
            return NotificationJob.get_by_correlation_id(session, correlation_id)


@dataclass
class DispatchReport:
    """Outcome counts of one :meth:`NotificationDispatcher.dispatch_pending` run."""

    sent: int = 0
    failed: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return self.sent + self.failed


class NotificationDispatcher:
    """Sends queued jobs through the gateways, primary first, then fallbacks.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory for the queue's sessions.
    gateways : Sequence[SMSGateway]
        Gateways in preference order; the next one is tried when one fails.
    on_outcome : Optional[Callable[[int, str, Optional[str]], object]], default: None
        Called with ``(winner_id, status, error)`` for jobs tied to a winner,
        typically :meth:`DrawEngine.record_notification_outcome`.
    max_attempts : int, default: 3
        Jobs that failed this many times are no longer picked up.
    templates : Optional[MessageTemplates], default: None
        Used to rebuild messages for winners whose job was never stored.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        gateways: Sequence[SMSGateway],
        *,
        on_outcome: Optional[OutcomeCallback] = None,
        max_attempts: int = 3,
        templates: Optional[MessageTemplates] = None,
    ) -> None:
        if not gateways:
            raise ValueError("At least one SMS gateway is required")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session_factory = session_factory
        self._gateways = list(gateways)
        self._on_outcome = on_outcome
        self._max_attempts = max_attempts
        self._templates = templates or MessageTemplates()

    @property
    def gateway_names(self) -> list[str]:
        return [gateway.name for gateway in self._gateways]

    def dispatch_pending(self, limit: int = 100) -> DispatchReport:
        """Send up to ``limit`` due jobs and report how many went out."""

        with session_scope(self._session_factory) as session:
            jobs = NotificationJob.due(session, max_attempts=self._max_attempts, limit=limit)

        report = DispatchReport()
        for job in jobs:
            error = self._deliver(job)
            if error is None:
                report.sent += 1
            else:
                report.failed += 1
                report.errors[job.correlation_id] = error
        if jobs:
            logger.info(
                f"Dispatched {report.attempted} notifications: "
                f"{report.sent} sent, {report.failed} failed"
            )
        return report

    def _deliver(self, job: NotificationJob) -> Optional[str]:
        errors: list[str] = []
        for gateway in self._gateways:
            try:
                message_id = gateway.send_sms(job.msisdn, job.body, job.correlation_id)
            except (SMSGatewayError, requests.RequestException) as exc:
                logger.warning(
                    f"Gateway {gateway.name} failed for {job.correlation_id}: {exc}"
                )
                errors.append(f"{gateway.name}: {exc}")
                continue
            except Exception as exc:
                logger.exception(
                    f"Gateway {gateway.name} raised unexpectedly for {job.correlation_id}"
                )
                errors.append(f"{gateway.name}: {type(exc).__name__}: {exc}")
                continue
            self._record(job.id, NotificationStatus.SENT, gateway.name, message_id=message_id)
            self._report(job, NotificationStatus.SENT, None)
            return None

        error = "; ".join(errors)
        self._record(
            job.id, NotificationStatus.FAILED, self._gateways[-1].name, error=error
        )
        self._report(job, NotificationStatus.FAILED, error)
        return error

    def _record(
        self,
        job_id: int,
        status: str,
        gateway: str,
        *,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        with session_scope(self._session_factory) as session:
            job = session.get(NotificationJob, job_id)
            job.status = status
            job.attempts = (job.attempts or 0) + 1
            job.gateway = gateway
            job.message_id = message_id
            job.last_error = error
            if status == NotificationStatus.SENT:
                job.sent_at = utcnow()

    def _report(self, job: NotificationJob, status: str, error: Optional[str]) -> None:
        if job.winner_id is None or self._on_outcome is None:
            return
        try:
            self._on_outcome(job.winner_id, status, error)
        except (DrawEngineError, SQLAlchemyError) as exc:
            logger.error(
                f"Could not report {status} for notification {job.correlation_id}: {exc}"
            )

    def retry_failed_winners(self, draw_id: int) -> int:
        """Queue another delivery round for winners of ``draw_id`` marked FAILED.

        Existing jobs are reset to PENDING with a fresh attempt budget; winners
        whose job was never stored get a new one.

        Returns
        -------
        int
            Number of winners re-queued.
        """

        with session_scope(self._session_factory) as session:
            draw = session.get(Draw, draw_id)
            if draw is None:
                return 0
            draw_date = draw.draw_date
            winners = list(
                session.scalars(
                    select(DrawWinner)
                    .where(DrawWinner.draw_id == draw_id)
                    .order_by(DrawWinner.position)
                )
            )

        slots: dict[int, int] = {}
        requeued = 0
        for winner in winners:
            slots[winner.rank] = slots.get(winner.rank, 0) + 1
            if winner.notification_status != NotificationStatus.FAILED:
                continue
            correlation_id = correlation_id_for(draw_id, winner.rank, slots[winner.rank])
            with session_scope(self._session_factory) as session:
                job = NotificationJob.get_by_correlation_id(session, correlation_id)
                if job is None:
                    job = NotificationJob(
                        correlation_id=correlation_id,
                        msisdn=winner.msisdn,
                        body=self._templates.render(
                            WINNER_TEMPLATE,
                            prizeAmount=format_amount(winner.prize_amount),
                            prizeName=winner.prize_name,
                            drawDate=draw_date.isoformat(),
                        ),
                        winner_id=winner.id,
                    )
                    session.add(job)
                else:
                    job.status = NotificationStatus.PENDING
                    job.attempts = 0
                    job.last_error = None
            self._report(job, NotificationStatus.PENDING, None)
            requeued += 1

        if requeued:
            logger.info(f"Re-queued {requeued} failed notifications of draw {draw_id}")
        return requeued


__all__ = [
    "DispatchReport",
    "NotificationDispatcher",
    "NotificationHandOff",
    "SMSGateway",
]
