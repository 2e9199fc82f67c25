"""Draw orchestration: SCHEDULED -> RUNNING -> COMPLETED | FAILED."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError

from ..db.utils import as_utc, utcnow
from ..errors import (
    AlreadyRunning,
    DrawCancelled,
    DrawDeadlineExceeded,
    DrawEngineError,
    DrawExecutionFailed,
    InvalidDrawConfig,
    InvalidInput,
    InvalidState,
    StorageUnavailable,
)
from ..models import Draw, DrawStatus, DrawType, DrawWinner, NotificationStatus, Subscriber, TopUp
from .digits import DefaultDigitsPolicy, Day
from .eligibility import CandidatePool, EligibilitySelector
from .ledger import TopUpLedger
from .messages import WINNER_TEMPLATE, MessageTemplates, format_amount
from .msisdn import mask_msisdn
from .picker import SEED_BITS, PickResult, generate_seed, pick_winners
from .point_rules import Amount, PointRules
from .prizes import Prize, parse_prize_structure
from .registry import SubscriberRegistry
from .store import DrawStore

logger = logging.getLogger(__name__)

SATURDAY = 5


class NotificationSink(Protocol):
    """Anything that durably accepts one outbound SMS job."""

    def enqueue(
        self,
        msisdn: str,
        message: str,
        correlation_id: str,
        winner_id: Optional[int] = None,
    ) -> Any: ...


def correlation_id_for(draw_id: int, rank: int, slot: int) -> str:
    """Idempotency key of a winner notification; ``slot`` counts from 1 within a rank."""

    return f"{draw_id}-{rank}-{slot}"


@dataclass
class ReplayReport:
    """Outcome of re-running a completed draw from its recorded seed.

    ``recorded`` and ``replayed`` hold ``(position, msisdn, rank)`` triples.
    """

    draw_id: int
    seed: int
    recorded_candidates: int
    replayed_candidates: int
    recorded: list[tuple[int, str, int]] = field(default_factory=list)
    replayed: list[tuple[int, str, int]] = field(default_factory=list)

    @property
    def matches(self) -> bool:
        return (
            self.recorded == self.replayed
            and self.recorded_candidates == self.replayed_candidates
        )


class DrawEngine:
    """Runs draws end to end and exposes the engine's queries.

    All collaborators and configuration are supplied at construction and
    never mutated afterwards, so one engine can serve concurrent callers.

    Parameters
    ----------
    store : DrawStore
        Draw persistence; its compare-and-swap is the only execution guard.
    registry : SubscriberRegistry
        Subscriber opt-in state and blacklist.
    ledger : TopUpLedger
        Recharge events.
    notifier : NotificationSink
        Durable hand-off for winner SMS jobs.
    point_rules : PointRules
        Amount to points table.
    selector : Optional[EligibilitySelector], default: None
        Candidate pool query; built from the store's session factory when omitted.
    digits_policy : Optional[DefaultDigitsPolicy], default: None
        Weekday to default eligible digits.
    default_prizes : Optional[Mapping[str, Sequence[Prize]]], default: None
        Prize table per draw type used when ``schedule`` gets none.
    templates : Optional[MessageTemplates], default: None
        SMS templates; the ``"winner"`` template renders notifications.
    draw_timezone : tzinfo, default: UTC
        Zone whose midnight closes a draw day.
    deadline_base_seconds, deadline_per_candidate_seconds : float
        Execution deadline is ``base + per_candidate * pool size``.
    clock, monotonic : Callable
        Wall clock for timestamps and monotonic clock for deadlines.
    """

    def __init__(
        self,
        store: DrawStore,
        registry: SubscriberRegistry,
        ledger: TopUpLedger,
        notifier: NotificationSink,
        point_rules: PointRules,
        *,
        selector: Optional[EligibilitySelector] = None,
        digits_policy: Optional[DefaultDigitsPolicy] = None,
        default_prizes: Optional[Mapping[str, Sequence[Prize]]] = None,
        templates: Optional[MessageTemplates] = None,
        draw_timezone: tzinfo = timezone.utc,
        deadline_base_seconds: float = 30.0,
        deadline_per_candidate_seconds: float = 0.001,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._registry = registry
        self._ledger = ledger
        self._notifier = notifier
        self._point_rules = point_rules
        self._tz = draw_timezone
        self._selector = selector or EligibilitySelector(store.session_factory, draw_timezone)
        self._digits_policy = digits_policy or DefaultDigitsPolicy()
        self._default_prizes = {
            draw_type: parse_prize_structure(prizes)
            for draw_type, prizes in (default_prizes or {}).items()
        }
        self._templates = templates or MessageTemplates()
        self._deadline_base = deadline_base_seconds
        self._deadline_per_candidate = deadline_per_candidate_seconds
        self._clock = clock
        self._monotonic = monotonic

    @property
    def store(self) -> DrawStore:
        return self._store

    @property
    def registry(self) -> SubscriberRegistry:
        return self._registry

    @property
    def ledger(self) -> TopUpLedger:
        return self._ledger

    @property
    def point_rules(self) -> PointRules:
        return self._point_rules

    # -------- configuration queries --------
    def default_eligible_digits(self, day: Day) -> frozenset[int]:
        """Default digits for a weekday (index, name or date); empty means no draw."""

        return self._digits_policy.for_day(day)

    def default_prize_structure(self, draw_type: str) -> tuple[Prize, ...]:
        try:
            return self._default_prizes[draw_type]
        except KeyError as exc:
            raise InvalidDrawConfig(f"No default prize structure for {draw_type} draws") from exc

    # -------- scheduling --------
    def schedule(
        self,
        draw_date: date,
        draw_type: Optional[str] = None,
        eligible_digits: Optional[Iterable[int]] = None,
        prize_structure: Optional[Sequence[Prize | Mapping[str, Any]]] = None,
        lookback: Optional[timedelta] = None,
    ) -> Draw:
        """Schedule a draw, filling omitted settings from configuration.

        ``draw_type`` defaults to SATURDAY on Saturdays and DAILY otherwise;
        ``eligible_digits`` defaults to the weekday policy; prizes and the
        lookback window default per draw type.

        Raises
        ------
        InvalidDrawConfig
            If the resolved configuration is invalid, e.g. the weekday has no
            default digits.
        DuplicateDraw
            If a live draw already exists for the date and type.
        """

        if isinstance(draw_date, datetime) or not isinstance(draw_date, date):
            raise InvalidDrawConfig("draw_date must be a date")
        if draw_type is None:
            draw_type = DrawType.SATURDAY if draw_date.weekday() == SATURDAY else DrawType.DAILY
        if eligible_digits is None:
            eligible_digits = self._digits_policy.for_day(draw_date)
            if not eligible_digits:
                raise InvalidDrawConfig(
                    f"No default eligible digits for {draw_date:%A}; pass them explicitly"
                )
        if prize_structure is None:
            prize_structure = self.default_prize_structure(draw_type)
        return self._store.schedule(
            draw_date, draw_type, eligible_digits, prize_structure, lookback=lookback
        )

    def reschedule(self, failed_draw_id: int) -> Draw:
        draw = self._store.reschedule(failed_draw_id)
        logger.info(f"Draw {failed_draw_id} re-scheduled as draw {draw.id}")
        return draw

    # -------- execution --------
    def execute(
        self,
        draw_id: int,
        *,
        seed: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Draw:
        """Run a SCHEDULED draw and return it COMPLETED with its winners.

        Parameters
        ----------
        draw_id : int
            Draw to execute.
        seed : Optional[int], default: None
            Forced PRNG seed (for replays); a fresh one is generated otherwise.
        cancel_event : Optional[threading.Event], default: None
            Request-scoped cancellation; honoured until completion is recorded.

        Returns
        -------
        Draw
            The completed draw with winners and their notification status.

        Raises
        ------
        DrawNotFound
            If ``draw_id`` does not exist.
        InvalidState
            If the draw is not SCHEDULED.
        AlreadyRunning
            If a concurrent caller started the draw first.
        DrawCancelled, DrawDeadlineExceeded, StorageUnavailable, DrawExecutionFailed
            If the run aborted; the draw is then FAILED.

        Notes
        -----
        Once the SCHEDULED -> RUNNING swap succeeds every failure up to and
        including recording completion marks the draw FAILED. Notification
        failures afterwards only mark the affected winner.
        """

        if seed is not None and (
            isinstance(seed, bool) or not isinstance(seed, int) or not 0 <= seed < 2**SEED_BITS
        ):
            raise InvalidInput(f"seed must be an int in [0, 2**{SEED_BITS})")

        draw = self._store.get_by_id(draw_id)
        if draw.status != DrawStatus.SCHEDULED:
            raise InvalidState(f"Draw {draw_id} is {draw.status}, expected SCHEDULED")
        if not self._store.transition_status(draw_id, DrawStatus.SCHEDULED, DrawStatus.RUNNING):
            raise AlreadyRunning(f"Draw {draw_id} is already being executed")

        started = self._monotonic()
        try:
            completed = self._run(draw, seed, cancel_event, started)
        except DrawEngineError as exc:
            self._fail(draw_id, exc)
            raise
        except SQLAlchemyError as exc:
            self._fail(draw_id, exc)
            raise StorageUnavailable(f"Draw {draw_id} aborted by a storage error: {exc}") from exc
        except Exception as exc:
            self._fail(draw_id, exc)
            raise DrawExecutionFailed(f"Draw {draw_id} aborted: {exc}") from exc

        self._notify_winners(completed)
        return self._store.get_by_id(draw_id)

    def replay(self, draw_id: int) -> ReplayReport:
        """Re-run the pick of a COMPLETED draw from its recorded seed.

        Nothing is written. The pool is rebuilt from current data, so a later
        blacklisting or a back-dated top-up inside the window shows up as a
        mismatch in the returned report.

        Raises
        ------
        DrawNotFound
            If ``draw_id`` does not exist.
        InvalidState
            If the draw has not completed.
        """

        draw = self._store.get_by_id(draw_id)
        if draw.status != DrawStatus.COMPLETED or draw.seed is None:
            raise InvalidState(f"Draw {draw_id} is {draw.status}, expected COMPLETED")

        pool = self._selector.select(
            draw.draw_date,
            draw.eligible_digits,
            timedelta(seconds=draw.lookback_seconds),
            tz=self._tz,
        )
        picked = pick_winners(
            pool.candidates,
            parse_prize_structure(draw.prize_structure),
            draw.seed,
            picked_at=as_utc(draw.executed_at) if draw.executed_at else self._clock(),
        )
        report = ReplayReport(
            draw_id=draw.id,
            seed=draw.seed,
            recorded_candidates=draw.candidate_count or 0,
            replayed_candidates=pool.size,
            recorded=[
                (w.position, w.msisdn, w.rank)
                for w in sorted(draw.winners, key=lambda w: w.position)
            ],
            replayed=[(w.position, w.msisdn, w.rank) for w in picked.winners],
        )
        if report.matches:
            logger.info(f"Replay of draw {draw_id} with seed {draw.seed} matches")
        else:
            logger.warning(
                f"Replay of draw {draw_id} differs: recorded {report.recorded} "
                f"from {report.recorded_candidates} candidates, replayed "
                f"{report.replayed} from {report.replayed_candidates}"
            )
        return report

    def _run(
        self,
        draw: Draw,
        seed: Optional[int],
        cancel_event: Optional[threading.Event],
        started: float,
    ) -> Draw:
        active_seed = seed if seed is not None else generate_seed()
        self._store.record_seed(draw.id, active_seed)
        logger.info(f"Draw {draw.id} running with seed {active_seed}")
        self._checkpoint(draw.id, cancel_event, started, None)

        pool: CandidatePool = self._selector.select(
            draw.draw_date,
            draw.eligible_digits,
            timedelta(seconds=draw.lookback_seconds),
            tz=self._tz,
        )
        deadline = self._deadline_base + self._deadline_per_candidate * pool.size
        self._checkpoint(draw.id, cancel_event, started, deadline)

        executed_at = self._clock()
        prizes = parse_prize_structure(draw.prize_structure)
        picked: PickResult = pick_winners(
            pool.candidates, prizes, active_seed, picked_at=executed_at
        )
        self._checkpoint(draw.id, cancel_event, started, deadline)

        completed = self._store.record_completion(
            draw.id,
            picked.winners,
            active_seed,
            executed_at,
            candidate_count=pool.size,
            window_start=pool.window_start,
            window_end=pool.window_end,
            unawarded=picked.unawarded,
        )
        if picked.unawarded:
            logger.warning(f"Draw {draw.id} left prize slots unawarded: {picked.unawarded}")
        return completed

    def _checkpoint(
        self,
        draw_id: int,
        cancel_event: Optional[threading.Event],
        started: float,
        deadline: Optional[float],
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise DrawCancelled(f"Draw {draw_id} was cancelled")
        if deadline is not None:
            elapsed = self._monotonic() - started
            if elapsed > deadline:
                raise DrawDeadlineExceeded(
                    f"Draw {draw_id} ran {elapsed:.3f}s, deadline {deadline:.3f}s"
                )

    def _fail(self, draw_id: int, exc: BaseException) -> None:
        message = f"{type(exc).__name__}: {exc}"
        try:
            self._store.mark_failed(draw_id, message)
        except (DrawEngineError, SQLAlchemyError) as mark_exc:
            # The original error is re-raised by the caller.
            logger.error(f"Could not mark draw {draw_id} FAILED: {mark_exc}")

    def _notify_winners(self, draw: Draw) -> None:
        slots: dict[int, int] = {}
        for winner in draw.winners:
            slots[winner.rank] = slots.get(winner.rank, 0) + 1
            correlation_id = correlation_id_for(draw.id, winner.rank, slots[winner.rank])
            try:
                message = self._templates.render(
                    WINNER_TEMPLATE,
                    prizeAmount=format_amount(winner.prize_amount),
                    prizeName=winner.prize_name,
                    drawDate=draw.draw_date.isoformat(),
                )
                self._notifier.enqueue(
                    winner.msisdn, message, correlation_id, winner_id=winner.id
                )
            except Exception as exc:
                logger.error(
                    f"Notification hand-off for {mask_msisdn(winner.msisdn)} "
                    f"({correlation_id}) failed: {exc}"
                )
                self._mark_notification_failed(winner, str(exc))

    def _mark_notification_failed(self, winner: DrawWinner, error: str) -> None:
        try:
            self._store.update_notification_status(
                winner.id, NotificationStatus.FAILED, error
            )
        except (DrawEngineError, SQLAlchemyError) as exc:
            logger.error(f"Could not record notification failure on winner {winner.id}: {exc}")

    # -------- pass-throughs --------
    def ingest_topup(
        self,
        msisdn: str,
        amount: Amount,
        timestamp: datetime,
        provider_txn_id: Optional[str] = None,
        channel: Optional[str] = None,
    ) -> TopUp:
        return self._ledger.record(
            msisdn, amount, timestamp, provider_txn_id=provider_txn_id, channel=channel
        )

    def opt_in(
        self, msisdn: str, at: Optional[datetime] = None, channel: Optional[str] = None
    ) -> Subscriber:
        return self._registry.opt_in(msisdn, at=at, channel=channel)

    def opt_out(self, msisdn: str, at: Optional[datetime] = None) -> Subscriber:
        return self._registry.opt_out(msisdn, at=at)

    def record_notification_outcome(
        self, winner_id: int, status: str, error: Optional[str] = None
    ) -> DrawWinner:
        """Called by the dispatcher with the SENT/FAILED outcome of a winner SMS."""

        return self._store.update_notification_status(winner_id, status, error)

    def get_draw(self, draw_id: int) -> Draw:
        return self._store.get_by_id(draw_id)

    def get_draws_by_date(self, draw_date: date, draw_type: Optional[str] = None) -> list[Draw]:
        return self._store.get_by_date(draw_date, draw_type)

    def list_draws(self, status: str) -> list[Draw]:
        return self._store.list_by_status(status)


__all__ = ["DrawEngine", "NotificationSink", "ReplayReport", "correlation_id_for"]
