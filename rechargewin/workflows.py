import logging
import threading
from datetime import date
from typing import TYPE_CHECKING, Optional, Sequence

from sqlalchemy.orm import sessionmaker

from .config import Settings
from .draw_engine import (
    DrawEngine,
    DrawStore,
    EligibilitySelector,
    SubscriberRegistry,
    TopUpLedger,
)
from .errors import DuplicateDraw, InvalidDrawConfig
from .models import Draw, DrawStatus, DrawType
from .notifications import NotificationDispatcher, NotificationHandOff

if TYPE_CHECKING:
    from .notifications import SMSGateway

logger = logging.getLogger(__name__)


def build_gateways(settings: Settings) -> list["SMSGateway"]:
    """Create the outbound SMS gateways in preference order.

    With ``SMS_MOCK`` enabled every configured name maps to a
    :class:`~rechargewin.sms.api.LoggingSMSGateway`; otherwise each becomes
    an :class:`~rechargewin.sms.api.SMSGatewayClient` reading its
    ``SMS_<NAME>_BASE_URL`` and ``SMS_<NAME>_TOKEN`` variables.
    """
    from .sms.api import LoggingSMSGateway, SMSGatewayClient

    if settings.sms_mock:
        return [LoggingSMSGateway(name) for name in settings.gateway_order]
    return [
        SMSGatewayClient(name, timeout=settings.sms_timeout_seconds)
        for name in settings.gateway_order
    ]


def build_draw_engine(
    settings: Settings,
    session_factory: sessionmaker,
    *,
    notifier: Optional[NotificationHandOff] = None,
) -> DrawEngine:
    """Wire a :class:`DrawEngine` and its collaborators from ``settings``.

    Parameters
    ----------
    settings : Settings
        Loaded process configuration.
    session_factory : sessionmaker
        Shared factory; every collaborator opens its own short-lived sessions.
    notifier : Optional[NotificationHandOff]
        Hand-off to use instead of a database-backed one.

    Returns
    -------
    DrawEngine
        Engine ready to schedule and execute draws.
    """
    point_rules = settings.point_rules()
    tz = settings.tz()
    store = DrawStore(session_factory, default_lookback=settings.lookback)
    registry = SubscriberRegistry(
        session_factory, country_code=settings.default_country_code
    )
    ledger = TopUpLedger(
        session_factory, point_rules, country_code=settings.default_country_code
    )
    return DrawEngine(
        store,
        registry,
        ledger,
        notifier or NotificationHandOff(session_factory),
        point_rules,
        selector=EligibilitySelector(session_factory, tz),
        digits_policy=settings.digits_policy(),
        default_prizes=settings.prize_structure,
        templates=settings.templates(),
        draw_timezone=tz,
        deadline_base_seconds=settings.draw_deadline_base_seconds,
        deadline_per_candidate_seconds=settings.draw_deadline_per_candidate_seconds,
    )


def build_dispatcher(
    settings: Settings,
    session_factory: sessionmaker,
    engine: Optional[DrawEngine] = None,
    gateways: Optional[Sequence["SMSGateway"]] = None,
) -> NotificationDispatcher:
    """Create the dispatcher that drains the notification queue.

    When ``engine`` is given, delivery outcomes are written back onto the
    winners through :meth:`DrawEngine.record_notification_outcome`.
    """
    return NotificationDispatcher(
        session_factory,
        gateways if gateways is not None else build_gateways(settings),
        on_outcome=engine.record_notification_outcome if engine is not None else None,
        max_attempts=settings.notification_max_attempts,
        templates=settings.templates(),
    )


def run_scheduled_draw(
    engine: DrawEngine,
    draw_date: date,
    draw_type: Optional[str] = None,
    *,
    seed: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Draw:
    """Schedule (if needed) and execute the draw for ``draw_date``.

    An existing SCHEDULED draw for the date and type is executed as is; a
    missing one is scheduled from the configured defaults first.

    Raises
    ------
    InvalidDrawConfig
        If no draw exists and none can be scheduled (e.g. Sunday).
    InvalidState
        If the draw for the date already ran.
    """
    if draw_type is None:
        draw_type = DrawType.SATURDAY if draw_date.weekday() == 5 else DrawType.DAILY

    live = [
        draw
        for draw in engine.get_draws_by_date(draw_date, draw_type)
        if draw.status != DrawStatus.FAILED
    ]
    if live:
        draw = live[0]
    else:
        try:
            draw = engine.schedule(draw_date, draw_type)
        except DuplicateDraw:
            # Scheduled concurrently; pick up the winner of that race.
            draw = next(
                d
                for d in engine.get_draws_by_date(draw_date, draw_type)
                if d.status != DrawStatus.FAILED
            )
        except InvalidDrawConfig:
            logger.error(f"No {draw_type} draw can be scheduled for {draw_date}")
            raise

    logger.info(f"Executing {draw_type} draw {draw.id} for {draw_date}")
    return engine.execute(draw.id, seed=seed, cancel_event=cancel_event)


__all__ = [
    "build_dispatcher",
    "build_draw_engine",
    "build_gateways",
    "run_scheduled_draw",
]
