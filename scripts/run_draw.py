"""Execute today's (or a given day's) draw and dispatch winner notifications.

Exit codes: 0 on success or clean SIGINT/SIGTERM shutdown, 1 when the draw
fails or a replay does not match the recorded winners, 2 when configuration
or the database cannot be initialised.
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from datetime import date, datetime

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from rechargewin.config import load_settings
from rechargewin.db.engine import get_sessionmaker, make_engine
from rechargewin.errors import ConfigError, DrawCancelled, DrawEngineError
from rechargewin.models import DrawType
from rechargewin.workflows import build_dispatcher, build_draw_engine, run_scheduled_draw

logger = logging.getLogger("rechargewin.run_draw")

EXIT_OK = 0
EXIT_DRAW_FAILED = 1
EXIT_INIT_FAILED = 2


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--date", type=date.fromisoformat, help="draw date (YYYY-MM-DD)")
    parser.add_argument("--type", choices=DrawType.ALL, dest="draw_type")
    parser.add_argument(
        "--seed", type=int, help="force the seed of a draw that has not run yet"
    )
    parser.add_argument(
        "--replay",
        type=int,
        metavar="DRAW_ID",
        help="re-run a completed draw from its recorded seed and compare winners",
    )
    parser.add_argument(
        "--no-dispatch",
        action="store_true",
        help="only enqueue notifications, do not send them",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    try:
        settings = load_settings()
    except ConfigError as exc:
        logging.basicConfig(level=logging.ERROR)
        logger.critical(f"Invalid configuration: {exc}")
        return EXIT_INIT_FAILED
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    try:
        engine = make_engine(settings.db_url)
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        session_factory = get_sessionmaker(engine)
        draw_engine = build_draw_engine(settings, session_factory)
        dispatcher = build_dispatcher(settings, session_factory, draw_engine)
    except (SQLAlchemyError, ConfigError, ValueError) as exc:
        logger.critical(f"Could not initialise the draw runner: {exc}")
        return EXIT_INIT_FAILED

    cancel = threading.Event()

    def _stop(signum, frame) -> None:
        logger.warning(f"Received {signal.Signals(signum).name}, cancelling draw")
        cancel.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    draw_date = args.date or datetime.now(settings.tz()).date()
    try:
        return _run(args, draw_engine, dispatcher, draw_date, cancel)
    finally:
        engine.dispose()


def _run(args, draw_engine, dispatcher, draw_date: date, cancel: threading.Event) -> int:
    if args.replay is not None:
        return _replay(draw_engine, args.replay)

    try:
        draw = run_scheduled_draw(
            draw_engine,
            draw_date,
            args.draw_type,
            seed=args.seed,
            cancel_event=cancel,
        )
    except DrawCancelled:
        logger.info("Draw cancelled by signal; shutting down")
        return EXIT_OK
    except DrawEngineError as exc:
        logger.error(f"Draw for {draw_date} failed: {type(exc).__name__}: {exc}")
        return EXIT_DRAW_FAILED

    logger.info(
        f"Draw {draw.id} completed: {len(draw.winners)} winners from "
        f"{draw.candidate_count} candidates, seed={draw.seed}"
    )
    if not args.no_dispatch and not cancel.is_set():
        report = dispatcher.dispatch_pending()
        logger.info(f"Notifications: {report.sent} sent, {report.failed} failed")
    return EXIT_OK


def _replay(draw_engine, draw_id: int) -> int:
    try:
        report = draw_engine.replay(draw_id)
    except DrawEngineError as exc:
        logger.error(f"Replay of draw {draw_id} failed: {type(exc).__name__}: {exc}")
        return EXIT_DRAW_FAILED
    return EXIT_OK if report.matches else EXIT_DRAW_FAILED


if __name__ == "__main__":
    sys.exit(main())
