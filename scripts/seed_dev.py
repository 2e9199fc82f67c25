import logging
import random
from datetime import date, datetime, timedelta, timezone

from rechargewin.config import load_settings
from rechargewin.db.engine import get_sessionmaker, make_engine
from rechargewin.errors import DuplicateDraw, InvalidDrawConfig
from rechargewin.models import Base
from rechargewin.workflows import build_draw_engine

SUBSCRIBER_COUNT = 40
AMOUNTS = (50, 100, 150, 200, 250, 500, 1000, 2000)


def main() -> None:
    """Reset the development database and fill it with sample data."""
    settings = load_settings()
    logging.basicConfig(level=settings.log_level)
    engine = make_engine(settings.db_url)

    # SQLite refuses to drop tables that still have FK references pointing at them
    with engine.connect() as conn:
        if conn.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        if conn.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        conn.commit()
    Base.metadata.create_all(engine)

    draw_engine = build_draw_engine(settings, get_sessionmaker(engine))
    rng = random.Random(20240601)
    now = datetime.now(timezone.utc)

    for index in range(SUBSCRIBER_COUNT):
        msisdn = f"0803{1000000 + index * 7919:07d}"
        if index % 5 != 4:
            draw_engine.opt_in(msisdn, at=now - timedelta(days=10), channel="SMS")
        for _ in range(rng.randint(1, 4)):
            draw_engine.ingest_topup(
                msisdn,
                rng.choice(AMOUNTS),
                now - timedelta(hours=rng.randint(1, 24 * 8)),
                provider_txn_id=f"DEV-{index}-{rng.randint(0, 10**6)}",
                channel="USSD",
            )
    draw_engine.registry.blacklist("08031000000", reason="staff number", created_by="seed")

    today = date.today()
    try:
        draw = draw_engine.schedule(today)
        print(f"Scheduled {draw.draw_type} draw {draw.id} for {today}")
    except (DuplicateDraw, InvalidDrawConfig) as exc:
        print(f"No draw scheduled for {today}: {exc}")

    print(
        f"Seeded {draw_engine.registry.count()} subscribers "
        f"({draw_engine.registry.count(opted_in=True)} opted in), "
        f"{draw_engine.ledger.count()} top-ups."
    )


if __name__ == "__main__":
    main()
