import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .utils import resolve_sqlite_url

# Get DB url
load_dotenv()
# Project root directory (repo root)
ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_SQLITE_URL = resolve_sqlite_url(
    os.getenv("DB_URL", "sqlite:///./dev.db"), ROOT_DIR
)
# Seconds a SQLite writer waits for a competing draw or top-up to commit.
SQLITE_BUSY_TIMEOUT = 30


def make_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Create the engine every repository session is bound to.

    SQLite connections may be used from the executor threads of concurrent
    draws, enforce foreign keys and wait on locks instead of failing fast.
    Other backends get ``pool_pre_ping`` so dropped connections surface as
    invalidated connections rather than hanging the draw.
    """
    url = resolve_sqlite_url(database_url, ROOT_DIR) if database_url else DEFAULT_SQLITE_URL
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, future=True, pool_pre_ping=True)

    engine = create_engine(
        url,
        echo=echo,
        future=True,
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def get_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,  # Draws and winners are returned detached to callers
        future=True,
    )
