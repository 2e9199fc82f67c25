import logging
from contextlib import contextmanager
from pathlib import Path
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import StorageUnavailable

logger = logging.getLogger(__name__)


def resolve_sqlite_url(url: str, project_root: Path) -> str:
    """Resolve 'sqlite:///./relative/path' to an absolute sqlite:/// URL.

    Keeps other URL forms unchanged.
    """
    prefix = "sqlite:///./"
    if not url.startswith(prefix):
        return url
    rel = url[len(prefix) :]
    return f"sqlite:///{(project_root / rel).resolve()}"


def dt_iso(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO 8601 string in UTC, or return None.

    Naive values are taken to already be in UTC, which is how SQLite hands
    back ``DateTime(timezone=True)`` columns.
    """
    if dt is None:
        return None
    return as_utc(dt).isoformat()


def as_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime (naive input is assumed UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Open a session, commit on success and translate driver faults.

    Connection-level and operational database failures surface as
    :class:`~rechargewin.errors.StorageUnavailable`; integrity errors and
    every other exception propagate unchanged so callers can map them.
    """
    try:
        with session_factory.begin() as session:
            yield session
    except (OperationalError, PoolTimeoutError) as exc:
        logger.error(f"Storage operation failed: {exc}")
        raise StorageUnavailable(str(exc)) from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.error(f"Database connection lost: {exc}")
            raise StorageUnavailable(str(exc)) from exc
        raise
