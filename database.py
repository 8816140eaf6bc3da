import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from config import DATABASE_URL, LOCK_TIMEOUT_SECONDS
from errors import LockTimeout, NotFound

logger = logging.getLogger(__name__)

Base = declarative_base()

SQLITE_BUSY_TIMEOUT_MS = int(LOCK_TIMEOUT_SECONDS * 1000)


def create_db_engine(database_url: str = DATABASE_URL) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": LOCK_TIMEOUT_SECONDS}

    engine = create_engine(database_url, connect_args=connect_args)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "checkin")
        def _restore_sqlite_busy_timeout(dbapi_connection, connection_record):
            # flight_transaction shortens the wait per call; restore the default on release
            if dbapi_connection is not None:
                cursor = dbapi_connection.cursor()
                cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
                cursor.close()

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine):
    # models must be imported so their tables are registered on Base
    import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def _lock_wait_budget(lock_timeout: float, deadline: Optional[float]) -> float:
    if deadline is None:
        return lock_timeout
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise LockTimeout("Request deadline expired before the flight could be locked")
    return min(lock_timeout, remaining)


def _acquire_flight_lock(session: Session, flight_id: int, wait_seconds: float):
    from models import Flight

    dialect = session.get_bind().dialect.name
    wait_ms = max(1, int(wait_seconds * 1000))
    try:
        if dialect == "sqlite":
            # SQLite has no row locks; BEGIN IMMEDIATE takes the database
            # write lock so the read below already sees committed inventory.
            session.execute(text(f"PRAGMA busy_timeout = {wait_ms}"))
            session.execute(text("BEGIN IMMEDIATE"))
        elif dialect == "postgresql":
            session.execute(text(f"SET LOCAL lock_timeout = {wait_ms}"))

        stmt = (
            select(Flight)
            .where(Flight.id == flight_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.execute(stmt).scalar_one_or_none()
    except OperationalError as exc:
        logger.warning("Lock wait on flight %s expired: %s", flight_id, exc.orig)
        raise LockTimeout(f"Flight {flight_id} is busy, try again") from exc


def _end_read_transaction(session: Session):
    if not session.in_transaction():
        return
    if session.new or session.dirty or session.deleted:
        raise RuntimeError("flight_transaction needs a session without pending changes")
    # only reads happened so far; the lock has to be the first statement
    session.rollback()


@contextmanager
def flight_transaction(
    session: Session,
    flight_id: int,
    lock_timeout: float = LOCK_TIMEOUT_SECONDS,
    deadline: Optional[float] = None,
) -> Iterator:
    """
    Runs the block inside one transaction holding an exclusive lock on a
    single flight row and yields the freshly loaded flight.

    Commits when the block finishes, rolls back on any exception. ``deadline``
    is a ``time.monotonic()`` value; the lock wait is bounded by it and the
    commit is abandoned once it has passed.
    """
    _end_read_transaction(session)
    wait_seconds = _lock_wait_budget(lock_timeout, deadline)
    try:
        flight = _acquire_flight_lock(session, flight_id, wait_seconds)
        if flight is None or flight.deleted_at is not None:
            raise NotFound(f"Flight {flight_id} not found")
        yield flight
        if deadline is not None and time.monotonic() > deadline:
            raise LockTimeout("Request deadline expired before commit")
        session.commit()
    except Exception:
        session.rollback()
        raise
