import logging
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import DATABASE_URL, QUERY_TIMEOUT, SQLITE_BUSY_TIMEOUT
from .errors import DeadlineExceeded, StoreUnavailable

logger = logging.getLogger(__name__)

# Monotonic deadline of the store call running in the current context
_deadline: ContextVar[float | None] = ContextVar("recipebook_deadline", default=None)

# SQLite VM instructions between deadline checks
_PROGRESS_STEPS = 1000


class Base(DeclarativeBase):
    pass


def deadline_passed() -> bool:
    deadline = _deadline.get()
    return deadline is not None and time.monotonic() > deadline


def _sqlite_on_connect(dbapi_connection, connection_record, *, in_memory: bool) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    if not in_memory:
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
    cursor.execute("PRAGMA temp_store = memory")
    cursor.close()
    # a non-zero return aborts the running statement with "interrupted"
    dbapi_connection.set_progress_handler(lambda: 1 if deadline_passed() else 0, _PROGRESS_STEPS)


class Database:
    """Owns the engine; one instance per process (or per test).

    Nothing is connected until ``open()``. Work happens inside
    ``with db.session(timeout=...) as s:`` blocks.
    """

    def __init__(self, url: str = DATABASE_URL, *, echo: bool = False):
        self.url = url
        self.echo = echo
        self.engine: Engine | None = None
        self._sessionmaker: sessionmaker | None = None

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def open(self) -> "Database":
        if self.engine is not None:
            return self
        kwargs: dict = {"echo": self.echo}
        in_memory = self.is_sqlite and (":memory:" in self.url or self.url.rstrip("/") == "sqlite:")
        if self.is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
            if in_memory:
                # every session must see the same in-memory database
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
        engine = create_engine(self.url, **kwargs)
        if self.is_sqlite:
            event.listen(
                engine,
                "connect",
                lambda conn, rec: _sqlite_on_connect(conn, rec, in_memory=in_memory),
            )
        self.engine = engine
        self._sessionmaker = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        logger.info("Opened database %s", engine.url.render_as_string(hide_password=True))
        return self

    def close(self) -> None:
        if self.engine is None:
            return
        self.engine.dispose()
        logger.info("Closed database %s", self.engine.url.render_as_string(hide_password=True))
        self.engine = None
        self._sessionmaker = None

    @contextmanager
    def session(self, timeout: float | None = QUERY_TIMEOUT) -> Iterator[Session]:
        if self._sessionmaker is None:
            raise StoreUnavailable("Database is not open")
        token = _deadline.set(time.monotonic() + timeout if timeout is not None else None)
        db = self._sessionmaker()
        try:
            yield db
        except DBAPIError as e:
            db.rollback()
            if deadline_passed():
                logger.warning("Store call interrupted after %.2fs deadline", timeout)
                raise DeadlineExceeded() from e
            logger.error("Store call failed: %s", e.orig)
            raise StoreUnavailable() from e
        finally:
            db.close()
            _deadline.reset(token)

    @contextmanager
    def connect(self) -> Iterator:
        """Raw transactional connection, used for DDL."""
        if self.engine is None:
            raise StoreUnavailable("Database is not open")
        with self.engine.begin() as conn:
            yield conn
