# src/tickflow/core/ledger/database.py
"""Engine ownership for the ledger.

Any SQLAlchemy URL works; SQLite files get WAL journaling and enforced
foreign keys on every new connection.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Self

from sqlalchemy import Connection, create_engine, event
from sqlalchemy.engine import Engine

from tickflow.core.ledger.schema import metadata

IN_MEMORY_URL = "sqlite:///:memory:"


def _enable_sqlite_pragmas(dbapi_connection: Any, connection_record: object) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class LedgerDB:
    """Owns the engine a LedgerRecorder writes through.

    Example:
        with LedgerDB("sqlite:///./runs/ledger.db") as db:
            recorder = LedgerRecorder(db)

    Args:
        url: SQLAlchemy connection URL; defaults to a private in-memory SQLite
        create_tables: Create missing tables on open. Pass False when only
            reading a ledger some earlier run produced.
    """

    def __init__(self, url: str = IN_MEMORY_URL, *, create_tables: bool = True) -> None:
        self.url = url
        self._engine: Engine | None = create_engine(url, echo=False)
        if url.startswith("sqlite"):
            event.listen(self._engine, "connect", _enable_sqlite_pragmas)
        if create_tables:
            metadata.create_all(self._engine)

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError(f"Ledger {self.url} is closed")
        return self._engine

    @property
    def is_closed(self) -> bool:
        return self._engine is None

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """One transaction; committed on clean exit, rolled back on error."""
        with self.engine.begin() as conn:
            yield conn

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"LedgerDB({self.url!r})"
