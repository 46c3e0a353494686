"""SQLite connection helper shared by the persistence layer."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


@contextmanager
def sqlite_connection(path: Path, timeout: float = 5.0) -> Iterator[sqlite3.Connection]:
    """Yield a connection with row factory and foreign keys enabled.

    Commits when the block exits cleanly and rolls back when it raises.
    """

    conn = sqlite3.connect(path, timeout=timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
