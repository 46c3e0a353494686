"""State store abstractions and SQLite implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

from assistant.core.db import sqlite_connection
from assistant.state.models import ConversationState, ThreadMemory, utcnow
from assistant.state.serde import dump_memory, dump_state, load_memory, load_state


class StateStore(ABC):
    """Durable storage for suspended turns and per-thread memory."""

    @abstractmethod
    def save_suspended(self, state: ConversationState) -> None:
        """Persist the full state of a turn waiting for clarification."""

    @abstractmethod
    def load_suspended(self, thread_id: str) -> ConversationState | None:
        """Return the suspended turn for a thread, if any."""

    @abstractmethod
    def clear_suspended(self, thread_id: str) -> None:
        """Forget the suspended turn for a thread."""

    @abstractmethod
    def archive(self, state: ConversationState) -> None:
        """Keep the persistent fields of a completed turn and drop the suspended record."""

    @abstractmethod
    def load_memory(self, thread_id: str) -> ThreadMemory | None:
        """Return the archived memory of a thread, if any."""

    @abstractmethod
    def reset(self, thread_id: str) -> None:
        """Clear everything stored for a thread."""

    @abstractmethod
    def iter_threads(self) -> Iterable[str]:
        """Iterate over known thread identifiers."""


class SQLiteStateStore(StateStore):
    """SQLite-backed state store holding JSON documents per thread."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Create required tables if they do not exist."""

        with sqlite_connection(self.db_path) as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS threads (
                    thread_id TEXT PRIMARY KEY
                );

                CREATE TABLE IF NOT EXISTS suspended_turns (
                    thread_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    interrupted_at TEXT,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (thread_id) REFERENCES threads (thread_id)
                        ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS thread_memory (
                    thread_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (thread_id) REFERENCES threads (thread_id)
                        ON DELETE CASCADE
                );
                """
            )

    def save_suspended(self, state: ConversationState) -> None:
        if not state.thread_id:
            raise ValueError("Cannot persist a state without a thread_id")

        interrupted_at = state.interrupted_at.isoformat() if state.interrupted_at else None
        with sqlite_connection(self.db_path) as conn:
            conn.execute(
                "INSERT OR IGNORE INTO threads(thread_id) VALUES (?)",
                (state.thread_id,),
            )
            conn.execute(
                """
                INSERT INTO suspended_turns (thread_id, payload, interrupted_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(thread_id) DO UPDATE SET
                    payload=excluded.payload,
                    interrupted_at=excluded.interrupted_at,
                    updated_at=excluded.updated_at
                """,
                (state.thread_id, dump_state(state), interrupted_at, utcnow().isoformat()),
            )

    def load_suspended(self, thread_id: str) -> ConversationState | None:
        with sqlite_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload FROM suspended_turns WHERE thread_id = ?",
                (thread_id,),
            ).fetchone()

        if row is None:
            return None
        return load_state(row["payload"])

    def clear_suspended(self, thread_id: str) -> None:
        with sqlite_connection(self.db_path) as conn:
            conn.execute("DELETE FROM suspended_turns WHERE thread_id = ?", (thread_id,))

    def archive(self, state: ConversationState) -> None:
        if not state.thread_id:
            raise ValueError("Cannot archive a state without a thread_id")

        memory = ThreadMemory.from_state(state)
        with sqlite_connection(self.db_path) as conn:
            conn.execute(
                "INSERT OR IGNORE INTO threads(thread_id) VALUES (?)",
                (state.thread_id,),
            )
            conn.execute(
                """
                INSERT INTO thread_memory (thread_id, payload, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(thread_id) DO UPDATE SET
                    payload=excluded.payload,
                    updated_at=excluded.updated_at
                """,
                (state.thread_id, dump_memory(memory), memory.updated_at.isoformat()),
            )
            conn.execute("DELETE FROM suspended_turns WHERE thread_id = ?", (state.thread_id,))

    def load_memory(self, thread_id: str) -> ThreadMemory | None:
        with sqlite_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload FROM thread_memory WHERE thread_id = ?",
                (thread_id,),
            ).fetchone()

        if row is None:
            return None
        return load_memory(row["payload"])

    def reset(self, thread_id: str) -> None:
        with sqlite_connection(self.db_path) as conn:
            conn.execute("DELETE FROM suspended_turns WHERE thread_id = ?", (thread_id,))
            conn.execute("DELETE FROM thread_memory WHERE thread_id = ?", (thread_id,))
            conn.execute("DELETE FROM threads WHERE thread_id = ?", (thread_id,))

    def iter_threads(self) -> Iterable[str]:
        with sqlite_connection(self.db_path) as conn:
            rows = conn.execute("SELECT thread_id FROM threads ORDER BY thread_id")
            return [row["thread_id"] for row in rows]
