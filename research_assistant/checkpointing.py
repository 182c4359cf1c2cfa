"""
Checkpointing
=============
Key-value persistence of AgentState, keyed by thread id. This is what makes
multi-turn conversations (and resuming after a crash) possible.

Two backends behind one interface (CheckpointStore):

  SQLite (default)
  ─────────────────
  SqliteCheckpointStore over aiosqlite. Conversations survive process
  restarts. The DB file path is controlled by the CHECKPOINT_DB_PATH env
  var, defaulting to "agent_checkpoints.db" in the current working directory.

  Memory (in-process only)
  ────────────────────────
  MemoryCheckpointStore. Lost on process exit. Appropriate for tests and
  one-shot CLI sessions where durability is not required.

Usage pattern — SQLite:

    async with sqlite_checkpointer() as cp:
        graph = build_graph(..., checkpointer=cp)

Usage pattern — memory (tests / dev):

    graph = build_graph(..., checkpointer=memory_checkpointer())

The store does no locking: two turns on the same thread id read-modify-write
the same row and the last write wins. Callers serialise turns per thread.
"""
import json
import logging
import os
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiosqlite

from .state import AgentState

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "agent_checkpoints.db"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS checkpoints (
    thread_id  TEXT PRIMARY KEY,
    state      TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""


class CheckpointStore(ABC):
    @abstractmethod
    async def aget(self, thread_id: str) -> AgentState | None:
        """Return the saved state for thread_id, or None if it has none."""

    @abstractmethod
    async def aput(self, thread_id: str, state: AgentState) -> None:
        """Replace the saved state for thread_id."""


class MemoryCheckpointStore(CheckpointStore):
    def __init__(self):
        self._states: dict[str, AgentState] = {}

    async def aget(self, thread_id: str) -> AgentState | None:
        return self._states.get(thread_id)

    async def aput(self, thread_id: str, state: AgentState) -> None:
        self._states[thread_id] = state


class SqliteCheckpointStore(CheckpointStore):
    """State is stored as JSON (LangChain's message dict format)."""

    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn

    async def setup(self) -> None:
        """Create the checkpoint table. Idempotent."""
        await self.conn.execute(_CREATE_TABLE)
        await self.conn.commit()

    async def aget(self, thread_id: str) -> AgentState | None:
        async with self.conn.execute(
            "SELECT state FROM checkpoints WHERE thread_id = ?", (thread_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return AgentState.from_dict(json.loads(row[0]))

    async def aput(self, thread_id: str, state: AgentState) -> None:
        await self.conn.execute(
            "INSERT INTO checkpoints (thread_id, state) VALUES (?, ?) "
            "ON CONFLICT(thread_id) DO UPDATE SET state = excluded.state, "
            "updated_at = CURRENT_TIMESTAMP",
            (thread_id, json.dumps(state.to_dict())),
        )
        await self.conn.commit()


def get_db_path() -> str:
    """
    Return the SQLite database file path.

    Resolution order:
      1. CHECKPOINT_DB_PATH environment variable
      2. DEFAULT_DB_PATH ("agent_checkpoints.db" in the cwd)
    """
    return os.getenv("CHECKPOINT_DB_PATH", DEFAULT_DB_PATH)


@asynccontextmanager
async def sqlite_checkpointer(
    db_path: str | None = None,
) -> AsyncIterator[SqliteCheckpointStore]:
    """
    Async context manager that opens a SqliteCheckpointStore and runs setup().

    Args:
        db_path: Path to the SQLite file. Defaults to get_db_path().
                 Pass ":memory:" for a fully in-process SQLite (useful in tests
                 when you want SQL semantics but no file on disk).
    """
    path = db_path if db_path is not None else get_db_path()
    logger.info("[checkpointing] Opening SQLite checkpointer at: %s", path)

    async with aiosqlite.connect(path) as conn:
        store = SqliteCheckpointStore(conn)
        await store.setup()
        logger.info("[checkpointing] SQLite checkpointer ready")
        yield store


def memory_checkpointer() -> MemoryCheckpointStore:
    """Return an in-memory store. State is lost when the process exits."""
    return MemoryCheckpointStore()
