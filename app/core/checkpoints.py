"""
Checkpoint store: persists conversation state per thread id.

Backed by LangGraph checkpointers. "memory" keeps checkpoints in-process;
"sqlite" writes them to a local file (data/checkpoints.db by default) so threads
survive restarts. Writes for one thread are serialized by the saver; the latest
committed checkpoint wins.
"""

import logging
import sqlite3
import uuid
from pathlib import Path
from typing import Any

from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import MemorySaver

from app.core.config import CHECKPOINT_DB_PATH, CHECKPOINTER_TYPE
from app.core.errors import CheckpointStoreError

logger = logging.getLogger(__name__)

# Project root
_ROOT = Path(__file__).resolve().parent.parent.parent


def build_checkpointer(kind: str | None = None, db_path: str | None = None) -> BaseCheckpointSaver:
    """Return a checkpointer for the configured store type."""
    kind = (kind or CHECKPOINTER_TYPE).strip().lower()
    logger.info("[checkpoints:build] kind=%s", kind)

    if kind == "memory":
        return MemorySaver()

    if kind == "sqlite":
        path = Path(db_path or CHECKPOINT_DB_PATH)
        if not path.is_absolute():
            path = _ROOT / path
        try:
            from langgraph.checkpoint.sqlite import SqliteSaver

            path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(path), check_same_thread=False)
            saver = SqliteSaver(conn)
            saver.setup()
        except (ImportError, OSError, sqlite3.Error) as e:
            raise CheckpointStoreError(f"Checkpoint store unavailable at {path}: {e}") from e
        logger.info("[checkpoints:build] sqlite path=%s", path)
        return saver

    raise CheckpointStoreError(f"Unsupported checkpointer type: {kind}")


def thread_config(thread_id: str, **extra: Any) -> dict[str, Any]:
    """LangGraph run config addressing one thread."""
    return {"configurable": {"thread_id": thread_id, **extra}}


def generate_thread_id() -> str:
    return f"thread_{uuid.uuid4().hex[:12]}"
