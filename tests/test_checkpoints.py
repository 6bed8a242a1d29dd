"""
Tests for the checkpoint store factory and thread addressing.
"""

import re

import pytest
from langgraph.checkpoint.memory import MemorySaver

from app.core.checkpoints import build_checkpointer, generate_thread_id, thread_config
from app.core.errors import CheckpointStoreError


def test_memory_checkpointer() -> None:
    assert isinstance(build_checkpointer("memory"), MemorySaver)


def test_unsupported_kind() -> None:
    with pytest.raises(CheckpointStoreError, match="Unsupported checkpointer type: postgres"):
        build_checkpointer("postgres")


def test_sqlite_checkpointer_creates_file(tmp_path) -> None:
    db_path = tmp_path / "nested" / "checkpoints.db"
    saver = build_checkpointer("sqlite", str(db_path))
    assert db_path.exists()
    assert saver.get_tuple(thread_config("missing")) is None


def test_thread_config() -> None:
    assert thread_config("t1") == {"configurable": {"thread_id": "t1"}}
    assert thread_config("t1", checkpoint_id="c") == {"configurable": {"thread_id": "t1", "checkpoint_id": "c"}}


def test_generated_thread_ids_are_unique() -> None:
    ids = {generate_thread_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(re.fullmatch(r"thread_[0-9a-f]{12}", i) for i in ids)
