"""Tests for the in-memory SessionStore."""

import time

import pytest

from siteflow.schemas import ExecutionSession, SessionStatus
from siteflow.storage import SessionStore


def _session(session_id: str, status: SessionStatus = SessionStatus.COMPLETED) -> ExecutionSession:
    return ExecutionSession(id=session_id, status=status)


@pytest.fixture
def clock(monkeypatch):
    """Controllable monotonic clock."""
    state = {"now": 1000.0}
    monkeypatch.setattr(time, "monotonic", lambda: state["now"])
    return state


def test_generate_session_id_format():
    session_id = SessionStore.generate_session_id()
    assert session_id.startswith("session_")
    assert len(session_id.split("_")[-1]) == 8


def test_create_and_get():
    store = SessionStore()
    session = store.create(_session("s1"))

    assert store.get("s1") is session
    assert "s1" in store
    assert store.get("missing") is None


def test_finished_session_expires(clock):
    store = SessionStore(ttl_seconds=300)
    store.create(_session("s1"))

    clock["now"] += 301

    assert store.get("s1") is None
    assert len(store) == 0


def test_running_session_never_expires(clock):
    store = SessionStore(ttl_seconds=300)
    store.create(_session("s1", SessionStatus.RUNNING))

    clock["now"] += 10_000

    assert store.get("s1") is not None


def test_update_refreshes_ttl(clock):
    store = SessionStore(ttl_seconds=300)
    session = store.create(_session("s1"))

    clock["now"] += 200
    store.update(session)
    clock["now"] += 200

    assert store.get("s1") is session


def test_full_store_evicts_least_recently_updated():
    store = SessionStore(max_entries=2)
    first = store.create(_session("a"))
    store.create(_session("b"))
    store.update(first)

    store.create(_session("c"))

    assert store.get("a") is first
    assert store.get("b") is None
    assert store.get("c") is not None


def test_update_ignores_evicted_session():
    store = SessionStore(max_entries=1)
    evicted = store.create(_session("a"))
    store.create(_session("b"))

    store.update(evicted)

    assert store.get("a") is None


def test_clear_counts_removed_sessions():
    store = SessionStore()
    for session_id in ("a", "b", "c"):
        store.create(_session(session_id))

    assert store.clear("a") == 1
    assert store.clear("a") == 0
    assert store.clear() == 2
    assert len(store) == 0
