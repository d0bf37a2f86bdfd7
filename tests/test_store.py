from __future__ import annotations

import json
import os
import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from sandctl.exceptions import (
    DuplicateIDError,
    ErrorKind,
    InvalidTransitionError,
    LegacySessionError,
    NotFoundError,
    StoreIOError,
    ValidationError,
    is_error_kind,
)
from sandctl.models import LegacySession, ProviderSession, SessionStatus
from sandctl.store import SessionStore


def _session(name: str, **kwargs) -> ProviderSession:
    return ProviderSession(id=name, provider_name="fake", **kwargs)


def _running(name: str) -> ProviderSession:
    return _session(
        name,
        status=SessionStatus.RUNNING,
        provider_id="1001",
        network_address="10.0.0.1",
    )


@pytest.fixture
def store(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "sessions.json")


def test_missing_file_is_empty_store(store: SessionStore) -> None:
    assert store.list() == []
    assert store.get_used_names() == []


def test_default_path_comes_from_settings(tmp_path: Path) -> None:
    assert SessionStore().path == tmp_path / "sessions.json"


def test_add_and_get_case_insensitive(store: SessionStore) -> None:
    store.add(_session("Alice"))
    assert store.get("ALICE").id == "alice"
    assert store.get_used_names() == ["alice"]


def test_add_rejects_duplicate_ids(store: SessionStore) -> None:
    store.add(_session("alice"))
    with pytest.raises(DuplicateIDError):
        store.add(_session("ALICE"))
    assert len(store.list()) == 1


def test_add_rejects_empty_id(store: SessionStore) -> None:
    with pytest.raises(ValidationError):
        store.add(_session(""))


def test_add_rejects_running_session_without_address(store: SessionStore) -> None:
    with pytest.raises(ValidationError):
        store.add(_session("alice", status=SessionStatus.RUNNING, provider_id="1"))


def test_get_unknown_raises_not_found(store: SessionStore) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        store.get("nobody")
    assert is_error_kind(excinfo.value, ErrorKind.NOT_FOUND)
    assert "nobody" in str(excinfo.value)


def test_update_status_follows_transition_graph(store: SessionStore) -> None:
    store.add(_running("alice"))
    updated = store.update_status("alice", SessionStatus.STOPPED)
    assert updated.status == SessionStatus.STOPPED
    assert store.get("alice").status == SessionStatus.STOPPED

    with pytest.raises(InvalidTransitionError):
        store.update_status("alice", SessionStatus.RUNNING)


def test_update_status_same_status_is_noop(store: SessionStore) -> None:
    store.add(_session("alice"))
    assert store.update_status("alice", SessionStatus.PROVISIONING).status == (
        SessionStatus.PROVISIONING
    )


def test_update_status_to_running_requires_address(store: SessionStore) -> None:
    store.add(_session("alice"))
    with pytest.raises(ValidationError):
        store.update_status("alice", SessionStatus.RUNNING)
    assert store.get("alice").status == SessionStatus.PROVISIONING


def test_update_status_unknown_session(store: SessionStore) -> None:
    with pytest.raises(NotFoundError):
        store.update_status("ghost", SessionStatus.FAILED)


def test_update_session_keeps_created_at(store: SessionStore) -> None:
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    store.add(_session("alice", created_at=created))
    replacement = _running("alice").model_copy(
        update={"created_at": datetime(2030, 1, 1, tzinfo=timezone.utc)}
    )
    updated = store.update_session(replacement)
    assert updated.created_at == created
    assert store.get("alice").provider_id == "1001"


def test_legacy_records_reject_updates_but_can_be_removed(
    store: SessionStore, tmp_path: Path
) -> None:
    (tmp_path / "sessions.json").write_text(
        json.dumps({"sessions": [{"id": "old", "status": "running",
                                  "created_at": "2024-01-01T00:00:00Z"}]})
    )
    session = store.get("old")
    assert isinstance(session, LegacySession)

    with pytest.raises(LegacySessionError):
        store.update_status("old", SessionStatus.STOPPED)

    store.remove("old")
    assert store.list() == []


def test_remove_unknown_raises_not_found(store: SessionStore) -> None:
    with pytest.raises(NotFoundError):
        store.remove("ghost")


def test_list_active_filters_terminal_sessions(store: SessionStore) -> None:
    store.add(_session("alice"))
    store.add(_running("bob"))
    store.add(_session("carol", status=SessionStatus.FAILED))
    assert [s.id for s in store.list_active()] == ["alice", "bob"]
    assert [s.id for s in store.list()] == ["alice", "bob", "carol"]


def test_persisted_document_shape(store: SessionStore) -> None:
    store.add(_running("alice").model_copy(update={"timeout": timedelta(hours=2)}))
    data = json.loads(store.path.read_text())
    assert list(data) == ["sessions"]
    record = data["sessions"][0]
    assert record["id"] == "alice"
    assert record["provider"] == "fake"
    assert record["ip_address"] == "10.0.0.1"
    assert record["timeout"] == "2h0m0s"

    reopened = SessionStore(store.path)
    assert reopened.get("alice") == store.get("alice")


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_file_and_directory_permissions(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "nested" / "sessions.json")
    store.add(_session("alice"))
    assert os.stat(store.path).st_mode & 0o777 == 0o600
    assert os.stat(store.path.parent).st_mode & 0o777 == 0o700


def test_no_temp_files_left_behind(store: SessionStore) -> None:
    store.add(_session("alice"))
    store.remove("alice")
    assert [p.name for p in store.path.parent.iterdir()] == ["sessions.json"]


def test_corrupt_file_raises_store_io_error(store: SessionStore) -> None:
    store.path.write_text("{not json")
    with pytest.raises(StoreIOError) as excinfo:
        store.list()
    assert is_error_kind(excinfo.value, ErrorKind.STORE_IO)


@pytest.mark.parametrize(
    "content",
    [
        "[]",
        '{"sessions": {}}',
        '{"sessions": 0}',
        '{"sessions": ""}',
        '{"sessions": ["alice"]}',
        '{"sessions": [{"status": "running"}]}',
        '{"sessions": [{"id": "alice", "status": "exploded"}]}',
    ],
)
def test_bad_document_shapes_raise_store_io_error(store: SessionStore, content: str) -> None:
    store.path.write_text(content)
    with pytest.raises(StoreIOError):
        store.list()


@pytest.mark.parametrize("content", ["{}", '{"sessions": null}', '{"sessions": []}'])
def test_empty_documents_are_empty_stores(store: SessionStore, content: str) -> None:
    store.path.write_text(content)
    assert store.list() == []


def test_concurrent_adds_are_all_persisted(store: SessionStore) -> None:
    names = [f"user{i}" for i in range(20)]
    errors: list[BaseException] = []

    def worker(name: str) -> None:
        try:
            store.add(_session(name))
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(name,)) for name in names]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(store.get_used_names()) == sorted(names)


def test_concurrent_duplicate_adds_admit_exactly_one(store: SessionStore) -> None:
    results: list[str] = []
    lock = threading.Lock()

    def worker() -> None:
        try:
            store.add(_session("alice"))
            outcome = "ok"
        except DuplicateIDError:
            outcome = "dup"
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count("ok") == 1
    assert results.count("dup") == 9
