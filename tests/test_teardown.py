from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from sandctl.exceptions import (
    ConfirmationRequiredError,
    ErrorKind,
    LegacySessionError,
    NotFoundError,
    RemoteDeleteError,
    RemoteNotFoundError,
    StoreIOError,
    is_error_kind,
)
from sandctl.models import ProviderSession, SessionStatus
from sandctl.store import SessionStore
from sandctl.teardown import TeardownHandler
from tests.providers.fake_provider import FakeProvider, provider_error


@pytest.fixture
def store(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "sessions.json")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def teardown(store: SessionStore, provider: FakeProvider) -> TeardownHandler:
    return TeardownHandler(store, lambda name: provider)


def _add_running(store: SessionStore, provider: FakeProvider, name: str = "alice") -> str:
    vm = provider.add_vm()
    store.add(
        ProviderSession(
            id=name,
            provider_name="fake",
            status=SessionStatus.RUNNING,
            provider_id=vm.id,
            network_address=vm.address,
        )
    )
    return vm.id


def test_destroy_unknown_session(teardown: TeardownHandler) -> None:
    with pytest.raises(NotFoundError):
        teardown.destroy("ghost", force_confirm=True)


def test_destroy_requires_confirmation(
    teardown: TeardownHandler, store: SessionStore, provider: FakeProvider
) -> None:
    _add_running(store, provider)
    with pytest.raises(ConfirmationRequiredError) as excinfo:
        teardown.destroy("alice")
    assert is_error_kind(excinfo.value, ErrorKind.CONFIRMATION_REQUIRED)
    assert provider.count("delete") == 0
    assert store.get("alice").status == SessionStatus.RUNNING


def test_destroy_deletes_vm_then_record(
    teardown: TeardownHandler, store: SessionStore, provider: FakeProvider
) -> None:
    vm_id = _add_running(store, provider)
    result = teardown.destroy("ALICE", force_confirm=True)

    assert result.session_id == "alice"
    assert result.remote_deleted
    assert result.local_removed
    assert provider.calls == [("delete", vm_id)]
    assert vm_id not in provider.vms
    assert store.list() == []


def test_remote_not_found_counts_as_deleted(
    teardown: TeardownHandler, store: SessionStore, provider: FakeProvider
) -> None:
    _add_running(store, provider)
    provider.delete_errors.append(RemoteNotFoundError("gone", provider="fake"))
    result = teardown.destroy("alice", force_confirm=True)
    assert result.remote_deleted
    assert store.list() == []


def test_failed_delete_of_vanished_vm_counts_as_deleted(
    teardown: TeardownHandler, store: SessionStore, provider: FakeProvider
) -> None:
    vm_id = _add_running(store, provider)
    provider.vms.pop(vm_id)
    provider.delete_errors.append(provider_error("timeout"))

    result = teardown.destroy("alice", force_confirm=True)

    assert result.remote_deleted
    assert ("get", vm_id) in provider.calls
    assert store.list() == []


def test_failed_delete_of_existing_vm_keeps_record(
    teardown: TeardownHandler, store: SessionStore, provider: FakeProvider
) -> None:
    vm_id = _add_running(store, provider)
    provider.delete_errors.append(provider_error("api down"))

    with pytest.raises(RemoteDeleteError) as excinfo:
        teardown.destroy("alice", force_confirm=True)

    assert is_error_kind(excinfo.value, ErrorKind.REMOTE_DELETE)
    assert is_error_kind(excinfo.value, ErrorKind.PROVIDER)
    assert vm_id in provider.vms
    assert store.get("alice").status == SessionStatus.RUNNING


def test_legacy_session_requires_force(
    store: SessionStore, tmp_path: Path
) -> None:
    store.path.write_text(
        json.dumps({"sessions": [{"id": "old", "status": "running",
                                  "created_at": "2024-01-01T00:00:00Z"}]})
    )

    def no_provider(name: str):
        raise AssertionError("legacy teardown must not touch a provider")

    teardown = TeardownHandler(store, no_provider)
    with pytest.raises(LegacySessionError):
        teardown.destroy("old")
    assert store.get("old").is_legacy

    result = teardown.destroy("old", force_confirm=True)
    assert result.local_removed
    assert not result.remote_deleted
    assert store.list() == []


def test_session_without_vm_is_removed_locally(
    teardown: TeardownHandler, store: SessionStore, provider: FakeProvider
) -> None:
    store.add(ProviderSession(id="alice", provider_name="fake", status=SessionStatus.FAILED))
    result = teardown.destroy("alice", force_confirm=True)
    assert not result.remote_deleted
    assert result.local_removed
    assert provider.calls == []


def test_local_removal_failure_is_a_warning(
    teardown: TeardownHandler,
    store: SessionStore,
    provider: FakeProvider,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    _add_running(store, provider)

    def broken_remove(session_id: str) -> None:
        raise StoreIOError("disk full")

    monkeypatch.setattr(store, "remove", broken_remove)
    with caplog.at_level(logging.WARNING, logger="sandctl.teardown"):
        result = teardown.destroy("alice", force_confirm=True)

    assert result.remote_deleted
    assert not result.local_removed
    assert "disk full" in caplog.text


def test_rollback_never_raises(
    teardown: TeardownHandler, provider: FakeProvider, caplog: pytest.LogCaptureFixture
) -> None:
    vm = provider.add_vm()
    assert teardown.rollback(provider, vm.id) is True
    assert vm.id not in provider.vms

    provider.delete_errors.append(RuntimeError("boom"))
    with caplog.at_level(logging.WARNING, logger="sandctl.teardown"):
        assert teardown.rollback(provider, "404") is False
    assert "boom" in caplog.text
