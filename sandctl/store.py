"""
SessionStore: local, thread-safe registry of session records.

Every operation reloads the whole sessions file, applies its change and writes
the file back, all under one lock. Writes are atomic (temp file + os.replace)
so a crash never leaves a half-written document behind.

There is no cross-process locking: two sandctl processes writing at the same
moment can lose one update. That is accepted for a single-user tool.

On-disk format:
    {"sessions": [{"id": ..., "status": ..., "created_at": ..., "timeout": ...,
                   "provider": ..., "provider_id": ..., "ip_address": ...}]}
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from sandctl.exceptions import (
    DuplicateIDError,
    InvalidTransitionError,
    LegacySessionError,
    NotFoundError,
    StoreIOError,
)
from sandctl.models import AnySession, SessionStatus, parse_session
from sandctl.names import normalize_name

logger = logging.getLogger(__name__)

FILE_MODE = 0o600
DIR_MODE = 0o700


class SessionStore:
    """
    Repository of Session records keyed case-insensitively by id.

    Safe to call from multiple threads in one process.

    Usage:
        store = SessionStore("~/.sandctl/sessions.json")
        store.add(ProviderSession(id="alice", provider="hetzner"))
        store.get("ALICE")
    """

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        if path is None:
            from sandctl.config import get_settings

            path = get_settings().sessions_path
        self._path = Path(path).expanduser()
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> List[AnySession]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StoreIOError(
                f"failed to read sessions file: {exc}", path=str(self._path)
            ) from exc

        if not raw.strip():
            return []

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreIOError(
                f"failed to parse sessions file: {exc}", path=str(self._path)
            ) from exc

        if not isinstance(data, dict):
            raise StoreIOError(
                "failed to parse sessions file: expected a JSON object",
                path=str(self._path),
            )
        records = data.get("sessions", [])
        if records is None:
            records = []
        if not isinstance(records, list):
            raise StoreIOError(
                "failed to parse sessions file: 'sessions' must be a list",
                path=str(self._path),
            )

        sessions: List[AnySession] = []
        for record in records:
            if not isinstance(record, dict):
                raise StoreIOError(
                    "failed to parse sessions file: session entries must be objects",
                    path=str(self._path),
                )
            try:
                sessions.append(parse_session(record))
            except PydanticValidationError as exc:
                raise StoreIOError(
                    f"failed to parse session record {record.get('id')!r}: {exc}",
                    path=str(self._path),
                ) from exc
        return sessions

    def _save(self, sessions: List[AnySession]) -> None:
        document: Dict[str, Any] = {"sessions": [s.to_record() for s in sessions]}
        directory = self._path.parent
        try:
            directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            fd = tempfile.NamedTemporaryFile(
                "w",
                dir=directory,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            )
            try:
                json.dump(document, fd, indent=2)
                fd.flush()
                os.fsync(fd.fileno())
                fd.close()
                os.chmod(fd.name, FILE_MODE)
                os.replace(fd.name, self._path)
            except BaseException:
                fd.close()
                try:
                    os.unlink(fd.name)
                except OSError:
                    pass
                raise
        except OSError as exc:
            raise StoreIOError(
                f"failed to write sessions file: {exc}", path=str(self._path)
            ) from exc

    @staticmethod
    def _index(sessions: List[AnySession], session_id: str) -> int:
        normalized = normalize_name(session_id)
        for i, session in enumerate(sessions):
            if normalize_name(session.id) == normalized:
                return i
        raise NotFoundError(session_id)

    @staticmethod
    def _check_transition(current: AnySession, target: SessionStatus) -> None:
        if current.is_legacy:
            raise LegacySessionError(current.id)
        if target != current.status and not current.status.can_transition_to(target):
            raise InvalidTransitionError(
                current.id, current.status.value, target.value
            )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def add(self, session: AnySession) -> AnySession:
        """
        Insert a new session.

        Raises:
            ValidationError: If the id is missing.
            DuplicateIDError: If a session with the same normalized id exists.
        """
        session = session.model_copy(update={"id": normalize_name(session.id)})
        session.validate_for_persist()
        with self._lock:
            sessions = self._load()
            for existing in sessions:
                if normalize_name(existing.id) == session.id:
                    raise DuplicateIDError(session.id)
            sessions.append(session)
            self._save(sessions)
        logger.debug("Added session %s (%s)", session.id, session.status.value)
        return session

    def get(self, session_id: str) -> AnySession:
        """Case-insensitive lookup. Raises NotFoundError if absent."""
        with self._lock:
            sessions = self._load()
            return sessions[self._index(sessions, session_id)]

    def update_status(self, session_id: str, status: SessionStatus) -> AnySession:
        """
        Change a session's status.

        Raises:
            NotFoundError: If the session does not exist.
            LegacySessionError: If the session is a legacy record.
            InvalidTransitionError: If the change leaves the transition graph.
            ValidationError: If the result breaks the running-session invariant.
        """
        with self._lock:
            sessions = self._load()
            i = self._index(sessions, session_id)
            current = sessions[i]
            self._check_transition(current, status)
            if current.status == status:
                return current
            updated = current.with_status(status)
            updated.validate_for_persist()
            sessions[i] = updated
            self._save(sessions)
        logger.debug(
            "Session %s: %s -> %s", updated.id, current.status.value, status.value
        )
        return updated

    def update_session(self, session: AnySession) -> AnySession:
        """
        Replace a stored record by id.

        created_at is kept from the stored record. Same errors as
        update_status().
        """
        with self._lock:
            sessions = self._load()
            i = self._index(sessions, session.id)
            current = sessions[i]
            if session.is_legacy:
                raise LegacySessionError(session.id)
            self._check_transition(current, session.status)
            updated = session.model_copy(
                update={"id": current.id, "created_at": current.created_at}
            )
            updated.validate_for_persist()
            sessions[i] = updated
            self._save(sessions)
        return updated

    def remove(self, session_id: str) -> None:
        """Delete a session record. Raises NotFoundError if absent."""
        with self._lock:
            sessions = self._load()
            del sessions[self._index(sessions, session_id)]
            self._save(sessions)
        logger.debug("Removed session %s", normalize_name(session_id))

    def list(self) -> List[AnySession]:
        """All stored sessions, in insertion order."""
        with self._lock:
            return self._load()

    def list_active(self) -> List[AnySession]:
        """Sessions that are provisioning or running."""
        return [s for s in self.list() if s.status.is_active]

    def get_used_names(self) -> List[str]:
        """Every stored session id, for name collision checks."""
        return [s.id for s in self.list()]

    def __repr__(self) -> str:
        return f"SessionStore(path={str(self._path)!r})"


__all__ = ["SessionStore"]
