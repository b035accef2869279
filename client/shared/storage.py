"""Device-scoped persistence for the client.

A single JSON document holds everything the client keeps across restarts:
the anonymous guest token, the guest display name and a capped history of
finished games played as a guest. The document is written atomically
(temp-file-then-rename) with owner-only permissions (0o600) inside an
owner-only directory (0o700).
"""

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()

STATE_FILE_NAME = "client_state.json"

_STATE_DIR_MODE = 0o700
_STATE_FILE_MODE = 0o600

_GUEST_TOKEN_KEY = "guest_token"
_GUEST_NAME_KEY = "guest_name"
_GUEST_HISTORY_KEY = "guest_history"


class ClientStateStorage(Protocol):
    """Protocol for persisting client-local identity and history."""

    def load_guest_token(self) -> str | None: ...

    def save_guest_token(self, token: str) -> None: ...

    def load_guest_name(self) -> str | None: ...

    def save_guest_name(self, name: str) -> None: ...

    def load_guest_history(self) -> list[dict[str, Any]]: ...

    def append_guest_history(self, entry: dict[str, Any], *, limit: int) -> None: ...


class LocalStateStorage:
    """Stores client state as one JSON file under the configured directory.

    Reads tolerate a missing or corrupt file by treating it as empty; the
    next write replaces it.
    """

    def __init__(self, state_dir: str | Path) -> None:
        self._state_dir = Path(state_dir).expanduser().resolve()
        self._path = self._state_dir / STATE_FILE_NAME

    @property
    def path(self) -> Path:
        return self._path

    def load_guest_token(self) -> str | None:
        token = self._read().get(_GUEST_TOKEN_KEY)
        return token if isinstance(token, str) and token else None

    def save_guest_token(self, token: str) -> None:
        self._update(_GUEST_TOKEN_KEY, token)

    def load_guest_name(self) -> str | None:
        name = self._read().get(_GUEST_NAME_KEY)
        return name if isinstance(name, str) and name else None

    def save_guest_name(self, name: str) -> None:
        self._update(_GUEST_NAME_KEY, name)

    def load_guest_history(self) -> list[dict[str, Any]]:
        history = self._read().get(_GUEST_HISTORY_KEY)
        if not isinstance(history, list):
            return []
        return [entry for entry in history if isinstance(entry, dict)]

    def append_guest_history(self, entry: dict[str, Any], *, limit: int) -> None:
        """Prepend an entry, evicting the oldest ones beyond limit."""
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        history = [entry, *self.load_guest_history()][:limit]
        self._update(_GUEST_HISTORY_KEY, history)

    def _read(self) -> dict[str, Any]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("client state file is corrupt, ignoring", path=str(self._path))
            return {}
        if not isinstance(data, dict):
            logger.warning("client state file has unexpected shape, ignoring", path=str(self._path))
            return {}
        return data

    def _update(self, key: str, value: object) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def _write(self, data: dict[str, Any]) -> None:
        self._state_dir.mkdir(mode=_STATE_DIR_MODE, parents=True, exist_ok=True)
        self._state_dir.chmod(_STATE_DIR_MODE)

        content = json.dumps(data, ensure_ascii=False, sort_keys=True)

        fd, tmp_path = tempfile.mkstemp(dir=str(self._state_dir), suffix=".tmp", prefix=".state_")
        fd_owned = True
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                fd_owned = False  # os.fdopen took ownership; it will close fd
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, _STATE_FILE_MODE)  # noqa: PTH101
            Path(tmp_path).replace(self._path)
        except BaseException:
            if fd_owned:
                with contextlib.suppress(OSError):
                    os.close(fd)
            with contextlib.suppress(OSError):
                Path(tmp_path).unlink()
            raise
        logger.debug("saved client state", path=str(self._path))
