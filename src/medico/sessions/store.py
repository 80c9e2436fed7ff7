"""Session stores.

The state machine only needs ``load``/``save``/``delete`` keyed by session id.
Idle-session expiry belongs to the store's owner, not to this package.

``FileSessionStore`` keeps one JSON document per session at
``<base>/<quoted-session-id>.json`` (default ``~/.medico/sessions/``).
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, unquote

import aiofiles
import aiofiles.os

from medico.config.paths import get_sessions_path
from medico.errors import StoreError
from medico.sessions.types import Session

logger = logging.getLogger(__name__)

class SessionStore(Protocol):
    """Key-value persistence for sessions."""

    async def load(self, session_id: str) -> Session | None:
        """Load a session, or None if it does not exist.

        Raises:
            StoreError: If the store could not be read.
        """
        ...

    async def save(self, session: Session) -> None:
        """Persist a session under its id.

        Raises:
            StoreError: If the session could not be written.
        """
        ...

    async def delete(self, session_id: str) -> bool:
        """Delete a session. Returns whether it existed."""
        ...


class InMemorySessionStore:
    """Process-local store. Sessions are copied in and out."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    async def load(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session is not None else None

    async def save(self, session: Session) -> None:
        self._sessions[session.id] = copy.deepcopy(session)

    async def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)


class FileSessionStore:
    """One JSON file per session, written atomically via temp file + rename."""

    def __init__(self, base_path: Path | None = None) -> None:
        self._base_path = base_path or get_sessions_path()

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _path_for(self, session_id: str) -> Path:
        # Percent-encoding keeps distinct ids in distinct files
        return self._base_path / f"{quote(session_id, safe='-_.')}.json"

    async def load(self, session_id: str) -> Session | None:
        path = self._path_for(session_id)
        if not path.exists():
            return None
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                data = json.loads(await f.read())
            return Session.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(
                "session_load_failed",
                extra={"session_id": session_id, "error.message": str(e)},
            )
            raise StoreError(f"failed to load session {session_id}: {e}") from e

    async def save(self, session: Session) -> None:
        path = self._path_for(session.id)
        temp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(session.to_dict(), indent=2, ensure_ascii=False))
            await aiofiles.os.replace(temp_path, path)
        except (OSError, TypeError, ValueError) as e:
            if temp_path.exists():
                temp_path.unlink()
            logger.warning(
                "session_save_failed",
                extra={"session_id": session.id, "error.message": str(e)},
            )
            raise StoreError(f"failed to save session {session.id}: {e}") from e

    async def delete(self, session_id: str) -> bool:
        path = self._path_for(session_id)
        if not path.exists():
            return False
        try:
            await aiofiles.os.remove(path)
        except OSError as e:
            raise StoreError(f"failed to delete session {session_id}: {e}") from e
        return True

    def list_ids(self) -> list[str]:
        """Ids of stored sessions (file stems), sorted."""
        if not self._base_path.exists():
            return []
        return sorted(unquote(p.stem) for p in self._base_path.glob("*.json"))
