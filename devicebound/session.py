"""Session-scoped client state."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

__all__ = ["SessionState", "SessionStore", "UserProfile"]


@dataclass(frozen=True)
class SessionState:
    email: Optional[str] = None
    device_id_hash: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.email is not None


class SessionStore:
    """In-memory store that lives as long as the process.

    Nothing is written to disk: the device-hash token echoed by a password
    login is only kept for the current session.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = SessionState()

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    def sign_in(self, email: str, device_id_hash: Optional[str] = None) -> SessionState:
        with self._lock:
            self._state = SessionState(email=email, device_id_hash=device_id_hash)
            return self._state

    def clear(self) -> None:
        with self._lock:
            self._state = SessionState()


@dataclass(frozen=True)
class UserProfile:
    """Account details returned by the service for the signed-in user."""

    email: str
    device_id_hash: Optional[str] = None
    registered_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "UserProfile":
        email = payload.get("email")
        if not isinstance(email, str) or not email:
            raise ValueError("profile payload has no email")
        device_id_hash = payload.get("deviceIdHash")
        return cls(
            email=email,
            device_id_hash=device_id_hash if isinstance(device_id_hash, str) else None,
            registered_at=_parse_iso_datetime(payload.get("registeredAt")),
        )


def _parse_iso_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)

    return parsed
