"""File-based storage for accounts and API keys.

Users are kept one record per user in a :class:`KeyedRecordStore` so that
concurrent suspensions and role changes are atomic. API keys live in a
single ``api_keys.json`` list.
"""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
import threading
import uuid
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from vigil.auth.models import APIKey, Role, User
from vigil.store.records import KeyedRecordStore
from vigil.utils.clock import Clock, utc_iso, utc_now

logger = logging.getLogger(__name__)


class UserStore:
    """Accounts and API keys.

    Storage path: ``<base_dir>/`` with:
    - ``users/`` -- one versioned JSON record per user
    - ``api_keys.json`` -- list of API key dicts
    """

    def __init__(
        self,
        base_dir: Optional[str | Path] = None,
        max_attempts: int = 25,
        clock: Clock = utc_now,
    ) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".vigil" / "auth"
        self._base.mkdir(parents=True, exist_ok=True)
        self._users = KeyedRecordStore(self._base / "users", max_attempts=max_attempts)
        self._keys_path = self._base / "api_keys.json"
        self._keys_lock = threading.Lock()
        self._clock = clock

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_keys(self) -> list[dict]:
        if not self._keys_path.exists():
            return []
        try:
            data = json.loads(self._keys_path.read_text())
            return data if isinstance(data, list) else []
        except (json.JSONDecodeError, OSError):
            return []

    def _write_keys(self, data: list[dict]) -> None:
        self._keys_path.write_text(json.dumps(data, indent=2, default=str))

    @staticmethod
    def _hash_key(raw_key: str) -> str:
        return hashlib.sha256(raw_key.encode()).hexdigest()

    @staticmethod
    def _user_to_dict(u: User) -> dict:
        d = asdict(u)
        d["role"] = u.role.value if isinstance(u.role, Role) else u.role
        return d

    @staticmethod
    def _user_from_dict(d: dict) -> User:
        return User(
            id=d["id"],
            username=d.get("username", ""),
            email=d.get("email", ""),
            role=d.get("role", Role.default.value),
            suspended=d.get("suspended", False),
            suspension_reason=d.get("suspension_reason", ""),
            suspension_type=d.get("suspension_type", ""),
            suspended_at=d.get("suspended_at", ""),
            created_at=d.get("created_at", ""),
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def save_user(self, user: User) -> User:
        """Create or replace a user record."""
        payload = self._user_to_dict(user)
        self._users.update(user.id, lambda _current: (payload, None))
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        data = self._users.get(user_id)
        return self._user_from_dict(data) if data else None

    def list_users(self) -> list[User]:
        return [self._user_from_dict(r.data) for r in self._users.iter_records()]

    def update_user_role(self, user_id: str, role: Role) -> Optional[User]:
        """Update a user's role. Returns the updated user or None."""

        def apply(data: Optional[dict]):
            if data is None:
                return None, None
            data["role"] = role.value
            return data, self._user_from_dict(data)

        return self._users.update(user_id, apply)

    def suspend_user(self, user_id: str, reason: str, suspension_type: str = "automatic") -> bool:
        """Suspend *user_id*. Idempotent.

        Returns ``True`` only for the call that actually suspended the
        account; an already-suspended account is left untouched. Accounts
        unknown to this store get a minimal record so the flag is not lost.
        """
        suspended_at = utc_iso(self._clock())

        def apply(data: Optional[dict]):
            data = data or self._user_to_dict(User(id=user_id))
            if data.get("suspended"):
                return None, False
            data.update(
                suspended=True,
                suspension_reason=reason,
                suspension_type=suspension_type,
                suspended_at=suspended_at,
            )
            return data, True

        changed = self._users.update(user_id, apply)
        if changed:
            logger.warning("User %s suspended: %s", user_id, reason)
        return changed

    def reinstate_user(self, user_id: str) -> Optional[User]:
        """Lift a suspension. Returns the updated user or None."""

        def apply(data: Optional[dict]):
            if data is None:
                return None, None
            data.update(suspended=False, suspension_reason="", suspension_type="", suspended_at="")
            return data, self._user_from_dict(data)

        return self._users.update(user_id, apply)

    # ------------------------------------------------------------------
    # API Keys
    # ------------------------------------------------------------------

    def create_api_key(self, user_id: str, name: str, expires_in_days: int = 90) -> tuple[APIKey, str]:
        """Create a new API key. Returns (APIKey, raw_key_string)."""
        raw_key = f"vgl_{secrets.token_urlsafe(32)}"
        now = self._clock()

        api_key = APIKey(
            id=str(uuid.uuid4()),
            user_id=user_id,
            name=name,
            key_hash=self._hash_key(raw_key),
            prefix=raw_key[:8],
            created_at=utc_iso(now),
            expires_at=utc_iso(now + timedelta(days=expires_in_days)),
        )

        with self._keys_lock:
            keys = self._read_keys()
            keys.append(asdict(api_key))
            self._write_keys(keys)
        return api_key, raw_key

    def list_api_keys(self, user_id: str) -> list[APIKey]:
        return [APIKey(**d) for d in self._read_keys() if d["user_id"] == user_id]

    def delete_api_key(self, key_id: str) -> bool:
        with self._keys_lock:
            keys = self._read_keys()
            remaining = [d for d in keys if d["id"] != key_id]
            if len(remaining) < len(keys):
                self._write_keys(remaining)
                return True
        return False

    def validate_api_key(self, raw_key: str) -> Optional[User]:
        """Validate a raw API key and return the associated user, or None."""
        key_hash = self._hash_key(raw_key)
        now = self._clock()

        with self._keys_lock:
            keys = self._read_keys()
            for d in keys:
                if not secrets.compare_digest(d["key_hash"], key_hash):
                    continue
                expires_at = d.get("expires_at")
                if expires_at and datetime.fromisoformat(expires_at) < now.astimezone(timezone.utc):
                    return None
                d["last_used"] = utc_iso(now)
                self._write_keys(keys)
                break
            else:
                return None
        return self.get_user(d["user_id"])
