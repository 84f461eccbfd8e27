"""Account domain models: users, roles and API keys."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class Role(str, Enum):
    """Marketplace roles. Each role has its own column in the limit table."""

    admin = "admin"
    company = "company"
    guard = "guard"
    default = "default"

    @property
    def level(self) -> int:
        """Return numeric level for comparison (higher = more privileges)."""
        return {
            Role.admin: 40,
            Role.company: 20,
            Role.guard: 20,
            Role.default: 10,
        }[self]


@dataclass
class User:
    """A marketplace account as seen by the security engine."""

    id: str
    username: str = ""
    email: str = ""
    role: Role = Role.default
    suspended: bool = False
    suspension_reason: str = ""
    suspension_type: str = ""  # automatic | manual
    suspended_at: str = ""
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()
        if isinstance(self.role, str):
            try:
                self.role = Role(self.role)
            except ValueError:
                self.role = Role.default


@dataclass
class APIKey:
    """Represents an API key for programmatic access."""

    id: str
    user_id: str
    name: str
    key_hash: str
    prefix: str  # First 8 chars for display
    created_at: str = ""
    expires_at: str = ""
    last_used: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()
