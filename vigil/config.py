"""Engine configuration.

All tunables live in dataclasses that are built once and injected into the
components; nothing reads a module-level table at call time. Defaults can
be overridden per deployment with a YAML file::

    limits:
      fallback_limit: 100
      operations:
        job_reads: {default: 250, guard: 300, company: 120, admin: 500}
    detector:
      window_limit: 1000
    retention:
      audit_page_size: 2000
    store:
      base_dir: /var/lib/vigil

Environment variables:

- ``VIGIL_HOME`` -- storage root (default ``~/.vigil``)
- ``VIGIL_CONFIG`` -- path of a YAML override file
- ``VIGIL_TIMEZONE`` -- business timezone (default ``Europe/Amsterdam``)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from vigil.errors import ConfigurationError

ROLES = ("default", "guard", "company", "admin")

DEFAULT_TIMEZONE = "Europe/Amsterdam"


# ---------------------------------------------------------------------------
# Rate limits
# ---------------------------------------------------------------------------


@dataclass
class OperationLimit:
    """Per-role request budget for one operation within one window."""

    default: int
    guard: int
    company: int
    admin: int
    window_seconds: int = 60

    def __post_init__(self) -> None:
        for role in ROLES:
            if getattr(self, role) < 0:
                raise ConfigurationError(f"Limit for role {role!r} must be >= 0")
        if self.window_seconds <= 0:
            raise ConfigurationError("window_seconds must be greater than 0")

    def for_role(self, role: str) -> int:
        """Return the base limit for *role*; unknown roles use ``default``."""
        if role in ROLES:
            return getattr(self, role)
        return self.default


def _builtin_operations() -> dict[str, OperationLimit]:
    per_hour = 3600
    return {
        # Record operations per minute
        "user_reads": OperationLimit(100, 150, 200, 1000),
        "user_updates": OperationLimit(20, 30, 50, 200),
        "job_reads": OperationLimit(200, 300, 100, 500),
        "certificate_reads": OperationLimit(10, 20, 5, 100),
        "certificate_creates": OperationLimit(5, 10, 0, 50),
        # Storage operations per minute
        "chat_uploads": OperationLimit(20, 30, 10, 100),
        "profile_uploads": OperationLimit(5, 5, 5, 20),
        "cert_uploads": OperationLimit(3, 5, 0, 10),
        # Security-sensitive operations per hour
        "gdpr_requests": OperationLimit(3, 3, 3, 50, window_seconds=per_hour),
        "password_resets": OperationLimit(5, 5, 5, 20, window_seconds=per_hour),
    }


@dataclass
class LimitTable:
    """The operation x role limit matrix."""

    operations: dict[str, OperationLimit] = field(default_factory=_builtin_operations)
    fallback_limit: int = 100
    fallback_window_seconds: int = 60

    def is_known(self, operation: str) -> bool:
        return operation in self.operations

    def base_limit(self, operation: str, role: str) -> int:
        """Return the un-penalised limit for *operation* and *role*."""
        limit = self.operations.get(operation)
        if limit is None:
            return self.fallback_limit
        return limit.for_role(role)

    def window_for(self, operation: str) -> int:
        limit = self.operations.get(operation)
        if limit is None:
            return self.fallback_window_seconds
        return limit.window_seconds

    def merged(self, data: dict[str, Any]) -> LimitTable:
        """Return a copy with *data* (YAML ``limits`` section) applied."""
        operations = dict(self.operations)
        for name, values in (data.get("operations") or {}).items():
            base = operations.get(name)
            if base is not None:
                merged = {f.name: getattr(base, f.name) for f in fields(OperationLimit)}
                merged.update(values or {})
            else:
                merged = dict(values or {})
                merged.setdefault("default", self.fallback_limit)
                for role in ROLES[1:]:
                    merged.setdefault(role, merged["default"])
            try:
                operations[name] = OperationLimit(**merged)
            except TypeError as exc:
                raise ConfigurationError(f"Invalid limits for operation {name!r}: {exc}") from exc
        return LimitTable(
            operations=operations,
            fallback_limit=int(data.get("fallback_limit", self.fallback_limit)),
            fallback_window_seconds=int(
                data.get("fallback_window_seconds", self.fallback_window_seconds)
            ),
        )


# ---------------------------------------------------------------------------
# Threat detection, retention, storage
# ---------------------------------------------------------------------------


@dataclass
class DetectorConfig:
    """Thresholds and field names used by the threat detector."""

    window_seconds: int = 3600
    window_limit: int = 1000
    rapid_fire_threshold: int = 200
    mass_access_threshold: int = 500
    cert_manipulation_threshold: int = 20
    certificate_collection: str = "certificates"
    role_field: str = "userType"
    national_id_field: str = "holderBsn"
    encrypted_prefix: str = "ENC:"
    business_start_hour: int = 6
    business_end_hour: int = 22
    system_collections: tuple[str, ...] = (
        "rate_limits",
        "security_audit",
        "threat_monitoring",
        "security_violations",
    )

    def __post_init__(self) -> None:
        if self.window_limit <= 0:
            raise ConfigurationError("window_limit must be greater than 0")
        if not 0 <= self.business_start_hour < self.business_end_hour <= 24:
            raise ConfigurationError("business hours must satisfy 0 <= start < end <= 24")
        self.system_collections = tuple(self.system_collections)


@dataclass
class RetentionConfig:
    """Maintenance sweep settings."""

    rate_limit_ttl_seconds: int = 24 * 60 * 60
    rate_limit_page_size: int = 500
    audit_retention_years: int = 1
    audit_page_size: int = 1000
    certificate_warning_days: int = 30
    maintenance_hour: int = 2
    maintenance_minute: int = 0

    def __post_init__(self) -> None:
        if self.rate_limit_page_size <= 0 or self.audit_page_size <= 0:
            raise ConfigurationError("page sizes must be greater than 0")
        if not 0 <= self.maintenance_hour < 24 or not 0 <= self.maintenance_minute < 60:
            raise ConfigurationError("maintenance time must be a valid hour and minute")


def _default_home() -> Path:
    return Path(os.environ.get("VIGIL_HOME") or Path.home() / ".vigil")


@dataclass
class StoreConfig:
    """Where state lives and how hard atomic updates retry."""

    base_dir: Path = field(default_factory=_default_home)
    max_attempts: int = 25
    violation_history_limit: int = 200

    def __post_init__(self) -> None:
        self.base_dir = Path(self.base_dir).expanduser()
        if self.max_attempts <= 0:
            raise ConfigurationError("max_attempts must be greater than 0")
        if self.violation_history_limit <= 0:
            raise ConfigurationError("violation_history_limit must be greater than 0")


@dataclass
class VigilConfig:
    """Top-level configuration injected into every component."""

    limits: LimitTable = field(default_factory=LimitTable)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    timezone: str = field(
        default_factory=lambda: os.environ.get("VIGIL_TIMEZONE", DEFAULT_TIMEZONE)
    )
    monitoring_fail_open: bool = True

    @classmethod
    def for_directory(cls, base_dir: str | Path, **kwargs: Any) -> VigilConfig:
        """Default configuration rooted at *base_dir* (handy for tests)."""
        return cls(store=StoreConfig(base_dir=Path(base_dir)), **kwargs)


def _section(cls, data: Optional[dict], default):
    if not data:
        return default
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}"
        )
    return replace(default, **data)


def load_config(path: str | Path | None = None) -> VigilConfig:
    """Build a :class:`VigilConfig` from defaults plus an optional YAML file.

    When *path* is not given, ``VIGIL_CONFIG`` is consulted. A missing file
    named explicitly is an error; no file at all yields the defaults.
    """
    path = path or os.environ.get("VIGIL_CONFIG")
    config = VigilConfig()
    if not path:
        return config

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    if "limits" in data:
        config.limits = config.limits.merged(data["limits"] or {})
    config.detector = _section(DetectorConfig, data.get("detector"), config.detector)
    config.retention = _section(RetentionConfig, data.get("retention"), config.retention)
    config.store = _section(StoreConfig, data.get("store"), config.store)
    if "timezone" in data:
        config.timezone = str(data["timezone"])
    if "monitoring_fail_open" in data:
        config.monitoring_fail_open = bool(data["monitoring_fail_open"])
    return config
