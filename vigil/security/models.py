"""Data models for rate limiting, violations and threat detection."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class RiskLevel(str, Enum):
    """Shared scale for threat risk and violation severity."""

    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


def severity_for_count(count: int) -> RiskLevel:
    """Violation severity is a pure function of the violation count."""
    if count > 10:
        return RiskLevel.critical
    if count > 5:
        return RiskLevel.high
    if count > 2:
        return RiskLevel.medium
    return RiskLevel.low


def penalty_multiplier(count: int) -> float:
    """Fraction of the base limit a user keeps after *count* violations."""
    if count > 10:
        return 0.1
    if count > 5:
        return 0.2
    if count > 2:
        return 0.5
    return 1.0


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


@dataclass
class RateLimitWindow:
    """Request counter for one (user, operation) pair. Times are epoch seconds."""

    window_start: float
    request_count: int = 0
    last_request: float = 0.0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> RateLimitWindow:
        return cls(
            window_start=float(d.get("window_start", 0.0)),
            request_count=int(d.get("request_count", 0)),
            last_request=float(d.get("last_request", 0.0)),
        )


@dataclass
class RateLimitDecision:
    """Outcome of an accepted rate-limit check."""

    allowed: bool
    user_id: str
    operation: str
    role: str
    base_limit: int
    effective_limit: int
    count: int
    timestamp: str


# ---------------------------------------------------------------------------
# Violations
# ---------------------------------------------------------------------------


@dataclass
class ViolationEntry:
    """One recorded violation."""

    type: str
    timestamp: str
    metadata: dict[str, Any] = field(default_factory=dict)
    severity: str = ""  # record severity right after this entry


@dataclass
class ViolationRecord:
    """Violation history for a user."""

    user_id: str
    count: int = 0
    severity: RiskLevel = RiskLevel.low
    history: list[ViolationEntry] = field(default_factory=list)
    type_counts: dict[str, int] = field(default_factory=dict)
    updated_at: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.severity, str):
            self.severity = RiskLevel(self.severity)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["severity"] = self.severity.value
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ViolationRecord:
        return cls(
            user_id=d["user_id"],
            count=int(d.get("count", 0)),
            severity=d.get("severity", RiskLevel.low.value),
            history=[ViolationEntry(**v) for v in d.get("history", [])],
            type_counts=dict(d.get("type_counts", {})),
            updated_at=d.get("updated_at", ""),
        )


# ---------------------------------------------------------------------------
# Threats
# ---------------------------------------------------------------------------


@dataclass
class ThreatAssessment:
    """Patterns found for one event and the risk level derived from them."""

    user_id: str
    patterns: list[str] = field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.low
    timestamp: str = ""

    @property
    def detected(self) -> bool:
        return bool(self.patterns)


@dataclass
class ThreatRecord:
    """A persisted threat finding."""

    user_id: str
    threat_type: str
    severity: str
    timestamp: str
    blocked: bool = False
    patterns: list[str] = field(default_factory=list)
    auto_generated: bool = True
    event_id: str = ""
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = uuid.uuid4().hex[:16]
