"""Per-user, per-operation rate limiting with progressive penalties.

The base budget for an operation comes from the injected
:class:`~vigil.config.LimitTable` and is scaled down by the user's
violation count. The window reset and the check-and-increment happen in a
single atomic update of the user's window record, so concurrent requests
at the boundary can never be accepted beyond the effective limit.

Rejections record a ``rate_limit`` violation, which in turn lowers the
user's future limits.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict
from typing import Optional

from vigil.config import LimitTable
from vigil.errors import RateLimitExceeded, ValidationError
from vigil.security.models import RateLimitDecision, RateLimitWindow, penalty_multiplier
from vigil.security.violations import ViolationTracker
from vigil.store.records import KeyedRecordStore
from vigil.utils.clock import Clock, utc_iso, utc_now

logger = logging.getLogger(__name__)


def window_key(user_id: str, operation: str) -> str:
    """Storage key of the window for *user_id* and *operation*."""
    return f"{user_id}/{operation}"


class RateLimiter:
    """Fail-closed request budgets keyed on (user, operation)."""

    # Any error while checking denies the request.
    fail_open = False

    def __init__(
        self,
        store: KeyedRecordStore,
        violations: ViolationTracker,
        limits: Optional[LimitTable] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._violations = violations
        self._limits = limits or LimitTable()
        self._clock = clock

    @property
    def limits(self) -> LimitTable:
        return self._limits

    def effective_limit(self, user_id: str, operation: str, role: str = "default") -> tuple[int, int]:
        """Return ``(base_limit, effective_limit)`` for the user right now."""
        base = self._limits.base_limit(operation, role)
        record = self._violations.get_violations(user_id)
        return base, math.floor(base * penalty_multiplier(record.count))

    def check_and_consume(
        self, user_id: str, operation: str, role: str = "default"
    ) -> RateLimitDecision:
        """Count one request against the user's budget.

        Returns the decision when accepted. Raises :class:`RateLimitExceeded`
        (after recording a violation) when the budget is spent, and
        :class:`~vigil.errors.ContentionError` if the window record stays
        contended past the retry budget.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if not operation:
            raise ValidationError("operation is required")
        role = role or "default"

        now = self._clock()
        now_ts = now.timestamp()
        window_seconds = self._limits.window_for(operation)
        base, limit = self.effective_limit(user_id, operation, role)

        def apply(data: Optional[dict]) -> tuple[Optional[dict], tuple[bool, int]]:
            window = RateLimitWindow.from_dict(data) if data else None
            if window is None or now_ts - window.window_start > window_seconds:
                window = RateLimitWindow(window_start=now_ts, request_count=0, last_request=now_ts)
            if window.request_count >= limit:
                return None, (False, window.request_count)
            window.request_count += 1
            window.last_request = now_ts
            doc = asdict(window)
            doc.update(user_id=user_id, operation=operation)
            return doc, (True, window.request_count)

        allowed, count = self._store.update(window_key(user_id, operation), apply)

        if not allowed:
            attempts = count + 1
            self._violations.record_violation(
                user_id,
                "rate_limit",
                {"operation": operation, "limit": limit, "attempts": attempts},
            )
            logger.warning(
                "Rate limit exceeded: user=%s operation=%s limit=%d attempts=%d",
                user_id,
                operation,
                limit,
                attempts,
            )
            raise RateLimitExceeded(operation, limit, attempts, window_seconds)

        return RateLimitDecision(
            allowed=True,
            user_id=user_id,
            operation=operation,
            role=role,
            base_limit=base,
            effective_limit=limit,
            count=count,
            timestamp=utc_iso(now),
        )
