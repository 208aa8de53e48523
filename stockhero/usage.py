"""Plan-aware daily quota counter with atomic check-and-increment.

Counts are keyed by (user, feature, local calendar day). A new day starts a
new counter at zero, so there is no reset job: yesterday's entries are just
never read again and can be purged.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from stockhero.errors import QuotaExceededError, UpgradeRequiredError
from stockhero.models import UsageCheck, UsageRecord

logger = logging.getLogger(__name__)

UNLIMITED = -1
DEFAULT_PLAN = "free"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsageGuard:
    """Daily per-user, per-feature quota with a fixed local-midnight reset.

    Args:
        plans: {plan name: {feature key: daily limit, -1 for unlimited}},
            listed from the lowest tier to the highest.
        tz_name: IANA timezone whose midnight starts a new day.
        clock: Returns the current time; naive values are taken as UTC.
    """

    def __init__(
        self,
        plans: Mapping[str, Mapping[str, int]] | None = None,
        tz_name: str = "Asia/Seoul",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._plans = {name: dict(limits) for name, limits in (plans or {}).items()}
        self._tz = ZoneInfo(tz_name)
        self._clock = clock
        self._lock = threading.Lock()
        self._counts: dict[tuple[str, str, date], int] = {}

    def _local_now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self._tz)

    def today(self) -> date:
        return self._local_now().date()

    def reset_at(self) -> datetime:
        """Next local midnight, as an aware datetime in the guard's timezone."""
        return self._next_midnight(self._local_now().date())

    def _next_midnight(self, day: date) -> datetime:
        return datetime.combine(day + timedelta(days=1), time.min, tzinfo=self._tz)

    def limit_for(self, plan: str, feature_key: str) -> int:
        """Daily limit for a plan's feature. Unknown plans get the free plan; unknown features get 0."""
        limits = self._plans.get(plan)
        if limits is None:
            logger.warning("Unknown plan '%s', applying '%s' limits", plan, DEFAULT_PLAN)
            limits = self._plans.get(DEFAULT_PLAN, {})
        return limits.get(feature_key, 0)

    @property
    def plan_order(self) -> tuple[str, ...]:
        return tuple(self._plans)

    def _rank(self, plan: str) -> int:
        # Unknown plans rank as the default plan, matching limit_for.
        order = self.plan_order
        if plan not in order:
            plan = DEFAULT_PLAN
        return order.index(plan) if plan in order else 0

    def is_plan_sufficient(self, plan: str, required_plan: str) -> bool:
        """True if `plan` is the same tier as `required_plan` or above it."""
        return self._rank(plan) >= self._rank(required_plan)

    def required_plan(self, feature_key: str) -> str | None:
        """Lowest plan whose limit for the feature is not 0, or None if no plan has it."""
        for plan in self.plan_order:
            if self._plans[plan].get(feature_key, 0) != 0:
                return plan
        return None

    @staticmethod
    def _result(allowed: bool, used: int, limit: int, reset_at: datetime) -> UsageCheck:
        remaining = UNLIMITED if limit == UNLIMITED else max(0, limit - used)
        return UsageCheck(allowed=allowed, used=used, limit=limit, remaining=remaining, reset_at=reset_at)

    def check_and_increment(self, user_id: str, feature_key: str, plan_limit: int) -> UsageCheck:
        """Consume one use if the limit allows it.

        The read, the comparison and the write happen under one lock, so
        concurrent callers can never both take the last slot. Unlimited
        (-1) always passes but is still counted. `used` is the count after
        this call.
        """
        if plan_limit < UNLIMITED:
            raise ValueError(f"Invalid plan limit: {plan_limit}")
        with self._lock:
            local_now = self._local_now()
            key = (user_id, feature_key, local_now.date())
            used = self._counts.get(key, 0)
            allowed = plan_limit == UNLIMITED or used < plan_limit
            if allowed:
                used += 1
                self._counts[key] = used
        reset_at = self._next_midnight(local_now.date())
        if not allowed:
            logger.info("Quota denied: %s/%s (%d/%d)", user_id, feature_key, used, plan_limit)
        return self._result(allowed, used, plan_limit, reset_at)

    def peek(self, user_id: str, feature_key: str, plan_limit: int) -> UsageCheck:
        """Report today's usage without consuming anything."""
        with self._lock:
            local_now = self._local_now()
            used = self._counts.get((user_id, feature_key, local_now.date()), 0)
        reset_at = self._next_midnight(local_now.date())
        allowed = plan_limit == UNLIMITED or used < plan_limit
        return self._result(allowed, used, plan_limit, reset_at)

    def check_plan(self, user_id: str, plan: str, feature_key: str) -> UsageCheck:
        return self.check_and_increment(user_id, feature_key, self.limit_for(plan, feature_key))

    def require(self, user_id: str, plan: str, feature_key: str) -> UsageCheck:
        """Like check_plan, but raises when denied.

        Raises:
            UpgradeRequiredError: If the plan does not include the feature.
            QuotaExceededError: If the plan's daily limit is used up.
        """
        if self.limit_for(plan, feature_key) == 0:
            required = self.required_plan(feature_key)
            logger.info("Upgrade required: %s on '%s' asked for %s (needs %s)", user_id, plan, feature_key, required)
            raise UpgradeRequiredError(user_id, feature_key, plan, required)
        result = self.check_plan(user_id, plan, feature_key)
        if not result.allowed:
            raise QuotaExceededError(user_id, feature_key, result.used, result.limit, result.reset_at)
        return result

    def records(self) -> list[UsageRecord]:
        """Snapshot of all counters, for mirroring to external storage."""
        with self._lock:
            items = sorted(self._counts.items(), key=lambda kv: (kv[0][2], kv[0][0], kv[0][1]))
        return [UsageRecord(user_id=u, feature_key=f, day=d, count=c) for (u, f, d), c in items]

    def purge_before(self, day: date) -> int:
        """Drop counters for days before `day`. Returns how many were removed."""
        with self._lock:
            stale = [key for key in self._counts if key[2] < day]
            for key in stale:
                del self._counts[key]
        if stale:
            logger.debug("Purged %d usage counters before %s", len(stale), day)
        return len(stale)
