"""Subscription-tier usage accounting for case generation."""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

from ..config import Settings
from ..logging_config import logger
from ..models.schemas import Decision, Subscription, Tier, UserRecord

WEEK = timedelta(days=7)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def is_new_day(last: Optional[datetime], now: datetime, tz: tzinfo = timezone.utc) -> bool:
    """True when ``now`` falls on a later calendar date than ``last`` in ``tz``."""
    if last is None:
        return True
    return _aware(last).astimezone(tz).date() != _aware(now).astimezone(tz).date()


def next_midnight(now: datetime, tz: tzinfo = timezone.utc) -> datetime:
    local = _aware(now).astimezone(tz)
    return datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=tz)


class QuotaLedger:
    """Decides whether a user may generate another case and records confirmed generations.

    Free users draw on a lifetime allowance that only an upgrade replenishes; Premium
    users get a daily allowance that rolls over at local midnight. The ledger mutates the
    records it is handed; callers persist them and serialize access per user.
    """

    def __init__(
        self,
        *,
        free_ceiling: int = 2,
        premium_ceiling: int = 50,
        premium_period: timedelta = timedelta(days=30),
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.free_ceiling = free_ceiling
        self.premium_ceiling = premium_ceiling
        self.premium_period = premium_period
        self.tz = tz
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "QuotaLedger":
        return cls(
            free_ceiling=settings.free_ceiling,
            premium_ceiling=settings.premium_daily_ceiling,
            premium_period=timedelta(days=settings.premium_period_days),
            tz=ZoneInfo(settings.quota_timezone),
            **kwargs,
        )

    def expire_if_due(self, user: UserRecord, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        subscription = user.usage_stats.subscription
        if subscription.tier is not Tier.PREMIUM or subscription.end_date is None:
            return False
        if _aware(now) <= _aware(subscription.end_date):
            return False
        user.usage_stats.subscription = Subscription(
            tier=Tier.FREE,
            is_active=True,
            start_date=subscription.start_date,
            end_date=None,
            total_used=subscription.total_used,
            ceiling=self.free_ceiling,
        )
        logger.info("quota.expired", user_id=user.id, ended_at=subscription.end_date.isoformat())
        return True

    def _roll_over(self, user: UserRecord, now: datetime) -> None:
        stats = user.usage_stats
        if is_new_day(stats.last_generated_at, now, self.tz):
            stats.today = 0

    def can_generate(self, user: Optional[UserRecord], now: Optional[datetime] = None) -> Decision:
        now = now or self.clock()
        if user is None or user.usage_stats is None or user.usage_stats.subscription is None:
            logger.warning("quota.denied", reason="state_unavailable")
            return Decision(allowed=False, remaining=0, reset_time=now)

        self.expire_if_due(user, now)
        subscription = user.usage_stats.subscription
        if not subscription.is_active:
            logger.warning("quota.denied", user_id=user.id, reason="inactive")
            return Decision(allowed=False, remaining=0, reset_time=now)

        if subscription.tier is Tier.PREMIUM:
            self._roll_over(user, now)
            remaining = subscription.ceiling - user.usage_stats.today
            reset_time = next_midnight(now, self.tz)
        else:
            remaining = subscription.ceiling - subscription.total_used
            reset_time = now

        return Decision(allowed=remaining > 0, remaining=max(remaining, 0), reset_time=reset_time)

    def commit(self, user: UserRecord, now: Optional[datetime] = None) -> UserRecord:
        """Record one successful generation. Call only after the result has been validated."""
        now = now or self.clock()
        stats = user.usage_stats
        if stats.subscription.tier is Tier.PREMIUM:
            self._roll_over(user, now)
            stats.today += 1
        else:
            stats.subscription.total_used += 1
        # Reporting only; never consulted for admission.
        if stats.last_generated_at is None or _aware(now) - _aware(stats.last_generated_at) > WEEK:
            stats.this_week = 0
        stats.this_week += 1
        stats.last_generated_at = now
        stats.total_generated += 1
        logger.info(
            "quota.committed",
            user_id=user.id,
            tier=stats.subscription.tier.value,
            total_used=stats.subscription.total_used,
            today=stats.today,
        )
        return user

    def upgrade(self, user: UserRecord, now: Optional[datetime] = None) -> UserRecord:
        now = now or self.clock()
        current = user.usage_stats.subscription
        user.usage_stats.subscription = Subscription(
            tier=Tier.PREMIUM,
            is_active=True,
            start_date=now,
            end_date=now + self.premium_period,
            total_used=current.total_used,
            ceiling=self.premium_ceiling,
        )
        logger.info("quota.upgraded", user_id=user.id, total_used=current.total_used)
        return user

    def usage_snapshot(self, user: UserRecord) -> Dict[str, Any]:
        return {"usageStats": user.usage_stats.model_dump(mode="json", by_alias=True)}
