"""
In-memory usage metering with batched persistence.

Two meters share the same discipline: increments are applied in memory
immediately and queued as additive deltas keyed by calendar day, and a
periodic flush writes the queue to storage. A flush swaps the queue out so
increments arriving mid-flush land in a fresh bucket; a failed flush merges
its batch back for the next cycle.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Hashable, Iterable, List, Optional, Tuple
import logging
import threading

from ephemail.errors import StorageUnavailable
from ephemail.storage import DomainUsageDelta, UsageDelta
from ephemail.utils import local_date, next_local_midnight, utcnow

logger = logging.getLogger(__name__)


@dataclass
class PendingDelta:
    """Accumulated change not yet written to storage"""
    daily: Counter = field(default_factory=Counter)
    total: int = 0
    last_entity_id: Optional[str] = None

    def merge(self, older: "PendingDelta") -> None:
        self.daily.update(older.daily)
        self.total += older.total
        if self.last_entity_id is None:
            self.last_entity_id = older.last_entity_id


class _DeltaQueue:
    """Pending delta buckets with swap-out flushing"""

    def __init__(self, storage, clock=utcnow):
        self._storage = storage
        self._clock = clock
        self._lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._pending: Dict[Hashable, PendingDelta] = {}

    def _today(self) -> date:
        return local_date(self._clock())

    def _queue(self, key: Hashable) -> PendingDelta:
        # caller holds self._lock
        delta = self._pending.get(key)
        if delta is None:
            delta = self._pending[key] = PendingDelta()
        return delta

    def _write(self, batch: Dict[Hashable, PendingDelta]) -> int:
        raise NotImplementedError

    def flush(self) -> int:
        """
        Write all queued deltas to storage.

        Returns:
            Number of delta buckets written

        Raises:
            StorageUnavailable: batch is requeued and retried next cycle
        """
        with self._flush_lock:
            with self._lock:
                batch, self._pending = self._pending, {}

            if not batch:
                return 0

            try:
                written = self._write(batch)
            except StorageUnavailable:
                with self._lock:
                    for key, delta in batch.items():
                        current = self._pending.get(key)
                        if current is None:
                            self._pending[key] = delta
                        else:
                            current.merge(delta)
                logger.warning(f"{type(self).__name__}: flush failed, requeued {len(batch)} deltas")
                raise

            logger.info(f"{type(self).__name__}: synced {written} records to database")
            return written

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _flush_in_progress(self) -> bool:
        if self._flush_lock.acquire(blocking=False):
            self._flush_lock.release()
            return False
        return True


# ============================================================================
# Per-tier daily quotas
# ============================================================================

@dataclass
class _OwnerUsage:
    day: date
    touched_at: datetime
    daily: Counter = field(default_factory=Counter)
    total: Counter = field(default_factory=Counter)


class UsageCounter(_DeltaQueue):
    """Daily per-tier creation quotas and lifetime usage per owner"""

    def __init__(self, storage, limits: Dict[str, int], privileged_levels: Iterable[str] = (),
                 retention_days: int = 7, clock=utcnow):
        super().__init__(storage, clock)
        self._limits = dict(limits)
        self._privileged = set(privileged_levels)
        self._retention_days = retention_days
        self._owners: Dict[str, _OwnerUsage] = {}

    def is_privileged(self, quota_level: Optional[str]) -> bool:
        return quota_level in self._privileged

    def limit_for(self, tier: str) -> Optional[int]:
        return self._limits.get(tier)

    def _current(self, owner_id: str, create: bool = True) -> Optional[_OwnerUsage]:
        # caller holds self._lock
        now = self._clock()
        today = local_date(now)
        usage = self._owners.get(owner_id)
        if usage is None:
            if not create:
                return None
            usage = self._owners[owner_id] = _OwnerUsage(day=today, touched_at=now)
        elif usage.day != today:
            self._rollover(owner_id, usage, today)
        usage.touched_at = now
        return usage

    def _rollover(self, owner_id: str, usage: _OwnerUsage, today: date) -> None:
        # Deltas are bucketed by day, so the previous day's pending bucket
        # stays queued as-is and today's increments start a new one.
        logger.debug(f"Daily rollover for {owner_id}: {usage.day} -> {today}")
        usage.day = today
        usage.daily = Counter()

    def daily_rollover(self, owner_id: str) -> bool:
        """Reset today's counts if the owner was last seen on an earlier day"""
        with self._lock:
            usage = self._owners.get(owner_id)
            today = self._today()
            if usage is None or usage.day == today:
                return False
            self._rollover(owner_id, usage, today)
            return True

    def check_quota(self, owner_id: str, tier: str, quota_level: Optional[str] = None) -> bool:
        """True if the owner may create another entity of this tier today"""
        if self.is_privileged(quota_level):
            return True
        limit = self._limits.get(tier)
        if limit is None:
            return True
        with self._lock:
            usage = self._current(owner_id, create=False)
            count = usage.daily[tier] if usage else 0
        return count < limit

    def increment(self, owner_id: str, tier: str, entity_id: Optional[str] = None) -> int:
        """Count one creation; returns today's count for the tier"""
        with self._lock:
            usage = self._current(owner_id)
            usage.daily[tier] += 1
            usage.total[tier] += 1

            delta = self._queue((owner_id, usage.day))
            delta.daily[tier] += 1
            delta.total += 1
            if entity_id:
                delta.last_entity_id = entity_id

            return usage.daily[tier]

    def usage(self, owner_id: str) -> Dict[str, int]:
        """Today's count per configured tier"""
        with self._lock:
            usage = self._current(owner_id, create=False)
            return {tier: (usage.daily[tier] if usage else 0) for tier in self._limits}

    def lifetime(self, owner_id: str) -> Dict[str, int]:
        with self._lock:
            usage = self._owners.get(owner_id)
            return {tier: (usage.total[tier] if usage else 0) for tier in self._limits}

    def limits(self) -> Dict[str, int]:
        return dict(self._limits)

    def reset_time(self) -> datetime:
        return next_local_midnight(self._clock())

    def _write(self, batch) -> int:
        deltas = [
            UsageDelta(
                owner_id=owner_id,
                day=day,
                counts={tier: count for tier, count in delta.daily.items() if count},
                last_entity_id=delta.last_entity_id,
            )
            for (owner_id, day), delta in batch.items()
        ]
        return self._storage.upsert_usage_snapshots(deltas)

    def sweep(self) -> int:
        """Drop owners not seen within the retention window"""
        cutoff = self._today() - timedelta(days=self._retention_days)
        removed = 0
        with self._lock:
            pending_owners = {owner_id for owner_id, _ in self._pending}
            for owner_id in list(self._owners):
                usage = self._owners[owner_id]
                if usage.day < cutoff and owner_id not in pending_owners:
                    del self._owners[owner_id]
                    removed += 1
        return removed

    def size(self) -> int:
        with self._lock:
            return len(self._owners)


# ============================================================================
# Custom domain meter
# ============================================================================

@dataclass
class DomainLimitStatus:
    can_create: bool
    daily_limit_reached: bool
    total_limit_reached: bool
    daily_count: int
    total_count: int
    daily_limit: int
    total_limit: int
    reset_time: datetime


@dataclass
class _DomainUsage:
    day: date
    touched_at: datetime
    daily_count: int = 0
    total_count: int = 0


class DomainUsageMeter(_DeltaQueue):
    """
    Daily and lifetime creation limits per (owner, custom domain).

    Entries are loaded from storage on first use. The lifetime total is the
    only counter that goes down, when a metered entity is deleted.
    """

    def __init__(self, storage, daily_limit: int = 20, total_limit: int = 100,
                 idle_hours: int = 25, clock=utcnow):
        super().__init__(storage, clock)
        self.daily_limit = daily_limit
        self.total_limit = total_limit
        self._idle = timedelta(hours=idle_hours)
        self._entries: Dict[Tuple[str, str], _DomainUsage] = {}

    def _load(self, owner_id: str, domain: str) -> _DomainUsage:
        now = self._clock()
        today = local_date(now)
        try:
            row = self._storage.load_custom_domain_usage(owner_id, domain)
        except StorageUnavailable as e:
            logger.error(f"Error loading domain usage for {domain}: {e}")
            row = None

        if row is None:
            return _DomainUsage(day=today, touched_at=now)

        daily = row.daily_count if row.last_reset_date == today else 0
        return _DomainUsage(day=today, touched_at=now, daily_count=daily, total_count=row.total_count)

    def preload(self, owner_id: str, domain: str) -> _DomainUsage:
        """
        Make sure the entry is in memory so later calls don't touch storage.

        Returns the entry; hand it back to check() and increment() so they
        reinstate it if a sweep dropped it in between.
        """
        key = (owner_id, domain)
        with self._lock:
            usage = self._entries.get(key)
            if usage is not None:
                return usage
        loaded = self._load(owner_id, domain)
        with self._lock:
            return self._entries.setdefault(key, loaded)

    def _entry(self, owner_id: str, domain: str, usage: Optional[_DomainUsage] = None) -> _DomainUsage:
        if usage is None:
            usage = self.preload(owner_id, domain)
        with self._lock:
            usage = self._entries.setdefault((owner_id, domain), usage)
            now = self._clock()
            today = local_date(now)
            if usage.day != today:
                usage.day = today
                usage.daily_count = 0
            usage.touched_at = now
            return usage

    def check(self, owner_id: str, domain: str, usage: Optional[_DomainUsage] = None) -> DomainLimitStatus:
        usage = self._entry(owner_id, domain, usage)
        with self._lock:
            daily_reached = usage.daily_count >= self.daily_limit
            total_reached = usage.total_count >= self.total_limit
            return DomainLimitStatus(
                can_create=not daily_reached and not total_reached,
                daily_limit_reached=daily_reached,
                total_limit_reached=total_reached,
                daily_count=usage.daily_count,
                total_count=usage.total_count,
                daily_limit=self.daily_limit,
                total_limit=self.total_limit,
                reset_time=next_local_midnight(self._clock()),
            )

    def increment(self, owner_id: str, domain: str, entity_id: Optional[str] = None,
                  usage: Optional[_DomainUsage] = None) -> None:
        usage = self._entry(owner_id, domain, usage)
        with self._lock:
            usage.daily_count += 1
            usage.total_count += 1
            delta = self._queue((owner_id, domain, usage.day))
            delta.daily[domain] += 1
            delta.total += 1
            if entity_id:
                delta.last_entity_id = entity_id

    def decrement(self, owner_id: str, domain: str) -> None:
        """Give back one lifetime slot after a metered entity is deleted"""
        usage = self._entry(owner_id, domain)
        with self._lock:
            if usage.total_count <= 0:
                return
            usage.total_count -= 1
            self._queue((owner_id, domain, usage.day)).total -= 1

    def _write(self, batch) -> int:
        deltas: List[DomainUsageDelta] = [
            DomainUsageDelta(
                owner_id=owner_id,
                domain=domain,
                day=day,
                daily=delta.daily[domain],
                total=delta.total,
                last_entity_id=delta.last_entity_id,
            )
            for (owner_id, domain, day), delta in batch.items()
        ]
        return self._storage.apply_domain_usage_deltas(deltas)

    def sweep(self) -> int:
        """Drop idle entries; they reload from storage on next use"""
        if self._flush_in_progress():
            return 0
        cutoff = self._clock() - self._idle
        removed = 0
        with self._lock:
            pending_keys = {(owner_id, domain) for owner_id, domain, _ in self._pending}
            for key in list(self._entries):
                if self._entries[key].touched_at < cutoff and key not in pending_keys:
                    del self._entries[key]
                    removed += 1
        return removed

    def size(self) -> int:
        with self._lock:
            return len(self._entries)
