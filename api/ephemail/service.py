"""Wires the stores, caches and background loops into one service object"""

from typing import Dict, Optional
import logging

from ephemail.aliases import AliasStore
from ephemail.domains import DomainResolverCache
from ephemail.notifications import NotificationHub
from ephemail.scheduler import EvictionScheduler
from ephemail.schemas import InboundMail, UsageStats
from ephemail.store import EntityStore
from ephemail.sync import ReconciliationSync
from ephemail.usage import DomainUsageMeter, UsageCounter
from ephemail.utils import utcnow

logger = logging.getLogger(__name__)


class TempMailService:
    """
    Owns every in-memory component for one service instance.

    Components talk to each other only through their public operations;
    this class is where they are built and where the admin surface reads
    stats from.
    """

    def __init__(self, settings, storage, clock=utcnow):
        self.settings = settings
        self.storage = storage

        self.scheduler = EvictionScheduler(
            interval_seconds=settings.SWEEP_INTERVAL_SECONDS,
            initial_delay_seconds=settings.INITIAL_SWEEP_DELAY_SECONDS,
        )
        self.notifier = NotificationHub(
            workers=settings.NOTIFY_WORKERS,
            send_timeout=settings.NOTIFY_SEND_TIMEOUT_SECONDS,
        )
        self.domains = DomainResolverCache(
            storage,
            default_domain=settings.DEFAULT_DOMAIN,
            public_ttl_seconds=settings.PUBLIC_DOMAIN_CACHE_TTL_SECONDS,
            owner_ttl_seconds=settings.OWNER_DOMAIN_CACHE_TTL_SECONDS,
            clock=clock,
        )
        self.usage = UsageCounter(
            storage,
            limits=settings.DAILY_LIMITS,
            privileged_levels=settings.PRIVILEGED_QUOTA_LEVELS,
            retention_days=settings.USAGE_RETENTION_DAYS,
            clock=clock,
        )
        self.domain_usage = DomainUsageMeter(
            storage,
            daily_limit=settings.CUSTOM_DOMAIN_DAILY_LIMIT,
            total_limit=settings.CUSTOM_DOMAIN_TOTAL_LIMIT,
            idle_hours=settings.DOMAIN_USAGE_IDLE_HOURS,
            clock=clock,
        )
        self.store = EntityStore(
            settings, self.domains, self.usage, self.domain_usage,
            self.scheduler, self.notifier, clock=clock,
        )
        self.aliases = AliasStore(settings, storage, self.notifier, clock=clock)
        self.sync = ReconciliationSync(
            storage, self.usage, self.domain_usage, self.domains,
            entity_count=self.store.entity_count,
            interval_seconds=settings.SYNC_INTERVAL_SECONDS,
        )

        self.scheduler.register_sweep("expired emails", self.store.sweep)
        self.scheduler.register_sweep("old usage counters", self.usage.sweep)
        self.scheduler.register_sweep("idle custom domain counters", self.domain_usage.sweep)
        self.scheduler.register_sweep("expired domain caches", self.domains.sweep)
        self.scheduler.register_sweep("inactive aliases", self.aliases.sweep)
        self.scheduler.register_sweep("dead subscriptions", lambda: self.notifier.prune(self.is_live))

    # Lifecycle

    def start(self) -> None:
        self.scheduler.start()
        self.sync.start()
        logger.info("API Memory Store initialized with periodic sync and cleanup")

    def stop(self) -> None:
        """Stop background loops; the sync runs a final flush before returning"""
        self.scheduler.stop()
        self.sync.stop()
        self.notifier.shutdown()
        logger.info("API Memory Store stopped")

    # Inbound mail and subscriptions

    def deliver(self, mail: InboundMail) -> bool:
        """Route a webhook delivery to an API mailbox or a Gmail alias"""
        if self.store.deliver(mail):
            return True
        return self.aliases.store_received(mail.address, mail.to_message())

    def is_live(self, owner_id: str, address: str) -> bool:
        return self.store.is_live(owner_id, address) or self.aliases.is_live(owner_id, address)

    def subscribe(self, owner_id: str, address: str, sink) -> bool:
        """Register a push sink; refused for addresses the owner has no live mailbox for"""
        if not self.is_live(owner_id, address):
            return False
        self.notifier.subscribe(owner_id, address, sink)
        return True

    def unsubscribe(self, owner_id: str, address: str, sink) -> bool:
        return self.notifier.unsubscribe(owner_id, address, sink)

    # Admin surface

    def usage_stats(self, owner_id: str) -> UsageStats:
        return UsageStats(
            usage=self.usage.usage(owner_id),
            limits=self.usage.limits(),
            reset_time=self.usage.reset_time(),
        )

    def flush(self) -> Dict[str, Optional[int]]:
        return self.sync.run_once()

    def invalidate_domains(self, owner_id: Optional[str] = None) -> None:
        self.domains.invalidate(owner_id)

    def entity_count(self) -> int:
        return self.store.entity_count()

    def owner_count(self) -> int:
        return self.store.owner_count()

    def cache_sizes(self) -> Dict[str, int]:
        sizes = {
            "entities": self.store.entity_count(),
            "owners": self.store.owner_count(),
            "addresses": self.store.address_count(),
            "usage_counters": self.usage.size(),
            "pending_usage_deltas": self.usage.pending_count(),
            "custom_domain_counters": self.domain_usage.size(),
            "pending_custom_domain_deltas": self.domain_usage.pending_count(),
            "pending_timers": self.scheduler.pending_timers(),
        }
        sizes.update(self.domains.sizes())
        sizes.update(self.aliases.stats())
        sizes.update(self.notifier.stats())
        return sizes
