"""
TTL entity store for API-created mailboxes.

Entities live only in memory. Three maps are kept in sync under one lock:
the entity table, the owner index and the address index used to route
inbound mail. Expired entities are removed lazily by any read that meets
them, by their one-shot timer, or by the periodic sweep, whichever comes
first; all three are safe on an id that is already gone.
"""

from collections import namedtuple
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set
import logging
import threading
import uuid

from ephemail.errors import AddressGenerationExhausted, InvalidTier, QuotaExceeded
from ephemail.schemas import InboundMail, Message, NewMailNotification
from ephemail.utils import generate_address, utcnow

logger = logging.getLogger(__name__)

AddressRoute = namedtuple("AddressRoute", ["owner_id", "entity_id"])


@dataclass
class Entity:
    """One disposable mailbox and its received messages, newest first"""
    id: str
    owner_id: str
    address: str
    tier: str
    domain: str
    is_custom_domain: bool
    created_at: datetime
    expires_at: datetime
    metered: bool = False
    messages: List[Message] = field(default_factory=list)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class EntityStore:

    def __init__(self, settings, domains, usage, domain_usage, scheduler, notifier, clock=utcnow):
        self._settings = settings
        self._domains = domains
        self._usage = usage
        self._domain_usage = domain_usage
        self._scheduler = scheduler
        self._notifier = notifier
        self._clock = clock

        self._lock = threading.RLock()
        self._entities: Dict[str, Entity] = {}
        self._by_owner: Dict[str, Set[str]] = {}
        self._by_address: Dict[str, AddressRoute] = {}

    # ------------------------------------------------------------------
    # Internal helpers (caller holds self._lock)
    # ------------------------------------------------------------------

    def _remove_locked(self, entity: Entity) -> None:
        self._entities.pop(entity.id, None)

        ids = self._by_owner.get(entity.owner_id)
        if ids is not None:
            ids.discard(entity.id)
            if not ids:
                del self._by_owner[entity.owner_id]

        route = self._by_address.get(entity.address)
        if route is not None and route.entity_id == entity.id:
            del self._by_address[entity.address]

    def _allocate_address_locked(self, domain: str) -> str:
        attempts = self._settings.ADDRESS_GENERATION_ATTEMPTS
        for _ in range(attempts):
            address = generate_address(domain, self._settings.LOCAL_PART_LENGTH)
            if address not in self._by_address:
                return address
        raise AddressGenerationExhausted(attempts)

    @staticmethod
    def _snapshot(entity: Entity) -> Entity:
        return replace(entity, messages=list(entity.messages))

    def _expired_cleanup(self, entity_ids: List[str]) -> None:
        for entity_id in entity_ids:
            self._scheduler.cancel(entity_id)
        if entity_ids:
            logger.debug(f"Lazily removed {len(entity_ids)} expired API emails")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(self, owner_id: str, tier: str = "10min", domain: Optional[str] = None,
               quota_level: Optional[str] = "free") -> Entity:
        """
        Allocate a new mailbox.

        Args:
            owner_id: Owning account
            tier: Duration class, a key of TIER_DURATIONS
            domain: Requested domain; a random public domain when omitted
            quota_level: Owner privilege level; privileged levels are not metered

        Raises:
            InvalidTier, QuotaExceeded, DomainInvalid, AddressGenerationExhausted,
            StorageUnavailable (domain cache cold and storage down)
        """
        duration = self._settings.TIER_DURATIONS.get(tier)
        if duration is None:
            raise InvalidTier(tier)

        privileged = self._usage.is_privileged(quota_level)
        if not privileged and not self._usage.check_quota(owner_id, tier):
            raise QuotaExceeded(tier, self._usage.limit_for(tier))

        chosen, is_custom = self._domains.resolve(owner_id, domain)
        metered = is_custom and not privileged
        meter_entry = self._domain_usage.preload(owner_id, chosen) if metered else None

        # Quota checks, allocation and counting happen under the store lock so
        # concurrent creates for one owner cannot overshoot a limit.
        with self._lock:
            if not privileged and not self._usage.check_quota(owner_id, tier):
                raise QuotaExceeded(tier, self._usage.limit_for(tier))

            if metered:
                status = self._domain_usage.check(owner_id, chosen, meter_entry)
                if not status.can_create:
                    if status.daily_limit_reached:
                        raise QuotaExceeded(tier, status.daily_limit, scope="daily", domain=chosen)
                    raise QuotaExceeded(tier, status.total_limit, scope="total", domain=chosen)

            address = self._allocate_address_locked(chosen)
            now = self._clock()
            entity = Entity(
                id=str(uuid.uuid4()),
                owner_id=owner_id,
                address=address,
                tier=tier,
                domain=chosen,
                is_custom_domain=is_custom,
                created_at=now,
                expires_at=now + timedelta(seconds=duration),
                metered=metered,
            )

            # Armed before anything is recorded, so a failure leaves no trace
            self._scheduler.schedule(entity.id, duration, self.expire)

            self._entities[entity.id] = entity
            self._by_owner.setdefault(owner_id, set()).add(entity.id)
            self._by_address[address] = AddressRoute(owner_id, entity.id)

            if not privileged:
                self._usage.increment(owner_id, tier, entity.id)
            if metered:
                self._domain_usage.increment(owner_id, chosen, entity.id, meter_entry)

            snapshot = self._snapshot(entity)

        logger.info(f"Created API email: {address} for user {owner_id}, expires at {entity.expires_at.isoformat()}")
        return snapshot

    def get(self, entity_id: str, owner_id: str) -> Optional[Entity]:
        """The owner's live entity, or None. Removes it if it has expired."""
        now = self._clock()
        with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None or entity.owner_id != owner_id:
                return None
            if not entity.is_expired(now):
                return self._snapshot(entity)
            self._remove_locked(entity)

        self._expired_cleanup([entity_id])
        return None

    def list_by_owner(self, owner_id: str, include_expired: bool = False) -> List[Entity]:
        """
        All of an owner's entities, newest first.

        Expired entities met on the way are removed; with include_expired
        they are still returned as their final snapshot.
        """
        now = self._clock()
        result: List[Entity] = []
        expired: List[str] = []
        with self._lock:
            for entity_id in list(self._by_owner.get(owner_id, ())):
                entity = self._entities.get(entity_id)
                if entity is None:
                    continue
                if entity.is_expired(now):
                    self._remove_locked(entity)
                    expired.append(entity_id)
                    if not include_expired:
                        continue
                result.append(self._snapshot(entity))

        self._expired_cleanup(expired)
        return sorted(result, key=lambda e: e.created_at, reverse=True)

    def delete(self, entity_id: str, owner_id: str) -> bool:
        """
        Delete an owner's live entity.

        Returns:
            False if absent, expired or owned by someone else
        """
        now = self._clock()
        with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None or entity.owner_id != owner_id:
                return False
            self._remove_locked(entity)

        self._scheduler.cancel(entity_id)

        if entity.is_expired(now):
            return False

        if entity.metered:
            self._domain_usage.decrement(owner_id, entity.domain)

        logger.info(f"API email {entity.address} deleted by user {owner_id}")
        return True

    def append_message(self, entity_id: str, message: Message) -> bool:
        """
        Add a received message at the head of the entity's list.

        The list keeps the newest MAX_MESSAGES_PER_ENTITY messages. Returns
        False when the entity is missing or expired.
        """
        now = self._clock()
        with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None:
                return False
            if entity.is_expired(now):
                self._remove_locked(entity)
                expired = True
            else:
                expired = False
                entity.messages.insert(0, message)
                del entity.messages[self._settings.MAX_MESSAGES_PER_ENTITY:]
                owner_id, address = entity.owner_id, entity.address

        if expired:
            self._expired_cleanup([entity_id])
            return False

        logger.info(f"Added message to API email {address}: {message.subject}")

        payload = NewMailNotification(address=address, message=message, timestamp=now)
        self._notifier.publish(owner_id, address, payload.model_dump(mode="json"))
        return True

    # ------------------------------------------------------------------
    # Inbound routing
    # ------------------------------------------------------------------

    def lookup_address(self, address: str) -> Optional[AddressRoute]:
        """Owner and entity id for a live address. Removes it if it has expired."""
        address = address.strip().lower()
        now = self._clock()
        with self._lock:
            route = self._by_address.get(address)
            if route is None:
                return None
            entity = self._entities.get(route.entity_id)
            if entity is None:
                del self._by_address[address]
                return None
            if not entity.is_expired(now):
                return route
            self._remove_locked(entity)

        self._expired_cleanup([entity.id])
        return None

    def deliver(self, mail: InboundMail) -> bool:
        """Route a webhook delivery to its mailbox"""
        route = self.lookup_address(mail.address)
        if route is None:
            return False
        return self.append_message(route.entity_id, mail.to_message())

    def is_live(self, owner_id: str, address: str) -> bool:
        route = self.lookup_address(address)
        return route is not None and route.owner_id == owner_id

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def expire(self, entity_id: str) -> bool:
        """Timer callback: remove the entity if it is still present"""
        with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None:
                return False
            self._remove_locked(entity)

        logger.info(f"API email {entity.address} automatically expired and cleaned up")
        return True

    def sweep(self) -> int:
        """Remove every expired entity"""
        now = self._clock()
        with self._lock:
            expired = [entity for entity in self._entities.values() if entity.is_expired(now)]
            for entity in expired:
                self._remove_locked(entity)

        for entity in expired:
            self._scheduler.cancel(entity.id)
        return len(expired)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def entity_count(self) -> int:
        with self._lock:
            return len(self._entities)

    def owner_count(self) -> int:
        with self._lock:
            return len(self._by_owner)

    def address_count(self) -> int:
        with self._lock:
            return len(self._by_address)
