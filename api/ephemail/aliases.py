"""
Gmail alias store.

Aliases are dot or plus variants of a parent Gmail account's address, so
mail sent to them lands in the parent inbox and is forwarded to the
webhook. They live in memory with a sliding TTL: every read or delivery
refreshes `last_used`.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set
import logging
import threading

from ephemail.errors import AddressGenerationExhausted, NoGmailAccounts, StorageUnavailable
from ephemail.schemas import Message, NewMailNotification
from ephemail.utils import generate_dot_alias, generate_plus_alias, utcnow

logger = logging.getLogger(__name__)

STRATEGIES = {
    'dot': generate_dot_alias,
    'plus': generate_plus_alias,
}


@dataclass
class Alias:
    alias: str
    owner_id: str
    parent_account_id: str
    parent_account: str
    strategy: str
    domain: str
    created_at: datetime
    last_used: datetime
    messages: List[Message] = field(default_factory=list)


class AliasStore:

    def __init__(self, settings, storage, notifier, clock=utcnow):
        self._settings = settings
        self._storage = storage
        self._notifier = notifier
        self._clock = clock
        self._ttl = timedelta(hours=settings.ALIAS_TTL_HOURS)

        self._lock = threading.RLock()
        self._aliases: Dict[str, Alias] = {}
        self._by_owner: Dict[str, Set[str]] = {}

    def _is_alive(self, alias: Alias, now: datetime) -> bool:
        return now - alias.last_used <= self._ttl

    def _remove_locked(self, alias: Alias) -> None:
        self._aliases.pop(alias.alias, None)
        owned = self._by_owner.get(alias.owner_id)
        if owned is not None:
            owned.discard(alias.alias)
            if not owned:
                del self._by_owner[alias.owner_id]

    def _live_locked(self, address: str, now: datetime) -> Optional[Alias]:
        alias = self._aliases.get(address)
        if alias is None:
            return None
        if not self._is_alive(alias, now):
            self._remove_locked(alias)
            return None
        return alias

    def generate(self, owner_id: str, strategy: str = 'dot', domain: Optional[str] = None) -> Alias:
        """
        Create a new alias on the least used parent account.

        Raises:
            NoGmailAccounts: no parent account configured
            AddressGenerationExhausted: no unused variant found
            StorageUnavailable: parent account lookup failed
        """
        domain = (domain or self._settings.GMAIL_DEFAULT_DOMAIN).lower()
        generator = STRATEGIES.get(strategy)
        if generator is None:
            strategy, generator = 'dot', generate_dot_alias

        account = self._storage.pick_gmail_account()
        if account is None:
            raise NoGmailAccounts()

        attempts = self._settings.ADDRESS_GENERATION_ATTEMPTS
        now = self._clock()
        with self._lock:
            for _ in range(attempts):
                address = generator(account.email, domain).lower()
                if self._live_locked(address, now) is None:
                    break
            else:
                raise AddressGenerationExhausted(attempts)

            alias = Alias(
                alias=address,
                owner_id=owner_id,
                parent_account_id=account.id,
                parent_account=account.email,
                strategy=strategy,
                domain=domain,
                created_at=now,
                last_used=now,
            )
            self._aliases[address] = alias
            self._by_owner.setdefault(owner_id, set()).add(address)
            snapshot = replace(alias, messages=[])

        try:
            self._storage.bump_gmail_account(account.id)
        except StorageUnavailable as e:
            logger.warning(f"Could not update stats for Gmail account {account.email}: {e}")

        logger.info(f"Generated Gmail alias: {address} for user {owner_id}")
        return snapshot

    def rotate(self, owner_id: str, strategy: str = 'dot', domain: Optional[str] = None) -> Alias:
        """Drop all of the owner's aliases and issue a fresh one"""
        with self._lock:
            for address in list(self._by_owner.get(owner_id, ())):
                alias = self._aliases.get(address)
                if alias is not None:
                    self._remove_locked(alias)
        logger.info(f"Rotating alias for user {owner_id}")
        return self.generate(owner_id, strategy, domain)

    def messages(self, owner_id: str, address: str) -> Optional[List[Message]]:
        """Cached messages for an owned live alias, newest first"""
        now = self._clock()
        with self._lock:
            alias = self._live_locked(address.lower(), now)
            if alias is None or alias.owner_id != owner_id:
                return None
            alias.last_used = now
            return list(alias.messages)

    def list_by_owner(self, owner_id: str) -> List[Alias]:
        now = self._clock()
        result = []
        with self._lock:
            for address in list(self._by_owner.get(owner_id, ())):
                alias = self._live_locked(address, now)
                if alias is not None:
                    result.append(replace(alias, messages=list(alias.messages)))
        return sorted(result, key=lambda a: a.created_at, reverse=True)

    def store_received(self, address: str, message: Message) -> bool:
        """Webhook path: keep the message and push it to subscribers"""
        address = address.strip().lower()
        now = self._clock()
        with self._lock:
            alias = self._live_locked(address, now)
            if alias is None:
                logger.debug(f"Alias {address} not found in cache, skipping email storage")
                return False
            alias.messages.insert(0, message)
            del alias.messages[self._settings.MAX_MESSAGES_PER_ENTITY:]
            alias.last_used = now
            owner_id = alias.owner_id

        payload = NewMailNotification(address=address, message=message, timestamp=now)
        self._notifier.publish(owner_id, address, payload.model_dump(mode="json"))
        logger.info(f"Stored email {message.id} for alias {address}")
        return True

    def is_active(self, address: str) -> bool:
        now = self._clock()
        with self._lock:
            return self._live_locked(address.strip().lower(), now) is not None

    def is_live(self, owner_id: str, address: str) -> bool:
        now = self._clock()
        with self._lock:
            alias = self._live_locked(address.strip().lower(), now)
            return alias is not None and alias.owner_id == owner_id

    def sweep(self) -> int:
        """Remove aliases unused for longer than the TTL"""
        now = self._clock()
        with self._lock:
            inactive = [alias for alias in self._aliases.values() if not self._is_alive(alias, now)]
            for alias in inactive:
                self._remove_locked(alias)
        if inactive:
            logger.info(f"Cleaned up {len(inactive)} inactive aliases")
        return len(inactive)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "total_aliases": len(self._aliases),
                "total_cached_emails": sum(len(a.messages) for a in self._aliases.values()),
            }
