"""TTL-cached lookup of valid sending domains"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, List, Optional, Tuple
import logging
import random
import threading

from ephemail.errors import DomainInvalid, StorageUnavailable
from ephemail.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class _OwnerDomains:
    domains: FrozenSet[str]
    expires_at: datetime


class DomainResolverCache:
    """
    Public domain list plus per-owner verified custom domains.

    The public list refreshes lazily once its TTL has passed; owner lists
    use a shorter TTL since ownership changes more often. When storage is
    down, stale entries keep being served; only a cold cache surfaces
    StorageUnavailable.
    """

    def __init__(self, storage, default_domain: str, public_ttl_seconds: int = 30 * 60,
                 owner_ttl_seconds: int = 5 * 60, clock=utcnow):
        self._storage = storage
        self._default_domain = default_domain
        self._public_ttl = timedelta(seconds=public_ttl_seconds)
        self._owner_ttl = timedelta(seconds=owner_ttl_seconds)
        self._clock = clock

        self._lock = threading.RLock()
        self._refresh_lock = threading.Lock()
        self._public: List[str] = []
        self._public_refreshed_at: Optional[datetime] = None
        self._owners: Dict[str, _OwnerDomains] = {}

    # Public domains

    def _public_is_fresh(self, now: datetime) -> bool:
        return (
            self._public_refreshed_at is not None
            and bool(self._public)
            and now - self._public_refreshed_at < self._public_ttl
        )

    def refresh_public(self) -> List[str]:
        """Reload the public list from storage; raises StorageUnavailable"""
        with self._refresh_lock:
            domains = self._storage.query_public_domains()
            with self._lock:
                self._public = list(dict.fromkeys(d.lower() for d in domains))
                self._public_refreshed_at = self._clock()
                logger.info(f"Refreshed domains cache: {len(self._public)} domains loaded")
                return list(self._public)

    def public_domains(self) -> List[str]:
        """Current public list, refreshed first if stale"""
        with self._lock:
            if self._public_is_fresh(self._clock()):
                return list(self._public)
            stale = list(self._public)
        try:
            return self.refresh_public()
        except StorageUnavailable as e:
            logger.warning(f"Failed to refresh domains cache, serving {len(stale)} stale domains: {e}")
            return stale

    def random_public_domain(self) -> str:
        domains = self.public_domains()
        if domains:
            return random.choice(domains)
        return self._default_domain

    def is_public_domain(self, domain: str) -> bool:
        """
        True if the domain is a known public domain.

        A fresh cache hit answers without storage; anything else refreshes
        once. Raises StorageUnavailable only when nothing was ever cached.
        """
        domain = domain.strip().lower()
        with self._lock:
            if self._public_is_fresh(self._clock()) and domain in self._public:
                return True
            stale = list(self._public)
        try:
            domains = self.refresh_public()
        except StorageUnavailable:
            if not stale:
                raise
            logger.warning(f"Checking {domain} against stale domains cache")
            domains = stale
        return domain in domains

    # Owner custom domains

    def owner_domains(self, owner_id: str) -> FrozenSet[str]:
        now = self._clock()
        with self._lock:
            entry = self._owners.get(owner_id)
            if entry is not None and entry.expires_at > now:
                return entry.domains

        try:
            domains = self._storage.query_owner_verified_domains(owner_id)
        except StorageUnavailable:
            if entry is None:
                raise
            logger.warning(f"Serving stale domains cache for {owner_id}")
            return entry.domains

        verified = frozenset(d.lower() for d in domains)
        with self._lock:
            self._owners[owner_id] = _OwnerDomains(domains=verified, expires_at=self._clock() + self._owner_ttl)
        logger.info(f"Refreshed user domains cache for {owner_id}: {len(verified)} domains")
        return verified

    def validate_owner_domain(self, owner_id: str, domain: str) -> Optional[str]:
        """Return the normalized domain if the owner has it verified, else None"""
        domain = domain.strip().lower()
        return domain if domain in self.owner_domains(owner_id) else None

    def resolve(self, owner_id: str, requested: Optional[str] = None) -> Tuple[str, bool]:
        """
        Pick the domain for a new entity.

        Returns:
            (domain, is_custom_domain)

        A requested domain the owner has not verified is still accepted when
        it is a known public domain, and is then treated as public.

        Raises:
            DomainInvalid: neither owner-verified nor public
            StorageUnavailable: could not confirm either way
        """
        if not requested:
            return self.random_public_domain(), False

        domain = requested.strip().lower()
        owner_error = None
        try:
            if self.validate_owner_domain(owner_id, domain):
                return domain, True
        except StorageUnavailable as e:
            owner_error = e

        if self.is_public_domain(domain):
            return domain, False

        if owner_error is not None:
            raise owner_error
        raise DomainInvalid(requested)

    # Maintenance

    def invalidate(self, owner_id: Optional[str] = None) -> None:
        """Drop one owner's cached domains, or the public list when no owner is given"""
        with self._lock:
            if owner_id is not None:
                self._owners.pop(owner_id, None)
                logger.info(f"Invalidated domains cache for user {owner_id}")
            else:
                self._public = []
                self._public_refreshed_at = None
                logger.info("Invalidated global domains cache")

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [owner_id for owner_id, entry in self._owners.items() if entry.expires_at <= now]
            for owner_id in expired:
                del self._owners[owner_id]
        return len(expired)

    def sizes(self) -> Dict[str, int]:
        with self._lock:
            return {
                "public_domains": len(self._public),
                "owner_domain_caches": len(self._owners),
                "cached_custom_domains": sum(len(e.domains) for e in self._owners.values()),
            }
