"""Reconciliation sync: periodic flush of in-memory counters to storage"""

from typing import Callable, Dict, Optional
import logging
import threading

from ephemail.errors import StorageUnavailable

logger = logging.getLogger(__name__)


class ReconciliationSync:
    """
    Flushes the usage meters on an interval and once more at shutdown.

    Storage outages are logged and retried on the next cycle; the meters
    keep their deltas queued until a flush commits.
    """

    def __init__(self, storage, usage, domain_usage, domains,
                 entity_count: Callable[[], int], interval_seconds: float = 30):
        self._storage = storage
        self._usage = usage
        self._domain_usage = domain_usage
        self._domains = domains
        self._entity_count = entity_count
        self.interval_seconds = interval_seconds

        self._cycle_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> Dict[str, Optional[int]]:
        """
        One reconciliation cycle.

        Returns:
            Records written per step, None for a step that failed
        """
        results: Dict[str, Optional[int]] = {}
        with self._cycle_lock:
            for name, flush in (("usage", self._usage.flush), ("domain_usage", self._domain_usage.flush)):
                try:
                    results[name] = flush()
                except StorageUnavailable as e:
                    logger.error(f"Failed to sync {name} to database: {e}")
                    results[name] = None

            sizes = self._domains.sizes()
            try:
                self._storage.record_domain_stats(
                    public_domains=sizes["public_domains"],
                    owner_caches=sizes["owner_domain_caches"],
                    cached_custom_domains=sizes["cached_custom_domains"],
                    live_entities=self._entity_count(),
                )
                results["domain_stats"] = 1
            except StorageUnavailable as e:
                logger.warning(f"Failed to record domain cache stats: {e}")
                results["domain_stats"] = None

        return results

    def _run_loop(self) -> None:
        logger.info(f"Starting sync loop (interval: {self.interval_seconds}s)")
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Sync loop error: {e}")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="reconciliation-sync", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> Dict[str, Optional[int]]:
        """Stop the loop after its current cycle, then flush one last time"""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

        logger.info("Running final sync before shutdown")
        return self.run_once()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
