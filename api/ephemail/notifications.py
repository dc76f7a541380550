"""Best-effort push of new messages to live subscribers"""

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Set, Tuple
import logging
import threading

logger = logging.getLogger(__name__)

Key = Tuple[str, str]


class NotificationHub:
    """
    Subscribers keyed by (owner_id, address).

    A sink is any object with a `send(payload, timeout)` method. Sends run on
    a small worker pool and are never awaited; a failing sink is logged and
    skipped, the subscriber is expected to re-fetch if it misses a push.
    """

    def __init__(self, workers: int = 4, send_timeout: float = 2.0):
        self._send_timeout = send_timeout
        self._lock = threading.Lock()
        self._subscribers: Dict[Key, Set[object]] = {}
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify")
        self._closed = False

    def subscribe(self, owner_id: str, address: str, sink) -> None:
        key = (owner_id, address.lower())
        with self._lock:
            self._subscribers.setdefault(key, set()).add(sink)
        logger.info(f"Client subscribed: {owner_id}:{address}")

    def unsubscribe(self, owner_id: str, address: str, sink) -> bool:
        key = (owner_id, address.lower())
        with self._lock:
            sinks = self._subscribers.get(key)
            if not sinks or sink not in sinks:
                return False
            sinks.discard(sink)
            if not sinks:
                del self._subscribers[key]
        logger.info(f"Client unsubscribed: {owner_id}:{address}")
        return True

    def publish(self, owner_id: str, address: str, payload: dict) -> int:
        """Queue `payload` for every sink on the key; returns how many were queued"""
        with self._lock:
            if self._closed:
                return 0
            sinks = list(self._subscribers.get((owner_id, address.lower()), ()))
            # shutdown() closes the pool only after taking the lock
            for sink in sinks:
                self._executor.submit(self._deliver, sink, payload)

        if sinks:
            logger.debug(f"Notified {len(sinks)} clients about new email for {address}")
        return len(sinks)

    def _deliver(self, sink, payload: dict) -> None:
        try:
            sink.send(payload, timeout=self._send_timeout)
        except Exception as e:
            logger.debug(f"Push to subscriber failed: {e}")

    def prune(self, is_live: Callable[[str, str], bool]) -> int:
        """Drop keys whose mailbox is gone"""
        with self._lock:
            dead = [key for key in self._subscribers if not is_live(*key)]
            for key in dead:
                del self._subscribers[key]
        return len(dead)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "subscribed_keys": len(self._subscribers),
                "active_connections": sum(len(sinks) for sinks in self._subscribers.values()),
            }

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            self._subscribers.clear()
        self._executor.shutdown(wait=False)
