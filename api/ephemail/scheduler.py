"""Eviction scheduling: one-shot expiry timers and the periodic sweep loop"""

from typing import Callable, Dict, List, Optional, Tuple
import heapq
import itertools
import logging
import threading
import time

logger = logging.getLogger(__name__)


class EvictionScheduler:
    """
    Two complementary expiry mechanisms.

    Per-key one-shot timers fire at an entity's expiry time. They share a
    single timer thread that sleeps on a deadline heap, so arming a timer is
    a heap push regardless of how many mailboxes are live. The periodic
    sweep runs every registered sweep function and is the backstop for
    timers lost to restarts, and the only cleanup for caches and counters.
    Both must tolerate keys that are already gone.
    """

    def __init__(self, interval_seconds: float = 3600, initial_delay_seconds: float = 5):
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds

        # key -> (sequence, callback); heap entries are (deadline, sequence, key)
        self._cond = threading.Condition()
        self._timers: Dict[str, Tuple[int, Callable[[str], object]]] = {}
        self._heap: List[Tuple[float, int, str]] = []
        self._seq = itertools.count()
        self._timer_thread: Optional[threading.Thread] = None
        self._generation = 0

        self._sweeps: List[Tuple[str, Callable[[], int]]] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # One-shot timers

    def schedule(self, key: str, delay_seconds: float, callback: Callable[[str], object]) -> None:
        """Arm (or re-arm) the timer for `key`; `callback(key)` runs on fire"""
        deadline = time.monotonic() + max(delay_seconds, 0)
        with self._cond:
            seq = next(self._seq)
            self._timers[key] = (seq, callback)
            heapq.heappush(self._heap, (deadline, seq, key))
            if self._timer_thread is None or not self._timer_thread.is_alive():
                self._timer_thread = threading.Thread(
                    target=self._run_timers, args=(self._generation,), name="expiry-timers", daemon=True
                )
                self._timer_thread.start()
            self._cond.notify()

    def cancel(self, key: str) -> bool:
        with self._cond:
            if self._timers.pop(key, None) is None:
                return False
            # Cancelled entries stay in the heap until they reach the top
            if len(self._heap) > 2 * len(self._timers) + 64:
                self._heap = [entry for entry in self._heap if self._is_current(entry)]
                heapq.heapify(self._heap)
            self._cond.notify()
        return True

    def _is_current(self, entry: Tuple[float, int, str]) -> bool:
        # caller holds self._cond
        armed = self._timers.get(entry[2])
        return armed is not None and armed[0] == entry[1]

    def _next_due(self, generation: int) -> Optional[Tuple[str, Callable[[str], object]]]:
        """Block until a timer is due; None once stop() ends this generation"""
        with self._cond:
            while self._generation == generation:
                while self._heap and not self._is_current(self._heap[0]):
                    heapq.heappop(self._heap)
                if not self._heap:
                    self._cond.wait()
                    continue
                deadline, _, key = self._heap[0]
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    heapq.heappop(self._heap)
                    _, callback = self._timers.pop(key)
                    return key, callback
                self._cond.wait(remaining)
        return None

    def _run_timers(self, generation: int) -> None:
        while True:
            due = self._next_due(generation)
            if due is None:
                return
            self._fire(*due)

    def _fire(self, key: str, callback: Callable[[str], object]) -> None:
        try:
            callback(key)
        except Exception as e:
            logger.error(f"Expiry timer error for {key}: {e}")

    def pending_timers(self) -> int:
        with self._cond:
            return len(self._timers)

    # Periodic sweep

    def register_sweep(self, name: str, sweep: Callable[[], int]) -> None:
        self._sweeps.append((name, sweep))

    def run_sweep(self) -> Dict[str, int]:
        """
        Run every registered sweep once.

        A failing sweep is logged and does not stop the others.

        Returns:
            Number of items removed per sweep name
        """
        results: Dict[str, int] = {}
        for name, sweep in self._sweeps:
            try:
                results[name] = sweep() or 0
            except Exception as e:
                logger.error(f"Cleanup error in {name}: {e}")

        removed = {name: count for name, count in results.items() if count}
        if removed:
            summary = ", ".join(f"{count} {name}" for name, count in removed.items())
            logger.info(f"Cleanup: Removed {summary}")
        else:
            logger.debug("Cleanup: Nothing to remove")

        return results

    def _run_loop(self) -> None:
        logger.info(f"Starting cleanup loop (interval: {self.interval_seconds}s)")

        if self._stop.wait(self.initial_delay_seconds):
            return

        while True:
            try:
                self.run_sweep()
            except Exception as e:
                logger.error(f"Cleanup loop error: {e}")

            # Sleep until next run
            if self._stop.wait(self.interval_seconds):
                break

        logger.info("Cleanup loop stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="eviction-sweep", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the loop after its current cycle and drop outstanding timers"""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

        with self._cond:
            self._generation += 1
            self._timers.clear()
            self._heap.clear()
            timer_thread, self._timer_thread = self._timer_thread, None
            self._cond.notify_all()
        if timer_thread is not None and timer_thread is not threading.current_thread():
            timer_thread.join(timeout)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
