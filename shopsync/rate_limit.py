import logging
import time
from threading import Lock

from django.conf import settings

logger = logging.getLogger(__name__)


class RateLimitBudget:
    """
    Leaky-bucket call budget for one platform account (thread-safe).

    The bucket holds `maximum` call units and refills at `restore_rate` units
    per second. Every call reserves its cost up front, atomically, so jobs
    sharing the account never over-commit it. A reservation that drives the
    bucket negative is still granted, but the caller has to wait until the
    deficit has leaked away.

    After each call the platform reports how full the bucket really is; that
    report can only lower the local estimate, never raise it.
    """

    def __init__(self, maximum: int = None, restore_rate: float = None, clock=time.monotonic):
        self._maximum = maximum or settings.SHOPSYNC_BUCKET_SIZE
        self._restore_rate = restore_rate or settings.SHOPSYNC_RESTORE_RATE
        self._available = float(self._maximum)
        self._clock = clock
        self._updated_at = clock()
        self._lock = Lock()

    @property
    def maximum(self) -> int:
        return self._maximum

    @property
    def available(self) -> float:
        with self._lock:
            self._restore()
            return self._available

    def _restore(self):
        # Caller must hold the lock.
        now = self._clock()
        elapsed = now - self._updated_at
        if elapsed > 0:
            self._available = min(float(self._maximum), self._available + elapsed * self._restore_rate)
        self._updated_at = now

    def reserve(self, cost: float = 1) -> float:
        """Take `cost` units and return the seconds to wait before calling."""
        with self._lock:
            self._restore()
            self._available -= cost
            if self._available >= 0:
                return 0.0
            return -self._available / self._restore_rate

    def acquire(self, cost: float = 1):
        wait = self.reserve(cost)
        if wait > 0:
            logger.warning("Rate-limit budget exhausted. Waiting %.2fs before the next call.", wait)
            time.sleep(wait)

    def observe(self, used: int, maximum: int):
        """Fold a platform-reported `used/maximum` reading into the budget."""
        with self._lock:
            self._restore()
            self._maximum = maximum
            self._available = min(self._available, float(maximum - used))

    def page_size(self, requested: int, minimum: int = None) -> int:
        """
        Return the page size to ask for next.

        While the bucket is above the low-budget ratio the requested size is
        used as is. Below it the size shrinks proportionally with the
        remaining budget, down to `minimum`.
        """
        minimum = min(minimum or settings.SHOPSYNC_MIN_PAGE_SIZE, requested)
        low_ratio = settings.SHOPSYNC_LOW_BUDGET_RATIO
        ratio = max(self.available, 0.0) / self._maximum
        if ratio >= low_ratio:
            return requested
        scaled = int(requested * ratio / low_ratio)
        size = max(minimum, scaled)
        logger.info("Budget at %.0f%%, shrinking page size from %d to %d.", ratio * 100, requested, size)
        return size


_budgets = {}
_budgets_lock = Lock()


def budget_for(shop_domain: str) -> RateLimitBudget:
    """Return the process-wide budget shared by every client of `shop_domain`."""
    with _budgets_lock:
        budget = _budgets.get(shop_domain)
        if budget is None:
            budget = _budgets[shop_domain] = RateLimitBudget()
        return budget


def reset_budgets():
    with _budgets_lock:
        _budgets.clear()
