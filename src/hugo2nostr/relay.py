"""Relay URL handling and multi-relay fan-out.

Each signed event is delivered to every configured relay independently. One
relay rejecting (or being down) never affects delivery to the others.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable
from urllib.parse import urlparse

from .errors import Hugo2NostrError, RelayError
from .models import RelayResult, SignedEvent
from .utils import deduplicate_preserving_order

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 5

Sender = Callable[[str, SignedEvent], None]


def validate_relay_url(url: str) -> bool:
    """Return True for ws:// and wss:// URLs (scheme is case-sensitive)."""
    return isinstance(url, str) and url.startswith(("wss://", "ws://"))


def is_localhost_relay(url: str) -> bool:
    host = urlparse(url).hostname or ""
    return host in ("localhost", "127.0.0.1", "::1")


def warn_insecure_relays(relays: list[str]) -> None:
    """Log a warning for each unencrypted ws:// relay that is not on localhost."""
    for relay in relays:
        if relay.startswith("ws://") and not is_localhost_relay(relay):
            logger.warning("Relay uses unencrypted ws://: %s", relay)


def normalize_relays(relays: list[str]) -> list[str]:
    """Strip, drop invalid URLs (with a warning) and deduplicate, keeping order."""
    result = []
    for relay in relays:
        relay = relay.strip()
        if not relay:
            continue
        if not validate_relay_url(relay):
            logger.warning("Ignoring relay with unsupported scheme: %s", relay)
            continue
        result.append(relay)
    return deduplicate_preserving_order(result)


class RelayPool:
    """Worker pool running per-relay delivery tasks.

    Created lazily on first use and released by close(); one pool serves one
    batch (one site). The pool grows to one worker per item, so every relay
    of a fan-out is contacted at the same time.
    """

    def __init__(self, min_workers: int = 1):
        self.min_workers = min_workers
        self._executor: ThreadPoolExecutor | None = None
        self._size = 0

    @property
    def is_open(self) -> bool:
        return self._executor is not None

    @property
    def size(self) -> int:
        return self._size

    def _get_executor(self, needed: int) -> ThreadPoolExecutor:
        needed = max(needed, self.min_workers, 1)
        if self._executor is not None and self._size < needed:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=needed, thread_name_prefix="relay")
            self._size = needed
        return self._executor

    def run_all(self, fn: Callable, items: list) -> list:
        """Run fn(item) for every item concurrently and wait for all of them."""
        executor = self._get_executor(len(items))
        futures = [executor.submit(fn, item) for item in items]
        wait(futures)
        return [future.result() for future in futures]

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            self._size = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def deliver_with_retry(
    relay: str,
    event: SignedEvent,
    send: Sender,
    *,
    sleep: Callable[[float], None] = time.sleep,
    max_attempts: int = MAX_ATTEMPTS,
    backoff: float = BACKOFF_SECONDS,
) -> RelayResult:
    """Deliver event to one relay, retrying only rate-limit failures.

    CONTRACT:
      Inputs:
        - relay: relay URL
        - event: signed event
        - send: callable delivering to one relay, raising RelayError on failure
        - sleep: wait function (seconds)
        - max_attempts: attempts including the first
        - backoff: base delay; attempt n waits n * backoff before retrying

      Outputs:
        - RelayResult with accepted flag, attempt count and last error

      Invariants:
        - Only failures whose reason mentions rate limiting are retried
        - Any other failure is terminal for this relay
        - Never raises for relay or nak failures
    """
    error = None
    for attempt in range(1, max_attempts + 1):
        try:
            send(relay, event)
        except RelayError as e:
            error = e.reason
            if e.is_rate_limited and attempt < max_attempts:
                delay = attempt * backoff
                logger.debug("Rate limited by %s, waiting %ss (attempt %d/%d)", relay, delay, attempt, max_attempts)
                sleep(delay)
                continue
            logger.debug("Rejected by %s: %s", relay, error)
            return RelayResult(relay=relay, accepted=False, attempts=attempt, error=error)
        except Hugo2NostrError as e:
            logger.debug("Delivery to %s failed: %s", relay, e)
            return RelayResult(relay=relay, accepted=False, attempts=attempt, error=str(e))
        logger.debug("Accepted by %s", relay)
        return RelayResult(relay=relay, accepted=True, attempts=attempt)

    return RelayResult(relay=relay, accepted=False, attempts=max_attempts, error=error or "max retries exceeded")


def publish_to_relays(
    event: SignedEvent,
    relays: list[str],
    send: Sender,
    pool: RelayPool,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> list[str]:
    """Fan an event out to every relay and return those that accepted it.

    All relays are attempted concurrently; the call returns after every relay
    has succeeded, failed terminally or run out of retries. The result keeps
    the configured relay order. An empty list means no relay accepted the
    event; that is reported, not raised.
    """
    if not relays:
        return []

    results = pool.run_all(lambda relay: deliver_with_retry(relay, event, send, sleep=sleep), relays)
    accepted = [result.relay for result in results if result.accepted]

    if accepted:
        logger.info("Published to %d/%d relays", len(accepted), len(relays))
    else:
        logger.error("Failed to publish to any relay")
    return accepted
