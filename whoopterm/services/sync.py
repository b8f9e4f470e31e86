"""Data Sync Engine: per-metric fetch-or-serve-from-cache with failure isolation."""

import logging
import threading
from concurrent.futures import Future, as_completed
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from whoopterm.clients.whoop import WhoopClient
from whoopterm.config import Config
from whoopterm.errors import ApiError, AuthError, CacheIOError, SyncCancelledError
from whoopterm.models import utc_now
from whoopterm.services.auth import AuthManager
from whoopterm.services.cache import CacheEntry, CacheStore
from whoopterm.services.metrics import SOURCES, MetricSource
from whoopterm.services.retry import RetryExhaustedError, RetryPolicy, RetryRun

logger = logging.getLogger(__name__)

# Sync outcomes
OUTCOME_FRESH = "fresh"
OUTCOME_STALE = "stale"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class SyncResult:
    metric_key: str
    outcome: str
    reason: Optional[str] = None
    error: Optional[BaseException] = None
    entry: Optional[CacheEntry] = None
    from_cache: bool = False

    @property
    def is_auth_failure(self) -> bool:
        return self.outcome == OUTCOME_FAILED and isinstance(self.error, AuthError)


def submit_daemon(fn: Callable[..., Any], *args: Any, name: str = "whoopterm-sync") -> Future:
    """Run ``fn(*args)`` on a daemon thread and return a Future for its result.

    The interpreter does not join daemon threads at exit, so a request that is
    still blocked in the network when the user quits is abandoned.
    """
    future: Future = Future()

    def _target():
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = fn(*args)
        except BaseException as e:
            future.set_exception(e)
        else:
            future.set_result(result)

    threading.Thread(target=_target, name=name, daemon=True).start()
    return future


class SyncEngine:
    """Reconciles the cache against the remote API, one metric key at a time."""

    def __init__(
        self,
        cache: CacheStore,
        auth: AuthManager,
        client: WhoopClient,
        sources: Optional[dict[str, MetricSource]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_workers: Optional[int] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cache = cache
        self.auth = auth
        self.client = client
        self.sources = sources or SOURCES
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_workers = max_workers or Config.SYNC_CONCURRENCY
        self._clock = clock
        self._cancelled = threading.Event()
        # Backoff waits on the cancel event so cancel() cuts them short.
        self._sleep = sleep or self._cancelled.wait
        self._key_locks: dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Abandon in-flight work; late results are discarded, not written."""
        self._cancelled.set()
        logger.info("Sync cancelled")

    def _key_lock(self, metric_key: str) -> threading.Lock:
        with self._key_locks_guard:
            return self._key_locks.setdefault(metric_key, threading.Lock())

    def sync(self, metric_keys: Iterable[str], force: bool = False) -> dict[str, SyncResult]:
        """Synchronise every key independently and return one result per key.

        Raises:
            CacheIOError: the cache could not be written; fatal.
        """
        keys = sorted(set(metric_keys))
        unknown = [k for k in keys if k not in self.sources]
        if unknown:
            raise ValueError(f"Unknown metric keys: {', '.join(unknown)}")

        logger.info(f"Sync started for {', '.join(keys)} (force={force})")
        results: dict[str, SyncResult] = {}
        if not keys:
            return results

        slots = threading.BoundedSemaphore(min(self.max_workers, len(keys)))
        futures = {
            submit_daemon(self._sync_bounded, slots, key, force, name=f"whoopterm-sync-{key}"): key
            for key in keys
        }
        for future in as_completed(futures):
            key = futures[future]
            try:
                results[key] = future.result()
            except CacheIOError:
                raise
            except SyncCancelledError:
                results[key] = SyncResult(key, OUTCOME_FAILED, reason="cancelled")
            except Exception as e:
                logger.exception(f"Sync for {key} failed with exception: {e}")
                results[key] = SyncResult(key, OUTCOME_FAILED, reason=str(e), error=e)

        summary = ", ".join(f"{k}={results[k].outcome}" for k in keys)
        logger.info(f"Sync finished: {summary}")
        return results

    def _sync_bounded(self, slots: threading.BoundedSemaphore, metric_key: str, force: bool) -> SyncResult:
        with slots:
            return self.sync_one(metric_key, force)

    def sync_one(self, metric_key: str, force: bool = False) -> SyncResult:
        source = self.sources[metric_key]

        with self._key_lock(metric_key):
            entry = self.cache.get(metric_key)
            if not force and self.cache.is_fresh(entry, now=self._clock()):
                logger.debug(f"{metric_key}: serving fresh cache")
                return SyncResult(metric_key, OUTCOME_FRESH, entry=entry, from_cache=True)

            run = RetryRun(
                lambda: self._fetch(source),
                self.retry_policy,
                sleep=self._sleep,
                label=f"Fetch {metric_key}",
                should_abort=self._cancelled.is_set,
            )
            try:
                payload = run.run()
            except RetryExhaustedError as e:
                return self._fallback(metric_key, entry, str(e), e.last_error)
            except AuthError as e:
                logger.error(f"{metric_key}: authentication failed: {e}")
                return SyncResult(metric_key, OUTCOME_FAILED, reason=str(e), error=e, entry=entry)
            except ApiError as e:
                logger.error(f"{metric_key}: {e}")
                return self._fallback(metric_key, entry, str(e), e)

            if self._cancelled.is_set():
                raise SyncCancelledError(metric_key)

            fetched_at = self._clock()
            new_entry = self.cache.put(metric_key, payload, fetched_at=fetched_at)
            return SyncResult(metric_key, OUTCOME_FRESH, entry=new_entry)

    def _fetch(self, source: MetricSource):
        if self._cancelled.is_set():
            raise SyncCancelledError(source.key)
        credential = self.auth.ensure_valid()
        return source.fetch(
            self.client, credential.access_token, self._clock(), should_abort=self._cancelled.is_set
        )

    def _fallback(
        self,
        metric_key: str,
        entry: Optional[CacheEntry],
        reason: str,
        error: Optional[BaseException],
    ) -> SyncResult:
        if entry is not None:
            logger.warning(f"{metric_key}: serving stale cache ({reason})")
            return SyncResult(metric_key, OUTCOME_STALE, reason=reason, error=error, entry=entry, from_cache=True)
        logger.error(f"{metric_key}: no cached data to fall back on ({reason})")
        return SyncResult(metric_key, OUTCOME_FAILED, reason=reason, error=error or RuntimeError(reason))
