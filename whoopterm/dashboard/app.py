"""Dashboard event loop.

A single foreground loop owns the state: it polls the keyboard, applies
transitions, collects finished background syncs and redraws. Syncs run on
a daemon thread so a slow network never blocks input or exit.
"""

import curses
import logging
from concurrent.futures import Future
from datetime import datetime
from typing import Callable, Iterable, Optional

from whoopterm.config import Config
from whoopterm.errors import CacheIOError
from whoopterm.models import utc_now
from whoopterm.services.cache import CacheStore
from whoopterm.services.metrics import ALL_METRIC_KEYS
from whoopterm.services.sync import SyncEngine, SyncResult, submit_daemon
from whoopterm.dashboard.render import Snapshot, build_snapshot, item_counts
from whoopterm.dashboard.screen import CursesScreen
from whoopterm.dashboard.state import (
    CMD_SYNC,
    CMD_SYNC_FORCE,
    VIEW_TODAY,
    DashboardState,
    MetricStatus,
    clamp_selections,
    handle_key,
    initial_state,
    sync_completed,
    sync_crashed,
    sync_started,
    tick,
)

logger = logging.getLogger(__name__)


def summarize_results(results: dict[str, SyncResult]) -> tuple[tuple[MetricStatus, ...], bool]:
    """Convert engine results to per-metric statuses plus an auth-required flag."""
    statuses = tuple(
        MetricStatus(key, result.outcome, result.reason)
        for key, result in sorted(results.items())
    )
    auth_required = any(result.is_auth_failure for result in results.values())
    return statuses, auth_required


class DashboardApp:
    def __init__(
        self,
        engine: SyncEngine,
        cache: CacheStore,
        screen=None,
        refresh_interval: Optional[float] = None,
        default_view: str = VIEW_TODAY,
        clock: Callable[[], datetime] = utc_now,
        metric_keys: Iterable[str] = ALL_METRIC_KEYS,
    ):
        self.engine = engine
        self.cache = cache
        self.screen = screen
        self.refresh_interval = refresh_interval or Config.REFRESH_INTERVAL
        self.clock = clock
        self.metric_keys = frozenset(metric_keys)
        self.state: DashboardState = initial_state(default_view)
        self._future: Optional[Future] = None

    @property
    def syncing(self) -> bool:
        return self._future is not None and not self._future.done()

    def step(self, key: Optional[str], now: datetime) -> bool:
        """Advance the loop by one iteration. Returns False once quitting.

        Raises:
            CacheIOError: a background sync could not persist the cache.
        """
        if key is not None:
            self.state, command = handle_key(self.state, key, item_counts(self.cache))
            self._dispatch(command, now)

        self._collect(now)

        self.state, command = tick(self.state, now, self.refresh_interval)
        self._dispatch(command, now)
        return not self.state.quitting

    def snapshot(self, now: datetime) -> Snapshot:
        return build_snapshot(self.state, self.cache, now)

    def _dispatch(self, command: Optional[str], now: datetime) -> None:
        if command == CMD_SYNC:
            self._start_sync(now, force=False)
        elif command == CMD_SYNC_FORCE:
            self._start_sync(now, force=True)

    def _start_sync(self, now: datetime, force: bool) -> None:
        if self.state.quitting or self.syncing:
            return
        self.state = sync_started(self.state, now)
        logger.info(f"Background sync started (force={force})")
        self._future = submit_daemon(self.engine.sync, self.metric_keys, force)

    def _collect(self, now: datetime) -> None:
        future = self._future
        if future is None or not future.done():
            return
        self._future = None

        try:
            results = future.result()
        except CacheIOError:
            raise
        except Exception as e:
            logger.exception(f"Background sync crashed: {e}")
            self.state = sync_crashed(self.state, f"Sync failed: {e}")
            return

        statuses, auth_required = summarize_results(results)
        self.state = sync_completed(self.state, statuses, now, auth_required)
        self.state = clamp_selections(self.state, item_counts(self.cache))

    def run(self) -> None:
        """Run until the user quits. The screen must be set."""
        key = None
        try:
            while True:
                now = self.clock()
                if not self.step(key, now):
                    break
                self.screen.draw(self.snapshot(now))
                key = self.screen.poll_key()
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        # The sync thread is left to die with the process; nothing it returns is used.
        self.engine.cancel()
        self.cache.flush()
        logger.info("Dashboard stopped")


def run_dashboard(engine: SyncEngine, cache: CacheStore, preferences: dict) -> None:
    """Start the curses dashboard; blocks until the user quits."""

    def _main(stdscr):
        app = DashboardApp(
            engine,
            cache,
            screen=CursesScreen(stdscr, Config.TICK_RATE),
            refresh_interval=preferences.get("refresh_interval_seconds"),
            default_view=preferences.get("default_view", VIEW_TODAY),
        )
        app.run()

    curses.wrapper(_main)
