"""Tests for the dashboard event loop."""

import os
import subprocess
import sys
import textwrap
import threading
import time
from concurrent.futures import wait
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from whoopterm.dashboard.app import DashboardApp
from whoopterm.dashboard.state import VIEW_SLEEP_HISTORY
from whoopterm.errors import CacheIOError, ReauthRequiredError
from whoopterm.services.cache import CacheStore
from whoopterm.services.sync import OUTCOME_FAILED, OUTCOME_FRESH, OUTCOME_STALE, SyncResult

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
PROJECT_ROOT = Path(__file__).resolve().parents[1]

# Starts the dashboard against a client whose request hangs, then quits.
HUNG_FETCH_SCRIPT = textwrap.dedent("""
    import sys
    import threading
    import time
    from datetime import datetime, timedelta, timezone
    from pathlib import Path

    from whoopterm.dashboard.app import DashboardApp
    from whoopterm.models import Credential
    from whoopterm.services.cache import CacheStore
    from whoopterm.services.sync import SyncEngine

    NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    fetching = threading.Event()

    class Auth:
        def ensure_valid(self):
            return Credential("token", "refresh", NOW + timedelta(hours=1))

    class HungClient:
        def get_collection(self, path, token, start, end, should_abort=None):
            fetching.set()
            time.sleep(30)
            return []

    cache = CacheStore(Path(sys.argv[1]) / "cache.json", clock=lambda: NOW)
    engine = SyncEngine(cache, Auth(), HungClient(), clock=lambda: NOW)
    app = DashboardApp(engine, cache, refresh_interval=300, clock=lambda: NOW, metric_keys={"recovery"})

    app.step(None, NOW)
    assert fetching.wait(10)
    assert app.step("q", NOW) is False
    app.shutdown()
""")


class FakeEngine:
    """Records sync calls; results are produced by ``outcome`` or gated on ``release``."""

    def __init__(self, outcome=None, error=None, block=False):
        self.outcome = outcome or (lambda keys: {k: SyncResult(k, OUTCOME_FRESH) for k in keys})
        self.error = error
        self.release = threading.Event()
        if not block:
            self.release.set()
        self.calls = []
        self.cancelled = False

    def sync(self, keys, force=False):
        self.calls.append((frozenset(keys), force))
        self.release.wait(timeout=5)
        if self.error:
            raise self.error
        return self.outcome(keys)

    def cancel(self):
        self.cancelled = True


class FakeScreen:
    def __init__(self, keys):
        self.keys = list(keys)
        self.frames = []

    def draw(self, snapshot):
        self.frames.append(snapshot)

    def poll_key(self):
        return self.keys.pop(0) if self.keys else "q"


@pytest.fixture
def cache(tmp_path):
    return CacheStore(tmp_path / "cache.json", clock=lambda: NOW)


def make_app(engine, cache, **kwargs):
    return DashboardApp(engine, cache, refresh_interval=300, clock=lambda: NOW, metric_keys={"recovery", "sleep"}, **kwargs)


def settle(app):
    """Wait for the background sync to finish."""
    if app._future is not None:
        wait([app._future], timeout=5)


def test_first_step_starts_background_sync(cache):
    engine = FakeEngine()
    app = make_app(engine, cache)

    assert app.step(None, NOW) is True
    assert app.state.pending_refresh is True
    settle(app)
    assert engine.calls == [(frozenset({"recovery", "sleep"}), False)]

    app.step(None, NOW + timedelta(seconds=1))
    assert app.state.pending_refresh is False
    assert app.state.last_refresh_at == NOW + timedelta(seconds=1)
    assert {s.metric_key for s in app.state.statuses} == {"recovery", "sleep"}


def test_keys_handled_while_sync_in_flight(cache):
    engine = FakeEngine(block=True)
    app = make_app(engine, cache)

    app.step(None, NOW)
    app.step("2", NOW)

    assert app.state.active_view == VIEW_SLEEP_HISTORY
    assert app.syncing is True
    engine.release.set()
    settle(app)


def test_refresh_during_sync_is_queued_then_forced(cache):
    engine = FakeEngine(block=True)
    app = make_app(engine, cache)

    app.step(None, NOW)
    app.step("r", NOW)
    assert app.state.refresh_queued is True
    assert len(engine.calls) == 1

    engine.release.set()
    settle(app)
    app.step(None, NOW + timedelta(seconds=2))
    settle(app)

    assert engine.calls[-1][1] is True
    assert len(engine.calls) == 2


def test_periodic_sync_after_interval(cache):
    engine = FakeEngine()
    app = make_app(engine, cache)

    app.step(None, NOW)
    settle(app)
    app.step(None, NOW + timedelta(seconds=10))
    assert len(engine.calls) == 1

    app.step(None, NOW + timedelta(seconds=301))
    settle(app)
    assert engine.calls[-1] == (frozenset({"recovery", "sleep"}), False)
    assert len(engine.calls) == 2


def test_auth_failure_sets_prompt(cache):
    def outcome(keys):
        return {
            "recovery": SyncResult("recovery", OUTCOME_FAILED, reason="expired", error=ReauthRequiredError()),
            "sleep": SyncResult("sleep", OUTCOME_STALE, reason="max retries exceeded"),
        }

    app = make_app(FakeEngine(outcome=outcome), cache)
    app.step(None, NOW)
    settle(app)
    app.step(None, NOW)

    assert app.state.auth_required is True
    assert app.snapshot(NOW).alert == "Authorization required. Run: whoopterm --auth"
    assert app.state.status_for("sleep").outcome == OUTCOME_STALE


def test_crashed_sync_shows_message(cache):
    app = make_app(FakeEngine(error=RuntimeError("boom")), cache)
    app.step(None, NOW)
    settle(app)
    app.step(None, NOW)

    assert app.state.pending_refresh is False
    assert app.state.message == "Sync failed: boom"


def test_cache_write_failure_is_fatal(cache):
    app = make_app(FakeEngine(error=CacheIOError("disk full")), cache)
    app.step(None, NOW)
    settle(app)

    with pytest.raises(CacheIOError):
        app.step(None, NOW)


def test_quit_stops_loop(cache):
    engine = FakeEngine()
    app = make_app(engine, cache)

    assert app.step("q", NOW) is False
    assert engine.calls == []


def test_run_draws_and_shuts_down(cache):
    engine = FakeEngine()
    cache.flush = MagicMock()
    screen = FakeScreen(["right", None, "q"])
    app = make_app(engine, cache, screen=screen)

    app.run()

    assert len(screen.frames) == 3
    assert screen.frames[1].tabs != screen.frames[0].tabs
    assert engine.cancelled is True
    cache.flush.assert_called_once()


def test_quit_exits_while_fetch_is_blocked(tmp_path):
    env = dict(os.environ, PYTHONPATH=str(PROJECT_ROOT))

    started = time.monotonic()
    subprocess.run([sys.executable, "-c", HUNG_FETCH_SCRIPT, str(tmp_path)], check=True, timeout=60, env=env)
    elapsed = time.monotonic() - started

    assert elapsed < 10, f"process took {elapsed:.1f}s to exit after quit"
