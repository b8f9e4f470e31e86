"""Tests for the Auth Manager credential lifecycle."""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from whoopterm.errors import (
    ApiError,
    InvalidGrantError,
    ReauthRequiredError,
    RequestTimeoutError,
)
from whoopterm.models import Credential
from whoopterm.services.auth import (
    AUTH_AUTHENTICATED,
    AUTH_EXPIRING,
    AUTH_FAILED,
    AUTH_UNAUTHENTICATED,
    AuthManager,
)
from whoopterm.services.token_store import TokenStore

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


class FakeOAuth:
    """Token endpoint double; counts calls and optionally fails or stalls."""

    def __init__(self, expires_in=3600, error=None, delay=0.0):
        self.expires_in = expires_in
        self.error = error
        self.delay = delay
        self.refresh_calls = []
        self.exchange_calls = []
        self._lock = threading.Lock()

    def refresh(self, refresh_token):
        with self._lock:
            self.refresh_calls.append(refresh_token)
            count = len(self.refresh_calls)
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return {"access_token": f"access-{count}", "refresh_token": f"refresh-{count}", "expires_in": self.expires_in}

    def exchange_code(self, code):
        self.exchange_calls.append(code)
        if self.error:
            raise self.error
        return {"access_token": "access-new", "refresh_token": "refresh-new", "expires_in": self.expires_in}


@pytest.fixture(autouse=True)
def no_encryption(monkeypatch):
    monkeypatch.setattr("whoopterm.config.Config.ENCRYPTION_KEY", None)


@pytest.fixture
def store(tmp_path):
    return TokenStore(tmp_path / "tokens.json")


@pytest.fixture
def clock():
    return FakeClock()


def save(store, expires_in_seconds, refresh_token="refresh-0"):
    credential = Credential("access-0", refresh_token, NOW + timedelta(seconds=expires_in_seconds))
    store.save(credential)
    return credential


class TestInitialState:
    def test_no_credential_is_unauthenticated(self, store, clock):
        auth = AuthManager(store, FakeOAuth(), clock=clock)

        assert auth.state == AUTH_UNAUTHENTICATED
        with pytest.raises(ReauthRequiredError):
            auth.ensure_valid()

    def test_valid_credential_is_authenticated(self, store, clock):
        save(store, 3600)
        assert AuthManager(store, FakeOAuth(), clock=clock).state == AUTH_AUTHENTICATED

    def test_credential_inside_skew_is_expiring(self, store, clock):
        save(store, 120)
        assert AuthManager(store, FakeOAuth(), clock=clock).state == AUTH_EXPIRING

    def test_corrupt_credential_is_unauthenticated(self, store, clock):
        store.path.write_text("{nope")
        auth = AuthManager(store, FakeOAuth(), clock=clock)

        assert auth.state == AUTH_UNAUTHENTICATED
        assert not store.path.exists()


class TestEnsureValid:
    def test_valid_token_makes_no_network_call(self, store, clock):
        credential = save(store, 3600)
        oauth = FakeOAuth()
        auth = AuthManager(store, oauth, clock=clock)

        assert auth.ensure_valid() == credential
        assert oauth.refresh_calls == []

    def test_expired_token_refreshes_once_and_persists(self, store, clock):
        save(store, -60)
        oauth = FakeOAuth()
        auth = AuthManager(store, oauth, clock=clock)

        credential = auth.ensure_valid()

        assert oauth.refresh_calls == ["refresh-0"]
        assert credential.access_token == "access-1"
        assert credential.expires_at > NOW + timedelta(seconds=300)
        assert auth.state == AUTH_AUTHENTICATED
        assert store.load() == credential

        # Second call uses the refreshed token
        assert auth.ensure_valid() == credential
        assert len(oauth.refresh_calls) == 1

    def test_token_inside_skew_window_is_refreshed(self, store, clock):
        save(store, 240)
        oauth = FakeOAuth()
        auth = AuthManager(store, oauth, clock=clock)

        auth.ensure_valid()
        assert len(oauth.refresh_calls) == 1

    def test_concurrent_callers_share_one_refresh(self, store, clock):
        save(store, -60)
        oauth = FakeOAuth(delay=0.2)
        auth = AuthManager(store, oauth, clock=clock)

        results = []
        errors = []

        def worker():
            try:
                results.append(auth.ensure_valid())
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(oauth.refresh_calls) == 1
        assert {c.access_token for c in results} == {"access-1"}

    def test_invalid_grant_fails_and_needs_no_further_network(self, store, clock):
        save(store, -60)
        oauth = FakeOAuth(error=InvalidGrantError("invalid_grant"))
        auth = AuthManager(store, oauth, clock=clock)

        with pytest.raises(ReauthRequiredError, match="whoopterm --auth"):
            auth.ensure_valid()

        assert auth.state == AUTH_FAILED
        assert not store.path.exists()

        with pytest.raises(ReauthRequiredError):
            auth.ensure_valid()
        assert len(oauth.refresh_calls) == 1

    def test_transient_failure_keeps_credential(self, store, clock):
        credential = save(store, -60)
        oauth = FakeOAuth(error=RequestTimeoutError("token endpoint timed out"))
        auth = AuthManager(store, oauth, clock=clock)

        with pytest.raises(RequestTimeoutError):
            auth.ensure_valid()

        assert auth.state == AUTH_EXPIRING
        assert auth.credential == credential
        assert store.load() == credential

    def test_refreshed_token_inside_skew_is_rejected(self, store, clock):
        save(store, -60)
        auth = AuthManager(store, FakeOAuth(expires_in=60), clock=clock)

        with pytest.raises(ReauthRequiredError):
            auth.ensure_valid()
        assert auth.state == AUTH_FAILED

    def test_missing_refresh_token_fails(self, store, clock):
        save(store, -60, refresh_token=None)
        auth = AuthManager(store, FakeOAuth(), clock=clock)

        with pytest.raises(ReauthRequiredError):
            auth.ensure_valid()
        assert auth.state == AUTH_FAILED

    def test_clock_advancing_triggers_refresh(self, store, clock):
        save(store, 3600)
        oauth = FakeOAuth()
        auth = AuthManager(store, oauth, clock=clock)

        auth.ensure_valid()
        assert oauth.refresh_calls == []

        clock.now = NOW + timedelta(minutes=56)
        auth.ensure_valid()
        assert len(oauth.refresh_calls) == 1


class TestAuthenticate:
    def test_code_exchange_persists(self, store, clock):
        auth = AuthManager(store, FakeOAuth(), clock=clock)

        credential = auth.authenticate("code-1")

        assert auth.state == AUTH_AUTHENTICATED
        assert credential.access_token == "access-new"
        assert store.load() == credential

    def test_recovers_from_failed_state(self, store, clock):
        save(store, -60)
        oauth = FakeOAuth(error=InvalidGrantError("invalid_grant"))
        auth = AuthManager(store, oauth, clock=clock)
        with pytest.raises(ReauthRequiredError):
            auth.ensure_valid()

        oauth.error = None
        auth.authenticate("code-2")

        assert auth.state == AUTH_AUTHENTICATED
        assert auth.ensure_valid().access_token == "access-new"

    def test_rejected_code_leaves_unauthenticated(self, store, clock):
        auth = AuthManager(store, FakeOAuth(error=InvalidGrantError("bad code")), clock=clock)

        with pytest.raises(InvalidGrantError):
            auth.authenticate("bad")
        assert auth.state == AUTH_UNAUTHENTICATED
        assert store.load() is None

    @pytest.mark.parametrize("expires_in", [0, None])
    def test_token_without_lifetime_is_rejected(self, store, clock, expires_in):
        auth = AuthManager(store, FakeOAuth(expires_in=expires_in), clock=clock)

        with pytest.raises(ApiError, match="skew window"):
            auth.authenticate("code-1")

        assert auth.state == AUTH_UNAUTHENTICATED
        assert auth.credential is None
        assert store.load() is None


def test_revoke(store, clock):
    save(store, 3600)
    auth = AuthManager(store, FakeOAuth(), clock=clock)

    auth.revoke()

    assert auth.state == AUTH_UNAUTHENTICATED
    assert store.load() is None
