"""Tests for credential persistence."""

import json
from datetime import datetime, timezone

import pytest

from whoopterm.crypto import generate_key
from whoopterm.errors import CredentialCorruptError
from whoopterm.models import Credential
from whoopterm.services.token_store import TokenStore


@pytest.fixture(autouse=True)
def no_encryption(monkeypatch):
    monkeypatch.setattr("whoopterm.config.Config.ENCRYPTION_KEY", None)


@pytest.fixture
def store(tmp_path):
    return TokenStore(tmp_path / "tokens.json")


@pytest.fixture
def credential():
    return Credential(
        access_token="access-abc",
        refresh_token="refresh-xyz",
        expires_at=datetime(2024, 3, 1, 13, 0, 0, 123000, tzinfo=timezone.utc),
        scope="offline read:sleep",
    )


def test_load_missing_returns_none(store):
    assert store.load() is None


def test_roundtrip(store, credential):
    store.save(credential)
    assert store.load() == credential


def test_file_layout(store, credential):
    store.save(credential)
    data = json.loads(store.path.read_text())

    assert data["access_token"] == "access-abc"
    assert data["refresh_token"] == "refresh-xyz"
    assert data["expires_at"].startswith("2024-03-01T13:00:00")
    assert data["encrypted"] is False


def test_encrypted_roundtrip(store, credential, monkeypatch):
    monkeypatch.setattr("whoopterm.config.Config.ENCRYPTION_KEY", generate_key())
    store.save(credential)

    raw = store.path.read_text()
    assert "access-abc" not in raw
    assert "refresh-xyz" not in raw
    assert store.load() == credential


@pytest.mark.parametrize("content", ["{broken", "[]", '{"refresh_token": "r"}', '{"access_token": "a", "expires_at": "soon"}'])
def test_corrupt_file_is_discarded(store, content):
    store.path.write_text(content)

    with pytest.raises(CredentialCorruptError):
        store.load()
    assert not store.path.exists()
    assert store.load() is None


def test_encrypted_file_with_wrong_key_is_corrupt(store, credential, monkeypatch):
    monkeypatch.setattr("whoopterm.config.Config.ENCRYPTION_KEY", generate_key())
    store.save(credential)
    monkeypatch.setattr("whoopterm.config.Config.ENCRYPTION_KEY", generate_key())

    with pytest.raises(CredentialCorruptError):
        store.load()


def test_delete(store, credential):
    store.save(credential)
    assert store.delete() is True
    assert store.delete() is False
    assert store.load() is None
