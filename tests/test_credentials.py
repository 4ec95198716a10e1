import json
import os
import threading
import time

import pytest

from strava_bot.auth import TokenGrant
from strava_bot.credentials import CredentialStore, TokenStorage
from strava_bot.errors import AuthError, ConfigError

NOW = 1_700_000_000


class FakeExchange:
    def __init__(self, refresh_token="rotated", lifetime=21600, error=None, delay=0.0):
        self.calls = []
        self.refresh_token = refresh_token
        self.lifetime = lifetime
        self.error = error
        self.delay = delay

    def __call__(self, refresh_token, *, client_id, client_secret, now=None):
        self.calls.append(refresh_token)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return TokenGrant(
            access_token=f"access-{len(self.calls)}",
            refresh_token=self.refresh_token or refresh_token,
            expires_at=int(now) + self.lifetime,
        )


def _store(tmp_path, exchange, **kwargs):
    kwargs.setdefault("initial_refresh_token", "initial")
    return CredentialStore(
        "cid",
        "secret",
        TokenStorage(tmp_path / "token.json"),
        exchange=exchange,
        clock=lambda: NOW,
        **kwargs,
    )


def test_expired_token_refreshes_exactly_once(tmp_path):
    exchange = FakeExchange()
    store = _store(tmp_path, exchange)
    token = store.ensure_valid()
    assert token == "access-1"
    assert exchange.calls == ["initial"]
    assert store.expires_at > NOW
    # Still valid: no second exchange.
    assert store.ensure_valid() == "access-1"
    assert len(exchange.calls) == 1


def test_refreshes_inside_expiry_margin(tmp_path):
    exchange = FakeExchange(lifetime=600)
    store = _store(tmp_path, exchange, margin_seconds=300)
    store.ensure_valid()
    assert store.ensure_valid(now=NOW + 299) == "access-1"
    assert store.ensure_valid(now=NOW + 300) == "access-2"
    assert exchange.calls == ["initial", "rotated"]


def test_rotated_refresh_token_is_persisted(tmp_path):
    store = _store(tmp_path, FakeExchange(refresh_token="rotated-1"))
    store.ensure_valid()
    saved = json.loads((tmp_path / "token.json").read_text(encoding="utf-8"))
    assert saved["refresh_token"] == "rotated-1"
    assert saved["access_token"] == "access-1"
    assert saved["expires_at"] == NOW + 21600


def test_persisted_token_wins_over_initial(tmp_path):
    _store(tmp_path, FakeExchange(refresh_token="rotated-1")).ensure_valid()
    exchange = FakeExchange()
    restarted = _store(tmp_path, exchange, initial_refresh_token="stale-initial")
    # Access token from disk is still valid; no refresh needed.
    assert restarted.ensure_valid() == "access-1"
    restarted.invalidate()
    restarted.ensure_valid()
    assert exchange.calls == ["rotated-1"]


def test_missing_refresh_token_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        _store(tmp_path, FakeExchange(), initial_refresh_token="")


def test_rejected_refresh_raises_auth_error_and_keeps_token(tmp_path):
    exchange = FakeExchange(error=AuthError("Token refresh failed with status 400"))
    store = _store(tmp_path, exchange)
    with pytest.raises(AuthError):
        store.ensure_valid()
    exchange.error = None
    store.ensure_valid()
    assert exchange.calls == ["initial", "initial"]


def test_save_failure_keeps_rotated_token_in_memory(tmp_path, monkeypatch):
    exchange = FakeExchange(refresh_token="rotated-1")
    store = _store(tmp_path, exchange)
    storage = store._storage

    def broken_save(_credential):
        raise OSError("disk full")

    monkeypatch.setattr(storage, "save", broken_save)
    assert store.ensure_valid() == "access-1"
    monkeypatch.undo()
    store.ensure_valid()
    saved = json.loads((tmp_path / "token.json").read_text(encoding="utf-8"))
    assert saved["refresh_token"] == "rotated-1"


def test_concurrent_callers_share_one_refresh(tmp_path):
    exchange = FakeExchange(delay=0.05)
    store = _store(tmp_path, exchange)
    tokens = []
    threads = [
        threading.Thread(target=lambda: tokens.append(store.ensure_valid()))
        for _ in range(5)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=2)
    assert len(exchange.calls) == 1
    assert tokens == ["access-1"] * 5


def test_credential_repr_hides_secrets(tmp_path):
    store = _store(tmp_path, FakeExchange())
    store.ensure_valid()
    assert "access-1" not in repr(store._credential)
    assert "rotated" not in repr(store._credential)


def test_unreadable_token_file_falls_back_to_initial(tmp_path):
    (tmp_path / "token.json").write_text("garbage", encoding="utf-8")
    exchange = FakeExchange()
    _store(tmp_path, exchange).ensure_valid()
    assert exchange.calls == ["initial"]


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_token_file_is_written_owner_only(tmp_path):
    stale = tmp_path / "token.tmp"
    stale.write_text("{}", encoding="utf-8")
    stale.chmod(0o644)

    _store(tmp_path, FakeExchange()).ensure_valid()

    assert (tmp_path / "token.json").stat().st_mode & 0o777 == 0o600
    assert not stale.exists()
