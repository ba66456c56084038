"""Tests for delivery_metrics.retrieval.auth covering credential providers.

Run with coverage:
    pytest tests/test_auth.py --maxfail=1 -v --cov=delivery_metrics.retrieval.auth --cov-report=term-missing
"""

import datetime as dt

import pytest

from delivery_metrics.errors import ConfigurationError
from delivery_metrics.retrieval import auth

NOW = dt.datetime(2024, 1, 1, 12, tzinfo=dt.timezone.utc)


def test_credential_expiry_with_margin():
    credential = auth.Credential("t", expires_at=NOW + dt.timedelta(minutes=10))
    assert credential.is_expired(NOW) is False
    assert credential.is_expired(NOW, margin_sec=600) is True
    assert auth.Credential("t").is_expired(NOW) is False


def test_credential_repr_hides_token():
    assert "secret-token" not in repr(auth.Credential("secret-token"))


def test_static_provider():
    provider = auth.StaticCredentialProvider("tok")
    assert provider.get().token == "tok"
    provider.invalidate()
    assert provider.get().token == "tok"

    with pytest.raises(ConfigurationError):
        auth.StaticCredentialProvider("")


def test_refreshing_provider_mints_when_missing_expiring_or_invalidated():
    minted = []

    def mint():
        credential = auth.Credential(f"t{len(minted)}", expires_at=NOW + dt.timedelta(hours=1))
        minted.append(credential)
        return credential

    clock = {"now": NOW}
    provider = auth.RefreshingCredentialProvider(mint, margin_sec=300, clock=lambda: clock["now"])

    assert provider.get().token == "t0"
    assert provider.get().token == "t0"

    clock["now"] = NOW + dt.timedelta(minutes=56)
    assert provider.get().token == "t1"

    provider.invalidate()
    assert provider.get().token == "t2"
    assert len(minted) == 3


def test_default_credentials_prefers_explicit_token(monkeypatch):
    monkeypatch.setattr(auth, "GITHUB_TOKEN", "from-config")
    assert auth.default_credentials().get().token == "from-config"
    assert auth.default_credentials("explicit").get().token == "explicit"

    monkeypatch.setattr(auth, "GITHUB_TOKEN", None)
    with pytest.raises(ConfigurationError):
        auth.default_credentials()
