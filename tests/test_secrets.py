"""Tests for delivery_metrics.secrets covering local secrets loading.

Run with coverage:
    pytest tests/test_secrets.py --maxfail=1 -v --cov=delivery_metrics.secrets --cov-report=term-missing
"""

import json

from delivery_metrics.secrets import load_local_secrets


def test_load_local_secrets_reads_json(tmp_path):
    path = tmp_path / "secrets.json"
    path.write_text(json.dumps({"github_token": "t", "pipeline": {"api_mode": "rest"}}), encoding="utf-8")
    assert load_local_secrets(path)["pipeline"]["api_mode"] == "rest"


def test_load_local_secrets_missing_or_malformed(tmp_path):
    assert load_local_secrets(tmp_path / "absent.json") == {}

    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    assert load_local_secrets(bad) == {}

    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]", encoding="utf-8")
    assert load_local_secrets(listing) == {}


def test_load_local_secrets_env_override(tmp_path, monkeypatch):
    path = tmp_path / "env.json"
    path.write_text(json.dumps({"github_tokens": ["a"]}), encoding="utf-8")
    monkeypatch.setenv("LOCAL_SECRETS_FILE", str(path))
    assert load_local_secrets() == {"github_tokens": ["a"]}
