"""Tests for delivery_metrics.pipeline.config ensuring CLI and secrets layering.

Run with coverage:
    pytest tests/test_pipeline_config.py --maxfail=1 -v --cov=delivery_metrics.pipeline.config --cov-report=term-missing
"""

from pathlib import Path

import pytest

from delivery_metrics.errors import ConfigurationError
from delivery_metrics.pipeline import config
from delivery_metrics.retrieval.config import DEFAULT_MAX_PAGES


def _resolve(argv=None, secrets=None):
    return config.resolve_settings(config.parse_args(argv or []), secrets or {})


def test_defaults():
    settings = _resolve()

    assert settings.repositories == ()
    assert settings.api_mode == "graphql"
    assert settings.production_pattern == "production"
    assert settings.exclude_labels == ("exclude-metrics",)
    assert settings.incident_labels == ("incident",)
    assert settings.environment_match_mode == "exact"
    assert settings.period_days == 30
    assert settings.max_pages == DEFAULT_MAX_PAGES
    assert settings.sink == "json"
    assert settings.output_dir == Path("./output")
    assert settings.elasticsearch.index == "devops-metrics"


def test_cli_overrides_secrets_section():
    secrets = {
        "pipeline": {
            "repositories": ["octo/app", "octo/api"],
            "api_mode": "rest",
            "period_days": 14,
            "production_pattern": "release",
            "deploy_workflow_patterns": "deploy,ship",
        },
        "elasticsearch": {"url": "https://es:9200", "index": "from-file", "api_key": "k"},
    }

    settings = _resolve(["octo/web", "--api-mode", "graphql", "--es-index", "from-cli"], secrets)

    assert settings.repositories == ("octo/web",)
    assert settings.api_mode == "graphql"
    assert settings.period_days == 14
    assert settings.production_pattern == "release"
    assert settings.deploy_workflow_patterns == ("deploy", "ship")
    assert settings.elasticsearch.url == "https://es:9200"
    assert settings.elasticsearch.index == "from-cli"
    assert "k" not in repr(settings.elasticsearch)


def test_secrets_repositories_used_without_cli_args():
    settings = _resolve(secrets={"pipeline": {"repositories": "octo/app, octo/api"}})
    assert settings.repositories == ("octo/app", "octo/api")


def test_per_metric_exclusions_from_cli():
    settings = _resolve(
        [
            "--exclude-label", "skip",
            "--metric-exclude-label", "pr_size=generated",
            "--exclude-base-branch", "dora=release",
            "--exclude-base-branch", "dora=hotfix",
        ]
    )

    assert settings.labels_for("pr_size") == ("generated",)
    assert settings.labels_for("dora") == ("skip",)
    assert settings.branches_for("dora") == ("release", "hotfix")
    assert settings.branches_for("pr_size") == ()


def test_per_metric_exclusions_from_secrets():
    settings = _resolve(secrets={"pipeline": {"metric_exclude_labels": {"rework_rate": ["bot"]}}})
    assert settings.labels_for("rework_rate") == ("bot",)


@pytest.mark.parametrize(
    "argv,secrets",
    [
        (["not-a-repo"], {}),
        (["--metric-exclude-label", "velocity=x"], {}),
        (["--metric-exclude-label", "dora"], {}),
        ([], {"pipeline": {"api_mode": "soap"}}),
        ([], {"pipeline": {"period_days": 0}}),
        (["--max-pages", "-1"], {}),
        ([], {"pipeline": {"sink": "csv"}}),
    ],
)
def test_invalid_settings_raise(argv, secrets):
    with pytest.raises(ConfigurationError):
        _resolve(argv, secrets)


def test_log_level_is_normalized():
    assert _resolve(["--log-level", "debug"]).log_level == "DEBUG"
