"""Configuration helpers for the delivery metrics pipeline run."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from delivery_metrics.errors import ConfigurationError
from delivery_metrics.metrics.dora import DEFAULT_DEPLOY_WORKFLOW_PATTERNS
from delivery_metrics.metrics.extended import DEFAULT_EXCLUDE_LABELS
from delivery_metrics.retrieval.collectors import API_MODE_GRAPHQL, API_MODE_REST
from delivery_metrics.retrieval.config import DEFAULT_MAX_PAGES
from delivery_metrics.retrieval.models import Repository
from delivery_metrics.retrieval.normalizers import ENVIRONMENT_MATCH_EXACT, ENVIRONMENT_MATCH_PARTIAL
from delivery_metrics.secrets import load_local_secrets
from delivery_metrics.tracking.chain import DEFAULT_PRODUCTION_BRANCH_PATTERN

SINK_JSON = "json"
SINK_ELASTICSEARCH = "elasticsearch"

METRIC_NAMES = ("dora", "cycle_time", "coding_time", "rework_rate", "review_efficiency", "pr_size")

DEFAULT_OUTPUT_DIR = "./output"
DEFAULT_PERIOD_DAYS = 30
DEFAULT_INCIDENT_LABELS = ("incident",)
DEFAULT_ES_URL = "http://localhost:9200"
DEFAULT_ES_INDEX = "devops-metrics"


@dataclass(frozen=True)
class ElasticsearchSettings:
    url: str = DEFAULT_ES_URL
    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[str] = None
    verify_tls: bool = False
    index: str = DEFAULT_ES_INDEX
    batch_size: int = 500

    def __repr__(self) -> str:
        return f"ElasticsearchSettings(url={self.url!r}, index={self.index!r})"


@dataclass(frozen=True)
class PipelineSettings:
    """Resolved runtime settings for one pipeline run."""

    repositories: Tuple[str, ...] = ()
    api_mode: str = API_MODE_GRAPHQL
    production_pattern: str = DEFAULT_PRODUCTION_BRANCH_PATTERN
    exclude_labels: Tuple[str, ...] = DEFAULT_EXCLUDE_LABELS
    metric_exclude_labels: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    exclude_base_branches: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    incident_labels: Tuple[str, ...] = DEFAULT_INCIDENT_LABELS
    deploy_environment: Optional[str] = None
    environment_match_mode: str = ENVIRONMENT_MATCH_EXACT
    deploy_workflow_patterns: Tuple[str, ...] = DEFAULT_DEPLOY_WORKFLOW_PATTERNS
    period_days: int = DEFAULT_PERIOD_DAYS
    max_pages: int = DEFAULT_MAX_PAGES
    sink: str = SINK_JSON
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    elasticsearch: ElasticsearchSettings = field(default_factory=ElasticsearchSettings)
    log_level: str = "INFO"
    json_logs: bool = False

    def labels_for(self, metric: str) -> Tuple[str, ...]:
        """Exclude labels for `metric`, falling back to the run-wide list."""
        return self.metric_exclude_labels.get(metric, self.exclude_labels)

    def branches_for(self, metric: str) -> Tuple[str, ...]:
        return self.exclude_base_branches.get(metric, ())


def _split_list(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(item.strip() for item in value if str(item).strip())


def _metric_mapping(raw: Any, source: str) -> Dict[str, Tuple[str, ...]]:
    """Accept {metric: [values]} from secrets or ["metric=value", ...] from the CLI."""
    mapping: Dict[str, List[str]] = {}
    if isinstance(raw, Mapping):
        for metric, values in raw.items():
            mapping.setdefault(metric, []).extend(_split_list(values))
    else:
        for entry in raw or ():
            metric, sep, value = str(entry).partition("=")
            if not sep or not value.strip():
                raise ConfigurationError(f"{source}: expected METRIC=VALUE, got {entry!r}")
            mapping.setdefault(metric.strip(), []).append(value.strip())
    unknown = sorted(set(mapping) - set(METRIC_NAMES))
    if unknown:
        raise ConfigurationError(f"{source}: unknown metric(s) {', '.join(unknown)}")
    return {metric: tuple(values) for metric, values in mapping.items()}


def _choice(value: str, allowed: Sequence[str], name: str) -> str:
    if value not in allowed:
        raise ConfigurationError(f"{name} must be one of {', '.join(allowed)}, got {value!r}")
    return value


def _int_at_least(value: Any, name: str, minimum: int = 1) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None
    if number < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {number}")
    return number


def build_arg_parser() -> argparse.ArgumentParser:
    """Return the CLI parser used by the pipeline entry point."""

    parser = argparse.ArgumentParser(
        description="Compute DORA and delivery metrics for GitHub repositories.",
    )
    parser.add_argument("repos", nargs="*", help="repositories as owner/name")
    parser.add_argument("--api-mode", choices=(API_MODE_GRAPHQL, API_MODE_REST))
    parser.add_argument("--production-pattern")
    parser.add_argument("--exclude-label", action="append", dest="exclude_labels")
    parser.add_argument(
        "--metric-exclude-label", action="append", metavar="METRIC=LABEL", dest="metric_exclude_labels"
    )
    parser.add_argument(
        "--exclude-base-branch", action="append", metavar="METRIC=PATTERN", dest="exclude_base_branches"
    )
    parser.add_argument("--incident-label", action="append", dest="incident_labels")
    parser.add_argument("--environment", dest="deploy_environment")
    parser.add_argument(
        "--environment-match",
        choices=(ENVIRONMENT_MATCH_EXACT, ENVIRONMENT_MATCH_PARTIAL),
        dest="environment_match_mode",
    )
    parser.add_argument("--deploy-workflow", action="append", dest="deploy_workflow_patterns")
    parser.add_argument("--period-days", type=int)
    parser.add_argument("--max-pages", type=int)
    parser.add_argument("--sink", choices=(SINK_JSON, SINK_ELASTICSEARCH))
    parser.add_argument("--output-dir")
    parser.add_argument("--es-url")
    parser.add_argument("--es-index")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL"))
    parser.add_argument("--json-logs", action="store_true", default=None)
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments; accepts argv overrides for testing."""

    parser = build_arg_parser()
    return parser.parse_args(argv)


def _pick(cli: Any, file: Any, default: Any) -> Any:
    if cli is not None:
        return cli
    if file is not None:
        return file
    return default


def _resolve_elasticsearch(args: argparse.Namespace, section: Mapping[str, Any]) -> ElasticsearchSettings:
    return ElasticsearchSettings(
        url=_pick(getattr(args, "es_url", None), section.get("url"), DEFAULT_ES_URL),
        username=section.get("username"),
        password=section.get("password"),
        api_key=section.get("api_key") or None,
        verify_tls=bool(section.get("verify_tls", False)),
        index=_pick(getattr(args, "es_index", None), section.get("index"), DEFAULT_ES_INDEX),
        batch_size=_int_at_least(section.get("batch_size", 500), "elasticsearch.batch_size"),
    )


def resolve_settings(
    args: Optional[argparse.Namespace] = None, secrets: Optional[Mapping[str, Any]] = None
) -> PipelineSettings:
    """Layer CLI flags over the secrets file's `pipeline` section over built-in defaults."""

    args = args or parse_args([])
    secrets = load_local_secrets() if secrets is None else secrets
    section: Mapping[str, Any] = secrets.get("pipeline") or {}

    repositories = tuple(args.repos) or _split_list(section.get("repositories"))
    for name in repositories:
        Repository.parse(name)

    exclude_labels = _split_list(args.exclude_labels) or _split_list(section.get("exclude_labels"))
    if args.metric_exclude_labels:
        metric_labels = _metric_mapping(args.metric_exclude_labels, "--metric-exclude-label")
    else:
        metric_labels = _metric_mapping(section.get("metric_exclude_labels"), "metric_exclude_labels")
    if args.exclude_base_branches:
        branches = _metric_mapping(args.exclude_base_branches, "--exclude-base-branch")
    else:
        branches = _metric_mapping(section.get("exclude_base_branches"), "exclude_base_branches")

    api_mode = _pick(args.api_mode, section.get("api_mode"), API_MODE_GRAPHQL)
    match_mode = _pick(args.environment_match_mode, section.get("environment_match_mode"), ENVIRONMENT_MATCH_EXACT)
    sink = _pick(args.sink, section.get("sink"), SINK_JSON)

    return PipelineSettings(
        repositories=repositories,
        api_mode=_choice(api_mode, (API_MODE_GRAPHQL, API_MODE_REST), "api_mode"),
        production_pattern=_pick(
            args.production_pattern, section.get("production_pattern"), DEFAULT_PRODUCTION_BRANCH_PATTERN
        ),
        exclude_labels=exclude_labels or DEFAULT_EXCLUDE_LABELS,
        metric_exclude_labels=metric_labels,
        exclude_base_branches=branches,
        incident_labels=_split_list(args.incident_labels)
        or _split_list(section.get("incident_labels"))
        or DEFAULT_INCIDENT_LABELS,
        deploy_environment=_pick(args.deploy_environment, section.get("deploy_environment"), None),
        environment_match_mode=_choice(
            match_mode, (ENVIRONMENT_MATCH_EXACT, ENVIRONMENT_MATCH_PARTIAL), "environment_match_mode"
        ),
        deploy_workflow_patterns=_split_list(args.deploy_workflow_patterns)
        or _split_list(section.get("deploy_workflow_patterns"))
        or DEFAULT_DEPLOY_WORKFLOW_PATTERNS,
        period_days=_int_at_least(
            _pick(args.period_days, section.get("period_days"), DEFAULT_PERIOD_DAYS), "period_days"
        ),
        max_pages=_int_at_least(
            _pick(args.max_pages, section.get("max_pages"), DEFAULT_MAX_PAGES), "max_pages", minimum=0
        ),
        sink=_choice(sink, (SINK_JSON, SINK_ELASTICSEARCH), "sink"),
        output_dir=Path(_pick(args.output_dir, section.get("output_dir"), DEFAULT_OUTPUT_DIR)),
        elasticsearch=_resolve_elasticsearch(args, secrets.get("elasticsearch") or {}),
        log_level=str(_pick(args.log_level, section.get("log_level"), "INFO")).upper(),
        json_logs=bool(_pick(args.json_logs, section.get("json_logs"), False)),
    )


__all__ = [
    "SINK_JSON",
    "SINK_ELASTICSEARCH",
    "METRIC_NAMES",
    "DEFAULT_OUTPUT_DIR",
    "DEFAULT_PERIOD_DAYS",
    "DEFAULT_INCIDENT_LABELS",
    "ElasticsearchSettings",
    "PipelineSettings",
    "build_arg_parser",
    "parse_args",
    "resolve_settings",
]
