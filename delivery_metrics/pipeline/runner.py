"""Entry points for running the delivery metrics pipeline."""

from __future__ import annotations

import datetime as dt
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from delivery_metrics.errors import PipelineError, sanitize_sensitive_data
from delivery_metrics.logging_config import setup_logging
from delivery_metrics.metrics.dora import (
    DevOpsMetrics,
    calculate_daily_metrics,
    calculate_metrics_for_repository,
)
from delivery_metrics.metrics.extended import (
    apply_metric_filters,
    build_coding_time,
    build_cycle_time,
    build_pr_size,
    build_review,
    build_rework,
    calculate_coding_time,
    calculate_cycle_time,
    calculate_pr_size,
    calculate_review_efficiency,
    calculate_rework_rate,
)
from delivery_metrics.metrics.trends import aggregate_multi_repo_metrics, calculate_weekly_trends
from delivery_metrics.reporting.client import ESClient
from delivery_metrics.reporting.sink import ReportSink, build_sink
from delivery_metrics.retrieval.collectors import build_collector
from delivery_metrics.retrieval.http_client import FetchClient
from delivery_metrics.retrieval.models import Issue, PullRequest, PullRequestDetail, Repository
from delivery_metrics.retrieval.normalizers import filter_excluded_labels
from delivery_metrics.tracking.chain import CollectorLookup, DeliveryChainTracker

from .config import SINK_ELASTICSEARCH, PipelineSettings, parse_args, resolve_settings

logger = logging.getLogger(__name__)

REPO_ERRORS = (PipelineError, requests.RequestException)


@dataclass
class RepoReport:
    """Everything computed for one repository in one run."""

    repository: str
    record: DevOpsMetrics
    daily: List[DevOpsMetrics] = field(default_factory=list)
    weekly_trends: List[Dict[str, Any]] = field(default_factory=list)
    extended: Dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> Dict[str, Any]:
        doc = self.record.to_dict()
        doc["record_id"] = self.record.record_id
        doc["weekly_trends"] = self.weekly_trends
        doc["extended"] = self.extended
        return doc


@dataclass
class RunSummary:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    records: List[Dict[str, Any]] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    overview: Dict[str, Any] = field(default_factory=dict)
    written: int = 0
    write_failures: int = 0

    @property
    def ok(self) -> bool:
        return bool(self.succeeded)


def _period(settings: PipelineSettings, as_of: dt.datetime) -> Tuple[dt.datetime, dt.datetime]:
    since = as_of - dt.timedelta(days=settings.period_days)
    return since, as_of


def _linked_prs(lookup: CollectorLookup, numbers: Sequence[int]) -> List[PullRequest]:
    prs: List[PullRequest] = []
    for number in numbers:
        try:
            prs.append(lookup.get(number))
        except PipelineError as exc:
            logger.warning("[warn] %s: linked PR #%s unavailable: %s", lookup.repo, number, exc)
    return prs


def _issue_metrics(
    repo: Repository,
    collector: Any,
    issues: Sequence[Issue],
    settings: PipelineSettings,
    period: str,
) -> Dict[str, Any]:
    lookup = CollectorLookup(collector, repo)
    tracker = DeliveryChainTracker(lookup, production_pattern=settings.production_pattern)
    cycle_issues = {i.number for i in filter_excluded_labels(issues, settings.labels_for("cycle_time"))}
    coding_issues = {i.number for i in filter_excluded_labels(issues, settings.labels_for("coding_time"))}

    cycle, coding = [], []
    for issue in issues:
        if issue.number not in cycle_issues and issue.number not in coding_issues:
            continue
        try:
            linked = collector.get_linked_pull_requests(repo, issue.number)
        except PipelineError as exc:
            logger.warning("[warn] %s#%s: linked PR lookup failed: %s", repo, issue.number, exc)
            continue
        if not linked:
            continue
        linked_prs = _linked_prs(lookup, linked)
        # Completion is the production merge, so open issues count too.
        if issue.number in cycle_issues:
            candidates = apply_metric_filters(
                linked_prs, settings.labels_for("cycle_time"), settings.branches_for("cycle_time")
            )
            cycle.append(build_cycle_time(issue, tracker.evaluate([pr.number for pr in candidates])))
        if issue.number in coding_issues:
            prs = apply_metric_filters(
                linked_prs,
                settings.labels_for("coding_time"),
                settings.branches_for("coding_time"),
            )
            record = build_coding_time(issue, prs)
            if record.first_pr_number is not None:
                coding.append(record)
    return {
        "cycle_time": calculate_cycle_time(cycle, period),
        "coding_time": calculate_coding_time(coding, period),
    }


def _pull_request_metrics(
    repo: Repository,
    collector: Any,
    prs: Sequence[PullRequest],
    settings: PipelineSettings,
    period: str,
) -> Dict[str, Any]:
    merged = [pr for pr in prs if pr.is_merged]
    wanted = {
        metric: {
            pr.number
            for pr in apply_metric_filters(merged, settings.labels_for(metric), settings.branches_for(metric))
        }
        for metric in ("rework_rate", "review_efficiency", "pr_size")
    }
    details: Dict[int, PullRequestDetail] = {}
    for number in sorted(set().union(*wanted.values())):
        try:
            details[number] = collector.get_pull_request_detail(repo, number)
        except PipelineError as exc:
            logger.warning("[warn] %s: detail for PR #%s failed: %s", repo, number, exc)

    rework = [build_rework(d) for n, d in details.items() if n in wanted["rework_rate"]]
    reviews = [build_review(d) for n, d in details.items() if n in wanted["review_efficiency"]]
    sizes = []
    for number, detail in details.items():
        size = build_pr_size(detail.pull_request) if number in wanted["pr_size"] else None
        if size is not None:
            sizes.append(size)
    return {
        "rework_rate": calculate_rework_rate(rework, period),
        "review_efficiency": calculate_review_efficiency(reviews, period),
        "pr_size": calculate_pr_size(sizes, period),
    }


def process_repo(
    full_name: str,
    collector: Any,
    settings: PipelineSettings,
    *,
    as_of: Optional[dt.datetime] = None,
) -> RepoReport:
    """Fetch one repository's activity for the period and compute its metrics."""

    repo = Repository.parse(full_name)
    as_of = as_of or dt.datetime.now(dt.timezone.utc)
    since, until = _period(settings, as_of)
    period = f"{since.date().isoformat()}~{until.date().isoformat()}"

    logger.info("=== %s ===", repo)
    logger.info("  fetching pull requests...")
    prs = collector.list_pull_requests(repo, state="all", since=since, until=until)
    logger.info("  fetching workflow runs...")
    runs = collector.list_workflow_runs(repo, since=since, until=until)
    logger.info("  fetching deployments...")
    deployments = collector.list_deployments(
        repo,
        environment=settings.deploy_environment,
        match_mode=settings.environment_match_mode,
        since=since,
        until=until,
    )
    logger.info("  fetching incidents...")
    incidents = collector.list_issues(repo, labels=settings.incident_labels, since=since, until=until)
    logger.info("  fetching issues...")
    issues = collector.list_issues(repo, since=since, until=until)

    batches = (prs, runs, deployments, incidents, issues)
    data_complete = all(batch.complete for batch in batches)
    if not data_complete:
        logger.warning("[warn] %s: pagination stopped early; records marked incomplete", repo)

    dora_prs = apply_metric_filters(prs.items, settings.labels_for("dora"), settings.branches_for("dora"))
    record = calculate_metrics_for_repository(
        repo.full_name,
        dora_prs,
        runs.items,
        deployments.items,
        period_days=settings.period_days,
        incidents=incidents.items,
        patterns=settings.deploy_workflow_patterns,
        as_of=until.date(),
        data_complete=data_complete,
    )
    daily = calculate_daily_metrics(
        repo.full_name,
        dora_prs,
        runs.items,
        deployments.items,
        since.date(),
        until.date(),
        patterns=settings.deploy_workflow_patterns,
        data_complete=data_complete,
    )

    logger.info("  computing extended metrics...")
    extended = _issue_metrics(repo, collector, issues.items, settings, period)
    extended.update(_pull_request_metrics(repo, collector, prs.items, settings, period))

    logger.info(
        "  %s: %d deployments, lead time %.1fh, CFR %.1f%%",
        repo,
        record.deployment_count,
        record.lead_time_for_changes_hours,
        record.change_failure_rate,
    )
    return RepoReport(
        repository=repo.full_name,
        record=record,
        daily=daily,
        weekly_trends=calculate_weekly_trends(daily),
        extended=extended,
    )


def _annotate_run(summary: RunSummary) -> None:
    """Stamp every record with how the run that produced it went."""
    run_info = {
        "succeeded_repositories": len(summary.succeeded),
        "failed_repositories": len(summary.failed),
        "skipped_repositories": len(summary.skipped),
        "overview": summary.overview.get("summary", {}),
    }
    for record in summary.records:
        record["run"] = dict(run_info)


def _build_default_sink(settings: PipelineSettings) -> ReportSink:
    es = settings.elasticsearch
    client = None
    if settings.sink == SINK_ELASTICSEARCH:
        client = ESClient(es.url, es.username, es.password, es.api_key, verify_tls=es.verify_tls)
    return build_sink(
        settings.sink,
        output_dir=settings.output_dir,
        es_client=client,
        index=es.index,
        batch_size=es.batch_size,
    )


def run(
    settings: PipelineSettings,
    *,
    collector: Any = None,
    sink: Optional[ReportSink] = None,
    as_of: Optional[dt.datetime] = None,
) -> RunSummary:
    """Process every configured repository; one repository failing never stops the others."""

    summary = RunSummary()
    if collector is None:
        collector = build_collector(settings.api_mode, FetchClient(), max_pages=settings.max_pages)

    daily: List[DevOpsMetrics] = []
    seen = set()
    logger.info("Processing %d repos...", len(settings.repositories))
    for name in settings.repositories:
        name = name.strip()
        if name in seen:
            summary.skipped.append(name)
            continue
        seen.add(name)
        try:
            report = process_repo(name, collector, settings, as_of=as_of)
        except REPO_ERRORS as exc:
            message = sanitize_sensitive_data(str(exc))
            logger.error("[error] %s: %s", name, message)
            summary.failed.append(name)
            summary.errors[name] = message
            continue
        summary.succeeded.append(name)
        summary.records.append(report.to_record())
        daily.extend(report.daily)

    summary.overview = aggregate_multi_repo_metrics(daily)
    _annotate_run(summary)
    if summary.records:
        try:
            sink = sink or _build_default_sink(settings)
            summary.written, summary.write_failures = sink.upsert(summary.records)
        except REPO_ERRORS as exc:
            logger.error("[error] report sink: %s", sanitize_sensitive_data(str(exc)))
            summary.write_failures = len(summary.records)

    logger.info(
        "All repositories processed: %d succeeded, %d failed, %d skipped.",
        len(summary.succeeded),
        len(summary.failed),
        len(summary.skipped),
    )
    return summary


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point; returns a non-zero exit code when no repository succeeded."""

    args = parse_args(argv)
    try:
        settings = resolve_settings(args)
    except PipelineError as exc:
        setup_logging()
        logger.error("[error] invalid configuration: %s", exc)
        return 2
    setup_logging(settings.log_level, json_output=settings.json_logs)

    if not settings.repositories:
        logger.error("No repositories specified. Provide CLI args or set pipeline.repositories in local_secrets.json.")
        return 1

    try:
        summary = run(settings)
    except PipelineError as exc:
        logger.error("[error] %s", exc)
        return 2
    overview = summary.overview.get("summary") or {}
    if overview.get("repository_count"):
        logger.info(
            "Overview: %d repos, avg lead time %s h, avg CFR %s%%, avg MTTR %s h",
            overview["repository_count"],
            overview["avg_lead_time_hours"],
            overview["avg_change_failure_rate"],
            overview["avg_mttr_hours"],
        )
    return 0 if summary.ok else 1


if __name__ == "__main__":
    sys.exit(main())
