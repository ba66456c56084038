"""DORA metrics: deployment frequency, lead time, change failure rate and time to recovery."""

from __future__ import annotations

import datetime as dt
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from delivery_metrics.retrieval.config import LEAD_TIME_DEPLOY_MATCH_THRESHOLD_HOURS
from delivery_metrics.retrieval.models import Deployment, Issue, PullRequest, WorkflowRun
from delivery_metrics.retrieval.normalizers import hours_between, parse_timestamp

from .stats import mean_or_none, round1, round1_or_none
from .thresholds import (
    classify_change_failure_rate,
    classify_deployment_frequency,
    classify_lead_time,
    classify_mttr,
    frequency_category,
)

DEFAULT_DEPLOY_WORKFLOW_PATTERNS = ("deploy",)
FAILED_DEPLOYMENT_STATES = ("failure", "error")


@dataclass(frozen=True)
class LeadTimeResult:
    hours: float
    merge_to_deploy_count: int = 0
    create_to_merge_count: int = 0

    @property
    def measured(self) -> int:
        return self.merge_to_deploy_count + self.create_to_merge_count


@dataclass(frozen=True)
class IncidentMetrics:
    incident_count: int
    open_incidents: int
    mttr_hours: Optional[float]


@dataclass(frozen=True)
class DevOpsMetrics:
    """One report row, keyed by (date, repository)."""

    date: str
    repository: str
    deployment_count: int
    deployment_frequency: str
    deployment_frequency_level: str
    lead_time_for_changes_hours: float
    lead_time_level: Optional[str]
    merge_to_deploy_count: int
    create_to_merge_count: int
    total_deployments: int
    failed_deployments: int
    change_failure_rate: float
    change_failure_rate_level: Optional[str]
    mean_time_to_recovery_hours: Optional[float]
    mttr_level: Optional[str]
    incident_metrics: Optional[IncidentMetrics] = None
    data_complete: bool = True

    @property
    def record_id(self) -> str:
        return f"{self.date}:{self.repository}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _matches_patterns(name: str, patterns: Sequence[str]) -> bool:
    lowered = (name or "").lower()
    return any(pattern.lower() in lowered for pattern in patterns)


def _deploy_runs(runs: Iterable[WorkflowRun], patterns: Sequence[str]) -> List[WorkflowRun]:
    return [run for run in runs if _matches_patterns(run.name, patterns)]


def _with_status(deployments: Iterable[Deployment]) -> List[Deployment]:
    return [d for d in deployments if d.status is not None]


def _by_created(items: Iterable[Any]) -> List[Any]:
    return sorted(items, key=lambda item: parse_timestamp(item.created_at))


def calculate_deployment_frequency(
    deployments: Sequence[Deployment],
    runs: Sequence[WorkflowRun],
    period_days: float,
    patterns: Sequence[str] = DEFAULT_DEPLOY_WORKFLOW_PATTERNS,
) -> Tuple[int, float, str]:
    """Return (count, deploys_per_day, category); workflow runs are the fallback source."""
    count = sum(1 for d in deployments if d.status == "success")
    if count == 0:
        count = sum(1 for run in _deploy_runs(runs, patterns) if run.conclusion == "success")
    per_day = count / period_days if period_days > 0 else 0.0
    return count, per_day, frequency_category(per_day)


def calculate_change_failure_rate(
    deployments: Sequence[Deployment],
    runs: Sequence[WorkflowRun],
    patterns: Sequence[str] = DEFAULT_DEPLOY_WORKFLOW_PATTERNS,
) -> Tuple[int, int, float]:
    """Return (total, failed, rate%) over deployments with a known status, else deploy runs."""
    known = _with_status(deployments)
    if known:
        total = len(known)
        failed = sum(1 for d in known if d.status in FAILED_DEPLOYMENT_STATES)
    else:
        deploy_runs = _deploy_runs(runs, patterns)
        total = len(deploy_runs)
        failed = sum(1 for run in deploy_runs if run.conclusion == "failure")
    rate = round1(failed / total * 100) if total else 0.0
    return total, failed, rate


def _lead_time_for(
    pr: PullRequest, successful: Sequence[Deployment], threshold_hours: float
) -> Tuple[float, bool]:
    merged = parse_timestamp(pr.merged_at)
    deployed = next(
        (d for d in successful if parse_timestamp(d.created_at) >= merged), None
    )
    if deployed is not None:
        if hours_between(pr.merged_at, deployed.created_at) <= threshold_hours:
            return hours_between(pr.created_at, deployed.created_at), True
    return hours_between(pr.created_at, pr.merged_at), False


def calculate_lead_time(
    prs: Sequence[PullRequest],
    deployments: Sequence[Deployment] = (),
    threshold_hours: float = LEAD_TIME_DEPLOY_MATCH_THRESHOLD_HOURS,
) -> LeadTimeResult:
    """Mean hours from PR creation to deploy, falling back to creation-to-merge per PR."""
    merged = [pr for pr in prs if pr.is_merged]
    if not merged:
        return LeadTimeResult(hours=0.0)
    successful = _by_created(d for d in deployments if d.status == "success")
    durations: List[float] = []
    via_deploy = 0
    for pr in merged:
        hours, deployed = _lead_time_for(pr, successful, threshold_hours)
        durations.append(hours)
        via_deploy += 1 if deployed else 0
    return LeadTimeResult(
        hours=round1(sum(durations) / len(durations)),
        merge_to_deploy_count=via_deploy,
        create_to_merge_count=len(durations) - via_deploy,
    )


def _mean_recovery(events: Sequence[Tuple[str, bool, bool]]) -> Optional[float]:
    """events: (created_at, is_failure, is_success) in chronological order."""
    recoveries: List[float] = []
    failed_at: Optional[str] = None
    for created_at, is_failure, is_success in events:
        if is_failure:
            failed_at = created_at
        elif is_success and failed_at is not None:
            recoveries.append(hours_between(failed_at, created_at))
            failed_at = None
    return round1_or_none(mean_or_none(recoveries))


def calculate_mttr(
    deployments: Sequence[Deployment],
    runs: Sequence[WorkflowRun],
    patterns: Sequence[str] = DEFAULT_DEPLOY_WORKFLOW_PATTERNS,
) -> Optional[float]:
    """CI/CD approximation: failed deployment until the next successful one."""
    known = _with_status(deployments)
    if known:
        return _mean_recovery([
            (d.created_at, d.status in FAILED_DEPLOYMENT_STATES, d.status == "success")
            for d in _by_created(known)
        ])
    return _mean_recovery([
        (run.created_at, run.conclusion == "failure", run.conclusion == "success")
        for run in _by_created(_deploy_runs(runs, patterns))
    ])


def calculate_incident_metrics(incidents: Sequence[Issue]) -> IncidentMetrics:
    closed = [i for i in incidents if i.closed_at]
    open_count = sum(1 for i in incidents if i.state == "open")
    durations = [hours_between(i.created_at, i.closed_at) for i in closed]
    return IncidentMetrics(
        incident_count=len(incidents),
        open_incidents=open_count,
        mttr_hours=round1_or_none(mean_or_none(durations)),
    )


def _build_record(
    *,
    date: str,
    repository: str,
    prs: Sequence[PullRequest],
    runs: Sequence[WorkflowRun],
    deployments: Sequence[Deployment],
    period_days: float,
    patterns: Sequence[str],
    incidents: Sequence[Issue] = (),
    data_complete: bool = True,
) -> DevOpsMetrics:
    count, per_day, category = calculate_deployment_frequency(deployments, runs, period_days, patterns)
    total, failed, rate = calculate_change_failure_rate(deployments, runs, patterns)
    lead_time = calculate_lead_time(prs, deployments)

    incident_metrics = calculate_incident_metrics(incidents) if incidents else None
    if incident_metrics is not None:
        mttr = incident_metrics.mttr_hours
    else:
        mttr = calculate_mttr(deployments, runs, patterns)

    return DevOpsMetrics(
        date=date,
        repository=repository,
        deployment_count=count,
        deployment_frequency=category,
        deployment_frequency_level=classify_deployment_frequency(per_day),
        lead_time_for_changes_hours=lead_time.hours,
        lead_time_level=classify_lead_time(lead_time.hours) if lead_time.measured else None,
        merge_to_deploy_count=lead_time.merge_to_deploy_count,
        create_to_merge_count=lead_time.create_to_merge_count,
        total_deployments=total,
        failed_deployments=failed,
        change_failure_rate=rate,
        change_failure_rate_level=classify_change_failure_rate(rate) if total else None,
        mean_time_to_recovery_hours=mttr,
        mttr_level=classify_mttr(mttr) if mttr is not None else None,
        incident_metrics=incident_metrics,
        data_complete=data_complete,
    )


def calculate_metrics_for_repository(
    repository: str,
    prs: Sequence[PullRequest],
    runs: Sequence[WorkflowRun],
    deployments: Sequence[Deployment] = (),
    *,
    period_days: float = 30,
    incidents: Sequence[Issue] = (),
    patterns: Sequence[str] = DEFAULT_DEPLOY_WORKFLOW_PATTERNS,
    as_of: Optional[dt.date] = None,
    data_complete: bool = True,
) -> DevOpsMetrics:
    """Whole-period metrics; incident-based MTTR takes precedence over the CI/CD figure."""
    as_of = as_of or dt.datetime.now(dt.timezone.utc).date()
    return _build_record(
        date=as_of.isoformat(),
        repository=repository,
        prs=[pr for pr in prs if pr.repository == repository],
        runs=[run for run in runs if run.repository == repository],
        deployments=[d for d in deployments if d.repository == repository],
        period_days=period_days,
        patterns=patterns,
        incidents=[i for i in incidents if i.repository == repository],
        data_complete=data_complete,
    )


def date_range(since: dt.date, until: dt.date) -> List[dt.date]:
    days = (until - since).days
    return [since + dt.timedelta(days=offset) for offset in range(days + 1)]


def _utc_date(timestamp: Optional[str]) -> Optional[dt.date]:
    moment = parse_timestamp(timestamp)
    return moment.astimezone(dt.timezone.utc).date() if moment else None


def calculate_daily_metrics(
    repository: str,
    prs: Sequence[PullRequest],
    runs: Sequence[WorkflowRun],
    deployments: Sequence[Deployment],
    since: dt.date,
    until: dt.date,
    *,
    patterns: Sequence[str] = DEFAULT_DEPLOY_WORKFLOW_PATTERNS,
    data_complete: bool = True,
) -> List[DevOpsMetrics]:
    """One record per UTC day; PRs bucket by merge day, deployments and runs by creation day."""
    records: List[DevOpsMetrics] = []
    for day in date_range(since, until):
        records.append(
            _build_record(
                date=day.isoformat(),
                repository=repository,
                prs=[pr for pr in prs if pr.is_merged and _utc_date(pr.merged_at) == day],
                runs=[run for run in runs if _utc_date(run.created_at) == day],
                deployments=[d for d in deployments if _utc_date(d.created_at) == day],
                period_days=1,
                patterns=patterns,
                data_complete=data_complete,
            )
        )
    return records


__all__ = [
    "DEFAULT_DEPLOY_WORKFLOW_PATTERNS",
    "FAILED_DEPLOYMENT_STATES",
    "LeadTimeResult",
    "IncidentMetrics",
    "DevOpsMetrics",
    "calculate_deployment_frequency",
    "calculate_change_failure_rate",
    "calculate_lead_time",
    "calculate_mttr",
    "calculate_incident_metrics",
    "calculate_metrics_for_repository",
    "date_range",
    "calculate_daily_metrics",
]
