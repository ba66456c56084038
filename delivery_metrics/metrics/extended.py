"""Extended delivery metrics: cycle time, coding time, rework, review efficiency and PR size."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from delivery_metrics.retrieval.models import (
    FORCE_PUSHED,
    READY_FOR_REVIEW,
    DeliveryChainResult,
    Issue,
    PullRequest,
    PullRequestDetail,
)
from delivery_metrics.retrieval.normalizers import (
    filter_excluded_base_branches,
    filter_excluded_labels,
    hours_between,
    parse_timestamp,
)
from delivery_metrics.tracking.chain import cycle_time_hours

from .stats import calculate_stats, round1

DEFAULT_EXCLUDE_LABELS = ("exclude-metrics",)


def _round_hours(start: Optional[str], end: Optional[str]) -> Optional[float]:
    if not start or not end:
        return None
    return round1(hours_between(start, end))


@dataclass(frozen=True)
class IssueCycleTime:
    repository: str
    issue_number: int
    title: str
    issue_created_at: str
    production_merged_at: Optional[str]
    cycle_time_hours: Optional[float]
    pr_chain_summary: str
    stop_reason: str


@dataclass(frozen=True)
class IssueCodingTime:
    repository: str
    issue_number: int
    title: str
    issue_created_at: str
    first_pr_number: Optional[int]
    first_pr_created_at: Optional[str]
    coding_time_hours: Optional[float]


@dataclass(frozen=True)
class PRRework:
    repository: str
    pr_number: int
    title: str
    created_at: str
    merged_at: Optional[str]
    additional_commits: int
    force_push_count: int
    total_commits: int


@dataclass(frozen=True)
class PRReview:
    repository: str
    pr_number: int
    title: str
    created_at: str
    ready_for_review_at: str
    first_review_at: Optional[str]
    approved_at: Optional[str]
    merged_at: Optional[str]
    time_to_first_review_hours: Optional[float]
    review_duration_hours: Optional[float]
    time_to_merge_hours: Optional[float]
    total_time_hours: Optional[float]


@dataclass(frozen=True)
class PRSize:
    repository: str
    pr_number: int
    title: str
    created_at: str
    merged_at: Optional[str]
    additions: int
    deletions: int
    lines_of_code: int
    files_changed: int


# --------------------------------------------------------------------------- exclusions


def apply_metric_filters(
    prs: Iterable[PullRequest],
    exclude_labels: Sequence[str] = DEFAULT_EXCLUDE_LABELS,
    exclude_base_branches: Sequence[str] = (),
) -> List[PullRequest]:
    """Drop PRs carrying an exclude label or targeting an excluded base branch."""
    kept = filter_excluded_labels(prs, exclude_labels)
    return filter_excluded_base_branches(kept, exclude_base_branches)


# --------------------------------------------------------------------------- per-item builders


def build_cycle_time(issue: Issue, result: DeliveryChainResult) -> IssueCycleTime:
    return IssueCycleTime(
        repository=issue.repository,
        issue_number=issue.number,
        title=issue.title,
        issue_created_at=issue.created_at,
        production_merged_at=result.production_merged_at,
        cycle_time_hours=cycle_time_hours(issue.created_at, result.production_merged_at),
        pr_chain_summary=result.summary(),
        stop_reason=result.stop_reason,
    )


def build_coding_time(issue: Issue, linked_prs: Sequence[PullRequest]) -> IssueCodingTime:
    """Issue creation until the first linked PR was opened."""
    first = min(linked_prs, key=lambda pr: parse_timestamp(pr.created_at), default=None)
    return IssueCodingTime(
        repository=issue.repository,
        issue_number=issue.number,
        title=issue.title,
        issue_created_at=issue.created_at,
        first_pr_number=first.number if first else None,
        first_pr_created_at=first.created_at if first else None,
        coding_time_hours=_round_hours(issue.created_at, first.created_at) if first else None,
    )


def build_rework(detail: PullRequestDetail) -> PRRework:
    pr = detail.pull_request
    created = parse_timestamp(pr.created_at)
    additional = sum(1 for c in detail.commits if parse_timestamp(c.committed_at) > created)
    force_pushes = sum(1 for event in detail.timeline if event.kind == FORCE_PUSHED)
    return PRRework(
        repository=pr.repository,
        pr_number=pr.number,
        title=pr.title,
        created_at=pr.created_at,
        merged_at=pr.merged_at,
        additional_commits=additional,
        force_push_count=force_pushes,
        total_commits=len(detail.commits),
    )


def build_review(detail: PullRequestDetail) -> PRReview:
    pr = detail.pull_request
    ready_at = next(
        (event.created_at for event in detail.timeline if event.kind == READY_FOR_REVIEW),
        pr.created_at,
    )
    submitted = sorted(
        (r for r in detail.reviews if r.state != "PENDING" and r.submitted_at),
        key=lambda r: parse_timestamp(r.submitted_at),
    )
    first_review_at = submitted[0].submitted_at if submitted else None
    approved_at = next((r.submitted_at for r in submitted if r.state == "APPROVED"), None)
    return PRReview(
        repository=pr.repository,
        pr_number=pr.number,
        title=pr.title,
        created_at=pr.created_at,
        ready_for_review_at=ready_at,
        first_review_at=first_review_at,
        approved_at=approved_at,
        merged_at=pr.merged_at,
        time_to_first_review_hours=_round_hours(ready_at, first_review_at),
        review_duration_hours=_round_hours(first_review_at, approved_at),
        time_to_merge_hours=_round_hours(approved_at, pr.merged_at),
        total_time_hours=_round_hours(ready_at, pr.merged_at),
    )


def build_pr_size(pr: PullRequest) -> Optional[PRSize]:
    """None when size deltas were never fetched for this PR."""
    if pr.additions is None or pr.deletions is None:
        return None
    return PRSize(
        repository=pr.repository,
        pr_number=pr.number,
        title=pr.title,
        created_at=pr.created_at,
        merged_at=pr.merged_at,
        additions=pr.additions,
        deletions=pr.deletions,
        lines_of_code=pr.additions + pr.deletions,
        files_changed=pr.changed_files or 0,
    )


# --------------------------------------------------------------------------- aggregation


def _details(items: Iterable[Any]) -> List[Dict[str, Any]]:
    return [asdict(item) for item in items]


def calculate_cycle_time(records: Sequence[IssueCycleTime], period: str) -> Dict[str, Any]:
    values = [r.cycle_time_hours for r in records if r.cycle_time_hours is not None]
    return {
        "period": period,
        "completed_task_count": len(values),
        **calculate_stats(values).to_dict("hours"),
        "issue_details": _details(records),
    }


def calculate_coding_time(records: Sequence[IssueCodingTime], period: str) -> Dict[str, Any]:
    values = [r.coding_time_hours for r in records if r.coding_time_hours is not None and r.coding_time_hours >= 0]
    return {
        "period": period,
        "issue_count": len(values),
        **calculate_stats(values).to_dict("hours"),
        "issue_details": _details(records),
    }


def calculate_rework_rate(records: Sequence[PRRework], period: str) -> Dict[str, Any]:
    count = len(records)
    commits = [r.additional_commits for r in records]
    pushes = [r.force_push_count for r in records]
    with_push = sum(1 for p in pushes if p > 0)
    commit_stats = calculate_stats(commits)
    return {
        "period": period,
        "pr_count": count,
        "additional_commits": {
            "total": sum(commits),
            "avg_per_pr": round1(sum(commits) / count) if count else None,
            "median": commit_stats.median,
            "max": commit_stats.max,
        },
        "force_pushes": {
            "total": sum(pushes),
            "avg_per_pr": round1(sum(pushes) / count) if count else None,
            "prs_with_force_push": with_push,
            "force_push_rate": round1(with_push / count * 100) if count else None,
        },
        "pr_details": _details(records),
    }


def calculate_review_efficiency(records: Sequence[PRReview], period: str) -> Dict[str, Any]:
    def series(attr: str) -> Dict[str, Optional[float]]:
        values = [getattr(r, attr) for r in records if getattr(r, attr) is not None]
        return calculate_stats(values).to_dict("hours")

    return {
        "period": period,
        "pr_count": len(records),
        "time_to_first_review": series("time_to_first_review_hours"),
        "review_duration": series("review_duration_hours"),
        "time_to_merge": series("time_to_merge_hours"),
        "total_time": series("total_time_hours"),
        "pr_details": _details(records),
    }


def calculate_pr_size(records: Sequence[PRSize], period: str) -> Dict[str, Any]:
    lines = [r.lines_of_code for r in records]
    files = [r.files_changed for r in records]
    return {
        "period": period,
        "pr_count": len(records),
        "lines_of_code": {"total": sum(lines), **calculate_stats(lines).to_dict()},
        "files_changed": {"total": sum(files), **calculate_stats(files).to_dict()},
        "pr_details": _details(records),
    }


__all__ = [
    "DEFAULT_EXCLUDE_LABELS",
    "IssueCycleTime",
    "IssueCodingTime",
    "PRRework",
    "PRReview",
    "PRSize",
    "apply_metric_filters",
    "build_cycle_time",
    "build_coding_time",
    "build_rework",
    "build_review",
    "build_pr_size",
    "calculate_cycle_time",
    "calculate_coding_time",
    "calculate_rework_rate",
    "calculate_review_efficiency",
    "calculate_pr_size",
]
