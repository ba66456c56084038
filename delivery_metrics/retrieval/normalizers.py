"""Map REST and GraphQL payloads onto the internal entity model, plus structural filters."""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Iterable, List, Optional, Sequence, TypeVar

from delivery_metrics.errors import NormalizationError

from .models import (
    FORCE_PUSHED,
    READY_FOR_REVIEW,
    CommitInfo,
    Deployment,
    Issue,
    PullRequest,
    PullRequestDetail,
    Review,
    TimelineEvent,
    WorkflowRun,
)

T = TypeVar("T")

ENVIRONMENT_MATCH_EXACT = "exact"
ENVIRONMENT_MATCH_PARTIAL = "partial"

_GRAPHQL_TIMELINE_KINDS = {
    "ReadyForReviewEvent": READY_FOR_REVIEW,
    "HeadRefForcePushedEvent": FORCE_PUSHED,
}
_REST_TIMELINE_KINDS = {
    "ready_for_review": READY_FOR_REVIEW,
    "head_ref_force_pushed": FORCE_PUSHED,
}


def parse_timestamp(raw: Optional[str]) -> Optional[dt.datetime]:
    """Parse GitHub's ISO-8601 timestamps into aware UTC datetimes."""
    if not raw:
        return None
    try:
        parsed = dt.datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def hours_between(start: str, end: str) -> float:
    """Unrounded hours from `start` to `end`."""
    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end)
    if start_dt is None or end_dt is None:
        raise NormalizationError(f"cannot compute duration between {start!r} and {end!r}")
    return (end_dt - start_dt).total_seconds() / 3600.0


def _require(payload: Dict[str, Any], kind: str, *fields: str) -> None:
    missing = [name for name in fields if payload.get(name) in (None, "")]
    if missing:
        raise NormalizationError(f"{kind} payload missing {', '.join(missing)}")


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if isinstance(value, (int, float)) else None


def _label_names(raw: Any) -> tuple:
    if isinstance(raw, dict):
        raw = raw.get("nodes")
    names = []
    for label in raw or []:
        if isinstance(label, dict) and label.get("name"):
            names.append(label["name"])
        elif isinstance(label, str):
            names.append(label)
    return tuple(names)


def _login(actor: Any) -> Optional[str]:
    return actor.get("login") if isinstance(actor, dict) else None


# --------------------------------------------------------------------------- pull requests


def normalize_rest_pull_request(raw: Dict[str, Any], repository: str) -> PullRequest:
    _require(raw, "pull request", "number", "state", "created_at")
    base = raw.get("base") or {}
    head = raw.get("head") or {}
    if not base.get("ref") or not head.get("ref"):
        raise NormalizationError(f"pull request #{raw.get('number')} missing base/head ref")
    return PullRequest(
        repository=repository,
        number=int(raw["number"]),
        state=raw["state"],
        created_at=raw["created_at"],
        merged_at=raw.get("merged_at"),
        closed_at=raw.get("closed_at"),
        base_branch=base["ref"],
        head_branch=head["ref"],
        additions=_optional_int(raw.get("additions")),
        deletions=_optional_int(raw.get("deletions")),
        changed_files=_optional_int(raw.get("changed_files")),
        title=raw.get("title") or "",
        author=_login(raw.get("user")),
        merge_commit_sha=raw.get("merge_commit_sha"),
        labels=_label_names(raw.get("labels")),
    )


def normalize_graphql_pull_request(node: Dict[str, Any], repository: str) -> PullRequest:
    _require(node, "pull request", "number", "state", "createdAt", "baseRefName", "headRefName")
    state = "open" if str(node["state"]).upper() == "OPEN" else "closed"
    return PullRequest(
        repository=repository,
        number=int(node["number"]),
        state=state,
        created_at=node["createdAt"],
        merged_at=node.get("mergedAt"),
        closed_at=node.get("closedAt"),
        base_branch=node["baseRefName"],
        head_branch=node["headRefName"],
        additions=_optional_int(node.get("additions")),
        deletions=_optional_int(node.get("deletions")),
        changed_files=_optional_int(node.get("changedFiles")),
        title=node.get("title") or "",
        author=_login(node.get("author")),
        merge_commit_sha=(node.get("mergeCommit") or {}).get("oid"),
        labels=_label_names(node.get("labels")),
    )


# --------------------------------------------------------------------------- runs, deployments, issues


def normalize_rest_workflow_run(raw: Dict[str, Any], repository: str) -> WorkflowRun:
    _require(raw, "workflow run", "id", "created_at")
    return WorkflowRun(
        repository=repository,
        id=int(raw["id"]),
        name=raw.get("name") or "",
        status=raw.get("status"),
        conclusion=raw.get("conclusion"),
        created_at=raw["created_at"],
        updated_at=raw.get("updated_at"),
    )


def normalize_rest_deployment(
    raw: Dict[str, Any], repository: str, status: Optional[str] = None
) -> Deployment:
    _require(raw, "deployment", "id", "created_at")
    return Deployment(
        repository=repository,
        id=str(raw["id"]),
        sha=raw.get("sha"),
        environment=raw.get("environment") or "",
        status=status.lower() if status else None,
        created_at=raw["created_at"],
        updated_at=raw.get("updated_at"),
    )


def normalize_graphql_deployment(node: Dict[str, Any], repository: str) -> Deployment:
    _require(node, "deployment", "id", "createdAt")
    latest = node.get("latestStatus") or {}
    state = latest.get("state")
    return Deployment(
        repository=repository,
        id=str(node["id"]),
        sha=(node.get("commit") or {}).get("oid"),
        environment=node.get("environment") or "",
        status=str(state).lower() if state else None,
        created_at=node["createdAt"],
        updated_at=node.get("updatedAt"),
    )


def normalize_rest_issue(raw: Dict[str, Any], repository: str) -> Issue:
    _require(raw, "issue", "number", "state", "created_at")
    return Issue(
        repository=repository,
        number=int(raw["number"]),
        title=raw.get("title") or "",
        state=raw["state"],
        created_at=raw["created_at"],
        closed_at=raw.get("closed_at"),
        labels=_label_names(raw.get("labels")),
    )


def normalize_graphql_issue(node: Dict[str, Any], repository: str) -> Issue:
    _require(node, "issue", "number", "state", "createdAt")
    return Issue(
        repository=repository,
        number=int(node["number"]),
        title=node.get("title") or "",
        state=str(node["state"]).lower(),
        created_at=node["createdAt"],
        closed_at=node.get("closedAt"),
        labels=_label_names(node.get("labels")),
    )


# --------------------------------------------------------------------------- PR detail


def normalize_rest_pull_request_detail(
    pull_request: PullRequest,
    reviews: Iterable[Dict[str, Any]],
    commits: Iterable[Dict[str, Any]],
    timeline: Iterable[Dict[str, Any]],
) -> PullRequestDetail:
    review_items = tuple(
        Review(
            state=str(r.get("state") or "").upper(),
            submitted_at=r.get("submitted_at"),
            author=_login(r.get("user")),
        )
        for r in reviews
    )
    commit_items = []
    for c in commits:
        commit = c.get("commit") or {}
        date = (commit.get("committer") or {}).get("date") or (commit.get("author") or {}).get("date")
        if c.get("sha") and date:
            commit_items.append(CommitInfo(sha=c["sha"], committed_at=date))
    events = tuple(
        TimelineEvent(kind=_REST_TIMELINE_KINDS[e["event"]], created_at=e["created_at"])
        for e in timeline
        if e.get("event") in _REST_TIMELINE_KINDS and e.get("created_at")
    )
    return PullRequestDetail(
        pull_request=pull_request,
        reviews=review_items,
        commits=tuple(commit_items),
        timeline=events,
    )


def normalize_graphql_pull_request_detail(node: Dict[str, Any], repository: str) -> PullRequestDetail:
    pull_request = normalize_graphql_pull_request(node, repository)
    reviews = tuple(
        Review(
            state=str(r.get("state") or "").upper(),
            submitted_at=r.get("submittedAt"),
            author=_login(r.get("author")),
        )
        for r in (node.get("reviews") or {}).get("nodes") or []
        if r
    )
    commits = []
    for entry in (node.get("commits") or {}).get("nodes") or []:
        commit = (entry or {}).get("commit") or {}
        if commit.get("oid") and commit.get("committedDate"):
            commits.append(CommitInfo(sha=commit["oid"], committed_at=commit["committedDate"]))
    events = tuple(
        TimelineEvent(kind=_GRAPHQL_TIMELINE_KINDS[e["__typename"]], created_at=e["createdAt"])
        for e in (node.get("timelineItems") or {}).get("nodes") or []
        if e and e.get("__typename") in _GRAPHQL_TIMELINE_KINDS and e.get("createdAt")
    )
    return PullRequestDetail(
        pull_request=pull_request, reviews=reviews, commits=tuple(commits), timeline=events
    )


# --------------------------------------------------------------------------- linked PRs


def linked_pr_numbers_from_rest_timeline(events: Iterable[Dict[str, Any]], repository: str) -> List[int]:
    """PR numbers from `cross-referenced` events whose source PR lives in the same repository."""
    numbers: List[int] = []
    for event in events:
        if event.get("event") != "cross-referenced":
            continue
        source_issue = (event.get("source") or {}).get("issue") or {}
        if not source_issue.get("pull_request"):
            continue
        source_repo = (source_issue.get("repository") or {}).get("full_name")
        if source_repo and source_repo != repository:
            continue
        number = source_issue.get("number")
        if isinstance(number, int) and number not in numbers:
            numbers.append(number)
    return numbers


def linked_pr_numbers_from_graphql_timeline(nodes: Iterable[Dict[str, Any]], repository: str) -> List[int]:
    numbers: List[int] = []
    for node in nodes:
        source = (node or {}).get("source") or {}
        number = source.get("number")
        if not isinstance(number, int) or "headRefName" not in source:
            continue
        source_repo = (source.get("repository") or {}).get("nameWithOwner")
        if source_repo and source_repo != repository:
            continue
        if number not in numbers:
            numbers.append(number)
    return numbers


# --------------------------------------------------------------------------- filters


def has_excluded_label(labels: Sequence[str], exclude_labels: Sequence[str]) -> bool:
    excluded = {label.lower() for label in exclude_labels}
    return any(label.lower() in excluded for label in labels)


def filter_excluded_labels(items: Iterable[T], exclude_labels: Sequence[str]) -> List[T]:
    """Drop items (PRs or issues) that carry any of `exclude_labels`."""
    if not exclude_labels:
        return list(items)
    return [item for item in items if not has_excluded_label(getattr(item, "labels", ()), exclude_labels)]


def matches_environment(environment: str, pattern: Optional[str], mode: str = ENVIRONMENT_MATCH_EXACT) -> bool:
    if not pattern:
        return True
    if mode == ENVIRONMENT_MATCH_PARTIAL:
        return pattern.lower() in (environment or "").lower()
    return environment == pattern


def filter_deployments_by_environment(
    deployments: Iterable[Deployment], pattern: Optional[str], mode: str = ENVIRONMENT_MATCH_EXACT
) -> List[Deployment]:
    return [d for d in deployments if matches_environment(d.environment, pattern, mode)]


def is_within_range(
    timestamp: Optional[str], since: Optional[dt.datetime] = None, until: Optional[dt.datetime] = None
) -> bool:
    moment = parse_timestamp(timestamp)
    if moment is None:
        return False
    if since is not None and moment < since:
        return False
    if until is not None and moment > until:
        return False
    return True


def filter_by_date_range(
    items: Iterable[T],
    since: Optional[dt.datetime] = None,
    until: Optional[dt.datetime] = None,
    field: str = "created_at",
) -> List[T]:
    """Client-side date filter for listings the upstream cannot filter by date."""
    if since is None and until is None:
        return list(items)
    return [item for item in items if is_within_range(getattr(item, field), since, until)]


def matches_excluded_branch(base_branch: str, patterns: Sequence[str]) -> bool:
    branch = (base_branch or "").lower()
    return any(pattern and pattern.lower() in branch for pattern in patterns)


def filter_excluded_base_branches(prs: Iterable[PullRequest], patterns: Sequence[str]) -> List[PullRequest]:
    if not patterns:
        return list(prs)
    return [pr for pr in prs if not matches_excluded_branch(pr.base_branch, patterns)]


__all__ = [
    "ENVIRONMENT_MATCH_EXACT",
    "ENVIRONMENT_MATCH_PARTIAL",
    "parse_timestamp",
    "hours_between",
    "normalize_rest_pull_request",
    "normalize_graphql_pull_request",
    "normalize_rest_workflow_run",
    "normalize_rest_deployment",
    "normalize_graphql_deployment",
    "normalize_rest_issue",
    "normalize_graphql_issue",
    "normalize_rest_pull_request_detail",
    "normalize_graphql_pull_request_detail",
    "linked_pr_numbers_from_rest_timeline",
    "linked_pr_numbers_from_graphql_timeline",
    "has_excluded_label",
    "filter_excluded_labels",
    "matches_environment",
    "filter_deployments_by_environment",
    "is_within_range",
    "filter_by_date_range",
    "matches_excluded_branch",
    "filter_excluded_base_branches",
]
