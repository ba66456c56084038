"""Tests for delivery_metrics.metrics.extended covering cycle, coding, rework, review and size metrics.

Run with coverage:
    pytest tests/test_extended.py --maxfail=1 -v --cov=delivery_metrics.metrics.extended --cov-report=term-missing
"""

from typing import Optional

from delivery_metrics.metrics import extended
from delivery_metrics.retrieval.models import (
    FORCE_PUSHED,
    READY_FOR_REVIEW,
    ChainLink,
    CommitInfo,
    DeliveryChainResult,
    Issue,
    PullRequest,
    PullRequestDetail,
    Review,
    TimelineEvent,
)

REPO = "octo/app"


def _issue(number: int = 1, created: str = "2024-01-01T10:00:00Z") -> Issue:
    return Issue(REPO, number, "Login page", "closed", created, "2024-01-04T00:00:00Z")


def _pr(
    number: int,
    created: str = "2024-01-01T12:00:00Z",
    merged: Optional[str] = "2024-01-02T12:00:00Z",
    additions: Optional[int] = None,
    deletions: Optional[int] = None,
    changed_files: Optional[int] = None,
    labels=(),
    base: str = "main",
) -> PullRequest:
    return PullRequest(
        repository=REPO,
        number=number,
        state="closed",
        created_at=created,
        merged_at=merged,
        closed_at=merged,
        base_branch=base,
        head_branch=f"feature/{number}",
        additions=additions,
        deletions=deletions,
        changed_files=changed_files,
        labels=tuple(labels),
    )


def test_build_cycle_time_from_chain_result():
    result = DeliveryChainResult(
        "2024-01-03T10:00:00Z",
        (
            ChainLink(12, "main", "feature/12", "2024-01-02T00:00:00Z"),
            ChainLink(15, "production", "main", "2024-01-03T10:00:00Z"),
        ),
    )

    record = extended.build_cycle_time(_issue(), result)

    assert record.cycle_time_hours == 48.0
    assert record.pr_chain_summary == "#12→#15"
    assert record.stop_reason == "production"


def test_cycle_time_aggregation_skips_unshipped_issues():
    shipped = extended.build_cycle_time(_issue(1), DeliveryChainResult("2024-01-03T10:00:00Z"))
    unshipped = extended.build_cycle_time(_issue(2), DeliveryChainResult(None, (), "not_merged"))

    summary = extended.calculate_cycle_time([shipped, unshipped], "2024-01")

    assert summary["completed_task_count"] == 1
    assert summary["avg_hours"] == 48.0
    assert len(summary["issue_details"]) == 2


def test_coding_time_uses_earliest_linked_pr():
    prs = [_pr(2, created="2024-01-02T10:00:00Z"), _pr(1, created="2024-01-01T16:00:00Z")]

    record = extended.build_coding_time(_issue(), prs)

    assert record.first_pr_number == 1
    assert record.coding_time_hours == 6.0


def test_coding_time_drops_negative_values():
    early = extended.build_coding_time(_issue(1), [_pr(1, created="2023-12-31T10:00:00Z")])
    normal = extended.build_coding_time(_issue(2), [_pr(2, created="2024-01-01T14:00:00Z")])
    none = extended.build_coding_time(_issue(3), [])

    summary = extended.calculate_coding_time([early, normal, none], "2024-01")

    assert early.coding_time_hours == -24.0
    assert none.coding_time_hours is None
    assert summary["issue_count"] == 1
    assert summary["avg_hours"] == 4.0


def test_rework_counts_commits_after_creation_and_force_pushes():
    detail = PullRequestDetail(
        pull_request=_pr(1),
        commits=(
            CommitInfo("a", "2024-01-01T11:00:00Z"),
            CommitInfo("b", "2024-01-01T13:00:00Z"),
            CommitInfo("c", "2024-01-02T09:00:00Z"),
        ),
        timeline=(TimelineEvent(FORCE_PUSHED, "2024-01-01T14:00:00Z"),),
    )

    record = extended.build_rework(detail)

    assert record.additional_commits == 2
    assert record.force_push_count == 1
    assert record.total_commits == 3


def test_rework_rate_summary():
    records = [
        extended.build_rework(PullRequestDetail(_pr(1), commits=(CommitInfo("a", "2024-01-01T13:00:00Z"),))),
        extended.build_rework(
            PullRequestDetail(
                _pr(2),
                commits=tuple(CommitInfo(str(i), "2024-01-02T00:00:00Z") for i in range(4)),
                timeline=(TimelineEvent(FORCE_PUSHED, "2024-01-02T01:00:00Z"),) * 2,
            )
        ),
    ]

    summary = extended.calculate_rework_rate(records, "2024-01")

    assert summary["additional_commits"] == {"total": 5, "avg_per_pr": 2.5, "median": 2.5, "max": 4.0}
    assert summary["force_pushes"]["total"] == 2
    assert summary["force_pushes"]["prs_with_force_push"] == 1
    assert summary["force_pushes"]["force_push_rate"] == 50.0


def test_review_uses_ready_event_and_skips_pending_reviews():
    detail = PullRequestDetail(
        pull_request=_pr(1, created="2024-01-01T00:00:00Z", merged="2024-01-02T00:00:00Z"),
        reviews=(
            Review("PENDING", None),
            Review("APPROVED", "2024-01-01T10:00:00Z"),
            Review("COMMENTED", "2024-01-01T06:00:00Z"),
        ),
        timeline=(TimelineEvent(READY_FOR_REVIEW, "2024-01-01T04:00:00Z"),),
    )

    record = extended.build_review(detail)

    assert record.ready_for_review_at == "2024-01-01T04:00:00Z"
    assert record.first_review_at == "2024-01-01T06:00:00Z"
    assert record.approved_at == "2024-01-01T10:00:00Z"
    assert record.time_to_first_review_hours == 2.0
    assert record.review_duration_hours == 4.0
    assert record.time_to_merge_hours == 14.0
    assert record.total_time_hours == 20.0


def test_review_without_reviews_falls_back_to_creation():
    record = extended.build_review(PullRequestDetail(_pr(1, created="2024-01-01T00:00:00Z")))

    assert record.ready_for_review_at == "2024-01-01T00:00:00Z"
    assert record.time_to_first_review_hours is None
    assert record.total_time_hours == 36.0

    summary = extended.calculate_review_efficiency([record], "2024-01")
    assert summary["time_to_first_review"]["avg_hours"] is None
    assert summary["total_time"]["avg_hours"] == 36.0


def test_pr_size():
    assert extended.build_pr_size(_pr(1)) is None
    sizes = [
        extended.build_pr_size(_pr(1, additions=100, deletions=20, changed_files=4)),
        extended.build_pr_size(_pr(2, additions=10, deletions=0, changed_files=None)),
    ]

    summary = extended.calculate_pr_size(sizes, "2024-01")

    assert sizes[0].lines_of_code == 120
    assert sizes[1].files_changed == 0
    assert summary["lines_of_code"] == {"total": 130, "avg": 65.0, "median": 65.0, "min": 10.0, "max": 120.0}
    assert summary["files_changed"]["total"] == 4


def test_empty_aggregations_do_not_raise():
    assert extended.calculate_pr_size([], "p")["lines_of_code"]["avg"] is None
    assert extended.calculate_rework_rate([], "p")["force_pushes"]["force_push_rate"] is None
    assert extended.calculate_cycle_time([], "p")["avg_hours"] is None


def test_apply_metric_filters_labels_and_branches():
    prs = [
        _pr(1, labels=("exclude-metrics",)),
        _pr(2, base="release/2.0"),
        _pr(3),
    ]

    kept = extended.apply_metric_filters(prs, extended.DEFAULT_EXCLUDE_LABELS, ["release"])

    assert [pr.number for pr in kept] == [3]
    assert extended.apply_metric_filters(kept, extended.DEFAULT_EXCLUDE_LABELS, ["release"]) == kept
