"""Tests for delivery_metrics.pipeline.runner ensuring orchestration and failure isolation.

Run with:
    pytest tests/test_runner.py --maxfail=1 -v --cov=delivery_metrics.pipeline.runner --cov-report=term-missing
"""

import datetime as dt
from unittest.mock import MagicMock

import pytest

from delivery_metrics.errors import PermanentRequestError, TransientNetworkError
from delivery_metrics.pipeline import runner
from delivery_metrics.pipeline.config import PipelineSettings
from delivery_metrics.retrieval.models import (
    Batch,
    CommitInfo,
    Deployment,
    Issue,
    PullRequest,
    PullRequestDetail,
)

AS_OF = dt.datetime(2024, 1, 31, 12, tzinfo=dt.timezone.utc)


def _pr(repo, number=1, base="main", merged="2024-01-11T00:00:00Z"):
    return PullRequest(
        repository=repo,
        number=number,
        state="closed",
        created_at="2024-01-10T00:00:00Z",
        merged_at=merged,
        closed_at=merged,
        base_branch=base,
        head_branch=f"feature/{number}",
        additions=30,
        deletions=10,
        changed_files=2,
    )


def _collector(fail_for=(), incomplete=False):
    """A collector returning one merged PR and one deployment per repository."""

    collector = MagicMock()

    def prs(repo, **kwargs):
        if repo.full_name in fail_for:
            raise TransientNetworkError("HTTP 503", status=503, attempts=4)
        return Batch([_pr(repo.full_name)], complete=not incomplete)

    collector.list_pull_requests.side_effect = prs
    collector.list_workflow_runs.return_value = Batch([])
    collector.list_deployments.side_effect = lambda repo, **kwargs: Batch(
        [Deployment(repo.full_name, "1", "abc", "production", "success", "2024-01-11T06:00:00Z")]
    )
    collector.list_issues.return_value = Batch([])
    collector.get_pull_request_detail.side_effect = lambda repo, number: PullRequestDetail(
        _pr(repo.full_name, number), commits=(CommitInfo("a", "2024-01-10T02:00:00Z"),)
    )
    return collector


def _settings(*repos, **kwargs):
    return PipelineSettings(repositories=tuple(repos), **kwargs)


def test_process_repo_computes_record_and_extended_metrics():
    collector = _collector()

    report = runner.process_repo("octo/app", collector, _settings("octo/app"), as_of=AS_OF)

    assert report.record.date == "2024-01-31"
    assert report.record.deployment_count == 1
    assert report.record.lead_time_for_changes_hours == 30.0
    assert report.record.data_complete is True
    assert len(report.daily) == 31
    assert report.extended["pr_size"]["lines_of_code"]["total"] == 40
    assert report.extended["rework_rate"]["additional_commits"]["total"] == 1

    doc = report.to_record()
    assert doc["record_id"] == "2024-01-31:octo/app"
    assert doc["weekly_trends"]
    assert set(doc["extended"]) == {
        "cycle_time", "coding_time", "rework_rate", "review_efficiency", "pr_size"
    }

    kwargs = collector.list_pull_requests.call_args.kwargs
    assert kwargs["state"] == "all"
    assert kwargs["since"] == AS_OF - dt.timedelta(days=30)


def test_incomplete_pagination_marks_records():
    report = runner.process_repo("octo/app", _collector(incomplete=True), _settings(), as_of=AS_OF)
    assert report.record.data_complete is False
    assert all(not day.data_complete for day in report.daily)


def test_detail_failure_is_logged_not_raised():
    collector = _collector()
    collector.get_pull_request_detail.side_effect = PermanentRequestError(404, "Not Found")

    report = runner.process_repo("octo/app", collector, _settings(), as_of=AS_OF)

    assert report.extended["pr_size"]["lines_of_code"]["total"] == 0


def test_run_isolates_failing_repository():
    sink = MagicMock()
    sink.upsert.return_value = (2, 0)

    summary = runner.run(
        _settings("octo/app", "octo/broken", "octo/api"),
        collector=_collector(fail_for={"octo/broken"}),
        sink=sink,
        as_of=AS_OF,
    )

    assert summary.succeeded == ["octo/app", "octo/api"]
    assert summary.failed == ["octo/broken"]
    assert "503" in summary.errors["octo/broken"]
    assert [r["repository"] for r in summary.records] == ["octo/app", "octo/api"]
    assert summary.overview["summary"]["repository_count"] == 2
    assert summary.written == 2
    assert summary.ok
    sink.upsert.assert_called_once()


def test_run_with_every_repository_failing():
    sink = MagicMock()

    summary = runner.run(
        _settings("octo/a", "octo/b"), collector=_collector(fail_for={"octo/a", "octo/b"}), sink=sink, as_of=AS_OF
    )

    assert summary.records == []
    assert not summary.ok
    sink.upsert.assert_not_called()


def test_run_skips_duplicate_repositories():
    summary = runner.run(
        _settings("octo/app", "octo/app"), collector=_collector(), sink=MagicMock(upsert=MagicMock(return_value=(1, 0))), as_of=AS_OF
    )
    assert summary.succeeded == ["octo/app"]
    assert summary.skipped == ["octo/app"]


def test_sink_failure_is_recorded():
    sink = MagicMock()
    sink.upsert.side_effect = TransientNetworkError("connection refused")

    summary = runner.run(_settings("octo/app"), collector=_collector(), sink=sink, as_of=AS_OF)

    assert summary.ok
    assert summary.write_failures == 1


def test_main_exits_when_no_repos(monkeypatch, tmp_path):
    monkeypatch.setenv("LOCAL_SECRETS_FILE", str(tmp_path / "missing.json"))
    monkeypatch.setattr(runner, "setup_logging", lambda *a, **k: None)
    assert runner.main([]) == 1


def test_main_rejects_invalid_repository(monkeypatch, tmp_path):
    monkeypatch.setenv("LOCAL_SECRETS_FILE", str(tmp_path / "missing.json"))
    monkeypatch.setattr(runner, "setup_logging", lambda *a, **k: None)
    assert runner.main(["not-a-repo"]) == 2


@pytest.mark.parametrize("succeeded,code", [(["x/y"], 0), ([], 1)])
def test_main_exit_code_follows_summary(monkeypatch, tmp_path, succeeded, code):
    monkeypatch.setenv("LOCAL_SECRETS_FILE", str(tmp_path / "missing.json"))
    monkeypatch.setattr(runner, "setup_logging", lambda *a, **k: None)
    calls = []

    def fake_run(settings):
        calls.append(settings.repositories)
        return runner.RunSummary(succeeded=list(succeeded))

    monkeypatch.setattr(runner, "run", fake_run)
    assert runner.main(["x/y"]) == code
    assert calls == [("x/y",)]


def _shipped_issue_collector(state="open"):
    """One issue linked to PR #7, which merged straight into production."""

    collector = _collector()
    issue = Issue("octo/app", 3, "Checkout flow", state, "2024-01-10T00:00:00Z", None)
    collector.list_issues.side_effect = lambda repo, labels=None, **kwargs: Batch([] if labels else [issue])
    collector.get_linked_pull_requests.return_value = [7]
    collector.get_pull_request.return_value = _pr(
        "octo/app", 7, base="production", merged="2024-01-12T00:00:00Z"
    )
    return collector


def test_open_issue_shipped_to_production_counts_in_cycle_time():
    report = runner.process_repo("octo/app", _shipped_issue_collector(), _settings(), as_of=AS_OF)

    cycle = report.extended["cycle_time"]
    assert cycle["completed_task_count"] == 1
    assert cycle["avg_hours"] == 48.0
    assert report.extended["coding_time"]["issue_count"] == 1


def test_cycle_time_honours_base_branch_exclusion():
    settings = _settings(exclude_base_branches={"cycle_time": ("production",)})

    report = runner.process_repo("octo/app", _shipped_issue_collector(), settings, as_of=AS_OF)

    assert report.extended["cycle_time"]["completed_task_count"] == 0
    assert report.extended["coding_time"]["issue_count"] == 1


def test_records_reaching_sink_carry_run_counts_and_overview():
    sink = MagicMock()
    sink.upsert.return_value = (1, 0)

    runner.run(
        _settings("octo/app", "octo/broken", "octo/app"),
        collector=_collector(fail_for={"octo/broken"}),
        sink=sink,
        as_of=AS_OF,
    )

    (records,) = sink.upsert.call_args.args
    assert len(records) == 1
    run_info = records[0]["run"]
    assert run_info["succeeded_repositories"] == 1
    assert run_info["failed_repositories"] == 1
    assert run_info["skipped_repositories"] == 1
    assert run_info["overview"]["repository_count"] == 1
