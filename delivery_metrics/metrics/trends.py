"""Weekly trend and multi-repository rollups over daily DevOpsMetrics records."""

from __future__ import annotations

import datetime as dt
from collections import OrderedDict, defaultdict
from typing import Any, Dict, List, Sequence

from .dora import DevOpsMetrics
from .stats import mean_or_none, round1_or_none

DEFAULT_WEEK_COUNT = 8


def iso_week_key(date: str) -> str:
    year, week, _ = dt.date.fromisoformat(date).isocalendar()
    return f"{year}-W{week:02d}"


def calculate_weekly_trends(
    records: Sequence[DevOpsMetrics], week_count: int = DEFAULT_WEEK_COUNT
) -> List[Dict[str, Any]]:
    """Group daily records by ISO week, newest first."""
    weeks: Dict[str, List[DevOpsMetrics]] = defaultdict(list)
    for record in records:
        weeks[iso_week_key(record.date)].append(record)

    trends: List[Dict[str, Any]] = []
    for week in sorted(weeks, reverse=True)[:week_count]:
        bucket = weeks[week]
        lead_times = [r.lead_time_for_changes_hours for r in bucket if r.lead_time_for_changes_hours > 0]
        trends.append({
            "week": week,
            "deployments": sum(r.deployment_count for r in bucket),
            "avg_lead_time_hours": round1_or_none(mean_or_none(lead_times)),
            "avg_change_failure_rate": round1_or_none(mean_or_none([r.change_failure_rate for r in bucket])),
            "data_points": len(bucket),
        })
    return trends


def aggregate_multi_repo_metrics(records: Sequence[DevOpsMetrics]) -> Dict[str, Any]:
    """Per-repository averages plus an overall average across repositories."""
    grouped: Dict[str, List[DevOpsMetrics]] = OrderedDict()
    for record in records:
        grouped.setdefault(record.repository, []).append(record)

    per_repo: Dict[str, Dict[str, Any]] = {}
    for repository, rows in grouped.items():
        mttrs = [r.mean_time_to_recovery_hours for r in rows if r.mean_time_to_recovery_hours is not None]
        per_repo[repository] = {
            "avg_deployment_count": round1_or_none(mean_or_none([r.deployment_count for r in rows])),
            "avg_lead_time_hours": round1_or_none(mean_or_none([r.lead_time_for_changes_hours for r in rows])),
            "avg_change_failure_rate": round1_or_none(mean_or_none([r.change_failure_rate for r in rows])),
            "avg_mttr_hours": round1_or_none(mean_or_none(mttrs)),
            "data_points": len(rows),
            "last_date": max(r.date for r in rows),
        }

    def overall(key: str) -> Any:
        values = [summary[key] for summary in per_repo.values() if summary[key] is not None]
        return round1_or_none(mean_or_none(values))

    return {
        "repositories": per_repo,
        "summary": {
            "repository_count": len(per_repo),
            "avg_deployment_count": overall("avg_deployment_count"),
            "avg_lead_time_hours": overall("avg_lead_time_hours"),
            "avg_change_failure_rate": overall("avg_change_failure_rate"),
            "avg_mttr_hours": overall("avg_mttr_hours"),
        },
    }


__all__ = ["DEFAULT_WEEK_COUNT", "iso_week_key", "calculate_weekly_trends", "aggregate_multi_repo_metrics"]
