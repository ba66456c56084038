"""Elasticsearch mappings and ID helpers for metric records."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Optional

COMMON_SETTINGS: Dict[str, Any] = {
    "settings": {
        "number_of_shards": 1,
        "number_of_replicas": 0,
    }
}

DEVOPS_METRICS_MAPPING: Dict[str, Any] = {
    **COMMON_SETTINGS,
    "mappings": {
        "dynamic": True,
        "properties": {
            "record_id": {"type": "keyword"},
            "date": {"type": "date", "format": "yyyy-MM-dd"},
            "repository": {"type": "keyword"},
            "deployment_count": {"type": "integer"},
            "deployment_frequency": {"type": "keyword"},
            "deployment_frequency_level": {"type": "keyword"},
            "lead_time_for_changes_hours": {"type": "float"},
            "lead_time_level": {"type": "keyword"},
            "merge_to_deploy_count": {"type": "integer"},
            "create_to_merge_count": {"type": "integer"},
            "total_deployments": {"type": "integer"},
            "failed_deployments": {"type": "integer"},
            "change_failure_rate": {"type": "float"},
            "change_failure_rate_level": {"type": "keyword"},
            "mean_time_to_recovery_hours": {"type": "float"},
            "mttr_level": {"type": "keyword"},
            "incident_metrics": {
                "type": "object",
                "properties": {
                    "incident_count": {"type": "integer"},
                    "open_incidents": {"type": "integer"},
                    "mttr_hours": {"type": "float"},
                },
            },
            "data_complete": {"type": "boolean"},
            "run": {
                "type": "object",
                "properties": {
                    "succeeded_repositories": {"type": "integer"},
                    "failed_repositories": {"type": "integer"},
                    "skipped_repositories": {"type": "integer"},
                    "overview": {"type": "object", "enabled": False},
                },
            },
            "extended": {
                "type": "object",
                "properties": {
                    "cycle_time": {"type": "object", "enabled": False},
                    "coding_time": {"type": "object", "enabled": False},
                    "rework_rate": {"type": "object", "enabled": False},
                    "review_efficiency": {"type": "object", "enabled": False},
                    "pr_size": {"type": "object", "enabled": False},
                },
            },
        },
    },
}


def stable_hash_id(doc: Dict[str, Any], salt: str = "") -> str:
    """Return a deterministic SHA1 hash for a document (optionally salted)."""

    raw = json.dumps(doc, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha1((salt + raw).encode("utf-8")).hexdigest()


def id_devops_metrics(doc: Dict[str, Any]) -> Optional[str]:
    """`{date}:{repository}` so a re-run for the same day replaces the earlier record."""
    if doc.get("record_id"):
        return doc["record_id"]
    date = doc.get("date")
    repository = doc.get("repository")
    if date and repository:
        return f"{date}:{repository}"
    return stable_hash_id(doc, "metrics:")


__all__ = [
    "COMMON_SETTINGS",
    "DEVOPS_METRICS_MAPPING",
    "stable_hash_id",
    "id_devops_metrics",
]
