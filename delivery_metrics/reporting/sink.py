"""Report sinks: idempotent upsert of metric records keyed by `{date}:{repository}`."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from delivery_metrics.errors import ReportSinkError

from .client import ESClient
from .schema import DEVOPS_METRICS_MAPPING, id_devops_metrics

logger = logging.getLogger(__name__)

DEVOPS_METRICS_SURFACE = "devops_metrics"


class ReportSink(Protocol):
    def upsert(self, records: Iterable[Dict[str, Any]]) -> Tuple[int, int]: ...


def ensure_dir(path: str | Path) -> None:
    """Create output directories as-needed without raising for existing folders."""
    os.makedirs(path, exist_ok=True)


def save_json(path: str | Path, data: Any) -> None:
    """Write JSON to disk using UTF-8 and deterministic formatting."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)


class JsonFileSink:
    """One JSON document per output surface, holding every record keyed by its id."""

    def __init__(self, output_dir: str | Path, surface: str = DEVOPS_METRICS_SURFACE) -> None:
        self.output_dir = Path(output_dir)
        self.path = self.output_dir / f"{surface}.json"

    def load(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except ValueError as exc:
            raise ReportSinkError(f"{self.path} is not valid JSON: {exc}") from exc
        return data if isinstance(data, dict) else {}

    def upsert(self, records: Iterable[Dict[str, Any]]) -> Tuple[int, int]:
        ensure_dir(self.output_dir)
        stored = self.load()
        ok = failed = 0
        for record in records:
            record_id = id_devops_metrics(record)
            if not record_id:
                failed += 1
                continue
            stored[record_id] = {**record, "record_id": record_id}
            ok += 1
        save_json(self.path, stored)
        logger.info("[sink] wrote %d records to %s (%d total)", ok, self.path, len(stored))
        return ok, failed


class ElasticsearchSink:
    """Bulk-upserts records into one index with explicit mappings."""

    def __init__(self, client: ESClient, index: str, batch_size: int = 500) -> None:
        self.client = client
        self.index = index
        self.batch_size = batch_size
        self._index_ready = False

    def upsert(self, records: Iterable[Dict[str, Any]]) -> Tuple[int, int]:
        if not self._index_ready:
            self.client.ensure_index(self.index, DEVOPS_METRICS_MAPPING)
            self._index_ready = True
        docs: List[Dict[str, Any]] = [{**record, "record_id": id_devops_metrics(record)} for record in records]
        ok, failed = self.client.bulk_index(self.index, docs, id_func=id_devops_metrics, batch_size=self.batch_size)
        logger.info("[sink] %s: ok=%d failed=%d", self.index, ok, failed)
        return ok, failed


def build_sink(
    kind: str,
    *,
    output_dir: Optional[str | Path] = None,
    es_client: Optional[ESClient] = None,
    index: Optional[str] = None,
    batch_size: int = 500,
) -> ReportSink:
    if kind == "json":
        return JsonFileSink(output_dir or "./output")
    if kind == "elasticsearch":
        if es_client is None or not index:
            raise ReportSinkError("elasticsearch sink needs a client and an index name")
        return ElasticsearchSink(es_client, index, batch_size=batch_size)
    raise ReportSinkError(f"unknown sink {kind!r}")


__all__ = [
    "DEVOPS_METRICS_SURFACE",
    "ReportSink",
    "ensure_dir",
    "save_json",
    "JsonFileSink",
    "ElasticsearchSink",
    "build_sink",
]
