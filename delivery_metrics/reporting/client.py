"""Elasticsearch HTTP client used by the report sink to upsert metric records."""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import requests

from delivery_metrics.errors import ReportSinkError, sanitize_sensitive_data

logger = logging.getLogger(__name__)

IdFunc = Callable[[Dict[str, Any]], Optional[str]]

# Per-item `result` values that mean the document is stored under its _id.
STORED_RESULTS = ("created", "updated", "noop")

DEFAULT_INDEX_BODY: Dict[str, Any] = {
    "settings": {"number_of_shards": 1, "number_of_replicas": 0},
    "mappings": {"dynamic": True},
}


@dataclass
class BulkOutcome:
    """Tally of one or more `_bulk` round trips."""

    results: Counter = field(default_factory=Counter)
    failed: int = 0
    rejected_ids: List[str] = field(default_factory=list)

    @property
    def stored(self) -> int:
        return sum(self.results[name] for name in STORED_RESULTS)

    def absorb_item(self, item: Dict[str, Any]) -> None:
        action = next(iter(item.values()), {}) if item else {}
        result = action.get("result")
        error = action.get("error")
        if error or result not in STORED_RESULTS:
            self.failed += 1
            if action.get("_id"):
                self.rejected_ids.append(str(action["_id"]))
            reason = error.get("reason") if isinstance(error, dict) else error
            logger.warning("[warn] bulk item %s rejected: %s", action.get("_id"), reason or result)
            return
        self.results[result] += 1


class ESClient:
    """Index management plus `_bulk` upserts keyed by record id."""

    def __init__(
        self,
        base_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        api_key: Optional[str] = None,
        verify_tls: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        self.verify = bool(verify_tls)

        if api_key:
            self.session.headers["Authorization"] = f"ApiKey {api_key}"
        elif username and password:
            self.session.auth = (username, password)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def head_index(self, name: str) -> int:
        return self.session.head(self._url(name), verify=self.verify).status_code

    def create_index_with_mapping(self, name: str, body: Dict[str, Any]) -> None:
        response = self.session.put(self._url(name), data=json.dumps(body), verify=self.verify)
        if response.status_code >= 300:
            raise ReportSinkError(
                f"could not create index {name!r}: HTTP {response.status_code} "
                f"{sanitize_sensitive_data(response.text[:300])}"
            )
        logger.info("[es] created index %s", name)

    def ensure_index(self, name: str, mapping: Optional[Dict[str, Any]]) -> bool:
        """Create `name` when it is missing; returns True when it was created."""
        if self.head_index(name) != 404:
            return False
        self.create_index_with_mapping(name, mapping or DEFAULT_INDEX_BODY)
        return True

    @staticmethod
    def _actions(index: str, docs: Iterable[Dict[str, Any]], id_func: Optional[IdFunc]) -> Iterator[Tuple[str, str]]:
        for doc in docs:
            meta: Dict[str, Any] = {"_index": index}
            doc_id = id_func(doc) if id_func else None
            if doc_id:
                meta["_id"] = doc_id
            yield (
                json.dumps({"index": meta}, separators=(",", ":")),
                json.dumps(doc, separators=(",", ":"), ensure_ascii=False),
            )

    def _send(self, index: str, chunk: List[Tuple[str, str]], outcome: BulkOutcome) -> None:
        payload = "".join(f"{meta}\n{source}\n" for meta, source in chunk)
        response = self.session.post(
            self._url(f"{index}/_bulk"),
            data=payload,
            headers={"Content-Type": "application/x-ndjson"},
            verify=self.verify,
        )
        if response.status_code >= 300:
            logger.error(
                "[error] bulk %s: HTTP %s %s",
                index,
                response.status_code,
                sanitize_sensitive_data(response.text[:300]),
            )
            outcome.failed += len(chunk)
            return
        items = response.json().get("items", [])
        for item in items:
            outcome.absorb_item(item)
        # Items the server did not report on were not stored.
        outcome.failed += max(len(chunk) - len(items), 0)

    def bulk_upsert(
        self,
        index: str,
        docs: Iterable[Dict[str, Any]],
        id_func: Optional[IdFunc] = None,
        batch_size: int = 500,
    ) -> BulkOutcome:
        """Index `docs` in chunks; an explicit _id makes a re-run replace the earlier document."""
        outcome = BulkOutcome()
        chunk: List[Tuple[str, str]] = []
        for action in self._actions(index, docs, id_func):
            chunk.append(action)
            if len(chunk) >= batch_size:
                self._send(index, chunk, outcome)
                chunk = []
        if chunk:
            self._send(index, chunk, outcome)
        logger.debug("[es] %s results: %s", index, dict(outcome.results))
        return outcome

    def bulk_index(
        self,
        index: str,
        docs: Iterable[Dict[str, Any]],
        id_func: Optional[IdFunc] = None,
        batch_size: int = 500,
    ) -> Tuple[int, int]:
        outcome = self.bulk_upsert(index, docs, id_func=id_func, batch_size=batch_size)
        return outcome.stored, outcome.failed


__all__ = ["BulkOutcome", "ESClient", "STORED_RESULTS"]
