"""Page-index and cursor pagination over the fetch client."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from delivery_metrics.errors import PartialPaginationFailure, PermanentRequestError, PipelineError

from .config import DEFAULT_MAX_PAGES, PER_PAGE
from .http_client import FetchClient, FetchRequest

logger = logging.getLogger(__name__)

Extractor = Callable[[Any], List[Dict[str, Any]]]


@dataclass
class PaginationResult:
    """Records accumulated across pages, plus the failure that cut the walk short, if any."""

    records: List[Dict[str, Any]] = field(default_factory=list)
    pages_fetched: int = 0
    failure: Optional[PartialPaginationFailure] = None

    @property
    def complete(self) -> bool:
        return self.failure is None


def _list_payload(payload: Any) -> List[Dict[str, Any]]:
    return payload if isinstance(payload, list) else []


def _has_next_link(headers: Any) -> Optional[bool]:
    """True/False when a Link header is present, None when the upstream sent none."""
    link = headers.get("Link") if hasattr(headers, "get") else None
    if not isinstance(link, str):
        return None
    return 'rel="next"' in link


def _truncate(result: PaginationResult, page: int, exc: BaseException, target: str) -> PaginationResult:
    result.failure = PartialPaginationFailure(page, exc)
    logger.warning(
        "[warn] %s: stopping at page %d, keeping %d records (%s)",
        target,
        page,
        len(result.records),
        result.failure,
    )
    return result


def paginate_pages(
    client: FetchClient,
    url: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    per_page: int = PER_PAGE,
    max_pages: int = DEFAULT_MAX_PAGES,
    extract: Optional[Extractor] = None,
) -> PaginationResult:
    """Walk `page=1..` until an empty page, max_pages, or a Link header without rel=next."""

    extract = extract or _list_payload
    result = PaginationResult()
    page = 1
    while not max_pages or page <= max_pages:
        page_params = dict(params or {})
        page_params.update({"per_page": per_page, "page": page})
        try:
            resp = client.fetch(FetchRequest("GET", url, params=page_params))
            batch = extract(resp.json())
        except (PipelineError, ValueError) as exc:
            if page == 1:
                raise
            return _truncate(result, page, exc, url)

        if not batch:
            break
        result.records.extend(batch)
        result.pages_fetched += 1
        if _has_next_link(resp.headers) is False:
            break
        page += 1
    return result


def _dig(data: Dict[str, Any], path: Sequence[str]) -> Optional[Dict[str, Any]]:
    node: Any = data
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node if isinstance(node, dict) else None


def paginate_cursor(
    client: FetchClient,
    query: str,
    variables: Dict[str, Any],
    connection_path: Sequence[str],
    *,
    page_size: int = PER_PAGE,
    max_pages: int = DEFAULT_MAX_PAGES,
) -> PaginationResult:
    """Follow `pageInfo.endCursor` through a GraphQL connection, collecting its nodes."""

    result = PaginationResult()
    cursor: Optional[str] = None
    page = 1
    label = ".".join(connection_path)
    while not max_pages or page <= max_pages:
        try:
            data = client.graphql(query, {**variables, "first": page_size, "after": cursor})
            connection = _dig(data, connection_path)
            if connection is None:
                raise PermanentRequestError(404, f"{label} not found in GraphQL response")
        except PipelineError as exc:
            if page == 1:
                raise
            return _truncate(result, page, exc, label)

        nodes = [node for node in connection.get("nodes") or [] if node]
        if not nodes:
            break
        result.records.extend(nodes)
        result.pages_fetched += 1

        info = connection.get("pageInfo") or {}
        if not info.get("hasNextPage") or not info.get("endCursor"):
            break
        cursor = info["endCursor"]
        page += 1
    return result


__all__ = ["PaginationResult", "paginate_pages", "paginate_cursor"]
