"""Walk pull-request merges from a linked PR forward until one lands on a production branch."""

from __future__ import annotations

import logging
from functools import reduce
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set

from delivery_metrics.errors import PipelineError
from delivery_metrics.metrics.stats import round1
from delivery_metrics.retrieval.config import MAX_PR_CHAIN_DEPTH
from delivery_metrics.retrieval.models import ChainLink, DeliveryChainResult, PullRequest, Repository
from delivery_metrics.retrieval.normalizers import hours_between, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_PRODUCTION_BRANCH_PATTERN = "production"
UNKNOWN_BRANCH = "unknown"

STOP_PRODUCTION = "production"
STOP_NOT_MERGED = "not_merged"
STOP_NO_DOWNSTREAM = "no_downstream"
STOP_SELF_REFERENCE = "self_reference"
STOP_CYCLE = "cycle"
STOP_MAX_DEPTH = "max_depth"
STOP_FETCH_FAILED = "fetch_failed"
STOP_NO_LINKED_PRS = "no_linked_prs"


class PullRequestLookup(Protocol):
    def get(self, number: int) -> PullRequest: ...

    def by_head_branch(self, branch: str) -> List[PullRequest]: ...


class CollectorLookup:
    """Resolves PRs through a source client, memoizing lookups for the current run."""

    def __init__(self, collector, repo: Repository) -> None:
        self.collector = collector
        self.repo = repo
        self._by_number: Dict[int, PullRequest] = {}
        self._by_head: Dict[str, List[PullRequest]] = {}

    def get(self, number: int) -> PullRequest:
        if number not in self._by_number:
            self._by_number[number] = self.collector.get_pull_request(self.repo, number)
        return self._by_number[number]

    def by_head_branch(self, branch: str) -> List[PullRequest]:
        if branch not in self._by_head:
            found = self.collector.find_pull_requests_by_head(self.repo, branch)
            self._by_head[branch] = [pr for pr in found if pr.head_branch == branch]
            for pr in self._by_head[branch]:
                self._by_number.setdefault(pr.number, pr)
        return self._by_head[branch]


class InMemoryLookup:
    """Resolves PRs from an already-fetched listing; no network calls."""

    def __init__(self, prs: Iterable[PullRequest]) -> None:
        self._by_number: Dict[int, PullRequest] = {}
        self._by_head: Dict[str, List[PullRequest]] = {}
        for pr in prs:
            self._by_number[pr.number] = pr
            self._by_head.setdefault(pr.head_branch, []).append(pr)

    def get(self, number: int) -> PullRequest:
        try:
            return self._by_number[number]
        except KeyError:
            raise LookupError(f"pull request #{number} not in listing") from None

    def by_head_branch(self, branch: str) -> List[PullRequest]:
        return list(self._by_head.get(branch, []))


def matches_production_branch(branch: Optional[str], pattern: str = DEFAULT_PRODUCTION_BRANCH_PATTERN) -> bool:
    if not branch or not pattern:
        return False
    return pattern.lower() in branch.lower()


def select_downstream(
    current: PullRequest, candidates: Sequence[PullRequest], visited: Set[int]
) -> Optional[PullRequest]:
    """Pick the PR that carried `current`'s base branch further.

    Prefers the earliest merge at or after `current` merged; falls back to an open PR
    so the chain still records where the change is waiting.
    """
    eligible = [
        pr for pr in candidates
        if pr.number != current.number
        and pr.number not in visited
        and pr.head_branch == current.base_branch
    ]
    merged_at = parse_timestamp(current.merged_at)
    merged = [
        pr for pr in eligible
        if pr.merged_at and merged_at is not None and parse_timestamp(pr.merged_at) >= merged_at
    ]
    if merged:
        return min(merged, key=lambda pr: parse_timestamp(pr.merged_at))
    pending = [pr for pr in eligible if pr.merged_at is None and pr.state == "open"]
    return pending[0] if pending else None


class DeliveryChainTracker:
    """Traces linked PRs of one unit of work; traversal state never outlives a `track` call."""

    def __init__(
        self,
        lookup: PullRequestLookup,
        *,
        production_pattern: str = DEFAULT_PRODUCTION_BRANCH_PATTERN,
        max_hops: int = MAX_PR_CHAIN_DEPTH,
    ) -> None:
        self.lookup = lookup
        self.production_pattern = production_pattern
        self.max_hops = max_hops

    def _next_hop(self, current: PullRequest, visited: Set[int]) -> Optional[PullRequest]:
        try:
            candidates = self.lookup.by_head_branch(current.base_branch)
        except (PipelineError, LookupError) as exc:
            logger.warning("[warn] downstream lookup for %s failed: %s", current.base_branch, exc)
            return None
        return select_downstream(current, candidates, visited)

    def track(self, pr_number: int) -> DeliveryChainResult:
        """Follow one linked PR for at most `max_hops` merges."""

        try:
            current = self.lookup.get(pr_number)
        except (PipelineError, LookupError) as exc:
            logger.warning("[warn] could not load PR #%s: %s", pr_number, exc)
            return DeliveryChainResult(None, (), STOP_FETCH_FAILED)

        links: List[ChainLink] = []
        visited_prs: Set[int] = set()
        visited_heads: Set[str] = set()

        def finish(production_merged_at: Optional[str], reason: str) -> DeliveryChainResult:
            return DeliveryChainResult(production_merged_at, tuple(links), reason)

        for _ in range(self.max_hops):
            links.append(
                ChainLink(
                    pr_number=current.number,
                    base_branch=current.base_branch or UNKNOWN_BRANCH,
                    head_branch=current.head_branch or UNKNOWN_BRANCH,
                    merged_at=current.merged_at,
                )
            )
            visited_prs.add(current.number)

            if not current.is_merged:
                return finish(None, STOP_NOT_MERGED)
            if matches_production_branch(current.base_branch, self.production_pattern):
                return finish(current.merged_at, STOP_PRODUCTION)
            if current.base_branch == current.head_branch:
                return finish(None, STOP_SELF_REFERENCE)
            if current.base_branch in visited_heads:
                return finish(None, STOP_CYCLE)
            visited_heads.add(current.head_branch)

            downstream = self._next_hop(current, visited_prs)
            if downstream is None:
                return finish(None, STOP_NO_DOWNSTREAM)
            current = downstream

        return finish(None, STOP_MAX_DEPTH)

    def evaluate(self, linked_pr_numbers: Sequence[int]) -> DeliveryChainResult:
        """Track every linked PR independently and keep the best candidate."""
        return select_delivery_chain([self.track(number) for number in linked_pr_numbers])


def _prefer_earlier(best: DeliveryChainResult, candidate: DeliveryChainResult) -> DeliveryChainResult:
    if candidate.production_merged_at is None:
        return best
    if best.production_merged_at is None:
        return candidate
    if parse_timestamp(candidate.production_merged_at) < parse_timestamp(best.production_merged_at):
        return candidate
    return best


def select_delivery_chain(candidates: Sequence[DeliveryChainResult]) -> DeliveryChainResult:
    """Earliest production merge wins; with none, the first candidate is kept as evidence."""
    candidates = list(candidates)
    if not candidates:
        return DeliveryChainResult(None, (), STOP_NO_LINKED_PRS)
    return reduce(_prefer_earlier, candidates[1:], candidates[0])


def cycle_time_hours(issue_created_at: str, production_merged_at: Optional[str]) -> Optional[float]:
    if not production_merged_at:
        return None
    return round1(hours_between(issue_created_at, production_merged_at))


__all__ = [
    "DEFAULT_PRODUCTION_BRANCH_PATTERN",
    "STOP_PRODUCTION",
    "STOP_NOT_MERGED",
    "STOP_NO_DOWNSTREAM",
    "STOP_SELF_REFERENCE",
    "STOP_CYCLE",
    "STOP_MAX_DEPTH",
    "STOP_FETCH_FAILED",
    "STOP_NO_LINKED_PRS",
    "PullRequestLookup",
    "CollectorLookup",
    "InMemoryLookup",
    "matches_production_branch",
    "select_downstream",
    "DeliveryChainTracker",
    "select_delivery_chain",
    "cycle_time_hours",
]
