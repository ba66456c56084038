"""Immutable entities produced from GitHub responses for one pipeline run."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from delivery_metrics.errors import ConfigurationError

T = TypeVar("T")


@dataclass(frozen=True)
class Repository:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, full_name: str) -> "Repository":
        """Build a Repository from an `owner/name` string."""
        owner, sep, name = full_name.strip().partition("/")
        if not sep or not owner or not name or "/" in name:
            raise ConfigurationError(f"expected owner/name, got {full_name!r}")
        return cls(owner=owner, name=name)

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class PullRequest:
    repository: str
    number: int
    state: str
    created_at: str
    merged_at: Optional[str]
    closed_at: Optional[str]
    base_branch: str
    head_branch: str
    additions: Optional[int] = None
    deletions: Optional[int] = None
    changed_files: Optional[int] = None
    title: str = ""
    author: Optional[str] = None
    merge_commit_sha: Optional[str] = None
    labels: Tuple[str, ...] = ()

    @property
    def is_merged(self) -> bool:
        return self.merged_at is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["labels"] = list(self.labels)
        return data


@dataclass(frozen=True)
class WorkflowRun:
    repository: str
    id: int
    name: str
    status: Optional[str]
    conclusion: Optional[str]
    created_at: str
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class Deployment:
    repository: str
    id: str
    sha: Optional[str]
    environment: str
    status: Optional[str]
    created_at: str
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class Issue:
    repository: str
    number: int
    title: str
    state: str
    created_at: str
    closed_at: Optional[str]
    labels: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Review:
    state: str
    submitted_at: Optional[str]
    author: Optional[str] = None


@dataclass(frozen=True)
class CommitInfo:
    sha: str
    committed_at: str


@dataclass(frozen=True)
class TimelineEvent:
    kind: str
    created_at: str


READY_FOR_REVIEW = "ready_for_review"
FORCE_PUSHED = "force_pushed"


@dataclass(frozen=True)
class PullRequestDetail:
    """A pull request with the reviews, commits and timeline used by extended metrics."""

    pull_request: PullRequest
    reviews: Tuple[Review, ...] = ()
    commits: Tuple[CommitInfo, ...] = ()
    timeline: Tuple[TimelineEvent, ...] = ()


@dataclass(frozen=True)
class ChainLink:
    pr_number: int
    base_branch: str
    head_branch: str
    merged_at: Optional[str]


@dataclass(frozen=True)
class DeliveryChainResult:
    """Outcome of walking one linked PR; a null production_merged_at means it never shipped."""

    production_merged_at: Optional[str]
    chain: Tuple[ChainLink, ...] = ()
    stop_reason: str = "production"

    @property
    def reached_production(self) -> bool:
        return self.production_merged_at is not None

    def summary(self) -> str:
        return "→".join(f"#{link.pr_number}" for link in self.chain)


@dataclass
class Batch(Generic[T]):
    """A listing result; `complete` is False when pagination stopped early."""

    items: List[T] = field(default_factory=list)
    complete: bool = True


__all__ = [
    "Repository",
    "PullRequest",
    "WorkflowRun",
    "Deployment",
    "Issue",
    "Review",
    "CommitInfo",
    "TimelineEvent",
    "READY_FOR_REVIEW",
    "FORCE_PUSHED",
    "PullRequestDetail",
    "ChainLink",
    "DeliveryChainResult",
    "Batch",
]
