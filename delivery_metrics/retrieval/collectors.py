"""REST and GraphQL source clients exposing the same listing and lookup operations."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

from delivery_metrics.errors import ConfigurationError, PermanentRequestError, PipelineError

from .config import BASE_URL, DEFAULT_MAX_PAGES, STATUS_FETCH_WARNING_THRESHOLD
from .http_client import FetchClient
from .models import Batch, Deployment, Issue, PullRequest, PullRequestDetail, Repository, WorkflowRun
from .normalizers import (
    ENVIRONMENT_MATCH_EXACT,
    filter_by_date_range,
    filter_deployments_by_environment,
    linked_pr_numbers_from_graphql_timeline,
    linked_pr_numbers_from_rest_timeline,
    normalize_graphql_deployment,
    normalize_graphql_issue,
    normalize_graphql_pull_request,
    normalize_graphql_pull_request_detail,
    normalize_rest_deployment,
    normalize_rest_issue,
    normalize_rest_pull_request,
    normalize_rest_pull_request_detail,
    normalize_rest_workflow_run,
)
from .pagination import paginate_cursor, paginate_pages
from .queries import (
    DEPLOYMENTS_QUERY,
    ISSUE_LINKED_PRS_QUERY,
    ISSUES_QUERY,
    PR_STATES,
    PULL_REQUEST_DETAIL_QUERY,
    PULL_REQUEST_QUERY,
    PULL_REQUESTS_BY_HEAD_QUERY,
    PULL_REQUESTS_QUERY,
)

logger = logging.getLogger(__name__)

API_MODE_GRAPHQL = "graphql"
API_MODE_REST = "rest"


def _workflow_runs_payload(payload: Any) -> List[Dict[str, Any]]:
    return payload.get("workflow_runs") or [] if isinstance(payload, dict) else []


class RestCollector:
    """Resource-oriented client: one paginated endpoint per resource type."""

    def __init__(self, client: FetchClient, *, max_pages: int = DEFAULT_MAX_PAGES, base_url: str = BASE_URL) -> None:
        self.client = client
        self.max_pages = max_pages
        self.base_url = base_url.rstrip("/")

    def _repo_url(self, repo: Repository, suffix: str) -> str:
        return f"{self.base_url}/repos/{repo.owner}/{repo.name}/{suffix}"

    def list_pull_requests(
        self,
        repo: Repository,
        *,
        state: str = "all",
        since: Optional[dt.datetime] = None,
        until: Optional[dt.datetime] = None,
    ) -> Batch[PullRequest]:
        result = paginate_pages(
            self.client,
            self._repo_url(repo, "pulls"),
            params={"state": state, "sort": "updated", "direction": "desc"},
            max_pages=self.max_pages,
        )
        prs = [normalize_rest_pull_request(raw, repo.full_name) for raw in result.records]
        return Batch(filter_by_date_range(prs, since, until), result.complete)

    def list_workflow_runs(
        self,
        repo: Repository,
        *,
        since: Optional[dt.datetime] = None,
        until: Optional[dt.datetime] = None,
    ) -> Batch[WorkflowRun]:
        params: Dict[str, Any] = {}
        if since is not None:
            params["created"] = f">={since.date().isoformat()}"
        result = paginate_pages(
            self.client,
            self._repo_url(repo, "actions/runs"),
            params=params,
            max_pages=self.max_pages,
            extract=_workflow_runs_payload,
        )
        runs = [normalize_rest_workflow_run(raw, repo.full_name) for raw in result.records]
        return Batch(filter_by_date_range(runs, since, until), result.complete)

    def _latest_status(self, repo: Repository, deployment_id: Any) -> Optional[str]:
        try:
            statuses = self.client.get_json(
                self._repo_url(repo, f"deployments/{deployment_id}/statuses"), {"per_page": 1}
            )
        except PipelineError as exc:
            logger.warning("[warn] status lookup failed for deployment %s: %s", deployment_id, exc)
            return None
        if isinstance(statuses, list) and statuses:
            return statuses[0].get("state")
        return None

    def list_deployments(
        self,
        repo: Repository,
        *,
        environment: Optional[str] = None,
        match_mode: str = ENVIRONMENT_MATCH_EXACT,
        since: Optional[dt.datetime] = None,
        until: Optional[dt.datetime] = None,
    ) -> Batch[Deployment]:
        params: Dict[str, Any] = {}
        if environment and match_mode == ENVIRONMENT_MATCH_EXACT:
            params["environment"] = environment
        result = paginate_pages(
            self.client, self._repo_url(repo, "deployments"), params=params, max_pages=self.max_pages
        )
        deployments = [normalize_rest_deployment(raw, repo.full_name) for raw in result.records]
        deployments = filter_deployments_by_environment(deployments, environment, match_mode)
        deployments = filter_by_date_range(deployments, since, until)
        if len(deployments) > STATUS_FETCH_WARNING_THRESHOLD:
            logger.warning(
                "[warn] %s: fetching statuses for %d deployments (one request each)",
                repo.full_name,
                len(deployments),
            )
        with_status = []
        for deployment in deployments:
            status = self._latest_status(repo, deployment.id)
            with_status.append(replace(deployment, status=status.lower() if status else None))
        return Batch(with_status, result.complete)

    def list_issues(
        self,
        repo: Repository,
        *,
        labels: Optional[Sequence[str]] = None,
        since: Optional[dt.datetime] = None,
        until: Optional[dt.datetime] = None,
    ) -> Batch[Issue]:
        params: Dict[str, Any] = {"state": "all"}
        if labels:
            params["labels"] = ",".join(labels)
        result = paginate_pages(
            self.client, self._repo_url(repo, "issues"), params=params, max_pages=self.max_pages
        )
        issues = [
            normalize_rest_issue(raw, repo.full_name)
            for raw in result.records
            if "pull_request" not in raw
        ]
        return Batch(filter_by_date_range(issues, since, until), result.complete)

    def get_pull_request(self, repo: Repository, number: int) -> PullRequest:
        raw = self.client.get_json(self._repo_url(repo, f"pulls/{number}"))
        return normalize_rest_pull_request(raw, repo.full_name)

    def find_pull_requests_by_head(self, repo: Repository, branch: str) -> List[PullRequest]:
        result = paginate_pages(
            self.client,
            self._repo_url(repo, "pulls"),
            params={"state": "all", "head": f"{repo.owner}:{branch}", "sort": "created", "direction": "desc"},
            max_pages=self.max_pages,
        )
        if not result.complete:
            logger.warning("[warn] %s: PRs from %s truncated at page %d", repo, branch, result.pages_fetched)
        return [normalize_rest_pull_request(raw, repo.full_name) for raw in result.records]

    def get_pull_request_detail(self, repo: Repository, number: int) -> PullRequestDetail:
        pull_request = self.get_pull_request(repo, number)
        reviews = paginate_pages(self.client, self._repo_url(repo, f"pulls/{number}/reviews"), max_pages=self.max_pages)
        commits = paginate_pages(self.client, self._repo_url(repo, f"pulls/{number}/commits"), max_pages=self.max_pages)
        timeline = paginate_pages(
            self.client, self._repo_url(repo, f"issues/{number}/timeline"), max_pages=self.max_pages
        )
        return normalize_rest_pull_request_detail(
            pull_request, reviews.records, commits.records, timeline.records
        )

    def get_linked_pull_requests(self, repo: Repository, issue_number: int) -> List[int]:
        timeline = paginate_pages(
            self.client, self._repo_url(repo, f"issues/{issue_number}/timeline"), max_pages=self.max_pages
        )
        return linked_pr_numbers_from_rest_timeline(timeline.records, repo.full_name)


class GraphQLCollector:
    """Structured-query client; workflow runs come from REST since GraphQL has no such connection."""

    def __init__(
        self,
        client: FetchClient,
        *,
        max_pages: int = DEFAULT_MAX_PAGES,
        rest: Optional[RestCollector] = None,
    ) -> None:
        self.client = client
        self.max_pages = max_pages
        self.rest = rest or RestCollector(client, max_pages=max_pages)

    @staticmethod
    def _vars(repo: Repository, **extra: Any) -> Dict[str, Any]:
        return {"owner": repo.owner, "name": repo.name, **extra}

    def _single(self, query: str, repo: Repository, field: str, **extra: Any) -> Dict[str, Any]:
        data = self.client.graphql(query, self._vars(repo, **extra))
        node = (data.get("repository") or {}).get(field)
        if not node:
            raise PermanentRequestError(404, f"{field} not found in {repo.full_name}")
        return node

    def list_pull_requests(
        self,
        repo: Repository,
        *,
        state: str = "all",
        since: Optional[dt.datetime] = None,
        until: Optional[dt.datetime] = None,
    ) -> Batch[PullRequest]:
        if state not in PR_STATES:
            raise ConfigurationError(f"unknown pull request state {state!r}")
        result = paginate_cursor(
            self.client,
            PULL_REQUESTS_QUERY,
            self._vars(repo, states=PR_STATES[state]),
            ("repository", "pullRequests"),
            max_pages=self.max_pages,
        )
        prs = [normalize_graphql_pull_request(node, repo.full_name) for node in result.records]
        return Batch(filter_by_date_range(prs, since, until), result.complete)

    def list_workflow_runs(
        self,
        repo: Repository,
        *,
        since: Optional[dt.datetime] = None,
        until: Optional[dt.datetime] = None,
    ) -> Batch[WorkflowRun]:
        return self.rest.list_workflow_runs(repo, since=since, until=until)

    def list_deployments(
        self,
        repo: Repository,
        *,
        environment: Optional[str] = None,
        match_mode: str = ENVIRONMENT_MATCH_EXACT,
        since: Optional[dt.datetime] = None,
        until: Optional[dt.datetime] = None,
    ) -> Batch[Deployment]:
        environments = [environment] if environment and match_mode == ENVIRONMENT_MATCH_EXACT else None
        result = paginate_cursor(
            self.client,
            DEPLOYMENTS_QUERY,
            self._vars(repo, environments=environments),
            ("repository", "deployments"),
            max_pages=self.max_pages,
        )
        deployments = [normalize_graphql_deployment(node, repo.full_name) for node in result.records]
        deployments = filter_deployments_by_environment(deployments, environment, match_mode)
        return Batch(filter_by_date_range(deployments, since, until), result.complete)

    def list_issues(
        self,
        repo: Repository,
        *,
        labels: Optional[Sequence[str]] = None,
        since: Optional[dt.datetime] = None,
        until: Optional[dt.datetime] = None,
    ) -> Batch[Issue]:
        result = paginate_cursor(
            self.client,
            ISSUES_QUERY,
            self._vars(repo, labels=list(labels) if labels else None),
            ("repository", "issues"),
            max_pages=self.max_pages,
        )
        issues = [normalize_graphql_issue(node, repo.full_name) for node in result.records]
        return Batch(filter_by_date_range(issues, since, until), result.complete)

    def get_pull_request(self, repo: Repository, number: int) -> PullRequest:
        node = self._single(PULL_REQUEST_QUERY, repo, "pullRequest", number=number)
        return normalize_graphql_pull_request(node, repo.full_name)

    def find_pull_requests_by_head(self, repo: Repository, branch: str) -> List[PullRequest]:
        result = paginate_cursor(
            self.client,
            PULL_REQUESTS_BY_HEAD_QUERY,
            self._vars(repo, head=branch),
            ("repository", "pullRequests"),
            max_pages=self.max_pages,
        )
        if not result.complete:
            logger.warning("[warn] %s: PRs from %s truncated at page %d", repo, branch, result.pages_fetched)
        return [normalize_graphql_pull_request(node, repo.full_name) for node in result.records]

    def get_pull_request_detail(self, repo: Repository, number: int) -> PullRequestDetail:
        node = self._single(PULL_REQUEST_DETAIL_QUERY, repo, "pullRequest", number=number)
        return normalize_graphql_pull_request_detail(node, repo.full_name)

    def get_linked_pull_requests(self, repo: Repository, issue_number: int) -> List[int]:
        node = self._single(ISSUE_LINKED_PRS_QUERY, repo, "issue", number=issue_number)
        nodes = (node.get("timelineItems") or {}).get("nodes") or []
        return linked_pr_numbers_from_graphql_timeline(nodes, repo.full_name)


def build_collector(api_mode: str, client: FetchClient, *, max_pages: int = DEFAULT_MAX_PAGES):
    """Return the source client for `api_mode` (graphql or rest)."""
    if api_mode == API_MODE_GRAPHQL:
        return GraphQLCollector(client, max_pages=max_pages)
    if api_mode == API_MODE_REST:
        return RestCollector(client, max_pages=max_pages)
    raise ConfigurationError(f"unknown api mode {api_mode!r}")


__all__ = [
    "API_MODE_GRAPHQL",
    "API_MODE_REST",
    "RestCollector",
    "GraphQLCollector",
    "build_collector",
]
