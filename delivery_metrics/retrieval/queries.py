"""GraphQL documents used by the structured-query source client."""

from __future__ import annotations

from typing import Dict, List

_PR_FIELDS = """
          number
          title
          state
          createdAt
          mergedAt
          closedAt
          author { login }
          baseRefName
          headRefName
          mergeCommit { oid }
          additions
          deletions
          changedFiles
          labels(first: 20) { nodes { name } }
"""

PULL_REQUESTS_QUERY = """
query PullRequests($owner:String!, $name:String!, $first:Int!, $after:String, $states:[PullRequestState!]) {
  repository(owner:$owner, name:$name) {
    pullRequests(first:$first, after:$after, states:$states, orderBy:{field:UPDATED_AT, direction:DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes {%s      }
    }
  }
}
""" % _PR_FIELDS

PULL_REQUESTS_BY_HEAD_QUERY = """
query PullRequestsByHead($owner:String!, $name:String!, $head:String!, $first:Int!, $after:String) {
  repository(owner:$owner, name:$name) {
    pullRequests(first:$first, after:$after, headRefName:$head, orderBy:{field:CREATED_AT, direction:DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes {%s      }
    }
  }
}
""" % _PR_FIELDS

PULL_REQUEST_QUERY = """
query PullRequest($owner:String!, $name:String!, $number:Int!) {
  repository(owner:$owner, name:$name) {
    pullRequest(number:$number) {%s    }
  }
}
""" % _PR_FIELDS

PULL_REQUEST_DETAIL_QUERY = """
query PullRequestDetail($owner:String!, $name:String!, $number:Int!) {
  repository(owner:$owner, name:$name) {
    pullRequest(number:$number) {%s
      reviews(first:50) {
        nodes { state submittedAt author { login } }
      }
      commits(first:100) {
        nodes { commit { oid committedDate } }
      }
      timelineItems(first:100, itemTypes:[READY_FOR_REVIEW_EVENT, HEAD_REF_FORCE_PUSHED_EVENT]) {
        nodes {
          __typename
          ... on ReadyForReviewEvent { createdAt }
          ... on HeadRefForcePushedEvent { createdAt }
        }
      }
    }
  }
}
""" % _PR_FIELDS

DEPLOYMENTS_QUERY = """
query Deployments($owner:String!, $name:String!, $first:Int!, $after:String, $environments:[String!]) {
  repository(owner:$owner, name:$name) {
    deployments(first:$first, after:$after, environments:$environments, orderBy:{field:CREATED_AT, direction:DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes {
        id
        environment
        createdAt
        updatedAt
        commit { oid }
        latestStatus { state createdAt }
      }
    }
  }
}
"""

ISSUES_QUERY = """
query Issues($owner:String!, $name:String!, $first:Int!, $after:String, $labels:[String!]) {
  repository(owner:$owner, name:$name) {
    issues(first:$first, after:$after, labels:$labels, orderBy:{field:CREATED_AT, direction:DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes {
        number
        title
        state
        createdAt
        closedAt
        labels(first:20) { nodes { name } }
      }
    }
  }
}
"""

ISSUE_LINKED_PRS_QUERY = """
query IssueLinkedPullRequests($owner:String!, $name:String!, $number:Int!) {
  repository(owner:$owner, name:$name) {
    issue(number:$number) {
      timelineItems(first:100, itemTypes:[CROSS_REFERENCED_EVENT]) {
        nodes {
          ... on CrossReferencedEvent {
            source {
              ... on PullRequest {
                number
                headRefName
                repository { nameWithOwner }
              }
            }
          }
        }
      }
    }
  }
}
"""

PR_STATES: Dict[str, List[str]] = {
    "all": ["MERGED", "OPEN", "CLOSED"],
    "open": ["OPEN"],
    "closed": ["MERGED", "CLOSED"],
}

__all__ = [
    "PULL_REQUESTS_QUERY",
    "PULL_REQUESTS_BY_HEAD_QUERY",
    "PULL_REQUEST_QUERY",
    "PULL_REQUEST_DETAIL_QUERY",
    "DEPLOYMENTS_QUERY",
    "ISSUES_QUERY",
    "ISSUE_LINKED_PRS_QUERY",
    "PR_STATES",
]
