"""Central configuration constants for GitHub retrieval."""

from __future__ import annotations

import os
from typing import List, Optional

from delivery_metrics.secrets import load_local_secrets

_SECRETS = load_local_secrets()
_TOKENS: List[str] = list(_SECRETS.get("github_tokens", []))

GITHUB_TOKEN: Optional[str] = (
    os.getenv("GITHUB_TOKEN") or _SECRETS.get("github_token") or (_TOKENS[0] if _TOKENS else None)
)
USER_AGENT = "delivery-metrics-pipeline/1.0"
BASE_URL = "https://api.github.com"
GRAPHQL_URL = "https://api.github.com/graphql"
PER_PAGE = 100
REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", "30"))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
INITIAL_BACKOFF_MS = int(os.getenv("INITIAL_BACKOFF_MS", "1000"))
DEFAULT_MAX_PAGES = int(os.getenv("MAX_PAGES", "5"))  # 0 = no cap
STATUS_FETCH_WARNING_THRESHOLD = 50
MAX_PR_CHAIN_DEPTH = 5
LEAD_TIME_DEPLOY_MATCH_THRESHOLD_HOURS = 24
CREDENTIAL_REFRESH_MARGIN_SEC = 5 * 60

__all__ = [
    "GITHUB_TOKEN",
    "USER_AGENT",
    "BASE_URL",
    "GRAPHQL_URL",
    "PER_PAGE",
    "REQUEST_TIMEOUT",
    "MAX_RETRIES",
    "INITIAL_BACKOFF_MS",
    "DEFAULT_MAX_PAGES",
    "STATUS_FETCH_WARNING_THRESHOLD",
    "MAX_PR_CHAIN_DEPTH",
    "LEAD_TIME_DEPLOY_MATCH_THRESHOLD_HOURS",
    "CREDENTIAL_REFRESH_MARGIN_SEC",
]
