"""Bearer credentials and the providers that hand them to the fetch client."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from delivery_metrics.errors import ConfigurationError

from .config import CREDENTIAL_REFRESH_MARGIN_SEC, GITHUB_TOKEN

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class Credential:
    """A bearer token and, for minted tokens, the moment it stops being valid."""

    token: str
    expires_at: Optional[dt.datetime] = None

    def is_expired(self, now: Optional[dt.datetime] = None, margin_sec: int = 0) -> bool:
        if self.expires_at is None:
            return False
        now = now or _utcnow()
        return now + dt.timedelta(seconds=margin_sec) >= self.expires_at

    def __repr__(self) -> str:
        return f"Credential(token='***', expires_at={self.expires_at!r})"


class StaticCredentialProvider:
    """Serves one long-lived token (a personal access token)."""

    def __init__(self, token: str) -> None:
        if not token:
            raise ConfigurationError("a GitHub token is required")
        self._credential = Credential(token=token)

    def get(self) -> Credential:
        return self._credential

    def invalidate(self) -> None:
        logger.warning("[auth] static token rejected; it cannot be refreshed")


class RefreshingCredentialProvider:
    """Mints a new credential when the current one is close to expiry or was invalidated."""

    def __init__(
        self,
        mint: Callable[[], Credential],
        *,
        margin_sec: int = CREDENTIAL_REFRESH_MARGIN_SEC,
        clock: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self._mint = mint
        self._margin_sec = margin_sec
        self._clock = clock
        self._credential: Optional[Credential] = None

    def get(self) -> Credential:
        current = self._credential
        if current is None or current.is_expired(self._clock(), self._margin_sec):
            current = self._mint()
            logger.debug("[auth] minted credential expiring at %s", current.expires_at)
            self._credential = current
        return current

    def invalidate(self) -> None:
        self._credential = None


def default_credentials(token: Optional[str] = None) -> StaticCredentialProvider:
    """Build a provider from an explicit token or the configured GITHUB_TOKEN."""
    return StaticCredentialProvider(token or GITHUB_TOKEN or "")


__all__ = [
    "Credential",
    "StaticCredentialProvider",
    "RefreshingCredentialProvider",
    "default_credentials",
]
