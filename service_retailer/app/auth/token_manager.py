"""
OAuth2 client-credentials token lifecycle for the partner API.
"""

from __future__ import annotations

import asyncio
import base64
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

import httpx

from shared.errors import CredentialsError, NetworkError, RequestFailedError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


EXPIRY_BUFFER_SECONDS = 10 * 60
MAX_TOKEN_AGE_SECONDS = 60 * 60
MIN_LIFETIME_SECONDS = 5 * 60
MAX_LIFETIME_SECONDS = 2 * 60 * 60
DEFAULT_LIFETIME_SECONDS = 60 * 60


@dataclass(frozen=True)
class ClientCredentials:
    """Identifier/secret pair issued by the partner."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def basic_authorization(self) -> str:
        raw = f"{self.client_id}:{self.client_secret}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")


@dataclass(frozen=True)
class AccessToken:
    """A bearer token and the window in which it may be used."""

    value: str
    issued_at: float
    expires_at: float
    lifetime_seconds: int

    def is_valid(self, now: float) -> bool:
        if now >= self.expires_at:
            return False
        if now >= self.expires_at - EXPIRY_BUFFER_SECONDS:
            return False
        # Absolute age ceiling, whatever lifetime the authority declared
        if now - (self.expires_at - self.lifetime_seconds) > MAX_TOKEN_AGE_SECONDS:
            return False
        return True


def clamp_lifetime(expires_in: Any) -> int:
    """Clamp a declared ``expires_in`` into [5 minutes, 2 hours]."""
    try:
        seconds = int(expires_in) if expires_in else DEFAULT_LIFETIME_SECONDS
    except (TypeError, ValueError):
        seconds = DEFAULT_LIFETIME_SECONDS
    return max(MIN_LIFETIME_SECONDS, min(MAX_LIFETIME_SECONDS, seconds))


class TokenManager:
    """Holds at most one access token and acquires a new one on demand.

    Acquisition is serialised with an ``asyncio.Lock``: concurrent callers that
    find the slot empty wait for the first acquisition instead of each asking
    the authority for a token.
    """

    def __init__(
        self,
        token_url: str,
        credentials: Optional[ClientCredentials] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        http_timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.token_url = token_url
        self.logger = get_logger("retailer.token_manager")
        self.metrics = metrics
        self._credentials = credentials or ClientCredentials()
        self._clock = clock
        self._token: Optional[AccessToken] = None
        self._lock = asyncio.Lock()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=http_timeout)

    @property
    def credentials(self) -> ClientCredentials:
        return self._credentials

    def set_credentials(self, client_id: str, client_secret: str) -> None:
        """Replace the client credentials; any token issued for the old pair is dropped."""
        self._credentials = ClientCredentials(client_id.strip(), client_secret.strip())
        self.invalidate()
        self.logger.info("Client credentials updated", client_id=self._credentials.client_id)

    def invalidate(self) -> None:
        """Clear the token slot."""
        if self._token is not None:
            self.logger.info("Access token invalidated")
        self._token = None

    def _valid_token(self) -> Optional[str]:
        token = self._token
        if token is None:
            return None
        if not token.is_valid(self._clock()):
            self.logger.info("Cached access token expired or too old, clearing")
            self._token = None
            return None
        return token.value

    async def get(self) -> str:
        """Return a valid access token, acquiring one when the slot is empty or stale."""
        cached = self._valid_token()
        if cached is not None:
            return cached

        async with self._lock:
            cached = self._valid_token()
            if cached is not None:
                return cached
            token = await self._acquire()
            self._token = token
            return token.value

    async def _acquire(self) -> AccessToken:
        if not self._credentials.is_complete:
            self._token = None
            raise CredentialsError("API credentials not configured")

        self.logger.info("Requesting new access token", token_url=self.token_url)
        try:
            response = await self._client.post(
                self.token_url,
                headers={
                    "Authorization": self._credentials.basic_authorization(),
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
                content="grant_type=client_credentials",
            )
        except httpx.HTTPError as exc:
            self._token = None
            self._record("network_error")
            self.logger.error("Token authority unreachable", error=str(exc))
            raise NetworkError(
                f"Network error: cannot reach token authority ({exc})",
                details={"cause": repr(exc)},
            ) from exc

        if response.status_code in (400, 401, 403):
            self._token = None
            self._record("rejected")
            self.logger.warning("Token authority rejected credentials", status_code=response.status_code)
            raise CredentialsError(
                "Invalid API credentials, check the client id and secret",
                details={"status_code": response.status_code},
            )

        if response.status_code != 200:
            self._token = None
            self._record("failed")
            self.logger.error(
                "Token request failed",
                status_code=response.status_code,
                response=response.text
            )
            raise RequestFailedError(
                response.status_code,
                response.text,
                message=f"Failed to get access token: {response.status_code}",
            )

        try:
            payload: Dict[str, Any] = response.json()
        except ValueError:
            payload = {}
        value = payload.get("access_token")
        if not isinstance(value, str) or not value:
            self._token = None
            self._record("failed")
            raise RequestFailedError(
                response.status_code,
                response.text,
                message="No access token in token authority response",
            )

        lifetime = clamp_lifetime(payload.get("expires_in"))
        now = self._clock()
        self._record("success")
        self.logger.info("Access token acquired", expires_in=lifetime)
        return AccessToken(
            value=value,
            issued_at=now,
            expires_at=now + lifetime,
            lifetime_seconds=lifetime,
        )

    def _record(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("token_acquisitions_total", result=result)

    def status(self) -> Dict[str, Any]:
        """Describe the slot without exposing the token value."""
        token = self._token
        now = self._clock()
        return {
            "has_credentials": self._credentials.is_complete,
            "has_token": token is not None and token.is_valid(now),
            "expires_in_seconds": max(0, int(token.expires_at - now)) if token else None,
        }

    async def close(self) -> None:
        """Close the underlying HTTP client if this manager created it."""
        if self._owns_client:
            await self._client.aclose()
