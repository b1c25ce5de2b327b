"""
HTTP Adapter Base

Shared aiohttp plumbing for REST-based providers: session lifecycle,
request timing and translation of HTTP failures into ProviderError kinds.
Concrete adapters implement the capability methods on top of `_request`.
"""
import asyncio
import hashlib
import hmac
import json
import time
from typing import Optional, Any
import aiohttp
from loguru import logger

from finsync.data_providers.adapters.base import (
    BaseAdapter,
    ProviderConfig,
    HealthCheckResult,
    ProviderError,
    AuthenticationError,
    ProviderValidationError,
    RateLimitError,
    ProviderNetworkError,
    ProviderUnavailableError,
)


def verify_signature(secret: Optional[str], payload: dict[str, Any], signature: Optional[str]) -> bool:
    """Check a hex HMAC-SHA256 webhook signature over the compact JSON payload."""
    if not secret or not signature:
        return False
    body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8"))


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class HttpAdapter(BaseAdapter):
    """
    Base class for adapters that talk to a JSON REST API.

    Status mapping:
    - 401, 403 -> AuthenticationError
    - 400, 404, 409, 422 -> ProviderValidationError
    - 429 -> RateLimitError (honours Retry-After)
    - 500, 502, 503, 504 -> ProviderUnavailableError
    - transport errors and timeouts -> ProviderNetworkError
    """

    health_path: str = "/health"

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self._session: Optional[aiohttp.ClientSession] = None

    async def initialize(self) -> None:
        """Initialize HTTP session."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers=self._default_headers(),
            )
            logger.info(f"{self.name} adapter initialized")

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
            logger.info(f"{self.name} adapter closed")

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _default_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Perform a request and return the decoded JSON body.

        Raises:
            ProviderError: Subclass matching the failure
        """
        if self._session is None:
            await self.initialize()

        request_timeout = aiohttp.ClientTimeout(total=timeout) if timeout else None
        try:
            async with self._session.request(
                method, self._url(path), json=json, params=params, timeout=request_timeout
            ) as response:
                if response.status < 400:
                    if response.content_type == "application/json":
                        return await response.json()
                    return await response.text()

                body = await response.text()
                raise self._error_for_status(response.status, body, response.headers.get("Retry-After"))

        except ProviderError:
            raise
        except asyncio.TimeoutError as e:
            raise ProviderNetworkError(self.name, f"Request timed out: {method} {path}", code="TIMEOUT") from e
        except aiohttp.ClientError as e:
            raise ProviderNetworkError(self.name, f"Connection error: {e}", code="CONNECTION_ERROR") from e

    def _error_for_status(self, status: int, body: str, retry_after: Optional[str] = None) -> ProviderError:
        """Translate an HTTP error status into a ProviderError."""
        code = f"HTTP_{status}"
        detail = body[:500] if body else ""

        if status in (401, 403):
            return AuthenticationError(self.name, f"Authentication failed ({status}): {detail}", code=code)
        if status == 429:
            return RateLimitError(self.name, retry_after=_parse_retry_after(retry_after), code=code)
        if status in (400, 404, 409, 422):
            return ProviderValidationError(self.name, f"Request rejected ({status}): {detail}", code=code)
        if status in (500, 502, 503, 504):
            return ProviderUnavailableError(self.name, f"Upstream error {status}: {detail}", code=code)
        return ProviderError(self.name, f"API error {status}: {detail}", code=code)

    async def _probe(self, region: str) -> None:
        """Cheapest request proving the API is reachable. Override per provider."""
        await self._request(
            "GET",
            self.health_path,
            params={"region": region},
            timeout=self.config.health_check_timeout_seconds,
        )

    async def health_check(self, region: str) -> HealthCheckResult:
        """Probe the provider's health endpoint within the health check budget."""
        start = time.perf_counter()
        try:
            await self._probe(region)
            latency_ms = (time.perf_counter() - start) * 1000
            return HealthCheckResult(provider=self.name, region=region, healthy=True, latency_ms=latency_ms)
        except ProviderError as e:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.warning(f"{self.name} health check failed in {region}: {e.message}")
            return HealthCheckResult(
                provider=self.name,
                region=region,
                healthy=False,
                latency_ms=latency_ms,
                message=e.message,
            )
