"""
HTTP client with bounded retries.

This module provides:
- ApiClient: JSON HTTP client on ``httpx.AsyncClient`` with retry and backoff
- ApiClientConfig: Client configuration (seconds, not milliseconds)
- ApiResponse: Successful response payload

Retry policy:
- Retried: network failures, timeouts, 429, 5xx
- Not retried: every other 4xx
- Delay for attempt n: min(retry_delay * 2**n, 30s), then +/-25% jitter
- At most ``max_retries + 1`` requests are sent
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import random as _random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx

from .error_logger import ErrorLogger
from .errors import (
    AppError,
    AuthError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 30.0
JITTER_RATIO = 0.25


def _default_headers() -> Dict[str, str]:
    return {"Content-Type": "application/json"}


@dataclass
class ApiClientConfig:
    """API client configuration."""

    base_url: str = ""
    timeout: float = DEFAULT_TIMEOUT  # per attempt
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    headers: Dict[str, str] = field(default_factory=_default_headers)


@dataclass
class ApiResponse:
    """Successful response."""

    data: Any
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)


class ApiClient:
    """
    JSON HTTP client with retry and per-attempt timeouts.

    Each attempt runs under ``asyncio.wait_for``; on timeout the in-flight
    request is cancelled and RequestTimeoutError is raised, which is retried
    like a network failure.

    Example:
        >>> async with ApiClient(ApiClientConfig(base_url="https://api.example.com")) as api:
        ...     api.set_auth_token(token)
        ...     response = await api.get("/recipients")
    """

    def __init__(
        self,
        config: Optional[ApiClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        random: Callable[[], float] = _random.random,
        error_logger: Optional[ErrorLogger] = None,
    ) -> None:
        """
        Initialize ApiClient.

        Args:
            config: Client configuration
            transport: httpx transport override (tests use httpx.MockTransport)
            sleep: Backoff sleep function
            random: Source of uniform [0, 1) values for jitter
            error_logger: Sink for requests that fail after all retries
        """
        self._config = config or ApiClientConfig()
        self._sleep = sleep
        self._random = random
        self._error_logger = error_logger
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            headers={**_default_headers(), **self._config.headers},
            transport=transport,
            timeout=None,  # enforced per attempt by wait_for
        )

    @property
    def config(self) -> ApiClientConfig:
        return self._config

    @property
    def headers(self) -> httpx.Headers:
        """Client-wide default headers."""
        return self._client.headers

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_auth_token(self, token: str) -> None:
        """Send ``Authorization: Bearer <token>`` on every later request."""
        self._client.headers["Authorization"] = f"Bearer {token}"

    def clear_auth_token(self) -> None:
        self._client.headers.pop("Authorization", None)

    def update_config(self, **changes: Any) -> ApiClientConfig:
        """
        Replace configuration fields.

        Args:
            **changes: ApiClientConfig fields to change

        Returns:
            The new configuration
        """
        self._config = dataclasses.replace(self._config, **changes)
        if "base_url" in changes:
            self._client.base_url = self._config.base_url
        if "headers" in changes:
            self._client.headers.update(self._config.headers)
        return self._config

    # ------------------------------------------------------------------
    # Retry policy
    # ------------------------------------------------------------------

    def get_retry_delay(self, attempt: int) -> float:
        """Backoff in seconds before retrying after ``attempt`` (0-based)."""
        capped = min(self._config.retry_delay * (2 ** attempt), MAX_RETRY_DELAY)
        jitter = capped * JITTER_RATIO * (self._random() * 2 - 1)
        return capped + jitter

    def should_retry(self, error: AppError, attempt: int) -> bool:
        if attempt >= self._config.max_retries:
            return False

        if isinstance(error, NetworkError):
            return True

        if isinstance(error, RateLimitError) or error.status_code == 429:
            return True

        status = error.status_code
        return status is not None and 500 <= status < 600

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        """
        Send a request, retrying per the retry policy.

        Args:
            method: HTTP method
            endpoint: Path relative to ``base_url``
            body: JSON-serializable request body
            headers: Extra headers for this request only
            timeout: Per-attempt timeout override in seconds

        Returns:
            ApiResponse with the decoded JSON body (None for empty bodies)

        Raises:
            AppError: Typed error for the final failed attempt
        """
        attempt = 0
        while True:
            try:
                return await self._send(method, endpoint, body, headers, timeout)
            except AppError as error:
                if not self.should_retry(error, attempt):
                    error.details.setdefault("attempt", attempt)
                    if self._error_logger is not None:
                        self._error_logger.log(
                            error,
                            {
                                "component": "ApiClient",
                                "context": method,
                                "endpoint": endpoint,
                                "attempt": attempt,
                            },
                        )
                    raise

                delay = self.get_retry_delay(attempt)
                logger.warning(
                    "%s %s failed (%s), retrying in %.2fs (attempt %d of %d)",
                    method,
                    endpoint,
                    error.code,
                    delay,
                    attempt + 1,
                    self._config.max_retries,
                )
                await self._sleep(delay)
                attempt += 1

    async def _send(
        self,
        method: str,
        endpoint: str,
        body: Any,
        headers: Optional[Mapping[str, str]],
        timeout: Optional[float],
    ) -> ApiResponse:
        per_attempt = self._config.timeout if timeout is None else timeout
        request = self._client.build_request(
            method,
            endpoint,
            json=body,
            headers=dict(headers) if headers else None,
        )

        try:
            response = await asyncio.wait_for(self._client.send(request), per_attempt)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(details={"timeout": per_attempt}) from e
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(str(e) or None) from e
        except httpx.TransportError as e:
            raise NetworkError(str(e) or None) from e

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> ApiResponse:
        content_type = response.headers.get("content-type", "")
        is_json = "application/json" in content_type

        if not response.is_success:
            error_data: Any
            if is_json:
                try:
                    error_data = response.json()
                except ValueError:
                    error_data = {"message": response.reason_phrase}
            else:
                error_data = {"message": response.reason_phrase or "Request failed"}
            if not isinstance(error_data, dict):
                error_data = {"message": response.reason_phrase}
            raise self.create_error(error_data, response.status_code)

        headers = dict(response.headers)
        if not response.content:
            return ApiResponse(None, response.status_code, headers)

        if not is_json:
            raise AppError("Invalid response content type", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise AppError("Invalid JSON response", status_code=response.status_code) from e
        return ApiResponse(data, response.status_code, headers)

    @staticmethod
    def create_error(error_data: Mapping[str, Any], status_code: int) -> AppError:
        """Map an error response to the error taxonomy."""
        message = error_data.get("message") or "An error occurred"
        code = error_data.get("code")
        details = error_data.get("details")
        details = details if isinstance(details, dict) else None

        if status_code == 401:
            return AuthError(message, details=details)
        if status_code == 403:
            return PermissionDeniedError(message, details=details)
        if status_code == 404:
            return NotFoundError(message, details=details)
        if status_code == 429:
            return RateLimitError(message, details=details)
        if status_code >= 500:
            return ServerError(message, status_code=status_code, details=details)
        return AppError(message, code, status_code, details)

    async def get(
        self,
        endpoint: str,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        return await self.request("GET", endpoint, headers=headers, timeout=timeout)

    async def post(
        self,
        endpoint: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        return await self.request("POST", endpoint, body, headers, timeout)

    async def put(
        self,
        endpoint: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        return await self.request("PUT", endpoint, body, headers, timeout)

    async def patch(
        self,
        endpoint: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        return await self.request("PATCH", endpoint, body, headers, timeout)

    async def delete(
        self,
        endpoint: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        return await self.request("DELETE", endpoint, body, headers, timeout)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
