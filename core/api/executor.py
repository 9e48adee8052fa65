"""
Request executor

Wraps every HTTP call to the Chatwoot API with:
- circuit breaking (no network access while the breaker is open)
- 429 backoff (Retry-After or exponential), idempotent calls only
- bounded 5xx retries with a fixed delay, idempotent calls only
- Idempotency-Key headers on mutating calls
- polling of 202 Accepted operations through their Location header

Usage:
    async with RequestExecutor(base_url, token) as executor:
        resp = await executor.execute("GET", f"{base_url}/api/v1/profile")
        profile = resp.json()
"""

import asyncio
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from logger import get_logger
from core.api.errors import (
    APIError,
    AsyncWaitError,
    CircuitBreakerError,
    DecodeError,
    RateLimitError,
    TransportError,
)
from core.api.rate_limit import RateLimitInfo, parse_rate_limit_info
from infra.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from infra.resilience.retry import RetryConfig, calculate_delay, parse_retry_after
from infra.resilience.timeout import OperationTimeoutError, TimeoutConfig, run_with_timeout

logger = get_logger(__name__)

DEFAULT_USER_AGENT = "chatwoot-cli"
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
# Safety limit on 202 polling, independent of wait_timeout
MAX_ASYNC_WAIT_ITERATIONS = 1000
REDACTED_ERROR_BODY = "API request failed (response body redacted for security)"

SleepFunc = Callable[[float], Awaitable[None]]


def new_idempotency_key() -> str:
    """Random key for one logical mutating request."""
    return "cwcli_" + secrets.token_hex(16)


@dataclass
class RawResponse:
    """Response of a completed call."""
    status_code: int
    headers: httpx.Headers
    body: bytes

    @property
    def request_id(self) -> str:
        return request_id_from_headers(self.headers)

    def json(self) -> Any:
        """Decoded JSON body (None for an empty body)."""
        if not self.body.strip():
            return None
        try:
            return json.loads(self.body)
        except ValueError as e:
            raise DecodeError(f"unexpected API response format (JSON decode failed): {e}") from e


def request_id_from_headers(headers: Optional[httpx.Headers]) -> str:
    if headers is None:
        return ""
    return headers.get("X-Request-Id", "")


def sanitize_error_body(body: str) -> str:
    """
    Reduce an error body to its ``error`` / ``message`` text and validation errors.

    Anything else (tokens, user data, HTML error pages) is redacted.
    """
    try:
        payload = json.loads(body)
    except ValueError:
        return REDACTED_ERROR_BODY
    if not isinstance(payload, dict):
        return REDACTED_ERROR_BODY

    result = ""
    for key in ("error", "message"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            result = value
            break

    validation = _format_validation_errors(payload.get("errors"))
    if validation:
        if result:
            return f"{result}\nValidation errors:\n{validation}"
        return f"Validation errors:\n{validation}"
    return result or REDACTED_ERROR_BODY


def _format_validation_errors(errors: Any) -> str:
    if not isinstance(errors, dict) or not errors:
        return ""
    lines = []
    for field, value in errors.items():
        if isinstance(value, str):
            lines.append(f"  {field}: {value}")
        elif isinstance(value, list):
            lines.extend(f"  {field}: {msg}" for msg in value if isinstance(msg, str))
    return "\n".join(sorted(lines))


def _effective_port(parts) -> Optional[int]:
    if parts.port is not None:
        return parts.port
    return {"https": 443, "http": 80}.get(parts.scheme.lower())


def same_origin(a: str, b: str) -> bool:
    """Same scheme, host and effective port."""
    pa, pb = urlsplit(a), urlsplit(b)
    return (
        pa.scheme.lower() == pb.scheme.lower()
        and (pa.hostname or "").lower() == (pb.hostname or "").lower()
        and _effective_port(pa) == _effective_port(pb)
    )


class RequestExecutor:
    """
    Resilient HTTP executor shared by all API calls of one client.

    Retry and breaker settings live on the instance, so two executors never
    influence each other.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        *,
        retry_config: Optional[RetryConfig] = None,
        timeout_config: Optional[TimeoutConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        idempotency_key: str = "",
        idempotency_key_factory: Optional[Callable[[], str]] = None,
        wait_for_async: bool = False,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.retry_config = retry_config or RetryConfig()
        self.timeout_config = timeout_config or TimeoutConfig()
        self.user_agent = user_agent
        self.idempotency_key = idempotency_key
        self.idempotency_key_factory = idempotency_key_factory
        self.wait_for_async = wait_for_async

        self._sleep = sleep
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.timeout_config.http_timeout)
        self._breaker = CircuitBreaker(
            "chatwoot-api",
            CircuitBreakerConfig(
                failure_threshold=self.retry_config.circuit_breaker_threshold,
                reset_time=self.retry_config.circuit_breaker_reset_time,
            ),
            clock=clock,
        )
        self._last_rate_limit: Optional[RateLimitInfo] = None

    async def __aenter__(self) -> "RequestExecutor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def last_rate_limit(self) -> Optional[RateLimitInfo]:
        """Rate-limit snapshot from the most recent response."""
        return self._last_rate_limit

    def set_retry_config(self, config: RetryConfig) -> None:
        """Swap the retry config; breaker thresholds follow."""
        self.retry_config = config
        self._breaker.configure(config.circuit_breaker_threshold, config.circuit_breaker_reset_time)

    def reset_circuit_breaker(self) -> None:
        self._breaker.reset()

    async def execute(
        self,
        method: str,
        url: str,
        body: Optional[bytes] = None,
        content_type: str = "",
    ) -> RawResponse:
        """
        Run one logical request.

        Raises:
            CircuitBreakerError: breaker open, nothing was sent
            RateLimitError: 429 not retried or retries exhausted
            APIError: any other status >= 400 after retries
            TransportError: connection-level failure (never retried)
            AsyncWaitError: 202 polling failed
        """
        return await self._execute(method.upper(), url, body, content_type, allow_wait=True)

    async def _execute(
        self,
        method: str,
        url: str,
        body: Optional[bytes],
        content_type: str,
        allow_wait: bool,
    ) -> RawResponse:
        if self._breaker.is_open():
            logger.debug("Circuit open, request rejected", extra={"breaker": self._breaker.get_stats()})
            raise CircuitBreakerError(self._breaker.time_until_retry())

        idempotency_key = self.idempotency_key
        if not idempotency_key and self.idempotency_key_factory is not None:
            idempotency_key = self.idempotency_key_factory()
        idempotent = method in IDEMPOTENT_METHODS or bool(idempotency_key)

        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["api_access_token"] = self.api_token
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        if content_type:
            headers["Content-Type"] = content_type
        if idempotency_key and method not in IDEMPOTENT_METHODS:
            headers["Idempotency-Key"] = idempotency_key

        retries_429 = 0
        retries_5xx = 0
        attempt = 0
        while True:
            attempt += 1
            start = time.perf_counter()
            try:
                resp = await self._http.request(method, url, content=body, headers=headers)
            except httpx.RequestError as e:
                logger.debug(
                    "Request failed",
                    extra={"method": method, "url": url, "attempt": attempt, "error": str(e)},
                )
                raise TransportError(method, url, e) from e

            info = parse_rate_limit_info(resp.headers)
            if info is not None:
                self._last_rate_limit = info
            status = resp.status_code
            logger.debug(
                "Request complete",
                extra={
                    "method": method,
                    "url": url,
                    "status": status,
                    "attempt": attempt,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                },
            )

            if status == 202 and allow_wait and self.wait_for_async:
                location = resp.headers.get("Location", "").strip()
                if location:
                    return await self._wait_for_async(location, resp.headers)

            if status == 429:
                retry_after = parse_retry_after(resp.headers.get("Retry-After"))
                base_delay = self.retry_config.rate_limit_base_delay
                if not idempotent or retries_429 >= self.retry_config.max_rate_limit_retries:
                    raise RateLimitError(
                        retry_after if retry_after is not None else base_delay,
                        request_id_from_headers(resp.headers),
                    )
                delay = retry_after
                if delay is None:
                    delay = calculate_delay(retries_429, base_delay)
                logger.info("Rate limited, retrying", extra={"delay": delay, "attempt": retries_429 + 1})
                await self._sleep(delay)
                retries_429 += 1
                continue

            if status >= 500:
                self._breaker.record_failure()
                if idempotent and retries_5xx < self.retry_config.max_5xx_retries:
                    logger.info("Server error, retrying", extra={"status": status})
                    await self._sleep(self.retry_config.server_error_retry_delay)
                    retries_5xx += 1
                    continue

            if status >= 400:
                raise APIError(
                    status,
                    sanitize_error_body(resp.text),
                    request_id_from_headers(resp.headers),
                )

            if 200 <= status < 300:
                self._breaker.record_success()

            return RawResponse(status_code=status, headers=resp.headers, body=resp.content)

    def resolve_async_url(self, location: str) -> str:
        """
        Absolute polling URL for a 202 Location.

        Relative locations resolve against the base URL; absolute ones must
        share its origin.

        Raises:
            AsyncWaitError: empty location or foreign origin
        """
        location = location.strip()
        if not location:
            raise AsyncWaitError("async wait location is empty")
        if urlsplit(location).scheme:
            if not same_origin(self.base_url, location):
                raise AsyncWaitError(
                    f"async wait location host mismatch: {urlsplit(location).netloc}"
                )
            return location
        return urljoin(self.base_url + "/", location)

    def _wait_delay(self, headers: httpx.Headers) -> float:
        retry_after = parse_retry_after(headers.get("Retry-After"))
        if retry_after is not None:
            return retry_after
        return self.timeout_config.wait_interval

    async def _wait_for_async(self, location: str, headers: httpx.Headers) -> RawResponse:
        async_url = self.resolve_async_url(location)
        try:
            return await run_with_timeout(
                self._poll(async_url, self._wait_delay(headers)),
                self.timeout_config.wait_timeout,
                "async wait",
            )
        except OperationTimeoutError as e:
            raise AsyncWaitError(str(e)) from e

    async def _poll(self, async_url: str, delay: float) -> RawResponse:
        for _ in range(MAX_ASYNC_WAIT_ITERATIONS):
            await self._sleep(delay)
            resp = await self._execute("GET", async_url, None, "", allow_wait=False)
            if resp.status_code == 202:
                delay = self._wait_delay(resp.headers)
                continue
            return resp
        raise AsyncWaitError(
            f"async wait exceeded maximum iterations ({MAX_ASYNC_WAIT_ITERATIONS}); "
            "operation may still be in progress"
        )
