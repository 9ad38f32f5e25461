"""
HTTP infrastructure layer with rate-limit-aware retry logic.

Provides:
- RateLimitInfo and header parsers: provider-specific rate-limit semantics
- RetryPolicy: backoff and rate-limit decisions as pure functions
- RetryClient: async HTTP GET executor that applies a RetryPolicy
- The error taxonomy raised by provider adapters

This layer separates HTTP concerns (retries, backoff, rate-limit waits) from
domain logic (release normalization) in the adapters. The client never raises
for an HTTP status: it returns the last response, even a non-2xx one, and only
raises NetworkError when transport failures exhaust every retry.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

import httpx

from changelog_hub.config.settings import Settings, get_settings
from changelog_hub.ingestion.normalizer import format_api_error
from changelog_hub.ingestion.schemas import Provider
from changelog_hub.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

# GitHub signals quota exhaustion with 403, everyone else with 429
RATE_LIMIT_STATUSES = frozenset({403, 429})


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class HTTPClientError(Exception):
    """Base exception for HTTP client errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class NetworkError(HTTPClientError):
    """Transport failure that survived every retry."""

    def __init__(self, detail: str):
        super().__init__(f"Network error: {detail}")
        self.detail = detail


class ApiError(HTTPClientError):
    """Non-2xx response from a provider API."""

    def __init__(self, provider: Provider, status_code: int, detail: str = ""):
        super().__init__(
            format_api_error(provider, status_code, detail),
            status_code=status_code,
            response_body=detail,
        )
        self.provider = provider

    @classmethod
    def from_response(cls, provider: Provider, response: httpx.Response) -> "ApiError":
        return cls(provider, response.status_code, response.text)


class RateLimitExceeded(ApiError):
    """Provider refused the request for quota reasons; retrying elsewhere would only burn more quota."""


class FallbackExhausted(HTTPClientError):
    """
    Both the releases request and the commit fallback failed for one source.

    The message is the fallback's own error when it failed, otherwise the
    error of the primary request.
    """

    def __init__(
        self,
        primary: HTTPClientError | None,
        fallback: HTTPClientError | None,
    ):
        cause = fallback or primary
        super().__init__(
            str(cause) if cause else "No releases or commits available",
            status_code=cause.status_code if cause else None,
            response_body=cause.response_body if cause else None,
        )
        self.primary = primary
        self.fallback = fallback


# ---------------------------------------------------------------------------
# Rate-limit header parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitInfo:
    """Rate-limit state advertised by a response."""

    remaining: int | None = None
    reset_at: float | None = None  # epoch seconds

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0


RateLimitParser = Callable[[httpx.Response, float], RateLimitInfo]


def _int_header(headers: httpx.Headers, name: str) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(float(raw.strip()))
    except (ValueError, OverflowError):
        return None


def make_rate_limit_parser(remaining_header: str, reset_header: str) -> RateLimitParser:
    """
    Build a parser for a provider's rate-limit headers.

    The reset header is read as epoch seconds. When it is absent, a
    Retry-After header (delta seconds) is converted into an absolute reset
    time relative to `now`.
    """

    def parse(response: httpx.Response, now: float) -> RateLimitInfo:
        headers = response.headers
        remaining = _int_header(headers, remaining_header)
        reset_at: float | None = None

        reset = _int_header(headers, reset_header)
        if reset is not None:
            reset_at = float(reset)
        else:
            retry_after = _int_header(headers, "retry-after")
            if retry_after is not None:
                reset_at = now + retry_after

        return RateLimitInfo(remaining=remaining, reset_at=reset_at)

    return parse


# GitHub, Gitea and Bitbucket use the X-RateLimit-* convention
parse_standard_rate_limit = make_rate_limit_parser("x-ratelimit-remaining", "x-ratelimit-reset")
parse_gitlab_rate_limit = make_rate_limit_parser("ratelimit-remaining", "ratelimit-reset")


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


class RetryAction(str, Enum):
    RETURN = "return"
    WAIT = "wait"
    BACKOFF = "backoff"


@dataclass(frozen=True)
class RetryDecision:
    """What the client should do with a response."""

    action: RetryAction
    delay: float = 0.0
    reason: str = ""


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff and rate-limit configuration for HTTP retries.

    Formula: base_delay * 2^attempt + uniform(0, max_jitter)

    Rate-limited responses that advertise a reset within max_rate_limit_wait
    seconds are retried after the reset (plus rate_limit_buffer). Longer waits
    return the response immediately so one exhausted token cannot stall the
    whole fan-out.
    """

    max_retries: int = 3
    base_delay: float = 1.5
    max_jitter: float = 0.5
    max_rate_limit_wait: float = 10.0
    rate_limit_buffer: float = 0.5
    rate_limit_parser: RateLimitParser = parse_standard_rate_limit

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            max_retries=settings.max_http_retries,
            base_delay=settings.http_base_delay_seconds,
            max_jitter=settings.http_max_jitter_seconds,
            max_rate_limit_wait=settings.rate_limit_max_wait_seconds,
            rate_limit_buffer=settings.rate_limit_buffer_seconds,
        )

    def with_parser(self, parser: RateLimitParser) -> "RetryPolicy":
        """Copy of this policy using another provider's rate-limit headers."""
        return replace(self, rate_limit_parser=parser)

    def backoff_delay(self, attempt: int) -> float:
        """
        Calculate backoff duration for a given retry attempt.

        Args:
            attempt: The retry attempt number (0-indexed)

        Returns:
            Backoff duration in seconds with jitter applied
        """
        jitter = random.uniform(0, self.max_jitter) if self.max_jitter > 0 else 0.0
        return self.base_delay * (2**attempt) + jitter

    def decide(self, response: httpx.Response, attempt: int, now: float) -> RetryDecision:
        """
        Classify a response.

        Args:
            response: The response just received
            attempt: Attempts already retried (0 for the first request)
            now: Current time in epoch seconds

        Returns:
            RETURN to hand the response to the caller, WAIT to sleep until a
            rate-limit reset, BACKOFF to sleep with exponential backoff.
        """
        status = response.status_code
        if response.is_success:
            return RetryDecision(RetryAction.RETURN)

        retries_spent = attempt >= self.max_retries
        reason = "server_error" if status >= 500 else "unexpected_status"

        if status in RATE_LIMIT_STATUSES:
            info = self.rate_limit_parser(response, now)
            if status == 429 or info.exhausted:
                reason = "rate_limit"
                if retries_spent:
                    return RetryDecision(RetryAction.RETURN, reason=reason)

                if info.reset_at is not None:
                    wait = info.reset_at - now
                    if wait <= 0:
                        wait = self.base_delay
                    if wait <= self.max_rate_limit_wait:
                        return RetryDecision(
                            RetryAction.WAIT,
                            delay=wait + self.rate_limit_buffer,
                            reason=reason,
                        )
                    return RetryDecision(RetryAction.RETURN, reason="rate_limit_wait_too_long")
                # No reset hint: fall through to generic backoff
        elif 400 <= status < 500:
            return RetryDecision(RetryAction.RETURN, reason="client_error")

        if retries_spent:
            return RetryDecision(RetryAction.RETURN, reason=reason)

        return RetryDecision(
            RetryAction.BACKOFF,
            delay=self.backoff_delay(attempt),
            reason=reason,
        )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RetryClient:
    """
    Async HTTP client that applies a RetryPolicy to every GET.

    Features:
    - Exponential backoff with jitter on transport errors and 5xx responses
    - Short waits for rate-limit resets, early return for long ones
    - Non-retryable 4xx responses returned on the first attempt
    - Context manager for proper resource cleanup

    Example:
        async with RetryClient(RetryPolicy(max_retries=3)) as client:
            response = await client.execute(
                "https://api.github.com/repos/octo/hello/releases",
                params={"per_page": 8},
            )
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        timeout: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the retry client.

        Args:
            policy: Default retry policy. Built from settings if None.
            timeout: Transport timeout in seconds. From settings if None.
            sleep: Awaitable sleep used for backoff and rate-limit waits.
            clock: Wall clock in epoch seconds, compared to reset headers.
        """
        settings = get_settings()
        self.policy = policy or RetryPolicy.from_settings(settings)
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self._sleep = sleep
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self._metrics = get_metrics()

    async def __aenter__(self) -> "RetryClient":
        """Enter async context manager, create client."""
        self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager, close client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def execute(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        policy: RetryPolicy | None = None,
    ) -> httpx.Response:
        """
        Perform a GET request under a retry policy.

        Args:
            url: Request URL
            params: Query parameters
            headers: Request headers
            policy: Overrides the client's default policy for this call

        Returns:
            The last response received, successful or not

        Raises:
            NetworkError: When transport failures exhaust all retries
        """
        if not self._client:
            raise RuntimeError("RetryClient must be used as async context manager")

        policy = policy or self.policy
        attempt = 0

        while True:
            try:
                response = await self._client.get(url, params=params, headers=headers)
            except httpx.TransportError as e:
                if attempt >= policy.max_retries:
                    raise NetworkError(str(e) or type(e).__name__) from e

                backoff = policy.backoff_delay(attempt)
                logger.warning(
                    f"Retryable error {type(e).__name__} for {url}, "
                    f"attempt {attempt + 1}/{policy.max_retries + 1}, "
                    f"backing off {backoff:.2f}s"
                )
                self._metrics.record_retry("network")
                attempt += 1
                await self._sleep(backoff)
                continue

            decision = policy.decide(response, attempt, self._clock())
            if decision.action is RetryAction.RETURN:
                if decision.reason == "rate_limit_wait_too_long":
                    logger.warning(
                        f"Rate limit reset for {url} is too far away, "
                        f"returning status {response.status_code} without waiting"
                    )
                return response

            if decision.action is RetryAction.WAIT:
                logger.warning(
                    f"Rate limited by {url}, waiting {decision.delay:.2f}s for reset "
                    f"(attempt {attempt + 1}/{policy.max_retries + 1})"
                )
            else:
                logger.warning(
                    f"Retryable status {response.status_code} from {url}, "
                    f"attempt {attempt + 1}/{policy.max_retries + 1}, "
                    f"backing off {decision.delay:.2f}s"
                )

            self._metrics.record_retry(decision.reason)
            attempt += 1
            await self._sleep(decision.delay)
