"""Tests for the retry policy and retry client."""

import httpx
import pytest
import respx

from changelog_hub.ingestion.http_client import (
    ApiError,
    FallbackExhausted,
    NetworkError,
    RateLimitExceeded,
    RateLimitInfo,
    RetryAction,
    RetryClient,
    RetryPolicy,
    parse_gitlab_rate_limit,
    parse_standard_rate_limit,
)
from changelog_hub.ingestion.schemas import Provider

NOW = 1_700_000_000.0
URL = "https://api.example.com/repos/octo/hello/releases"


def _response(status: int, **headers: str) -> httpx.Response:
    return httpx.Response(status, headers={k.replace("_", "-"): v for k, v in headers.items()})


class TestRateLimitParsers:
    """Tests for provider rate-limit header parsing."""

    def test_standard_headers(self):
        """Should read X-RateLimit-Remaining and X-RateLimit-Reset."""
        response = _response(403, x_ratelimit_remaining="0", x_ratelimit_reset=str(int(NOW) + 30))

        info = parse_standard_rate_limit(response, NOW)

        assert info == RateLimitInfo(remaining=0, reset_at=NOW + 30)
        assert info.exhausted is True

    def test_gitlab_headers(self):
        """Should read GitLab's RateLimit-* headers."""
        response = _response(429, ratelimit_remaining="0", ratelimit_reset=str(int(NOW) + 4))

        info = parse_gitlab_rate_limit(response, NOW)

        assert info.remaining == 0
        assert info.reset_at == NOW + 4

    def test_gitlab_parser_ignores_standard_headers(self):
        """Should not read X-RateLimit-* headers for GitLab."""
        response = _response(429, x_ratelimit_reset=str(int(NOW) + 4))
        assert parse_gitlab_rate_limit(response, NOW).reset_at is None

    def test_retry_after_is_relative(self):
        """Should turn Retry-After seconds into an absolute reset time."""
        response = _response(429, retry_after="7")
        assert parse_standard_rate_limit(response, NOW).reset_at == NOW + 7

    def test_missing_and_malformed_headers(self):
        """Should treat unparseable headers as absent."""
        response = _response(429, x_ratelimit_remaining="lots")

        info = parse_standard_rate_limit(response, NOW)

        assert info == RateLimitInfo(remaining=None, reset_at=None)
        assert info.exhausted is False

    def test_infinite_header_values_are_ignored(self):
        """Should treat infinite header values as absent instead of raising."""
        info = parse_standard_rate_limit(
            _response(429, x_ratelimit_remaining="inf", x_ratelimit_reset="inf", retry_after="-inf"),
            NOW,
        )

        assert info == RateLimitInfo(remaining=None, reset_at=None)


class TestRetryPolicy:
    """Tests for RetryPolicy decisions (no network I/O)."""

    def test_default_values(self):
        """Should default to three retries with a 1.5s base delay."""
        policy = RetryPolicy()

        assert policy.max_retries == 3
        assert policy.base_delay == 1.5
        assert policy.max_rate_limit_wait == 10.0
        assert policy.rate_limit_buffer == 0.5

    def test_backoff_is_exponential(self, fast_policy: RetryPolicy):
        """Should double the delay on each attempt."""
        assert fast_policy.backoff_delay(0) == 1.5
        assert fast_policy.backoff_delay(1) == 3.0
        assert fast_policy.backoff_delay(2) == 6.0

    def test_backoff_jitter_is_bounded(self):
        """Should keep jitter within max_jitter."""
        policy = RetryPolicy(base_delay=1.0, max_jitter=0.5)
        delays = [policy.backoff_delay(0) for _ in range(50)]
        assert all(1.0 <= d <= 1.5 for d in delays)

    def test_success_returns(self, fast_policy: RetryPolicy):
        """Should return a 2xx response as-is."""
        assert fast_policy.decide(_response(200), 0, NOW).action is RetryAction.RETURN

    @pytest.mark.parametrize("status", [400, 401, 404, 422])
    def test_client_errors_return_immediately(self, fast_policy: RetryPolicy, status: int):
        """Should not retry 4xx errors other than rate limits."""
        assert fast_policy.decide(_response(status), 0, NOW).action is RetryAction.RETURN

    def test_server_error_backs_off(self, fast_policy: RetryPolicy):
        """Should back off exponentially on 5xx."""
        decision = fast_policy.decide(_response(503), 1, NOW)

        assert decision.action is RetryAction.BACKOFF
        assert decision.delay == 3.0
        assert decision.reason == "server_error"

    def test_server_error_returns_when_retries_spent(self, fast_policy: RetryPolicy):
        """Should return the 5xx response once retries are spent."""
        assert fast_policy.decide(_response(500), 3, NOW).action is RetryAction.RETURN

    def test_429_with_near_reset_waits(self, fast_policy: RetryPolicy):
        """Should wait until the reset plus buffer when it is near."""
        response = _response(429, x_ratelimit_reset=str(int(NOW) + 5))

        decision = fast_policy.decide(response, 0, NOW)

        assert decision.action is RetryAction.WAIT
        assert decision.delay == 5.5

    def test_429_with_reset_exactly_at_limit_waits(self, fast_policy: RetryPolicy):
        """Should still wait when the reset is exactly at the wait cap."""
        response = _response(429, x_ratelimit_reset=str(int(NOW) + 10))
        assert fast_policy.decide(response, 0, NOW).action is RetryAction.WAIT

    def test_429_with_far_reset_returns(self, fast_policy: RetryPolicy):
        """Should give up when the reset is beyond the wait cap."""
        response = _response(429, x_ratelimit_reset=str(int(NOW) + 3600))

        decision = fast_policy.decide(response, 0, NOW)

        assert decision.action is RetryAction.RETURN
        assert decision.reason == "rate_limit_wait_too_long"

    def test_429_with_past_reset_waits_base_delay(self, fast_policy: RetryPolicy):
        """Should wait base delay plus buffer when the reset has passed."""
        response = _response(429, x_ratelimit_reset=str(int(NOW) - 5))

        decision = fast_policy.decide(response, 0, NOW)

        assert decision.action is RetryAction.WAIT
        assert decision.delay == 2.0

    def test_429_without_reset_backs_off(self, fast_policy: RetryPolicy):
        """Should back off when no reset time is advertised."""
        decision = fast_policy.decide(_response(429), 0, NOW)

        assert decision.action is RetryAction.BACKOFF
        assert decision.reason == "rate_limit"

    def test_429_returns_when_retries_spent(self, fast_policy: RetryPolicy):
        """Should return the 429 once retries are spent."""
        response = _response(429, x_ratelimit_reset=str(int(NOW) + 2))
        assert fast_policy.decide(response, 3, NOW).action is RetryAction.RETURN

    def test_403_with_exhausted_quota_waits(self, fast_policy: RetryPolicy):
        """Should treat 403 with zero remaining quota as a rate limit."""
        response = _response(
            403, x_ratelimit_remaining="0", x_ratelimit_reset=str(int(NOW) + 3)
        )

        decision = fast_policy.decide(response, 0, NOW)

        assert decision.action is RetryAction.WAIT
        assert decision.delay == 3.5

    def test_403_with_quota_left_is_not_a_rate_limit(self, fast_policy: RetryPolicy):
        """Should treat 403 with quota left as an unexpected status."""
        response = _response(
            403, x_ratelimit_remaining="42", x_ratelimit_reset=str(int(NOW) + 3)
        )

        decision = fast_policy.decide(response, 0, NOW)

        assert decision.action is RetryAction.BACKOFF
        assert decision.reason == "unexpected_status"

    def test_with_parser_swaps_header_semantics(self, fast_policy: RetryPolicy):
        """Should use the swapped-in parser for rate-limit headers."""
        gitlab_policy = fast_policy.with_parser(parse_gitlab_rate_limit)
        response = _response(429, ratelimit_reset=str(int(NOW) + 4))

        assert gitlab_policy.decide(response, 0, NOW).delay == 4.5
        assert fast_policy.decide(response, 0, NOW).action is RetryAction.BACKOFF


class TestRetryClient:
    """Tests for RetryClient against mocked HTTP."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_success_on_first_attempt(self, fast_policy, recording_sleep):
        """Should return the first successful response without sleeping."""
        route = respx.get(URL).mock(return_value=httpx.Response(200, json=[]))

        async with RetryClient(fast_policy, sleep=recording_sleep, clock=lambda: NOW) as client:
            response = await client.execute(URL, params={"per_page": 8})

        assert response.status_code == 200
        assert route.call_count == 1
        assert route.calls[0].request.url.params["per_page"] == "8"
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_sends_headers(self, fast_policy, recording_sleep):
        """Should forward request headers."""
        route = respx.get(URL).mock(return_value=httpx.Response(200, json=[]))

        async with RetryClient(fast_policy, sleep=recording_sleep) as client:
            await client.execute(URL, headers={"Authorization": "Bearer t0k"})

        assert route.calls[0].request.headers["Authorization"] == "Bearer t0k"

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_with_near_reset_retries_after_wait(self, fast_policy, recording_sleep):
        """Should sleep until reset and retry."""
        route = respx.get(URL).mock(
            side_effect=[
                httpx.Response(429, headers={"x-ratelimit-reset": str(int(NOW) + 5)}),
                httpx.Response(200, json=[]),
            ]
        )

        async with RetryClient(fast_policy, sleep=recording_sleep, clock=lambda: NOW) as client:
            response = await client.execute(URL)

        assert response.status_code == 200
        assert route.call_count == 2
        assert recording_sleep.delays == [5.5]

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_with_far_reset_returns_without_retry(self, fast_policy, recording_sleep):
        """Should return the 429 without sleeping when the reset is far off."""
        route = respx.get(URL).mock(
            return_value=httpx.Response(429, headers={"x-ratelimit-reset": str(int(NOW) + 3600)})
        )

        async with RetryClient(fast_policy, sleep=recording_sleep, clock=lambda: NOW) as client:
            response = await client.execute(URL)

        assert response.status_code == 429
        assert route.call_count == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_infinite_reset_header_falls_back_to_backoff(self, fast_policy, recording_sleep):
        """Should back off and retry when the reset header is infinite."""
        route = respx.get(URL).mock(
            side_effect=[
                httpx.Response(429, headers={"x-ratelimit-reset": "inf"}),
                httpx.Response(200, json=[]),
            ]
        )

        async with RetryClient(fast_policy, sleep=recording_sleep, clock=lambda: NOW) as client:
            response = await client.execute(URL)

        assert response.status_code == 200
        assert route.call_count == 2
        assert recording_sleep.delays == [1.5]

    @pytest.mark.asyncio
    @respx.mock
    async def test_not_found_is_not_retried(self, fast_policy, recording_sleep):
        """Should return 404 after a single request."""
        route = respx.get(URL).mock(return_value=httpx.Response(404, text="Not Found"))

        async with RetryClient(fast_policy, sleep=recording_sleep) as client:
            response = await client.execute(URL)

        assert response.status_code == 404
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_errors_return_last_response(self, fast_policy, recording_sleep):
        """Should return the last 5xx after exhausting retries."""
        route = respx.get(URL).mock(return_value=httpx.Response(502))

        async with RetryClient(fast_policy, sleep=recording_sleep) as client:
            response = await client.execute(URL)

        assert response.status_code == 502
        assert route.call_count == 4
        assert recording_sleep.delays == [1.5, 3.0, 6.0]

    @pytest.mark.asyncio
    @respx.mock
    async def test_recovers_after_server_error(self, fast_policy, recording_sleep):
        """Should return the success that follows a 5xx."""
        route = respx.get(URL).mock(
            side_effect=[httpx.Response(500), httpx.Response(200, json=[])]
        )

        async with RetryClient(fast_policy, sleep=recording_sleep) as client:
            response = await client.execute(URL)

        assert response.status_code == 200
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_errors_raise_after_retries(self, fast_policy, recording_sleep):
        """Should raise NetworkError once transport retries are spent."""
        route = respx.get(URL).mock(side_effect=httpx.ConnectError("connection refused"))

        async with RetryClient(fast_policy, sleep=recording_sleep) as client:
            with pytest.raises(NetworkError) as exc_info:
                await client.execute(URL)

        assert str(exc_info.value) == "Network error: connection refused"
        assert route.call_count == 4
        assert recording_sleep.delays == [1.5, 3.0, 6.0]

    @pytest.mark.asyncio
    @respx.mock
    async def test_recovers_after_network_error(self, fast_policy, recording_sleep):
        """Should return the success that follows a timeout."""
        respx.get(URL).mock(
            side_effect=[httpx.ReadTimeout("timed out"), httpx.Response(200, json=[])]
        )

        async with RetryClient(fast_policy, sleep=recording_sleep) as client:
            response = await client.execute(URL)

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_execute_requires_context_manager(self, fast_policy):
        """Should refuse to execute outside the async context manager."""
        client = RetryClient(fast_policy)
        with pytest.raises(RuntimeError, match="context manager"):
            await client.execute(URL)


class TestErrors:
    """Tests for the error taxonomy."""

    def test_api_error_message(self):
        """Should format provider, status and body."""
        error = ApiError(Provider.BITBUCKET, 401, "Unauthorized")

        assert str(error) == "Bitbucket API 401: Unauthorized"
        assert error.status_code == 401
        assert error.provider is Provider.BITBUCKET

    def test_rate_limit_exceeded_is_api_error(self):
        """Should subclass ApiError."""
        assert isinstance(RateLimitExceeded(Provider.GITLAB, 429, "slow down"), ApiError)

    def test_fallback_exhausted_prefers_fallback_error(self):
        """Should report the fallback error when there is one."""
        primary = ApiError(Provider.GITHUB, 404, "Not Found")
        fallback = ApiError(Provider.GITHUB, 409, "Git Repository is empty.")

        assert str(FallbackExhausted(primary, fallback)) == "Github API 409: Git Repository is empty."

    def test_fallback_exhausted_uses_primary_without_fallback_error(self):
        """Should report the primary error when the fallback did not fail."""
        primary = ApiError(Provider.GITHUB, 404, "Not Found")

        error = FallbackExhausted(primary, None)

        assert str(error) == "Github API 404: Not Found"
        assert error.status_code == 404
