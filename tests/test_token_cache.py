"""Tests for the application token cache."""
import asyncio

import httpx
import pytest

from market_intel.auth.token_cache import CachedToken, CredentialCache
from market_intel.errors import AuthError, ExternalServiceError

TOKEN_URL = "https://auth.example.test/identity/v1/oauth2/token"


class Clock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _cache(handler, clock=None, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    params = dict(
        client_id="client-id",
        client_secret="client-secret",
        token_url=TOKEN_URL,
        user_token="",
        safety_margin=60,
        client=client,
        clock=clock or Clock(),
    )
    params.update(kwargs)
    return CredentialCache(**params)


def _token_handler(requests, expires_in=7200):
    def handler(request):
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "access_token": f"token-{len(requests)}",
                "expires_in": expires_in,
                "token_type": "Application Access Token",
            },
        )

    return handler


def test_cached_token_freshness():
    """Test the safety margin is applied to freshness."""
    token = CachedToken(value="t", expires_at=1_000.0)
    assert token.is_fresh(900.0, 60) is True
    assert token.is_fresh(940.0, 60) is False


def test_consecutive_calls_reuse_token():
    """Test two calls inside the validity window exchange once."""
    requests = []
    cache = _cache(_token_handler(requests))

    async def scenario():
        first = await cache.get_token()
        second = await cache.get_token()
        await cache.aclose()
        return first, second

    first, second = asyncio.run(scenario())
    assert first == second == "token-1"
    assert len(requests) == 1
    assert cache.exchange_count == 1


def test_expired_token_triggers_one_exchange():
    """Test a call after expiry exchanges exactly once more."""
    requests = []
    clock = Clock()
    cache = _cache(_token_handler(requests, expires_in=600), clock=clock)

    async def scenario():
        first = await cache.get_token()
        clock.now += 600
        second = await cache.get_token()
        third = await cache.get_token()
        return first, second, third

    first, second, third = asyncio.run(scenario())
    assert first == "token-1"
    assert second == third == "token-2"
    assert cache.exchange_count == 2


def test_token_inside_safety_margin_is_refreshed():
    """Test a token within 60 seconds of expiry is treated as stale."""
    requests = []
    clock = Clock()
    cache = _cache(_token_handler(requests, expires_in=600), clock=clock)

    async def scenario():
        await cache.get_token()
        clock.now += 545
        return await cache.get_token()

    assert asyncio.run(scenario()) == "token-2"


def test_concurrent_callers_share_one_exchange():
    """Test concurrent readers on a cold cache cause a single exchange."""
    requests = []
    cache = _cache(_token_handler(requests))

    async def scenario():
        return await asyncio.gather(*(cache.get_token() for _ in range(5)))

    tokens = asyncio.run(scenario())
    assert set(tokens) == {"token-1"}
    assert len(requests) == 1


def test_exchange_request_shape():
    """Test the grant is a basic-auth client-credentials form post."""
    requests = []
    cache = _cache(_token_handler(requests))
    asyncio.run(cache.get_token())

    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == TOKEN_URL
    assert request.headers["Authorization"].startswith("Basic ")
    assert b"grant_type=client_credentials" in request.content


def test_unconfigured_credentials_raise_auth_error():
    """Test missing client id/secret fails before any request."""
    requests = []
    cache = _cache(_token_handler(requests), client_id="", client_secret="")
    with pytest.raises(AuthError):
        asyncio.run(cache.get_token())
    assert requests == []


def test_rejected_exchange_raises_auth_error():
    """Test a rejected grant surfaces as AuthError with the description."""

    def handler(request):
        return httpx.Response(401, json={"error": "invalid_client", "error_description": "client authentication failed"})

    cache = _cache(handler)
    with pytest.raises(AuthError, match="client authentication failed"):
        asyncio.run(cache.get_token())
    assert cache.current is None


def test_server_error_raises_external_service_error():
    """Test identity endpoint outages are external service errors."""

    def handler(request):
        return httpx.Response(503, text="unavailable")

    cache = _cache(handler)
    with pytest.raises(ExternalServiceError):
        asyncio.run(cache.get_token())


def test_user_token_override_skips_exchange():
    """Test a configured user token is returned without an exchange."""
    requests = []
    cache = _cache(_token_handler(requests), user_token="manual-token")
    assert asyncio.run(cache.get_token()) == "manual-token"
    assert requests == []


def test_invalidate_forces_new_exchange():
    """Test invalidation drops the cached pair."""
    requests = []
    cache = _cache(_token_handler(requests))

    async def scenario():
        await cache.get_token()
        cache.invalidate()
        return await cache.get_token()

    assert asyncio.run(scenario()) == "token-2"
