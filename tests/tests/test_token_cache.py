import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from delegation_sas.dto.models import BearerToken
from delegation_sas.exceptions.sas_exception import TokenRequestFailed
from delegation_sas.services import token_cache as token_cache_module
from delegation_sas.services.token_cache import TokenCache
from tests.mock_data.delegation_key_details import OAuthTokenDetails

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TokenEndpoint:
    """Counts requests and answers with a numbered token or a fixed error status."""

    def __init__(self, status_code=200, delay=0.0):
        self.status_code = status_code
        self.delay = delay
        self.requests = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json=OAuthTokenDetails.error_response.value)
        body = dict(OAuthTokenDetails.token_response.value, access_token=f"token-{len(self.requests)}")
        return httpx.Response(200, json=body)


@pytest.fixture
def clock(monkeypatch):
    fake_clock = FakeClock(NOW)
    monkeypatch.setattr(token_cache_module, "utc_now", fake_clock)
    return fake_clock


def make_cache(endpoint):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    return TokenCache(http_client=http_client, tenant_id="tenant-id", client_id="client-id",
                      client_secret="client-secret")


@pytest.mark.asyncio
async def test_get_token_requests_client_credentials(clock):
    endpoint = TokenEndpoint()
    cache = make_cache(endpoint)

    token = await cache.get_token()

    assert token.access_token == "token-1"
    assert token.token_type == "Bearer"
    request = endpoint.requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://login.microsoftonline.com/tenant-id/oauth2/v2.0/token"
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    form = parse_qs(request.content.decode("utf-8"))
    assert form == {
        "client_id": ["client-id"],
        "scope": ["https://storage.azure.com/.default"],
        "client_secret": ["client-secret"],
        "grant_type": ["client_credentials"],
    }


@pytest.mark.asyncio
async def test_expiry_is_computed_at_receipt(clock):
    cache = make_cache(TokenEndpoint())

    token = await cache.get_token()

    assert token.expires_at == NOW + timedelta(seconds=3599)


@pytest.mark.asyncio
async def test_cached_token_is_reused(clock):
    endpoint = TokenEndpoint()
    cache = make_cache(endpoint)

    first = await cache.get_token()
    clock.now = NOW + timedelta(minutes=30)
    second = await cache.get_token()

    assert first is second
    assert len(endpoint.requests) == 1


@pytest.mark.asyncio
async def test_single_refresh_around_expiry(clock):
    endpoint = TokenEndpoint()
    cache = make_cache(endpoint)
    await cache.get_token()
    expires_at = NOW + timedelta(seconds=3599)

    clock.now = expires_at - timedelta(milliseconds=1)
    before = await cache.get_token()
    clock.now = expires_at
    after = await cache.get_token()
    clock.now = expires_at + timedelta(milliseconds=1)
    again = await cache.get_token()

    assert before.access_token == "token-1"
    assert after.access_token == "token-2"
    assert again is after
    assert len(endpoint.requests) == 2


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_fetch(clock):
    endpoint = TokenEndpoint(delay=0.05)
    cache = make_cache(endpoint)

    tokens = await asyncio.gather(*[cache.get_token() for _ in range(10)])

    assert len(endpoint.requests) == 1
    assert {token.access_token for token in tokens} == {"token-1"}


@pytest.mark.asyncio
async def test_force_renew_fetches_new_token(clock):
    endpoint = TokenEndpoint()
    cache = make_cache(endpoint)

    first = await cache.get_token()
    renewed = await cache.get_token(force_renew=True)

    assert first.access_token == "token-1"
    assert renewed.access_token == "token-2"
    assert len(endpoint.requests) == 2


@pytest.mark.asyncio
async def test_concurrent_forced_renewals_of_same_token_share_one_fetch(clock):
    endpoint = TokenEndpoint()
    cache = make_cache(endpoint)
    rejected = await cache.get_token()
    endpoint.delay = 0.05

    tokens = await asyncio.gather(*[cache.get_token(force_renew=True, rejected=rejected) for _ in range(5)])

    assert len(endpoint.requests) == 2
    assert {token.access_token for token in tokens} == {"token-2"}


@pytest.mark.asyncio
async def test_forced_renewal_of_current_token_fetches_new_one(clock):
    endpoint = TokenEndpoint()
    cache = make_cache(endpoint)
    rejected = await cache.get_token()

    renewed = await cache.get_token(force_renew=True, rejected=rejected)
    again = await cache.get_token(force_renew=True, rejected=renewed)

    assert renewed.access_token == "token-2"
    assert again.access_token == "token-3"
    assert len(endpoint.requests) == 3


@pytest.mark.asyncio
async def test_failed_request_raises_with_status_code(clock):
    cache = make_cache(TokenEndpoint(status_code=401))

    with pytest.raises(TokenRequestFailed) as error:
        await cache.get_token()

    assert error.value.status_code == 401
    assert cache._token is None


@pytest.mark.asyncio
async def test_valid_token_survives_endpoint_outage(clock):
    endpoint = TokenEndpoint()
    cache = make_cache(endpoint)
    token = await cache.get_token()

    endpoint.status_code = 503
    clock.now = NOW + timedelta(minutes=10)

    assert await cache.get_token() is token
    assert len(endpoint.requests) == 1


@pytest.mark.asyncio
async def test_failed_forced_renewal_evicts_token(clock):
    endpoint = TokenEndpoint()
    cache = make_cache(endpoint)
    await cache.get_token()
    endpoint.status_code = 500

    with pytest.raises(TokenRequestFailed):
        await cache.get_token(force_renew=True)
    with pytest.raises(TokenRequestFailed):
        await cache.get_token()

    assert len(endpoint.requests) == 3


@pytest.mark.asyncio
async def test_expired_token_is_not_returned_after_failed_renewal(clock):
    endpoint = TokenEndpoint()
    cache = make_cache(endpoint)
    await cache.get_token()
    endpoint.status_code = 400
    clock.now = NOW + timedelta(hours=2)

    with pytest.raises(TokenRequestFailed) as error:
        await cache.get_token()

    assert error.value.status_code == 400
    endpoint.status_code = 200
    token = await cache.get_token()
    assert token.access_token == "token-3"


@pytest.mark.asyncio
async def test_transport_errors_propagate(clock):
    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    cache = make_cache(timeout)

    with pytest.raises(httpx.ReadTimeout):
        await cache.get_token()
    assert cache._token is None


def test_bearer_token_validity():
    token = BearerToken(access_token="abc", token_type="Bearer", expires_at=NOW)

    assert token.is_valid(NOW - timedelta(seconds=1))
    assert not token.is_valid(NOW)
