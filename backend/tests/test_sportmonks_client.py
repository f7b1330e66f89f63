"""Tests for the SportMonks client against a mocked transport."""

import asyncio

import httpx
import pytest

from conftest import make_config
from sportmonks_api.client import (
    SportMonksAPIError,
    SportMonksAPINonRetryableError,
    SportMonksAPIRateLimitError,
    SportMonksClient,
)


def _client(handler, **config_overrides):
    config = make_config(**config_overrides)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SportMonksClient(config, http_client=http_client)


def test_get_fixtures_sends_filters_and_token():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"data": [{"id": 1}, {"id": 2}]})

    client = _client(handler, sportmonks_league_id="1")
    fixtures = asyncio.run(client.get_fixtures("2024-04-09,2024-04-12"))

    assert [f["id"] for f in fixtures] == [1, 2]
    params = seen[0].url.params
    assert seen[0].url.path.endswith("/fixtures")
    assert params["filter[starts_between]"] == "2024-04-09,2024-04-12"
    assert params["include"] == "localteam,visitorteam"
    assert params["filter[league_id]"] == "1"
    assert params["api_token"] == "test-token"


def test_get_fixture_unwraps_data():
    def handler(request):
        assert request.url.path.endswith("/fixtures/100")
        assert request.url.params["include"] == "batting.batsman"
        return httpx.Response(200, json={"data": {"id": 100, "batting": []}})

    data = asyncio.run(_client(handler).get_fixture(100, "batting.batsman"))
    assert data == {"id": 100, "batting": []}


def test_retries_server_errors_then_succeeds():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) < 3:
            return httpx.Response(503, text="unavailable")
        return httpx.Response(200, json={"data": {"id": 5}})

    data = asyncio.run(_client(handler, max_retries=2).get_fixture(5, "bowling.bowler"))

    assert data == {"id": 5}
    assert len(attempts) == 3


def test_gives_up_after_retries():
    def handler(request):
        return httpx.Response(500, text="boom")

    with pytest.raises(SportMonksAPIError):
        asyncio.run(_client(handler, max_retries=1).get_fixture(5, "bowling.bowler"))


def test_client_errors_are_not_retried():
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(404, json={"error": "not found"})

    with pytest.raises(SportMonksAPINonRetryableError):
        asyncio.run(_client(handler).get_fixture(5, "batting.batsman"))
    assert len(attempts) == 1


def test_network_errors_are_wrapped():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(SportMonksAPIError):
        asyncio.run(_client(handler, max_retries=1).get_fixtures("2024-04-09,2024-04-12"))


def test_malformed_body_raises():
    def handler(request):
        return httpx.Response(200, text="<html>blocked</html>")

    with pytest.raises(SportMonksAPIError):
        asyncio.run(_client(handler).get_fixtures("2024-04-09,2024-04-12"))


def test_missing_token_is_rejected_without_request():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(SportMonksAPINonRetryableError):
        asyncio.run(_client(handler, sportmonks_api_token="").get_squad(2, 1484))


@pytest.mark.parametrize("retry_after", ["Wed, 21 Oct 2026 07:28:00 GMT", "soon", "2"])
def test_rate_limit_retry_after_forms(retry_after):
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(429, headers={"Retry-After": retry_after})
        return httpx.Response(200, json={"data": [{"id": 7}]})

    fixtures = asyncio.run(_client(handler, max_retries=1).get_fixtures("2024-04-09,2024-04-12"))

    assert [f["id"] for f in fixtures] == [7]
    assert len(attempts) == 2


def test_retry_after_parsing():
    client = _client(lambda request: httpx.Response(200, json={"data": []}), retry_backoff_base=0.0)

    assert client._retry_after("30", 0) == 30.0
    assert client._retry_after("Thu, 01 Jan 1970 00:00:00 GMT", 0) == 0.0
    assert client._retry_after("not-a-date", 0) == 0.0
    assert client._retry_after(None, 0) == 0.0


def test_rate_limited_until_retries_run_out():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"})

    with pytest.raises(SportMonksAPIRateLimitError):
        asyncio.run(_client(handler, max_retries=1).get_fixtures("2024-04-09,2024-04-12"))
