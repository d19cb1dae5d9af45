import asyncio
from collections import defaultdict

import httpx
import pytest

from tcbot.data_models.stats import SourceStats
from tcbot.services.stats_source import ExternalStatsSource
from tcbot.utils.exceptions import ExternalConnectionError

BASE_URL = "https://stats.example"
POINTS_PATH = "/user/alice/stats"
UNITS_PATH = "/bonus"


class ScriptedApi:
    """Serves queued (status, body) responses per path, repeating the last one when the queue runs out."""

    def __init__(self, responses):
        self.responses = {path: list(queue) for path, queue in responses.items()}
        self.requests = defaultdict(list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests[path].append(request)
        queue = self.responses[path]
        status, body = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(status, text=body)

    def source(self, **kwargs):
        kwargs.setdefault('retry_sleep_seconds', 0)
        kwargs.setdefault('max_attempts', 2)
        return ExternalStatsSource(base_url=BASE_URL, transport=httpx.MockTransport(self.handler), **kwargs)


def _fetch(source, account="alice", key="secretkey123"):
    async def _run():
        try:
            return await source.fetch_total_stats(account, key)
        finally:
            await source.aclose()
    return asyncio.run(_run())


def _fetch_twice(source):
    async def _run():
        try:
            first = await source.fetch_total_stats("alice", "secretkey123")
            second = await source.fetch_total_stats("alice", "secretkey123")
            return first, second
        finally:
            await source.aclose()
    return asyncio.run(_run())


def test_fetches_points_and_units():
    api = ScriptedApi({
        POINTS_PATH: [(200, '{"earned": 123456, "id": 1}')],
        UNITS_PATH: [(200, '[{"finished": 78, "team": 1}]')],
    })
    assert _fetch(api.source()) == SourceStats(points=123456, units=78)

    points_request = api.requests[POINTS_PATH][0]
    assert points_request.url.params['passkey'] == "secretkey123"
    units_request = api.requests[UNITS_PATH][0]
    assert units_request.url.params['user'] == "alice"
    assert units_request.url.params['passkey'] == "secretkey123"


def test_identical_response_is_requested_once_more():
    api = ScriptedApi({
        POINTS_PATH: [(200, '{"earned": 100}'), (200, '{"earned": 100}'), (200, '{"earned": 150}')],
        UNITS_PATH: [(200, '[{"finished": 1}]')],
    })
    first, second = _fetch_twice(api.source())

    assert first == SourceStats(points=100, units=1)
    assert second == SourceStats(points=150, units=1)
    assert len(api.requests[POINTS_PATH]) == 3
    # Units were identical both times, so exactly one repeat was made and its response used
    assert len(api.requests[UNITS_PATH]) == 3


def test_failed_request_does_not_update_cache():
    api = ScriptedApi({
        POINTS_PATH: [(500, 'server error'), (200, '{"earned": 100}')],
        UNITS_PATH: [(200, '[{"finished": 1}]')],
    })
    source = api.source()

    async def _run():
        try:
            with pytest.raises(ExternalConnectionError):
                await source.fetch_total_stats("alice", "secretkey123")
            return await source.fetch_total_stats("alice", "secretkey123")
        finally:
            await source.aclose()

    assert asyncio.run(_run()) == SourceStats(points=100, units=1)
    assert len(api.requests[POINTS_PATH]) == 2
    assert len(api.requests[UNITS_PATH]) == 1


@pytest.mark.parametrize("bad_body", ['not json', '{"score": 10}'])
def test_unreadable_response_does_not_update_cache(bad_body):
    api = ScriptedApi({
        POINTS_PATH: [(200, bad_body), (200, '{"earned": 100}')],
        UNITS_PATH: [(200, '[{"finished": 1}]')],
    })
    source = api.source()

    async def _run():
        try:
            with pytest.raises(ExternalConnectionError):
                await source.fetch_total_stats("alice", "secretkey123")
            cached_after_failure = dict(source._cached_responses)
            return cached_after_failure, await source.fetch_total_stats("alice", "secretkey123")
        finally:
            await source.aclose()

    cached_after_failure, stats = asyncio.run(_run())
    assert cached_after_failure == {}
    assert stats == SourceStats(points=100, units=1)
    # No repeat request, since the unreadable body was never cached
    assert len(api.requests[POINTS_PATH]) == 2


def test_retries_after_too_many_requests():
    api = ScriptedApi({
        POINTS_PATH: [(429, ''), (200, '{"earned": 5}')],
        UNITS_PATH: [(200, '[{"finished": 2}]')],
    })
    assert _fetch(api.source()) == SourceStats(points=5, units=2)
    assert len(api.requests[POINTS_PATH]) == 2


def test_gives_up_after_max_attempts():
    api = ScriptedApi({
        POINTS_PATH: [(429, '')],
        UNITS_PATH: [(200, '[{"finished": 2}]')],
    })
    with pytest.raises(ExternalConnectionError):
        _fetch(api.source(max_attempts=3))
    assert len(api.requests[POINTS_PATH]) == 3


@pytest.mark.parametrize("status, body", [
    (404, '{"error": "not found"}'),
    (200, ''),
    (200, '   '),
    (200, 'not json'),
    (200, '{"score": 10}'),
    (200, '{"earned": "lots"}'),
])
def test_bad_points_responses_raise(status, body):
    api = ScriptedApi({
        POINTS_PATH: [(status, body)],
        UNITS_PATH: [(200, '[{"finished": 2}]')],
    })
    with pytest.raises(ExternalConnectionError) as error:
        _fetch(api.source())
    assert "passkey" not in error.value.url
    assert error.value.url == f"{BASE_URL}{POINTS_PATH}"


@pytest.mark.parametrize("body", ['{"finished": 2}', '[{"done": 2}]'])
def test_bad_units_responses_raise(body):
    api = ScriptedApi({
        POINTS_PATH: [(200, '{"earned": 5}')],
        UNITS_PATH: [(200, body)],
    })
    with pytest.raises(ExternalConnectionError):
        _fetch(api.source())


def test_no_unit_entries_means_zero_units():
    api = ScriptedApi({
        POINTS_PATH: [(200, '{"earned": 5}')],
        UNITS_PATH: [(200, '[]')],
    })
    assert _fetch(api.source()) == SourceStats(points=5, units=0)


def test_multiple_unit_entries_use_lowest():
    api = ScriptedApi({
        POINTS_PATH: [(200, '{"earned": 5}')],
        UNITS_PATH: [(200, '[{"finished": 40}, {"finished": 12}, {"finished": 30}]')],
    })
    assert _fetch(api.source()) == SourceStats(points=5, units=12)


def test_network_error_raises_external_connection_error():
    def _handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    source = ExternalStatsSource(base_url=BASE_URL, transport=httpx.MockTransport(_handler), retry_sleep_seconds=0)
    with pytest.raises(ExternalConnectionError):
        _fetch(source)


def test_fetch_user_total_stats_stamps_user(make_user):
    api = ScriptedApi({
        "/user/folder3/stats": [(200, '{"earned": 900}')],
        UNITS_PATH: [(200, '[{"finished": 9}]')],
    })
    source = api.source()
    user = make_user(user_id=3)

    async def _run():
        try:
            return await source.fetch_user_total_stats(user)
        finally:
            await source.aclose()

    stats = asyncio.run(_run())
    assert (stats.user_id, stats.points, stats.units) == (3, 900, 9)
    assert stats.timestamp.tzinfo is not None
