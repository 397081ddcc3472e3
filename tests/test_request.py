import asyncio

import pytest

from layercake import (
    AbortController,
    AbortError,
    RequestError,
    RequestTimeoutError,
    TransportResponse,
    request,
)

JSON = [("content-type", "application/json")]


def _fetch(status=200, headers=None, content=b'{"ok": true}'):
    calls = []

    async def fetch(url, init):
        calls.append((url, init))
        return TransportResponse(status, url, JSON if headers is None else headers, content)

    return fetch, calls


@pytest.mark.asyncio
async def test_success_parses_json_and_builds_init():
    fetch, calls = _fetch()
    resp = await request(
        "POST /items/{id}",
        {"params": {"id": 7}, "body": {"a": 1}, "headers": {"X-Trace": "t"}},
        fetch=fetch,
        base_url="https://api.test",
    )
    assert resp.status == 200  # noqa: PLR2004
    assert resp.data == {"ok": True}
    url, init = calls[0]
    assert url == "https://api.test/items/7"
    assert init.method == "POST"
    assert ("x-trace", "t") in init.headers
    assert ("content-type", "application/json") in init.headers
    assert init.body == '{"a":1}'


@pytest.mark.asyncio
async def test_multi_value_headers_become_repeated_pairs():
    fetch, calls = _fetch()
    await request("GET /x", {"headers": {"set-cookie": ["a", "b"]}}, fetch=fetch)
    _, init = calls[0]
    assert [v for k, v in init.headers if k == "set-cookie"] == ["a", "b"]


@pytest.mark.asyncio
async def test_text_and_empty_bodies():
    fetch, _ = _fetch(headers=[("content-type", "text/plain")], content=b"hello")
    assert (await request("GET /t", fetch=fetch)).data == "hello"

    fetch, _ = _fetch(status=204, content=b"")
    assert (await request("DELETE /t", fetch=fetch)).data is None

    fetch, _ = _fetch(content=b"not json")
    assert (await request("GET /t", fetch=fetch)).data == "not json"

    fetch, _ = _fetch()
    assert (await request("GET /t", {"parse_body": False}, fetch=fetch)).data is None


@pytest.mark.asyncio
async def test_error_status_raises_request_error_with_response():
    fetch, _ = _fetch(status=404, content=b'{"error": "missing"}')
    with pytest.raises(RequestError) as exc:
        await request("GET /missing", fetch=fetch)
    assert exc.value.status == 404  # noqa: PLR2004
    assert exc.value.response.data == {"error": "missing"}
    assert exc.value.request.url == "/missing"


@pytest.mark.asyncio
async def test_transport_failure_is_wrapped_without_status():
    async def fetch(url, init):
        raise ConnectionError("refused")

    with pytest.raises(RequestError) as exc:
        await request("GET /down", fetch=fetch)
    assert exc.value.status is None
    assert isinstance(exc.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_pre_aborted_signal_never_calls_transport():
    fetch, calls = _fetch()
    controller = AbortController()
    controller.abort()
    with pytest.raises(AbortError):
        await request("GET /x", {"signal": controller.signal}, fetch=fetch)
    assert calls == []


@pytest.mark.asyncio
async def test_abort_during_transport_cancels_it():
    cancelled = asyncio.Event()

    async def fetch(url, init):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    controller = AbortController()
    asyncio.get_running_loop().call_later(0.01, controller.abort)
    with pytest.raises(AbortError):
        await request("GET /slow", {"signal": controller.signal}, fetch=fetch)
    await asyncio.wait_for(cancelled.wait(), timeout=1)


@pytest.mark.asyncio
async def test_timeout_raises_timeout_error():
    async def fetch(url, init):
        await asyncio.sleep(10)

    with pytest.raises(RequestTimeoutError) as exc:
        await request("GET /slow", {"timeout": 20}, fetch=fetch)
    assert isinstance(exc.value, AbortError)
    assert not isinstance(exc.value, RequestError)
