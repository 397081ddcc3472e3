import pytest

from layercake import TransportResponse, compose, http, with_tracing

API = "https://api.test"


def _fetch():
    calls = []

    async def fetch(url, init):
        calls.append(init)
        return TransportResponse(200, url, [], b"")

    return fetch, calls


@pytest.mark.asyncio
async def test_header_from_ctx():
    fetch, calls = _fetch()
    client = compose(http, with_tracing(get_id=lambda ctx: ctx["request_id"]))(API, fetch)
    await client.bind({"request_id": "req-1"}).get("/x")
    assert dict(calls[0].headers)["x-request-id"] == "req-1"


@pytest.mark.asyncio
async def test_custom_header_and_async_id():
    async def get_id(ctx):
        return "async-id"

    fetch, calls = _fetch()
    await compose(http, with_tracing("X-Correlation-Id", get_id))(API, fetch).bind({}).get("/x")
    assert dict(calls[0].headers)["x-correlation-id"] == "async-id"


@pytest.mark.asyncio
async def test_existing_header_is_never_overwritten():
    fetch, calls = _fetch()
    client = compose(http, with_tracing(get_id=lambda ctx: "from-ctx"))(API, fetch)
    await client.bind({}).get("/x", {"headers": {"X-Request-Id": "caller"}})
    assert dict(calls[0].headers)["x-request-id"] == "caller"


@pytest.mark.asyncio
async def test_failing_or_blank_id_skips_header():
    def broken(ctx):
        raise RuntimeError("no id")

    for get_id in (broken, lambda ctx: "  ", lambda ctx: None, None):
        fetch, calls = _fetch()
        await compose(http, with_tracing(get_id=get_id))(API, fetch).bind({}).get("/x")
        assert "x-request-id" not in dict(calls[0].headers)
