import httpx
import pytest

from layercake import HttpxTransport, RequestError, RequestInit, http

API = "https://api.test"


def _handler(seen):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/boom":
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(
            201,
            json={"id": 1},
            headers=[("set-cookie", "a=1"), ("set-cookie", "b=2")],
        )

    return handler


@pytest.mark.asyncio
async def test_httpx_injected_client_end_to_end():
    seen = []
    client = httpx.AsyncClient(transport=httpx.MockTransport(_handler(seen)))
    bound = http(API, HttpxTransport(client)).bind({})
    resp = await bound.post("/items", {"body": {"a": 1}, "headers": {"x-multi": ["1", "2"]}})
    await client.aclose()

    assert resp.status == 201  # noqa: PLR2004
    assert resp.data == {"id": 1}
    assert resp.headers["set-cookie"] == ["a=1", "b=2"]
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == f"{API}/items"
    assert request.content == b'{"a":1}'
    assert request.headers.get_list("x-multi") == ["1", "2"]


@pytest.mark.asyncio
async def test_httpx_short_lived_client_uses_kwargs():
    seen = []
    transport = HttpxTransport(transport=httpx.MockTransport(_handler(seen)))
    raw = await transport(f"{API}/x", RequestInit(method="GET", headers=[("accept", "*/*")]))
    assert raw.status == 201  # noqa: PLR2004
    assert ("set-cookie", "b=2") in raw.headers
    assert seen[0].headers["accept"] == "*/*"


@pytest.mark.asyncio
async def test_httpx_connect_error_becomes_request_error():
    seen = []
    client = httpx.AsyncClient(transport=httpx.MockTransport(_handler(seen)))
    with pytest.raises(RequestError) as exc:
        await http(API, HttpxTransport(client)).bind({}).get("/boom")
    await client.aclose()
    assert exc.value.status is None
    assert isinstance(exc.value.__cause__, httpx.ConnectError)
