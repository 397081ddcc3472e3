from unittest.mock import MagicMock

import pytest
import requests

from layercake import RequestInit, RequestsTransport, http

API = "https://api.test"


def _session(status=200, headers=None, content=b"{}"):
    sess = MagicMock()
    resp = MagicMock()
    resp.status_code = status
    resp.url = f"{API}/x"
    resp.headers = headers or {"Content-Type": "application/json"}
    resp.content = content
    sess.request.return_value = resp
    return sess


@pytest.mark.asyncio
async def test_requests_session_in_worker_thread():
    sess = _session(content=b'{"v": 2}')
    bound = http(API, RequestsTransport(sess, timeout=5)).bind({})
    resp = await bound.post("/x", {"body": {"a": 1}, "headers": {"x-multi": ["1", "2"]}})
    assert resp.data == {"v": 2}
    args, kwargs = sess.request.call_args
    assert args == ("POST", f"{API}/x")
    assert kwargs["timeout"] == 5  # noqa: PLR2004
    assert kwargs["data"] == '{"a":1}'
    # requests takes a single value per header name
    assert kwargs["headers"]["x-multi"] == "1, 2"
    sess.close.assert_not_called()


@pytest.mark.asyncio
async def test_requests_own_session_is_closed(monkeypatch):
    sess = _session()
    monkeypatch.setattr(requests, "Session", lambda: sess)
    raw = await RequestsTransport()(f"{API}/x", RequestInit(method="GET", headers=[]))
    assert raw.status == 200  # noqa: PLR2004
    assert "data" not in sess.request.call_args.kwargs
    sess.close.assert_called_once()


@pytest.mark.asyncio
async def test_requests_repeated_cookie_header_uses_semicolon():
    sess = _session()
    headers = [("cookie", "a=1"), ("accept", "text/plain"), ("cookie", "b=2"), ("accept", "*/*")]
    await RequestsTransport(sess)(f"{API}/x", RequestInit(method="GET", headers=headers))
    sent = sess.request.call_args.kwargs["headers"]
    assert sent["cookie"] == "a=1; b=2"
    assert sent["accept"] == "text/plain, */*"
