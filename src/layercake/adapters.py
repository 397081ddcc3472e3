import asyncio
import contextlib

from .types import RequestInit, TransportResponse


def _body_kwargs(body, text_key: str = "content") -> dict:
    if body is None:
        return {}
    if isinstance(body, (bytes, bytearray, str)):
        return {text_key: body}
    return {"data": body}


# ---------- httpx (async) ----------
class HttpxTransport:
    """Transport over ``httpx.AsyncClient``.

    Reuses ``client`` when given (its connection pool is preserved); otherwise
    opens a short-lived client per call.
    """

    def __init__(self, client=None, **client_kwargs):
        self.client = client
        self._client_kwargs = client_kwargs

    async def __call__(self, url: str, init: RequestInit) -> TransportResponse:
        if self.client is not None:
            return await self._send(self.client, url, init)
        import httpx  # noqa: PLC0415

        async with httpx.AsyncClient(**self._client_kwargs) as client:
            return await self._send(client, url, init)

    async def _send(self, client, url: str, init: RequestInit) -> TransportResponse:
        resp = await client.request(init.method, url, headers=init.headers, **_body_kwargs(init.body))
        return TransportResponse(
            status=resp.status_code,
            url=str(resp.url),
            headers=list(resp.headers.multi_items()),
            content=resp.content,
        )


# ---------- aiohttp (async) ----------
class AiohttpTransport:
    """Transport over ``aiohttp.ClientSession``; the body is read before the response is released."""

    def __init__(self, session=None):
        self.session = session

    async def __call__(self, url: str, init: RequestInit) -> TransportResponse:
        if self.session is not None:
            return await self._send(self.session, url, init)
        import aiohttp  # noqa: PLC0415

        async with aiohttp.ClientSession() as session:
            return await self._send(session, url, init)

    async def _send(self, session, url: str, init: RequestInit) -> TransportResponse:
        async with session.request(
            init.method, url, headers=init.headers, **_body_kwargs(init.body, "data")
        ) as resp:
            content = await resp.read()
            return TransportResponse(
                status=resp.status,
                url=str(resp.url),
                headers=list(resp.headers.items()),
                content=content,
            )


# ---------- requests (sync, run in a worker thread) ----------
class RequestsTransport:
    """Transport over a blocking ``requests.Session`` executed with ``asyncio.to_thread``.

    Cancellation releases the awaiting request immediately, but the worker thread
    finishes the blocking call in the background; pass ``timeout`` (seconds) to
    bound it.
    """

    def __init__(self, session=None, timeout=None):
        self.session = session
        self.timeout = timeout

    async def __call__(self, url: str, init: RequestInit) -> TransportResponse:
        return await asyncio.to_thread(self._send, url, init)

    def _send(self, url: str, init: RequestInit) -> TransportResponse:
        session = self.session
        own_session = session is None
        if own_session:
            import requests  # noqa: PLC0415

            session = requests.Session()
        # requests takes one value per header name; cookie pairs join with "; "
        headers: dict[str, str] = {}
        for key, value in init.headers:
            if key in headers:
                sep = "; " if key.lower() == "cookie" else ", "
                headers[key] = f"{headers[key]}{sep}{value}"
            else:
                headers[key] = value
        try:
            resp = session.request(
                init.method,
                url,
                headers=headers,
                timeout=self.timeout,
                **_body_kwargs(init.body, "data"),
            )
            return TransportResponse(
                status=resp.status_code,
                url=resp.url or url,
                headers=list(resp.headers.items()),
                content=resp.content,
            )
        finally:
            if own_session:
                with contextlib.suppress(Exception):
                    session.close()
