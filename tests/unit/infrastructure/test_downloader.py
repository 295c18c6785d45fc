"""Unit tests for HttpDownloader retry behaviour."""

import httpx
import pytest

from refstore.config import DownloadConfig
from refstore.domain.shared.error import DownloadError
from refstore.infrastructure.http.downloader import HttpDownloader

URL = "https://archive.test/release.gz"

NO_WAIT = DownloadConfig(max_attempts=3, base_delay=0.0, max_delay=0.0)


def _downloader(handler) -> HttpDownloader:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpDownloader(client, NO_WAIT)


def _scripted(*responses):
    """Handler replaying ``responses`` in order; exceptions are raised."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        step = responses[len(calls)]
        calls.append(request)
        if isinstance(step, Exception):
            raise step
        return step

    return handler, calls


class TestHttpDownloader:
    @pytest.mark.asyncio
    async def test_returns_body(self):
        handler, calls = _scripted(httpx.Response(200, content=b"payload"))
        assert await _downloader(handler).fetch(URL) == b"payload"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        handler, calls = _scripted(
            httpx.Response(503),
            httpx.Response(502),
            httpx.Response(200, content=b"ok"),
        )
        assert await _downloader(handler).fetch(URL) == b"ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_retries_rate_limit_with_retry_after(self):
        handler, calls = _scripted(
            httpx.Response(429, headers={"Retry-After": "5"}),
            httpx.Response(200, content=b"ok"),
        )
        assert await _downloader(handler).fetch(URL) == b"ok"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_retries_network_errors(self):
        handler, calls = _scripted(
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("slow"),
            httpx.Response(200, content=b"ok"),
        )
        assert await _downloader(handler).fetch(URL) == b"ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        handler, calls = _scripted(httpx.Response(404))
        with pytest.raises(DownloadError, match="404"):
            await _downloader(handler).fetch(URL)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        handler, calls = _scripted(*[httpx.Response(500) for _ in range(3)])
        with pytest.raises(DownloadError, match="after 3 attempts"):
            await _downloader(handler).fetch(URL)
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_fetch_text(self):
        handler, _ = _scripted(httpx.Response(200, text="Release 2024_01"))
        assert await _downloader(handler).fetch_text(URL) == "Release 2024_01"
