"""httpx-backed Downloader with exponential backoff."""

import asyncio
import logging
import random

import httpx

from refstore.config import DownloadConfig
from refstore.domain.ingest.port.source import Downloader
from refstore.domain.shared.error import DownloadError

logger = logging.getLogger(__name__)


class HttpDownloader(Downloader):
    """Fetches archive files, retrying 429/5xx, timeouts and network errors.

    Uses exponential backoff with jitter and respects Retry-After. Other 4xx
    responses fail immediately.
    """

    def __init__(self, client: httpx.AsyncClient, config: DownloadConfig) -> None:
        self._client = client
        self._config = config

    def _backoff(self, attempt: int) -> float:
        return min(
            self._config.base_delay * (2**attempt) + random.uniform(0, 1), self._config.max_delay
        )

    async def fetch(self, url: str) -> bytes:
        resp = await self._request_with_retry(url)
        return resp.content

    async def fetch_text(self, url: str) -> str:
        resp = await self._request_with_retry(url)
        return resp.text

    async def _request_with_retry(self, url: str) -> httpx.Response:
        attempts = self._config.max_attempts
        last_error: str = "no attempts made"

        for attempt in range(attempts):
            try:
                resp = await self._client.get(url)
            except httpx.TimeoutException as e:
                last_error = f"timeout: {e}"
                delay = self._backoff(attempt)
                logger.warning(
                    f"Timeout fetching {url}, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{attempts})"
                )
                await asyncio.sleep(delay)
                continue
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                delay = self._backoff(attempt)
                logger.warning(
                    f"Error fetching {url}: {e}, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{attempts})"
                )
                await asyncio.sleep(delay)
                continue

            if resp.status_code < 400:
                return resp

            # Client error (except 429) - don't retry
            if resp.status_code != 429 and resp.status_code < 500:
                raise DownloadError(f"GET {url} returned {resp.status_code}")

            last_error = f"HTTP {resp.status_code}"
            retry_after = resp.headers.get("Retry-After")
            if retry_after:
                try:
                    delay = min(float(retry_after), self._config.max_delay)
                except ValueError:
                    delay = self._backoff(attempt)
            else:
                delay = self._backoff(attempt)
            logger.warning(
                f"{url} returned {resp.status_code}, retrying in {delay:.1f}s "
                f"(attempt {attempt + 1}/{attempts})"
            )
            await asyncio.sleep(delay)

        logger.error(f"Giving up on {url} after {attempts} attempts")
        raise DownloadError(f"GET {url} failed after {attempts} attempts: {last_error}")
