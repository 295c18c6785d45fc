"""Helpers for archives that publish releases as HTTP directory listings."""

import re

from refstore.domain.ingest.port.source import Downloader
from refstore.domain.shared.error import DiscoveryError, DownloadError

_HREF_RE = re.compile(r'href="([^"?#]+)"', re.IGNORECASE)


async def fetch_text(downloader: Downloader, url: str, source: str) -> str:
    """Fetch a listing or notes file, reporting failure as a discovery error."""
    try:
        data = await downloader.fetch(url)
    except DownloadError as e:
        raise DiscoveryError(f"{source}: cannot fetch {url}: {e.message}") from e
    return data.decode("utf-8", errors="replace")


def listing_entries(html: str) -> list[str]:
    """Entry names linked from an Apache/nginx style directory index."""
    names = []
    for href in _HREF_RE.findall(html):
        name = href.rstrip("/").rsplit("/", 1)[-1]
        if name and name not in names:
            names.append(name)
    return names


def join_url(base: str, *parts: str) -> str:
    return "/".join([base.rstrip("/"), *(p.strip("/") for p in parts)])
