"""Published checksums from Metalink files (RFC 5854 and the older 3.0 format).

UniProt ships a ``RELEASE.metalink`` beside each release's files.
"""

from xml.etree import ElementTree

from refstore.domain.shared.error import DiscoveryError


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_metalink(text: str) -> dict[str, str]:
    """MD5 by file name as listed, which may include a directory part."""
    try:
        root = ElementTree.fromstring(text.strip())
    except ElementTree.ParseError as e:
        raise DiscoveryError(f"Unreadable metalink: {e}") from e

    md5s: dict[str, str] = {}
    for entry in root.iter():
        if _local(entry.tag) != "file" or not entry.get("name"):
            continue
        for node in entry.iter():
            if _local(node.tag) != "hash" or not node.text:
                continue
            if (node.get("type") or "").lower() == "md5":
                md5s[entry.get("name")] = node.text.strip().lower()
                break
    return md5s


def find_md5(md5s: dict[str, str], file_name: str) -> str | None:
    """The checksum listed for ``file_name``, matched on the last path segment."""
    for name, md5 in md5s.items():
        if name == file_name or name.rsplit("/", 1)[-1] == file_name:
            return md5
    return None
