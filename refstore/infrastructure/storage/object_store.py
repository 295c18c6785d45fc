import hashlib
import tempfile
from pathlib import Path

from refstore.domain.ingest.port.storage import ObjectStore
from refstore.domain.shared.error import StorageUnavailableError


class LocalObjectStore(ObjectStore):
    """Local filesystem implementation of ObjectStore.

    Keys are slash-separated relative paths under ``base_path``.
    """

    def __init__(self, base_path: str) -> None:
        self.base_path = Path(base_path).expanduser()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _safe_path(self, key: str) -> Path:
        """Resolve key within base_path, rejecting path traversal attempts."""
        if not key or key.startswith("/") or any(part in ("", "..") for part in key.split("/")):
            raise ValueError(f"Invalid object key: {key}")
        target = self.base_path / key
        if not target.resolve().is_relative_to(self.base_path.resolve()):
            raise ValueError(f"Invalid object key: {key}")
        return target

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        target = self._safe_path(key)
        target.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write: write to temp file then rename
        try:
            with tempfile.NamedTemporaryFile(dir=target.parent, delete=False) as tmp:
                tmp.write(data)
                tmp_path = Path(tmp.name)
            tmp_path.replace(target)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot write {key}: {e}") from e

        return hashlib.md5(target.read_bytes()).hexdigest()

    async def get(self, key: str) -> bytes:
        target = self._safe_path(key)
        if not target.exists():
            raise FileNotFoundError(key)
        return target.read_bytes()

    async def exists(self, key: str) -> bool:
        return self._safe_path(key).exists()
