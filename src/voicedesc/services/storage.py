"""Local filesystem media storage."""

import asyncio
import logging
from pathlib import Path

from voicedesc.errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)


class LocalMediaStorage:
    """Stores blobs under a root directory; references are relative keys."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def resolve(self, ref: str) -> Path:
        """Map a reference to a path, refusing keys that escape the root."""
        path = (self.root / ref).resolve()
        if self.root.resolve() not in path.parents:
            raise ValidationError(f"Invalid storage reference: {ref}")
        return path

    async def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        path = self.resolve(key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise ExternalServiceError(f"Failed to store {key}: {e}", service="storage") from e
        logger.debug("Stored %d bytes at %s", len(data), key)
        return key

    async def get(self, ref: str) -> bytes:
        path = self.resolve(ref)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise ExternalServiceError(f"Object not found: {ref}", service="storage") from e
        except OSError as e:
            raise ExternalServiceError(f"Failed to read {ref}: {e}", service="storage") from e

    async def exists(self, ref: str) -> bool:
        return self.resolve(ref).is_file()

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
