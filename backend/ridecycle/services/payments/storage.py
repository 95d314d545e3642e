"""
Local filesystem storage for payment proof files.

Files are addressed by an opaque key (``<order_number>/<random>.<ext>``);
callers never see filesystem paths.
"""

import uuid
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from ridecycle.core.config import get_settings
from ridecycle.core.logging import get_logger

logger = get_logger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "application/pdf": ".pdf",
}


class ProofStorageError(Exception):
    """Raised when a proof file cannot be stored or read."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.context = context


class ProofStorage:
    """Stores proof files under a root directory."""

    def __init__(self, root: Optional[str | Path] = None):
        self.root = Path(root or get_settings().proof_storage_dir).resolve()

    def path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise ProofStorageError("Invalid storage key", key=key)
        return path

    async def save(self, prefix: str, content_type: str, data: bytes) -> str:
        """
        Write ``data`` and return its storage key.

        Raises:
            ProofStorageError: If the file cannot be written
        """
        extension = CONTENT_TYPE_EXTENSIONS.get(content_type, "")
        key = f"{prefix}/{uuid.uuid4().hex}{extension}"
        path = self.path_for(key)

        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            logger.error("Failed to store payment proof", key=key, error=str(e))
            raise ProofStorageError("Failed to store payment proof", key=key) from e

        logger.debug("Payment proof stored", key=key, byte_size=len(data))
        return key

    async def read(self, key: str) -> bytes:
        try:
            async with aiofiles.open(self.path_for(key), "rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise ProofStorageError("Payment proof not found", key=key) from e

    async def delete(self, key: str) -> None:
        """Remove a stored file; missing files are ignored."""
        try:
            await aiofiles.os.remove(self.path_for(key))
        except FileNotFoundError:
            pass


def get_proof_storage() -> ProofStorage:
    return ProofStorage()
