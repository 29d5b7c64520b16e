"""Photo storage for submitted applications.

Files are written below `storage_root` and served read-only by the app
under `storage_public_base_url` (see the /media mount in main.py).
Only URLs are stored on the application record, never image bytes.
"""

import asyncio
import base64
import binascii
import logging
import re
from pathlib import Path

from eta_service.config import settings

logger = logging.getLogger(__name__)

DATA_URL_REGEX = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


def decode_data_url(value: str) -> tuple[str, bytes]:
    """Split a ``data:<type>;base64,<payload>`` URL into (content_type, bytes)."""
    match = DATA_URL_REGEX.match(value)
    if not match:
        raise ValueError("Invalid base64 image data")
    try:
        payload = base64.b64decode(match.group(2), validate=True)
    except binascii.Error as exc:
        raise ValueError("Invalid base64 image data") from exc
    return match.group(1), payload


class FileStorage:
    def __init__(
        self,
        root: str = settings.storage_root,
        public_base_url: str = settings.storage_public_base_url,
    ):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def store(self, path: str, data: bytes, content_type: str) -> str:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Refusing to write outside storage root: {path}")
        await asyncio.to_thread(self._write, target, data)
        logger.info("Stored %s (%s, %d bytes)", path, content_type, len(data))
        return f"{self.public_base_url}/{path}"
