import logging
import re
import secrets
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads"


class UploadStore:
    """Writes uploaded files under one directory served at ``/uploads``.

    The returned reference is an opaque path string; nothing else in the
    backend looks inside it.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _name_for(self, filename: str) -> str:
        base = re.sub(r"\s", "", Path(filename).name) or "file"
        return f"{int(time.time() * 1000)}-{secrets.token_hex(3)}-{base}"

    async def save(self, upload: Any) -> Optional[str]:
        if not isinstance(upload, UploadFile) or not upload.filename:
            return None
        name = self._name_for(upload.filename)
        data = await upload.read()
        await run_in_threadpool((self.directory / name).write_bytes, data)
        return f"{URL_PREFIX}/{name}"

    async def discard(self, url: Optional[str]) -> None:
        if not url or not url.startswith(URL_PREFIX + "/"):
            return
        path = self.directory / Path(url).name
        await run_in_threadpool(path.unlink, missing_ok=True)
        logger.debug("discarded upload %s", path.name)

    @asynccontextmanager
    async def pending(self, upload: Any):
        """Save ``upload`` and yield its reference; the file is removed if the block raises."""
        url = await self.save(upload)
        try:
            yield url
        except Exception:
            await self.discard(url)
            raise
