"""Content-addressed local media storage."""

import asyncio
import shutil
from pathlib import Path
from typing import Union

from ..config import get_settings
from ..exceptions import NotFoundError
from ..logging_config import LoggerMixin
from ..utils.file_utils import ensure_directory, get_bytes_hash, get_file_hash, remove_file


class MediaStore(LoggerMixin):
    """Store media files under ``media_dir`` named by their SHA-256 digest."""

    def __init__(self, settings=None, root: Union[str, Path, None] = None):
        self.settings = settings or get_settings()
        self.root = ensure_directory(root or self.settings.media_dir)

    def _path_for(self, digest: str, suffix: str) -> Path:
        suffix = suffix if not suffix or suffix.startswith(".") else f".{suffix}"
        return self.root / digest[:2] / f"{digest}{suffix.lower()}"

    async def put(self, data: bytes, suffix: str = "") -> Path:
        """Write bytes and return their storage path; identical content is stored once."""
        digest = get_bytes_hash(data)
        path = self._path_for(digest, suffix)
        if not path.exists():
            ensure_directory(path.parent)
            await asyncio.to_thread(path.write_bytes, data)
            self.logger.debug("Media stored", path=str(path), size_bytes=len(data))
        return path

    async def put_file(self, source: Union[str, Path], move: bool = False) -> Path:
        """Import an existing file into the store."""
        source = Path(source)
        if not source.exists():
            raise NotFoundError(f"Media file not found: {source}")
        digest = await asyncio.to_thread(get_file_hash, source)
        path = self._path_for(digest, source.suffix)
        if path.exists():
            if move and source.resolve() != path.resolve():
                remove_file(source)
            return path
        ensure_directory(path.parent)
        if move:
            await asyncio.to_thread(shutil.move, str(source), str(path))
        else:
            await asyncio.to_thread(shutil.copy2, source, path)
        self.logger.info("Media imported", source=str(source), path=str(path))
        return path

    async def get(self, path: Union[str, Path]) -> bytes:
        path = Path(path)
        if not path.exists():
            raise NotFoundError(f"Media file not found: {path}")
        return await asyncio.to_thread(path.read_bytes)

    async def delete(self, path: Union[str, Path]) -> bool:
        return remove_file(path)
