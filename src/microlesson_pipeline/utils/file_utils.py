"""
File helpers for media storage, records and rendered outputs.
"""

import hashlib
import json
import os
import re
from pathlib import Path
from typing import Any, Union

from ..logging_config import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")
_CHUNK = 1 << 16


def ensure_directory(path: PathLike) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_file_hash(file_path: PathLike, algorithm: str = "sha256") -> str:
    """
    Hash a file in chunks so large source videos are never read whole.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    file_path = Path(file_path)
    if not file_path.is_file():
        raise FileNotFoundError(f"File not found: {file_path}")

    digest = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        while chunk := f.read(_CHUNK):
            digest.update(chunk)
    return digest.hexdigest()


def get_bytes_hash(data: bytes, algorithm: str = "sha256") -> str:
    return hashlib.new(algorithm, data).hexdigest()


def get_file_size(file_path: PathLike) -> int:
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    return file_path.stat().st_size


def safe_filename(name: str, max_length: int = 120) -> str:
    """Replace anything outside ``[A-Za-z0-9._-]`` and cap the length, keeping the extension."""
    cleaned = _UNSAFE.sub("_", name)
    if len(cleaned) <= max_length:
        return cleaned
    stem, ext = os.path.splitext(cleaned)
    return stem[:max_length - len(ext)] + ext


def remove_file(file_path: PathLike) -> bool:
    """Delete a file if present. Returns True when something was removed."""
    file_path = Path(file_path)
    if not file_path.exists():
        return False
    file_path.unlink()
    logger.debug("File removed", file=str(file_path))
    return True


def write_json_atomic(path: PathLike, data: Any) -> None:
    """Write JSON next to ``path`` and swap it in, so readers never see a partial record."""
    path = Path(path)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    os.replace(tmp_path, path)


def segment_output_path(output_root: PathLike, video_id: str, segment_id: str, version: int, fmt: str) -> Path:
    """``<output_root>/<video_id>/<segment_id>_v<version>.<fmt>``; the directory is created."""
    directory = ensure_directory(Path(output_root) / safe_filename(video_id))
    return directory / f"{safe_filename(segment_id)}_v{version}.{fmt}"
