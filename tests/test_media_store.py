"""
Tests for the content-addressed media store.
"""

import asyncio
import hashlib

import pytest

from microlesson_pipeline.exceptions import NotFoundError


class TestMediaStore:
    """Test suite for MediaStore."""

    def test_put_is_content_addressed(self, media_store):
        first = asyncio.run(media_store.put(b"narration", suffix="MP3"))
        second = asyncio.run(media_store.put(b"narration", suffix=".mp3"))

        digest = hashlib.sha256(b"narration").hexdigest()
        assert first == second == media_store.root / digest[:2] / f"{digest}.mp3"
        assert asyncio.run(media_store.get(first)) == b"narration"

    def test_put_file_copies(self, media_store, mock_video_file):
        stored = asyncio.run(media_store.put_file(mock_video_file))

        assert stored.suffix == ".mp4"
        assert stored.read_bytes() == b"fake video content"
        assert mock_video_file.exists()

    def test_put_file_move_of_known_content(self, media_store, temp_dir):
        original = temp_dir / "a.mp4"
        duplicate = temp_dir / "b.mp4"
        original.write_bytes(b"same bytes")
        duplicate.write_bytes(b"same bytes")

        first = asyncio.run(media_store.put_file(original, move=True))
        second = asyncio.run(media_store.put_file(duplicate, move=True))

        assert first == second
        assert not original.exists()
        assert not duplicate.exists()

    def test_missing_files(self, media_store, temp_dir):
        with pytest.raises(NotFoundError):
            asyncio.run(media_store.put_file(temp_dir / "missing.mp4"))
        with pytest.raises(NotFoundError):
            asyncio.run(media_store.get(temp_dir / "missing.mp4"))

    def test_delete(self, media_store):
        path = asyncio.run(media_store.put(b"clip", suffix="mp4"))
        assert asyncio.run(media_store.delete(path)) is True
        assert asyncio.run(media_store.delete(path)) is False
