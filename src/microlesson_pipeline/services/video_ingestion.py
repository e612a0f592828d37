"""
Video Ingestion Service for accepting uploaded files and remote video URLs.
"""

import asyncio
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union
from urllib.parse import urlparse

import yt_dlp
from yt_dlp.utils import DownloadError

from ..config import get_settings
from ..exceptions import ExternalServiceError, MediaProcessingError, ValidationError
from ..logging_config import LoggerMixin
from ..models import SourceType, SourceVideo, VideoStatus
from ..utils.file_utils import ensure_directory, get_file_size, remove_file
from ..utils.validation import guess_video_mime_type, is_public_host, validate_url
from .media_encoder import FFmpegEncoder, MediaEncoder, MediaInfo
from .media_store import MediaStore
from .record_store import RecordStore


class VideoIngestionError(ValidationError):
    """Exception raised when a video is rejected during ingestion."""


RESTRICTED_AVAILABILITY = {"private", "needs_auth", "subscriber_only", "premium_only"}


@dataclass
class IngestionReceipt:
    """What the caller gets back immediately after ingestion."""
    video_id: str
    status: VideoStatus
    estimated_completion_seconds: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "video_id": self.video_id,
            "status": self.status.value,
            "estimated_completion_seconds": self.estimated_completion_seconds,
        }


class RemoteVideoFetcher(LoggerMixin):
    """Look up and download remote videos with yt-dlp."""

    def __init__(self, settings=None):
        self.settings = settings or get_settings()

    def _options(self, **extra) -> Dict[str, Any]:
        options = {
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "skip_download": True,
        }
        options.update(extra)
        return options

    async def fetch_metadata(self, url: str) -> Dict[str, Any]:
        """Fetch metadata without downloading. Raises DownloadError when unreachable."""
        def _extract():
            with yt_dlp.YoutubeDL(self._options()) as ydl:
                return ydl.extract_info(url, download=False)

        info = await asyncio.to_thread(_extract)
        return ydl_sanitize(info)

    async def download(self, url: str, output_dir: Path) -> Path:
        ensure_directory(output_dir)
        options = self._options(
            skip_download=False,
            format=self.settings.video_quality,
            outtmpl=str(output_dir / "%(id)s.%(ext)s"),
            merge_output_format="mp4",
        )

        def _download():
            with yt_dlp.YoutubeDL(options) as ydl:
                info = ydl.extract_info(url, download=True)
                return ydl.prepare_filename(info)

        filename = await asyncio.to_thread(_download)
        path = Path(filename)
        if not path.exists():
            # merge_output_format may change the extension after prepare_filename
            candidates = sorted(output_dir.glob(f"{path.stem}.*"))
            if not candidates:
                raise ExternalServiceError(f"Downloaded file not found for {url}", service="yt-dlp")
            path = candidates[0]
        self.logger.info("Remote video downloaded", url=url, file=str(path))
        return path


def ydl_sanitize(info: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not isinstance(info, dict):
        return {}
    return yt_dlp.YoutubeDL.sanitize_info(info)


class VideoIngestionService(LoggerMixin):
    """
    Accept long-form instructional videos and hand them to the pipeline.

    Every validation runs before any record is created. On success the file
    lives in the media store, a SourceVideo in ``processing`` state is
    persisted and ``trigger`` is invoked without awaiting the run.
    """

    def __init__(
        self,
        settings=None,
        store: Optional[RecordStore] = None,
        media_store: Optional[MediaStore] = None,
        encoder: Optional[MediaEncoder] = None,
        fetcher: Optional[RemoteVideoFetcher] = None,
        trigger: Optional[Callable[[str], Any]] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or RecordStore(self.settings)
        self.media_store = media_store or MediaStore(self.settings)
        self.encoder = encoder or FFmpegEncoder(self.settings)
        self.fetcher = fetcher or RemoteVideoFetcher(self.settings)
        self.trigger = trigger
        self.download_dir = ensure_directory(Path(self.settings.cache_dir) / "downloads")

        self.logger.info(
            "Video Ingestion Service initialized",
            max_upload_bytes=self.settings.max_upload_bytes,
            min_duration=self.settings.min_duration_seconds,
            max_duration=self.settings.max_duration_seconds,
        )

    # ---------------------------
    # Public operations
    # ---------------------------

    async def ingest_upload(
        self,
        file_path: Union[str, Path],
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> IngestionReceipt:
        """Validate an uploaded file and start processing it."""
        file_path = Path(file_path)
        mime_type, info = await self._validate_file(file_path)
        stored = await self.media_store.put_file(file_path)

        video = self._build_video(
            source_type=SourceType.UPLOAD,
            title=title or file_path.stem,
            description=description or "",
            stored_path=stored,
            mime_type=mime_type,
            info=info,
        )
        return await self._register(video)

    async def ingest_url(
        self,
        url: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> IngestionReceipt:
        """Validate a remote video URL, download it and start processing it."""
        metadata = await self._validate_remote(url)

        try:
            downloaded = await self.fetcher.download(url, self.download_dir)
        except DownloadError as e:
            raise ExternalServiceError(f"Download failed for {url}: {e}", service="yt-dlp") from e

        try:
            mime_type, info = await self._validate_file(downloaded)
            stored = await self.media_store.put_file(downloaded, move=True)
        except Exception:
            remove_file(downloaded)
            raise

        video = self._build_video(
            source_type=SourceType.REMOTE_URL,
            title=title or metadata.get("title") or downloaded.stem,
            description=description if description is not None else (metadata.get("description") or ""),
            stored_path=stored,
            mime_type=mime_type,
            info=info,
            source_url=url,
        )
        return await self._register(video)

    def estimate_completion_seconds(self, duration: float) -> int:
        estimate = self.settings.estimate_base_seconds + self.settings.estimate_per_video_second * duration
        return int(min(estimate, self.settings.estimate_max_seconds))

    # ---------------------------
    # Validation
    # ---------------------------

    async def _validate_file(self, file_path: Path):
        if not file_path.exists() or not file_path.is_file():
            raise VideoIngestionError(f"File not found: {file_path}", constraint="exists")

        size = get_file_size(file_path)
        if size == 0:
            raise VideoIngestionError("File is empty", constraint="non_empty")
        if size > self.settings.max_upload_bytes:
            raise VideoIngestionError(
                f"File is {size} bytes, limit is {self.settings.max_upload_bytes}",
                constraint="max_size",
            )

        mime_type = guess_video_mime_type(file_path)
        if mime_type is None:
            raise VideoIngestionError(
                f"Unsupported container: {file_path.suffix or 'no extension'}",
                constraint="container",
            )

        try:
            info = await self.encoder.probe(file_path)
        except MediaProcessingError as e:
            raise VideoIngestionError(f"File could not be read as video: {e}", constraint="codec") from e

        if not info.has_video:
            raise VideoIngestionError("No decodable video stream", constraint="codec")
        self._check_duration(info.duration)
        if info.width < self.settings.min_width or info.height < self.settings.min_height:
            raise VideoIngestionError(
                f"Resolution {info.width}x{info.height} is below "
                f"{self.settings.min_width}x{self.settings.min_height}",
                constraint="resolution",
            )
        return mime_type, info

    def _check_duration(self, duration: float) -> None:
        if not self.settings.min_duration_seconds <= duration <= self.settings.max_duration_seconds:
            raise VideoIngestionError(
                f"Duration {duration:.1f}s is outside "
                f"[{self.settings.min_duration_seconds}, {self.settings.max_duration_seconds}]",
                constraint="duration",
            )

    async def _validate_remote(self, url: str) -> Dict[str, Any]:
        if not validate_url(url):
            raise VideoIngestionError(f"Invalid URL: {url}", constraint="url")

        hostname = urlparse(url).hostname or ""
        if not await asyncio.to_thread(is_public_host, hostname):
            raise VideoIngestionError(f"URL host is not publicly routable: {hostname}", constraint="public_host")

        try:
            metadata = await asyncio.wait_for(self.fetcher.fetch_metadata(url), timeout=self.settings.api_timeout)
        except DownloadError as e:
            raise VideoIngestionError(f"Remote video is not reachable: {e}", constraint="reachable") from e
        except asyncio.TimeoutError as e:
            raise VideoIngestionError("Remote video lookup timed out", constraint="reachable") from e

        if not metadata:
            raise VideoIngestionError("Remote video returned no metadata", constraint="reachable")
        availability = metadata.get("availability")
        if availability in RESTRICTED_AVAILABILITY or (metadata.get("age_limit") or 0) > 0:
            raise VideoIngestionError("Remote video is private or restricted", constraint="restricted")
        if metadata.get("is_live"):
            raise VideoIngestionError("Live streams cannot be ingested", constraint="restricted")

        duration = metadata.get("duration")
        if isinstance(duration, (int, float)):
            self._check_duration(float(duration))

        self.logger.debug("Remote video validated", url=url, duration=duration, availability=availability)
        return metadata

    # ---------------------------
    # Record creation
    # ---------------------------

    def _build_video(
        self,
        source_type: SourceType,
        title: str,
        description: str,
        stored_path: Path,
        mime_type: str,
        info: MediaInfo,
        source_url: Optional[str] = None,
    ) -> SourceVideo:
        return SourceVideo(
            video_id=f"video_{uuid.uuid4().hex[:12]}",
            source_type=source_type,
            title=title,
            description=description,
            file_path=str(stored_path),
            file_size=get_file_size(stored_path),
            mime_type=mime_type,
            width=info.width,
            height=info.height,
            duration=info.duration,
            video_codec=info.video_codec or "",
            source_url=source_url,
            processing_status=VideoStatus.PROCESSING,
        )

    async def _register(self, video: SourceVideo) -> IngestionReceipt:
        await self.store.save_video(video)
        self.logger.info(
            "Video ingested",
            video_id=video.video_id,
            source_type=video.source_type.value,
            duration=video.duration,
        )
        if self.trigger is not None:
            self.trigger(video.video_id)
        return IngestionReceipt(
            video_id=video.video_id,
            status=video.processing_status,
            estimated_completion_seconds=self.estimate_completion_seconds(video.duration),
        )
