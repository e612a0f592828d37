"""
Tests for upload and remote URL ingestion.
"""

import asyncio
from pathlib import Path

import pytest
from yt_dlp.utils import DownloadError

from microlesson_pipeline.exceptions import ExternalServiceError, MediaProcessingError
from microlesson_pipeline.models import SourceType, VideoStatus
from microlesson_pipeline.services import video_ingestion
from microlesson_pipeline.services.media_encoder import MediaInfo
from microlesson_pipeline.services.video_ingestion import VideoIngestionError, VideoIngestionService

from conftest import StubEncoder

REMOTE_URL = "https://videos.example.com/watch?v=abc123"


class StubFetcher:
    """Remote fetcher serving canned metadata and writing a small file on download."""

    def __init__(self, metadata=None, metadata_error=None, download_error=None):
        self.metadata = metadata if metadata is not None else {
            "title": "Recursion explained",
            "description": "A lecture",
            "duration": 400,
            "availability": "public",
        }
        self.metadata_error = metadata_error
        self.download_error = download_error
        self.downloaded = []

    async def fetch_metadata(self, url):
        if self.metadata_error:
            raise self.metadata_error
        return self.metadata

    async def download(self, url, output_dir: Path) -> Path:
        if self.download_error:
            raise self.download_error
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / "abc123.mp4"
        path.write_bytes(b"downloaded video")
        self.downloaded.append(path)
        return path


class FailingProbeEncoder(StubEncoder):
    async def probe(self, path):
        raise MediaProcessingError("moov atom not found")


@pytest.fixture
def triggered():
    return []


def make_service(test_settings, record_store, media_store, triggered, encoder=None, fetcher=None, settings=None):
    return VideoIngestionService(
        settings=settings or test_settings,
        store=record_store,
        media_store=media_store,
        encoder=encoder or StubEncoder(),
        fetcher=fetcher or StubFetcher(),
        trigger=triggered.append,
    )


@pytest.fixture
def public_hosts(monkeypatch):
    monkeypatch.setattr(video_ingestion, "is_public_host", lambda hostname: True)


class TestIngestUpload:
    """Tests for VideoIngestionService.ingest_upload."""

    def test_accepted(self, test_settings, record_store, media_store, triggered, mock_video_file):
        service = make_service(test_settings, record_store, media_store, triggered)

        receipt = asyncio.run(service.ingest_upload(mock_video_file, title="Recursion"))

        assert receipt.status is VideoStatus.PROCESSING
        assert receipt.estimated_completion_seconds == 260
        assert triggered == [receipt.video_id]

        video = asyncio.run(record_store.get_video(receipt.video_id))
        assert video.title == "Recursion"
        assert video.source_type is SourceType.UPLOAD
        assert video.mime_type == "video/mp4"
        assert (video.width, video.height, video.duration) == (1280, 720, 400.0)
        assert Path(video.file_path).parent.parent == media_store.root
        assert mock_video_file.exists()

    def test_title_defaults_to_file_name(self, test_settings, record_store, media_store, triggered, mock_video_file):
        service = make_service(test_settings, record_store, media_store, triggered)
        receipt = asyncio.run(service.ingest_upload(mock_video_file))
        assert asyncio.run(record_store.get_video(receipt.video_id)).title == "lecture"

    def test_receipt_dict(self, test_settings, record_store, media_store, triggered, mock_video_file):
        service = make_service(test_settings, record_store, media_store, triggered)
        data = asyncio.run(service.ingest_upload(mock_video_file)).to_dict()
        assert data["status"] == "processing"
        assert set(data) == {"video_id", "status", "estimated_completion_seconds"}

    @pytest.mark.parametrize(
        "name,content,constraint",
        [
            ("empty.mp4", b"", "non_empty"),
            ("notes.txt", b"hello", "container"),
        ],
    )
    def test_rejected_files(self, test_settings, record_store, media_store, triggered, temp_dir,
                            name, content, constraint):
        path = temp_dir / name
        path.write_bytes(content)
        service = make_service(test_settings, record_store, media_store, triggered)

        with pytest.raises(VideoIngestionError) as exc_info:
            asyncio.run(service.ingest_upload(path))

        assert exc_info.value.constraint == constraint
        assert asyncio.run(record_store.list_videos()) == []
        assert triggered == []

    def test_missing_file(self, test_settings, record_store, media_store, triggered, temp_dir):
        service = make_service(test_settings, record_store, media_store, triggered)
        with pytest.raises(VideoIngestionError) as exc_info:
            asyncio.run(service.ingest_upload(temp_dir / "absent.mp4"))
        assert exc_info.value.constraint == "exists"

    def test_too_large(self, test_settings, record_store, media_store, triggered, mock_video_file):
        settings = test_settings.model_copy(update={"max_upload_bytes": 5})
        service = make_service(test_settings, record_store, media_store, triggered, settings=settings)
        with pytest.raises(VideoIngestionError) as exc_info:
            asyncio.run(service.ingest_upload(mock_video_file))
        assert exc_info.value.constraint == "max_size"

    @pytest.mark.parametrize(
        "info,constraint",
        [
            (MediaInfo(duration=400.0, width=1280, height=720), "codec"),
            (MediaInfo(duration=5.0, width=1280, height=720, video_codec="h264"), "duration"),
            (MediaInfo(duration=5 * 3600.0, width=1280, height=720, video_codec="h264"), "duration"),
            (MediaInfo(duration=400.0, width=160, height=120, video_codec="h264"), "resolution"),
        ],
    )
    def test_media_info_constraints(self, test_settings, record_store, media_store, triggered, mock_video_file,
                               info, constraint):
        service = make_service(test_settings, record_store, media_store, triggered, encoder=StubEncoder(info=info))

        with pytest.raises(VideoIngestionError) as exc_info:
            asyncio.run(service.ingest_upload(mock_video_file))

        assert exc_info.value.constraint == constraint
        assert asyncio.run(record_store.list_videos()) == []

    def test_unreadable_file(self, test_settings, record_store, media_store, triggered, mock_video_file):
        service = make_service(test_settings, record_store, media_store, triggered, encoder=FailingProbeEncoder())
        with pytest.raises(VideoIngestionError, match="moov atom") as exc_info:
            asyncio.run(service.ingest_upload(mock_video_file))
        assert exc_info.value.constraint == "codec"


class TestIngestUrl:
    """Tests for VideoIngestionService.ingest_url."""

    def test_accepted(self, test_settings, record_store, media_store, triggered, public_hosts):
        fetcher = StubFetcher()
        service = make_service(test_settings, record_store, media_store, triggered, fetcher=fetcher)

        receipt = asyncio.run(service.ingest_url(REMOTE_URL))

        video = asyncio.run(record_store.get_video(receipt.video_id))
        assert video.source_type is SourceType.REMOTE_URL
        assert video.source_url == REMOTE_URL
        assert video.title == "Recursion explained"
        assert video.description == "A lecture"
        assert Path(video.file_path).exists()
        assert not fetcher.downloaded[0].exists()
        assert triggered == [receipt.video_id]

    def test_invalid_url(self, test_settings, record_store, media_store, triggered):
        service = make_service(test_settings, record_store, media_store, triggered)
        with pytest.raises(VideoIngestionError) as exc_info:
            asyncio.run(service.ingest_url("ftp://videos.example.com/a.mp4"))
        assert exc_info.value.constraint == "url"

    def test_private_host(self, test_settings, record_store, media_store, triggered):
        fetcher = StubFetcher()
        service = make_service(test_settings, record_store, media_store, triggered, fetcher=fetcher)
        with pytest.raises(VideoIngestionError) as exc_info:
            asyncio.run(service.ingest_url("http://127.0.0.1:8080/video.mp4"))
        assert exc_info.value.constraint == "public_host"
        assert fetcher.downloaded == []

    @pytest.mark.parametrize(
        "metadata,constraint",
        [
            ({"title": "t", "availability": "private"}, "restricted"),
            ({"title": "t", "age_limit": 18}, "restricted"),
            ({"title": "t", "is_live": True}, "restricted"),
            ({"title": "t", "duration": 3}, "duration"),
        ],
    )
    def test_remote_constraints(self, test_settings, record_store, media_store, triggered, public_hosts,
                                metadata, constraint):
        fetcher = StubFetcher(metadata=metadata)
        service = make_service(test_settings, record_store, media_store, triggered, fetcher=fetcher)

        with pytest.raises(VideoIngestionError) as exc_info:
            asyncio.run(service.ingest_url(REMOTE_URL))

        assert exc_info.value.constraint == constraint
        assert fetcher.downloaded == []
        assert asyncio.run(record_store.list_videos()) == []

    def test_unreachable(self, test_settings, record_store, media_store, triggered, public_hosts):
        fetcher = StubFetcher(metadata_error=DownloadError("HTTP Error 404"))
        service = make_service(test_settings, record_store, media_store, triggered, fetcher=fetcher)
        with pytest.raises(VideoIngestionError) as exc_info:
            asyncio.run(service.ingest_url(REMOTE_URL))
        assert exc_info.value.constraint == "reachable"

    def test_download_failure(self, test_settings, record_store, media_store, triggered, public_hosts):
        fetcher = StubFetcher(download_error=DownloadError("connection reset"))
        service = make_service(test_settings, record_store, media_store, triggered, fetcher=fetcher)
        with pytest.raises(ExternalServiceError):
            asyncio.run(service.ingest_url(REMOTE_URL))
        assert triggered == []

    def test_invalid_download_removed(self, test_settings, record_store, media_store, triggered, public_hosts):
        fetcher = StubFetcher()
        encoder = StubEncoder(info=MediaInfo(duration=400.0, width=100, height=100, video_codec="h264"))
        service = make_service(test_settings, record_store, media_store, triggered, encoder=encoder, fetcher=fetcher)

        with pytest.raises(VideoIngestionError):
            asyncio.run(service.ingest_url(REMOTE_URL))

        assert not fetcher.downloaded[0].exists()
        assert asyncio.run(record_store.list_videos()) == []


class TestEstimate:
    """Completion estimate."""

    def test_capped(self, test_settings, record_store, media_store, triggered):
        service = make_service(test_settings, record_store, media_store, triggered)
        assert service.estimate_completion_seconds(400.0) == 260
        assert service.estimate_completion_seconds(10 * 3600.0) == 3600
