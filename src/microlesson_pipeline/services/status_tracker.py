"""Read-only status queries for videos and their micro-video segments."""

from typing import Any, Dict

from ..logging_config import LoggerMixin
from ..models import MicroVideoSegment, VideoStatus
from .record_store import RecordStore


def segment_status(segment: MicroVideoSegment) -> Dict[str, Any]:
    return {
        "segment_id": segment.segment_id,
        "sequence": segment.sequence,
        "phase": segment.phase.value,
        "status": segment.processing_status.value,
        "progress_percent": segment.progress_percent,
        "time_range": segment.time_range.to_dict(),
        "alignment_method": segment.alignment_method.value,
        "alignment_confidence": segment.alignment_confidence,
        "script_version": segment.script_version,
        "error": segment.error_message,
        "output_files": [
            {"path": o.path, "format": o.format, "size_bytes": o.size_bytes, "duration": o.duration}
            for o in segment.output_files
        ],
    }


class StatusTracker(LoggerMixin):
    """Polling surface over the record store."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def get_status(self, video_id: str) -> Dict[str, Any]:
        """Overall status of a video and each of its segments.

        Raises:
            NotFoundError: If the video does not exist
        """
        video = await self.store.get_video(video_id)
        run = await self.store.latest_run(video_id)
        segments = await self.store.list_segments(video_id)

        if video.processing_status is VideoStatus.COMPLETED:
            progress = 100
        elif run is not None:
            progress = int(round(run.progress * 100))
        else:
            progress = 0

        return {
            "video_id": video.video_id,
            "title": video.title,
            "status": video.processing_status.value,
            "progress_percent": progress,
            "current_stage": run.current_stage if run else None,
            "error": video.error_message,
            "script_version": video.script_version,
            "segments": [segment_status(s) for s in segments],
        }

    async def get_segment_status(self, segment_id: str) -> Dict[str, Any]:
        """Status of one segment.

        Raises:
            NotFoundError: If the segment does not exist
        """
        return segment_status(await self.store.get_segment(segment_id))
