"""JSON-file persistence for the records owned by the pipeline.

Every write happens under one asyncio lock, and compound read-modify-write
updates go through the ``update_*`` helpers so a check and the state change
it guards are a single step.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from ..config import get_settings
from ..exceptions import NotFoundError
from ..logging_config import LoggerMixin
from ..models import (
    CLTScript,
    Keypoint,
    MicroVideoSegment,
    PipelineRun,
    SourceVideo,
    Transcript,
)
from ..utils.file_utils import ensure_directory, safe_filename, write_json_atomic

T = TypeVar("T")


class RecordStore(LoggerMixin):
    """File-backed store for videos, transcripts, keypoints, analyses, scripts, segments and runs."""

    KINDS = ("videos", "transcripts", "keypoints", "analysis", "scripts", "segments", "runs")

    def __init__(self, settings=None, root: Optional[Path] = None):
        self.settings = settings or get_settings()
        self.root = ensure_directory(root or Path(self.settings.data_dir) / "records")
        for kind in self.KINDS:
            ensure_directory(self.root / kind)
        self._lock = asyncio.Lock()

    # ---------------------------
    # Low level file access
    # ---------------------------

    def _path(self, kind: str, key: str) -> Path:
        return self.root / kind / f"{safe_filename(key)}.json"

    def _write(self, kind: str, key: str, data: Any) -> None:
        write_json_atomic(self._path(kind, key), data)

    def _read(self, kind: str, key: str) -> Optional[Any]:
        path = self._path(kind, key)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _delete(self, kind: str, key: str) -> None:
        path = self._path(kind, key)
        if path.exists():
            path.unlink()

    def _read_all(self, kind: str) -> List[Dict[str, Any]]:
        records = []
        for path in sorted((self.root / kind).glob("*.json")):
            with open(path, "r", encoding="utf-8") as f:
                records.append(json.load(f))
        return records

    async def _update(self, kind: str, key: str, load: Callable[[dict], T],
                      mutate: Callable[[T], None]) -> T:
        async with self._lock:
            data = self._read(kind, key)
            if data is None:
                raise NotFoundError(f"No {kind[:-1]} with id {key}")
            record = load(data)
            mutate(record)
            self._write(kind, key, record.to_dict())
            return record

    # ---------------------------
    # Source videos
    # ---------------------------

    async def save_video(self, video: SourceVideo) -> None:
        async with self._lock:
            self._write("videos", video.video_id, video.to_dict())

    async def get_video(self, video_id: str) -> SourceVideo:
        data = self._read("videos", video_id)
        if data is None:
            raise NotFoundError(f"No video with id {video_id}")
        return SourceVideo.from_dict(data)

    async def list_videos(self) -> List[SourceVideo]:
        return [SourceVideo.from_dict(d) for d in self._read_all("videos")]

    async def update_video(self, video_id: str, mutate: Callable[[SourceVideo], None]) -> SourceVideo:
        return await self._update("videos", video_id, SourceVideo.from_dict, mutate)

    async def delete_video(self, video_id: str) -> None:
        """Delete a video and everything derived from it."""
        async with self._lock:
            if self._read("videos", video_id) is None:
                raise NotFoundError(f"No video with id {video_id}")
            for segment in self._segments_for(video_id):
                self._delete("segments", segment.segment_id)
            for data in self._read_all("scripts"):
                if data.get("video_id") == video_id:
                    self._delete("scripts", data["script_id"])
            for data in self._read_all("runs"):
                if data.get("video_id") == video_id:
                    self._delete("runs", data["run_id"])
            self._delete("transcripts", video_id)
            self._delete("keypoints", video_id)
            self._delete("analysis", video_id)
            self._delete("videos", video_id)
        self.logger.info("Video deleted", video_id=video_id)

    # ---------------------------
    # Transcripts and keypoints
    # ---------------------------

    async def save_transcript(self, transcript: Transcript) -> None:
        async with self._lock:
            self._write("transcripts", transcript.video_id, transcript.to_dict())

    async def get_transcript(self, video_id: str) -> Optional[Transcript]:
        data = self._read("transcripts", video_id)
        return Transcript.from_dict(data) if data else None

    async def save_keypoints(self, video_id: str, keypoints: List[Keypoint]) -> None:
        async with self._lock:
            self._write("keypoints", video_id, {"video_id": video_id, "keypoints": [k.to_dict() for k in keypoints]})

    async def get_keypoints(self, video_id: str) -> List[Keypoint]:
        data = self._read("keypoints", video_id)
        if not data:
            return []
        return [Keypoint.from_dict(k) for k in data.get("keypoints", [])]

    async def save_analysis(self, video_id: str, analysis: Dict[str, Any]) -> None:
        """Complexity analysis and adaptation recommendations for a video."""
        async with self._lock:
            self._write("analysis", video_id, dict(analysis, video_id=video_id))

    async def get_analysis(self, video_id: str) -> Optional[Dict[str, Any]]:
        return self._read("analysis", video_id)

    # ---------------------------
    # Scripts
    # ---------------------------

    async def save_script(self, script: CLTScript) -> None:
        async with self._lock:
            self._write("scripts", script.script_id, script.to_dict())

    async def get_script(self, video_id: str, version: Optional[int] = None) -> Optional[CLTScript]:
        """Return a specific script version, or the latest one."""
        scripts = [CLTScript.from_dict(d) for d in self._read_all("scripts") if d.get("video_id") == video_id]
        if version is not None:
            scripts = [s for s in scripts if s.version == version]
        if not scripts:
            return None
        return max(scripts, key=lambda s: s.version)

    # ---------------------------
    # Segments
    # ---------------------------

    def _segments_for(self, video_id: str) -> List[MicroVideoSegment]:
        segments = [
            MicroVideoSegment.from_dict(d)
            for d in self._read_all("segments")
            if d.get("original_video_id") == video_id
        ]
        return sorted(segments, key=lambda s: s.sequence)

    async def save_segments(self, segments: List[MicroVideoSegment]) -> None:
        async with self._lock:
            for segment in segments:
                self._write("segments", segment.segment_id, segment.to_dict())

    async def get_segment(self, segment_id: str) -> MicroVideoSegment:
        data = self._read("segments", segment_id)
        if data is None:
            raise NotFoundError(f"No segment with id {segment_id}")
        return MicroVideoSegment.from_dict(data)

    async def list_segments(self, video_id: str) -> List[MicroVideoSegment]:
        return self._segments_for(video_id)

    async def update_segment(self, segment_id: str,
                             mutate: Callable[[MicroVideoSegment], None]) -> MicroVideoSegment:
        return await self._update("segments", segment_id, MicroVideoSegment.from_dict, mutate)

    async def replace_segments(self, video_id: str, segments: List[MicroVideoSegment]) -> None:
        """Swap the segment set of a video for a new one."""
        async with self._lock:
            keep = {s.segment_id for s in segments}
            for existing in self._segments_for(video_id):
                if existing.segment_id not in keep:
                    self._delete("segments", existing.segment_id)
            for segment in segments:
                self._write("segments", segment.segment_id, segment.to_dict())

    # ---------------------------
    # Pipeline runs
    # ---------------------------

    async def save_run(self, run: PipelineRun) -> None:
        async with self._lock:
            self._write("runs", run.run_id, run.to_dict())

    async def get_run(self, run_id: str) -> PipelineRun:
        data = self._read("runs", run_id)
        if data is None:
            raise NotFoundError(f"No run with id {run_id}")
        return PipelineRun.from_dict(data)

    async def latest_run(self, video_id: str) -> Optional[PipelineRun]:
        runs = [PipelineRun.from_dict(d) for d in self._read_all("runs") if d.get("video_id") == video_id]
        if not runs:
            return None
        return max(runs, key=lambda r: (r.started_at.isoformat() if r.started_at else "", r.run_id))

    async def update_run(self, run_id: str, mutate: Callable[[PipelineRun], None]) -> PipelineRun:
        return await self._update("runs", run_id, PipelineRun.from_dict, mutate)
