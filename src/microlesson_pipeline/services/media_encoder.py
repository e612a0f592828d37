"""Media encoder adapter driving ffmpeg/ffprobe as asyncio subprocesses."""

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from ..config import get_settings
from ..exceptions import MediaProcessingError
from ..logging_config import LoggerMixin
from ..models import TimeRange
from ..utils.file_utils import ensure_directory
from ..utils.time_utils import ffmpeg_time


@dataclass
class MediaInfo:
    """Result of probing a media file."""
    duration: float
    width: int = 0
    height: int = 0
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    format_name: str = ""

    @property
    def has_video(self) -> bool:
        return bool(self.video_codec)

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_codec)


@dataclass
class TextOverlay:
    """A timed caption burned into a clip; times are relative to the clip start."""
    text: str
    start: float
    end: float
    position: str = "bottom"
    font_size: int = 36


@dataclass
class SyncPlan:
    """How narration and picture are reconciled when their lengths differ."""
    clip_duration: float
    audio_duration: float
    tempo: float = 1.0
    freeze_seconds: float = 0.0
    pad_seconds: float = 0.0

    @property
    def output_duration(self) -> float:
        return self.clip_duration + self.freeze_seconds


@dataclass
class RenderRequest:
    source: Path
    time_range: TimeRange
    output: Path
    narration: Optional[Path] = None
    sync: Optional[SyncPlan] = None
    overlays: List[TextOverlay] = field(default_factory=list)


class MediaEncoder(Protocol):
    """Media encoder collaborator."""

    async def probe(self, path: Path) -> MediaInfo:
        ...

    async def extract_audio(self, path: Path, output: Path) -> Path:
        ...

    async def render_clip(self, request: RenderRequest) -> Path:
        ...


def atempo_chain(tempo: float) -> List[str]:
    """Split a tempo factor into atempo filters each within ffmpeg's [0.5, 2.0] range."""
    filters = []
    remaining = tempo
    while remaining > 2.0:
        filters.append("atempo=2.0")
        remaining /= 2.0
    while remaining < 0.5:
        filters.append("atempo=0.5")
        remaining /= 0.5
    if abs(remaining - 1.0) > 1e-6:
        filters.append(f"atempo={remaining:.4f}")
    return filters


def escape_drawtext(text: str) -> str:
    """Escape text for use inside a quoted drawtext ``text=`` option."""
    return (
        text.replace("\\", "\\\\")
        .replace("'", "’")
        .replace(":", "\\:")
        .replace("%", "\\%")
    )


class FFmpegEncoder(LoggerMixin):
    """Probe, extract and render media with the ffmpeg command line tools."""

    _Y_POSITIONS = {
        "top": "40",
        "center": "(h-text_h)/2",
        "bottom": "h-text_h-40",
    }

    def __init__(self, settings=None):
        self.settings = settings or get_settings()
        self.ffmpeg = self.settings.ffmpeg_binary
        self.ffprobe = self.settings.ffprobe_binary
        self.timeout = self.settings.ffmpeg_timeout
        self.ffmpeg_log_level = "error"

    async def probe(self, path: Path) -> MediaInfo:
        """Read duration, dimensions and codecs of a media file."""
        cmd = [
            self.ffprobe,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]
        stdout = await self._run(cmd, purpose="probe")
        try:
            info = json.loads(stdout or "{}")
        except json.JSONDecodeError as e:
            raise MediaProcessingError(f"ffprobe returned invalid JSON for {path}") from e
        return self.parse_probe(info)

    @staticmethod
    def parse_probe(info: dict) -> MediaInfo:
        streams = info.get("streams") or []
        video = next((s for s in streams if s.get("codec_type") == "video"), {})
        audio = next((s for s in streams if s.get("codec_type") == "audio"), {})
        fmt = info.get("format") or {}

        duration = fmt.get("duration") or video.get("duration") or audio.get("duration") or 0
        try:
            duration = float(duration)
        except (TypeError, ValueError):
            duration = 0.0

        return MediaInfo(
            duration=duration,
            width=int(video.get("width") or 0),
            height=int(video.get("height") or 0),
            video_codec=video.get("codec_name"),
            audio_codec=audio.get("codec_name"),
            format_name=fmt.get("format_name", ""),
        )

    async def extract_audio(self, path: Path, output: Path) -> Path:
        """Extract mono 16 kHz WAV audio for transcription."""
        ensure_directory(output.parent)
        cmd = [
            self.ffmpeg, "-y",
            "-loglevel", self.ffmpeg_log_level,
            "-i", str(path),
            "-vn",
            "-ac", "1",
            "-ar", "16000",
            "-acodec", "pcm_s16le",
            str(output),
        ]
        await self._run(cmd, purpose="extract_audio")
        return output

    def build_render_command(self, request: RenderRequest) -> List[str]:
        """Build the ffmpeg invocation that cuts, captions and narrates one clip."""
        time_range = request.time_range
        cmd = [
            self.ffmpeg, "-y",
            "-loglevel", self.ffmpeg_log_level,
            "-ss", ffmpeg_time(time_range.start),
            "-t", ffmpeg_time(time_range.duration),
            "-i", str(request.source),
        ]
        if request.narration is not None:
            cmd += ["-i", str(request.narration)]

        video_filters = [self._drawtext(o) for o in request.overlays]
        sync = request.sync
        if sync is not None and sync.freeze_seconds > 0:
            video_filters.append(f"tpad=stop_mode=clone:stop_duration={sync.freeze_seconds:.3f}")

        filter_parts = []
        if video_filters:
            filter_parts.append("[0:v]" + ",".join(video_filters) + "[v]")
            video_map = "[v]"
        else:
            video_map = "0:v"

        if request.narration is not None:
            audio_filters = []
            if sync is not None:
                audio_filters += atempo_chain(sync.tempo)
                audio_filters.append(f"apad=whole_dur={sync.output_duration:.3f}")
            filter_parts.append("[1:a]" + (",".join(audio_filters) or "anull") + "[a]")
            audio_map = "[a]"
        else:
            audio_map = "0:a?"

        if filter_parts:
            cmd += ["-filter_complex", ";".join(filter_parts)]
        cmd += ["-map", video_map, "-map", audio_map]

        output_duration = sync.output_duration if sync is not None else time_range.duration
        video_codec, audio_codec = self._codecs_for(request.output)
        cmd += [
            "-c:v", video_codec,
            "-b:v", self.settings.video_bitrate,
            "-c:a", audio_codec,
            "-b:a", self.settings.audio_bitrate,
            "-ar", str(self.settings.audio_sample_rate),
            "-t", ffmpeg_time(output_duration),
        ]
        if request.output.suffix.lower() in (".mp4", ".mov", ".m4v"):
            cmd += ["-movflags", "+faststart"]
        cmd.append(str(request.output))
        return cmd

    def _codecs_for(self, output: Path):
        if output.suffix.lower() == ".webm":
            return "libvpx-vp9", "libopus"
        return self.settings.video_codec, self.settings.audio_codec

    async def render_clip(self, request: RenderRequest) -> Path:
        ensure_directory(request.output.parent)
        cmd = self.build_render_command(request)
        self.logger.info(
            "Rendering clip",
            output=str(request.output),
            start=request.time_range.start,
            end=request.time_range.end,
            overlays=len(request.overlays),
        )
        await self._run(cmd, purpose="render")
        if not request.output.exists() or request.output.stat().st_size == 0:
            raise MediaProcessingError(f"ffmpeg produced no output at {request.output}")
        return request.output

    def _drawtext(self, overlay: TextOverlay) -> str:
        y = self._Y_POSITIONS.get(overlay.position, self._Y_POSITIONS["bottom"])
        return (
            f"drawtext=text='{escape_drawtext(overlay.text)}'"
            f":fontsize={overlay.font_size}:fontcolor=white"
            f":box=1:boxcolor=black@0.5:boxborderw=12"
            f":x=(w-text_w)/2:y={y}"
            f":enable='between(t,{overlay.start:.2f},{overlay.end:.2f})'"
        )

    async def _run(self, cmd: Sequence[str], purpose: str) -> str:
        self.logger.debug("Running encoder", purpose=purpose, command=" ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise MediaProcessingError(f"Encoder binary not found: {cmd[0]}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise MediaProcessingError(f"Encoder {purpose} timed out after {self.timeout}s") from e

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[-500:]
            self.logger.error("Encoder failed", purpose=purpose, returncode=process.returncode, stderr=detail)
            raise MediaProcessingError(f"Encoder {purpose} failed: {detail or process.returncode}")

        return stdout.decode("utf-8", errors="replace")
