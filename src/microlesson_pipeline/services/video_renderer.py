"""
Render micro-video segments from the source video.

Each render cuts the segment's time range from the source, burns in the
phase label and trusted keypoint labels, and mixes in the narration using
the configured audio overflow policy.
"""

from pathlib import Path
from typing import Iterable, List, Optional, Union

from ..config import get_settings
from ..exceptions import ConflictError, MediaProcessingError, MicroLessonError, ValidationError
from ..logging_config import LoggerMixin
from ..models import MicroVideoSegment, OutputFile, SegmentStatus
from ..utils.file_utils import get_file_size, remove_file, segment_output_path
from .media_encoder import MediaEncoder, RenderRequest, SyncPlan, TextOverlay
from .record_store import RecordStore

SUPPORTED_FORMATS = ("mp4", "webm", "mov")
OVERFLOW_POLICIES = ("time_compress", "freeze_frame")

PHASE_LABEL_SECONDS = 4.0


class VideoRendererError(MediaProcessingError):
    """Raised when a segment cannot be rendered."""


def plan_audio_sync(clip_duration: float, audio_duration: float, policy: str, max_tempo: float) -> SyncPlan:
    """Reconcile narration length with clip length.

    Shorter narration is padded with silence. Longer narration is either sped
    up to ``max_tempo`` with any remainder covered by a frozen last frame
    (``time_compress``) or played at normal speed over a frozen last frame
    (``freeze_frame``).
    """
    if policy not in OVERFLOW_POLICIES:
        raise ValidationError(f"Unknown audio overflow policy: {policy}", constraint="audio_overflow_policy")

    if audio_duration <= clip_duration:
        return SyncPlan(
            clip_duration=clip_duration,
            audio_duration=audio_duration,
            pad_seconds=round(clip_duration - audio_duration, 3),
        )

    if policy == "freeze_frame":
        return SyncPlan(
            clip_duration=clip_duration,
            audio_duration=audio_duration,
            freeze_seconds=round(audio_duration - clip_duration, 3),
        )

    tempo = min(audio_duration / clip_duration, max_tempo)
    compressed = audio_duration / tempo
    return SyncPlan(
        clip_duration=clip_duration,
        audio_duration=audio_duration,
        tempo=round(tempo, 4),
        freeze_seconds=round(max(0.0, compressed - clip_duration), 3),
    )


def build_overlays(segment: MicroVideoSegment, output_duration: float) -> List[TextOverlay]:
    """Phase label at the start of the clip plus a label per trusted keypoint anchor."""
    phase_cues = (segment.visual_cues or {}).get("phase") or {}
    phase_position = (phase_cues.get("text_presentation") or {}).get("position", "top")
    overlays = [TextOverlay(
        text=segment.phase.value.capitalize(),
        start=0.0,
        end=min(PHASE_LABEL_SECONDS, output_duration),
        position=phase_position,
        font_size=42,
    )]

    keypoint_cues = {c["concept"]: c for c in (segment.visual_cues or {}).get("keypoints", [])}
    offset = segment.time_range.start
    for alignment in segment.keypoint_alignments:
        if not alignment.trusted or alignment.anchor is None:
            continue
        start = max(0.0, alignment.anchor.start - offset)
        end = min(output_duration, alignment.anchor.end - offset)
        if end <= start:
            continue
        cue = (keypoint_cues.get(alignment.concept) or {}).get("cues") or {}
        position = (cue.get("text_presentation") or {}).get("position", "bottom")
        overlays.append(TextOverlay(text=alignment.concept, start=round(start, 2), end=round(end, 2), position=position))
    return overlays


class VideoRenderingService(LoggerMixin):
    """Render stored segments to output files."""

    def __init__(
        self,
        store: RecordStore,
        encoder: MediaEncoder,
        settings=None,
        output_root: Union[str, Path, None] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.encoder = encoder
        self.output_root = Path(output_root or self.settings.output_dir / "segments")

    async def render_segment(self, segment_id: str, formats: Iterable[str] = ("mp4",)) -> MicroVideoSegment:
        """Render one segment in each requested format.

        Returns:
            The segment in status ``rendered`` with its ``output_files``

        Raises:
            ValidationError: If a format is not supported
            ConflictError: If the segment is already rendering or cannot be rendered from its status
            MediaProcessingError: If encoding fails; the segment is marked failed
        """
        formats = [f.lower().lstrip(".") for f in formats]
        unsupported = [f for f in formats if f not in SUPPORTED_FORMATS]
        if not formats or unsupported:
            raise ValidationError(f"Unsupported output formats: {unsupported or formats}", constraint="format")

        def _start(segment: MicroVideoSegment) -> None:
            if segment.processing_status is SegmentStatus.RENDERING:
                raise ConflictError(f"Segment {segment.segment_id} is already rendering")
            segment.transition_to(SegmentStatus.RENDERING)

        segment = await self.store.update_segment(segment_id, _start)
        self.logger.info("Rendering segment", segment_id=segment_id, formats=formats)

        written: List[Path] = []
        try:
            outputs = await self._render_outputs(segment, formats, written)
        except (MicroLessonError, OSError) as e:
            for path in written:
                remove_file(path)
            message = str(e)
            await self.store.update_segment(
                segment_id, lambda s: s.transition_to(SegmentStatus.FAILED, error=message)
            )
            self.logger.error("Segment render failed", segment_id=segment_id, error=message)
            if isinstance(e, MediaProcessingError):
                raise
            raise VideoRendererError(f"Failed to render segment {segment_id}: {message}") from e

        def _finish(s: MicroVideoSegment) -> None:
            s.output_files = outputs
            s.transition_to(SegmentStatus.RENDERED)

        segment = await self.store.update_segment(segment_id, _finish)
        self.logger.info(
            "Segment rendered",
            segment_id=segment_id,
            files=[o.path for o in outputs],
            duration=outputs[0].duration if outputs else None,
        )
        return segment

    async def _render_outputs(
        self, segment: MicroVideoSegment, formats: List[str], written: List[Path]
    ) -> List[OutputFile]:
        video = await self.store.get_video(segment.original_video_id)
        if not video.file_path:
            raise VideoRendererError(f"Video {video.video_id} has no media file")
        source = Path(video.file_path)

        sync: Optional[SyncPlan] = None
        narration_path = None
        if segment.narration is not None:
            narration_path = Path(segment.narration.path)
            sync = plan_audio_sync(
                segment.time_range.duration,
                segment.narration.duration,
                self.settings.audio_overflow_policy,
                self.settings.max_audio_tempo,
            )
        output_duration = sync.output_duration if sync else segment.time_range.duration
        overlays = build_overlays(segment, output_duration)

        outputs = []
        for fmt in formats:
            output = segment_output_path(
                self.output_root, segment.original_video_id, segment.segment_id, segment.script_version, fmt
            )
            request = RenderRequest(
                source=source,
                time_range=segment.time_range,
                output=output,
                narration=narration_path,
                sync=sync,
                overlays=overlays,
            )
            written.append(output)
            await self.encoder.render_clip(request)
            info = await self.encoder.probe(output)
            outputs.append(OutputFile(
                path=str(output),
                format=fmt,
                size_bytes=get_file_size(output),
                duration=round(info.duration, 3),
            ))
        return outputs
