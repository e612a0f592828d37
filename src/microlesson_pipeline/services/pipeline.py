"""
Pipeline orchestration for turning a source video into micro-lessons.

Stages run sequentially within a run:
1. Audio extraction
2. Transcription
3. Content analysis (keypoints and content profile)
4. CLT-bLM script generation and optimization
5. Segmentation and alignment
6. Narration synthesis and visual cues
7. Rendering

Runs are asyncio tasks started fire-and-forget and bounded by a worker pool
of ``max_concurrent_jobs``. A run never raises into its task: every failure
is recorded on the SourceVideo and the PipelineRun, then logged.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import get_settings
from ..exceptions import ConflictError, MediaProcessingError, MicroLessonError
from ..logging_config import LoggerMixin, bind_run_context
from ..models import (
    CLTScript,
    Keypoint,
    MicroVideoSegment,
    PipelineRun,
    RunStatus,
    SegmentStatus,
    SourceVideo,
    Transcript,
    VideoStatus,
)
from ..utils.file_utils import ensure_directory, remove_file
from .audio_synthesis import AudioSynthesisService, SpeechSynthesizer
from .content_analysis import ContentAnalysisService, ContentProfile, generate_adaptation_recommendations
from .media_encoder import MediaEncoder
from .media_store import MediaStore
from .record_store import RecordStore
from .script_generation import ScriptGenerationService, ScriptPreferences
from .segmentation import CustomRange, SegmentationService
from .status_tracker import StatusTracker
from .text_generation import TextGenerator
from .transcription import Transcriber
from .video_renderer import VideoRenderingService
from .visual_enhancement import VisualEnhancementService

CANCELLED_MESSAGE = "cancelled"


class PipelineError(MicroLessonError):
    """Raised for pipeline-related errors."""


class RunCancelled(PipelineError):
    """Raised at a stage boundary once cancellation was requested."""


class ProgressCallback:
    """Progress callback interface for pipeline status updates."""

    def on_stage_start(self, video_id: str, stage_name: str, progress: float) -> None:
        """Called when a pipeline stage starts."""
        pass

    def on_stage_complete(self, video_id: str, stage_name: str) -> None:
        """Called when a pipeline stage completes."""
        pass

    def on_stage_error(self, video_id: str, stage_name: str, error: str) -> None:
        """Called when a stage encounters an error."""
        pass


@dataclass
class RunContext:
    """State handed from stage to stage within one run."""
    video: SourceVideo
    run: PipelineRun
    preferences: ScriptPreferences
    formats: Tuple[str, ...] = ("mp4",)
    custom_ranges: Optional[Sequence[CustomRange]] = None
    audio_path: Optional[Path] = None
    transcript: Optional[Transcript] = None
    keypoints: List[Keypoint] = field(default_factory=list)
    profile: Optional[ContentProfile] = None
    script: Optional[CLTScript] = None
    segments: List[MicroVideoSegment] = field(default_factory=list)


Stage = Tuple[str, Callable[[RunContext], Awaitable[None]]]


class MicroLessonPipeline(LoggerMixin):
    """
    Orchestrate micro-lesson generation for ingested videos.

    Collaborators are injected so deployments can swap transports and tests
    can use deterministic stubs.
    """

    def __init__(
        self,
        store: RecordStore,
        media_store: MediaStore,
        encoder: MediaEncoder,
        transcriber: Transcriber,
        generator: TextGenerator,
        synthesizer: SpeechSynthesizer,
        settings=None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.media_store = media_store
        self.encoder = encoder
        self.transcriber = transcriber
        self.progress_callback = progress_callback or ProgressCallback()

        self.analysis = ContentAnalysisService(generator, self.settings)
        self.scripts = ScriptGenerationService(generator, self.settings)
        self.segmentation = SegmentationService(self.settings)
        self.audio = AudioSynthesisService(synthesizer, media_store, self.settings)
        self.visuals = VisualEnhancementService(generator, self.settings)
        self.renderer = VideoRenderingService(store, encoder, self.settings)
        self.status = StatusTracker(store)

        self.audio_dir = ensure_directory(Path(self.settings.cache_dir) / "audio")
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Dict[str, asyncio.Task] = {}
        self._cancel_requested: set = set()

        self.logger.info("Pipeline initialized", max_concurrent_jobs=self.settings.max_concurrent_jobs)

    # ---------------------------
    # Run control
    # ---------------------------

    def trigger(self, video_id: str) -> str:
        """Start a full run with default options; used as the ingestion trigger."""
        return self._launch(video_id, self._full_stages(), ScriptPreferences())

    async def start(
        self,
        video_id: str,
        preferences: Optional[ScriptPreferences] = None,
        formats: Sequence[str] = ("mp4",),
        custom_ranges: Optional[Sequence[CustomRange]] = None,
    ) -> str:
        """Start a full run for an ingested video and return its run id.

        Raises:
            NotFoundError: If the video does not exist
            ConflictError: If the video already has an active run or has finished processing
        """
        video = await self.store.get_video(video_id)
        if video.processing_status.is_terminal:
            raise ConflictError(
                f"Video {video_id} is already {video.processing_status.value}; regenerate its script instead"
            )
        return self._launch(
            video_id, self._full_stages(), preferences or ScriptPreferences(), formats, custom_ranges
        )

    async def regenerate_script(
        self,
        video_id: str,
        preferences: Optional[ScriptPreferences] = None,
        formats: Sequence[str] = ("mp4",),
    ) -> str:
        """Generate the next script version and update the video's segments in place.

        The new version is committed once the segments are realigned; a run
        that fails before that leaves the previous script version in place.

        Raises:
            NotFoundError: If the video does not exist
            ConflictError: If the video is still being processed or has no transcript yet
        """
        video = await self.store.get_video(video_id)
        if not video.processing_status.is_terminal:
            raise ConflictError(
                f"Video {video_id} is {video.processing_status.value}; regenerate once processing has finished"
            )
        if await self.store.get_transcript(video_id) is None:
            raise ConflictError(f"Video {video_id} has not been transcribed yet")
        return self._launch(
            video_id, self._regeneration_stages(), preferences or ScriptPreferences(), formats
        )

    def cancel(self, video_id: str) -> bool:
        """Request cancellation; the run stops at its next stage boundary."""
        if not self.is_active(video_id):
            return False
        self._cancel_requested.add(video_id)
        self.logger.info("Cancellation requested", video_id=video_id)
        return True

    def is_active(self, video_id: str) -> bool:
        task = self._tasks.get(video_id)
        return task is not None and not task.done()

    async def wait(self, video_id: str) -> None:
        """Wait for the active run of a video, if any, to finish."""
        task = self._tasks.get(video_id)
        if task is not None:
            await asyncio.shield(task)

    async def delete_video(self, video_id: str) -> None:
        """Delete a video's records, then its source, narration and rendered files."""
        if self.is_active(video_id):
            raise ConflictError(f"Video {video_id} has an active run")
        video = await self.store.get_video(video_id)
        files = [video.file_path, str(self.audio_dir / f"{video_id}.wav")]
        files += self._segment_files(await self.store.list_segments(video_id))
        await self.store.delete_video(video_id)
        await self._remove_unreferenced(files)

    async def get_status(self, video_id: str) -> Dict[str, Any]:
        return await self.status.get_status(video_id)

    async def get_segment_status(self, segment_id: str) -> Dict[str, Any]:
        return await self.status.get_segment_status(segment_id)

    def _launch(
        self,
        video_id: str,
        stages: List[Stage],
        preferences: ScriptPreferences,
        formats: Sequence[str] = ("mp4",),
        custom_ranges: Optional[Sequence[CustomRange]] = None,
    ) -> str:
        if self.is_active(video_id):
            raise ConflictError(f"Video {video_id} already has an active run")

        run = PipelineRun(
            run_id=f"run_{uuid.uuid4().hex[:12]}",
            video_id=video_id,
            started_at=datetime.now(),
        )
        self._cancel_requested.discard(video_id)
        task = asyncio.get_running_loop().create_task(
            self._execute(run, stages, preferences, tuple(formats), custom_ranges),
            name=f"pipeline-{video_id}",
        )
        self._tasks[video_id] = task
        task.add_done_callback(lambda t, v=video_id: self._forget(v, t))
        self.logger.info("Run queued", video_id=video_id, run_id=run.run_id, stages=[s[0] for s in stages])
        return run.run_id

    def _forget(self, video_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(video_id) is task:
            del self._tasks[video_id]
        self._cancel_requested.discard(video_id)

    def _pool(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_jobs)
        return self._semaphore

    # ---------------------------
    # Run execution
    # ---------------------------

    async def _execute(
        self,
        run: PipelineRun,
        stages: List[Stage],
        preferences: ScriptPreferences,
        formats: Tuple[str, ...],
        custom_ranges: Optional[Sequence[CustomRange]],
    ) -> None:
        video_id = run.video_id
        bind_run_context(video_id=video_id, run_id=run.run_id)
        await self.store.save_run(run)
        stage_name = None
        try:
            async with self._pool():
                await self.store.update_run(run.run_id, self._mark_running)
                video = await self.store.get_video(video_id)
                context = RunContext(
                    video=video,
                    run=run,
                    preferences=preferences,
                    formats=formats,
                    custom_ranges=custom_ranges,
                )

                for index, (stage_name, stage) in enumerate(stages):
                    self._check_cancelled(video_id)
                    progress = index / len(stages)
                    await self.store.update_run(run.run_id, self._mark_stage(stage_name, progress))
                    bind_run_context(stage=stage_name)
                    self.progress_callback.on_stage_start(video_id, stage_name, progress)
                    self.logger.info("Stage started", progress=round(progress, 2))
                    await stage(context)
                    self.progress_callback.on_stage_complete(video_id, stage_name)

                self._check_cancelled(video_id)
                await self._finish(run, context)
        except RunCancelled:
            await self._fail(run, stage_name, CANCELLED_MESSAGE)
        except MicroLessonError as e:
            await self._fail(run, stage_name, str(e))
        except Exception as e:
            self.logger.exception("Unexpected pipeline failure", video_id=video_id, stage=stage_name)
            await self._fail(run, stage_name, f"Unexpected error: {e}")

    def _check_cancelled(self, video_id: str) -> None:
        if video_id in self._cancel_requested:
            raise RunCancelled(CANCELLED_MESSAGE)

    @staticmethod
    def _mark_running(run: PipelineRun) -> None:
        run.status = RunStatus.RUNNING

    @staticmethod
    def _mark_stage(stage_name: str, progress: float) -> Callable[[PipelineRun], None]:
        def _mutate(run: PipelineRun) -> None:
            run.current_stage = stage_name
            run.progress = round(progress, 4)
        return _mutate

    async def _finish(self, run: PipelineRun, context: RunContext) -> None:
        def _complete_run(r: PipelineRun) -> None:
            r.status = RunStatus.COMPLETED
            r.progress = 1.0
            r.current_stage = None
            r.finished_at = datetime.now()

        def _complete_video(v: SourceVideo) -> None:
            v.processing_status = VideoStatus.COMPLETED
            v.error_message = None
            v.updated_at = datetime.now()

        await self.store.update_run(run.run_id, _complete_run)
        await self.store.update_video(run.video_id, _complete_video)
        self.logger.info(
            "Run completed",
            video_id=run.video_id,
            run_id=run.run_id,
            script_version=context.script.version if context.script else None,
            segments=len(context.segments),
        )

    async def _fail(self, run: PipelineRun, stage_name: Optional[str], message: str) -> None:
        def _fail_run(r: PipelineRun) -> None:
            r.status = RunStatus.FAILED
            r.error_message = message
            r.cancel_requested = message == CANCELLED_MESSAGE
            r.finished_at = datetime.now()

        def _fail_video(v: SourceVideo) -> None:
            if not v.processing_status.is_terminal:
                v.processing_status = VideoStatus.FAILED
            v.error_message = message
            v.updated_at = datetime.now()

        self.logger.error("Run failed", video_id=run.video_id, run_id=run.run_id, stage=stage_name, error=message)
        self.progress_callback.on_stage_error(run.video_id, stage_name or "startup", message)
        try:
            await self.store.update_run(run.run_id, _fail_run)
            await self.store.update_video(run.video_id, _fail_video)
        except MicroLessonError as e:
            # The video may have been deleted while the run was in flight
            self.logger.warning("Could not record run failure", video_id=run.video_id, error=str(e))

    # ---------------------------
    # Stage lists
    # ---------------------------

    def _full_stages(self) -> List[Stage]:
        return [
            ("extract_audio", self._stage_extract_audio),
            ("transcribe", self._stage_transcribe),
            ("analyze", self._stage_analyze),
            ("script", self._stage_script),
            ("segment", self._stage_segment),
            ("enhance", self._stage_enhance),
            ("render", self._stage_render),
        ]

    def _regeneration_stages(self) -> List[Stage]:
        return [
            ("load", self._stage_load_analysis),
            ("script", self._stage_script),
            ("segment", self._stage_update_segments),
            ("enhance", self._stage_enhance),
            ("render", self._stage_render),
        ]

    # ---------------------------
    # Stages
    # ---------------------------

    async def _stage_extract_audio(self, context: RunContext) -> None:
        video = context.video
        if not video.file_path:
            raise PipelineError(f"Video {video.video_id} has no media file")
        output = self.audio_dir / f"{video.video_id}.wav"
        context.audio_path = await self.encoder.extract_audio(Path(video.file_path), output)

    async def _stage_transcribe(self, context: RunContext) -> None:
        transcript = await self.transcriber.transcribe(context.audio_path, context.video.video_id)
        context.transcript = transcript
        await self.store.save_transcript(transcript)

    async def _stage_analyze(self, context: RunContext) -> None:
        context.keypoints = await self.analysis.extract_keypoints(context.transcript)
        context.profile = await self.analysis.analyze_transcript_content(context.transcript)
        await self.store.save_keypoints(context.video.video_id, context.keypoints)

        try:
            complexity = await self.analysis.analyze_content_complexity(context.transcript)
        except MicroLessonError as e:
            self.logger.warning("Complexity analysis unavailable", error=str(e))
            return
        recommendations = generate_adaptation_recommendations(
            complexity, {"pace": context.preferences.pace}, context.keypoints
        )
        await self.store.save_analysis(
            context.video.video_id,
            {"complexity": complexity.to_dict(), "recommendations": recommendations},
        )

    async def _stage_load_analysis(self, context: RunContext) -> None:
        video_id = context.video.video_id
        context.transcript = await self.store.get_transcript(video_id)
        context.keypoints = await self.store.get_keypoints(video_id)

    async def _stage_script(self, context: RunContext) -> None:
        previous = await self.store.get_script(context.video.video_id)
        version = (previous.version if previous else 0) + 1
        script = await self.scripts.generate_script(
            context.transcript,
            context.keypoints,
            preferences=context.preferences,
            version=version,
            profile=context.profile,
        )
        context.script = script

    async def _commit_script(self, context: RunContext) -> None:
        """Persist the run's script and make it the video's current version."""
        script = context.script
        await self.store.save_script(script)

        def _set_version(v: SourceVideo) -> None:
            v.script_version = script.version
            v.updated_at = datetime.now()

        context.video = await self.store.update_video(context.video.video_id, _set_version)

    async def _stage_segment(self, context: RunContext) -> None:
        context.segments = self.segmentation.segment(
            context.script,
            context.transcript,
            context.keypoints,
            context.video.duration,
            custom_ranges=context.custom_ranges,
        )
        await self.store.replace_segments(context.video.video_id, context.segments)
        await self._commit_script(context)

    async def _stage_update_segments(self, context: RunContext) -> None:
        """Apply a regenerated script to the existing segments, matched by sequence."""
        fresh = self.segmentation.segment(
            context.script, context.transcript, context.keypoints, context.video.duration
        )
        existing = {s.sequence: s for s in await self.store.list_segments(context.video.video_id)}
        stale = self._segment_files(existing.values())
        updated = []
        for segment in fresh:
            current = existing.get(segment.sequence)
            if current is None:
                updated.append(segment)
                continue
            current.reset_for_version(context.script.version)
            current.time_range = segment.time_range
            current.phase = segment.phase
            current.generated_script = segment.generated_script
            current.keypoints = segment.keypoints
            current.keypoint_alignments = segment.keypoint_alignments
            current.key_moments = segment.key_moments
            current.alignment_confidence = segment.alignment_confidence
            current.alignment_method = segment.alignment_method
            updated.append(current)
        context.segments = updated
        await self.store.replace_segments(context.video.video_id, updated)
        await self._commit_script(context)
        await self._remove_unreferenced(stale)

    async def _stage_enhance(self, context: RunContext) -> None:
        voice = self.audio.select_voice(
            language=context.preferences.language,
            complexity=context.script.complexity_level,
        )
        for segment in context.segments:
            self._check_cancelled(context.video.video_id)
            await self.audio.synthesize_segment(segment, voice)
            await self.visuals.generate_cues(segment, context.script.phase(segment.phase))
            segment.transition_to(SegmentStatus.SCRIPT_UPDATED)
            await self.store.save_segments([segment])

    async def _stage_render(self, context: RunContext) -> None:
        failures = []
        rendered = []
        for segment in context.segments:
            self._check_cancelled(context.video.video_id)
            try:
                rendered.append(await self.renderer.render_segment(segment.segment_id, context.formats))
            except MediaProcessingError as e:
                failures.append(f"{segment.segment_id}: {e}")
        if failures:
            raise MediaProcessingError(
                f"{len(failures)} of {len(context.segments)} segments failed to render; " + "; ".join(failures)
            )
        context.segments = rendered

    # ---------------------------
    # File cleanup
    # ---------------------------

    @staticmethod
    def _segment_files(segments: Iterable[MicroVideoSegment]) -> List[str]:
        files = []
        for segment in segments:
            if segment.narration is not None:
                files.append(segment.narration.path)
            files.extend(output.path for output in segment.output_files)
        return files

    async def _remove_unreferenced(self, files: Iterable[Optional[str]]) -> None:
        """Remove files no remaining record points at.

        Media is content-addressed, so another video may share a source file
        or a narration clip.
        """
        referenced = set()
        for video in await self.store.list_videos():
            if video.file_path:
                referenced.add(video.file_path)
            referenced.update(self._segment_files(await self.store.list_segments(video.video_id)))

        removed = [path for path in files if path and path not in referenced and remove_file(path)]
        if removed:
            self.logger.info("Media files removed", count=len(removed))
