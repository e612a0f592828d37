"""
Command line entry point.

Usage:
    microlesson process lecture.mp4 [--target-duration 240] [--formats mp4 webm]
    microlesson process https://www.youtube.com/watch?v=... --pace slow
    microlesson regenerate video_1a2b3c4d5e6f --bloom apply
    microlesson search "python" --level beginner --max 3
    microlesson status video_1a2b3c4d5e6f
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from .config import get_settings
from .exceptions import MicroLessonError
from .models import BloomLevel
from .services.api_client import ApiClient
from .services.audio_synthesis import EdgeTTSSynthesizer
from .services.candidate_ranking import CandidateRankingService, YouTubeCatalog
from .services.media_encoder import FFmpegEncoder
from .services.media_store import MediaStore
from .services.pipeline import MicroLessonPipeline, ProgressCallback
from .services.record_store import RecordStore
from .services.script_generation import PACE_FACTORS, ScriptPreferences
from .services.status_tracker import StatusTracker
from .services.text_generation import OllamaTextGenerator
from .services.transcription import WhisperApiTranscriber
from .services.video_ingestion import VideoIngestionService
from .services.video_renderer import SUPPORTED_FORMATS


class ConsoleProgressCallback(ProgressCallback):
    """Minimal console progress reporter."""

    def on_stage_start(self, video_id: str, stage_name: str, progress: float) -> None:
        print(f"[START] {stage_name} ({progress:.0%})", flush=True)

    def on_stage_complete(self, video_id: str, stage_name: str) -> None:
        print(f"[DONE] {stage_name}", flush=True)

    def on_stage_error(self, video_id: str, stage_name: str, error: str) -> None:
        print(f"[ERROR] {stage_name}: {error}", file=sys.stderr, flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="microlesson",
        description="Turn long-form instructional videos into CLT-bLM micro-lessons",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process", help="Ingest a video file or URL and process it")
    process.add_argument("source", help="Path to a local video file or a video URL")
    process.add_argument("--title", help="Title for the lesson (defaults to the file name or remote title)")
    process.add_argument("--description", help="Optional description")
    _add_script_options(process)

    regenerate = sub.add_parser("regenerate", help="Generate a new script version for a processed video")
    regenerate.add_argument("video_id")
    _add_script_options(regenerate)

    search = sub.add_parser("search", help="Find educational source videos for a topic")
    search.add_argument("topic")
    search.add_argument("--level", default="beginner", help="beginner, intermediate or advanced")
    search.add_argument("--max", dest="max_videos", type=int, default=3)

    status = sub.add_parser("status", help="Show processing status of a video")
    status.add_argument("video_id")
    return parser


def _add_script_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--target-duration", type=float, help="Target lesson length in seconds")
    parser.add_argument("--bloom", choices=[b.value for b in BloomLevel], help="Preferred Bloom level")
    parser.add_argument("--pace", choices=sorted(PACE_FACTORS), default="normal")
    parser.add_argument("--language", default=None, help="Narration language code (default from settings)")
    parser.add_argument(
        "--formats",
        nargs="+",
        default=["mp4"],
        choices=SUPPORTED_FORMATS,
        help="Output container formats. Default: mp4",
    )


def preferences_from_args(args: argparse.Namespace) -> ScriptPreferences:
    settings = get_settings()
    return ScriptPreferences(
        target_duration=args.target_duration,
        preferred_bloom_level=BloomLevel(args.bloom) if args.bloom else None,
        pace=args.pace,
        language=args.language or settings.tts_language,
    )


def build_pipeline(settings=None, progress_callback: Optional[ProgressCallback] = None) -> MicroLessonPipeline:
    """Wire the pipeline with its production collaborators."""
    settings = settings or get_settings()
    api_client = ApiClient(settings)
    store = RecordStore(settings)
    return MicroLessonPipeline(
        store=store,
        media_store=MediaStore(settings),
        encoder=FFmpegEncoder(settings),
        transcriber=WhisperApiTranscriber(settings, api_client),
        generator=OllamaTextGenerator(settings, api_client),
        synthesizer=EdgeTTSSynthesizer(settings),
        settings=settings,
        progress_callback=progress_callback,
    )


async def _process(args: argparse.Namespace) -> int:
    settings = get_settings()
    pipeline = build_pipeline(settings, ConsoleProgressCallback())
    ingestion = VideoIngestionService(
        settings,
        store=pipeline.store,
        media_store=pipeline.media_store,
        encoder=pipeline.encoder,
    )
    if args.source.startswith(("http://", "https://")):
        receipt = await ingestion.ingest_url(args.source, args.title, args.description)
    else:
        receipt = await ingestion.ingest_upload(args.source, args.title, args.description)
    print(f"Ingested video: {receipt.video_id} (estimated {receipt.estimated_completion_seconds}s)")

    await pipeline.start(receipt.video_id, preferences_from_args(args), formats=args.formats)
    await pipeline.wait(receipt.video_id)
    return _report(await pipeline.get_status(receipt.video_id))


async def _regenerate(args: argparse.Namespace) -> int:
    pipeline = build_pipeline(progress_callback=ConsoleProgressCallback())
    await pipeline.regenerate_script(args.video_id, preferences_from_args(args), formats=args.formats)
    await pipeline.wait(args.video_id)
    return _report(await pipeline.get_status(args.video_id))


async def _search(args: argparse.Namespace) -> int:
    settings = get_settings()
    api_client = ApiClient(settings)
    try:
        service = CandidateRankingService(
            YouTubeCatalog(settings, api_client),
            OllamaTextGenerator(settings, api_client),
            settings,
        )
        candidates = await service.search_educational_videos(args.topic, args.level, args.max_videos)
    finally:
        await api_client.aclose()

    if not candidates:
        print("No educational videos found")
        return 1
    for rank, candidate in enumerate(candidates, 1):
        print(f"{rank}. {candidate.title}")
        print(f"   {candidate.url}")
        print(
            f"   quality {candidate.quality_score:.1f}/10, score {candidate.composite_score:.2f}, "
            f"{candidate.view_count} views"
        )
    return 0


async def _status(args: argparse.Namespace) -> int:
    status = await StatusTracker(RecordStore(get_settings())).get_status(args.video_id)
    print(json.dumps(status, indent=2))
    return 0


def _report(status: dict) -> int:
    print(json.dumps(status, indent=2))
    return 0 if status["status"] == "completed" and not status["error"] else 1


COMMANDS = {
    "process": _process,
    "regenerate": _regenerate,
    "search": _search,
    "status": _status,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(COMMANDS[args.command](args))
    except MicroLessonError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
