"""
Pytest configuration and fixtures for the micro-lesson pipeline tests.
"""

import asyncio
import copy
import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Any, Dict, Generator

from microlesson_pipeline.config import Settings
from microlesson_pipeline.exceptions import MediaProcessingError
from microlesson_pipeline.models import (
    BloomLevel,
    CLTScript,
    CognitiveLoad,
    Difficulty,
    Keypoint,
    PhaseName,
    ScriptPhase,
    SourceType,
    SourceVideo,
    Transcript,
    TranscriptSegment,
    VideoStatus,
)
from microlesson_pipeline.services.audio_synthesis import SynthesizedAudio
from microlesson_pipeline.services.content_analysis import (
    COMPLEXITY_PROMPT,
    KEYPOINT_PROMPT,
    TRANSCRIPT_ANALYSIS_PROMPT,
)
from microlesson_pipeline.services.media_encoder import MediaInfo
from microlesson_pipeline.services.media_store import MediaStore
from microlesson_pipeline.services.record_store import RecordStore
from microlesson_pipeline.services.script_generation import SCRIPT_PROMPT
from microlesson_pipeline.services.script_optimizer import QUALITY_PROMPT as SCRIPT_QUALITY_PROMPT
from microlesson_pipeline.services.text_generation import TextGenerationError
from microlesson_pipeline.services.transcription import build_transcript
from microlesson_pipeline.services.visual_enhancement import KEYPOINT_CUE_PROMPT, PHASE_CUE_PROMPT


VIDEO_ID = "video_test"

# A 400 second lecture on recursion, ten 40 second segments
RAW_SEGMENTS = [
    "Welcome everyone. Today we begin an introduction to recursion in programming.",
    "Our goal is that you will learn how recursive functions call themselves.",
    "A recursive function needs a base case that stops the recursion.",
    "Important concept: every recursive call must move closer to the base case.",
    "For example, factorial multiplies n by the factorial of n minus one.",
    "The call stack stores each pending factorial call until the base case returns.",
    "Another example is traversing a binary tree with recursive calls on each child.",
    "Deep recursion can overflow the call stack, so iteration is sometimes better.",
    "In summary, recursion splits a problem into smaller copies of itself.",
    "Remember the base case and the recursive step when you write your own functions?",
]

SEGMENT_IMPORTANCE = {0: 0.75, 3: 0.9, 9: 0.8}

SCRIPT_RESPONSE = {
    "prepare": {
        "content": "Welcome! Today we begin an introduction to recursion.",
        "duration": 25,
        "purpose": "Activate prior knowledge",
        "cognitive_strategy": "Advance question",
    },
    "initiate": {
        "content": "Our goal: you will learn how recursive functions call themselves.",
        "duration": 35,
        "purpose": "Set objectives",
        "cognitive_strategy": "Advance organizer",
    },
    "deliver": {
        "content": (
            "A recursive function needs a base case. Each recursive call moves closer to the base case. "
            "Factorial multiplies n by factorial of n minus one, and the call stack stores pending calls."
        ),
        "duration": 150,
        "purpose": "Teach core concepts",
        "cognitive_strategy": "Worked examples",
    },
    "end": {
        "content": (
            "In summary, recursion splits a problem into smaller copies. "
            "Remember the base case and the recursive step."
        ),
        "duration": 30,
        "purpose": "Consolidate",
        "cognitive_strategy": "Reflection",
    },
}

KEYPOINTS_RESPONSE = {
    "keypoints": [
        {
            "concept": "base case",
            "description": "The condition that stops recursion",
            "importance": 9,
            "bloom_level": "understand",
            "difficulty": "beginner",
            "examples": ["factorial(0) returns 1"],
            "prerequisites": ["functions"],
        },
        {
            "concept": "factorial",
            "description": "Classic recursive example",
            "importance": 7,
            "bloom_level": "apply",
            "difficulty": "beginner",
            "examples": ["5! = 120"],
            "prerequisites": [],
        },
        {
            "concept": "recursive step",
            "description": "The call that shrinks the problem",
            "importance": 6,
            "bloom_level": "Apply",
            "difficulty": "Intermediate",
            "examples": ["sum(n) calls sum(n - 1)"],
            "prerequisites": ["base case"],
        },
    ]
}

PROFILE_RESPONSE = {
    "subject_area": "recursion",
    "complexity_level": "beginner",
    "key_concepts": ["base case", "factorial", "recursive step"],
    "content_type": "conceptual",
}

COMPLEXITY_RESPONSE = {
    "overall_complexity": "Advanced",
    "complexity_score": 7.5,
    "vocabulary_level": "technical",
    "cognitive_load_factors": ["abstract call stack"],
    "attention_requirements": "sustained",
    "novice_friendly": False,
    "scaffolding_needed": True,
}

SCRIPT_QUALITY_RESPONSE = {
    "clarity": 8,
    "engagement": 7,
    "cognitive_load_balance": 9,
    "pedagogical_alignment": 8,
    "suggestions": ["Add a worked example"],
}

CUE_RESPONSE = {
    "background_elements": {"color_scheme": "blue", "style": "minimal"},
    "text_presentation": {"animation_type": "fade_in", "emphasis": ["base case"], "position": "top"},
    "visual_elements": ["call stack diagram"],
    "cognitive_support": ["highlight key term"],
    "educational_rationale": "Keeps attention on one idea",
}


# ---------------------------
# Deterministic collaborators
# ---------------------------

class StubGenerator:
    """Text generator answering by prompt template.

    A response may be a dict, a callable taking the params, or an exception
    to raise.
    """

    def __init__(self, responses: Dict[str, Any]):
        self.responses = dict(responses)
        self.calls = []

    async def generate(self, prompt_template: str, params: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((prompt_template, params))
        response = self.responses.get(prompt_template)
        if response is None:
            raise TextGenerationError("No stub response for prompt")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(params)
        return copy.deepcopy(response)

    def calls_for(self, prompt_template: str):
        return [params for template, params in self.calls if template == prompt_template]


class StubEncoder:
    """Media encoder writing small placeholder files instead of running ffmpeg."""

    def __init__(self, info: MediaInfo = None, fail_render: bool = False):
        self.info = info or MediaInfo(
            duration=400.0, width=1280, height=720, video_codec="h264", audio_codec="aac", format_name="mp4"
        )
        self.fail_render = fail_render
        self.requests = []
        self.extracted = []
        self._durations = {}

    async def probe(self, path: Path) -> MediaInfo:
        path = Path(path)
        if path in self._durations:
            return MediaInfo(duration=self._durations[path], width=1280, height=720, video_codec="h264")
        return self.info

    async def extract_audio(self, path: Path, output: Path) -> Path:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"RIFF audio")
        self.extracted.append(Path(path))
        return output

    async def render_clip(self, request) -> Path:
        self.requests.append(request)
        request.output.parent.mkdir(parents=True, exist_ok=True)
        if self.fail_render:
            request.output.write_bytes(b"partial")
            raise MediaProcessingError("encoder crashed")
        request.output.write_bytes(b"rendered clip")
        duration = request.sync.output_duration if request.sync else request.time_range.duration
        self._durations[request.output] = duration
        return request.output


class StubSynthesizer:
    """Speech synthesizer producing 0.4 seconds of audio per word."""

    def __init__(self, seconds_per_word: float = 0.4):
        self.seconds_per_word = seconds_per_word
        self.calls = []

    async def synthesize(self, text: str, voice) -> SynthesizedAudio:
        self.calls.append((text, voice))
        return SynthesizedAudio(
            audio_bytes=f"{voice.voice_name}:{text}".encode("utf-8"),
            duration_seconds=round(len(text.split()) * self.seconds_per_word, 3),
        )


class StubTranscriber:
    """Transcriber returning the recursion lecture for any audio."""

    def __init__(self, raw_segments=None):
        self.raw_segments = raw_segments or [
            {"start": i * 40.0, "end": (i + 1) * 40.0, "text": text, "confidence": 0.9}
            for i, text in enumerate(RAW_SEGMENTS)
        ]
        self.calls = []

    async def transcribe(self, audio_path: Path, video_id: str) -> Transcript:
        self.calls.append(Path(audio_path))
        return build_transcript(self.raw_segments, video_id=video_id, language="en")


def default_responses() -> Dict[str, Any]:
    return {
        KEYPOINT_PROMPT: KEYPOINTS_RESPONSE,
        TRANSCRIPT_ANALYSIS_PROMPT: PROFILE_RESPONSE,
        COMPLEXITY_PROMPT: COMPLEXITY_RESPONSE,
        SCRIPT_PROMPT: SCRIPT_RESPONSE,
        SCRIPT_QUALITY_PROMPT: SCRIPT_QUALITY_RESPONSE,
        PHASE_CUE_PROMPT: CUE_RESPONSE,
        KEYPOINT_CUE_PROMPT: CUE_RESPONSE,
    }


# ---------------------------
# Fixtures
# ---------------------------

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Create test settings with temporary directories."""
    settings = Settings(
        data_dir=temp_dir / "data",
        output_dir=temp_dir / "output",
        cache_dir=temp_dir / "cache",
        logs_dir=temp_dir / "logs",
        max_concurrent_jobs=2,
        log_level="DEBUG",
    )

    # Create directories
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.output_dir.mkdir(parents=True, exist_ok=True)
    settings.cache_dir.mkdir(parents=True, exist_ok=True)
    settings.logs_dir.mkdir(parents=True, exist_ok=True)

    return settings


@pytest.fixture
def record_store(test_settings: Settings) -> RecordStore:
    return RecordStore(test_settings)


@pytest.fixture
def media_store(test_settings: Settings) -> MediaStore:
    return MediaStore(test_settings)


@pytest.fixture
def stub_generator() -> StubGenerator:
    return StubGenerator(default_responses())


@pytest.fixture
def stub_encoder() -> StubEncoder:
    return StubEncoder()


@pytest.fixture
def stub_synthesizer() -> StubSynthesizer:
    return StubSynthesizer()


@pytest.fixture
def stub_transcriber() -> StubTranscriber:
    return StubTranscriber()


@pytest.fixture
def script_response() -> Dict[str, Any]:
    return copy.deepcopy(SCRIPT_RESPONSE)


@pytest.fixture
def sample_transcript() -> Transcript:
    """The recursion lecture with hand-set importance and 0.9 confidence."""
    segments = [
        TranscriptSegment(
            segment_id=f"seg_{i:04d}",
            start_time=i * 40.0,
            end_time=(i + 1) * 40.0,
            text=text,
            confidence=0.9,
            importance=SEGMENT_IMPORTANCE.get(i, 0.5),
        )
        for i, text in enumerate(RAW_SEGMENTS)
    ]
    return Transcript(transcript_id="transcript_test", video_id=VIDEO_ID, segments=segments)


@pytest.fixture
def sample_keypoints() -> list:
    return [
        Keypoint(
            concept="base case",
            description="The condition that stops recursion",
            importance=0.9,
            bloom_level=BloomLevel.UNDERSTAND,
            difficulty=Difficulty.BEGINNER,
            examples=("factorial(0) returns 1",),
            related_segment_ids=("seg_0002", "seg_0003", "seg_0005", "seg_0009"),
        ),
        Keypoint(
            concept="factorial",
            description="Classic recursive example",
            importance=0.7,
            bloom_level=BloomLevel.APPLY,
            difficulty=Difficulty.BEGINNER,
            examples=("5! = 120",),
            related_segment_ids=("seg_0004", "seg_0005"),
        ),
        Keypoint(
            concept="recursive step",
            description="The call that shrinks the problem",
            importance=0.6,
            bloom_level=BloomLevel.APPLY,
            difficulty=Difficulty.INTERMEDIATE,
            related_segment_ids=("seg_0009",),
        ),
    ]


@pytest.fixture
def sample_script() -> CLTScript:
    """A four-phase script of exactly 240 seconds for the recursion lecture."""
    phases = [
        ScriptPhase(
            name=PhaseName(name),
            content=SCRIPT_RESPONSE[name]["content"],
            duration=float(SCRIPT_RESPONSE[name]["duration"]),
            purpose=SCRIPT_RESPONSE[name]["purpose"],
            cognitive_load=CognitiveLoad(0.4, 0.3, 0.5),
        )
        for name in ("prepare", "initiate", "deliver", "end")
    ]
    return CLTScript(
        script_id="script_video_test_v1",
        video_id=VIDEO_ID,
        phases=phases,
        target_duration=240.0,
        bloom_level=BloomLevel.UNDERSTAND,
        subject_area="recursion",
        complexity_level=Difficulty.BEGINNER,
    )


@pytest.fixture
def mock_video_file(temp_dir: Path) -> Path:
    """Create a mock video file for testing."""
    video_file = temp_dir / "lecture.mp4"
    video_file.write_bytes(b"fake video content")
    return video_file


@pytest.fixture
def stored_video(record_store: RecordStore, mock_video_file: Path) -> SourceVideo:
    """A 400 second source video already accepted by ingestion."""
    video = SourceVideo(
        video_id=VIDEO_ID,
        source_type=SourceType.UPLOAD,
        title="Recursion lecture",
        file_path=str(mock_video_file),
        file_size=mock_video_file.stat().st_size,
        mime_type="video/mp4",
        width=1280,
        height=720,
        duration=400.0,
        video_codec="h264",
        processing_status=VideoStatus.PROCESSING,
    )
    asyncio.run(record_store.save_video(video))
    return video


# Property-based testing fixtures
@pytest.fixture
def hypothesis_settings():
    """Configure Hypothesis settings for property tests."""
    from hypothesis import settings, Verbosity

    return settings(
        max_examples=100,
        verbosity=Verbosity.verbose,
        deadline=None,  # No deadline for slow operations
    )
