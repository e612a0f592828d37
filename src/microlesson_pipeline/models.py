"""
Core data models for the micro-lesson pipeline.
"""

from dataclasses import dataclass, asdict, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union, Dict, Any

from .exceptions import ConflictError


def _jsonable(value: Any) -> Any:
    """Convert enums, datetimes, paths and tuples into JSON-friendly values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be between 0 and 1, got {value}")


class SourceType(Enum):
    """Where a source video came from."""
    UPLOAD = "upload"
    REMOTE_URL = "remote_url"


class VideoStatus(Enum):
    """Processing status of a source video."""
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (VideoStatus.COMPLETED, VideoStatus.FAILED)


class SegmentStatus(Enum):
    """Processing status of a micro-video segment."""
    PENDING = "pending"
    SEGMENTED = "segmented"
    SCRIPT_UPDATED = "script_updated"
    RENDERING = "rendering"
    RENDERED = "rendered"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SegmentStatus.RENDERED, SegmentStatus.FAILED)

    @property
    def progress_percent(self) -> int:
        return SEGMENT_PROGRESS[self]


_SEGMENT_ORDER = [
    SegmentStatus.PENDING,
    SegmentStatus.SEGMENTED,
    SegmentStatus.SCRIPT_UPDATED,
    SegmentStatus.RENDERING,
    SegmentStatus.RENDERED,
]

SEGMENT_PROGRESS = {
    SegmentStatus.PENDING: 0,
    SegmentStatus.SEGMENTED: 10,
    SegmentStatus.SCRIPT_UPDATED: 20,
    SegmentStatus.RENDERING: 50,
    SegmentStatus.RENDERED: 100,
    SegmentStatus.FAILED: 0,
}


class BloomLevel(Enum):
    """Bloom's taxonomy levels, lowest to highest."""
    REMEMBER = "remember"
    UNDERSTAND = "understand"
    APPLY = "apply"
    ANALYZE = "analyze"
    EVALUATE = "evaluate"
    CREATE = "create"


class Difficulty(Enum):
    """Difficulty or complexity tier."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class PhaseName(Enum):
    """The four phases of a CLT-bLM script, in narrative order."""
    PREPARE = "prepare"
    INITIATE = "initiate"
    DELIVER = "deliver"
    END = "end"


PHASE_ORDER = [PhaseName.PREPARE, PhaseName.INITIATE, PhaseName.DELIVER, PhaseName.END]


class AlignmentMethod(Enum):
    """How a segment's time range was determined."""
    TOKEN_OVERLAP = "token_overlap"
    CUSTOM = "custom"
    PROPORTIONAL_FALLBACK = "proportional_fallback"


class RunStatus(Enum):
    """Status of one pipeline run."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SourceVideo:
    """An ingested long-form instructional video."""
    video_id: str
    source_type: SourceType
    title: str
    description: str = ""
    file_path: Optional[str] = None
    file_size: int = 0
    mime_type: str = ""
    width: int = 0
    height: int = 0
    duration: float = 0.0  # seconds
    video_codec: str = ""
    source_url: Optional[str] = None
    processing_status: VideoStatus = VideoStatus.UPLOADED
    error_message: Optional[str] = None
    script_version: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        """Validate data after initialization."""
        if not self.video_id:
            raise ValueError("Video ID cannot be empty")
        if not self.title:
            raise ValueError("Title cannot be empty")
        if self.duration < 0:
            raise ValueError("Duration cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SourceVideo':
        """Create instance from dictionary."""
        data = data.copy()
        data['source_type'] = SourceType(data['source_type'])
        data['processing_status'] = VideoStatus(data['processing_status'])
        data['created_at'] = _parse_datetime(data.get('created_at')) or datetime.now()
        data['updated_at'] = _parse_datetime(data.get('updated_at')) or datetime.now()
        return cls(**data)


@dataclass
class TranscriptSegment:
    """A timed unit of transcribed speech."""
    segment_id: str
    start_time: float  # seconds
    end_time: float
    text: str
    confidence: float = 1.0
    importance: float = 0.5
    key_topics: List[str] = field(default_factory=list)
    conceptual_density: float = 0.0
    speaking_rate: float = 0.0  # words per minute

    def __post_init__(self):
        """Validate data after initialization."""
        if self.start_time < 0:
            raise ValueError("Start time cannot be negative")
        if self.end_time <= self.start_time:
            raise ValueError("End time must be greater than start time")
        _check_unit_interval("Confidence", self.confidence)
        _check_unit_interval("Importance", self.importance)
        _check_unit_interval("Conceptual density", self.conceptual_density)

    @property
    def duration(self) -> float:
        """Get segment duration in seconds."""
        return self.end_time - self.start_time

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def overlaps_with(self, other: 'TranscriptSegment') -> bool:
        """Check if this segment overlaps with another."""
        return max(self.start_time, other.start_time) < min(self.end_time, other.end_time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TranscriptSegment':
        """Create instance from dictionary."""
        return cls(**data)


@dataclass
class Transcript:
    """Ordered, non-overlapping transcript of one source video."""
    transcript_id: str
    video_id: str
    segments: List[TranscriptSegment]
    language: str = "en"
    full_text: str = ""
    overall_confidence: float = 0.0

    def __post_init__(self):
        """Validate ordering and fill derived fields."""
        if not self.segments:
            raise ValueError("Transcript must contain at least one segment")
        for previous, current in zip(self.segments, self.segments[1:]):
            if previous.end_time > current.start_time:
                raise ValueError(
                    f"Segments {previous.segment_id} and {current.segment_id} overlap or are out of order"
                )
        if not self.full_text:
            self.full_text = " ".join(s.text.strip() for s in self.segments)
        if not self.overall_confidence:
            self.overall_confidence = round(
                sum(s.confidence for s in self.segments) / len(self.segments), 4
            )

    @property
    def duration(self) -> float:
        return self.segments[-1].end_time

    @property
    def word_count(self) -> int:
        return sum(s.word_count for s in self.segments)

    @property
    def segment_count(self) -> int:
        return len(self.segments)

    def get_segment(self, segment_id: str) -> Optional[TranscriptSegment]:
        for segment in self.segments:
            if segment.segment_id == segment_id:
                return segment
        return None

    def get_segments_in_range(self, start: float, end: float) -> List[TranscriptSegment]:
        """Segments that overlap the half-open interval [start, end)."""
        return [s for s in self.segments if s.start_time < end and s.end_time > start]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'transcript_id': self.transcript_id,
            'video_id': self.video_id,
            'segments': [s.to_dict() for s in self.segments],
            'language': self.language,
            'full_text': self.full_text,
            'overall_confidence': self.overall_confidence,
            'word_count': self.word_count,
            'segment_count': self.segment_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transcript':
        """Create instance from dictionary."""
        return cls(
            transcript_id=data['transcript_id'],
            video_id=data['video_id'],
            segments=[TranscriptSegment.from_dict(s) for s in data['segments']],
            language=data.get('language', 'en'),
            full_text=data.get('full_text', ''),
            overall_confidence=data.get('overall_confidence', 0.0),
        )


@dataclass(frozen=True)
class Keypoint:
    """An educational concept extracted from a transcript."""
    concept: str
    description: str
    importance: float
    bloom_level: BloomLevel
    difficulty: Difficulty
    examples: Tuple[str, ...] = ()
    prerequisites: Tuple[str, ...] = ()
    related_segment_ids: Tuple[str, ...] = ()
    avg_confidence: float = 0.0
    total_duration: float = 0.0
    conceptual_density: float = 0.0
    cognitive_load_estimate: float = 0.0
    learning_time_estimate: int = 0  # seconds
    teaching_strategies: Tuple[str, ...] = ()

    def __post_init__(self):
        """Validate data after initialization."""
        if not self.concept.strip():
            raise ValueError("Concept cannot be empty")
        _check_unit_interval("Importance", self.importance)
        _check_unit_interval("Average confidence", self.avg_confidence)
        _check_unit_interval("Conceptual density", self.conceptual_density)
        _check_unit_interval("Cognitive load estimate", self.cognitive_load_estimate)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Keypoint':
        """Create instance from dictionary."""
        data = data.copy()
        data['bloom_level'] = BloomLevel(data['bloom_level'])
        data['difficulty'] = Difficulty(data['difficulty'])
        for name in ('examples', 'prerequisites', 'related_segment_ids', 'teaching_strategies'):
            data[name] = tuple(data.get(name, ()))
        return cls(**data)


@dataclass
class CognitiveLoad:
    """Intrinsic, extraneous and germane load of a script phase."""
    intrinsic: float
    extraneous: float
    germane: float

    def __post_init__(self):
        """Validate each component lies in [0, 1]."""
        _check_unit_interval("Intrinsic load", self.intrinsic)
        _check_unit_interval("Extraneous load", self.extraneous)
        _check_unit_interval("Germane load", self.germane)

    @property
    def total(self) -> float:
        return round((self.intrinsic + self.extraneous + self.germane) / 3, 2)


@dataclass
class ScriptPhase:
    """One phase of a CLT-bLM script."""
    name: PhaseName
    content: str
    duration: float  # seconds
    purpose: str = ""
    cognitive_strategy: str = ""
    cognitive_load: CognitiveLoad = field(default_factory=lambda: CognitiveLoad(0.5, 0.5, 0.5))
    scaffolding: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate data after initialization."""
        if self.duration <= 0:
            raise ValueError("Phase duration must be positive")
        if not self.content.strip():
            raise ValueError("Phase content cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScriptPhase':
        data = data.copy()
        data['name'] = PhaseName(data['name'])
        data['cognitive_load'] = CognitiveLoad(**data['cognitive_load'])
        return cls(**data)


@dataclass
class CLTScript:
    """A four-phase narrative script with a duration target."""
    script_id: str
    video_id: str
    phases: List[ScriptPhase]
    target_duration: float
    version: int = 1
    bloom_level: BloomLevel = BloomLevel.UNDERSTAND
    subject_area: str = ""
    complexity_level: Difficulty = Difficulty.INTERMEDIATE
    learning_objectives: List[str] = field(default_factory=list)
    quality_warning: Optional[str] = None
    optimization_passes: int = 0
    structure_issues: List[str] = field(default_factory=list)
    quality_assessment: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        """Validate phase structure."""
        names = [p.name for p in self.phases]
        if names != PHASE_ORDER:
            raise ValueError(
                f"Script must contain exactly the phases {[p.value for p in PHASE_ORDER]} in order, "
                f"got {[n.value for n in names]}"
            )
        if self.target_duration <= 0:
            raise ValueError("Target duration must be positive")
        if self.version < 1:
            raise ValueError("Version must be at least 1")

    @property
    def total_duration(self) -> float:
        return sum(p.duration for p in self.phases)

    def deviation(self) -> float:
        """Relative deviation of the total duration from the target."""
        return abs(self.total_duration - self.target_duration) / self.target_duration

    def within_tolerance(self, tolerance: float = 0.1) -> bool:
        return abs(self.total_duration - self.target_duration) <= tolerance * self.target_duration + 1e-9

    def phase(self, name: PhaseName) -> ScriptPhase:
        return self.phases[PHASE_ORDER.index(name)]

    def to_dict(self) -> Dict[str, Any]:
        data = _jsonable(asdict(self))
        data['total_duration'] = self.total_duration
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CLTScript':
        data = data.copy()
        data.pop('total_duration', None)
        data['phases'] = [ScriptPhase.from_dict(p) for p in data['phases']]
        data['bloom_level'] = BloomLevel(data['bloom_level'])
        data['complexity_level'] = Difficulty(data['complexity_level'])
        data['created_at'] = _parse_datetime(data.get('created_at')) or datetime.now()
        return cls(**data)


@dataclass(frozen=True)
class TimeRange:
    """A half-open span [start, end) on the source timeline."""
    start: float
    end: float

    def __post_init__(self):
        if self.start < 0:
            raise ValueError("Start cannot be negative")
        if self.end <= self.start:
            raise ValueError("End must be greater than start")

    @property
    def duration(self) -> float:
        return self.end - self.start

    def overlaps(self, other: 'TimeRange') -> bool:
        return max(self.start, other.start) < min(self.end, other.end)

    def overlap_seconds(self, start: float, end: float) -> float:
        return max(0.0, min(self.end, end) - max(self.start, start))

    def contains(self, timestamp: float) -> bool:
        return self.start <= timestamp < self.end

    def to_dict(self) -> Dict[str, Any]:
        return {'start': self.start, 'end': self.end, 'duration': self.duration}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TimeRange':
        return cls(start=data['start'], end=data['end'])


@dataclass
class KeypointAlignment:
    """How reliably a keypoint maps onto a moment of the source video."""
    concept: str
    confidence: float
    trusted: bool
    anchor: Optional[TimeRange] = None

    def __post_init__(self):
        _check_unit_interval("Alignment confidence", self.confidence)
        if not self.trusted and self.anchor is not None:
            raise ValueError("Untrusted keypoints cannot carry a visual anchor")
        if self.trusted and self.anchor is None:
            raise ValueError("Trusted keypoints need a visual anchor")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'concept': self.concept,
            'confidence': self.confidence,
            'trusted': self.trusted,
            'anchor': self.anchor.to_dict() if self.anchor else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'KeypointAlignment':
        anchor = data.get('anchor')
        return cls(
            concept=data['concept'],
            confidence=data['confidence'],
            trusted=data['trusted'],
            anchor=TimeRange.from_dict(anchor) if anchor else None,
        )


@dataclass
class NarrationAudio:
    """A synthesized narration asset."""
    path: str
    duration: float
    voice: str


@dataclass
class OutputFile:
    """A rendered micro-video file."""
    path: str
    format: str
    size_bytes: int
    duration: float


@dataclass
class MicroVideoSegment:
    """A short clip of the source video narrated by one script phase."""
    segment_id: str
    original_video_id: str
    transcript_id: str
    sequence: int
    time_range: TimeRange
    phase: PhaseName
    generated_script: str
    keypoints: List[Keypoint] = field(default_factory=list)
    keypoint_alignments: List[KeypointAlignment] = field(default_factory=list)
    key_moments: List[float] = field(default_factory=list)
    alignment_confidence: float = 0.0
    alignment_method: AlignmentMethod = AlignmentMethod.TOKEN_OVERLAP
    processing_status: SegmentStatus = SegmentStatus.PENDING
    narration: Optional[NarrationAudio] = None
    visual_cues: Dict[str, Any] = field(default_factory=dict)
    output_files: List[OutputFile] = field(default_factory=list)
    error_message: Optional[str] = None
    script_version: int = 1
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        """Validate data after initialization."""
        if self.sequence < 1:
            raise ValueError("Sequence numbers start at 1")
        _check_unit_interval("Alignment confidence", self.alignment_confidence)

    @property
    def progress_percent(self) -> int:
        return self.processing_status.progress_percent

    def transition_to(self, status: SegmentStatus, error: Optional[str] = None) -> None:
        """Move the segment forward in its lifecycle.

        Raises:
            ConflictError: If the transition would move backwards or leave a terminal state
        """
        current = self.processing_status
        if current.is_terminal:
            raise ConflictError(
                f"Segment {self.segment_id} is already {current.value}"
            )
        if status is SegmentStatus.FAILED:
            self.error_message = error or self.error_message
        elif _SEGMENT_ORDER.index(status) <= _SEGMENT_ORDER.index(current):
            raise ConflictError(
                f"Segment {self.segment_id} cannot move from {current.value} to {status.value}"
            )
        self.processing_status = status
        self.updated_at = datetime.now()

    def reset_for_version(self, version: int) -> None:
        """Start a fresh lifecycle for a regenerated script version."""
        if self.processing_status is SegmentStatus.RENDERING:
            raise ConflictError(f"Segment {self.segment_id} is rendering")
        self.script_version = version
        self.processing_status = SegmentStatus.SEGMENTED
        self.narration = None
        self.visual_cues = {}
        self.output_files = []
        self.error_message = None
        self.updated_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == 'time_range':
                data[f.name] = value.to_dict()
            elif f.name == 'keypoints':
                data[f.name] = [k.to_dict() for k in value]
            elif f.name == 'keypoint_alignments':
                data[f.name] = [a.to_dict() for a in value]
            elif is_dataclass(value):
                data[f.name] = _jsonable(asdict(value))
            elif isinstance(value, list) and value and is_dataclass(value[0]):
                data[f.name] = [_jsonable(asdict(v)) for v in value]
            else:
                data[f.name] = _jsonable(value)
        data['progress_percent'] = self.progress_percent
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MicroVideoSegment':
        """Create instance from dictionary."""
        data = data.copy()
        data.pop('progress_percent', None)
        data['time_range'] = TimeRange.from_dict(data['time_range'])
        data['phase'] = PhaseName(data['phase'])
        data['keypoints'] = [Keypoint.from_dict(k) for k in data.get('keypoints', [])]
        data['keypoint_alignments'] = [
            KeypointAlignment.from_dict(a) for a in data.get('keypoint_alignments', [])
        ]
        data['alignment_method'] = AlignmentMethod(data['alignment_method'])
        data['processing_status'] = SegmentStatus(data['processing_status'])
        if data.get('narration'):
            data['narration'] = NarrationAudio(**data['narration'])
        data['output_files'] = [OutputFile(**o) for o in data.get('output_files', [])]
        data['created_at'] = _parse_datetime(data.get('created_at')) or datetime.now()
        data['updated_at'] = _parse_datetime(data.get('updated_at')) or datetime.now()
        return cls(**data)


@dataclass
class CandidateVideo:
    """A catalog search result considered for ingestion."""
    video_id: str
    title: str
    url: str
    duration: float
    view_count: int
    like_count: int = 0
    comment_count: int = 0
    description: str = ""
    channel_title: str = ""
    quality_score: float = 5.0
    quality_reasoning: str = ""
    composite_score: float = 0.0

    def __post_init__(self):
        if self.view_count < 0 or self.like_count < 0:
            raise ValueError("Counts cannot be negative")
        if not 0.0 <= self.quality_score <= 10.0:
            raise ValueError("Quality score must be between 0 and 10")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PipelineRun:
    """State of one end-to-end pipeline execution for a source video."""
    run_id: str
    video_id: str
    status: RunStatus = RunStatus.QUEUED
    current_stage: Optional[str] = None
    progress: float = 0.0
    error_message: Optional[str] = None
    cancel_requested: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def __post_init__(self):
        _check_unit_interval("Progress", self.progress)

    @property
    def is_active(self) -> bool:
        return self.status in (RunStatus.QUEUED, RunStatus.RUNNING)

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PipelineRun':
        data = data.copy()
        data['status'] = RunStatus(data['status'])
        data['started_at'] = _parse_datetime(data.get('started_at'))
        data['finished_at'] = _parse_datetime(data.get('finished_at'))
        return cls(**data)
