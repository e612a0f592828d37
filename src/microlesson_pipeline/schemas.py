"""
Response schemas for every text-generation call site.

Each call site validates the generator's JSON against exactly one of these
models; anything that does not validate is treated as a service failure.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


BloomLiteral = Literal["remember", "understand", "apply", "analyze", "evaluate", "create"]
DifficultyLiteral = Literal["beginner", "intermediate", "advanced"]


class _Response(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


def _lower(value):
    return value.strip().lower() if isinstance(value, str) else value


class CandidateQualityResponse(_Response):
    """Educational quality rating of a catalog video."""
    score: float = Field(ge=0, le=10)
    reasoning: str = ""
    strengths: List[str] = Field(default_factory=list)
    concerns: List[str] = Field(default_factory=list)


class KeypointItem(_Response):
    concept: str = Field(min_length=1)
    description: str = Field(min_length=1)
    importance: float = Field(ge=0, le=10)
    bloom_level: BloomLiteral
    difficulty: DifficultyLiteral
    examples: List[str] = Field(min_length=1)
    prerequisites: List[str] = Field(default_factory=list)

    @field_validator("bloom_level", "difficulty", mode="before")
    @classmethod
    def lowercase_levels(cls, value):
        return _lower(value)

    @field_validator("importance")
    @classmethod
    def normalize_importance(cls, value: float) -> float:
        """Importance may arrive on a 1-10 scale; store it in [0, 1]."""
        return round(value / 10.0, 3) if value > 1 else value


MIN_KEYPOINTS = 8
MAX_KEYPOINTS = 12


class KeypointsResponse(_Response):
    """Between one and ``MAX_KEYPOINTS`` concepts; fewer than ``MIN_KEYPOINTS`` is allowed but logged."""
    keypoints: List[KeypointItem] = Field(min_length=1, max_length=MAX_KEYPOINTS)


class ComplexityResponse(_Response):
    overall_complexity: DifficultyLiteral
    complexity_score: float = Field(default=5.0, ge=0, le=10)
    vocabulary_level: str = ""
    cognitive_load_factors: List[str] = Field(default_factory=list)
    prerequisite_knowledge: List[str] = Field(default_factory=list)
    learning_pathways: List[str] = Field(default_factory=list)
    potential_difficulties: List[str] = Field(default_factory=list)
    attention_requirements: Literal["brief", "moderate", "sustained"] = "moderate"
    novice_friendly: bool = True
    scaffolding_needed: bool = False

    @field_validator("overall_complexity", mode="before")
    @classmethod
    def lowercase_complexity(cls, value):
        return _lower(value)


class TranscriptAnalysisResponse(_Response):
    subject_area: str = Field(min_length=1)
    complexity_level: DifficultyLiteral
    key_concepts: List[str] = Field(default_factory=list)
    prerequisite_knowledge: List[str] = Field(default_factory=list)
    content_type: str = "conceptual"
    cognitive_demands: List[str] = Field(default_factory=list)
    educational_patterns: List[str] = Field(default_factory=list)

    @field_validator("complexity_level", mode="before")
    @classmethod
    def lowercase_complexity(cls, value):
        return _lower(value)


class PhaseContent(_Response):
    content: str = Field(min_length=1)
    duration: float = Field(gt=0)
    purpose: str = ""
    cognitive_strategy: str = ""


class ScriptResponse(_Response):
    """Four phases of a CLT-bLM script; also used for compression and expansion."""
    prepare: PhaseContent
    initiate: PhaseContent
    deliver: PhaseContent
    end: PhaseContent


class BackgroundElements(_Response):
    color_scheme: str = "neutral"
    style: str = "minimal"


class TextPresentation(_Response):
    animation_type: Literal["fade_in", "slide_in", "typewriter", "none"] = "fade_in"
    emphasis: List[str] = Field(default_factory=list)
    position: str = "bottom"

    @field_validator("animation_type", mode="before")
    @classmethod
    def lowercase_animation(cls, value):
        return _lower(value)


class VisualCueResponse(_Response):
    background_elements: BackgroundElements = Field(default_factory=BackgroundElements)
    text_presentation: TextPresentation = Field(default_factory=TextPresentation)
    visual_elements: List[str] = Field(default_factory=list)
    cognitive_support: List[str] = Field(default_factory=list)
    educational_rationale: str = ""


class ScriptQualityResponse(_Response):
    clarity: float = Field(ge=0, le=10)
    engagement: float = Field(ge=0, le=10)
    cognitive_load_balance: float = Field(ge=0, le=10)
    pedagogical_alignment: float = Field(ge=0, le=10)
    suggestions: List[str] = Field(default_factory=list)
    summary: Optional[str] = None

    @property
    def overall(self) -> float:
        return round(
            (self.clarity + self.engagement + self.cognitive_load_balance + self.pedagogical_alignment) / 4, 2
        )
