"""
Content analysis: keypoint extraction, complexity analysis and the transcript
profile that seeds script generation.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..config import get_settings
from ..logging_config import LoggerMixin
from ..models import BloomLevel, Difficulty, Keypoint, Transcript, TranscriptSegment
from ..pedagogy import (
    BASE_LEARNING_SECONDS,
    BLOOM_LOAD,
    BLOOM_TIME,
    DIFFICULTY_LOAD,
    DIFFICULTY_TIME,
    clamp,
    teaching_strategies,
)
from ..schemas import (
    MIN_KEYPOINTS,
    ComplexityResponse,
    KeypointItem,
    KeypointsResponse,
    TranscriptAnalysisResponse,
)
from ..utils.text_utils import count_technical_terms, split_sentences, tokenize, words
from .text_generation import TextGenerator, generate_structured

KEYPOINT_PROMPT = """Extract the key educational concepts and learning points from this content:

"{content}"

Return a JSON object {{"keypoints": [...]}} where each keypoint is:
{{
  "concept": "core concept name",
  "description": "brief explanation",
  "importance": number from 1-10,
  "bloom_level": "remember|understand|apply|analyze|evaluate|create",
  "prerequisites": ["prerequisite concepts"],
  "examples": ["concrete examples or applications"],
  "difficulty": "beginner|intermediate|advanced"
}}

Focus on the 8-12 most important educational concepts that should be covered in a micro-video."""

COMPLEXITY_PROMPT = """Analyze the cognitive complexity of this educational content:

"{content}"

Respond with JSON only:
{{
  "overall_complexity": "beginner|intermediate|advanced",
  "complexity_score": number from 0-10,
  "vocabulary_level": "short description",
  "cognitive_load_factors": ["..."],
  "prerequisite_knowledge": ["..."],
  "learning_pathways": ["suggested order of study"],
  "potential_difficulties": ["where learners may struggle"],
  "attention_requirements": "brief|moderate|sustained",
  "novice_friendly": true,
  "scaffolding_needed": false
}}"""

TRANSCRIPT_ANALYSIS_PROMPT = """Analyze this educational transcript for CLT-bLM micro-lesson design:

"{content}"

Respond with JSON only:
{{
  "subject_area": "main subject",
  "complexity_level": "beginner|intermediate|advanced",
  "key_concepts": ["..."],
  "prerequisite_knowledge": ["..."],
  "content_type": "conceptual|procedural|factual|mixed",
  "cognitive_demands": ["..."],
  "educational_patterns": ["..."]
}}"""

MAX_PROMPT_CHARS = 2500


@dataclass
class ComplexityAnalysis:
    """Generator-assessed complexity plus locally computed text metrics."""
    overall_complexity: Difficulty
    complexity_score: float
    metrics: Dict[str, float]
    vocabulary_level: str = ""
    cognitive_load_factors: List[str] = field(default_factory=list)
    prerequisite_knowledge: List[str] = field(default_factory=list)
    learning_pathways: List[str] = field(default_factory=list)
    potential_difficulties: List[str] = field(default_factory=list)
    attention_requirements: str = "moderate"
    novice_friendly: bool = True
    scaffolding_needed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["overall_complexity"] = self.overall_complexity.value
        return data


@dataclass
class ContentProfile:
    """Subject, complexity and concepts of a transcript."""
    subject_area: str
    complexity_level: Difficulty
    key_concepts: List[str] = field(default_factory=list)
    prerequisite_knowledge: List[str] = field(default_factory=list)
    content_type: str = "conceptual"
    cognitive_demands: List[str] = field(default_factory=list)
    educational_patterns: List[str] = field(default_factory=list)


def text_metrics(text: str) -> Dict[str, float]:
    """Readability and load indicators computed without the generator."""
    tokens = words(text)
    total = len(tokens)
    if total == 0:
        return {
            "lexical_diversity": 0.0,
            "avg_word_length": 0.0,
            "avg_sentence_length": 0.0,
            "technical_density": 0.0,
            "information_density": 0.0,
            "readability": 0.0,
            "cognitive_load_index": 0.0,
        }

    sentences = split_sentences(text) or [text]
    lexical_diversity = len(set(tokens)) / total
    avg_word_length = sum(len(t) for t in tokens) / total
    avg_sentence_length = total / len(sentences)
    technical_density = min(count_technical_terms(text) / total, 1.0)
    information_density = len(set(tokenize(text))) / total
    readability = clamp(206.835 - 1.015 * avg_sentence_length - 84.6 * (avg_word_length / 5), 0, 100)
    load_index = clamp(((1 - lexical_diversity) + technical_density * 2 + min(avg_sentence_length / 20, 1)) / 3)

    return {
        "lexical_diversity": round(lexical_diversity, 3),
        "avg_word_length": round(avg_word_length, 2),
        "avg_sentence_length": round(avg_sentence_length, 2),
        "technical_density": round(technical_density, 3),
        "information_density": round(information_density, 3),
        "readability": round(readability, 1),
        "cognitive_load_index": round(load_index, 3),
    }


def cognitive_load_estimate(difficulty: Difficulty, bloom_level: BloomLevel, density: float) -> float:
    base = (DIFFICULTY_LOAD[difficulty] + BLOOM_LOAD[bloom_level]) / 2
    return round(clamp(base + density * 0.3), 2)


def learning_time_estimate(difficulty: Difficulty, bloom_level: BloomLevel, density: float) -> int:
    return round(BASE_LEARNING_SECONDS * DIFFICULTY_TIME[difficulty] * BLOOM_TIME[bloom_level] * (1 + density))


def related_segments(concept: str, segments: List[TranscriptSegment]) -> List[TranscriptSegment]:
    needle = concept.lower()
    return [s for s in segments if needle in s.text.lower()]


def enhance_keypoint(item: KeypointItem, segments: List[TranscriptSegment]) -> Keypoint:
    """Attach segment evidence and load/time estimates to a generated keypoint."""
    related = related_segments(item.concept, segments)
    if related:
        avg_confidence = sum(s.confidence for s in related) / len(related)
        total_duration = sum(s.duration for s in related)
        density = sum(s.conceptual_density for s in related) / len(related)
    else:
        avg_confidence = total_duration = density = 0.0

    bloom_level = BloomLevel(item.bloom_level)
    difficulty = Difficulty(item.difficulty)
    return Keypoint(
        concept=item.concept,
        description=item.description,
        importance=clamp(item.importance),
        bloom_level=bloom_level,
        difficulty=difficulty,
        examples=tuple(item.examples),
        prerequisites=tuple(item.prerequisites),
        related_segment_ids=tuple(s.segment_id for s in related),
        avg_confidence=round(clamp(avg_confidence), 3),
        total_duration=round(total_duration, 2),
        conceptual_density=round(clamp(density), 3),
        cognitive_load_estimate=cognitive_load_estimate(difficulty, bloom_level, density),
        learning_time_estimate=learning_time_estimate(difficulty, bloom_level, density),
        teaching_strategies=tuple(teaching_strategies(bloom_level, difficulty)),
    )


def generate_adaptation_recommendations(
    complexity: ComplexityAnalysis,
    preferences: Optional[Dict[str, Any]] = None,
    keypoints: Optional[List[Keypoint]] = None,
) -> Dict[str, List[str]]:
    """Rule-based suggestions for pacing, content, delivery and cognitive support."""
    preferences = preferences or {}
    pace = preferences.get("pace")
    recommendations = {
        "pace_adjustments": [],
        "content_modifications": [],
        "delivery_enhancements": [],
        "cognitive_supports": [],
    }

    if complexity.overall_complexity is Difficulty.ADVANCED and pace == "slow":
        recommendations["pace_adjustments"] += [
            "Extend video duration to 5-6 minutes for thorough explanation",
            "Add pauses between complex concepts",
        ]
    elif complexity.overall_complexity is Difficulty.BEGINNER and pace == "fast":
        recommendations["pace_adjustments"] += [
            "Compress to 2-3 minutes focusing on essentials",
            "Reduce redundant explanations",
        ]

    if complexity.metrics.get("technical_density", 0) > 0.15:
        recommendations["content_modifications"] += [
            "Add definitions for technical terms",
            "Use simpler synonyms where possible",
        ]
    if keypoints and sum(len(k.examples) for k in keypoints) < len(keypoints):
        recommendations["content_modifications"] += [
            "Add more concrete examples",
            "Use analogies to familiar concepts",
        ]

    if complexity.attention_requirements == "sustained":
        recommendations["delivery_enhancements"] += [
            "Include attention-grabbing visuals",
            "Add interactive elements or questions",
        ]

    if not complexity.novice_friendly:
        recommendations["cognitive_supports"] += [
            "Add prerequisite knowledge check",
            "Provide additional context and background",
        ]
    if complexity.scaffolding_needed:
        recommendations["cognitive_supports"] += [
            "Break down complex procedures into steps",
            "Provide cognitive prompts and cues",
        ]
    return recommendations


class ContentAnalysisService(LoggerMixin):
    """Turn a transcript into keypoints and a content profile."""

    def __init__(self, generator: TextGenerator, settings=None):
        self.settings = settings or get_settings()
        self.generator = generator

    async def extract_keypoints(self, transcript: Transcript) -> List[Keypoint]:
        """Extract 8-12 keypoints from the most important transcript segments.

        Returns an empty list when no segment clears the importance threshold.

        Raises:
            ExternalServiceError: If the generator fails or its response does not validate
        """
        threshold = self.settings.segment_importance_threshold
        important = sorted(
            (s for s in transcript.segments if s.importance > threshold),
            key=lambda s: s.importance,
            reverse=True,
        )[: self.settings.max_analysis_segments]

        content = " ".join(s.text for s in important).strip()
        if not content:
            self.logger.warning("No important segments found for keypoint extraction", video_id=transcript.video_id)
            return []

        response = await generate_structured(self.generator, KEYPOINT_PROMPT, {"content": content}, KeypointsResponse)
        if len(response.keypoints) < MIN_KEYPOINTS:
            self.logger.warning(
                "Fewer keypoints than requested",
                video_id=transcript.video_id,
                count=len(response.keypoints),
                expected_min=MIN_KEYPOINTS,
            )

        keypoints = []
        seen = set()
        for item in response.keypoints:
            key = item.concept.lower()
            if key in seen:
                continue
            seen.add(key)
            keypoints.append(enhance_keypoint(item, transcript.segments))

        keypoints.sort(key=lambda k: k.importance, reverse=True)
        self.logger.info("Keypoints extracted", video_id=transcript.video_id, count=len(keypoints))
        return keypoints

    async def analyze_content_complexity(self, transcript: Transcript) -> ComplexityAnalysis:
        response = await generate_structured(
            self.generator,
            COMPLEXITY_PROMPT,
            {"content": transcript.full_text[:MAX_PROMPT_CHARS]},
            ComplexityResponse,
        )
        return ComplexityAnalysis(
            overall_complexity=Difficulty(response.overall_complexity),
            complexity_score=response.complexity_score,
            metrics=text_metrics(transcript.full_text),
            vocabulary_level=response.vocabulary_level,
            cognitive_load_factors=response.cognitive_load_factors,
            prerequisite_knowledge=response.prerequisite_knowledge,
            learning_pathways=response.learning_pathways,
            potential_difficulties=response.potential_difficulties,
            attention_requirements=response.attention_requirements,
            novice_friendly=response.novice_friendly,
            scaffolding_needed=response.scaffolding_needed,
        )

    async def analyze_transcript_content(self, transcript: Transcript) -> ContentProfile:
        response = await generate_structured(
            self.generator,
            TRANSCRIPT_ANALYSIS_PROMPT,
            {"content": transcript.full_text[:MAX_PROMPT_CHARS]},
            TranscriptAnalysisResponse,
        )
        return ContentProfile(
            subject_area=response.subject_area,
            complexity_level=Difficulty(response.complexity_level),
            key_concepts=response.key_concepts,
            prerequisite_knowledge=response.prerequisite_knowledge,
            content_type=response.content_type,
            cognitive_demands=response.cognitive_demands,
            educational_patterns=response.educational_patterns,
        )
