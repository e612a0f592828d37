"""
CLT-bLM script generation.

A single structured generation call produces the four narrative phases;
phases are then enriched with scaffolding, scored for cognitive load and
handed to the ``ScriptOptimizer`` to land within the duration tolerance.
"""

import uuid
from collections import Counter
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from ..config import get_settings
from ..exceptions import ValidationError
from ..logging_config import LoggerMixin
from ..models import (
    BloomLevel,
    CLTScript,
    Difficulty,
    Keypoint,
    PHASE_ORDER,
    PhaseName,
    ScriptPhase,
    Transcript,
)
from ..pedagogy import (
    PHASE_PURPOSE,
    PHASE_SHARE,
    learning_objectives,
    phase_cognitive_load,
    select_bloom_level,
)
from ..schemas import ScriptResponse
from ..utils.text_utils import split_sentences, truncate_words
from .content_analysis import ContentProfile
from .script_optimizer import ScriptOptimizer
from .text_generation import TextGenerator, generate_structured

SCRIPT_PROMPT = """Create a CLT-bLM micro-lesson script of about {target_duration:.0f} seconds.

Subject area: {subject_area}
Content complexity: {complexity}
Target Bloom level: {bloom_level}
Learning objectives: {objectives}
Key concepts: {keypoints}
Pacing preference: {pace}
Narration language: {language}

Source transcript excerpt:
"{excerpt}"

Structure the narration in four phases:
- prepare (about {prepare:.0f}s): activate prior knowledge and grab attention
- initiate (about {initiate:.0f}s): state objectives and give an advance organizer
- deliver (about {deliver:.0f}s): teach the key concepts in small chunks with examples
- end (about {end:.0f}s): summarize, ask reflection questions, suggest transfer

Respond with JSON only:
{{"prepare": {{"content": "narration", "duration": 25, "purpose": "...", "cognitive_strategy": "..."}},
 "initiate": {{...}}, "deliver": {{...}}, "end": {{...}}}}"""

MAX_EXCERPT_WORDS = 400
MAX_PROMPT_KEYPOINTS = 8

PACE_FACTORS = {"slow": 1.15, "normal": 1.0, "fast": 0.85}


@dataclass
class ScriptPreferences:
    """Learner preferences that steer script generation."""
    target_duration: Optional[float] = None
    preferred_bloom_level: Optional[BloomLevel] = None
    pace: str = "normal"
    language: str = "en"

    def __post_init__(self):
        if self.target_duration is not None and self.target_duration <= 0:
            raise ValueError("Target duration must be positive")
        if self.pace not in PACE_FACTORS:
            raise ValueError(f"Pace must be one of {sorted(PACE_FACTORS)}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ScriptPreferences':
        data = dict(data or {})
        bloom = data.get("preferred_bloom_level")
        if bloom is not None and not isinstance(bloom, BloomLevel):
            data["preferred_bloom_level"] = BloomLevel(str(bloom).lower())
        return cls(**data)


def profile_from_keypoints(transcript: Transcript, keypoints: List[Keypoint]) -> ContentProfile:
    """Derive a content profile locally when no generated profile is available."""
    if keypoints:
        difficulty = Counter(k.difficulty for k in keypoints).most_common(1)[0][0]
        concepts = [k.concept for k in keypoints]
    else:
        difficulty = Difficulty.INTERMEDIATE
        concepts = []
    topics = Counter(t for s in transcript.segments for t in s.key_topics)
    subject = topics.most_common(1)[0][0] if topics else (concepts[0] if concepts else "general")
    return ContentProfile(subject_area=subject, complexity_level=difficulty, key_concepts=concepts)


def phase_scaffolding(phase: PhaseName, content: str, keypoints: List[Keypoint],
                      profile: ContentProfile) -> Dict[str, Any]:
    """Phase-specific scaffolding used by the visual and narration stages."""
    concepts = [k.concept for k in keypoints]
    sentences = split_sentences(content)

    if phase is PhaseName.PREPARE:
        prerequisites = sorted({p for k in keypoints for p in k.prerequisites})
        return {
            "activation_strategies": [f"Recall what you know about {p}" for p in prerequisites[:3]]
            or ["Think of a time you needed this skill"],
            "context_bridge": f"Connects prior knowledge to {profile.subject_area}",
            "attention_grabber": sentences[0] if sentences else content,
        }
    if phase is PhaseName.INITIATE:
        return {
            "advance_organizer": concepts[:5],
            "expectation_setting": f"By the end you will work with {len(concepts)} key concepts",
            "motivation_elements": [
                example for k in keypoints[:3] for example in k.examples[:1]
            ],
        }
    if phase is PhaseName.DELIVER:
        return {
            "chunking_strategy": [f"Chunk {i}: {concept}" for i, concept in enumerate(concepts, 1)],
            "worked_examples": [example for k in keypoints for example in k.examples][:5],
            "cognitive_scaffolds": sorted({s for k in keypoints for s in k.teaching_strategies})[:4],
        }
    return {
        "elaborative_questioning": [f"How would you explain {c} to someone else?" for c in concepts[:3]],
        "transfer_opportunities": [f"Where else could {c} apply?" for c in concepts[:2]],
        "consolidation_techniques": ["Summarize the lesson in one sentence", "Review the key terms"],
    }


class ScriptGenerationService(LoggerMixin):
    """Generate and optimize four-phase CLT-bLM scripts."""

    def __init__(self, generator: TextGenerator, settings=None, optimizer: Optional[ScriptOptimizer] = None):
        self.settings = settings or get_settings()
        self.generator = generator
        self.optimizer = optimizer or ScriptOptimizer(generator, self.settings)

    async def generate_script(
        self,
        transcript: Transcript,
        keypoints: List[Keypoint],
        preferences: Optional[ScriptPreferences] = None,
        version: int = 1,
        profile: Optional[ContentProfile] = None,
    ) -> CLTScript:
        """Generate a script for ``transcript`` and optimize it toward its target duration.

        Raises:
            ValidationError: If ``version`` is not positive
            ExternalServiceError: If the generator fails or its response does not validate
        """
        if version < 1:
            raise ValidationError("Script version must be at least 1", constraint="version")

        preferences = preferences or ScriptPreferences()
        profile = profile or profile_from_keypoints(transcript, keypoints)
        target = preferences.target_duration or self.settings.default_target_duration
        bloom_level = select_bloom_level(profile.complexity_level, preferences.preferred_bloom_level)
        concepts = [k.concept for k in keypoints] or profile.key_concepts
        objectives = learning_objectives(concepts, bloom_level)
        pace_factor = PACE_FACTORS[preferences.pace]
        shares = self._phase_targets(target)

        self.logger.info(
            "Generating script",
            video_id=transcript.video_id,
            version=version,
            target=target,
            bloom_level=bloom_level.value,
            keypoints=len(keypoints),
        )

        response = await generate_structured(
            self.generator,
            SCRIPT_PROMPT,
            {
                "target_duration": target,
                "subject_area": profile.subject_area,
                "complexity": profile.complexity_level.value,
                "bloom_level": bloom_level.value,
                "objectives": objectives,
                "keypoints": [
                    {"concept": k.concept, "description": k.description, "examples": list(k.examples)}
                    for k in keypoints[:MAX_PROMPT_KEYPOINTS]
                ],
                "pace": preferences.pace,
                "language": preferences.language,
                "excerpt": truncate_words(transcript.full_text, MAX_EXCERPT_WORDS),
                **{name.value: seconds * pace_factor for name, seconds in shares.items()},
            },
            ScriptResponse,
        )

        phases = []
        for name in PHASE_ORDER:
            generated = getattr(response, name.value)
            phases.append(ScriptPhase(
                name=name,
                content=generated.content,
                duration=generated.duration,
                purpose=generated.purpose or PHASE_PURPOSE[name],
                cognitive_strategy=generated.cognitive_strategy,
                cognitive_load=phase_cognitive_load(
                    name, generated.content, profile.complexity_level, bloom_level
                ),
                scaffolding=phase_scaffolding(name, generated.content, keypoints, profile),
            ))

        script = CLTScript(
            script_id=f"script_{transcript.video_id}_v{version}_{uuid.uuid4().hex[:8]}",
            video_id=transcript.video_id,
            phases=phases,
            target_duration=target,
            version=version,
            bloom_level=bloom_level,
            subject_area=profile.subject_area,
            complexity_level=profile.complexity_level,
            learning_objectives=objectives,
        )

        optimized = await self.optimizer.optimize(script)
        reviewed = await self._review(optimized)
        self.logger.info(
            "Script generated",
            script_id=reviewed.script_id,
            total=round(reviewed.total_duration, 1),
            target=target,
            passes=reviewed.optimization_passes,
            warning=reviewed.quality_warning,
            structure_issues=len(reviewed.structure_issues),
        )
        return reviewed

    async def _review(self, script: CLTScript) -> CLTScript:
        """Attach structural checks and the generator's quality rating to a finished script."""
        issues = self.optimizer.validate_structure(script)
        if issues:
            self.logger.warning("Script structure issues", script_id=script.script_id, issues=issues)
        quality = await self.optimizer.assess_quality(script)
        assessment = None
        if quality is not None:
            assessment = quality.model_dump()
            assessment["overall"] = quality.overall
        return replace(script, structure_issues=issues, quality_assessment=assessment)

    @staticmethod
    def _phase_targets(target: float) -> Dict[PhaseName, float]:
        return {name: target * PHASE_SHARE[name] for name in PHASE_ORDER}
