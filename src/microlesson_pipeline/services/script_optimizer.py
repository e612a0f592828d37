"""Bring a CLT-bLM script within its duration tolerance and review its structure."""

from dataclasses import replace
from typing import Dict, List, Optional

from ..config import get_settings
from ..exceptions import MicroLessonError
from ..logging_config import LoggerMixin
from ..models import CLTScript, PHASE_ORDER, PhaseName
from ..pedagogy import phase_cognitive_load
from ..schemas import ScriptQualityResponse, ScriptResponse
from ..utils.text_utils import split_sentences, strip_filler_words
from .text_generation import TextGenerator, generate_structured

# Rescaling beyond this band changes pacing too much to leave the wording untouched
MODEST_RESCALE_LOW = 0.8
MODEST_RESCALE_HIGH = 1.2

ADJUST_PROMPT = """{instruction}

Current script (JSON, durations in seconds, total {current_total:.0f}s):
{script}

Target total duration: {target:.0f} seconds. Keep the four phases prepare,
initiate, deliver and end, keep the deliver phase the longest, and make each
phase's narration fit its duration at about 150 words per minute.

Respond with JSON only, using the same shape:
{{"prepare": {{"content": "...", "duration": 25, "purpose": "...", "cognitive_strategy": "..."}},
 "initiate": {{...}}, "deliver": {{...}}, "end": {{...}}}}"""

COMPRESS_INSTRUCTION = (
    "Compress this micro-lesson script. Remove redundancy and secondary details "
    "while keeping every learning objective."
)
EXPAND_INSTRUCTION = (
    "Expand this micro-lesson script with worked examples, elaboration and "
    "reflection prompts while keeping the same learning objectives."
)

QUALITY_PROMPT = """Assess this CLT-bLM micro-lesson script for a {bloom_level} level objective.

{script}

Rate each criterion from 0 to 10 and respond with JSON only:
{{"clarity": 8, "engagement": 7, "cognitive_load_balance": 8, "pedagogical_alignment": 9,
  "suggestions": ["..."], "summary": "one sentence"}}"""


def script_payload(script: CLTScript) -> Dict[str, Dict[str, object]]:
    return {
        phase.name.value: {
            "content": phase.content,
            "duration": round(phase.duration, 1),
            "purpose": phase.purpose,
            "cognitive_strategy": phase.cognitive_strategy,
        }
        for phase in script.phases
    }


def adjust_content_for_duration(content: str, ratio: float) -> str:
    """Tighten wording when shrinking hard, add breathing room when stretching hard."""
    if ratio < MODEST_RESCALE_LOW:
        return strip_filler_words(content) or content
    if ratio > MODEST_RESCALE_HIGH:
        sentences = split_sentences(content)
        return " ... ".join(sentences) if len(sentences) > 1 else content
    return content


class ScriptOptimizer(LoggerMixin):
    """Keep total script duration within ``duration_tolerance`` of its target."""

    def __init__(self, generator: TextGenerator, settings=None):
        self.settings = settings or get_settings()
        self.generator = generator
        self.tolerance = self.settings.duration_tolerance
        self.min_phase_seconds = self.settings.min_phase_seconds
        self.max_attempts = self.settings.max_optimization_attempts

    async def optimize(self, script: CLTScript) -> CLTScript:
        """Return a script within tolerance, or the closest one with ``quality_warning`` set.

        Small deviations are absorbed by rescaling phase durations. Larger
        ones first ask the generator for compressed or expanded wording and
        only fall back to a forced rescale when that is exhausted.
        """
        if script.within_tolerance(self.tolerance):
            return script

        current = script
        passes = 0
        while True:
            ratio = current.target_duration / current.total_duration
            if MODEST_RESCALE_LOW <= ratio <= MODEST_RESCALE_HIGH:
                rescaled = self.rescale(current)
                if rescaled.within_tolerance(self.tolerance):
                    return replace(rescaled, optimization_passes=passes)

            if passes >= self.max_attempts:
                break
            passes += 1
            try:
                current = await self.regenerate(current, compress=ratio < 1)
            except MicroLessonError as e:
                self.logger.warning("Script regeneration failed", script_id=script.script_id, error=str(e))
                break
            self.logger.info(
                "Script regenerated",
                script_id=script.script_id,
                attempt=passes,
                total=round(current.total_duration, 1),
                target=current.target_duration,
            )
            if current.within_tolerance(self.tolerance):
                return replace(current, optimization_passes=passes)

        ratio = current.target_duration / current.total_duration
        forced = self.rescale(current)
        candidates = [c for c in (forced, current, script) if c is not None]
        best = min(candidates, key=lambda c: c.deviation())
        if best.within_tolerance(self.tolerance):
            self.logger.info(
                "Phase durations rescaled without regenerated narration",
                script_id=script.script_id,
                ratio=round(ratio, 2),
            )
            return replace(best, quality_warning=None, optimization_passes=passes)

        warning = (
            f"Total duration {best.total_duration:.0f}s is outside "
            f"{self.tolerance:.0%} of the {best.target_duration:.0f}s target"
        )
        self.logger.warning("Script optimization exhausted", script_id=script.script_id, warning=warning)
        return replace(best, quality_warning=warning, optimization_passes=passes)

    def rescale(self, script: CLTScript) -> CLTScript:
        """Scale phase durations to the target, respecting the per-phase minimum.

        Phases pinned at the minimum are excluded and the rest rescaled again
        so the total lands on the target whenever the minimums allow it.
        """
        target = script.target_duration
        durations = {p.name: p.duration for p in script.phases}
        pinned = set()
        for _ in range(len(PHASE_ORDER)):
            free_total = sum(d for n, d in durations.items() if n not in pinned)
            budget = target - self.min_phase_seconds * len(pinned)
            if free_total <= 0 or budget <= 0:
                break
            factor = budget / free_total
            newly_pinned = False
            for name in PHASE_ORDER:
                if name in pinned:
                    continue
                scaled = durations[name] * factor
                if scaled < self.min_phase_seconds:
                    durations[name] = self.min_phase_seconds
                    pinned.add(name)
                    newly_pinned = True
                else:
                    durations[name] = scaled
            if not newly_pinned:
                break

        phases = []
        for phase in script.phases:
            new_duration = round(durations[phase.name], 2)
            ratio = new_duration / phase.duration
            content = adjust_content_for_duration(phase.content, ratio)
            phases.append(replace(
                phase,
                duration=new_duration,
                content=content,
                cognitive_load=phase_cognitive_load(
                    phase.name, content, script.complexity_level, script.bloom_level
                ),
            ))
        return replace(script, phases=phases)

    async def regenerate(self, script: CLTScript, compress: bool) -> CLTScript:
        response = await generate_structured(
            self.generator,
            ADJUST_PROMPT,
            {
                "instruction": COMPRESS_INSTRUCTION if compress else EXPAND_INSTRUCTION,
                "current_total": script.total_duration,
                "script": script_payload(script),
                "target": script.target_duration,
            },
            ScriptResponse,
        )
        phases = []
        for phase in script.phases:
            generated = getattr(response, phase.name.value)
            phases.append(replace(
                phase,
                content=generated.content,
                duration=generated.duration,
                purpose=generated.purpose or phase.purpose,
                cognitive_strategy=generated.cognitive_strategy or phase.cognitive_strategy,
                cognitive_load=phase_cognitive_load(
                    phase.name, generated.content, script.complexity_level, script.bloom_level
                ),
            ))
        return replace(script, phases=phases)

    def validate_structure(self, script: CLTScript) -> List[str]:
        """Return human readable structural issues; an empty list means the script is sound."""
        issues = []
        durations = {p.name: p.duration for p in script.phases}
        total = script.total_duration

        if durations[PhaseName.DELIVER] < max(
            durations[PhaseName.PREPARE], durations[PhaseName.INITIATE], durations[PhaseName.END]
        ):
            issues.append("Deliver phase should be the longest phase")
        if total > 0 and (durations[PhaseName.PREPARE] + durations[PhaseName.END]) / total > 0.4:
            issues.append("Prepare and end phases take more than 40% of the lesson")
        for phase in script.phases:
            if phase.duration < self.min_phase_seconds:
                issues.append(f"{phase.name.value} phase is shorter than {self.min_phase_seconds:.0f}s")
            if phase.cognitive_load.total > 0.8:
                issues.append(f"{phase.name.value} phase has a high combined cognitive load")
        if not script.within_tolerance(self.tolerance):
            issues.append(f"Total duration deviates {script.deviation():.0%} from target")
        return issues

    async def assess_quality(self, script: CLTScript) -> Optional[ScriptQualityResponse]:
        """Ask the generator to rate the script; ``None`` when it cannot be assessed."""
        try:
            return await generate_structured(
                self.generator,
                QUALITY_PROMPT,
                {"bloom_level": script.bloom_level.value, "script": script_payload(script)},
                ScriptQualityResponse,
            )
        except MicroLessonError as e:
            self.logger.warning("Script quality assessment unavailable", script_id=script.script_id, error=str(e))
            return None
