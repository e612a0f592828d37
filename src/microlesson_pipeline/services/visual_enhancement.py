"""Advisory visual cues for micro-video segments.

Cues never change timing; the renderer only reads their text position and
emphasis when it burns phase and keypoint labels into a clip.
"""

from typing import Any, Dict, Optional

from ..config import get_settings
from ..logging_config import LoggerMixin
from ..models import MicroVideoSegment, ScriptPhase
from ..schemas import VisualCueResponse
from ..utils.text_utils import truncate_words
from .text_generation import TextGenerator, generate_structured

PHASE_CUE_PROMPT = """Design visual cues for the {phase} phase of a CLT-bLM micro-lesson.

Phase purpose: {purpose}
Cognitive strategy: {strategy}
Cognitive load (0-1): intrinsic {intrinsic}, extraneous {extraneous}, germane {germane}
Visual style: {style}

Narration:
"{narration}"

Keep extraneous load low: few elements, consistent colors, text only where it helps.
Respond with JSON only:
{{"background_elements": {{"color_scheme": "...", "style": "..."}},
  "text_presentation": {{"animation_type": "fade_in|slide_in|typewriter|none", "emphasis": ["..."], "position": "top|center|bottom"}},
  "visual_elements": ["..."], "cognitive_support": ["..."], "educational_rationale": "..."}}"""

KEYPOINT_CUE_PROMPT = """Design a visual highlight for the concept "{concept}" shown at {start:.1f}s-{end:.1f}s
of a {phase} phase micro-lesson clip.

Concept description: {description}
Bloom level: {bloom_level}
Alignment confidence: {confidence}
Visual style: {style}

Respond with JSON only:
{{"background_elements": {{"color_scheme": "...", "style": "..."}},
  "text_presentation": {{"animation_type": "fade_in|slide_in|typewriter|none", "emphasis": ["..."], "position": "top|center|bottom"}},
  "visual_elements": ["..."], "cognitive_support": ["..."], "educational_rationale": "..."}}"""

DEFAULT_STYLE = "clean minimal educational"
MAX_NARRATION_WORDS = 200


class VisualEnhancementService(LoggerMixin):
    """Generate per-phase and per-keypoint visual cues."""

    def __init__(self, generator: TextGenerator, settings=None):
        self.settings = settings or get_settings()
        self.generator = generator

    async def generate_cues(
        self, segment: MicroVideoSegment, script_phase: ScriptPhase, style: Optional[str] = None
    ) -> Dict[str, Any]:
        """Return cues for the phase and every trusted keypoint, and store them on the segment.

        Untrusted keypoints get no cue since they have no anchor to attach to.

        Raises:
            ExternalServiceError: If a generation call fails or its response does not validate
        """
        style = style or DEFAULT_STYLE
        load = script_phase.cognitive_load
        phase_cues = await generate_structured(
            self.generator,
            PHASE_CUE_PROMPT,
            {
                "phase": script_phase.name.value,
                "purpose": script_phase.purpose,
                "strategy": script_phase.cognitive_strategy or "not specified",
                "intrinsic": load.intrinsic,
                "extraneous": load.extraneous,
                "germane": load.germane,
                "style": style,
                "narration": truncate_words(script_phase.content, MAX_NARRATION_WORDS),
            },
            VisualCueResponse,
        )

        descriptions = {k.concept: k for k in segment.keypoints}
        keypoint_cues = []
        for alignment in segment.keypoint_alignments:
            if not alignment.trusted:
                continue
            keypoint = descriptions.get(alignment.concept)
            response = await generate_structured(
                self.generator,
                KEYPOINT_CUE_PROMPT,
                {
                    "concept": alignment.concept,
                    "start": alignment.anchor.start,
                    "end": alignment.anchor.end,
                    "phase": script_phase.name.value,
                    "description": keypoint.description if keypoint else "",
                    "bloom_level": keypoint.bloom_level.value if keypoint else "understand",
                    "confidence": alignment.confidence,
                    "style": style,
                },
                VisualCueResponse,
            )
            keypoint_cues.append({
                "concept": alignment.concept,
                "anchor": alignment.anchor.to_dict(),
                "confidence": alignment.confidence,
                "cues": response.model_dump(),
            })

        cues = {
            "style": style,
            "phase": phase_cues.model_dump(),
            "keypoints": keypoint_cues,
        }
        segment.visual_cues = cues
        self.logger.info(
            "Visual cues generated",
            segment_id=segment.segment_id,
            phase=script_phase.name.value,
            keypoint_cues=len(keypoint_cues),
        )
        return cues
