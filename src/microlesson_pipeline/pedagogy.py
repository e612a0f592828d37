"""
Instructional-design tables: Bloom's taxonomy, difficulty weights and
CLT-bLM phase defaults used by analysis, scripting and alignment.
"""

from typing import List, Optional

from .models import BloomLevel, CognitiveLoad, Difficulty, PhaseName

BLOOM_ORDER: List[BloomLevel] = list(BloomLevel)

# Keypoint cognitive-load weights
DIFFICULTY_LOAD = {
    Difficulty.BEGINNER: 0.3,
    Difficulty.INTERMEDIATE: 0.6,
    Difficulty.ADVANCED: 0.9,
}
BLOOM_LOAD = {
    BloomLevel.REMEMBER: 0.2,
    BloomLevel.UNDERSTAND: 0.4,
    BloomLevel.APPLY: 0.6,
    BloomLevel.ANALYZE: 0.7,
    BloomLevel.EVALUATE: 0.8,
    BloomLevel.CREATE: 0.9,
}

# Learning time multipliers, applied to a 30 second base
BASE_LEARNING_SECONDS = 30
DIFFICULTY_TIME = {
    Difficulty.BEGINNER: 0.8,
    Difficulty.INTERMEDIATE: 1.0,
    Difficulty.ADVANCED: 1.4,
}
BLOOM_TIME = {
    BloomLevel.REMEMBER: 0.7,
    BloomLevel.UNDERSTAND: 1.0,
    BloomLevel.APPLY: 1.3,
    BloomLevel.ANALYZE: 1.5,
    BloomLevel.EVALUATE: 1.7,
    BloomLevel.CREATE: 2.0,
}

# Bloom levels a script may target for a given content complexity
ALLOWED_BLOOM_LEVELS = {
    Difficulty.BEGINNER: [BloomLevel.REMEMBER, BloomLevel.UNDERSTAND],
    Difficulty.INTERMEDIATE: [BloomLevel.UNDERSTAND, BloomLevel.APPLY, BloomLevel.ANALYZE],
    Difficulty.ADVANCED: [BloomLevel.ANALYZE, BloomLevel.EVALUATE, BloomLevel.CREATE],
}

BLOOM_VERBS = {
    BloomLevel.REMEMBER: ["recall", "identify", "list", "define"],
    BloomLevel.UNDERSTAND: ["explain", "summarize", "describe", "interpret"],
    BloomLevel.APPLY: ["apply", "use", "demonstrate", "solve"],
    BloomLevel.ANALYZE: ["analyze", "compare", "distinguish", "examine"],
    BloomLevel.EVALUATE: ["evaluate", "justify", "critique", "assess"],
    BloomLevel.CREATE: ["design", "construct", "develop", "formulate"],
}

# Script phase cognitive load
PHASE_INTRINSIC_BASE = {
    Difficulty.BEGINNER: 0.3,
    Difficulty.INTERMEDIATE: 0.6,
    Difficulty.ADVANCED: 0.8,
}
LIGHT_PHASES = (PhaseName.PREPARE, PhaseName.END)
LIGHT_PHASE_FACTOR = 0.7
GERMANE_LOAD = {
    BloomLevel.REMEMBER: 0.3,
    BloomLevel.UNDERSTAND: 0.5,
    BloomLevel.APPLY: 0.6,
    BloomLevel.ANALYZE: 0.7,
    BloomLevel.EVALUATE: 0.8,
    BloomLevel.CREATE: 0.9,
}
EXTRANEOUS_REFERENCE_CHARS = 500

# Default share of the target duration per phase (25/35/150/30 of 240s)
PHASE_SHARE = {
    PhaseName.PREPARE: 25 / 240,
    PhaseName.INITIATE: 35 / 240,
    PhaseName.DELIVER: 150 / 240,
    PhaseName.END: 30 / 240,
}

PHASE_PURPOSE = {
    PhaseName.PREPARE: "Activate prior knowledge and focus attention",
    PhaseName.INITIATE: "Set objectives and provide an advance organizer",
    PhaseName.DELIVER: "Present core content in manageable chunks",
    PhaseName.END: "Consolidate learning and encourage transfer",
}

PHASE_KEYWORDS = {
    PhaseName.PREPARE: ["welcome", "introduction", "today", "begin", "start"],
    PhaseName.INITIATE: ["objective", "goal", "learn", "will", "going to", "plan"],
    PhaseName.DELIVER: ["now", "first", "next", "important", "concept", "example"],
    PhaseName.END: ["conclusion", "summary", "recap", "remember", "finally"],
}

_STRATEGIES_BY_BLOOM = {
    BloomLevel.REMEMBER: ["Spaced repetition", "Mnemonic devices", "Flashcard recall"],
    BloomLevel.UNDERSTAND: ["Concept mapping", "Analogies and metaphors", "Summarization in own words"],
    BloomLevel.APPLY: ["Worked examples", "Guided practice", "Problem-solving exercises"],
    BloomLevel.ANALYZE: ["Compare and contrast", "Case study analysis", "Cause-effect diagrams"],
    BloomLevel.EVALUATE: ["Critical review", "Debate and justification", "Rubric-based assessment"],
    BloomLevel.CREATE: ["Project-based design", "Open-ended synthesis", "Prototype building"],
}

_STRATEGIES_BY_DIFFICULTY = {
    Difficulty.BEGINNER: ["Step-by-step scaffolding", "Visual aids"],
    Difficulty.INTERMEDIATE: ["Progressive complexity", "Peer explanation"],
    Difficulty.ADVANCED: ["Expert modeling", "Self-directed exploration"],
}


def teaching_strategies(bloom_level: BloomLevel, difficulty: Difficulty, limit: int = 4) -> List[str]:
    """Teaching strategies for a concept, most specific first."""
    strategies = list(_STRATEGIES_BY_BLOOM[bloom_level]) + list(_STRATEGIES_BY_DIFFICULTY[difficulty])
    seen = []
    for strategy in strategies:
        if strategy not in seen:
            seen.append(strategy)
    return seen[:limit]


def select_bloom_level(complexity: Difficulty, preferred: Optional[BloomLevel] = None) -> BloomLevel:
    """Pick the target Bloom level allowed for the content complexity.

    A preferred level is honoured when the complexity allows it; otherwise
    the middle of the allowed range is used.
    """
    levels = ALLOWED_BLOOM_LEVELS.get(complexity, [BloomLevel.UNDERSTAND])
    if preferred in levels:
        return preferred
    return levels[len(levels) // 2]


def learning_objectives(concepts: List[str], bloom_level: BloomLevel, limit: int = 3) -> List[str]:
    verbs = BLOOM_VERBS[bloom_level]
    return [
        f"{verbs[i % len(verbs)].capitalize()} {concept}"
        for i, concept in enumerate(concepts[:limit])
    ]


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def phase_cognitive_load(phase: PhaseName, content: str, complexity: Difficulty,
                         bloom_level: BloomLevel) -> CognitiveLoad:
    """Intrinsic, extraneous and germane load of one script phase."""
    intrinsic = PHASE_INTRINSIC_BASE.get(complexity, 0.5)
    if phase in LIGHT_PHASES:
        intrinsic *= LIGHT_PHASE_FACTOR
    extraneous = 1 - min(len(content) / EXTRANEOUS_REFERENCE_CHARS, 1)
    germane = GERMANE_LOAD.get(bloom_level, 0.5)
    return CognitiveLoad(
        intrinsic=round(clamp(intrinsic), 2),
        extraneous=round(clamp(extraneous), 2),
        germane=round(clamp(germane), 2),
    )
