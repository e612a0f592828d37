"""
Text helpers shared by analysis, scripting and alignment.
"""

import re
from typing import List, Set

STOP_WORDS = frozenset("""
a about above after again against all am an and any are as at be because been before being below
between both but by can could did do does doing down during each few for from further had has have
having he her here hers herself him himself his how i if in into is it its itself just let me more
most my myself no nor not now of off on once only or other our ours ourselves out over own same she
should so some such than that the their theirs them themselves then there these they this those
through to too under until up very was we were what when where which while who whom why will with
would you your yours yourself yourselves also okay ok um uh like really going get got go gonna
""".split())

FILLER_WORDS = ("very", "really", "quite", "rather", "somewhat", "actually", "basically", "essentially")

_WORD = re.compile(r"[a-z0-9]+(?:['-][a-z0-9]+)*")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_FILLER = re.compile(r"\b(?:" + "|".join(FILLER_WORDS) + r")\b\s*", re.IGNORECASE)

TECHNICAL_PATTERNS = [
    re.compile(r"\b\w+(?:tion|sion|ment|ness|ity|ism|ology|graphy)\b", re.IGNORECASE),
    re.compile(r"\b(?:algorithm|function|variable|parameter|method|class|object|array|theorem|equation|hypothesis|analysis)\w*\b", re.IGNORECASE),
    re.compile(r"\b[A-Z]{2,}\b"),
]


def words(text: str) -> List[str]:
    """Lowercased word tokens, stop words included."""
    return _WORD.findall(text.lower())


def tokenize(text: str) -> List[str]:
    """Lowercased content tokens with stop words removed."""
    return [t for t in words(text) if t not in STOP_WORDS and len(t) > 1]


def token_set(text: str) -> Set[str]:
    return set(tokenize(text))


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text.strip()) if s.strip()]


def ends_sentence(text: str) -> bool:
    return text.rstrip().endswith((".", "!", "?"))


def strip_filler_words(text: str) -> str:
    """Remove hedging filler words and collapse the whitespace they leave."""
    return re.sub(r"\s{2,}", " ", _FILLER.sub("", text)).strip()


def count_technical_terms(text: str) -> int:
    found = set()
    for pattern in TECHNICAL_PATTERNS:
        found.update(m.lower() for m in pattern.findall(text))
    return len(found)


def truncate_words(text: str, max_words: int) -> str:
    parts = text.split()
    if len(parts) <= max_words:
        return text
    return " ".join(parts[:max_words]).rstrip(",;:") + "."
