"""
Transcription adapter: speech-to-text via the whisper-stt REST service, plus
the segment post-processing every transcript goes through.
"""

import asyncio
import re
import uuid
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from ..config import get_settings
from ..exceptions import ExternalServiceError
from ..logging_config import LoggerMixin, get_logger
from ..models import Transcript, TranscriptSegment
from ..utils.text_utils import tokenize
from .api_client import ApiClient

logger = get_logger(__name__)


class TranscriptionError(ExternalServiceError):
    """Exception raised during transcription."""


class Transcriber(Protocol):
    """Speech-to-text collaborator."""

    async def transcribe(self, audio_path: Path, video_id: str) -> Transcript:
        ...


IMPORTANCE_KEY_TERMS = [
    "important", "key", "main", "primary", "essential", "crucial", "critical",
    "remember", "note", "understand", "concept", "principle", "definition",
    "conclusion", "summary", "result", "finding",
]

_COMPLEX_INDICATORS = [
    re.compile(r"\b\w{8,}\b"),
    re.compile(r"\b[A-Z]{2,}\b"),
    re.compile(r"\b\d+\.\d+\b"),
]


def segment_importance(text: str, index: int, total: int) -> float:
    """Heuristic importance of a segment from its position and wording."""
    importance = 0.5
    if index < total * 0.1:
        importance += 0.2
    if index > total * 0.9:
        importance += 0.2

    lower = text.lower()
    for term in IMPORTANCE_KEY_TERMS:
        if term in lower:
            importance += 0.1
    if "?" in text:
        importance += 0.1
    if re.search(r"\d", text):
        importance += 0.05
    return round(min(max(importance, 0.0), 1.0), 3)


def conceptual_density(text: str) -> float:
    """Share of long words, acronyms and decimals among all words."""
    total = len(text.split())
    if total == 0:
        return 0.0
    complex_terms = sum(len(p.findall(text)) for p in _COMPLEX_INDICATORS)
    return round(min(complex_terms / total, 1.0), 3)


def speaking_rate(text: str, duration: float) -> float:
    minutes = duration / 60
    return round(len(text.split()) / minutes) if minutes > 0 else 0.0


def key_topics(text: str, limit: int = 5) -> List[str]:
    counts = Counter(t for t in tokenize(text) if len(t) > 3)
    return [word for word, _ in counts.most_common(limit)]


def build_transcript(
    raw_segments: List[Dict[str, Any]],
    video_id: str,
    language: str = "en",
    full_text: str = "",
) -> Transcript:
    """Order, de-overlap and enrich raw ``{start, end, text, confidence}`` segments.

    Segments are sorted by start time and negative starts are clamped to zero.
    A segment that starts before its predecessor ends is clipped to begin at
    the predecessor's end. Segments left shorter than 10 ms are dropped.
    """
    cleaned = []
    for raw in sorted(raw_segments, key=lambda s: (float(s["start"]), float(s["end"]))):
        text = str(raw.get("text") or "").strip()
        start, end = max(float(raw["start"]), 0.0), float(raw["end"])
        if not text or end - start < 0.01:
            continue
        if cleaned and start < cleaned[-1]["end"]:
            start = cleaned[-1]["end"]
            if end - start <= 0.01:
                logger.debug("Dropping overlapped segment", start=raw["start"], end=raw["end"])
                continue
        confidence = raw.get("confidence", 0.8)
        confidence = min(max(float(confidence), 0.0), 1.0) if isinstance(confidence, (int, float)) else 0.8
        cleaned.append({"start": start, "end": end, "text": text, "confidence": confidence})

    if not cleaned:
        raise TranscriptionError("Transcription produced no usable segments", service="transcription")

    total = len(cleaned)
    segments = [
        TranscriptSegment(
            segment_id=f"seg_{index:04d}",
            start_time=round(item["start"], 3),
            end_time=round(item["end"], 3),
            text=item["text"],
            confidence=round(item["confidence"], 3),
            importance=segment_importance(item["text"], index, total),
            key_topics=key_topics(item["text"]),
            conceptual_density=conceptual_density(item["text"]),
            speaking_rate=speaking_rate(item["text"], item["end"] - item["start"]),
        )
        for index, item in enumerate(cleaned)
    ]
    return Transcript(
        transcript_id=f"transcript_{uuid.uuid4().hex[:12]}",
        video_id=video_id,
        segments=segments,
        language=language or "en",
        full_text=full_text.strip(),
    )


class WhisperApiTranscriber(LoggerMixin):
    """Transcribe audio through the whisper-stt service (upload, SSE progress, result fetch)."""

    def __init__(self, settings=None, api_client: Optional[ApiClient] = None, language: str = "auto"):
        self.settings = settings or get_settings()
        self.api_client = api_client or ApiClient(self.settings)
        self.language = language

    async def transcribe(self, audio_path: Path, video_id: str) -> Transcript:
        audio_path = Path(audio_path)
        self.logger.info("Transcribing audio", audio=str(audio_path), video_id=video_id)
        try:
            result = await asyncio.wait_for(
                self._transcribe_api(audio_path),
                timeout=self.settings.transcription_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TranscriptionError(
                f"Transcription timed out after {self.settings.transcription_timeout}s",
                service="whisper",
            ) from e

        raw_segments = []
        for segment in result.get("segments") or []:
            if not isinstance(segment, dict):
                continue
            if not isinstance(segment.get("start"), (int, float)) or not isinstance(segment.get("end"), (int, float)):
                continue
            raw_segments.append({
                "start": segment["start"],
                "end": segment["end"],
                "text": segment.get("text") or "",
                "confidence": self._segment_confidence(segment),
            })

        transcript = build_transcript(
            raw_segments,
            video_id=video_id,
            language=str(result.get("language") or "en"),
            full_text=str(result.get("text_with_punctuation") or result.get("text") or ""),
        )
        self.logger.info(
            "Transcription complete",
            video_id=video_id,
            segments=transcript.segment_count,
            confidence=transcript.overall_confidence,
        )
        return transcript

    async def _transcribe_api(self, audio_path: Path) -> Dict[str, Any]:
        form_data: Dict[str, str] = {
            "model": self.settings.whisper_model,
            "add_punctuation": "true",
            "word_timestamps": "true",
        }
        if self.language and self.language != "auto":
            form_data["language"] = self.language

        audio_bytes = await asyncio.to_thread(audio_path.read_bytes)
        response = await self.api_client.post_multipart(
            self.settings.whisper_api_url,
            "/api/v1/transcribe",
            data=form_data,
            files={"file": (audio_path.name, audio_bytes, "audio/wav")},
        )

        task_id = response.get("task_id")
        if not isinstance(task_id, str) or not task_id:
            raise TranscriptionError("Invalid whisper-stt response: missing task_id", service="whisper")

        return await self.api_client.poll_for_completion(
            base_url=self.settings.whisper_api_url,
            task_id=task_id,
            stream_path="/api/v1/transcribe/stream",
            result_path="/api/v1/transcribe/result",
        )

    @staticmethod
    def _segment_confidence(segment: Dict[str, Any]) -> float:
        words_payload = segment.get("words")
        if isinstance(words_payload, list) and words_payload:
            probs = [
                float(word["probability"])
                for word in words_payload
                if isinstance(word, dict) and isinstance(word.get("probability"), (int, float))
            ]
            if probs:
                return max(0.0, min(1.0, sum(probs) / len(probs)))
        return 0.8
