"""
Narration synthesis using Microsoft Edge TTS.

The narration of each micro-video segment is synthesized with a neural
voice chosen from a language and gender profile table and stored in the
media store. Durations come from the word boundary events edge-tts streams
alongside the audio.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol

import edge_tts

from ..config import get_settings
from ..exceptions import ExternalServiceError, ValidationError
from ..logging_config import LoggerMixin
from ..models import Difficulty, MicroVideoSegment, NarrationAudio
from .media_store import MediaStore

# Edge TTS offsets and durations are expressed in 100 ns ticks
TICKS_PER_SECOND = 10_000_000
# Default output format is audio-24khz-48kbitrate-mono-mp3
MP3_BITS_PER_SECOND = 48_000

COMPLEXITY_RATES = {
    Difficulty.BEGINNER: "+0%",
    Difficulty.INTERMEDIATE: "-5%",
    Difficulty.ADVANCED: "-10%",
}


class AudioSynthesisError(ExternalServiceError):
    """Raised when narration cannot be synthesized."""


@dataclass
class VoiceProfile:
    """Configuration for a voice profile."""
    name: str
    language: str
    language_code: str  # Language code for Edge TTS (e.g., "en-US", "vi-VN")
    voice_name: str     # Full voice name for Edge TTS (e.g., "en-US-AriaNeural")
    gender: str = "female"
    rate: str = "+0%"


@dataclass
class SynthesizedAudio:
    audio_bytes: bytes
    duration_seconds: float


class SpeechSynthesizer(Protocol):
    """Text-to-speech collaborator."""

    async def synthesize(self, text: str, voice: VoiceProfile) -> SynthesizedAudio:
        ...


class EdgeTTSSynthesizer(LoggerMixin):
    """Stream narration audio from Edge TTS."""

    def __init__(self, settings=None):
        self.settings = settings or get_settings()

    async def synthesize(self, text: str, voice: VoiceProfile) -> SynthesizedAudio:
        if not text.strip():
            raise ValidationError("No text to synthesize", constraint="text")
        try:
            return await asyncio.wait_for(self._stream(text, voice), timeout=self.settings.tts_timeout)
        except asyncio.TimeoutError as e:
            raise AudioSynthesisError(
                f"Edge TTS timed out after {self.settings.tts_timeout}s", service="edge_tts"
            ) from e
        except AudioSynthesisError:
            raise
        except Exception as e:
            raise AudioSynthesisError(f"Edge TTS failed: {e}", service="edge_tts") from e

    async def _stream(self, text: str, voice: VoiceProfile) -> SynthesizedAudio:
        communicate = edge_tts.Communicate(
            text=text,
            voice=voice.voice_name,
            rate=voice.rate,
            volume="+0%",
        )
        audio = bytearray()
        boundary_end = 0
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                audio.extend(chunk["data"])
            elif chunk["type"] in ("WordBoundary", "SentenceBoundary"):
                boundary_end = max(boundary_end, chunk["offset"] + chunk["duration"])

        if not audio:
            raise AudioSynthesisError("Edge TTS returned no audio", service="edge_tts")

        if boundary_end:
            duration = boundary_end / TICKS_PER_SECOND
        else:
            duration = len(audio) * 8 / MP3_BITS_PER_SECOND
        self.logger.debug("Narration streamed", voice=voice.voice_name, bytes=len(audio), duration=round(duration, 2))
        return SynthesizedAudio(audio_bytes=bytes(audio), duration_seconds=round(duration, 3))


class AudioSynthesisService(LoggerMixin):
    """Synthesize segment narration and record it on the segment."""

    # Language-to-voice mapping for Edge TTS
    VOICE_PROFILES = {
        'en': {
            'language_code': 'en-US',
            'voice_name': 'en-US-AriaNeural',  # Female voice
            'voice_name_male': 'en-US-GuyNeural',
        },
        'vi': {
            'language_code': 'vi-VN',
            'voice_name': 'vi-VN-HoaiMyNeural',
            'voice_name_male': 'vi-VN-NamMinhNeural',
        },
        'ja': {
            'language_code': 'ja-JP',
            'voice_name': 'ja-JP-NanamiNeural',
            'voice_name_male': 'ja-JP-KeitaNeural',
        },
        'de': {
            'language_code': 'de-DE',
            'voice_name': 'de-DE-KatjaNeural',
            'voice_name_male': 'de-DE-ConradNeural',
        },
        'es': {
            'language_code': 'es-ES',
            'voice_name': 'es-ES-ElviraNeural',
            'voice_name_male': 'es-ES-AlvaroNeural',
        },
    }

    def __init__(self, synthesizer: SpeechSynthesizer, media_store: MediaStore, settings=None):
        self.settings = settings or get_settings()
        self.synthesizer = synthesizer
        self.media_store = media_store

    def select_voice(
        self,
        language: Optional[str] = None,
        gender: Optional[str] = None,
        complexity: Optional[Difficulty] = None,
    ) -> VoiceProfile:
        """Pick a voice for the language and gender, slower for harder content."""
        language = (language or self.settings.tts_language).split("-")[0].lower()
        gender = (gender or self.settings.voice_gender).lower()
        config = self.VOICE_PROFILES.get(language)
        if config is None:
            self.logger.warning("No voice profile for language, using English", language=language)
            language, config = 'en', self.VOICE_PROFILES['en']
        voice_name = config['voice_name_male'] if gender == "male" else config['voice_name']
        return VoiceProfile(
            name=f"{language}_{gender}_default",
            language=language,
            language_code=config['language_code'],
            voice_name=voice_name,
            gender=gender,
            rate=COMPLEXITY_RATES.get(complexity, "+0%"),
        )

    async def synthesize_segment(
        self, segment: MicroVideoSegment, voice: Optional[VoiceProfile] = None
    ) -> NarrationAudio:
        """Synthesize ``segment.generated_script`` and attach the narration to the segment.

        A narration that deviates from the segment's clip length by more than
        ``narration_mismatch_tolerance`` is logged; rendering reconciles it.

        Raises:
            ExternalServiceError: If the synthesizer fails
        """
        voice = voice or self.select_voice()
        result = await self.synthesizer.synthesize(segment.generated_script, voice)
        path = await self.media_store.put(result.audio_bytes, ".mp3")

        allotted = segment.time_range.duration
        mismatch = abs(result.duration_seconds - allotted) / allotted
        if mismatch > self.settings.narration_mismatch_tolerance:
            self.logger.warning(
                "Narration length differs from clip length",
                segment_id=segment.segment_id,
                narration_seconds=result.duration_seconds,
                clip_seconds=round(allotted, 2),
                mismatch=round(mismatch, 3),
            )

        narration = NarrationAudio(path=str(path), duration=result.duration_seconds, voice=voice.voice_name)
        segment.narration = narration
        self.logger.info(
            "Narration synthesized",
            segment_id=segment.segment_id,
            voice=voice.voice_name,
            duration=result.duration_seconds,
        )
        return narration
