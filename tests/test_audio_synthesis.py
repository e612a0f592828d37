"""
Tests for narration synthesis.
"""

import asyncio
from pathlib import Path

import pytest

from microlesson_pipeline.exceptions import ExternalServiceError, ValidationError
from microlesson_pipeline.models import Difficulty, MicroVideoSegment, PhaseName, TimeRange
from microlesson_pipeline.services import audio_synthesis
from microlesson_pipeline.services.audio_synthesis import (
    AudioSynthesisError,
    AudioSynthesisService,
    EdgeTTSSynthesizer,
    VoiceProfile,
)

from conftest import StubSynthesizer


class FakeCommunicate:
    """Stand-in for edge_tts.Communicate streaming two words."""

    instances = []

    def __init__(self, text, voice, rate="+0%", volume="+0%"):
        self.text = text
        self.voice = voice
        self.rate = rate
        FakeCommunicate.instances.append(self)

    async def stream(self):
        yield {"type": "audio", "data": b"\x00" * 100}
        yield {"type": "WordBoundary", "offset": 1_000_000, "duration": 4_000_000, "text": "Hello"}
        yield {"type": "audio", "data": b"\x00" * 100}
        yield {"type": "WordBoundary", "offset": 6_000_000, "duration": 9_000_000, "text": "world"}


class SilentCommunicate(FakeCommunicate):
    async def stream(self):
        yield {"type": "WordBoundary", "offset": 0, "duration": 1_000_000, "text": "Hello"}


class BrokenCommunicate(FakeCommunicate):
    async def stream(self):
        raise ConnectionError("socket closed")
        yield  # pragma: no cover


def make_segment(text="Welcome to recursion.") -> MicroVideoSegment:
    return MicroVideoSegment(
        segment_id="video_test_seg01",
        original_video_id="video_test",
        transcript_id="transcript_test",
        sequence=1,
        time_range=TimeRange(0.0, 40.0),
        phase=PhaseName.PREPARE,
        generated_script=text,
    )


@pytest.fixture
def english_voice() -> VoiceProfile:
    return VoiceProfile(
        name="en_female_default",
        language="en",
        language_code="en-US",
        voice_name="en-US-AriaNeural",
    )


class TestVoiceSelection:
    """Voice profile lookup."""

    def test_default_voice(self, test_settings, media_store):
        service = AudioSynthesisService(StubSynthesizer(), media_store, test_settings)
        voice = service.select_voice()
        assert voice.voice_name == "en-US-AriaNeural"
        assert voice.language_code == "en-US"
        assert voice.rate == "+0%"

    def test_male_voice(self, test_settings, media_store):
        service = AudioSynthesisService(StubSynthesizer(), media_store, test_settings)
        assert service.select_voice("en", "male").voice_name == "en-US-GuyNeural"

    def test_regional_language_code(self, test_settings, media_store):
        service = AudioSynthesisService(StubSynthesizer(), media_store, test_settings)
        voice = service.select_voice("vi-VN")
        assert voice.voice_name == "vi-VN-HoaiMyNeural"
        assert voice.language == "vi"

    def test_unknown_language_falls_back_to_english(self, test_settings, media_store):
        service = AudioSynthesisService(StubSynthesizer(), media_store, test_settings)
        assert service.select_voice("xx").voice_name == "en-US-AriaNeural"

    def test_advanced_content_is_slower(self, test_settings, media_store):
        service = AudioSynthesisService(StubSynthesizer(), media_store, test_settings)
        assert service.select_voice(complexity=Difficulty.ADVANCED).rate == "-10%"
        assert service.select_voice(complexity=Difficulty.INTERMEDIATE).rate == "-5%"


class TestSynthesizeSegment:
    """Tests for AudioSynthesisService.synthesize_segment."""

    def test_narration_attached(self, test_settings, media_store, english_voice):
        synthesizer = StubSynthesizer()
        service = AudioSynthesisService(synthesizer, media_store, test_settings)
        segment = make_segment()

        narration = asyncio.run(service.synthesize_segment(segment, english_voice))

        assert segment.narration is narration
        assert narration.duration == pytest.approx(1.2)
        assert narration.voice == "en-US-AriaNeural"
        path = Path(narration.path)
        assert path.suffix == ".mp3"
        assert path.read_bytes() == b"en-US-AriaNeural:Welcome to recursion."
        assert synthesizer.calls == [("Welcome to recursion.", english_voice)]

    def test_identical_narration_stored_once(self, test_settings, media_store, english_voice):
        service = AudioSynthesisService(StubSynthesizer(), media_store, test_settings)
        first = asyncio.run(service.synthesize_segment(make_segment(), english_voice))
        second = asyncio.run(service.synthesize_segment(make_segment(), english_voice))
        assert first.path == second.path

    def test_synthesizer_failure_propagates(self, test_settings, media_store, english_voice):
        class FailingSynthesizer:
            async def synthesize(self, text, voice):
                raise AudioSynthesisError("tts down", service="edge_tts")

        service = AudioSynthesisService(FailingSynthesizer(), media_store, test_settings)
        segment = make_segment()

        with pytest.raises(ExternalServiceError):
            asyncio.run(service.synthesize_segment(segment, english_voice))
        assert segment.narration is None


class TestEdgeTTSSynthesizer:
    """Tests for the Edge TTS adapter."""

    def test_duration_from_word_boundaries(self, test_settings, english_voice, monkeypatch):
        monkeypatch.setattr(audio_synthesis.edge_tts, "Communicate", FakeCommunicate)
        synthesizer = EdgeTTSSynthesizer(test_settings)

        result = asyncio.run(synthesizer.synthesize("Hello world", english_voice))

        assert result.audio_bytes == b"\x00" * 200
        assert result.duration_seconds == 1.5
        assert FakeCommunicate.instances[-1].voice == "en-US-AriaNeural"

    def test_empty_text_rejected(self, test_settings, english_voice):
        with pytest.raises(ValidationError):
            asyncio.run(EdgeTTSSynthesizer(test_settings).synthesize("   ", english_voice))

    def test_no_audio_is_an_error(self, test_settings, english_voice, monkeypatch):
        monkeypatch.setattr(audio_synthesis.edge_tts, "Communicate", SilentCommunicate)
        with pytest.raises(AudioSynthesisError, match="no audio"):
            asyncio.run(EdgeTTSSynthesizer(test_settings).synthesize("Hello", english_voice))

    def test_transport_failure_wrapped(self, test_settings, english_voice, monkeypatch):
        monkeypatch.setattr(audio_synthesis.edge_tts, "Communicate", BrokenCommunicate)
        with pytest.raises(AudioSynthesisError, match="socket closed"):
            asyncio.run(EdgeTTSSynthesizer(test_settings).synthesize("Hello", english_voice))
