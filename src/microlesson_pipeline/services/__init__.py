"""
Service modules for the micro-lesson pipeline.
"""

from .api_client import ApiClient, ApiClientError
from .audio_synthesis import AudioSynthesisService, AudioSynthesisError, EdgeTTSSynthesizer, VoiceProfile
from .candidate_ranking import CandidateRankingService, CandidateRankingError, YouTubeCatalog
from .content_analysis import ContentAnalysisService, ComplexityAnalysis, ContentProfile
from .media_encoder import FFmpegEncoder, MediaInfo
from .media_store import MediaStore
from .pipeline import MicroLessonPipeline, PipelineError, ProgressCallback
from .record_store import RecordStore
from .script_generation import ScriptGenerationService, ScriptPreferences
from .script_optimizer import ScriptOptimizer
from .segmentation import SegmentationService
from .status_tracker import StatusTracker
from .text_generation import OllamaTextGenerator, TextGenerationError
from .transcription import WhisperApiTranscriber, TranscriptionError
from .video_ingestion import VideoIngestionService, VideoIngestionError, IngestionReceipt
from .video_renderer import VideoRenderingService, VideoRendererError
from .visual_enhancement import VisualEnhancementService

__all__ = [
    "ApiClient",
    "ApiClientError",
    "AudioSynthesisService",
    "AudioSynthesisError",
    "EdgeTTSSynthesizer",
    "VoiceProfile",
    "CandidateRankingService",
    "CandidateRankingError",
    "YouTubeCatalog",
    "ContentAnalysisService",
    "ComplexityAnalysis",
    "ContentProfile",
    "FFmpegEncoder",
    "MediaInfo",
    "MediaStore",
    "MicroLessonPipeline",
    "PipelineError",
    "ProgressCallback",
    "RecordStore",
    "ScriptGenerationService",
    "ScriptPreferences",
    "ScriptOptimizer",
    "SegmentationService",
    "StatusTracker",
    "OllamaTextGenerator",
    "TextGenerationError",
    "WhisperApiTranscriber",
    "TranscriptionError",
    "VideoIngestionService",
    "VideoIngestionError",
    "IngestionReceipt",
    "VideoRenderingService",
    "VideoRendererError",
    "VisualEnhancementService",
]
