"""
Micro-Lesson Pipeline

An automated system for turning long-form instructional videos into short,
CLT-bLM structured micro-lessons narrated over the original footage.
"""

__version__ = "0.1.0"
__author__ = "PsiLab Technology"

from .models import (
    SourceVideo,
    Transcript,
    TranscriptSegment,
    Keypoint,
    CognitiveLoad,
    ScriptPhase,
    CLTScript,
    TimeRange,
    KeypointAlignment,
    MicroVideoSegment,
    OutputFile,
    CandidateVideo,
    PipelineRun,
    VideoStatus,
    SegmentStatus,
    PhaseName,
    BloomLevel,
    Difficulty,
)

__all__ = [
    "SourceVideo",
    "Transcript",
    "TranscriptSegment",
    "Keypoint",
    "CognitiveLoad",
    "ScriptPhase",
    "CLTScript",
    "TimeRange",
    "KeypointAlignment",
    "MicroVideoSegment",
    "OutputFile",
    "CandidateVideo",
    "PipelineRun",
    "VideoStatus",
    "SegmentStatus",
    "PhaseName",
    "BloomLevel",
    "Difficulty",
]
