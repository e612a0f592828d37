"""
Map the phases of a CLT-bLM script back onto the source video timeline.

Each phase is aligned to a contiguous run of transcript segments by token
overlap, searched left to right so phase ranges stay ordered and
non-overlapping. A weak alignment falls back to dividing the video
proportionally by phase duration.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ..config import get_settings
from ..exceptions import AlignmentError, ValidationError
from ..logging_config import LoggerMixin
from ..models import (
    AlignmentMethod,
    CLTScript,
    Keypoint,
    KeypointAlignment,
    MicroVideoSegment,
    PHASE_ORDER,
    PhaseName,
    SegmentStatus,
    TimeRange,
    Transcript,
    TranscriptSegment,
)
from ..pedagogy import clamp
from ..utils.text_utils import ends_sentence, token_set

CustomRange = Union[Tuple[Any, float, float], Dict[str, Any]]

# Keypoint alignment weights: time overlap, concept tokens in narration, transcript confidence
KEYPOINT_TIME_WEIGHT = 0.5
KEYPOINT_CONCEPT_WEIGHT = 0.3
KEYPOINT_CONFIDENCE_WEIGHT = 0.2


def overlap_ratio(phase_tokens: set, segment: TranscriptSegment) -> float:
    """Share of a transcript segment's tokens that also appear in the phase narration."""
    tokens = token_set(segment.text)
    if not tokens:
        return 0.0
    return len(phase_tokens & tokens) / len(tokens)


def proportional_ranges(script: CLTScript, video_duration: float) -> List[TimeRange]:
    """Divide ``[0, video_duration]`` across phases by their share of script duration."""
    total = script.total_duration
    ranges = []
    start = 0.0
    for index, phase in enumerate(script.phases):
        if index == len(script.phases) - 1:
            end = video_duration
        else:
            end = round(start + video_duration * phase.duration / total, 3)
        ranges.append(TimeRange(round(start, 3), end))
        start = end
    return ranges


def validate_custom_ranges(custom_ranges: Sequence[CustomRange], video_duration: float) -> List[TimeRange]:
    """Check user-supplied ``(phase, start, end)`` ranges and return them in phase order.

    Raises:
        ValidationError: If a phase is missing or repeated, or ranges overlap,
            are out of order or fall outside the video
    """
    by_phase = {}
    for item in custom_ranges:
        if isinstance(item, dict):
            if "start" not in item or "end" not in item:
                raise ValidationError(f"Custom range needs start and end: {item}", constraint="custom_ranges")
            phase, start, end = item.get("phase"), item["start"], item["end"]
        else:
            try:
                phase, start, end = item
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Malformed custom range: {item!r}", constraint="custom_ranges") from e
        try:
            name = phase if isinstance(phase, PhaseName) else PhaseName(str(phase).lower())
        except ValueError as e:
            raise ValidationError(f"Unknown phase in custom range: {phase}", constraint="custom_ranges") from e
        if name in by_phase:
            raise ValidationError(f"Phase {name.value} given more than once", constraint="custom_ranges")
        try:
            by_phase[name] = (float(start), float(end))
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Range for {name.value} has non-numeric bounds", constraint="custom_ranges"
            ) from e

    missing = [p.value for p in PHASE_ORDER if p not in by_phase]
    if missing:
        raise ValidationError(f"Custom ranges missing phases: {', '.join(missing)}", constraint="custom_ranges")

    ranges = []
    previous_end = 0.0
    for name in PHASE_ORDER:
        start, end = by_phase[name]
        if start < 0 or end > video_duration:
            raise ValidationError(
                f"Range for {name.value} falls outside [0, {video_duration}]", constraint="custom_ranges"
            )
        if end <= start:
            raise ValidationError(f"Range for {name.value} is empty", constraint="custom_ranges")
        if start < previous_end:
            raise ValidationError(
                f"Range for {name.value} overlaps or precedes the previous phase", constraint="custom_ranges"
            )
        ranges.append(TimeRange(start, end))
        previous_end = end
    return ranges


def build_alignment(concept: str, confidence: float, anchor: Optional[TimeRange], threshold: float) -> KeypointAlignment:
    """Trusted alignments keep their anchor, untrusted ones are kept without it.

    An alignment with no anchor is never trusted, whatever its confidence.
    """
    confidence = round(clamp(confidence), 3)
    trusted = confidence >= threshold and anchor is not None
    return KeypointAlignment(
        concept=concept,
        confidence=confidence,
        trusted=trusted,
        anchor=anchor if trusted else None,
    )


class SegmentationService(LoggerMixin):
    """Produce one ordered MicroVideoSegment per script phase."""

    def __init__(self, settings=None):
        self.settings = settings or get_settings()

    def segment(
        self,
        script: CLTScript,
        transcript: Transcript,
        keypoints: List[Keypoint],
        video_duration: float,
        custom_ranges: Optional[Sequence[CustomRange]] = None,
    ) -> List[MicroVideoSegment]:
        """Align ``script`` onto the source timeline.

        The result is deterministic for identical inputs: four segments,
        sequence 1 to 4, status ``segmented``, ordered and non-overlapping
        within ``[0, video_duration]``.

        Raises:
            ValidationError: If ``video_duration`` is not positive or custom ranges are invalid
        """
        if video_duration <= 0:
            raise ValidationError("Video duration must be positive", constraint="duration")

        if custom_ranges is not None:
            ranges = validate_custom_ranges(custom_ranges, video_duration)
            confidences = [self._range_confidence(script, i, r, transcript) for i, r in enumerate(ranges)]
            method = AlignmentMethod.CUSTOM
        else:
            try:
                ranges, confidences = self.align_phases(script, transcript, video_duration)
                method = AlignmentMethod.TOKEN_OVERLAP
            except AlignmentError as e:
                self.logger.warning(
                    "Token alignment failed, dividing video proportionally",
                    video_id=script.video_id,
                    reason=str(e),
                )
                ranges = proportional_ranges(script, video_duration)
                confidences = [0.0] * len(ranges)
                method = AlignmentMethod.PROPORTIONAL_FALLBACK

        placed = self._place_keypoints(keypoints, transcript, ranges)

        segments = []
        for index, (phase, time_range) in enumerate(zip(script.phases, ranges)):
            phase_keypoints = placed[index]
            segment = MicroVideoSegment(
                segment_id=f"{script.video_id}_seg{index + 1:02d}",
                original_video_id=script.video_id,
                transcript_id=transcript.transcript_id,
                sequence=index + 1,
                time_range=time_range,
                phase=phase.name,
                generated_script=phase.content,
                keypoints=phase_keypoints,
                keypoint_alignments=[
                    self.align_keypoint(k, phase.content, time_range, transcript) for k in phase_keypoints
                ],
                key_moments=self.key_moments(transcript, time_range),
                alignment_confidence=round(clamp(confidences[index]), 3),
                alignment_method=method,
                script_version=script.version,
            )
            segment.transition_to(SegmentStatus.SEGMENTED)
            segments.append(segment)

        self.logger.info(
            "Script segmented",
            video_id=script.video_id,
            method=method.value,
            ranges=[(r.start, r.end) for r in ranges],
        )
        return segments

    def align_phases(
        self, script: CLTScript, transcript: Transcript, video_duration: float
    ) -> Tuple[List[TimeRange], List[float]]:
        """Token-overlap alignment of each phase onto a contiguous run of segments.

        Raises:
            AlignmentError: If a phase cannot be placed or its confidence is too low
        """
        segments = transcript.segments
        count = len(segments)
        if count < len(script.phases):
            raise AlignmentError(f"Transcript has {count} segments for {len(script.phases)} phases")

        min_overlap = self.settings.min_segment_overlap
        weight = self.settings.overlap_weight
        ranges = []
        confidences = []
        low = 0

        for index, phase in enumerate(script.phases):
            # Leave at least one segment for every later phase
            high = count - (len(script.phases) - index - 1)
            phase_tokens = token_set(phase.content)
            scores = [overlap_ratio(phase_tokens, s) for s in segments[low:high]]
            best_score = max(scores)
            best = low + scores.index(best_score)
            if best_score < min_overlap:
                raise AlignmentError(f"No transcript segment matches the {phase.name.value} phase")

            left = right = best
            while left - 1 >= low and scores[left - 1 - low] >= min_overlap:
                left -= 1
            while right + 1 < high and scores[right + 1 - low] >= min_overlap:
                right += 1
            core = scores[left - low:right - low + 1]

            # Extend outward to sentence boundaries
            while left > low and not ends_sentence(segments[left - 1].text):
                left -= 1
            while right + 1 < high and not ends_sentence(segments[right].text):
                right += 1

            span = segments[left:right + 1]
            mean_confidence = sum(s.confidence for s in span) / len(span)
            confidence = weight * (sum(core) / len(core)) + (1 - weight) * mean_confidence
            if confidence < self.settings.min_phase_confidence:
                raise AlignmentError(
                    f"Alignment confidence {confidence:.2f} for {phase.name.value} is below "
                    f"{self.settings.min_phase_confidence}"
                )

            start = clamp(span[0].start_time, 0.0, video_duration)
            end = clamp(span[-1].end_time, 0.0, video_duration)
            if end <= start:
                raise AlignmentError(f"{phase.name.value} phase falls outside the video")
            ranges.append(TimeRange(start, end))
            confidences.append(confidence)
            low = right + 1

        return ranges, confidences

    def align_keypoint(
        self, keypoint: Keypoint, narration: str, time_range: TimeRange, transcript: Transcript
    ) -> KeypointAlignment:
        """Score how well a keypoint maps onto a phase range.

        Combines the share of the keypoint's related speech inside the range,
        how many concept tokens the phase narration uses and the transcript
        confidence of the related speech inside the range.
        """
        related = self._related_segments(keypoint, transcript)
        related_seconds = sum(s.duration for s in related)
        inside = [s for s in related if time_range.overlap_seconds(s.start_time, s.end_time) > 0]
        inside_seconds = sum(time_range.overlap_seconds(s.start_time, s.end_time) for s in inside)
        time_fraction = inside_seconds / related_seconds if related_seconds else 0.0

        concept_tokens = token_set(keypoint.concept)
        concept_match = (
            len(concept_tokens & token_set(narration)) / len(concept_tokens) if concept_tokens else 0.0
        )
        confidence_inside = sum(s.confidence for s in inside) / len(inside) if inside else 0.0

        confidence = (
            KEYPOINT_TIME_WEIGHT * time_fraction
            + KEYPOINT_CONCEPT_WEIGHT * concept_match
            + KEYPOINT_CONFIDENCE_WEIGHT * confidence_inside
        )
        anchor = None
        if inside:
            start = max(min(s.start_time for s in inside), time_range.start)
            end = min(max(s.end_time for s in inside), time_range.end)
            anchor = TimeRange(start, end) if end > start else time_range
        return build_alignment(keypoint.concept, confidence, anchor, self.settings.keypoint_trust_threshold)

    def key_moments(self, transcript: Transcript, time_range: TimeRange) -> List[float]:
        threshold = self.settings.key_moment_threshold
        return [
            s.start_time
            for s in transcript.segments
            if s.importance > threshold and time_range.contains(s.start_time)
        ]

    def _place_keypoints(
        self, keypoints: List[Keypoint], transcript: Transcript, ranges: List[TimeRange]
    ) -> List[List[Keypoint]]:
        """Attach each keypoint to the phase containing its most important related segment."""
        placed = [[] for _ in ranges]
        deliver = PHASE_ORDER.index(PhaseName.DELIVER)
        for keypoint in keypoints:
            related = self._related_segments(keypoint, transcript)
            target = deliver
            if related:
                best = max(related, key=lambda s: (s.importance, -s.start_time))
                midpoint = (best.start_time + best.end_time) / 2
                for index, time_range in enumerate(ranges):
                    if time_range.contains(midpoint):
                        target = index
                        break
            placed[target].append(keypoint)
        return placed

    @staticmethod
    def _related_segments(keypoint: Keypoint, transcript: Transcript) -> List[TranscriptSegment]:
        if keypoint.related_segment_ids:
            ids = set(keypoint.related_segment_ids)
            return [s for s in transcript.segments if s.segment_id in ids]
        needle = keypoint.concept.lower()
        return [s for s in transcript.segments if needle in s.text.lower()]

    def _range_confidence(
        self, script: CLTScript, index: int, time_range: TimeRange, transcript: Transcript
    ) -> float:
        """Confidence of a manually supplied range, scored like a token alignment."""
        span = transcript.get_segments_in_range(time_range.start, time_range.end)
        if not span:
            return 0.0
        phase_tokens = token_set(script.phases[index].content)
        overlap = sum(overlap_ratio(phase_tokens, s) for s in span) / len(span)
        mean_confidence = sum(s.confidence for s in span) / len(span)
        weight = self.settings.overlap_weight
        return weight * overlap + (1 - weight) * mean_confidence
