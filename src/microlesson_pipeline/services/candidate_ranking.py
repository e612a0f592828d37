"""Discover and rank educational source videos from an external catalog."""

import asyncio
import math
from typing import Any, Dict, List, Optional, Protocol

from ..config import get_settings
from ..exceptions import ExternalServiceError, MicroLessonError, ValidationError
from ..logging_config import LoggerMixin
from ..models import CandidateVideo
from ..schemas import CandidateQualityResponse
from ..utils.time_utils import parse_iso8601_duration
from .api_client import ApiClient
from .text_generation import TextGenerator, generate_structured

NEUTRAL_QUALITY_SCORE = 5.0

LEVELS = ("Beginner", "Intermediate", "Professional")

TOPIC_QUERIES = {
    "javascript": {
        "Beginner": "JavaScript tutorial beginners course basics fundamentals",
        "Intermediate": "JavaScript intermediate course practical projects ES6",
        "Professional": "Advanced JavaScript design patterns performance optimization",
    },
    "react": {
        "Beginner": "React tutorial beginners course components JSX",
        "Intermediate": "React intermediate hooks state management projects",
        "Professional": "Advanced React patterns performance optimization testing",
    },
    "typescript": {
        "Beginner": "TypeScript tutorial beginners course types basics",
        "Intermediate": "TypeScript intermediate interfaces generics practical",
        "Professional": "Advanced TypeScript patterns compiler configuration",
    },
    "nodejs": {
        "Beginner": "Node.js tutorial beginners course server basics",
        "Intermediate": "Node.js intermediate Express API database MongoDB",
        "Professional": "Advanced Node.js microservices performance scaling",
    },
    "python": {
        "Beginner": "Python tutorial beginners course programming basics",
        "Intermediate": "Python intermediate OOP projects web development",
        "Professional": "Advanced Python design patterns performance optimization",
    },
    "mongodb": {
        "Beginner": "MongoDB tutorial beginners database NoSQL basics",
        "Intermediate": "MongoDB intermediate aggregation indexing queries",
        "Professional": "Advanced MongoDB performance scaling replication",
    },
}

BLACKLISTED_TERMS = [
    "react", "funny", "meme", "compilation", "music", "song",
    "game", "vlog", "review", "unboxing", "news",
]

EDUCATIONAL_CONTEXT = {
    "react": ["tutorial", "course", "learn", "guide", "development"],
    "game": ["development", "programming", "coding", "tutorial"],
    "music": ["programming", "theory", "algorithm"],
}

EDUCATIONAL_KEYWORDS = [
    "tutorial", "course", "learn", "guide", "how to", "introduction",
    "beginner", "intermediate", "advanced", "complete", "full",
    "programming", "coding", "development", "explained",
]

QUALITY_PROMPT = """Analyze this YouTube video for educational value.

Title: {title}
Description: {description}
Channel: {channel}
Duration: {duration} seconds
Views: {views}

Topic: {topic}
Target Level: {level}

Rate the video from 0 to 10 considering educational quality (clear,
structured explanation), topic relevance and level appropriateness.

Respond with JSON only:
{{"score": 8, "reasoning": "short explanation", "strengths": ["..."], "concerns": ["..."]}}"""


class CandidateRankingError(ExternalServiceError):
    """Raised when the catalog cannot be searched."""


class VideoCatalog(Protocol):
    """External video catalog collaborator."""

    async def search(self, query: str, max_results: int) -> List[CandidateVideo]:
        ...


def normalize_level(level: str) -> str:
    value = (level or "").strip().lower()
    if value in ("advanced", "professional", "expert"):
        return "Professional"
    if value == "beginner":
        return "Beginner"
    if value == "intermediate":
        return "Intermediate"
    raise ValidationError(f"Unknown level: {level}", constraint="level")


def build_search_query(topic: str, level: str) -> str:
    level = normalize_level(level)
    known = TOPIC_QUERIES.get(topic.strip().lower())
    if known:
        return known[level]
    return f"{topic} {level.lower()} tutorial course"


def is_educational_context(title: str, term: str) -> bool:
    return any(word in title for word in EDUCATIONAL_CONTEXT.get(term, []))


def composite_score(candidate: CandidateVideo) -> float:
    """Blend AI quality (60%), popularity (30%) and engagement (10%)."""
    view_score = min(math.log10(candidate.view_count) / 2, 5) if candidate.view_count > 0 else 0.0
    engagement = candidate.like_count / max(candidate.view_count, 1) * 100
    return round(candidate.quality_score * 0.6 + view_score * 0.3 + engagement * 0.1, 4)


def rank_candidates(candidates: List[CandidateVideo]) -> List[CandidateVideo]:
    """Sort by composite score, higher view count first on ties."""
    for candidate in candidates:
        candidate.composite_score = composite_score(candidate)
    return sorted(candidates, key=lambda c: (-c.composite_score, -c.view_count))


class YouTubeCatalog(LoggerMixin):
    """YouTube Data API v3 search (``search`` then ``videos`` for details)."""

    def __init__(self, settings=None, api_client: Optional[ApiClient] = None):
        self.settings = settings or get_settings()
        self.api_client = api_client or ApiClient(self.settings)

    async def search(self, query: str, max_results: int = 50) -> List[CandidateVideo]:
        if not self.settings.youtube_api_key:
            raise CandidateRankingError("YouTube API key is not configured", service="youtube")

        results = await self.api_client.get_json(
            self.settings.youtube_api_url,
            "/search",
            params={
                "key": self.settings.youtube_api_key,
                "q": query,
                "part": "snippet",
                "type": "video",
                "maxResults": max_results,
                "order": "relevance",
            },
        )
        ids = [
            item["id"]["videoId"]
            for item in results.get("items", [])
            if isinstance(item.get("id"), dict) and item["id"].get("videoId")
        ]
        if not ids:
            return []

        details = await self.api_client.get_json(
            self.settings.youtube_api_url,
            "/videos",
            params={
                "key": self.settings.youtube_api_key,
                "part": "statistics,contentDetails,snippet",
                "id": ",".join(ids),
            },
        )
        candidates = []
        for item in details.get("items", []):
            candidate = self._to_candidate(item)
            if candidate is not None:
                candidates.append(candidate)
        self.logger.debug("Catalog search", query=query, found=len(candidates))
        return candidates

    def _to_candidate(self, item: Dict[str, Any]) -> Optional[CandidateVideo]:
        snippet = item.get("snippet") or {}
        stats = item.get("statistics") or {}
        try:
            duration = parse_iso8601_duration((item.get("contentDetails") or {}).get("duration", ""))
        except ValueError:
            self.logger.debug("Skipping video with unparseable duration", video_id=item.get("id"))
            return None
        return CandidateVideo(
            video_id=item["id"],
            title=snippet.get("title", ""),
            description=snippet.get("description", ""),
            channel_title=snippet.get("channelTitle", ""),
            url=f"https://www.youtube.com/watch?v={item['id']}",
            duration=duration,
            view_count=int(stats.get("viewCount", 0)),
            like_count=int(stats.get("likeCount", 0)),
            comment_count=int(stats.get("commentCount", 0)),
        )


class CandidateRankingService(LoggerMixin):
    """Search, filter, rate and rank candidate source videos."""

    def __init__(self, catalog: VideoCatalog, generator: TextGenerator, settings=None):
        self.settings = settings or get_settings()
        self.catalog = catalog
        self.generator = generator

    async def search_educational_videos(self, topic: str, level: str, max_videos: int = 3) -> List[CandidateVideo]:
        """Return the best ``max_videos`` educational videos for a topic and level."""
        if not topic or not topic.strip():
            raise ValidationError("Topic cannot be empty", constraint="topic")
        if max_videos < 1:
            raise ValidationError("max_videos must be at least 1", constraint="max_videos")

        level = normalize_level(level)
        query = build_search_query(topic, level)
        self.logger.info("Searching catalog", topic=topic, level=level, query=query)

        results = await self.catalog.search(query, 50)
        educational = self.filter_educational(results)
        assessed = await self._assess_all(educational[: self.settings.candidate_analysis_limit], topic, level)
        ranked = rank_candidates(assessed)

        self.logger.info(
            "Candidates ranked",
            topic=topic,
            found=len(results),
            educational=len(educational),
            returned=min(max_videos, len(ranked)),
        )
        return ranked[:max_videos]

    def filter_educational(self, candidates: List[CandidateVideo]) -> List[CandidateVideo]:
        kept = []
        for candidate in candidates:
            if not self.settings.candidate_min_duration <= candidate.duration <= self.settings.candidate_max_duration:
                continue
            if candidate.view_count < self.settings.candidate_min_views:
                continue
            title = candidate.title.lower()
            if any(term in title and not is_educational_context(title, term) for term in BLACKLISTED_TERMS):
                continue
            if any(keyword in title for keyword in EDUCATIONAL_KEYWORDS):
                kept.append(candidate)
        return kept

    async def _assess_all(self, candidates: List[CandidateVideo], topic: str, level: str) -> List[CandidateVideo]:
        await asyncio.gather(*(self._assess(c, topic, level) for c in candidates))
        return candidates

    async def _assess(self, candidate: CandidateVideo, topic: str, level: str) -> None:
        try:
            result = await generate_structured(
                self.generator,
                QUALITY_PROMPT,
                {
                    "title": candidate.title,
                    "description": candidate.description[:500],
                    "channel": candidate.channel_title,
                    "duration": int(candidate.duration),
                    "views": candidate.view_count,
                    "topic": topic,
                    "level": level,
                },
                CandidateQualityResponse,
            )
        except MicroLessonError as e:
            self.logger.warning("Quality assessment failed, using neutral score", video_id=candidate.video_id, error=str(e))
            candidate.quality_score = NEUTRAL_QUALITY_SCORE
            candidate.quality_reasoning = "AI analysis unavailable"
            return
        candidate.quality_score = result.score
        candidate.quality_reasoning = result.reasoning
