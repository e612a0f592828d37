"""
Tests for candidate discovery, filtering and ranking.
"""

import asyncio

import httpx
import pytest

from microlesson_pipeline.exceptions import ValidationError
from microlesson_pipeline.models import CandidateVideo
from microlesson_pipeline.services.api_client import ApiClient
from microlesson_pipeline.services.candidate_ranking import (
    QUALITY_PROMPT,
    CandidateRankingError,
    CandidateRankingService,
    YouTubeCatalog,
    build_search_query,
    composite_score,
    normalize_level,
    rank_candidates,
)
from microlesson_pipeline.services.text_generation import TextGenerationError

from conftest import StubGenerator


def make_candidate(video_id="vid", title="Python tutorial for everyone", duration=600.0,
                   views=10000, likes=0, quality=5.0) -> CandidateVideo:
    return CandidateVideo(
        video_id=video_id,
        title=title,
        url=f"https://www.youtube.com/watch?v={video_id}",
        duration=duration,
        view_count=views,
        like_count=likes,
        quality_score=quality,
    )


class FixedCatalog:
    def __init__(self, candidates):
        self.candidates = candidates
        self.queries = []

    async def search(self, query, max_results):
        self.queries.append((query, max_results))
        return list(self.candidates)


class TestQueries:
    """Level normalization and query building."""

    def test_normalize_level(self):
        assert normalize_level("beginner") == "Beginner"
        assert normalize_level(" Intermediate ") == "Intermediate"
        assert normalize_level("Advanced") == "Professional"
        assert normalize_level("expert") == "Professional"

    def test_unknown_level(self):
        with pytest.raises(ValidationError):
            normalize_level("wizard")

    def test_known_topic_query(self):
        assert build_search_query("Python", "advanced") == (
            "Advanced Python design patterns performance optimization"
        )

    def test_generic_query(self):
        assert build_search_query("Rust", "beginner") == "Rust beginner tutorial course"


class TestScoring:
    """Composite score and ranking order."""

    def test_composite_score(self):
        assert composite_score(make_candidate(quality=9.0)) == 6.0
        assert composite_score(make_candidate(quality=9.0, likes=100)) == 6.1
        assert composite_score(make_candidate(quality=0.0, views=0)) == 0.0

    def test_view_score_capped(self):
        huge = make_candidate(quality=0.0, views=10 ** 12)
        assert composite_score(huge) == 1.5

    def test_engagement_counts(self):
        engaged = make_candidate("engaged", views=1000, likes=100, quality=5.0)
        popular = make_candidate("popular", views=100000, likes=0, quality=5.0)
        ranked = rank_candidates([popular, engaged])
        assert [c.video_id for c in ranked] == ["engaged", "popular"]
        assert [c.composite_score for c in ranked] == [4.45, 3.75]

    def test_ties_prefer_more_views(self):
        few = make_candidate("few", views=100, likes=3, quality=5.0)
        many = make_candidate("many", views=10000, likes=0, quality=5.0)
        ranked = rank_candidates([few, many])
        assert ranked[0].composite_score == ranked[1].composite_score == 3.6
        assert [c.video_id for c in ranked] == ["many", "few"]


class TestFilterEducational:
    """Tests for CandidateRankingService.filter_educational."""

    def test_filters(self, test_settings):
        service = CandidateRankingService(FixedCatalog([]), StubGenerator({}), test_settings)
        candidates = [
            make_candidate("ok", "Python tutorial for beginners"),
            make_candidate("short", "Python tutorial", duration=120.0),
            make_candidate("long", "Python full course", duration=9000.0),
            make_candidate("unpopular", "Python tutorial", views=50),
            make_candidate("meme", "Funny coding meme tutorial"),
            make_candidate("react", "React tutorial for beginners"),
            make_candidate("game", "Game development with Python"),
            make_candidate("music", "Music tutorial"),
            make_candidate("plain", "My day at the beach"),
        ]

        kept = service.filter_educational(candidates)

        assert [c.video_id for c in kept] == ["ok", "react", "game"]


class TestSearchEducationalVideos:
    """Tests for CandidateRankingService.search_educational_videos."""

    def test_ranked_by_quality(self, test_settings):
        qualities = [9, 7, 8, 6, 5]
        candidates = [make_candidate(f"v{i}", f"Python tutorial part {i}") for i in range(5)]
        scores = {c.title: q for c, q in zip(candidates, qualities)}
        generator = StubGenerator({
            QUALITY_PROMPT: lambda params: {"score": scores[params["title"]], "reasoning": "clear"},
        })
        catalog = FixedCatalog(candidates)
        service = CandidateRankingService(catalog, generator, test_settings)

        ranked = asyncio.run(service.search_educational_videos("python", "beginner", max_videos=3))

        assert [c.video_id for c in ranked] == ["v0", "v2", "v1"]
        assert ranked[0].composite_score == 6.0
        assert ranked[0].quality_reasoning == "clear"
        assert catalog.queries == [("Python tutorial beginners course programming basics", 50)]

    def test_prompt_params(self, test_settings):
        generator = StubGenerator({QUALITY_PROMPT: {"score": 7}})
        service = CandidateRankingService(FixedCatalog([make_candidate()]), generator, test_settings)

        asyncio.run(service.search_educational_videos("python", "advanced"))

        params = generator.calls_for(QUALITY_PROMPT)[0]
        assert params["topic"] == "python"
        assert params["level"] == "Professional"
        assert params["duration"] == 600
        assert params["views"] == 10000

    def test_assessment_failure_is_neutral(self, test_settings):
        generator = StubGenerator({QUALITY_PROMPT: TextGenerationError("model offline")})
        service = CandidateRankingService(FixedCatalog([make_candidate()]), generator, test_settings)

        ranked = asyncio.run(service.search_educational_videos("python", "beginner"))

        assert ranked[0].quality_score == 5.0
        assert ranked[0].quality_reasoning == "AI analysis unavailable"

    def test_analysis_limit(self, test_settings):
        settings = test_settings.model_copy(update={"candidate_analysis_limit": 2})
        generator = StubGenerator({QUALITY_PROMPT: {"score": 7}})
        candidates = [make_candidate(f"v{i}") for i in range(4)]
        service = CandidateRankingService(FixedCatalog(candidates), generator, settings)

        ranked = asyncio.run(service.search_educational_videos("python", "beginner", max_videos=10))

        assert len(generator.calls) == 2
        assert len(ranked) == 2

    def test_invalid_arguments(self, test_settings):
        service = CandidateRankingService(FixedCatalog([]), StubGenerator({}), test_settings)
        with pytest.raises(ValidationError):
            asyncio.run(service.search_educational_videos("  ", "beginner"))
        with pytest.raises(ValidationError):
            asyncio.run(service.search_educational_videos("python", "beginner", max_videos=0))


class TestYouTubeCatalog:
    """Tests for the YouTube Data API catalog."""

    def test_requires_api_key(self, test_settings):
        catalog = YouTubeCatalog(test_settings.model_copy(update={"youtube_api_key": None}))
        with pytest.raises(CandidateRankingError):
            asyncio.run(catalog.search("python tutorial"))

    def test_search(self, test_settings):
        settings = test_settings.model_copy(update={"youtube_api_key": "key123"})
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, dict(request.url.params)))
            if request.url.path.endswith("/search"):
                return httpx.Response(200, json={"items": [
                    {"id": {"videoId": "abc"}},
                    {"id": {"videoId": "def"}},
                    {"id": {"kind": "youtube#channel"}},
                ]})
            return httpx.Response(200, json={"items": [
                {
                    "id": "abc",
                    "snippet": {"title": "Python course", "channelTitle": "Teach", "description": "d"},
                    "statistics": {"viewCount": "12000", "likeCount": "300"},
                    "contentDetails": {"duration": "PT1H2M30S"},
                },
                {
                    "id": "def",
                    "snippet": {"title": "Broken"},
                    "statistics": {},
                    "contentDetails": {"duration": "soon"},
                },
            ]})

        catalog = YouTubeCatalog(settings, api_client=ApiClient(settings, transport=httpx.MockTransport(handler)))

        results = asyncio.run(catalog.search("python tutorial", 10))

        assert len(results) == 1
        video = results[0]
        assert video.video_id == "abc"
        assert video.duration == 3750.0
        assert video.view_count == 12000
        assert video.like_count == 300
        assert video.url == "https://www.youtube.com/watch?v=abc"
        assert seen[0][1]["q"] == "python tutorial"
        assert seen[0][1]["maxResults"] == "10"
        assert seen[1][1]["id"] == "abc,def"

    def test_no_results_skips_details(self, test_settings):
        settings = test_settings.model_copy(update={"youtube_api_key": "key123"})
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(200, json={"items": []})

        catalog = YouTubeCatalog(settings, api_client=ApiClient(settings, transport=httpx.MockTransport(handler)))

        assert asyncio.run(catalog.search("nothing")) == []
        assert len(calls) == 1
