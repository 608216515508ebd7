"""Unit tests for MatchingService — ranking orchestration, caching, interactions."""
import json
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from lensmatch.cache import ResultCache
from lensmatch.domain import DIMENSIONS, Dimension, MatchingConfig, QuestionWeightInfo
from lensmatch.exceptions import InvalidContentError, NotFoundError
from lensmatch.models.matching import MatchingResult, MatchingSession
from lensmatch.models.photographer import Photographer, PhotographerKeyword, PhotographerProfile
from lensmatch.models.questionnaire import SurveyChoice, SurveyQuestion
from lensmatch.services.matching_service import MatchingService, candidate_from_rows
from lensmatch.services.session_service import SessionService
from lensmatch.services.weight_config import WeightConfigStore


class FakeRedis:
    """Just enough of the redis.asyncio client for ResultCache."""

    def __init__(self):
        self.data = {}
        self.expiry = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        self.data.pop(key, None)


class BrokenRedis:
    async def get(self, key):
        raise RedisConnectionError("down")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("down")

    async def delete(self, key):
        raise RedisConnectionError("down")


def _photographer_rows(similar=True):
    pid = uuid.uuid4()
    photographer = Photographer(id=pid, name="Lee", email=f"{pid}@example.com", approval_status="approved")
    photographer.keywords = [PhotographerKeyword(photographer_id=pid, keyword="film", proficiency_level=4)]
    vector = [1.0, 0.0, 0.0] if similar else [-1.0, 0.0, 0.0]
    profile = PhotographerProfile(
        photographer_id=pid,
        service_regions=["seoul"],
        price_min=100000,
        price_max=300000,
        profile_completed=True,
        **{f"{d.value}_embedding": vector for d in DIMENSIONS},
    )
    return photographer, profile


def _session_row(completed=False):
    return MatchingSession(
        id=uuid.uuid4(),
        session_token="tok",
        responses={},
        dimension_vectors={d.value: [1.0, 0.0, 0.0] for d in DIMENSIONS},
        filters={"regions": [], "budget_min": None, "budget_max": None, "keywords": []},
        completed_at=datetime(2026, 1, 1, tzinfo=timezone.utc) if completed else None,
    )


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def weight_store(default_questions):
    store = WeightConfigStore()
    store.replace(default_questions)
    return store


@pytest.fixture
def settings_service(weight_store):
    service = MagicMock()
    service.weight_store = weight_store
    service.load_config = AsyncMock(return_value=MatchingConfig(enable_keyword_bonus=False))
    service.current_weights = AsyncMock(side_effect=lambda db: weight_store.load())
    return service


@pytest.fixture
def session_service():
    service = MagicMock()
    service.get_session = AsyncMock()
    service.refresh_vectors = AsyncMock(return_value=False)
    return service


@pytest.fixture
def matching_service(session_service, settings_service, redis_client):
    return MatchingService(
        session_service=session_service,
        settings_service=settings_service,
        result_cache=ResultCache(client=redis_client, ttl_seconds=60),
    )


@pytest.fixture
def mock_db():
    db = MagicMock()
    db.execute = AsyncMock()
    db.flush = AsyncMock()
    return db


def _candidates_result(pairs):
    result = MagicMock()
    result.all.return_value = pairs
    return result


def _question_rows(rows):
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    return result


class TestCandidateFromRows:

    def test_maps_profile_and_keywords(self):
        photographer, profile = _photographer_rows()
        candidate = candidate_from_rows(photographer, profile)
        assert candidate.photographer_id == str(photographer.id)
        assert candidate.service_regions == frozenset({"seoul"})
        assert candidate.keywords == {"film": 4}
        assert set(candidate.vectors) == set(DIMENSIONS)

    def test_missing_embedding_omitted(self):
        photographer, profile = _photographer_rows()
        profile.companion_embedding = None
        candidate = candidate_from_rows(photographer, profile)
        assert len(candidate.vectors) == 3


class TestCalculate:

    @pytest.mark.asyncio
    async def test_ranks_persists_and_caches(self, matching_service, session_service, mock_db, redis_client):
        session = _session_row()
        session_service.get_session.return_value = session
        good = _photographer_rows(similar=True)
        bad = _photographer_rows(similar=False)
        mock_db.execute.side_effect = [_candidates_result([good, bad]), MagicMock()]

        result = await matching_service.calculate(mock_db, str(session.id))

        assert result["cached"] is False
        assert [r["photographer_id"] for r in result["results"]] == [str(good[0].id)]
        assert result["results"][0]["total"] == pytest.approx(1.0)
        added = [c.args[0] for c in mock_db.add.call_args_list]
        assert len(added) == 1 and isinstance(added[0], MatchingResult)
        assert added[0].rank_position == 1
        assert session.completed_at is not None
        key = ResultCache.key(str(session.id))
        assert json.loads(redis_client.data[key]) == result["results"]
        assert redis_client.expiry[key] == 60

    @pytest.mark.asyncio
    async def test_completed_session_reuses_cache(self, matching_service, session_service, mock_db, redis_client):
        session = _session_row(completed=True)
        session_service.get_session.return_value = session
        stored = [{"photographer_id": "p1", "rank_position": 1, "total": 0.9}]
        redis_client.data[ResultCache.key(str(session.id))] = json.dumps(stored)

        result = await matching_service.calculate(mock_db, str(session.id))

        assert result == {"session_id": str(session.id), "results": stored, "cached": True}
        mock_db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_force_reranks(self, matching_service, session_service, mock_db, redis_client):
        session = _session_row(completed=True)
        session_service.get_session.return_value = session
        redis_client.data[ResultCache.key(str(session.id))] = json.dumps([])
        mock_db.execute.side_effect = [_candidates_result([_photographer_rows()]), MagicMock()]

        result = await matching_service.calculate(mock_db, str(session.id), force=True)

        assert result["cached"] is False
        assert len(result["results"]) == 1

    @pytest.mark.asyncio
    async def test_cache_disabled_invalidates(self, matching_service, session_service, settings_service, mock_db, redis_client):
        settings_service.load_config.return_value = MatchingConfig(cache_results=False)
        session = _session_row(completed=True)
        session_service.get_session.return_value = session
        key = ResultCache.key(str(session.id))
        redis_client.data[key] = json.dumps([])
        mock_db.execute.side_effect = [_candidates_result([]), MagicMock()]

        result = await matching_service.calculate(mock_db, str(session.id))

        assert result["cached"] is False
        assert key not in redis_client.data

    @pytest.mark.asyncio
    async def test_weights_checked_against_stored_revision(
        self, matching_service, session_service, settings_service, mock_db
    ):
        """The snapshot current_weights returns is the one the ranking uses."""
        heavy_companion = WeightConfigStore().replace(
            [
                QuestionWeightInfo("q-style", Dimension.STYLE_EMOTION, 0.1),
                QuestionWeightInfo("q-comm", Dimension.COMMUNICATION_PSYCHOLOGY, 0.1),
                QuestionWeightInfo("q-story", Dimension.PURPOSE_STORY, 0.1),
                QuestionWeightInfo("q-companion", Dimension.COMPANION, 0.7),
            ],
            revision="rev-2",
        )
        settings_service.current_weights.side_effect = None
        settings_service.current_weights.return_value = heavy_companion
        settings_service.load_config.return_value = MatchingConfig(
            min_similarity_score=0.0, enable_keyword_bonus=False
        )
        session = _session_row()
        session.dimension_vectors = {"companion": [1.0, 0.0, 0.0]}
        session_service.get_session.return_value = session
        mock_db.execute.side_effect = [_candidates_result([_photographer_rows()]), MagicMock()]

        result = await matching_service.calculate(mock_db, str(session.id))

        settings_service.current_weights.assert_awaited_once_with(mock_db)
        assert result["results"][0]["total"] == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_force_rederives_session_vectors(
        self, matching_service, session_service, mock_db, redis_client
    ):
        session = _session_row(completed=True)
        session_service.get_session.return_value = session
        mock_db.execute.side_effect = [_candidates_result([]), MagicMock()]

        await matching_service.calculate(mock_db, str(session.id), force=True)

        session_service.refresh_vectors.assert_awaited_once_with(mock_db, session, force=True)

    @pytest.mark.asyncio
    async def test_stale_session_vectors_use_current_option_embeddings(
        self, settings_service, mock_db, job_queue
    ):
        """A session stored before its choice was re-embedded ranks on the new embedding."""
        settings_service.load_config.return_value = MatchingConfig(
            min_similarity_score=0.0, enable_keyword_bonus=False
        )
        service = MatchingService(
            session_service=SessionService(queue=job_queue),
            settings_service=settings_service,
            result_cache=ResultCache(client=FakeRedis(), ttl_seconds=60),
        )
        question = SurveyQuestion(
            id=uuid.uuid4(),
            question_key="color_tone",
            question_order=1,
            question_title="Colours?",
            question_type="single_choice",
            weight_category="style_emotion",
            base_weight=0.4,
            is_hard_filter=False,
            is_active=True,
        )
        question.choices = [
            SurveyChoice(choice_key="warm", choice_label="Warm", is_active=True, embedding=[1.0, 0.0, 0.0]),
        ]
        question.images = []
        session = _session_row()
        session.responses = {"color_tone": "warm"}
        # Derived before the choice was re-embedded; other dimensions never had a vector.
        session.dimension_vectors = {"style_emotion": [-1.0, 0.0, 0.0]}
        service.session_service.get_session = AsyncMock(return_value=session)
        photographer = _photographer_rows(similar=True)
        mock_db.execute.side_effect = [
            _question_rows([question]),
            _candidates_result([photographer]),
            MagicMock(),
        ]

        result = await service.calculate(mock_db, str(session.id))

        assert session.dimension_vectors == {"style_emotion": [1.0, 0.0, 0.0]}
        assert session.vectors_derived_at is not None
        assert result["results"][0]["style_emotion"] == pytest.approx(0.4)
        assert result["results"][0]["total"] == pytest.approx(0.4)

    @pytest.mark.asyncio
    async def test_redis_outage_falls_back_to_rows(self, session_service, settings_service, mock_db):
        service = MatchingService(
            session_service=session_service,
            settings_service=settings_service,
            result_cache=ResultCache(client=BrokenRedis(), ttl_seconds=60),
        )
        session = _session_row(completed=True)
        session_service.get_session.return_value = session
        row = MatchingResult(
            session_id=session.id,
            photographer_id=uuid.uuid4(),
            rank_position=1,
            style_emotion_score=0.4,
            communication_psychology_score=0.3,
            purpose_story_score=0.2,
            companion_score=0.1,
            keyword_bonus=0.0,
            total_score=1.0,
            incompletely_scored=False,
        )
        rows = MagicMock()
        rows.scalars.return_value.all.return_value = [row]
        mock_db.execute.return_value = rows

        result = await service.calculate(mock_db, str(session.id))

        assert result["cached"] is True
        assert result["results"][0]["total"] == 1.0


class TestResultsAndInteractions:

    @pytest.mark.asyncio
    async def test_unranked_session_has_no_results(self, matching_service, session_service, mock_db):
        session_service.get_session.return_value = _session_row(completed=False)
        with pytest.raises(NotFoundError):
            await matching_service.get_results(mock_db, str(uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_first_interaction_wins(self, matching_service, mock_db):
        first = datetime(2026, 1, 1, tzinfo=timezone.utc)
        row = MatchingResult(session_id=uuid.uuid4(), photographer_id=uuid.uuid4(), viewed_at=first)
        result = MagicMock()
        result.scalar_one_or_none.return_value = row
        mock_db.execute.return_value = result

        out = await matching_service.record_interaction(
            mock_db, str(row.session_id), str(row.photographer_id), "viewed"
        )
        assert out["viewed_at"] == first

        await matching_service.record_interaction(
            mock_db, str(row.session_id), str(row.photographer_id), "clicked"
        )
        assert row.clicked_at is not None
        mock_db.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_interaction(self, matching_service, mock_db):
        with pytest.raises(InvalidContentError):
            await matching_service.record_interaction(
                mock_db, str(uuid.uuid4()), str(uuid.uuid4()), "liked"
            )

    @pytest.mark.asyncio
    async def test_missing_result_row(self, matching_service, mock_db):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_db.execute.return_value = result
        with pytest.raises(NotFoundError):
            await matching_service.record_interaction(
                mock_db, str(uuid.uuid4()), str(uuid.uuid4()), "contacted"
            )
