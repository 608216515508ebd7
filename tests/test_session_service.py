"""Unit tests for SessionService — filter extraction and session vectors."""
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from lensmatch.domain import DIMENSIONS, Dimension, JobType, QuestionType
from lensmatch.exceptions import NotFoundError
from lensmatch.models.matching import MatchingSession
from lensmatch.models.questionnaire import SurveyChoice, SurveyQuestion
from lensmatch.services.session_service import (
    QuestionOptions,
    SessionService,
    derive_session_vectors,
    extract_filters,
    parse_budget,
    question_options_from_row,
    snapshot_from_row,
)


def _question(key, dimension, weight, qtype=QuestionType.SINGLE_CHOICE, options=None, **kwargs):
    return QuestionOptions(
        key=key,
        dimension=dimension,
        question_type=qtype,
        base_weight=weight,
        option_vectors=options or {},
        **kwargs,
    )


class TestParseBudget:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("100000-300000", (100000, 300000)),
            ("-300000", (None, 300000)),
            ("100000-", (100000, None)),
            ("100000", (100000, None)),
            ("150,000-300,000", (150000, 300000)),
            ("300000-100000", (100000, 300000)),
            (250000, (250000, None)),
            ("abc", (None, None)),
            ("", (None, None)),
            (None, (None, None)),
        ],
    )
    def test_parse(self, raw, expected):
        assert parse_budget(raw) == expected


class TestExtractFilters:

    def test_all_filters(self):
        filters = extract_filters(
            {"region": ["seoul", " busan "], "budget": "-300000", "keywords": "film"}
        )
        assert filters.regions == ["seoul", "busan"]
        assert filters.budget_min is None
        assert filters.budget_max == 300000
        assert filters.keywords == ["film"]

    def test_missing_answers(self):
        filters = extract_filters({"mood_image": "warm_film"})
        assert filters.regions == []
        assert filters.keywords == []
        assert filters.budget_min is None and filters.budget_max is None


class TestDeriveSessionVectors:

    def test_weighted_mean_within_dimension(self):
        questions = [
            _question("q1", Dimension.STYLE_EMOTION, 0.3, options={"a": [1.0, 0.0]}),
            _question("q2", Dimension.STYLE_EMOTION, 0.1, options={"b": [0.0, 1.0]}),
        ]
        vectors = derive_session_vectors(questions, {"q1": "a", "q2": "b"})
        assert vectors[Dimension.STYLE_EMOTION] == pytest.approx([0.75, 0.25])

    def test_multiple_choice_averages_picks(self):
        questions = [
            _question(
                "companion",
                Dimension.COMPANION,
                0.1,
                qtype=QuestionType.MULTIPLE_CHOICE,
                options={"partner": [1.0, 0.0], "pet": [0.0, 1.0], "family": [1.0, 1.0]},
            )
        ]
        vectors = derive_session_vectors(questions, {"companion": ["partner", "pet"]})
        assert vectors[Dimension.COMPANION] == pytest.approx([0.5, 0.5])

    def test_unanswered_dimension_has_no_vector(self):
        questions = [_question("q1", Dimension.STYLE_EMOTION, 0.4, options={"a": [1.0]})]
        vectors = derive_session_vectors(questions, {})
        assert vectors == {}

    def test_skips_inactive_hard_filter_and_unweighted(self):
        options = {"a": [1.0, 0.0]}
        questions = [
            _question("off", Dimension.STYLE_EMOTION, 0.2, options=options, is_active=False),
            _question("region", Dimension.STYLE_EMOTION, 0.2, options=options, is_hard_filter=True),
            _question("zero", Dimension.STYLE_EMOTION, 0.0, options=options),
        ]
        assert derive_session_vectors(questions, {"off": "a", "region": "a", "zero": "a"}) == {}

    def test_unknown_option_ignored(self):
        questions = [_question("q1", Dimension.PURPOSE_STORY, 0.2, options={"a": [1.0]})]
        assert derive_session_vectors(questions, {"q1": "zzz"}) == {}

    def test_textarea_uses_text_vector(self):
        questions = [
            _question("story", Dimension.PURPOSE_STORY, 0.1, qtype=QuestionType.TEXTAREA)
        ]
        vectors = derive_session_vectors(
            questions, {"story": "our tenth anniversary"}, text_vectors={"story": [0.2, 0.4]}
        )
        assert vectors[Dimension.PURPOSE_STORY] == pytest.approx([0.2, 0.4])

    def test_dimension_mismatch_skipped(self):
        questions = [
            _question("q1", Dimension.STYLE_EMOTION, 0.2, options={"a": [1.0, 0.0]}),
            _question("q2", Dimension.STYLE_EMOTION, 0.2, options={"b": [1.0, 0.0, 0.0]}),
        ]
        vectors = derive_session_vectors(questions, {"q1": "a", "q2": "b"})
        assert vectors[Dimension.STYLE_EMOTION] == pytest.approx([1.0, 0.0])


class TestQuestionOptionsFromRow:

    def test_only_active_embedded_options(self):
        question = SurveyQuestion(
            id=uuid.uuid4(),
            question_key="color_tone",
            question_order=1,
            question_title="Colours?",
            question_type="single_choice",
            weight_category="style_emotion",
            base_weight=0.2,
            is_hard_filter=False,
            is_active=True,
        )
        question.choices = [
            SurveyChoice(choice_key="muted", choice_label="Muted", is_active=True, embedding=[0.1]),
            SurveyChoice(choice_key="vivid", choice_label="Vivid", is_active=False, embedding=[0.9]),
            SurveyChoice(choice_key="natural", choice_label="Natural", is_active=True, embedding=None),
        ]
        options = question_options_from_row(question)
        assert options.dimension == Dimension.STYLE_EMOTION
        assert options.option_vectors == {"muted": [0.1]}


@pytest.fixture
def mock_db():
    db = MagicMock()
    db.execute = AsyncMock()
    db.flush = AsyncMock()
    db.get = AsyncMock()
    return db


def _rows(rows):
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    return result


class TestSessionService:

    def _questions(self):
        mood = SurveyQuestion(
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
        mood.choices = [
            SurveyChoice(choice_key="muted", choice_label="Muted", is_active=True, embedding=[1.0, 0.0, 0.0]),
        ]
        story = SurveyQuestion(
            id=uuid.uuid4(),
            question_key="story",
            question_order=2,
            question_title="Your story",
            question_type="textarea",
            weight_category="purpose_story",
            base_weight=0.2,
            is_hard_filter=False,
            is_active=True,
        )
        return [mood, story]

    @pytest.mark.asyncio
    async def test_create_session(self, mock_db, job_queue, fake_embedder):
        mock_db.execute.return_value = _rows(self._questions())
        service = SessionService(queue=job_queue)

        session = await service.create_session(
            mock_db,
            {"color_tone": "muted", "story": "abcd", "region": "seoul", "budget": "-200000"},
            subjective_text="Something calm",
        )

        mock_db.add.assert_called_once_with(session)
        mock_db.flush.assert_awaited_once()
        # Only the choice answer counts until the worker embeds the free text.
        assert session.dimension_vectors == {"style_emotion": [1.0, 0.0, 0.0]}
        assert session.vectors_derived_at is not None
        assert session.filters["regions"] == ["seoul"]
        assert session.filters["budget_max"] == 200000
        assert session.subjective_text == "Something calm"
        assert session.session_token
        assert fake_embedder.calls == []

    @pytest.mark.asyncio
    async def test_free_text_answer_queued_not_embedded(self, mock_db, job_queue):
        mock_db.execute.return_value = _rows(self._questions())
        service = SessionService(queue=job_queue)

        session = await service.create_session(mock_db, {"color_tone": "muted", "story": "abcd"})

        assert await job_queue.pending_count(JobType.SESSION_ANSWERS, [str(session.id)]) == 1

    @pytest.mark.asyncio
    async def test_no_free_text_no_job(self, mock_db, job_queue):
        mock_db.execute.return_value = _rows(self._questions())
        service = SessionService(queue=job_queue)

        await service.create_session(mock_db, {"color_tone": "muted", "story": "   "})

        assert await job_queue.pending_count(JobType.SESSION_ANSWERS) == 0

    @pytest.mark.asyncio
    async def test_get_session_not_found(self, mock_db):
        mock_db.get.return_value = None
        with pytest.raises(NotFoundError):
            await SessionService().get_session(mock_db, str(uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_get_session_bad_id(self, mock_db):
        with pytest.raises(NotFoundError):
            await SessionService().get_session(mock_db, "not-a-uuid")

    def test_snapshot_from_row(self):
        row = MatchingSession(
            id=uuid.uuid4(),
            session_token="t",
            responses={},
            dimension_vectors={"companion": [0.5, 0.5], "style_emotion": None},
            filters={"regions": ["jeju"], "budget_min": 10, "budget_max": None, "keywords": []},
        )
        snapshot = snapshot_from_row(row)
        assert snapshot.vectors == {Dimension.COMPANION: [0.5, 0.5]}
        assert snapshot.filters.regions == ["jeju"]
        assert snapshot.filters.budget_min == 10


class TestRefreshVectors:
    """Stored session vectors are re-derived from responses when they fall behind."""

    def _question(self, embedding):
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
            SurveyChoice(choice_key="warm", choice_label="Warm", is_active=True, embedding=embedding),
        ]
        return question

    def _story_question(self):
        return SurveyQuestion(
            id=uuid.uuid4(),
            question_key="story",
            question_order=2,
            question_title="Your story",
            question_type="textarea",
            weight_category="purpose_story",
            base_weight=0.2,
            is_hard_filter=False,
            is_active=True,
        )

    def _session(self, **overrides):
        fields = dict(
            id=uuid.uuid4(),
            session_token="t",
            responses={"color_tone": "warm", "story": "a quiet beach"},
            dimension_vectors={d.value: [0.0, 1.0] for d in DIMENSIONS},
            vectors_derived_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        fields.update(overrides)
        return MatchingSession(**fields)

    @pytest.mark.asyncio
    async def test_complete_session_left_alone(self, mock_db):
        session = self._session()

        assert await SessionService().refresh_vectors(mock_db, session) is False

        mock_db.execute.assert_not_awaited()
        assert session.dimension_vectors["style_emotion"] == [0.0, 1.0]

    @pytest.mark.asyncio
    async def test_force_uses_current_option_embeddings(self, mock_db):
        mock_db.execute.return_value = _rows([self._question([1.0, 0.0])])
        session = self._session()

        assert await SessionService().refresh_vectors(mock_db, session, force=True) is True

        assert session.dimension_vectors == {"style_emotion": [1.0, 0.0]}
        assert session.vectors_derived_at > datetime(2026, 1, 1, tzinfo=timezone.utc)
        mock_db.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_dimension_triggers_rederive(self, mock_db):
        mock_db.execute.return_value = _rows([self._question([1.0, 0.0])])
        session = self._session(dimension_vectors={"style_emotion": [0.0, 1.0]})

        assert await SessionService().refresh_vectors(mock_db, session) is True

        assert session.dimension_vectors["style_emotion"] == [1.0, 0.0]

    @pytest.mark.asyncio
    async def test_text_embedded_after_derivation_is_folded_in(self, mock_db):
        mock_db.execute.return_value = _rows([self._question([1.0, 0.0]), self._story_question()])
        session = self._session(
            dimension_vectors={"style_emotion": [1.0, 0.0]},
            text_vectors={"story": [0.3, 0.4]},
            text_embedded_at=datetime(2026, 1, 2, tzinfo=timezone.utc),
        )

        assert await SessionService().refresh_vectors(mock_db, session) is True

        assert session.dimension_vectors["style_emotion"] == [1.0, 0.0]
        assert session.dimension_vectors["purpose_story"] == pytest.approx([0.3, 0.4])
