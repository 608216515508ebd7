"""
Lensmatch — Admin-editable matching configuration.

Two kinds of configuration live in the database:

* ``system_settings`` rows — ``max_results``, ``min_similarity_score`` and
  the feature toggles.  Missing rows fall back to the process defaults in
  ``Settings``.
* question ``base_weight`` values — the dimension split.  They are loaded
  into the process-wide ``WeightConfigStore`` and rewritten when an admin
  changes the split.  The ``weights_revision`` row gets a new token with
  every rewrite, so a process whose snapshot carries an older token reloads
  before it ranks.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import asdict, replace
from typing import Any, Mapping

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from lensmatch.config import get_settings
from lensmatch.domain import Dimension, MatchingConfig, QuestionWeightInfo
from lensmatch.exceptions import ConfigurationError
from lensmatch.models.matching import SystemSetting
from lensmatch.models.questionnaire import SurveyQuestion
from lensmatch.services.weight_config import (
    WeightConfig,
    WeightConfigStore,
    get_weight_store,
    plan_dimension_weights,
)

logger = structlog.get_logger("lensmatch.settings_service")

WEIGHTS_REVISION_KEY = "weights_revision"

SETTING_DESCRIPTIONS: dict[str, str] = {
    "max_results": "Maximum number of photographers returned per session",
    "min_similarity_score": "Minimum total score for a photographer to be listed",
    "enable_keyword_bonus": "Add the keyword proficiency bonus to total scores",
    "enable_region_filter": "Exclude photographers outside the requested regions",
    "enable_budget_filter": "Exclude photographers outside the requested budget",
    "cache_results": "Reuse stored results for sessions that were already ranked",
    "auto_refresh_embeddings": "Enqueue embedding jobs automatically when content changes",
    "keyword_bonus_cap": "Upper bound of the keyword bonus",
}

_BOOL_KEYS = {
    "enable_keyword_bonus",
    "enable_region_filter",
    "enable_budget_filter",
    "cache_results",
    "auto_refresh_embeddings",
}


def default_matching_config() -> MatchingConfig:
    settings = get_settings()
    return MatchingConfig(
        max_results=settings.MAX_RESULTS,
        min_similarity_score=settings.MIN_SIMILARITY_SCORE,
        enable_keyword_bonus=settings.ENABLE_KEYWORD_BONUS,
        enable_region_filter=settings.ENABLE_REGION_FILTER,
        enable_budget_filter=settings.ENABLE_BUDGET_FILTER,
        cache_results=settings.CACHE_RESULTS,
        auto_refresh_embeddings=settings.AUTO_REFRESH_EMBEDDINGS,
        keyword_bonus_cap=settings.KEYWORD_BONUS_CAP,
    )


def coerce_setting(key: str, value: Any) -> Any:
    """Validate and coerce one configuration value.

    Raises ``ConfigurationError`` for unknown keys and out-of-range values.
    """
    if key not in SETTING_DESCRIPTIONS:
        raise ConfigurationError(f"Unknown setting: {key!r}")

    if key in _BOOL_KEYS:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise ConfigurationError(f"{key} must be a boolean, got {value!r}")

    if key == "max_results":
        if isinstance(value, bool):
            raise ConfigurationError("max_results must be an integer")
        try:
            as_int = int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"max_results must be an integer, got {value!r}") from None
        if as_int < 1 or as_int != float(value):
            raise ConfigurationError(f"max_results must be a positive integer, got {value!r}")
        return as_int

    # min_similarity_score, keyword_bonus_cap
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from None
    if isinstance(value, bool) or not math.isfinite(as_float) or not 0.0 <= as_float <= 1.0:
        raise ConfigurationError(f"{key} must be between 0 and 1, got {value!r}")
    return as_float


def apply_overrides(base: MatchingConfig, overrides: Mapping[str, Any]) -> MatchingConfig:
    coerced = {key: coerce_setting(key, value) for key, value in overrides.items()}
    return replace(base, **coerced)


class MatchingSettingsService:
    """Loads and saves the matching configuration surface."""

    def __init__(self, weight_store: WeightConfigStore | None = None) -> None:
        self.weight_store = weight_store or get_weight_store()

    # ── system_settings ───────────────────────────────────────────────

    async def load_config(self, db_session: AsyncSession) -> MatchingConfig:
        result = await db_session.execute(
            select(SystemSetting).where(
                SystemSetting.setting_key.in_(list(SETTING_DESCRIPTIONS))
            )
        )
        stored = {row.setting_key: row.setting_value for row in result.scalars().all()}
        config = default_matching_config()
        try:
            return apply_overrides(config, stored)
        except ConfigurationError as exc:
            # A bad stored row must not take matching down; defaults apply.
            logger.error("stored_settings_invalid", error=str(exc))
            return config

    async def update_config(
        self, db_session: AsyncSession, updates: Mapping[str, Any]
    ) -> MatchingConfig:
        """Validate every value first, then upsert them together."""
        current = await self.load_config(db_session)
        try:
            updated = apply_overrides(current, updates)
        except ConfigurationError as exc:
            logger.warning("settings_update_rejected", reason=str(exc))
            raise

        values = asdict(updated)
        for key in updates:
            stmt = pg_insert(SystemSetting).values(
                setting_key=key,
                setting_value=values[key],
                setting_description=SETTING_DESCRIPTIONS[key],
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[SystemSetting.setting_key],
                set_={"setting_value": stmt.excluded.setting_value},
            )
            await db_session.execute(stmt)
        await db_session.flush()

        logger.info("matching_settings_updated", keys=sorted(updates))
        return updated

    # ── dimension weights ─────────────────────────────────────────────

    async def load_question_weights(self, db_session: AsyncSession) -> list[QuestionWeightInfo]:
        result = await db_session.execute(select(SurveyQuestion))
        return [
            QuestionWeightInfo(
                id=str(q.id),
                dimension=Dimension(q.weight_category),
                base_weight=q.base_weight,
                is_active=q.is_active,
                is_hard_filter=q.is_hard_filter,
            )
            for q in result.scalars().all()
        ]

    async def load_weights_revision(self, db_session: AsyncSession) -> str | None:
        result = await db_session.execute(
            select(SystemSetting.setting_value).where(
                SystemSetting.setting_key == WEIGHTS_REVISION_KEY
            )
        )
        value = result.scalar_one_or_none()
        return str(value) if value is not None else None

    async def bump_weights_revision(self, db_session: AsyncSession) -> str:
        """Record that the question weights changed; returns the new token."""
        revision = uuid.uuid4().hex
        stmt = pg_insert(SystemSetting).values(
            setting_key=WEIGHTS_REVISION_KEY,
            setting_value=revision,
            setting_description="Changes whenever question weights are rewritten",
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SystemSetting.setting_key],
            set_={"setting_value": stmt.excluded.setting_value},
        )
        await db_session.execute(stmt)
        return revision

    async def refresh_weights(self, db_session: AsyncSession) -> WeightConfig:
        """Rebuild the in-process weight snapshot from the question rows."""
        revision = await self.load_weights_revision(db_session)
        questions = await self.load_question_weights(db_session)
        return self.weight_store.replace(questions, revision=revision)

    async def current_weights(self, db_session: AsyncSession) -> WeightConfig:
        """The process snapshot, reloaded first when the stored revision moved on."""
        snapshot = self.weight_store.load()
        revision = await self.load_weights_revision(db_session)
        if snapshot.version > 0 and snapshot.revision == revision:
            return snapshot
        logger.info(
            "weight_config_stale",
            loaded_revision=snapshot.revision,
            stored_revision=revision,
        )
        questions = await self.load_question_weights(db_session)
        return self.weight_store.replace(questions, revision=revision)

    async def update_dimension_weights(
        self, db_session: AsyncSession, percents: Mapping[Dimension | str, float]
    ) -> WeightConfig:
        """Validate a new dimension split and redistribute it over questions.

        The new snapshot is installed only after the question rows and the
        revision token have been committed.  Rejected splits raise
        ``ConfigurationError`` and leave both untouched.
        """
        questions = await self.load_question_weights(db_session)
        updated, new_weights = plan_dimension_weights(percents, questions)

        rows = await db_session.execute(
            select(SurveyQuestion).where(
                SurveyQuestion.id.in_([uuid.UUID(qid) for qid in new_weights])
            )
        )
        for row in rows.scalars().all():
            row.base_weight = new_weights[str(row.id)]
        revision = await self.bump_weights_revision(db_session)
        await db_session.commit()

        snapshot = self.weight_store.replace(updated, revision=revision)
        logger.info(
            "dimension_weights_updated",
            weights=snapshot.as_percentages(),
            version=snapshot.version,
            revision=revision,
        )
        return snapshot
