"""
Lensmatch — Dimension & question weight bookkeeping.

Each active questionnaire question carries a ``base_weight``; the sum of the
active weights inside a dimension is that dimension's share of the total
score.  The default split is:

  style_emotion 40 / communication_psychology 30 / purpose_story 20 / companion 10

Admins edit the split as four percentages.  A valid edit is redistributed
evenly across the currently active questions of each dimension:

  question_weight = (percent / 100) / active_question_count_in_dimension

A dimension with no active question cannot hold a share, so its effective
weight is 0 until a question is activated.  The sum of active weights may
drift from 1.0 when questions are toggled; drift is reported, never coerced.

``WeightConfigStore`` is the single process-wide source of truth.  Readers
take the current immutable snapshot without locking; writers build a full
replacement snapshot and swap it in under a lock, so concurrent scoring never
sees a half-updated weight set.  Each snapshot records the ``revision``
token it was built from; other processes compare it with the stored token
and reload when an admin edit has changed it.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Iterable, Mapping

import structlog

from lensmatch.domain import DIMENSIONS, Dimension, QuestionWeightInfo
from lensmatch.exceptions import ConfigurationError

logger = structlog.get_logger("lensmatch.weight_config")

_SUM_TOLERANCE = 1e-6
_DRIFT_TOLERANCE = 1e-3


@dataclass(frozen=True)
class WeightConfig:
    """Immutable weight snapshot used by one scoring pass."""

    dimension_weights: Mapping[Dimension, float]
    question_weights: Mapping[str, float]
    active_question_counts: Mapping[Dimension, int]
    version: int = 0
    revision: str | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def total(self) -> float:
        return sum(self.dimension_weights.values())

    @property
    def drift(self) -> float:
        """Absolute distance of the active-weight total from 1.0."""
        return abs(self.total - 1.0)

    def weight_for(self, dimension: Dimension) -> float:
        return self.dimension_weights.get(dimension, 0.0)

    def as_percentages(self) -> dict[str, float]:
        return {d.value: round(self.weight_for(d) * 100.0, 4) for d in DIMENSIONS}


def build_weight_config(
    questions: Iterable[QuestionWeightInfo],
    version: int = 0,
    revision: str | None = None,
) -> WeightConfig:
    """Derive a snapshot from the current question rows."""
    dimension_totals: dict[Dimension, float] = {d: 0.0 for d in DIMENSIONS}
    active_counts: dict[Dimension, int] = {d: 0 for d in DIMENSIONS}
    question_weights: dict[str, float] = {}

    for q in questions:
        if not q.counts_toward_score:
            continue
        dimension_totals[q.dimension] += q.base_weight
        active_counts[q.dimension] += 1
        question_weights[q.id] = q.base_weight

    warnings: list[str] = []
    for dimension in DIMENSIONS:
        if active_counts[dimension] == 0:
            warnings.append(f"dimension {dimension.value} has no active questions")

    total = sum(dimension_totals.values())
    if abs(total - 1.0) > _DRIFT_TOLERANCE:
        warnings.append(f"active question weights total {total:.4f}, expected 1.0")

    return WeightConfig(
        dimension_weights=MappingProxyType(dimension_totals),
        question_weights=MappingProxyType(question_weights),
        active_question_counts=MappingProxyType(active_counts),
        version=version,
        revision=revision,
        warnings=tuple(warnings),
    )


def validate_dimension_percents(percents: Mapping[Dimension | str, float]) -> dict[Dimension, float]:
    """Normalise keys to ``Dimension`` and check the four values total 100.

    Raises
    ------
    ConfigurationError
        If a dimension is missing or unknown, a value is not a finite
        non-negative number, or the values do not sum to 100.
    """
    parsed: dict[Dimension, float] = {}
    for key, value in percents.items():
        try:
            dimension = Dimension(key)
        except ValueError:
            raise ConfigurationError(f"Unknown dimension: {key!r}") from None
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Weight for {dimension.value} must be a number, got {value!r}"
            ) from None
        if not math.isfinite(value) or value < 0:
            raise ConfigurationError(
                f"Weight for {dimension.value} must be a non-negative number, got {value}"
            )
        parsed[dimension] = value

    missing = [d.value for d in DIMENSIONS if d not in parsed]
    if missing:
        raise ConfigurationError(f"Missing dimension weights: {', '.join(missing)}")

    total = sum(parsed.values())
    if abs(total - 100.0) > _SUM_TOLERANCE:
        raise ConfigurationError(f"Dimension weights must sum to 100, got {total:g}")
    return parsed


def redistribute_question_weights(
    percents: Mapping[Dimension, float],
    questions: Iterable[QuestionWeightInfo],
) -> dict[str, float]:
    """Split each dimension's share evenly over its active questions.

    Inactive and hard-filter questions keep their stored weight; they do not
    count toward any dimension.
    """
    questions = list(questions)
    active_counts: dict[Dimension, int] = {d: 0 for d in DIMENSIONS}
    for q in questions:
        if q.counts_toward_score:
            active_counts[q.dimension] += 1

    new_weights: dict[str, float] = {}
    for q in questions:
        if not q.counts_toward_score:
            new_weights[q.id] = q.base_weight
            continue
        share = percents[q.dimension] / 100.0
        new_weights[q.id] = share / active_counts[q.dimension]

    for dimension in DIMENSIONS:
        if active_counts[dimension] == 0 and percents[dimension] > 0:
            logger.warning(
                "dimension_share_unassignable",
                dimension=dimension.value,
                percent=percents[dimension],
            )
    return new_weights


def plan_dimension_weights(
    percents: Mapping[Dimension | str, float],
    questions: Iterable[QuestionWeightInfo],
) -> tuple[list[QuestionWeightInfo], dict[str, float]]:
    """Validate a new dimension split and redistribute it, without installing it.

    Returns the question rows carrying their new weights, and the per-question
    weights the caller must persist.
    """
    try:
        parsed = validate_dimension_percents(percents)
    except ConfigurationError as exc:
        logger.warning("weight_update_rejected", reason=str(exc))
        raise

    questions = list(questions)
    new_weights = redistribute_question_weights(parsed, questions)
    updated = [
        QuestionWeightInfo(
            id=q.id,
            dimension=q.dimension,
            base_weight=new_weights[q.id],
            is_active=q.is_active,
            is_hard_filter=q.is_hard_filter,
        )
        for q in questions
    ]
    return updated, new_weights


class WeightConfigStore:
    """Swap-on-write holder for the process-wide ``WeightConfig``."""

    def __init__(self, initial: WeightConfig | None = None) -> None:
        self._lock = threading.Lock()
        self._current: WeightConfig = initial or build_weight_config([])

    def load(self) -> WeightConfig:
        """Return the current snapshot (lock-free read)."""
        return self._current

    def replace(
        self, questions: Iterable[QuestionWeightInfo], revision: str | None = None
    ) -> WeightConfig:
        """Rebuild the snapshot from freshly loaded question rows."""
        questions = list(questions)
        with self._lock:
            snapshot = build_weight_config(
                questions, version=self._current.version + 1, revision=revision
            )
            self._current = snapshot
        for warning in snapshot.warnings:
            logger.warning("weight_config_warning", detail=warning, version=snapshot.version)
        logger.info(
            "weight_config_loaded",
            version=snapshot.version,
            revision=revision,
            weights=snapshot.as_percentages(),
        )
        return snapshot

    def set_dimension_weights(
        self,
        percents: Mapping[Dimension | str, float],
        questions: Iterable[QuestionWeightInfo],
        revision: str | None = None,
    ) -> tuple[WeightConfig, dict[str, float]]:
        """Validate, redistribute and install a new dimension split.

        On ``ConfigurationError`` the current snapshot is left untouched.
        """
        updated, new_weights = plan_dimension_weights(percents, questions)
        snapshot = self.replace(updated, revision=revision)
        logger.info(
            "dimension_weights_updated",
            weights=snapshot.as_percentages(),
            version=snapshot.version,
        )
        return snapshot, new_weights


@lru_cache(maxsize=1)
def get_weight_store() -> WeightConfigStore:
    """Return the process-wide weight store."""
    return WeightConfigStore()
