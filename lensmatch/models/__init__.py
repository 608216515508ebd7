"""
Lensmatch — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from lensmatch.models.questionnaire import SurveyQuestion, SurveyChoice, SurveyImage
from lensmatch.models.photographer import Photographer, PhotographerProfile, PhotographerKeyword
from lensmatch.models.embedding import EmbeddingJobRow
from lensmatch.models.matching import MatchingSession, MatchingResult, SystemSetting

__all__ = [
    "SurveyQuestion",
    "SurveyChoice",
    "SurveyImage",
    "Photographer",
    "PhotographerProfile",
    "PhotographerKeyword",
    "EmbeddingJobRow",
    "MatchingSession",
    "MatchingResult",
    "SystemSetting",
]
