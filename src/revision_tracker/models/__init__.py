from .common import Difficulty
from .record import (
    QuestionCandidate,
    QuestionFilter,
    QuestionOrder,
    QuestionRecord,
    QuestionStats,
)

__all__ = [
    "Difficulty",
    "QuestionCandidate",
    "QuestionFilter",
    "QuestionOrder",
    "QuestionRecord",
    "QuestionStats",
]
