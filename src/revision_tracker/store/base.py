from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime

from ..models import QuestionCandidate, QuestionFilter, QuestionRecord, QuestionStats
from ..scheduler import (
    CreationPolicy,
    DueImmediatelyPolicy,
    IntervalPolicy,
    WeeklyIntervalPolicy,
)
from .common import utcnow


Clock = Callable[[], datetime]


class QuestionStore(ABC):
    """Durable, uniquely keyed collection of questions.

    Every mutation is atomic and committed before the method returns:
    - create: uniqueness check + insert in one step (ConflictError on duplicates)
    - mark_solved: read + schedule update in one step (NotFoundError if absent)
    - delete: NotFoundError when the id is not live, including repeated deletes
    """

    def __init__(
        self,
        *,
        interval_policy: IntervalPolicy | None = None,
        creation_policy: CreationPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.interval_policy = interval_policy or WeeklyIntervalPolicy()
        self.creation_policy = creation_policy or DueImmediatelyPolicy()
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock()

    @abstractmethod
    def create(self, candidate: QuestionCandidate) -> QuestionRecord: ...

    @abstractmethod
    def list(self, flt: QuestionFilter | None = None) -> list[QuestionRecord]: ...

    @abstractmethod
    def get(self, question_id: str) -> QuestionRecord: ...

    @abstractmethod
    def delete(self, question_id: str) -> None: ...

    @abstractmethod
    def mark_solved(self, question_id: str, interval_weeks: int | None = None) -> QuestionRecord: ...

    @abstractmethod
    def stats(self, now: datetime | None = None) -> QuestionStats: ...

    def list_due(self, now: datetime | None = None, title_contains: str | None = None) -> list[QuestionRecord]:
        """Due questions, closest review first."""

        return self.list(QuestionFilter(due_at=now or self.now(), title_contains=title_contains))

    def close(self) -> None:
        return None
