from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .common import Difficulty


@dataclass(frozen=True)
class QuestionCandidate:
    """Validated input for creating a question.

    Built by `validation.build_candidate`; the store trusts it as-is.
    """

    title: str
    source_url: str
    difficulty: Difficulty


@dataclass(frozen=True)
class QuestionRecord:
    """One tracked practice item with its scheduling metadata.

    - next_review_at=None: 未スケジュール（常に出題対象）
    - last_solved_at は next_review_at が設定されていれば必ず設定済み
    """

    id: str
    title: str
    source_url: str
    difficulty: Difficulty
    created_at: datetime
    last_solved_at: datetime | None = None
    next_review_at: datetime | None = None
    solve_count: int = 0

    @property
    def is_scheduled(self) -> bool:
        return self.next_review_at is not None


class QuestionOrder(str, Enum):
    created_desc = "created_desc"
    next_review_asc = "next_review_asc"
    difficulty = "difficulty"


@dataclass(frozen=True)
class QuestionFilter:
    """Selection applied to a listing.

    - due_at: only records due at this instant
    - title_contains: case-insensitive substring of the title
    - solved: True → solved at least once, False → never solved
    - order: defaults to next_review_asc for due listings, created_desc otherwise
    """

    due_at: datetime | None = None
    title_contains: str | None = None
    solved: bool | None = None
    order: QuestionOrder | None = None

    def effective_order(self) -> QuestionOrder:
        if self.order is not None:
            return self.order
        if self.due_at is not None:
            return QuestionOrder.next_review_asc
        return QuestionOrder.created_desc


@dataclass(frozen=True)
class QuestionStats:
    total: int
    due: int
    completed: int
