"""Pure scheduling rules: due-state, next review date and listing pipeline.

No I/O happens here. Stores call the configured policies inside their
transactions so that the whole read-modify-write stays atomic.

- Interval policy: 週数指定（既定）か、解答回数テーブルのどちらか一方を設定で選ぶ
- Creation policy: 登録直後に即時出題（既定）か、猶予期間後に出題
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from .config import Settings
from .errors import InvalidArgumentError
from .models import (
    Difficulty,
    QuestionFilter,
    QuestionOrder,
    QuestionRecord,
    QuestionStats,
)


_DIFFICULTY_RANKS: dict[Difficulty, int] = {
    Difficulty.easy: 0,
    Difficulty.medium: 1,
    Difficulty.hard: 2,
}

# solve count after the current solve -> days until the next review
SOLVE_COUNT_INTERVAL_DAYS: tuple[int, ...] = (1, 7, 30, 60)


def is_due(record: QuestionRecord, now: datetime) -> bool:
    """A record without a schedule is always due."""

    if record.next_review_at is None:
        return True
    return now >= record.next_review_at


def validate_interval_weeks(interval_weeks: object) -> int:
    """Return `interval_weeks` as a positive int or raise InvalidArgumentError."""

    if interval_weeks is None:
        raise InvalidArgumentError("intervalWeeks is required")
    if isinstance(interval_weeks, bool) or not isinstance(interval_weeks, int):
        raise InvalidArgumentError("intervalWeeks must be an integer")
    if interval_weeks <= 0:
        raise InvalidArgumentError("intervalWeeks must be a positive integer")
    return interval_weeks


def next_review_date(now: datetime, interval_weeks: int) -> datetime:
    """`now + interval_weeks * 7 days`, days being fixed 24h blocks."""

    weeks = validate_interval_weeks(interval_weeks)
    return now + timedelta(days=7 * weeks)


def difficulty_rank(difficulty: Difficulty) -> int:
    """Ordinal for display grouping only (Easy < Medium < Hard)."""

    return _DIFFICULTY_RANKS[Difficulty(difficulty)]


class IntervalPolicy(Protocol):
    name: str

    def validate(self, interval_weeks: int | None) -> None:
        """Reject unusable input before the store is touched."""

    def interval(self, record: QuestionRecord, interval_weeks: int | None) -> timedelta:
        """Duration added to "now" when `record` is marked solved."""


class WeeklyIntervalPolicy:
    """Caller-supplied number of weeks (the revision modal's 2/4/8/12 weeks)."""

    name = "weeks"

    def validate(self, interval_weeks: int | None) -> None:
        validate_interval_weeks(interval_weeks)

    def interval(self, record: QuestionRecord, interval_weeks: int | None) -> timedelta:
        return timedelta(days=7 * validate_interval_weeks(interval_weeks))


class SolveCountIntervalPolicy:
    """Fixed table indexed by how many times the question has been solved.

    1回目: 1日, 2回目: 7日, 3回目: 30日, 4回目以降: 60日。
    `interval_weeks` is ignored.
    """

    name = "solve_count"

    def __init__(self, table_days: Iterable[int] = SOLVE_COUNT_INTERVAL_DAYS) -> None:
        self._table = tuple(int(days) for days in table_days)
        if not self._table or any(days <= 0 for days in self._table):
            raise ValueError("solve count table must hold positive day counts")

    def validate(self, interval_weeks: int | None) -> None:
        return None

    def interval(self, record: QuestionRecord, interval_weeks: int | None) -> timedelta:
        solves = max(1, record.solve_count + 1)
        index = min(solves, len(self._table)) - 1
        return timedelta(days=self._table[index])


@dataclass(frozen=True)
class InitialSchedule:
    last_solved_at: datetime | None
    next_review_at: datetime | None
    solve_count: int


class CreationPolicy(Protocol):
    name: str

    def initial_schedule(self, now: datetime) -> InitialSchedule:
        """Scheduling fields for a record created at `now`."""


class DueImmediatelyPolicy:
    """New questions are unscheduled and therefore due right away."""

    name = "due_immediately"

    def initial_schedule(self, now: datetime) -> InitialSchedule:
        return InitialSchedule(last_solved_at=None, next_review_at=None, solve_count=0)


class GracePeriodPolicy:
    """Creation counts as a first solve; the review comes `days` later."""

    name = "grace_period"

    def __init__(self, days: int) -> None:
        if days <= 0:
            raise ValueError("grace period must be positive")
        self.days = days

    def initial_schedule(self, now: datetime) -> InitialSchedule:
        return InitialSchedule(
            last_solved_at=now,
            next_review_at=now + timedelta(days=self.days),
            solve_count=1,
        )


def interval_policy_from_settings(cfg: Settings) -> IntervalPolicy:
    if cfg.interval_policy == "solve_count":
        return SolveCountIntervalPolicy()
    return WeeklyIntervalPolicy()


def creation_policy_from_settings(cfg: Settings) -> CreationPolicy:
    if cfg.creation_policy == "grace_period":
        return GracePeriodPolicy(cfg.default_grace_days)
    return DueImmediatelyPolicy()


def matches(record: QuestionRecord, flt: QuestionFilter) -> bool:
    if flt.due_at is not None and not is_due(record, flt.due_at):
        return False
    if flt.solved is not None and (record.last_solved_at is not None) != flt.solved:
        return False
    if flt.title_contains:
        if flt.title_contains.casefold() not in record.title.casefold():
            return False
    return True


def sort_questions(records: Iterable[QuestionRecord], order: QuestionOrder) -> list[QuestionRecord]:
    """Deterministic ordering shared by every store backend."""

    # 安定ソートを重ねて「主キー→副キー」の順序を作る（後に並べたものが主キー）
    ordered = sorted(records, key=lambda r: r.id)
    if order is QuestionOrder.next_review_asc:
        ordered.sort(key=lambda r: r.created_at)
        ordered.sort(key=lambda r: (r.next_review_at is not None, r.next_review_at or r.created_at))
        return ordered
    ordered.sort(key=lambda r: r.created_at, reverse=True)
    if order is QuestionOrder.difficulty:
        ordered.sort(key=lambda r: difficulty_rank(r.difficulty))
    return ordered


def filter_questions(
    records: Iterable[QuestionRecord], flt: QuestionFilter | None = None
) -> list[QuestionRecord]:
    """Filter and order an immutable snapshot of records."""

    flt = flt or QuestionFilter()
    selected = [record for record in records if matches(record, flt)]
    return sort_questions(selected, flt.effective_order())


def summarize(records: Iterable[QuestionRecord], now: datetime) -> QuestionStats:
    total = due = completed = 0
    for record in records:
        total += 1
        if is_due(record, now):
            due += 1
        if record.last_solved_at is not None:
            completed += 1
    return QuestionStats(total=total, due=due, completed=completed)
