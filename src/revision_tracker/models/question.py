from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt

from ..scheduler import is_due
from .common import Difficulty
from .record import QuestionRecord, QuestionStats


class QuestionCreateRequest(BaseModel):
    """問題登録のリクエスト。

    - title: 表示用タイトル（旧フィールド名 `question` も受け付ける）
    - sourceURL: 問題ページのURL（旧フィールド名 `url` も受け付ける）
    - difficulty: Easy | Medium | Hard（大文字小文字を区別）
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(
        min_length=1,
        validation_alias=AliasChoices("title", "question"),
    )
    source_url: str = Field(
        min_length=1,
        validation_alias=AliasChoices("sourceURL", "source_url", "url"),
    )
    difficulty: Difficulty


class MarkSolvedRequest(BaseModel):
    """解答済み登録のリクエスト。

    intervalWeeks は週数指定ポリシーでは必須、解答回数ポリシーでは無視される。
    真偽値・文字列・小数は整数へ変換せず 400 とする。
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    interval_weeks: StrictInt | None = Field(
        default=None,
        validation_alias=AliasChoices("intervalWeeks", "interval_weeks"),
    )


class QuestionOut(BaseModel):
    """A question as returned to clients (camelCase keys)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    source_url: str = Field(serialization_alias="sourceURL")
    difficulty: Difficulty
    last_solved_at: datetime | None = Field(default=None, serialization_alias="lastSolvedAt")
    next_review_at: datetime | None = Field(default=None, serialization_alias="nextReviewAt")
    created_at: datetime = Field(serialization_alias="createdAt")
    solve_count: int = Field(default=0, serialization_alias="solveCount")
    is_due: bool = Field(serialization_alias="isDue")

    @classmethod
    def from_record(cls, record: QuestionRecord, now: datetime) -> "QuestionOut":
        return cls(
            id=record.id,
            title=record.title,
            source_url=record.source_url,
            difficulty=record.difficulty,
            last_solved_at=record.last_solved_at,
            next_review_at=record.next_review_at,
            created_at=record.created_at,
            solve_count=record.solve_count,
            is_due=is_due(record, now),
        )


class QuestionListResponse(BaseModel):
    questions: list[QuestionOut]


class QuestionResponse(BaseModel):
    message: str
    question: QuestionOut


class MessageResponse(BaseModel):
    message: str


class QuestionStatsResponse(BaseModel):
    """ヘッダー表示用の件数（全件/出題対象/解答済み）。"""

    total: int
    due: int
    completed: int

    @classmethod
    def from_stats(cls, stats: QuestionStats) -> "QuestionStatsResponse":
        return cls(total=stats.total, due=stats.due, completed=stats.completed)
