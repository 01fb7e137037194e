from fastapi import APIRouter, Depends, Query, Request, status

from ..config import Settings
from ..errors import InvalidArgumentError
from ..logging import logger
from ..models import QuestionFilter, QuestionOrder
from ..models.question import (
    MarkSolvedRequest,
    MessageResponse,
    QuestionCreateRequest,
    QuestionListResponse,
    QuestionOut,
    QuestionResponse,
    QuestionStatsResponse,
)
from ..store import QuestionStore
from ..validation import build_candidate

router = APIRouter(tags=["questions"])


def get_store(request: Request) -> QuestionStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.get(
    "/questions",
    response_model=QuestionListResponse,
    summary="登録済みの問題一覧",
)
def list_questions(
    q: str | None = Query(default=None, description="Case-insensitive title filter"),
    solved: bool | None = Query(default=None, description="true: solved at least once, false: never solved"),
    order: QuestionOrder | None = Query(default=None),
    store: QuestionStore = Depends(get_store),
) -> QuestionListResponse:
    """Return every question, newest first unless `order` says otherwise."""
    records = store.list(QuestionFilter(title_contains=q or None, solved=solved, order=order))
    now = store.now()
    return QuestionListResponse(questions=[QuestionOut.from_record(r, now) for r in records])


@router.get(
    "/questions/stats",
    response_model=QuestionStatsResponse,
    summary="件数の集計（全件/出題対象/解答済み）",
)
def question_stats(store: QuestionStore = Depends(get_store)) -> QuestionStatsResponse:
    return QuestionStatsResponse.from_stats(store.stats())


@router.get(
    "/due-questions",
    response_model=QuestionListResponse,
    summary="復習期限を迎えた問題一覧",
)
def list_due_questions(
    q: str | None = Query(default=None, description="Case-insensitive title filter"),
    store: QuestionStore = Depends(get_store),
) -> QuestionListResponse:
    """Return due questions, unscheduled first, then by next review date ascending.

    Due-ness is evaluated against the clock at request time.
    """
    now = store.now()
    records = store.list_due(now, title_contains=q or None)
    return QuestionListResponse(questions=[QuestionOut.from_record(r, now) for r in records])


@router.post(
    "/questions",
    response_model=QuestionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="問題を登録",
)
def create_question(
    req: QuestionCreateRequest,
    store: QuestionStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
) -> QuestionResponse:
    """Register a question; 409 when the URL is already tracked."""
    candidate = build_candidate(
        title=req.title,
        source_url=req.source_url,
        difficulty=req.difficulty,
        allowed_domains=cfg.allowed_source_domains,
    )
    record = store.create(candidate)
    return QuestionResponse(
        message="Question added successfully",
        question=QuestionOut.from_record(record, store.now()),
    )


@router.delete(
    "/questions",
    response_model=MessageResponse,
    summary="問題を削除",
)
def delete_question(
    id: str | None = Query(default=None, description="Question id"),
    store: QuestionStore = Depends(get_store),
) -> MessageResponse:
    question_id = (id or "").strip()
    if not question_id:
        raise InvalidArgumentError("Question id is required")
    store.delete(question_id)
    return MessageResponse(message="Question deleted successfully")


@router.patch(
    "/questions",
    response_model=QuestionResponse,
    summary="解答済みとして次回復習日を更新",
)
def mark_question_solved(
    req: MarkSolvedRequest,
    store: QuestionStore = Depends(get_store),
) -> QuestionResponse:
    """Mark a question solved and return the post-update record."""
    question_id = req.id.strip()
    if not question_id:
        raise InvalidArgumentError("Question id is required")
    record = store.mark_solved(question_id, req.interval_weeks)
    logger.info(
        "question_review_scheduled",
        question_id=record.id,
        interval_weeks=req.interval_weeks,
    )
    return QuestionResponse(
        message="Question marked as solved",
        question=QuestionOut.from_record(record, store.now()),
    )
