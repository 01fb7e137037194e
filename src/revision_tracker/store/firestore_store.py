from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any

from google.api_core import exceptions as gexc
from google.api_core.exceptions import AlreadyExists
from google.cloud import firestore

from ..errors import ConflictError, NotFoundError, UnavailableError
from ..id_factory import generate_question_id, source_url_digest, source_url_key
from ..logging import logger
from ..models import (
    Difficulty,
    QuestionCandidate,
    QuestionFilter,
    QuestionRecord,
    QuestionStats,
)
from ..scheduler import filter_questions, summarize
from .base import QuestionStore
from .common import from_iso


def _coerce_firestore_snapshot(
    candidate: Any,
) -> firestore.DocumentSnapshot | None:
    """Normalize Firestore transaction.get results (snapshot or generator) into a snapshot."""

    if candidate is None:
        return None
    if hasattr(candidate, "exists"):
        return candidate  # type: ignore[return-value]
    if isinstance(candidate, Iterator):
        return next(candidate, None)
    if isinstance(candidate, Iterable) and not isinstance(candidate, (str, bytes, Mapping)):
        return next(iter(candidate), None)
    return None


def _as_datetime(value: Any) -> datetime | None:
    """Firestore は Timestamp を datetime で返すが、文字列で保存された旧データも許容する。"""

    if value is None or isinstance(value, datetime):
        return value
    return from_iso(str(value))


def _snapshot_to_record(snapshot: Any) -> QuestionRecord:
    data = snapshot.to_dict() or {}
    created_at = _as_datetime(data.get("created_at"))
    if created_at is None:
        raise UnavailableError(f"firestore document questions/{snapshot.id} has no created_at")
    return QuestionRecord(
        id=snapshot.id,
        title=str(data.get("title") or ""),
        source_url=str(data.get("source_url") or ""),
        difficulty=Difficulty(data.get("difficulty")),
        created_at=created_at,
        last_solved_at=_as_datetime(data.get("last_solved_at")),
        next_review_at=_as_datetime(data.get("next_review_at")),
        solve_count=int(data.get("solve_count") or 0),
    )


def _is_valid_document_id(question_id: str) -> bool:
    # Firestore: 空文字・"/" を含む ID・"." ".."・"__.*__" はドキュメント ID にできない
    if not question_id or "/" in question_id or question_id in (".", ".."):
        return False
    return not (question_id.startswith("__") and question_id.endswith("__"))


class FirestoreQuestionStore(QuestionStore):
    """Firestore 上で問題と URL 一意キーを管理するストア。

    - questions/{id}: 問題本体
    - question_urls/{sha256(url_key)}: URL の一意性を保証するガードドキュメント
    作成・削除・解答済み登録はいずれもトランザクション内で行う。
    """

    def __init__(self, client: firestore.Client, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._client = client
        self._questions = client.collection("questions")
        self._url_keys = client.collection("question_urls")

    def _question_ref(self, question_id: str) -> Any:
        """Document reference for `question_id`; ids Firestore cannot address are simply absent."""

        if not _is_valid_document_id(question_id):
            raise NotFoundError()
        return self._questions.document(question_id)

    @contextmanager
    def _transaction(self) -> Iterator[Any]:
        transaction = self._client.transaction()
        transaction._begin()
        try:
            yield transaction
        except BaseException:
            if transaction.in_progress:
                transaction._rollback()
            raise
        transaction._commit()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except gexc.GoogleAPIError as exc:
            logger.error(
                "question_store_unavailable",
                backend="firestore",
                operation=operation,
                error=str(exc),
                error_class=exc.__class__.__name__,
            )
            raise UnavailableError(f"firestore {operation} failed: {exc}") from exc

    def create(self, candidate: QuestionCandidate) -> QuestionRecord:
        now = self.now()
        schedule = self.creation_policy.initial_schedule(now)
        record = QuestionRecord(
            id=generate_question_id(),
            title=candidate.title,
            source_url=candidate.source_url,
            difficulty=candidate.difficulty,
            created_at=now,
            last_solved_at=schedule.last_solved_at,
            next_review_at=schedule.next_review_at,
            solve_count=schedule.solve_count,
        )
        url_key = source_url_key(candidate.source_url)
        url_ref = self._url_keys.document(source_url_digest(candidate.source_url))
        question_ref = self._questions.document(record.id)
        with self._guard("create"):
            try:
                with self._transaction() as transaction:
                    snapshot = _coerce_firestore_snapshot(transaction.get(url_ref))
                    if snapshot is not None and snapshot.exists:
                        raise ConflictError()
                    transaction.create(
                        url_ref,
                        {"question_id": record.id, "url_key": url_key, "created_at": now},
                    )
                    transaction.create(
                        question_ref,
                        {
                            "title": record.title,
                            "source_url": record.source_url,
                            "url_key": url_key,
                            "difficulty": record.difficulty.value,
                            "last_solved_at": record.last_solved_at,
                            "next_review_at": record.next_review_at,
                            "solve_count": record.solve_count,
                            "created_at": record.created_at,
                        },
                    )
            except AlreadyExists as exc:
                raise ConflictError() from exc
        logger.info("question_created", backend="firestore", question_id=record.id, source_url=record.source_url)
        return record

    def _snapshot(self) -> list[QuestionRecord]:
        return [_snapshot_to_record(doc) for doc in self._questions.stream()]

    def list(self, flt: QuestionFilter | None = None) -> list[QuestionRecord]:
        with self._guard("list"):
            records = self._snapshot()
        return filter_questions(records, flt)

    def get(self, question_id: str) -> QuestionRecord:
        with self._guard("get"):
            snapshot = self._question_ref(question_id).get()
        if not snapshot.exists:
            raise NotFoundError()
        return _snapshot_to_record(snapshot)

    def delete(self, question_id: str) -> None:
        question_ref = self._question_ref(question_id)
        with self._guard("delete"):
            with self._transaction() as transaction:
                snapshot = _coerce_firestore_snapshot(transaction.get(question_ref))
                if snapshot is None or not snapshot.exists:
                    raise NotFoundError()
                source_url = str((snapshot.to_dict() or {}).get("source_url") or "")
                transaction.delete(self._url_keys.document(source_url_digest(source_url)))
                transaction.delete(question_ref)
        logger.info("question_deleted", backend="firestore", question_id=question_id)

    def mark_solved(self, question_id: str, interval_weeks: int | None = None) -> QuestionRecord:
        self.interval_policy.validate(interval_weeks)
        question_ref = self._question_ref(question_id)
        with self._guard("mark_solved"):
            with self._transaction() as transaction:
                snapshot = _coerce_firestore_snapshot(transaction.get(question_ref))
                if snapshot is None or not snapshot.exists:
                    raise NotFoundError()
                current = _snapshot_to_record(snapshot)
                now = self.now()
                updated = replace(
                    current,
                    last_solved_at=now,
                    next_review_at=now + self.interval_policy.interval(current, interval_weeks),
                    solve_count=current.solve_count + 1,
                )
                transaction.update(
                    question_ref,
                    {
                        "last_solved_at": updated.last_solved_at,
                        "next_review_at": updated.next_review_at,
                        "solve_count": updated.solve_count,
                    },
                )
        logger.info(
            "question_marked_solved",
            backend="firestore",
            question_id=question_id,
            interval_policy=self.interval_policy.name,
            next_review_at=updated.next_review_at.isoformat() if updated.next_review_at else None,
            solve_count=updated.solve_count,
        )
        return updated

    def stats(self, now: datetime | None = None) -> QuestionStats:
        with self._guard("stats"):
            records = self._snapshot()
        return summarize(records, now or self.now())
