from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import ConflictError, NotFoundError, UnavailableError
from ..id_factory import generate_question_id, source_url_key
from ..logging import logger
from ..models import (
    Difficulty,
    QuestionCandidate,
    QuestionFilter,
    QuestionOrder,
    QuestionRecord,
    QuestionStats,
)
from .base import QuestionStore
from .common import from_iso, to_iso


_COLUMNS = "id, title, source_url, difficulty, last_solved_at, next_review_at, solve_count, created_at"

_ORDER_BY: dict[QuestionOrder, str] = {
    QuestionOrder.created_desc: "created_at DESC, id ASC",
    # 未スケジュール（NULL）を先頭に、その後は次回復習日の昇順
    QuestionOrder.next_review_asc: (
        "(next_review_at IS NOT NULL) ASC, COALESCE(next_review_at, created_at) ASC, "
        "created_at ASC, id ASC"
    ),
    QuestionOrder.difficulty: (
        "CASE difficulty WHEN 'Easy' THEN 0 WHEN 'Medium' THEN 1 ELSE 2 END ASC, "
        "created_at DESC, id ASC"
    ),
}


def _casefold(value: Any) -> str | None:
    return None if value is None else str(value).casefold()


def _row_to_record(row: sqlite3.Row) -> QuestionRecord:
    created_at = from_iso(row["created_at"])
    if created_at is None:
        raise UnavailableError(f"sqlite row {row['id']} has no created_at")
    return QuestionRecord(
        id=row["id"],
        title=row["title"],
        source_url=row["source_url"],
        difficulty=Difficulty(row["difficulty"]),
        created_at=created_at,
        last_solved_at=from_iso(row["last_solved_at"]),
        next_review_at=from_iso(row["next_review_at"]),
        solve_count=int(row["solve_count"] or 0),
    )


class SQLiteQuestionStore(QuestionStore):
    """SQLite-backed question store.

    Notes:
    - connection per operation; WAL journal so readers never block the writer
    - writes run inside BEGIN IMMEDIATE so check-then-write is serialized
    - url_key carries a UNIQUE index (trimmed + case-folded source URL)
    """

    def __init__(self, db_path: str, *, busy_timeout_sec: float = 10.0, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.db_path = db_path
        self.busy_timeout_sec = busy_timeout_sec
        self._ensure_dirs()
        with self._guard("init"):
            self._init_db()

    # --- low-level helpers ---
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout_sec,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn

    def _ensure_dirs(self) -> None:
        p = Path(self.db_path)
        if p.parent and not p.parent.exists():
            p.parent.mkdir(parents=True, exist_ok=True)

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS questions (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    source_url TEXT NOT NULL,
                    url_key TEXT NOT NULL,
                    difficulty TEXT NOT NULL CHECK(difficulty IN ('Easy', 'Medium', 'Hard')),
                    last_solved_at TEXT,
                    next_review_at TEXT,
                    solve_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    CHECK(next_review_at IS NULL OR last_solved_at IS NOT NULL)
                );
                """
            )
            conn.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_questions_url_key ON questions(url_key);")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_questions_next_review_at ON questions(next_review_at);")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_questions_created_at ON questions(created_at);")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            # BEGIN IMMEDIATE to avoid concurrent writers on the same row
            conn.execute("BEGIN IMMEDIATE;")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK;")
                raise
            conn.execute("COMMIT;")
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            logger.error(
                "question_store_unavailable",
                backend="sqlite",
                operation=operation,
                db_path=self.db_path,
                error=str(exc),
                error_class=exc.__class__.__name__,
            )
            raise UnavailableError(f"sqlite {operation} failed: {exc}") from exc

    # --- public API ---
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
        with self._guard("create"):
            try:
                with self._transaction() as conn:
                    existing = conn.execute(
                        "SELECT id FROM questions WHERE url_key = ?;", (url_key,)
                    ).fetchone()
                    if existing is not None:
                        raise ConflictError()
                    conn.execute(
                        f"""
                        INSERT INTO questions({_COLUMNS}, url_key)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                        """,
                        (
                            record.id,
                            record.title,
                            record.source_url,
                            record.difficulty.value,
                            to_iso(record.last_solved_at),
                            to_iso(record.next_review_at),
                            record.solve_count,
                            to_iso(record.created_at),
                            url_key,
                        ),
                    )
            except sqlite3.IntegrityError as exc:
                raise ConflictError() from exc
        logger.info("question_created", backend="sqlite", question_id=record.id, source_url=record.source_url)
        return record

    def list(self, flt: QuestionFilter | None = None) -> list[QuestionRecord]:
        flt = flt or QuestionFilter()
        clauses: list[str] = []
        params: list[Any] = []
        if flt.due_at is not None:
            clauses.append("(next_review_at IS NULL OR next_review_at <= ?)")
            params.append(to_iso(flt.due_at))
        if flt.solved is True:
            clauses.append("last_solved_at IS NOT NULL")
        elif flt.solved is False:
            clauses.append("last_solved_at IS NULL")
        if flt.title_contains:
            clauses.append("instr(casefold(title), ?) > 0")
            params.append(flt.title_contains.casefold())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT {_COLUMNS} FROM questions {where} ORDER BY {_ORDER_BY[flt.effective_order()]};"
        with self._guard("list"):
            with self._reader() as conn:
                rows = conn.execute(sql, params).fetchall()
        return [_row_to_record(row) for row in rows]

    def get(self, question_id: str) -> QuestionRecord:
        with self._guard("get"):
            with self._reader() as conn:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM questions WHERE id = ?;", (question_id,)
                ).fetchone()
        if row is None:
            raise NotFoundError()
        return _row_to_record(row)

    def delete(self, question_id: str) -> None:
        with self._guard("delete"):
            with self._transaction() as conn:
                cur = conn.execute("DELETE FROM questions WHERE id = ?;", (question_id,))
                if cur.rowcount == 0:
                    raise NotFoundError()
        logger.info("question_deleted", backend="sqlite", question_id=question_id)

    def mark_solved(self, question_id: str, interval_weeks: int | None = None) -> QuestionRecord:
        self.interval_policy.validate(interval_weeks)
        with self._guard("mark_solved"):
            with self._transaction() as conn:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM questions WHERE id = ?;", (question_id,)
                ).fetchone()
                if row is None:
                    raise NotFoundError()
                current = _row_to_record(row)
                now = self.now()
                updated = replace(
                    current,
                    last_solved_at=now,
                    next_review_at=now + self.interval_policy.interval(current, interval_weeks),
                    solve_count=current.solve_count + 1,
                )
                conn.execute(
                    """
                    UPDATE questions
                    SET last_solved_at = ?, next_review_at = ?, solve_count = ?
                    WHERE id = ?;
                    """,
                    (
                        to_iso(updated.last_solved_at),
                        to_iso(updated.next_review_at),
                        updated.solve_count,
                        question_id,
                    ),
                )
        logger.info(
            "question_marked_solved",
            backend="sqlite",
            question_id=question_id,
            interval_policy=self.interval_policy.name,
            next_review_at=to_iso(updated.next_review_at),
            solve_count=updated.solve_count,
        )
        return updated

    def stats(self, now: datetime | None = None) -> QuestionStats:
        at = to_iso(now or self.now())
        with self._guard("stats"):
            with self._reader() as conn:
                row = conn.execute(
                    """
                    SELECT
                        COUNT(*) AS total,
                        SUM(CASE WHEN next_review_at IS NULL OR next_review_at <= ? THEN 1 ELSE 0 END) AS due,
                        SUM(CASE WHEN last_solved_at IS NOT NULL THEN 1 ELSE 0 END) AS completed
                    FROM questions;
                    """,
                    (at,),
                ).fetchone()
        return QuestionStats(
            total=int(row["total"] or 0),
            due=int(row["due"] or 0),
            completed=int(row["completed"] or 0),
        )
