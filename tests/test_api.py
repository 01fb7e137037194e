"""HTTP API の振る舞いを TestClient で検証するテスト群。"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from revision_tracker.main import create_app
from revision_tracker.scheduler import GracePeriodPolicy, SolveCountIntervalPolicy
from revision_tracker.store import FirestoreQuestionStore, SQLiteQuestionStore
from tests.firestore_fakes import FakeFirestoreClient

TWO_SUM = {
    "title": "Two Sum",
    "sourceURL": "https://leetcode.com/problems/two-sum/",
    "difficulty": "Easy",
}


def _parse(value: str | None) -> datetime | None:
    return None if value is None else datetime.fromisoformat(value)


def _create(client: TestClient, **overrides) -> dict:
    payload = dict(TWO_SUM)
    payload.update(overrides)
    resp = client.post("/questions", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()["question"]


def test_create_question_is_due_immediately(client, clock):
    start = clock()
    resp = client.post("/questions", json=TWO_SUM)
    assert resp.status_code == 201
    body = resp.json()
    assert body["message"] == "Question added successfully"
    question = body["question"]
    assert question["id"].startswith("q:")
    assert question["title"] == "Two Sum"
    assert question["sourceURL"] == TWO_SUM["sourceURL"]
    assert question["difficulty"] == "Easy"
    assert question["lastSolvedAt"] is None
    assert question["nextReviewAt"] is None
    assert question["solveCount"] == 0
    assert question["isDue"] is True
    assert _parse(question["createdAt"]) == start


def test_create_accepts_legacy_field_names(client):
    resp = client.post(
        "/questions",
        json={
            "question": "Add Two Numbers",
            "url": "https://leetcode.com/problems/add-two-numbers/",
            "difficulty": "Medium",
        },
    )
    assert resp.status_code == 201
    assert resp.json()["question"]["title"] == "Add Two Numbers"


def test_create_trims_title_and_url(client):
    question = _create(client, title="  Two Sum  ", sourceURL="  https://leetcode.com/problems/two-sum/ ")
    assert question["title"] == "Two Sum"
    assert question["sourceURL"] == "https://leetcode.com/problems/two-sum/"


def test_duplicate_url_is_rejected_with_409(client):
    _create(client)
    resp = client.post("/questions", json=TWO_SUM)
    assert resp.status_code == 409
    assert resp.json() == {"message": "Question with this URL already exists"}

    padded = dict(TWO_SUM, sourceURL="  HTTPS://LeetCode.com/problems/two-sum/  ")
    assert client.post("/questions", json=padded).status_code == 409
    assert len(client.get("/questions").json()["questions"]) == 1


@pytest.mark.parametrize(
    "payload",
    [
        {"sourceURL": "https://leetcode.com/problems/two-sum/", "difficulty": "Easy"},
        {"title": "Two Sum", "difficulty": "Easy"},
        {"title": "Two Sum", "sourceURL": "https://leetcode.com/problems/two-sum/"},
        dict(TWO_SUM, difficulty="easy"),
        dict(TWO_SUM, difficulty="Impossible"),
    ],
)
def test_create_with_missing_or_invalid_fields_returns_400(client, payload):
    resp = client.post("/questions", json=payload)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Missing or invalid fields"
    assert client.get("/questions").json()["questions"] == []


def test_create_rejects_foreign_url(client):
    resp = client.post("/questions", json=dict(TWO_SUM, sourceURL="https://example.com/two-sum"))
    assert resp.status_code == 400
    assert resp.json()["message"].startswith("Invalid URL")


def test_create_rejects_blank_title(client):
    resp = client.post("/questions", json=dict(TWO_SUM, title="   "))
    assert resp.status_code == 400
    assert resp.json() == {"message": "title is required"}


def test_mark_solved_schedules_next_review(client, clock):
    start = clock()
    question = _create(client)

    resp = client.patch("/questions", json={"id": question["id"], "intervalWeeks": 2})
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Question marked as solved"
    updated = body["question"]
    assert _parse(updated["lastSolvedAt"]) == start
    assert _parse(updated["nextReviewAt"]) == start + timedelta(days=14)
    assert updated["solveCount"] == 1
    assert updated["isDue"] is False

    assert client.get("/due-questions").json()["questions"] == []

    clock.advance(days=14)
    due = client.get("/due-questions").json()["questions"]
    assert [q["id"] for q in due] == [question["id"]]

    clock.advance(days=1)
    due = client.get("/due-questions").json()["questions"]
    assert [q["id"] for q in due] == [question["id"]]
    assert due[0]["isDue"] is True


def test_mark_solved_again_reschedules_from_now(client, clock):
    start = clock()
    question = _create(client)
    client.patch("/questions", json={"id": question["id"], "intervalWeeks": 4})
    clock.advance(days=3)
    resp = client.patch("/questions", json={"id": question["id"], "intervalWeeks": 2})
    updated = resp.json()["question"]
    assert _parse(updated["lastSolvedAt"]) == start + timedelta(days=3)
    assert _parse(updated["nextReviewAt"]) == start + timedelta(days=17)
    assert updated["solveCount"] == 2


@pytest.mark.parametrize("weeks", [0, -1])
def test_mark_solved_rejects_non_positive_interval(client, weeks):
    question = _create(client)
    resp = client.patch("/questions", json={"id": question["id"], "intervalWeeks": weeks})
    assert resp.status_code == 400
    assert resp.json() == {"message": "intervalWeeks must be a positive integer"}

    stored = client.get("/questions").json()["questions"][0]
    assert stored["nextReviewAt"] is None
    assert stored["lastSolvedAt"] is None


def test_mark_solved_requires_interval_under_weekly_policy(client):
    question = _create(client)
    resp = client.patch("/questions", json={"id": question["id"]})
    assert resp.status_code == 400
    assert resp.json() == {"message": "intervalWeeks is required"}


def test_mark_solved_unknown_id_returns_404(client):
    resp = client.patch("/questions", json={"id": "q:missing", "intervalWeeks": 2})
    assert resp.status_code == 404
    assert resp.json() == {"message": "Question not found"}
    assert client.get("/questions").json()["questions"] == []


def test_mark_solved_without_id_returns_400(client):
    resp = client.patch("/questions", json={"intervalWeeks": 2})
    assert resp.status_code == 400


def test_delete_question_then_delete_again(client):
    question = _create(client)

    resp = client.delete("/questions", params={"id": question["id"]})
    assert resp.status_code == 200
    assert resp.json() == {"message": "Question deleted successfully"}
    assert client.get("/questions").json()["questions"] == []

    resp = client.delete("/questions", params={"id": question["id"]})
    assert resp.status_code == 404
    assert resp.json() == {"message": "Question not found"}


def test_delete_without_id_returns_400(client):
    resp = client.delete("/questions")
    assert resp.status_code == 400
    assert resp.json() == {"message": "Question id is required"}


def test_deleted_url_can_be_registered_again(client):
    question = _create(client)
    client.delete("/questions", params={"id": question["id"]})
    again = _create(client)
    assert again["id"] != question["id"]


def test_list_questions_newest_first_with_filters(client, clock):
    first = _create(client)
    clock.advance(minutes=1)
    second = _create(
        client,
        title="Longest Substring Without Repeating Characters",
        sourceURL="https://leetcode.com/problems/longest-substring-without-repeating-characters/",
        difficulty="Medium",
    )
    client.patch("/questions", json={"id": first["id"], "intervalWeeks": 2})

    listed = client.get("/questions").json()["questions"]
    assert [q["id"] for q in listed] == [second["id"], first["id"]]

    solved = client.get("/questions", params={"solved": "true"}).json()["questions"]
    assert [q["id"] for q in solved] == [first["id"]]

    unsolved = client.get("/questions", params={"solved": "false"}).json()["questions"]
    assert [q["id"] for q in unsolved] == [second["id"]]

    searched = client.get("/questions", params={"q": "SUM"}).json()["questions"]
    assert [q["id"] for q in searched] == [first["id"]]


def test_list_questions_by_difficulty(client, clock):
    hard = _create(client, title="Median of Two Sorted Arrays",
                   sourceURL="https://leetcode.com/problems/median-of-two-sorted-arrays/", difficulty="Hard")
    clock.advance(minutes=1)
    easy = _create(client)

    listed = client.get("/questions", params={"order": "difficulty"}).json()["questions"]
    assert [q["id"] for q in listed] == [easy["id"], hard["id"]]


def test_due_questions_unscheduled_first_then_by_next_review(client, clock):
    a = _create(client, title="A", sourceURL="https://leetcode.com/problems/a/")
    b = _create(client, title="B", sourceURL="https://leetcode.com/problems/b/")
    c = _create(client, title="C", sourceURL="https://leetcode.com/problems/c/")
    client.patch("/questions", json={"id": c["id"], "intervalWeeks": 1})
    client.patch("/questions", json={"id": a["id"], "intervalWeeks": 2})

    clock.advance(weeks=3)
    due = client.get("/due-questions").json()["questions"]
    assert [q["id"] for q in due] == [b["id"], c["id"], a["id"]]

    filtered = client.get("/due-questions", params={"q": "a"}).json()["questions"]
    assert [q["id"] for q in filtered] == [a["id"]]


def test_question_stats(client, clock):
    first = _create(client)
    _create(client, title="Valid Parentheses", sourceURL="https://leetcode.com/problems/valid-parentheses/")
    client.patch("/questions", json={"id": first["id"], "intervalWeeks": 1})

    assert client.get("/questions/stats").json() == {"total": 2, "due": 1, "completed": 1}

    clock.advance(weeks=1)
    assert client.get("/questions/stats").json() == {"total": 2, "due": 2, "completed": 1}


def test_solve_count_policy_ignores_interval_weeks(tmp_path, clock, make_settings):
    store = SQLiteQuestionStore(
        str(tmp_path / "solve-count.sqlite3"),
        interval_policy=SolveCountIntervalPolicy(),
        clock=clock,
    )
    with TestClient(create_app(store=store, cfg=make_settings(interval_policy="solve_count"))) as client:
        question = _create(client)
        expected_days = [1, 7, 30, 60, 60]
        for days in expected_days:
            resp = client.patch("/questions", json={"id": question["id"]})
            assert resp.status_code == 200
            updated = resp.json()["question"]
            assert _parse(updated["nextReviewAt"]) == clock() + timedelta(days=days)
            clock.advance(days=days)


def test_grace_period_policy_delays_first_review(tmp_path, clock, make_settings):
    start = clock()
    store = SQLiteQuestionStore(
        str(tmp_path / "grace.sqlite3"),
        creation_policy=GracePeriodPolicy(14),
        clock=clock,
    )
    with TestClient(create_app(store=store, cfg=make_settings(creation_policy="grace_period"))) as client:
        question = _create(client)
        assert _parse(question["lastSolvedAt"]) == start
        assert _parse(question["nextReviewAt"]) == start + timedelta(days=14)
        assert question["isDue"] is False
        assert client.get("/due-questions").json()["questions"] == []

        clock.advance(days=14)
        due = client.get("/due-questions").json()["questions"]
        assert [q["id"] for q in due] == [question["id"]]


def test_storage_failure_returns_generic_500(client, sqlite_store, monkeypatch):
    def _broken_connect():
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(sqlite_store, "_connect", _broken_connect)
    resp = client.get("/questions")
    assert resp.status_code == 500
    assert resp.json() == {"message": "Storage is temporarily unavailable"}
    assert "disk" not in resp.text


def test_request_id_header_is_echoed_or_generated(client):
    resp = client.get("/healthz", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"

    generated = client.get("/healthz").headers["X-Request-ID"]
    assert len(generated) == 32

    replaced = client.get("/healthz", headers={"X-Request-ID": "bad id with spaces"}).headers["X-Request-ID"]
    assert replaced != "bad id with spaces"
    assert len(replaced) == 32


def test_healthz_and_metrics(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    client.get("/questions")

    paths = client.get("/metrics").json()["paths"]
    assert paths["GET /questions"]["count"] == 1
    assert paths["GET /questions"]["errors"] == 0
    assert paths["GET /questions"]["status"] == {"2xx": 1}
    assert paths["GET /healthz"]["count"] == 1


def test_metrics_count_client_errors_by_status_class(client):
    client.delete("/questions")
    client.delete("/questions", params={"id": "q:missing"})

    stats = client.get("/metrics").json()["paths"]["DELETE /questions"]
    assert stats["count"] == 2
    assert stats["errors"] == 0
    assert stats["status"] == {"4xx": 2}


def test_readyz_reports_storage_state(client, sqlite_store, monkeypatch):
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ready", "backend": "SQLiteQuestionStore"}

    def _broken_connect():
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(sqlite_store, "_connect", _broken_connect)
    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json() == {"status": "unavailable"}


@pytest.mark.parametrize("weeks", [True, "2", 2.0])
def test_mark_solved_rejects_non_integer_interval(client, weeks):
    question = _create(client)
    resp = client.patch("/questions", json={"id": question["id"], "intervalWeeks": weeks})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Missing or invalid fields"
    assert {e["field"] for e in resp.json()["errors"]} == {"intervalWeeks"}

    stored = client.get("/questions").json()["questions"][0]
    assert stored["nextReviewAt"] is None
    assert stored["solveCount"] == 0


def test_mark_solved_with_blank_id_returns_400(client):
    resp = client.patch("/questions", json={"id": "   ", "intervalWeeks": 2})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Question id is required"}


@pytest.mark.parametrize("question_id", ["a/b", "__reserved__", ".."])
def test_firestore_ids_that_cannot_exist_return_404(clock, make_settings, question_id):
    store = FirestoreQuestionStore(FakeFirestoreClient(), clock=clock)
    with TestClient(create_app(store=store, cfg=make_settings(store_backend="firestore"))) as client:
        resp = client.delete("/questions", params={"id": question_id})
        assert resp.status_code == 404
        assert resp.json() == {"message": "Question not found"}

        resp = client.patch("/questions", json={"id": question_id, "intervalWeeks": 2})
        assert resp.status_code == 404
