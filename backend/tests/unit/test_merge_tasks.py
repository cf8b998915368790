"""Task-level tests for merge checks, embedding refresh and the sweep lock."""

from __future__ import annotations

import types
from unittest.mock import MagicMock

import pytest
from celery.exceptions import SoftTimeLimitExceeded

from app.tasks import merge_tasks
from app.tasks.merge_tasks import (
    check_post_merge_candidates,
    refresh_post_embedding,
    sweep_merge_candidates,
)


@pytest.fixture
def session_factory(monkeypatch: pytest.MonkeyPatch):
    sessions = []

    def _factory():
        session = MagicMock()
        sessions.append(session)
        return session

    monkeypatch.setattr("app.tasks.merge_tasks.SessionLocal", _factory)
    return sessions


@pytest.fixture
def redis_client(monkeypatch: pytest.MonkeyPatch):
    client = MagicMock()
    monkeypatch.setattr("app.tasks.merge_tasks.get_redis_client", lambda: client)
    return client


def test_sweep_runs_under_redis_lock(monkeypatch, redis_client):
    redis_client.set.return_value = True
    calls = {}

    def fake_run_merge_sweep(session_factory, **kwargs):
        calls.update(kwargs)
        return {"status": "completed", "processed": 4}

    monkeypatch.setattr("app.services.merge_check_service.run_merge_sweep", fake_run_merge_sweep)

    result = sweep_merge_candidates(force=True, max_posts=10)

    assert result["status"] == "completed"
    assert result["processed"] == 4
    heartbeat = calls.pop("heartbeat")
    assert calls == {"force": True, "dry_run": False, "max_posts": 10}
    assert callable(heartbeat)
    key, token = redis_client.set.call_args.args
    assert key == "merge_suggestions:sweep:lock"
    assert redis_client.set.call_args.kwargs["nx"] is True
    # released with the same token it was acquired with
    assert redis_client.eval.call_args.args[1:] == (1, key, token)


def test_sweep_skipped_when_lock_held(monkeypatch, redis_client):
    redis_client.set.return_value = None
    redis_client.get.return_value = "other-task:abc"
    run = MagicMock()
    monkeypatch.setattr("app.services.merge_check_service.run_merge_sweep", run)

    result = sweep_merge_candidates()

    assert result["status"] == "skipped"
    assert result["reason"] == "lock_held"
    assert result["holder"] == "other-task:abc"
    run.assert_not_called()
    redis_client.eval.assert_not_called()


def test_sweep_skipped_without_redis(monkeypatch):
    monkeypatch.setattr("app.tasks.merge_tasks.get_redis_client", lambda: None)
    run = MagicMock()
    monkeypatch.setattr("app.services.merge_check_service.run_merge_sweep", run)

    result = sweep_merge_candidates()

    assert result["reason"] == "lock_unavailable"
    run.assert_not_called()


def test_sweep_error_is_reported_and_lock_released(monkeypatch, redis_client):
    redis_client.set.return_value = True

    def failing_sweep(session_factory, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr("app.services.merge_check_service.run_merge_sweep", failing_sweep)

    result = sweep_merge_candidates()

    assert result["error"] == "database is locked"
    redis_client.eval.assert_called_once()


def test_sweep_renews_lock_after_each_page(monkeypatch, redis_client):
    redis_client.set.return_value = True
    redis_client.eval.return_value = 1

    def paged_sweep(session_factory, heartbeat, **kwargs):
        heartbeat()
        heartbeat()
        return {"status": "completed", "processed": 100}

    monkeypatch.setattr("app.services.merge_check_service.run_merge_sweep", paged_sweep)

    sweep_merge_candidates()

    key, token = redis_client.set.call_args.args
    ttl = redis_client.set.call_args.kwargs["ex"]
    renewals = [c.args for c in redis_client.eval.call_args_list if c.args[0] == merge_tasks._LOCK_EXTEND_LUA]
    assert renewals == [(merge_tasks._LOCK_EXTEND_LUA, 1, key, token, ttl)] * 2
    assert redis_client.eval.call_args.args[0] == merge_tasks._LOCK_RELEASE_LUA


def test_lost_lock_is_reported_on_renewal(redis_client):
    redis_client.eval.return_value = 0

    assert merge_tasks._extend_merge_sweep_lock(redis_client, "task:abc") is False


def test_soft_time_limit_releases_lock(monkeypatch, redis_client):
    redis_client.set.return_value = True

    def timed_out_sweep(session_factory, **kwargs):
        raise SoftTimeLimitExceeded()

    monkeypatch.setattr("app.services.merge_check_service.run_merge_sweep", timed_out_sweep)

    result = sweep_merge_candidates()

    assert result["status"] == "timed_out"
    assert redis_client.eval.call_args.args[0] == merge_tasks._LOCK_RELEASE_LUA


def test_check_task_returns_check_result(monkeypatch, session_factory):
    def fake_check(db, post_id):
        return {
            "status": "suggested",
            "candidates": 3,
            "confirmed": 1,
            "suggestion_created": True,
            "checked": True,
        }

    monkeypatch.setattr("app.services.merge_check_service.check_post_for_merge_candidates", fake_check)

    result = check_post_merge_candidates(17)

    assert result["status"] == "suggested"
    assert result["post_id"] == 17
    session_factory[0].close.assert_called_once()


def test_check_task_reports_errors(monkeypatch, session_factory):
    def failing_check(db, post_id):
        raise RuntimeError("connection reset")

    monkeypatch.setattr("app.services.merge_check_service.check_post_for_merge_candidates", failing_check)

    result = check_post_merge_candidates(17)

    assert result["error"] == "connection reset"
    session_factory[0].rollback.assert_called_once()
    session_factory[0].close.assert_called_once()


@pytest.mark.parametrize("stored, queued", [(True, True), (False, False)])
def test_refresh_embedding_queues_merge_check(monkeypatch, session_factory, stored, queued):
    enqueued = []
    monkeypatch.setattr(
        "app.services.post_embedding_service.refresh_post_embedding",
        lambda db, post_id: stored,
    )
    monkeypatch.setattr(
        merge_tasks,
        "check_post_merge_candidates",
        types.SimpleNamespace(delay=lambda post_id: enqueued.append(post_id)),
    )

    result = refresh_post_embedding(5)

    assert result["embedded"] is stored
    assert result["merge_check_queued"] is queued
    assert enqueued == ([5] if queued else [])
