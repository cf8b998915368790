"""Tests for post embedding refresh."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

import numpy as np

from app.models.feedback import Post
from app.services.post_embedding_service import (
    PostEmbeddingEngine,
    build_post_text,
    refresh_post_embedding,
)

from tests.unit.conftest import BASE_TIME


def _embedding_response(vector):
    return SimpleNamespace(data=[{"embedding": vector}])


class _FakeEngine:
    model_name = "fake-embedder"

    def __init__(self, vector):
        self.vector = vector
        self.texts = []

    def encode(self, text):
        self.texts.append(text)
        return None if self.vector is None else np.asarray(self.vector, dtype=np.float32)


def test_build_post_text():
    assert build_post_text(Post(title=" Dark mode ", content="")) == "Dark mode"
    assert build_post_text(Post(title="Dark mode", content="Please")) == "Dark mode\n\nPlease"


def test_engine_returns_vector_of_expected_size():
    with patch(
        "app.services.post_embedding_service.litellm.embedding",
        return_value=_embedding_response([0.1, 0.2, 0.3]),
    ) as embedding:
        vector = PostEmbeddingEngine(model_name="text-embedding-3-small", dimensions=3).encode("Dark mode")

    assert vector.tolist() == np.asarray([0.1, 0.2, 0.3], dtype=np.float32).tolist()
    assert embedding.call_args.kwargs["input"] == ["Dark mode"]


def test_engine_rejects_wrong_dimensions_and_errors():
    engine = PostEmbeddingEngine(model_name="text-embedding-3-small", dimensions=4)

    with patch(
        "app.services.post_embedding_service.litellm.embedding",
        return_value=_embedding_response([0.1, 0.2, 0.3]),
    ):
        assert engine.encode("Dark mode") is None

    with patch(
        "app.services.post_embedding_service.litellm.embedding",
        side_effect=RuntimeError("quota exceeded"),
    ):
        assert engine.encode("Dark mode") is None

    assert engine.encode("   ") is None


def test_refresh_stores_embedding_and_resets_check(make_post, db_session):
    post = make_post("Dark mode", "Please add it", merge_checked_at=BASE_TIME)
    engine = _FakeEngine([0.5, 0.5, 0.0])

    assert refresh_post_embedding(db_session, post.id, engine=engine) is True

    db_session.expire_all()
    stored = db_session.get(Post, post.id)
    assert stored.embedding == [0.5, 0.5, 0.0]
    assert stored.embedding_model == "fake-embedder"
    assert stored.embedding_updated_at is not None
    assert stored.merge_checked_at is None
    assert engine.texts == ["Dark mode\n\nPlease add it"]


def test_refresh_failure_leaves_post_unchanged(make_post, db_session):
    post = make_post("Dark mode", embedding=[1.0, 0.0, 0.0], merge_checked_at=BASE_TIME)

    assert refresh_post_embedding(db_session, post.id, engine=_FakeEngine(None)) is False
    assert refresh_post_embedding(db_session, 999, engine=_FakeEngine([1.0])) is False

    db_session.expire_all()
    stored = db_session.get(Post, post.id)
    assert stored.embedding == [1.0, 0.0, 0.0]
    assert stored.merge_checked_at == BASE_TIME
