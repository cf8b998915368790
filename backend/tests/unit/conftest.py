from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.database import Base
from app.models.feedback import Board, Post, PostStatus, Vote
from app.models.merge_suggestion import MergeSuggestion
from app.services.merge_suggestion_service import canonical_pair_ids

BASE_TIME = datetime(2026, 1, 15, 12, 0, 0)


@pytest.fixture
def db_session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    yield session
    session.close()


@pytest.fixture
def board(db_session):
    board = Board(name="Feature Requests", slug="feature-requests")
    db_session.add(board)
    db_session.flush()
    return board


@pytest.fixture
def make_post(db_session, board):
    """Factory for posts on the default board."""

    def _make_post(
        title: str = "Dark mode",
        content: str = "",
        *,
        embedding=None,
        vote_count: int = 0,
        comment_count: int = 0,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        merge_checked_at: datetime | None = None,
        deleted_at: datetime | None = None,
        canonical_post_id: int | None = None,
        status: PostStatus | None = None,
    ) -> Post:
        created = created_at or BASE_TIME
        post = Post(
            board_id=board.id,
            status_id=status.id if status else None,
            title=title,
            content=content,
            embedding=embedding,
            vote_count=vote_count,
            comment_count=comment_count,
            created_at=created,
            updated_at=updated_at or created,
            merge_checked_at=merge_checked_at,
            deleted_at=deleted_at,
            canonical_post_id=canonical_post_id,
        )
        db_session.add(post)
        db_session.flush()
        return post

    return _make_post


@pytest.fixture
def make_suggestion(db_session):
    """Factory for merge suggestions inserted directly (bypassing conflict handling)."""

    def _make_suggestion(
        source: Post,
        target: Post,
        *,
        status: str = "pending",
        created_at: datetime | None = None,
        hybrid_score: float = 0.8,
        llm_confidence: float = 0.9,
    ) -> MergeSuggestion:
        pair_min, pair_max = canonical_pair_ids(source.id, target.id)
        suggestion = MergeSuggestion(
            source_post_id=source.id,
            target_post_id=target.id,
            pair_min_post_id=pair_min,
            pair_max_post_id=pair_max,
            vector_score=hybrid_score,
            fts_score=0.0,
            hybrid_score=hybrid_score,
            llm_confidence=llm_confidence,
            llm_reasoning="Same request",
            llm_model="google/gemini-2.5-flash",
            status=status,
            created_at=created_at or BASE_TIME,
            updated_at=created_at or BASE_TIME,
        )
        db_session.add(suggestion)
        db_session.flush()
        return suggestion

    return _make_suggestion


@pytest.fixture
def add_votes(db_session):
    def _add_votes(post: Post, *principal_ids: str) -> None:
        for principal_id in principal_ids:
            db_session.add(Vote(post_id=post.id, principal_id=principal_id))
        db_session.flush()

    return _add_votes

