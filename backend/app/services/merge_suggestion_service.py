"""
Merge Suggestion Service

Persistence and lifecycle of merge suggestions:
- create with conflict-ignore (one pending suggestion per unordered post pair)
- accept (merges the posts and dismisses competing suggestions)
- dismiss / expire
- read models for the review queue
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from ..config import settings
from ..models.feedback import Board, Post, PostStatus
from ..models.merge_suggestion import (
    MergeSuggestion,
    STATUS_ACCEPTED,
    STATUS_DISMISSED,
    STATUS_EXPIRED,
    STATUS_PENDING,
)
from ..utils.clock import days_ago, utcnow
from .post_merge_service import merge_post

logger = logging.getLogger(__name__)

UNKNOWN_POST_TITLE = "Unknown post"

SORT_ORDERS = {
    "newest": lambda: (MergeSuggestion.created_at.desc(), MergeSuggestion.id.desc()),
    "similarity": lambda: (MergeSuggestion.hybrid_score.desc(), MergeSuggestion.created_at.desc()),
    "confidence": lambda: (MergeSuggestion.llm_confidence.desc(), MergeSuggestion.created_at.desc()),
}


class MergeSuggestionNotFoundError(Exception):
    """Suggestion does not exist or is no longer pending."""

    def __init__(self, suggestion_id: int):
        super().__init__("Merge suggestion not found or already resolved")
        self.suggestion_id = suggestion_id


@dataclass(frozen=True)
class NewMergeSuggestion:
    """Fields of a suggestion produced by a duplicate check."""

    source_post_id: int
    target_post_id: int
    vector_score: float
    fts_score: float
    hybrid_score: float
    llm_confidence: float
    llm_reasoning: str
    llm_model: str


def canonical_pair_ids(post_a_id: int, post_b_id: int) -> tuple[int, int]:
    if post_a_id <= post_b_id:
        return post_a_id, post_b_id
    return post_b_id, post_a_id


def _maybe_with_for_update(db: Session, query):
    """Apply row-level locking on databases that support it."""
    bind = db.get_bind()
    if bind is not None and bind.dialect.name != "sqlite":
        return query.with_for_update()
    return query


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


def create_merge_suggestion(db: Session, opts: NewMergeSuggestion) -> bool:
    """
    Insert a pending suggestion unless one already exists for the pair.

    Returns:
        True when a row was inserted, False when the pair already had a
        pending suggestion.
    """
    if opts.source_post_id == opts.target_post_id:
        raise ValueError("A post cannot be suggested as a duplicate of itself")

    pair_min_id, pair_max_id = canonical_pair_ids(opts.source_post_id, opts.target_post_id)
    now = utcnow()
    values = {
        "source_post_id": opts.source_post_id,
        "target_post_id": opts.target_post_id,
        "pair_min_post_id": pair_min_id,
        "pair_max_post_id": pair_max_id,
        "vector_score": opts.vector_score,
        "fts_score": opts.fts_score,
        "hybrid_score": opts.hybrid_score,
        "llm_confidence": opts.llm_confidence,
        "llm_reasoning": opts.llm_reasoning,
        "llm_model": opts.llm_model,
        "status": STATUS_PENDING,
        "created_at": now,
        "updated_at": now,
    }

    insert = _dialect_insert(db)
    if insert is not None:
        result = db.execute(insert(MergeSuggestion).values(**values).on_conflict_do_nothing())
        db.commit()
        return (result.rowcount or 0) > 0

    # Other dialects: let the unique index reject the duplicate.
    try:
        with db.begin_nested():
            db.add(MergeSuggestion(**values))
    except IntegrityError:
        logger.debug("Pending suggestion already exists for posts %s/%s", pair_min_id, pair_max_id)
        db.commit()
        return False
    db.commit()
    return True


def accept_merge_suggestion(db: Session, suggestion_id: int, principal_id: Optional[str]) -> dict:
    """
    Accept a pending suggestion: merge source INTO target and resolve competitors.

    Every other pending suggestion that references either post (in either
    role) is dismissed in the same transaction.

    Raises:
        MergeSuggestionNotFoundError: suggestion missing or not pending
        PostMergeError subclasses: the merge itself was rejected
    """
    suggestion = _maybe_with_for_update(
        db,
        db.query(MergeSuggestion).filter(
            MergeSuggestion.id == suggestion_id,
            MergeSuggestion.status == STATUS_PENDING,
        ),
    ).first()
    if suggestion is None:
        raise MergeSuggestionNotFoundError(suggestion_id)

    source_id = suggestion.source_post_id
    target_id = suggestion.target_post_id
    now = utcnow()

    try:
        merge_post(db, source_id, target_id, principal_id, commit=False)

        accepted = db.query(MergeSuggestion).filter(
            MergeSuggestion.id == suggestion_id,
            MergeSuggestion.status == STATUS_PENDING,
        ).update(
            {
                MergeSuggestion.status: STATUS_ACCEPTED,
                MergeSuggestion.resolved_at: now,
                MergeSuggestion.resolved_by_principal_id: principal_id,
                MergeSuggestion.updated_at: now,
            },
            synchronize_session=False,
        )
        if accepted != 1:
            raise MergeSuggestionNotFoundError(suggestion_id)

        involved = (source_id, target_id)
        dismissed = db.query(MergeSuggestion).filter(
            MergeSuggestion.id != suggestion_id,
            MergeSuggestion.status == STATUS_PENDING,
            or_(
                MergeSuggestion.source_post_id.in_(involved),
                MergeSuggestion.target_post_id.in_(involved),
            ),
        ).update(
            {
                MergeSuggestion.status: STATUS_DISMISSED,
                MergeSuggestion.resolved_at: now,
                MergeSuggestion.resolved_by_principal_id: principal_id,
                MergeSuggestion.updated_at: now,
            },
            synchronize_session=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Accepted merge suggestion %s: post %s -> %s (dismissed %d competing)",
        suggestion_id,
        source_id,
        target_id,
        dismissed,
    )
    return {
        "suggestion_id": suggestion_id,
        "source_post_id": source_id,
        "target_post_id": target_id,
        "status": STATUS_ACCEPTED,
        "dismissed_count": int(dismissed or 0),
    }


def dismiss_merge_suggestion(db: Session, suggestion_id: int, principal_id: Optional[str]) -> bool:
    """Dismiss a pending suggestion. Resolved suggestions are left untouched."""
    now = utcnow()
    updated = db.query(MergeSuggestion).filter(
        MergeSuggestion.id == suggestion_id,
        MergeSuggestion.status == STATUS_PENDING,
    ).update(
        {
            MergeSuggestion.status: STATUS_DISMISSED,
            MergeSuggestion.resolved_at: now,
            MergeSuggestion.resolved_by_principal_id: principal_id,
            MergeSuggestion.updated_at: now,
        },
        synchronize_session=False,
    )
    db.commit()
    if updated:
        logger.info("Dismissed merge suggestion %s (principal=%s)", suggestion_id, principal_id)
    return bool(updated)


def expire_stale_merge_suggestions(
    db: Session,
    *,
    now: Optional[datetime] = None,
    max_age_days: Optional[int] = None,
) -> int:
    """Expire pending suggestions created more than ``max_age_days`` ago. Returns the count."""
    if max_age_days is None:
        max_age_days = settings.merge_suggestion_expiry_days
    now = now or utcnow()
    cutoff = days_ago(max_age_days, now)

    expired = db.query(MergeSuggestion).filter(
        MergeSuggestion.status == STATUS_PENDING,
        MergeSuggestion.created_at < cutoff,
    ).update(
        {
            MergeSuggestion.status: STATUS_EXPIRED,
            MergeSuggestion.resolved_at: now,
            MergeSuggestion.updated_at: now,
        },
        synchronize_session=False,
    )
    db.commit()
    expired = int(expired or 0)
    if expired:
        logger.info("Expired %d stale merge suggestions (older than %d days)", expired, max_age_days)
    return expired


def get_pending_suggestions_for_post(db: Session, post_id: int) -> list[dict]:
    """Pending suggestions where the post is source or target, oldest first."""
    source_post = aliased(Post)
    target_post = aliased(Post)
    rows = db.query(
        MergeSuggestion,
        source_post.title,
        source_post.vote_count,
        target_post.title,
        target_post.vote_count,
    ).join(
        source_post, source_post.id == MergeSuggestion.source_post_id,
    ).join(
        target_post, target_post.id == MergeSuggestion.target_post_id,
    ).filter(
        MergeSuggestion.status == STATUS_PENDING,
        or_(
            MergeSuggestion.source_post_id == post_id,
            MergeSuggestion.target_post_id == post_id,
        ),
    ).order_by(MergeSuggestion.created_at.asc(), MergeSuggestion.id.asc()).all()

    results = []
    for s, source_title, source_votes, target_title, target_votes in rows:
        results.append({
            "id": s.id,
            "source_post_id": s.source_post_id,
            "source_post_title": source_title,
            "source_post_vote_count": source_votes,
            "target_post_id": s.target_post_id,
            "target_post_title": target_title,
            "target_post_vote_count": target_votes,
            "vector_score": s.vector_score,
            "fts_score": s.fts_score,
            "hybrid_score": s.hybrid_score,
            "llm_confidence": s.llm_confidence,
            "llm_reasoning": s.llm_reasoning,
            "created_at": s.created_at,
        })
    return results


def _empty_post(post_id: int) -> dict:
    return {
        "id": post_id,
        "title": UNKNOWN_POST_TITLE,
        "content": "",
        "vote_count": 0,
        "comment_count": 0,
        "created_at": None,
        "board_name": None,
        "status_name": None,
        "status_color": None,
    }


def _fetch_post_summaries(db: Session, post_ids: set[int]) -> dict[int, dict]:
    """Batch-load posts with board and status display fields."""
    if not post_ids:
        return {}
    rows = db.query(
        Post,
        Board.name,
        PostStatus.name,
        PostStatus.color,
    ).outerjoin(
        Board, Board.id == Post.board_id,
    ).outerjoin(
        PostStatus, PostStatus.id == Post.status_id,
    ).filter(Post.id.in_(post_ids)).all()

    summaries = {}
    for post, board_name, status_name, status_color in rows:
        summaries[post.id] = {
            "id": post.id,
            "title": post.title,
            "content": post.content or "",
            "vote_count": post.vote_count,
            "comment_count": post.comment_count,
            "created_at": post.created_at,
            "board_name": board_name,
            "status_name": status_name,
            "status_color": status_color,
        }
    return summaries


def get_pending_merge_suggestions(
    db: Session,
    *,
    sort: str = "newest",
    limit: int = 50,
) -> dict:
    """
    Review queue of pending suggestions.

    Returns:
        ``{"items": [...], "total": int}`` where ``total`` counts every pending
        suggestion and ``items`` holds at most ``limit`` of them.
    """
    if sort not in SORT_ORDERS:
        raise ValueError(f"Unknown sort order: {sort}")

    pending = db.query(MergeSuggestion).filter(MergeSuggestion.status == STATUS_PENDING)
    total = pending.with_entities(func.count(MergeSuggestion.id)).scalar() or 0
    suggestions = pending.order_by(*SORT_ORDERS[sort]()).limit(max(0, limit)).all()

    post_ids = set()
    for s in suggestions:
        post_ids.add(s.source_post_id)
        post_ids.add(s.target_post_id)
    posts = _fetch_post_summaries(db, post_ids)

    items = []
    for s in suggestions:
        items.append({
            "id": s.id,
            "source_post": posts.get(s.source_post_id) or _empty_post(s.source_post_id),
            "target_post": posts.get(s.target_post_id) or _empty_post(s.target_post_id),
            "vector_score": s.vector_score,
            "fts_score": s.fts_score,
            "hybrid_score": s.hybrid_score,
            "llm_confidence": s.llm_confidence,
            "llm_reasoning": s.llm_reasoning,
            "llm_model": s.llm_model,
            "status": s.status,
            "created_at": s.created_at,
        })

    return {"items": items, "total": int(total)}


def get_merge_suggestion(db: Session, suggestion_id: int) -> Optional[MergeSuggestion]:
    return db.query(MergeSuggestion).filter(MergeSuggestion.id == suggestion_id).first()
