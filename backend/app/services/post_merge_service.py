"""
Post merge operations.

Merging marks a duplicate post as pointing at a canonical post. The duplicate
keeps its own rows (votes, comments) but its voters are counted once more on
the canonical post, so the canonical ``vote_count`` is always the number of
distinct voters across the canonical post and its live duplicates.
"""
import logging
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..models.feedback import Post, Vote
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


class PostMergeError(Exception):
    """Base exception for merge/unmerge failures."""
    pass


class PostNotFoundError(PostMergeError):
    """Post is missing or soft-deleted."""
    pass


class InvalidMergeError(PostMergeError):
    """The requested merge would produce an invalid post graph."""
    pass


class AlreadyMergedError(PostMergeError):
    """The duplicate post has already been merged elsewhere."""
    pass


def _load_live_post(db: Session, post_id: int, label: str) -> Post:
    post = db.query(Post).filter(Post.id == post_id, Post.deleted_at.is_(None)).first()
    if post is None:
        raise PostNotFoundError(f"{label} post {post_id} not found")
    return post


def recalculate_vote_count(db: Session, canonical_post_id: int) -> int:
    """Recompute and store the canonical post's distinct voter count."""
    merged_ids = db.query(Post.id).filter(
        Post.canonical_post_id == canonical_post_id,
        Post.deleted_at.is_(None),
    )
    voter_count = db.query(func.count(func.distinct(Vote.principal_id))).filter(
        or_(
            Vote.post_id == canonical_post_id,
            Vote.post_id.in_(merged_ids),
        )
    ).scalar() or 0

    db.query(Post).filter(Post.id == canonical_post_id).update(
        {Post.vote_count: voter_count},
        synchronize_session=False,
    )
    return voter_count


def merge_post(
    db: Session,
    duplicate_post_id: int,
    canonical_post_id: int,
    principal_id: Optional[str],
    *,
    commit: bool = True,
) -> dict:
    """
    Merge ``duplicate_post_id`` INTO ``canonical_post_id``.

    Raises:
        InvalidMergeError: self-merge, or the canonical post is itself merged
        PostNotFoundError: either post is missing or deleted
        AlreadyMergedError: the duplicate is already merged
    """
    if duplicate_post_id == canonical_post_id:
        raise InvalidMergeError("Cannot merge a post into itself")

    duplicate = _load_live_post(db, duplicate_post_id, "Duplicate")
    canonical = _load_live_post(db, canonical_post_id, "Canonical")

    if duplicate.canonical_post_id is not None:
        raise AlreadyMergedError(
            f"Post {duplicate_post_id} is already merged into {duplicate.canonical_post_id}"
        )
    if canonical.canonical_post_id is not None:
        raise InvalidMergeError(
            f"Canonical post {canonical_post_id} is itself merged into {canonical.canonical_post_id}"
        )

    merged_at = utcnow()
    duplicate.canonical_post_id = canonical.id
    duplicate.merged_at = merged_at
    duplicate.merged_by_principal_id = principal_id
    db.flush()

    vote_count = recalculate_vote_count(db, canonical.id)

    if commit:
        db.commit()

    logger.info(
        "Merged post %s into %s (principal=%s, vote_count=%d)",
        duplicate_post_id,
        canonical_post_id,
        principal_id,
        vote_count,
    )
    return {
        "duplicate_post_id": duplicate_post_id,
        "canonical_post_id": canonical_post_id,
        "merged_at": merged_at,
        "vote_count": vote_count,
    }


def unmerge_post(
    db: Session,
    post_id: int,
    principal_id: Optional[str],
    *,
    commit: bool = True,
) -> dict:
    """Detach a merged post from its canonical post."""
    post = _load_live_post(db, post_id, "Merged")
    canonical_post_id = post.canonical_post_id
    if canonical_post_id is None:
        raise InvalidMergeError(f"Post {post_id} is not merged")

    post.canonical_post_id = None
    post.merged_at = None
    post.merged_by_principal_id = None
    db.flush()

    vote_count = recalculate_vote_count(db, canonical_post_id)

    if commit:
        db.commit()

    logger.info(
        "Unmerged post %s from %s (principal=%s, vote_count=%d)",
        post_id,
        canonical_post_id,
        principal_id,
        vote_count,
    )
    return {
        "post_id": post_id,
        "former_canonical_post_id": canonical_post_id,
        "vote_count": vote_count,
    }


def get_merged_posts(db: Session, canonical_post_id: int) -> list[dict]:
    """Live duplicates merged into a canonical post, newest merge first."""
    posts = db.query(Post).filter(
        Post.canonical_post_id == canonical_post_id,
        Post.deleted_at.is_(None),
    ).order_by(Post.merged_at.desc(), Post.id.desc()).all()

    return [
        {
            "id": p.id,
            "title": p.title,
            "vote_count": p.vote_count,
            "merged_at": p.merged_at,
            "merged_by_principal_id": p.merged_by_principal_id,
        }
        for p in posts
    ]


def get_post_merge_info(db: Session, post_id: int) -> Optional[dict]:
    """Merge state of a post: its canonical target (if merged) and its own duplicates."""
    post = db.query(Post).filter(Post.id == post_id).first()
    if post is None:
        return None

    canonical = None
    if post.canonical_post_id is not None:
        target = db.query(Post).filter(Post.id == post.canonical_post_id).first()
        if target is not None:
            canonical = {"id": target.id, "title": target.title}

    return {
        "post_id": post.id,
        "is_merged": post.canonical_post_id is not None,
        "canonical_post": canonical,
        "merged_at": post.merged_at,
        "merged_by_principal_id": post.merged_by_principal_id,
        "merged_posts": get_merged_posts(db, post.id),
    }
