"""
Merge Check Service

Orchestrates duplicate detection:
- per-post check: search -> LLM assessment -> best match -> direction -> suggestion
- sweep: pages through posts whose last check is missing or stale

Only one sweep runs per process at a time; the Celery task adds a Redis
lock so only one worker process sweeps.
"""
import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal, safe_rollback
from ..domain.merge_suggestions import (
    PostRanking,
    SourcePost,
    determine_direction,
    select_best_match,
)
from ..models.feedback import Post
from ..utils.clock import hours_ago, utcnow
from .llm import LLMService
from .merge_assessment_service import assess_merge_candidates, get_llm_service
from .merge_search_service import find_merge_candidates
from .merge_suggestion_service import (
    NewMergeSuggestion,
    create_merge_suggestion,
    expire_stale_merge_suggestions,
)

logger = logging.getLogger(__name__)

# Process-wide guard: a second sweep started while one is running is a no-op.
_sweep_lock = threading.Lock()


def _check_result(status: str, **extra) -> dict:
    result = {
        "status": status,
        "candidates": 0,
        "confirmed": 0,
        "suggestion_created": False,
        "checked": False,
    }
    result.update(extra)
    return result


def _stamp_checked(db: Session, post_id: int, now: Optional[datetime] = None) -> None:
    """Record the check time without touching updated_at (the sweep orders by it)."""
    db.query(Post).filter(Post.id == post_id).update(
        {
            Post.merge_checked_at: now or utcnow(),
            Post.updated_at: Post.updated_at,
        },
        synchronize_session=False,
    )
    db.commit()


def check_post_for_merge_candidates(
    db: Session,
    post_id: int,
    *,
    llm: Optional[LLMService] = None,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    """
    Check one post for duplicates and record at most one merge suggestion.

    Missing, deleted, merged and embedding-less posts are skipped without
    being stamped. Every check that runs to completion stamps
    ``merge_checked_at`` (except in dry-run mode). Database errors propagate.
    """
    post = db.query(Post).filter(Post.id == post_id).first()
    if post is None:
        return _check_result("not_found")
    if post.deleted_at is not None:
        return _check_result("skipped", reason="deleted")
    if post.canonical_post_id is not None:
        return _check_result("skipped", reason="merged")
    if post.embedding is None:
        return _check_result("skipped", reason="no_embedding")

    llm = llm or get_llm_service()
    if llm is None:
        logger.debug("No LLM provider configured; skipping merge check for post %s", post_id)
        return _check_result("skipped", reason="llm_not_configured")

    candidates = find_merge_candidates(db, post.id, title=post.title, embedding=post.embedding)
    if not candidates:
        if not dry_run:
            _stamp_checked(db, post.id, now)
        return _check_result("no_candidates", checked=not dry_run)

    source = SourcePost(id=post.id, title=post.title, content=post.content or "")
    source_ranking = PostRanking(
        id=post.id,
        vote_count=post.vote_count or 0,
        comment_count=post.comment_count or 0,
        created_at=post.created_at,
    )
    assessments = assess_merge_candidates(source, candidates, llm=llm)

    best = select_best_match(assessments, candidates)
    if best is None:
        if not dry_run:
            _stamp_checked(db, post.id, now)
        return _check_result(
            "no_duplicates",
            candidates=len(candidates),
            confirmed=len(assessments),
            checked=not dry_run,
        )

    assessment, candidate = best
    direction = determine_direction(source_ranking, candidate.ranking())

    if dry_run:
        logger.info(
            "[dry-run] Would suggest merging post %s into %s (confidence=%.2f, hybrid=%.3f): %s",
            direction.source_post_id,
            direction.target_post_id,
            assessment.confidence,
            candidate.hybrid_score,
            assessment.reasoning,
        )
        return _check_result(
            "would_suggest",
            candidates=len(candidates),
            confirmed=len(assessments),
            source_post_id=direction.source_post_id,
            target_post_id=direction.target_post_id,
        )

    created = create_merge_suggestion(
        db,
        NewMergeSuggestion(
            source_post_id=direction.source_post_id,
            target_post_id=direction.target_post_id,
            vector_score=candidate.vector_score,
            fts_score=candidate.fts_score,
            hybrid_score=candidate.hybrid_score,
            llm_confidence=assessment.confidence,
            llm_reasoning=assessment.reasoning,
            llm_model=settings.merge_assessment_model_label,
        ),
    )
    _stamp_checked(db, post.id, now)

    if created:
        logger.info(
            "Suggested merging post %s into %s (confidence=%.2f, hybrid=%.3f)",
            direction.source_post_id,
            direction.target_post_id,
            assessment.confidence,
            candidate.hybrid_score,
        )
    return _check_result(
        "suggested" if created else "already_suggested",
        candidates=len(candidates),
        confirmed=len(assessments),
        suggestion_created=created,
        checked=True,
        source_post_id=direction.source_post_id,
        target_post_id=direction.target_post_id,
    )


def _sweep_page(
    db: Session,
    *,
    cutoff: datetime,
    force: bool,
    exclude_ids: set[int],
    offset: int,
    batch_size: int,
) -> list[int]:
    query = db.query(Post.id).filter(
        Post.deleted_at.is_(None),
        Post.canonical_post_id.is_(None),
        Post.embedding.isnot(None),
    )
    if not force:
        query = query.filter(
            or_(Post.merge_checked_at.is_(None), Post.merge_checked_at < cutoff)
        )
    if exclude_ids:
        query = query.filter(Post.id.notin_(exclude_ids))
    rows = query.order_by(Post.updated_at.desc(), Post.id.desc()).offset(offset).limit(batch_size).all()
    return [row[0] for row in rows]


def run_merge_sweep(
    session_factory: Callable[[], Session] = SessionLocal,
    *,
    llm: Optional[LLMService] = None,
    force: bool = False,
    max_posts: Optional[int] = None,
    dry_run: bool = False,
    batch_size: Optional[int] = None,
    post_delay_seconds: Optional[float] = None,
    stale_after_hours: Optional[float] = None,
    now: Optional[datetime] = None,
    sleep: Callable[[float], None] = time.sleep,
    heartbeat: Optional[Callable[[], None]] = None,
) -> dict:
    """
    Check every post whose merge check is missing or stale.

    Args:
        force: Re-check all eligible posts regardless of ``merge_checked_at``
        max_posts: Stop after this many posts
        dry_run: Search and assess but write nothing
        now: Sweep clock; the stale cutoff, check stamps and expiry all use it
        heartbeat: Called after each page (the Celery task renews its Redis lock)

    Returns:
        Summary dict; ``status`` is ``"skipped"`` when another sweep is running
        or no LLM provider is configured.
    """
    if not _sweep_lock.acquire(blocking=False):
        logger.info("Merge sweep already running in this process; skipping")
        return {"status": "skipped", "reason": "already_running"}

    try:
        llm = llm or get_llm_service()
        if llm is None:
            logger.info("No LLM provider configured; merge sweep skipped")
            return {"status": "skipped", "reason": "llm_not_configured"}

        batch_size = batch_size or settings.merge_sweep_batch_size
        if post_delay_seconds is None:
            post_delay_seconds = settings.merge_sweep_post_delay_seconds
        if stale_after_hours is None:
            stale_after_hours = settings.merge_stale_after_hours
        now = now or utcnow()
        cutoff = hours_ago(stale_after_hours, now)

        # Checks that stamp drop out of the stale set, so normal sweeps always
        # read the first page. Force and dry-run sweeps leave the set unchanged
        # and page by offset instead.
        use_offset = force or dry_run

        stats = {
            "status": "completed",
            "dry_run": dry_run,
            "force": force,
            "processed": 0,
            "checked": 0,
            "suggestions_created": 0,
            "skipped": 0,
            "failed": 0,
            "failed_post_ids": [],
            "expired": 0,
        }
        exclude_ids: set[int] = set()
        offset = 0
        started = time.time()

        logger.info("=" * 60)
        logger.info(
            "Merge sweep starting (dry_run=%s, force=%s, max_posts=%s, batch_size=%d)",
            dry_run,
            force,
            max_posts,
            batch_size,
        )
        logger.info("=" * 60)

        db = session_factory()
        try:
            done = False
            while not done:
                page = _sweep_page(
                    db,
                    cutoff=cutoff,
                    force=force,
                    exclude_ids=exclude_ids,
                    offset=offset,
                    batch_size=batch_size,
                )
                if not page:
                    break
                if use_offset:
                    offset += len(page)

                for post_id in page:
                    if max_posts is not None and stats["processed"] >= max_posts:
                        done = True
                        break
                    if stats["processed"] > 0 and post_delay_seconds > 0:
                        sleep(post_delay_seconds)
                    stats["processed"] += 1

                    try:
                        result = check_post_for_merge_candidates(
                            db, post_id, llm=llm, dry_run=dry_run, now=now
                        )
                    except SoftTimeLimitExceeded:
                        raise
                    except Exception as e:
                        logger.error("Merge check failed for post %s: %s", post_id, e, exc_info=True)
                        safe_rollback(db)
                        stats["failed"] += 1
                        stats["failed_post_ids"].append(post_id)
                        if not use_offset:
                            exclude_ids.add(post_id)
                        continue

                    if result["checked"]:
                        stats["checked"] += 1
                    elif not use_offset:
                        # Unstamped post would come back on the next page
                        exclude_ids.add(post_id)
                    if result["status"] == "skipped":
                        stats["skipped"] += 1
                    if result["suggestion_created"]:
                        stats["suggestions_created"] += 1

                if stats["processed"] and stats["processed"] % batch_size == 0:
                    logger.info(
                        "Merge sweep progress: %d processed, %d suggestions, %d failed",
                        stats["processed"],
                        stats["suggestions_created"],
                        stats["failed"],
                    )
                if heartbeat is not None:
                    heartbeat()

            if not dry_run:
                stats["expired"] = expire_stale_merge_suggestions(db, now=now)
        finally:
            db.close()

        stats["duration_seconds"] = round(time.time() - started, 2)
        logger.info("=" * 60)
        logger.info(
            "Merge sweep complete: %d processed, %d checked, %d suggestions, %d failed, %d expired (%.1fs)",
            stats["processed"],
            stats["checked"],
            stats["suggestions_created"],
            stats["failed"],
            stats["expired"],
            stats["duration_seconds"],
        )
        logger.info("=" * 60)
        return stats
    finally:
        _sweep_lock.release()
