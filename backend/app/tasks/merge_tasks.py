"""
Celery tasks for duplicate-post detection.

Provides background tasks for:
- Post embedding refresh (followed by a merge check)
- Per-post merge checks (post create/update hook)
- Periodic merge sweep over stale posts

Recommended scheduling:
- Merge sweep: hourly via Celery beat (merge_sweep_interval_minutes)
"""
import logging
from datetime import datetime
import time
from uuid import uuid4

from celery.exceptions import SoftTimeLimitExceeded

from ..celery_app import celery_app
from ..config import settings
from ..database import SessionLocal
from ..services.redis_pool import get_redis_client

logger = logging.getLogger(__name__)

_MERGE_SWEEP_LOCK_KEY = "merge_suggestions:sweep:lock"
_LOCK_RELEASE_LUA = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""
_LOCK_EXTEND_LUA = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('expire', KEYS[1], ARGV[2])
end
return 0
"""


def _acquire_merge_sweep_lock(task_id: str) -> tuple[object | None, str | None]:
    client = get_redis_client()
    if client is None:
        return None, None
    token = f"{task_id}:{uuid4().hex}"
    acquired = client.set(
        _MERGE_SWEEP_LOCK_KEY,
        token,
        nx=True,
        ex=settings.merge_sweep_lock_ttl_seconds,
    )
    if acquired:
        return client, token
    return client, None


def _release_merge_sweep_lock(client, token: str) -> None:
    if client is None or not token:
        return
    try:
        client.eval(_LOCK_RELEASE_LUA, 1, _MERGE_SWEEP_LOCK_KEY, token)
    except Exception as exc:
        logger.warning("Failed to release merge sweep lock: %s", exc)


def _extend_merge_sweep_lock(client, token: str) -> bool:
    """Reset the lock TTL if this sweep still owns it."""
    try:
        extended = client.eval(
            _LOCK_EXTEND_LUA,
            1,
            _MERGE_SWEEP_LOCK_KEY,
            token,
            settings.merge_sweep_lock_ttl_seconds,
        )
    except Exception as exc:
        logger.warning("Failed to extend merge sweep lock: %s", exc)
        return False
    if not extended:
        logger.warning("Merge sweep lock was lost before renewal (token %s)", token)
        return False
    return True


@celery_app.task(name='app.tasks.merge_tasks.check_post_merge_candidates')
def check_post_merge_candidates(post_id: int):
    """
    Check a single post for duplicates and record at most one merge suggestion.

    Enqueued when a post is created or its content changes (after its
    embedding is refreshed).
    """
    from ..services.merge_check_service import check_post_for_merge_candidates

    db = SessionLocal()
    start_time = time.time()

    try:
        result = check_post_for_merge_candidates(db, post_id)
        duration = time.time() - start_time
        logger.info(
            "Merge check for post %s: %s (candidates=%d, confirmed=%d, created=%s) in %.2fs",
            post_id,
            result["status"],
            result["candidates"],
            result["confirmed"],
            result["suggestion_created"],
            duration,
        )
        return {
            **result,
            'post_id': post_id,
            'duration_seconds': round(duration, 2),
            'timestamp': datetime.now().isoformat()
        }

    except Exception as e:
        db.rollback()
        logger.error(f"Error in merge check task for post {post_id}: {e}", exc_info=True)
        return {
            'error': str(e),
            'post_id': post_id,
            'timestamp': datetime.now().isoformat()
        }

    finally:
        db.close()


@celery_app.task(name='app.tasks.merge_tasks.refresh_post_embedding')
def refresh_post_embedding(post_id: int, check_duplicates: bool = True):
    """
    Embed a post and, when that succeeds, queue its merge check.
    """
    from ..services.post_embedding_service import refresh_post_embedding as _refresh

    db = SessionLocal()

    try:
        stored = _refresh(db, post_id)
        queued = False
        if stored and check_duplicates:
            check_post_merge_candidates.delay(post_id)
            queued = True
        return {
            'post_id': post_id,
            'embedded': stored,
            'merge_check_queued': queued,
            'timestamp': datetime.now().isoformat()
        }

    except Exception as e:
        db.rollback()
        logger.error(f"Error embedding post {post_id}: {e}", exc_info=True)
        return {
            'error': str(e),
            'post_id': post_id,
            'timestamp': datetime.now().isoformat()
        }

    finally:
        db.close()


@celery_app.task(bind=True, name='app.tasks.merge_tasks.sweep_merge_candidates')
def sweep_merge_candidates(self, force: bool = False, dry_run: bool = False, max_posts: int | None = None):
    """
    Check every post whose merge check is missing or stale, then expire
    old pending suggestions.

    Only one sweep runs at a time across workers (Redis lock).
    """
    logger.info("=" * 60)
    logger.info(f"TASK: Merge Suggestion Sweep (force={force}, dry_run={dry_run}, max_posts={max_posts})")
    logger.info("=" * 60)

    from ..services.merge_check_service import run_merge_sweep

    task_id = getattr(getattr(self, "request", None), "id", None) or "unknown"
    lock_client, lock_token = _acquire_merge_sweep_lock(task_id)
    if lock_client is None:
        logger.warning("Redis unavailable; cannot enforce single merge sweep across workers")
        return {
            "status": "skipped",
            "reason": "lock_unavailable",
            "timestamp": datetime.now().isoformat(),
        }
    if lock_token is None:
        try:
            holder = lock_client.get(_MERGE_SWEEP_LOCK_KEY)
        except Exception:
            holder = None
        holder_display = holder.decode() if isinstance(holder, (bytes, bytearray)) else str(holder or "")
        logger.info("Skipping merge sweep because lock is already held (%s)", holder_display)
        return {
            "status": "skipped",
            "reason": "lock_held",
            "holder": holder_display,
            "timestamp": datetime.now().isoformat(),
        }

    try:
        result = run_merge_sweep(
            SessionLocal,
            force=force,
            dry_run=dry_run,
            max_posts=max_posts,
            heartbeat=lambda: _extend_merge_sweep_lock(lock_client, lock_token),
        )
        return {
            **result,
            'timestamp': datetime.now().isoformat()
        }

    except SoftTimeLimitExceeded:
        logger.error("Merge sweep stopped at the soft time limit")
        return {
            'status': 'timed_out',
            'error': 'soft time limit exceeded',
            'timestamp': datetime.now().isoformat()
        }

    except Exception as e:
        logger.error(f"Error in merge sweep task: {e}", exc_info=True)
        return {
            'error': str(e),
            'timestamp': datetime.now().isoformat()
        }

    finally:
        _release_merge_sweep_lock(lock_client, lock_token)
