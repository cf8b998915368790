"""
API endpoints for merge suggestions.

Provides access to:
- The pending merge-suggestion review queue
- Accept / dismiss actions
- Per-post duplicate checks and the background sweep
- Post merge state (merge info, unmerge)
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...models.feedback import Post
from ...schemas.merge_suggestion import (
    AcceptMergeSuggestionResponse,
    DismissMergeSuggestionResponse,
    MergeSuggestionActionRequest,
    MergeSuggestionsResponse,
    PostMergeSuggestionsResponse,
    TaskQueuedResponse,
)
from ...services.merge_suggestion_service import (
    MergeSuggestionNotFoundError,
    accept_merge_suggestion,
    dismiss_merge_suggestion,
    get_merge_suggestion,
    get_pending_merge_suggestions,
    get_pending_suggestions_for_post,
)
from ...services.post_merge_service import (
    AlreadyMergedError,
    InvalidMergeError,
    PostNotFoundError,
    get_post_merge_info,
    unmerge_post,
)

logger = logging.getLogger(__name__)
router = APIRouter()


# ==================== Review queue ====================

@router.get("/merge-suggestions", response_model=MergeSuggestionsResponse)
async def list_merge_suggestions(
    sort: str = Query("newest", pattern="^(newest|similarity|confidence)$"),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db)
):
    """
    Get pending merge suggestions.

    Sort by newest (default), similarity (hybrid score) or confidence (LLM).
    """
    return get_pending_merge_suggestions(db, sort=sort, limit=limit)


@router.post("/merge-suggestions/sweep", response_model=TaskQueuedResponse)
async def queue_merge_sweep(
    force: bool = Query(False, description="Re-check all posts regardless of last check time"),
    dry_run: bool = Query(False, description="Search and assess without writing suggestions"),
):
    """Queue a merge sweep over posts with a missing or stale check."""
    from ...tasks.merge_tasks import sweep_merge_candidates

    task = sweep_merge_candidates.delay(force=force, dry_run=dry_run)
    return TaskQueuedResponse(
        task_id=task.id,
        status="queued",
        message=f"Merge sweep queued (force={force}, dry_run={dry_run})",
    )


@router.post("/merge-suggestions/{suggestion_id}/accept", response_model=AcceptMergeSuggestionResponse)
async def accept_suggestion(
    suggestion_id: int,
    request: MergeSuggestionActionRequest,
    db: Session = Depends(get_db)
):
    """
    Accept a merge suggestion.

    The source post is merged INTO the target post and every other pending
    suggestion involving either post is dismissed.
    """
    try:
        return accept_merge_suggestion(db, suggestion_id, request.principal_id)
    except MergeSuggestionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PostNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidMergeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AlreadyMergedError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/merge-suggestions/{suggestion_id}/dismiss", response_model=DismissMergeSuggestionResponse)
async def dismiss_suggestion(
    suggestion_id: int,
    request: MergeSuggestionActionRequest,
    db: Session = Depends(get_db)
):
    """Dismiss a merge suggestion. Already-resolved suggestions are left unchanged."""
    if get_merge_suggestion(db, suggestion_id) is None:
        raise HTTPException(status_code=404, detail="Merge suggestion not found")

    dismissed = dismiss_merge_suggestion(db, suggestion_id, request.principal_id)
    return DismissMergeSuggestionResponse(suggestion_id=suggestion_id, dismissed=dismissed)


# ==================== Posts ====================

@router.get("/posts/{post_id}/merge-suggestions", response_model=PostMergeSuggestionsResponse)
async def list_post_merge_suggestions(
    post_id: int,
    db: Session = Depends(get_db)
):
    """Pending merge suggestions where the post is source or target."""
    if db.query(Post.id).filter(Post.id == post_id).first() is None:
        raise HTTPException(status_code=404, detail="Post not found")

    suggestions = get_pending_suggestions_for_post(db, post_id)
    return PostMergeSuggestionsResponse(
        post_id=post_id,
        total=len(suggestions),
        suggestions=suggestions,
    )


@router.post("/posts/{post_id}/merge-check", response_model=TaskQueuedResponse)
async def queue_post_merge_check(
    post_id: int,
    db: Session = Depends(get_db)
):
    """Queue a duplicate check for a single post."""
    if db.query(Post.id).filter(Post.id == post_id).first() is None:
        raise HTTPException(status_code=404, detail="Post not found")

    from ...tasks.merge_tasks import check_post_merge_candidates

    task = check_post_merge_candidates.delay(post_id)
    return TaskQueuedResponse(
        task_id=task.id,
        status="queued",
        message=f"Merge check queued for post {post_id}",
    )


@router.get("/posts/{post_id}/merge-info")
async def post_merge_info(
    post_id: int,
    db: Session = Depends(get_db)
):
    """Merge state of a post: canonical target (if merged) and merged duplicates."""
    info = get_post_merge_info(db, post_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return info


@router.post("/posts/{post_id}/unmerge")
async def unmerge(
    post_id: int,
    request: MergeSuggestionActionRequest,
    db: Session = Depends(get_db)
):
    """Detach a merged post from its canonical post."""
    try:
        return unmerge_post(db, post_id, request.principal_id)
    except PostNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidMergeError as e:
        raise HTTPException(status_code=400, detail=str(e))
