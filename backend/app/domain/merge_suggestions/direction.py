"""Which of two duplicate posts survives a merge."""

from __future__ import annotations

from .models import MergeDirection, PostRanking


def _keep_key(post: PostRanking) -> tuple:
    # Larger key wins: more votes, more comments, older, lower id.
    return (post.vote_count, post.comment_count, -post.created_at.timestamp(), -post.id)


def determine_direction(post_a: PostRanking, post_b: PostRanking) -> MergeDirection:
    """
    Return the merge direction for two posts.

    The target (kept) post is the one with more votes; ties fall back to more
    comments, then the older ``created_at``, then the lower post id. The order
    of the arguments never changes the outcome.
    """
    if _keep_key(post_a) >= _keep_key(post_b):
        return MergeDirection(source_post_id=post_b.id, target_post_id=post_a.id)
    return MergeDirection(source_post_id=post_a.id, target_post_id=post_b.id)
