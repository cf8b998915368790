"""
Merge Candidate Search

Hybrid duplicate search for a single post:
1. Vector leg: cosine similarity of post embeddings (pgvector)
2. Text leg: ts_rank of the post title against a weighted title/content tsvector
3. Fusion of both legs into a single hybrid score (see domain.merge_suggestions.scoring)

PostgreSQL runs both legs in SQL. Other dialects (SQLite for local dev and
tests) apply the same filters in SQL and score in Python.
"""
import logging
import re
from typing import Optional, Sequence

import numpy as np
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..database import is_postgres
from ..domain.merge_suggestions import FusionPolicy, MergeCandidate, ScoredMatch, fuse_candidate_scores
from ..models.feedback import Post

logger = logging.getLogger(__name__)

TS_CONFIG = "english"

# Relative weights of tsvector classes A (title) and B (content), as ts_rank applies them
_TITLE_WEIGHT = 1.0
_CONTENT_WEIGHT = 0.4
_RANK_SCALE = 0.1

_TOKEN_RE = re.compile(r"[a-z0-9]+")

_STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "can", "do", "for", "from",
    "has", "have", "i", "if", "in", "into", "is", "it", "its", "me", "my", "no", "not",
    "of", "on", "or", "our", "so", "that", "the", "their", "then", "there", "these",
    "this", "to", "was", "we", "when", "where", "which", "will", "with", "would", "you",
})

_CANDIDATE_COLUMNS = (
    Post.id,
    Post.title,
    Post.content,
    Post.vote_count,
    Post.comment_count,
    Post.created_at,
)


def fusion_policy_from_settings(limit: Optional[int] = None) -> FusionPolicy:
    return FusionPolicy(
        vector_threshold=settings.merge_vector_threshold,
        hybrid_threshold=settings.merge_hybrid_threshold,
        fts_weight=settings.merge_fts_weight,
        limit=settings.merge_candidate_limit if limit is None else limit,
    )


def _eligible_candidate_filters(source_post_id: int) -> list:
    """Candidates must be live, unmerged, embedded and not the source post."""
    return [
        Post.id != source_post_id,
        Post.deleted_at.is_(None),
        Post.canonical_post_id.is_(None),
        Post.embedding.isnot(None),
    ]


def _weighted_search_vector():
    title_vector = func.setweight(func.to_tsvector(TS_CONFIG, func.coalesce(Post.title, "")), "A")
    content_vector = func.setweight(func.to_tsvector(TS_CONFIG, func.coalesce(Post.content, "")), "B")
    return title_vector.op("||")(content_vector)


def _to_match(row, score: float) -> ScoredMatch:
    return ScoredMatch(
        post_id=row.id,
        title=row.title,
        content=row.content or "",
        vote_count=row.vote_count or 0,
        comment_count=row.comment_count or 0,
        created_at=row.created_at,
        score=float(score),
    )


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------


def _pg_vector_matches(
    db: Session,
    post_id: int,
    embedding: Sequence[float],
    policy: FusionPolicy,
) -> list[ScoredMatch]:
    distance = Post.embedding.cosine_distance(embedding)
    similarity = (1 - distance).label("vector_score")
    rows = db.query(*_CANDIDATE_COLUMNS, similarity).filter(
        *_eligible_candidate_filters(post_id),
        similarity >= policy.vector_threshold,
    ).order_by(distance.asc(), Post.id.asc()).limit(policy.fetch_limit).all()
    return [_to_match(row, row.vector_score) for row in rows]


def _pg_text_matches(
    db: Session,
    post_id: int,
    title: str,
    policy: FusionPolicy,
) -> list[ScoredMatch]:
    ts_query = func.plainto_tsquery(TS_CONFIG, title)
    search_vector = _weighted_search_vector()
    rank = func.ts_rank(search_vector, ts_query).label("fts_rank")
    rows = db.query(*_CANDIDATE_COLUMNS, rank).filter(
        *_eligible_candidate_filters(post_id),
        search_vector.op("@@")(ts_query),
    ).order_by(rank.desc(), Post.id.asc()).limit(policy.fetch_limit).all()
    return [_to_match(row, row.fts_rank) for row in rows]


# ---------------------------------------------------------------------------
# Portable fallback
# ---------------------------------------------------------------------------


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def _query_terms(text: str) -> set[str]:
    return {t for t in _TOKEN_RE.findall((text or "").lower()) if t not in _STOPWORDS}


def text_rank(query: str, title: str, content: str) -> float:
    """
    Approximate ``ts_rank`` for a plain (AND) query.

    Every query term must appear in the title or content, as with ``@@``;
    otherwise the rank is 0. Title hits weigh more than content hits.
    """
    terms = _query_terms(query)
    if not terms:
        return 0.0
    title_terms = _query_terms(title)
    content_terms = _query_terms(content)

    total = 0.0
    for term in terms:
        if term in title_terms:
            total += _TITLE_WEIGHT
        elif term in content_terms:
            total += _CONTENT_WEIGHT
        else:
            return 0.0
    return _RANK_SCALE * total / len(terms)


def _fallback_matches(
    db: Session,
    post_id: int,
    title: str,
    embedding: Sequence[float],
    policy: FusionPolicy,
) -> tuple[list[ScoredMatch], list[ScoredMatch]]:
    rows = db.query(*_CANDIDATE_COLUMNS, Post.embedding).filter(
        *_eligible_candidate_filters(post_id),
    ).all()

    vector_matches: list[ScoredMatch] = []
    text_matches: list[ScoredMatch] = []
    for row in rows:
        if row.embedding is None:
            continue
        similarity = cosine_similarity(embedding, row.embedding)
        if similarity >= policy.vector_threshold:
            vector_matches.append(_to_match(row, similarity))
        rank = text_rank(title, row.title, row.content)
        if rank > 0:
            text_matches.append(_to_match(row, rank))

    vector_matches.sort(key=lambda m: (-m.score, m.post_id))
    text_matches.sort(key=lambda m: (-m.score, m.post_id))
    return vector_matches[: policy.fetch_limit], text_matches[: policy.fetch_limit]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def find_merge_candidates(
    db: Session,
    post_id: int,
    *,
    title: Optional[str] = None,
    embedding: Optional[Sequence[float]] = None,
    limit: Optional[int] = None,
    policy: Optional[FusionPolicy] = None,
) -> list[MergeCandidate]:
    """
    Find posts that may duplicate ``post_id``.

    Args:
        title: Source title, when already loaded by the caller
        embedding: Source embedding, when already loaded by the caller
        limit: Maximum candidates returned (defaults to settings.merge_candidate_limit)

    Returns:
        Candidates ordered by hybrid score, empty when the post has no embedding
    """
    policy = policy or fusion_policy_from_settings(limit)

    if title is None or embedding is None:
        post = db.query(Post.title, Post.embedding).filter(Post.id == post_id).first()
        if post is None:
            return []
        title = post.title if title is None else title
        embedding = post.embedding if embedding is None else embedding

    if embedding is None or len(embedding) == 0:
        return []

    if is_postgres(db):
        vector_matches = _pg_vector_matches(db, post_id, embedding, policy)
        text_matches = _pg_text_matches(db, post_id, title or "", policy)
    else:
        vector_matches, text_matches = _fallback_matches(db, post_id, title or "", embedding, policy)

    candidates = fuse_candidate_scores(vector_matches, text_matches, policy)
    logger.debug(
        "Post %s: %d vector / %d text matches -> %d candidates",
        post_id,
        len(vector_matches),
        len(text_matches),
        len(candidates),
    )
    return candidates
