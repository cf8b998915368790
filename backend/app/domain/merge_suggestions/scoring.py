"""Pure score-fusion and selection rules for merge candidates.

All functions are pure: no I/O, no side effects, fully deterministic.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from .models import FusionPolicy, MergeAssessment, MergeCandidate, ScoredMatch


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def normalize_fts_rank(rank: float, scale: float = 2.0) -> float:
    """Scale a raw text rank into [0, 1]."""
    return _clamp_unit(float(rank) * scale)


def hybrid_score(vector_score: float, fts_score: float, fts_weight: float = 0.3) -> float:
    """Fuse the two signals. Without a text match the vector score stands alone."""
    if fts_score > 0:
        return _clamp_unit(vector_score + fts_score * fts_weight)
    return _clamp_unit(vector_score)


def fuse_candidate_scores(
    vector_matches: Iterable[ScoredMatch],
    fts_matches: Iterable[ScoredMatch],
    policy: FusionPolicy | None = None,
) -> list[MergeCandidate]:
    """
    Merge vector and full-text rows by post id into ranked candidates.

    Vector scores are cosine similarities; full-text scores are raw ranks and
    are normalized here. Rows under the hybrid threshold are dropped and the
    rest are ordered by hybrid score (post id breaks ties) and truncated to
    ``policy.limit``.
    """
    policy = policy or FusionPolicy()
    by_post: dict[int, MergeCandidate] = {}

    for match in vector_matches:
        candidate = MergeCandidate.from_match(match)
        candidate.vector_score = _clamp_unit(match.score)
        by_post[match.post_id] = candidate

    for match in fts_matches:
        normalized = normalize_fts_rank(match.score, policy.fts_scale)
        existing = by_post.get(match.post_id)
        if existing is not None:
            existing.fts_score = normalized
            continue
        candidate = MergeCandidate.from_match(match)
        candidate.fts_score = normalized
        by_post[match.post_id] = candidate

    kept: list[MergeCandidate] = []
    for candidate in by_post.values():
        candidate.hybrid_score = hybrid_score(
            candidate.vector_score,
            candidate.fts_score,
            policy.fts_weight,
        )
        if candidate.hybrid_score >= policy.hybrid_threshold:
            kept.append(candidate)

    kept.sort(key=lambda c: (-c.hybrid_score, c.post_id))
    return kept[: max(0, policy.limit)]


def select_best_match(
    assessments: Sequence[MergeAssessment],
    candidates: Sequence[MergeCandidate],
) -> tuple[MergeAssessment, MergeCandidate] | None:
    """
    Pick the single best confirmed duplicate.

    Highest LLM confidence wins; hybrid score breaks ties. Assessments that do
    not name a known candidate are ignored.
    """
    by_id = {candidate.post_id: candidate for candidate in candidates}
    paired = [
        (assessment, by_id[assessment.candidate_post_id])
        for assessment in assessments
        if assessment.candidate_post_id in by_id
    ]
    if not paired:
        return None
    paired.sort(key=lambda pair: (-pair[0].confidence, -pair[1].hybrid_score, pair[1].post_id))
    return paired[0]
