"""Value objects for duplicate-post detection and merge suggestions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass(frozen=True)
class FusionPolicy:
    """Thresholds and weights used to fuse vector and full-text scores."""

    vector_threshold: float = 0.35
    hybrid_threshold: float = 0.4
    fts_weight: float = 0.3
    fts_scale: float = 2.0
    limit: int = 5

    @property
    def fetch_limit(self) -> int:
        """Rows requested from each search leg before fusion."""
        return max(1, self.limit) * 2


@dataclass(frozen=True)
class PostRanking:
    """The fields that decide which of two duplicate posts is kept."""

    id: int
    vote_count: int
    comment_count: int
    created_at: datetime


@dataclass(frozen=True)
class MergeDirection:
    """Source is merged away INTO target."""

    source_post_id: int
    target_post_id: int


@dataclass(frozen=True)
class SourcePost:
    """Post being checked for duplicates, as presented to the LLM."""

    id: int
    title: str
    content: str


@dataclass(frozen=True)
class ScoredMatch:
    """One row returned by a single search leg (vector or full-text)."""

    post_id: int
    title: str
    content: str
    vote_count: int
    comment_count: int
    created_at: datetime
    score: float


@dataclass
class MergeCandidate:
    """Post that may duplicate the source post, with per-signal and fused scores."""

    post_id: int
    title: str
    content: str
    vote_count: int
    comment_count: int
    created_at: datetime
    vector_score: float = 0.0
    fts_score: float = 0.0
    hybrid_score: float = 0.0

    @classmethod
    def from_match(cls, match: ScoredMatch) -> "MergeCandidate":
        return cls(
            post_id=match.post_id,
            title=match.title,
            content=match.content,
            vote_count=match.vote_count,
            comment_count=match.comment_count,
            created_at=match.created_at,
        )

    def ranking(self) -> PostRanking:
        return PostRanking(
            id=self.post_id,
            vote_count=self.vote_count,
            comment_count=self.comment_count,
            created_at=self.created_at,
        )


@dataclass(frozen=True)
class MergeAssessment:
    """LLM-confirmed duplicate verdict for one candidate."""

    candidate_post_id: int
    confidence: float
    reasoning: str


class PayloadShape(str, Enum):
    """Recognized top-level shapes of the LLM verdict JSON."""

    ARRAY = "array"
    RESULTS_ENVELOPE = "results_envelope"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class DecodedAssessmentPayload:
    """Tagged decode result: the shape that matched and its verdict items."""

    shape: PayloadShape
    items: tuple = ()
    error: str | None = None

    @property
    def recognized(self) -> bool:
        return self.shape is not PayloadShape.UNRECOGNIZED
