"""Pure domain logic for duplicate-post detection and merge suggestions."""

from .direction import determine_direction
from .models import (
    DecodedAssessmentPayload,
    FusionPolicy,
    MergeAssessment,
    MergeCandidate,
    MergeDirection,
    PayloadShape,
    PostRanking,
    ScoredMatch,
    SourcePost,
)
from .payload import decode_assessment_payload, select_confirmed_duplicates, strip_code_fences
from .scoring import fuse_candidate_scores, hybrid_score, normalize_fts_rank, select_best_match

__all__ = [
    "DecodedAssessmentPayload",
    "FusionPolicy",
    "MergeAssessment",
    "MergeCandidate",
    "MergeDirection",
    "PayloadShape",
    "PostRanking",
    "ScoredMatch",
    "SourcePost",
    "decode_assessment_payload",
    "determine_direction",
    "fuse_candidate_scores",
    "hybrid_score",
    "normalize_fts_rank",
    "select_best_match",
    "select_confirmed_duplicates",
    "strip_code_fences",
]
