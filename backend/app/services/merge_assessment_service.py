"""
Merge Assessment Service

Asks an LLM which search candidates are true duplicates of a source post.
Failures never propagate: any LLM, transport or parsing problem is logged and
treated as "no duplicates found".
"""
import logging
from typing import Optional, Sequence

from ..config import settings
from ..domain.merge_suggestions import (
    MergeAssessment,
    MergeCandidate,
    SourcePost,
    decode_assessment_payload,
    select_confirmed_duplicates,
)
from .llm import LLMError, LLMService

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a duplicate-detection assistant for a customer feedback platform.
You will be given a source post and a list of candidate posts. For each candidate, determine whether it is truly a DUPLICATE, meaning they request the exact same thing, just worded differently.

Return strict JSON only, an array of objects:
[
  {
    "candidatePostId": "string",
    "isDuplicate": boolean,
    "confidence": number,
    "reasoning": "string"
  }
]

Rules:
- A TRUE duplicate means the posts request the EXACT SAME feature, fix, or change. If merged into one post, every voter on both posts would agree they wanted the same thing.
- "confidence" is 0-1 where 1 means certain duplicate.
- "reasoning" should be 1 sentence explaining your determination.
- Be VERY conservative: when in doubt, mark isDuplicate as false.
- NOT duplicates: posts about the same product/area but different features, posts with overlapping keywords but different actual requests, posts that are merely related or in the same category.
- Example: "Add Amazon Japan marketplace" and "Amazon Japan integration" ARE duplicates (same request). "Add Amazon Japan" and "Simplified Amazon Upload" are NOT (different features on the same platform)."""


def truncate(text: Optional[str], max_len: int) -> str:
    text = text or ""
    return text[:max_len] + "..." if len(text) > max_len else text


def build_user_prompt(
    source_post: SourcePost,
    candidates: Sequence[MergeCandidate],
    max_chars: Optional[int] = None,
) -> str:
    """Render the source post followed by every candidate."""
    if max_chars is None:
        max_chars = settings.merge_content_max_chars

    prompt = (
        f"## Source Post\nID: {source_post.id}\nTitle: {source_post.title}\n"
        f"Content: {truncate(source_post.content, max_chars)}\n\n## Candidates\n"
    )
    for c in candidates:
        prompt += f"\n### Candidate\nID: {c.post_id}\nTitle: {c.title}\nContent: {truncate(c.content, max_chars)}\n"
    return prompt


def get_llm_service() -> Optional[LLMService]:
    """Build the assessment client, or None when no provider is configured."""
    if not settings.llm_configured:
        return None
    try:
        return LLMService(use_case="merge_assessment")
    except Exception as e:
        logger.warning("LLMService initialization failed: %s", e)
        return None


def assess_merge_candidates(
    source_post: SourcePost,
    candidates: Sequence[MergeCandidate],
    *,
    llm: Optional[LLMService] = None,
) -> list[MergeAssessment]:
    """
    Return the candidates the LLM confirms as duplicates of ``source_post``.

    Only verdicts with ``isDuplicate`` true and confidence at or above
    ``settings.merge_llm_confidence_threshold`` are kept.
    """
    if not candidates:
        return []

    llm = llm or get_llm_service()
    if llm is None:
        logger.warning("No LLM provider configured; skipping assessment for post %s", source_post.id)
        return []

    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_prompt(source_post, candidates)},
    ]

    try:
        response = llm.completion(
            messages=messages,
            temperature=settings.merge_assessment_temperature,
            max_tokens=settings.merge_assessment_max_tokens,
            response_format={"type": "json_object"},
        )
        response_text = LLMService.extract_content(response)
    except LLMError as e:
        logger.error("LLM error assessing post %s (%d candidates): %s", source_post.id, len(candidates), e)
        return []
    except Exception as e:
        logger.error("Error assessing post %s: %s", source_post.id, e, exc_info=True)
        return []

    payload = decode_assessment_payload(response_text)
    if not payload.recognized:
        logger.warning(
            "Unusable assessment response for post %s: %s (response: %s)",
            source_post.id,
            payload.error,
            (response_text or "empty")[:200],
        )
        return []

    confirmed = select_confirmed_duplicates(
        payload.items,
        [c.post_id for c in candidates],
        threshold=settings.merge_llm_confidence_threshold,
    )
    logger.info(
        "Post %s: %d/%d candidates confirmed as duplicates (shape=%s)",
        source_post.id,
        len(confirmed),
        len(candidates),
        payload.shape.value,
    )
    return confirmed
