"""Decoding of the LLM duplicate-verdict payload.

The model is asked for a JSON array, but JSON-object response formats make
some providers wrap it as ``{"results": [...]}``. Both shapes are accepted and
everything else is reported as unrecognized rather than raised.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable

from .models import DecodedAssessmentPayload, MergeAssessment, PayloadShape

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    return _FENCE_RE.sub("", (text or "").strip()).strip()


def decode_assessment_payload(text: str | None) -> DecodedAssessmentPayload:
    """Parse the raw model response into a tagged payload."""
    cleaned = strip_code_fences(text or "")
    if not cleaned:
        return DecodedAssessmentPayload(PayloadShape.UNRECOGNIZED, error="empty response")

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        return DecodedAssessmentPayload(PayloadShape.UNRECOGNIZED, error=f"invalid JSON: {e}")

    if isinstance(parsed, list):
        return DecodedAssessmentPayload(PayloadShape.ARRAY, items=tuple(parsed))
    if isinstance(parsed, dict) and isinstance(parsed.get("results"), list):
        return DecodedAssessmentPayload(PayloadShape.RESULTS_ENVELOPE, items=tuple(parsed["results"]))
    return DecodedAssessmentPayload(
        PayloadShape.UNRECOGNIZED,
        error=f"unexpected top-level type {type(parsed).__name__}",
    )


def _coerce_post_id(value: Any) -> int | None:
    # Post ids are integers; models sometimes echo them back as strings.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def select_confirmed_duplicates(
    items: Iterable[Any],
    candidate_ids: Iterable[int],
    threshold: float = 0.75,
) -> list[MergeAssessment]:
    """
    Keep only verdicts that confirm a duplicate of a known candidate.

    An item survives when ``isDuplicate`` is literally true, ``confidence`` is a
    number at or above ``threshold`` and ``candidatePostId`` names one of the
    candidates that were sent. Each candidate is kept at most once.
    """
    allowed = set(candidate_ids)
    seen: set[int] = set()
    confirmed: list[MergeAssessment] = []

    for item in items:
        if not isinstance(item, dict):
            continue
        if item.get("isDuplicate") is not True:
            continue
        confidence = item.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            continue
        if confidence < threshold:
            continue
        post_id = _coerce_post_id(item.get("candidatePostId"))
        if post_id is None or post_id not in allowed or post_id in seen:
            continue
        reasoning = item.get("reasoning")
        seen.add(post_id)
        confirmed.append(
            MergeAssessment(
                candidate_post_id=post_id,
                confidence=float(confidence),
                reasoning=reasoning if isinstance(reasoning, str) else "",
            )
        )

    return confirmed
