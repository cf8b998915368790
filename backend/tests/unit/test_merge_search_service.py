"""Tests for hybrid merge-candidate search (SQLite fallback path)."""

from __future__ import annotations

from datetime import datetime

import pytest

from app.domain.merge_suggestions import FusionPolicy
from app.services.merge_search_service import (
    cosine_similarity,
    find_merge_candidates,
    text_rank,
)

SOURCE_VEC = [1.0, 0.0, 0.0]
NEAR_VEC = [0.9, 0.1, 0.0]  # cosine ~0.994
MID_VEC = [0.6, 0.8, 0.0]  # cosine 0.6
FAR_VEC = [0.0, 0.0, 1.0]  # cosine 0.0


def test_returns_similar_posts_ordered_by_hybrid_score(make_post, db_session):
    source = make_post("Dark mode", embedding=SOURCE_VEC)
    near = make_post("Night theme", embedding=NEAR_VEC)
    mid = make_post("Color settings", embedding=MID_VEC)
    make_post("Export to CSV", embedding=FAR_VEC)

    result = find_merge_candidates(db_session, source.id)

    assert [c.post_id for c in result] == [near.id, mid.id]
    assert result[0].vector_score == pytest.approx(cosine_similarity(SOURCE_VEC, NEAR_VEC))
    assert all(0.0 <= c.hybrid_score <= 1.0 for c in result)


def test_text_match_boosts_hybrid_score(make_post, db_session):
    source = make_post("Dark mode support", embedding=SOURCE_VEC)
    titled = make_post("Dark mode support please", embedding=MID_VEC)
    untitled = make_post("Color settings", embedding=MID_VEC)

    result = {c.post_id: c for c in find_merge_candidates(db_session, source.id)}

    assert result[titled.id].fts_score > 0
    assert result[titled.id].hybrid_score > result[untitled.id].hybrid_score
    assert result[untitled.id].fts_score == 0.0
    assert result[untitled.id].hybrid_score == pytest.approx(result[untitled.id].vector_score)


def test_excludes_source_merged_deleted_and_unembedded_posts(make_post, db_session):
    source = make_post("Dark mode", embedding=SOURCE_VEC)
    canonical = make_post("Dark theme", embedding=NEAR_VEC)
    make_post("Dark mode again", embedding=NEAR_VEC, canonical_post_id=canonical.id)
    make_post("Dark mode deleted", embedding=NEAR_VEC, deleted_at=datetime(2026, 1, 2))
    make_post("Dark mode", embedding=None)

    result = find_merge_candidates(db_session, source.id)

    assert [c.post_id for c in result] == [canonical.id]


def test_post_without_embedding_has_no_candidates(make_post, db_session):
    source = make_post("Dark mode", embedding=None)
    make_post("Dark mode", embedding=NEAR_VEC)

    assert find_merge_candidates(db_session, source.id) == []
    assert find_merge_candidates(db_session, 9999) == []


def test_respects_limit(make_post, db_session):
    source = make_post("Dark mode", embedding=SOURCE_VEC)
    for i in range(8):
        make_post(f"Variant {i}", embedding=[1.0, 0.01 * (i + 1), 0.0])

    result = find_merge_candidates(db_session, source.id, limit=3)

    assert len(result) == 3


def test_uses_prefetched_title_and_embedding(make_post, db_session):
    source = make_post("Unrelated", embedding=FAR_VEC)
    near = make_post("Night theme", embedding=NEAR_VEC)

    result = find_merge_candidates(
        db_session,
        source.id,
        title="Night theme",
        embedding=SOURCE_VEC,
        policy=FusionPolicy(limit=5),
    )

    assert [c.post_id for c in result] == [near.id]


class TestTextRank:
    def test_all_terms_must_match(self):
        assert text_rank("dark mode", "Dark theme", "") == 0.0
        assert text_rank("dark mode", "Dark mode", "") > 0.0

    def test_title_hits_outrank_content_hits(self):
        in_title = text_rank("dark mode", "Dark mode", "")
        in_content = text_rank("dark mode", "Theme", "we need a dark mode")

        assert in_title > in_content > 0.0

    def test_stopwords_only_query_matches_nothing(self):
        assert text_rank("the and of", "The and of", "") == 0.0
