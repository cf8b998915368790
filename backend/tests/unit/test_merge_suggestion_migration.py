"""Tests for the idempotent merge-suggestion migration."""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError

from app.db_migrations.merge_suggestion_migration import migrate_merge_suggestions

MERGE_COLUMNS = {
    "embedding",
    "embedding_model",
    "embedding_updated_at",
    "canonical_post_id",
    "merged_at",
    "merged_by_principal_id",
    "merge_checked_at",
}


def _bootstrap_legacy_schema(conn) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE posts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                updated_at DATETIME
            )
            """
        )
    )
    conn.execute(
        text(
            """
            CREATE TABLE merge_suggestions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_post_id INTEGER NOT NULL,
                target_post_id INTEGER NOT NULL,
                pair_min_post_id INTEGER NOT NULL,
                pair_max_post_id INTEGER NOT NULL,
                status VARCHAR(20) NOT NULL,
                created_at DATETIME
            )
            """
        )
    )
    conn.execute(text("INSERT INTO posts (title) VALUES ('Dark mode'), ('Night theme'), ('CSV export')"))
    conn.execute(
        text(
            """
            INSERT INTO merge_suggestions
                (source_post_id, target_post_id, pair_min_post_id, pair_max_post_id, status)
            VALUES
                (1, 2, 1, 2, 'pending'),
                (2, 1, 1, 2, 'pending'),
                (1, 2, 1, 2, 'pending'),
                (3, 1, 1, 3, 'pending'),
                (1, 3, 1, 3, 'dismissed')
            """
        )
    )
    conn.commit()


def _statuses(engine) -> list[str]:
    with engine.connect() as conn:
        return [row[0] for row in conn.execute(text("SELECT status FROM merge_suggestions ORDER BY id"))]


def test_migration_without_posts_table_is_a_noop():
    engine = create_engine("sqlite:///:memory:")

    result = migrate_merge_suggestions(engine)

    assert result["posts_table_exists"] is False
    assert result["columns_added"] == []


def test_migration_adds_columns_and_dedupes_pending_pairs():
    engine = create_engine("sqlite:///:memory:")
    with engine.connect() as conn:
        _bootstrap_legacy_schema(conn)

    result = migrate_merge_suggestions(engine)

    assert set(result["columns_added"]) == MERGE_COLUMNS
    assert result["duplicates_dismissed"] == 2
    assert _statuses(engine) == ["pending", "dismissed", "dismissed", "pending", "dismissed"]

    columns = {col["name"] for col in inspect(engine).get_columns("posts")}
    assert MERGE_COLUMNS <= columns
    index_names = {idx["name"] for idx in inspect(engine).get_indexes("merge_suggestions")}
    assert "uix_merge_suggestions_pending_pair" in index_names
    assert "idx_merge_suggestions_status_created_at" in index_names


def test_migration_is_idempotent_on_rerun():
    engine = create_engine("sqlite:///:memory:")
    with engine.connect() as conn:
        _bootstrap_legacy_schema(conn)

    migrate_merge_suggestions(engine)
    second = migrate_merge_suggestions(engine)

    assert second["columns_added"] == []
    assert second["duplicates_dismissed"] == 0


def test_pending_pair_index_enforced_after_migration():
    engine = create_engine("sqlite:///:memory:")
    with engine.connect() as conn:
        _bootstrap_legacy_schema(conn)
    migrate_merge_suggestions(engine)

    with engine.connect() as conn:
        # resolved rows for the same pair are allowed
        conn.execute(
            text(
                """
                INSERT INTO merge_suggestions
                    (source_post_id, target_post_id, pair_min_post_id, pair_max_post_id, status)
                VALUES (2, 1, 1, 2, 'expired')
                """
            )
        )
        with pytest.raises(IntegrityError):
            conn.execute(
                text(
                    """
                    INSERT INTO merge_suggestions
                        (source_post_id, target_post_id, pair_min_post_id, pair_max_post_id, status)
                    VALUES (2, 1, 1, 2, 'pending')
                    """
                )
            )
