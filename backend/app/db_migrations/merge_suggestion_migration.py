"""Idempotent migration for post merge columns and the merge-suggestion pending-pair index."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import inspect, text

from ..config import settings

logger = logging.getLogger(__name__)

POSTS_TABLE = "posts"
SUGGESTIONS_TABLE = "merge_suggestions"


def migrate_merge_suggestions(engine) -> dict[str, Any]:
    """Add post merge/embedding columns and enforce one pending suggestion per pair."""
    stats: dict[str, Any] = {
        "posts_table_exists": False,
        "columns_added": [],
        "duplicates_dismissed": 0,
        "indexes_ensured": [],
    }
    dialect = engine.dialect.name
    with engine.connect() as conn:
        tables = set(inspect(conn).get_table_names())
        if POSTS_TABLE not in tables:
            conn.commit()
            return stats
        stats["posts_table_exists"] = True

        if dialect == "postgresql":
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        stats["columns_added"] = _add_missing_post_columns(conn, dialect)

        if SUGGESTIONS_TABLE in tables:
            stats["duplicates_dismissed"] = _dismiss_duplicate_pending_pairs(conn)
            stats["indexes_ensured"].extend(_ensure_suggestion_indexes(conn))

        stats["indexes_ensured"].extend(_ensure_post_indexes(conn, dialect))
        conn.commit()
    logger.info("Merge suggestion migration completed: %s", stats)
    return stats


def _post_column_ddl(dialect: str) -> dict[str, str]:
    timestamp = "TIMESTAMP WITH TIME ZONE" if dialect == "postgresql" else "DATETIME"
    vector = f"vector({settings.embedding_dimensions})" if dialect == "postgresql" else "JSON"
    return {
        "embedding": f"ALTER TABLE posts ADD COLUMN embedding {vector}",
        "embedding_model": "ALTER TABLE posts ADD COLUMN embedding_model VARCHAR(100)",
        "embedding_updated_at": f"ALTER TABLE posts ADD COLUMN embedding_updated_at {timestamp}",
        "canonical_post_id": "ALTER TABLE posts ADD COLUMN canonical_post_id INTEGER REFERENCES posts(id) ON DELETE SET NULL",
        "merged_at": f"ALTER TABLE posts ADD COLUMN merged_at {timestamp}",
        "merged_by_principal_id": "ALTER TABLE posts ADD COLUMN merged_by_principal_id VARCHAR(64)",
        "merge_checked_at": f"ALTER TABLE posts ADD COLUMN merge_checked_at {timestamp}",
    }


def _add_missing_post_columns(conn, dialect: str) -> list[str]:
    existing = {col["name"] for col in inspect(conn).get_columns(POSTS_TABLE)}
    added: list[str] = []
    for column, ddl in _post_column_ddl(dialect).items():
        if column not in existing:
            conn.execute(text(ddl))
            added.append(column)
    return added


def _dismiss_duplicate_pending_pairs(conn) -> int:
    # Keep the oldest pending suggestion per pair so the unique index can be built.
    result = conn.execute(
        text(
            """
            UPDATE merge_suggestions
            SET status = 'dismissed'
            WHERE status = 'pending'
              AND EXISTS (
                  SELECT 1 FROM merge_suggestions older
                  WHERE older.status = 'pending'
                    AND older.pair_min_post_id = merge_suggestions.pair_min_post_id
                    AND older.pair_max_post_id = merge_suggestions.pair_max_post_id
                    AND older.id < merge_suggestions.id
              )
            """
        )
    )
    return int(result.rowcount or 0)


def _ensure_suggestion_indexes(conn) -> list[str]:
    ensured: list[str] = []
    conn.execute(
        text(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS uix_merge_suggestions_pending_pair
            ON merge_suggestions(pair_min_post_id, pair_max_post_id)
            WHERE status = 'pending'
            """
        )
    )
    ensured.append("uix_merge_suggestions_pending_pair")
    conn.execute(
        text(
            """
            CREATE INDEX IF NOT EXISTS idx_merge_suggestions_status_created_at
            ON merge_suggestions(status, created_at)
            """
        )
    )
    ensured.append("idx_merge_suggestions_status_created_at")
    return ensured


def _ensure_post_indexes(conn, dialect: str) -> list[str]:
    ensured: list[str] = []
    conn.execute(
        text(
            """
            CREATE INDEX IF NOT EXISTS idx_posts_merge_checked_at_updated_at
            ON posts(merge_checked_at, updated_at)
            """
        )
    )
    ensured.append("idx_posts_merge_checked_at_updated_at")
    if dialect == "postgresql":
        conn.execute(
            text(
                """
                CREATE INDEX IF NOT EXISTS idx_posts_search_vector
                ON posts USING GIN (
                    (setweight(to_tsvector('english', coalesce(title, '')), 'A')
                     || setweight(to_tsvector('english', coalesce(content, '')), 'B'))
                )
                """
            )
        )
        ensured.append("idx_posts_search_vector")
        conn.execute(
            text(
                """
                CREATE INDEX IF NOT EXISTS idx_posts_embedding_hnsw
                ON posts USING hnsw (embedding vector_cosine_ops)
                """
            )
        )
        ensured.append("idx_posts_embedding_hnsw")
    return ensured
