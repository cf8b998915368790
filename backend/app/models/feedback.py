"""Feedback portal models: boards, statuses, posts and votes"""
from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Text,
    Index,
    UniqueConstraint,
    ForeignKey,
    JSON,
)
from sqlalchemy.sql import func

from ..config import settings
from ..database import Base
from ..utils.clock import utcnow

# pgvector on PostgreSQL, JSON-encoded float list everywhere else (SQLite dev/test)
EMBEDDING_COLUMN_TYPE = Vector(settings.embedding_dimensions).with_variant(JSON(none_as_null=True), "sqlite")


class Board(Base):
    """Feedback board (posts are grouped by board)"""

    __tablename__ = "boards"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(100), nullable=False, unique=True, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class PostStatus(Base):
    """Workflow status shown on posts (e.g. Planned, In Progress)"""

    __tablename__ = "post_statuses"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    color = Column(String(20))  # Hex color for display


class Post(Base):
    """Feedback post (feature request, bug report, idea)"""

    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, index=True)
    board_id = Column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    status_id = Column(Integer, ForeignKey("post_statuses.id", ondelete="SET NULL"), index=True)

    # Content
    title = Column(Text, nullable=False)
    content = Column(Text, nullable=False, default="")

    # Denormalized counters
    vote_count = Column(Integer, nullable=False, default=0)
    comment_count = Column(Integer, nullable=False, default=0)

    # Semantic embedding for similarity search
    embedding = Column(EMBEDDING_COLUMN_TYPE, nullable=True)
    embedding_model = Column(String(100))  # Model used to build the embedding
    embedding_updated_at = Column(DateTime(timezone=True))

    # Merge state (canonical_post_id is set on the post that was merged away)
    canonical_post_id = Column(Integer, ForeignKey("posts.id", ondelete="SET NULL"), index=True)
    merged_at = Column(DateTime(timezone=True))
    merged_by_principal_id = Column(String(64))
    merge_checked_at = Column(DateTime(timezone=True), index=True)  # Last duplicate check

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )
    deleted_at = Column(DateTime(timezone=True))  # Soft delete

    __table_args__ = (
        Index("idx_posts_board_created_at", "board_id", "created_at"),
        Index("idx_posts_merge_checked_at_updated_at", "merge_checked_at", "updated_at"),
    )


class Vote(Base):
    """One principal's vote on a post"""

    __tablename__ = "votes"

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    principal_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("post_id", "principal_id", name="uix_votes_post_principal"),
    )
