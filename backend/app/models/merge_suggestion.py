"""Merge suggestion queue for duplicate feedback posts"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Text,
    Index,
    CheckConstraint,
    ForeignKey,
    text,
)
from sqlalchemy.sql import func

from ..database import Base
from ..utils.clock import utcnow

STATUS_PENDING = "pending"
STATUS_ACCEPTED = "accepted"
STATUS_DISMISSED = "dismissed"
STATUS_EXPIRED = "expired"

MERGE_SUGGESTION_STATUSES = (STATUS_PENDING, STATUS_ACCEPTED, STATUS_DISMISSED, STATUS_EXPIRED)


class MergeSuggestion(Base):
    """Pair of posts suggested for merging (source is merged INTO target)"""

    __tablename__ = "merge_suggestions"

    id = Column(Integer, primary_key=True, index=True)

    # Post pair
    source_post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    target_post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    # Order-independent pair key (min/max of the two post ids)
    pair_min_post_id = Column(Integer, nullable=False)
    pair_max_post_id = Column(Integer, nullable=False)

    # Search scores
    vector_score = Column(Float, nullable=False, default=0.0)  # Cosine similarity
    fts_score = Column(Float, nullable=False, default=0.0)  # Normalized text rank
    hybrid_score = Column(Float, nullable=False, default=0.0)  # Fused score

    # LLM verdict
    llm_confidence = Column(Float, nullable=False)
    llm_reasoning = Column(Text)
    llm_model = Column(String(100))

    # Status
    status = Column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    resolved_at = Column(DateTime(timezone=True))
    resolved_by_principal_id = Column(String(64))

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'dismissed', 'expired')",
            name="ck_merge_suggestions_status",
        ),
        CheckConstraint("source_post_id <> target_post_id", name="ck_merge_suggestions_distinct_posts"),
        # At most one pending suggestion per unordered pair
        Index(
            "uix_merge_suggestions_pending_pair",
            "pair_min_post_id",
            "pair_max_post_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("idx_merge_suggestions_status_created_at", "status", "created_at"),
    )
