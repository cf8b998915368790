"""Post embeddings for duplicate search, built through the LiteLLM embedding API."""
from __future__ import annotations

import logging
import os
from typing import Optional

import litellm
import numpy as np
from sqlalchemy.orm import Session

from ..config import settings
from ..models.feedback import Post
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


class PostEmbeddingEngine:
    """Embedding model wrapper."""

    def __init__(self, model_name: Optional[str] = None, dimensions: Optional[int] = None):
        self.model_name = model_name or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions
        if settings.openai_api_key:
            os.environ.setdefault("OPENAI_API_KEY", settings.openai_api_key)

    def encode(self, text: str) -> Optional[np.ndarray]:
        if not text.strip():
            return None
        kwargs = {}
        if settings.openai_base_url:
            kwargs["api_base"] = settings.openai_base_url
        try:
            response = litellm.embedding(model=self.model_name, input=[text], **kwargs)
            vector = np.asarray(response.data[0]["embedding"], dtype=np.float32)
        except Exception as exc:
            logger.warning("Failed to encode embedding text for model %s: %s", self.model_name, exc)
            return None

        if vector.shape != (self.dimensions,):
            logger.warning(
                "Embedding model %s returned %s dimensions, expected %d",
                self.model_name,
                vector.shape,
                self.dimensions,
            )
            return None
        return vector


def build_post_text(post: Post) -> str:
    """Title and body, as embedded."""
    title = (post.title or "").strip()
    content = (post.content or "").strip()
    return f"{title}\n\n{content}" if content else title


def refresh_post_embedding(
    db: Session,
    post_id: int,
    *,
    engine: Optional[PostEmbeddingEngine] = None,
) -> bool:
    """
    Compute and store the embedding of one post.

    Returns:
        True when an embedding was stored. Encoder failures leave the post
        unchanged and return False.
    """
    post = db.query(Post).filter(Post.id == post_id, Post.deleted_at.is_(None)).first()
    if post is None:
        logger.warning("Cannot embed post %s: not found", post_id)
        return False

    engine = engine or PostEmbeddingEngine()
    vector = engine.encode(build_post_text(post))
    if vector is None:
        return False

    post.embedding = vector.tolist()
    post.embedding_model = engine.model_name
    post.embedding_updated_at = utcnow()
    # Content changed; the next sweep should look at this post again.
    post.merge_checked_at = None
    db.commit()
    logger.info("Stored %d-dim embedding for post %s (%s)", len(vector), post_id, engine.model_name)
    return True
