"""
Configuration settings for the Feedback Portal backend.
Loads environment variables and provides application settings.
"""
from pathlib import Path
from pydantic_settings import BaseSettings
from typing import List

# Get project root
# settings.py is at backend/app/config/settings.py → 4 levels up
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys
    openrouter_api_key: str = ""  # For LLM via OpenRouter (merge assessment)
    openai_api_key: str = ""  # For embeddings (and LLM when routed directly)
    openai_base_url: str = ""  # Optional gateway for OpenAI-compatible calls

    # LLM Routing Configuration
    merge_assessment_model: str = "openrouter/google/gemini-2.5-flash"  # LiteLLM format
    merge_assessment_model_label: str = "google/gemini-2.5-flash"  # Recorded on suggestions
    merge_assessment_max_tokens: int = 1000
    merge_assessment_temperature: float = 0.1
    llm_num_retries: int = 3

    # Embeddings
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # Database - use absolute path to avoid working directory issues
    database_url: str = f"sqlite:///{_PROJECT_ROOT}/data/feedback.db"

    # Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Celery / Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"
    celery_timezone: str = "UTC"

    # Merge candidate search
    merge_vector_threshold: float = 0.35  # Minimum cosine similarity for vector matches
    merge_hybrid_threshold: float = 0.4  # Minimum fused score to keep a candidate
    merge_fts_weight: float = 0.3  # Weight of normalized FTS rank in the fused score
    merge_candidate_limit: int = 5  # Candidates sent to the LLM per post

    # Merge assessment
    merge_llm_confidence_threshold: float = 0.75  # Minimum LLM confidence to keep a duplicate
    merge_content_max_chars: int = 2000  # Post content truncation in prompts

    # Merge sweep
    merge_sweep_enabled: bool = True  # Schedule the periodic sweep via Celery beat
    merge_sweep_interval_minutes: int = 60
    merge_sweep_batch_size: int = 50  # Posts per page
    merge_sweep_post_delay_seconds: float = 0.5  # 500ms between posts (LLM rate limits)
    merge_stale_after_hours: int = 24  # Re-check posts whose last check is older than this
    merge_suggestion_expiry_days: int = 30  # Pending suggestions older than this expire
    merge_sweep_lock_ttl_seconds: int = 3600  # Redis lock TTL, renewed after every sweep page

    @property
    def cors_origins_list(self) -> List[str]:
        """Convert CORS origins string to list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def llm_configured(self) -> bool:
        """True when an LLM provider key is available for merge assessment."""
        return bool(self.openrouter_api_key or self.openai_api_key)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()
