"""Pydantic schemas for the merge suggestion API"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class MergeSuggestionPostResponse(BaseModel):
    """Post summary shown on both sides of a suggestion"""
    id: int
    title: str
    content: str = ""
    vote_count: int = 0
    comment_count: int = 0
    created_at: Optional[datetime] = None
    board_name: Optional[str] = None
    status_name: Optional[str] = None
    status_color: Optional[str] = None


class MergeSuggestionResponse(BaseModel):
    id: int
    source_post: MergeSuggestionPostResponse
    target_post: MergeSuggestionPostResponse
    vector_score: float
    fts_score: float
    hybrid_score: float
    llm_confidence: float
    llm_reasoning: Optional[str] = None
    llm_model: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None


class MergeSuggestionsResponse(BaseModel):
    total: int
    items: list[MergeSuggestionResponse]


class PostMergeSuggestionResponse(BaseModel):
    """Pending suggestion as listed on a single post"""
    id: int
    source_post_id: int
    source_post_title: str
    source_post_vote_count: int
    target_post_id: int
    target_post_title: str
    target_post_vote_count: int
    vector_score: float
    fts_score: float
    hybrid_score: float
    llm_confidence: float
    llm_reasoning: Optional[str] = None
    created_at: Optional[datetime] = None


class PostMergeSuggestionsResponse(BaseModel):
    post_id: int
    total: int
    suggestions: list[PostMergeSuggestionResponse]


class MergeSuggestionActionRequest(BaseModel):
    principal_id: str = Field(..., min_length=1, max_length=64, description="Principal resolving the suggestion")


class AcceptMergeSuggestionResponse(BaseModel):
    suggestion_id: int
    source_post_id: int
    target_post_id: int
    status: str
    dismissed_count: int


class DismissMergeSuggestionResponse(BaseModel):
    suggestion_id: int
    dismissed: bool


class TaskQueuedResponse(BaseModel):
    task_id: str
    status: str
    message: str
