"""Database models for the Feedback Portal backend"""
from .feedback import Board, PostStatus, Post, Vote
from .merge_suggestion import MergeSuggestion

__all__ = [
    "Board",
    "PostStatus",
    "Post",
    "Vote",
    "MergeSuggestion",
]
