"""Aggregate router for API v1"""
from fastapi import APIRouter

from . import merge_suggestions

router = APIRouter()
router.include_router(merge_suggestions.router, tags=["merge-suggestions"])
