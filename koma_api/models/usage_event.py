"""
koma_api/models/usage_event.py

UsageEvent model for monthly quota accounting.
"""

from datetime import datetime
from typing import Dict
from pydantic import BaseModel, ConfigDict


class UsageEvent(BaseModel):
    """
    UsageEvent records one successful generation.

    Kinds:
    - blog: 4-koma generated from a blog article
    - movie: 4-koma generated from a video

    Appended only after the generation succeeded; never updated or deleted.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    kind: str
    created_at: datetime


class UsageSummary(BaseModel):
    """Current-month consumption for one user."""
    model_config = ConfigDict(frozen=True)

    plan: str
    used: int
    limit: int
    remaining: int
    allowed: bool
    by_kind: Dict[str, int] = {}
