"""Job model -- a callback registered against a cron expression."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class Job(BaseModel):
    """A callback the scheduler fires whenever `expression` matches.

    Several jobs may share one expression; the scheduler evaluates each
    distinct expression once per tick and fires all of its jobs together.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"job_{uuid4().hex[:12]}")
    expression: str
    callback: Callable[..., Any]

    # Removed from the scheduler right before its first firing
    once: bool = False

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
