"""Pydantic data models shared across components."""

from core.models.jobs import Job

__all__ = [
    "Job",
]
