"""Repositories for jobspine tables."""

from .jobs import JobDefinitionRepository, JobInstanceRepository

__all__ = [
    "JobDefinitionRepository",
    "JobInstanceRepository",
]
