"""Periodic scheduling of collection cycles."""

from .job_scheduler import JobScheduler
from .service import CollectorService

__all__ = ["JobScheduler", "CollectorService"]
