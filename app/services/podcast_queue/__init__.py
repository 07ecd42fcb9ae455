"""
Podcast Queue - Persistência assíncrona de podcasts descobertos.

A busca enfileira os podcasts novos; o worker grava no repositório
depois, de forma independente (eventualmente consistente).
"""

from .models import (
    ACTIVE_STATUSES,
    Job,
    JobStatus,
)
from .job_store import (
    InMemoryJobStore,
    JobStore,
    PostgresJobStore,
)
from .worker import (
    PodcastWorker,
    podcast_from_job,
)

__all__ = [
    # Models
    "ACTIVE_STATUSES",
    "Job",
    "JobStatus",
    # Store
    "JobStore",
    "InMemoryJobStore",
    "PostgresJobStore",
    # Worker
    "PodcastWorker",
    "podcast_from_job",
]
