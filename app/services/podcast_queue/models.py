"""
Modelos da fila de persistência de podcasts.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class JobStatus(str, Enum):
    """
    Estados de um job.

    pending -> processing -> completed (terminal)
                          -> pending   (retry, attempts < max_attempts)
                          -> failed    (terminal, attempts == max_attempts)
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Um track_id com job em algum destes status não é re-enfileirado
ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.COMPLETED)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)

DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class Job:
    """Podcast descoberto no upstream e ainda não persistido."""
    id: int
    track_id: int
    track_name: str
    podcast_data: Dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def can_retry(self) -> bool:
        return self.status == JobStatus.PENDING and self.attempts < self.max_attempts

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "Job":
        """Constrói a partir de uma linha asyncpg de podcast_jobs."""
        data = row["podcast_data"]
        if isinstance(data, str):
            data = json.loads(data)
        return cls(
            id=row["id"],
            track_id=row["track_id"],
            track_name=row["track_name"],
            podcast_data=data or {},
            status=JobStatus(row["status"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            error=row["error"],
            last_attempt_at=row["last_attempt_at"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
