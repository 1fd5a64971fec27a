"""
Editing Job Models
Track video editing jobs, their status and the allowed status transitions.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class JobStatus(str, Enum):
    PENDING = "PENDING"
    UPLOADING = "UPLOADING"
    QUEUED = "QUEUED"
    TRANSCRIBING = "TRANSCRIBING"
    ANALYZING = "ANALYZING"
    RENDERING = "RENDERING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
CANCELLABLE_STATUSES = frozenset({
    JobStatus.PENDING,
    JobStatus.UPLOADING,
    JobStatus.QUEUED,
    JobStatus.TRANSCRIBING,
    JobStatus.ANALYZING,
})
DISPATCHABLE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.UPLOADING})

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.UPLOADING, JobStatus.QUEUED}),
    JobStatus.UPLOADING: frozenset({JobStatus.QUEUED}),
    JobStatus.QUEUED: frozenset({JobStatus.TRANSCRIBING}),
    JobStatus.TRANSCRIBING: frozenset({JobStatus.ANALYZING}),
    JobStatus.ANALYZING: frozenset({JobStatus.RENDERING}),
    JobStatus.RENDERING: frozenset({JobStatus.COMPLETED}),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Whether a job in `current` may move to `target`."""
    if current in TERMINAL_STATUSES:
        return False
    if target == JobStatus.FAILED:
        return True
    if target == JobStatus.CANCELLED:
        return current in CANCELLABLE_STATUSES
    return target in _TRANSITIONS.get(current, frozenset())


def allowed_sources(target: JobStatus) -> frozenset[JobStatus]:
    """Statuses from which `target` is reachable. Used for conditional updates."""
    return frozenset(s for s in JobStatus if can_transition(s, target))


class Job(BaseModel):
    """A row of the jobs table."""

    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    id: str
    user_id: str
    job_name: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    progress_percentage: int = 0  # 0-100
    current_step: Optional[str] = None

    # Blob Store references
    input_video_path: Optional[str] = None
    output_video_path: Optional[str] = None
    input_file_size_mb: Optional[float] = None

    # Payloads attached by the pipeline
    transcription_json: Optional[dict[str, Any]] = None
    analysis_json: Optional[dict[str, Any]] = None
    preferences_json: Optional[dict[str, Any]] = None

    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_public(self) -> dict[str, Any]:
        """Snapshot pushed to status subscribers."""
        return {
            "id": self.id,
            "job_name": self.job_name,
            "status": self.status.value,
            "progress_percentage": self.progress_percentage,
            "current_step": self.current_step,
            "output_video_path": self.output_video_path,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
