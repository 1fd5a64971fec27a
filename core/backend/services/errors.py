"""
Error types shared by the dispatch pipeline.
DispatchError subclasses carry the HTTP status the API layer answers with.
"""

from typing import Optional


class DispatchError(Exception):
    """Base error for the dispatch endpoint."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidRequestError(DispatchError):
    status_code = 400


class JobNotFoundError(DispatchError):
    status_code = 404

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobConflictError(DispatchError):
    """The job is not in a state that allows the request (e.g. already dispatched)."""

    status_code = 409


class ConfigurationError(DispatchError):
    status_code = 500


class ScriptValidationError(Exception):
    def __init__(self, errors: list[str]):
        super().__init__("Invalid editing script: " + "; ".join(errors[:5]))
        self.errors = errors


class StorageError(Exception):
    pass


class RenderWorkerError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderError(Exception):
    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderInputTooLarge(ProviderError):
    def __init__(self, provider: str, size_mb: float, limit_mb: float):
        super().__init__(provider, f"input is {size_mb:.1f}MB, limit is {limit_mb:.0f}MB")
        self.size_mb = size_mb
        self.limit_mb = limit_mb


class JobCancelledError(Exception):
    """Raised inside a run when the job left the expected status (cancelled or claimed elsewhere)."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} is no longer active")
        self.job_id = job_id
