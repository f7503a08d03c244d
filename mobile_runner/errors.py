from __future__ import annotations


class RunnerError(Exception):
    """Base class for errors surfaced by the runner service."""

    status_code = 500


class ConfigValidationError(RunnerError):
    """A run request is missing a required field or carries an invalid one."""

    status_code = 400


class NotFoundError(RunnerError):
    status_code = 404


class ExternalServiceError(RunnerError):
    """The remote test service, object store or a subprocess call failed."""

    status_code = 500


class UploadError(ExternalServiceError):
    """An artifact upload could not be created, transferred or processed."""

    def __init__(self, message: str, *, status: str | None = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.status = status
        self.attempts = attempts
