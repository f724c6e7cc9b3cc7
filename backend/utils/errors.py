class AppError(Exception):
    """Base error rendered to callers as ``{"error": message}``."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = 400


class DecodeError(AppError):
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class JobStateConflictError(AppError):
    """A write would move a job backwards or replace a handle."""

    status_code = 409


class UpstreamUnavailableError(AppError):
    status_code = 502


class PredictionSubmissionFailedError(AppError):
    status_code = 502


class PredictionFailedError(AppError):
    status_code = 502


class UpstreamTimeoutError(AppError):
    status_code = 504
