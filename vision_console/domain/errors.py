from __future__ import annotations


class VisionEngineError(Exception):
    pass


class PermissionDeniedError(VisionEngineError):
    pass


class ValidationConflictError(VisionEngineError):
    def __init__(self, message: str, conflicting_vision_id: str | None = None) -> None:
        super().__init__(message)
        self.conflicting_vision_id = conflicting_vision_id


class NotFoundError(VisionEngineError):
    pass


class TransientIOError(VisionEngineError):
    """The store is unreachable or returned a retryable failure; callers may retry."""
