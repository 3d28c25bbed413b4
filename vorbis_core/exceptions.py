"""
Error taxonomy for the vorbis core.

Cache and exclusion-set failures are recovered locally and only logged
(CacheCorruption, PersistenceWriteFailure). Upstream failures are raised to
the caller, who decides whether a stale cached value can stand in for them.
"""

from typing import Optional


class VorbisCoreError(Exception):
    """Base exception for all vorbis core errors."""
    pass


class CacheCorruption(VorbisCoreError):
    """Raised when a persisted snapshot cannot be parsed."""

    def __init__(self, storage_key: str, reason: str):
        self.storage_key = storage_key
        self.reason = reason
        super().__init__(f"Corrupted snapshot under '{storage_key}': {reason}")


class PersistenceWriteFailure(VorbisCoreError):
    """Raised when a write-through to the key-value store fails."""

    def __init__(self, storage_key: str, reason: str):
        self.storage_key = storage_key
        self.reason = reason
        super().__init__(f"Failed to persist '{storage_key}': {reason}")


class UpstreamError(VorbisCoreError):
    """Raised when an upstream service call fails."""

    def __init__(self, message: str, service: Optional[str] = None,
                 status_code: Optional[int] = None):
        self.message = message
        self.service = service
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """Whether a later retry of the same call could succeed."""
        return self.status_code is None or self.status_code >= 500


class UpstreamTimeout(UpstreamError):
    """Raised when an upstream service does not answer in time."""

    @property
    def retryable(self) -> bool:
        return True


class RateLimited(UpstreamError):
    """Raised when the caller should back off before calling the service again."""

    def __init__(self, message: str, service: Optional[str] = None,
                 retry_after: Optional[float] = None):
        super().__init__(message, service=service, status_code=429)
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return True


class AuthenticationRequired(UpstreamError):
    """Raised when the upstream rejects the bearer credential."""

    @property
    def retryable(self) -> bool:
        return False


class InvalidStateTransition(VorbisCoreError):
    """Raised when the discovery state machine is driven out of order."""

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f"Illegal discovery transition {current.value} -> {requested.value}")
