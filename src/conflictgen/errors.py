"""
Exception hierarchy for conflictgen

Race losses are not exceptions: they are returned as LostRace outcomes by the
write attempts. Everything here represents a condition that stops work.
"""

from enum import Enum
from typing import Optional


class StoreStatus(Enum):
    """
    Status codes consumed from the document store.

    SUCCESS: Operation applied
    ALREADY_EXISTS: Create hit an existing id (HTTP 409)
    PRECONDITION_FAILED: If-Match token no longer current (HTTP 412)
    NOT_FOUND: Target record or resource missing (HTTP 404)
    OTHER_FAILURE: Anything else (auth, throttling, timeouts, 5xx)
    """
    SUCCESS = "success"
    ALREADY_EXISTS = "already_exists"
    PRECONDITION_FAILED = "precondition_failed"
    NOT_FOUND = "not_found"
    OTHER_FAILURE = "other_failure"

    @classmethod
    def from_http(cls, status_code: int) -> "StoreStatus":
        """Map an HTTP status code onto a store status."""
        if 200 <= status_code < 300:
            return cls.SUCCESS
        if status_code == 409:
            return cls.ALREADY_EXISTS
        if status_code == 412:
            return cls.PRECONDITION_FAILED
        if status_code == 404:
            return cls.NOT_FOUND
        return cls.OTHER_FAILURE

    def __str__(self) -> str:
        return self.value


class ConflictGenError(Exception):
    """Base exception for conflictgen errors"""
    pass


class ConfigError(ConflictGenError):
    """Configuration is missing or invalid"""
    pass


class StoreError(ConflictGenError):
    """
    A store operation failed.

    Attributes:
        status: Classified store status
        status_code: Raw HTTP status code, if the backend has one
    """

    def __init__(self, status: StoreStatus, message: str = "",
                 status_code: Optional[int] = None):
        self.status = status
        self.status_code = status_code
        detail = message or status.value
        if status_code is not None:
            detail = f"{detail} (HTTP {status_code})"
        super().__init__(detail)


class SetupError(ConflictGenError):
    """Handles, database or collections could not be established"""
    pass


class CampaignAborted(ConflictGenError):
    """A campaign stopped because of an infrastructure failure"""
    pass


class FatalAttemptError(CampaignAborted):
    """
    A write attempt failed for a reason other than a lost race.

    Attributes:
        region: Region whose attempt failed
        cause: The original error
    """

    def __init__(self, region: str, cause: BaseException):
        self.region = region
        self.cause = cause
        status = getattr(cause, "status", StoreStatus.OTHER_FAILURE)
        self.status = status
        super().__init__(f"Write attempt in region '{region}' failed: {cause} [{status}]")
