"""Error categories shared by the error hierarchy and retry helpers."""

from enum import Enum


class ErrorCategory(Enum):
    """
    How a failure should be handled by the stage that hit it.

    Categories:
        TRANSIENT: Retry with backoff (read/write/route timeouts, throttling, 503s)
        AUTH: Credentials rejected or expired; retried after refresh
        PERMANENT: Retrying cannot help (partition deleted, malformed stream,
                   validation errors)
        UNKNOWN: Unclassified; retried conservatively
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = ["ErrorCategory"]
