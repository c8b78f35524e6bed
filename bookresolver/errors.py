"""Error taxonomy for the resolution layer."""
from typing import List, Optional


class ResolverError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ResolverError):
    """Missing or malformed identifier in the request."""

    status_code = 400


class AuthenticationError(ResolverError):
    """Missing or rejected bearer credential."""

    status_code = 401


class UpstreamNotFound(ResolverError):
    """The source answered but has no matching record."""

    status_code = 404


class UpstreamTransientFailure(ResolverError):
    """Timeout, 5xx or malformed payload from an external source."""

    status_code = 502


class UpstreamAuthError(UpstreamTransientFailure):
    """The client-credential exchange was refused."""


class ConfigurationUnavailable(ResolverError):
    """A credential needed for the call is not configured."""

    status_code = 503


class CacheWriteFailure(ResolverError):
    """Write-back to the store failed. Only ever logged."""


class ResolutionFailed(UpstreamNotFound):
    """Every strategy of a race failed.

    Keeps the label of the identifier that was attempted and the error
    raised by each strategy, in launch order.
    """

    def __init__(self, label: str, errors: Optional[List[BaseException]] = None, message: Optional[str] = None):
        self.label = label
        self.errors = list(errors or [])
        super().__init__(
            message
            or f"Not found with {label}. Neither database nor external API returned results."
        )
