"""
Exceptions raised while exporting run trees to the collector.

Failures carry the HTTP status and response body so they can be diagnosed
from logs alone. None of these are raised into the traced computation: the
callback dispatcher logs them instead.
"""

from typing import Optional


class TracerError(Exception):
    """Base exception for all tracer errors."""


class CollectorRequestError(TracerError):
    """
    A collector request completed with a non-2xx response.

    Attributes:
        status_code: HTTP status returned by the collector
        reason: HTTP reason phrase
        body: Raw response body
    """

    action = "Collector request failed"

    def __init__(
        self,
        status_code: int,
        body: str = "",
        reason: Optional[str] = None,
    ):
        self.status_code = status_code
        self.reason = reason or ""
        self.body = body
        parts = [str(status_code)]
        if self.reason:
            parts.append(self.reason)
        if body:
            parts.append(body)
        super().__init__(f"{self.action}: {' '.join(parts)}")


class TenantLookupFailed(CollectorRequestError):
    """Listing tenants returned a non-2xx response."""

    action = "Failed to fetch tenant ID"


class SessionCreateFailed(CollectorRequestError):
    """Creating (or fetching) the tracer session returned a non-2xx response."""

    action = "Failed to create session"


class RunPersistFailed(CollectorRequestError):
    """Submitting a run tree returned a non-2xx response."""

    action = "Failed to persist run"


class NoTenantFound(TracerError):
    """The collector listed no tenants and none was configured."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        super().__init__(f"No tenants found for endpoint {endpoint}")
