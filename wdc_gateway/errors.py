"""
Error taxonomy shared by the proxy gateway and the connector lifecycle.

The gateway converts these into HTTP status responses; the lifecycle converts
them into failed Outcomes. Neither side lets them escape to crash the process
or hang the host.
"""

from typing import Optional


class ConnectorError(Exception):
    """Base exception for gateway and connector errors"""
    pass


class TransportFailure(ConnectorError):
    """
    Upstream unreachable or connection-level error.

    status_code is the 5xx status reported to the proxy caller.
    """

    def __init__(self, message: str, url: Optional[str] = None, status_code: int = 502):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class UpstreamRejection(ConnectorError):
    """Upstream responded with something other than HTTP 200."""

    def __init__(self, status_code: int, message: Optional[str] = None):
        super().__init__(message or f"Upstream responded with HTTP {status_code}")
        self.status_code = status_code


class UnsafeEndpointError(ConnectorError):
    """Logical endpoint path would escape the upstream base URL."""
    pass


class TokenInvalid(ConnectorError):
    """Stored credential was rejected by the token check."""
    pass


class SchemaFetchFailure(ConnectorError):
    """A schema descriptor could not be fetched or validated."""
    pass


class UnknownTableError(ConnectorError):
    pass


class PostProcessShapeError(ConnectorError):
    """Raw table data does not have the shape the field mapping expects."""
    pass
