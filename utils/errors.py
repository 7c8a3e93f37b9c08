"""
Error taxonomy for the MovieBox relay.

Every failure raised by the dispatcher, the payload decoder and the stream
proxy is a ``MovieboxError``.  Each class carries:

- ``code``: a stable identifier the web layer can hand to clients
- ``status_code``: the HTTP status the web layer should answer with

The core never converts these into "empty success" results; callers get
either real data or one of these exceptions.
"""

from typing import Optional


class MovieboxError(Exception):
    """Base class for all relay errors."""
    code = 'INTERNAL_ERROR'
    status_code = 500

    def __init__(self, message: str = '', *, host: Optional[str] = None,
                 status: Optional[int] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.host = host
        self.status = status

    def to_dict(self) -> dict:
        return {'error': self.code, 'message': self.message}


class InvalidRequest(MovieboxError, ValueError):
    """Caller-supplied input cannot be turned into an upstream request."""
    code = 'INVALID_REQUEST'
    status_code = 400


class RangeNotSatisfiable(InvalidRequest):
    """Requested byte range starts beyond the end of the resource."""
    code = 'RANGE_NOT_SATISFIABLE'
    status_code = 416


class TransportError(MovieboxError):
    """Network failure, timeout or retryable upstream status."""
    code = 'UPSTREAM_UNAVAILABLE'
    status_code = 502


class NotFoundUpstream(MovieboxError):
    """Upstream reported the resource as missing (404). Never retried."""
    code = 'NOT_FOUND'
    status_code = 404


class ForbiddenUpstream(MovieboxError):
    """Upstream refused access (403). Never retried."""
    code = 'FORBIDDEN'
    status_code = 403


class UpstreamAPIError(MovieboxError):
    """Upstream answered 2xx but flagged the call as failed in its JSON body."""
    code = 'UPSTREAM_REJECTED'
    status_code = 502


class ExtractionError(MovieboxError):
    """The embedded payload is missing or does not have the expected shape."""
    code = 'EXTRACTION_FAILED'
    status_code = 502


class LinkExpired(MovieboxError):
    """A signed media URL is no longer accepted by the CDN."""
    code = 'LINK_EXPIRED'
    status_code = 410


class RegionRestricted(MovieboxError):
    """The CDN denies access to an unsigned URL, typically geo-blocking."""
    code = 'REGION_RESTRICTED'
    status_code = 451


class NoCandidates(MovieboxError):
    """No usable download candidate survived filtering."""
    code = 'NO_CANDIDATES'
    status_code = 404


class StreamFault(MovieboxError):
    """The upstream media transfer broke after it had started."""
    code = 'STREAM_FAULT'
    status_code = 502


def error_for_status(status: int, message: str, host: Optional[str] = None) -> MovieboxError:
    """Map an upstream HTTP status onto the taxonomy.

    404 and 403 are fatal; every other status is a retryable transport error.
    """
    if status == 404:
        return NotFoundUpstream(message, host=host, status=status)
    if status == 403:
        return ForbiddenUpstream(message, host=host, status=status)
    return TransportError(message, host=host, status=status)
