"""
Media Stream Proxy for the MovieBox relay

Relays byte ranges of signed, short-lived CDN URLs to the caller:
- A header-only existence probe maps CDN refusals to semantic errors
  (not found / link expired / region restricted) before any body is sent
- The ranged GET uses the media fingerprint profile and the session cookies
  that came with the URL
- Bytes are relayed chunk by chunk, never buffered whole
- 206/Content-Range are recomputed for the caller's range, even when the
  CDN ignores the Range header and sends the whole file

Usage:
    from utils.stream_proxy import StreamProxy

    proxy = StreamProxy(host_pool.primary)
    result = proxy.stream(url, cookies, 'bytes=100-199')
    for chunk in result.iter_bytes():
        ...
"""

import re
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

import requests

from utils.errors import (
    LinkExpired,
    MovieboxError,
    NotFoundUpstream,
    RangeNotSatisfiable,
    RegionRestricted,
    StreamFault,
    TransportError,
)
from utils.headers import get_media_headers
from utils.host_pool import HostEntry
from utils.masking import mask_signed_url

logger = logging.getLogger(__name__)


CHUNK_SIZE = 64 * 1024

# Query parameters that mark a URL as signed / time-limited
SIGNED_URL_MARKERS = frozenset({
    'sign', 'signature', 'sig', 'expires', 'expire', 'exp', 't', 'e', 'token',
    'auth_key', 'policy', 'key-pair-id', 'hdnts', 'hdnea',
    'x-amz-signature', 'x-amz-expires', 'x-amz-date',
})

_RANGE_RE = re.compile(r'^bytes=(\d*)-(\d*)$')
_CONTENT_RANGE_RE = re.compile(r'^bytes\s+(\d+)-(\d+)/(\d+|\*)$')


# ---------------------------------------------------------------------------
# Byte ranges
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ByteRange:
    """
    A single ``bytes=`` range.

    ``start``/``end`` are inclusive offsets; ``end`` None means "to the end".
    ``suffix`` holds N for ``bytes=-N`` until the total size is known.
    """
    start: int = 0
    end: Optional[int] = None
    suffix: Optional[int] = None

    @classmethod
    def parse(cls, header: Optional[str]) -> Optional['ByteRange']:
        """
        Parse a ``Range`` header.

        Only the first range of a multi-range header is honoured; anything
        unparseable yields None (the caller gets the whole resource).
        """
        if not header:
            return None
        value = header.strip().replace(' ', '')
        if ',' in value:
            value = value.split(',', 1)[0]
        match = _RANGE_RE.match(value)
        if not match:
            return None

        start_s, end_s = match.group(1), match.group(2)
        if not start_s and not end_s:
            return None
        if not start_s:
            suffix = int(end_s)
            if suffix <= 0:
                return None
            return cls(start=0, end=None, suffix=suffix)

        start = int(start_s)
        end = int(end_s) if end_s else None
        if end is not None and end < start:
            return None
        return cls(start=start, end=end)

    def resolve(self, total: Optional[int]) -> 'ByteRange':
        """
        Make the range concrete for a resource of *total* bytes.

        Raises:
            RangeNotSatisfiable: the range starts at or beyond *total*
        """
        if total is None:
            return self
        if self.suffix is not None:
            return ByteRange(start=max(0, total - self.suffix), end=total - 1)
        if self.start >= total:
            raise RangeNotSatisfiable(f"Range start {self.start} beyond resource size {total}")
        end = total - 1 if self.end is None else min(self.end, total - 1)
        return ByteRange(start=self.start, end=end)

    @property
    def chunk_size(self) -> Optional[int]:
        """Number of bytes covered, when the end is known"""
        if self.end is None:
            return None
        return self.end - self.start + 1

    def content_length(self, total: Optional[int] = None) -> Optional[int]:
        """Bytes to send for this range against a resource of *total* bytes"""
        if self.end is not None:
            return self.chunk_size
        if total is not None:
            return max(0, total - self.start)
        return None

    def content_range(self, total: Optional[int]) -> str:
        """``Content-Range`` value, e.g. ``bytes 100-199/1000``"""
        end = self.end
        if end is None and total is not None:
            end = total - 1
        total_s = str(total) if total is not None else '*'
        return f"bytes {self.start}-{'' if end is None else end}/{total_s}"

    def to_header(self) -> str:
        """``Range`` request header value"""
        if self.suffix is not None:
            return f"bytes=-{self.suffix}"
        return f"bytes={self.start}-{'' if self.end is None else self.end}"


def parse_content_range(value: Optional[str]) -> Tuple[Optional[int], Optional[int], Optional[int]]:
    """
    Parse ``bytes start-end/total``.

    Returns:
        (start, end, total); each None when absent or unparseable
    """
    if not value:
        return None, None, None
    match = _CONTENT_RANGE_RE.match(value.strip())
    if not match:
        return None, None, None
    total = None if match.group(3) == '*' else int(match.group(3))
    return int(match.group(1)), int(match.group(2)), total


def _int_header(headers, name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def is_signed_url(url: str) -> bool:
    """True if the URL carries a signature or expiry query parameter"""
    try:
        query = urlsplit(url).query
    except ValueError:
        return False
    return any(key.lower() in SIGNED_URL_MARKERS for key, _ in parse_qsl(query, keep_blank_values=True))


def classify_media_status(status: int, url: str) -> Optional[MovieboxError]:
    """
    Map a CDN status onto the taxonomy.

    Returns:
        The error to raise, or None when the status is not a known refusal
    """
    masked = mask_signed_url(url)
    if status == 404:
        return NotFoundUpstream(f"Media not found: {masked}", status=status)
    if status in (401, 410):
        return LinkExpired(f"Media link expired (HTTP {status}): {masked}", status=status)
    if status == 403:
        if is_signed_url(url):
            return LinkExpired(f"Signed media link rejected, likely expired: {masked}", status=status)
        return RegionRestricted(f"Media access denied, likely region restricted: {masked}", status=status)
    return None


# ---------------------------------------------------------------------------
# Stream result
# ---------------------------------------------------------------------------

class StreamResult:
    """
    Status, headers and a lazy byte iterator for one relayed transfer.

    The upstream connection is released when the iterator finishes, fails,
    or is closed (for example when the downstream client disconnects).
    """

    def __init__(self, status_code: int, headers: Dict[str, str], body: Iterator[bytes],
                 upstream: Optional[requests.Response] = None):
        self.status_code = status_code
        self.headers = headers
        self._body = body
        self._upstream = upstream

    def iter_bytes(self) -> Iterator[bytes]:
        return self._body

    def __iter__(self) -> Iterator[bytes]:
        return self._body

    def close(self) -> None:
        """
        Release the upstream connection, then the body iterator.

        Safe to call from another thread while a worker is blocked reading the
        body: closing the upstream first makes that read fail fast.
        """
        if self._upstream is not None:
            self._upstream.close()
        close = getattr(self._body, 'close', None)
        if close is None:
            return
        try:
            close()
        except ValueError:
            # generator already executing in another thread; it unwinds on its own
            logger.debug("[Stream] Body iterator busy on close, upstream already released")


# ---------------------------------------------------------------------------
# Proxy
# ---------------------------------------------------------------------------

@dataclass
class StreamConfig:
    """Timeouts and chunking for media transfers"""
    connect_timeout: float = 10
    media_timeout: float = 300
    subtitle_timeout: float = 60
    probe_timeout: float = 8
    chunk_size: int = CHUNK_SIZE
    probe: bool = True


class StreamProxy:
    """Transparent byte pipe with media header and cookie substitution"""

    def __init__(self, origin_host: HostEntry, config: Optional[StreamConfig] = None,
                 session: Optional[requests.Session] = None):
        """
        Args:
            origin_host: Selected pool host, sent as Origin
            config: StreamConfig instance
            session: requests.Session for connection reuse
        """
        self.origin_host = origin_host
        self.config = config or StreamConfig()
        self.session = session or requests.Session()

    def probe(self, url: str, cookies: Optional[str] = None) -> Optional[int]:
        """
        Header-only existence check.

        Known refusals (404, 401, 403, 410) raise; everything else, including
        timeouts and resets, is logged and ignored since the full request is
        the authoritative attempt.

        Returns:
            The resource size when the CDN reported one, else None
        """
        headers = get_media_headers(self.origin_host, cookies, range_header=None)
        masked = mask_signed_url(url)
        try:
            response = self.session.head(url, headers=headers, timeout=self.config.probe_timeout,
                                         allow_redirects=True)
        except requests.RequestException as e:
            logger.warning(f"[Stream] Probe failed for {masked} ({type(e).__name__}), continuing with GET")
            return None

        try:
            error = classify_media_status(response.status_code, url)
            if error is not None:
                logger.error(f"[Stream] Probe rejected {masked}: HTTP {response.status_code}")
                raise error
            if response.status_code >= 400:
                logger.warning(f"[Stream] Probe got HTTP {response.status_code} for {masked}, continuing with GET")
                return None
            return _int_header(response.headers, 'Content-Length')
        finally:
            response.close()

    def stream(self, url: str, cookies: Optional[str] = None, range_header: Optional[str] = None,
               default_content_type: str = 'video/mp4', timeout: Optional[float] = None,
               probe: Optional[bool] = None) -> StreamResult:
        """
        Open a relayed transfer of *url*.

        Args:
            url: Signed upstream media URL
            cookies: Session cookies issued with the URL
            range_header: Caller's ``Range`` header, if any
            default_content_type: Used when the CDN sends no Content-Type
            timeout: Read timeout override (media_timeout if None)
            probe: Run the existence probe first (config default if None)

        Returns:
            StreamResult with 206 + Content-Range when a range was honoured, else 200

        Raises:
            NotFoundUpstream, LinkExpired, RegionRestricted: CDN refusals
            RangeNotSatisfiable: range beyond the resource
            TransportError: the GET could not be opened
        """
        masked = mask_signed_url(url)
        requested = ByteRange.parse(range_header)

        total_hint = None
        if self.config.probe if probe is None else probe:
            total_hint = self.probe(url, cookies)

        if requested is not None and total_hint is not None:
            resolved = requested.resolve(total_hint)
            if requested.suffix is not None:
                requested = resolved

        upstream_range = requested.to_header() if requested is not None else 'bytes=0-'
        headers = get_media_headers(self.origin_host, cookies, range_header=upstream_range)

        logger.info(f"[Stream] GET {masked} range={upstream_range} cookies={'yes' if cookies else 'no'}")
        try:
            response = self.session.get(
                url,
                headers=headers,
                stream=True,
                timeout=(self.config.connect_timeout, timeout or self.config.media_timeout),
                allow_redirects=True,
            )
        except requests.RequestException as e:
            logger.error(f"[Stream] Could not open {masked}: {type(e).__name__}: {e}")
            raise TransportError(f"Could not open media stream: {type(e).__name__}") from e

        if response.status_code >= 400:
            response.close()
            error = classify_media_status(response.status_code, url)
            if error is None and response.status_code == 416:
                error = RangeNotSatisfiable(f"Media CDN rejected range {upstream_range}", status=416)
            if error is None:
                error = TransportError(f"Media CDN answered HTTP {response.status_code}",
                                       status=response.status_code)
            logger.error(f"[Stream] {masked} failed: HTTP {response.status_code}")
            raise error

        try:
            return self._build_result(response, requested, total_hint, default_content_type, url)
        except MovieboxError:
            response.close()
            raise

    def stream_subtitle(self, url: str, cookies: Optional[str] = None) -> StreamResult:
        """Relay a subtitle file with the media profile and a short timeout"""
        return self.stream(url, cookies, range_header=None, default_content_type='text/vtt',
                           timeout=self.config.subtitle_timeout, probe=False)

    def _build_result(self, response: requests.Response, requested: Optional[ByteRange],
                      total_hint: Optional[int], default_content_type: str, url: str) -> StreamResult:
        upstream_status = response.status_code
        upstream_length = _int_header(response.headers, 'Content-Length')
        cr_start, cr_end, cr_total = parse_content_range(response.headers.get('Content-Range'))

        if upstream_status == 206:
            total = cr_total if cr_total is not None else total_hint
        else:
            total = upstream_length if upstream_length is not None else total_hint

        out_headers = {
            'Content-Type': response.headers.get('Content-Type') or default_content_type,
            'Accept-Ranges': 'bytes',
        }

        if requested is None:
            # Whole resource; the CDN may still have answered 206 to bytes=0-
            length = total if total is not None else upstream_length
            if length is not None:
                out_headers['Content-Length'] = str(length)
            body = self._relay(response, skip=0, limit=length, url=url)
            return StreamResult(200, out_headers, body, response)

        byte_range = requested.resolve(total)
        if upstream_status == 206 and cr_start is not None:
            # CDN sliced for us; trust its offsets
            if byte_range.suffix is not None:
                byte_range = ByteRange(start=cr_start, end=cr_end)
            elif byte_range.end is None:
                byte_range = ByteRange(start=byte_range.start, end=cr_end)
            skip = max(0, byte_range.start - cr_start)
        else:
            skip = byte_range.start

        if byte_range.end is None and total is None:
            # Size unknown everywhere: no valid Content-Range exists, send the whole body
            logger.debug(f"[Stream] Size of {mask_signed_url(url)} unknown, "
                         f"answering {requested.to_header()} with the full body")
            body = self._relay(response, skip=0, limit=None, url=url)
            return StreamResult(200, out_headers, body, response)

        length = byte_range.content_length(total)
        out_headers['Content-Range'] = byte_range.content_range(total)
        if length is not None:
            out_headers['Content-Length'] = str(length)

        logger.debug(f"[Stream] Relaying {out_headers['Content-Range']} "
                     f"(upstream HTTP {upstream_status}, skip={skip})")
        body = self._relay(response, skip=skip, limit=length, url=url)
        return StreamResult(206, out_headers, body, response)

    def _relay(self, response: requests.Response, skip: int, limit: Optional[int],
               url: str) -> Iterator[bytes]:
        """
        Yield the upstream body, dropping *skip* leading bytes and stopping
        after *limit* bytes.

        Raises StreamFault when the transfer breaks or ends short of *limit*.
        """
        sent = 0
        if limit == 0:
            response.close()
            return
        try:
            for chunk in response.iter_content(chunk_size=self.config.chunk_size):
                if not chunk:
                    continue
                if skip:
                    if len(chunk) <= skip:
                        skip -= len(chunk)
                        continue
                    chunk = chunk[skip:]
                    skip = 0
                if limit is not None:
                    chunk = chunk[:limit - sent]
                sent += len(chunk)
                yield chunk
                if limit is not None and sent >= limit:
                    break
        except requests.RequestException as e:
            logger.error(f"[Stream] Transfer of {mask_signed_url(url)} broke after {sent} bytes: {e}")
            raise StreamFault(f"Upstream transfer failed after {sent} bytes") from e
        finally:
            response.close()

        if limit is not None and sent < limit:
            logger.error(f"[Stream] Transfer of {mask_signed_url(url)} ended early: {sent}/{limit} bytes")
            raise StreamFault(f"Upstream transfer ended after {sent} of {limit} bytes")
