"""
Download-list parser.

The download endpoint answers with JSON (``{"code": 0, "data": {"downloads":
[...], "captions": [...], "limited": false}}``), but mirrors have been seen
returning an HTML page that embeds the same object in its payload.  Both
forms are accepted.

Candidate filtering follows one of two policies:

- permissive (default): a non-empty URL is enough; the ``available`` flag is
  ignored because the upstream sets it inconsistently
- strict: both a URL and a true ``available`` flag are required
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from api.models import CaptionTrack, DownloadCandidate, DownloadOptions
from api.parsers.common import first_present, is_present, to_int
from api.parsers.payload_decoder import find_in_payload
from utils.errors import ExtractionError, NoCandidates, UpstreamAPIError

logger = logging.getLogger(__name__)


POLICY_PERMISSIVE = 'permissive'
POLICY_STRICT = 'strict'


def _coerce_payload(payload: Any) -> Dict[str, Any]:
    """Turn a dict / JSON string / HTML document into the download object."""
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode('utf-8', errors='replace')

    if isinstance(payload, str):
        stripped = payload.lstrip()
        if stripped.startswith('{'):
            try:
                payload = json.loads(stripped)
            except ValueError as e:
                raise ExtractionError(f'Download response is not valid JSON: {e}') from e
        else:
            found = find_in_payload(payload, 'downloads')
            if found is None:
                raise ExtractionError('No download list found in HTML response')
            return found

    if not isinstance(payload, dict):
        raise ExtractionError(f'Unexpected download response type: {type(payload).__name__}')

    code = payload.get('code')
    if is_present(code) and to_int(code, -1) != 0:
        raise UpstreamAPIError(f"Download endpoint rejected the request: code={code} "
                               f"message={payload.get('message', '')!r}")

    data = payload.get('data')
    if isinstance(data, dict):
        return data
    return payload


def parse_candidate(item: Dict[str, Any]) -> Optional[DownloadCandidate]:
    """Build a candidate; None when the entry has no usable resolution."""
    resolution = to_int(item.get('resolution'))
    if resolution is None:
        return None
    url = first_present(item.get('resourceLink'), item.get('resourceUrl'), item.get('url')) or ''
    available = item.get('available')
    return DownloadCandidate(
        resolution=resolution,
        url=str(url).strip(),
        size=to_int(item.get('size')),
        available=True if available is None else bool(available),
        id=str(item.get('id') or ''),
        format=str(item.get('format') or item.get('ext') or ''),
    )


def filter_candidates(candidates: List[DownloadCandidate], policy: str = POLICY_PERMISSIVE) -> List[DownloadCandidate]:
    """Apply the availability policy and sort best first."""
    if policy == POLICY_STRICT:
        kept = [c for c in candidates if c.is_usable and c.available]
    else:
        kept = [c for c in candidates if c.is_usable]
    dropped = len(candidates) - len(kept)
    if dropped:
        logger.debug(f"Dropped {dropped} download candidate(s) under {policy} policy")
    return sorted(kept, key=lambda c: c.resolution, reverse=True)


def parse_caption(item: Dict[str, Any]) -> Optional[CaptionTrack]:
    url = item.get('url')
    if not url:
        return None
    return CaptionTrack(
        language=str(first_present(item.get('lan'), item.get('language')) or ''),
        language_name=str(first_present(item.get('lanName'), item.get('languageName')) or ''),
        url=str(url),
        size=to_int(item.get('size')),
        id=str(item.get('id') or ''),
    )


def parse_download_response(payload: Any, policy: str = POLICY_PERMISSIVE) -> DownloadOptions:
    """Parse a download-endpoint response.

    Args:
        payload: Decoded JSON object, JSON text, or an HTML document
        policy: ``POLICY_PERMISSIVE`` or ``POLICY_STRICT``

    Returns:
        DownloadOptions with candidates (best first) and captions; no cookies

    Raises:
        UpstreamAPIError: the JSON envelope carries a non-zero ``code``
        ExtractionError: no download list could be found
        NoCandidates: nothing survived filtering
    """
    if policy not in (POLICY_PERMISSIVE, POLICY_STRICT):
        raise ValueError(f"Unknown candidate policy: {policy!r}")

    data = _coerce_payload(payload)
    downloads = data.get('downloads')
    if downloads is None:
        raise ExtractionError('Download response has no downloads list')
    if not isinstance(downloads, list):
        raise ExtractionError(f'downloads is a {type(downloads).__name__}, expected a list')

    parsed = [c for c in (parse_candidate(item) for item in downloads if isinstance(item, dict)) if c]
    candidates = filter_candidates(parsed, policy)
    captions = [c for c in (parse_caption(item) for item in data.get('captions') or [] if isinstance(item, dict)) if c]
    limited = bool(data.get('limited', False))

    logger.info(f"Download list: {len(downloads)} entr(ies), {len(candidates)} usable, "
                f"{len(captions)} caption(s){' [limited]' if limited else ''}")

    if not candidates:
        raise NoCandidates(f"No usable download candidates ({len(downloads)} listed, policy={policy})")

    return DownloadOptions(candidates=candidates, captions=captions, limited=limited)
