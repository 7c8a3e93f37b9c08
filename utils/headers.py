"""
Header fingerprint profiles.

The upstream tells browser traffic from automation by its headers, and it
checks two different sets:

- metadata profile: API and detail-page calls against a host in the pool
- media profile: CDN transfers of signed video/subtitle URLs

The two are never interchangeable.  The CDN in particular only accepts the
fixed third-party ``Referer`` below, regardless of which host issued the URL.
"""

import json
from typing import Dict, Optional

from utils.host_pool import HostEntry


METADATA_USER_AGENT = 'mozilla/5.0aoneroom.com/'

MEDIA_USER_AGENT = 'Mozilla/5.0 (X11; Linux x86_64; rv:137.0) Gecko/20100101 Firefox/137.0'

# The CDN rejects media requests carrying any other Referer
DOWNLOAD_REQUEST_REFERER = 'https://fmoviesunblocked.net/'

JSON_ACCEPT = 'application/json'

HTML_ACCEPT = 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8'

DEFAULT_TIMEZONE = 'Africa/Nairobi'


def client_info(timezone: str = DEFAULT_TIMEZONE) -> str:
    """Value of the ``X-client-info`` marker header"""
    return json.dumps({'timezone': timezone}, separators=(',', ':'))


def detail_page_path(detail_path: str) -> str:
    """Path of a content item's detail page, relative to a host"""
    return f"movies/{detail_path.strip('/')}"


def get_metadata_headers(host: HostEntry, referer_path: Optional[str] = None,
                         accept: str = JSON_ACCEPT,
                         timezone: str = DEFAULT_TIMEZONE) -> Dict[str, str]:
    """
    Metadata profile for a call against *host*.

    Args:
        host: The pool entry actually being contacted
        referer_path: Host-relative page the call claims to come from,
                      e.g. ``movies/avatar-WLDIi21IUBa``; the host root if None
        accept: ``Accept`` value (JSON for API calls, HTML for pages)
        timezone: Timezone carried in ``X-client-info``

    Returns:
        Header dict; no Cookie (the dispatcher attaches the session)
    """
    referer = host.url_for(referer_path) if referer_path else host.base_url
    return {
        'Accept': accept,
        'Accept-Language': 'en-US, en;q=0.5',
        'User-Agent': METADATA_USER_AGENT,
        'Referer': referer,
        'Host': host.netloc,
        'X-client-info': client_info(timezone),
    }


def get_media_headers(origin_host: HostEntry, cookies: Optional[str] = None,
                      range_header: Optional[str] = 'bytes=0-') -> Dict[str, str]:
    """
    Media profile for a CDN transfer.

    Args:
        origin_host: Selected pool host, sent as ``Origin`` without trailing slash
        cookies: Session cookie string from the metadata call that issued the URL
        range_header: ``Range`` value; None omits the header (existence probes)

    Returns:
        Header dict
    """
    headers = {
        'Accept': '*/*',
        'User-Agent': MEDIA_USER_AGENT,
        'Origin': origin_host.origin,
        'Referer': DOWNLOAD_REQUEST_REFERER,
        'Accept-Language': 'en-US,en;q=0.5',
    }
    if range_header:
        headers['Range'] = range_header
    if cookies:
        headers['Cookie'] = cookies
    return headers
