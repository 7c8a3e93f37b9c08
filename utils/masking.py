"""
Masking utilities for sensitive data in logs.

Session cookies and signed media URLs are credentials: the cookie unlocks
download links and the URL query carries the CDN signature.  Neither may be
written to a log verbatim.
- Full masking (100%): cookie values, tokens
- Partial masking: hostnames (show first/last few chars)
"""

import re
from typing import Optional
from urllib.parse import urlsplit


def mask_partial(value: Optional[str], show_start: int = 2, show_end: int = 2,
                 min_masked: int = 2) -> str:
    """
    Partially mask a value, showing first and last few characters.

    Examples:
        'username' -> 'us****me'
        'abc' -> 'a*c'
    """
    if not value:
        return 'None'

    value_str = str(value)
    length = len(value_str)

    if length <= 2:
        return '*' * length
    if length == 3:
        return value_str[0] + '*' + value_str[-1]

    chars_to_mask = length - show_start - show_end

    if chars_to_mask < min_masked:
        actual_masked = min(min_masked, length - 2)
        total_visible = length - actual_masked
        show_start = min(show_start, max(1, total_visible - 1))
        show_end = max(1, total_visible - show_start)
        chars_to_mask = length - show_start - show_end

    return value_str[:show_start] + '*' * chars_to_mask + value_str[-show_end:]


def mask_ip_address(host: Optional[str]) -> str:
    """
    Mask an IPv4 address (middle octets hidden) or partially mask a hostname.

    Examples:
        '192.168.1.100' -> '192.xxx.xxx.100'
        'example.com' -> 'ex******com'
    """
    if not host:
        return 'None'

    host_str = str(host)
    match = re.match(r'^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$', host_str)
    if match:
        return f"{match.group(1)}.xxx.xxx.{match.group(4)}"

    return mask_partial(host_str, show_start=2, show_end=3)


def mask_cookie_header(cookie_header: Optional[str]) -> str:
    """
    Mask a ``Cookie`` header value, keeping cookie names visible.

    Examples:
        'account=abc123; i18n_lang=en' -> 'account=***; i18n_lang=***'
    """
    if not cookie_header:
        return 'None'

    masked = []
    for part in cookie_header.split(';'):
        part = part.strip()
        if not part:
            continue
        name = part.split('=', 1)[0].strip()
        masked.append(f"{name}=***")
    return '; '.join(masked) if masked else '********'


def mask_signed_url(url: Optional[str]) -> str:
    """
    Strip the query string (signature, expiry) from a media URL.

    Examples:
        'https://cdn.example.com/a/b.mp4?sign=x&t=1' -> 'https://cdn.example.com/a/b.mp4?***'
    """
    if not url:
        return 'None'

    try:
        parts = urlsplit(str(url))
    except ValueError:
        return mask_partial(str(url), show_start=10, show_end=5)

    if not parts.scheme or not parts.netloc:
        return mask_partial(str(url), show_start=10, show_end=5)

    path = parts.path
    if len(path) > 60:
        path = path[:30] + '...' + path[-20:]
    suffix = '?***' if parts.query else ''
    return f"{parts.scheme}://{parts.netloc}{path}{suffix}"
