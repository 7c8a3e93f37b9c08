"""
Session Store for the MovieBox relay

Holds the process-wide upstream session as an ordered ``name -> value`` map
behind a lock.  The ``Cookie`` header form ("a=1; b=2") is derived from it.

Merge rules:
- merge is by cookie name, the incoming value wins
- names not present in the incoming cookies are kept
- merging the same cookies twice is a no-op the second time
"""

import logging
from collections import OrderedDict
from threading import Lock
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from utils.masking import mask_cookie_header


logger = logging.getLogger(__name__)


CookieInput = Union[str, Mapping[str, str], Iterable[Tuple[str, str]], None]


def parse_cookie_string(cookie_string: Optional[str]) -> "OrderedDict[str, str]":
    """
    Parse a ``Cookie`` header value into an ordered mapping.

    Empty segments and segments without a name are skipped.
    """
    cookies: "OrderedDict[str, str]" = OrderedDict()
    if not cookie_string:
        return cookies
    for part in cookie_string.split(';'):
        part = part.strip()
        if not part:
            continue
        name, sep, value = part.partition('=')
        name = name.strip()
        if not name or not sep:
            continue
        cookies[name] = value.strip()
    return cookies


def parse_set_cookie_header(set_cookie: str) -> Optional[Tuple[str, str]]:
    """
    Extract ``(name, value)`` from one ``Set-Cookie`` header value.

    Attributes after the first ';' (Path, Expires, HttpOnly ...) are ignored.
    """
    if not set_cookie:
        return None
    pair = set_cookie.split(';', 1)[0].strip()
    name, sep, value = pair.partition('=')
    name = name.strip()
    if not name or not sep:
        return None
    return name, value.strip()


def format_cookie_string(cookies: Mapping[str, str]) -> str:
    """Render a mapping as a ``Cookie`` header value"""
    return '; '.join(f"{name}={value}" for name, value in cookies.items())


def _to_pairs(cookies: CookieInput):
    if cookies is None:
        return []
    if isinstance(cookies, str):
        return list(parse_cookie_string(cookies).items())
    if isinstance(cookies, Mapping):
        return list(cookies.items())
    return list(cookies)


class SessionStore:
    """
    Lock-guarded holder of the upstream session cookies.

    Concurrent merges are serialised; two writers setting the same name leave
    the last writer's value, which is fine for idempotent session identifiers.
    """

    def __init__(self, initial: CookieInput = None):
        self._cookies: "OrderedDict[str, str]" = OrderedDict()
        self._lock = Lock()
        self.initialized = False
        if initial:
            self.merge(initial)

    @property
    def value(self) -> Optional[str]:
        """Current ``Cookie`` header value, or None when no cookie is known"""
        with self._lock:
            if not self._cookies:
                return None
            return format_cookie_string(self._cookies)

    def get(self, name: str) -> Optional[str]:
        with self._lock:
            return self._cookies.get(name)

    def as_dict(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._cookies)

    def __bool__(self) -> bool:
        with self._lock:
            return bool(self._cookies)

    def merge(self, cookies: CookieInput) -> Dict[str, str]:
        """
        Merge cookies into the session by name.

        Args:
            cookies: A ``Cookie`` header string, a mapping, or (name, value) pairs

        Returns:
            The names whose value was added or changed by this merge
        """
        pairs = _to_pairs(cookies)
        changed: Dict[str, str] = {}
        with self._lock:
            for name, value in pairs:
                if not name:
                    continue
                if self._cookies.get(name) != value:
                    self._cookies[name] = value
                    changed[name] = value
            if pairs:
                self.initialized = True

        if changed:
            logger.debug(f"[Session] Merged {len(changed)} cookie(s): {mask_cookie_header(format_cookie_string(changed))}")
        return changed

    def merge_set_cookie_headers(self, headers: Iterable[str]) -> Dict[str, str]:
        """Merge raw ``Set-Cookie`` header values"""
        pairs = []
        for header in headers or []:
            parsed = parse_set_cookie_header(header)
            if parsed:
                pairs.append(parsed)
        return self.merge(pairs)
