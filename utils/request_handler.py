"""
Request Dispatcher for the MovieBox relay

This module issues logical API calls against the host pool and supports:
- Retry with failover across the primary host and its mirrors
- Metadata fingerprint headers built for the host actually contacted
- Session cookie attachment and name-wise merging of new cookies
- Fail-fast on 404/403 (no mirror will answer those differently)

Usage:
    from utils.request_handler import Dispatcher, RequestConfig

    dispatcher = Dispatcher(host_pool, session_store, RequestConfig(timeout=30))
    payload, cookies = dispatcher.dispatch('wefeed-h5-bff/web/home')[:2]
"""

import json
import time
import logging
from dataclasses import dataclass
from http.cookiejar import DefaultCookiePolicy
from threading import Lock
from typing import Any, Dict, List, NamedTuple, Optional

import requests
from requests.structures import CaseInsensitiveDict

from utils.errors import (
    ExtractionError,
    ForbiddenUpstream,
    MovieboxError,
    NotFoundUpstream,
    TransportError,
    error_for_status,
)
from utils.headers import DEFAULT_TIMEZONE, JSON_ACCEPT, get_metadata_headers
from utils.host_pool import HostEntry, HostPool
from utils.masking import mask_cookie_header, mask_ip_address
from utils.session_store import SessionStore

logger = logging.getLogger(__name__)


SESSION_BOOTSTRAP_PATH = 'wefeed-h5-bff/app/get-latest-app-pkgs?app_name=moviebox'


@dataclass
class RequestConfig:
    """Configuration for the dispatcher"""
    timeout: float = 30
    max_retries: int = 2
    retry_backoff: float = 1.0
    timezone: str = DEFAULT_TIMEZONE
    bootstrap_session: bool = True
    bootstrap_path: str = SESSION_BOOTSTRAP_PATH


class DispatchResult(NamedTuple):
    """Outcome of a successful dispatch"""
    payload: Any
    cookies: Optional[str]
    host: Optional[HostEntry] = None
    status_code: int = 200


class Dispatcher:
    """
    Multi-host failover dispatcher with session cookie management.

    The pool is walked in order on every attempt.  The first host that answers
    with a non-error status wins; 404/403 abort everything at once; any other
    failure moves on to the next host.  After a full pass without success the
    dispatcher sleeps ``retry_backoff * (attempt + 1)`` seconds and starts over.
    """

    def __init__(self, host_pool: HostPool, session_store: Optional[SessionStore] = None,
                 config: Optional[RequestConfig] = None,
                 session: Optional[requests.Session] = None):
        """
        Initialize the dispatcher.

        Args:
            host_pool: Ordered upstream hosts
            session_store: Shared session cookies (a fresh store if None)
            config: RequestConfig instance with timeouts and retry settings
            session: requests.Session for connection reuse
        """
        self.host_pool = host_pool
        self.session_store = session_store if session_store is not None else SessionStore()
        self.config = config or RequestConfig()
        self.session = session or requests.Session()
        # Cookies live in the SessionStore only; the requests jar would otherwise
        # replay stale values behind its back
        self.session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))

        self._bootstrap_lock = Lock()
        self._bootstrap_attempted = not self.config.bootstrap_session

    # ------------------------------------------------------------------
    # Session bootstrap
    # ------------------------------------------------------------------

    def ensure_session(self) -> Optional[str]:
        """
        Populate the session store once from the app-info endpoint.

        A failed bootstrap is logged and not repeated; later responses that set
        cookies still populate the store.

        Returns:
            The current cookie string, or None
        """
        if self._bootstrap_attempted or self.session_store.initialized:
            return self.session_store.value

        with self._bootstrap_lock:
            if self._bootstrap_attempted or self.session_store.initialized:
                return self.session_store.value
            self._bootstrap_attempted = True

            logger.info("[Session] Initializing cookies from app info endpoint...")
            try:
                result = self.dispatch(self.config.bootstrap_path, max_retries=0,
                                       skip_session_init=True)
            except MovieboxError as e:
                logger.warning(f"[Session] Cookie bootstrap failed, continuing without session: {e}")
                return None

            if result.cookies:
                logger.info(f"[Session] Cookies initialized: {mask_cookie_header(result.cookies)}")
            else:
                logger.warning("[Session] No cookies received from app info endpoint")
            return result.cookies

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_headers(self, host: HostEntry, extra_headers: Optional[Dict[str, str]] = None,
                      referer_path: Optional[str] = None,
                      accept: str = JSON_ACCEPT) -> Dict[str, str]:
        """
        Merge the metadata profile for *host* with caller headers.

        Caller headers win on conflicting keys (case-insensitive).  The session
        cookie is attached only when the caller did not supply a Cookie.
        """
        headers = CaseInsensitiveDict(get_metadata_headers(
            host, referer_path=referer_path, accept=accept, timezone=self.config.timezone))
        if extra_headers:
            headers.update(extra_headers)

        if 'Cookie' not in headers:
            cookies = self.session_store.value
            if cookies:
                headers['Cookie'] = cookies
        return dict(headers)

    def _do_request(self, method: str, url: str, headers: Dict[str, str],
                    params: Optional[Dict], json_body: Any, context_msg: str) -> requests.Response:
        """Execute a single HTTP request; transport errors propagate."""
        logger.debug(f"[{context_msg}] {method} {url}")
        if 'Cookie' in headers:
            logger.debug(f"[{context_msg}] Cookie: {mask_cookie_header(headers['Cookie'])}")

        response = self.session.request(
            method,
            url,
            headers=headers,
            params=params,
            json=json_body,
            timeout=self.config.timeout,
        )
        logger.debug(f"[{context_msg}] Response: HTTP {response.status_code}")
        return response

    # ------------------------------------------------------------------
    # Response handling
    # ------------------------------------------------------------------

    @staticmethod
    def extract_set_cookie_headers(response: requests.Response) -> List[str]:
        """
        Return every raw ``Set-Cookie`` header value of the response.

        Mirrors set cookies scoped to the canonical upstream domain, which the
        requests cookie jar rejects as a domain mismatch, so the urllib3
        headers are read directly.
        """
        raw_headers = getattr(response.raw, 'headers', None)
        if raw_headers is not None and hasattr(raw_headers, 'getlist'):
            return list(raw_headers.getlist('Set-Cookie'))
        # Folded by requests; only reliable for a single cookie
        header = response.headers.get('Set-Cookie')
        return [header] if header else []

    def _merge_response_cookies(self, response: requests.Response, context_msg: str) -> Optional[str]:
        set_cookies = self.extract_set_cookie_headers(response)
        if set_cookies:
            changed = self.session_store.merge_set_cookie_headers(set_cookies)
            if changed:
                logger.debug(f"[{context_msg}] Session updated with {len(changed)} new cookie value(s)")
        return self.session_store.value

    @staticmethod
    def decode_payload(response: requests.Response) -> Any:
        """
        Decode a response body.

        JSON content types (or bodies that parse as JSON) become Python
        objects; anything else is returned as text.
        """
        content_type = response.headers.get('Content-Type', '') or ''
        if 'json' in content_type.lower():
            try:
                return response.json()
            except ValueError as e:
                raise ExtractionError(f"Upstream sent invalid JSON: {e}") from e

        text = response.text
        stripped = text.lstrip()
        if stripped.startswith('{') or stripped.startswith('['):
            try:
                return json.loads(stripped)
            except ValueError:
                pass
        return text

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, path: str, method: str = 'GET', params: Optional[Dict] = None,
                 json_body: Any = None, headers: Optional[Dict[str, str]] = None,
                 max_retries: Optional[int] = None, referer_path: Optional[str] = None,
                 accept: str = JSON_ACCEPT, skip_session_init: bool = False) -> DispatchResult:
        """
        Issue a logical request against the host pool.

        Args:
            path: Host-relative API path (an absolute URL bypasses the pool prefix)
            method: HTTP method
            params: Query parameters
            json_body: JSON request body
            headers: Extra headers; win over the metadata profile
            max_retries: Number of extra passes over the pool (config default if None)
            referer_path: Host-relative page used as Referer
            accept: Accept header of the metadata profile
            skip_session_init: Do not run the session bootstrap first

        Returns:
            DispatchResult(payload, cookies, host, status_code)

        Raises:
            NotFoundUpstream / ForbiddenUpstream: immediately, on 404/403
            TransportError: the last error after every attempt on every host failed
        """
        if not skip_session_init:
            self.ensure_session()

        retries = self.config.max_retries if max_retries is None else max_retries
        last_error: Optional[MovieboxError] = None

        for attempt in range(retries + 1):
            for host in self.host_pool:
                context_msg = f"Dispatcher {mask_ip_address(host.netloc)}"
                url = host.url_for(path)
                req_headers = self.build_headers(host, headers, referer_path, accept)

                try:
                    response = self._do_request(method, url, req_headers, params, json_body, context_msg)
                except requests.RequestException as e:
                    logger.warning(f"[{context_msg}] {type(e).__name__}: {e}")
                    error = TransportError(f"{type(e).__name__}: {e}", host=host.netloc)
                    error.__cause__ = e
                    last_error = error
                    self.host_pool.mark_failure(host, type(e).__name__)
                    continue

                if response.status_code >= 400:
                    error = error_for_status(
                        response.status_code,
                        f"HTTP {response.status_code} from {host.netloc} for {path}",
                        host=host.netloc,
                    )
                    response.close()
                    if isinstance(error, (NotFoundUpstream, ForbiddenUpstream)):
                        logger.error(f"[{context_msg}] HTTP {response.status_code} for {path}, not trying other hosts")
                        raise error
                    logger.warning(f"[{context_msg}] HTTP {response.status_code} for {path}, trying next host")
                    last_error = error
                    self.host_pool.mark_failure(host, f"HTTP {response.status_code}")
                    continue

                self.host_pool.mark_success(host)
                cookies = self._merge_response_cookies(response, context_msg)
                payload = self.decode_payload(response)
                return DispatchResult(payload, cookies, host, response.status_code)

            if attempt < retries:
                delay = self.config.retry_backoff * (attempt + 1)
                logger.warning(f"[Dispatcher] All {len(self.host_pool)} host(s) failed for {path} "
                               f"(attempt {attempt + 1}/{retries + 1}), retrying in {delay}s")
                if delay > 0:
                    time.sleep(delay)

        logger.error(f"[Dispatcher] Request failed after {retries + 1} attempt(s) on every host: {path}")
        raise last_error or TransportError(f"Request failed after all retries: {path}")


def create_dispatcher_from_config(host_pool: HostPool, session_store: Optional[SessionStore] = None,
                                  **config_kwargs) -> Dispatcher:
    """
    Create a Dispatcher instance from configuration.

    Args:
        host_pool: HostPool instance
        session_store: Optional shared SessionStore
        **config_kwargs: Configuration parameters for RequestConfig

    Returns:
        Configured Dispatcher instance
    """
    config = RequestConfig(**config_kwargs)
    return Dispatcher(host_pool, session_store=session_store, config=config)
