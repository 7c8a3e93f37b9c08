"""
MovieBox client – the surface the web layer calls into.

Wires the host pool, session store, dispatcher, parsers and stream proxy
together:

    from api.client import create_client_from_config

    client = create_client_from_config()
    page = client.search('avatar')
    entity = client.fetch_entity('avatar-WLDIi21IUBa', '8906247916759695608')
    options = client.fetch_download_candidates('8906247916759695608', 'avatar-WLDIi21IUBa')
    result = client.stream(options.best().url, options.cookies, 'bytes=0-')
"""

from __future__ import annotations

import os
import logging
from typing import Any, Optional, Tuple

from api.models import (
    SUBJECT_TYPES,
    DownloadableMetadata,
    DownloadOptions,
    ResolvedEntity,
    SearchPage,
)
from api.parsers.common import is_present, to_int
from api.parsers.detail_parser import parse_detail_page
from api.parsers.download_parser import POLICY_PERMISSIVE, POLICY_STRICT, parse_download_response
from utils.errors import ExtractionError, InvalidRequest, UpstreamAPIError
from utils.headers import HTML_ACCEPT, detail_page_path
from utils.host_pool import HostPool, create_host_pool_from_config
from utils.request_handler import Dispatcher, RequestConfig, create_dispatcher_from_config
from utils.session_store import SessionStore
from utils.stream_proxy import StreamConfig, StreamProxy, StreamResult

logger = logging.getLogger(__name__)

try:
    import config as _config
except ImportError:
    _config = None


API_PREFIX = 'wefeed-h5-bff/web/'
HOME_PATH = API_PREFIX + 'home'
SEARCH_PATH = API_PREFIX + 'subject/search'
SEARCH_SUGGEST_PATH = API_PREFIX + 'subject/search-suggest'
TRENDING_PATH = API_PREFIX + 'subject/trending'
EVERYONE_SEARCH_PATH = API_PREFIX + 'subject/everyone-search'
SEARCH_RANK_PATH = API_PREFIX + 'subject/search-rank'
DOWNLOAD_PATH = API_PREFIX + 'subject/download'
PLAY_PATH = API_PREFIX + 'subject/play'
DETAIL_REC_PATH = API_PREFIX + 'subject/detail-rec'


def get_setting(name: str, default: Any) -> Any:
    """A value from config.py, or *default* when config.py or the name is missing"""
    if _config is None:
        return default
    return getattr(_config, name, default)


def normalize_episode(season: Any = 0, episode: Any = 0) -> Tuple[int, int]:
    """Validate a (season, episode) pair for the download/play endpoints.

    Movies are always ``(0, 0)``: episode 0 forces season 0.  An episode of
    season 0 is rejected.

    Raises:
        InvalidRequest: non-numeric or negative values, or episode > 0 with season 0
    """
    se = to_int(season if is_present(season) else 0)
    ep = to_int(episode if is_present(episode) else 0)
    if se is None or ep is None:
        raise InvalidRequest(f"Season and episode must be integers, got se={season!r} ep={episode!r}")
    if se < 0 or ep < 0:
        raise InvalidRequest(f"Season and episode must not be negative, got se={se} ep={ep}")
    if ep == 0:
        return 0, 0
    if se == 0:
        raise InvalidRequest(f"Episode {ep} requires a season number")
    return se, ep


def _require(value: Any, name: str) -> str:
    text = str(value).strip() if value is not None else ''
    if not text:
        raise InvalidRequest(f"{name} is required")
    return text


def unwrap_api_payload(payload: Any, path: str) -> Any:
    """Return the ``data`` member of a ``{"code", "message", "data"}`` envelope.

    Raises:
        UpstreamAPIError: the envelope carries a non-zero ``code``
        ExtractionError: the body is not JSON
    """
    if not isinstance(payload, (dict, list)):
        raise ExtractionError(f"Expected JSON from {path}, got {type(payload).__name__}")
    if isinstance(payload, list):
        return payload

    code = payload.get('code')
    if is_present(code) and to_int(code, -1) != 0:
        raise UpstreamAPIError(f"{path} failed: code={code} message={payload.get('message', '')!r}")
    return payload.get('data', payload)


class MovieboxClient:
    """Search, metadata, download lists and media streams."""

    def __init__(self, dispatcher: Dispatcher, stream_proxy: StreamProxy,
                 candidate_policy: str = POLICY_PERMISSIVE):
        self.dispatcher = dispatcher
        self.stream_proxy = stream_proxy
        self.candidate_policy = candidate_policy

    @property
    def host_pool(self) -> HostPool:
        return self.dispatcher.host_pool

    @property
    def session_store(self) -> SessionStore:
        return self.dispatcher.session_store

    def _api(self, path: str, method: str = 'GET', params: Optional[dict] = None,
             json_body: Any = None, referer_path: Optional[str] = None) -> Any:
        result = self.dispatcher.dispatch(path, method=method, params=params, json_body=json_body,
                                          referer_path=referer_path)
        return unwrap_api_payload(result.payload, path)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, keyword: str, page: int = 1, per_page: int = 24,
               subject_type: int = SUBJECT_TYPES['ALL']) -> SearchPage:
        """Search the catalogue.

        Raises:
            InvalidRequest: empty keyword, bad paging or unknown subject type
        """
        keyword = _require(keyword, 'keyword')
        if subject_type not in SUBJECT_TYPES.values():
            raise InvalidRequest(f"Unknown subject type {subject_type!r}")
        if page < 1 or per_page < 1:
            raise InvalidRequest(f"page and per_page must be positive, got {page}/{per_page}")

        logger.info(f"[Search] keyword={keyword!r} page={page} per_page={per_page} type={subject_type}")
        data = self._api(SEARCH_PATH, method='POST', json_body={
            'keyword': keyword,
            'page': page,
            'perPage': per_page,
            'subjectType': subject_type,
        })
        return SearchPage.from_payload(data if isinstance(data, dict) else {}, page, per_page)

    def search_suggest(self, keyword: str, per_page: int = 10) -> Any:
        keyword = _require(keyword, 'keyword')
        return self._api(SEARCH_SUGGEST_PATH, method='POST',
                         json_body={'keyword': keyword, 'per_page': per_page})

    def home(self) -> Any:
        return self._api(HOME_PATH)

    def trending(self, page: int = 0, per_page: int = 18) -> Any:
        return self._api(TRENDING_PATH, params={'page': page, 'perPage': per_page})

    def popular_searches(self) -> Any:
        return self._api(EVERYONE_SEARCH_PATH)

    def hot_content(self) -> Any:
        return self._api(SEARCH_RANK_PATH)

    def recommendations(self, subject_id: str, page: int = 1, per_page: int = 24) -> Any:
        subject_id = _require(subject_id, 'subject_id')
        return self._api(DETAIL_REC_PATH, params={'subjectId': subject_id, 'page': page, 'perPage': per_page})

    # ------------------------------------------------------------------
    # Detail pages
    # ------------------------------------------------------------------

    def fetch_detail_html(self, detail_path: str, subject_id: str) -> str:
        """Fetch the raw detail page of a content item."""
        detail_path = _require(detail_path, 'detail_path')
        subject_id = _require(subject_id, 'subject_id')

        page_path = detail_page_path(detail_path)
        result = self.dispatcher.dispatch(page_path, params={'id': subject_id},
                                          referer_path=page_path, accept=HTML_ACCEPT)
        if not isinstance(result.payload, str):
            raise ExtractionError(f"Detail page {detail_path} did not return HTML")
        return result.payload

    def fetch_entity(self, detail_path: str, subject_id: str) -> ResolvedEntity:
        """Fetch and decode a detail page.

        Raises:
            ExtractionError: the page carries no recognisable payload
        """
        entity = parse_detail_page(self.fetch_detail_html(detail_path, subject_id))
        logger.info(f"[Detail] {detail_path}: {entity.title!r}, {len(entity.seasons)} season(s)")
        return entity

    def fetch_downloadable_metadata(self, detail_path: str, subject_id: str) -> DownloadableMetadata:
        return self.fetch_entity(detail_path, subject_id).downloadable_metadata()

    # ------------------------------------------------------------------
    # Downloads and playback
    # ------------------------------------------------------------------

    def fetch_download_candidates(self, subject_id: str, detail_path: str,
                                  season: int = 0, episode: int = 0) -> DownloadOptions:
        """Download candidates for a movie (0, 0) or an episode.

        Returns:
            DownloadOptions, best first, with the session cookies the CDN expects

        Raises:
            InvalidRequest: bad identifiers or season/episode pair
            NoCandidates: the upstream listed nothing usable
        """
        subject_id = _require(subject_id, 'subject_id')
        detail_path = _require(detail_path, 'detail_path')
        se, ep = normalize_episode(season, episode)

        logger.info(f"[Download] Fetching candidates subject={subject_id} se={se} ep={ep}")
        result = self.dispatcher.dispatch(
            DOWNLOAD_PATH,
            params={'subjectId': subject_id, 'se': se, 'ep': ep},
            referer_path=detail_page_path(detail_path),
            accept=HTML_ACCEPT,
        )
        options = parse_download_response(result.payload, self.candidate_policy)
        options.cookies = result.cookies
        return options

    def play_streams(self, subject_id: str, detail_path: str, season: int = 0, episode: int = 0) -> Any:
        """Online playback sources (``subject/play``)."""
        subject_id = _require(subject_id, 'subject_id')
        detail_path = _require(detail_path, 'detail_path')
        se, ep = normalize_episode(season, episode)
        return self._api(PLAY_PATH, params={'subjectId': subject_id, 'se': se, 'ep': ep},
                         referer_path=detail_page_path(detail_path))

    def stream(self, url: str, cookies: Optional[str] = None,
               range_header: Optional[str] = None) -> StreamResult:
        """Relay a media URL obtained from ``fetch_download_candidates``."""
        url = _require(url, 'url')
        return self.stream_proxy.stream(url, cookies, range_header)

    def stream_subtitle(self, url: str, cookies: Optional[str] = None) -> StreamResult:
        url = _require(url, 'url')
        return self.stream_proxy.stream_subtitle(url, cookies)


def create_client_from_config(**overrides) -> MovieboxClient:
    """
    Build a MovieboxClient from config.py (with built-in defaults).

    ``MOVIEBOX_API_HOST`` in the environment overrides the configured primary
    host.  Keyword arguments override individual settings by config name.
    """
    def setting(name, default):
        return overrides.get(name, get_setting(name, default))

    primary = os.environ.get('MOVIEBOX_API_HOST') or setting('MOVIEBOX_API_HOST', None)
    host_pool = create_host_pool_from_config(primary, setting('MIRROR_HOSTS', None))

    dispatcher = create_dispatcher_from_config(
        host_pool,
        SessionStore(),
        timeout=setting('REQUEST_TIMEOUT', 30),
        max_retries=setting('REQUEST_MAX_RETRIES', 2),
        retry_backoff=setting('RETRY_BACKOFF_SECONDS', 1.0),
        timezone=setting('CLIENT_TIMEZONE', RequestConfig.timezone),
    )

    stream_config = StreamConfig(
        media_timeout=setting('MEDIA_TIMEOUT', 300),
        probe_timeout=setting('PROBE_TIMEOUT', 8),
        chunk_size=setting('STREAM_CHUNK_SIZE', StreamConfig.chunk_size),
    )
    stream_proxy = StreamProxy(host_pool.primary, stream_config)

    policy = POLICY_STRICT if setting('REQUIRE_AVAILABLE_FLAG', False) else POLICY_PERMISSIVE
    logger.info(f"Client ready: {len(host_pool)} host(s), candidate policy={policy}")
    return MovieboxClient(dispatcher, stream_proxy, candidate_policy=policy)
