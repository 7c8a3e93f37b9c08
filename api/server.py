"""
Thin FastAPI REST layer wrapping the MovieBox client.

Run with::

    uvicorn api.server:app --port 8100

or ``python3 -m api.server`` (uses LOG_LEVEL / SERVER_LOG_FILE from config.py).

Endpoints are plain ``def`` functions: FastAPI runs them in its threadpool,
so every inbound call is handled independently.
"""

from __future__ import annotations

import os
import re
import logging
from threading import Lock
from typing import Any, Optional
from urllib.parse import quote, unquote, urlsplit

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask

from api.client import MovieboxClient, create_client_from_config, get_setting
from utils.errors import MovieboxError
from utils.masking import mask_signed_url

logger = logging.getLogger(__name__)


app = FastAPI(
    title='MovieBox Relay API',
    version='0.1.0',
    description='Resilient proxy for the MovieBox content API and media CDN.',
)

_client: Optional[MovieboxClient] = None
_client_lock = Lock()


def get_client() -> MovieboxClient:
    """Process-wide client, built from config.py on first use."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = create_client_from_config()
    return _client


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------

@app.exception_handler(MovieboxError)
async def moviebox_error_handler(request: Request, exc: MovieboxError):
    logger.warning(f"[API] {request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ---------------------------------------------------------------------------
# Request / response schemas (Pydantic models for FastAPI validation)
# ---------------------------------------------------------------------------

class SearchRequest(BaseModel):
    """POST body for /api/search."""
    keyword: str
    page: int = 1
    perPage: int = 24
    subjectType: int = 0


class SuggestRequest(BaseModel):
    """POST body for /api/search-suggest."""
    keyword: str
    per_page: int = 10


class HealthResponse(BaseModel):
    status: str = 'ok'
    total_hosts: int = 0
    healthy_hosts: int = 0
    session_initialized: bool = False


# ---------------------------------------------------------------------------
# Download filenames
# ---------------------------------------------------------------------------

def clean_filename(value: Optional[str]) -> str:
    """Drop characters that are invalid in file names and collapse whitespace."""
    if not value:
        return ''
    return re.sub(r'\s+', ' ', re.sub(r'[<>:"/\\|?*\x00-\x1f]', '', value)).strip()


def extension_from_url(url: str, default: str = 'mp4') -> str:
    name = urlsplit(url).path.rsplit('/', 1)[-1]
    if '.' in name:
        ext = name.rsplit('.', 1)[-1].lower()
        if 0 < len(ext) <= 5 and ext.isalnum():
            return ext
    return default


def media_filename(url: str, title: Optional[str] = None, season: int = 0, episode: int = 0,
                   resolution: Optional[str] = None, default_ext: str = 'mp4') -> str:
    """``Title S01E05_1080p.mp4`` for episodes, ``Title_1080p.mp4`` for movies.

    Without a title the URL's basename is used.
    """
    ext = extension_from_url(url, default_ext)
    if not title:
        basename = clean_filename(unquote(urlsplit(url).path.rsplit('/', 1)[-1]))
        return basename or f"video.{ext}"

    name = clean_filename(title) or 'video'
    res_part = ''
    if resolution:
        res_part = f"_{str(resolution).lower().rstrip('p')}p"
    if season and episode and season > 0 and episode > 0:
        return f"{name} S{season:02d}E{episode:02d}{res_part}.{ext}"
    return f"{name}{res_part}.{ext}"


def content_disposition(filename: str) -> str:
    ascii_name = filename.encode('ascii', 'ignore').decode('ascii').replace('"', '') or 'download'
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


def _streaming_response(result, filename: Optional[str]) -> StreamingResponse:
    headers = dict(result.headers)
    media_type = headers.pop('Content-Type', None)
    if filename:
        headers['Content-Disposition'] = content_disposition(filename)
    return StreamingResponse(
        result.iter_bytes(),
        status_code=result.status_code,
        headers=headers,
        media_type=media_type,
        background=BackgroundTask(result.close),
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get('/api/health', response_model=HealthResponse)
def health_check(client: MovieboxClient = Depends(get_client)):
    """Liveness probe with host pool statistics."""
    stats = client.host_pool.get_statistics()
    return HealthResponse(
        total_hosts=stats['total_hosts'],
        healthy_hosts=stats['healthy_hosts'],
        session_initialized=client.session_store.initialized,
    )


@app.post('/api/search')
def api_search(payload: SearchRequest, client: MovieboxClient = Depends(get_client)):
    """Search movies / series."""
    page = client.search(payload.keyword, payload.page, payload.perPage, payload.subjectType)
    return page.to_dict()


@app.post('/api/search-suggest')
def api_search_suggest(payload: SuggestRequest, client: MovieboxClient = Depends(get_client)):
    return client.search_suggest(payload.keyword, payload.per_page)


@app.get('/api/trending')
def api_trending(page: int = 0, perPage: int = 18, client: MovieboxClient = Depends(get_client)):
    return client.trending(page, perPage)


@app.get('/api/popular-searches')
def api_popular_searches(client: MovieboxClient = Depends(get_client)):
    return client.popular_searches()


@app.get('/api/hot-content')
def api_hot_content(client: MovieboxClient = Depends(get_client)):
    return client.hot_content()


@app.get('/api/home')
def api_home(client: MovieboxClient = Depends(get_client)):
    return client.home()


@app.get('/api/movie/{subject_id}')
def api_movie(subject_id: str, detailPath: str = Query(...),
              client: MovieboxClient = Depends(get_client)):
    """Decoded detail page of a movie or series."""
    entity = client.fetch_entity(detailPath, subject_id)
    data = entity.to_dict()
    data['downloadable'] = entity.downloadable_metadata().to_dict()
    return data


@app.get('/api/download-metadata/{subject_id}')
def api_download_metadata(subject_id: str, detailPath: str = Query(...), se: int = 0, ep: int = 0,
                          client: MovieboxClient = Depends(get_client)):
    """Download candidates, captions and the session cookies needed to fetch them."""
    options = client.fetch_download_candidates(subject_id, detailPath, se, ep)
    return options.to_dict()


@app.get('/api/play/{subject_id}')
def api_play(subject_id: str, detailPath: str = Query(...), se: int = 0, ep: int = 0,
             client: MovieboxClient = Depends(get_client)):
    return client.play_streams(subject_id, detailPath, se, ep)


@app.get('/api/recommendations/{subject_id}')
def api_recommendations(subject_id: str, page: int = 1, perPage: int = 24,
                        client: MovieboxClient = Depends(get_client)) -> Any:
    return client.recommendations(subject_id, page, perPage)


@app.get('/api/download')
def api_download(request: Request, url: str, cookies: Optional[str] = None,
                 filename: Optional[str] = None, title: Optional[str] = None,
                 season: int = 0, episode: int = 0, resolution: Optional[str] = None,
                 client: MovieboxClient = Depends(get_client)):
    """Range-aware relay of a signed media URL."""
    range_header = request.headers.get('range')
    logger.info(f"[API] Download {mask_signed_url(url)} range={range_header or 'none'}")
    result = client.stream(url, cookies, range_header)
    name = clean_filename(filename) or media_filename(url, title, season, episode, resolution)
    return _streaming_response(result, name)


@app.get('/api/download-subtitle')
def api_download_subtitle(url: str, cookies: Optional[str] = None, filename: Optional[str] = None,
                          client: MovieboxClient = Depends(get_client)):
    result = client.stream_subtitle(url, cookies)
    name = clean_filename(filename) or media_filename(url, default_ext='vtt')
    return _streaming_response(result, name)


def main():
    import uvicorn
    from utils.logging_config import setup_logging

    setup_logging(get_setting('SERVER_LOG_FILE', None), get_setting('LOG_LEVEL', 'INFO'))
    uvicorn.run(app, host=os.environ.get('HOST', '0.0.0.0'), port=int(os.environ.get('PORT', '8100')),
                log_config=None)


if __name__ == '__main__':
    main()
