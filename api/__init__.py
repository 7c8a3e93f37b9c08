"""
MovieBox Relay – API Layer.

This package decodes MovieBox detail pages and download lists, exposes a
client facade over the resilient dispatcher and stream proxy, and a thin
FastAPI REST interface for front-end applications.

Quick start (Python)::

    from api.client import create_client_from_config

    client = create_client_from_config()
    entity = client.fetch_entity('avatar-WLDIi21IUBa', '8906247916759695608')

Quick start (REST)::

    uvicorn api.server:app
"""

from api.models import (
    SUBJECT_TYPES,
    DOWNLOAD_QUALITIES,
    SeasonEntry,
    ResolvedEntity,
    DownloadableMetadata,
    DownloadCandidate,
    CaptionTrack,
    DownloadOptions,
    SearchPage,
)
from api.parsers import (
    parse_detail_page,
    parse_download_response,
)

__all__ = [
    # Models
    'SUBJECT_TYPES',
    'DOWNLOAD_QUALITIES',
    'SeasonEntry',
    'ResolvedEntity',
    'DownloadableMetadata',
    'DownloadCandidate',
    'CaptionTrack',
    'DownloadOptions',
    'SearchPage',
    # Parsers
    'parse_detail_page',
    'parse_download_response',
]
