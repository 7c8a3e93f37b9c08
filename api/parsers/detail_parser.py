"""
Detail-page parser.

Builds a ``ResolvedEntity`` from a content item's detail page: subject,
resource (with seasons re-derived from episode counts), stars, metadata,
and the side lists the page carries (posts, recommendations, hot list).

Ratings may sit on either ``subject`` or ``metadata``; both maps of the
result carry ``imdbRatingValue`` and ``imdbRatingCount``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from api.models import DownloadableMetadata, ResolvedEntity
from api.parsers.common import (
    build_seasons,
    first_present,
    normalize_subtitle_languages,
    parse_resolutions,
)
from api.parsers.payload_decoder import decode_document
from utils.errors import ExtractionError

logger = logging.getLogger(__name__)


# Keys of resData exposed as dedicated entity fields
_RES_DATA_FIELDS = (
    'subject', 'stars', 'resource', 'metadata', 'postList', 'forYou', 'hot',
    'shareParam', 'pubParam', 'url', 'referer',
)


def _as_dict(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


def _as_list(value: Any) -> list:
    return list(value) if isinstance(value, (list, tuple)) else []


def build_entity(state: Dict[str, Any]) -> ResolvedEntity:
    """Assemble a ResolvedEntity from a decoded page state.

    Raises:
        ExtractionError: *state* has no ``resData`` map
    """
    res_data = state.get('resData')
    if not isinstance(res_data, dict):
        raise ExtractionError('Page state has no resData')

    subject = _as_dict(res_data.get('subject'))
    metadata = _as_dict(res_data.get('metadata'))
    resource = _as_dict(res_data.get('resource'))

    rating = first_present(subject.get('imdbRatingValue'), metadata.get('imdbRatingValue'))
    rating_count = first_present(subject.get('imdbRatingCount'), metadata.get('imdbRatingCount'))
    subject['imdbRatingValue'] = rating
    subject['imdbRatingCount'] = rating_count
    metadata['imdbRatingValue'] = rating
    metadata['imdbRatingCount'] = rating_count

    seasons = build_seasons(resource)
    if seasons:
        resource['seasons'] = [s.to_dict() for s in seasons]

    subtitles = normalize_subtitle_languages(
        first_present(subject.get('subtitles'), resource.get('subtitles')))

    extra = {key: value for key, value in state.items() if key != 'resData'}
    extra.update({key: value for key, value in res_data.items() if key not in _RES_DATA_FIELDS})

    return ResolvedEntity(
        subject=subject,
        resource=resource,
        stars=_as_list(res_data.get('stars')),
        metadata=metadata,
        seasons=seasons,
        available_resolutions=parse_resolutions(resource.get('resolutions')),
        subtitle_languages=subtitles,
        imdb_rating=rating,
        imdb_rating_count=rating_count,
        post_list=_as_dict(res_data.get('postList')),
        for_you=_as_list(res_data.get('forYou')),
        hot=_as_list(res_data.get('hot')),
        share_param=_as_dict(res_data.get('shareParam')),
        pub_param=_as_dict(res_data.get('pubParam')),
        url=first_present(res_data.get('url'), state.get('url')),
        referer=first_present(res_data.get('referer'), state.get('referer')),
        extra=extra,
    )


def parse_detail_page(html: str) -> ResolvedEntity:
    """Decode a detail page into a ResolvedEntity.

    Raises:
        ExtractionError: the page carries no recognisable payload
    """
    entity = build_entity(decode_document(html))
    logger.debug(f"Parsed detail page: title={entity.title!r}, seasons={len(entity.seasons)}, "
                 f"rating={entity.imdb_rating}")
    return entity


def parse_downloadable_metadata(html: str) -> DownloadableMetadata:
    """Season / resolution / subtitle summary of a detail page."""
    return parse_detail_page(html).downloadable_metadata()
