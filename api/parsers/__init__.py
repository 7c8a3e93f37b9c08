"""
MovieBox payload parsers – public API.

Usage::

    from api.parsers import parse_detail_page, parse_download_response
    from api.parsers import decode_document, find_in_payload
"""

from api.parsers.payload_decoder import (
    PayloadResolver,
    decode_document,
    find_in_payload,
    resolve_payload,
    select_entity,
)
from api.parsers.detail_parser import (
    build_entity,
    parse_detail_page,
    parse_downloadable_metadata,
)
from api.parsers.download_parser import (
    POLICY_PERMISSIVE,
    POLICY_STRICT,
    parse_download_response,
)

__all__ = [
    'PayloadResolver',
    'decode_document',
    'find_in_payload',
    'resolve_payload',
    'select_entity',
    'build_entity',
    'parse_detail_page',
    'parse_downloadable_metadata',
    'POLICY_PERMISSIVE',
    'POLICY_STRICT',
    'parse_download_response',
]
