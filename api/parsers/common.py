"""
Shared parsing utilities used by the payload decoder, detail and download parsers.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag

from api.models import SeasonEntry
from utils.errors import ExtractionError

logger = logging.getLogger(__name__)


# Nuxt marks shallow-reactive state keys with this prefix
KEY_PREFIX = '$s'


# ---------------------------------------------------------------------------
# Embedded payload location
# ---------------------------------------------------------------------------

def locate_payload_script(html: str) -> Optional[Tag]:
    """Return the ``<script>`` tag holding the embedded state array.

    Lookup order:
        1. ``<script id="__NUXT_DATA__">``
        2. ``<script type="application/json" data-nuxt-data>``
        3. the first ``<script type="application/json">``
    """
    soup = BeautifulSoup(html, 'html.parser')

    script = soup.find('script', id='__NUXT_DATA__')
    if script is None:
        script = soup.find('script', attrs={'type': 'application/json', 'data-nuxt-data': True})
    if script is None:
        script = soup.find('script', attrs={'type': 'application/json'})
    return script


def load_payload(html: str) -> List[Any]:
    """Locate and parse the embedded flat payload array.

    Raises:
        ExtractionError: no payload script, invalid JSON, or not an array
    """
    if not html or not isinstance(html, str):
        raise ExtractionError('Empty document, no embedded payload')

    script = locate_payload_script(html)
    if script is None:
        raise ExtractionError('No embedded JSON payload found in page')

    text = script.string if script.string is not None else script.get_text()
    try:
        payload = json.loads(text)
    except ValueError as e:
        raise ExtractionError(f'Embedded payload is not valid JSON: {e}') from e

    if not isinstance(payload, list):
        raise ExtractionError(f'Embedded payload is a {type(payload).__name__}, expected an array')
    logger.debug(f"Loaded embedded payload with {len(payload)} element(s)")
    return payload


# ---------------------------------------------------------------------------
# Key / value normalisation
# ---------------------------------------------------------------------------

def strip_key_prefix(data: Dict[str, Any], prefix: str = KEY_PREFIX) -> Dict[str, Any]:
    """Return a copy of *data* with *prefix* removed from top-level keys."""
    return {
        (key[len(prefix):] if isinstance(key, str) and key.startswith(prefix) else key): value
        for key, value in data.items()
    }


def to_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Coerce ints, floats and numeric strings; *default* otherwise."""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        text = value.strip().rstrip('pP')
        try:
            return int(float(text))
        except ValueError:
            return default
    return default


def is_present(value: Any) -> bool:
    """None and '' count as absent; 0 and False do not."""
    return value is not None and value != ''


def first_present(*values: Any) -> Any:
    for value in values:
        if is_present(value):
            return value
    return None


def normalize_subtitle_languages(value: Any) -> List[str]:
    """Subtitle languages arrive as ``"en,fr"`` or ``["en", "fr"]``."""
    if not is_present(value):
        return []
    if isinstance(value, str):
        items = value.split(',')
    elif isinstance(value, (list, tuple, set)):
        items = []
        for item in value:
            if isinstance(item, dict):
                item = first_present(item.get('lanName'), item.get('lan'), item.get('language'))
            if is_present(item):
                items.append(str(item))
    else:
        items = [str(value)]
    return [item.strip() for item in items if item and item.strip()]


def parse_resolutions(value: Any) -> List[int]:
    """``[720, "1080", {"resolution": 480}]`` -> ``[480, 720, 1080]``"""
    if not isinstance(value, (list, tuple)):
        return []
    resolutions = set()
    for item in value:
        if isinstance(item, dict):
            item = item.get('resolution')
        resolution = to_int(item)
        if resolution is not None and resolution > 0:
            resolutions.add(resolution)
    return sorted(resolutions)


# ---------------------------------------------------------------------------
# Seasons
# ---------------------------------------------------------------------------

def _explicit_episodes(value: Any) -> Optional[List[int]]:
    if not isinstance(value, (list, tuple)) or not value:
        return None
    episodes = []
    for item in value:
        if isinstance(item, dict):
            item = first_present(item.get('ep'), item.get('episode'))
        number = to_int(item)
        if number is not None and number > 0:
            episodes.append(number)
    return sorted(set(episodes)) or None


def build_season(season: Dict[str, Any], index: int) -> SeasonEntry:
    """Build one SeasonEntry from an upstream season map.

    The season number is ``se``, else ``season``, else position + 1.  The
    episode list is taken verbatim when present, else synthesised from
    ``maxEp`` (or ``allEp``) as ``1..count``.
    """
    number = to_int(first_present(season.get('se'), season.get('season')), index + 1)

    episodes = _explicit_episodes(season.get('episodes'))
    if episodes is not None:
        count = max(to_int(first_present(season.get('maxEp'), season.get('allEp')), 0) or 0, len(episodes))
    else:
        count = max(to_int(first_present(season.get('maxEp'), season.get('allEp')), 0) or 0, 0)
        episodes = list(range(1, count + 1))

    return SeasonEntry(
        season=number,
        episode_count=count,
        episodes=episodes,
        resolutions=parse_resolutions(season.get('resolutions')),
    )


def build_seasons(resource: Optional[Dict[str, Any]]) -> List[SeasonEntry]:
    """Season list of a resource map; empty when it has none."""
    if not isinstance(resource, dict):
        return []
    seasons = resource.get('seasons')
    if not isinstance(seasons, (list, tuple)):
        return []
    return [build_season(season, index) for index, season in enumerate(seasons) if isinstance(season, dict)]
