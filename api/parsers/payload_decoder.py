"""
Decoder for flat, index-referenced page payloads.

A Nuxt page embeds its state as one JSON array in which nested values are
replaced by the integer position of another element::

    [["ShallowReactive", 1], {"data": 2, "state": 4}, ...]

``PayloadResolver`` re-inlines that graph.  Integers inside containers are
references only when they are valid positions (``0 <= i < len``); anything
else, negative numbers included, is kept as a literal.  Each position is
resolved once and memoised; a reference back into a position that is still
being resolved, or one nested deeper than ``MAX_DEPTH``, stays a literal
integer so malformed input cannot recurse forever.
"""

import logging
from collections import deque
from typing import Any, Dict, List, Optional, Set

from api.parsers.common import KEY_PREFIX, load_payload, strip_key_prefix
from utils.errors import ExtractionError

logger = logging.getLogger(__name__)


MAX_DEPTH = 200

# Upper bound on nodes visited by find_in_payload
MAX_SEARCH_NODES = 20000


def is_reference(value: Any, length: int) -> bool:
    """True if *value* is a usable index into a payload of *length* elements"""
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < length


class PayloadResolver:
    """Materialises the object graph of one payload array."""

    def __init__(self, payload: List[Any], max_depth: int = MAX_DEPTH):
        self.payload = payload
        self.max_depth = max_depth
        self._memo: Dict[int, Any] = {}
        self._in_progress: Set[int] = set()

    def __len__(self) -> int:
        return len(self.payload)

    def resolve_index(self, index: int, depth: int = 0) -> Any:
        """Resolve the element at *index*; cycles and overly deep chains stay literal."""
        if index in self._memo:
            return self._memo[index]
        if index in self._in_progress or depth > self.max_depth:
            logger.debug(f"Reference {index} left literal (cycle or depth {depth})")
            return index

        self._in_progress.add(index)
        try:
            value = self.resolve(self.payload[index], depth + 1)
        finally:
            self._in_progress.discard(index)
        self._memo[index] = value
        return value

    def resolve(self, value: Any, depth: int = 0) -> Any:
        """Resolve a value taken from the payload.

        Scalars are returned as-is; integers are references only inside
        sequences and maps.
        """
        if depth > self.max_depth:
            return value
        if isinstance(value, list):
            return [self._resolve_member(item, depth) for item in value]
        if isinstance(value, dict):
            return {key: self._resolve_member(item, depth) for key, item in value.items()}
        return value

    def _resolve_member(self, value: Any, depth: int) -> Any:
        if is_reference(value, len(self.payload)):
            return self.resolve_index(value, depth + 1)
        return self.resolve(value, depth + 1)

    def extracts(self) -> List[Dict[str, Any]]:
        """Every top-level map of the payload, resolved, in payload order."""
        return [
            self.resolve_index(index)
            for index, element in enumerate(self.payload)
            if isinstance(element, dict)
        ]


def resolve_payload(payload: List[Any], max_depth: int = MAX_DEPTH) -> List[Dict[str, Any]]:
    """Resolve all top-level maps of *payload*."""
    return PayloadResolver(payload, max_depth).extracts()


# ---------------------------------------------------------------------------
# Entity selection
# ---------------------------------------------------------------------------

def _state_of(extract: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    state = extract.get('state')
    if isinstance(state, list) and len(state) > 1 and isinstance(state[1], dict):
        return state[1]
    return None


def select_entity(extracts: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Pick the page state among the resolved extracts.

    Preference:
        1. an extract whose ``state`` is a sequence; its second element
        2. an extract exposing ``resData``/``data`` (or ``$sdata``)
        3. the first extract

    The result has the ``$s`` key prefix stripped.

    Raises:
        ExtractionError: there are no extracts at all
    """
    if not extracts:
        raise ExtractionError('No extractable data found in payload')

    for extract in extracts:
        state = _state_of(extract)
        if state is not None:
            return strip_key_prefix(state)

    for extract in extracts:
        for key in ('resData', 'data', KEY_PREFIX + 'data'):
            value = extract.get(key)
            if isinstance(value, dict) and value:
                if key == 'resData':
                    return strip_key_prefix(extract)
                return strip_key_prefix(value)

    return strip_key_prefix(extracts[0])


def _res_data_in(candidate: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(candidate, dict):
        return None
    stripped = strip_key_prefix(candidate)
    res_data = stripped.get('resData')
    if isinstance(res_data, dict):
        return res_data
    if isinstance(stripped.get('subject'), dict):
        return stripped
    return None


def find_res_data(entity: Dict[str, Any], extracts: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Locate the ``resData`` map for *entity*.

    Searched in the entity itself, one level of its values, then the other
    extracts (and their page state).

    Raises:
        ExtractionError: no map with ``resData`` or ``subject`` exists
    """
    found = _res_data_in(entity)
    if found is not None:
        return found

    for value in entity.values():
        found = _res_data_in(value)
        if found is not None:
            return found

    for extract in extracts:
        for candidate in (extract, _state_of(extract)):
            found = _res_data_in(candidate)
            if found is not None:
                return found

    raise ExtractionError('Embedded payload has no resData/subject structure')


# ---------------------------------------------------------------------------
# Document-level entry points
# ---------------------------------------------------------------------------

def decode_document(html: str) -> Dict[str, Any]:
    """Locate, resolve and select the page state of *html*.

    Returns:
        The prefix-stripped state map with a guaranteed ``resData`` key

    Raises:
        ExtractionError: payload missing or shaped unexpectedly
    """
    extracts = resolve_payload(load_payload(html))
    entity = select_entity(extracts)
    res_data = find_res_data(entity, extracts)
    if entity.get('resData') is not res_data:
        entity = dict(entity)
        entity['resData'] = res_data
    return entity


def find_in_payload(document: str, key: str, max_nodes: int = MAX_SEARCH_NODES) -> Optional[Dict[str, Any]]:
    """Breadth-first search of the resolved payload for a map holding *key*.

    Keys are compared with the ``$s`` prefix stripped.

    Returns:
        The first matching map (prefix-stripped), or None

    Raises:
        ExtractionError: the document has no embedded payload
    """
    extracts = resolve_payload(load_payload(document))
    queue = deque(extracts)
    seen: Set[int] = set()
    visited = 0

    while queue and visited < max_nodes:
        node = queue.popleft()
        if id(node) in seen:
            continue
        seen.add(id(node))
        visited += 1

        if isinstance(node, dict):
            stripped = strip_key_prefix(node)
            if key in stripped:
                return stripped
            queue.extend(v for v in stripped.values() if isinstance(v, (dict, list)))
        elif isinstance(node, list):
            queue.extend(v for v in node if isinstance(v, (dict, list)))

    return None
