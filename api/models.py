"""
Data models for the MovieBox relay API layer.

All models use dataclasses for lightweight internal usage and easy
serialisation to dicts / JSON (for the FastAPI REST layer).
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


# Upstream ``subjectType`` values
SUBJECT_TYPES = {
    'ALL': 0,
    'MOVIES': 1,
    'TV_SERIES': 2,
    'MUSIC': 6,
}

# Quality vocabulary accepted by ``DownloadOptions.select``
DOWNLOAD_QUALITIES = ('WORST', 'BEST', '360P', '480P', '720P', '1080P')


def quality_label(resolution: int) -> str:
    """``720`` -> ``'720p'``"""
    return f"{resolution}p"


# ---------------------------------------------------------------------------
# Seasons
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SeasonEntry:
    """One season of a series (movies carry a single season 0 at most).

    ``episodes`` is synthesised as ``1..episode_count`` when the upstream
    does not list episodes explicitly.
    """
    season: int
    episode_count: int = 0
    episodes: List[int] = field(default_factory=list)
    resolutions: List[int] = field(default_factory=list)

    @property
    def qualities(self) -> List[str]:
        return [quality_label(r) for r in self.resolutions]

    def to_dict(self) -> dict:
        data = asdict(self)
        data['qualities'] = self.qualities
        return data


# ---------------------------------------------------------------------------
# Decoded detail-page entity
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DownloadableMetadata:
    """Summary of what a detail page says can be downloaded."""
    subject_id: Optional[str] = None
    subject_type: Optional[int] = None
    title: Optional[str] = None
    detail_path: Optional[str] = None
    has_resource: bool = False
    seasons: List[SeasonEntry] = field(default_factory=list)
    available_resolutions: List[int] = field(default_factory=list)
    subtitle_languages: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['seasons'] = [s.to_dict() for s in self.seasons]
        data['available_qualities'] = [quality_label(r) for r in self.available_resolutions]
        return data


@dataclass(frozen=True)
class ResolvedEntity:
    """The decoded object graph of one detail page.

    ``subject`` and ``metadata`` both carry ``imdbRatingValue`` and
    ``imdbRatingCount`` (None when the page has no rating).  ``extra`` keeps
    the rest of the prefix-stripped page state.
    """
    subject: Dict[str, Any] = field(default_factory=dict)
    resource: Dict[str, Any] = field(default_factory=dict)
    stars: List[Any] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    seasons: List[SeasonEntry] = field(default_factory=list)
    available_resolutions: List[int] = field(default_factory=list)
    subtitle_languages: List[str] = field(default_factory=list)
    imdb_rating: Optional[Any] = None
    imdb_rating_count: Optional[Any] = None
    post_list: Dict[str, Any] = field(default_factory=dict)
    for_you: List[Any] = field(default_factory=list)
    hot: List[Any] = field(default_factory=list)
    share_param: Dict[str, Any] = field(default_factory=dict)
    pub_param: Dict[str, Any] = field(default_factory=dict)
    url: Optional[str] = None
    referer: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> Optional[str]:
        return self.subject.get('title')

    @property
    def subject_id(self) -> Optional[str]:
        value = self.subject.get('subjectId', self.resource.get('subjectId'))
        return str(value) if value is not None else None

    @property
    def detail_path(self) -> Optional[str]:
        return self.subject.get('detailPath') or self.resource.get('detailPath')

    def downloadable_metadata(self) -> DownloadableMetadata:
        """Season/resolution/subtitle summary for download pickers."""
        resolutions = sorted(set(self.available_resolutions) | {r for s in self.seasons for r in s.resolutions})
        has_resource = bool(self.resource.get('hasResource') or self.subject.get('hasResource'))
        return DownloadableMetadata(
            subject_id=self.subject_id,
            subject_type=self.subject.get('subjectType', self.resource.get('subjectType')),
            title=self.title,
            detail_path=self.detail_path,
            has_resource=has_resource,
            seasons=list(self.seasons),
            available_resolutions=resolutions,
            subtitle_languages=list(self.subtitle_languages),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data['seasons'] = [s.to_dict() for s in self.seasons]
        return data


# ---------------------------------------------------------------------------
# Downloads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DownloadCandidate:
    """One downloadable rendition of an episode or movie."""
    resolution: int
    url: str = ''
    size: Optional[int] = None
    available: bool = True
    id: str = ''
    format: str = ''

    @property
    def quality(self) -> str:
        return quality_label(self.resolution)

    @property
    def is_usable(self) -> bool:
        return bool(self.url)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['quality'] = self.quality
        return data


@dataclass(frozen=True)
class CaptionTrack:
    """A subtitle file offered next to the downloads."""
    language: str
    url: str
    language_name: str = ''
    size: Optional[int] = None
    id: str = ''

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class DownloadOptions:
    """Candidates for one (subject, season, episode), best first.

    ``cookies`` is the session cookie string the media CDN expects alongside
    these URLs.
    """
    candidates: List[DownloadCandidate] = field(default_factory=list)
    captions: List[CaptionTrack] = field(default_factory=list)
    cookies: Optional[str] = None
    limited: bool = False

    def best(self) -> DownloadCandidate:
        return max(self.candidates, key=lambda c: c.resolution)

    def worst(self) -> DownloadCandidate:
        return min(self.candidates, key=lambda c: c.resolution)

    def select(self, quality: str) -> DownloadCandidate:
        """
        Pick a candidate by quality name (``BEST``, ``WORST``, ``720P`` ...).

        An exact resolution that is missing falls back to the best candidate
        below it, or the worst overall.

        Raises:
            ValueError: *quality* is not in the quality vocabulary
        """
        wanted = (quality or 'BEST').upper()
        if wanted not in DOWNLOAD_QUALITIES:
            raise ValueError(f"Unknown quality {quality!r}; expected one of {', '.join(DOWNLOAD_QUALITIES)}")
        if wanted == 'BEST':
            return self.best()
        if wanted == 'WORST':
            return self.worst()

        resolution = int(wanted[:-1])
        lower = [c for c in self.candidates if c.resolution <= resolution]
        if lower:
            return max(lower, key=lambda c: c.resolution)
        return self.worst()

    def to_dict(self) -> dict:
        return {
            'candidates': [c.to_dict() for c in self.candidates],
            'captions': [c.to_dict() for c in self.captions],
            'cookies': self.cookies,
            'limited': self.limited,
        }


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

@dataclass
class SearchPage:
    """One page of search results."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    page: int = 1
    per_page: int = 24
    total_count: Optional[int] = None
    has_more: bool = False

    @classmethod
    def from_payload(cls, data: Optional[dict], page: int, per_page: int) -> 'SearchPage':
        """Build from the upstream ``data`` object (``items`` + ``pager``)."""
        data = data or {}
        pager = data.get('pager') or {}
        total = pager.get('totalCount')
        return cls(
            items=list(data.get('items') or []),
            page=int(pager.get('page') or page),
            per_page=int(pager.get('perPage') or per_page),
            total_count=int(total) if total not in (None, '') else None,
            has_more=bool(pager.get('hasMore', False)),
        )

    def to_dict(self) -> dict:
        return asdict(self)
