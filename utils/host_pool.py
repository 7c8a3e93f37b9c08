"""
Host Pool for the MovieBox relay

The upstream API is served by one primary host and several mirrors with an
identical surface.  This module keeps them as an ordered, read-only list:
position defines failover priority and never changes after start-up.

Features:
- Primary host first, mirrors after it, duplicates removed
- Passive health statistics (only updated from real dispatcher traffic)
- Statistics never reorder the pool; the dispatcher always walks it in order
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Dict, Iterator, List, Optional, Tuple
from urllib.parse import urlsplit

from utils.masking import mask_ip_address


logger = logging.getLogger(__name__)


DEFAULT_PRIMARY_HOST = 'https://h5.aoneroom.com'

DEFAULT_MIRROR_HOSTS = [
    'h5.aoneroom.com',
    'movieboxapp.in',
    'moviebox.pk',
    'moviebox.ph',
    'moviebox.id',
    'v.moviebox.ph',
    'netnaija.video',
]


def normalize_host_url(host: str, protocol: str = 'https') -> str:
    """
    Turn a bare hostname or URL into a base URL ending in '/'.

    Examples:
        'moviebox.ph' -> 'https://moviebox.ph/'
        'https://h5.aoneroom.com' -> 'https://h5.aoneroom.com/'
    """
    host = (host or '').strip()
    if not host:
        raise ValueError('Empty host')
    if '://' not in host:
        host = f"{protocol}://{host}"
    return host if host.endswith('/') else f"{host}/"


@dataclass(frozen=True)
class HostEntry:
    """One interchangeable upstream host."""
    base_url: str

    @property
    def netloc(self) -> str:
        """Host header value, e.g. 'h5.aoneroom.com'."""
        return urlsplit(self.base_url).netloc

    @property
    def origin(self) -> str:
        """Origin header value: scheme + host, no trailing slash."""
        return self.base_url.rstrip('/')

    def url_for(self, path: str) -> str:
        """Absolute URL for a path relative to this host."""
        if path.startswith('http://') or path.startswith('https://'):
            return path
        return self.base_url + path.lstrip('/')


@dataclass
class HostStats:
    """Traffic counters for one host (mutable, guarded by the pool lock)"""
    total_requests: int = 0
    successful_requests: int = 0
    consecutive_failures: int = 0
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    last_error: str = ''

    def get_success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


class HostPool:
    """
    Ordered, immutable list of upstream hosts with passive statistics.

    Iterating the pool yields ``HostEntry`` objects in failover order.
    """

    def __init__(self, hosts: List[str], protocol: str = 'https'):
        """
        Args:
            hosts: Host names or base URLs, primary first
            protocol: Scheme used for bare host names
        """
        entries: List[HostEntry] = []
        seen = set()
        for host in hosts:
            if not host:
                continue
            base_url = normalize_host_url(host, protocol)
            if base_url in seen:
                continue
            seen.add(base_url)
            entries.append(HostEntry(base_url=base_url))

        if not entries:
            raise ValueError('Host pool needs at least one host')

        self._hosts: Tuple[HostEntry, ...] = tuple(entries)
        self._stats: Dict[str, HostStats] = {e.base_url: HostStats() for e in entries}
        self.lock = Lock()

        logger.info(f"Host pool ready with {len(self._hosts)} host(s), primary={self.primary.netloc}")

    def __iter__(self) -> Iterator[HostEntry]:
        return iter(self._hosts)

    def __len__(self) -> int:
        return len(self._hosts)

    @property
    def hosts(self) -> Tuple[HostEntry, ...]:
        return self._hosts

    @property
    def primary(self) -> HostEntry:
        return self._hosts[0]

    def mark_success(self, host: HostEntry) -> None:
        """Record a successful call against *host*"""
        with self.lock:
            stats = self._stats[host.base_url]
            stats.total_requests += 1
            stats.successful_requests += 1
            stats.consecutive_failures = 0
            stats.last_success = datetime.now()

    def mark_failure(self, host: HostEntry, error: str = '') -> None:
        """Record a failed call against *host*"""
        with self.lock:
            stats = self._stats[host.base_url]
            stats.total_requests += 1
            stats.consecutive_failures += 1
            stats.last_failure = datetime.now()
            stats.last_error = error
        logger.debug(f"Host '{mask_ip_address(host.netloc)}' failed "
                     f"({stats.consecutive_failures} consecutive): {error}")

    def get_statistics(self) -> Dict:
        """Get statistics about host pool usage"""
        with self.lock:
            host_stats = []
            for i, host in enumerate(self._hosts):
                stats = self._stats[host.base_url]
                host_stats.append({
                    'host': host.netloc,
                    'priority': i,
                    'is_primary': i == 0,
                    'total_requests': stats.total_requests,
                    'successful_requests': stats.successful_requests,
                    'success_rate': f"{stats.get_success_rate():.1%}",
                    'consecutive_failures': stats.consecutive_failures,
                    'last_success': stats.last_success.strftime('%Y-%m-%d %H:%M:%S') if stats.last_success else 'Never',
                    'last_failure': stats.last_failure.strftime('%Y-%m-%d %H:%M:%S') if stats.last_failure else 'Never',
                    'last_error': stats.last_error,
                })

            return {
                'total_hosts': len(self._hosts),
                'healthy_hosts': sum(1 for s in self._stats.values() if s.consecutive_failures == 0),
                'hosts': host_stats,
            }

    def log_statistics(self, level: int = logging.INFO) -> None:
        """Log host pool statistics"""
        stats = self.get_statistics()

        logger.log(level, "=" * 50)
        logger.log(level, "HOST POOL STATISTICS")
        logger.log(level, "=" * 50)
        logger.log(level, f"Total hosts: {stats['total_hosts']}")
        logger.log(level, f"Healthy hosts: {stats['healthy_hosts']}")
        for host_stat in stats['hosts']:
            role = "PRIMARY" if host_stat['is_primary'] else f"Mirror #{host_stat['priority']}"
            logger.log(level, f"  [{role}] {host_stat['host']}:")
            logger.log(level, f"    - Total requests: {host_stat['total_requests']}")
            logger.log(level, f"    - Success rate: {host_stat['success_rate']}")
            logger.log(level, f"    - Consecutive failures: {host_stat['consecutive_failures']}")
        logger.log(level, "=" * 50)


def create_host_pool_from_config(primary_host: Optional[str] = None,
                                 mirror_hosts: Optional[List[str]] = None,
                                 protocol: str = 'https') -> HostPool:
    """
    Create the host pool from configuration values.

    Args:
        primary_host: MOVIEBOX_API_HOST (defaults to h5.aoneroom.com)
        mirror_hosts: MIRROR_HOSTS list (defaults to the known mirrors)
        protocol: Scheme for bare host names

    Returns:
        HostPool with the primary host first
    """
    primary = primary_host or DEFAULT_PRIMARY_HOST
    mirrors = DEFAULT_MIRROR_HOSTS if mirror_hosts is None else mirror_hosts
    return HostPool([primary] + list(mirrors), protocol=protocol)
