#!/usr/bin/env python3
"""
Health Check Script for the MovieBox relay

Pre-flight check of every host in the pool before the relay is started or
after a deploy.  Each host is asked for the app-info endpoint with the
metadata fingerprint headers.

Critical checks (fail the run):
- At least one host of the pool answers

Non-critical checks (warnings only):
- Individual mirrors that are down
- Hosts that answer without setting a session cookie

Usage:
    python3 scripts/health_check.py [--timeout 8] [--host extra.host]

Exit codes:
    0: At least one host is reachable
    1: No host is reachable
"""

import os
import sys
import time
import argparse
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import requests

# Change to project root directory (parent of scripts folder)
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
os.chdir(project_root)
sys.path.insert(0, project_root)

from utils.headers import get_metadata_headers
from utils.host_pool import HostEntry, HostPool, create_host_pool_from_config
from utils.logging_config import setup_logging
from utils.masking import mask_cookie_header, mask_ip_address
from utils.request_handler import SESSION_BOOTSTRAP_PATH, Dispatcher
from utils.session_store import SessionStore

try:
    from config import MOVIEBOX_API_HOST, MIRROR_HOSTS
except ImportError:
    MOVIEBOX_API_HOST = None
    MIRROR_HOSTS = None

try:
    from config import PROBE_TIMEOUT
except ImportError:
    PROBE_TIMEOUT = 8

logger = logging.getLogger(__name__)


@dataclass
class HostCheckResult:
    host: str
    reachable: bool
    status_code: Optional[int] = None
    elapsed_ms: Optional[int] = None
    has_cookies: bool = False
    message: str = ''


def check_host(host: HostEntry, timeout: float, session: Optional[requests.Session] = None) -> HostCheckResult:
    """Issue the app-info request against one host."""
    session = session or requests.Session()
    masked = mask_ip_address(host.netloc)
    started = time.monotonic()
    try:
        response = session.get(host.url_for(SESSION_BOOTSTRAP_PATH),
                               headers=get_metadata_headers(host), timeout=timeout)
    except requests.exceptions.Timeout:
        return HostCheckResult(masked, False, message=f"Timeout after {timeout}s")
    except requests.exceptions.RequestException as e:
        return HostCheckResult(masked, False, message=f"{type(e).__name__}: {e}")

    elapsed_ms = int((time.monotonic() - started) * 1000)
    try:
        received = SessionStore()
        received.merge_set_cookie_headers(Dispatcher.extract_set_cookie_headers(response))
        cookies = received.value
        if response.status_code >= 400:
            return HostCheckResult(masked, False, response.status_code, elapsed_ms,
                                   message=f"HTTP {response.status_code}")
        message = f"HTTP {response.status_code} in {elapsed_ms}ms"
        if cookies:
            message += f", cookies: {mask_cookie_header(cookies)}"
        return HostCheckResult(masked, True, response.status_code, elapsed_ms, bool(cookies), message)
    finally:
        response.close()


def check_pool(pool: HostPool, timeout: float,
               session: Optional[requests.Session] = None) -> List[HostCheckResult]:
    return [check_host(host, timeout, session) for host in pool]


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description='Health Check for the MovieBox relay host pool')
    parser.add_argument('--timeout', type=float, default=PROBE_TIMEOUT,
                        help=f'Per-host timeout in seconds (default: {PROBE_TIMEOUT})')
    parser.add_argument('--host', action='append', default=[],
                        help='Additional host to check (repeatable)')
    return parser.parse_args(argv)


def main(argv=None, session: Optional[requests.Session] = None):
    args = parse_arguments(argv)
    setup_logging()

    mirrors = list(MIRROR_HOSTS) if MIRROR_HOSTS is not None else None
    if args.host:
        mirrors = (mirrors or []) + args.host
    pool = create_host_pool_from_config(os.environ.get('MOVIEBOX_API_HOST') or MOVIEBOX_API_HOST, mirrors)

    logger.info("=" * 60)
    logger.info("HEALTH CHECK - Host Pool")
    logger.info(f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info("=" * 60)

    results = check_pool(pool, args.timeout, session)
    for index, result in enumerate(results):
        role = "PRIMARY" if index == 0 else f"Mirror #{index}"
        if result.reachable:
            logger.info(f"  ✓ [{role}] {result.host}: {result.message}")
        else:
            logger.warning(f"  ⚠ [{role}] {result.host}: {result.message}")

    reachable = sum(1 for r in results if r.reachable)
    logger.info("")
    logger.info("=" * 60)
    if reachable:
        logger.info(f"✓ {reachable}/{len(results)} host(s) reachable")
        if not any(r.has_cookies for r in results):
            logger.warning("  ⚠ No host issued session cookies (download links may be withheld)")
        logger.info("=" * 60)
        return 0

    logger.error(f"✗ None of the {len(results)} host(s) is reachable")
    logger.info("=" * 60)
    return 1


if __name__ == '__main__':
    sys.exit(main())
