"""
Pytest configuration and fixtures for MovieBox relay tests.
"""
import os
import sys
import json

# Add project root to path for imports
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from unittest.mock import MagicMock

import pytest
import tempfile
import shutil
from requests.structures import CaseInsensitiveDict


def build_nuxt_html(payload, script_attrs='id="__NUXT_DATA__" type="application/json" data-ssr="true"'):
    """Wrap a flat payload array in a minimal Nuxt page."""
    return f'''<!DOCTYPE html>
<html>
<head><title>MovieBox</title></head>
<body>
    <div id="__nuxt"><div class="detail">loading</div></div>
    <script>window.__NUXT__={{}}</script>
    <script {script_attrs}>{json.dumps(payload)}</script>
</body>
</html>'''


def make_response(status_code=200, headers=None, text='', json_data=None, cookies=None, chunks=None,
                  set_cookies=None):
    """
    Build a MagicMock shaped like a requests.Response.

    ``cookies`` become ``Set-Cookie: name=value; Path=/`` lines and
    ``set_cookies`` adds raw lines verbatim; both are exposed through
    ``response.raw.headers.getlist`` the way urllib3 does.
    """
    response = MagicMock()
    response.status_code = status_code
    response.headers = CaseInsensitiveDict(headers or {})

    set_cookie_lines = [f"{name}={value}; Path=/" for name, value in (cookies or {}).items()]
    set_cookie_lines.extend(set_cookies or [])
    response.raw.headers.getlist.side_effect = (
        lambda name: list(set_cookie_lines) if name.lower() == 'set-cookie' else [])

    if json_data is not None:
        response.headers.setdefault('Content-Type', 'application/json')
        response.json.return_value = json_data
        response.text = json.dumps(json_data)
    else:
        response.headers.setdefault('Content-Type', 'text/html; charset=utf-8')
        response.text = text

    body_chunks = list(chunks or [])
    response.iter_content.side_effect = lambda chunk_size=1: iter(body_chunks)
    return response


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_path = tempfile.mkdtemp()
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def detail_payload():
    """Flat payload of a two-resolution, one-season series detail page."""
    return [
        ["ShallowReactive", 1],                                                   # 0
        {"data": 2, "state": 4, "serverRendered": 22},                            # 1
        ["ShallowReactive", 3],                                                   # 2
        {},                                                                       # 3
        ["Reactive", 5],                                                          # 4
        {"$sresData": 6, "$surl": 23},                                            # 5
        {"subject": 7, "stars": 12, "resource": 14, "metadata": 19},              # 6
        {"subjectId": 8, "title": 9, "subtitles": 10, "imdbRatingValue": 11,
         "detailPath": 24, "subjectType": 25, "releaseDate": 28},                 # 7
        "8906247916759695608",                                                    # 8
        "Avatar",                                                                 # 9
        "en,fr, es",                                                              # 10
        "7.9",                                                                    # 11
        [13],                                                                     # 12
        {"name": 26, "character": 27},                                            # 13
        {"seasons": 15, "subjectId": 8, "hasResource": 22},                       # 14
        [16],                                                                     # 15
        {"se": 17, "maxEp": 18, "resolutions": 29},                               # 16
        1,                                                                        # 17
        3,                                                                        # 18
        {"description": 30, "imdbRatingCount": 31, "keywords": 32},               # 19
        "unused",                                                                 # 20
        "unused",                                                                 # 21
        True,                                                                     # 22
        "/movies/avatar-WLDIi21IUBa",                                             # 23
        "avatar-WLDIi21IUBa",                                                     # 24
        2,                                                                        # 25
        "Sam Worthington",                                                        # 26
        "Jake Sully",                                                             # 27
        "2009-12-18",                                                             # 28
        [33, 34],                                                                 # 29
        "A paraplegic marine dispatched to the moon Pandora.",                    # 30
        1234,                                                                     # 31
        "avatar, pandora",                                                        # 32
        {"resolution": 35},                                                       # 33
        {"resolution": 36},                                                       # 34
        720,                                                                      # 35
        1080,                                                                     # 36
    ]


@pytest.fixture
def detail_html(detail_payload):
    return build_nuxt_html(detail_payload)


@pytest.fixture
def download_payload():
    """Flat payload embedding a download list: 720 with URL, 1080 without."""
    return [
        ["ShallowReactive", 1],                                                   # 0
        {"data": 2, "state": 4},                                                  # 1
        ["ShallowReactive", 3],                                                   # 2
        {"code": 10, "data": 5},                                                  # 3
        ["Reactive", 9],                                                          # 4
        {"downloads": 6, "captions": 11, "limited": 12},                          # 5
        [7, 8],                                                                   # 6
        {"id": 13, "resolution": 14, "url": 15, "size": 16},                      # 7
        {"id": 17, "resolution": 18, "url": 19, "size": 20},                      # 8
        {},                                                                       # 9
        0,                                                                        # 10
        [],                                                                       # 11
        False,                                                                    # 12
        "dl-720",                                                                 # 13
        720,                                                                      # 14
        "https://bcdnw.hakunaymatata.com/resource/abc720.mp4?sign=abc&t=1700000000",  # 15
        "734003200",                                                              # 16
        "dl-1080",                                                                # 17
        1080,                                                                     # 18
        "",                                                                       # 19
        "1468006400",                                                             # 20
    ]


@pytest.fixture
def download_html(download_payload):
    return build_nuxt_html(download_payload)


@pytest.fixture
def download_json():
    """JSON form of the download endpoint response."""
    return {
        "code": 0,
        "message": "ok",
        "data": {
            "downloads": [
                {"id": "a", "resolution": 360, "url": "https://cdn.example.com/v/360.mp4?sign=x", "size": "1000"},
                {"id": "b", "resolution": 720, "url": "https://cdn.example.com/v/720.mp4?sign=x",
                 "size": "5000", "available": False},
                {"id": "c", "resolution": 1080, "url": "", "size": "9000"},
            ],
            "captions": [
                {"id": "s1", "lan": "en", "lanName": "English", "url": "https://cdn.example.com/s/en.srt", "size": "3000"},
                {"id": "s2", "lan": "fr", "lanName": "Français", "url": ""},
            ],
            "limited": False,
        },
    }
