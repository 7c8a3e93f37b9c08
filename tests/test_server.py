"""
Unit tests for api/server.py
"""
import os
import sys
import pytest
from unittest.mock import MagicMock

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from fastapi.testclient import TestClient

from api.models import DownloadCandidate, DownloadOptions, ResolvedEntity, SearchPage
from api.server import app, content_disposition, get_client, media_filename
from utils.errors import InvalidRequest, LinkExpired, NotFoundUpstream, TransportError
from utils.host_pool import HostPool
from utils.session_store import SessionStore
from utils.stream_proxy import StreamResult


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.host_pool = HostPool(['h5.aoneroom.com', 'moviebox.ph'])
    client.session_store = SessionStore('account=abc')
    return client


@pytest.fixture
def http(mock_client):
    app.dependency_overrides[get_client] = lambda: mock_client
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestFilenames:
    """Tests for the download filename helpers"""

    def test_episode_filename(self):
        name = media_filename('https://cdn.example.com/a/b.mp4?sign=x', 'Breaking Bad', 1, 5, '1080')

        assert name == 'Breaking Bad S01E05_1080p.mp4'

    def test_movie_filename(self):
        assert media_filename('https://cdn.example.com/a/b.mkv', 'Avatar: Way', resolution='720p') == 'Avatar Way_720p.mkv'

    def test_basename_without_title(self):
        assert media_filename('https://cdn.example.com/a/my%20file.mp4?sign=x') == 'my file.mp4'

    def test_content_disposition_non_ascii(self):
        value = content_disposition('Amélie.mp4')

        assert value.startswith('attachment; filename="Amlie.mp4"')
        assert "filename*=UTF-8''Am%C3%A9lie.mp4" in value


class TestJsonEndpoints:
    """JSON endpoints and error mapping"""

    def test_health(self, http):
        response = http.get('/api/health')

        assert response.status_code == 200
        assert response.json() == {
            'status': 'ok',
            'total_hosts': 2,
            'healthy_hosts': 2,
            'session_initialized': True,
        }

    def test_search(self, http, mock_client):
        mock_client.search.return_value = SearchPage(items=[{'title': 'Avatar'}], total_count=1)

        response = http.post('/api/search', json={'keyword': 'avatar', 'subjectType': 1})

        assert response.status_code == 200
        assert response.json()['items'] == [{'title': 'Avatar'}]
        mock_client.search.assert_called_once_with('avatar', 1, 24, 1)

    def test_search_body_validation(self, http):
        response = http.post('/api/search', json={'page': 1})

        assert response.status_code == 422

    def test_movie(self, http, mock_client):
        mock_client.fetch_entity.return_value = ResolvedEntity(subject={'title': 'Avatar', 'subjectId': '1'})

        response = http.get('/api/movie/1', params={'detailPath': 'avatar-x'})

        assert response.status_code == 200
        data = response.json()
        assert data['subject']['title'] == 'Avatar'
        assert data['downloadable']['subject_id'] == '1'
        mock_client.fetch_entity.assert_called_once_with('avatar-x', '1')

    def test_download_metadata(self, http, mock_client):
        mock_client.fetch_download_candidates.return_value = DownloadOptions(
            candidates=[DownloadCandidate(resolution=720, url='https://cdn.example.com/v.mp4')],
            cookies='account=abc',
        )

        response = http.get('/api/download-metadata/1', params={'detailPath': 'show-x', 'se': 1, 'ep': 2})

        assert response.status_code == 200
        assert response.json()['candidates'][0]['quality'] == '720p'
        assert response.json()['cookies'] == 'account=abc'
        mock_client.fetch_download_candidates.assert_called_once_with('1', 'show-x', 1, 2)

    @pytest.mark.parametrize('error,status,code', [
        (InvalidRequest('Episode 3 requires a season number'), 400, 'INVALID_REQUEST'),
        (NotFoundUpstream('gone'), 404, 'NOT_FOUND'),
        (TransportError('all hosts down'), 502, 'UPSTREAM_UNAVAILABLE'),
    ])
    def test_errors_mapped(self, http, mock_client, error, status, code):
        mock_client.fetch_download_candidates.side_effect = error

        response = http.get('/api/download-metadata/1', params={'detailPath': 'x', 'ep': 3})

        assert response.status_code == status
        assert response.json()['error'] == code


class TestDownloadEndpoint:
    """Media relay endpoint"""

    def test_ranged_download(self, http, mock_client):
        mock_client.stream.return_value = StreamResult(
            206,
            {'Content-Type': 'video/mp4', 'Content-Range': 'bytes 100-102/1000',
             'Content-Length': '3', 'Accept-Ranges': 'bytes'},
            iter([b'abc']),
        )

        response = http.get('/api/download', params={
            'url': 'https://cdn.example.com/v.mp4?sign=x', 'cookies': 'account=abc',
            'title': 'Show', 'season': 1, 'episode': 2, 'resolution': '720',
        }, headers={'Range': 'bytes=100-102'})

        assert response.status_code == 206
        assert response.content == b'abc'
        assert response.headers['content-range'] == 'bytes 100-102/1000'
        assert response.headers['content-type'] == 'video/mp4'
        assert 'Show S01E02_720p.mp4' in response.headers['content-disposition']
        mock_client.stream.assert_called_once_with('https://cdn.example.com/v.mp4?sign=x', 'account=abc',
                                                   'bytes=100-102')

    def test_expired_link(self, http, mock_client):
        mock_client.stream.side_effect = LinkExpired('expired')

        response = http.get('/api/download', params={'url': 'https://cdn.example.com/v.mp4?sign=x'})

        assert response.status_code == 410
        assert response.json() == {'error': 'LINK_EXPIRED', 'message': 'expired'}

    def test_subtitle(self, http, mock_client):
        mock_client.stream_subtitle.return_value = StreamResult(
            200, {'Content-Type': 'text/vtt', 'Content-Length': '6'}, iter([b'WEBVTT']))

        response = http.get('/api/download-subtitle', params={'url': 'https://cdn.example.com/s/en.vtt'})

        assert response.status_code == 200
        assert response.content == b'WEBVTT'
        assert 'en.vtt' in response.headers['content-disposition']
