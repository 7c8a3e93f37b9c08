"""
Unit tests for utils/stream_proxy.py
"""
import os
import sys
import threading
import pytest
from unittest.mock import patch
import requests

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from conftest import make_response
from utils.errors import (
    LinkExpired,
    NotFoundUpstream,
    RangeNotSatisfiable,
    RegionRestricted,
    StreamFault,
    TransportError,
)
from utils.host_pool import HostEntry
from utils.stream_proxy import (
    ByteRange,
    StreamConfig,
    StreamProxy,
    classify_media_status,
    is_signed_url,
    parse_content_range,
)


SIGNED_URL = 'https://bcdnw.hakunaymatata.com/resource/abc720.mp4?sign=abc&t=1700000000'
PLAIN_URL = 'https://cdn.example.com/media/abc720.mp4'
BODY = bytes(range(256)) * 4
TOTAL = 1000


def _chunks(data, size=64):
    return [data[i:i + size] for i in range(0, len(data), size)]


def _proxy(**config_kwargs):
    return StreamProxy(HostEntry('https://h5.aoneroom.com/'), StreamConfig(**config_kwargs))


def _probe_ok(total=TOTAL):
    return make_response(headers={'Content-Length': str(total), 'Content-Type': 'video/mp4'})


class TestByteRange:
    """Tests for ByteRange"""

    def test_parse_closed(self):
        assert ByteRange.parse('bytes=100-199') == ByteRange(start=100, end=199)

    def test_parse_open(self):
        assert ByteRange.parse('bytes=500-') == ByteRange(start=500)

    def test_parse_suffix(self):
        assert ByteRange.parse('bytes=-100') == ByteRange(start=0, end=None, suffix=100)

    def test_parse_first_of_many(self):
        assert ByteRange.parse('bytes=0-9, 20-29') == ByteRange(start=0, end=9)

    def test_parse_invalid(self):
        assert ByteRange.parse(None) is None
        assert ByteRange.parse('') is None
        assert ByteRange.parse('items=0-9') is None
        assert ByteRange.parse('bytes=-') is None
        assert ByteRange.parse('bytes=9-0') is None
        assert ByteRange.parse('bytes=-0') is None

    def test_resolve_clamps_end(self):
        assert ByteRange(start=900, end=5000).resolve(TOTAL) == ByteRange(start=900, end=999)

    def test_resolve_suffix(self):
        assert ByteRange(suffix=100).resolve(TOTAL) == ByteRange(start=900, end=999)
        assert ByteRange(suffix=5000).resolve(TOTAL) == ByteRange(start=0, end=999)

    def test_resolve_beyond_total(self):
        with pytest.raises(RangeNotSatisfiable):
            ByteRange(start=TOTAL).resolve(TOTAL)

    def test_resolve_unknown_total(self):
        byte_range = ByteRange(start=10)

        assert byte_range.resolve(None) is byte_range

    def test_content_range(self):
        assert ByteRange(start=100, end=199).content_range(TOTAL) == 'bytes 100-199/1000'
        assert ByteRange(start=100).content_range(TOTAL) == 'bytes 100-999/1000'
        assert ByteRange(start=100, end=199).content_range(None) == 'bytes 100-199/*'

    def test_content_length(self):
        assert ByteRange(start=100, end=199).content_length() == 100
        assert ByteRange(start=100).content_length(TOTAL) == 900
        assert ByteRange(start=100).content_length() is None

    def test_to_header(self):
        assert ByteRange(start=5).to_header() == 'bytes=5-'
        assert ByteRange(start=5, end=9).to_header() == 'bytes=5-9'
        assert ByteRange(suffix=7).to_header() == 'bytes=-7'


class TestHelpers:
    """Tests for the module-level helpers"""

    def test_parse_content_range(self):
        assert parse_content_range('bytes 100-199/1000') == (100, 199, 1000)
        assert parse_content_range('bytes 0-9/*') == (0, 9, None)
        assert parse_content_range(None) == (None, None, None)
        assert parse_content_range('garbage') == (None, None, None)

    def test_is_signed_url(self):
        assert is_signed_url(SIGNED_URL)
        assert is_signed_url('https://x.example/v.mp4?X-Amz-Signature=abc')
        assert not is_signed_url(PLAIN_URL)
        assert not is_signed_url('https://x.example/v.mp4?quality=720')

    def test_classify_media_status(self):
        assert isinstance(classify_media_status(404, SIGNED_URL), NotFoundUpstream)
        assert isinstance(classify_media_status(410, PLAIN_URL), LinkExpired)
        assert isinstance(classify_media_status(401, PLAIN_URL), LinkExpired)
        assert isinstance(classify_media_status(403, SIGNED_URL), LinkExpired)
        assert isinstance(classify_media_status(403, PLAIN_URL), RegionRestricted)
        assert classify_media_status(500, SIGNED_URL) is None
        assert classify_media_status(200, SIGNED_URL) is None

    def test_error_message_masks_signature(self):
        error = classify_media_status(403, SIGNED_URL)

        assert 'sign=abc' not in str(error)


class TestRangeRelay:
    """Ranged transfers"""

    @patch.object(requests.Session, 'get')
    @patch.object(requests.Session, 'head')
    def test_upstream_honours_range(self, mock_head, mock_get):
        mock_head.return_value = _probe_ok()
        mock_get.return_value = make_response(
            status_code=206,
            headers={'Content-Range': 'bytes 100-199/1000', 'Content-Length': '100', 'Content-Type': 'video/mp4'},
            chunks=_chunks(BODY[100:200]),
        )

        result = _proxy().stream(SIGNED_URL, 'account=abc', 'bytes=100-199')

        assert result.status_code == 206
        assert result.headers['Content-Range'] == 'bytes 100-199/1000'
        assert result.headers['Content-Length'] == '100'
        assert result.headers['Accept-Ranges'] == 'bytes'
        assert b''.join(result.iter_bytes()) == BODY[100:200]
        assert mock_get.call_args[1]['headers']['Range'] == 'bytes=100-199'

    @patch.object(requests.Session, 'get')
    @patch.object(requests.Session, 'head')
    def test_upstream_ignores_range(self, mock_head, mock_get):
        mock_head.return_value = _probe_ok()
        mock_get.return_value = make_response(
            status_code=200,
            headers={'Content-Length': str(TOTAL), 'Content-Type': 'video/mp4'},
            chunks=_chunks(BODY[:TOTAL]),
        )

        result = _proxy().stream(SIGNED_URL, None, 'bytes=100-199')

        assert result.status_code == 206
        assert result.headers['Content-Range'] == 'bytes 100-199/1000'
        assert result.headers['Content-Length'] == '100'
        assert b''.join(result.iter_bytes()) == BODY[100:200]

    @patch.object(requests.Session, 'get')
    @patch.object(requests.Session, 'head')
    def test_open_range_whole_body_sliced(self, mock_head, mock_get):
        mock_head.side_effect = requests.exceptions.ReadTimeout('probe slow')
        mock_get.return_value = make_response(
            status_code=200,
            headers={'Content-Length': str(TOTAL)},
            chunks=_chunks(BODY[:TOTAL], size=333),
        )

        result = _proxy().stream(SIGNED_URL, None, 'bytes=990-')

        assert result.headers['Content-Range'] == 'bytes 990-999/1000'
        assert b''.join(result) == BODY[990:TOTAL]

    @patch.object(requests.Session, 'get')
    @patch.object(requests.Session, 'head')
    def test_suffix_range_made_concrete(self, mock_head, mock_get):
        mock_head.return_value = _probe_ok()
        mock_get.return_value = make_response(
            status_code=206,
            headers={'Content-Range': 'bytes 900-999/1000', 'Content-Length': '100'},
            chunks=[BODY[900:TOTAL]],
        )

        result = _proxy().stream(SIGNED_URL, None, 'bytes=-100')

        assert mock_get.call_args[1]['headers']['Range'] == 'bytes=900-999'
        assert result.headers['Content-Range'] == 'bytes 900-999/1000'
        assert b''.join(result) == BODY[900:TOTAL]

    @patch.object(requests.Session, 'get')
    @patch.object(requests.Session, 'head')
    def test_no_range_returns_200(self, mock_head, mock_get):
        mock_head.return_value = _probe_ok()
        mock_get.return_value = make_response(
            status_code=206,
            headers={'Content-Range': 'bytes 0-999/1000', 'Content-Length': '1000', 'Content-Type': 'video/mp4'},
            chunks=_chunks(BODY[:TOTAL]),
        )

        result = _proxy().stream(SIGNED_URL)

        assert result.status_code == 200
        assert 'Content-Range' not in result.headers
        assert result.headers['Content-Length'] == '1000'
        assert result.headers['Content-Type'] == 'video/mp4'
        assert mock_get.call_args[1]['headers']['Range'] == 'bytes=0-'
        assert len(b''.join(result)) == TOTAL

    @patch.object(requests.Session, 'get')
    @patch.object(requests.Session, 'head')
    def test_range_beyond_probe_total(self, mock_head, mock_get):
        mock_head.return_value = _probe_ok()

        with pytest.raises(RangeNotSatisfiable):
            _proxy().stream(SIGNED_URL, None, 'bytes=2000-')

        mock_get.assert_not_called()

    @patch.object(requests.Session, 'get')
    def test_open_range_with_unknown_size_sends_whole_body(self, mock_get):
        response = make_response(status_code=200, chunks=_chunks(BODY[:TOTAL]))
        response.headers.pop('Content-Type')
        mock_get.return_value = response

        result = _proxy(probe=False).stream(SIGNED_URL, None, 'bytes=100-')

        assert result.status_code == 200
        assert 'Content-Range' not in result.headers
        assert 'Content-Length' not in result.headers
        assert result.headers['Content-Type'] == 'video/mp4'
        assert b''.join(result) == BODY[:TOTAL]

    @patch.object(requests.Session, 'get')
    def test_suffix_range_with_unknown_total_uses_upstream_offsets(self, mock_get):
        mock_get.return_value = make_response(
            status_code=206,
            headers={'Content-Range': 'bytes 900-999/*'},
            chunks=[BODY[900:TOTAL]],
        )

        result = _proxy(probe=False).stream(SIGNED_URL, None, 'bytes=-100')

        assert mock_get.call_args[1]['headers']['Range'] == 'bytes=-100'
        assert result.status_code == 206
        assert result.headers['Content-Range'] == 'bytes 900-999/*'
        assert result.headers['Content-Length'] == '100'
        assert b''.join(result) == BODY[900:TOTAL]

    @patch.object(requests.Session, 'get')
    def test_upstream_416(self, mock_get):
        mock_get.return_value = make_response(status_code=416)

        with pytest.raises(RangeNotSatisfiable):
            _proxy(probe=False).stream(SIGNED_URL, None, 'bytes=5000-')


class TestMediaHeaders:
    """Media profile on the outgoing requests"""

    @patch.object(requests.Session, 'get')
    @patch.object(requests.Session, 'head')
    def test_media_profile_and_cookies(self, mock_head, mock_get):
        mock_head.return_value = _probe_ok()
        mock_get.return_value = make_response(headers={'Content-Length': '10'}, chunks=[b'0123456789'])

        _proxy().stream(SIGNED_URL, 'account=abc; i18n_lang=en')

        probe_headers = mock_head.call_args[1]['headers']
        get_headers = mock_get.call_args[1]['headers']
        assert 'Range' not in probe_headers
        assert get_headers['Referer'] == 'https://fmoviesunblocked.net/'
        assert get_headers['Origin'] == 'https://h5.aoneroom.com'
        assert get_headers['Cookie'] == 'account=abc; i18n_lang=en'
        assert 'aoneroom' not in get_headers['User-Agent']
        assert mock_get.call_args[1]['stream'] is True
        assert mock_get.call_args[1]['timeout'] == (10, 300)

    @patch.object(requests.Session, 'get')
    @patch.object(requests.Session, 'head')
    def test_no_cookie_header_without_cookies(self, mock_head, mock_get):
        mock_head.return_value = _probe_ok()
        mock_get.return_value = make_response(headers={'Content-Length': '1'}, chunks=[b'x'])

        _proxy().stream(SIGNED_URL)

        assert 'Cookie' not in mock_get.call_args[1]['headers']


class TestProbe:
    """Existence probe status mapping"""

    @pytest.mark.parametrize('status,url,error', [
        (404, SIGNED_URL, NotFoundUpstream),
        (410, SIGNED_URL, LinkExpired),
        (401, PLAIN_URL, LinkExpired),
        (403, SIGNED_URL, LinkExpired),
        (403, PLAIN_URL, RegionRestricted),
    ])
    @patch.object(requests.Session, 'get')
    @patch.object(requests.Session, 'head')
    def test_probe_refusals(self, mock_head, mock_get, status, url, error):
        mock_head.return_value = make_response(status_code=status)

        with pytest.raises(error):
            _proxy().stream(url)

        mock_get.assert_not_called()

    @patch.object(requests.Session, 'get')
    @patch.object(requests.Session, 'head')
    def test_probe_timeout_ignored(self, mock_head, mock_get):
        mock_head.side_effect = requests.exceptions.ConnectTimeout('slow')
        mock_get.return_value = make_response(headers={'Content-Length': '3'}, chunks=[b'abc'])

        result = _proxy().stream(SIGNED_URL)

        assert b''.join(result) == b'abc'

    @patch.object(requests.Session, 'head')
    def test_probe_other_status_ignored(self, mock_head):
        mock_head.return_value = make_response(status_code=405)

        assert _proxy().probe(SIGNED_URL) is None

    @patch.object(requests.Session, 'head')
    def test_probe_returns_size(self, mock_head):
        mock_head.return_value = _probe_ok(12345)

        assert _proxy().probe(SIGNED_URL) == 12345
        mock_head.return_value.close.assert_called_once()


class TestFailures:
    """Errors on the ranged GET and during the transfer"""

    @patch.object(requests.Session, 'get')
    def test_get_status_mapped(self, mock_get):
        mock_get.return_value = make_response(status_code=403)

        with pytest.raises(LinkExpired):
            _proxy(probe=False).stream(SIGNED_URL)

        mock_get.return_value.close.assert_called_once()

    @patch.object(requests.Session, 'get')
    def test_get_5xx_is_transport_error(self, mock_get):
        mock_get.return_value = make_response(status_code=503)

        with pytest.raises(TransportError):
            _proxy(probe=False).stream(SIGNED_URL)

    @patch.object(requests.Session, 'get')
    def test_get_connection_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError('reset')

        with pytest.raises(TransportError):
            _proxy(probe=False).stream(SIGNED_URL)

    @patch.object(requests.Session, 'get')
    def test_mid_stream_failure(self, mock_get):
        response = make_response(headers={'Content-Length': '100'})

        def broken(chunk_size=1):
            yield b'a' * 10
            raise requests.exceptions.ChunkedEncodingError('connection reset')

        response.iter_content.side_effect = broken
        mock_get.return_value = response

        result = _proxy(probe=False).stream(SIGNED_URL)
        body = result.iter_bytes()

        assert next(body) == b'a' * 10
        with pytest.raises(StreamFault):
            next(body)
        response.close.assert_called()

    @patch.object(requests.Session, 'get')
    def test_short_body(self, mock_get):
        mock_get.return_value = make_response(headers={'Content-Length': '1000'}, chunks=[b'x' * 500])

        result = _proxy(probe=False).stream(SIGNED_URL)

        with pytest.raises(StreamFault):
            b''.join(result)

    @patch.object(requests.Session, 'get')
    def test_close_releases_upstream(self, mock_get):
        response = make_response(headers={'Content-Length': '1000'}, chunks=_chunks(BODY[:TOTAL]))
        mock_get.return_value = response

        result = _proxy(probe=False).stream(SIGNED_URL)
        next(result.iter_bytes())
        result.close()

        response.close.assert_called()

    @patch.object(requests.Session, 'get')
    def test_close_while_another_thread_reads(self, mock_get):
        reading = threading.Event()
        released = threading.Event()
        response = make_response(headers={'Content-Length': '1000'})
        response.close.side_effect = lambda: released.set()

        def blocking(chunk_size=1):
            reading.set()
            released.wait(5)
            raise requests.exceptions.ConnectionError('connection closed')

        response.iter_content.side_effect = blocking
        mock_get.return_value = response

        result = _proxy(probe=False).stream(SIGNED_URL)
        body = result.iter_bytes()
        faults = []

        def consume():
            try:
                next(body)
            except StreamFault as e:
                faults.append(e)

        worker = threading.Thread(target=consume)
        worker.start()
        assert reading.wait(5)

        result.close()
        worker.join(5)

        assert released.is_set()
        assert not worker.is_alive()
        assert len(faults) == 1


class TestSubtitle:
    """Tests for stream_subtitle"""

    @patch.object(requests.Session, 'get')
    @patch.object(requests.Session, 'head')
    def test_subtitle_without_probe(self, mock_head, mock_get):
        mock_get.return_value = make_response(headers={'Content-Type': '', 'Content-Length': '5'}, chunks=[b'WEBVT'])

        result = _proxy().stream_subtitle('https://cdn.example.com/s/en.srt', 'account=abc')

        mock_head.assert_not_called()
        assert result.status_code == 200
        assert result.headers['Content-Type'] == 'text/vtt'
        assert mock_get.call_args[1]['timeout'] == (10, 60)
        assert b''.join(result) == b'WEBVT'
