# Copyright 2021, New York University and the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Unit tests for FetcherInterface, RequestsFetcher and FileFetcher."""

import io
import logging
import math
import os
import sys
import tempfile
import unittest
from typing import Iterator, List
from unittest.mock import Mock, patch
from urllib import request

import requests

import tufcore
from tests import utils
from tufcore.api import exceptions
from tufcore.client import FetcherInterface, FileFetcher, RequestsFetcher

logger = logging.getLogger(__name__)


class _ChunkFetcher(FetcherInterface):
    """Serve fixed chunks for any url and remember how many were consumed."""

    def __init__(self, chunks: List[bytes]) -> None:
        self.chunks = chunks
        self.consumed = 0

    def _fetch(self, url: str) -> Iterator[bytes]:
        for chunk in self.chunks:
            self.consumed += 1
            yield chunk


class _BrokenFetcher(FetcherInterface):
    def _fetch(self, url: str) -> Iterator[bytes]:
        raise ValueError("not a download error")


class TestFetcherInterface(unittest.TestCase):
    """Test the byte limits and error handling shared by all fetchers."""

    def test_download_bytes(self) -> None:
        fetcher = _ChunkFetcher([b"abc", b"def"])
        self.assertEqual(fetcher.download_bytes("x", 6), b"abcdef")
        # Download file smaller than required max_length
        self.assertEqual(fetcher.download_bytes("x", 100), b"abcdef")

    def test_download_one_byte_over_limit(self) -> None:
        data = b"a" * 10
        fetcher = _ChunkFetcher([data, b"b", b"never read"])
        with self.assertRaises(exceptions.DownloadLengthMismatchError):
            fetcher.download_bytes("x", len(data))
        # the download stopped at the first byte past the limit
        self.assertEqual(fetcher.consumed, 2)

    def test_download_file(self) -> None:
        fetcher = _ChunkFetcher([b"abc", b"def"])
        with fetcher.download_file("x", 6) as temp_file:
            self.assertEqual(temp_file.read(), b"abcdef")
            temp_file.seek(0, io.SEEK_END)
            self.assertEqual(temp_file.tell(), 6)

        with self.assertRaises(exceptions.DownloadLengthMismatchError):
            with fetcher.download_file("x", 5):
                pass

    def test_download_logs_url(self) -> None:
        fetcher = _ChunkFetcher([b"abc"])
        with self.assertLogs("tufcore.client.fetcher", logging.DEBUG) as cm:
            fetcher.download_bytes("https://example.com/a", 3)
        self.assertIn(
            "DEBUG:tufcore.client.fetcher:Downloading: https://example.com/a",
            cm.output,
        )

    def test_other_errors_are_download_errors(self) -> None:
        with self.assertRaises(exceptions.DownloadError) as cm:
            _BrokenFetcher().fetch("x")
        self.assertIsInstance(cm.exception.__cause__, ValueError)

        with self.assertRaises(exceptions.DownloadError):
            _BrokenFetcher().download_bytes("x", 10)


class TestRequestsFetcher(unittest.TestCase):
    """Test RequestsFetcher class with the network mocked out."""

    url = "https://example.com/metadata/timestamp.json"

    def setUp(self) -> None:
        self.fetcher = RequestsFetcher(app_user_agent="MyApp/1.0")

    @staticmethod
    def _response(chunks: List[bytes], status_code: int = 200) -> Mock:
        response = Mock()
        response.status_code = status_code
        response.iter_content.return_value = iter(chunks)
        if status_code >= 400:
            response.raise_for_status.side_effect = requests.HTTPError(
                f"{status_code} error", response=response
            )
        return response

    @patch.object(requests.Session, "get")
    def test_download_bytes(self, mock_session_get: Mock) -> None:
        response = self._response([b"junk ", b"data"])
        mock_session_get.return_value = response

        data = self.fetcher.download_bytes(self.url, 9)
        self.assertEqual(data, b"junk data")
        mock_session_get.assert_called_once_with(
            self.url, stream=True, timeout=self.fetcher.socket_timeout
        )
        response.close.assert_called()

    @patch.object(requests.Session, "get")
    def test_download_bytes_length_mismatch(
        self, mock_session_get: Mock
    ) -> None:
        mock_session_get.return_value = self._response([b"junk ", b"data"])
        with self.assertRaises(exceptions.DownloadLengthMismatchError):
            self.fetcher.download_bytes(self.url, 5)

    # File not found error
    @patch.object(requests.Session, "get")
    def test_http_error(self, mock_session_get: Mock) -> None:
        response = self._response([], 404)
        mock_session_get.return_value = response

        with self.assertRaises(exceptions.DownloadHTTPError) as cm:
            self.fetcher.fetch(self.url)
        self.assertEqual(cm.exception.status_code, 404)
        response.close.assert_called_once()

    # Read/connect session timeout error
    @patch.object(
        requests.Session,
        "get",
        side_effect=requests.exceptions.Timeout("Simulated timeout"),
    )
    def test_session_get_timeout(self, mock_session_get: Mock) -> None:
        with self.assertRaises(exceptions.SlowRetrievalError):
            self.fetcher.fetch(self.url)
        mock_session_get.assert_called_once()

    # Response read timeout error
    @patch.object(requests.Session, "get")
    def test_response_read_timeout(self, mock_session_get: Mock) -> None:
        mock_response = Mock()
        attr = {
            "iter_content.side_effect": requests.exceptions.ConnectionError(
                "Simulated timeout"
            )
        }
        mock_response.configure_mock(**attr)
        mock_session_get.return_value = mock_response

        with self.assertRaises(exceptions.SlowRetrievalError):
            next(self.fetcher.fetch(self.url))
        mock_response.iter_content.assert_called_once()

    # Incorrect URL parsing
    def test_url_parsing(self) -> None:
        with self.assertRaises(exceptions.DownloadError):
            self.fetcher.fetch("missing-scheme-and-hostname-in-url")

    def test_sessions(self) -> None:
        session = self.fetcher._get_session("https://example.com/a")
        self.assertIs(
            self.fetcher._get_session("https://example.com/b"), session
        )
        self.assertIsNot(
            self.fetcher._get_session("http://example.com/a"), session
        )
        self.assertIsNot(
            self.fetcher._get_session("https://example.org/a"), session
        )

    def test_user_agent(self) -> None:
        session = self.fetcher._get_session(self.url)
        user_agent = session.headers["User-Agent"]
        self.assertTrue(
            user_agent.startswith(f"MyApp/1.0 tufcore/{tufcore.__version__} ")
        )

        session = RequestsFetcher()._get_session(self.url)
        self.assertTrue(session.headers["User-Agent"].startswith("tufcore/"))


class TestFileFetcher(unittest.TestCase):
    """Test FileFetcher class against a temporary directory."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.file_contents = b"junk data"
        self.path = os.path.join(self.temp_dir.name, "file.txt")
        with open(self.path, "wb") as f:
            f.write(self.file_contents)
        self.url = f"file://{request.pathname2url(self.path)}"
        self.fetcher = FileFetcher()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_download_bytes(self) -> None:
        data = self.fetcher.download_bytes(self.url, len(self.file_contents))
        self.assertEqual(data, self.file_contents)

    # URL data downloaded in more than one chunk
    def test_fetch_in_chunks(self) -> None:
        self.fetcher.chunk_size = 4
        expected_chunks_count = math.ceil(
            len(self.file_contents) / self.fetcher.chunk_size
        )
        chunks = list(self.fetcher.fetch(self.url))
        self.assertEqual(len(chunks), expected_chunks_count)
        self.assertEqual(b"".join(chunks), self.file_contents)

    def test_download_length_mismatch(self) -> None:
        with self.assertRaises(exceptions.DownloadLengthMismatchError):
            self.fetcher.download_bytes(self.url, len(self.file_contents) - 1)

    def test_missing_file(self) -> None:
        for name in ["missing.txt", ""]:
            url = f"file://{request.pathname2url(self.temp_dir.name)}/{name}"
            with self.assertRaises(exceptions.DownloadHTTPError) as cm:
                self.fetcher.fetch(url)
            self.assertEqual(cm.exception.status_code, 404)

    def test_not_a_file_url(self) -> None:
        with self.assertRaises(exceptions.DownloadError):
            self.fetcher.fetch("https://example.com/file.txt")


# Run unit test.
if __name__ == "__main__":
    utils.configure_test_logging(sys.argv)
    unittest.main()
