# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""``FetcherInterface`` for repositories mirrored on the local filesystem.

URLs must use the ``file://`` scheme. A missing file is reported like an
HTTP 404 so that the updater treats it as "not found".
"""

import errno
import logging
import os
from typing import IO, Iterator
from urllib import parse, request

from tufcore.api import exceptions
from tufcore.client.fetcher import FetcherInterface

logger = logging.getLogger(__name__)


class FileFetcher(FetcherInterface):
    """Read ``file://`` URLs in chunks.

    Attributes:
        chunk_size: Chunk size in bytes used when reading.
    """

    def __init__(self, chunk_size: int = 400000) -> None:
        self.chunk_size = chunk_size

    @staticmethod
    def _local_path(url: str) -> str:
        parsed_url = parse.urlparse(url)
        if parsed_url.scheme != "file":
            raise exceptions.DownloadError(f"Not a file URL: {url}")
        return request.url2pathname(parsed_url.path)

    def _fetch(self, url: str) -> Iterator[bytes]:
        path = self._local_path(url)
        try:
            f = open(path, "rb")  # pylint: disable=consider-using-with
        except OSError as e:
            if e.errno in (errno.ENOENT, errno.EISDIR, errno.ENOTDIR):
                raise exceptions.DownloadHTTPError(
                    f"{path} not found", 404
                ) from e
            if e.errno == errno.EACCES:
                raise exceptions.DownloadHTTPError(
                    f"{path} not readable", 403
                ) from e
            raise

        size = os.fstat(f.fileno()).st_size
        logger.debug("Reading %s (%d bytes)", path, size)
        return self._chunks(f)

    def _chunks(self, f: IO[bytes]) -> Iterator[bytes]:
        with f:
            while True:
                chunk = f.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk
