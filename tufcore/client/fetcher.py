# Copyright 2021, New York University and the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Provides an interface for network IO abstraction."""

import abc
import logging
import tempfile
from contextlib import contextmanager
from typing import IO, Iterator

from tufcore.api import exceptions

logger = logging.getLogger(__name__)


class FetcherInterface(metaclass=abc.ABCMeta):
    """Bounded fetch-by-URL capability used for all downloads.

    Implementations only need to provide ``_fetch()``: byte limiting and
    error normalization are implemented here, so every backend (network,
    local mirror, test fixture) enforces the same bounds.
    """

    @abc.abstractmethod
    def _fetch(self, url: str) -> Iterator[bytes]:
        """Fetch the contents of ``url``.

        Implementations must raise ``DownloadHTTPError`` if they receive
        an HTTP error code (or an equivalent "not found" condition).

        Implementations may raise any errors but the ones that are not
        ``DownloadErrors`` will be wrapped in a ``DownloadError`` by
        ``fetch()``.

        Args:
            url: URL string that represents a file location.

        Raises:
            exceptions.DownloadHTTPError: HTTP error code was received.

        Returns:
            Bytes iterator
        """
        raise NotImplementedError  # pragma: no cover

    def fetch(self, url: str) -> Iterator[bytes]:
        """Fetch the contents of ``url``.

        Raises:
            exceptions.DownloadError: An error occurred during download.
            exceptions.DownloadHTTPError: An HTTP error code was received.

        Returns:
            Bytes iterator
        """
        # fetch() only raises DownloadErrors, whatever the implementation
        try:
            return self._fetch(url)
        except exceptions.DownloadError:
            raise
        except Exception as e:
            raise exceptions.DownloadError(f"Failed to download {url}") from e

    @contextmanager
    def download_file(self, url: str, max_length: int) -> Iterator[IO]:
        """Download file from given ``url``, reading at most ``max_length``
        bytes.

        The download is aborted as soon as more than ``max_length`` bytes
        have arrived, so nothing past the bound is ever stored or hashed.

        Args:
            url: URL string that represents the location of the file.
            max_length: Upper bound of file size in bytes.

        Raises:
            exceptions.DownloadError: An error occurred during download.
            exceptions.DownloadLengthMismatchError: Downloaded bytes exceed
                ``max_length``.
            exceptions.DownloadHTTPError: An HTTP error code was received.

        Yields:
            ``TemporaryFile`` object that points to the contents of ``url``.
        """
        logger.debug("Downloading: %s", url)

        number_of_bytes_received = 0

        with tempfile.TemporaryFile() as temp_file:
            chunks = self.fetch(url)
            try:
                for chunk in chunks:
                    number_of_bytes_received += len(chunk)
                    if number_of_bytes_received > max_length:
                        raise exceptions.DownloadLengthMismatchError(
                            f"Downloaded {number_of_bytes_received} bytes "
                            f"exceeding the maximum allowed length of "
                            f"{max_length}"
                        )

                    temp_file.write(chunk)
            finally:
                close = getattr(chunks, "close", None)
                if close is not None:
                    close()

            logger.debug(
                "Downloaded %d out of %d bytes",
                number_of_bytes_received,
                max_length,
            )

            temp_file.seek(0)
            yield temp_file

    def download_bytes(self, url: str, max_length: int) -> bytes:
        """Download bytes from given ``url``.

        Returns the downloaded bytes, otherwise like ``download_file()``.

        Raises:
            exceptions.DownloadError: An error occurred during download.
            exceptions.DownloadLengthMismatchError: Downloaded bytes exceed
                ``max_length``.
            exceptions.DownloadHTTPError: An HTTP error code was received.
        """
        with self.download_file(url, max_length) as dl_file:
            return dl_file.read()
