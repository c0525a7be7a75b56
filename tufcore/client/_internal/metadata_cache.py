# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Local store of the last trusted bytes of every metadata role.

``MetadataCache`` keeps one file per role in the metadata directory
(``<quoted rolename>.json``) next to a small record
(``<quoted rolename>.version``) holding the version and sha256 digest of the
stored bytes. It never verifies signatures: the ``Updater`` only stores bytes
that the trusted set accepted, and verifies everything it reads back.

The record lets the ``Updater`` skip a cached role whose version no longer
matches snapshot without parsing it. A record whose digest does not match
the data file (e.g. after a crash between the two writes) is ignored.

Files are replaced atomically (temporary file in the same directory, then
``os.replace``) so a crash leaves the previous, still valid, document.

The cache also memoizes downloads of immutable URLs in a bounded LRU: a
versioned metadata file (``3.root.json``) or a hash-prefixed target never
changes once published, so it is served from memory on later requests in
the same process.
"""

import json
import logging
import os
import tempfile
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional
from urllib import parse

from securesystemslib import hash as sslib_hash

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Last trusted copy of one role.

    Attributes:
        role: Role name.
        data: Signed document bytes, exactly as downloaded.
        version: Recorded version, ``None`` if there is no matching record.
        digest: sha256 hex digest of ``data``.
    """

    role: str
    data: bytes
    version: Optional[int]
    digest: str


def _digest(data: bytes) -> str:
    digest_object = sslib_hash.digest("sha256")
    digest_object.update(data)
    return digest_object.hexdigest()


class MetadataCache:
    """Per-directory cache of trusted metadata bytes.

    Args:
        metadata_dir: Local directory holding the role files. It must
            exist.
        static_entries: Number of immutable downloads to keep in memory.
            ``0`` disables the memo.
    """

    def __init__(self, metadata_dir: str, static_entries: int = 64):
        self._dir = metadata_dir
        self._static: "OrderedDict[str, bytes]" = OrderedDict()
        self._static_entries = static_entries
        self._lock = threading.Lock()

    def path(self, rolename: str) -> str:
        """Return the file path of ``rolename`` in the metadata directory."""
        encoded_name = parse.quote(rolename, "")
        return os.path.join(self._dir, f"{encoded_name}.json")

    def _record_path(self, rolename: str) -> str:
        encoded_name = parse.quote(rolename, "")
        return os.path.join(self._dir, f"{encoded_name}.version")

    def load(self, rolename: str) -> Optional[bytes]:
        """Return the cached bytes of ``rolename``, or None if absent.

        Raises:
            OSError: The file exists but cannot be read.
        """
        entry = self.entry(rolename)
        return entry.data if entry is not None else None

    def entry(self, rolename: str) -> Optional[CacheEntry]:
        """Return the cached copy of ``rolename`` with its recorded version.

        Raises:
            OSError: The data file exists but cannot be read.
        """
        try:
            with open(self.path(rolename), "rb") as f:
                data = f.read()
        except FileNotFoundError:
            return None

        digest = _digest(data)
        return CacheEntry(
            rolename, data, self._read_version(rolename, digest), digest
        )

    def _read_version(self, rolename: str, digest: str) -> Optional[int]:
        try:
            with open(self._record_path(rolename), "rb") as f:
                record = json.loads(f.read())
            version = record["version"]
            recorded_digest = record["sha256"]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug("No usable version record for %s: %s", rolename, e)
            return None

        if recorded_digest != digest or not isinstance(version, int):
            logger.debug("Version record of %s does not match", rolename)
            return None
        return version

    def _replace(self, filename: str, data: bytes) -> None:
        with tempfile.NamedTemporaryFile(
            dir=self._dir, prefix=".tmp-", delete=False
        ) as temp_file:
            temp_file.write(data)
        try:
            os.replace(temp_file.name, filename)
        except OSError:
            os.remove(temp_file.name)
            raise

    def store(self, rolename: str, data: bytes, version: int) -> CacheEntry:
        """Atomically replace the cached copy of ``rolename``.

        Callers must only store bytes that have been verified. The data file
        is written before the version record.

        Raises:
            OSError: A file cannot be written. The previous data file is
                intact if the first write failed.
        """
        filename = self.path(rolename)
        digest = _digest(data)
        self._replace(filename, data)
        record = json.dumps({"version": version, "sha256": digest})
        self._replace(self._record_path(rolename), record.encode("utf-8"))

        logger.debug("Stored %s v%d in %s", rolename, version, filename)
        return CacheEntry(rolename, data, version, digest)

    def static_get(self, url: str) -> Optional[bytes]:
        """Return memoized bytes of an immutable ``url``, if any."""
        with self._lock:
            data = self._static.get(url)
            if data is not None:
                self._static.move_to_end(url)
        if data is not None:
            logger.debug("Loading %s from static cache", url)
        return data

    def static_put(self, url: str, data: bytes) -> None:
        """Memoize ``data`` as the content of immutable ``url``.

        The least recently used entry is dropped once the memo is full.
        """
        if self._static_entries <= 0:
            return
        with self._lock:
            self._static[url] = data
            self._static.move_to_end(url)
            while len(self._static) > self._static_entries:
                evicted, _ = self._static.popitem(last=False)
                logger.debug("Evicted %s from static cache", evicted)
