# Copyright 2020, New York University and the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Client update workflow implementation.

The ``Updater`` class answers one question for its caller: may these bytes
be trusted? All metadata is verified against a chain of signed documents that
starts at a pinned root, and every target is checked against the length and
hashes that trusted metadata declares for it.

High-level description of ``Updater`` functionality:
  * Initializing an ``Updater`` loads and validates the trusted root
    metadata, either given as ``bootstrap`` bytes or read from the metadata
    directory: This root metadata is used as the source of trust for all
    other metadata.
  * ``refresh()`` updates root, timestamp, snapshot and top-level targets,
    using both locally cached metadata and metadata downloaded from the
    remote repository. It can be called any number of times; if it is never
    called explicitly, it happens during the first target lookup.
  * For each target:

      * ``Updater.get_targetinfo()`` finds the trusted length and hashes of a
        target, loading delegated targets metadata as needed.
      * ``Updater.fetch_verified()`` downloads a target and returns its bytes
        once they match the trusted length and hashes.
      * ``Updater.find_cached_target()`` and ``Updater.download_target()``
        are the file based equivalents.

An ``Updater`` may be shared between threads: updates of the trusted state are
serialized and readers always see a complete root/timestamp/snapshot triple.
Running multiple processes on the same metadata directory is not supported.
"""

import logging
import os
import shutil
import threading
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple, cast
from urllib import parse

from tufcore.api import exceptions
from tufcore.api.metadata import Root, Snapshot, TargetFile, Targets, Timestamp
from tufcore.client._internal import (
    metadata_cache,
    requests_fetcher,
    trusted_metadata_set,
)
from tufcore.client.config import UpdaterConfig
from tufcore.client.fetcher import FetcherInterface

logger = logging.getLogger(__name__)

# rolename, data, version and URL version of a verified download
_PendingWrite = Tuple[str, bytes, int, Optional[int]]


@dataclass(frozen=True)
class TrustState:
    """Versions of the currently trusted top-level metadata.

    Attributes:
        root_version: Version of the trusted root.
        timestamp_version: Version of the trusted timestamp, ``None`` before
            the first successful refresh.
        snapshot_version: Version of the trusted snapshot, ``None`` before
            the first successful refresh.
    """

    root_version: int
    timestamp_version: Optional[int] = None
    snapshot_version: Optional[int] = None


class Updater:
    """Creates a new ``Updater`` instance and loads trusted root metadata.

    Args:
        metadata_dir: Local metadata directory. Directory must be
            writable and, unless ``bootstrap`` is given, it must contain a
            trusted root.json file
        metadata_base_url: Base URL for all remote metadata downloads
        target_dir: Local targets directory. Directory must be writable. It
            will be used as the default target download directory by
            ``find_cached_target()`` and ``download_target()``
        target_base_url: ``Optional``; Default base URL for all remote target
            downloads. Can be individually set in ``download_target()``
        fetcher: ``Optional``; ``FetcherInterface`` implementation used to
            download both metadata and targets. Default is ``RequestsFetcher``
        config: ``Optional``; ``UpdaterConfig`` could be used to setup common
            configuration options.
        bootstrap: ``Optional``; Initial root metadata bytes, trusted out of
            band. A cached root.json that verifies and is at least as new
            is kept instead, otherwise the bootstrap replaces it. If
            ``None``, the root.json in ``metadata_dir`` is used.

    Raises:
        OSError: Local root.json cannot be read
        RepositoryError: Trusted root is invalid
    """

    def __init__(
        self,
        metadata_dir: str,
        metadata_base_url: str,
        target_dir: Optional[str] = None,
        target_base_url: Optional[str] = None,
        fetcher: Optional[FetcherInterface] = None,
        config: Optional[UpdaterConfig] = None,
        bootstrap: Optional[bytes] = None,
    ):
        self._metadata_base_url = _ensure_trailing_slash(metadata_base_url)
        self.target_dir = target_dir
        if target_base_url is None:
            self._target_base_url = None
        else:
            self._target_base_url = _ensure_trailing_slash(target_base_url)

        self.config = config or UpdaterConfig()

        if fetcher is not None:
            self._fetcher = fetcher
        else:
            self._fetcher = requests_fetcher.RequestsFetcher(
                app_user_agent=self.config.app_user_agent
            )

        self._lock = threading.RLock()
        self._cache = metadata_cache.MetadataCache(
            metadata_dir, self.config.static_cache_entries
        )

        if bootstrap is None:
            self._trusted_set = self._load_cached_root()
        else:
            self._trusted_set = self._load_bootstrap(bootstrap)

    def _load_cached_root(self) -> trusted_metadata_set.TrustedMetadataSet:
        data = self._cache.load(Root.type)
        if data is None:
            raise FileNotFoundError(
                f"No trusted root in {self._cache.path(Root.type)}"
            )
        return trusted_metadata_set.TrustedMetadataSet(
            data, source=self._cache.path(Root.type)
        )

    def _load_bootstrap(
        self, bootstrap: bytes
    ) -> trusted_metadata_set.TrustedMetadataSet:
        """Pick the starting root from ``bootstrap`` and the cached root.

        A cached root that verifies and is at least as new as ``bootstrap``
        was reached by earlier updates and is kept. Otherwise ``bootstrap``
        replaces it.
        """
        bootstrapped = trusted_metadata_set.TrustedMetadataSet(
            bootstrap, source="bootstrap bytes"
        )
        try:
            cached = self._load_cached_root()
        except (OSError, exceptions.RepositoryError) as e:
            logger.debug("Cached root not usable: %s", e)
        else:
            if cached.root.version >= bootstrapped.root.version:
                logger.info(
                    "Keeping cached root v%d over bootstrap root v%d",
                    cached.root.version,
                    bootstrapped.root.version,
                )
                return cached

        self._cache.store(Root.type, bootstrap, bootstrapped.root.version)
        return bootstrapped

    @property
    def trust_state(self) -> TrustState:
        """Versions of the currently trusted root, timestamp and snapshot."""
        trusted_set = self._trusted_set
        timestamp_version = snapshot_version = None
        if Timestamp.type in trusted_set:
            timestamp_version = trusted_set.timestamp.version
        if Snapshot.type in trusted_set:
            snapshot_version = trusted_set.snapshot.version
        return TrustState(
            trusted_set.root.version, timestamp_version, snapshot_version
        )

    def refresh(self) -> None:
        """Refresh top-level metadata.

        Downloads, verifies, and loads metadata for the top-level roles in the
        specified order (root -> timestamp -> snapshot -> targets).

        The update runs on a new trusted set built from the last trusted root.
        It replaces the current set only if every step succeeds: on failure
        the previous trusted state stays in use and only root versions that
        verified have been written to disk. Calling ``refresh()`` again
        when nothing changed upstream leaves the trusted state as is.

        Delegated targets metadata is not updated here: that happens on
        demand during ``get_targetinfo()``.

        Raises:
            OSError: New metadata could not be written to disk
            RepositoryError: Metadata failed to verify in some way
            DownloadError: Download of a metadata file failed in some way
        """
        with self._lock:
            candidate = self._load_cached_root()
            pending: List[_PendingWrite] = []

            self._load_root(candidate)
            self._load_timestamp(candidate, pending)
            self._load_snapshot(candidate, pending)
            self._load_targets(candidate, Targets.type, Root.type, pending)

            # Nothing but root reaches the disk before the whole chain
            # verified.
            for write in pending:
                self._persist_metadata(*write)

            self._trusted_set = candidate
            logger.debug("Refreshed to %s", self.trust_state)

    def _generate_target_file_path(self, targetinfo: TargetFile) -> str:
        if self.target_dir is None:
            raise ValueError("target_dir must be set if filepath is not given")

        # Use URL encoded target path as filename
        filename = parse.quote(targetinfo.path, "")
        return os.path.join(self.target_dir, filename)

    def get_targetinfo(self, target_path: str) -> Optional[TargetFile]:
        """Return ``TargetFile`` instance with information for ``target_path``.

        The return value can be used as an argument to
        ``download_target()`` and ``find_cached_target()``.

        If ``refresh()`` has not been called before calling
        ``get_targetinfo()``, the refresh will be done implicitly.

        As a side-effect this method downloads all the additional (delegated
        targets) metadata it needs to return the target information.

        Args:
            target_path: path-relative-URL string that uniquely identifies the
                target within the repository.

        Raises:
            OSError: New metadata could not be written to disk
            RepositoryError: Metadata failed to verify in some way
            DelegationLimitError: Search exceeded the configured visit count
                or depth
            DownloadError: Download of a metadata file failed in some way

        Returns:
            ``TargetFile`` instance or ``None`` if no trusted role lists
            ``target_path``.
        """
        with self._lock:
            if Targets.type not in self._trusted_set:
                self.refresh()
            return self._preorder_depth_first_walk(target_path)

    def get_download_limit(self, target_path: str) -> int:
        """Return the number of bytes a download of ``target_path`` may use.

        This is the trusted length if metadata lists the target, and
        ``UpdaterConfig.unknown_target_max_length`` otherwise.

        Raises:
            Same as ``get_targetinfo()``.
        """
        targetinfo = self.get_targetinfo(target_path)
        if targetinfo is None:
            limit = self.config.unknown_target_max_length
        else:
            limit = targetinfo.length
        logger.debug("Target '%s' limited to %d bytes.", target_path, limit)
        return limit

    def fetch_verified(
        self,
        target_path: str,
        fetcher: Optional[FetcherInterface] = None,
        target_base_url: Optional[str] = None,
    ) -> bytes:
        """Download ``target_path`` and return its verified content.

        Args:
            target_path: Target path as listed in targets metadata.
            fetcher: ``Optional``; fetcher to download the target with.
                Default is the fetcher given to ``Updater()``.
            target_base_url: Base URL used to form the final target
                download URL. Default is the value provided in ``Updater()``

        Raises:
            TargetNotFoundError: Trusted metadata does not list the target
            DownloadLengthMismatchError: Target is larger than its trusted
                length
            LengthOrHashMismatchError: Target does not match its trusted
                length or hashes
            RepositoryError: Metadata failed to verify in some way
            DownloadError: Download failed in some way

        Returns:
            Target content that matched the trusted length and hashes.
        """
        targetinfo = self.get_targetinfo(target_path)
        if targetinfo is None:
            raise exceptions.TargetNotFoundError(
                f"No trusted metadata lists '{target_path}'"
            )

        url = self._target_url(targetinfo, target_base_url)
        # only hash-prefixed URLs name immutable content
        immutable = self._hash_prefixed_targets()

        if immutable:
            data = self._cache.static_get(url)
            if data is not None:
                try:
                    targetinfo.verify_length_and_hashes(data)
                    return data
                except exceptions.LengthOrHashMismatchError as e:
                    logger.debug("Memoized copy of %s is stale: %s", url, e)

        logger.debug(
            "Target '%s' limited to %d bytes.", target_path, targetinfo.length
        )
        fetcher = fetcher or self._fetcher
        data = fetcher.download_bytes(url, targetinfo.length)
        targetinfo.verify_length_and_hashes(data)
        logger.debug("Target '%s' validated.", target_path)

        if immutable:
            self._cache.static_put(url, data)
        return data

    def find_cached_target(
        self,
        targetinfo: TargetFile,
        filepath: Optional[str] = None,
    ) -> Optional[str]:
        """Check whether a local file is an up to date target.

        Args:
            targetinfo: ``TargetFile`` from ``get_targetinfo()``.
            filepath: Local path to file. If ``None``, a file path is
                generated based on ``target_dir`` constructor argument.

        Raises:
            ValueError: Incorrect arguments

        Returns:
            Local file path if the file is an up to date target file.
            ``None`` if file is not found or it is not up to date.
        """

        if filepath is None:
            filepath = self._generate_target_file_path(targetinfo)

        try:
            with open(filepath, "rb") as target_file:
                targetinfo.verify_length_and_hashes(target_file)
            return filepath
        except (OSError, exceptions.LengthOrHashMismatchError):
            return None

    def download_target(
        self,
        targetinfo: TargetFile,
        filepath: Optional[str] = None,
        target_base_url: Optional[str] = None,
    ) -> str:
        """Download the target file specified by ``targetinfo``.

        The file is written only after the content verified.

        Args:
            targetinfo: ``TargetFile`` from ``get_targetinfo()``.
            filepath: Local path to download into. If ``None``, the file is
                downloaded into directory defined by ``target_dir`` constructor
                argument using a generated filename. If file already exists,
                it is overwritten.
            target_base_url: Base URL used to form the final target
                download URL. Default is the value provided in ``Updater()``

        Raises:
            ValueError: Invalid arguments
            DownloadError: Download of the target file failed in some way
            RepositoryError: Downloaded target failed to be verified in some way
            OSError: Failed to write target to file

        Returns:
            Local path to downloaded file
        """

        if filepath is None:
            filepath = self._generate_target_file_path(targetinfo)

        full_url = self._target_url(targetinfo, target_base_url)

        with self._fetcher.download_file(
            full_url, targetinfo.length
        ) as target_file:
            targetinfo.verify_length_and_hashes(target_file)
            logger.debug("Target '%s' validated.", targetinfo.path)

            target_file.seek(0)
            with open(filepath, "wb") as destination_file:
                shutil.copyfileobj(target_file, destination_file)

        logger.debug("Downloaded target %s", targetinfo.path)
        return filepath

    def _target_url(
        self, targetinfo: TargetFile, target_base_url: Optional[str]
    ) -> str:
        if target_base_url is None:
            if self._target_base_url is None:
                raise ValueError(
                    "target_base_url must be set in either "
                    "the call or constructor"
                )

            target_base_url = self._target_base_url
        else:
            target_base_url = _ensure_trailing_slash(target_base_url)

        target_filepath = targetinfo.path
        if self._hash_prefixed_targets():
            target_filepath = targetinfo.get_prefixed_paths()[0]
        return f"{target_base_url}{target_filepath}"

    def _hash_prefixed_targets(self) -> bool:
        return bool(
            self._trusted_set.root.consistent_snapshot
            and self.config.prefix_targets_with_hash
        )

    def _metadata_url(self, rolename: str, version: Optional[int]) -> str:
        encoded_name = parse.quote(rolename, "")
        if version is None:
            return f"{self._metadata_base_url}{encoded_name}.json"
        return f"{self._metadata_base_url}{version}.{encoded_name}.json"

    def _download_metadata(
        self, rolename: str, length: int, version: Optional[int] = None
    ) -> bytes:
        """Download a metadata file and return it as bytes.

        Versioned files are immutable: they are served from the static cache
        when they were downloaded and verified before.
        """
        url = self._metadata_url(rolename, version)
        if version is not None:
            data = self._cache.static_get(url)
            if data is not None:
                return data
        return self._fetcher.download_bytes(url, length)

    def _persist_metadata(
        self,
        rolename: str,
        data: bytes,
        version: int,
        url_version: Optional[int],
    ) -> None:
        """Store verified metadata, and memoize it if it came from an
        immutable URL.
        """
        self._cache.store(rolename, data, version)
        if url_version is not None:
            url = self._metadata_url(rolename, url_version)
            self._cache.static_put(url, data)

    def _load_root(
        self, trusted_set: trusted_metadata_set.TrustedMetadataSet
    ) -> None:
        """Load remote root metadata.

        Every newer root version on the remote is loaded in sequence, at most
        ``max_root_rotations`` of them. Each one is written to disk as soon
        as it verifies: the chain of roots never has to be walked twice.
        """
        lower_bound = trusted_set.root.version + 1
        upper_bound = lower_bound + self.config.max_root_rotations

        for next_version in range(lower_bound, upper_bound):
            try:
                data = self._download_metadata(
                    Root.type,
                    self.config.root_max_length,
                    next_version,
                )
            except exceptions.DownloadHTTPError as exception:
                if exception.status_code not in {403, 404}:
                    raise
                # 404/403 means current root is newest available
                break

            new_root = trusted_set.update_root(data)
            self._persist_metadata(
                Root.type, data, new_root.version, next_version
            )
        else:
            logger.debug(
                "Stopped after %d root rotations",
                self.config.max_root_rotations,
            )

    def _load_timestamp(
        self,
        trusted_set: trusted_metadata_set.TrustedMetadataSet,
        pending: List[_PendingWrite],
    ) -> None:
        """Load local and remote timestamp metadata."""
        try:
            data = self._cache.load(Timestamp.type)
            if data is not None:
                trusted_set.update_timestamp(data)
                logger.debug("Loaded timestamp from cache")
        except (OSError, exceptions.RepositoryError) as e:
            # The local copy still serves as rollback baseline if it loaded
            logger.debug("Local timestamp not valid as final: %s", e)

        data = self._download_metadata(
            Timestamp.type, self.config.timestamp_max_length
        )
        try:
            new_timestamp = trusted_set.update_timestamp(data)
        except exceptions.EqualVersionNumberError:
            logger.debug("Timestamp is unchanged")
            return

        pending.append((Timestamp.type, data, new_timestamp.version, None))

    def _load_snapshot(
        self,
        trusted_set: trusted_metadata_set.TrustedMetadataSet,
        pending: List[_PendingWrite],
    ) -> None:
        """Load local (and if needed remote) snapshot metadata."""
        try:
            data = self._cache.load(Snapshot.type)
            if data is None:
                raise exceptions.RepositoryError("No cached snapshot")
            trusted_set.update_snapshot(data, trusted=True)
            logger.debug("Local snapshot is valid: not downloading new one")
            return
        except (OSError, exceptions.RepositoryError) as e:
            logger.debug("Local snapshot not valid as final: %s", e)

        snapshot_meta = trusted_set.timestamp.snapshot_meta
        length = snapshot_meta.length or self.config.snapshot_max_length
        version = None
        if trusted_set.root.consistent_snapshot:
            version = snapshot_meta.version

        data = self._download_metadata(Snapshot.type, length, version)
        new_snapshot = trusted_set.update_snapshot(data)
        pending.append((Snapshot.type, data, new_snapshot.version, version))

    def _load_local_targets(
        self,
        trusted_set: trusted_metadata_set.TrustedMetadataSet,
        role: str,
        parent_role: str,
    ) -> Optional[Targets]:
        """Return the cached ``role`` if it verifies against snapshot.

        A copy whose recorded version differs from the one snapshot lists is
        skipped without parsing it.
        """
        try:
            entry = self._cache.entry(role)
        except OSError as e:
            logger.debug("Failed to read local %s: %s", role, e)
            return None
        if entry is None:
            return None

        metainfo = trusted_set.snapshot.meta.get(f"{role}.json")
        if (
            entry.version is not None
            and metainfo is not None
            and entry.version != metainfo.version
        ):
            logger.debug(
                "Local %s v%d is stale, snapshot lists v%d",
                role,
                entry.version,
                metainfo.version,
            )
            return None

        try:
            targets = trusted_set.update_delegated_targets(
                entry.data, role, parent_role
            )
        except exceptions.RepositoryError as e:
            logger.debug("Failed to load local %s: %s", role, e)
            return None
        logger.debug("Local %s is valid: not downloading new one", role)
        return targets

    def _load_targets(
        self,
        trusted_set: trusted_metadata_set.TrustedMetadataSet,
        role: str,
        parent_role: str,
        pending: Optional[List[_PendingWrite]] = None,
    ) -> Targets:
        """Load local (and if needed remote) metadata for ``role``.

        A cached copy is used only if it verifies against the current
        snapshot, so stale copies of roles that are no longer delegated or
        have been updated are never trusted. A downloaded copy is appended
        to ``pending`` if given and written to disk right away otherwise.
        """

        # Avoid loading 'role' more than once during "get_targetinfo"
        if role in trusted_set:
            return cast(Targets, trusted_set[role])

        local = self._load_local_targets(trusted_set, role, parent_role)
        if local is not None:
            return local

        metainfo = trusted_set.snapshot.meta.get(f"{role}.json")
        if metainfo is None:
            raise exceptions.RepositoryError(
                f"Role {role} was delegated but is not part of snapshot"
            )

        length = metainfo.length or self.config.targets_max_length
        version = None
        if trusted_set.root.consistent_snapshot:
            version = metainfo.version

        data = self._download_metadata(role, length, version)
        targets = trusted_set.update_delegated_targets(data, role, parent_role)

        write = (role, data, targets.version, version)
        if pending is None:
            self._persist_metadata(*write)
        else:
            pending.append(write)
        return targets

    def _preorder_depth_first_walk(
        self, target_filepath: str
    ) -> Optional[TargetFile]:
        """Search the delegation graph for ``target_filepath``.

        Roles are visited in order of appearance, which is their order of
        trust, and the first role that lists the target wins. The walk uses
        an explicit stack of (role, delegator, depth) entries and skips roles
        it has already visited, so cycles end the search of that branch.

        Raises:
            DelegationLimitError: A role remains to be visited after
                ``max_delegations`` delegated roles, or a role is deeper than
                ``max_delegation_depth``.
        """
        trusted_set = self._trusted_set

        delegations_to_visit: List[Tuple[str, str, int]] = [
            (Targets.type, Root.type, 0)
        ]
        visited_role_names: Set[str] = set()

        while delegations_to_visit:
            role_name, parent_role, depth = delegations_to_visit.pop(-1)

            # Skip any visited current role to prevent cycles.
            if role_name in visited_role_names:
                logger.debug("Skipping visited current role %s", role_name)
                continue

            # top-level targets does not count as a delegation
            if len(visited_role_names) > self.config.max_delegations:
                raise exceptions.DelegationLimitError(
                    f"{len(delegations_to_visit) + 1} roles left to visit, "
                    f"but allowed at most {self.config.max_delegations} "
                    f"delegations"
                )
            if depth > self.config.max_delegation_depth:
                raise exceptions.DelegationLimitError(
                    f"Role {role_name} is {depth} delegations deep, allowed "
                    f"at most {self.config.max_delegation_depth}"
                )

            targets = self._load_targets(trusted_set, role_name, parent_role)

            target = targets.targets.get(target_filepath)

            if target is not None:
                logger.debug("Found target in current role %s", role_name)
                return target

            visited_role_names.add(role_name)

            if targets.delegations is not None:
                child_roles_to_visit = []
                for (
                    child_name,
                    terminating,
                ) in targets.delegations.get_roles_for_target(target_filepath):
                    logger.debug("Adding child role %s", child_name)
                    child_roles_to_visit.append(
                        (child_name, role_name, depth + 1)
                    )
                    if terminating:
                        logger.debug("Not backtracking to other roles")
                        delegations_to_visit = []
                        break
                # Roles are popped from the end of the list: push them in
                # reverse order of appearance.
                child_roles_to_visit.reverse()
                delegations_to_visit.extend(child_roles_to_visit)

        # If this point is reached then target is not found, return None
        return None


def _ensure_trailing_slash(url: str) -> str:
    """Return url guaranteed to end in a slash."""
    return url if url.endswith("/") else f"{url}/"
