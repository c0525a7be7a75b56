# Copyright 2021, New York University and the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Configuration options for ``Updater`` class."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class UpdaterConfig:
    """Used to store ``Updater`` configuration.

    The length limits bound every download whose size is not declared by an
    already trusted document.

    Args:
        max_root_rotations: Maximum number of root versions to walk in one
            refresh.
        max_delegations: Maximum number of delegated roles visited while
            searching for one target.
        max_delegation_depth: Maximum delegation depth below top-level
            targets.
        root_max_length: Maxmimum length of a root metadata file.
        timestamp_max_length: Maximum length of a timestamp metadata file.
        snapshot_max_length: Maximum length of a snapshot metadata file.
        targets_max_length: Maximum length of a targets metadata file.
        unknown_target_max_length: Download limit for a target that trusted
            metadata does not list, e.g. an optional file that is expected
            to be absent.
        prefix_targets_with_hash: When consistent snapshots are used, target
            download URLs are formed by prefixing the filename with a hash
            digest of file content by default. This can be overridden by
            setting ``prefix_targets_with_hash`` to ``False``.
        app_user_agent: Application user agent, e.g. "MyApp/1.0.0". This will
            be prefixed to the client user agent when the default fetcher is
            used.
        static_cache_entries: Number of immutable downloads (versioned
            metadata and hash-prefixed targets) kept in memory. ``0``
            disables the memo.
    """

    max_root_rotations: int = 256
    max_delegations: int = 32
    max_delegation_depth: int = 32
    root_max_length: int = 512000  # bytes
    timestamp_max_length: int = 16384  # bytes
    snapshot_max_length: int = 2000000  # bytes
    targets_max_length: int = 5000000  # bytes
    unknown_target_max_length: int = 10000  # bytes
    prefix_targets_with_hash: bool = True
    app_user_agent: Optional[str] = None
    static_cache_entries: int = 64
