# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""In-memory state of verified client metadata.

``TrustedMetadataSet`` decides whether a candidate piece of metadata may
become part of the client's trusted state. It does no IO: ``Updater`` reads
files and downloads bytes, this module only parses and verifies them.

The set is a read-only mapping from role name to ``Signed`` payload.
Signatures are checked on the way in and then dropped.

Ordering:
    root, timestamp, snapshot, targets and then any delegated targets role,
    in that order. A role cannot be loaded once a later role is present,
    and a role needs every earlier role loaded and valid.

Intermediate metadata:
    An expired timestamp or snapshot (or a snapshot whose version does not
    match timestamp) is still stored before the error is raised. It then
    serves as the rollback baseline for a newer copy but blocks the next
    role in the order.
"""

import datetime
import logging
from collections import abc
from typing import Dict, Iterator, Optional, Tuple, Type, cast

from securesystemslib.signer import Signature

from tufcore.api import exceptions
from tufcore.api.metadata import (
    Metadata,
    Root,
    Signed,
    Snapshot,
    T,
    Targets,
    Timestamp,
    TrustDatabase,
)

logger = logging.getLogger(__name__)


class TrustedMetadataSet(abc.Mapping):
    """Verified metadata of one client, keyed by role name.

    Args:
        root_data: Serialized root that is trusted as-is. It is checked
            against its own keys only.
        reference_time: Expiry is evaluated against this instant. Defaults
            to the current UTC time.
        source: Where ``root_data`` came from, for the log.

    Raises:
        RepositoryError: ``root_data`` is not a valid self-signed root.
    """

    def __init__(
        self,
        root_data: bytes,
        reference_time: Optional[datetime.datetime] = None,
        source: Optional[str] = None,
    ):
        self._roles: Dict[str, Signed] = {}
        self.reference_time = reference_time or datetime.datetime.now(
            datetime.timezone.utc
        )

        root, payload, signatures = _load_from_metadata(Root, root_data)
        trust = TrustDatabase.from_root(root)
        trust.verify_delegate(Root.type, payload, signatures)
        self._set_root(root, trust)
        logger.info(
            "Loaded trusted root v%d from %s",
            root.version,
            source or "caller-provided bytes",
        )

    def __getitem__(self, role: str) -> Signed:
        return self._roles[role]

    def __len__(self) -> int:
        return len(self._roles)

    def __iter__(self) -> Iterator[str]:
        return iter(self._roles)

    @property
    def root(self) -> Root:
        return cast(Root, self._roles[Root.type])

    @property
    def timestamp(self) -> Timestamp:
        return cast(Timestamp, self._roles[Timestamp.type])

    @property
    def snapshot(self) -> Snapshot:
        return cast(Snapshot, self._roles[Snapshot.type])

    @property
    def targets(self) -> Targets:
        """Top-level targets."""
        return cast(Targets, self._roles[Targets.type])

    @property
    def trust(self) -> TrustDatabase:
        """Top-level keys and thresholds declared by the current root."""
        return self._trust

    def _set_root(self, root: Root, trust: TrustDatabase) -> None:
        self._roles[Root.type] = root
        self._trust = trust

    def _expect_absent(self, role: str, action: str) -> None:
        if role in self._roles:
            raise RuntimeError(f"Cannot {action} after {role}")

    def _expect_present(self, role: str, action: str) -> None:
        if role not in self._roles:
            raise RuntimeError(f"Cannot {action} before {role}")

    def update_root(self, data: bytes) -> Root:
        """Advance the trusted root by exactly one version.

        ``data`` needs a threshold of signatures from the current root's
        root keys and another from its own. Expiry is not checked here,
        an outdated root may still lead to a newer one.

        Raises:
            RuntimeError: Timestamp is already loaded.
            RollbackError: The version is not above the trusted one.
            BadVersionNumberError: The version skips ahead.
            RepositoryError: Parsing or signature checks failed.

        Returns:
            The new ``Root``.
        """
        self._expect_absent(Timestamp.type, "update root")

        new_root, payload, signatures = _load_from_metadata(
            Root, data, self._trust
        )
        expected = self.root.version + 1
        if new_root.version < expected:
            raise exceptions.RollbackError(
                f"Expected root version {expected}"
                f" instead got version {new_root.version}"
            )
        if new_root.version > expected:
            raise exceptions.BadVersionNumberError(
                f"Expected root version {expected}"
                f" instead got version {new_root.version}"
            )

        new_trust = TrustDatabase.from_root(new_root)
        new_trust.verify_delegate(Root.type, payload, signatures)

        self._set_root(new_root, new_trust)
        logger.debug("Root advanced to v%d", new_root.version)
        return new_root

    def update_timestamp(self, data: bytes) -> Timestamp:
        """Load ``data`` as timestamp.

        The first timestamp call also freezes the root, so an expired root
        fails here. A timestamp that passes the signature and rollback checks
        is stored even when expired, and the ``ExpiredMetadataError`` is
        raised afterwards.

        Raises:
            RuntimeError: Snapshot is already loaded.
            ExpiredMetadataError: Root or the new timestamp is expired.
            RollbackError: The timestamp version, or the snapshot version
                it lists, went down.
            EqualVersionNumberError: Same version as the trusted timestamp,
                which stays in place.
            RepositoryError: Parsing or signature checks failed.

        Returns:
            The new ``Timestamp``.
        """
        self._expect_absent(Snapshot.type, "update timestamp")
        if self.root.is_expired(self.reference_time):
            raise exceptions.ExpiredMetadataError("Final root.json is expired")

        new_timestamp, _, _ = _load_from_metadata(Timestamp, data, self._trust)

        current = cast(Optional[Timestamp], self._roles.get(Timestamp.type))
        if current is not None:
            if new_timestamp.version < current.version:
                raise exceptions.RollbackError(
                    f"New timestamp version {new_timestamp.version} must"
                    f" be >= {current.version}"
                )
            if new_timestamp.version == current.version:
                raise exceptions.EqualVersionNumberError

            old_snap = current.snapshot_meta.version
            new_snap = new_timestamp.snapshot_meta.version
            if new_snap < old_snap:
                raise exceptions.RollbackError(
                    f"New snapshot version must be >= {old_snap}"
                    f", got version {new_snap}"
                )

        self._roles[Timestamp.type] = new_timestamp
        logger.debug("Timestamp advanced to v%d", new_timestamp.version)
        self._raise_if_timestamp_unusable()
        return new_timestamp

    def _raise_if_timestamp_unusable(self) -> None:
        if self.timestamp.is_expired(self.reference_time):
            raise exceptions.ExpiredMetadataError("timestamp.json is expired")

    def update_snapshot(
        self, data: bytes, trusted: Optional[bool] = False
    ) -> Snapshot:
        """Load ``data`` as snapshot.

        Like timestamp, a snapshot that is expired or whose version differs
        from the one timestamp lists is stored before the error is raised.

        Args:
            data: Serialized snapshot.
            trusted: Skip the length and hash check against timestamp. Only
                for bytes this class accepted before, such as the local
                copy, which may no longer match a newer timestamp.

        Raises:
            RuntimeError: Timestamp is missing or targets is loaded.
            LengthOrHashMismatchError: ``data`` does not match timestamp.
            RollbackError: A role version listed in snapshot went down.
            RepositoryError: A previously listed role disappeared, or any
                parse, signature, version or expiry failure.

        Returns:
            The new ``Snapshot``.
        """
        self._expect_present(Timestamp.type, "update snapshot")
        self._expect_absent(Targets.type, "update snapshot")
        self._raise_if_timestamp_unusable()

        if not trusted:
            self.timestamp.snapshot_meta.verify_length_and_hashes(data)

        new_snapshot, _, _ = _load_from_metadata(Snapshot, data, self._trust)

        current = cast(Optional[Snapshot], self._roles.get(Snapshot.type))
        if current is not None:
            for filename, old_info in current.meta.items():
                new_info = new_snapshot.meta.get(filename)
                if new_info is None:
                    raise exceptions.RepositoryError(
                        f"New snapshot is missing info for '{filename}'"
                    )
                if new_info.version < old_info.version:
                    raise exceptions.RollbackError(
                        f"Expected {filename} version "
                        f">= {old_info.version}, got {new_info.version}."
                    )

        self._roles[Snapshot.type] = new_snapshot
        logger.debug("Snapshot advanced to v%d", new_snapshot.version)
        self._raise_if_snapshot_unusable()
        return new_snapshot

    def _raise_if_snapshot_unusable(self) -> None:
        if self.snapshot.is_expired(self.reference_time):
            raise exceptions.ExpiredMetadataError("snapshot.json is expired")
        wanted = self.timestamp.snapshot_meta.version
        if self.snapshot.version != wanted:
            raise exceptions.BadVersionNumberError(
                f"Expected snapshot version {wanted}, "
                f"got {self.snapshot.version}"
            )

    def update_targets(self, data: bytes) -> Targets:
        """Load ``data`` as top-level targets, trusted through root."""
        return self.update_delegated_targets(data, Targets.type, Root.type)

    def update_delegated_targets(
        self, data: bytes, role_name: str, delegator_name: str
    ) -> Targets:
        """Load ``data`` as the targets role ``role_name``.

        Keys and threshold come from ``delegator_name`` (root for top-level
        targets). Length, hashes and version come from snapshot. Unlike
        timestamp and snapshot, nothing is stored when a check fails.

        Raises:
            RuntimeError: Snapshot or the delegator is not loaded.
            RepositoryError: Missing from snapshot, or any parse, signature,
                hash, version or expiry failure.

        Returns:
            The new ``Targets``.
        """
        self._expect_present(Snapshot.type, "load targets")
        self._raise_if_snapshot_unusable()

        if delegator_name == Root.type:
            trust = self._trust
        else:
            delegator = self._roles.get(delegator_name)
            if delegator is None:
                raise RuntimeError("Cannot load targets before delegator")
            trust = TrustDatabase.from_targets(cast(Targets, delegator))

        meta = self.snapshot.meta.get(f"{role_name}.json")
        if meta is None:
            raise exceptions.RepositoryError(
                f"Snapshot does not contain information for '{role_name}'"
            )
        meta.verify_length_and_hashes(data)

        new_targets, _, _ = _load_from_metadata(
            Targets, data, trust, role_name
        )
        if new_targets.version != meta.version:
            raise exceptions.BadVersionNumberError(
                f"Expected {role_name} v{meta.version}, "
                f"got v{new_targets.version}."
            )
        if new_targets.is_expired(self.reference_time):
            raise exceptions.ExpiredMetadataError(f"New {role_name} is expired")

        self._roles[role_name] = new_targets
        logger.debug(
            "Loaded %s v%d (delegated by %s)",
            role_name,
            new_targets.version,
            delegator_name,
        )
        return new_targets


def _load_from_metadata(
    role: Type[T],
    data: bytes,
    trust: Optional[TrustDatabase] = None,
    role_name: Optional[str] = None,
) -> Tuple[T, bytes, Dict[str, Signature]]:
    """Parse ``data`` as ``role`` and optionally check its signatures.

    Signatures are checked against ``trust`` for ``role_name`` (default: the
    role type) when ``trust`` is given. Returns the payload, the canonical
    bytes that were signed, and the signatures.
    """
    md = Metadata[T].from_bytes(data)
    if md.signed.type != role.type:
        raise exceptions.RepositoryError(
            f"Expected '{role.type}', got '{md.signed.type}'"
        )
    if trust is not None:
        trust.verify_delegate(
            role_name or role.type, md.signed_bytes, md.signatures
        )
    return md.signed, md.signed_bytes, md.signatures
