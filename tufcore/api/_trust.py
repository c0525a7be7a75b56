# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Threshold signature verification.

A ``TrustDatabase`` answers "is this payload signed by enough of the keys
trusted for role X?". The client builds one from the trusted root for the
top-level roles, and one from each delegating targets role for its
delegations. A database is a copy: editing the source ``Root`` or
``Targets`` afterwards does not change what it trusts.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Tuple

from securesystemslib import exceptions as sslib_exceptions
from securesystemslib.signer import Key, Signature

from tufcore.api._payload import Role, Root, Targets
from tufcore.api.exceptions import UnsignedMetadataError

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    """Outcome of counting the signatures of one role.

    Attributes:
        threshold: Number of required signatures.
        signed: Key id to ``Key`` of the authorized keys with a valid
            signature.
        unsigned: Key id to ``Key`` of the authorized keys without one.
    """

    threshold: int
    signed: Dict[str, Key]
    unsigned: Dict[str, Key]

    def __bool__(self) -> bool:
        return self.verified

    @property
    def verified(self) -> bool:
        return len(self.signed) >= self.threshold

    @property
    def missing(self) -> int:
        """Number of signatures still needed to reach the threshold."""
        return max(0, self.threshold - len(self.signed))


class TrustDatabase:
    """Keys and role definitions to verify signed payloads against.

    Args:
        keys: Key id to ``Key``.
        roles: Role name to ``Role``.
    """

    def __init__(self, keys: Mapping[str, Key], roles: Mapping[str, Role]):
        self._keys = dict(keys)
        self._roles: Dict[str, Tuple[Tuple[str, ...], int]] = {
            name: (tuple(role.keyids), role.threshold)
            for name, role in roles.items()
        }

    @classmethod
    def from_root(cls, root: Root) -> "TrustDatabase":
        """Trust for the top-level roles, as declared by ``root``."""
        return cls(root.keys, root.roles)

    @classmethod
    def from_targets(cls, targets: Targets) -> "TrustDatabase":
        """Trust for the roles that ``targets`` delegates to."""
        if targets.delegations is None:
            return cls({}, {})
        return cls(targets.delegations.keys, targets.delegations.roles)

    def __contains__(self, role_name: object) -> bool:
        return role_name in self._roles

    def threshold(self, role_name: str) -> int:
        """Return the number of signatures ``role_name`` requires.

        Raises:
            KeyError: ``role_name`` is not defined here.
        """
        return self._roles[role_name][1]

    def keys_for(self, role_name: str) -> Dict[str, Key]:
        """Return the known keys authorized for ``role_name``.

        Key ids without a matching key are left out.

        Raises:
            KeyError: ``role_name`` is not defined here.
        """
        keyids, _ = self._roles[role_name]
        return {k: self._keys[k] for k in keyids if k in self._keys}

    def check(
        self,
        role_name: str,
        payload: bytes,
        signatures: Mapping[str, Signature],
    ) -> VerificationResult:
        """Count valid signatures over ``payload`` by keys authorized for
        ``role_name``. Every key counts at most once.

        Raises:
            UnsignedMetadataError: ``role_name`` is not defined here.
        """
        if role_name not in self._roles:
            raise UnsignedMetadataError(f"No trusted keys for {role_name}")

        signed: Dict[str, Key] = {}
        unsigned: Dict[str, Key] = {}
        for keyid, key in self.keys_for(role_name).items():
            sig = signatures.get(keyid)
            if sig is None:
                logger.info("No signature for keyid %s", keyid)
                unsigned[keyid] = key
                continue
            try:
                key.verify_signature(sig, payload)
            except sslib_exceptions.UnverifiedSignatureError:
                logger.info("Key %s failed to verify %s", keyid, role_name)
                unsigned[keyid] = key
            else:
                signed[keyid] = key

        return VerificationResult(self.threshold(role_name), signed, unsigned)

    def verify_delegate(
        self,
        role_name: str,
        payload: bytes,
        signatures: Mapping[str, Signature],
    ) -> None:
        """Require a threshold of valid signatures for ``role_name``.

        Raises:
            UnsignedMetadataError: The role is unknown or the threshold is
                not met.
        """
        result = self.check(role_name, payload, signatures)
        if not result:
            raise UnsignedMetadataError(
                f"{role_name} was signed by {len(result.signed)}/"
                f"{result.threshold} keys"
            )
