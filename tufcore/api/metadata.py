# Copyright New York University and the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""The signed metadata envelope.

A metadata document is one ``Metadata`` envelope around exactly one payload
(``Root``, ``Timestamp``, ``Snapshot`` or ``Targets``) plus the signatures over
the canonical form of that payload. Parsing dispatches on the payload's
``_type`` tag. ``Metadata`` can be type constrained: the ``signed`` attribute
of ``Metadata[Root]`` is known to be ``Root``::

    root_md = Metadata[Root].from_file("root.json")
    print(root_md.signed.consistent_snapshot)

The type constraint is for static type checkers only and is not validated at
runtime.

New documents can be created from scratch with::

    one_day = datetime.now(timezone.utc) + timedelta(days=1)
    timestamp = Metadata(Timestamp(expires=one_day))
"""

import logging
import os
import tempfile
from typing import Any, Dict, Generic, Optional, Type, cast

from securesystemslib.signer import Signature, Signer

# Expose payload classes via ``tufcore.api.metadata`` so that callers need a
# single import, even if they are unused in the local scope.
from tufcore.api._payload import (  # noqa: F401
    _ROOT,
    _SNAPSHOT,
    _TARGETS,
    _TIMESTAMP,
    SPECIFICATION_VERSION,
    TOP_LEVEL_ROLE_NAMES,
    BaseFile,
    DelegatedRole,
    Delegations,
    Key,
    LengthOrHashMismatchError,
    MetaFile,
    Role,
    Root,
    Signed,
    Snapshot,
    T,
    TargetFile,
    Targets,
    Timestamp,
)
from tufcore.api._trust import TrustDatabase, VerificationResult  # noqa: F401
from tufcore.api.exceptions import UnsignedMetadataError
from tufcore.api.serialization import (
    MetadataDeserializer,
    MetadataSerializer,
    SignedSerializer,
)

logger = logging.getLogger(__name__)

_PAYLOAD_TYPES: Dict[str, Type[Signed]] = {
    _ROOT: Root,
    _TIMESTAMP: Timestamp,
    _SNAPSHOT: Snapshot,
    _TARGETS: Targets,
}


class Metadata(Generic[T]):
    """A signed envelope around one metadata payload.

    *All parameters named below are not just constructor arguments but also
    instance attributes.*

    Args:
        signed: Actual metadata payload, i.e. one of ``Targets``,
            ``Snapshot``, ``Timestamp`` or ``Root``.
        signatures: Ordered dictionary of keyids to ``Signature`` objects, each
            signing the canonical serialized representation of ``signed``.
            Default is an empty dictionary.
        unrecognized_fields: Dictionary of all attributes that are not managed
            by the metadata model. These fields are NOT signed.
    """

    def __init__(
        self,
        signed: T,
        signatures: Optional[Dict[str, Signature]] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        self.signed: T = signed
        self.signatures = signatures if signatures is not None else {}
        self.unrecognized_fields = unrecognized_fields or {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Metadata):
            return False

        return (
            # Order of the signatures matters
            list(self.signatures.items()) == list(other.signatures.items())
            and self.signed == other.signed
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @property
    def signed_bytes(self) -> bytes:
        """Canonical json byte representation of ``self.signed``."""

        # Use local scope import to avoid circular import errors
        from tufcore.api.serialization.json import CanonicalJSONSerializer

        return CanonicalJSONSerializer().serialize(self.signed)

    @classmethod
    def from_dict(cls, metadata: Dict[str, Any]) -> "Metadata[T]":
        """Create ``Metadata`` object from its json/dict representation.

        Args:
            metadata: Metadata in dict representation. The dict is consumed.

        Raises:
            ValueError, KeyError, TypeError: Invalid arguments.
        """
        _type = metadata["signed"]["_type"]
        inner_cls = _PAYLOAD_TYPES.get(_type)
        if inner_cls is None:
            raise ValueError(f'unrecognized metadata type "{_type}"')

        # A keyid may sign only once: duplicates could otherwise be counted
        # twice towards a threshold.
        signatures: Dict[str, Signature] = {}
        for sig_dict in metadata.pop("signatures"):
            sig = Signature.from_dict(sig_dict)
            if sig.keyid in signatures:
                raise ValueError(
                    f"Multiple signatures found for keyid {sig.keyid}"
                )
            signatures[sig.keyid] = sig

        return cls(
            # Specific type T is not known at static type check time: use cast
            signed=cast(T, inner_cls.from_dict(metadata.pop("signed"))),
            signatures=signatures,
            unrecognized_fields=metadata,
        )

    @classmethod
    def from_file(
        cls,
        filename: str,
        deserializer: Optional[MetadataDeserializer] = None,
    ) -> "Metadata[T]":
        """Load metadata from a local file.

        Raises:
            OSError: The file cannot be read.
            tufcore.api.serialization.DeserializationError:
                The file cannot be deserialized.
        """
        with open(filename, "rb") as f:
            return cls.from_bytes(f.read(), deserializer)

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        deserializer: Optional[MetadataDeserializer] = None,
    ) -> "Metadata[T]":
        """Load metadata from raw data.

        Args:
            data: Metadata content.
            deserializer: ``MetadataDeserializer`` implementation to use.
                Default is ``JSONDeserializer``.

        Raises:
            tufcore.api.serialization.DeserializationError:
                The data cannot be deserialized.
        """
        if deserializer is None:
            # Use local scope import to avoid circular import errors
            from tufcore.api.serialization.json import JSONDeserializer

            deserializer = JSONDeserializer()

        return deserializer.deserialize(data)

    def to_bytes(
        self, serializer: Optional[MetadataSerializer] = None
    ) -> bytes:
        """Return the serialized file format as bytes.

        Deserializing and serializing again keeps signatures valid but is not
        guaranteed to produce identical bytes: use the original bytes where
        content hashes matter.

        Raises:
            tufcore.api.serialization.SerializationError:
                The metadata object cannot be serialized.
        """
        if serializer is None:
            # Use local scope import to avoid circular import errors
            from tufcore.api.serialization.json import JSONSerializer

            serializer = JSONSerializer(compact=True)

        return serializer.serialize(self)

    def to_dict(self) -> Dict[str, Any]:
        """Return the dict representation of self."""
        return {
            "signatures": [sig.to_dict() for sig in self.signatures.values()],
            "signed": self.signed.to_dict(),
            **self.unrecognized_fields,
        }

    def to_file(
        self,
        filename: str,
        serializer: Optional[MetadataSerializer] = None,
    ) -> None:
        """Write metadata to a local file, replacing it atomically.

        Raises:
            tufcore.api.serialization.SerializationError:
                The metadata object cannot be serialized.
            OSError: The file cannot be written.
        """
        bytes_data = self.to_bytes(serializer)

        directory = os.path.dirname(os.path.abspath(filename))
        with tempfile.NamedTemporaryFile(
            dir=directory, delete=False
        ) as temp_file:
            temp_file.write(bytes_data)
        try:
            os.replace(temp_file.name, filename)
        except OSError:
            os.remove(temp_file.name)
            raise

    def sign(
        self,
        signer: Signer,
        append: bool = False,
        signed_serializer: Optional[SignedSerializer] = None,
    ) -> Signature:
        """Create signature over ``signed`` and assign it to ``signatures``.

        Args:
            signer: A ``securesystemslib.signer.Signer`` object that provides a
                signing implementation to generate the signature.
            append: ``True`` if the signature should be appended to
                the list of signatures or replace any existing signatures. The
                default behavior is to replace signatures.
            signed_serializer: ``SignedSerializer`` that implements the desired
                serialization format. Default is ``CanonicalJSONSerializer``.

        Raises:
            tufcore.api.serialization.SerializationError:
                ``signed`` cannot be serialized.
            UnsignedMetadataError: Signing errors.
        """
        if signed_serializer is None:
            bytes_data = self.signed_bytes
        else:
            bytes_data = signed_serializer.serialize(self.signed)

        try:
            signature = signer.sign(bytes_data)
        except Exception as e:
            raise UnsignedMetadataError(f"Failed to sign: {e}") from e

        if not append:
            self.signatures.clear()

        self.signatures[signature.keyid] = signature

        return signature
