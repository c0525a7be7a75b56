# Copyright New York University and the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""JSON wire format for metadata envelopes, and OLPC Canonical JSON for the
signed payload that signatures are computed over.
"""

import json
from typing import Any, Dict, Optional

from securesystemslib.formats import encode_canonical

# Metadata and Signed are imported here while metadata.py creates default
# de/serializers with local scope imports, avoiding an import cycle.
from tufcore.api.metadata import Metadata, Signed
from tufcore.api.serialization import (
    DeserializationError,
    MetadataDeserializer,
    MetadataSerializer,
    SerializationError,
    SignedSerializer,
)


def _reject_duplicate_keys(pairs: Any) -> Dict[str, Any]:
    # json.loads silently keeps the last duplicate: an attacker could show
    # different content to a different parser.
    result: Dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise ValueError(f"Duplicate key {key!r}")
        result[key] = value
    return result


class JSONDeserializer(MetadataDeserializer):
    """Provides JSON to Metadata deserialize method."""

    def deserialize(self, raw_data: bytes) -> Metadata:
        """Deserialize utf-8 encoded JSON bytes into Metadata object."""
        try:
            json_dict = json.loads(
                raw_data.decode("utf-8"),
                object_pairs_hook=_reject_duplicate_keys,
            )
            metadata_obj = Metadata.from_dict(json_dict)

        except Exception as e:
            raise DeserializationError("Failed to deserialize JSON") from e

        return metadata_obj


class JSONSerializer(MetadataSerializer):
    """Provides Metadata to JSON serialize method.

    Args:
        compact: A boolean indicating if the JSON bytes generated in
            'serialize' should be compact by excluding whitespace.
        validate: Check that the metadata object can be deserialized again
            without change of contents and thus find common mistakes.
            This validation might slow down serialization significantly.
    """

    def __init__(self, compact: bool = False, validate: Optional[bool] = False):
        self.compact = compact
        self.validate = validate

    def serialize(self, metadata_obj: Metadata) -> bytes:
        """Serialize Metadata object into utf-8 encoded JSON bytes."""

        try:
            indent = None if self.compact else 1
            separators = (",", ":") if self.compact else (",", ": ")
            json_bytes = json.dumps(
                metadata_obj.to_dict(),
                indent=indent,
                separators=separators,
                sort_keys=True,
            ).encode("utf-8")

            if self.validate:
                new_md_obj = JSONDeserializer().deserialize(json_bytes)
                if metadata_obj != new_md_obj:
                    raise ValueError(
                        "Metadata changes if you serialize and deserialize."
                    )

        except Exception as e:
            raise SerializationError("Failed to serialize JSON") from e

        return json_bytes


class CanonicalJSONSerializer(SignedSerializer):
    """Provides Signed to OLPC Canonical JSON serialize method.

    Canonical JSON sorts keys and fixes whitespace and escaping, so the same
    payload always produces the same bytes and signatures are reproducible.
    """

    def serialize(self, signed_obj: Signed) -> bytes:
        """Serialize Signed object into utf-8 encoded canonical bytes."""
        try:
            signed_dict = signed_obj.to_dict()
            canonical_bytes = encode_canonical(signed_dict).encode("utf-8")

        except Exception as e:
            raise SerializationError from e

        return canonical_bytes
