# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0


"""Signed payload classes of the metadata model.

Every metadata document shares one envelope (see ``tufcore.api.metadata``)
and carries one of four payload kinds: ``Root``, ``Timestamp``, ``Snapshot``
or ``Targets``. The kind is selected by the ``_type`` field of the payload.

The ``from_dict()`` constructors consume the dictionary they are given: what
is left of it after the known fields have been popped is kept as
``unrecognized_fields`` and written back unchanged by ``to_dict()``, so that
signatures over documents with extension fields stay valid.
"""

import abc
import fnmatch
import io
import logging
from datetime import datetime, timezone
from typing import (
    IO,
    Any,
    ClassVar,
    Dict,
    Iterator,
    List,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from securesystemslib import exceptions as sslib_exceptions
from securesystemslib import hash as sslib_hash
from securesystemslib.signer import Key

from tufcore.api.exceptions import LengthOrHashMismatchError

_ROOT = "root"
_SNAPSHOT = "snapshot"
_TARGETS = "targets"
_TIMESTAMP = "timestamp"

# Input metadata must share the major version (the first number) with ours.
SPECIFICATION_VERSION = ["1", "0", "31"]
TOP_LEVEL_ROLE_NAMES = {_ROOT, _TIMESTAMP, _SNAPSHOT, _TARGETS}

_EXPIRES_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

logger = logging.getLogger(__name__)

# T is a Generic type constraint for container payloads
T = TypeVar("T", "Root", "Timestamp", "Snapshot", "Targets")

Data = Union[bytes, IO[bytes]]


def _require_int(name: str, value: Any) -> int:
    # bool is an int subclass but never a valid version, length or threshold
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer, got {value!r}")
    return value


def _hexdigest(data: Data, algorithm: str) -> str:
    """Hash bytes or a whole file object with ``algorithm``.

    Raises:
        ValueError: ``algorithm`` is not supported.
    """
    try:
        if isinstance(data, bytes):
            digest_object = sslib_hash.digest(algorithm)
            digest_object.update(data)
        else:
            digest_object = sslib_hash.digest_fileobject(data, algorithm)
    except (
        sslib_exceptions.UnsupportedAlgorithmError,
        sslib_exceptions.FormatError,
    ) as e:
        raise ValueError(f"Unsupported algorithm '{algorithm}'") from e

    return digest_object.hexdigest()


class Signed(metaclass=abc.ABCMeta):
    """Fields shared by every payload kind.

    Args:
        version: Document version, at least 1. Default is 1.
        spec_version: Metadata format version as "major.minor[.patch]".
            Default is the version this library writes. The major version
            must match ``SPECIFICATION_VERSION``.
        expires: Expiry time, stored as whole seconds in UTC. Default is
            the current time.
        unrecognized_fields: Fields this library does not interpret.

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    type: ClassVar[str] = "signed"

    @property
    def _type(self) -> str:
        return self.type

    @property
    def expires(self) -> datetime:
        return self._expires

    @expires.setter
    def expires(self, value: datetime) -> None:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        elif value.tzinfo != timezone.utc:
            raise ValueError(f"Expected tz UTC, not {value.tzinfo}")
        self._expires = value.replace(microsecond=0)

    def __init__(
        self,
        version: Optional[int],
        spec_version: Optional[str],
        expires: Optional[datetime],
        unrecognized_fields: Optional[Dict[str, Any]],
    ):
        if spec_version is None:
            spec_version = ".".join(SPECIFICATION_VERSION)
        parts = spec_version.split(".")
        # "1.0" is still found in old repositories
        if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
            raise ValueError(f"Failed to parse spec_version {spec_version}")
        if parts[0] != SPECIFICATION_VERSION[0]:
            raise ValueError(f"Unsupported spec_version {spec_version}")
        self.spec_version = spec_version

        self.expires = expires or datetime.now(timezone.utc)

        if version is None:
            version = 1
        if _require_int("version", version) < 1:
            raise ValueError(f"version must be > 0, got {version}")
        self.version = version

        self.unrecognized_fields = unrecognized_fields or {}

    def _fields(self) -> Tuple[Any, ...]:
        """Values that take part in equality."""
        return (
            self.type,
            self.version,
            self.spec_version,
            self.expires,
            self.unrecognized_fields,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Signed):
            return False
        return self._fields() == other._fields()

    @abc.abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    @classmethod
    @abc.abstractmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Signed":
        raise NotImplementedError

    @classmethod
    def _pop_common_fields(
        cls, signed_dict: Dict[str, Any]
    ) -> Tuple[int, str, datetime]:
        """Pop ``_type``, ``version``, ``spec_version`` and ``expires``.

        The returned tuple is the leading positional arguments of every
        payload constructor.
        """
        _type = signed_dict.pop("_type")
        if _type != cls.type:
            raise ValueError(f"Expected type {cls.type}, got {_type}")

        version = signed_dict.pop("version")
        spec_version = signed_dict.pop("spec_version")
        expires_str = signed_dict.pop("expires")
        expires = datetime.strptime(expires_str, _EXPIRES_FORMAT)

        return version, spec_version, expires.replace(tzinfo=timezone.utc)

    def _common_dict(self) -> Dict[str, Any]:
        return {
            "_type": self._type,
            "version": self.version,
            "spec_version": self.spec_version,
            "expires": self.expires.strftime(_EXPIRES_FORMAT),
            **self.unrecognized_fields,
        }

    def is_expired(self, reference_time: Optional[datetime] = None) -> bool:
        """Return ``True`` if ``reference_time`` (default: now) is at or past
        the expiry time.
        """
        if reference_time is None:
            reference_time = datetime.now(timezone.utc)

        return reference_time >= self.expires


class Role:
    """Key ids that may sign a role and the number of them that must.

    Args:
        keyids: Authorized key ids, without duplicates.
        threshold: Required number of signatures, at least 1.
        unrecognized_fields: Fields this library does not interpret.

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    def __init__(
        self,
        keyids: List[str],
        threshold: int,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        if len(set(keyids)) != len(keyids):
            raise ValueError(f"Nonunique keyids: {keyids}")
        if _require_int("threshold", threshold) < 1:
            raise ValueError(f"threshold must be >= 1, got {threshold}")
        self.keyids = keyids
        self.threshold = threshold
        self.unrecognized_fields = unrecognized_fields or {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return False

        return (
            self.keyids == other.keyids
            and self.threshold == other.threshold
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @classmethod
    def from_dict(cls, role_dict: Dict[str, Any]) -> "Role":
        keyids = role_dict.pop("keyids")
        threshold = role_dict.pop("threshold")
        return cls(keyids, threshold, role_dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyids": self.keyids,
            "threshold": self.threshold,
            **self.unrecognized_fields,
        }


class Root(Signed):
    """Payload of root metadata: the keys and thresholds of the four
    top-level roles, root included.

    Args:
        version: See ``Signed``.
        spec_version: See ``Signed``.
        expires: See ``Signed``.
        keys: Key id to ``Key`` for every key referenced in ``roles``.
        roles: Role name to ``Role``, exactly the top-level role names.
            Default is every top-level role with no keys and threshold 1.
        consistent_snapshot: Whether the repository serves version
            prefixed metadata and hash prefixed targets. Default is True.
        unrecognized_fields: Fields this library does not interpret.

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    type = _ROOT

    def __init__(
        self,
        version: Optional[int] = None,
        spec_version: Optional[str] = None,
        expires: Optional[datetime] = None,
        keys: Optional[Dict[str, Key]] = None,
        roles: Optional[Dict[str, Role]] = None,
        consistent_snapshot: Optional[bool] = True,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(version, spec_version, expires, unrecognized_fields)
        self.consistent_snapshot = consistent_snapshot
        self.keys = keys if keys is not None else {}

        if roles is None:
            roles = {name: Role([], 1) for name in TOP_LEVEL_ROLE_NAMES}
        elif set(roles) != TOP_LEVEL_ROLE_NAMES:
            raise ValueError(f"Expected top-level roles, got {sorted(roles)}")
        self.roles = roles

    def _fields(self) -> Tuple[Any, ...]:
        return (
            *super()._fields(),
            self.keys,
            self.roles,
            self.consistent_snapshot,
        )

    @classmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Root":
        common = cls._pop_common_fields(signed_dict)
        consistent_snapshot = signed_dict.pop("consistent_snapshot", None)
        keys = {
            keyid: Key.from_dict(keyid, key_dict)
            for keyid, key_dict in signed_dict.pop("keys").items()
        }
        roles = {
            name: Role.from_dict(role_dict)
            for name, role_dict in signed_dict.pop("roles").items()
        }

        return cls(*common, keys, roles, consistent_snapshot, signed_dict)

    def to_dict(self) -> Dict[str, Any]:
        root_dict = self._common_dict()
        if self.consistent_snapshot is not None:
            root_dict["consistent_snapshot"] = self.consistent_snapshot
        root_dict["keys"] = {
            keyid: key.to_dict() for keyid, key in self.keys.items()
        }
        root_dict["roles"] = {
            name: role.to_dict() for name, role in self.roles.items()
        }
        return root_dict

    def add_key(self, key: Key, role: str) -> None:
        """Authorize ``key`` for the top-level ``role``.

        Raises:
            ValueError: ``role`` is not a top-level role.
        """
        if role not in self.roles:
            raise ValueError(f"Role {role} doesn't exist")
        keyids = self.roles[role].keyids
        if key.keyid not in keyids:
            keyids.append(key.keyid)
        self.keys[key.keyid] = key


class BaseFile:
    """Length and hash bookkeeping shared by ``MetaFile`` and
    ``TargetFile``. ``data`` is either bytes or a binary file object.
    """

    @staticmethod
    def _length_of(data: Data) -> int:
        if isinstance(data, bytes):
            return len(data)
        data.seek(0, io.SEEK_END)
        return data.tell()

    @classmethod
    def _verify_length(cls, data: Data, expected: int) -> None:
        observed = cls._length_of(data)
        if observed != expected:
            raise LengthOrHashMismatchError(
                f"Observed length {observed} does not match "
                f"expected length {expected}"
            )

    @staticmethod
    def _verify_hashes(data: Data, expected: Dict[str, str]) -> None:
        for algorithm, expected_hash in expected.items():
            try:
                observed_hash = _hexdigest(data, algorithm)
            except ValueError as e:
                raise LengthOrHashMismatchError(str(e)) from e

            if observed_hash != expected_hash:
                raise LengthOrHashMismatchError(
                    f"Observed {algorithm} hash {observed_hash} does not "
                    f"match expected hash {expected_hash}"
                )

    @staticmethod
    def _check_length(length: int) -> None:
        if _require_int("length", length) < 0:
            raise ValueError(f"Length must be >= 0, got {length}")

    @staticmethod
    def _check_hashes(hashes: Dict[str, str]) -> None:
        if not isinstance(hashes, dict) or not hashes:
            raise ValueError("Hashes must be a non empty dictionary")
        if not all(
            isinstance(k, str) and isinstance(v, str)
            for k, v in hashes.items()
        ):
            raise TypeError("Hashes items must be strings")

    @classmethod
    def _measure(
        cls, data: Data, hash_algorithms: Optional[List[str]]
    ) -> Tuple[int, Dict[str, str]]:
        """Return length and hashes of ``data``.

        Raises:
            ValueError: An algorithm is not supported.
        """
        if hash_algorithms is None:
            hash_algorithms = [sslib_hash.DEFAULT_HASH_ALGORITHM]
        hashes = {algo: _hexdigest(data, algo) for algo in hash_algorithms}
        return cls._length_of(data), hashes


class MetaFile(BaseFile):
    """Version, and optionally length and hashes, of one metadata file as
    recorded by timestamp (for snapshot) or snapshot (for targets roles).

    Args:
        version: Version of the described file, at least 1.
        length: Length in bytes, if recorded.
        hashes: Algorithm name to hex digest, if recorded.
        unrecognized_fields: Fields this library does not interpret.

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    def __init__(
        self,
        version: int = 1,
        length: Optional[int] = None,
        hashes: Optional[Dict[str, str]] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        if _require_int("version", version) < 1:
            raise ValueError(f"Metafile version must be > 0, got {version}")
        if length is not None:
            self._check_length(length)
        if hashes is not None:
            self._check_hashes(hashes)

        self.version = version
        self.length = length
        self.hashes = hashes
        self.unrecognized_fields = unrecognized_fields or {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MetaFile):
            return False

        return (
            self.version == other.version
            and self.length == other.length
            and self.hashes == other.hashes
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @classmethod
    def from_dict(cls, meta_dict: Dict[str, Any]) -> "MetaFile":
        version = meta_dict.pop("version")
        length = meta_dict.pop("length", None)
        hashes = meta_dict.pop("hashes", None)
        return cls(version, length, hashes, meta_dict)

    @classmethod
    def from_data(
        cls,
        version: int,
        data: Data,
        hash_algorithms: Optional[List[str]] = None,
    ) -> "MetaFile":
        """Describe ``data`` as ``version`` with its length and hashes."""
        length, hashes = cls._measure(data, hash_algorithms)
        return cls(version, length, hashes)

    def to_dict(self) -> Dict[str, Any]:
        meta_dict: Dict[str, Any] = {
            "version": self.version,
            **self.unrecognized_fields,
        }
        if self.length is not None:
            meta_dict["length"] = self.length
        if self.hashes is not None:
            meta_dict["hashes"] = self.hashes
        return meta_dict

    def verify_length_and_hashes(self, data: Data) -> None:
        """Check ``data`` against whatever length and hashes are recorded.

        Raises:
            LengthOrHashMismatchError: ``data`` does not match, or a hash
                algorithm is not supported.
        """
        if self.length is not None:
            self._verify_length(data, self.length)
        if self.hashes is not None:
            self._verify_hashes(data, self.hashes)


class Timestamp(Signed):
    """Payload of timestamp metadata: it points at the current snapshot.

    The document stores this under ``meta["snapshot.json"]``.

    Args:
        version: See ``Signed``.
        spec_version: See ``Signed``.
        expires: See ``Signed``.
        snapshot_meta: ``MetaFile`` of the current snapshot. Default is
            version 1 with no length or hashes.
        unrecognized_fields: Fields this library does not interpret.

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    type = _TIMESTAMP

    def __init__(
        self,
        version: Optional[int] = None,
        spec_version: Optional[str] = None,
        expires: Optional[datetime] = None,
        snapshot_meta: Optional[MetaFile] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(version, spec_version, expires, unrecognized_fields)
        self.snapshot_meta = snapshot_meta or MetaFile(1)

    def _fields(self) -> Tuple[Any, ...]:
        return (*super()._fields(), self.snapshot_meta)

    @classmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Timestamp":
        common = cls._pop_common_fields(signed_dict)
        meta = signed_dict.pop("meta")
        snapshot_meta = MetaFile.from_dict(meta["snapshot.json"])
        return cls(*common, snapshot_meta, signed_dict)

    def to_dict(self) -> Dict[str, Any]:
        timestamp_dict = self._common_dict()
        timestamp_dict["meta"] = {
            "snapshot.json": self.snapshot_meta.to_dict()
        }
        return timestamp_dict


class Snapshot(Signed):
    """Payload of snapshot metadata: the versions of top-level targets and
    every delegated targets role at one instant.

    Args:
        version: See ``Signed``.
        spec_version: See ``Signed``.
        expires: See ``Signed``.
        meta: "<role>.json" to ``MetaFile``. Default lists only
            "targets.json" version 1.
        unrecognized_fields: Fields this library does not interpret.

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    type = _SNAPSHOT

    def __init__(
        self,
        version: Optional[int] = None,
        spec_version: Optional[str] = None,
        expires: Optional[datetime] = None,
        meta: Optional[Dict[str, MetaFile]] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(version, spec_version, expires, unrecognized_fields)
        self.meta = meta if meta is not None else {"targets.json": MetaFile(1)}

    def _fields(self) -> Tuple[Any, ...]:
        return (*super()._fields(), self.meta)

    @classmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Snapshot":
        common = cls._pop_common_fields(signed_dict)
        meta = {
            filename: MetaFile.from_dict(meta_dict)
            for filename, meta_dict in signed_dict.pop("meta").items()
        }
        return cls(*common, meta, signed_dict)

    def to_dict(self) -> Dict[str, Any]:
        snapshot_dict = self._common_dict()
        snapshot_dict["meta"] = {
            filename: metafile.to_dict()
            for filename, metafile in self.meta.items()
        }
        return snapshot_dict


class DelegatedRole(Role):
    """A targets role delegated to by another targets role.

    The delegation covers either the target paths matching one of
    ``paths`` (glob patterns, "*" does not cross "/"), or the target paths
    whose sha256 hex digest starts with one of ``path_hash_prefixes``.
    Exactly one of the two must be given.

    Args:
        name: Role name.
        keyids: See ``Role``.
        threshold: See ``Role``.
        terminating: Whether a search that reaches this role stops here
            instead of trying later delegations.
        paths: Target path patterns.
        path_hash_prefixes: Target path hash prefixes.
        unrecognized_fields: Fields this library does not interpret.

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    def __init__(
        self,
        name: str,
        keyids: List[str],
        threshold: int,
        terminating: bool,
        paths: Optional[List[str]] = None,
        path_hash_prefixes: Optional[List[str]] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(keyids, threshold, unrecognized_fields)
        if not isinstance(terminating, bool):
            raise TypeError("terminating must be a boolean")
        if (paths is None) == (path_hash_prefixes is None):
            raise ValueError(
                "Only one of (paths, path_hash_prefixes) must be set"
            )
        patterns = paths if paths is not None else path_hash_prefixes
        if any(not isinstance(p, str) for p in patterns or []):
            raise ValueError("Path patterns must be strings")

        self.name = name
        self.terminating = terminating
        self.paths = paths
        self.path_hash_prefixes = path_hash_prefixes

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DelegatedRole):
            return False

        return (
            super().__eq__(other)
            and self.name == other.name
            and self.terminating == other.terminating
            and self.paths == other.paths
            and self.path_hash_prefixes == other.path_hash_prefixes
        )

    @classmethod
    def from_dict(cls, role_dict: Dict[str, Any]) -> "DelegatedRole":
        name = role_dict.pop("name")
        keyids = role_dict.pop("keyids")
        threshold = role_dict.pop("threshold")
        terminating = role_dict.pop("terminating")
        paths = role_dict.pop("paths", None)
        prefixes = role_dict.pop("path_hash_prefixes", None)
        return cls(
            name, keyids, threshold, terminating, paths, prefixes, role_dict
        )

    def to_dict(self) -> Dict[str, Any]:
        role_dict = {
            "name": self.name,
            "terminating": self.terminating,
            **super().to_dict(),
        }
        if self.paths is not None:
            role_dict["paths"] = self.paths
        else:
            role_dict["path_hash_prefixes"] = self.path_hash_prefixes
        return role_dict

    @staticmethod
    def _is_target_in_pathpattern(targetpath: str, pathpattern: str) -> bool:
        # fnmatch lets "*" match "/": compare one path segment at a time
        target_parts = targetpath.split("/")
        pattern_parts = pathpattern.split("/")
        if len(target_parts) != len(pattern_parts):
            return False

        return all(
            fnmatch.fnmatchcase(part, pattern)
            for part, pattern in zip(target_parts, pattern_parts)
        )

    def is_delegated_path(self, target_filepath: str) -> bool:
        """Return ``True`` if this delegation covers ``target_filepath``.

        ``target_filepath`` is expected in canonical form ("a/b").
        """
        if self.path_hash_prefixes is not None:
            path_hash = _hexdigest(target_filepath.encode("utf-8"), "sha256")
            return any(
                path_hash.startswith(prefix)
                for prefix in self.path_hash_prefixes
            )

        return any(
            self._is_target_in_pathpattern(target_filepath, pattern)
            for pattern in self.paths or []
        )


class Delegations:
    """Keys and delegated roles of a targets role.

    Args:
        keys: Key id to ``Key`` for every key referenced in ``roles``.
        roles: Role name to ``DelegatedRole``. Insertion order is the order
            in which a target search tries the roles.
        unrecognized_fields: Fields this library does not interpret.

    Raises:
        ValueError: A role name is empty or a top-level role name.
    """

    def __init__(
        self,
        keys: Dict[str, Key],
        roles: Dict[str, DelegatedRole],
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        for name in roles:
            if not name or name in TOP_LEVEL_ROLE_NAMES:
                raise ValueError(f"Invalid delegated role name '{name}'")

        self.keys = keys
        self.roles = roles
        self.unrecognized_fields = unrecognized_fields or {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Delegations):
            return False

        return (
            self.keys == other.keys
            # dict equality ignores order, delegation order matters
            and list(self.roles.items()) == list(other.roles.items())
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @classmethod
    def from_dict(cls, delegations_dict: Dict[str, Any]) -> "Delegations":
        keys = {
            keyid: Key.from_dict(keyid, key_dict)
            for keyid, key_dict in delegations_dict.pop("keys").items()
        }
        roles: Dict[str, DelegatedRole] = {}
        for role_dict in delegations_dict.pop("roles"):
            role = DelegatedRole.from_dict(role_dict)
            if role.name in roles:
                raise ValueError(f"Duplicate role {role.name}")
            roles[role.name] = role

        return cls(keys, roles, delegations_dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keys": {keyid: key.to_dict() for keyid, key in self.keys.items()},
            "roles": [role.to_dict() for role in self.roles.values()],
            **self.unrecognized_fields,
        }

    def get_roles_for_target(
        self, target_filepath: str
    ) -> Iterator[Tuple[str, bool]]:
        """Yield (name, terminating) of each role covering
        ``target_filepath``, in search order.
        """
        for role in self.roles.values():
            if role.is_delegated_path(target_filepath):
                yield role.name, role.terminating


class TargetFile(BaseFile):
    """Trusted length and hashes of one target file.

    Args:
        length: Length in bytes.
        hashes: Algorithm name to hex digest, at least one.
        path: Target path, relative to the targets base URL.
        unrecognized_fields: Fields this library does not interpret,
            including the application defined "custom" field.

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    def __init__(
        self,
        length: int,
        hashes: Dict[str, str],
        path: str,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        self._check_length(length)
        self._check_hashes(hashes)

        self.length = length
        self.hashes = hashes
        self.path = path
        self.unrecognized_fields = unrecognized_fields or {}

    @property
    def custom(self) -> Any:
        return self.unrecognized_fields.get("custom")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TargetFile):
            return False

        return (
            self.length == other.length
            and self.hashes == other.hashes
            and self.path == other.path
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @classmethod
    def from_dict(cls, target_dict: Dict[str, Any], path: str) -> "TargetFile":
        length = target_dict.pop("length")
        hashes = target_dict.pop("hashes")
        return cls(length, hashes, path, target_dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "length": self.length,
            "hashes": self.hashes,
            **self.unrecognized_fields,
        }

    @classmethod
    def from_data(
        cls,
        target_file_path: str,
        data: Data,
        hash_algorithms: Optional[List[str]] = None,
    ) -> "TargetFile":
        """Describe ``data`` as the target ``target_file_path``.

        Raises:
            ValueError: An algorithm is not supported.
        """
        length, hashes = cls._measure(data, hash_algorithms)
        return cls(length, hashes, target_file_path)

    def verify_length_and_hashes(self, data: Data) -> None:
        """Check ``data`` against the trusted length, then every hash.

        Raises:
            LengthOrHashMismatchError: ``data`` does not match, or a hash
                algorithm is not supported.
        """
        self._verify_length(data, self.length)
        self._verify_hashes(data, self.hashes)

    def get_prefixed_paths(self) -> List[str]:
        """Return the download paths used by consistent snapshot
        repositories: the file name prefixed with each hash.
        """
        parent, sep, name = self.path.rpartition("/")
        return [
            f"{parent}{sep}{digest}.{name}" for digest in self.hashes.values()
        ]


class Targets(Signed):
    """Payload of targets metadata: trusted target files, and delegations
    of target paths to other targets roles.

    Args:
        version: See ``Signed``.
        spec_version: See ``Signed``.
        expires: See ``Signed``.
        targets: Target path to ``TargetFile``. Default is empty.
        delegations: ``Delegations`` or None if the role delegates nothing.
        unrecognized_fields: Fields this library does not interpret.

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    type = _TARGETS

    def __init__(
        self,
        version: Optional[int] = None,
        spec_version: Optional[str] = None,
        expires: Optional[datetime] = None,
        targets: Optional[Dict[str, TargetFile]] = None,
        delegations: Optional[Delegations] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(version, spec_version, expires, unrecognized_fields)
        self.targets = targets if targets is not None else {}
        self.delegations = delegations

    def _fields(self) -> Tuple[Any, ...]:
        return (*super()._fields(), self.targets, self.delegations)

    @classmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Targets":
        common = cls._pop_common_fields(signed_dict)
        targets = {
            path: TargetFile.from_dict(target_dict, path)
            for path, target_dict in signed_dict.pop(_TARGETS).items()
        }
        delegations = None
        delegations_dict = signed_dict.pop("delegations", None)
        if delegations_dict is not None:
            delegations = Delegations.from_dict(delegations_dict)

        return cls(*common, targets, delegations, signed_dict)

    def to_dict(self) -> Dict[str, Any]:
        targets_dict = self._common_dict()
        targets_dict[_TARGETS] = {
            path: target.to_dict() for path, target in self.targets.items()
        }
        if self.delegations is not None:
            targets_dict["delegations"] = self.delegations.to_dict()
        return targets_dict

    def add_key(self, key: Key, role: str) -> None:
        """Authorize ``key`` for the delegated ``role``.

        Raises:
            ValueError: ``role`` is not delegated by this role.
        """
        if self.delegations is None or role not in self.delegations.roles:
            raise ValueError(f"Delegated role {role} doesn't exist")
        keyids = self.delegations.roles[role].keyids
        if key.keyid not in keyids:
            keyids.append(key.keyid)
        self.delegations.keys[key.keyid] = key
