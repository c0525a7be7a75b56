# Copyright 2021, New York University and the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Test 'Fetch target' from 'Detailed client workflow' as well as
target files storing/loading from cache.
"""

import hashlib
import logging
import os
import sys
import tempfile
import unittest
from dataclasses import dataclass

from tests import utils
from tests.repository_simulator import (
    METADATA_URL,
    TARGETS_URL,
    RepositorySimulator,
)
from tufcore.api.exceptions import (
    DownloadLengthMismatchError,
    LengthOrHashMismatchError,
    RepositoryError,
    TargetNotFoundError,
)
from tufcore.api.metadata import DelegatedRole, Delegations
from tufcore.client import Updater, UpdaterConfig


@dataclass
class TestTarget:
    path: str
    content: bytes
    encoded_path: str


class TestFetchTarget(unittest.TestCase):
    """Test Updater downloading and caching target files."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.metadata_dir = os.path.join(self.temp_dir.name, "metadata")
        self.targets_dir = os.path.join(self.temp_dir.name, "targets")
        os.mkdir(self.metadata_dir)
        os.mkdir(self.targets_dir)

        # Setup the repository, bootstrap client root.json
        self.sim = RepositorySimulator()
        with open(os.path.join(self.metadata_dir, "root.json"), "bw") as f:
            f.write(self.sim.signed_roots[0])

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _init_updater(self) -> Updater:
        """Creates a new updater instance."""
        return Updater(
            self.metadata_dir,
            METADATA_URL,
            self.targets_dir,
            TARGETS_URL,
            self.sim,
        )

    def _publish_target(self, path: str, content: bytes) -> None:
        self.sim.targets.version += 1
        self.sim.add_target("targets", content, path)
        self.sim.update_snapshot()

    targets: utils.DataSet = {
        "standard case": TestTarget(
            path="targetpath",
            content=b"target content",
            encoded_path="targetpath",
        ),
        "non-asci case": TestTarget(
            path="åäö",
            content=b"more content",
            encoded_path="%C3%A5%C3%A4%C3%B6",
        ),
        "subdirectory case": TestTarget(
            path="a/b/c/targetpath",
            content=b"dir target content",
            encoded_path="a%2Fb%2Fc%2Ftargetpath",
        ),
    }

    @utils.run_sub_tests_with_dataset(targets)
    def test_fetch_target(self, target: TestTarget) -> None:
        path = os.path.join(self.targets_dir, target.encoded_path)

        updater = self._init_updater()
        # target does not exist yet
        self.assertIsNone(updater.get_targetinfo(target.path))

        self._publish_target(target.path, target.content)

        updater = self._init_updater()
        # target now exists, is not in cache yet
        info = updater.get_targetinfo(target.path)
        assert info is not None
        # Test without and with explicit local filepath
        self.assertIsNone(updater.find_cached_target(info))
        self.assertIsNone(updater.find_cached_target(info, path))

        # download target, assert it is in cache and content is correct
        self.assertEqual(path, updater.download_target(info))
        self.assertEqual(path, updater.find_cached_target(info))
        self.assertEqual(path, updater.find_cached_target(info, path))

        with open(path, "rb") as f:
            self.assertEqual(f.read(), target.content)

        # download using explicit filepath as well
        os.remove(path)
        self.assertEqual(path, updater.download_target(info, path))
        self.assertEqual(path, updater.find_cached_target(info))
        self.assertEqual(path, updater.find_cached_target(info, path))

    def test_fetch_verified(self) -> None:
        content = b'{"name": "pkg", "version": "1.0.0"}'.ljust(92)
        self._publish_target("pkg.json", content)

        updater = self._init_updater()
        data = updater.fetch_verified("pkg.json")
        self.assertEqual(data, content)

        info = updater.get_targetinfo("pkg.json")
        assert info is not None
        self.assertEqual(info.length, 92)
        self.assertEqual(
            info.hashes["sha256"], hashlib.sha256(content).hexdigest()
        )

        # Nothing is written to the targets directory
        self.assertListEqual(os.listdir(self.targets_dir), [])

    def test_fetch_verified_after_root_rotation(self) -> None:
        self._publish_target("pkg.json", b"version 1 content")
        updater = self._init_updater()
        self.assertEqual(
            updater.fetch_verified("pkg.json"), b"version 1 content"
        )

        # New root with rotated targets keys and new target content
        self.sim.rotate_keys("targets")
        self.sim.root.version += 1
        self.sim.publish_root()
        self._publish_target("pkg.json", b"version 2 content!")

        updater.refresh()
        self.assertEqual(updater.trust_state.root_version, 2)
        info = updater.get_targetinfo("pkg.json")
        assert info is not None
        self.assertEqual(
            info.hashes["sha256"],
            hashlib.sha256(b"version 2 content!").hexdigest(),
        )
        self.assertEqual(
            updater.fetch_verified("pkg.json"), b"version 2 content!"
        )

    def test_fetch_verified_tampered_content(self) -> None:
        self._publish_target("pkg.json", b"content")
        updater = self._init_updater()

        # Same length, different content
        self.sim.target_files["pkg.json"].data = b"conten@"
        with self.assertRaises(LengthOrHashMismatchError):
            updater.fetch_verified("pkg.json")

        # Shorter content
        self.sim.target_files["pkg.json"].data = b"cont"
        with self.assertRaises(LengthOrHashMismatchError):
            updater.fetch_verified("pkg.json")

        # Longer content is not read past the trusted length
        self.sim.target_files["pkg.json"].data = b"content and more"
        with self.assertRaises(DownloadLengthMismatchError):
            updater.fetch_verified("pkg.json")

    def test_fetch_verified_unknown_target(self) -> None:
        updater = self._init_updater()
        with self.assertRaises(TargetNotFoundError):
            updater.fetch_verified("missing.json")
        self.assertListEqual(self.sim.fetch_tracker.targets, [])

    def test_fetch_verified_static_cache(self) -> None:
        self._publish_target("pkg.json", b"content")
        updater = self._init_updater()

        self.assertEqual(updater.fetch_verified("pkg.json"), b"content")
        self.assertEqual(len(self.sim.fetch_tracker.targets), 1)

        with self.assertLogs(
            "tufcore.client._internal.metadata_cache", logging.DEBUG
        ) as cm:
            self.assertEqual(updater.fetch_verified("pkg.json"), b"content")
        # second call did not download
        self.assertEqual(len(self.sim.fetch_tracker.targets), 1)
        self.assertTrue(any("from static cache" in o for o in cm.output))

        # static cache is not shared between updaters
        self._init_updater().fetch_verified("pkg.json")
        self.assertEqual(len(self.sim.fetch_tracker.targets), 2)

    def test_fetch_verified_plain_url_is_not_memoized(self) -> None:
        # without a hash prefix the URL content may change at any time
        self.sim.prefix_targets_with_hash = False
        self._publish_target("pkg.json", b"content")
        updater = Updater(
            self.metadata_dir,
            METADATA_URL,
            target_base_url=TARGETS_URL,
            fetcher=self.sim,
            config=UpdaterConfig(prefix_targets_with_hash=False),
        )

        updater.fetch_verified("pkg.json")
        updater.fetch_verified("pkg.json")
        self.assertListEqual(
            self.sim.fetch_tracker.targets,
            [("pkg.json", None), ("pkg.json", None)],
        )

    def test_fetch_verified_memo_is_bounded(self) -> None:
        for name in ["a.json", "b.json"]:
            self._publish_target(name, name.encode())
        updater = Updater(
            self.metadata_dir,
            METADATA_URL,
            target_base_url=TARGETS_URL,
            fetcher=self.sim,
            config=UpdaterConfig(static_cache_entries=1),
        )

        updater.fetch_verified("a.json")
        updater.fetch_verified("b.json")
        # "b.json" pushed "a.json" out of the memo
        updater.fetch_verified("b.json")
        updater.fetch_verified("a.json")
        fetched = [path for path, _ in self.sim.fetch_tracker.targets]
        self.assertListEqual(fetched, ["a.json", "b.json", "a.json"])

    def test_get_download_limit(self) -> None:
        self._publish_target("pkg.json", b"x" * 92)
        updater = self._init_updater()

        with self.assertLogs("tufcore.client.updater", logging.DEBUG) as cm:
            self.assertEqual(updater.get_download_limit("pkg.json"), 92)
        self.assertIn(
            "DEBUG:tufcore.client.updater:"
            "Target 'pkg.json' limited to 92 bytes.",
            cm.output,
        )

        self.assertEqual(updater.get_download_limit("unknown.json"), 10000)

        config = UpdaterConfig(unknown_target_max_length=50)
        updater = Updater(
            self.metadata_dir, METADATA_URL, fetcher=self.sim, config=config
        )
        self.assertEqual(updater.get_download_limit("unknown.json"), 50)

    def test_invalid_target_download(self) -> None:
        target = TestTarget("targetpath", b"content", "targetpath")
        self._publish_target(target.path, target.content)

        updater = self._init_updater()
        info = updater.get_targetinfo(target.path)
        assert info is not None

        # Corrupt the file content to not match the hash
        self.sim.target_files[target.path].data = b"conten@"
        with self.assertRaises(RepositoryError):
            updater.download_target(info)

        # Corrupt the file content to not match the length
        self.sim.target_files[target.path].data = b"cont"
        with self.assertRaises(RepositoryError):
            updater.download_target(info)

        # Verify the file is not persisted in cache
        self.assertIsNone(updater.find_cached_target(info))

    def test_invalid_target_cache(self) -> None:
        target = TestTarget("targetpath", b"content", "targetpath")
        self._publish_target(target.path, target.content)

        # Download the target
        updater = self._init_updater()
        info = updater.get_targetinfo(target.path)
        assert info is not None
        path = updater.download_target(info)
        self.assertEqual(path, updater.find_cached_target(info))

        # Add newer content to the same targetpath
        target.content = b"contentv2"
        self._publish_target(target.path, target.content)

        # Newer content is detected, old cached version is not used
        updater = self._init_updater()
        info = updater.get_targetinfo(target.path)
        assert info is not None
        self.assertIsNone(updater.find_cached_target(info))

        # Download target, assert it is in cache and content is the newer
        path = updater.download_target(info)
        self.assertEqual(path, updater.find_cached_target(info))
        with open(path, "rb") as f:
            self.assertEqual(f.read(), target.content)

    def test_meta_missing_delegated_role(self) -> None:
        """Test a delegation where the role is not part of the snapshot"""

        # Add new delegation, update snapshot. Do not add the actual role
        role = DelegatedRole("role1", [], 1, True, ["*"])
        self.sim.targets.delegations = Delegations({}, roles={role.name: role})
        self.sim.update_snapshot()

        # assert that RepositoryError is raised when role1 is needed
        updater = self._init_updater()
        with self.assertRaises(RepositoryError):
            updater.get_targetinfo("")


if __name__ == "__main__":
    utils.configure_test_logging(sys.argv)
    unittest.main()
