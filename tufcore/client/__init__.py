# Copyright New York University and the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Client public API."""

from tufcore.api.metadata import TargetFile
from tufcore.client._internal.file_fetcher import FileFetcher
from tufcore.client._internal.requests_fetcher import RequestsFetcher
from tufcore.client.config import UpdaterConfig
from tufcore.client.fetcher import FetcherInterface
from tufcore.client.updater import TrustState, Updater

__all__ = [
    FetcherInterface.__name__,
    FileFetcher.__name__,
    RequestsFetcher.__name__,
    TargetFile.__name__,
    TrustState.__name__,
    Updater.__name__,
    UpdaterConfig.__name__,
]
