# Copyright 2021, New York University and the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""HTTP(S) downloads for the ``Updater``, built on requests.

Each fetch is a single streamed GET. Retries, proxies and TLS settings are
whatever the requests/urllib3 defaults of the process are.
"""

import logging
from typing import Dict, Iterator, Optional, Tuple
from urllib import parse

import requests

import tufcore
from tufcore.api import exceptions
from tufcore.client.fetcher import FetcherInterface

logger = logging.getLogger(__name__)

_Origin = Tuple[str, str]


def _origin(url: str) -> _Origin:
    """Return (scheme, hostname) of ``url``.

    Raises:
        exceptions.DownloadError: ``url`` has no scheme.
    """
    parsed_url = parse.urlparse(url)
    if not parsed_url.scheme:
        raise exceptions.DownloadError(f"Failed to parse URL {url}")
    return parsed_url.scheme, parsed_url.hostname or ""


class RequestsFetcher(FetcherInterface):
    """``FetcherInterface`` over HTTP(S) using the requests library.

    Attributes:
        socket_timeout: Seconds to wait for the connection and, after that,
            for each gap between received bytes.
        chunk_size: Bytes per chunk yielded while downloading.
        app_user_agent: Prepended to the User-Agent header, if set.
    """

    def __init__(
        self,
        socket_timeout: int = 30,
        chunk_size: int = 400000,
        app_user_agent: Optional[str] = None,
    ) -> None:
        # One session per origin: connections are pooled per host and no
        # cookies travel between hosts.
        self._sessions: Dict[_Origin, requests.Session] = {}
        self.socket_timeout = socket_timeout
        self.chunk_size = chunk_size
        self.app_user_agent = app_user_agent

    def _user_agent(self, session: requests.Session) -> str:
        agent = f"tufcore/{tufcore.__version__} {session.headers['User-Agent']}"
        if self.app_user_agent is None:
            return agent
        return f"{self.app_user_agent} {agent}"

    def _get_session(self, url: str) -> requests.Session:
        """Return the session for the origin of ``url``, creating it on
        first use.

        Raises:
            exceptions.DownloadError: ``url`` cannot be parsed.
        """
        origin = _origin(url)
        session = self._sessions.get(origin)
        if session is not None:
            logger.debug("Reusing session %s", origin)
            return session

        session = requests.Session()
        session.headers["User-Agent"] = self._user_agent(session)
        self._sessions[origin] = session
        logger.debug("Made new session %s", origin)
        return session

    def _fetch(self, url: str) -> Iterator[bytes]:
        """Open ``url`` and return an iterator over its body.

        The status is checked before returning: an error response is
        reported here, not while iterating.

        Raises:
            exceptions.SlowRetrievalError: No connection within
                ``socket_timeout``.
            exceptions.DownloadHTTPError: Server answered with an error
                status.
        """
        try:
            response = self._get_session(url).get(
                url, stream=True, timeout=self.socket_timeout
            )
        except requests.exceptions.Timeout as e:
            raise exceptions.SlowRetrievalError from e

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            response.close()
            raise exceptions.DownloadHTTPError(
                str(e), response.status_code
            ) from e

        return self._body(response)

    def _body(self, response: requests.Response) -> Iterator[bytes]:
        try:
            yield from response.iter_content(self.chunk_size)
        except (
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
        ) as e:
            raise exceptions.SlowRetrievalError from e
        finally:
            response.close()
