# Copyright New York University and the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""
Define the exceptions raised by the metadata model and the client.
The names chosen for exception classes should end in 'Error' except where
there is a good reason not to, and provide that reason in those cases.

Everything a repository (or an attacker posing as one) can cause is a
``RepositoryError``. Everything the transport can cause is a
``DownloadError``.
"""


#### Repository errors ####


class RepositoryError(Exception):
    """An error with a repository's state, such as a missing file.

    It covers all exceptions that come from the repository side when
    looking from the perspective of users of metadata API or client.
    """


class UnsignedMetadataError(RepositoryError):
    """An error about metadata object with insufficient threshold of
    signatures.
    """


class BadVersionNumberError(RepositoryError):
    """An error for metadata that contains an invalid version number."""


class RollbackError(BadVersionNumberError):
    """Metadata version is lower than a previously trusted version."""


class EqualVersionNumberError(BadVersionNumberError):
    """An error for metadata containing a previously verified version number."""


class ExpiredMetadataError(RepositoryError):
    """Indicate that a TUF Metadata file has expired."""


class LengthOrHashMismatchError(RepositoryError):
    """An error while checking the length and hash values of an object."""


class DelegationLimitError(RepositoryError):
    """Target search gave up: too many delegated roles or too deep."""


#### Target lookup ####


class TargetNotFoundError(Exception):
    """Trusted metadata does not list the requested target.

    This is not an integrity failure: the repository simply does not
    provide the target.
    """


#### Download Errors ####


class DownloadError(Exception):
    """An error occurred while attempting to download a file."""


class DownloadLengthMismatchError(DownloadError):
    """Indicate that a mismatch of lengths was seen while downloading a file."""


class SlowRetrievalError(DownloadError):
    """Indicate that downloading a file took an unreasonably long time."""


class DownloadHTTPError(DownloadError):
    """
    Returned by FetcherInterface implementations for HTTP errors.

    Args:
        message: The HTTP error messsage
        status_code: The HTTP status code
    """

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code
