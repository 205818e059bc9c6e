"""Exception types raised while building, signing and sending requests."""

from typing import Optional


class SigningError(Exception):
    """Base class for all fedsig errors."""


class ConstructionError(SigningError):
    """The request could not be assembled into a signable form.

    Raised before any byte leaves the process, e.g. when the header set is
    empty or lacks ``host`` / ``x-amz-date``.
    """


class EncodingError(SigningError):
    """The request payload could not be serialized for hashing."""


class TransportError(SigningError):
    """The signed request could not be delivered."""


class RemoteRejection(SigningError):
    """The remote service answered with a non-success status.

    AWS does not say why a signature was rejected (clock skew, bad
    canonicalization and wrong credentials all look alike), so only the
    status code and response body are kept.
    """

    def __init__(self, status_code: int, body: Optional[str] = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Request rejected with HTTP {status_code}")
