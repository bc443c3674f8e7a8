"""Error taxonomy for project reconciliation.

Every remote failure propagates to the caller unchanged. The only
conversions happen in the reconciler: a 404 on read means the project is
absent, and a 404 on delete means it is already gone.
"""

from __future__ import annotations


class ReconcilerError(Exception):
    """Base exception for the project reconciler."""

    pass


class TransportError(ReconcilerError):
    """The request never produced an HTTP response (connection, timeout, bad URL)."""

    pass


class UnexpectedStatusError(ReconcilerError):
    """The remote system answered with a status other than the expected one."""

    def __init__(self, method: str, path: str, status: int, expected: int, detail: str = "") -> None:
        self.method = method
        self.path = path
        self.status = status
        self.expected = expected
        self.detail = detail
        message = f"{method} {path} returned {status}, expected {expected}"
        if detail:
            message += f": {detail}"
        super().__init__(message)

    @property
    def not_found(self) -> bool:
        return self.status == 404


class DecodeError(ReconcilerError):
    """A response body could not be decoded into the expected shape."""

    pass


class IdentityExtractionError(ReconcilerError):
    """The project was created but the response carried no identifier.

    The remote project exists while local state knows nothing about it;
    it has to be imported or removed by hand.
    """

    pass


class NotEmptyError(ReconcilerError):
    """Delete refused because the project still holds repositories."""

    def __init__(self, project: str, repository_count: int) -> None:
        self.project = project
        self.repository_count = repository_count
        super().__init__(
            f"project {project} is not empty ({repository_count} repositories), "
            "set forceDestroy to true to delete all repositories with the project"
        )
