"""Error types raised by the repository mirror backends."""

from typing import Optional


class RepositoryMirrorError(Exception):
    """Base class for backend failures.

    Attributes:
        cause: The underlying exception, if the failure was triggered by one
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class AcquisitionError(RepositoryMirrorError):
    """A git clone or pull failed to start or exited non-zero."""


class SearchError(RepositoryMirrorError):
    """The search process failed or produced output that could not be decoded."""


class IoError(RepositoryMirrorError):
    """A local file read or glob enumeration failed."""


class RepositoryError(Exception):
    """Single failure shape reported by ``RepositoryService``.

    Wraps whichever backend error caused the failure so that callers only
    need to handle one exception type while keeping the original around.
    """

    def __init__(self, cause: RepositoryMirrorError) -> None:
        super().__init__(f"{type(cause).__name__}: {cause}")
        self.cause = cause
