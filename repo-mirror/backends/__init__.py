"""Backend implementations for cloning, searching and reading the mirror."""

from .content_fetcher import AbstractContentFetcher, LocalContentFetcher
from .errors import (
    AcquisitionError,
    IoError,
    RepositoryError,
    RepositoryMirrorError,
    SearchError,
)
from .git import GitClient
from .models import MatchRecord, SearchQuery
from .search import AbstractSearchClient, RipgrepSearchClient

__all__ = [
    "AbstractContentFetcher",
    "LocalContentFetcher",
    "AbstractSearchClient",
    "RipgrepSearchClient",
    "GitClient",
    "MatchRecord",
    "SearchQuery",
    "RepositoryMirrorError",
    "AcquisitionError",
    "SearchError",
    "IoError",
    "RepositoryError",
]
