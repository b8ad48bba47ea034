"""
Error types for the Google Trends interest-over-time fetcher.
"""

from typing import List, Optional


class TrendsError(Exception):
    """Base class for all fetcher errors."""


class SessionInitError(TrendsError):
    """Browser session could not be started or warmed up."""


class QueryError(TrendsError):
    """A single keyword query failed."""

    def __init__(self, message: str, keyword: Optional[str] = None):
        super().__init__(message)
        self.keyword = keyword


class UiElementUnavailable(QueryError):
    """The export control never became visible on the explore page."""


class DownloadTimeout(QueryError):
    """The exported file did not appear in the download directory in time."""


class QueryCancelled(QueryError):
    """The caller aborted the query."""


class ParseError(QueryError):
    """
    The exported file does not have the expected shape.

    Attributes:
        row_number: 1-based line of the offending row, if known
        row: Raw fields of the offending row, if known
    """

    def __init__(
        self,
        message: str,
        row_number: Optional[int] = None,
        row: Optional[List[str]] = None,
        keyword: Optional[str] = None
    ):
        if row_number is not None:
            message = f"{message} (row {row_number}: {row!r})"
        super().__init__(message, keyword=keyword)
        self.row_number = row_number
        self.row = row
