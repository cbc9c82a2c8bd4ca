"""Error taxonomy for the free-tier catalog.

Only genuinely fatal conditions are raised. Heuristic extraction misses
(no tag, no limitation, malformed service line, empty category) are
absorbed as missing data and never surface here.
"""


class CatalogError(Exception):
    """Base class for catalog failures surfaced to callers."""


class FetchError(CatalogError):
    """Raised when the source document cannot be retrieved."""

    def __init__(self, message: str, url: str = None, status_code: int = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ParseError(CatalogError):
    """Raised when there is no content to parse."""


class IndexNotReadyError(CatalogError):
    """Raised when a query runs before any snapshot has been indexed."""
