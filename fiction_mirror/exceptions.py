"""Exception hierarchy for the mirror run."""
from typing import Optional


class FictionMirrorError(Exception):
    """Base exception for all mirror errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class NetworkError(FictionMirrorError):
    """Request failed after retries, or with a non-retryable HTTP status."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Request failed: {reason}", {"url": url})
        self.url = url
        self.reason = reason


class LayoutChangedError(FictionMirrorError):
    """
    Table of contents page no longer has the expected structure.

    Fatal to the run: a half-parsed chapter list would look like
    most chapters were removed.
    """

    def __init__(self, url: str, marker: str):
        super().__init__(f"TOC layout changed, missing {marker}", {"url": url})
        self.url = url
        self.marker = marker


class ExtractError(FictionMirrorError):
    """Chapter page no longer has the expected structure."""

    def __init__(self, url: str, marker: str):
        super().__init__(f"Chapter layout changed, missing {marker}", {"url": url})
        self.url = url
        self.marker = marker


class PersistenceError(FictionMirrorError):
    """Archive could not be read or written."""

    def __init__(self, path, reason: str):
        super().__init__(f"Archive I/O failed: {reason}", {"path": str(path)})
        self.path = path
        self.reason = reason


class ConfigError(FictionMirrorError):
    """Invalid startup parameters."""
