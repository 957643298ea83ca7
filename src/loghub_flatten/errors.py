"""Error definitions for loghub_flatten."""

from typing import Any, Dict


class LogFlattenError(Exception):
    """Base exception for all loghub_flatten errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def describe(self) -> str:
        """Return the message followed by its context as ``key=value`` pairs."""
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class ArchiveError(LogFlattenError):
    """Archive processing failed."""
    pass


class ArchiveOpenError(ArchiveError):
    """Archive file could not be opened."""
    pass


class ArchiveReadError(ArchiveError):
    """I/O failure while reading archive content."""
    pass


class CorruptedArchiveError(ArchiveError):
    """Archive is corrupted."""
    pass


class UnsupportedArchiveError(ArchiveError):
    """Archive format is not supported."""
    pass


class OutputWriteError(LogFlattenError):
    """Output file could not be created or written."""
    pass
