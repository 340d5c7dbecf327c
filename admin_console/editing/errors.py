"""Exceptions raised by the collection editing components."""

from __future__ import annotations


class IndexOutOfRange(IndexError):
    """Raised when a store operation targets a position that does not exist."""

    def __init__(self, position: int, length: int, *, allow_end: bool = False) -> None:
        upper = length if allow_end else length - 1
        if upper < 0:
            message = f"Position {position} is out of range for an empty collection"
        else:
            message = f"Position {position} is out of range (valid: 0..{upper})"
        super().__init__(message)
        self.position = position
        self.length = length


class InvalidFileType(ValueError):
    """Raised when a file does not match the requested upload kind."""

    def __init__(self, message: str, *, content_type: str = "", kind: str = "") -> None:
        super().__init__(message)
        self.content_type = content_type
        self.kind = kind


class FileTooLarge(InvalidFileType):
    """Raised when a file exceeds the configured upload limit."""


class UploadFailed(RuntimeError):
    """Raised by upload transports when a transfer cannot be completed."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class UnknownUpload(LookupError):
    """Raised when an upload token is unknown or its history was pruned."""

    def __init__(self, token: str) -> None:
        super().__init__(f"No upload is tracked for token {token!r}")
        self.token = token


class InvalidBulkAction(ValueError):
    """Raised for a malformed bulk action before any request is issued."""


class EmptySelection(ValueError):
    """Raised when a bulk action is requested without any identifiers."""


class SelectionError(ValueError):
    """Raised when a record that cannot be selected is added to a selection."""


def describe_error(error: BaseException) -> str:
    """Return a short human readable reason for ``error``."""

    message = str(error).strip()
    if not message:
        return error.__class__.__name__
    return message


__all__ = [
    "describe_error",
    "EmptySelection",
    "FileTooLarge",
    "IndexOutOfRange",
    "InvalidBulkAction",
    "InvalidFileType",
    "SelectionError",
    "UnknownUpload",
    "UploadFailed",
]
