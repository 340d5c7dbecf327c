"""Working-copy editing for record collections."""

from .bulk import (
    BulkAction,
    BulkActionKind,
    BulkActionResult,
    BulkItemFailed,
    BulkMutationCoordinator,
    BulkState,
)
from .errors import (
    EmptySelection,
    FileTooLarge,
    IndexOutOfRange,
    InvalidBulkAction,
    InvalidFileType,
    SelectionError,
    UnknownUpload,
    UploadFailed,
)
from .store import IndexedCollectionStore, SlotState, SlugPolicy, StoreSnapshot
from .uploads import ConcurrentUploadManager, LocalFile, UploadKind, UploadOutcome

__all__ = [
    "BulkAction",
    "BulkActionKind",
    "BulkActionResult",
    "BulkItemFailed",
    "BulkMutationCoordinator",
    "BulkState",
    "ConcurrentUploadManager",
    "EmptySelection",
    "FileTooLarge",
    "IndexOutOfRange",
    "IndexedCollectionStore",
    "InvalidBulkAction",
    "InvalidFileType",
    "LocalFile",
    "SelectionError",
    "SlotState",
    "SlugPolicy",
    "StoreSnapshot",
    "UnknownUpload",
    "UploadFailed",
    "UploadKind",
    "UploadOutcome",
]
