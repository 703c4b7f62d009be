"""Job record store backends."""

from async_bash.scheduler.store.base import JobStore, list_by_status, list_pending
from async_bash.scheduler.store.file_store import FileJobStore
from async_bash.scheduler.store.sqlite_store import SqliteJobStore

__all__ = [
    "FileJobStore",
    "JobStore",
    "SqliteJobStore",
    "list_by_status",
    "list_pending",
]
