"""Directory watching for change notifications."""

from hotswap.watch.service import (
    DirectoryWatchService,
    FileChange,
    WatchdogWatchService,
    WatchSubscriptionError,
)

__all__ = [
    "DirectoryWatchService",
    "FileChange",
    "WatchdogWatchService",
    "WatchSubscriptionError",
]
