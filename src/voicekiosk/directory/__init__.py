"""
Session directory: HTTP client and the pending/persisted reconciliation.
"""

from voicekiosk.directory.bridge import SessionDirectoryBridge
from voicekiosk.directory.client import SessionDirectoryClient
from voicekiosk.directory.models import DirectoryListing, SessionInfo, SessionOption

__all__ = [
    "SessionDirectoryBridge",
    "SessionDirectoryClient",
    "DirectoryListing",
    "SessionInfo",
    "SessionOption",
]
