"""
Cloud backup of the local project store.

Last-writer-wins on ``lastModified``; Google Drive (appDataFolder) and
OneDrive (Microsoft Graph) are supported, one active at a time.
"""

from .reconcile import reconcile
from .service import CloudSyncService

__all__ = ["CloudSyncService", "reconcile"]
