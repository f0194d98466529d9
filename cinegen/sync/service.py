from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from cinegen.config.credentials import CloudProvider, CredentialStore, OAuthSession, SyncConfig
from cinegen.errors import ConfigurationError, SyncError, TransportError
from cinegen.utils.logging_setup import setup_logger
from cinegen.utils.retry_transport import RetryTransport

from .backends import BACKENDS, CloudBackend
from .models import SyncReport
from .reconcile import reconcile
from .store import LocalProjectStore

logger = setup_logger(__name__)

SYNC_CONFIG_KEY = "cloudSyncConfig"


def _now_ms() -> int:
    return int(time.time() * 1000)


class CloudSyncService:
    """
    Mirrors the local project store to the active cloud provider.

    Sessions are held by the credential store and never persisted; the sync
    config is persisted to the store's key-value table after every change.
    """

    def __init__(
        self,
        store: LocalProjectStore,
        credentials: CredentialStore,
        transport: Optional[RetryTransport] = None,
        backend_factory: Optional[Callable[[CloudProvider], CloudBackend]] = None,
    ):
        self.store = store
        self.credentials = credentials
        self.transport = transport or RetryTransport()
        self._backend_factory = backend_factory or (lambda p: BACKENDS[p](self.credentials, self.transport))
        self._backends: Dict[CloudProvider, CloudBackend] = {}
        self._sync_lock = threading.Lock()
        self.credentials.sync_config = self.load_config()

    @property
    def config(self) -> SyncConfig:
        return self.credentials.sync_config

    def load_config(self) -> SyncConfig:
        return SyncConfig.from_dict(self.store.get_meta(SYNC_CONFIG_KEY))

    def save_config(self) -> None:
        self.store.set_meta(SYNC_CONFIG_KEY, self.config.to_dict())
        if self.credentials.bus is not None:
            self.credentials.bus.publish()

    def backend(self, provider: CloudProvider) -> CloudBackend:
        if provider not in self._backends:
            self._backends[provider] = self._backend_factory(provider)
        return self._backends[provider]

    def login(
        self,
        provider: Any,
        access_token: str,
        refresh_token: str = "",
        expires_in: Optional[float] = None,
    ) -> None:
        cloud = CloudProvider.parse(provider)
        if cloud is None:
            raise ConfigurationError("A cloud provider is required to sign in")
        if not access_token:
            raise ConfigurationError(f"{cloud.value} sign-in returned no access token")
        for other in CloudProvider:
            if other is not cloud:
                self.credentials.clear_session(other)
        self.credentials.set_session(cloud, OAuthSession.from_token(access_token, refresh_token, expires_in))
        self.config.provider = cloud
        self.save_config()
        logger.info(f"Signed in to {cloud.value}")

    def logout(self) -> None:
        provider = self.config.provider
        if provider is not None:
            session = self.credentials.clear_session(provider)
            if session is not None:
                try:
                    self.backend(provider).revoke(session.access_token)
                except TransportError as exc:
                    logger.warning(f"Token revoke for {provider.value} failed: {exc}")
        self.config.provider = None
        self.save_config()
        logger.info("Signed out")

    def sync(self) -> SyncReport:
        provider = self.config.provider
        if provider is None:
            raise ConfigurationError("No cloud sync provider configured")
        if not self._sync_lock.acquire(blocking=False):
            raise SyncError("sync already in progress")
        try:
            backend = self.backend(provider)
            # Fail the pass up front rather than after the remote listing degrades to empty.
            self.credentials.require_session(provider)
            logger.info(f"Starting sync with {provider.value}")
            report = reconcile(
                self.store.list_projects(),
                remote_fetch=backend.list_projects,
                upload_fn=backend.upload,
                download_fn=self.store.save_project,
            )
        finally:
            self._sync_lock.release()

        self.config.last_sync_time = _now_ms()
        self.save_config()
        logger.info(
            f"Sync with {provider.value} finished: {len(report.uploaded)} uploaded, {len(report.downloaded)} downloaded"
        )
        return report

    def delete_remote(self, project_id: str) -> bool:
        provider = self.config.provider
        if provider is None:
            raise ConfigurationError("No cloud sync provider configured")
        return self.backend(provider).delete(project_id)

    def toggle_auto_sync(self, enabled: bool) -> None:
        self.config.auto_sync = bool(enabled)
        self.save_config()

    def get_sync_status(self) -> Dict[str, Any]:
        config = self.config
        last = config.last_sync_time
        return {
            "provider": config.provider.value if config.provider else None,
            "is_authenticated": self.credentials.has_session(),
            "auto_sync": config.auto_sync,
            "last_sync_date": datetime.fromtimestamp(last / 1000).strftime("%Y-%m-%d %H:%M:%S") if last else "never",
            "last_sync_time": last,
        }

    def init_cloud_sync(self) -> bool:
        """Run one sync at startup when auto sync is on. Returns whether a sync succeeded."""
        if not (self.config.auto_sync and self.config.provider):
            return False
        try:
            self.sync()
        except Exception as exc:
            logger.error(f"Auto sync failed: {exc}")
            return False
        return True
