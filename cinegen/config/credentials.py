from __future__ import annotations

import time
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional

from cinegen.errors import AuthenticationError, ConfigurationError
from cinegen.events import ConfigEventBus
from cinegen.video_gen.merge import DEFAULT_MERGE_URL, MergeSettings
from cinegen.video_gen.poller import ProviderSettings
from cinegen.video_gen.providers import PROVIDERS, get_descriptor


class CloudProvider(str, Enum):
    GOOGLE = "google"
    ONEDRIVE = "onedrive"

    @classmethod
    def parse(cls, value: Any) -> Optional["CloudProvider"]:
        if value in (None, "", "none"):
            return None
        try:
            return cls(value)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown cloud provider: {value!r}") from exc


@dataclass
class SyncConfig:
    provider: Optional[CloudProvider] = None
    auto_sync: bool = False
    last_sync_time: int = 0  # epoch ms, 0 = never

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value if self.provider else None,
            "autoSync": self.auto_sync,
            "lastSyncTime": self.last_sync_time,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SyncConfig":
        data = data or {}
        try:
            provider = CloudProvider.parse(data.get("provider"))
        except ConfigurationError:
            provider = None
        return cls(
            provider=provider,
            auto_sync=bool(data.get("autoSync", False)),
            last_sync_time=int(data.get("lastSyncTime") or 0),
        )


@dataclass
class OAuthSession:
    access_token: str
    refresh_token: str = ""
    expires_at: float = 0.0  # epoch seconds

    @classmethod
    def from_token(cls, access_token: str, refresh_token: str = "", expires_in: Optional[float] = None) -> "OAuthSession":
        return cls(
            access_token=access_token,
            refresh_token=refresh_token or "",
            expires_at=time.time() + (3600 if expires_in is None else expires_in),
        )

    def is_valid(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return bool(self.access_token) and now < self.expires_at


class CredentialStore:
    """
    Holds API keys, base URLs and models per generation provider, the merge
    workflow settings, the cloud sync config and the in-memory OAuth sessions.

    Setters publish on the event bus so listeners can refresh.
    """

    def __init__(
        self,
        providers: Optional[Dict[str, ProviderSettings]] = None,
        merge: Optional[MergeSettings] = None,
        sync_config: Optional[SyncConfig] = None,
        bus: Optional[ConfigEventBus] = None,
    ):
        self._providers: Dict[str, ProviderSettings] = {}
        for name, descriptor in PROVIDERS.items():
            given = (providers or {}).get(name) or ProviderSettings()
            self._providers[name] = ProviderSettings(
                api_key=given.api_key or "",
                base_url=given.base_url or descriptor.default_base_url,
                model=given.model or descriptor.default_model,
            )
        self.merge = merge or MergeSettings()
        self.sync_config = sync_config or SyncConfig()
        self.bus = bus
        self._sessions: Dict[CloudProvider, OAuthSession] = {}

    def _settings(self, provider: str) -> ProviderSettings:
        return self._providers[get_descriptor(provider).name]

    def _changed(self) -> None:
        if self.bus is not None:
            self.bus.publish()

    # --- generation providers ---
    def get_api_key(self, provider: str) -> str:
        return self._settings(provider).api_key

    def set_api_key(self, provider: str, key: Optional[str]) -> None:
        self._settings(provider).api_key = key or ""
        self._changed()

    def get_base_url(self, provider: str) -> str:
        return self._settings(provider).base_url

    def set_base_url(self, provider: str, url: Optional[str]) -> None:
        self._settings(provider).base_url = url or get_descriptor(provider).default_base_url
        self._changed()

    def get_model(self, provider: str) -> str:
        return self._settings(provider).model

    def set_model(self, provider: str, model: Optional[str]) -> None:
        self._settings(provider).model = model or get_descriptor(provider).default_model
        self._changed()

    def settings_for(self, provider: str) -> ProviderSettings:
        return replace(self._settings(provider))

    def describe(self, provider: str) -> Dict[str, Any]:
        data = asdict(self._settings(provider))
        key = data.pop("api_key")
        data["provider"] = get_descriptor(provider).name
        data["api_key_set"] = bool(key)
        return data

    # --- merge workflow ---
    def set_merge_settings(self, api_key: Optional[str] = None, workflow_id: Optional[str] = None, base_url: Optional[str] = None) -> None:
        if api_key is not None:
            self.merge.api_key = api_key or ""
        if workflow_id is not None:
            self.merge.workflow_id = workflow_id or ""
        if base_url is not None:
            self.merge.base_url = base_url or DEFAULT_MERGE_URL
        self._changed()

    def merge_settings(self) -> MergeSettings:
        return replace(self.merge)

    # --- cloud sessions ---
    def get_session(self, provider: CloudProvider) -> Optional[OAuthSession]:
        return self._sessions.get(provider)

    def set_session(self, provider: CloudProvider, session: OAuthSession) -> None:
        self._sessions[provider] = session

    def clear_session(self, provider: CloudProvider) -> Optional[OAuthSession]:
        return self._sessions.pop(provider, None)

    def require_session(self, provider: CloudProvider) -> OAuthSession:
        session = self._sessions.get(provider)
        if session is None or not session.is_valid():
            raise AuthenticationError(f"Not signed in to {provider.value} or the token has expired; please sign in again")
        return session

    def has_session(self) -> bool:
        return any(s.is_valid() for s in self._sessions.values())


def build_credential_store(config: Dict[str, Any], bus: Optional[ConfigEventBus] = None) -> CredentialStore:
    video_gen = config.get("video_gen") or {}
    providers = {}
    for name in PROVIDERS:
        section = video_gen.get(name) or {}
        providers[name] = ProviderSettings(
            api_key=section.get("api_key") or "",
            base_url=section.get("base_url") or "",
            model=section.get("model") or "",
        )
    merge_section = config.get("video_merge") or {}
    merge = MergeSettings(
        api_key=merge_section.get("api_key") or "",
        base_url=merge_section.get("base_url") or DEFAULT_MERGE_URL,
        workflow_id=str(merge_section.get("workflow_id") or ""),
    )
    return CredentialStore(providers=providers, merge=merge, bus=bus)
