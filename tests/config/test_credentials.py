import time

import pytest

from cinegen.config.credentials import CloudProvider, CredentialStore, OAuthSession, SyncConfig
from cinegen.errors import AuthenticationError, ConfigurationError
from cinegen.events import ConfigEventBus


def test_falsy_values_reset_to_defaults():
    store = CredentialStore()
    store.set_base_url("minimax", "https://proxy.example.com/v1/video_generation")
    store.set_model("minimax", "MiniMax-Hailuo-02")
    store.set_api_key("minimax", "abc")
    store.set_base_url("minimax", "")
    store.set_model("minimax", None)
    store.set_api_key("minimax", "")
    assert store.get_base_url("minimax") == "https://yunwu.ai/minimax/v1/video_generation"
    assert store.get_model("minimax") == "MiniMax-Hailuo-2.3"
    assert store.get_api_key("minimax") == ""


def test_settings_for_returns_a_snapshot():
    store = CredentialStore()
    store.set_api_key("wan", "k1")
    snapshot = store.settings_for("wan")
    store.set_api_key("wan", "k2")
    assert snapshot.api_key == "k1"


def test_setters_publish_config_events():
    bus = ConfigEventBus()
    calls = []
    bus.subscribe(lambda: calls.append(1))
    store = CredentialStore(bus=bus)
    store.set_api_key("wan", "k")
    store.set_model("wan", "m")
    assert calls == [1, 1]


def test_unknown_provider_is_configuration_error():
    with pytest.raises(ConfigurationError):
        CredentialStore().get_api_key("runway")


def test_describe_masks_key():
    store = CredentialStore()
    store.set_api_key("wan", "secret")
    info = store.describe("wan")
    assert "api_key" not in info
    assert info["api_key_set"] is True


def test_session_validity():
    session = OAuthSession(access_token="t", expires_at=time.time() + 60)
    assert session.is_valid()
    assert not session.is_valid(now=session.expires_at)
    assert not OAuthSession(access_token="", expires_at=time.time() + 60).is_valid()


def test_token_lifetime_defaults_only_when_omitted():
    before = time.time()
    assert OAuthSession.from_token("tok").expires_at >= before + 3600
    assert not OAuthSession.from_token("tok", expires_in=0).is_valid()
    assert OAuthSession.from_token("tok", expires_in=120).expires_at < before + 3600


def test_require_session_rejects_missing_and_expired():
    store = CredentialStore()
    with pytest.raises(AuthenticationError):
        store.require_session(CloudProvider.GOOGLE)
    store.set_session(CloudProvider.GOOGLE, OAuthSession(access_token="t", expires_at=time.time() - 1))
    with pytest.raises(AuthenticationError):
        store.require_session(CloudProvider.GOOGLE)


def test_sync_config_round_trip_and_bad_provider():
    config = SyncConfig(provider=CloudProvider.ONEDRIVE, auto_sync=True, last_sync_time=42)
    assert SyncConfig.from_dict(config.to_dict()) == config
    assert SyncConfig.from_dict({"provider": "dropbox"}).provider is None
    assert SyncConfig.from_dict(None) == SyncConfig()
