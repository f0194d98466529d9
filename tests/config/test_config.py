from cinegen.config.config import get_default_config, load_config, save_overrides
from cinegen.config.credentials import build_credential_store


def test_defaults_cover_every_provider():
    config = get_default_config()
    assert config["video_gen"]["minimax"]["model"] == "MiniMax-Hailuo-2.3"
    assert config["video_gen"]["bigmore"]["poll_interval_sec"] == 10
    assert config["video_gen"]["wan"]["max_attempts"] == 180
    assert config["video_merge"]["api_key"] == ""


def test_yaml_then_toml_then_env_precedence(tmp_path):
    yaml_file = tmp_path / "config.yaml"
    yaml_file.write_text("video_gen:\n  wan:\n    model: wan-from-yaml\n    max_attempts: 10\n", encoding="utf-8")
    toml_file = tmp_path / "config.toml"
    save_overrides({"video_gen": {"wan": {"model": "wan-from-toml"}}}, toml_file)

    config = load_config(
        config_path=yaml_file,
        overrides_path=toml_file,
        env_file=tmp_path / "missing.env",
        environ={"WAN_API_KEY": "secret", "COZE_WORKFLOW_ID": "wf-9"},
    )
    assert config["video_gen"]["wan"]["model"] == "wan-from-toml"
    assert config["video_gen"]["wan"]["max_attempts"] == 10
    assert config["video_gen"]["wan"]["api_key"] == "secret"
    assert config["video_merge"]["workflow_id"] == "wf-9"
    assert config["video_gen"]["minimax"]["base_url"].startswith("https://")


def test_env_file_is_loaded(tmp_path, monkeypatch):
    monkeypatch.delenv("MINIMAX_API_KEY", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("MINIMAX_API_KEY=from-dotenv\n", encoding="utf-8")
    config = load_config(config_path=tmp_path / "none.yaml", overrides_path=tmp_path / "none.toml", env_file=env_file)
    assert config["video_gen"]["minimax"]["api_key"] == "from-dotenv"
    monkeypatch.delenv("MINIMAX_API_KEY", raising=False)


def test_build_credential_store_from_config():
    config = get_default_config()
    config["video_gen"]["bigmore"]["api_key"] = "k:p"
    config["video_merge"]["workflow_id"] = 123
    store = build_credential_store(config)
    assert store.get_api_key("bigmore") == "k:p"
    assert store.get_model("bigmore") == "veo3_fast"
    assert store.merge_settings().workflow_id == "123"
