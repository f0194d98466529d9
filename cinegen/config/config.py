import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import toml
import yaml
from dotenv import load_dotenv

from cinegen.utils.logging_setup import setup_logger
from cinegen.video_gen.providers import PROVIDERS

logger = setup_logger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent
PACKAGE_ROOT = CONFIG_DIR.parent
PROJECT_ROOT = PACKAGE_ROOT.parent

# env var -> (section, key)
ENV_OVERRIDES = {
    "BIGMORE_API_KEY": ("video_gen.bigmore", "api_key"),
    "MINIMAX_API_KEY": ("video_gen.minimax", "api_key"),
    "WAN_API_KEY": ("video_gen.wan", "api_key"),
    "BIGMORE_MODEL": ("video_gen.bigmore", "model"),
    "MINIMAX_MODEL": ("video_gen.minimax", "model"),
    "WAN_MODEL": ("video_gen.wan", "model"),
    "COZE_API_KEY": ("video_merge", "api_key"),
    "COZE_WORKFLOW_ID": ("video_merge", "workflow_id"),
    "GOOGLE_CLIENT_ID": ("cloud_sync", "google_client_id"),
    "GOOGLE_API_KEY": ("cloud_sync", "google_api_key"),
    "ONEDRIVE_CLIENT_ID": ("cloud_sync", "onedrive_client_id"),
    "CINEGEN_DB_PATH": ("cloud_sync", "db_path"),
    "PROXY_HOST": ("proxy", "host"),
    "PROXY_PORT": ("proxy", "port"),
}


def get_default_config() -> Dict[str, Any]:
    """Get default configuration"""
    video_gen: Dict[str, Any] = {"default_provider": "minimax"}
    for name, descriptor in PROVIDERS.items():
        video_gen[name] = {
            "api_key": "",
            "base_url": descriptor.default_base_url,
            "model": descriptor.default_model,
            "poll_interval_sec": descriptor.poll_interval_sec,
            "max_attempts": descriptor.max_attempts,
        }

    return {
        "video_gen": video_gen,
        "video_merge": {
            "api_key": "",
            "base_url": "https://api.coze.cn/v1/workflow/run",
            "workflow_id": "",
        },
        "transport": {
            "max_retries": 3,
            "base_delay_sec": 2.0,
            "timeout_sec": 60,
        },
        "cloud_sync": {
            "db_path": "projects/cinegen.db",
            "google_client_id": "",
            "google_api_key": "",
            "onedrive_client_id": "",
        },
        "proxy": {"host": "", "port": ""},
    }


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in (extra or {}).items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _section(config: Dict[str, Any], dotted: str) -> Dict[str, Any]:
    node = config
    for part in dotted.split("."):
        node = node.setdefault(part, {})
    return node


def _load_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(
    config_path: Optional[os.PathLike] = None,
    overrides_path: Optional[os.PathLike] = None,
    env_file: Optional[os.PathLike] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """
    Build the effective configuration.

    Precedence, lowest first: built-in defaults, config.yaml (or
    config.example.yaml), config.toml user overrides, environment (.env is
    loaded into the environment without overriding existing variables).
    """
    config = copy.deepcopy(get_default_config())

    if config_path is None:
        candidates = [CONFIG_DIR / "config.yaml", CONFIG_DIR / "config.example.yaml"]
        config_path = next((p for p in candidates if p.exists()), None)
    if config_path is not None and Path(config_path).exists():
        try:
            _deep_merge(config, _load_yaml(Path(config_path)))
        except yaml.YAMLError as e:
            logger.warning(f"Failed to load config from {config_path}: {e}")

    overrides_path = Path(overrides_path) if overrides_path is not None else CONFIG_DIR / "config.toml"
    if overrides_path.exists():
        with open(overrides_path, "r", encoding="utf-8") as f:
            _deep_merge(config, toml.load(f))

    if env_file is None:
        env_candidates = [PACKAGE_ROOT / ".env", PROJECT_ROOT / ".env"]
        env_file = next((p for p in env_candidates if p.exists()), None)
    if env_file is not None:
        load_dotenv(dotenv_path=str(env_file), override=False)

    env = os.environ if environ is None else environ
    for var, (section, key) in ENV_OVERRIDES.items():
        value = (env.get(var) or "").strip()
        if value:
            _section(config, section)[key] = value

    proxy = config.get("proxy") or {}
    if proxy.get("host") and proxy.get("port"):
        os.environ["http_proxy"] = f"http://{proxy['host']}:{proxy['port']}"
        os.environ["https_proxy"] = f"http://{proxy['host']}:{proxy['port']}"

    return config


def save_overrides(overrides: Dict[str, Any], overrides_path: Optional[os.PathLike] = None) -> Path:
    """Persist user overrides (e.g. models picked in the UI) to config.toml."""
    path = Path(overrides_path) if overrides_path is not None else CONFIG_DIR / "config.toml"
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        toml.dump(overrides, f)
    return path
