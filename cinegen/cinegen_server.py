import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from cinegen.config.config import CONFIG_DIR, load_config, save_overrides
from cinegen.config.credentials import CredentialStore, build_credential_store
from cinegen.errors import (
    AuthenticationError,
    CineGenError,
    ConfigurationError,
    GenerationTimeoutError,
    JobCancelledError,
)
from cinegen.events import ConfigEventBus
from cinegen.sync import CloudSyncService
from cinegen.sync.store import LocalProjectStore
from cinegen.utils.logging_setup import configure_logging
from cinegen.utils.retry_transport import RetryTransport
from cinegen.video_gen.base import ToolResponse
from cinegen.video_gen.providers import PROVIDERS, get_descriptor
from cinegen.video_gen.tools import video_generate, video_merge

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    config: Dict[str, Any]
    bus: ConfigEventBus
    credentials: CredentialStore
    transport: RetryTransport
    sync: CloudSyncService
    overrides_path: Optional[Path] = None


def create_state(config: Optional[Dict[str, Any]] = None, db_path: Optional[os.PathLike] = None) -> AppState:
    config = config if config is not None else load_config()
    transport_cfg = config.get("transport") or {}
    transport = RetryTransport(
        max_retries=int(transport_cfg.get("max_retries", 3)),
        base_delay_sec=float(transport_cfg.get("base_delay_sec", 2.0)),
        timeout_sec=float(transport_cfg.get("timeout_sec", 60)),
    )
    bus = ConfigEventBus()
    credentials = build_credential_store(config, bus=bus)
    store = LocalProjectStore.open(db_path or (config.get("cloud_sync") or {}).get("db_path"))
    sync = CloudSyncService(store, credentials, transport=transport)
    return AppState(
        config=config,
        bus=bus,
        credentials=credentials,
        transport=transport,
        sync=sync,
        overrides_path=CONFIG_DIR / "config.toml",
    )


app_state: Optional[AppState] = None


def get_state() -> AppState:
    global app_state
    if app_state is None:
        app_state = create_state()
        logger.info("CineGen services initialized")
    return app_state


@asynccontextmanager
async def lifespan(_: FastAPI):
    state = get_state()
    state.sync.init_cloud_sync()
    yield
    state.bus.clear()


app = FastAPI(title="CineGen API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def status_for(exc: CineGenError) -> int:
    if isinstance(exc, ConfigurationError):
        return 400
    if isinstance(exc, AuthenticationError):
        return 401
    if isinstance(exc, JobCancelledError):
        return 409
    if isinstance(exc, GenerationTimeoutError):
        return 504
    return 502


@app.exception_handler(CineGenError)
async def cinegen_error_handler(request: Request, exc: CineGenError):
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    content = {"detail": str(exc), "error": type(exc).__name__}
    report = getattr(exc, "report", None)
    if report is not None:
        content["report"] = report.to_dict()
    return JSONResponse(status_code=status_for(exc), content=content)


class GenerateRequest(BaseModel):
    provider: str
    prompt: str
    start_image: Optional[str] = None
    end_image: Optional[str] = None
    duration: int = 5
    full_frame: bool = False
    image_size: str = "2560x1440"


class MergeRequest(BaseModel):
    video_urls: List[str]


class ProviderUpdate(BaseModel):
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: Optional[str] = None


class LoginRequest(BaseModel):
    provider: str
    access_token: str
    refresh_token: str = ""
    expires_in: Optional[float] = None


class AutoSyncRequest(BaseModel):
    enabled: bool


class HealthResponse(BaseModel):
    status: str
    timestamp: str


@app.post("/video/generate", response_model=ToolResponse)
def generate(request: GenerateRequest):
    state = get_state()
    name = get_descriptor(request.provider).name
    section = (state.config.get("video_gen") or {}).get(name) or {}
    poll_options = {k: section[k] for k in ("poll_interval_sec", "max_attempts") if k in section}
    logger.info(f"POST /video/generate - provider: {name}, prompt: {request.prompt[:50]}...")
    return video_generate(
        state.credentials,
        name,
        request.prompt,
        start_image=request.start_image,
        end_image=request.end_image,
        duration=request.duration,
        full_frame=request.full_frame,
        image_size=request.image_size,
        transport=state.transport,
        poll_options=poll_options,
    )


@app.post("/video/merge", response_model=ToolResponse)
def merge(request: MergeRequest):
    state = get_state()
    return video_merge(state.credentials, request.video_urls, transport=state.transport)


@app.put("/providers/{provider}")
def update_provider(provider: str, update: ProviderUpdate):
    state = get_state()
    name = get_descriptor(provider).name
    if update.api_key is not None:
        state.credentials.set_api_key(name, update.api_key)
    if update.base_url is not None:
        state.credentials.set_base_url(name, update.base_url)
    if update.model is not None:
        state.credentials.set_model(name, update.model)
    if state.overrides_path is not None and (update.base_url is not None or update.model is not None):
        # Keys stay out of files; only URLs and models are remembered.
        overrides = {
            "video_gen": {
                n: {"base_url": state.credentials.get_base_url(n), "model": state.credentials.get_model(n)}
                for n in PROVIDERS
            }
        }
        save_overrides(overrides, state.overrides_path)
    return state.credentials.describe(name)


@app.get("/sync/status")
def sync_status():
    return get_state().sync.get_sync_status()


@app.post("/sync/login")
def sync_login(request: LoginRequest):
    state = get_state()
    state.sync.login(request.provider, request.access_token, request.refresh_token, request.expires_in)
    return state.sync.get_sync_status()


@app.post("/sync/logout")
def sync_logout():
    state = get_state()
    state.sync.logout()
    return state.sync.get_sync_status()


@app.post("/sync/run")
def sync_run():
    report = get_state().sync.sync()
    return report.to_dict()


@app.post("/sync/auto")
def sync_auto(request: AutoSyncRequest):
    state = get_state()
    state.sync.toggle_auto_sync(request.enabled)
    return state.sync.get_sync_status()


@app.get("/health")
async def health():
    return HealthResponse(status="healthy", timestamp=datetime.now().isoformat())


@app.get("/")
async def root():
    return {"message": "CineGen API is running"}


if __name__ == "__main__":
    import uvicorn
    configure_logging(enable_console=True)
    uvicorn.run(app, host="0.0.0.0", port=8000)
