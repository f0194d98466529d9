from typing import Any, Dict, Optional

from cinegen.errors import ConfigurationError, SubmissionError
from cinegen.utils.retry_transport import HttpRequest, RetryTransport

from .poller import (
    GenerationRequest,
    JobPoller,
    JobStatus,
    ProviderDescriptor,
    ProviderSettings,
    dig,
)


def _json_headers(api_key: str) -> Dict[str, str]:
    return {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}


def _is_landscape(image_size: str) -> bool:
    try:
        width, height = (int(v) for v in image_size.lower().split("x", 1))
    except (AttributeError, ValueError):
        return True
    return width > height


# --- BigMore ---
# API key is "<aikey>:<accountPass>"; submit only needs the first half.

def _bigmore_is_sora(model: str) -> bool:
    return "sora" in (model or "")


def bigmore_duration(duration: int) -> int:
    return 15 if duration > 10 else 10


def _bigmore_submit(settings: ProviderSettings, req: GenerationRequest) -> HttpRequest:
    aikey = settings.api_key.split(":")[0]
    landscape = _is_landscape(req.image_size)
    body: Dict[str, Any] = {"model": settings.model, "prompt": req.prompt}
    if _bigmore_is_sora(settings.model):
        endpoint = "/ai/sora/video/generate"
        body["orientation"] = "landscape" if landscape else "portrait"
        body["duration"] = bigmore_duration(req.duration)
        body["removeWatermark"] = True
        if req.start_image:
            body["imageList"] = [req.start_image]
    else:
        endpoint = "/ai/gemini/video/generate"
        body["action"] = "image2video" if req.start_image else "text2video"
        body["aspectRatio"] = "16:9" if landscape else "9:16"
        body["translation"] = False
        if req.start_image:
            body["images"] = [req.start_image]
    return HttpRequest(
        method="POST",
        url=settings.base_url + endpoint,
        headers={"Content-Type": "application/json", "AIKey": aikey},
        json=body,
    )


def _bigmore_task_id(data: Dict[str, Any]) -> Optional[str]:
    if data.get("code") != 0:
        raise SubmissionError(f"bigmore submit rejected: {data.get('info') or 'unknown error'}")
    return dig(data, "result", "taskCode")


def _bigmore_status_request(settings: ProviderSettings, task_id: str) -> HttpRequest:
    aikey, _, account_pass = settings.api_key.partition(":")
    endpoint = "/ai/sora/result" if _bigmore_is_sora(settings.model) else "/ai/gemini/result"
    return HttpRequest(
        method="GET",
        url=settings.base_url + endpoint,
        headers={"AIKey": aikey},
        params={"accountPass": account_pass, "code": task_id},
    )


def _bigmore_status(data: Dict[str, Any]) -> Any:
    if data.get("code") != 0:
        return "QUERY_ERROR"
    return dig(data, "result", "status")


BIGMORE = ProviderDescriptor(
    name="bigmore",
    default_base_url="https://bigmoreai.com",
    default_model="veo3_fast",
    poll_interval_sec=10,
    max_attempts=300,
    duration_buckets=(10, 15),
    build_submit=_bigmore_submit,
    extract_task_id=_bigmore_task_id,
    build_status=_bigmore_status_request,
    extract_status=_bigmore_status,
    extract_result_url=lambda data: dig(data, "result", "videoUrl"),
    extract_error=lambda data: data.get("info"),
    status_table={1: JobStatus.SUCCEEDED, "QUERY_ERROR": JobStatus.FAILED},
)


# --- MiniMax (Hailuo) ---

def minimax_duration(duration: int) -> int:
    return 10 if duration > 7 else 6


def _minimax_submit(settings: ProviderSettings, req: GenerationRequest) -> HttpRequest:
    if not req.start_image:
        raise ConfigurationError("minimax requires a start image")
    body: Dict[str, Any] = {
        "model": settings.model,
        "prompt": req.prompt,
        "duration": minimax_duration(req.duration),
        "first_frame_image": req.start_image,
        "resolution": "768P",
        "prompt_optimizer": True,
    }
    if req.end_image and not req.full_frame:
        body["last_frame_image"] = req.end_image
    return HttpRequest(method="POST", url=settings.base_url, headers=_json_headers(settings.api_key), json=body)


def _minimax_task_id(data: Dict[str, Any]) -> Optional[str]:
    status_code = dig(data, "base_resp", "status_code")
    if status_code not in (None, 0):
        raise SubmissionError(f"minimax submit rejected: {dig(data, 'base_resp', 'status_msg') or status_code}")
    return data.get("task_id")


def _minimax_status_request(settings: ProviderSettings, task_id: str) -> HttpRequest:
    query_url = settings.base_url.replace("/video_generation", "") + "/query/video_generation"
    return HttpRequest(
        method="GET",
        url=query_url,
        headers={"Authorization": f"Bearer {settings.api_key}"},
        params={"task_id": task_id},
    )


MINIMAX = ProviderDescriptor(
    name="minimax",
    default_base_url="https://yunwu.ai/minimax/v1/video_generation",
    default_model="MiniMax-Hailuo-2.3",
    poll_interval_sec=1,
    max_attempts=120,
    duration_buckets=(6, 10),
    build_submit=_minimax_submit,
    extract_task_id=_minimax_task_id,
    build_status=_minimax_status_request,
    extract_status=lambda data: dig(data, "data", "data", "status") or dig(data, "data", "status") or data.get("status"),
    extract_result_url=lambda data: dig(data, "data", "data", "file", "download_url"),
    extract_error=lambda data: data.get("error_msg") or dig(data, "base_resp", "status_msg"),
    status_table={
        "SUCCESS": JobStatus.SUCCEEDED,
        "FAILED": JobStatus.FAILED,
        "FAIL": JobStatus.FAILED,
        "CANCELLED": JobStatus.CANCELLED,
        "QUEUEING": JobStatus.PENDING,
        "WAITING": JobStatus.PENDING,
        "PREPARING": JobStatus.RUNNING,
        "PROCESSING": JobStatus.RUNNING,
        "RUNNING": JobStatus.RUNNING,
    },
)


# --- Wan (Tongyi Wanxiang) ---

def wan_duration(duration: int) -> int:
    return 10 if duration >= 10 else 5


def _wan_submit(settings: ProviderSettings, req: GenerationRequest) -> HttpRequest:
    body: Dict[str, Any] = {
        "model": settings.model,
        "input": {"prompt": req.prompt},
        "parameters": {"resolution": "720P", "prompt_extend": True, "audio": True},
    }
    if req.start_image:
        body["input"]["img_url"] = req.start_image
    if req.end_image and not req.full_frame:
        body["input"]["end_img_url"] = req.end_image
    if req.duration:
        body["parameters"]["duration"] = wan_duration(req.duration)
    return HttpRequest(method="POST", url=settings.base_url, headers=_json_headers(settings.api_key), json=body)


def _wan_task_id(data: Dict[str, Any]) -> Optional[str]:
    if data.get("code") and not dig(data, "output", "task_id"):
        raise SubmissionError(f"wan submit rejected: {data.get('message') or data['code']}")
    return dig(data, "output", "task_id")


def _wan_status_request(settings: ProviderSettings, task_id: str) -> HttpRequest:
    base = settings.base_url.replace("/video-synthesis", "")
    return HttpRequest(
        method="GET",
        url=f"{base}/video-synthesis/{task_id}",
        headers={"Authorization": f"Bearer {settings.api_key}"},
    )


WAN = ProviderDescriptor(
    name="wan",
    default_base_url="https://yunwu.ai/alibailian/api/v1/services/aigc/video-generation/video-synthesis",
    default_model="wan2.5-i2v-preview",
    poll_interval_sec=1,
    max_attempts=180,
    duration_buckets=(5, 10),
    build_submit=_wan_submit,
    extract_task_id=_wan_task_id,
    build_status=_wan_status_request,
    extract_status=lambda data: dig(data, "output", "task_status") or data.get("task_status"),
    extract_result_url=lambda data: (
        dig(data, "output", "video_url") or dig(data, "output", "url") or data.get("video_url") or data.get("url")
    ),
    extract_error=lambda data: data.get("message") or dig(data, "error", "message") or dig(data, "output", "message"),
    status_table={
        "SUCCEEDED": JobStatus.SUCCEEDED,
        "SUCCESS": JobStatus.SUCCEEDED,
        "FAILED": JobStatus.FAILED,
        "CANCELLED": JobStatus.CANCELLED,
        "CANCELED": JobStatus.CANCELLED,
        "PENDING": JobStatus.PENDING,
        "RUNNING": JobStatus.RUNNING,
    },
)


PROVIDERS: Dict[str, ProviderDescriptor] = {d.name: d for d in (BIGMORE, MINIMAX, WAN)}


def get_descriptor(provider: str) -> ProviderDescriptor:
    descriptor = PROVIDERS.get((provider or "").lower())
    if descriptor is None:
        raise ConfigurationError(f"Unknown video provider: {provider!r} (expected one of {', '.join(PROVIDERS)})")
    return descriptor


def create_client(
    provider: str,
    settings: ProviderSettings,
    transport: Optional[RetryTransport] = None,
    **kwargs: Any,
) -> JobPoller:
    return JobPoller(get_descriptor(provider), settings, transport=transport, **kwargs)
