import threading
from typing import Any, Dict, List, Optional

from cinegen.config.credentials import CredentialStore
from cinegen.utils.retry_transport import RetryTransport

from .base import ToolResponse, setup_logger
from .merge import VideoMergeClient
from .poller import GenerationRequest
from .providers import create_client, get_descriptor

logger = setup_logger(__name__)


def video_generate(
    credentials: CredentialStore,
    provider: str,
    prompt: str,
    start_image: Optional[str] = None,
    end_image: Optional[str] = None,
    duration: int = 5,
    full_frame: bool = False,
    image_size: str = "2560x1440",
    transport: Optional[RetryTransport] = None,
    poll_options: Optional[Dict[str, Any]] = None,
    cancel: Optional[threading.Event] = None,
) -> ToolResponse:
    """
    Generate a clip with the given provider and wait for its URL.

    Args:
        credentials (CredentialStore): Source of the provider's key, base URL and model.
        provider (str): One of bigmore, minimax, wan.
        prompt (str): The prompt to generate the video.
        start_image (str): Optional first frame (URL or data URI); selects image-to-video.
        end_image (str): Optional last frame; ignored in full-frame mode.
        duration (int): Requested seconds, rounded to what the provider supports.
        poll_options (dict): Optional poll_interval_sec / max_attempts overrides.
        cancel (threading.Event): Set it to stop waiting.

    Errors propagate unchanged so callers can show the message as-is.
    """
    name = get_descriptor(provider).name
    client = create_client(name, credentials.settings_for(name), transport=transport, **(poll_options or {}))
    request = GenerationRequest(
        prompt=prompt,
        start_image=start_image,
        end_image=end_image,
        duration=duration,
        full_frame=full_frame,
        image_size=image_size,
    )
    url = client.generate(request, cancel=cancel)
    return ToolResponse(
        success=True,
        message=f"Video generated with {name}.",
        output_url=url,
        content={"provider": name, "model": client.settings.model},
    )


def video_merge(
    credentials: CredentialStore,
    video_urls: List[str],
    transport: Optional[RetryTransport] = None,
) -> ToolResponse:
    client = VideoMergeClient(credentials.merge_settings(), transport=transport)
    url = client.merge_videos(video_urls)
    return ToolResponse(
        success=True,
        message=f"Merged {len(video_urls)} clips.",
        output_url=url,
        content={"clips": list(video_urls)},
    )
