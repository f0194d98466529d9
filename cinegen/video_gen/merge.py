import json
from dataclasses import dataclass
from typing import List, Optional

from cinegen.errors import ConfigurationError, GenerationError
from cinegen.utils.logging_setup import setup_logger
from cinegen.utils.retry_transport import HttpRequest, RetryTransport

logger = setup_logger(__name__)

DEFAULT_MERGE_URL = "https://api.coze.cn/v1/workflow/run"


@dataclass
class MergeSettings:
    api_key: str = ""
    base_url: str = DEFAULT_MERGE_URL
    workflow_id: str = ""


class VideoMergeClient:
    """Joins clips into one video through a Coze workflow run."""

    def __init__(self, settings: MergeSettings, transport: Optional[RetryTransport] = None):
        self.settings = settings
        self.transport = transport or RetryTransport()

    def merge_videos(self, video_urls: List[str]) -> str:
        if not video_urls:
            raise ConfigurationError("video_urls must not be empty")
        if not self.settings.api_key:
            raise ConfigurationError("Coze API key is not set")
        if not self.settings.workflow_id:
            raise ConfigurationError("Coze workflow id is not set")

        request = HttpRequest(
            method="POST",
            url=self.settings.base_url or DEFAULT_MERGE_URL,
            headers={
                "Authorization": f"Bearer {self.settings.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "workflow_id": self.settings.workflow_id,
                "parameters": {"video_url": list(video_urls)},
            },
        )
        response = self.transport.send_json(request)
        logger.info(f"Coze workflow response: {json.dumps(response, ensure_ascii=False)[:500]}")

        # {"code": 0, "data": "{\"output\": \"https://...\"}"}; data is a JSON string
        raw = response.get("data") if isinstance(response, dict) else None
        if raw:
            try:
                parsed = json.loads(raw) if isinstance(raw, str) else raw
            except ValueError as exc:
                raise GenerationError(f"Could not parse merge result: {raw[:200]}") from exc
            output = parsed.get("output") if isinstance(parsed, dict) else None
            if output:
                logger.info(f"Videos merged: {output}")
                return output
        message = response.get("msg") if isinstance(response, dict) else None
        raise GenerationError(f"Merged video URL not found in workflow response{': ' + message if message else ''}")
