import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, TypeVar

import requests

from cinegen.errors import TransientTransportError, TransportError
from cinegen.utils.logging_setup import setup_logger

logger = setup_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SEC = 2.0
DEFAULT_TIMEOUT_SEC = 60

_RATE_LIMIT_MARKERS = ("429", "quota", "RATE_LIMIT")


@dataclass
class HttpRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    json: Optional[Any] = None
    params: Optional[Dict[str, Any]] = None
    data: Optional[Any] = None


def _error_status(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, bool) or value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


def is_rate_limited(exc: BaseException) -> bool:
    """
    True for 429 responses, and for status-less errors whose message names a
    rate limit or quota. An error with any other HTTP status is never a rate
    limit, whatever its URL or body happens to contain.
    """
    status = _error_status(exc)
    if status is not None:
        return status == 429
    if isinstance(exc, TransportError):
        # no status: a network failure; its text is the URL plus the socket error
        return False
    message = str(exc)
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def retry_operation(
    operation: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_sec: float = DEFAULT_BASE_DELAY_SEC,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``operation`` up to ``max_retries`` times, backing off exponentially
    while it fails with a rate-limit signature. Any other error, or the last
    rate-limit error once the budget is spent, is re-raised unchanged.
    """
    attempts = max(1, max_retries)
    for attempt in range(attempts - 1):
        try:
            return operation()
        except Exception as exc:
            if not is_rate_limited(exc):
                raise
            delay = base_delay_sec * (2 ** attempt)
            logger.warning(f"Hit rate limit, retrying in {delay:.1f}s (attempt {attempt + 1}/{attempts}): {exc}")
            sleep(delay)
    return operation()


class RetryTransport:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_sec: float = DEFAULT_BASE_DELAY_SEC,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session or requests.Session()
        self.max_retries = max_retries
        self.base_delay_sec = base_delay_sec
        self.timeout_sec = timeout_sec
        self.sleep = sleep

    def send(self, request: HttpRequest) -> requests.Response:
        return retry_operation(
            lambda: self._send_once(request),
            max_retries=self.max_retries,
            base_delay_sec=self.base_delay_sec,
            sleep=self.sleep,
        )

    def send_json(self, request: HttpRequest) -> Any:
        resp = self.send(request)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise TransportError(
                f"Invalid JSON from {request.url}: {resp.text[:200]}",
                status_code=resp.status_code,
                body=resp.text,
            ) from exc

    def _send_once(self, request: HttpRequest) -> requests.Response:
        # GET requests never carry a body
        body = None if request.method.upper() == "GET" else request.json
        data = None if request.method.upper() == "GET" else request.data
        try:
            resp = self.session.request(
                request.method,
                request.url,
                headers=request.headers,
                json=body,
                data=data,
                params=request.params,
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise TransportError(f"{request.method} {request.url} failed: {exc}") from exc

        if resp.status_code == 429:
            raise TransientTransportError(
                f"Rate limited (429) by {request.url}: {resp.text}",
                status_code=429,
                body=resp.text,
            )
        if not 200 <= resp.status_code < 300:
            raise TransportError(
                f"HTTP {resp.status_code} from {request.url}: {resp.text}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return resp
