import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from cinegen.errors import (
    ConfigurationError,
    GenerationError,
    GenerationTimeoutError,
    JobCancelledError,
    SubmissionError,
    TransportError,
)
from cinegen.utils.logging_setup import log_context, setup_logger
from cinegen.utils.retry_transport import HttpRequest, RetryTransport

logger = setup_logger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


@dataclass
class ProviderSettings:
    api_key: str = ""
    base_url: str = ""
    model: str = ""


@dataclass
class GenerationRequest:
    prompt: str
    start_image: Optional[str] = None
    end_image: Optional[str] = None
    duration: int = 5
    full_frame: bool = False
    image_size: str = "2560x1440"


@dataclass
class GenerationJob:
    task_id: str
    provider: str
    status: JobStatus = JobStatus.PENDING
    result_url: Optional[str] = None
    attempts: int = 0
    raw_status: Any = None


@dataclass(frozen=True)
class ProviderDescriptor:
    """
    Everything that differs between generation providers.

    ``extract_task_id`` may raise SubmissionError when the submit response
    carries an application-level error code. Status values are looked up in
    ``status_table`` as-is, then upper-cased for strings; anything unknown
    counts as RUNNING.
    """

    name: str
    default_base_url: str
    default_model: str
    poll_interval_sec: float
    max_attempts: int
    duration_buckets: Tuple[int, ...]
    build_submit: Callable[[ProviderSettings, GenerationRequest], HttpRequest]
    extract_task_id: Callable[[Dict[str, Any]], Optional[str]]
    build_status: Callable[[ProviderSettings, str], HttpRequest]
    extract_status: Callable[[Dict[str, Any]], Any]
    extract_result_url: Callable[[Dict[str, Any]], Optional[str]]
    extract_error: Callable[[Dict[str, Any]], Optional[str]]
    status_table: Mapping[Any, JobStatus] = field(default_factory=dict)

    def normalize_status(self, raw: Any) -> JobStatus:
        if raw is None:
            return JobStatus.PENDING
        status = self.status_table.get(raw)
        if status is None and isinstance(raw, str):
            status = self.status_table.get(raw.upper())
        return status or JobStatus.RUNNING


def dig(payload: Any, *path: str) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


class JobPoller:
    """Submits a generation job to one provider and polls it to completion."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        settings: ProviderSettings,
        transport: Optional[RetryTransport] = None,
        poll_interval_sec: Optional[float] = None,
        max_attempts: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.descriptor = descriptor
        self.settings = ProviderSettings(
            api_key=settings.api_key or "",
            base_url=(settings.base_url or descriptor.default_base_url).rstrip("/"),
            model=settings.model or descriptor.default_model,
        )
        self.transport = transport or RetryTransport()
        self.poll_interval_sec = descriptor.poll_interval_sec if poll_interval_sec is None else poll_interval_sec
        self.max_attempts = descriptor.max_attempts if max_attempts is None else max_attempts
        self.sleep = sleep

    @property
    def name(self) -> str:
        return self.descriptor.name

    def submit(self, request: GenerationRequest) -> str:
        if not self.settings.api_key:
            raise ConfigurationError(f"{self.name} API key is not set")
        http_request = self.descriptor.build_submit(self.settings, request)
        with log_context(provider=self.name):
            logger.info(f"Submitting {self.name} job with model {self.settings.model}")
            try:
                data = self.transport.send_json(http_request)
            except TransportError as exc:
                raise SubmissionError(f"{self.name} submit failed: {exc}") from exc
            task_id = self.descriptor.extract_task_id(data)
            if not task_id:
                raise SubmissionError(f"{self.name} returned no task id")
            logger.info(f"{self.name} task id: {task_id}")
        return str(task_id)

    def query(self, job: GenerationJob) -> GenerationJob:
        """Ask for the job's status once and apply it. Raises GenerationError on terminal failure."""
        payload = self.transport.send_json(self.descriptor.build_status(self.settings, job.task_id))
        if not isinstance(payload, dict):
            raise ValueError(f"{self.name} status response is not a JSON object: {str(payload)[:200]}")
        job.raw_status = self.descriptor.extract_status(payload)
        job.status = self.descriptor.normalize_status(job.raw_status)
        if job.status is JobStatus.SUCCEEDED:
            job.result_url = self.descriptor.extract_result_url(payload)
        elif job.status in (JobStatus.FAILED, JobStatus.CANCELLED):
            message = self.descriptor.extract_error(payload) or "unknown error"
            raise GenerationError(f"{self.name} video generation {job.status.value}: {message}")
        return job

    def poll(self, task_id: str, cancel: Optional[threading.Event] = None) -> str:
        job = GenerationJob(task_id=task_id, provider=self.name)
        last_error: Optional[Exception] = None
        with log_context(provider=self.name, task_id=task_id):
            for attempt in range(self.max_attempts):
                if cancel is not None and cancel.is_set():
                    raise JobCancelledError(f"{self.name} task {task_id} was cancelled")
                job.attempts += 1
                try:
                    self.query(job)
                except (TransportError, ValueError) as exc:
                    # Could not ask the question; a GenerationError is a definitive answer and propagates.
                    last_error = exc
                    logger.warning(f"Status query failed (attempt {attempt + 1}/{self.max_attempts}): {exc}")
                else:
                    if job.status is JobStatus.SUCCEEDED and job.result_url:
                        logger.info(f"{self.name} video ready: {job.result_url}")
                        return job.result_url
                    logger.debug(f"{self.name} task status: {job.raw_status} ({job.status.value})")
                if attempt < self.max_attempts - 1:
                    self._wait(cancel)

        raise GenerationTimeoutError(
            f"{self.name} video generation timed out after {self.max_attempts} status checks"
        ) from last_error

    def generate(self, request: GenerationRequest, cancel: Optional[threading.Event] = None) -> str:
        task_id = self.submit(request)
        return self.poll(task_id, cancel=cancel)

    def _wait(self, cancel: Optional[threading.Event]) -> None:
        if cancel is None:
            self.sleep(self.poll_interval_sec)
        elif cancel.wait(self.poll_interval_sec):
            raise JobCancelledError(f"{self.name} task was cancelled")
