from typing import Callable, Dict, Iterable, List

from cinegen.errors import AuthenticationError, SyncError
from cinegen.utils.logging_setup import log_context, setup_logger

from .models import ProjectRecord, SyncReport

logger = setup_logger(__name__)


def _index_remote(remote: Iterable[ProjectRecord]) -> Dict[str, ProjectRecord]:
    # Several remote files can carry the same id; the newest copy wins.
    index: Dict[str, ProjectRecord] = {}
    for project in remote:
        current = index.get(project.id)
        if current is None or (project.last_modified or 0) > (current.last_modified or 0):
            index[project.id] = project
    return index


def reconcile(
    local_projects: Iterable[ProjectRecord],
    remote_fetch: Callable[[], List[ProjectRecord]],
    upload_fn: Callable[[ProjectRecord], object],
    download_fn: Callable[[ProjectRecord], object],
) -> SyncReport:
    """
    Bring local and remote project collections into agreement, last writer wins.

    Local-only projects are uploaded, remote-only ones downloaded; for projects
    on both sides the greater ``last_modified`` is copied over the other and
    equal timestamps are left alone, so a second pass with no changes in
    between transfers nothing.

    A failed remote listing degrades to "remote is empty". A failed transfer
    does not stop the others; all failures are raised together as SyncError
    at the end. AuthenticationError aborts the pass immediately.
    """
    report = SyncReport()
    local = list(local_projects)
    local_ids = {p.id for p in local}

    try:
        remote = _index_remote(remote_fetch())
    except AuthenticationError:
        raise
    except Exception as exc:
        logger.warning(f"Fetching remote projects failed, uploading local projects only: {exc}")
        report.remote_fetch_failed = True
        remote = {}

    def transfer(direction: str, fn: Callable[[ProjectRecord], object], project: ProjectRecord) -> None:
        with log_context(project_id=project.id):
            try:
                fn(project)
            except AuthenticationError:
                raise
            except Exception as exc:
                logger.error(f"{direction} failed for '{project.title}': {exc}")
                report.failures[project.id] = f"{direction} failed: {exc}"
                return
            logger.info(f"{direction} '{project.title}'")
            (report.uploaded if direction == "upload" else report.downloaded).append(project.id)

    for project in local:
        cloud = remote.get(project.id)
        remote_modified = (cloud.last_modified or 0) if cloud else 0
        if cloud is None or project.last_modified > remote_modified:
            transfer("upload", upload_fn, project)
        elif remote_modified > project.last_modified:
            transfer("download", download_fn, cloud)

    for project_id, cloud in remote.items():
        if project_id not in local_ids:
            transfer("download", download_fn, cloud)

    if report.failures:
        raise SyncError(
            f"{len(report.failures)} project(s) failed to sync: " + "; ".join(
                f"{pid}: {msg}" for pid, msg in report.failures.items()
            ),
            report=report,
        )
    return report
