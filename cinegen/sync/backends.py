import json
import uuid
from typing import Dict, List, Optional, Set, Tuple
from urllib.parse import quote

from cinegen.config.credentials import CloudProvider, CredentialStore
from cinegen.errors import SyncError, TransportError
from cinegen.utils.logging_setup import setup_logger
from cinegen.utils.retry_transport import HttpRequest, RetryTransport

from .models import FILENAME_PREFIX, ProjectRecord, filename_prefix_for, project_filename

logger = setup_logger(__name__)


def _snapshot_bytes(project: ProjectRecord) -> bytes:
    return json.dumps(project.to_snapshot(), ensure_ascii=False, indent=2).encode("utf-8")


class CloudBackend:
    """Upload/list/delete project snapshots for one cloud provider."""

    provider: CloudProvider

    def __init__(self, credentials: CredentialStore, transport: Optional[RetryTransport] = None):
        self.credentials = credentials
        self.transport = transport or RetryTransport()

    def _auth_headers(self) -> Dict[str, str]:
        session = self.credentials.require_session(self.provider)
        return {"Authorization": f"Bearer {session.access_token}"}

    def list_projects(self) -> List[ProjectRecord]:
        raise NotImplementedError

    def upload(self, project: ProjectRecord) -> str:
        raise NotImplementedError

    def delete(self, project_id: str) -> bool:
        raise NotImplementedError

    def revoke(self, access_token: str) -> None:
        pass


class GoogleDriveBackend(CloudBackend):
    provider = CloudProvider.GOOGLE

    API_URL = "https://www.googleapis.com/drive/v3/files"
    UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
    REVOKE_URL = "https://oauth2.googleapis.com/revoke"

    def __init__(self, credentials: CredentialStore, transport: Optional[RetryTransport] = None):
        super().__init__(credentials, transport)
        # Drive file ids whose content the last listing downloaded; only these may be overwritten
        self._read_file_ids: Set[str] = set()

    def _list_files(self, name_contains: str) -> List[Dict]:
        headers = self._auth_headers()
        files: List[Dict] = []
        page_token = None
        while True:
            params = {
                "spaces": "appDataFolder",
                "q": f"name contains '{name_contains}' and mimeType='application/json' and trashed=false",
                "fields": "nextPageToken, files(id, name, createdTime, modifiedTime)",
                "pageSize": 1000,
            }
            if page_token:
                params["pageToken"] = page_token
            data = self.transport.send_json(HttpRequest(method="GET", url=self.API_URL, headers=headers, params=params))
            files.extend(data.get("files") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return files

    def _find_file_id(self, project_id: str) -> Optional[str]:
        prefix = filename_prefix_for(project_id)
        matches = [f for f in self._list_files(prefix) if f.get("name", "").startswith(prefix)]
        if not matches:
            return None
        matches.sort(key=lambda f: f.get("modifiedTime") or "", reverse=True)
        return matches[0]["id"]

    def list_projects(self) -> List[ProjectRecord]:
        headers = self._auth_headers()
        projects: List[ProjectRecord] = []
        self._read_file_ids = set()
        for file in self._list_files(FILENAME_PREFIX.rstrip("_")):
            try:
                content = self.transport.send_json(
                    HttpRequest(method="GET", url=f"{self.API_URL}/{file['id']}", headers=headers, params={"alt": "media"})
                )
            except TransportError as exc:
                logger.warning(f"Skipping Drive file {file.get('name')} that could not be downloaded: {exc}")
                continue
            # Downloaded but unparsable content is safe to replace.
            self._read_file_ids.add(file["id"])
            try:
                projects.append(ProjectRecord.from_snapshot(content))
            except ValueError as exc:
                logger.warning(f"Skipping unreadable Drive file {file.get('name')}: {exc}")
        logger.info(f"Fetched {len(projects)} project(s) from Google Drive")
        return projects

    def _multipart(self, metadata: Dict, content: bytes) -> Tuple[bytes, str]:
        boundary = f"cinegen-{uuid.uuid4().hex}"
        parts = [
            f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode("utf-8"),
            json.dumps(metadata).encode("utf-8"),
            f"\r\n--{boundary}\r\nContent-Type: application/json\r\n\r\n".encode("utf-8"),
            content,
            f"\r\n--{boundary}--".encode("utf-8"),
        ]
        return b"".join(parts), f"multipart/related; boundary={boundary}"

    def upload(self, project: ProjectRecord) -> str:
        headers = self._auth_headers()
        filename = project_filename(project)
        file_id = self._find_file_id(project.id)
        if file_id and file_id not in self._read_file_ids:
            raise SyncError(f"Drive copy of project {project.id} was not read in this pass; not overwriting it")
        if file_id:
            body, content_type = self._multipart({"name": filename}, _snapshot_bytes(project))
            request = HttpRequest(
                method="PATCH",
                url=f"{self.UPLOAD_URL}/{file_id}",
                headers={**headers, "Content-Type": content_type},
                params={"uploadType": "multipart", "fields": "id"},
                data=body,
            )
        else:
            metadata = {"name": filename, "mimeType": "application/json", "parents": ["appDataFolder"]}
            body, content_type = self._multipart(metadata, _snapshot_bytes(project))
            request = HttpRequest(
                method="POST",
                url=self.UPLOAD_URL,
                headers={**headers, "Content-Type": content_type},
                params={"uploadType": "multipart", "fields": "id"},
                data=body,
            )
        data = self.transport.send_json(request)
        uploaded_id = data.get("id") or file_id or ""
        if uploaded_id:
            self._read_file_ids.add(uploaded_id)
        logger.info(f"Uploaded {filename} to Google Drive: {uploaded_id}")
        return uploaded_id

    def delete(self, project_id: str) -> bool:
        headers = self._auth_headers()
        file_id = self._find_file_id(project_id)
        if not file_id:
            return False
        self.transport.send(HttpRequest(method="DELETE", url=f"{self.API_URL}/{file_id}", headers=headers))
        logger.info(f"Deleted project {project_id} from Google Drive")
        return True

    def revoke(self, access_token: str) -> None:
        self.transport.send(
            HttpRequest(
                method="POST",
                url=self.REVOKE_URL,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                params={"token": access_token},
            )
        )


class OneDriveBackend(CloudBackend):
    provider = CloudProvider.ONEDRIVE

    GRAPH_URL = "https://graph.microsoft.com/v1.0/me/drive"
    FOLDER = "CineGen"

    def __init__(self, credentials: CredentialStore, transport: Optional[RetryTransport] = None):
        super().__init__(credentials, transport)
        # project id -> (item id, file name), refreshed by list_projects
        self._items: Dict[str, Tuple[str, str]] = {}
        # file names whose content the last listing downloaded; only these may be replaced
        self._read_names: Set[str] = set()

    def _children(self) -> List[Dict]:
        headers = self._auth_headers()
        url = f"{self.GRAPH_URL}/root:/{self.FOLDER}:/children"
        items: List[Dict] = []
        while url:
            try:
                data = self.transport.send_json(HttpRequest(method="GET", url=url, headers=headers))
            except TransportError as exc:
                if exc.status_code == 404:
                    # Folder is created by the first upload.
                    return []
                raise
            items.extend(data.get("value") or [])
            url = data.get("@odata.nextLink")
        return items

    def list_projects(self) -> List[ProjectRecord]:
        headers = self._auth_headers()
        projects: List[ProjectRecord] = []
        self._items = {}
        self._read_names = set()
        for item in self._children():
            name = item.get("name") or ""
            if not name.endswith(".json") or not name.startswith(FILENAME_PREFIX):
                continue
            download_url = item.get("@microsoft.graph.downloadUrl")
            if not download_url:
                continue
            try:
                content = self.transport.send_json(HttpRequest(method="GET", url=download_url, headers=headers))
            except TransportError as exc:
                logger.warning(f"Skipping OneDrive file {name} that could not be downloaded: {exc}")
                continue
            self._read_names.add(name)
            try:
                project = ProjectRecord.from_snapshot(content)
            except ValueError as exc:
                logger.warning(f"Skipping unreadable OneDrive file {name}: {exc}")
                continue
            projects.append(project)
            self._items[project.id] = (item.get("id"), name)
        logger.info(f"Fetched {len(projects)} project(s) from OneDrive")
        return projects

    def upload(self, project: ProjectRecord) -> str:
        headers = self._auth_headers()
        filename = project_filename(project)
        url = f"{self.GRAPH_URL}/root:/{self.FOLDER}/{quote(filename)}:/content"
        # An unread file of the same name may be newer than this copy: let Graph refuse with 409.
        conflict = "replace" if filename in self._read_names else "fail"
        data = self.transport.send_json(
            HttpRequest(
                method="PUT",
                url=url,
                headers={**headers, "Content-Type": "application/json"},
                params={"@microsoft.graph.conflictBehavior": conflict},
                data=_snapshot_bytes(project),
            )
        )
        item_id = data.get("id") or ""
        previous = self._items.get(project.id)
        if previous and previous[1] != filename and previous[0]:
            # Title changed: the old file would shadow the new one on the next listing.
            self.transport.send(HttpRequest(method="DELETE", url=f"{self.GRAPH_URL}/items/{previous[0]}", headers=headers))
        self._items[project.id] = (item_id, filename)
        self._read_names.add(filename)
        logger.info(f"Uploaded {filename} to OneDrive: {item_id}")
        return item_id

    def delete(self, project_id: str) -> bool:
        if project_id not in self._items:
            self.list_projects()
        entry = self._items.get(project_id)
        if not entry:
            return False
        headers = self._auth_headers()
        self.transport.send(HttpRequest(method="DELETE", url=f"{self.GRAPH_URL}/items/{entry[0]}", headers=headers))
        self._items.pop(project_id, None)
        logger.info(f"Deleted project {project_id} from OneDrive")
        return True


BACKENDS = {
    CloudProvider.GOOGLE: GoogleDriveBackend,
    CloudProvider.ONEDRIVE: OneDriveBackend,
}
