import json
import time
from unittest.mock import MagicMock

import pytest

from cinegen.config.credentials import CloudProvider, CredentialStore, OAuthSession
from cinegen.errors import AuthenticationError, SyncError, TransportError
from cinegen.sync.backends import GoogleDriveBackend, OneDriveBackend
from cinegen.sync.models import ProjectRecord
from cinegen.sync.reconcile import reconcile


def _store(provider, expires_in=3600):
    store = CredentialStore()
    store.set_session(provider, OAuthSession(access_token="tok", expires_at=time.time() + expires_in))
    return store


def test_google_list_downloads_each_file():
    transport = MagicMock()
    transport.send_json.side_effect = [
        {"files": [{"id": "f1", "name": "cinegen_project_1_A.json"}, {"id": "f2", "name": "cinegen_project_2_B.json"}]},
        {"id": "1", "title": "A", "lastModified": 10},
        {"id": "2", "title": "B", "lastModified": 20, "shots": []},
    ]
    backend = GoogleDriveBackend(_store(CloudProvider.GOOGLE), transport=transport)
    projects = backend.list_projects()
    assert [(p.id, p.last_modified) for p in projects] == [("1", 10), ("2", 20)]
    list_request = transport.send_json.call_args_list[0].args[0]
    assert list_request.params["spaces"] == "appDataFolder"
    assert list_request.headers["Authorization"] == "Bearer tok"
    assert transport.send_json.call_args_list[1].args[0].params == {"alt": "media"}


def test_google_upload_creates_when_missing():
    transport = MagicMock()
    transport.send_json.side_effect = [{"files": []}, {"id": "new-file"}]
    backend = GoogleDriveBackend(_store(CloudProvider.GOOGLE), transport=transport)
    file_id = backend.upload(ProjectRecord(id="7", title="Trailer", last_modified=5))
    assert file_id == "new-file"
    request = transport.send_json.call_args_list[1].args[0]
    assert request.method == "POST"
    assert request.headers["Content-Type"].startswith("multipart/related")
    assert b'"appDataFolder"' in request.data
    assert b"cinegen_project_7_Trailer.json" in request.data


def test_google_upload_updates_existing_file():
    transport = MagicMock()
    drive_file = {"id": "old", "name": "cinegen_project_7_Trailer.json", "modifiedTime": "2024-01-01"}
    transport.send_json.side_effect = [
        {"files": [drive_file]},
        {"id": "7", "title": "Trailer", "lastModified": 5},
        {"files": [drive_file]},
        {"id": "old"},
    ]
    backend = GoogleDriveBackend(_store(CloudProvider.GOOGLE), transport=transport)
    backend.list_projects()
    backend.upload(ProjectRecord(id="7", title="Trailer", last_modified=6))
    request = transport.send_json.call_args_list[3].args[0]
    assert request.method == "PATCH"
    assert request.url.endswith("/files/old")


def test_google_never_overwrites_a_file_it_did_not_read():
    transport = MagicMock()
    transport.send_json.side_effect = [
        {"files": [{"id": "old", "name": "cinegen_project_7_Trailer.json"}]},
    ]
    backend = GoogleDriveBackend(_store(CloudProvider.GOOGLE), transport=transport)
    with pytest.raises(SyncError):
        backend.upload(ProjectRecord(id="7", title="Trailer", last_modified=6))
    assert transport.send_json.call_count == 1


def test_google_requires_valid_session():
    transport = MagicMock()
    backend = GoogleDriveBackend(_store(CloudProvider.GOOGLE, expires_in=-1), transport=transport)
    with pytest.raises(AuthenticationError):
        backend.list_projects()
    with pytest.raises(AuthenticationError):
        backend.upload(ProjectRecord(id="1"))
    transport.send_json.assert_not_called()


def test_onedrive_session_is_separate_from_google():
    backend = OneDriveBackend(_store(CloudProvider.GOOGLE), transport=MagicMock())
    with pytest.raises(AuthenticationError):
        backend.list_projects()


def test_onedrive_upload_puts_content():
    transport = MagicMock()
    transport.send_json.return_value = {"id": "item-1"}
    backend = OneDriveBackend(_store(CloudProvider.ONEDRIVE), transport=transport)
    item_id = backend.upload(ProjectRecord(id="9", title="Ep 1", last_modified=3))
    assert item_id == "item-1"
    request = transport.send_json.call_args.args[0]
    assert request.method == "PUT"
    assert request.url == "https://graph.microsoft.com/v1.0/me/drive/root:/CineGen/cinegen_project_9_Ep%201.json:/content"
    assert json.loads(request.data)["lastModified"] == 3
    assert request.params == {"@microsoft.graph.conflictBehavior": "fail"}


def test_onedrive_list_fetches_json_children():
    transport = MagicMock()
    transport.send_json.side_effect = [
        {
            "value": [
                {"id": "i1", "name": "cinegen_project_1_A.json", "@microsoft.graph.downloadUrl": "https://dl/1"},
                {"id": "i2", "name": "notes.txt"},
            ]
        },
        {"id": "1", "title": "A", "lastModified": 11},
    ]
    backend = OneDriveBackend(_store(CloudProvider.ONEDRIVE), transport=transport)
    projects = backend.list_projects()
    assert [p.id for p in projects] == ["1"]
    assert transport.send_json.call_args_list[1].args[0].url == "https://dl/1"


def test_onedrive_missing_folder_lists_empty():
    transport = MagicMock()
    transport.send_json.side_effect = TransportError("HTTP 404", status_code=404)
    backend = OneDriveBackend(_store(CloudProvider.ONEDRIVE), transport=transport)
    assert backend.list_projects() == []


def test_onedrive_rename_removes_previous_file():
    transport = MagicMock()
    transport.send_json.side_effect = [
        {"value": [{"id": "i1", "name": "cinegen_project_1_Old.json", "@microsoft.graph.downloadUrl": "https://dl/1"}]},
        {"id": "1", "title": "Old", "lastModified": 1},
        {"id": "i2"},
    ]
    backend = OneDriveBackend(_store(CloudProvider.ONEDRIVE), transport=transport)
    backend.list_projects()
    backend.upload(ProjectRecord(id="1", title="New", last_modified=2))
    delete_request = transport.send.call_args.args[0]
    assert delete_request.method == "DELETE"
    assert delete_request.url.endswith("/items/i1")


def _drive_transport(files, contents, broken=(), listing_errors=None):
    transport = MagicMock()
    listing_errors = list(listing_errors or [])

    def send_json(request):
        if request.method == "GET" and request.url == GoogleDriveBackend.API_URL:
            if listing_errors:
                raise listing_errors.pop(0)
            name_filter = request.params["q"].split("'")[1]
            return {"files": [f for f in files if name_filter in f["name"]]}
        if request.method == "GET":
            file_id = request.url.rsplit("/", 1)[1]
            if file_id in broken:
                raise TransportError("HTTP 500 from Drive", status_code=500)
            return contents[file_id]
        return {"id": "written"}

    transport.send_json.side_effect = send_json
    return transport


DRIVE_FILES = [
    {"id": "f1", "name": "cinegen_project_1_A.json"},
    {"id": "f2", "name": "cinegen_project_2_B.json"},
]
DRIVE_CONTENTS = {
    "f1": {"id": "1", "title": "A", "lastModified": 10},
    "f2": {"id": "2", "title": "B", "lastModified": 999},
}


def _writes(transport):
    return [c.args[0] for c in transport.send_json.call_args_list if c.args[0].method != "GET"]


def test_google_skips_files_that_fail_to_download():
    transport = _drive_transport(DRIVE_FILES, DRIVE_CONTENTS, broken={"f2"})
    backend = GoogleDriveBackend(_store(CloudProvider.GOOGLE), transport=transport)
    assert [p.id for p in backend.list_projects()] == ["1"]


def test_partial_drive_listing_does_not_clobber_newer_cloud_copy():
    transport = _drive_transport(DRIVE_FILES, DRIVE_CONTENTS, broken={"f2"})
    backend = GoogleDriveBackend(_store(CloudProvider.GOOGLE), transport=transport)
    local = [ProjectRecord(id="1", title="A", last_modified=10), ProjectRecord(id="2", title="B", last_modified=10)]
    downloads = []

    with pytest.raises(SyncError) as info:
        reconcile(local, backend.list_projects, backend.upload, downloads.append)

    report = info.value.report
    assert list(report.failures) == ["2"]
    assert report.remote_fetch_failed is False
    assert _writes(transport) == []
    assert downloads == []


def test_failed_drive_listing_does_not_clobber_existing_files():
    transport = _drive_transport(
        DRIVE_FILES, DRIVE_CONTENTS, listing_errors=[TransportError("HTTP 503", status_code=503)]
    )
    backend = GoogleDriveBackend(_store(CloudProvider.GOOGLE), transport=transport)
    local = [ProjectRecord(id="2", title="B", last_modified=10), ProjectRecord(id="3", title="New", last_modified=1)]

    with pytest.raises(SyncError) as info:
        reconcile(local, backend.list_projects, backend.upload, lambda p: None)

    report = info.value.report
    assert report.remote_fetch_failed is True
    assert report.uploaded == ["3"]
    assert list(report.failures) == ["2"]
    writes = _writes(transport)
    assert [r.method for r in writes] == ["POST"]


def test_onedrive_replaces_only_files_it_has_read():
    transport = MagicMock()
    transport.send_json.side_effect = [
        {"value": [{"id": "i1", "name": "cinegen_project_1_A.json", "@microsoft.graph.downloadUrl": "https://dl/1"}]},
        {"id": "1", "title": "A", "lastModified": 1},
        {"id": "i1"},
        {"id": "i2"},
    ]
    backend = OneDriveBackend(_store(CloudProvider.ONEDRIVE), transport=transport)
    backend.list_projects()
    backend.upload(ProjectRecord(id="1", title="A", last_modified=2))
    backend.upload(ProjectRecord(id="2", title="B", last_modified=2))
    replaced, created = (c.args[0] for c in transport.send_json.call_args_list[2:])
    assert replaced.params == {"@microsoft.graph.conflictBehavior": "replace"}
    assert created.params == {"@microsoft.graph.conflictBehavior": "fail"}


def test_onedrive_skips_files_that_fail_to_download():
    transport = MagicMock()
    transport.send_json.side_effect = [
        {
            "value": [
                {"id": "i1", "name": "cinegen_project_1_A.json", "@microsoft.graph.downloadUrl": "https://dl/1"},
                {"id": "i2", "name": "cinegen_project_2_B.json", "@microsoft.graph.downloadUrl": "https://dl/2"},
            ]
        },
        TransportError("HTTP 500", status_code=500),
        {"id": "2", "title": "B", "lastModified": 4},
    ]
    backend = OneDriveBackend(_store(CloudProvider.ONEDRIVE), transport=transport)
    assert [p.id for p in backend.list_projects()] == ["2"]
