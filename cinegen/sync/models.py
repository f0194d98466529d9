import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

FILENAME_PREFIX = "cinegen_project_"


@dataclass
class ProjectRecord:
    id: str
    title: str = ""
    last_modified: int = 0  # epoch ms
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_snapshot(self) -> Dict[str, Any]:
        snapshot = dict(self.payload)
        snapshot.update({"id": self.id, "title": self.title, "lastModified": self.last_modified})
        return snapshot

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "ProjectRecord":
        if not isinstance(data, dict) or not data.get("id"):
            raise ValueError("project snapshot must be an object with an 'id'")
        payload = {k: v for k, v in data.items() if k not in ("id", "title", "lastModified")}
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            last_modified=int(data.get("lastModified") or 0),
            payload=payload,
        )


@dataclass
class SyncReport:
    uploaded: List[str] = field(default_factory=list)
    downloaded: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    remote_fetch_failed: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def transfers(self) -> int:
        return len(self.uploaded) + len(self.downloaded)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uploaded": list(self.uploaded),
            "downloaded": list(self.downloaded),
            "failures": dict(self.failures),
            "remote_fetch_failed": self.remote_fetch_failed,
        }


def project_filename(project: ProjectRecord) -> str:
    # Titles are user text; keep the name path-safe for Drive and Graph.
    title = re.sub(r'[\\/:*?"<>|#%]+', "_", project.title).strip()
    return f"{FILENAME_PREFIX}{project.id}_{title}.json"


def filename_prefix_for(project_id: str) -> str:
    return f"{FILENAME_PREFIX}{project_id}_"
