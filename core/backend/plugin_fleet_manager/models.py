"""
Data Model

Records persisted by the registry plus the value types exchanged with
the marketplace and remote file collaborators.
"""

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Dict, Optional

from .config import SOURCE_MANUAL, UNKNOWN_VERSION

# Bulk update job states
STATUS_RUNNING = "running"
STATUS_PAUSED_RATE_LIMIT = "paused_rate_limit"
STATUS_COMPLETED = "completed"
STATUS_COMPLETED_WITH_ERRORS = "completed_with_errors"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_COMPLETED_WITH_ERRORS)


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class Record:
    """Mixin for dataclasses stored as JSON rows"""

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict):
        # Ignore unknown keys so older state files still load
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class Server(Record):
    name: str
    identifier: str
    uuid: str = ""
    path: Optional[str] = None
    id: str = field(default_factory=new_id)


@dataclass
class Plugin(Record):
    server_id: str
    filename: str
    name: str
    current_version: str = UNKNOWN_VERSION
    latest_version: Optional[str] = None
    source_type: str = SOURCE_MANUAL
    source_id: Optional[str] = None
    is_managed: bool = False
    last_checked: Optional[str] = None
    created_at: str = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    @property
    def is_update_eligible(self) -> bool:
        """Managed, linked, and a known latest version that differs from current"""
        return (
            self.is_managed
            and self.source_id is not None
            and self.latest_version is not None
            and self.latest_version != UNKNOWN_VERSION
            and self.latest_version != self.current_version
        )


@dataclass
class PluginBackup(Record):
    plugin_id: str
    version: str
    file_path: str
    file_size: int = 0
    created_at: str = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


@dataclass
class BulkUpdateProgress(Record):
    server_id: str
    total: int
    completed: int = 0
    failed: int = 0
    status: str = STATUS_RUNNING
    current_plugin: Optional[str] = None
    retry_after: Optional[int] = None
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


@dataclass
class CatalogEntry:
    """A marketplace search or hash lookup result"""

    id: str
    name: str
    source_type: str
    source_url: str = ""
    description: str = ""
    download_count: int = 0
    author: str = "Unknown"
    version: Optional[str] = None
    supported_versions: Optional[str] = None


@dataclass
class RemoteFile:
    name: str
    size: int = 0
    is_file: bool = True
