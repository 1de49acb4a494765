"""
Plugin Registry

JSON-backed store for servers, plugins, plugin backups and bulk update
progress. Every mutation is a single-row write followed by a save.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from .config import SOURCE_MANUAL
from .errors import NotFoundError
from .models import (
    BulkUpdateProgress,
    Plugin,
    PluginBackup,
    Server,
    utcnow,
)

logger = logging.getLogger(__name__)

TABLES = ("servers", "plugins", "plugin_versions", "bulk_update_progress")


class PluginRegistry:
    """Persisted record of every known plugin per server"""

    def __init__(self, state_file: Optional[Path] = None):
        """
        Args:
            state_file: JSON file to persist to (None keeps state in memory only)
        """
        self.state_file = Path(state_file) if state_file else None
        self._lock = threading.RLock()
        self.state = self.load_state()

    def load_state(self) -> Dict[str, Dict[str, Dict]]:
        """Load registry state file"""
        state = {table: {} for table in TABLES}

        if not self.state_file:
            return state

        if not self.state_file.exists():
            logger.info(f"Registry state file not found, starting empty: {self.state_file}")
            return state

        with open(self.state_file) as f:
            loaded = json.load(f)

        for table in TABLES:
            state[table] = loaded.get(table, {})
        return state

    def save_state(self):
        """Save registry state file"""
        if not self.state_file:
            return

        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.state_file.with_suffix(".tmp")
        with open(tmp_file, 'w') as f:
            json.dump(self.state, f, indent=2)
        tmp_file.replace(self.state_file)

    # ------------------------------------------------------------------
    # Servers
    # ------------------------------------------------------------------

    def register_server(self, name: str, identifier: str, uuid: str = "",
                        path: Optional[str] = None) -> Server:
        """
        Register a server, or refresh it if one with the same name exists

        Returns:
            The stored Server
        """
        with self._lock:
            for row in self.state["servers"].values():
                if row["name"] == name:
                    row.update({"identifier": identifier, "uuid": uuid, "path": path})
                    self.save_state()
                    return Server.from_dict(row)

            server = Server(name=name, identifier=identifier, uuid=uuid, path=path)
            self.state["servers"][server.id] = server.to_dict()
            self.save_state()
            logger.debug(f"Registered server {name} ({server.id})")
            return server

    def get_server(self, server_id: str) -> Server:
        with self._lock:
            row = self.state["servers"].get(server_id)
            if row is None:
                raise NotFoundError(f"Server not found: {server_id}")
            return Server.from_dict(row)

    def find_server(self, name_or_id: str) -> Server:
        """Look up a server by id or by configured name"""
        with self._lock:
            if name_or_id in self.state["servers"]:
                return Server.from_dict(self.state["servers"][name_or_id])
            for row in self.state["servers"].values():
                if row["name"] == name_or_id:
                    return Server.from_dict(row)
        raise NotFoundError(f"Server not found: {name_or_id}")

    def list_servers(self) -> List[Server]:
        with self._lock:
            return [Server.from_dict(row) for row in self.state["servers"].values()]

    def remove_server(self, server_id: str):
        """Remove a server with its plugins, backups and jobs"""
        with self._lock:
            self.get_server(server_id)
            for plugin in self.list_plugins(server_id):
                self._delete_plugin_rows(plugin.id)
            for job_id in [j for j, row in self.state["bulk_update_progress"].items()
                           if row["server_id"] == server_id]:
                del self.state["bulk_update_progress"][job_id]
            del self.state["servers"][server_id]
            self.save_state()

    # ------------------------------------------------------------------
    # Plugins
    # ------------------------------------------------------------------

    @staticmethod
    def _enforce_source_invariant(row: Dict):
        if row.get("source_type") == SOURCE_MANUAL:
            row["source_id"] = None

    def _find_plugin_row(self, server_id: str, filename: str) -> Optional[Dict]:
        for row in self.state["plugins"].values():
            if row["server_id"] == server_id and row["filename"] == filename:
                return row
        return None

    def upsert_plugin(self, server_id: str, filename: str, create: Dict,
                      update: Optional[Dict] = None) -> Plugin:
        """
        Insert or update the plugin keyed on (server, filename)

        Args:
            server_id: Owning server
            filename: Filename in the plugins directory
            create: Fields for a new row (server_id/filename are implied)
            update: Fields to change on an existing row (None or {} leaves it untouched)

        Returns:
            The stored Plugin
        """
        with self._lock:
            row = self._find_plugin_row(server_id, filename)

            if row is None:
                plugin = Plugin(server_id=server_id, filename=filename, **create)
                row = plugin.to_dict()
                self._enforce_source_invariant(row)
                self.state["plugins"][plugin.id] = row
                self.save_state()
            elif update:
                row.update(update)
                self._enforce_source_invariant(row)
                self.save_state()

            return Plugin.from_dict(row)

    def get_plugin(self, plugin_id: str) -> Plugin:
        with self._lock:
            row = self.state["plugins"].get(plugin_id)
            if row is None:
                raise NotFoundError(f"Plugin not found: {plugin_id}")
            return Plugin.from_dict(row)

    def list_plugins(self, server_id: str, managed_only: bool = False) -> List[Plugin]:
        """
        List plugins on a server in insertion order

        Args:
            server_id: Server to list
            managed_only: Only managed plugins with a linked source
        """
        with self._lock:
            plugins = [Plugin.from_dict(row) for row in self.state["plugins"].values()
                       if row["server_id"] == server_id]

        if managed_only:
            plugins = [p for p in plugins if p.is_managed and p.source_id is not None]
        return plugins

    def update_plugin(self, plugin_id: str, **changes) -> Plugin:
        with self._lock:
            row = self.state["plugins"].get(plugin_id)
            if row is None:
                raise NotFoundError(f"Plugin not found: {plugin_id}")
            row.update(changes)
            self._enforce_source_invariant(row)
            self.save_state()
            return Plugin.from_dict(row)

    def _delete_plugin_rows(self, plugin_id: str):
        for backup_id in [b for b, row in self.state["plugin_versions"].items()
                          if row["plugin_id"] == plugin_id]:
            del self.state["plugin_versions"][backup_id]
        self.state["plugins"].pop(plugin_id, None)

    def delete_plugin(self, plugin_id: str):
        with self._lock:
            self.get_plugin(plugin_id)
            self._delete_plugin_rows(plugin_id)
            self.save_state()

    # ------------------------------------------------------------------
    # Plugin backups
    # ------------------------------------------------------------------

    def create_backup(self, plugin_id: str, version: str, file_path: str,
                      file_size: int, created_at: Optional[str] = None) -> PluginBackup:
        with self._lock:
            self.get_plugin(plugin_id)
            backup = PluginBackup(plugin_id=plugin_id, version=version,
                                  file_path=file_path, file_size=file_size,
                                  created_at=created_at or utcnow())
            self.state["plugin_versions"][backup.id] = backup.to_dict()
            self.save_state()
            return backup

    def get_backup(self, backup_id: str) -> PluginBackup:
        with self._lock:
            row = self.state["plugin_versions"].get(backup_id)
            if row is None:
                raise NotFoundError(f"Backup not found: {backup_id}")
            return PluginBackup.from_dict(row)

    def find_backup(self, plugin_id: str, version: str) -> Optional[PluginBackup]:
        with self._lock:
            for row in self.state["plugin_versions"].values():
                if row["plugin_id"] == plugin_id and row["version"] == version:
                    return PluginBackup.from_dict(row)
        return None

    def list_backups(self, plugin_id: str) -> List[PluginBackup]:
        """Backups of a plugin, newest first"""
        with self._lock:
            rows = [row for row in self.state["plugin_versions"].values()
                    if row["plugin_id"] == plugin_id]

        # Insertion order breaks ties between equal timestamps
        ordered = sorted(enumerate(rows), key=lambda item: (item[1]["created_at"], item[0]),
                         reverse=True)
        return [PluginBackup.from_dict(row) for _, row in ordered]

    def delete_backup(self, backup_id: str):
        with self._lock:
            if self.state["plugin_versions"].pop(backup_id, None) is None:
                raise NotFoundError(f"Backup not found: {backup_id}")
            self.save_state()

    # ------------------------------------------------------------------
    # Bulk update progress
    # ------------------------------------------------------------------

    def delete_jobs(self, server_id: str) -> int:
        """Delete every bulk update record for a server"""
        with self._lock:
            job_ids = [j for j, row in self.state["bulk_update_progress"].items()
                       if row["server_id"] == server_id]
            for job_id in job_ids:
                del self.state["bulk_update_progress"][job_id]
            if job_ids:
                self.save_state()
            return len(job_ids)

    def create_job(self, server_id: str, total: int, current_plugin: Optional[str] = None) -> BulkUpdateProgress:
        with self._lock:
            job = BulkUpdateProgress(server_id=server_id, total=total, current_plugin=current_plugin)
            self.state["bulk_update_progress"][job.id] = job.to_dict()
            self.save_state()
            return job

    def get_job(self, job_id: str) -> BulkUpdateProgress:
        with self._lock:
            row = self.state["bulk_update_progress"].get(job_id)
            if row is None:
                raise NotFoundError(f"Bulk update job not found: {job_id}")
            return BulkUpdateProgress.from_dict(row)

    def update_job(self, job_id: str, **changes) -> BulkUpdateProgress:
        with self._lock:
            row = self.state["bulk_update_progress"].get(job_id)
            if row is None:
                raise NotFoundError(f"Bulk update job not found: {job_id}")
            row.update(changes)
            row["updated_at"] = utcnow()
            self.save_state()
            return BulkUpdateProgress.from_dict(row)

    def increment_job(self, job_id: str, counter: str) -> BulkUpdateProgress:
        """
        Increment the 'completed' or 'failed' counter of a job

        Raises:
            ValueError: If the increment would exceed the job total
        """
        if counter not in ("completed", "failed"):
            raise ValueError(f"Unknown job counter: {counter}")

        with self._lock:
            job = self.get_job(job_id)
            if job.completed + job.failed >= job.total:
                raise ValueError(f"Job {job_id} already accounts for all {job.total} item(s)")
            return self.update_job(job_id, **{counter: getattr(job, counter) + 1})

    def latest_job(self, server_id: str) -> Optional[BulkUpdateProgress]:
        """Current or most recent bulk update job for a server"""
        with self._lock:
            rows = [row for row in self.state["bulk_update_progress"].values()
                    if row["server_id"] == server_id]

        if not rows:
            return None
        ordered = sorted(enumerate(rows), key=lambda item: (item[1]["created_at"], item[0]))
        return BulkUpdateProgress.from_dict(ordered[-1][1])
