"""
Version Store

Keeps copies of previously installed plugin JARs so a bad update can be
rolled back. Backups are stored per plugin and pruned to the newest few.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from .config import BACKUP_RETENTION, PLUGINS_DIRECTORY, VERSIONS_DIR
from .errors import PreconditionFailedError
from .file_access import FileAccess
from .models import PluginBackup
from .registry import PluginRegistry

logger = logging.getLogger(__name__)


class VersionStore:
    """Backup archive of plugin JARs"""

    def __init__(self, registry: PluginRegistry, file_access: FileAccess,
                 storage_dir: Path = VERSIONS_DIR, retention: int = BACKUP_RETENTION,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            registry: Plugin registry
            file_access: Remote file access for the server volumes
            storage_dir: Local directory holding archived JARs
            retention: Number of backups kept per plugin
            clock: Returns the current UTC time (injectable for tests)
        """
        self.registry = registry
        self.file_access = file_access
        self.storage_dir = Path(storage_dir)
        self.retention = retention
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def plugin_dir(self, plugin_id: str) -> Path:
        return self.storage_dir / plugin_id

    def list_versions(self, plugin_id: str) -> List[PluginBackup]:
        """Backups for a plugin, newest first"""
        self.registry.get_plugin(plugin_id)
        return self.registry.list_backups(plugin_id)

    def backup(self, plugin_id: str) -> Optional[PluginBackup]:
        """
        Archive the plugin's currently installed JAR

        Does nothing if a backup for the current version already exists.

        Args:
            plugin_id: Plugin to back up

        Returns:
            The new backup record, or None if one already existed
        """
        plugin = self.registry.get_plugin(plugin_id)

        existing = self.registry.find_backup(plugin.id, plugin.current_version)
        if existing:
            logger.info(f"Backup already exists for {plugin.name} version {plugin.current_version}. Skipping.")
            return None

        server = self.registry.get_server(plugin.server_id)
        remote_path = f"/{PLUGINS_DIRECTORY}/{plugin.filename}"

        plugin_dir = self.plugin_dir(plugin.id)
        plugin_dir.mkdir(parents=True, exist_ok=True)

        created_at = self.clock()
        local_name = f"{int(created_at.timestamp() * 1000)}-{plugin.filename}"
        local_path = plugin_dir / local_name

        try:
            with open(local_path, 'wb') as f:
                for chunk in self.file_access.download_as_stream(server, remote_path):
                    f.write(chunk)
        except Exception:
            if local_path.exists():
                local_path.unlink()
            raise

        backup = self.registry.create_backup(
            plugin_id=plugin.id,
            version=plugin.current_version,
            file_path=local_name,
            file_size=local_path.stat().st_size,
            created_at=created_at.isoformat(),
        )
        logger.info(f"✓ Backed up {plugin.name} ({plugin.current_version}): {backup.file_size:,} bytes")

        self.enforce_retention(plugin.id)
        return backup

    def enforce_retention(self, plugin_id: str) -> int:
        """
        Delete backups beyond the newest `retention`

        Returns:
            Number of backups deleted
        """
        backups = self.registry.list_backups(plugin_id)
        stale = backups[self.retention:]

        for backup in stale:
            file_path = self.plugin_dir(plugin_id) / backup.file_path
            if file_path.exists():
                file_path.unlink()
            else:
                logger.warning(f"Backup file already missing: {file_path}")

            self.registry.delete_backup(backup.id)
            logger.info(f"Deleted old backup {backup.version} for plugin {plugin_id}")

        return len(stale)

    def restore(self, backup_id: str):
        """
        Put an archived JAR back on the server

        Only current_version changes; latest_version is kept so an older
        restored version still shows as having an update available.

        Args:
            backup_id: Backup to restore

        Raises:
            NotFoundError: Backup record missing
            PreconditionFailedError: Archived file missing on disk
        """
        backup = self.registry.get_backup(backup_id)
        plugin = self.registry.get_plugin(backup.plugin_id)
        server = self.registry.get_server(plugin.server_id)

        local_path = self.plugin_dir(plugin.id) / backup.file_path
        if not local_path.exists():
            raise PreconditionFailedError(f"Backup file not found on disk: {local_path}")

        logger.info(f"Restoring {plugin.name} to version {backup.version}...")

        # Upload under the plugin's real filename, not the archive name
        self.file_access.upload_local_bytes(server, local_path.read_bytes(),
                                            plugin.filename, PLUGINS_DIRECTORY)

        restored = self.registry.update_plugin(plugin.id, current_version=backup.version)
        logger.info(f"✓ Restored {plugin.name} to {backup.version}")
        return restored
