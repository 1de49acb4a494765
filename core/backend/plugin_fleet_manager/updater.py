"""
Plugin Updater

Checks managed plugins for new versions and installs them one at a time,
backing up the installed JAR first.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from .api_clients import MarketplaceResolver
from .config import (
    PLUGINS_DIRECTORY,
    SOURCE_CUSTOM,
    SOURCE_MANUAL,
    SOURCE_TYPES,
    UNKNOWN_VERSION,
)
from .errors import FatalError, PreconditionFailedError
from .file_access import FileAccess
from .models import Plugin, utcnow
from .notifications import NotificationSink, update_success
from .registry import PluginRegistry
from .version_store import VersionStore

logger = logging.getLogger(__name__)


class PluginUpdater:
    """Single-plugin update pipeline"""

    def __init__(self, registry: PluginRegistry, file_access: FileAccess,
                 resolver: MarketplaceResolver, versions: VersionStore,
                 notifications: NotificationSink):
        self.registry = registry
        self.file_access = file_access
        self.resolver = resolver
        self.versions = versions
        self.notifications = notifications

    def check_updates(self, server_id: str) -> List[Dict]:
        """
        Check all managed plugins on a server for updates

        Args:
            server_id: Server to check

        Returns:
            List of {name, current, latest} for every plugin whose latest version resolved
        """
        server = self.registry.get_server(server_id)
        plugins = self.registry.list_plugins(server.id, managed_only=True)

        logger.info("=" * 70)
        logger.info(f"Checking {len(plugins)} managed plugin(s) on {server.name}...")
        logger.info("=" * 70)

        updates = []

        for plugin in plugins:
            logger.info(f"\nChecking: {plugin.name} ({plugin.source_type} ID: {plugin.source_id})")

            try:
                latest_version = self.resolver.get_latest_version(plugin.source_type, plugin.source_id)
            except Exception as e:
                logger.warning(f"  ⚠ Version lookup failed for {plugin.name}: {e}")
                continue

            if not latest_version:
                logger.warning("  Could not fetch latest version")
                continue

            logger.info(f"  Current version: {plugin.current_version}")
            logger.info(f"  Latest version: {latest_version}")

            self.registry.update_plugin(plugin.id, latest_version=latest_version,
                                        last_checked=utcnow())

            if latest_version != plugin.current_version:
                logger.info(f"  → Update available: {plugin.current_version} → {latest_version}")
            else:
                logger.info("  ✓ Already up to date")

            updates.append({
                "name": plugin.name,
                "current": plugin.current_version,
                "latest": latest_version,
            })

        return updates

    def install_update(self, plugin_id: str) -> Plugin:
        """
        Install the latest version of a plugin over the existing file

        Args:
            plugin_id: Plugin to update

        Returns:
            The updated Plugin

        Raises:
            NotFoundError: Plugin or server missing
            PreconditionFailedError: No linked source or no known latest version
            FatalError: The marketplace has no download for the plugin
        """
        plugin = self.registry.get_plugin(plugin_id)

        if not plugin.source_id:
            raise PreconditionFailedError(f"Plugin {plugin.name} has no source linked")
        if not plugin.latest_version:
            raise PreconditionFailedError(f"No update available for {plugin.name}")

        server = self.registry.get_server(plugin.server_id)

        # Backup before updating; a failed backup never blocks the update
        try:
            logger.info(f"Backing up {plugin.name} before update...")
            self.versions.backup(plugin.id)
        except Exception as e:
            logger.warning(f"⚠ Backup failed for {plugin.name}: {e}")

        download_url = self.resolver.get_download_url(plugin.source_type, plugin.source_id)
        if not download_url:
            raise FatalError(f"Could not get download URL for {plugin.name} from {plugin.source_type}")

        logger.info(f"Installing update for {plugin.name}: {plugin.current_version} → {plugin.latest_version}")
        logger.info(f"  URL: {download_url}")

        self.file_access.fetch_to_server(server, download_url, PLUGINS_DIRECTORY, plugin.filename)

        updated = self.registry.update_plugin(plugin.id, current_version=plugin.latest_version,
                                              last_checked=utcnow())
        logger.info(f"  ✓ {plugin.name} updated on {server.name}")

        self.notifications.publish(update_success(
            server.id, server.name, plugin.name, plugin.current_version, plugin.latest_version))

        return updated

    def install_plugin(self, server_id: str, source_type: str, source_id: str,
                       download_url: Optional[str] = None) -> Plugin:
        """
        Install a plugin from a marketplace onto a server

        Args:
            server_id: Target server
            source_type: 'spigot' or 'modrinth'
            source_id: Marketplace identifier
            download_url: Explicit URL to use instead of resolving one

        Returns:
            The registered, managed Plugin
        """
        server = self.registry.get_server(server_id)

        version = self.resolver.get_latest_version(source_type, source_id) or UNKNOWN_VERSION
        download_url = download_url or self.resolver.get_download_url(source_type, source_id)
        if not download_url:
            raise FatalError(f"Could not resolve download URL for {source_type}:{source_id}")

        name = f"{source_type.capitalize()}-{source_id}"
        filename = f"{name}.jar"

        logger.info(f"Installing {filename} to {server.name} from {download_url}")
        self.file_access.fetch_to_server(server, download_url, PLUGINS_DIRECTORY, filename)

        linked = {
            "current_version": version,
            "latest_version": version,
            "source_type": source_type,
            "source_id": source_id,
            "is_managed": True,
            "last_checked": utcnow(),
        }
        return self.registry.upsert_plugin(server.id, filename, create={"name": name, **linked},
                                           update=linked)

    def install_local_plugin(self, server_id: str, jar_path: Path, version: str,
                             name: Optional[str] = None) -> Plugin:
        """
        Deploy an in-house JAR from local disk to a server

        The plugin is registered as a managed 'custom' plugin keyed on its
        name, so later deploys of the same plugin replace the entry.

        Args:
            server_id: Target server
            jar_path: Local JAR file
            version: Version being deployed
            name: Plugin name (defaults to the filename without extension)

        Returns:
            The registered Plugin

        Raises:
            PreconditionFailedError: JAR missing on local disk
        """
        jar_path = Path(jar_path)
        if not jar_path.is_file():
            raise PreconditionFailedError(f"Plugin file not found at {jar_path}")

        server = self.registry.get_server(server_id)
        name = name or jar_path.stem

        logger.info(f"Deploying custom plugin {name} {version} to {server.name}")
        self.file_access.upload_local_bytes(server, jar_path.read_bytes(),
                                            jar_path.name, PLUGINS_DIRECTORY)

        deployed = {
            "current_version": version,
            "latest_version": version,
            "source_type": SOURCE_CUSTOM,
            "source_id": name,
            "is_managed": True,
        }
        existing = next((p for p in self.registry.list_plugins(server.id)
                         if p.name == name or p.filename == jar_path.name), None)
        if existing:
            return self.registry.update_plugin(existing.id, filename=jar_path.name, **deployed)

        return self.registry.upsert_plugin(server.id, jar_path.name, create={"name": name, **deployed})

    def link_plugin(self, plugin_id: str, source_type: str,
                    source_id: Optional[str] = None) -> Plugin:
        """
        Link a plugin to a marketplace entry, or unlink it with source_type 'manual'
        """
        if source_type not in SOURCE_TYPES:
            raise PreconditionFailedError(f"Unknown source type: {source_type}")

        if source_type == SOURCE_MANUAL:
            return self.registry.update_plugin(plugin_id, source_type=SOURCE_MANUAL,
                                               source_id=None, is_managed=False)

        if not source_id:
            raise PreconditionFailedError(f"Source type {source_type} needs a source id")

        return self.registry.update_plugin(plugin_id, source_type=source_type,
                                           source_id=source_id, is_managed=True)

    def delete_plugin(self, plugin_id: str):
        """Remove a plugin's JAR from the server and forget it"""
        plugin = self.registry.get_plugin(plugin_id)
        server = self.registry.get_server(plugin.server_id)

        logger.info(f"Deleting plugin {plugin.filename} from {server.name}")

        try:
            self.file_access.delete_file(server, f"/{PLUGINS_DIRECTORY}/{plugin.filename}")
        except Exception as e:
            logger.warning(f"⚠ Failed to delete {plugin.filename} on {server.name}: {e}")

        self.registry.delete_plugin(plugin.id)
