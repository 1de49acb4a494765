"""
Task Runner

Entry point for the work queue: each named task runs one operation to
completion for one server or plugin. The network tasks fan a per-server
task out over every registered server.
"""

import logging
from typing import Any, Callable, Dict

from .api_clients import MarketplaceResolver
from .bulk import BulkUpdateOrchestrator
from .errors import PluginManagerError
from .registry import PluginRegistry
from .scanner import PluginScanner
from .updater import PluginUpdater
from .version_store import VersionStore

logger = logging.getLogger(__name__)

SCAN_PLUGINS = "scan-plugins"
DEEP_SCAN = "deep-scan"
CHECK_UPDATES = "check-updates"
INSTALL_UPDATE = "install-update"
UPDATE_ALL = "update-all"
RESTORE_VERSION = "restore-version"
SCAN_NETWORK = "scan-network"
UPDATE_NETWORK = "update-network"
SEARCH_CATALOG = "search-catalog"
INSTALL_PLUGIN = "install-plugin"
DEPLOY_CUSTOM = "deploy-custom"
LINK_PLUGIN = "link-plugin"
DELETE_PLUGIN = "delete-plugin"


def _summarize(task: str, result: Any) -> str:
    if task in (SCAN_PLUGINS, SEARCH_CATALOG):
        return f"Found: {len(result)}"
    if task == DEEP_SCAN:
        return f"Matched: {result['matched']}/{result['total']}, Failed: {result['failed']}"
    if task == CHECK_UPDATES:
        return f"Checked: {len(result)}"
    if task == UPDATE_ALL:
        return f"Updated: {result['success']}, Failed: {result['failed']}"
    if task in (SCAN_NETWORK, UPDATE_NETWORK):
        failed = sum(1 for r in result.values() if isinstance(r, dict) and "error" in r)
        return f"Servers: {len(result)}, Failed: {failed}"
    return "OK"


class TaskRunner:
    """Dispatches queued task payloads to the plugin components"""

    def __init__(self, registry: PluginRegistry, resolver: MarketplaceResolver,
                 scanner: PluginScanner, updater: PluginUpdater,
                 orchestrator: BulkUpdateOrchestrator, versions: VersionStore):
        self.registry = registry
        self.handlers: Dict[str, Callable[[Dict], Any]] = {
            SCAN_PLUGINS: lambda data: scanner.quick_scan(data["serverId"]),
            DEEP_SCAN: lambda data: scanner.deep_scan(data["serverId"]),
            CHECK_UPDATES: lambda data: updater.check_updates(data["serverId"]),
            INSTALL_UPDATE: lambda data: updater.install_update(data["pluginId"]),
            UPDATE_ALL: lambda data: orchestrator.install_all_updates(data["serverId"]),
            RESTORE_VERSION: lambda data: versions.restore(data["backupId"]),
            SCAN_NETWORK: lambda data: self.run_on_all_servers(SCAN_PLUGINS),
            UPDATE_NETWORK: lambda data: self.run_on_all_servers(UPDATE_ALL),
            SEARCH_CATALOG: lambda data: resolver.search_catalog(data["query"]),
            INSTALL_PLUGIN: lambda data: updater.install_plugin(
                data["serverId"], data["sourceType"], data["sourceId"], data.get("downloadUrl")),
            DEPLOY_CUSTOM: lambda data: updater.install_local_plugin(
                data["serverId"], data["path"], data["version"], data.get("name")),
            LINK_PLUGIN: lambda data: updater.link_plugin(
                data["pluginId"], data["sourceType"], data.get("sourceId")),
            DELETE_PLUGIN: lambda data: updater.delete_plugin(data["pluginId"]),
        }

    def run(self, task: str, data: Dict) -> Any:
        """
        Run one task to completion

        Args:
            task: Task name (e.g. 'update-all')
            data: Task payload ({'serverId': ...}, {'pluginId': ...} or {'backupId': ...})

        Returns:
            The operation's result

        Raises:
            PluginManagerError: Unknown task name or a failure inside the operation
        """
        handler = self.handlers.get(task)
        if handler is None:
            raise PluginManagerError(f"Unknown task: {task}")

        logger.info(f"[Queue] Processing {task} {data}")
        try:
            result = handler(data)
        except Exception as e:
            logger.error(f"[Queue] Failed {task} {data}: {e}")
            raise

        logger.info(f"[Queue] Completed {task} {data}. {_summarize(task, result)}")
        return result

    def run_on_all_servers(self, task: str) -> Dict[str, Any]:
        """
        Run a per-server task for every registered server

        A failure on one server is recorded and does not stop the others.

        Returns:
            Dict of server name -> task result, or {'error': message}
        """
        results = {}
        for server in self.registry.list_servers():
            try:
                results[server.name] = self.run(task, {"serverId": server.id})
            except Exception as e:
                results[server.name] = {"error": str(e)}
        return results
