"""
Application Wiring

Builds every component once from configuration and hands each one its
collaborators explicitly.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from .api_clients import MarketplaceResolver, ModrinthAPIClient, SpigetAPIClient, create_session
from .bulk import BulkUpdateOrchestrator
from .file_access import FileAccess
from .notifications import LoggingNotificationSink, NotificationSink
from .pterodactyl import PterodactylClient
from .registry import PluginRegistry
from .scanner import PluginScanner
from .tasks import TaskRunner
from .updater import PluginUpdater
from .version_store import VersionStore

logger = logging.getLogger(__name__)


@dataclass
class PluginFleet:
    registry: PluginRegistry
    file_access: FileAccess
    resolver: MarketplaceResolver
    versions: VersionStore
    scanner: PluginScanner
    updater: PluginUpdater
    orchestrator: BulkUpdateOrchestrator
    tasks: TaskRunner
    notifications: NotificationSink


def build_fleet(config: Dict, notifications: Optional[NotificationSink] = None) -> PluginFleet:
    """
    Create all components from a loaded configuration

    Args:
        config: Dict returned by config_loader.load_config()
        notifications: Outbound sink (defaults to logging every event)

    Returns:
        PluginFleet with every component wired together
    """
    notifications = notifications or LoggingNotificationSink()

    paths = config['paths']
    registry = PluginRegistry(Path(paths['state_file']).expanduser())

    for name, server_config in (config.get('servers') or {}).items():
        registry.register_server(
            name=name,
            identifier=server_config['identifier'],
            uuid=server_config.get('uuid', ''),
            path=server_config.get('path'),
        )

    ptero_config = config.get('pterodactyl') or {}
    pterodactyl = None
    if ptero_config.get('panel_url') and ptero_config.get('api_key'):
        pterodactyl = PterodactylClient(ptero_config['panel_url'], ptero_config['api_key'])

    access_config = config['file_access']
    file_access = FileAccess(mode=access_config['mode'],
                             volumes_path=access_config['volumes_path'],
                             pterodactyl=pterodactyl)

    market = config['marketplace']
    session = create_session(market['user_agent'])
    resolver = MarketplaceResolver(
        modrinth=ModrinthAPIClient(session=session, timeout=market['timeout']),
        spiget=SpigetAPIClient(session=session, timeout=market['timeout']),
    )

    versions = VersionStore(registry, file_access, Path(paths['versions_dir']).expanduser())
    scanner = PluginScanner(registry, file_access, resolver, notifications,
                            extensions=config['scan']['extensions'])
    updater = PluginUpdater(registry, file_access, resolver, versions, notifications)

    bulk = config['bulk_update']
    orchestrator = BulkUpdateOrchestrator(
        registry, updater, notifications,
        delay_seconds=bulk['delay_seconds'],
        retry_delay_seconds=bulk['retry_delay_seconds'],
        max_attempts=bulk['max_attempts'],
    )

    logger.debug(f"Plugin fleet ready: {len(registry.list_servers())} server(s), "
                 f"file access mode '{file_access.mode}'")

    return PluginFleet(
        registry=registry,
        file_access=file_access,
        resolver=resolver,
        versions=versions,
        scanner=scanner,
        updater=updater,
        orchestrator=orchestrator,
        tasks=TaskRunner(registry, resolver, scanner, updater, orchestrator, versions),
        notifications=notifications,
    )
