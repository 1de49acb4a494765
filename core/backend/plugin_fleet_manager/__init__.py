"""
Plugin Fleet Manager

Plugin identification, versioned updates and rate-limit aware bulk
updates for game servers hosted on Pterodactyl.

Version: 1.0.0
"""

__version__ = "1.0.0"
__description__ = "Plugin lifecycle and bulk update manager for game server fleets"

from .app import PluginFleet, build_fleet
from .bulk import BulkUpdateOrchestrator
from .registry import PluginRegistry
from .scanner import PluginScanner
from .updater import PluginUpdater
from .version_store import VersionStore

__all__ = [
    "BulkUpdateOrchestrator",
    "PluginFleet",
    "PluginRegistry",
    "PluginScanner",
    "PluginUpdater",
    "VersionStore",
    "build_fleet",
]
