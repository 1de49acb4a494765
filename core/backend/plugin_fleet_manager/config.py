"""
Configuration for Plugin Fleet Manager

Defines default paths, marketplace endpoints and update tuning.
"""

from pathlib import Path

# Base directory for local state - overridable through config.yaml 'paths'
BASE_DIR = Path.home() / ".local" / "share" / "plugin-fleet-manager"
STATE_FILE = BASE_DIR / "registry.json"
VERSIONS_DIR = BASE_DIR / "versions"

# API Endpoints
MODRINTH_API = "https://api.modrinth.com/v2"
SPIGET_API = "https://api.spiget.org/v2"
SPIGOT_RESOURCES_URL = "https://www.spigotmc.org/resources"
MODRINTH_PROJECT_URL = "https://modrinth.com/plugin"

USER_AGENT = "PluginFleetManager/1.0.0"
REQUEST_TIMEOUT = 10
DOWNLOAD_TIMEOUT = 60

# Modrinth loaders that can run Bukkit-style plugins
MODRINTH_LOADERS = ["spigot", "paper", "purpur"]
SEARCH_PAGE_SIZE = 9

# Remote file layout
PLUGINS_DIRECTORY = "plugins"
ARCHIVE_EXTENSIONS = (".jar",)
VOLUMES_PATH = "/var/lib/pterodactyl/volumes"

# Source types
SOURCE_MANUAL = "manual"
SOURCE_SPIGOT = "spigot"
SOURCE_MODRINTH = "modrinth"
SOURCE_CUSTOM = "custom"
SOURCE_TYPES = (SOURCE_MANUAL, SOURCE_SPIGOT, SOURCE_MODRINTH, SOURCE_CUSTOM)

UNKNOWN_VERSION = "unknown"

# Bulk update tuning
BULK_UPDATE = {
    "delay_seconds": 10,
    "retry_delay_seconds": 5,
    "max_attempts": 3,
    "default_retry_after": 60,
}

# Version store
BACKUP_RETENTION = 3
HASH_CHUNK_SIZE = 65536
