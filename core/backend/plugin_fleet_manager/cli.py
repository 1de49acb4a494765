"""
Command-Line Interface

Entry point for the plugin-fleet-manager CLI tool.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .app import PluginFleet, build_fleet
from .config_loader import get_config_paths, load_config, save_config, validate_config
from .errors import PluginManagerError
from .models import TERMINAL_STATUSES
from .pterodactyl import PterodactylClient
from .tasks import (
    CHECK_UPDATES,
    DEEP_SCAN,
    DELETE_PLUGIN,
    DEPLOY_CUSTOM,
    INSTALL_PLUGIN,
    INSTALL_UPDATE,
    LINK_PLUGIN,
    RESTORE_VERSION,
    SCAN_NETWORK,
    SCAN_PLUGINS,
    SEARCH_CATALOG,
    UPDATE_ALL,
    UPDATE_NETWORK,
)

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None):
    """Configure logging for CLI"""
    handlers = [logging.StreamHandler()]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def show_plugins(fleet: PluginFleet, server_id: str):
    """Display registered plugins for a server"""
    server = fleet.registry.get_server(server_id)
    plugins = fleet.registry.list_plugins(server.id)

    logger.info("=" * 70)
    logger.info(f"{server.name}: {len(plugins)} plugin(s)")
    logger.info("=" * 70)

    for plugin in sorted(plugins, key=lambda p: p.name.lower()):
        marker = "🔧" if plugin.is_managed else "  "
        update = f" → {plugin.latest_version}" if plugin.is_update_eligible else ""
        logger.info(f"  {marker} {plugin.name} [{plugin.source_type}] {plugin.current_version}{update}"
                    f"  ({plugin.id})")

    logger.info("\n  🔧 = Managed (automatic updates)")


def show_progress(fleet: PluginFleet, server_id: str) -> int:
    progress = fleet.orchestrator.get_progress(server_id)
    if progress is None:
        logger.info("No bulk update has run for this server")
        return 0

    state = "finished" if progress['status'] in TERMINAL_STATUSES else "in progress"
    logger.info(f"Status: {progress['status']} ({state})")
    logger.info(f"  Completed: {progress['completed']}/{progress['total']} (failed: {progress['failed']})")
    if progress['currentPlugin']:
        logger.info(f"  Current plugin: {progress['currentPlugin']}")
    if progress['retryAfter'] is not None:
        logger.info(f"  Paused for rate limit, retry after {progress['retryAfter']}s")
    logger.info(f"  Updated at: {progress['updatedAt']}")
    return 0


def show_versions(fleet: PluginFleet, plugin_id: str) -> int:
    plugin = fleet.registry.get_plugin(plugin_id)
    backups = fleet.versions.list_versions(plugin.id)

    logger.info(f"{plugin.name}: current {plugin.current_version}, {len(backups)} backup(s)")
    for backup in backups:
        logger.info(f"  {backup.version}  {backup.file_size:,} bytes  {backup.created_at}  ({backup.id})")
    return 0


def run_discovery(config: dict, config_path: Optional[Path]) -> int:
    """
    List servers from the Pterodactyl panel and save them to the config

    Returns:
        Exit code (0 = success)
    """
    ptero_config = config.get('pterodactyl') or {}
    if not ptero_config.get('panel_url') or not ptero_config.get('api_key'):
        logger.error("✗ Pterodactyl configuration incomplete ('panel_url' and 'api_key' required)")
        return 1

    client = PterodactylClient(ptero_config['panel_url'], ptero_config['api_key'])
    servers = client.list_servers()

    if not servers:
        logger.warning("⚠ No servers discovered")
        return 1

    discovered = {}
    for server in servers:
        name = server.get('name', '').lower().replace(' ', '-')
        discovered[name] = {
            'identifier': server.get('identifier'),
            'uuid': server.get('uuid', ''),
        }
        logger.info(f"✓ Discovered: {name} ({server.get('identifier')})")

    config['servers'] = discovered

    if not config_path:
        config_path = next((p for p in get_config_paths() if p.exists()), get_config_paths()[0])

    return 0 if save_config(config, config_path) else 1



def parse_source(value: str):
    """Split 'spigot:9089' into ('spigot', '9089'); 'manual' has no id"""
    source_type, _, source_id = value.partition(':')
    return source_type.lower(), source_id or None


def show_search(results) -> int:
    logger.info(f"Found {len(results)} result(s)")
    for entry in results:
        logger.info(f"  {entry.source_type}:{entry.id}  {entry.name} by {entry.author}"
                    f"  ({entry.download_count:,} downloads)")
    return 0


def show_network_results(results: dict) -> int:
    failed = 0
    for server_name, result in results.items():
        if isinstance(result, dict) and "error" in result:
            failed += 1
            logger.error(f"  ✗ {server_name}: {result['error']}")
        elif isinstance(result, dict) and result.get("failed"):
            failed += 1
            logger.warning(f"  ⚠ {server_name}: {result['failed']} plugin(s) failed to update")
        else:
            logger.info(f"  ✓ {server_name}")
    return 1 if failed else 0


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description=f"Plugin Fleet Manager v{__version__} - Plugin scanning and bulk updates for game servers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Register plugin files found on a server (or on every server)
  %(prog)s --server survival --scan
  %(prog)s --all-servers --scan

  # Identify plugins by hash / filename against Modrinth and SpigotMC
  %(prog)s --server survival --deep-scan

  # Check managed plugins for updates, then install them all
  %(prog)s --server survival --check
  %(prog)s --server survival --update-all

  # Find and install a plugin from a marketplace
  %(prog)s --search luckperms
  %(prog)s --server survival --install spigot:28140

  # Deploy an in-house plugin build
  %(prog)s --server survival --deploy build/libs/MyPlugin.jar --deploy-version 1.4.0

  # Roll a plugin back to an earlier version
  %(prog)s --versions PLUGIN_ID
  %(prog)s --restore BACKUP_ID
        """
    )

    parser.add_argument("--discover", action="store_true", help="Discover servers from the Pterodactyl panel into the config")
    parser.add_argument("--server", help="Server name or id (from config)")
    parser.add_argument("--all-servers", action="store_true", help="Run --scan / --update-all on every configured server")
    parser.add_argument("--list", action="store_true", help="List registered plugins")
    parser.add_argument("--scan", action="store_true", help="Quick scan: register plugin files by name")
    parser.add_argument("--deep-scan", action="store_true", help="Deep scan: identify plugins by hash and filename")
    parser.add_argument("--check", action="store_true", help="Check managed plugins for updates")
    parser.add_argument("--update", metavar="PLUGIN_ID", help="Install the available update for one plugin")
    parser.add_argument("--update-all", action="store_true", help="Install all available updates on the server")
    parser.add_argument("--progress", action="store_true", help="Show the latest bulk update progress")
    parser.add_argument("--search", metavar="QUERY", help="Search SpigotMC and Modrinth for plugins")
    parser.add_argument("--install", metavar="SOURCE:ID", help="Install a marketplace plugin (e.g. spigot:28140)")
    parser.add_argument("--deploy", metavar="JAR", type=Path, help="Deploy a local plugin JAR as a custom plugin")
    parser.add_argument("--deploy-version", metavar="VERSION", help="Version of the JAR given to --deploy")
    parser.add_argument("--link", nargs=2, metavar=("PLUGIN_ID", "SOURCE[:ID]"),
                        help="Link a plugin to a marketplace entry, or 'manual' to unlink it")
    parser.add_argument("--delete", metavar="PLUGIN_ID", help="Delete a plugin from its server")
    parser.add_argument("--versions", metavar="PLUGIN_ID", help="List backups of a plugin")
    parser.add_argument("--restore", metavar="BACKUP_ID", help="Restore a plugin backup")
    parser.add_argument("--config", type=Path, help="Path to config file (overrides default search paths)")
    parser.add_argument("--log-file", type=Path, help="Also write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    args = parser.parse_args()
    setup_logging(args.verbose, args.log_file)

    if args.deploy and not args.deploy_version:
        parser.error("--deploy requires --deploy-version")

    try:
        config = load_config(args.config)

        if args.discover:
            return run_discovery(config, args.config)

        is_valid, errors = validate_config(config)
        if not is_valid:
            logger.error("✗ Configuration validation failed:")
            for error in errors:
                logger.error(f"  - {error}")
            return 1

        fleet = build_fleet(config)

        # Plugin- and backup-level commands
        if args.update:
            fleet.tasks.run(INSTALL_UPDATE, {"pluginId": args.update})
            return 0

        if args.versions:
            return show_versions(fleet, args.versions)

        if args.restore:
            fleet.tasks.run(RESTORE_VERSION, {"backupId": args.restore})
            return 0

        if args.link:
            plugin_id, source = args.link
            source_type, source_id = parse_source(source)
            fleet.tasks.run(LINK_PLUGIN, {"pluginId": plugin_id, "sourceType": source_type,
                                          "sourceId": source_id})
            return 0

        if args.delete:
            fleet.tasks.run(DELETE_PLUGIN, {"pluginId": args.delete})
            return 0

        if args.search:
            return show_search(fleet.tasks.run(SEARCH_CATALOG, {"query": args.search}))

        # Fleet-wide commands
        if args.all_servers:
            if not (args.scan or args.update_all):
                parser.error("--all-servers needs --scan and/or --update-all")
            exit_code = 0
            if args.scan:
                exit_code |= show_network_results(fleet.tasks.run(SCAN_NETWORK, {}))
            if args.update_all:
                exit_code |= show_network_results(fleet.tasks.run(UPDATE_NETWORK, {}))
            return exit_code

        if not args.server:
            parser.error("--server is required for this command")

        server_id = fleet.registry.find_server(args.server).id

        if args.install:
            source_type, source_id = parse_source(args.install)
            if not source_id:
                parser.error("--install expects SOURCE:ID, e.g. spigot:28140")
            fleet.tasks.run(INSTALL_PLUGIN, {"serverId": server_id, "sourceType": source_type,
                                             "sourceId": source_id})
        if args.deploy:
            fleet.tasks.run(DEPLOY_CUSTOM, {"serverId": server_id, "path": str(args.deploy),
                                            "version": args.deploy_version})
        if args.scan:
            fleet.tasks.run(SCAN_PLUGINS, {"serverId": server_id})
        if args.deep_scan:
            fleet.tasks.run(DEEP_SCAN, {"serverId": server_id})
        if args.check:
            updates = fleet.tasks.run(CHECK_UPDATES, {"serverId": server_id})
            for update in updates:
                logger.info(f"  • {update['name']}: {update['current']} → {update['latest']}")
        if args.update_all:
            result = fleet.tasks.run(UPDATE_ALL, {"serverId": server_id})
            if result['failed']:
                return 1
        if args.progress:
            show_progress(fleet, server_id)

        actions = [args.install, args.deploy, args.scan, args.deep_scan, args.check,
                   args.update_all, args.progress]
        if args.list or not any(actions):
            show_plugins(fleet, server_id)

        return 0

    except KeyboardInterrupt:
        logger.info("\n\nInterrupted by user")
        return 130
    except PluginManagerError as e:
        logger.error(f"✗ {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
