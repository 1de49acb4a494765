"""
Plugin Scanner

Identifies the JARs installed on a server. The quick scan only reconciles
filenames with the registry; the deep scan hashes every JAR and looks it
up in the marketplaces, falling back to matching on the filename.
"""

import hashlib
import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .api_clients import MarketplaceResolver
from .config import (
    ARCHIVE_EXTENSIONS,
    PLUGINS_DIRECTORY,
    SOURCE_MANUAL,
    UNKNOWN_VERSION,
)
from .file_access import FileAccess
from .models import CatalogEntry, Plugin, RemoteFile, utcnow
from .notifications import NotificationSink, scan_completed, scan_progress
from .registry import PluginRegistry

logger = logging.getLogger(__name__)

DUPLICATE_COUNTER = re.compile(r'\(\d+\)')
NAME_VERSION = re.compile(r'^([a-zA-Z0-9\s\-_]+?)[-_\s]v?(\d+\.\d+.*)$')

# Minimum candidate length before a catalog search is attempted
MIN_SEARCH_LENGTH = 3
# Minimum length of the contained name for a substring match
MIN_SUBSTRING_LENGTH = 6


def strip_extension(filename: str, extensions: Sequence[str] = ARCHIVE_EXTENSIONS) -> str:
    for ext in extensions:
        if filename.lower().endswith(ext):
            return filename[:-len(ext)]
    return filename


def parse_filename(filename: str) -> Tuple[str, Optional[str]]:
    """
    Guess plugin name and version from a JAR filename

    'EssentialsX-2.20.1.jar' -> ('EssentialsX', '2.20.1')
    'LuckPerms (1).jar'      -> ('LuckPerms', None)

    Args:
        filename: JAR filename

    Returns:
        Tuple of (candidate name, version or None)
    """
    clean = DUPLICATE_COUNTER.sub('', strip_extension(filename)).strip()

    match = NAME_VERSION.match(clean)
    if match:
        return re.sub(r'[-_]', ' ', match.group(1)).strip(), match.group(2).strip()

    return re.sub(r'[-_]', ' ', clean).strip(), None


def find_best_match(results: List[CatalogEntry], name: str) -> Optional[CatalogEntry]:
    """
    Pick the catalog entry matching a candidate name

    Exact (case-insensitive) names win; otherwise the first entry where one
    name contains the other and the contained name is long enough.
    """
    if not results:
        return None

    target = name.lower()

    for entry in results:
        if entry.name.lower() == target:
            return entry

    for entry in results:
        candidate = entry.name.lower()
        if len(target) >= MIN_SUBSTRING_LENGTH and target in candidate:
            return entry
        if len(candidate) >= MIN_SUBSTRING_LENGTH and candidate in target:
            return entry

    return None


def hash_chunks(chunks: Iterable[bytes]) -> Tuple[str, str]:
    """Compute SHA-1 and SHA-512 over the same byte stream in one pass"""
    sha1 = hashlib.sha1()
    sha512 = hashlib.sha512()
    for chunk in chunks:
        sha1.update(chunk)
        sha512.update(chunk)
    return sha1.hexdigest(), sha512.hexdigest()


class PluginScanner:
    """Builds registry entries from a server's plugins directory"""

    def __init__(self, registry: PluginRegistry, file_access: FileAccess,
                 resolver: MarketplaceResolver, notifications: NotificationSink,
                 extensions: Sequence[str] = ARCHIVE_EXTENSIONS):
        self.registry = registry
        self.file_access = file_access
        self.resolver = resolver
        self.notifications = notifications
        self.extensions = tuple(ext.lower() for ext in extensions)

    def list_archives(self, server) -> List[RemoteFile]:
        files = self.file_access.list_files(server, PLUGINS_DIRECTORY)
        return [f for f in files if f.is_file and f.name.lower().endswith(self.extensions)]

    def quick_scan(self, server_id: str) -> List[Plugin]:
        """
        Register every JAR in the plugins directory

        New files become manual, unmanaged plugins with an unknown version.
        Existing entries are left as they are.
        """
        server = self.registry.get_server(server_id)
        archives = self.list_archives(server)
        logger.info(f"Quick scan of {server.name}: {len(archives)} plugin file(s)")

        return [
            self.registry.upsert_plugin(server.id, archive.name, create={
                "name": strip_extension(archive.name, self.extensions),
                "current_version": UNKNOWN_VERSION,
                "source_type": SOURCE_MANUAL,
                "is_managed": False,
            })
            for archive in archives
        ]

    def deep_scan(self, server_id: str) -> Dict:
        """
        Identify every JAR by hash, falling back to a filename search

        Args:
            server_id: Server to scan

        Returns:
            Dict of {total, matched, failed, details}
        """
        server = self.registry.get_server(server_id)
        archives = self.list_archives(server)

        logger.info("=" * 70)
        logger.info(f"Deep scan of {server.name}: {len(archives)} plugin file(s)")
        logger.info("=" * 70)

        results = {"total": len(archives), "matched": 0, "failed": 0, "details": []}

        for index, archive in enumerate(archives, start=1):
            filename = archive.name
            self.notifications.publish(
                scan_progress(server.id, filename, index, len(archives), "processing"))

            try:
                detail = self.identify(server, filename)
            except Exception as e:
                logger.error(f"  ✗ Error processing {filename}: {e}")
                results["failed"] += 1
                results["details"].append({"filename": filename, "error": str(e)})
                status = "failed"
            else:
                results["details"].append(detail)
                if detail["matched"]:
                    results["matched"] += 1
                    status = "matched"
                else:
                    status = "unmatched"

            self.notifications.publish(
                scan_progress(server.id, filename, index, len(archives), status))

        logger.info(f"Deep scan complete: {results['matched']}/{results['total']} matched, "
                    f"{results['failed']} failed")

        self.notifications.publish(scan_completed(
            server.id, results["total"], results["matched"], results["failed"], results["details"]))

        return results

    def identify(self, server, filename: str) -> Dict:
        """Identify one JAR and record the outcome in the registry"""
        logger.info(f"Processing {filename}...")

        chunks = self.file_access.download_as_stream(server, f"/{PLUGINS_DIRECTORY}/{filename}")
        sha1, sha512 = hash_chunks(chunks)
        logger.debug(f"  {filename} SHA1={sha1}")

        match = self.resolver.find_by_hash(sha1, sha512)
        if match:
            logger.info(f"  ✓ Hash matched {filename} -> {match.name} ({match.source_type})")
            version = match.version or UNKNOWN_VERSION
            self._link(server.id, filename, match, current_version=version, latest_version=version)
            return {"filename": filename, "matched": True, "name": match.name, "method": "hash"}

        name, version = parse_filename(filename)
        logger.info(f"  No hash match, trying filename: name={name!r} version={version!r}")

        if len(name) >= MIN_SEARCH_LENGTH:
            best = find_best_match(self.resolver.search_catalog(name), name)
            if best:
                logger.info(f"  ✓ Filename matched {filename} -> {best.name} ({best.source_type})")
                # Latest stays unknown until the next update check resolves it
                self._link(server.id, filename, best,
                           current_version=version or UNKNOWN_VERSION,
                           latest_version=UNKNOWN_VERSION)
                return {"filename": filename, "matched": True, "name": best.name, "method": "filename"}

        logger.info(f"  No match for {filename}, marking as manual")
        self.mark_as_manual(server.id, filename)
        return {"filename": filename, "matched": False}

    def _link(self, server_id: str, filename: str, entry: CatalogEntry,
              current_version: str, latest_version: str) -> Plugin:
        linked = {
            "source_type": entry.source_type,
            "source_id": entry.id,
            "is_managed": True,
            "current_version": current_version,
            "latest_version": latest_version,
            "last_checked": utcnow(),
        }
        return self.registry.upsert_plugin(server_id, filename,
                                           create={"name": entry.name, **linked},
                                           update=linked)

    def mark_as_manual(self, server_id: str, filename: str) -> Plugin:
        manual = {"source_type": SOURCE_MANUAL, "source_id": None, "is_managed": False}
        return self.registry.upsert_plugin(
            server_id, filename,
            create={"name": strip_extension(filename, self.extensions),
                    "current_version": UNKNOWN_VERSION, **manual},
            update=manual,
        )
