"""
API Clients for Plugin Sources

Handles communication with the Modrinth and Spiget (SpigotMC) APIs and
exposes them behind a single marketplace resolver.
"""

import json
import logging
import threading
from typing import Dict, List, Optional
from urllib.parse import quote

import requests

from .config import (
    MODRINTH_API,
    MODRINTH_LOADERS,
    MODRINTH_PROJECT_URL,
    REQUEST_TIMEOUT,
    SEARCH_PAGE_SIZE,
    SOURCE_MODRINTH,
    SOURCE_SPIGOT,
    SPIGET_API,
    SPIGOT_RESOURCES_URL,
    USER_AGENT,
)
from .errors import TransientIOError, raise_for_status
from .models import CatalogEntry

logger = logging.getLogger(__name__)


def create_session(user_agent: str = USER_AGENT) -> requests.Session:
    """Session shared by marketplace clients"""
    session = requests.Session()
    session.headers.update({
        'User-Agent': user_agent,
        'Accept': 'application/json',
    })
    return session


class ModrinthAPIClient:
    """Client for Modrinth API"""

    def __init__(self, session: Optional[requests.Session] = None,
                 force_snapshots: bool = False, timeout: int = REQUEST_TIMEOUT):
        """
        Args:
            session: HTTP session (a fresh one is created if omitted)
            force_snapshots: Include beta/alpha versions (default: False, releases only)
            timeout: Per-request timeout in seconds
        """
        self.session = session or create_session()
        self.force_snapshots = force_snapshots
        self.timeout = timeout

    def _get(self, path: str, params: Optional[Dict] = None):
        response = self.session.get(f"{MODRINTH_API}{path}", params=params, timeout=self.timeout)
        raise_for_status(response)
        return response.json()

    def latest_version_info(self, project_id: str) -> Optional[Dict]:
        """
        Fetch the newest plugin-loader version of a project

        Args:
            project_id: Modrinth project identifier or slug

        Returns:
            Modrinth version object, or None if nothing usable was found

        Raises:
            TransientIOError: Modrinth could not be reached
        """
        try:
            versions = self._get(f"/project/{project_id}/version",
                                 params={"loaders": json.dumps(MODRINTH_LOADERS)})
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientIOError(f"Modrinth unreachable for {project_id}: {e}") from e
        except requests.RequestException as e:
            logger.error(f"Failed to check Modrinth for {project_id}: {e}")
            return None

        if not versions:
            logger.warning(f"No versions found for {project_id}")
            return None

        # Get latest RELEASE version (skip betas unless forced)
        for version in versions:
            if version.get("version_type", "release") == "release" or self.force_snapshots:
                return version

        logger.warning(f"No stable release found for {project_id}")
        return None

    def get_latest_version(self, project_id: str) -> Optional[str]:
        latest = self.latest_version_info(project_id)
        return latest["version_number"] if latest else None

    def get_download_url(self, project_id: str) -> Optional[str]:
        latest = self.latest_version_info(project_id)
        if not latest or not latest.get("files"):
            return None

        # Prefer the primary file
        files = latest["files"]
        file_info = next((f for f in files if f.get("primary")), files[0])
        return file_info["url"]

    def find_by_hash(self, sha1: str, sha512: str) -> Optional[CatalogEntry]:
        """
        Identify a plugin file by content hash

        Modrinth prefers SHA-512; SHA-1 is tried when the first lookup misses.

        Returns:
            CatalogEntry of the owning project, or None if unknown to Modrinth
        """
        version_data = None
        for algorithm, digest in (("sha512", sha512), ("sha1", sha1)):
            response = self.session.get(f"{MODRINTH_API}/version_file/{digest}",
                                        params={"algorithm": algorithm}, timeout=self.timeout)
            if response.status_code == 404:
                continue
            raise_for_status(response)
            version_data = response.json()
            break

        if not version_data or not version_data.get("project_id"):
            return None

        project = self._get(f"/project/{version_data['project_id']}")
        return CatalogEntry(
            id=project["id"],
            name=project["title"],
            source_type=SOURCE_MODRINTH,
            source_url=f"{MODRINTH_PROJECT_URL}/{project.get('slug', project['id'])}",
            description=project.get("description", ""),
            download_count=project.get("downloads", 0),
            version=version_data.get("version_number"),
            supported_versions=", ".join(version_data.get("game_versions", [])),
        )

    def search(self, query: str, page: int = 1) -> List[CatalogEntry]:
        """Search Modrinth for plugins"""
        params = {
            "query": query,
            "facets": json.dumps([["project_type:plugin"]]),
            "index": "relevance",
            "limit": SEARCH_PAGE_SIZE,
            "offset": (page - 1) * SEARCH_PAGE_SIZE,
        }

        try:
            data = self._get("/search", params=params)
        except requests.RequestException as e:
            logger.error(f"Modrinth search failed for '{query}': {e}")
            return []

        return [
            CatalogEntry(
                id=hit["project_id"],
                name=hit["title"],
                source_type=SOURCE_MODRINTH,
                source_url=f"{MODRINTH_PROJECT_URL}/{hit.get('slug', hit['project_id'])}",
                description=hit.get("description", ""),
                download_count=hit.get("downloads", 0),
                author=hit.get("author", "Unknown"),
                supported_versions=(hit.get("versions") or [None])[-1],
            )
            for hit in data.get("hits", [])
        ]


class SpigetAPIClient:
    """Client for Spiget (SpigotMC mirror) API"""

    SEARCH_FIELDS = "id,name,tag,author,downloads,updateDate,testedVersions"

    def __init__(self, session: Optional[requests.Session] = None, timeout: int = REQUEST_TIMEOUT):
        self.session = session or create_session()
        self.timeout = timeout

    def get_latest_version(self, resource_id: str) -> Optional[str]:
        try:
            response = self.session.get(f"{SPIGET_API}/resources/{resource_id}/versions/latest",
                                        timeout=self.timeout)
            raise_for_status(response)
            return response.json().get("name")
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientIOError(f"Spiget unreachable for {resource_id}: {e}") from e
        except requests.RequestException as e:
            logger.error(f"Failed to check Spiget for {resource_id}: {e}")
            return None

    @staticmethod
    def get_download_url(resource_id: str) -> Optional[str]:
        # Spiget always serves the latest file at a fixed location
        return f"{SPIGET_API}/resources/{resource_id}/download"

    def search(self, query: str, page: int = 1) -> List[CatalogEntry]:
        """Search SpigotMC resources by name"""
        url = f"{SPIGET_API}/search/resources/{quote(query, safe='')}"
        params = {"size": SEARCH_PAGE_SIZE, "page": page, "fields": self.SEARCH_FIELDS}

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            if response.status_code == 404:
                return []
            raise_for_status(response)
            items = response.json()
        except requests.RequestException as e:
            logger.error(f"Spiget search failed for '{query}': {e}")
            return []

        results = []
        for item in items:
            tested = item.get("testedVersions") or []
            results.append(CatalogEntry(
                id=str(item["id"]),
                name=item["name"],
                source_type=SOURCE_SPIGOT,
                source_url=f"{SPIGOT_RESOURCES_URL}/{item['id']}",
                description=item.get("tag", ""),
                download_count=item.get("downloads", 0),
                author=str(item.get("author", {}).get("id", "Unknown")),
                supported_versions=", ".join(tested) if tested else None,
            ))
        return results


class MarketplaceResolver:
    """Single entry point to every supported plugin marketplace"""

    def __init__(self, modrinth: Optional[ModrinthAPIClient] = None,
                 spiget: Optional[SpigetAPIClient] = None):
        session = create_session()
        self.modrinth = modrinth or ModrinthAPIClient(session=session)
        self.spiget = spiget or SpigetAPIClient(session=session)
        self._hash_cache: Dict[str, Optional[CatalogEntry]] = {}
        self._cache_lock = threading.Lock()

    def search_catalog(self, query: str) -> List[CatalogEntry]:
        """Search both marketplaces, SpigotMC results first"""
        return self.spiget.search(query) + self.modrinth.search(query)

    def get_latest_version(self, source_type: str, source_id: str) -> Optional[str]:
        if source_type == SOURCE_SPIGOT:
            return self.spiget.get_latest_version(source_id)
        if source_type == SOURCE_MODRINTH:
            return self.modrinth.get_latest_version(source_id)

        logger.warning(f"No version lookup for source type: {source_type}")
        return None

    def get_download_url(self, source_type: str, source_id: str) -> Optional[str]:
        if source_type == SOURCE_SPIGOT:
            return self.spiget.get_download_url(source_id)
        if source_type == SOURCE_MODRINTH:
            return self.modrinth.get_download_url(source_id)

        logger.warning(f"No download lookup for source type: {source_type}")
        return None

    def find_by_hash(self, sha1: str, sha512: str) -> Optional[CatalogEntry]:
        """
        Look up a plugin file by hash

        SpigotMC has no hash lookup, so only Modrinth is consulted. Hits and
        misses are cached for the life of the resolver.
        """
        with self._cache_lock:
            if sha1 in self._hash_cache:
                return self._hash_cache[sha1]

        match = self.modrinth.find_by_hash(sha1, sha512)

        with self._cache_lock:
            self._hash_cache[sha1] = match
        return match
