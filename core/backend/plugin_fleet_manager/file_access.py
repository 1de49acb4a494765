"""
Remote File Access

Reads and writes files inside a game server's volume, either directly on
the node (volumes mounted locally) or through the Pterodactyl client API.
"""

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import requests

from .config import DOWNLOAD_TIMEOUT, HASH_CHUNK_SIZE, VOLUMES_PATH
from .errors import FatalError, TransientIOError, raise_for_status
from .models import RemoteFile, Server
from .pterodactyl import PterodactylClient

logger = logging.getLogger(__name__)

MODE_DIRECT = "direct"
MODE_API = "api"


@contextmanager
def transient_errors(operation: str):
    """Re-raise connection, timeout and filesystem errors as TransientIOError"""
    try:
        yield
    except (requests.ConnectionError, requests.Timeout, OSError) as e:
        raise TransientIOError(f"{operation} failed: {e}") from e


class FileAccess:
    """File operations against a server's volume"""

    def __init__(self, mode: str = MODE_DIRECT, volumes_path: str = VOLUMES_PATH,
                 pterodactyl: Optional[PterodactylClient] = None):
        """
        Args:
            mode: 'direct' (local volume mount) or 'api' (Pterodactyl client API)
            volumes_path: Where server volumes are mounted in direct mode
            pterodactyl: API client, required in api mode
        """
        if mode not in (MODE_DIRECT, MODE_API):
            raise FatalError(f"Unknown file access mode: {mode}")
        if mode == MODE_API and pterodactyl is None:
            raise FatalError("File access mode 'api' requires Pterodactyl configuration")

        self.mode = mode
        self.volumes_path = Path(volumes_path)
        self.pterodactyl = pterodactyl

    @property
    def is_direct(self) -> bool:
        return self.mode == MODE_DIRECT

    def _server_root(self, server: Server) -> Path:
        # Stored path is /var/lib/pterodactyl/volumes/{uuid}; remap onto our mount
        volume = os.path.basename(server.path.rstrip('/')) if server.path else server.uuid
        if not volume:
            raise FatalError(f"Server {server.name} has no volume path or uuid")
        return self.volumes_path / volume

    def _local_path(self, server: Server, remote_path: str) -> Path:
        return self._server_root(server) / remote_path.lstrip('/')

    def list_files(self, server: Server, directory: str) -> List[RemoteFile]:
        with transient_errors(f"Listing {directory} on {server.name}"):
            if not self.is_direct:
                return self.pterodactyl.list_files(server.identifier, directory)

            dir_path = self._local_path(server, directory)
            if not dir_path.is_dir():
                return []

            return [
                RemoteFile(name=entry.name, size=entry.stat().st_size, is_file=entry.is_file())
                for entry in sorted(dir_path.iterdir())
            ]

    def fetch_to_server(self, server: Server, url: str, directory: str, filename: str):
        """
        Download a remote URL into the server's filesystem, replacing any existing file

        Args:
            server: Target server
            url: Source URL
            directory: Directory relative to the server root
            filename: Destination filename
        """
        with transient_errors(f"Fetching {filename} to {server.name}"):
            if not self.is_direct:
                self.pterodactyl.pull_file(server.identifier, url, f"/{directory.strip('/')}", filename)
                return

            dir_path = self._local_path(server, directory)
            dir_path.mkdir(parents=True, exist_ok=True)
            dest_path = dir_path / filename
            tmp_path = dir_path / f".{filename}.part"

            try:
                with requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
                    raise_for_status(response)
                    with open(tmp_path, 'wb') as f:
                        for chunk in response.iter_content(chunk_size=HASH_CHUNK_SIZE):
                            f.write(chunk)
                tmp_path.replace(dest_path)
            finally:
                if tmp_path.exists():
                    tmp_path.unlink()

            logger.info(f"  Pulled {filename} to {dest_path} ({dest_path.stat().st_size:,} bytes)")

    def delete_file(self, server: Server, path: str):
        with transient_errors(f"Deleting {path} on {server.name}"):
            if not self.is_direct:
                self.pterodactyl.delete_file(server.identifier, path)
                return

            full_path = self._local_path(server, path)
            try:
                full_path.unlink()
                logger.info(f"  Deleted {full_path}")
            except FileNotFoundError:
                logger.warning(f"  File not found: {full_path}")

    def upload_local_bytes(self, server: Server, content: bytes, filename: str, directory: str):
        with transient_errors(f"Uploading {filename} to {server.name}"):
            if not self.is_direct:
                upload_url = self.pterodactyl.get_upload_url(server.identifier, f"/{directory.strip('/')}")
                self.pterodactyl.upload_file_to_url(upload_url, content, filename)
                return

            dir_path = self._local_path(server, directory)
            dir_path.mkdir(parents=True, exist_ok=True)
            (dir_path / filename).write_bytes(content)
            logger.info(f"  Uploaded {len(content):,} bytes to {dir_path / filename}")

    def download_as_stream(self, server: Server, path: str) -> Iterator[bytes]:
        """Yield a server file's bytes in chunks without buffering the whole file"""
        with transient_errors(f"Reading {path} on {server.name}"):
            if not self.is_direct:
                yield from self.pterodactyl.download_file_stream(server.identifier, path)
                return

            with open(self._local_path(server, path), 'rb') as f:
                for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
                    yield chunk
