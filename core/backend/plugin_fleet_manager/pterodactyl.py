"""
Pterodactyl API Client

Handles communication with the Pterodactyl client API for server listing
and remote file management.
"""

import logging
from typing import Dict, Iterator, List, Optional

import requests

from .config import DOWNLOAD_TIMEOUT, HASH_CHUNK_SIZE, REQUEST_TIMEOUT
from .errors import raise_for_status
from .models import RemoteFile

logger = logging.getLogger(__name__)


class PterodactylClient:
    """Client for Pterodactyl Panel client API"""

    def __init__(self, panel_url: str, api_key: str, timeout: int = REQUEST_TIMEOUT):
        """
        Initialize Pterodactyl API client

        Args:
            panel_url: Base URL of Pterodactyl panel (e.g., https://panel.example.com)
            api_key: Client API key (ptlc_ prefix)
            timeout: Per-request timeout in seconds
        """
        self.panel_url = panel_url.rstrip('/')
        self.timeout = timeout

        if not api_key.startswith('ptlc_'):
            logger.warning("API key doesn't start with ptlc_ - file endpoints need a client key")

        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {api_key}',
            'Accept': 'application/json',
            'Content-Type': 'application/json'
        })

    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        """
        Make a request to the client API

        HTTP 429 responses are raised as RateLimitError.
        """
        url = f"{self.panel_url}/api/client{endpoint}"
        kwargs.setdefault('timeout', self.timeout)

        response = self.session.request(method, url, **kwargs)
        raise_for_status(response)
        return response

    def list_servers(self) -> List[Dict]:
        """
        List all servers accessible via API

        Returns:
            List of server attribute dicts
        """
        logger.info("Fetching servers from Pterodactyl panel...")

        servers = []
        page = 1

        while True:
            data = self._request('GET', '', params={'page': page}).json()
            servers.extend(item.get('attributes', {}) for item in data.get('data', []))

            pagination = data.get('meta', {}).get('pagination', {})
            if pagination.get('current_page', 1) >= pagination.get('total_pages', 0):
                break
            page += 1

        logger.info(f"Found {len(servers)} server(s)")
        return servers

    def list_files(self, server_id: str, directory: str = '/') -> List[RemoteFile]:
        data = self._request('GET', f'/servers/{server_id}/files/list',
                             params={'directory': directory}).json()

        return [
            RemoteFile(
                name=item['attributes']['name'],
                size=item['attributes'].get('size', 0),
                is_file=item['attributes'].get('is_file', True),
            )
            for item in data.get('data', [])
        ]

    def pull_file(self, server_id: str, url: str, directory: str = '/',
                  filename: Optional[str] = None):
        """Have the panel download a remote URL into the server's filesystem"""
        body = {'url': url, 'directory': directory}
        if filename:
            body['filename'] = filename
        self._request('POST', f'/servers/{server_id}/files/pull', json=body)

    def delete_file(self, server_id: str, file_path: str):
        root, _, filename = file_path.rpartition('/')
        self._request('POST', f'/servers/{server_id}/files/delete',
                      json={'root': root or '/', 'files': [filename]})

    def get_download_url(self, server_id: str, file_path: str) -> str:
        """Signed one-time download URL for a file"""
        data = self._request('GET', f'/servers/{server_id}/files/download',
                             params={'file': file_path}).json()
        return data['attributes']['url']

    def get_upload_url(self, server_id: str, directory: str = '/') -> str:
        """Signed one-time upload URL for a directory"""
        data = self._request('GET', f'/servers/{server_id}/files/upload',
                             params={'directory': directory}).json()
        return data['attributes']['url']

    def upload_file_to_url(self, upload_url: str, content: bytes, filename: str):
        # Signed URLs go straight to the node, without panel auth headers
        response = requests.post(upload_url, files={'files': (filename, content)},
                                 timeout=DOWNLOAD_TIMEOUT)
        raise_for_status(response)

    def download_file_stream(self, server_id: str, file_path: str) -> Iterator[bytes]:
        """Stream a server file in chunks"""
        download_url = self.get_download_url(server_id, file_path)

        with requests.get(download_url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
            raise_for_status(response)
            for chunk in response.iter_content(chunk_size=HASH_CHUNK_SIZE):
                if chunk:
                    yield chunk
