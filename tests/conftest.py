"""Shared fixtures: an in-memory registry and a server volume under tmp_path."""

from unittest.mock import MagicMock

import pytest

from plugin_fleet_manager.file_access import FileAccess
from plugin_fleet_manager.notifications import QueueNotificationSink
from plugin_fleet_manager.registry import PluginRegistry


@pytest.fixture
def registry():
    return PluginRegistry()


@pytest.fixture
def volumes(tmp_path):
    path = tmp_path / "volumes"
    path.mkdir()
    return path


@pytest.fixture
def file_access(volumes):
    return FileAccess(mode="direct", volumes_path=str(volumes))


@pytest.fixture
def server(registry):
    return registry.register_server(name="survival", identifier="abcd1234", uuid="uuid-1")


@pytest.fixture
def plugins_dir(volumes, server):
    path = volumes / server.uuid / "plugins"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def sink():
    return QueueNotificationSink()


@pytest.fixture
def resolver():
    resolver = MagicMock()
    resolver.find_by_hash.return_value = None
    resolver.search_catalog.return_value = []
    return resolver


@pytest.fixture
def make_plugin(registry, server):
    """Factory for a managed plugin with an update available."""

    def _make(name, **fields):
        create = {
            "name": name,
            "current_version": "1.0",
            "latest_version": "2.0",
            "source_type": "modrinth",
            "source_id": f"{name.lower()}-id",
            "is_managed": True,
        }
        create.update(fields)
        return registry.upsert_plugin(server.id, f"{name}.jar", create=create)

    return _make
