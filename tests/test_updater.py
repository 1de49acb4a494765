"""Tests for update checks and the single-plugin install pipeline."""

from unittest.mock import MagicMock

import pytest

from plugin_fleet_manager.errors import (
    FatalError,
    PreconditionFailedError,
    RateLimitError,
    TransientIOError,
)
from plugin_fleet_manager.notifications import UPDATE_SUCCESS
from plugin_fleet_manager.updater import PluginUpdater


@pytest.fixture
def remote():
    return MagicMock()


@pytest.fixture
def versions():
    return MagicMock()


@pytest.fixture
def updater(registry, remote, resolver, versions, sink):
    return PluginUpdater(registry, remote, resolver, versions, sink)


def test_check_updates_records_latest_version(updater, registry, server, make_plugin, resolver):
    outdated = make_plugin("Alpha", latest_version=None)
    current = make_plugin("Beta", current_version="3.1", latest_version=None)
    make_plugin("Manual", source_type="manual", is_managed=False)
    resolver.get_latest_version.side_effect = lambda source_type, source_id: {
        "alpha-id": "2.0",
        "beta-id": "3.1",
    }[source_id]

    updates = updater.check_updates(server.id)

    assert updates == [
        {"name": "Alpha", "current": "1.0", "latest": "2.0"},
        {"name": "Beta", "current": "3.1", "latest": "3.1"},
    ]
    assert registry.get_plugin(outdated.id).latest_version == "2.0"
    assert registry.get_plugin(outdated.id).last_checked is not None
    assert registry.get_plugin(current.id).is_update_eligible is False


def test_check_updates_skips_unresolved(updater, registry, server, make_plugin, resolver):
    plugin = make_plugin("Alpha", latest_version=None)
    resolver.get_latest_version.return_value = None

    assert updater.check_updates(server.id) == []
    assert registry.get_plugin(plugin.id).last_checked is None


def test_install_update_replaces_file_and_version(updater, registry, server, make_plugin,
                                                  resolver, remote, versions, sink):
    plugin = make_plugin("Alpha")
    resolver.get_download_url.return_value = "https://cdn.example/alpha-2.0.jar"

    updated = updater.install_update(plugin.id)

    versions.backup.assert_called_once_with(plugin.id)
    remote.fetch_to_server.assert_called_once_with(
        server, "https://cdn.example/alpha-2.0.jar", "plugins", "Alpha.jar")
    assert updated.current_version == "2.0"
    assert registry.get_plugin(plugin.id).current_version == "2.0"

    events = sink.drain()
    assert [e.event for e in events] == [UPDATE_SUCCESS]
    assert events[0].payload == {
        "serverId": server.id,
        "serverName": "survival",
        "pluginName": "Alpha",
        "oldVersion": "1.0",
        "newVersion": "2.0",
    }


def test_install_update_continues_when_backup_fails(updater, registry, make_plugin,
                                                    resolver, versions):
    plugin = make_plugin("Alpha")
    versions.backup.side_effect = TransientIOError("volume unavailable")
    resolver.get_download_url.return_value = "https://cdn.example/alpha.jar"

    updater.install_update(plugin.id)

    assert registry.get_plugin(plugin.id).current_version == "2.0"


@pytest.mark.parametrize(
    "fields",
    [
        {"source_type": "manual", "source_id": None},
        {"latest_version": None},
    ],
)
def test_install_update_preconditions(updater, registry, make_plugin, remote, versions, sink, fields):
    plugin = make_plugin("Alpha", **fields)
    before = registry.get_plugin(plugin.id)

    with pytest.raises(PreconditionFailedError):
        updater.install_update(plugin.id)

    assert registry.get_plugin(plugin.id) == before
    versions.backup.assert_not_called()
    remote.fetch_to_server.assert_not_called()
    assert sink.drain() == []


def test_install_update_without_download_url(updater, registry, make_plugin, resolver, remote):
    plugin = make_plugin("Alpha")
    resolver.get_download_url.return_value = None

    with pytest.raises(FatalError):
        updater.install_update(plugin.id)

    remote.fetch_to_server.assert_not_called()
    assert registry.get_plugin(plugin.id).current_version == "1.0"


def test_install_update_propagates_fetch_errors(updater, registry, make_plugin, resolver, remote):
    plugin = make_plugin("Alpha")
    resolver.get_download_url.return_value = "https://cdn.example/alpha.jar"
    remote.fetch_to_server.side_effect = TransientIOError("connection reset")

    with pytest.raises(TransientIOError):
        updater.install_update(plugin.id)

    assert registry.get_plugin(plugin.id).current_version == "1.0"


def test_install_plugin_registers_managed_plugin(updater, registry, server, resolver, remote):
    resolver.get_latest_version.return_value = "5.4.102"
    resolver.get_download_url.return_value = "https://cdn.example/luckperms.jar"

    plugin = updater.install_plugin(server.id, "spigot", "28140")

    assert plugin.filename == "Spigot-28140.jar"
    assert plugin.current_version == plugin.latest_version == "5.4.102"
    assert plugin.is_managed and plugin.source_id == "28140"
    remote.fetch_to_server.assert_called_once()


def test_link_plugin(updater, registry, make_plugin):
    plugin = make_plugin("Alpha", source_type="manual", source_id=None, is_managed=False)

    linked = updater.link_plugin(plugin.id, "spigot", "1234")
    assert (linked.source_type, linked.source_id, linked.is_managed) == ("spigot", "1234", True)

    unlinked = updater.link_plugin(plugin.id, "manual", "ignored")
    assert (unlinked.source_type, unlinked.source_id, unlinked.is_managed) == ("manual", None, False)

    with pytest.raises(PreconditionFailedError):
        updater.link_plugin(plugin.id, "spigot")
    with pytest.raises(PreconditionFailedError):
        updater.link_plugin(plugin.id, "curseforge", "1")


def test_delete_plugin_forgets_even_if_remote_delete_fails(updater, registry, make_plugin, remote):
    plugin = make_plugin("Alpha")
    remote.delete_file.side_effect = TransientIOError("gone")

    updater.delete_plugin(plugin.id)

    assert registry.list_plugins(plugin.server_id) == []


def test_check_updates_survives_failed_lookup(updater, registry, server, make_plugin, resolver):
    limited = make_plugin("Alpha", source_type="spigot", latest_version=None)
    resolved = make_plugin("Beta", latest_version=None)

    def lookup(source_type, source_id):
        if source_type == "spigot":
            raise RateLimitError(5)
        return "9.9"

    resolver.get_latest_version.side_effect = lookup

    updates = updater.check_updates(server.id)

    assert updates == [{"name": "Beta", "current": "1.0", "latest": "9.9"}]
    assert registry.get_plugin(resolved.id).latest_version == "9.9"
    assert registry.get_plugin(resolved.id).last_checked is not None
    assert registry.get_plugin(limited.id).latest_version is None


def test_install_local_plugin_registers_custom_plugin(updater, registry, server, remote, tmp_path):
    jar = tmp_path / "MyPlugin.jar"
    jar.write_bytes(b"custom build")

    plugin = updater.install_local_plugin(server.id, jar, "1.4.0")

    remote.upload_local_bytes.assert_called_once_with(server, b"custom build", "MyPlugin.jar", "plugins")
    assert (plugin.name, plugin.source_type, plugin.source_id) == ("MyPlugin", "custom", "MyPlugin")
    assert plugin.is_managed
    assert plugin.current_version == "1.4.0"
    assert not plugin.is_update_eligible

    redeployed = updater.install_local_plugin(server.id, jar, "1.5.0")

    assert redeployed.id == plugin.id
    assert registry.get_plugin(plugin.id).current_version == "1.5.0"
    assert len(registry.list_plugins(server.id)) == 1


def test_install_local_plugin_takes_over_scanned_entry(updater, registry, server, tmp_path):
    scanned = registry.upsert_plugin(server.id, "MyPlugin.jar", create={"name": "MyPlugin"})
    jar = tmp_path / "MyPlugin.jar"
    jar.write_bytes(b"build")

    plugin = updater.install_local_plugin(server.id, jar, "2.0")

    assert plugin.id == scanned.id
    assert plugin.source_type == "custom"


def test_install_local_plugin_missing_jar(updater, server, remote, tmp_path):
    with pytest.raises(PreconditionFailedError):
        updater.install_local_plugin(server.id, tmp_path / "absent.jar", "1.0")

    remote.upload_local_bytes.assert_not_called()
