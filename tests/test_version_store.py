"""Tests for plugin backups, retention and restore."""

from datetime import datetime, timedelta, timezone

import pytest

from plugin_fleet_manager.errors import NotFoundError, PreconditionFailedError, TransientIOError
from plugin_fleet_manager.version_store import VersionStore


def ticking_clock(start=datetime(2024, 1, 1, tzinfo=timezone.utc)):
    state = {"now": start}

    def clock():
        state["now"] += timedelta(seconds=1)
        return state["now"]

    return clock


@pytest.fixture
def store(registry, file_access, tmp_path):
    return VersionStore(registry, file_access, storage_dir=tmp_path / "versions", clock=ticking_clock())


def test_backup_copies_installed_jar(store, make_plugin, plugins_dir):
    plugin = make_plugin("Alpha")
    (plugins_dir / "Alpha.jar").write_bytes(b"version one")

    backup = store.backup(plugin.id)

    assert backup.version == "1.0"
    assert backup.file_size == len(b"version one")
    assert backup.file_path.endswith("-Alpha.jar")
    assert (store.plugin_dir(plugin.id) / backup.file_path).read_bytes() == b"version one"


def test_backup_is_idempotent_per_version(store, registry, make_plugin, plugins_dir):
    plugin = make_plugin("Alpha")
    (plugins_dir / "Alpha.jar").write_bytes(b"version one")

    first = store.backup(plugin.id)
    second = store.backup(plugin.id)

    assert first is not None
    assert second is None
    assert len(registry.list_backups(plugin.id)) == 1
    assert len(list(store.plugin_dir(plugin.id).iterdir())) == 1


def test_retention_keeps_three_newest(store, registry, make_plugin, plugins_dir):
    plugin = make_plugin("Alpha")

    for n in range(1, 6):
        registry.update_plugin(plugin.id, current_version=f"{n}.0")
        (plugins_dir / "Alpha.jar").write_bytes(f"build {n}".encode())
        store.backup(plugin.id)

    backups = store.list_versions(plugin.id)

    assert [b.version for b in backups] == ["5.0", "4.0", "3.0"]
    on_disk = sorted(p.name for p in store.plugin_dir(plugin.id).iterdir())
    assert on_disk == sorted(b.file_path for b in backups)


def test_retention_tolerates_missing_files(store, registry, make_plugin, plugins_dir):
    plugin = make_plugin("Alpha")
    (plugins_dir / "Alpha.jar").write_bytes(b"one")
    oldest = store.backup(plugin.id)
    (store.plugin_dir(plugin.id) / oldest.file_path).unlink()

    for n in range(2, 5):
        registry.update_plugin(plugin.id, current_version=f"{n}.0")
        store.backup(plugin.id)

    assert oldest.id not in {b.id for b in registry.list_backups(plugin.id)}
    assert len(registry.list_backups(plugin.id)) == 3


def test_failed_backup_leaves_nothing_behind(store, registry, make_plugin):
    plugin = make_plugin("Alpha")

    with pytest.raises(TransientIOError):
        store.backup(plugin.id)

    assert registry.list_backups(plugin.id) == []
    assert list(store.plugin_dir(plugin.id).iterdir()) == []


def test_restore_changes_only_current_version(store, registry, make_plugin, plugins_dir):
    plugin = make_plugin("Alpha", current_version="1.0", latest_version="3.0")
    (plugins_dir / "Alpha.jar").write_bytes(b"old build")
    backup = store.backup(plugin.id)

    (plugins_dir / "Alpha.jar").write_bytes(b"new build")
    registry.update_plugin(plugin.id, current_version="3.0")

    store.restore(backup.id)

    restored = registry.get_plugin(plugin.id)
    assert restored.current_version == "1.0"
    assert restored.latest_version == "3.0"
    assert restored.is_update_eligible
    assert (plugins_dir / "Alpha.jar").read_bytes() == b"old build"


def test_restore_missing_archive(store, make_plugin, plugins_dir):
    plugin = make_plugin("Alpha")
    (plugins_dir / "Alpha.jar").write_bytes(b"build")
    backup = store.backup(plugin.id)
    (store.plugin_dir(plugin.id) / backup.file_path).unlink()

    with pytest.raises(PreconditionFailedError):
        store.restore(backup.id)


def test_restore_unknown_backup(store):
    with pytest.raises(NotFoundError):
        store.restore("missing")
