"""End-to-end CLI runs against a direct-mode volume."""

import json
import logging
import sys

import pytest
import yaml

from plugin_fleet_manager import cli


def write_config(tmp_path):
    volume = tmp_path / "volumes" / "uuid-1" / "plugins"
    volume.mkdir(parents=True)
    (volume / "Vault.jar").write_bytes(b"vault")

    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump({
        "servers": {"survival": {"identifier": "abcd1234", "uuid": "uuid-1"}},
        "file_access": {"mode": "direct", "volumes_path": str(tmp_path / "volumes")},
        "paths": {"state_file": str(tmp_path / "registry.json"),
                  "versions_dir": str(tmp_path / "versions")},
    }))
    return config_path


def run_cli(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["plugin-fleet-manager", *args])
    return cli.main()


def test_scan_registers_plugins(tmp_path, monkeypatch):
    config_path = write_config(tmp_path)

    assert run_cli(monkeypatch, "--config", str(config_path), "--server", "survival", "--scan") == 0

    state = json.loads((tmp_path / "registry.json").read_text())
    assert [row["filename"] for row in state["plugins"].values()] == ["Vault.jar"]


def test_progress_without_jobs(tmp_path, monkeypatch):
    config_path = write_config(tmp_path)

    assert run_cli(monkeypatch, "--config", str(config_path), "--server", "survival", "--progress") == 0


def test_unknown_server_fails(tmp_path, monkeypatch):
    config_path = write_config(tmp_path)

    assert run_cli(monkeypatch, "--config", str(config_path), "--server", "creative", "--scan") == 1


def test_invalid_config_fails(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump({"servers": {"survival": {"uuid": "u"}}}))

    assert run_cli(monkeypatch, "--config", str(config_path), "--scan") == 1


def test_scan_all_servers(tmp_path, monkeypatch):
    config_path = write_config(tmp_path)

    assert run_cli(monkeypatch, "--config", str(config_path), "--all-servers", "--scan") == 0

    state = json.loads((tmp_path / "registry.json").read_text())
    assert [row["filename"] for row in state["plugins"].values()] == ["Vault.jar"]


def test_deploy_then_unlink_custom_plugin(tmp_path, monkeypatch):
    config_path = write_config(tmp_path)
    jar = tmp_path / "build" / "MyPlugin.jar"
    jar.parent.mkdir()
    jar.write_bytes(b"in-house build")

    assert run_cli(monkeypatch, "--config", str(config_path), "--server", "survival",
                   "--deploy", str(jar), "--deploy-version", "1.4.0") == 0

    assert (tmp_path / "volumes" / "uuid-1" / "plugins" / "MyPlugin.jar").read_bytes() == b"in-house build"
    state = json.loads((tmp_path / "registry.json").read_text())
    (plugin_id, row), = state["plugins"].items()
    assert (row["source_type"], row["current_version"], row["is_managed"]) == ("custom", "1.4.0", True)

    assert run_cli(monkeypatch, "--config", str(config_path), "--link", plugin_id, "manual") == 0

    row = json.loads((tmp_path / "registry.json").read_text())["plugins"][plugin_id]
    assert (row["source_type"], row["source_id"], row["is_managed"]) == ("manual", None, False)


def test_deploy_needs_version(tmp_path, monkeypatch):
    config_path = write_config(tmp_path)

    with pytest.raises(SystemExit):
        run_cli(monkeypatch, "--config", str(config_path), "--server", "survival", "--deploy", "x.jar")


def test_progress_reports_finished_job(tmp_path, monkeypatch, caplog):
    config_path = write_config(tmp_path)
    caplog.set_level(logging.INFO)

    assert run_cli(monkeypatch, "--config", str(config_path), "--server", "survival", "--update-all") == 0
    assert run_cli(monkeypatch, "--config", str(config_path), "--server", "survival", "--progress") == 0

    assert "Status: completed (finished)" in caplog.text
