"""Tests for manifest parsing and plugin discovery."""

import json
import logging

import pytest

from plughost import ManifestError, PluginManifest
from plughost.manifest import discover_plugin_dirs, read_manifest


class TestPluginManifest:
    """Tests for PluginManifest.from_dict."""

    def test_defaults(self):
        manifest = PluginManifest.from_dict({"id": "goals", "name": "Goals", "entry": "main.py"})

        assert manifest.version == "0.0.0"
        assert manifest.enabled is True
        assert manifest.extra == {}

    @pytest.mark.parametrize("enabled,expected", [
        (False, False),
        (True, True),
        (None, True),
        ("false", True),
        (0, True),
    ])
    def test_only_explicit_false_disables(self, enabled, expected):
        manifest = PluginManifest.from_dict({
            "id": "goals", "name": "Goals", "entry": "main.py", "enabled": enabled,
        })
        assert manifest.enabled is expected

    @pytest.mark.parametrize("data", [
        {"name": "Goals", "entry": "main.py"},
        {"id": "", "name": "Goals", "entry": "main.py"},
        {"id": "goals", "entry": "main.py"},
        {"id": "goals", "name": "Goals"},
        {"id": 3, "name": "Goals", "entry": "main.py"},
    ])
    def test_missing_required_fields(self, data):
        with pytest.raises(ManifestError):
            PluginManifest.from_dict(data)

    def test_non_object(self):
        with pytest.raises(ManifestError):
            PluginManifest.from_dict(["goals"])

    def test_extra_keys_preserved(self):
        manifest = PluginManifest.from_dict({
            "id": "goals",
            "name": "Goals",
            "entry": "main.py",
            "version": "1.2.0",
            "permissions": ["tiktok"],
        })

        assert manifest.extra == {"permissions": ["tiktok"]}
        assert manifest.to_dict()["permissions"] == ["tiktok"]
        assert manifest.to_dict()["version"] == "1.2.0"

    def test_entry_path(self, tmp_path):
        manifest = PluginManifest.from_dict({"id": "goals", "name": "Goals", "entry": "src/main.py"})
        assert manifest.entry_path(tmp_path) == tmp_path / "src" / "main.py"


class TestDiscovery:
    """Tests for discover_plugin_dirs."""

    def test_creates_missing_root(self, tmp_path):
        root = tmp_path / "plugins"
        assert discover_plugin_dirs(root) == []
        assert root.is_dir()

    def test_skips_private_and_files(self, tmp_path):
        for name in ("beta", "alpha", "_template", ".cache"):
            (tmp_path / name).mkdir()
        (tmp_path / "notes.txt").write_text("not a plugin")

        assert [p.name for p in discover_plugin_dirs(tmp_path)] == ["alpha", "beta"]


class TestReadManifest:
    """Tests for read_manifest."""

    def test_valid(self, tmp_path):
        (tmp_path / "plugin.json").write_text(json.dumps({
            "id": "goals", "name": "Goals", "entry": "main.py",
        }))
        assert read_manifest(tmp_path).id == "goals"

    def test_missing(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            assert read_manifest(tmp_path) is None
        assert "No plugin.json found" in caplog.text

    def test_invalid_json(self, tmp_path, caplog):
        (tmp_path / "plugin.json").write_text("{oops")
        with caplog.at_level(logging.WARNING):
            assert read_manifest(tmp_path) is None
        assert "Invalid plugin.json" in caplog.text

    def test_missing_fields(self, tmp_path, caplog):
        (tmp_path / "plugin.json").write_text(json.dumps({"id": "goals"}))
        with caplog.at_level(logging.WARNING):
            assert read_manifest(tmp_path) is None
        assert "name, entry" in caplog.text

    def test_custom_filename(self, tmp_path):
        (tmp_path / "manifest.json").write_text(json.dumps({
            "id": "goals", "name": "Goals", "entry": "main.py",
        }))
        assert read_manifest(tmp_path, "manifest.json").name == "Goals"
