import json

import pytest

from medialib_backend import settings as settings_mod
from medialib_backend.settings import LibrarySettings, SettingsStore, WindowBounds


def test_window_bounds_from_value_validates_each_field():
    wb = WindowBounds.from_value({"width": 1600, "height": 50, "x": 10, "y": "top"})
    assert wb.width == 1600
    assert wb.height == 800  # below minimum -> default
    assert wb.x == 10
    assert wb.y is None
    assert WindowBounds.from_value("garbage") == WindowBounds()
    assert WindowBounds.from_value({"width": True}).width == 1200


def test_library_settings_from_dict_keeps_good_fields(tmp_path):
    s = LibrarySettings.from_dict(
        {"library_root_path": "   ", "window_bounds": {"width": 900, "height": 700}},
        default_root=str(tmp_path),
    )
    assert s.library_root_path == str(tmp_path)
    assert s.window_bounds.width == 900


def test_library_settings_to_dict_is_versioned(tmp_path):
    data = LibrarySettings(library_root_path=str(tmp_path)).to_dict()
    assert data["version"] == 1
    assert data["library_root_path"] == str(tmp_path)
    assert data["window_bounds"]["width"] == 1200


@pytest.mark.asyncio
async def test_load_defaults_when_missing(tmp_path):
    store = SettingsStore(str(tmp_path / "settings.json"), default_root=str(tmp_path / "lib"))
    s = await store.load()
    assert s.library_root_path == str(tmp_path / "lib")
    assert not (tmp_path / "settings.json").exists()


@pytest.mark.asyncio
async def test_save_then_reload(tmp_path):
    path = tmp_path / "cfg" / "settings.json"
    store = SettingsStore(str(path), default_root=str(tmp_path / "lib"))
    res = await store.update(library_root_path=str(tmp_path / "other"))
    assert res.ok

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["library_root_path"] == str(tmp_path / "other")
    assert not list(path.parent.glob("*.tmp_*"))

    reloaded = await SettingsStore(str(path), default_root="/unused").load()
    assert reloaded.library_root_path == str(tmp_path / "other")


@pytest.mark.asyncio
async def test_corrupt_record_falls_back_to_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    s = await SettingsStore(str(path), default_root=str(tmp_path / "lib")).load()
    assert s.library_root_path == str(tmp_path / "lib")


@pytest.mark.asyncio
async def test_oversized_record_is_ignored(tmp_path, monkeypatch):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"library_root_path": str(tmp_path / "big")}), encoding="utf-8")
    monkeypatch.setattr(settings_mod, "SETTINGS_MAX_BYTES", 10)
    s = await SettingsStore(str(path), default_root=str(tmp_path / "lib")).load()
    assert s.library_root_path == str(tmp_path / "lib")


@pytest.mark.asyncio
async def test_update_unknown_field(tmp_path):
    store = SettingsStore(str(tmp_path / "settings.json"), default_root=str(tmp_path))
    res = await store.update(theme="dark")
    assert not res.ok
    assert res.code == "INVALID_INPUT"


@pytest.mark.asyncio
async def test_write_failure_keeps_previous_record(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    store = SettingsStore(str(blocker / "settings.json"), default_root=str(tmp_path / "lib"))
    res = await store.update(library_root_path=str(tmp_path / "new"))
    assert not res.ok
    assert res.code == "FS_ERROR"
    assert (await store.load()).library_root_path == str(tmp_path / "lib")
