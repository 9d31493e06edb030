import logging
import os

import pytest

from medialib_backend.features.index import fs_walker


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def walker_log():
    handler = _ListHandler()
    fs_walker.logger.addHandler(handler)
    try:
        yield handler
    finally:
        fs_walker.logger.removeHandler(handler)


def _tree(root):
    (root / "a").mkdir()
    (root / "a" / "one.jpg").write_bytes(b"x")
    (root / "locked").mkdir()
    (root / "locked" / "secret.jpg").write_bytes(b"x")
    (root / "z").mkdir()
    (root / "z" / "two.mp4").write_bytes(b"x")
    (root / "top.png").write_bytes(b"x")


def test_walk_lists_parents_before_children(tmp_path):
    _tree(tmp_path)
    (tmp_path / ".cache").mkdir()
    (tmp_path / ".cache" / "thumb.jpg").write_bytes(b"x")
    (tmp_path / ".hidden.jpg").write_bytes(b"x")

    entries = fs_walker.walk_tree(str(tmp_path))
    paths = [p for p, _ in entries]
    assert paths.index(str(tmp_path / "a")) < paths.index(str(tmp_path / "a" / "one.jpg"))
    assert (str(tmp_path / "z"), True) in entries
    assert (str(tmp_path / "top.png"), False) in entries
    assert not any(".cache" in p or ".hidden" in p for p in paths)


def test_walk_include_hidden(tmp_path):
    (tmp_path / ".cache").mkdir()
    (tmp_path / ".cache" / "thumb.jpg").write_bytes(b"x")
    paths = [p for p, _ in fs_walker.walk_tree(str(tmp_path), include_hidden=True)]
    assert str(tmp_path / ".cache" / "thumb.jpg") in paths


def test_unreadable_subdirectory_is_skipped_with_warning(tmp_path, monkeypatch, walker_log):
    _tree(tmp_path)
    locked = str(tmp_path / "locked")
    real_scandir = os.scandir

    def _scandir(path="."):
        if os.fspath(path) == locked:
            raise PermissionError(13, "Permission denied", locked)
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", _scandir)
    entries = fs_walker.walk_tree(str(tmp_path))
    paths = [p for p, _ in entries]

    assert str(tmp_path / "a" / "one.jpg") in paths
    assert str(tmp_path / "z" / "two.mp4") in paths
    assert str(tmp_path / "top.png") in paths
    assert str(tmp_path / "locked" / "secret.jpg") not in paths
    warnings = [r for r in walker_log.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert locked in warnings[0].getMessage()


@pytest.mark.asyncio
async def test_walk_tree_async_matches_sync(tmp_path):
    _tree(tmp_path)
    assert await fs_walker.walk_tree_async(str(tmp_path)) == fs_walker.walk_tree(str(tmp_path))
