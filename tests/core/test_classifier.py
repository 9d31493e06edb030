import os

import pytest

from medialib_backend.features.index import classifier as c
from medialib_backend.features.index import fs_walker
from medialib_backend.shared import MediaKind


def test_classify_path_by_extension_with_known_type(tmp_path):
    assert c.classify_path(str(tmp_path / "a.PNG"), is_dir=False) == MediaKind.IMAGE
    assert c.classify_path(str(tmp_path / "clip.webm"), is_dir=False) == MediaKind.VIDEO
    assert c.classify_path(str(tmp_path / "readme.md"), is_dir=False) == MediaKind.IGNORED


def test_classify_path_checks_directory_on_disk(tmp_path):
    album = tmp_path / "album.jpg"
    album.mkdir()
    # A directory is a directory whatever its name looks like.
    assert c.classify_path(str(album)) == MediaKind.DIRECTORY
    assert c.classify_path(str(album), is_dir=True) == MediaKind.DIRECTORY


def test_classify_path_missing_entry_falls_back_to_extension(tmp_path):
    assert c.classify_path(str(tmp_path / "gone.jpg")) == MediaKind.IMAGE


@pytest.mark.parametrize("name", [".DS_Store", ".hidden.jpg", ".thumbs"])
def test_hidden_entries_are_ignored(tmp_path, name):
    assert c.classify_path(str(tmp_path / name), is_dir=False) == MediaKind.IGNORED
    assert c.classify_path(str(tmp_path / name), is_dir=True) == MediaKind.IGNORED


def test_has_hidden_component(tmp_path):
    root = str(tmp_path)
    assert c.has_hidden_component(os.path.join(root, ".cache", "a.jpg"), root)
    assert c.has_hidden_component(os.path.join(root, "x", ".y", "z"), root)
    assert not c.has_hidden_component(os.path.join(root, "x", "a.jpg"), root)


def test_hidden_root_itself_does_not_hide_children(tmp_path):
    root = tmp_path / ".library"
    assert not c.has_hidden_component(str(root / "a.jpg"), str(root))


def test_classify_under_root(tmp_path):
    root = str(tmp_path)
    assert c.classify_under_root(os.path.join(root, ".git", "pic.jpg"), root, is_dir=False) == MediaKind.IGNORED
    assert c.classify_under_root(os.path.join(root, "pics", "pic.jpg"), root, is_dir=False) == MediaKind.IMAGE


def test_walk_tree_parents_first_and_prunes_hidden(tmp_path):
    (tmp_path / "b").mkdir()
    (tmp_path / "b" / "inner").mkdir()
    (tmp_path / "b" / "inner" / "deep.png").write_bytes(b"x")
    (tmp_path / "a.jpg").write_bytes(b"x")
    (tmp_path / ".hidden").mkdir()
    (tmp_path / ".hidden" / "secret.jpg").write_bytes(b"x")
    (tmp_path / ".dotfile").write_bytes(b"x")

    entries = fs_walker.walk_tree(str(tmp_path))
    paths = [p for p, _ in entries]

    assert (str(tmp_path / "b"), True) in entries
    assert (str(tmp_path / "a.jpg"), False) in entries
    assert not any(".hidden" in p or ".dotfile" in p for p in paths)
    assert paths.index(str(tmp_path / "b")) < paths.index(str(tmp_path / "b" / "inner"))
    assert paths.index(str(tmp_path / "b" / "inner")) < paths.index(str(tmp_path / "b" / "inner" / "deep.png"))


def test_walk_tree_include_hidden(tmp_path):
    (tmp_path / ".hidden").mkdir()
    (tmp_path / ".hidden" / "secret.jpg").write_bytes(b"x")
    paths = [p for p, _ in fs_walker.walk_tree(str(tmp_path), include_hidden=True)]
    assert str(tmp_path / ".hidden" / "secret.jpg") in paths


def test_walk_tree_missing_root_is_empty(tmp_path):
    assert fs_walker.walk_tree(str(tmp_path / "nope")) == []


@pytest.mark.asyncio
async def test_walk_tree_async(tmp_path):
    (tmp_path / "x.mp4").write_bytes(b"x")
    assert await fs_walker.walk_tree_async(str(tmp_path)) == [(str(tmp_path / "x.mp4"), False)]
