import pytest

from medialib_backend.features.index.watcher import WatchEvent, WatchEventType


@pytest.mark.asyncio
async def test_rename_then_watcher_echo_keeps_identity(services, library_root, settle_fn):
    f = library_root / "a.jpg"
    f.write_bytes(b"x")
    await services.synchronizer.restart_watch(str(library_root))
    await settle_fn(services)
    entity = (await services.store.find_by_path(str(f))).data
    tag = (await services.service.create_tag("holiday")).data
    assert (await services.service.attach_tag(entity.id, tag["id"])).ok
    assert (await services.service.toggle_favorite(entity.id)).ok

    new = library_root / "b.jpg"
    assert (await services.service.rename_or_move(str(f), str(new))).ok

    # The watcher reports the same rename after the fact; it must not reset the row.
    sync = services.synchronizer
    await sync.apply_event(WatchEvent(WatchEventType.MOVED, str(f), sync.generation, is_dir=False, dest_path=str(new)))
    await sync.apply_event(WatchEvent(WatchEventType.REMOVED, str(f), sync.generation, is_dir=False))
    await sync.apply_event(WatchEvent(WatchEventType.ADDED, str(new), sync.generation, is_dir=False))

    listed = (await services.store.list_all()).data
    assert len(listed) == 1
    assert listed[0].id == entity.id
    assert listed[0].path == str(new)
    assert listed[0].favorite is True
    assert [t.name for t in listed[0].tags] == ["holiday"]
