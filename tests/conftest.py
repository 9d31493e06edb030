import asyncio
import sys

import pytest
import pytest_asyncio

from repo_root import REPO_ROOT

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


class FakeObserver:
    """Stand-in for watchdog's Observer: records calls, never delivers OS events."""

    instances: list = []
    fail_start_for: set = set()

    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False
        self.joined = False
        type(self).instances.append(self)

    def schedule(self, handler, path, recursive=False):
        watch = {"handler": handler, "path": path, "recursive": recursive}
        self.scheduled.append(watch)
        return watch

    def start(self):
        for watch in self.scheduled:
            if watch["path"] in self.fail_start_for:
                raise OSError("inotify watch limit reached")
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        _ = timeout
        self.joined = True


@pytest.fixture
def observer_factory():
    # Fresh subclass per test so recorded instances and failures never leak.
    return type("FakeObserverForTest", (FakeObserver,), {"instances": [], "fail_start_for": set()})


@pytest.fixture
def library_root(tmp_path):
    return tmp_path / "lib"


async def settle(ctx, timeout=3.0):
    """Wait for the watcher to go idle, then for every queued event to be applied and delivered."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    # Let callbacks handed over with call_soon_threadsafe run first.
    await asyncio.sleep(0)
    while not ctx.synchronizer.watcher.is_idle() and loop.time() < deadline:
        await asyncio.sleep(0.01)
    await ctx.synchronizer.drain()
    await ctx.notifier.drain()


@pytest.fixture
def settle_fn():
    return settle


@pytest_asyncio.fixture
async def services(tmp_path, library_root, observer_factory):
    from medialib_backend.deps import build_services

    res = await build_services(
        db_path=str(tmp_path / "index.sqlite"),
        settings_path=str(tmp_path / "settings.json"),
        library_root=str(library_root),
        observer_factory=observer_factory,
        stability_ms=0,
        poll_ms=10,
    )
    assert res.ok, res.error
    ctx = res.data
    opened = await ctx.open()
    assert opened.ok, opened.error
    await settle(ctx)
    try:
        yield ctx
    finally:
        await ctx.aclose()


@pytest.fixture
def events(services):
    """Every ChangeEvent emitted after the fixture is requested."""
    received = []
    services.notifier.subscribe(received.append)
    return received
