"""
Media library backend: a SQLite index of one library root directory, kept in
sync with the filesystem by a watchdog watcher.

    ctx = (await build_services()).data
    await ctx.open()
    media = await ctx.service.list_media()
    await ctx.aclose()
"""
from .deps import LibraryContext, build_services

__all__ = ["build_services", "LibraryContext"]
