"""Files under the output directory.

``JsonStore`` backs the saved playlists. ``CollectionArchive`` keeps an
autosaved copy of the working collection, and a pointer to it, so a
restarted server can pick up the last upload.

Usage::

    archive = CollectionArchive("output")
    await archive.save(document, "rekordbox.xml")
    await archive.remember("rekordbox.xml")
    restored = await archive.restore()   # (document, "rekordbox.xml") or None
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Callable
from typing import Any

import aiofiles
import aiofiles.os

from cratebatch.document import CollectionDocument, parse_collection
from cratebatch.errors import ParseError

logger = logging.getLogger(__name__)


async def write_atomic(path: str, text: str) -> None:
    """Write ``text`` to a temp file beside ``path``, then rename it into place."""
    directory = os.path.dirname(os.path.abspath(path))
    await aiofiles.os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp", prefix=".cratebatch_")
    try:
        async with aiofiles.open(fd, "w", encoding="utf-8", closefd=True) as f:
            await f.write(text)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


# ---------------------------------------------------------------------------
# JSON documents
# ---------------------------------------------------------------------------

class JsonStore:
    """One JSON document on disk, rewritten whole on every change."""

    def __init__(self, path: str, indent: int = 2) -> None:
        self.path = os.path.abspath(path)
        self.indent = indent
        self._lock = asyncio.Lock()

    async def load(self, default: Any = None) -> Any:
        """Parsed contents, or ``default`` (``{}``) when missing or corrupt."""
        fallback = {} if default is None else default
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                return json.loads(await f.read())
        except FileNotFoundError:
            return fallback
        except json.JSONDecodeError:
            logger.warning("Corrupt JSON in %s, starting empty", self.path)
            return fallback

    async def update(self, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Read, apply ``fn``, write back; one writer at a time per store."""
        async with self._lock:
            data = fn(await self.load(default))
            await write_atomic(self.path, json.dumps(data, indent=self.indent, ensure_ascii=False))
            return data


# ---------------------------------------------------------------------------
# Collection autosave
# ---------------------------------------------------------------------------

class CollectionArchive:
    """``<stem>_autosave.xml`` copies of the collection plus ``.last_upload.json``."""

    def __init__(self, output_dir: str) -> None:
        self.output_dir = output_dir
        self.meta = JsonStore(os.path.join(output_dir, ".last_upload.json"))

    def path_for(self, original: str) -> str:
        stem = os.path.basename(original or "collection.xml").rsplit(".", 1)[0]
        return os.path.join(self.output_dir, f"{stem}_autosave.xml")

    async def save(self, document: CollectionDocument, original: str) -> str | None:
        """Export ``document`` to its autosave path. Failures are logged, not raised."""
        path = self.path_for(original)
        try:
            await write_atomic(path, document.export())
        except OSError:
            logger.exception("Autosave to %s failed", path)
            return None
        logger.debug("Autosaved %s", path)
        return path

    async def remember(self, original: str) -> None:
        try:
            await self.meta.update(lambda meta: {**meta, "original_filename": original})
        except OSError:
            logger.exception("Could not record last upload in %s", self.meta.path)

    async def restore(self) -> tuple[CollectionDocument, str] | None:
        meta = await self.meta.load()
        original = meta.get("original_filename") if isinstance(meta, dict) else None
        if not original:
            return None

        path = self.path_for(original)
        try:
            async with aiofiles.open(path, "rb") as f:
                source = await f.read()
        except FileNotFoundError:
            return None

        try:
            document = parse_collection(source)
        except ParseError:
            logger.exception("Autosave %s is unreadable", path)
            return None
        logger.info("Restored %s from %s", original, path)
        return document, original
