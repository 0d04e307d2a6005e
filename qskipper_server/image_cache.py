"""Two-tier (memory + disk) image cache keyed by content hash."""

import hashlib
import logging
import os
import tempfile
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Optional

from .config import MAX_DISK_CACHE_BYTES, MAX_MEMORY_CACHE_BYTES
from .models import CachedImage

logger = logging.getLogger(__name__)


class ImageCache:
    """
    Cache for remotely fetched images.

    Reads check memory first, then disk; a disk hit is promoted into memory.
    Writes go to both tiers. Entries never expire by time; both tiers are
    bounded by bytes and evict least recently used entries.
    """

    def __init__(
        self,
        cache_dir: str,
        max_memory_bytes: int = MAX_MEMORY_CACHE_BYTES,
        max_disk_bytes: int = MAX_DISK_CACHE_BYTES,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.max_memory_bytes = max_memory_bytes
        self.max_disk_bytes = max_disk_bytes
        self._memory: "OrderedDict[str, bytes]" = OrderedDict()
        self._memory_bytes = 0
        self._lock = threading.Lock()

    @staticmethod
    def key_for(identity: str) -> str:
        """Filesystem-safe key derived from the logical identity (usually a URL)."""
        return hashlib.md5(identity.encode("utf-8")).hexdigest()

    def _path(self, key: str) -> Path:
        return self.cache_dir / key

    def get(self, identity: str) -> Optional[CachedImage]:
        """Return the cached image or None when neither tier has it."""
        key = self.key_for(identity)
        with self._lock:
            data = self._memory.get(key)
            if data is not None:
                self._memory.move_to_end(key)
                logger.debug(f"Using cached image from memory for key: {key}")
                return CachedImage(key=key, data=data)

            path = self._path(key)
            try:
                data = path.read_bytes()
            except FileNotFoundError:
                return None
            except OSError as e:
                logger.warning(f"Could not read cached image {key}: {e}")
                return None

            try:
                os.utime(path)
            except OSError:
                logger.debug(f"Could not touch cached image {key}")
            self._remember(key, data)
            logger.debug(f"Using cached image from disk for key: {key}")
            return CachedImage(key=key, data=data)

    def put(self, identity: str, data: bytes) -> CachedImage:
        """Store an image in both tiers; the last write for a key wins."""
        key = self.key_for(identity)
        with self._lock:
            self._remember(key, data)
            self._write_disk(key, data)
            self._evict_disk()
        logger.debug(f"Image cached for key: {key} ({len(data)} bytes)")
        return CachedImage(key=key, data=data)

    def discard(self, identity: str) -> None:
        """Drop one entry from both tiers."""
        key = self.key_for(identity)
        with self._lock:
            data = self._memory.pop(key, None)
            if data is not None:
                self._memory_bytes -= len(data)
            try:
                self._path(key).unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to delete cached image {key}: {e}")

    def clear(self) -> None:
        """Empty both tiers. Safe to call repeatedly and on a missing directory."""
        with self._lock:
            self._memory.clear()
            self._memory_bytes = 0
            if not self.cache_dir.is_dir():
                return
            removed = 0
            for entry in self.cache_dir.iterdir():
                if not entry.is_file():
                    continue
                try:
                    entry.unlink()
                    removed += 1
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Failed to delete cached image {entry.name}: {e}")
        logger.info(f"Image cache cleared ({removed} file(s) removed)")

    def _remember(self, key: str, data: bytes) -> None:
        previous = self._memory.pop(key, None)
        if previous is not None:
            self._memory_bytes -= len(previous)
        if len(data) > self.max_memory_bytes:
            return
        self._memory[key] = data
        self._memory_bytes += len(data)
        while self._memory_bytes > self.max_memory_bytes and self._memory:
            _, evicted = self._memory.popitem(last=False)
            self._memory_bytes -= len(evicted)

    def _write_disk(self, key: str, data: bytes) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_path, self._path(key))
            except OSError:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            logger.error(f"Failed to write image to disk: {e}")

    def _evict_disk(self) -> None:
        try:
            entries = [
                (entry.stat().st_mtime, entry.stat().st_size, entry)
                for entry in self.cache_dir.iterdir()
                if entry.is_file() and not entry.name.startswith(".tmp-")
            ]
        except OSError as e:
            logger.warning(f"Could not scan disk cache: {e}")
            return

        total = sum(size for _, size, _ in entries)
        if total <= self.max_disk_bytes:
            return

        for _, size, entry in sorted(entries, key=lambda item: item[0]):
            if total <= self.max_disk_bytes:
                break
            try:
                entry.unlink()
                total -= size
                logger.debug(f"Evicted cached image {entry.name} from disk")
            except OSError as e:
                logger.warning(f"Could not evict {entry.name}: {e}")
