"""Content-addressed audio cache and deterministic unit fingerprints."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
import hashlib
import json
import logging
import os
from pathlib import Path
import tempfile
import threading

from .interfaces import AudioCache, SynthesisParams
from .utils import ensure_dir

_LOGGER = logging.getLogger(__name__)

FINGERPRINT_VERSION = 1
_FINGERPRINT_PREFIX = "fp_"


def fingerprint(text: str, params: SynthesisParams) -> str:
    """Return the cache key for ``text`` synthesized with ``params``.

    Every parameter that changes the produced audio is part of the payload,
    so the key stays stable across processes and Python versions.
    """
    payload = {
        "v": FINGERPRINT_VERSION,
        "engine": params.engine,
        "voice": params.voice or "",
        "speed": round(params.speed, 4),
        "pitch": round(params.pitch, 4),
        "sample_rate": params.sample_rate,
        "channels": params.channels,
        "sample_width": params.sample_width,
        "text": text,
    }
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    digest = hashlib.sha256(serialized.encode("utf-8")).hexdigest()
    return f"{_FINGERPRINT_PREFIX}{digest}"


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    entries: int
    bytes: int


class _LruIndex:
    """LRU bookkeeping of key -> size, shared by both cache variants.

    Callers hold their own lock around every method.
    """

    def __init__(self, max_entries: int | None, max_bytes: int | None) -> None:
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self.sizes: OrderedDict[str, int] = OrderedDict()
        self.total_bytes = 0

    def fits(self, size: int) -> bool:
        return self.max_bytes is None or size <= self.max_bytes

    def touch(self, key: str) -> None:
        self.sizes.move_to_end(key)

    def add(self, key: str, size: int) -> None:
        self.sizes[key] = size
        self.sizes.move_to_end(key)
        self.total_bytes += size

    def discard(self, key: str) -> None:
        size = self.sizes.pop(key, None)
        if size is not None:
            self.total_bytes -= size

    def over_capacity(self) -> list[str]:
        victims: list[str] = []
        entries = len(self.sizes)
        total = self.total_bytes
        for key, size in self.sizes.items():
            too_many = self.max_entries is not None and entries > self.max_entries
            too_big = self.max_bytes is not None and total > self.max_bytes
            if not (too_many or too_big):
                break
            victims.append(key)
            entries -= 1
            total -= size
        for key in victims:
            self.discard(key)
        return victims


class MemoryAudioCache(AudioCache):
    """Thread-safe in-memory LRU cache of fingerprint -> PCM bytes."""

    def __init__(self, max_entries: int | None = None, max_bytes: int | None = None) -> None:
        self._index = _LruIndex(max_entries, max_bytes)
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> bytes | None:
        with self._lock:
            data = self._data.get(key)
            if data is None:
                self._misses += 1
                return None
            self._index.touch(key)
            self._hits += 1
            return data

    def put(self, key: str, data: bytes) -> bool:
        with self._lock:
            if key in self._data:
                return False
            if not self._index.fits(len(data)):
                _LOGGER.debug("Entry %s (%d bytes) exceeds cache byte budget; not stored", key[:11], len(data))
                return False
            self._data[key] = bytes(data)
            self._index.add(key, len(data))
            for victim in self._index.over_capacity():
                del self._data[victim]
                self._evictions += 1
                _LOGGER.debug("Evicted %s from memory cache", victim[:11])
            return True

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                entries=len(self._data),
                bytes=self._index.total_bytes,
            )


@dataclass(frozen=True)
class AudioCacheLayout:
    root: Path

    @property
    def tts_dir(self) -> Path:
        return self.root / "tts"

    @property
    def chunk_dir(self) -> Path:
        return self.tts_dir / "chunks"

    def chunk_path(self, key: str, ext: str = "pcm") -> Path:
        digest = key[len(_FINGERPRINT_PREFIX) :] if key.startswith(_FINGERPRINT_PREFIX) else key
        prefix = digest[:2] if len(digest) >= 2 else "00"
        return self.chunk_dir / prefix / f"{key}.{ext}"

    def ensure_chunk_dir(self, key: str) -> Path:
        return ensure_dir(self.chunk_path(key).parent)

    def iter_chunks(self) -> list[Path]:
        if not self.chunk_dir.exists():
            return []
        return [path for path in self.chunk_dir.glob("*/*.pcm") if path.is_file()]


class DiskAudioCache(AudioCache):
    """Persistent LRU cache storing one raw PCM file per fingerprint.

    Recency is kept in file modification times so eviction order survives a
    restart. Files are written to a temporary name and renamed into place,
    so readers never observe a partial entry.
    """

    def __init__(self, root: Path, max_entries: int | None = None, max_bytes: int | None = None) -> None:
        self.layout = AudioCacheLayout(root)
        self._index = _LruIndex(max_entries, max_bytes)
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._load_index()

    def _load_index(self) -> None:
        entries: list[tuple[int, str, int]] = []
        for path in self.layout.iter_chunks():
            try:
                stat = path.stat()
            except OSError:
                continue
            entries.append((stat.st_mtime_ns, path.stem, stat.st_size))
        for _, key, size in sorted(entries):
            self._index.add(key, size)
        for victim in self._index.over_capacity():
            self._remove_file(victim)
        _LOGGER.debug("Loaded %d cached unit(s) from %s", len(self._index.sizes), self.layout.chunk_dir)

    def get(self, key: str) -> bytes | None:
        with self._lock:
            if key not in self._index.sizes:
                self._misses += 1
                return None
            path = self.layout.chunk_path(key)
            try:
                data = path.read_bytes()
            except OSError as exc:
                _LOGGER.warning("Dropping unreadable cache entry %s: %s", path, exc)
                self._index.discard(key)
                self._misses += 1
                return None
            self._index.touch(key)
            self._hits += 1
            try:
                os.utime(path)
            except OSError:
                pass
            return data

    def put(self, key: str, data: bytes) -> bool:
        with self._lock:
            if key in self._index.sizes:
                return False
            if not self._index.fits(len(data)):
                _LOGGER.debug("Entry %s (%d bytes) exceeds cache byte budget; not stored", key[:11], len(data))
                return False
            path = self.layout.chunk_path(key)
            self.layout.ensure_chunk_dir(key)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{key[:11]}", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_name, path)
            except OSError:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            self._index.add(key, len(data))
            for victim in self._index.over_capacity():
                self._remove_file(victim)
            return True

    def _remove_file(self, key: str) -> None:
        self._evictions += 1
        try:
            self.layout.chunk_path(key).unlink(missing_ok=True)
        except OSError as exc:  # pragma: no cover - best-effort eviction
            _LOGGER.warning("Failed to evict cache entry %s: %s", key[:11], exc)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._index.sizes

    def __len__(self) -> int:
        with self._lock:
            return len(self._index.sizes)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                entries=len(self._index.sizes),
                bytes=self._index.total_bytes,
            )


class NullAudioCache(AudioCache):
    """Cache used when caching is disabled: never stores anything."""

    def get(self, key: str) -> bytes | None:
        return None

    def put(self, key: str, data: bytes) -> bool:
        return False

    def __len__(self) -> int:
        return 0


def build_audio_cache(
    enabled: bool,
    *,
    persistent: bool,
    root: Path | None,
    max_entries: int | None,
    max_bytes: int | None,
) -> AudioCache:
    if not enabled:
        return NullAudioCache()
    if persistent:
        if root is None:
            raise ValueError("A cache directory is required for the persistent cache.")
        return DiskAudioCache(root, max_entries=max_entries, max_bytes=max_bytes)
    return MemoryAudioCache(max_entries=max_entries, max_bytes=max_bytes)
