"""Single-pass request body cache with content digests.

The body source is read exactly once. Every chunk updates the MD5, SHA-1,
SHA-256 and SHA-512 accumulators and is written to the active storage tier:

    memory -> gzip memory            (compression threshold, compressible type)
    memory | gzip memory -> spool    (spool threshold, same encoding)

Thresholds are checked as bytes arrive, so the body length need not be known
up front. body_stream() can be called any number of times and always yields
the original bytes.
"""
from __future__ import annotations

import atexit
import gzip
import hashlib
import io
import os
import re
import shutil
import tempfile
import threading
import zlib
from enum import Enum
from typing import BinaryIO, Dict, Iterable, Iterator, Optional, Union

from ..auth.errors import BodyTooLargeError
from ..config import BODY_CHUNK_SIZE, AuthConfig, load_config
from ..obs.prom import observe_body
from ..utils.logging import get_logger

log = get_logger(__name__)

DIGEST_ALGORITHMS = ("md5", "sha1", "sha256", "sha512")
SPOOL_PREFIX = "snws-body-"
SPOOL_SUFFIX = ".dat"

# gzip container (header + trailer) from zlib
_GZIP_WBITS = 31

Source = Union[bytes, bytearray, BinaryIO, Iterable[bytes], None]


class CacheState(str, Enum):
    UNCACHED = "uncached"
    CACHING = "caching"
    CACHED_MEMORY = "cached_memory"
    CACHED_COMPRESSED_MEMORY = "cached_compressed_memory"
    CACHED_SPOOLED_FILE = "cached_spooled_file"
    CACHED_COMPRESSED_SPOOLED_FILE = "cached_compressed_spooled_file"
    DELETED = "deleted"


_CACHED_STATES = {
    CacheState.CACHED_MEMORY,
    CacheState.CACHED_COMPRESSED_MEMORY,
    CacheState.CACHED_SPOOLED_FILE,
    CacheState.CACHED_COMPRESSED_SPOOLED_FILE,
}

# spool files not yet deleted; cleared at interpreter exit
_LIVE_SPOOLS: set = set()
_LIVE_LOCK = threading.Lock()


def _register_spool(path: str) -> None:
    with _LIVE_LOCK:
        _LIVE_SPOOLS.add(path)


def _unlink_spool(path: str) -> None:
    with _LIVE_LOCK:
        _LIVE_SPOOLS.discard(path)
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def live_spool_paths() -> list:
    with _LIVE_LOCK:
        return sorted(_LIVE_SPOOLS)


@atexit.register
def _remove_live_spools() -> None:  # pragma: no cover - exercised at interpreter exit
    for path in live_spool_paths():
        try:
            _unlink_spool(path)
        except OSError as e:
            log.warning(f"spool cleanup failed path={path} err={e}")


class ContentDigestCache:
    """Caches one request body and the digests computed while reading it.

    Either pass a source (bytes, a file-like object with read(), or an
    iterable of byte chunks) and let digest()/body_stream() pull it, or push
    chunks with feed() and finish with complete(). Not for concurrent use.
    """

    def __init__(
        self,
        source: Source = None,
        content_type: Optional[str] = None,
        *,
        config: Optional[AuthConfig] = None,
        max_length: Optional[int] = None,
        compression_threshold: Optional[int] = None,
        spool_threshold: Optional[int] = None,
        compressible_pattern: Optional[str] = None,
        spool_directory: Optional[str] = None,
        chunk_size: int = BODY_CHUNK_SIZE,
    ):
        cfg = config or load_config()
        self.content_type = content_type
        self.max_length = cfg.max_body_length if max_length is None else max_length
        self.compression_threshold = (
            cfg.compression_threshold_bytes if compression_threshold is None else compression_threshold
        )
        self.spool_threshold = cfg.spool_threshold_bytes if spool_threshold is None else spool_threshold
        pattern = compressible_pattern or cfg.compressible_content_type_pattern
        self._compressible = bool(content_type) and re.match(pattern, content_type.strip(), re.IGNORECASE) is not None
        self.spool_directory = spool_directory or cfg.spool_directory
        self.chunk_size = chunk_size

        self._source = source
        self._state = CacheState.UNCACHED
        self._hashers = {alg: hashlib.new(alg) for alg in DIGEST_ALGORITHMS}
        self._digests: Dict[str, bytes] = {}
        self._count = 0
        self._compressor = None
        self._buffer: Optional[io.BytesIO] = None
        self._memory: Optional[bytes] = None
        self._spool = None
        self._spool_path: Optional[str] = None

    # -- state ---------------------------------------------------------

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def byte_count(self) -> int:
        return self._count

    @property
    def spool_path(self) -> Optional[str]:
        return self._spool_path

    @property
    def compressed(self) -> bool:
        return self._state in (CacheState.CACHED_COMPRESSED_MEMORY, CacheState.CACHED_COMPRESSED_SPOOLED_FILE) or (
            self._state == CacheState.CACHING and self._compressor is not None
        )

    def __enter__(self) -> "ContentDigestCache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.delete()

    # -- writing -------------------------------------------------------

    def feed(self, chunk: bytes) -> None:
        if self._state == CacheState.DELETED:
            raise RuntimeError("content cache has been deleted")
        if self._state in _CACHED_STATES:
            raise RuntimeError("content cache is already complete")
        if self._state == CacheState.UNCACHED:
            self._state = CacheState.CACHING
            self._buffer = io.BytesIO()
        if not chunk:
            return
        if self._count + len(chunk) > self.max_length:
            self._abort()
            raise BodyTooLargeError(self.max_length)
        for h in self._hashers.values():
            h.update(chunk)
        self._count += len(chunk)
        self._write(chunk)
        self._advance_tier()

    def complete(self) -> None:
        """Finish the pass; idempotent once cached."""
        if self._state in _CACHED_STATES:
            return
        if self._state == CacheState.DELETED:
            raise RuntimeError("content cache has been deleted")
        if self._state == CacheState.UNCACHED:
            self._state = CacheState.CACHING
            self._buffer = io.BytesIO()
            self._pull_source()
        if self._compressor is not None:
            self._sink().write(self._compressor.flush())
            self._compressor = None
            compressed = True
        else:
            compressed = False
        self._digests = {alg: h.digest() for alg, h in self._hashers.items()}
        if self._spool is not None:
            self._spool.close()
            self._spool = None
            self._state = CacheState.CACHED_COMPRESSED_SPOOLED_FILE if compressed else CacheState.CACHED_SPOOLED_FILE
        else:
            self._memory = self._buffer.getvalue()
            self._state = CacheState.CACHED_COMPRESSED_MEMORY if compressed else CacheState.CACHED_MEMORY
        self._buffer = None
        observe_body(tier=self._state.value, byte_count=self._count)
        log.debug(f"body cached bytes={self._count} tier={self._state.value}")

    def _pull_source(self) -> None:
        src = self._source
        self._source = None
        if src is None:
            return
        if isinstance(src, (bytes, bytearray)):
            data = bytes(src)
            for i in range(0, len(data), self.chunk_size):
                self.feed(data[i:i + self.chunk_size])
        elif hasattr(src, "read"):
            while True:
                chunk = src.read(self.chunk_size)
                if not chunk:
                    break
                self.feed(chunk)
        else:
            for chunk in src:
                self.feed(chunk)

    def _sink(self):
        return self._spool if self._spool is not None else self._buffer

    def _write(self, chunk: bytes) -> None:
        if self._compressor is not None:
            chunk = self._compressor.compress(chunk)
        if chunk:
            self._sink().write(chunk)

    def _advance_tier(self) -> None:
        if (
            self._compressor is None
            and self._spool is None
            and self._compressible
            and self._count >= self.compression_threshold
        ):
            self._start_compression()
        if self._spool is None and self._count >= self.spool_threshold:
            self._start_spool()

    def _start_compression(self) -> None:
        raw = self._buffer.getvalue()
        self._compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, _GZIP_WBITS)
        self._buffer = io.BytesIO()
        self._buffer.write(self._compressor.compress(raw))
        log.debug(f"body cache compressing at bytes={self._count}")

    def _start_spool(self) -> None:
        if self.spool_directory:
            os.makedirs(self.spool_directory, exist_ok=True)
        f = tempfile.NamedTemporaryFile(
            prefix=SPOOL_PREFIX, suffix=SPOOL_SUFFIX, dir=self.spool_directory or None, delete=False
        )
        self._spool_path = f.name
        _register_spool(f.name)
        try:
            f.write(self._buffer.getvalue())
        except OSError:
            f.close()
            _unlink_spool(f.name)
            self._spool_path = None
            raise
        self._spool = f
        self._buffer = io.BytesIO()
        log.debug(f"body cache spooled at bytes={self._count} path={f.name}")

    def _abort(self) -> None:
        log.warning(f"body exceeds limit max={self.max_length} read={self._count}; aborting cache")
        self._release()
        self._state = CacheState.DELETED

    def _release(self) -> None:
        self._compressor = None
        self._buffer = None
        self._memory = None
        self._digests = {}
        if self._spool is not None:
            try:
                self._spool.close()
            except OSError:  # pragma: no cover
                pass
            self._spool = None
        if self._spool_path is not None:
            _unlink_spool(self._spool_path)
            self._spool_path = None

    # -- reading -------------------------------------------------------

    def _ensure_cached(self) -> None:
        if self._state == CacheState.DELETED:
            raise RuntimeError("content cache has been deleted")
        if self._state not in _CACHED_STATES:
            self.complete()

    def digest(self, algorithm: str = "sha256") -> bytes:
        alg = algorithm.lower().replace("-", "")
        if alg not in DIGEST_ALGORITHMS:
            raise ValueError(f"unsupported digest algorithm: {algorithm}")
        self._ensure_cached()
        return self._digests[alg]

    def hexdigest(self, algorithm: str = "sha256") -> str:
        return self.digest(algorithm).hex()

    def digests(self) -> Dict[str, bytes]:
        self._ensure_cached()
        return dict(self._digests)

    def body_stream(self) -> BinaryIO:
        """A fresh binary reader positioned at the start of the original body."""
        self._ensure_cached()
        if self._state == CacheState.CACHED_COMPRESSED_SPOOLED_FILE:
            return gzip.open(self._spool_path, "rb")
        if self._state == CacheState.CACHED_SPOOLED_FILE:
            return open(self._spool_path, "rb")
        if self._state == CacheState.CACHED_COMPRESSED_MEMORY:
            return gzip.GzipFile(fileobj=io.BytesIO(self._memory), mode="rb")
        return io.BytesIO(self._memory)

    def iter_body(self, chunk_size: Optional[int] = None) -> Iterator[bytes]:
        size = chunk_size or self.chunk_size
        with self.body_stream() as f:
            while True:
                chunk = f.read(size)
                if not chunk:
                    break
                yield chunk

    def read_body(self) -> bytes:
        with self.body_stream() as f:
            return f.read()

    def copy_body_to(self, dest: BinaryIO) -> int:
        with self.body_stream() as f:
            shutil.copyfileobj(f, dest, self.chunk_size)
        return self._count

    def delete(self) -> None:
        if self._state == CacheState.DELETED:
            return
        self._release()
        self._state = CacheState.DELETED
