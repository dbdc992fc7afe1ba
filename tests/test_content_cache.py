import hashlib
import io
import os

import pytest

from snws.auth.errors import BodyTooLargeError
from snws.cache.content import CacheState, ContentDigestCache, live_spool_paths
from snws.config import AuthConfig
from snws.crypto.digest import EMPTY_SHA256_HEX

JSON = "application/json"
OCTET = "application/octet-stream"


def _cache(body, content_type, tmp_path, **kw):
    return ContentDigestCache(
        io.BytesIO(body), content_type, config=AuthConfig(), spool_directory=str(tmp_path), **kw
    )


def _check(cache, body, md5, sha1, sha256):
    assert cache.hexdigest("md5") == md5
    assert cache.hexdigest("sha1") == sha1
    assert cache.hexdigest("sha256") == sha256
    assert cache.byte_count == len(body)
    assert cache.read_body() == body


def test_small_body_stays_in_memory(tmp_path):
    body = b"0" * 1024
    with _cache(body, JSON, tmp_path) as c:
        _check(
            c,
            body,
            "9d0ef2e3d00a0793bd4c5f31b8ad9e8a",
            "a0a32b159feca49e7b13b9a49ae0127ade587f8b",
            "35ae5091b37e8f0f306833ef57a635f9dc06738d7f4e563a610eec2adb26fe28",
        )
        assert c.state == CacheState.CACHED_MEMORY


@pytest.mark.parametrize(
    "content_type,state",
    [(JSON, CacheState.CACHED_COMPRESSED_MEMORY), (OCTET, CacheState.CACHED_MEMORY)],
)
def test_medium_body_compressed_only_for_compressible_types(tmp_path, content_type, state):
    body = b"0" * 8192
    with _cache(body, content_type, tmp_path) as c:
        _check(
            c,
            body,
            "c421804369c8b3777d33c46d7655abea",
            "bd5fdf6bf5aa7db12d8cb6a4ee066adad41dc0d6",
            "fc25464cfa116ccfe8bfcf9e8bc095b1e4cdcfc40e26ade2be58884bb6b648f2",
        )
        assert c.state == state
        assert c.compressed is (content_type == JSON)


@pytest.mark.parametrize(
    "content_type,state",
    [(JSON, CacheState.CACHED_COMPRESSED_SPOOLED_FILE), (OCTET, CacheState.CACHED_SPOOLED_FILE)],
)
def test_large_body_spooled(tmp_path, content_type, state):
    body = b"0" * 17408
    c = _cache(body, content_type, tmp_path, spool_threshold=16384)
    _check(
        c,
        body,
        "cfb1011114536da94b4e5d36f17aa1a1",
        "454494d4e8b50a9e37de3fef36a37ec4d2e105de",
        "cd4c234eeedb5c80f4ef34ad4776b35fd3accf76f5df1d95703087a50508ff5c",
    )
    assert c.state == state
    path = c.spool_path
    assert os.path.dirname(path) == str(tmp_path)
    assert os.path.basename(path).startswith("snws-body-")
    assert path in live_spool_paths()
    if state == CacheState.CACHED_COMPRESSED_SPOOLED_FILE:
        assert os.path.getsize(path) < len(body)
    c.delete()
    assert not os.path.exists(path)
    assert path not in live_spool_paths()


def test_body_readable_repeatedly(tmp_path):
    body = os.urandom(20000)
    c = _cache(body, OCTET, tmp_path, spool_threshold=10000)
    assert c.read_body() == body
    assert b"".join(c.iter_body(777)) == body
    out = io.BytesIO()
    assert c.copy_body_to(out) == len(body)
    assert out.getvalue() == body
    assert c.digest("sha-512") == hashlib.sha512(body).digest()
    c.delete()


def test_thresholds_are_inclusive(tmp_path):
    with _cache(b"{" * 4096, JSON, tmp_path) as c:
        c.complete()
        assert c.state == CacheState.CACHED_COMPRESSED_MEMORY
    with _cache(b"{" * 4095, JSON, tmp_path) as c:
        c.complete()
        assert c.state == CacheState.CACHED_MEMORY
    with _cache(b"x" * 2048, OCTET, tmp_path, spool_threshold=2048) as c:
        c.complete()
        assert c.state == CacheState.CACHED_SPOOLED_FILE


def test_limit_exceeded_aborts_and_cleans_up(tmp_path):
    c = _cache(b"x" * 2000, OCTET, tmp_path, max_length=1000, spool_threshold=100, chunk_size=256)
    with pytest.raises(BodyTooLargeError) as e:
        c.complete()
    assert e.value.limit == 1000
    assert e.value.status_code == 413
    assert c.state == CacheState.DELETED
    assert list(tmp_path.iterdir()) == []
    with pytest.raises(RuntimeError):
        c.body_stream()


def test_body_at_limit_accepted(tmp_path):
    with _cache(b"x" * 1000, OCTET, tmp_path, max_length=1000) as c:
        assert c.read_body() == b"x" * 1000


def test_delete_is_idempotent(tmp_path):
    c = _cache(b"abc", OCTET, tmp_path)
    c.complete()
    c.delete()
    c.delete()
    assert c.state == CacheState.DELETED
    with pytest.raises(RuntimeError):
        c.digest()
    with pytest.raises(RuntimeError):
        c.feed(b"more")


def test_empty_body(tmp_path):
    with _cache(b"", None, tmp_path) as c:
        assert c.hexdigest() == EMPTY_SHA256_HEX
        assert c.byte_count == 0
        assert c.read_body() == b""
        assert c.state == CacheState.CACHED_MEMORY


def test_push_api(tmp_path):
    c = ContentDigestCache(content_type=JSON, config=AuthConfig(), spool_directory=str(tmp_path))
    assert c.state == CacheState.UNCACHED
    c.feed(b"hello ")
    assert c.state == CacheState.CACHING
    c.feed(b"world")
    c.complete()
    c.complete()
    assert c.read_body() == b"hello world"
    assert c.hexdigest() == hashlib.sha256(b"hello world").hexdigest()
    with pytest.raises(RuntimeError):
        c.feed(b"!")
    c.delete()


def test_iterable_source(tmp_path):
    chunks = [b"a" * 10, b"b" * 10, b"", b"c"]
    with ContentDigestCache(iter(chunks), config=AuthConfig(), spool_directory=str(tmp_path)) as c:
        assert c.read_body() == b"".join(chunks)
        assert set(c.digests()) == {"md5", "sha1", "sha256", "sha512"}


def test_unknown_digest_algorithm(tmp_path):
    with _cache(b"x", OCTET, tmp_path) as c:
        with pytest.raises(ValueError):
            c.digest("crc32")
