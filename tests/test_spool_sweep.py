import io
import os
import time

from snws.cache.content import ContentDigestCache
from snws.cache.sweep import sweep_spool_directory
from snws.config import AuthConfig


def _touch(path, age):
    path.write_bytes(b"x")
    t = time.time() - age
    os.utime(path, (t, t))
    return path


def test_sweep_removes_only_old_spool_files(tmp_path):
    old = _touch(tmp_path / "snws-body-old.dat", 7200)
    fresh = _touch(tmp_path / "snws-body-new.dat", 10)
    other = _touch(tmp_path / "unrelated.dat", 7200)

    removed = sweep_spool_directory(str(tmp_path), max_age_seconds=3600)

    assert removed == [str(old)]
    assert not old.exists()
    assert fresh.exists()
    assert other.exists()


def test_sweep_skips_live_spools(tmp_path):
    c = ContentDigestCache(
        io.BytesIO(b"x" * 64), config=AuthConfig(), spool_threshold=1, spool_directory=str(tmp_path)
    )
    c.complete()
    path = c.spool_path
    t = time.time() - 7200
    os.utime(path, (t, t))
    assert sweep_spool_directory(str(tmp_path), max_age_seconds=60) == []
    assert os.path.exists(path)
    c.delete()


def test_sweep_missing_directory(tmp_path):
    assert sweep_spool_directory(str(tmp_path / "nope")) == []
