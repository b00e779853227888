import pytest

from ipswkit.locking import LockError, LockFile


def test_acquire_creates_file_and_release(tmp_path):
    path = tmp_path / "fw.ipsw.lock"
    lock = LockFile(str(path))
    assert lock.locked is False
    lock.acquire()
    assert lock.locked is True
    assert path.exists()
    lock.release()
    assert lock.locked is False


def test_context_manager(tmp_path):
    path = tmp_path / "ctx.lock"
    with LockFile(str(path)) as lock:
        assert lock.locked is True
        assert path.exists()
    assert lock.locked is False


def test_existing_content_is_kept(tmp_path):
    path = tmp_path / "keep.lock"
    path.write_text("data")
    with LockFile(str(path)):
        pass
    assert path.read_text() == "data"


def test_release_without_acquire_raises(tmp_path):
    lock = LockFile(str(tmp_path / "never.lock"))
    with pytest.raises(LockError):
        lock.release()


def test_double_release_raises(tmp_path):
    lock = LockFile(str(tmp_path / "twice.lock"))
    lock.acquire()
    lock.release()
    with pytest.raises(LockError):
        lock.release()


def test_double_acquire_raises(tmp_path):
    lock = LockFile(str(tmp_path / "again.lock"))
    lock.acquire()
    try:
        with pytest.raises(LockError):
            lock.acquire()
        assert lock.locked is True
    finally:
        lock.release()


def test_acquire_in_missing_directory_raises(tmp_path):
    lock = LockFile(str(tmp_path / "missing" / "x.lock"))
    with pytest.raises(LockError):
        lock.acquire()
    assert lock.locked is False


def test_reacquire_after_release(tmp_path):
    lock = LockFile(str(tmp_path / "re.lock"))
    for _ in range(2):
        lock.acquire()
        assert lock.locked is True
        lock.release()
    assert lock.locked is False