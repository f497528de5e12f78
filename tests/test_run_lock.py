import os

import pytest

from bgswitch.common.errors import LockBusy
from bgswitch.common.run_lock import RunLock


def test_lock_is_exclusive_while_owner_alive(tmp_path):
    path = tmp_path / ".bgswitch.lock"
    # a live pid that is not ours
    path.write_text(f"{os.getppid()}\n")

    with pytest.raises(LockBusy) as ei:
        RunLock(path).acquire()
    assert str(os.getppid()) in ei.value.message
    assert path.exists()


def test_acquire_and_release(tmp_path):
    path = tmp_path / "locks" / ".bgswitch.lock"

    with RunLock(path):
        assert path.read_text().strip() == str(os.getpid())
    assert not path.exists()


def test_stale_lock_is_reclaimed(tmp_path):
    path = tmp_path / ".bgswitch.lock"
    path.write_text("999999999\n")

    lock = RunLock(path)
    lock.acquire()

    assert path.read_text().strip() == str(os.getpid())
    lock.release()


def test_unreadable_owner_is_stale(tmp_path):
    path = tmp_path / ".bgswitch.lock"
    path.write_text("garbage")

    with RunLock(path):
        assert path.read_text().strip() == str(os.getpid())


def test_release_without_acquire_keeps_foreign_lock(tmp_path):
    path = tmp_path / ".bgswitch.lock"
    path.write_text("1\n")

    RunLock(path).release()

    assert path.exists()
