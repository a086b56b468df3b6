"""
Lock management for specd.

Two kinds of flock-based locks, both keyed by specification:

- lease: held by the coordinator for the whole life of a worker session.
  Guarantees at most one active session per specification.
- store mutex: held by the document store for a single read-compare-write.

flock locks belong to the open file description, so two acquisitions in
the same process (different threads) exclude each other exactly like two
processes do.
"""

import atexit
import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path

from specd.lib.errors import LeaseHeldError

LEASE_DIR = ("locks", "specs")
MUTEX_DIR = ("locks", "store")
LEASE_POLL_INTERVAL = 0.5
MUTEX_POLL_INTERVAL = 0.01
MUTEX_TIMEOUT = 30.0


def lease_file(root: Path, spec_id: str) -> Path:
    return root.joinpath(*LEASE_DIR) / f"{spec_id}.lock"


def is_leased(lock_file: Path) -> bool:
    """True if someone holds the lock on lock_file."""
    try:
        fd = open(lock_file, 'r')
    except OSError:
        return False
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        fcntl.flock(fd, fcntl.LOCK_UN)
        return False
    except BlockingIOError:
        return True
    finally:
        fd.close()


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str, poll_interval: float):
    """
    Acquire an exclusive flock on lock_file.

    Args:
        lock_file: Path to the lock file
        timeout: Seconds to wait; 0 tries exactly once
        lock_name: Human-readable name for error messages
        poll_interval: Seconds between attempts

    Raises:
        LeaseHeldError: if the lock could not be acquired in time
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    # Lock files are never deleted: unlinking a held lock lets a second
    # process lock a fresh inode at the same path.
    fd = open(lock_file, 'a+')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start >= timeout:
                fd.close()
                raise LeaseHeldError(f"Could not acquire {lock_name} within {timeout}s")
            time.sleep(poll_interval)

    def cleanup():
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
            fd.close()
        except (OSError, ValueError):
            pass

    atexit.register(cleanup)

    try:
        fd.seek(0)
        fd.truncate()
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        atexit.unregister(cleanup)
        cleanup()


@contextmanager
def spec_lease(root: Path, spec_id: str, timeout: float = 0):
    """
    Hold the lease for one specification while a session runs.

    Different specifications lease independently and can run in parallel.
    """
    with _acquire_lock(lease_file(root, spec_id), timeout, f"lease for {spec_id}",
                       LEASE_POLL_INTERVAL):
        yield


@contextmanager
def store_mutex(root: Path, spec_id: str, timeout: float = MUTEX_TIMEOUT):
    """Short critical section around a store read-compare-write."""
    lock_file = root.joinpath(*MUTEX_DIR) / f"{spec_id}.lock"
    with _acquire_lock(lock_file, timeout, f"store mutex for {spec_id}", MUTEX_POLL_INTERVAL):
        yield
