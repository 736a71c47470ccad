"""
Run Lock

PID-file lock guarding one autonomous processing run at a time. A lock file
left behind by a process that no longer exists is reclaimed.
"""

import logging
import os
import time

import psutil

from agent_config import LOCK_FILE, LOCK_POLL_SECONDS, LOCK_WAIT_SECONDS

logger = logging.getLogger(__name__)


def read_lock_pid(lock_file: str) -> int | None:
    """
    Read the PID from the lock file.

    Returns:
        The integer PID if the file exists and contains a valid number, None otherwise.
    """
    try:
        with open(lock_file, 'r') as f:
            pid_str = f.read().strip()
    except OSError:
        return None
    return int(pid_str) if pid_str.isdigit() else None


class RunLock:

    def __init__(self, lock_file: str = LOCK_FILE, wait_seconds: float = LOCK_WAIT_SECONDS,
                 poll_seconds: float = LOCK_POLL_SECONDS,
                 stale_after_seconds: float = LOCK_WAIT_SECONDS):
        self.lock_file = lock_file
        self.wait_seconds = wait_seconds
        self.poll_seconds = poll_seconds
        self.stale_after_seconds = stale_after_seconds
        self.held = False

    def acquire(self) -> bool:
        """Try to take the lock, waiting at most wait_seconds. Never queues."""
        deadline = time.monotonic() + self.wait_seconds
        while True:
            if self._try_create():
                self.held = True
                return True
            if self._reclaim_if_stale():
                continue
            if time.monotonic() >= deadline:
                logger.info(f"Run lock {self.lock_file} is held by another process")
                return False
            time.sleep(self.poll_seconds)

    def release(self) -> None:
        if not self.held:
            return
        self.held = False
        if read_lock_pid(self.lock_file) == os.getpid():
            try:
                os.remove(self.lock_file)
            except FileNotFoundError:
                pass

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc, tb):
        self.release()

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        with os.fdopen(fd, 'w') as f:
            f.write(str(os.getpid()))
        return True

    def _reclaim_if_stale(self) -> bool:
        pid = read_lock_pid(self.lock_file)
        if pid is None:
            # Owner may not have written its PID yet; unreadable past the grace period means it crashed
            try:
                age = time.time() - os.path.getmtime(self.lock_file)
            except FileNotFoundError:
                return True
            if age < self.stale_after_seconds:
                return False
            logger.warning(f"Removing unreadable run lock {self.lock_file} ({age:.0f}s old)")
            try:
                os.remove(self.lock_file)
            except FileNotFoundError:
                pass
            return True
        if psutil.pid_exists(pid):
            return False
        logger.warning(f"Removing stale run lock left by PID {pid}")
        try:
            os.remove(self.lock_file)
        except FileNotFoundError:
            pass
        return True
