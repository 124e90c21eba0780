"""File-based locking shared by hook and scan processes."""

import fcntl
import logging
import tempfile
import time
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

from agentrace.core.settings import Settings, settings

logger = logging.getLogger(__name__)


class AgentraceLock:
    """Acquires an exclusive ``flock`` on a named file in the data directory.

    ``timeout=0`` makes a single non-blocking attempt.
    """

    def __init__(self, name: str = "agentrace", timeout: float = 2.0, config: Settings | None = None):
        self.name = name
        self.timeout = timeout
        self.config = config or settings
        self.lock_file_path = self._get_lock_file_path()
        self._lock_file_fd: IO[str] | None = None

    def _get_lock_file_path(self) -> Path:
        try:
            data_dir = self.config.resolved_data_dir
            data_dir.mkdir(parents=True, exist_ok=True)
            return data_dir / f"{self.name}.lock"
        except OSError as e:
            logger.debug(f"Data dir unavailable for lock file, using tempdir: {e}")

        return Path(tempfile.gettempdir()) / f"{self.name}.lock"

    @contextmanager
    def acquire(self) -> Generator[bool]:
        """Attempt to acquire the lock.

        Yields:
            True if lock acquired, False if timed out.
        """
        start_time = time.monotonic()
        self._lock_file_fd = open(self.lock_file_path, "a")

        acquired = False
        try:
            while True:
                try:
                    fcntl.flock(self._lock_file_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    acquired = True
                    break
                except OSError:
                    if time.monotonic() - start_time >= self.timeout:
                        break
                    time.sleep(0.05)

            yield acquired

        finally:
            if acquired:
                try:
                    fcntl.flock(self._lock_file_fd, fcntl.LOCK_UN)
                except OSError as e:
                    logger.debug(f"Failed to unlock {self.lock_file_path}: {e}")

            try:
                self._lock_file_fd.close()
            except OSError as e:
                logger.debug(f"Failed to close {self.lock_file_path}: {e}")
