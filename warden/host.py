"""
Host access layer.

Everything Warden needs from the operating system (shell commands, config
files, permission bits) goes through a HostRunner so the security and
monitoring logic can be exercised against canned output.
"""

import os
import logging
import subprocess
from typing import Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

CommandResult = Tuple[int, str, str]


class HostRunner:
    """Interface for running commands and reading files on the host."""

    def run(self, cmd: List[str], timeout: Optional[int] = None) -> CommandResult:
        """Run a command and return (returncode, stdout, stderr). Must not raise."""
        raise NotImplementedError

    def read_text(self, path: str) -> str:
        """Return file contents. Raises OSError if missing or unreadable."""
        raise NotImplementedError

    def iter_lines(self, path: str) -> Iterator[str]:
        """Yield the lines of a file one at a time. Raises OSError if missing or unreadable."""
        raise NotImplementedError

    def file_mode(self, path: str) -> int:
        """Return permission bits of path. Raises OSError if missing."""
        raise NotImplementedError

    def which(self, name: str) -> bool:
        rc, stdout, _ = self.run(['which', name])
        return rc == 0 and bool(stdout.strip())


class SubprocessHostRunner(HostRunner):
    """HostRunner backed by subprocess and the local filesystem."""

    def __init__(self, timeout: int = 5):
        self.timeout = timeout

    def run(self, cmd: List[str], timeout: Optional[int] = None) -> CommandResult:
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout
            )
            return (result.returncode, result.stdout, result.stderr)
        except subprocess.TimeoutExpired:
            return (-1, "", "timeout")
        except FileNotFoundError:
            return (-1, "", "not found")
        except OSError as e:
            return (-1, "", str(e))

    def read_text(self, path: str) -> str:
        with open(path, 'r', errors='replace') as f:
            return f.read()

    def iter_lines(self, path: str) -> Iterator[str]:
        with open(path, 'r', errors='replace') as f:
            for line in f:
                yield line.rstrip('\n')

    def file_mode(self, path: str) -> int:
        return os.stat(path).st_mode & 0o777
