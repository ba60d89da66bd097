"""Exceptions raised by the runtime module."""

from __future__ import annotations

__all__ = [
    "ManagedProcessError",
    "ProcessFailedError",
]


class ManagedProcessError(Exception):
    """Base exception for managed_process."""
    pass


class ProcessFailedError(ManagedProcessError):
    """The child process finished in a state the failure policy rejects.

    Attributes:
        message: Failure detail (decoded stderr, or an exit code summary)
        returncode: Exit code of the child (negative for a signal on POSIX)
        stderr: Decoded stderr text at exit time
    """

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        self.message = message
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)
