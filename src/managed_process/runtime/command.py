"""Passthrough ManagedProcess for ad-hoc commands."""

from __future__ import annotations

from typing import Any

from .process import ManagedProcess

__all__ = ["Command"]


class Command(ManagedProcess):
    """ManagedProcess whose arguments are passed to the executable verbatim.

    Example:
        ls = Command("ls")
        await ls.spawn("-l", "/tmp")
        await ls.wait()
    """

    def __init__(self, executable: str, *args: Any, **kwargs: Any) -> None:
        """Initialize the command.

        Args:
            executable: Program name or path
            *args, **kwargs: Forwarded to ManagedProcess
        """
        super().__init__(*args, **kwargs)
        self._executable = executable

    @property
    def executable(self) -> str:
        return self._executable

    def build_arguments(self, *args: Any) -> list[str]:
        return [str(arg) for arg in args]
