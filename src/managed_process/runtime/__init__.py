"""Runtime module for managing a single child process.

Provides the ManagedProcess abstraction (spawn / write / wait / kill)
and the OutputBuffer containers that accumulate its stdout and stderr.
"""

from __future__ import annotations

from .command import Command
from .errors import ManagedProcessError, ProcessFailedError
from .output_buffer import OutputBuffer
from .process import InputData, ManagedProcess

__all__ = [
    "Command",
    "InputData",
    "ManagedProcess",
    "ManagedProcessError",
    "OutputBuffer",
    "ProcessFailedError",
]
