"""Managed child process with buffered stdout/stderr.

managed_process runtime module

This module provides:
- ManagedProcess: owns at most one child process at a time, plus one
  OutputBuffer per output stream
- Respawn-safe handle replacement (detach readers -> signal -> clear -> install)
- Non-blocking stdin forwarding from bytes or byte streams
- A configurable failure policy for wait()
- Graceful termination (SIGTERM -> timeout -> SIGKILL)

Key design points:
- Subclasses supply only the executable and the argument mapping
- POSIX: start_new_session=True, signals go to the child's process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Stream readers only append to buffers; all other state changes happen in
  spawn() under a lock
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Mapping
from pathlib import Path
from typing import Any, Union

import anyio
import anyio.to_thread

from ..config import Config, FailurePolicy, get_config
from .errors import ProcessFailedError
from .output_buffer import OutputBuffer

__all__ = [
    "InputData",
    "ManagedProcess",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Anything write() accepts
InputData = Union[
    bytes,
    bytearray,
    memoryview,
    asyncio.StreamReader,
    AsyncIterable[bytes],
    Iterable[bytes],
]

# Sentinel for an exhausted sync iterable
_EXHAUSTED = object()


class ManagedProcess(ABC):
    """Owner of a single child process and its two output buffers.

    Subclasses implement:
    - executable: program name or path
    - build_arguments(): domain arguments -> literal argument list

    Lifecycle:
        Unspawned --spawn--> Running --kill/exit--> Exited
        Exited --spawn--> Running (old handle torn down, buffers reset)

    Example:
        class Grep(ManagedProcess):
            @property
            def executable(self) -> str:
                return "grep"

            def build_arguments(self, pattern: str) -> list[str]:
                return ["-e", pattern]

        grep = Grep()
        await grep.spawn("needle")
        grep.write(b"hay\\nneedle\\n")
        await grep.wait()
        print(grep.stdout.to_text())
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        failure_policy: FailurePolicy | None = None,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize without starting anything.

        Args:
            config: Runtime configuration (defaults to the global config)
            failure_policy: Overrides config.failure_policy for this instance
            cwd: Working directory for spawned processes (None = inherit)
            env: Environment for spawned processes (None = inherit)
        """
        self._config = config if config is not None else get_config()
        self._failure_policy = failure_policy or self._config.failure_policy
        self._cwd = Path(cwd) if cwd is not None else None
        self._env = dict(env) if env is not None else None

        self._stdout = OutputBuffer()
        self._stderr = OutputBuffer()

        # Current handle and the tasks bound to it
        self._process: asyncio.subprocess.Process | None = None
        self._readers: list[asyncio.Task[None]] = []
        # Every unfinished stdin pump; the newest one is the tail of the chain
        self._stdin_tasks: set[asyncio.Task[None]] = set()
        self._stdin_task: asyncio.Task[None] | None = None
        self._killed = False
        self._argv: list[str] = []

        self._lock = anyio.Lock()

    # =========================================================================
    # Extension points
    # =========================================================================

    @property
    @abstractmethod
    def executable(self) -> str:
        """Program name or path passed to the OS."""
        ...

    @abstractmethod
    def build_arguments(self, *args: Any, **kwargs: Any) -> list[str]:
        """Map spawn() arguments to the literal command-line arguments.

        Must be pure; the executable itself is not part of the result.
        """
        ...

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def stdout(self) -> OutputBuffer:
        return self._stdout

    @property
    def stderr(self) -> OutputBuffer:
        return self._stderr

    @property
    def failure_policy(self) -> FailurePolicy:
        return self._failure_policy

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    @property
    def argv(self) -> list[str]:
        """Argument vector of the last spawn, executable first."""
        return list(self._argv)

    @property
    def is_alive(self) -> bool:
        """True while a handle is installed, not killed and not exited."""
        return (
            self._process is not None
            and not self._killed
            and self._process.returncode is None
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def spawn(self, *args: Any, **kwargs: Any) -> None:
        """Start a new child process, retiring the current one first.

        Args:
            *args: Domain arguments passed to build_arguments()
            **kwargs: Domain keyword arguments passed to build_arguments()

        Raises:
            OSError: If the OS cannot create the process (e.g. FileNotFoundError)
        """
        argv = [self.executable, *self.build_arguments(*args, **kwargs)]

        async with self._lock:
            await self._detach()

            self._argv = argv
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **self._build_subprocess_kwargs(),
            )
            self._install(process)

    def write(self, data: InputData, *, end: bool = True) -> None:
        """Forward data to the child's stdin without waiting for it.

        Bytes are wrapped into a one-chunk stream; streams are forwarded
        chunk by chunk as they produce data. Plain iterables are pulled in a
        worker thread so a blocking source does not stall the event loop.
        Successive writes are delivered in call order. A source that raises
        is logged and stdin is still closed when end is set. Does nothing
        when there is no process or its stdin is already closed.

        Args:
            data: bytes-like object, asyncio.StreamReader, or (async) iterable of bytes
            end: Close stdin once this data has been forwarded

        Raises:
            TypeError: If data is text or not a byte source
        """
        if isinstance(data, str) or not isinstance(
            data, (bytes, bytearray, memoryview, asyncio.StreamReader, AsyncIterable, Iterable)
        ):
            raise TypeError(f"write() expects bytes or a byte stream, got {type(data).__name__}")

        process = self._process
        if process is None or process.stdin is None or process.stdin.is_closing():
            return

        task = asyncio.create_task(
            self._pump_input(process, _iter_input(data, self._config.read_chunk_size), self._stdin_task, end)
        )
        self._stdin_tasks.add(task)
        task.add_done_callback(self._stdin_tasks.discard)
        self._stdin_task = task

    async def wait(self) -> int | None:
        """Wait for the current process to exit and apply the failure policy.

        Returns:
            Exit code, or None if nothing was spawned

        Raises:
            ProcessFailedError: If the failure policy rejects the outcome
        """
        process = self._process
        if process is None:
            return None

        readers = list(self._readers)
        returncode = await process.wait()
        # Exit may be reported before the pipes reach EOF
        if readers:
            await asyncio.wait(readers)

        logger.debug(f"Subprocess exited pid={process.pid} returncode={returncode}")

        if process is not self._process:
            # Superseded by a later spawn; its output is gone with it
            return returncode

        self._check_outcome(returncode)
        return returncode

    def kill(self, code: int = 0) -> None:
        """Send a termination signal to the current process.

        Buffers and readers are left alone; only the next spawn() or
        aclose() cleans those up.

        Args:
            code: Signal number; 0 means the configured kill signal
        """
        process = self._process
        if process is None:
            return
        if process.returncode is not None:
            logger.debug(f"Subprocess already exited pid={process.pid}")
            return

        self._killed = True
        self._send_signal(process, code or self._config.kill_signal)

    async def terminate(self) -> None:
        """Stop the current process gracefully, then forcefully if needed."""
        process = self._process
        if process is None or process.returncode is not None:
            return
        self._killed = True
        await self._terminate_process(process)

    async def aclose(self) -> None:
        """Discard the current process: detach, clear buffers, terminate.

        Safe to call more than once.
        """
        async with self._lock:
            process = self._process
            if process is None:
                return

            await self._cancel_tasks()
            self._stdout.clear()
            self._stderr.clear()
            self._process = None
            self._killed = False

            if process.returncode is None:
                # Keep terminating even if our caller is cancelled
                await asyncio.shield(self._terminate_process(process))

    async def __aenter__(self) -> "ManagedProcess":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # =========================================================================
    # Handle replacement
    # =========================================================================

    async def _detach(self) -> None:
        """Retire the current handle before a new one is installed.

        Order: stop readers and stdin pump, signal the process if it is
        still running, clear both buffers, drop the handle.
        """
        process = self._process
        if process is None:
            return

        logger.debug(f"Replacing subprocess pid={process.pid}")
        await self._cancel_tasks()

        if process.returncode is None:
            self.kill(0)

        self._stdout.clear()
        self._stderr.clear()
        self._process = None
        self._killed = False

    def _install(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self._killed = False

        for stream, buffer in ((process.stdout, self._stdout), (process.stderr, self._stderr)):
            if stream is not None:
                self._readers.append(asyncio.create_task(self._pump_output(stream, buffer)))

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={self._argv} cwd={self._cwd}"
        )

    async def _cancel_tasks(self) -> None:
        """Cancel the reader tasks and all stdin pumps and wait until they stop."""
        tasks = [*self._readers, *self._stdin_tasks]
        self._readers = []
        self._stdin_tasks = set()
        self._stdin_task = None

        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific kwargs for asyncio.create_subprocess_exec."""
        kwargs: dict[str, Any] = {}

        if self._cwd is not None:
            kwargs["cwd"] = self._cwd
        if self._env is not None:
            kwargs["env"] = self._env

        if self._config.isolate:
            if IS_WINDOWS:
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
            else:
                kwargs["start_new_session"] = True

        return kwargs

    # =========================================================================
    # Stream pumps
    # =========================================================================

    async def _pump_output(self, stream: asyncio.StreamReader, buffer: OutputBuffer) -> None:
        while True:
            chunk = await stream.read(self._config.read_chunk_size)
            if not chunk:
                break
            buffer.append(chunk)

    async def _pump_input(
        self,
        process: asyncio.subprocess.Process,
        source: AsyncIterator[bytes],
        previous: asyncio.Task[None] | None,
        end: bool,
    ) -> None:
        """Copy source into stdin after the previous write has finished."""
        if previous is not None and not previous.done():
            await asyncio.wait([previous])

        stdin = process.stdin
        if stdin is None:
            return

        try:
            async for chunk in source:
                if stdin.is_closing():
                    break
                stdin.write(chunk)
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"stdin closed by subprocess pid={process.pid}: {e}")
        except Exception as e:
            logger.warning(f"Error reading stdin source for pid={process.pid}: {e}")
        finally:
            # EOF is delivered even when the source fails
            if end and not stdin.is_closing():
                stdin.close()

    # =========================================================================
    # Outcome
    # =========================================================================

    def _check_outcome(self, returncode: int) -> None:
        stderr_text = self._stderr.to_text()
        stderr_failed = not self._stderr.is_empty
        code_failed = returncode != 0

        if self._failure_policy is FailurePolicy.STDERR:
            failed = stderr_failed
        elif self._failure_policy is FailurePolicy.EXIT_CODE:
            failed = code_failed
        else:
            failed = stderr_failed or code_failed

        if not failed:
            return

        message = stderr_text if stderr_failed else f"{self.executable} exited with code {returncode}"
        raise ProcessFailedError(message, returncode=returncode, stderr=stderr_text)

    # =========================================================================
    # Signalling
    # =========================================================================

    def _send_signal(self, process: asyncio.subprocess.Process, sig: int) -> None:
        """Signal the process group when isolated, else the process itself."""
        pid = process.pid
        if self._config.isolate and not IS_WINDOWS:
            try:
                # Process group ID equals pid due to start_new_session
                pgid = os.getpgid(pid)
                os.killpg(pgid, sig)
                logger.debug(f"Sent signal {sig} to process group pgid={pgid}")
                return
            except ProcessLookupError:
                logger.debug(f"Subprocess already exited pid={pid}")
                return
            except OSError as e:
                logger.debug(f"killpg failed, falling back to send_signal: {e}")

        try:
            process.send_signal(sig)
            logger.debug(f"Sent signal {sig} to pid={pid}")
        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")

    async def _terminate_process(self, process: asyncio.subprocess.Process) -> None:
        """Terminate gracefully, then forcefully if needed.

        Termination strategy:
        1. Send the kill signal (CTRL_BREAK_EVENT on Windows when isolated)
        2. Wait up to term_timeout for graceful exit
        3. If still running, send SIGKILL (kill() on Windows)
        4. Wait up to kill_timeout for forced exit
        """
        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        if IS_WINDOWS and self._config.isolate:
            self._send_signal(process, signal.CTRL_BREAK_EVENT)
        else:
            self._send_signal(process, self._config.kill_signal)

        try:
            await asyncio.wait_for(process.wait(), timeout=self._config.term_timeout)
            logger.debug(
                f"Subprocess terminated gracefully pid={pid} "
                f"returncode={process.returncode}"
            )
            return
        except asyncio.TimeoutError:
            pass

        logger.debug(f"Force killing subprocess pid={pid}")
        if IS_WINDOWS:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        else:
            self._send_signal(process, signal.SIGKILL)

        try:
            await asyncio.wait_for(process.wait(), timeout=self._config.kill_timeout)
            logger.debug(f"Subprocess killed pid={pid} returncode={process.returncode}")
        except asyncio.TimeoutError:
            logger.warning(f"Subprocess did not exit after kill pid={pid}")


async def _iter_input(data: InputData, chunk_size: int) -> AsyncIterator[bytes]:
    """Present any accepted write() input as an async stream of chunks."""
    if isinstance(data, (bytes, bytearray, memoryview)):
        if data:
            yield bytes(data)
        return

    if isinstance(data, asyncio.StreamReader):
        while True:
            chunk = await data.read(chunk_size)
            if not chunk:
                return
            yield chunk

    if isinstance(data, AsyncIterable):
        async for chunk in data:
            yield bytes(chunk)
        return

    # Plain iterables (file objects included) may block, so pull them in a worker thread
    iterator = iter(data)
    while True:
        chunk = await anyio.to_thread.run_sync(next, iterator, _EXHAUSTED)
        if chunk is _EXHAUSTED:
            return
        yield bytes(chunk)
