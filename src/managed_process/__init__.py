"""managed_process - own one child process at a time.

Spawn an executable with arguments built from domain values, feed its
stdin, collect stdout/stderr in buffers, and wait for or force its exit.

环境变量:
    MP_FAILURE_POLICY: wait() 失败判定策略 (默认 stderr)
    MP_KILL_SIGNAL: kill(0) 使用的信号 (默认 SIGTERM)
    MP_LOG_DEBUG: 日志调试模式 (默认 false)

用法:
    python -m managed_process -- echo hello
"""

__version__ = "0.1.0"

from .config import Config, FailurePolicy, get_config, load_config, reload_config
from .runtime import (
    Command,
    ManagedProcess,
    ManagedProcessError,
    OutputBuffer,
    ProcessFailedError,
)

__all__ = [
    "__version__",
    "Command",
    "Config",
    "FailurePolicy",
    "ManagedProcess",
    "ManagedProcessError",
    "OutputBuffer",
    "ProcessFailedError",
    "get_config",
    "load_config",
    "reload_config",
]
