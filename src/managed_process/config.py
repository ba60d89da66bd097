"""managed_process 环境变量配置管理。

环境变量:
    MP_FAILURE_POLICY: wait() 判定子进程失败的策略
        - stderr = stderr 非空即失败，不看退出码 (默认)
        - exit_code = 退出码非 0 即失败
        - either = 两者任一成立即失败

    MP_KILL_SIGNAL: kill(0) 使用的终止信号
        - 信号名或编号，例: "SIGTERM"、"TERM"、"15"
        - 默认 SIGTERM，无效值回退为默认

    MP_TERM_TIMEOUT: terminate() 发送终止信号后的等待时间（秒）
        - 默认 2.0，限制在 0.1-60 秒

    MP_KILL_TIMEOUT: terminate() 发送 SIGKILL 后的等待时间（秒）
        - 默认 1.0，限制在 0.1-60 秒

    MP_ISOLATE: 子进程是否运行在独立的 session/进程组中
        - true/1/yes = 隔离 (默认)
        - false/0/no = 与父进程同组

    MP_READ_CHUNK_SIZE: 每次读取管道的字节数
        - 默认 4096，最小 1

    MP_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (DEBUG 日志输出到临时文件)
        - false/0/no = 关闭 (默认，INFO 日志输出到 stderr)
"""

from __future__ import annotations

import os
import signal
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = [
    "Config",
    "FailurePolicy",
    "load_config",
    "get_config",
    "reload_config",
]

DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_READ_CHUNK_SIZE = 4096
DEFAULT_KILL_SIGNAL = int(signal.SIGTERM)


class FailurePolicy(Enum):
    """wait() 的失败判定策略。

    - STDERR: stderr 有任何输出即视为失败（不看退出码）
    - EXIT_CODE: 只看退出码，非 0 为失败
    - EITHER: stderr 非空或退出码非 0 都视为失败
    """

    STDERR = "stderr"
    EXIT_CODE = "exit_code"
    EITHER = "either"

    @classmethod
    def from_string(cls, value: str) -> "FailurePolicy":
        """从字符串解析策略。

        Args:
            value: 策略字符串 (stderr/exit_code/either)，"-" 视同 "_"

        Returns:
            对应的 FailurePolicy 枚举值，无效值返回 STDERR
        """
        value = value.lower().strip().replace("-", "_")
        for policy in cls:
            if policy.value == value:
                return policy
        return cls.STDERR  # 默认值


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_timeout(value: str | None, default: float) -> float:
    """解析超时时间环境变量，限制在 0.1-60 秒范围。"""
    if not value:
        return default
    try:
        timeout = float(value)
    except ValueError:
        return default
    return max(0.1, min(timeout, 60.0))


def _parse_chunk_size(value: str | None) -> int:
    """解析读取块大小环境变量。"""
    if not value:
        return DEFAULT_READ_CHUNK_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_READ_CHUNK_SIZE
    return size if size >= 1 else DEFAULT_READ_CHUNK_SIZE


def _parse_signal(value: str | None) -> int:
    """解析信号环境变量。

    Args:
        value: 信号名（SIGTERM / TERM）或编号（15）

    Returns:
        信号编号，无效值返回 SIGTERM
    """
    if not value or not value.strip():
        return DEFAULT_KILL_SIGNAL
    value = value.strip().upper()
    if value.isdigit():
        number = int(value)
        return number if number > 0 else DEFAULT_KILL_SIGNAL
    if not value.startswith("SIG"):
        value = f"SIG{value}"
    try:
        return int(signal.Signals[value])
    except KeyError:
        return DEFAULT_KILL_SIGNAL


@dataclass
class Config:
    """managed_process 配置。

    Attributes:
        failure_policy: wait() 的失败判定策略
        kill_signal: kill(0) 使用的信号编号
        term_timeout: 终止信号后的等待时间（秒）
        kill_timeout: SIGKILL 后的等待时间（秒）
        isolate: 子进程是否运行在独立的进程组中
        read_chunk_size: 每次读取管道的字节数
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    failure_policy: FailurePolicy = FailurePolicy.STDERR
    kill_signal: int = DEFAULT_KILL_SIGNAL
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    isolate: bool = True
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(failure_policy={self.failure_policy.value}, "
            f"kill_signal={self.kill_signal}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"isolate={self.isolate}, "
            f"read_chunk_size={self.read_chunk_size}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "managed-process"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"mp_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("MP_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    policy_value = os.environ.get("MP_FAILURE_POLICY")

    return Config(
        failure_policy=FailurePolicy.from_string(policy_value) if policy_value else FailurePolicy.STDERR,
        kill_signal=_parse_signal(os.environ.get("MP_KILL_SIGNAL")),
        term_timeout=_parse_timeout(os.environ.get("MP_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT),
        kill_timeout=_parse_timeout(os.environ.get("MP_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT),
        isolate=_parse_bool(os.environ.get("MP_ISOLATE"), default=True),
        read_chunk_size=_parse_chunk_size(os.environ.get("MP_READ_CHUNK_SIZE")),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
