"""managed_process 命令行入口。

通过 ManagedProcess 运行单个命令：转发 stdin，输出子进程的 stdout，
按失败策略报告错误并返回退出码。

用法:
    python -m managed_process [--policy stderr|exit_code|either] [--stdin-file F] -- EXE [ARGS...]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import BinaryIO

from .config import Config, FailurePolicy, get_config
from .runtime import Command, ProcessFailedError

__all__ = ["build_parser", "configure_logging", "exit_status", "run_command", "main"]

logger = logging.getLogger(__name__)

# 无法启动可执行文件时的退出码（与 shell 一致）
EXIT_NOT_STARTED = 127

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    """构建命令行解析器。"""
    parser = argparse.ArgumentParser(
        prog="managed_process",
        description="Run one command through ManagedProcess",
    )
    parser.add_argument(
        "--policy",
        choices=[policy.value for policy in FailurePolicy],
        default=None,
        help="Failure policy (default: MP_FAILURE_POLICY or stderr)",
    )
    parser.add_argument(
        "--stdin-file",
        default=None,
        help="File to feed to the child's stdin ('-' = our stdin)",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Executable and its arguments")
    return parser


def configure_logging(config: Config) -> None:
    """配置日志输出。

    - LOG_DEBUG 模式：DEBUG 级别输出到临时文件
    - 默认模式：INFO 级别输出到 stderr
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # root logger（第三方库）保持 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 managed_process 命名空间启用详细日志
    logging.getLogger("managed_process").setLevel(log_level)


def exit_status(returncode: int | None) -> int:
    """将子进程返回码转换为可传给 sys.exit 的退出码。

    被信号终止的子进程（负返回码）按 shell 约定映射为 128 + 信号编号。
    """
    if returncode is None:
        return 0
    if returncode < 0:
        return 128 - returncode
    return returncode


def _read_stdin_data(stdin_file: str | None) -> bytes:
    """读取要转发给子进程的 stdin 内容。"""
    if stdin_file is None:
        return b""
    if stdin_file == "-":
        return sys.stdin.buffer.read()
    return Path(stdin_file).read_bytes()


async def run_command(
    argv: list[str],
    *,
    config: Config | None = None,
    policy: FailurePolicy | None = None,
    stdin_data: bytes = b"",
    out: BinaryIO | None = None,
    err: BinaryIO | None = None,
) -> int:
    """运行命令并返回应使用的退出码。

    Args:
        argv: 可执行文件及其参数
        config: 运行配置（默认全局配置）
        policy: 失败判定策略（覆盖配置）
        stdin_data: 写入子进程 stdin 的内容（写完即关闭 stdin）
        out: 子进程 stdout 的输出目标（默认 sys.stdout.buffer）
        err: 错误信息的输出目标（默认 sys.stderr.buffer）

    Returns:
        子进程退出码（被信号终止时为 128 + 信号编号）；策略判定失败但退出码为 0 时返回 1；
        无法启动时返回 127
    """
    out = out if out is not None else sys.stdout.buffer
    err = err if err is not None else sys.stderr.buffer

    async with Command(argv[0], config, failure_policy=policy) as command:
        try:
            await command.spawn(*argv[1:])
        except OSError as e:
            logger.error(f"Cannot start {argv[0]}: {e}")
            err.write(f"managed_process: cannot start {argv[0]}: {e}\n".encode())
            err.flush()
            return EXIT_NOT_STARTED

        logger.info(f"Running: {' '.join(command.argv)} (pid={command.pid})")
        command.write(stdin_data)

        try:
            returncode = await command.wait()
        except ProcessFailedError as e:
            logger.info(f"Command failed: returncode={e.returncode}")
            out.write(command.stdout.to_bytes())
            out.flush()
            err.write(e.message.encode())
            err.flush()
            return exit_status(e.returncode) or 1

        out.write(command.stdout.to_bytes())
        out.flush()
        # 策略允许 stderr 输出时原样转发
        if not command.stderr.is_empty:
            err.write(command.stderr.to_bytes())
            err.flush()

        logger.info(f"Command completed: returncode={returncode}")
        return exit_status(returncode)


def main(argv: list[str] | None = None) -> None:
    """主入口点。"""
    parser = build_parser()
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("no command given")

    config = get_config()
    configure_logging(config)

    policy = FailurePolicy.from_string(args.policy) if args.policy else None
    try:
        stdin_data = _read_stdin_data(args.stdin_file)
    except OSError as e:
        parser.error(f"cannot read --stdin-file: {e}")

    sys.exit(asyncio.run(run_command(command, config=config, policy=policy, stdin_data=stdin_data)))


if __name__ == "__main__":
    main()
