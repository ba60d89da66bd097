"""Command-line entry point tests."""

from __future__ import annotations

import io
import signal
import sys
from pathlib import Path

import pytest

from managed_process.app import EXIT_NOT_STARTED, build_parser, exit_status, main, run_command
from managed_process.config import Config, FailurePolicy

pytestmark = pytest.mark.timeout(30)

CHILD_SCRIPT = Path(__file__).parent / "fixtures" / "child.py"


def child_argv(*flags: str) -> list[str]:
    return [sys.executable, str(CHILD_SCRIPT), *flags]


@pytest.fixture
def streams() -> tuple[io.BytesIO, io.BytesIO]:
    return io.BytesIO(), io.BytesIO()


class TestRunCommand:
    """Test run_command()."""

    @pytest.mark.asyncio
    async def test_success(self, fast_config: Config, streams):
        out, err = streams

        code = await run_command(child_argv("--out", "hello"), config=fast_config, out=out, err=err)

        assert code == 0
        assert out.getvalue() == b"hello"
        assert err.getvalue() == b""

    @pytest.mark.asyncio
    async def test_stderr_failure_with_zero_exit(self, fast_config: Config, streams):
        out, err = streams

        code = await run_command(
            child_argv("--out", "partial", "--err", "bad input"),
            config=fast_config,
            out=out,
            err=err,
        )

        assert code == 1
        assert out.getvalue() == b"partial"
        assert err.getvalue() == b"bad input"

    @pytest.mark.asyncio
    async def test_exit_code_policy(self, fast_config: Config, streams):
        out, err = streams

        code = await run_command(
            child_argv("--exit", "3"),
            config=fast_config,
            policy=FailurePolicy.EXIT_CODE,
            out=out,
            err=err,
        )

        assert code == 3
        assert b"exited with code 3" in err.getvalue()

    @pytest.mark.asyncio
    async def test_tolerated_stderr_is_forwarded(self, fast_config: Config, streams):
        out, err = streams

        code = await run_command(
            child_argv("--err", "note"),
            config=fast_config,
            policy=FailurePolicy.EXIT_CODE,
            out=out,
            err=err,
        )

        assert code == 0
        assert err.getvalue() == b"note"

    @pytest.mark.asyncio
    async def test_stdin_forwarded(self, fast_config: Config, streams):
        out, err = streams

        code = await run_command(
            child_argv("--echo"),
            config=fast_config,
            stdin_data=b"piped",
            out=out,
            err=err,
        )

        assert code == 0
        assert out.getvalue() == b"piped"

    @pytest.mark.asyncio
    async def test_executable_not_found(self, fast_config: Config, streams):
        out, err = streams

        code = await run_command(["nonexistent_command_xyz_123"], config=fast_config, out=out, err=err)

        assert code == EXIT_NOT_STARTED
        assert b"cannot start" in err.getvalue()

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX-specific test")
    async def test_signal_death_maps_to_shell_status(self, fast_config: Config, streams):
        out, err = streams
        argv = [sys.executable, "-c", "import os, signal; os.kill(os.getpid(), signal.SIGTERM)"]

        code = await run_command(argv, config=fast_config, policy=FailurePolicy.EXIT_CODE, out=out, err=err)

        assert code == 128 + signal.SIGTERM


class TestExitStatus:
    """Test exit_status()."""

    @pytest.mark.parametrize(
        "returncode,expected",
        [(None, 0), (0, 0), (3, 3), (-9, 137), (-15, 143)],
    )
    def test_mapping(self, returncode, expected):
        assert exit_status(returncode) == expected


class TestMain:
    """Test main()."""

    def test_parser_keeps_child_flags(self):
        args = build_parser().parse_args(["--policy", "either", "--", "ls", "-l"])

        assert args.policy == "either"
        assert [a for a in args.command if a != "--"] == ["ls", "-l"]

    def test_main_runs_command(self, capsysbinary):
        with pytest.raises(SystemExit) as exc_info:
            main(["--", *child_argv("--out", "from main")])

        assert exc_info.value.code == 0
        assert capsysbinary.readouterr().out == b"from main"

    def test_main_stdin_file(self, tmp_path: Path, capsysbinary):
        stdin_file = tmp_path / "input.bin"
        stdin_file.write_bytes(b"file contents")

        with pytest.raises(SystemExit) as exc_info:
            main(["--stdin-file", str(stdin_file), "--", *child_argv("--echo")])

        assert exc_info.value.code == 0
        assert capsysbinary.readouterr().out == b"file contents"

    def test_main_missing_stdin_file(self, tmp_path: Path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--stdin-file", str(tmp_path / "missing.bin"), "--", *child_argv("--echo")])

        assert exc_info.value.code == 2
        assert "cannot read --stdin-file" in capsys.readouterr().err

    def test_main_without_command(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == 2
