"""Command line entry point tests."""

from __future__ import annotations

import sys

import pytest

from git_reader.cli import EXIT_IO_FAILURE, EXIT_SPAWN_FAILURE, _exit_code_for, main
from git_reader.errors import ExitStatus, IoFailure, SpawnFailure
from git_reader.runtime.process_runner import IS_WINDOWS

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX pipe readers only")


class TestMain:

    def test_streams_stdout(self, capsys, fake_git: str):
        code = main(["--program", sys.executable, fake_git, "--out", "hello\n", "--out", "world\n"])

        captured = capsys.readouterr()
        assert code == 0
        assert captured.out == "hello\nworld\n"

    def test_double_dash_separator(self, capsys, fake_git: str):
        code = main(["--program", sys.executable, "--", fake_git, "--out", "x"])

        assert code == 0
        assert capsys.readouterr().out == "x"

    def test_leading_program_option_is_passed_through(self, capsys, fake_git: str):
        code = main(["--program", sys.executable, "-u", fake_git, "--out", "x"])

        assert code == 0
        assert capsys.readouterr().out == "x"

    def test_version_flag_reaches_program(self, capsys):
        code = main(["--program", sys.executable, "--version"])

        assert code == 0
        assert capsys.readouterr().out.startswith("Python ")

    def test_exit_status_propagates(self, capsys, fake_git: str):
        code = main([
            "--program", sys.executable,
            fake_git, "--err", "fatal: bad object deadbeef\n", "--exit-code", "128",
        ])

        captured = capsys.readouterr()
        assert code == 128
        assert "fatal: bad object deadbeef" in captured.err

    def test_spawn_failure(self, capsys):
        code = main(["--program", "nonexistent_git_xyz_123", "status"])

        assert code == EXIT_SPAWN_FAILURE
        assert "nonexistent_git_xyz_123" in capsys.readouterr().err

    def test_embedded_nul_is_spawn_failure(self, capsys):
        code = main(["--program", sys.executable, "-c", "pass\x00"])

        assert code == EXIT_SPAWN_FAILURE
        assert "git-reader:" in capsys.readouterr().err

    def test_invalid_chunk_size(self, capsys):
        assert main(["--chunk-size", "0", "status"]) == 2


class TestExitCodes:

    def test_exit_status(self):
        assert _exit_code_for(ExitStatus(3, "x")) == 3

    def test_signal_exit_status(self):
        assert _exit_code_for(ExitStatus(-9, "x")) == 1

    def test_io_failure(self):
        assert _exit_code_for(IoFailure("stdout", "Input/output error")) == EXIT_IO_FAILURE

    def test_spawn_failure(self):
        assert _exit_code_for(SpawnFailure(["git"], "No such file")) == EXIT_SPAWN_FAILURE
