"""
gentrust — Sandboxed executor tests.

Runs real child processes (the current Python interpreter and echo) inside
the tmp_path target directory.
"""

import json
import os
import sys

import pytest

from gentrust.core.types import (
    AuditAction, Operation, Permission, ResourceLimits, Resolution, SandboxStatus,
)
from gentrust.enforcement.executor import SandboxedExecutor

posix_only = pytest.mark.skipif(os.name != 'posix', reason="POSIX process groups and rlimits")


def op(kind, target="", payload=None, recursive=False):
    return Operation(kind, target, payload, recursive)


def code(source):
    return op(Permission.CODE_EXECUTE, "", source)


def violations(audit):
    return audit.query(action=AuditAction.VIOLATION)


class TestFileOperations:

    def test_write(self, executor, target_dir):
        result = executor.run(op(Permission.FILE_WRITE, "src/index.js", "hello"))
        assert result.status == SandboxStatus.COMPLETED
        assert (target_dir / "src" / "index.js").read_text() == "hello"
        assert result.files_written == [os.path.realpath(str(target_dir / "src" / "index.js"))]

    def test_write_outside(self, executor, target_dir, audit):
        result = executor.run(op(Permission.FILE_WRITE, "../escape.txt", "x"), context="npm:a")
        assert result.status == SandboxStatus.VIOLATION
        assert not (target_dir.parent / "escape.txt").exists()
        [record] = violations(audit)
        assert record.creator_id == "npm:a"
        assert record.resolution == Resolution.DENIED

    def test_write_too_large(self, executor, target_dir):
        limits = ResourceLimits(max_file_size_bytes=10)
        result = executor.run(op(Permission.FILE_WRITE, "big.txt", "x" * 11), limits=limits)
        assert result.status == SandboxStatus.RESOURCE_EXCEEDED
        assert not (target_dir / "big.txt").exists()

    def test_inject(self, executor, target_dir):
        (target_dir / "routes.js").write_text("a\n")
        result = executor.run(op(Permission.TEMPLATE_INJECT, "routes.js", "b\n"))
        assert result.succeeded
        assert (target_dir / "routes.js").read_text() == "a\nb\n"

    def test_inject_missing_target(self, executor):
        result = executor.run(op(Permission.TEMPLATE_INJECT, "nope.js", "b"))
        assert result.status == SandboxStatus.COMPLETED
        assert result.returncode == 1

    def test_delete(self, executor, target_dir):
        (target_dir / "old.txt").write_text("x")
        (target_dir / "build" / "sub").mkdir(parents=True)
        (target_dir / "build" / "sub" / "f").write_text("x")
        assert executor.run(op(Permission.FILE_DELETE, "old.txt")).succeeded
        assert executor.run(op(Permission.FILE_DELETE, "build", recursive=True)).succeeded
        assert not (target_dir / "old.txt").exists()
        assert not (target_dir / "build").exists()

    def test_delete_non_empty_dir_without_recursive(self, executor, target_dir):
        (target_dir / "build").mkdir()
        (target_dir / "build" / "f").write_text("x")
        result = executor.run(op(Permission.FILE_DELETE, "build"))
        assert result.status == SandboxStatus.COMPLETED
        assert result.returncode == 1
        assert (target_dir / "build" / "f").exists()

    def test_delete_target_itself(self, executor, target_dir):
        result = executor.run(op(Permission.FILE_DELETE, ".", recursive=True))
        assert result.status == SandboxStatus.VIOLATION
        assert target_dir.exists()

    def test_read(self, executor, target_dir):
        (target_dir / "package.json").write_text('{"name": "x"}')
        result = executor.run(op(Permission.FILE_READ, "package.json"))
        assert result.stdout == '{"name": "x"}'


class TestBatch:

    def test_shared_file_budget(self, executor, target_dir):
        limits = ResourceLimits(max_file_count=2)
        ops = [op(Permission.FILE_WRITE, f"f{i}.txt", "x") for i in range(4)]
        results = executor.run_batch(ops, limits=limits, context="npm:a")
        assert [r.status for r in results] == [
            SandboxStatus.COMPLETED, SandboxStatus.COMPLETED, SandboxStatus.RESOURCE_EXCEEDED]
        assert not (target_dir / "f2.txt").exists()
        assert len(results[0].files_written) == 1

    def test_rewrite_does_not_use_budget(self, executor):
        limits = ResourceLimits(max_file_count=1)
        ops = [op(Permission.FILE_WRITE, "same.txt", str(i)) for i in range(3)]
        results = executor.run_batch(ops, limits=limits)
        assert all(r.completed for r in results)


class TestEnvironmentAndNetwork:

    def test_env_allowed(self, executor, monkeypatch):
        monkeypatch.setenv("PATH", os.environ.get("PATH", "/usr/bin"))
        result = executor.run(op(Permission.ENV_ACCESS, "PATH"))
        assert result.completed
        assert json.loads(result.stdout)["PATH"] == os.environ["PATH"]

    def test_env_denied(self, executor, audit):
        result = executor.run(op(Permission.ENV_ACCESS, "PATH,NPM_TOKEN"), context="npm:a")
        assert result.status == SandboxStatus.VIOLATION
        assert "NPM_TOKEN" in result.message
        assert len(violations(audit)) == 1

    def test_network_denied_by_default(self, executor):
        result = executor.run(op(Permission.NETWORK_ACCESS, "https://example.com"))
        assert result.status == SandboxStatus.VIOLATION

    def test_network_allowed(self, target_dir, config):
        executor = SandboxedExecutor(target_dir, config, allow_network=True)
        result = executor.run(op(Permission.NETWORK_ACCESS, "https://example.com"))
        assert result.completed


class TestProcesses:

    def test_shell(self, executor):
        result = executor.run(op(Permission.SHELL_EXECUTE, "echo hello"))
        assert result.succeeded
        assert result.stdout.strip() == "hello"

    @pytest.mark.parametrize("command", ["sudo ls", "wget https://x.dev", "cat /etc/shadow"])
    def test_shell_screened(self, executor, command):
        assert executor.run(op(Permission.SHELL_EXECUTE, command)).status == SandboxStatus.VIOLATION

    @pytest.mark.parametrize("command", ["touch ../escaped.txt", "mkdir ../../escaped.txt",
                                         "cp package.json ../escaped.txt"])
    def test_relative_escape_blocked(self, executor, target_dir, command):
        (target_dir / "package.json").write_text("{}")
        result = executor.run(op(Permission.SHELL_EXECUTE, command))
        assert result.status == SandboxStatus.VIOLATION
        assert not (target_dir.parent / "escaped.txt").exists()
        assert not (target_dir.parent.parent / "escaped.txt").exists()

    @pytest.mark.parametrize("command", ["sh -c 'echo x > ../escaped.txt'",
                                         "python3 -c \"open('../escaped.txt', 'w')\"",
                                         "node -e \"require('fs').writeFileSync('../escaped.txt', '')\""])
    def test_inline_interpreter_code_blocked(self, executor, target_dir, command):
        result = executor.run(op(Permission.SHELL_EXECUTE, command))
        assert result.status == SandboxStatus.VIOLATION
        assert not (target_dir.parent / "escaped.txt").exists()

    def test_relative_path_inside_target(self, executor, target_dir):
        result = executor.run(op(Permission.SHELL_EXECUTE, "touch ./made.txt"))
        assert result.succeeded
        assert (target_dir / "made.txt").exists()

    def test_code(self, executor):
        result = executor.run(code("print(6 * 7)"))
        assert result.succeeded
        assert result.stdout.strip() == "42"

    def test_code_screened(self, executor):
        result = executor.run(code("import ctypes"))
        assert result.status == SandboxStatus.VIOLATION

    def test_empty_code(self, executor):
        assert executor.run(code("  ")).status == SandboxStatus.VIOLATION

    def test_nonzero_exit_is_completed(self, executor):
        result = executor.run(code("import sys; sys.exit(3)"))
        assert result.status == SandboxStatus.COMPLETED
        assert result.returncode == 3
        assert not result.succeeded

    def test_runs_in_target_with_clean_env(self, executor, target_dir, monkeypatch):
        monkeypatch.setenv("NPM_TOKEN", "secret")
        result = executor.run(code(
            "import os, json; print(json.dumps({'cwd': os.getcwd(), 'env': dict(os.environ)}))"))
        data = json.loads(result.stdout)
        assert os.path.realpath(data['cwd']) == os.path.realpath(str(target_dir))
        assert "NPM_TOKEN" not in data['env']
        assert data['env']['HOME'] == os.path.realpath(str(target_dir))

    def test_files_written_by_process(self, executor, target_dir):
        result = executor.run(code("open('made.txt', 'w').write('x')"))
        assert result.succeeded
        assert os.path.realpath(str(target_dir / "made.txt")) in result.files_written

    def test_file_count_exceeded_by_process(self, executor):
        limits = ResourceLimits(max_file_count=2)
        result = executor.run(
            code("for i in range(3): open(f'f{i}.txt', 'w').write('x')"), limits=limits)
        assert result.status == SandboxStatus.RESOURCE_EXCEEDED
        assert len(result.files_written) == 3

    def test_missing_interpreter(self, target_dir, config):
        executor = SandboxedExecutor(target_dir, config,
                                     python_executable=str(target_dir / "no-such-python"))
        result = executor.run(code("print(1)"))
        assert result.status == SandboxStatus.COMPLETED
        assert result.returncode == 127

    @posix_only
    def test_timeout(self, executor, audit):
        limits = ResourceLimits(max_execution_time_ms=500)
        result = executor.run(code("import time; time.sleep(30)"), limits=limits,
                              context="npm:slow")
        assert result.status == SandboxStatus.TIMED_OUT
        assert result.duration_ms < 10_000
        [record] = violations(audit)
        assert record.resolution == Resolution.TIMEOUT

    @posix_only
    def test_memory(self, executor):
        limits = ResourceLimits(max_memory_bytes=64 * 1024 * 1024, max_execution_time_ms=15_000)
        result = executor.run(code(
            "import time\nblob = b'x' * (128 * 1024 * 1024)\ntime.sleep(10)"), limits=limits)
        assert result.status == SandboxStatus.RESOURCE_EXCEEDED

    def test_batch_stops_after_failure(self, executor, target_dir):
        ops = [
            op(Permission.FILE_WRITE, "a.txt", "1"),
            op(Permission.SHELL_EXECUTE, "sudo true"),
            op(Permission.FILE_WRITE, "b.txt", "2"),
        ]
        results = executor.run_batch(ops)
        assert len(results) == 2
        assert results[1].status == SandboxStatus.VIOLATION
        assert not (target_dir / "b.txt").exists()


def test_build_env_is_allow_listed(executor, target_dir, monkeypatch):
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "x")
    env = executor.build_env()
    assert "AWS_SECRET_ACCESS_KEY" not in env
    assert env["HOME"] == os.path.realpath(str(target_dir))
    assert set(env) - {"HOME", "USERPROFILE"} <= executor.config.env_allowlist


def test_python_default(executor):
    assert executor.python_executable == sys.executable
