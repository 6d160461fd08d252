#!/usr/bin/env python3
"""
gentrust Enforcement — Sandboxed Executor
===========================================
Runs operations the enforcer routed to the sandbox inside a restricted
environment: scoped filesystem access, an allow-listed environment,
resource ceilings and command screening. This is not OS-level isolation.

Processes (shell, code, network commands):
- started without a shell, in the target directory, in a new process
  group, with HOME pointed at the target and only allow-listed variables
- wall-clock timeout -> process group killed, status timedOut
- process tree RSS polled with psutil; POSIX rlimits on file size and
  address space -> status resourceExceeded
- files created or changed in the target are counted and size-checked

File operations (write, inject, delete, read) are path-checked and
size/count-checked before anything is written.

Partial filesystem effects are never rolled back. Every result lists the
files written so the caller can clean up. Every non-completed result is
recorded as a 'violation' audit entry for the creator.

Import from: gentrust.enforcement.executor
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from gentrust.core.access.command_validator import CommandValidator
from gentrust.core.access.path_validator import PathValidator
from gentrust.core.config import TrustConfig
from gentrust.core.constants import IS_WINDOWS, SANDBOX_POLL_INTERVAL
from gentrust.core.patterns import BLOCKED_COMMAND_PATTERNS
from gentrust.core.resources.limiter import ResourceLimiter
from gentrust.core.types import (
    AuditAction, Operation, Permission, ResourceLimitExceeded, ResourceLimits,
    Resolution, SandboxResult, SandboxStatus, StorageError,
)

__all__ = ['SandboxedExecutor']

logger = logging.getLogger("gentrust.enforcement.executor")

# Code snippets are screened with the command patterns plus these
CODE_BLOCKED_PATTERNS = [
    r'(?i)\bos\.(setuid|setgid|seteuid)\s*\(',
    r'(?i)\bctypes\b',
]


class SandboxedExecutor:
    """Executes sandboxed operations for one target directory."""

    def __init__(self, target_dir, config: Optional[TrustConfig] = None, audit=None,
                 limits: Optional[ResourceLimits] = None,
                 allow_network: Optional[bool] = None,
                 python_executable: Optional[str] = None):
        self.config = config or TrustConfig()
        self.target_dir = Path(os.path.realpath(str(target_dir)))
        self.audit = audit
        self.limits = limits or self.config.resource_limits
        self.allow_network = (self.config.sandbox_allow_network
                              if allow_network is None else allow_network)
        self.python_executable = python_executable or sys.executable
        self.path_validator = PathValidator(self.target_dir, self.config.read_only_paths)
        self.command_validator = CommandValidator(
            self.config.allowed_executables, roots=self.path_validator.roots)
        self.code_patterns = [re.compile(p, re.I)
                              for p in BLOCKED_COMMAND_PATTERNS + CODE_BLOCKED_PATTERNS]

    # =========================================================================
    # Public API
    # =========================================================================

    def run(self, operation: Operation, limits: Optional[ResourceLimits] = None,
            context: str = "", limiter: Optional[ResourceLimiter] = None) -> SandboxResult:
        """Run one operation. `context` is the creator id for auditing."""
        limiter = limiter or ResourceLimiter(limits or self.limits)
        start = time.monotonic()
        handlers = {
            Permission.SHELL_EXECUTE: self._run_shell,
            Permission.CODE_EXECUTE: self._run_code,
            Permission.NETWORK_ACCESS: self._run_network,
            Permission.ENV_ACCESS: self._run_env,
            Permission.FILE_WRITE: self._write_file,
            Permission.TEMPLATE_INJECT: self._inject,
            Permission.FILE_DELETE: self._delete,
            Permission.FILE_READ: self._read_file,
        }
        try:
            result = handlers[operation.type](operation, limiter)
        except ResourceLimitExceeded as e:
            result = self._result(SandboxStatus.RESOURCE_EXCEEDED, operation, str(e))
        except OSError as e:
            result = self._result(SandboxStatus.COMPLETED, operation,
                                  f"Operation failed: {e}", returncode=1, stderr=str(e))

        result.duration_ms = int((time.monotonic() - start) * 1000)
        result.files_written = list(limiter.files_written)
        if not result.completed:
            self._report_violation(operation, result, context)
        return result

    def run_batch(self, operations: Sequence[Operation],
                  limits: Optional[ResourceLimits] = None,
                  context: str = "") -> List[SandboxResult]:
        """Run operations in order under one shared file budget. Stops after
        the first non-completed result."""
        limiter = ResourceLimiter(limits or self.limits)
        results: List[SandboxResult] = []
        for op in operations:
            written_before = len(limiter.files_written)
            result = self.run(op, context=context, limiter=limiter)
            result.files_written = limiter.files_written[written_before:]
            results.append(result)
            if not result.completed:
                break
        return results

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _result(status: SandboxStatus, op: Operation, message: str = "", **kw) -> SandboxResult:
        return SandboxResult(status=status, operation=op, message=message, **kw)

    def _violation(self, op: Operation, message: str) -> SandboxResult:
        return self._result(SandboxStatus.VIOLATION, op, message)

    def _report_violation(self, op: Operation, result: SandboxResult, creator_id: str):
        logger.warning("Sandbox %s: %s (%s)", result.status.value, op.describe(), result.message)
        if self.audit is None:
            return
        resolution = (Resolution.TIMEOUT if result.status == SandboxStatus.TIMED_OUT
                      else Resolution.DENIED)
        try:
            self.audit.record(creator_id or "anonymous", AuditAction.VIOLATION, resolution,
                              context=f"{result.status.value}: {op.describe()} ({result.message})")
        except StorageError as e:
            logger.error("Could not audit sandbox violation for %s: %s", creator_id, e)

    def build_env(self) -> Dict[str, str]:
        env = {k: os.environ[k] for k in self.config.env_allowlist if k in os.environ}
        env['HOME'] = str(self.target_dir)
        if IS_WINDOWS:
            env['USERPROFILE'] = str(self.target_dir)
        return env

    def _popen_kwargs(self, limiter: ResourceLimiter) -> Dict:
        kwargs = dict(
            cwd=str(self.target_dir),
            env=self.build_env(),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            shell=False,
        )
        if IS_WINDOWS:
            kwargs['creationflags'] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs['start_new_session'] = True
            kwargs['preexec_fn'] = limiter.preexec_fn()
        return kwargs

    def _kill(self, proc: subprocess.Popen):
        if not IS_WINDOWS:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                pass
        ResourceLimiter.kill_tree(proc.pid)

    def _run_process(self, args: List[str], op: Operation,
                     limiter: ResourceLimiter) -> SandboxResult:
        limits = limiter.limits
        before = limiter.snapshot(str(self.target_dir))
        try:
            proc = subprocess.Popen(args, **self._popen_kwargs(limiter))
        except OSError as e:
            return self._result(SandboxStatus.COMPLETED, op, f"Could not start process: {e}",
                                returncode=127, stderr=str(e))

        started = time.monotonic()
        status = SandboxStatus.COMPLETED
        message = ""
        while True:
            try:
                out, err = proc.communicate(timeout=SANDBOX_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                pass
            if time.monotonic() - started > limits.timeout_seconds:
                status = SandboxStatus.TIMED_OUT
                message = f"Exceeded max_execution_time_ms ({limits.max_execution_time_ms})"
            else:
                mem = limiter.check_memory(proc.pid)
                if not mem['ok']:
                    status = SandboxStatus.RESOURCE_EXCEEDED
                    message = (f"Memory {mem['rss_bytes']} bytes exceeds max_memory_bytes "
                               f"({limits.max_memory_bytes})")
            if status != SandboxStatus.COMPLETED:
                self._kill(proc)
                try:
                    out, err = proc.communicate(timeout=5)
                except subprocess.TimeoutExpired:
                    out, err = b"", b""
                break

        xfsz = getattr(signal, 'SIGXFSZ', None)
        if status == SandboxStatus.COMPLETED and xfsz is not None and proc.returncode == -xfsz:
            status = SandboxStatus.RESOURCE_EXCEEDED
            message = f"File size limit exceeded ({limits.max_file_size_bytes})"

        changed = limiter.diff(before, limiter.snapshot(str(self.target_dir)))
        problem = limiter.account_changes(changed)
        if problem and status == SandboxStatus.COMPLETED:
            status = SandboxStatus.RESOURCE_EXCEEDED
            message = problem

        return self._result(
            status, op, message,
            returncode=proc.returncode,
            stdout=limiter.truncate_output((out or b"").decode('utf-8', errors='replace')),
            stderr=limiter.truncate_output((err or b"").decode('utf-8', errors='replace')),
        )

    # =========================================================================
    # Process operations
    # =========================================================================

    def _run_shell(self, op: Operation, limiter: ResourceLimiter) -> SandboxResult:
        command = op.target or op.payload or ""
        ok, reason = self.command_validator.validate(command)
        if not ok:
            return self._violation(op, f"Command blocked: {reason}")
        return self._run_process(self.command_validator.split(command), op, limiter)

    def _run_code(self, op: Operation, limiter: ResourceLimiter) -> SandboxResult:
        code = op.payload if op.payload is not None else op.target
        if not code or not code.strip():
            return self._violation(op, "No code to execute")
        for pattern in self.code_patterns:
            if pattern.search(code):
                return self._violation(op, f"Code blocked: {pattern.pattern[:40]}")
        return self._run_process([self.python_executable, '-I', '-c', code], op, limiter)

    def _run_network(self, op: Operation, limiter: ResourceLimiter) -> SandboxResult:
        if not self.allow_network:
            return self._violation(op, f"Network access not permitted: {op.target}")
        if op.payload:
            ok, reason = self.command_validator.validate(op.payload)
            if not ok:
                return self._violation(op, f"Command blocked: {reason}")
            return self._run_process(self.command_validator.split(op.payload), op, limiter)
        return self._result(SandboxStatus.COMPLETED, op, f"Network access permitted: {op.target}")

    def _run_env(self, op: Operation, limiter: ResourceLimiter) -> SandboxResult:
        names = [n.strip() for n in op.target.split(',') if n.strip()]
        denied = [n for n in names if n not in self.config.env_allowlist]
        if denied:
            return self._violation(op, f"Environment variables not allowed: {', '.join(denied)}")
        values = {n: os.environ.get(n) for n in names}
        return self._result(SandboxStatus.COMPLETED, op, returncode=0,
                            stdout=json.dumps(values, sort_keys=True))

    # =========================================================================
    # File operations
    # =========================================================================

    def _check_path(self, op: Operation, write: bool = True) -> Optional[str]:
        allowed, resolved, reason = self.path_validator.validate(op.target, write=write)
        return resolved if allowed else None

    def _write_file(self, op: Operation, limiter: ResourceLimiter) -> SandboxResult:
        resolved = self._check_path(op)
        if resolved is None:
            return self._violation(op, f"Write outside allowed roots: {op.target}")
        data = (op.payload or "").encode('utf-8')
        limiter.reserve_file(resolved, len(data))
        os.makedirs(os.path.dirname(resolved), exist_ok=True)
        with open(resolved, 'wb') as f:
            f.write(data)
        return self._result(SandboxStatus.COMPLETED, op, f"Wrote {len(data)} bytes", returncode=0)

    def _inject(self, op: Operation, limiter: ResourceLimiter) -> SandboxResult:
        resolved = self._check_path(op)
        if resolved is None:
            return self._violation(op, f"Injection outside allowed roots: {op.target}")
        if not os.path.isfile(resolved):
            return self._result(SandboxStatus.COMPLETED, op,
                                f"Injection target does not exist: {op.target}", returncode=1)
        addition = (op.payload or "").encode('utf-8')
        limiter.reserve_file(resolved, os.path.getsize(resolved) + len(addition))
        with open(resolved, 'ab') as f:
            f.write(addition)
        return self._result(SandboxStatus.COMPLETED, op,
                            f"Injected {len(addition)} bytes", returncode=0)

    def _delete(self, op: Operation, limiter: ResourceLimiter) -> SandboxResult:
        resolved = self._check_path(op)
        if resolved is None:
            return self._violation(op, f"Delete outside allowed roots: {op.target}")
        if resolved == str(self.target_dir):
            return self._violation(op, "Refusing to delete the target directory itself")
        if not os.path.lexists(resolved):
            return self._result(SandboxStatus.COMPLETED, op, "Nothing to delete", returncode=0)
        if os.path.isdir(resolved) and not os.path.islink(resolved):
            if not op.recursive:
                os.rmdir(resolved)
            else:
                shutil.rmtree(resolved)
        else:
            os.remove(resolved)
        return self._result(SandboxStatus.COMPLETED, op, f"Deleted {op.target}", returncode=0)

    def _read_file(self, op: Operation, limiter: ResourceLimiter) -> SandboxResult:
        resolved = self._check_path(op, write=False)
        if resolved is None:
            return self._violation(op, f"Read outside allowed roots: {op.target}")
        size = os.path.getsize(resolved)
        if not limiter.check_file_size(size):
            raise ResourceLimitExceeded(f"{op.target}: {size} bytes exceeds max_file_size_bytes")
        with open(resolved, 'r', encoding='utf-8', errors='replace') as f:
            content = f.read()
        return self._result(SandboxStatus.COMPLETED, op, returncode=0,
                            stdout=limiter.truncate_output(content))
