#!/usr/bin/env python3
"""
gentrust Core Resources — Resource Limiter
============================================
Sandbox resource accounting:
- File budget: count and per-file size, shared across a batch
- Memory monitoring of a process tree (via psutil)
- POSIX rlimits for child processes (file size, address space backstop)
- Target directory snapshots to find what a process wrote
- Output truncation

Import from: gentrust.core.resources.limiter
"""

import os
import threading
from typing import Callable, Dict, List, Optional, Tuple

import psutil

from gentrust.core.constants import IS_WINDOWS, MAX_CAPTURED_OUTPUT
from gentrust.core.types import ResourceLimits, ResourceLimitExceeded

if not IS_WINDOWS:
    import resource
else:
    resource = None

# Address space limit relative to max_memory_bytes. Virtual size runs well
# above RSS, so this only catches runaway allocation; RSS is polled.
ADDRESS_SPACE_FACTOR = 4

FileState = Dict[str, Tuple[int, int]]


class ResourceLimiter:
    """Enforces sandbox resource limits for one operation or one batch."""

    def __init__(self, limits: ResourceLimits = None):
        self.limits = limits or ResourceLimits()
        self.lock = threading.Lock()
        self.files_written: List[str] = []
        self._seen = set()

    # ---- Files ----

    @property
    def file_count(self) -> int:
        return len(self._seen)

    def check_file_size(self, size_bytes: int) -> bool:
        return size_bytes <= self.limits.max_file_size_bytes

    def reserve_file(self, path: str, size_bytes: int) -> None:
        """Account for a file about to be written.

        Rewriting a file already counted does not use more budget.

        Raises:
            ResourceLimitExceeded: size or count over the limit.
        """
        if not self.check_file_size(size_bytes):
            raise ResourceLimitExceeded(
                f"{path}: {size_bytes} bytes exceeds max_file_size_bytes "
                f"({self.limits.max_file_size_bytes})")
        with self.lock:
            if path not in self._seen and len(self._seen) >= self.limits.max_file_count:
                raise ResourceLimitExceeded(
                    f"File count limit reached ({self.limits.max_file_count})")
            self.record_file(path)

    def record_file(self, path: str) -> None:
        if path not in self._seen:
            self._seen.add(path)
            self.files_written.append(path)

    def account_changes(self, changed: Dict[str, int]) -> Optional[str]:
        """Record files a process wrote. Returns a violation message if
        any limit is exceeded, else None."""
        problem = None
        with self.lock:
            for path in sorted(changed):
                self.record_file(path)
                if problem is None and not self.check_file_size(changed[path]):
                    problem = (f"{path}: {changed[path]} bytes exceeds max_file_size_bytes "
                               f"({self.limits.max_file_size_bytes})")
            if problem is None and len(self._seen) > self.limits.max_file_count:
                problem = f"File count limit exceeded ({self.limits.max_file_count})"
        return problem

    # ---- Memory ----

    @staticmethod
    def tree_rss(pid: int) -> int:
        """Resident memory of a process and all its descendants, in bytes."""
        try:
            proc = psutil.Process(pid)
            procs = [proc] + proc.children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return 0
        total = 0
        for p in procs:
            try:
                total += p.memory_info().rss
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return total

    def check_memory(self, pid: int) -> Dict:
        rss = self.tree_rss(pid)
        return {
            'ok': rss <= self.limits.max_memory_bytes,
            'rss_bytes': rss,
            'limit_bytes': self.limits.max_memory_bytes,
        }

    @staticmethod
    def kill_tree(pid: int) -> None:
        try:
            parent = psutil.Process(pid)
            procs = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return
        for p in procs:
            try:
                p.kill()
            except psutil.NoSuchProcess:
                continue
        psutil.wait_procs(procs, timeout=2)

    # ---- Child process limits ----

    def preexec_fn(self) -> Optional[Callable[[], None]]:
        """rlimit setup for subprocess.Popen on POSIX, None elsewhere."""
        if resource is None:
            return None
        fsize = self.limits.max_file_size_bytes
        address_space = self.limits.max_memory_bytes * ADDRESS_SPACE_FACTOR

        def apply_limits():
            resource.setrlimit(resource.RLIMIT_FSIZE, (fsize, fsize))
            if hasattr(resource, 'RLIMIT_AS'):
                resource.setrlimit(resource.RLIMIT_AS, (address_space, address_space))

        return apply_limits

    # ---- Snapshots ----

    @staticmethod
    def snapshot(root: str) -> FileState:
        """path -> (size, mtime_ns) for every regular file under root."""
        state: FileState = {}
        for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
            for name in filenames:
                full = os.path.join(dirpath, name)
                try:
                    st = os.lstat(full)
                except OSError:
                    continue
                state[full] = (st.st_size, st.st_mtime_ns)
        return state

    @staticmethod
    def diff(before: FileState, after: FileState) -> Dict[str, int]:
        """Files created or modified between two snapshots -> size."""
        return {path: meta[0] for path, meta in after.items() if before.get(path) != meta}

    # ---- Output ----

    @staticmethod
    def truncate_output(output: str, limit: int = MAX_CAPTURED_OUTPUT) -> str:
        if len(output) > limit:
            return output[:limit] + "\n... [OUTPUT TRUNCATED]"
        return output


__all__ = ['ResourceLimiter', 'ResourceLimits', 'ResourceLimitExceeded']
