#!/usr/bin/env python3
"""
gentrust Core Access — Command Validator
==========================================
Screens shell commands a template wants to run:
- Blocked patterns (privilege escalation, pipe-to-shell, credential
  access, persistence, disk destruction, reverse shells)
- Executable allow-list
- Inline code flags (python -c, node -e, sh -c) rejected; code runs
  through code operations, which have their own screening
- Every path-like argument is resolved against the working directory
  and must stay inside the allowed roots; arguments a command writes to
  must stay inside the write root
- Obfuscation detection (string concatenation, long base64 blobs)

Destructive patterns (rm -rf, git clean -f, ...) are not blocked here;
is_destructive() reports them so the enforcer can ask for confirmation.

Import from: gentrust.core.access.command_validator
"""

import os
import re
import shlex
from typing import Iterable, List, Optional, Tuple

from gentrust.core.constants import IS_WINDOWS, SANDBOX_EXECUTABLES
from gentrust.core.patterns import BLOCKED_COMMAND_PATTERNS, DESTRUCTIVE_COMMAND_PATTERNS

_EXE_SUFFIXES = ('.exe', '.cmd', '.bat')

# Flags that hand the interpreter a program on the command line
INLINE_CODE_FLAGS = {
    'python': ('-c',),
    'python3': ('-c',),
    'node': ('-e', '--eval', '-p', '--print'),
    'bun': ('-e', '--eval', '-p', '--print'),
    'sh': ('-c',),
    'bash': ('-c',),
}

# Every positional argument is a path the command modifies
WRITING_EXECUTABLES = frozenset({'touch', 'mkdir', 'rm', 'mv'})
# Only the last positional argument is written to
COPYING_EXECUTABLES = frozenset({'cp'})


def executable_name(arg: str) -> str:
    exe = os.path.basename(arg).lower()
    for suffix in _EXE_SUFFIXES:
        if exe.endswith(suffix):
            return exe[:-len(suffix)]
    return exe


def is_destructive(command: str) -> bool:
    return any(re.search(p, command) for p in DESTRUCTIVE_COMMAND_PATTERNS)


def _inside(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def _inline_code_flag(exe: str, args: List[str]) -> Optional[str]:
    for arg in args:
        for flag in INLINE_CODE_FLAGS.get(exe, ()):
            if arg == flag or arg.startswith(flag + '='):
                return flag
            # python -c"print(1)", node -e"..."
            if len(flag) == 2 and arg.startswith(flag) and not arg.startswith('--'):
                return flag
    return None


class CommandValidator:
    """Screens one command line.

    `roots` are the directories path arguments may reach. The first root
    is the working directory relative arguments resolve against, and the
    write root unless `write_root` says otherwise.
    """

    def __init__(self, allowed_executables: Optional[Iterable[str]] = None,
                 roots: Optional[Iterable[str]] = None,
                 write_root: Optional[str] = None):
        self.allowed_executables = {e.lower() for e in (allowed_executables or SANDBOX_EXECUTABLES)}
        self.roots: List[str] = [os.path.realpath(str(r)) for r in (roots or [])]
        if write_root is not None:
            self.write_root: Optional[str] = os.path.realpath(str(write_root))
        else:
            self.write_root = self.roots[0] if self.roots else None
        self.blocked_patterns = [re.compile(p, re.I) for p in BLOCKED_COMMAND_PATTERNS]

    @property
    def cwd(self) -> Optional[str]:
        return self.roots[0] if self.roots else None

    def split(self, command: str) -> List[str]:
        return shlex.split(command, posix=not IS_WINDOWS)

    def validate(self, command: str) -> Tuple[bool, str]:
        if not command or not command.strip():
            return False, "Empty command"

        # Blocked patterns
        for pattern in self.blocked_patterns:
            if pattern.search(command):
                return False, f"Blocked: {pattern.pattern[:40]}"

        # Parse executable
        try:
            args = self.split(command)
        except ValueError as e:
            return False, f"Parse error: {e}"
        if not args:
            return False, "Empty command"

        exe = executable_name(args[0])
        if exe not in self.allowed_executables:
            return False, f"Not allowed: {exe}"

        flag = _inline_code_flag(exe, args[1:])
        if flag:
            return False, f"Inline code not allowed: {exe} {flag}"

        if self.roots:
            ok, reason = self._check_path_args(exe, args[1:])
            if not ok:
                return False, reason

        # Obfuscation check
        if self._is_obfuscated(command):
            return False, "Obfuscation detected"

        return True, "OK"

    def _check_path_args(self, exe: str, args: List[str]) -> Tuple[bool, str]:
        values: List[Tuple[str, bool]] = []
        for arg in args:
            if arg.startswith('-'):
                # --out=path style options carry the path after '='
                if '=' in arg:
                    values.append((arg.split('=', 1)[1], False))
                continue
            values.append((arg, True))

        last = max((i for i, (_, positional) in enumerate(values) if positional), default=-1)
        for i, (value, positional) in enumerate(values):
            write = positional and (
                exe in WRITING_EXECUTABLES
                or (exe in COPYING_EXECUTABLES and i == last))
            ok, reason = self.check_path_arg(value, write=write)
            if not ok:
                return False, reason
        return True, "OK"

    def resolve(self, value: str) -> str:
        expanded = os.path.expanduser(value)
        if not os.path.isabs(expanded):
            expanded = os.path.join(self.cwd, expanded)
        return os.path.realpath(os.path.normpath(expanded))

    def check_path_arg(self, value: str, write: bool = False) -> Tuple[bool, str]:
        """A single argument, resolved from the working directory."""
        if not value or not self.roots:
            return True, "OK"
        try:
            resolved = self.resolve(value)
        except (OSError, ValueError):
            return False, f"Unresolvable path argument: {value}"
        if write:
            if self.write_root and _inside(resolved, self.write_root):
                return True, "OK"
            return False, f"Write outside target directory: {value}"
        if any(_inside(resolved, root) for root in self.roots):
            return True, "OK"
        return False, f"Path outside allowed roots: {value}"

    def _is_obfuscated(self, cmd: str) -> bool:
        if len(cmd) < 20:
            return False
        indicators = 0

        special = len(re.findall(r'[`$\[\]{}()\\^]', cmd))
        if special / len(cmd) > 0.15:
            indicators += 1
        if re.search(r'["\'][^"\']{1,10}["\']\s*\+\s*["\']', cmd):
            indicators += 1
        if re.search(r'\$\w+\s*=\s*["\'].*["\']\s*;', cmd):
            indicators += 1
        if re.search(r'\\x[0-9a-f]{2}(\\x[0-9a-f]{2}){3,}', cmd, re.I):
            indicators += 1
        if re.search(r'[A-Za-z0-9+/]{40,}={0,2}', cmd):
            indicators += 1

        return indicators >= 2


__all__ = ['CommandValidator', 'executable_name', 'is_destructive', 'INLINE_CODE_FLAGS']
