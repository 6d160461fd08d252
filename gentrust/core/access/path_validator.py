#!/usr/bin/env python3
"""
gentrust Core Access — Path Validator
=======================================
Scopes template file access to the generation target directory.

- Writes (and deletes, injections) must resolve inside the target root.
- Reads may also resolve inside one of the read-only roots.
- Credential and VCS-internal paths are hard-blocked even inside a root.
- Symlinks are resolved before the containment check, so a link inside
  the target pointing elsewhere is treated as pointing elsewhere.
- UNC, device and NTFS alternate-data-stream paths are rejected.

Import from: gentrust.core.access.path_validator
"""

import os
import re
from typing import Iterable, List, Optional, Tuple

from gentrust.core.patterns import BLOCKED_PATH_PATTERNS


def _inside(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


class PathValidator:
    def __init__(self, target_dir, read_only_paths: Optional[Iterable] = None):
        self.target_dir = os.path.realpath(os.path.abspath(os.path.expanduser(str(target_dir))))
        self.read_only_roots: List[str] = [
            os.path.realpath(os.path.abspath(os.path.expanduser(str(p))))
            for p in (read_only_paths or [])
        ]
        self.blocked_patterns = [re.compile(p, re.I) for p in BLOCKED_PATH_PATTERNS]

    def resolve(self, path: str) -> str:
        """Absolute, symlink-free form; relative paths are taken from the
        target directory."""
        expanded = os.path.expanduser(path)
        if not os.path.isabs(expanded):
            expanded = os.path.join(self.target_dir, expanded)
        return os.path.realpath(os.path.abspath(os.path.normpath(expanded)))

    def is_inside_target(self, path: str) -> bool:
        try:
            return _inside(self.resolve(path), self.target_dir)
        except (OSError, ValueError):
            return False

    def validate(self, path: str, write: bool = True) -> Tuple[bool, str, str]:
        """Validate a path. Returns (allowed, resolved_path, reason)."""
        if not path or not str(path).strip():
            return False, path, "Empty path"
        path = str(path)
        if '\x00' in path:
            return False, path, "NUL byte in path"
        if path.startswith('\\\\'):
            return False, path, "UNC and device paths blocked"

        # ADS check
        path_no_drive = path[2:] if len(path) >= 2 and path[1] == ':' else path
        if ':' in path_no_drive:
            return False, path, "ADS blocked"

        try:
            resolved = self.resolve(path)
        except (OSError, ValueError) as e:
            return False, path, f"Error: {e}"

        for pattern in self.blocked_patterns:
            if pattern.search(resolved):
                return False, resolved, "Blocked pattern"

        if _inside(resolved, self.target_dir):
            return True, resolved, "OK"
        if not write and any(_inside(resolved, root) for root in self.read_only_roots):
            return True, resolved, "Read-only root"
        return False, resolved, "Outside target directory"

    @property
    def roots(self) -> List[str]:
        return [self.target_dir] + self.read_only_roots


__all__ = ['PathValidator']
