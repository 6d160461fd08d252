"""
Access Layer — Path and command policy for template operations.

Classes:
- PathValidator: scopes file access to the target directory and read-only roots
- CommandValidator: blocked patterns, executable allow-list, path arguments
"""

from gentrust.core.access.path_validator import PathValidator
from gentrust.core.access.command_validator import CommandValidator, is_destructive

__all__ = [
    'PathValidator',
    'CommandValidator',
    'is_destructive',
]
