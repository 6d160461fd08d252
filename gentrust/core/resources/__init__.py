"""
Resource Management — Sandbox limits.

Classes:
- ResourceLimiter: file budget, process-tree memory, rlimits, output truncation
"""

from gentrust.core.resources.limiter import (
    ResourceLimiter,
    ResourceLimits,
    ResourceLimitExceeded,
)

__all__ = ['ResourceLimiter', 'ResourceLimits', 'ResourceLimitExceeded']
