"""
gentrust — Template Trust & Security Enforcement

Decides, for every template a code generator obtains from a third party,
whether and how its generation logic may run:

- core/        : Creator parsing, trust store, trust manager, decision
                 workflow, audit log, path/command policy, resource limits
- enforcement/ : Security enforcer, sandboxed executor, trust service facade
- cli          : `gentrust` command for inspecting and editing trust decisions

Version: 1.0.0
"""

from gentrust.core.version import __version__

__all__ = ['__version__']
