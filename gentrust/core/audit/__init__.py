"""
Audit Layer — Tamper-evident audit log.

Classes:
- AuditLogger: chained, append-only audit records persisted through the trust store
- ChainVerification: result of re-checking the hash chain
"""

from gentrust.core.audit.logger import AuditLogger, ChainVerification, EXPORT_FORMATS

__all__ = [
    'AuditLogger',
    'ChainVerification',
    'EXPORT_FORMATS',
]
