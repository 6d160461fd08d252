"""
gentrust Core — Trust infrastructure shared by the enforcer, the sandbox
and the CLI.

Submodules:
- version   : Version and persisted-format constants
- constants : Defaults (store, decisions, sandbox limits)
- patterns  : Command and path screening patterns
- types     : Shared enums, dataclasses, exceptions
- creator   : Creator parsing and id normalization
- config    : TrustConfig
- crypto/   : Key providers and store encryption
- trust/    : Trust store, trust manager, decision workflow, prompt
- audit/    : Audit logger
- access/   : Path and command validation
- resources/: Sandbox resource limiting

Quick imports:
    from gentrust.core import TrustLevel, SecurityLevel, Permission
    from gentrust.core import parse_creator, TrustConfig
"""

from gentrust.core.version import __version__, STORE_FORMAT, EXPORT_FORMAT

from gentrust.core.types import (
    # Exceptions
    TrustError,
    ValidationError,
    InvalidCreatorIdError,
    StorageError,
    CorruptedStoreError,
    KeyUnavailableError,
    StoreTooLargeError,
    StoreLockTimeoutError,
    AuditWriteError,
    DecisionError,
    DecisionTimeout,
    DecisionCancelled,
    BlockedCreatorError,
    ResourceLimitExceeded,
    # Enums
    CreatorSource,
    TrustLevel,
    SecurityLevel,
    Permission,
    GrantedBy,
    AuditAction,
    Resolution,
    Verdict,
    SandboxStatus,
    RiskLevel,
    DecisionChoice,
    # Dataclasses
    TrustEntry,
    AuditEntry,
    ResourceLimits,
    Operation,
    TemplateDescriptor,
    TrustCheck,
    AuthorizationDecision,
    SandboxResult,
    TrustChangeEvent,
)

from gentrust.core.creator import Creator, parse_creator, normalize_creator_id
from gentrust.core.config import TrustConfig

__all__ = [
    '__version__', 'STORE_FORMAT', 'EXPORT_FORMAT',
    'TrustError', 'ValidationError', 'InvalidCreatorIdError',
    'StorageError', 'CorruptedStoreError', 'KeyUnavailableError',
    'StoreTooLargeError', 'StoreLockTimeoutError', 'AuditWriteError',
    'DecisionError', 'DecisionTimeout', 'DecisionCancelled',
    'BlockedCreatorError', 'ResourceLimitExceeded',
    'CreatorSource', 'TrustLevel', 'SecurityLevel', 'Permission', 'GrantedBy',
    'AuditAction', 'Resolution', 'Verdict', 'SandboxStatus', 'RiskLevel',
    'DecisionChoice',
    'TrustEntry', 'AuditEntry', 'ResourceLimits', 'Operation',
    'TemplateDescriptor', 'TrustCheck', 'AuthorizationDecision',
    'SandboxResult', 'TrustChangeEvent',
    'Creator', 'parse_creator', 'normalize_creator_id',
    'TrustConfig',
]
