"""
gentrust Core Types — Shared enums, dataclasses, and exceptions.

This module centralizes all type definitions used across the gentrust
codebase. Every layer (store, manager, decision workflow, enforcer,
sandbox, CLI) imports types from here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from gentrust.core.constants import (
    DEFAULT_MAX_EXECUTION_TIME_MS, DEFAULT_MAX_MEMORY_BYTES,
    DEFAULT_MAX_FILE_SIZE_BYTES, DEFAULT_MAX_FILE_COUNT,
)


def utcnow() -> datetime:
    """Timezone-aware current time. All persisted timestamps are UTC."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp written by this package.

    Naive timestamps (hand-edited files, older exports) are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


# =============================================================================
# EXCEPTIONS
# =============================================================================

class TrustError(Exception):
    """Base exception for all gentrust errors."""
    pass


# --- Validation -------------------------------------------------------------

class ValidationError(TrustError):
    """Malformed input. Raised before any state is mutated."""
    pass


class InvalidCreatorIdError(ValidationError):
    """A creator id (or raw creator string) could not be parsed."""
    pass


# --- Storage ----------------------------------------------------------------

class StorageError(TrustError):
    """The trust store could not be read or written.

    Callers must fail closed: any uncertainty about stored trust state is
    treated as BLOCKED, never TRUSTED.
    """
    pass


class CorruptedStoreError(StorageError):
    """Store file failed format or checksum validation and no backup could
    be restored."""
    pass


class KeyUnavailableError(CorruptedStoreError):
    """Store is encrypted but the decryption key is missing or wrong."""
    pass


class StoreTooLargeError(StorageError):
    """Serialized store exceeds the configured size ceiling."""
    pass


class StoreLockTimeoutError(StorageError):
    """Exclusive store lock could not be acquired within the timeout."""
    pass


class AuditWriteError(StorageError):
    """An audit record could not be persisted."""
    pass


# --- Decisions --------------------------------------------------------------

class DecisionError(TrustError):
    """A trust decision could not be obtained from the decision source."""
    pass


class DecisionTimeout(DecisionError):
    """The interactive prompt timed out."""
    pass


class DecisionCancelled(DecisionError):
    """The user cancelled the interactive prompt (EOF, Ctrl-C, 'cancel')."""
    pass


# --- Enforcement ------------------------------------------------------------

class BlockedCreatorError(TrustError):
    """Creator is blocked. Non-retryable; only an explicit unblock recovers."""

    def __init__(self, creator_id: str, reason: str = ""):
        self.creator_id = creator_id
        self.reason = reason
        msg = f"Creator '{creator_id}' is blocked"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ResourceLimitExceeded(TrustError):
    """Raised when a sandbox resource limit (time, memory, file size/count)
    is exceeded."""
    pass


# =============================================================================
# ENUMS
# =============================================================================

class CreatorSource(Enum):
    """Where a template creator publishes from."""
    NPM = "npm"
    GITHUB = "github"
    GIT = "git"
    LOCAL = "local"


class TrustLevel(Enum):
    """Persisted trust classification of a creator.

    UNKNOWN is never stored: it is the absence of an entry (or an expired
    one).
    """
    TRUSTED = "trusted"
    UNTRUSTED = "untrusted"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"


class SecurityLevel(Enum):
    """Execution-privilege tier derived from a TrustLevel. Never stored."""
    TRUSTED = "TRUSTED"
    UNTRUSTED = "UNTRUSTED"
    BLOCKED = "BLOCKED"
    UNKNOWN = "UNKNOWN"

    @property
    def rank(self) -> int:
        """Permissiveness order: BLOCKED (0) < UNKNOWN = UNTRUSTED < TRUSTED."""
        return {
            SecurityLevel.BLOCKED: 0,
            SecurityLevel.UNKNOWN: 1,
            SecurityLevel.UNTRUSTED: 1,
            SecurityLevel.TRUSTED: 2,
        }[self]


class Permission(Enum):
    """One discrete capability an operation may need.

    Operation types map 1:1 onto permissions, so templates declare their
    operations with these values.
    """
    FILE_READ = "FILE_READ"
    FILE_WRITE = "FILE_WRITE"
    FILE_DELETE = "FILE_DELETE"
    SHELL_EXECUTE = "SHELL_EXECUTE"
    NETWORK_ACCESS = "NETWORK_ACCESS"
    ENV_ACCESS = "ENV_ACCESS"
    TEMPLATE_INJECT = "TEMPLATE_INJECT"
    CODE_EXECUTE = "CODE_EXECUTE"

    @classmethod
    def from_operation_type(cls, value: str) -> 'Permission':
        """Map an operation type string from discovery to a Permission.

        Accepts the enum names plus the action verbs generator templates
        use ('add', 'inject', 'sh', ...).
        """
        if isinstance(value, Permission):
            return value
        key = str(value).strip()
        try:
            return cls(key.upper())
        except ValueError:
            pass
        aliases = {
            'read': cls.FILE_READ,
            'copy': cls.FILE_WRITE,
            'add': cls.FILE_WRITE,
            'to': cls.FILE_WRITE,
            'write': cls.FILE_WRITE,
            'delete': cls.FILE_DELETE,
            'remove': cls.FILE_DELETE,
            'rm': cls.FILE_DELETE,
            'sh': cls.SHELL_EXECUTE,
            'shell': cls.SHELL_EXECUTE,
            'command': cls.SHELL_EXECUTE,
            'exec': cls.SHELL_EXECUTE,
            'network': cls.NETWORK_ACCESS,
            'fetch': cls.NETWORK_ACCESS,
            'http': cls.NETWORK_ACCESS,
            'env': cls.ENV_ACCESS,
            'inject': cls.TEMPLATE_INJECT,
            'code': cls.CODE_EXECUTE,
            'script': cls.CODE_EXECUTE,
            'eval': cls.CODE_EXECUTE,
        }
        try:
            return aliases[key.lower()]
        except KeyError:
            raise ValidationError(f"Unknown operation type: {value!r}") from None


# Permissions that start a process or touch something outside the
# filesystem; untrusted creators only ever get these through the sandbox.
ISOLATED_PERMISSIONS = frozenset({
    Permission.SHELL_EXECUTE,
    Permission.NETWORK_ACCESS,
    Permission.ENV_ACCESS,
    Permission.CODE_EXECUTE,
})


class GrantedBy(Enum):
    """Who made a trust decision."""
    USER = "user"
    POLICY = "policy"
    AUTOMATION = "automation"


class AuditAction(Enum):
    GRANT = "grant"
    REVOKE = "revoke"
    BLOCK = "block"
    UNBLOCK = "unblock"
    CHECK = "check"
    VIOLATION = "violation"


class Resolution(Enum):
    APPROVED = "approved"
    DENIED = "denied"
    BLOCKED = "blocked"
    TIMEOUT = "timeout"
    POLICY_DEFAULT = "policy-default"


class Verdict(Enum):
    """Per-operation authorization handed to the rendering layer."""
    ALLOW = "allow"
    DENY = "deny"
    SANDBOX = "sandbox"


class SandboxStatus(Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timedOut"
    RESOURCE_EXCEEDED = "resourceExceeded"
    VIOLATION = "violation"


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DecisionChoice(Enum):
    """Answers the decision workflow can apply."""
    APPROVE_PERMANENT = "approve-permanent"
    APPROVE_ONCE = "approve-once"
    DENY = "deny"
    BLOCK = "block"


# =============================================================================
# DATACLASSES
# =============================================================================

@dataclass
class TrustEntry:
    """Durable trust decision for one creator."""
    creator_id: str
    trust_level: TrustLevel
    granted_at: datetime
    granted_by: GrantedBy = GrantedBy.USER
    reason: str = ""
    expires_at: Optional[datetime] = None

    def validate(self) -> None:
        """Check the invariants every stored entry must satisfy."""
        if not self.creator_id or ':' not in self.creator_id:
            raise ValidationError(f"Invalid creator id in entry: {self.creator_id!r}")
        from gentrust.core.creator import normalize_creator_id
        try:
            canonical = normalize_creator_id(self.creator_id)
        except InvalidCreatorIdError as e:
            raise ValidationError(f"Invalid creator id in entry: {e}") from e
        if canonical != self.creator_id:
            raise ValidationError(
                f"Creator id not canonical: {self.creator_id!r} (expected {canonical!r})")
        if self.trust_level == TrustLevel.UNKNOWN:
            raise ValidationError(
                f"'unknown' is never persisted (entry for {self.creator_id})")
        if self.trust_level == TrustLevel.BLOCKED and not self.reason.strip():
            raise ValidationError(f"Blocked entry for {self.creator_id} has no reason")
        if self.expires_at is not None and self.trust_level == TrustLevel.BLOCKED:
            raise ValidationError(f"Blocked entry for {self.creator_id} cannot expire")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'creator_id': self.creator_id,
            'trust_level': self.trust_level.value,
            'reason': self.reason,
            'granted_at': format_timestamp(self.granted_at),
            'expires_at': format_timestamp(self.expires_at),
            'granted_by': self.granted_by.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrustEntry':
        if not isinstance(data, dict):
            raise ValidationError(f"Trust entry must be an object, got {type(data).__name__}")
        try:
            entry = cls(
                creator_id=str(data['creator_id']),
                trust_level=TrustLevel(data['trust_level']),
                reason=str(data.get('reason') or ''),
                granted_at=parse_timestamp(data['granted_at']),
                expires_at=parse_timestamp(data.get('expires_at')),
                granted_by=GrantedBy(data.get('granted_by', GrantedBy.USER.value)),
            )
        except KeyError as e:
            raise ValidationError(f"Trust entry missing field {e}") from e
        except ValueError as e:
            raise ValidationError(f"Invalid trust entry: {e}") from e
        if entry.granted_at is None:
            raise ValidationError(f"Trust entry for {entry.creator_id} has no granted_at")
        return entry


@dataclass(frozen=True)
class AuditEntry:
    """Immutable audit record. `sequence` is the insertion order and breaks
    ties between equal timestamps."""
    timestamp: datetime
    creator_id: str
    action: AuditAction
    resolution: Resolution
    context: str = ""
    granted_by: Optional[GrantedBy] = None
    sequence: int = 0
    chain_hash: str = ""

    def hash_payload(self) -> Dict[str, Any]:
        """Fields covered by the chain hash (everything but the hash)."""
        data = self.to_dict()
        data.pop('chain_hash', None)
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': format_timestamp(self.timestamp),
            'creator_id': self.creator_id,
            'action': self.action.value,
            'resolution': self.resolution.value,
            'context': self.context,
            'granted_by': self.granted_by.value if self.granted_by else None,
            'sequence': self.sequence,
            'chain_hash': self.chain_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEntry':
        if not isinstance(data, dict):
            raise ValidationError("Audit entry must be an object")
        try:
            granted_by = data.get('granted_by')
            return cls(
                timestamp=parse_timestamp(data['timestamp']),
                creator_id=str(data['creator_id']),
                action=AuditAction(data['action']),
                resolution=Resolution(data['resolution']),
                context=str(data.get('context') or ''),
                granted_by=GrantedBy(granted_by) if granted_by else None,
                sequence=int(data.get('sequence', 0)),
                chain_hash=str(data.get('chain_hash') or ''),
            )
        except KeyError as e:
            raise ValidationError(f"Audit entry missing field {e}") from e
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid audit entry: {e}") from e


@dataclass
class ResourceLimits:
    """Sandbox resource ceilings. Part of run configuration, never stored."""
    max_execution_time_ms: int = DEFAULT_MAX_EXECUTION_TIME_MS
    max_memory_bytes: int = DEFAULT_MAX_MEMORY_BYTES
    max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES
    max_file_count: int = DEFAULT_MAX_FILE_COUNT

    def __post_init__(self):
        for name in ('max_execution_time_ms', 'max_memory_bytes',
                     'max_file_size_bytes', 'max_file_count'):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise ValidationError(f"{name} must be a positive integer, got {value!r}")

    @property
    def timeout_seconds(self) -> float:
        return self.max_execution_time_ms / 1000.0

    def to_dict(self) -> Dict[str, int]:
        return {
            'max_execution_time_ms': self.max_execution_time_ms,
            'max_memory_bytes': self.max_memory_bytes,
            'max_file_size_bytes': self.max_file_size_bytes,
            'max_file_count': self.max_file_count,
        }


@dataclass(frozen=True)
class Operation:
    """One concrete action a template intends to perform.

    `target` is a path for file operations, the command line for shell
    operations, a URL for network access and a variable name (or
    comma-separated names) for environment access. `payload` carries file
    content, injected text or code.
    """
    type: Permission
    target: str = ""
    payload: Optional[str] = None
    recursive: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Operation':
        if not isinstance(data, dict) or 'type' not in data:
            raise ValidationError(f"Operation must be an object with a 'type': {data!r}")
        payload = data.get('payload')
        return cls(
            type=Permission.from_operation_type(data['type']),
            target=str(data.get('target') or ''),
            payload=None if payload is None else str(payload),
            recursive=bool(data.get('recursive', False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {'type': self.type.value, 'target': self.target}
        if self.payload is not None:
            data['payload'] = self.payload
        if self.recursive:
            data['recursive'] = True
        return data

    def describe(self) -> str:
        """Short human-readable description used as audit context."""
        target = self.target if len(self.target) <= 200 else self.target[:197] + '...'
        suffix = " (recursive)" if self.recursive else ""
        return f"{self.type.value} {target}{suffix}".strip()


@dataclass
class TemplateDescriptor:
    """What discovery hands over for one candidate template."""
    source: str
    identifier: str
    operations: List[Operation] = field(default_factory=list)
    name: str = ""
    force_sandbox: bool = False

    @property
    def raw_creator(self) -> str:
        return f"{self.source}:{self.identifier}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TemplateDescriptor':
        if not isinstance(data, dict):
            raise ValidationError("Template descriptor must be an object")
        try:
            source = str(data['source'])
            identifier = str(data['identifier'])
        except KeyError as e:
            raise ValidationError(f"Template descriptor missing field {e}") from e
        ops = [Operation.from_dict(op) for op in data.get('operations') or []]
        force = data.get('force_sandbox', data.get('sandbox', False))
        if not isinstance(force, bool):
            raise ValidationError(f"force_sandbox must be true or false, got {force!r}")
        return cls(source=source, identifier=identifier, operations=ops,
                   name=str(data.get('name') or ''), force_sandbox=force)


@dataclass(frozen=True)
class TrustCheck:
    """Answer to check_trust(): what discovery shows next to a template."""
    creator_id: str
    trust_level: TrustLevel
    security_level: SecurityLevel
    error: str = ""
    failure: Optional[Exception] = field(default=None, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'creator_id': self.creator_id,
            'trust_level': self.trust_level.value,
            'security_level': self.security_level.value,
        }
        if self.error:
            data['error'] = self.error
        if self.failure is not None:
            data['error_type'] = type(self.failure).__name__
        return data


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of authorizing one operation."""
    operation: Operation
    verdict: Verdict
    security_level: SecurityLevel
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.verdict == Verdict.ALLOW

    @property
    def permission(self) -> Permission:
        return self.operation.type

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation.to_dict(),
            'verdict': self.verdict.value,
            'security_level': self.security_level.value,
            'reason': self.reason,
        }


@dataclass
class SandboxResult:
    """Result of one sandboxed operation.

    Partial filesystem effects are never rolled back: `files_written`
    lists everything the operation created or modified so the caller can
    clean up.
    """
    status: SandboxStatus
    operation: Operation
    returncode: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    message: str = ""
    files_written: List[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def completed(self) -> bool:
        return self.status == SandboxStatus.COMPLETED

    @property
    def succeeded(self) -> bool:
        return self.completed and (self.returncode in (None, 0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'operation': self.operation.to_dict(),
            'returncode': self.returncode,
            'stdout': self.stdout,
            'stderr': self.stderr,
            'message': self.message,
            'files_written': list(self.files_written),
            'duration_ms': self.duration_ms,
        }


@dataclass(frozen=True)
class TrustChangeEvent:
    """Emitted by the TrustManager after every mutation."""
    creator_id: str
    previous: TrustLevel
    current: TrustLevel
    action: AuditAction
    timestamp: datetime = field(default_factory=utcnow)


__all__ = [
    'utcnow', 'parse_timestamp', 'format_timestamp',
    # Exceptions
    'TrustError', 'ValidationError', 'InvalidCreatorIdError',
    'StorageError', 'CorruptedStoreError', 'KeyUnavailableError',
    'StoreTooLargeError', 'StoreLockTimeoutError', 'AuditWriteError',
    'DecisionError', 'DecisionTimeout', 'DecisionCancelled',
    'BlockedCreatorError', 'ResourceLimitExceeded',
    # Enums
    'CreatorSource', 'TrustLevel', 'SecurityLevel', 'Permission',
    'ISOLATED_PERMISSIONS', 'GrantedBy', 'AuditAction', 'Resolution',
    'Verdict', 'SandboxStatus', 'RiskLevel', 'DecisionChoice',
    # Dataclasses
    'TrustEntry', 'AuditEntry', 'ResourceLimits', 'Operation',
    'TemplateDescriptor', 'TrustCheck', 'AuthorizationDecision',
    'SandboxResult', 'TrustChangeEvent',
]
