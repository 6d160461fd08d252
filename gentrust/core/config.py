"""
gentrust Configuration — TrustConfig
======================================
Central configuration dataclass with defaults for every component of the
trust subsystem. The external configuration loader builds one of these
(``TrustConfig.from_dict``) and hands the same instance to the store,
manager, decision workflow, enforcer and sandbox.

Environment overrides (``TrustConfig.from_env``):

    GENTRUST_HOME               base directory (default ~/.gentrust)
    GENTRUST_STORE              explicit trust store path
    GENTRUST_NON_INTERACTIVE    1 → never prompt (also implied by CI=true)
    GENTRUST_DEFAULT_ON_TIMEOUT block | temporary-trust
    GENTRUST_DEFAULT_ON_CANCEL  block | temporary-trust
    GENTRUST_DECISION_TIMEOUT   seconds
    GENTRUST_ENCRYPT            1 → encrypt the store at rest
    GENTRUST_AUTO_TRUST         comma-separated creator id patterns
    GENTRUST_FORCE_SANDBOX      1 → sandbox shell/code even when trusted
    GENTRUST_MAX_EXECUTION_MS, GENTRUST_MAX_MEMORY_BYTES,
    GENTRUST_MAX_FILE_SIZE_BYTES, GENTRUST_MAX_FILE_COUNT

Import from: gentrust.core.config
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set
from dataclasses import dataclass, field, fields

from gentrust.core.types import ResourceLimits, ValidationError
from gentrust.core.constants import (
    STORE_FILENAME, AUDIT_ARCHIVE_FILENAME,
    DEFAULT_MAX_STORE_BYTES, DEFAULT_BACKUP_COUNT, DEFAULT_LOCK_TIMEOUT,
    DEFAULT_MAX_AUDIT_ENTRIES, DEFAULT_DECISION_TIMEOUT_SECONDS,
    SAFE_ENV_VARS, SANDBOX_EXECUTABLES,
)

# Values accepted for default_on_timeout / default_on_cancel
DEFAULT_ACTIONS = ('block', 'temporary-trust')

_TRUE = {'1', 'true', 'yes', 'on'}


def _flag(value: str) -> bool:
    return value.strip().lower() in _TRUE


@dataclass
class TrustConfig:
    base_dir: Path = field(default_factory=lambda: Path(
        os.environ.get('GENTRUST_HOME', Path.home() / '.gentrust')))
    store_path: Path = None
    audit_archive_path: Path = None

    # Store
    max_store_bytes: int = DEFAULT_MAX_STORE_BYTES
    backup_count: int = DEFAULT_BACKUP_COUNT
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    max_audit_entries: int = DEFAULT_MAX_AUDIT_ENTRIES
    encryption_enabled: bool = False
    # Passphrase variable for StaticKeyProvider; machine-derived key otherwise
    encryption_key_env: str = "GENTRUST_STORE_KEY"

    # Decision workflow
    interactive: bool = True
    decision_timeout_seconds: float = DEFAULT_DECISION_TIMEOUT_SECONDS
    default_on_timeout: str = "block"
    default_on_cancel: str = "block"

    # Auto-trust policy
    auto_trust_local: bool = True
    auto_trust: List[str] = field(default_factory=list)

    # Enforcement / sandbox
    sandbox_enabled: bool = True
    force_sandbox: bool = False
    sandbox_allow_network: bool = False
    resource_limits: ResourceLimits = field(default_factory=ResourceLimits)
    env_allowlist: Set[str] = field(default_factory=lambda: set(SAFE_ENV_VARS))
    allowed_executables: Set[str] = field(default_factory=lambda: set(SANDBOX_EXECUTABLES))
    read_only_paths: List[Path] = field(default_factory=list)

    def __post_init__(self):
        self.base_dir = Path(self.base_dir).expanduser()
        if self.store_path is None:
            self.store_path = self.base_dir / "trust" / STORE_FILENAME
        self.store_path = Path(self.store_path).expanduser()
        if self.audit_archive_path is None:
            self.audit_archive_path = self.store_path.parent / AUDIT_ARCHIVE_FILENAME
        self.read_only_paths = [Path(p).expanduser() for p in self.read_only_paths]
        self.validate()

    def validate(self) -> None:
        for name in ('default_on_timeout', 'default_on_cancel'):
            value = getattr(self, name)
            if value not in DEFAULT_ACTIONS:
                raise ValidationError(
                    f"{name} must be one of {', '.join(DEFAULT_ACTIONS)}; got {value!r}")
        if self.max_store_bytes <= 0:
            raise ValidationError("max_store_bytes must be positive")
        if self.backup_count < 0:
            raise ValidationError("backup_count cannot be negative")
        if self.lock_timeout <= 0:
            raise ValidationError("lock_timeout must be positive")
        if self.decision_timeout_seconds <= 0:
            raise ValidationError("decision_timeout_seconds must be positive")

    # ---- Construction helpers ----

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'TrustConfig':
        """Build from a plain mapping (as produced by the config loader).

        Unknown keys are rejected so typos do not silently weaken policy.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValidationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        kwargs: Dict[str, Any] = dict(data)
        limits = kwargs.get('resource_limits')
        if isinstance(limits, Mapping):
            kwargs['resource_limits'] = ResourceLimits(**limits)
        for key in ('env_allowlist', 'allowed_executables'):
            if key in kwargs:
                kwargs[key] = set(kwargs[key])
        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 **overrides) -> 'TrustConfig':
        env = os.environ if environ is None else environ
        kwargs: Dict[str, Any] = {}

        if env.get('GENTRUST_HOME'):
            kwargs['base_dir'] = Path(env['GENTRUST_HOME'])
        if env.get('GENTRUST_STORE'):
            kwargs['store_path'] = Path(env['GENTRUST_STORE'])
        if _flag(env.get('GENTRUST_NON_INTERACTIVE', '')) or _flag(env.get('CI', '')):
            kwargs['interactive'] = False
        if env.get('GENTRUST_DEFAULT_ON_TIMEOUT'):
            kwargs['default_on_timeout'] = env['GENTRUST_DEFAULT_ON_TIMEOUT'].strip()
        if env.get('GENTRUST_DEFAULT_ON_CANCEL'):
            kwargs['default_on_cancel'] = env['GENTRUST_DEFAULT_ON_CANCEL'].strip()
        if env.get('GENTRUST_DECISION_TIMEOUT'):
            kwargs['decision_timeout_seconds'] = float(env['GENTRUST_DECISION_TIMEOUT'])
        if env.get('GENTRUST_ENCRYPT'):
            kwargs['encryption_enabled'] = _flag(env['GENTRUST_ENCRYPT'])
        if env.get('GENTRUST_AUTO_TRUST'):
            kwargs['auto_trust'] = [p.strip() for p in env['GENTRUST_AUTO_TRUST'].split(',')
                                    if p.strip()]
        if env.get('GENTRUST_FORCE_SANDBOX'):
            kwargs['force_sandbox'] = _flag(env['GENTRUST_FORCE_SANDBOX'])

        limit_vars = {
            'GENTRUST_MAX_EXECUTION_MS': 'max_execution_time_ms',
            'GENTRUST_MAX_MEMORY_BYTES': 'max_memory_bytes',
            'GENTRUST_MAX_FILE_SIZE_BYTES': 'max_file_size_bytes',
            'GENTRUST_MAX_FILE_COUNT': 'max_file_count',
        }
        limits = {}
        for var, name in limit_vars.items():
            if env.get(var):
                try:
                    limits[name] = int(env[var])
                except ValueError as e:
                    raise ValidationError(f"{var} must be an integer") from e
        if limits:
            kwargs['resource_limits'] = ResourceLimits(**limits)

        kwargs.update(overrides)
        return cls(**kwargs)


__all__ = ['TrustConfig', 'DEFAULT_ACTIONS']
