#!/usr/bin/env python3
"""
gentrust Enforcement — Security Enforcer
==========================================
Maps a creator's trust level to a security level and decides, operation
by operation, whether the operation runs directly, runs in the sandbox,
or does not run.

    BLOCKED              deny everything
    TRUSTED              allow; destructive operations (recursive delete,
                         delete/write outside the target, destructive
                         shell commands) need confirmation, else deny.
                         With force_sandbox, shell/code/network/env are
                         sandboxed.
    UNTRUSTED / UNKNOWN  reads and writes inside the target allowed (reads
                         also from read-only roots); deletes and injections
                         inside the target sandboxed; shell/code/network/env
                         sandboxed when a sandbox exists, else denied;
                         anything outside the target denied.

Every decision writes exactly one 'check' audit record. If that write
fails the decision is downgraded to deny. A trust store that cannot be
read makes the creator BLOCKED for that call.

Import from: gentrust.enforcement.enforcer
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, FrozenSet, List, Optional, Sequence, Tuple

from gentrust.core.access.command_validator import is_destructive
from gentrust.core.access.path_validator import PathValidator
from gentrust.core.config import TrustConfig
from gentrust.core.types import (
    AuditAction, AuthorizationDecision, ISOLATED_PERMISSIONS, Operation,
    Permission, Resolution, SecurityLevel, StorageError, TrustLevel, Verdict,
)

__all__ = ['SecurityEnforcer', 'derive_security_level', 'permissions_for', 'ConfirmCallback']

logger = logging.getLogger("gentrust.enforcement.enforcer")

# confirm(operation, reason) -> True to let a destructive operation run
ConfirmCallback = Callable[[Operation, str], bool]

_FILE_TARGETED = (Permission.FILE_READ, Permission.FILE_WRITE,
                  Permission.FILE_DELETE, Permission.TEMPLATE_INJECT)

_LEVELS = {
    TrustLevel.TRUSTED: SecurityLevel.TRUSTED,
    TrustLevel.UNTRUSTED: SecurityLevel.UNTRUSTED,
    TrustLevel.BLOCKED: SecurityLevel.BLOCKED,
}


def derive_security_level(trust_level: TrustLevel) -> SecurityLevel:
    """trusted -> TRUSTED, untrusted -> UNTRUSTED, blocked -> BLOCKED,
    anything else -> UNKNOWN."""
    return _LEVELS.get(trust_level, SecurityLevel.UNKNOWN)


def permissions_for(level: SecurityLevel) -> FrozenSet[Permission]:
    """Permissions granted without the sandbox at a security level."""
    if level == SecurityLevel.TRUSTED:
        return frozenset(Permission)
    if level in (SecurityLevel.UNTRUSTED, SecurityLevel.UNKNOWN):
        return frozenset({Permission.FILE_READ, Permission.FILE_WRITE})
    return frozenset()


class SecurityEnforcer:
    """Per-operation authorization for one generation target directory."""

    def __init__(self, manager, target_dir, config: Optional[TrustConfig] = None,
                 audit=None, confirm: Optional[ConfirmCallback] = None,
                 sandbox_available: Optional[bool] = None):
        self.manager = manager
        self.config = config or manager.config
        self.audit = audit if audit is not None else manager.audit
        self.target_dir = Path(target_dir)
        self.confirm = confirm
        self.sandbox_available = (self.config.sandbox_enabled
                                  if sandbox_available is None else sandbox_available)
        self.path_validator = PathValidator(self.target_dir, self.config.read_only_paths)

    # =========================================================================
    # Trust lookup
    # =========================================================================

    def security_level_for(self, creator_id: str) -> Tuple[SecurityLevel, str]:
        """Security level for a creator; BLOCKED when the store fails."""
        try:
            return derive_security_level(self.manager.get_trust_level(creator_id)), ""
        except StorageError as e:
            logger.error("Trust lookup failed for %s, treating as blocked: %s", creator_id, e)
            return SecurityLevel.BLOCKED, f"trust store unavailable: {e}"

    # =========================================================================
    # Policy
    # =========================================================================

    def _path_verdict(self, op: Operation) -> Tuple[bool, str]:
        allowed, _, reason = self.path_validator.validate(
            op.target, write=op.type != Permission.FILE_READ)
        return allowed, reason

    def _destructive(self, op: Operation) -> str:
        """Why a trusted operation needs confirmation, or ''."""
        if op.type == Permission.FILE_DELETE and op.recursive:
            return "recursive delete"
        if op.type in (Permission.FILE_DELETE, Permission.FILE_WRITE, Permission.TEMPLATE_INJECT):
            if not self.path_validator.is_inside_target(op.target):
                return "outside the target directory"
        if op.type == Permission.SHELL_EXECUTE and is_destructive(op.target):
            return "destructive shell command"
        return ""

    def _sandbox_or_deny(self, why: str) -> Tuple[Verdict, str]:
        if self.sandbox_available:
            return Verdict.SANDBOX, f"{why}: sandboxed"
        return Verdict.DENY, f"{why}: no sandbox available"

    def decide(self, level: SecurityLevel, op: Operation,
               force_sandbox: bool = False) -> Tuple[Verdict, str]:
        """Pure policy: (verdict, reason) without auditing."""
        if level == SecurityLevel.BLOCKED:
            return Verdict.DENY, "creator is blocked"

        if level == SecurityLevel.TRUSTED:
            danger = self._destructive(op)
            if danger:
                if self.confirm is not None and self.confirm(op, danger):
                    return Verdict.ALLOW, f"trusted; {danger} confirmed"
                return Verdict.DENY, f"trusted; {danger} not confirmed"
            if force_sandbox and op.type in ISOLATED_PERMISSIONS:
                return self._sandbox_or_deny("trusted; sandbox forced")
            return Verdict.ALLOW, "trusted"

        label = level.value.lower()
        if op.type in _FILE_TARGETED:
            inside, reason = self._path_verdict(op)
            if not inside:
                return Verdict.DENY, f"{label}; {reason.lower()}"
            if op.type in (Permission.FILE_READ, Permission.FILE_WRITE) and not op.recursive:
                return Verdict.ALLOW, f"{label}; inside allowed roots"
            return self._sandbox_or_deny(f"{label}; {op.type.value.lower()}")
        return self._sandbox_or_deny(f"{label}; {op.type.value.lower()}")

    # =========================================================================
    # Authorization (audited)
    # =========================================================================

    def authorize(self, security_level: SecurityLevel, operation: Operation,
                  creator_id: str = "", force_sandbox: Optional[bool] = None) -> AuthorizationDecision:
        if force_sandbox is None:
            force_sandbox = self.config.force_sandbox
        verdict, reason = self.decide(security_level, operation, force_sandbox)

        if verdict == Verdict.DENY:
            resolution = (Resolution.BLOCKED if security_level == SecurityLevel.BLOCKED
                          else Resolution.DENIED)
        else:
            resolution = Resolution.APPROVED
        try:
            self.audit.record(creator_id or "anonymous", AuditAction.CHECK, resolution,
                              context=f"{verdict.value}: {operation.describe()} ({reason})")
        except StorageError as e:
            if verdict != Verdict.DENY:
                logger.error("Audit write failed; denying %s: %s", operation.describe(), e)
                verdict, reason = Verdict.DENY, f"audit record could not be written: {e}"

        if verdict == Verdict.DENY:
            logger.warning("Denied %s for %s: %s", operation.describe(),
                           creator_id or "anonymous", reason)
        return AuthorizationDecision(operation, verdict, security_level, reason)

    def deny(self, security_level: SecurityLevel, operation: Operation,
             creator_id: str, reason: str) -> AuthorizationDecision:
        """Audited deny for an operation whose run was refused upstream."""
        resolution = (Resolution.BLOCKED if security_level == SecurityLevel.BLOCKED
                      else Resolution.DENIED)
        try:
            self.audit.record(creator_id or "anonymous", AuditAction.CHECK, resolution,
                              context=f"deny: {operation.describe()} ({reason})")
        except StorageError as e:
            logger.error("Audit write failed for denied %s: %s", operation.describe(), e)
        return AuthorizationDecision(operation, Verdict.DENY, security_level, reason)

    def authorize_creator(self, creator_id: str, operation: Operation,
                          force_sandbox: Optional[bool] = None) -> AuthorizationDecision:
        level, error = self.security_level_for(creator_id)
        decision = self.authorize(level, operation, creator_id, force_sandbox)
        if error:
            return AuthorizationDecision(operation, Verdict.DENY, level, error)
        return decision

    def authorize_all(self, creator_id: str, operations: Sequence[Operation],
                      level: Optional[SecurityLevel] = None,
                      force_sandbox: Optional[bool] = None) -> List[AuthorizationDecision]:
        """One trust lookup, then one audited decision per operation."""
        error = ""
        if level is None:
            level, error = self.security_level_for(creator_id)
        decisions = []
        for op in operations:
            decision = self.authorize(level, op, creator_id, force_sandbox)
            if error:
                decision = AuthorizationDecision(op, Verdict.DENY, level, error)
            decisions.append(decision)
        return decisions
