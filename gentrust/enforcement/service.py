#!/usr/bin/env python3
"""
gentrust Enforcement — Trust Service
======================================
Wires store, audit logger, trust manager, decision workflow, enforcer and
sandbox together for one generator run, and exposes the three calls the
rest of the generator needs:

    check_trust(creator_id)   -> TrustCheck        (discovery)
    evaluate(template)        -> ExecutionPlan     (before rendering)
    execute(plan)             -> ExecutionReport   (sandboxed operations)

Usage:
    service = TrustService.from_config(TrustConfig.from_env(), target_dir=".")
    plan = service.evaluate(TemplateDescriptor.from_dict(discovered))
    if plan.runnable:
        report = service.execute(plan)

Import from: gentrust.enforcement.service
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from gentrust.core.audit.logger import AuditLogger
from gentrust.core.config import TrustConfig
from gentrust.core.creator import parse_creator
from gentrust.core.trust.decision import (
    DecisionConfig, DecisionOutcome, DecisionSource, DecisionWorkflow,
)
from gentrust.core.trust.manager import TrustManager
from gentrust.core.trust.store import TrustStore
from gentrust.core.types import (
    AuthorizationDecision, Operation, SandboxResult, SecurityLevel, StorageError,
    TemplateDescriptor, TrustCheck, TrustLevel, Verdict,
)
from gentrust.enforcement.enforcer import ConfirmCallback, SecurityEnforcer, derive_security_level
from gentrust.enforcement.executor import SandboxedExecutor

__all__ = ['TrustService', 'ExecutionPlan', 'ExecutionReport']

logger = logging.getLogger("gentrust.enforcement.service")

DEFAULT_CHECK_WORKERS = 4


@dataclass
class ExecutionPlan:
    """Per-operation verdicts for one template, consumed by the renderer."""
    template: TemplateDescriptor
    creator_id: str
    security_level: SecurityLevel
    outcome: DecisionOutcome
    decisions: List[AuthorizationDecision] = field(default_factory=list)

    def _with(self, verdict: Verdict) -> List[Operation]:
        return [d.operation for d in self.decisions if d.verdict == verdict]

    @property
    def allowed(self) -> List[Operation]:
        return self._with(Verdict.ALLOW)

    @property
    def sandboxed(self) -> List[Operation]:
        return self._with(Verdict.SANDBOX)

    @property
    def denied(self) -> List[Operation]:
        return self._with(Verdict.DENY)

    @property
    def runnable(self) -> bool:
        """True when the run may proceed (some operations may still be denied)."""
        return self.outcome.allowed

    def to_dict(self) -> Dict[str, Any]:
        return {
            'creator_id': self.creator_id,
            'template': self.template.name or self.template.identifier,
            'security_level': self.security_level.value,
            'outcome': self.outcome.to_dict(),
            'decisions': [d.to_dict() for d in self.decisions],
        }


@dataclass
class ExecutionReport:
    plan: ExecutionPlan
    results: List[SandboxResult] = field(default_factory=list)

    @property
    def violations(self) -> List[SandboxResult]:
        return [r for r in self.results if not r.completed]

    @property
    def files_written(self) -> List[str]:
        return [path for r in self.results for path in r.files_written]

    @property
    def ok(self) -> bool:
        return not self.violations and all(r.succeeded for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'plan': self.plan.to_dict(),
            'results': [r.to_dict() for r in self.results],
            'violations': len(self.violations),
            'files_written': self.files_written,
        }


class TrustService:
    """One generator run's view of the trust subsystem."""

    def __init__(self, manager: TrustManager, target_dir=None,
                 decision_source: Optional[DecisionSource] = None,
                 decision_config: Optional[DecisionConfig] = None,
                 confirm: Optional[ConfirmCallback] = None):
        self.manager = manager
        self.config = manager.config
        self.target_dir = Path(target_dir or os.getcwd())
        self.workflow = DecisionWorkflow(manager, decision_config, decision_source,
                                         target_dir=self.target_dir)
        self.enforcer = SecurityEnforcer(manager, self.target_dir, self.config, confirm=confirm)
        self.executor = SandboxedExecutor(self.target_dir, self.config, audit=manager.audit)

    @classmethod
    def from_config(cls, config: TrustConfig, store=None, **kwargs) -> 'TrustService':
        if store is None:
            store = TrustStore.from_config(config)
        manager = TrustManager(store, AuditLogger(store), config)
        return cls(manager, **kwargs)

    # =========================================================================
    # Discovery
    # =========================================================================

    def check_trust(self, creator_id: str) -> TrustCheck:
        """Trust and security level for display next to a template.

        A store failure reads as blocked/BLOCKED, never more permissive.
        """
        key = parse_creator(creator_id).creator_id
        try:
            level = self.manager.get_trust_level(key)
        except StorageError as e:
            logger.error("check_trust(%s) failed closed: %s", key, e)
            return TrustCheck(key, TrustLevel.BLOCKED, SecurityLevel.BLOCKED,
                              error=str(e), failure=e)
        return TrustCheck(key, level, derive_security_level(level))

    def check_many(self, creator_ids: Iterable[str],
                   max_workers: int = DEFAULT_CHECK_WORKERS) -> Dict[str, TrustCheck]:
        ids = list(creator_ids)
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            checks = list(pool.map(self.check_trust, ids))
        return dict(zip(ids, checks))

    # =========================================================================
    # Planning
    # =========================================================================

    def _plan(self, template: TemplateDescriptor, outcome: DecisionOutcome) -> ExecutionPlan:
        key = outcome.creator_id
        level = derive_security_level(outcome.trust_level)
        if not outcome.allowed:
            decisions = [self.enforcer.deny(level, op, key, outcome.message)
                         for op in template.operations]
        else:
            decisions = self.enforcer.authorize_all(
                key, template.operations, level=level,
                force_sandbox=self.config.force_sandbox or template.force_sandbox)
        return ExecutionPlan(template, key, level, outcome, decisions)

    def evaluate(self, template: TemplateDescriptor) -> ExecutionPlan:
        """Resolve the creator's trust (prompting if needed) and authorize
        every operation the template declares."""
        return self._plan(template, self.workflow.resolve(template))

    def evaluate_many(self, templates: Sequence[TemplateDescriptor]) -> List[ExecutionPlan]:
        outcomes = self.workflow.resolve_many(templates)
        return [self._plan(t, o) for t, o in zip(templates, outcomes)]

    # =========================================================================
    # Execution
    # =========================================================================

    def execute(self, plan: ExecutionPlan) -> ExecutionReport:
        """Run the plan's sandboxed operations under one shared file budget.

        Allowed operations are left to the renderer; denied ones never run.
        Stops at the first non-completed result.
        """
        if not plan.runnable or not plan.sandboxed:
            return ExecutionReport(plan)
        results = self.executor.run_batch(plan.sandboxed, context=plan.creator_id)
        report = ExecutionReport(plan, results)
        if report.violations:
            logger.warning("%d sandbox violation(s) for %s", len(report.violations),
                           plan.creator_id)
        return report
