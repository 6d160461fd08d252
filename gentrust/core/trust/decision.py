#!/usr/bin/env python3
"""
gentrust Core Trust — Decision Workflow
=========================================
Resolves what to do with a template whose creator has no live trust
entry, either by asking the user or by applying the configured default.

Decision logic lives here; all I/O sits behind a DecisionSource:

- ConsolePrompt         (gentrust.core.trust.prompt) interactive terminal
- PolicyDecisionSource  programmatic callable
- ScriptedDecisionSource fixed answers for tests and automation

Outcomes
--------
approve-permanent  -> persisted trusted entry            (approved)
approve-once       -> session grant, memory only         (approved)
deny               -> persisted untrusted entry, this
                      run does not proceed               (denied)
block              -> persisted blocked entry            (blocked)

Timeout or cancellation applies default_on_timeout / default_on_cancel and
is audited resolution=timeout. Non-interactive runs apply
default_on_timeout straight away, audited resolution=policy-default.
A 'block' default denies the run and is audited, but writes no blocked
entry: the creator stays unknown and is asked about again next time.

Blocked creators are denied without a prompt. Any failure to persist the
decision (or its audit record) denies the run.

Import from: gentrust.core.trust.decision
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from gentrust.core.config import TrustConfig, DEFAULT_ACTIONS
from gentrust.core.constants import DEFAULT_DECISION_TIMEOUT_SECONDS
from gentrust.core.creator import Creator, parse_creator
from gentrust.core.patterns import DESTRUCTIVE_COMMAND_PATTERNS
from gentrust.core.types import (
    AuditAction, DecisionCancelled, DecisionChoice, DecisionTimeout, GrantedBy,
    Operation, Permission, Resolution, RiskLevel, StorageError,
    TemplateDescriptor, TrustLevel, ValidationError,
)

__all__ = [
    'DecisionConfig', 'DecisionRequest', 'DecisionOutcome', 'DecisionSource',
    'PolicyDecisionSource', 'ScriptedDecisionSource', 'DecisionWorkflow',
    'assess_risk', 'describe_choice',
]

logger = logging.getLogger("gentrust.core.trust.decision")


# =============================================================================
# CONFIG / VALUES
# =============================================================================

@dataclass
class DecisionConfig:
    interactive: bool = True
    timeout_seconds: float = DEFAULT_DECISION_TIMEOUT_SECONDS
    default_on_timeout: str = "block"
    default_on_cancel: str = "block"

    def __post_init__(self):
        for name in ('default_on_timeout', 'default_on_cancel'):
            if getattr(self, name) not in DEFAULT_ACTIONS:
                raise ValidationError(
                    f"{name} must be one of {', '.join(DEFAULT_ACTIONS)}")
        if self.timeout_seconds <= 0:
            raise ValidationError("timeout_seconds must be positive")

    @classmethod
    def from_trust_config(cls, config: TrustConfig) -> 'DecisionConfig':
        return cls(
            interactive=config.interactive,
            timeout_seconds=config.decision_timeout_seconds,
            default_on_timeout=config.default_on_timeout,
            default_on_cancel=config.default_on_cancel,
        )


@dataclass(frozen=True)
class DecisionRequest:
    """Everything a decision source shows the user about one creator."""
    creator: Creator
    templates: Tuple[TemplateDescriptor, ...]
    risk: RiskLevel
    reasons: Tuple[str, ...]
    has_history: bool

    @property
    def creator_id(self) -> str:
        return self.creator.creator_id

    @property
    def operations(self) -> List[Operation]:
        return [op for t in self.templates for op in t.operations]


@dataclass
class DecisionOutcome:
    creator_id: str
    trust_level: TrustLevel
    resolution: Resolution
    allowed: bool
    choice: Optional[DecisionChoice] = None
    prompted: bool = False
    message: str = ""

    def to_dict(self) -> Dict:
        return {
            'creator_id': self.creator_id,
            'trust_level': self.trust_level.value,
            'resolution': self.resolution.value,
            'allowed': self.allowed,
            'choice': self.choice.value if self.choice else None,
            'prompted': self.prompted,
            'message': self.message,
        }


# =============================================================================
# RISK
# =============================================================================

def _outside(target: str, target_dir: Optional[Path]) -> bool:
    if not target:
        return False
    path = Path(os.path.expanduser(target))
    if target_dir is None:
        return path.is_absolute() or '..' in path.parts
    base = Path(target_dir).resolve()
    full = (path if path.is_absolute() else base / path).resolve()
    return full != base and base not in full.parents


def assess_risk(operations: Sequence[Operation], has_history: bool = True,
                target_dir: Optional[Path] = None) -> Tuple[RiskLevel, List[str]]:
    """Classify what a template intends to do.

    high:   deletes, recursive operations, writes outside the target
            directory, shell or code execution
    medium: network or environment access, or a creator with no history
    low:    everything else
    """
    high: List[str] = []
    medium: List[str] = []
    for op in operations:
        if op.type in (Permission.SHELL_EXECUTE, Permission.CODE_EXECUTE):
            high.append(f"executes {op.describe()}")
            if op.type == Permission.SHELL_EXECUTE and any(
                    re.search(p, op.target) for p in DESTRUCTIVE_COMMAND_PATTERNS):
                high.append(f"destructive command: {op.target[:80]}")
        elif op.type == Permission.FILE_DELETE:
            high.append(f"deletes {op.target or 'files'}")
        elif op.recursive:
            high.append(f"recursive {op.describe()}")
        elif op.type in (Permission.FILE_WRITE, Permission.TEMPLATE_INJECT) \
                and _outside(op.target, target_dir):
            high.append(f"writes outside the target directory: {op.target}")
        elif op.type in (Permission.NETWORK_ACCESS, Permission.ENV_ACCESS):
            medium.append(op.describe())
    if not has_history:
        medium.append("new creator with no history")
    if high:
        return RiskLevel.HIGH, high + medium
    if medium:
        return RiskLevel.MEDIUM, medium
    return RiskLevel.LOW, []


# =============================================================================
# DECISION SOURCES
# =============================================================================

class DecisionSource:
    """Where interactive decisions come from.

    decide() may raise DecisionTimeout or DecisionCancelled.
    decide_bulk() returns one choice for every request, or None to be
    asked per creator.
    """

    def decide(self, request: DecisionRequest, timeout: float) -> DecisionChoice:
        raise NotImplementedError

    def decide_bulk(self, requests: Sequence[DecisionRequest],
                    timeout: float) -> Optional[DecisionChoice]:
        return None


class PolicyDecisionSource(DecisionSource):
    """Delegates to plain callables (embedding applications, policy engines)."""

    def __init__(self, decide: Callable[[DecisionRequest], DecisionChoice],
                 decide_bulk: Optional[Callable[[Sequence[DecisionRequest]],
                                                Optional[DecisionChoice]]] = None):
        self._decide = decide
        self._decide_bulk = decide_bulk

    def decide(self, request, timeout):
        return self._decide(request)

    def decide_bulk(self, requests, timeout):
        if self._decide_bulk is None:
            return None
        return self._decide_bulk(requests)


class ScriptedDecisionSource(DecisionSource):
    """Fixed answers keyed by creator id ('*' matches any).

    An answer may be an exception instance, which is raised instead.
    Every request is recorded in `asked`.
    """

    def __init__(self, answers: Optional[Dict[str, Union[DecisionChoice, Exception]]] = None,
                 bulk: Optional[Union[DecisionChoice, Exception]] = None):
        self.answers = dict(answers or {})
        self.bulk = bulk
        self.asked: List[str] = []
        self.bulk_asked: List[List[str]] = []

    def decide(self, request, timeout):
        self.asked.append(request.creator_id)
        answer = self.answers.get(request.creator_id, self.answers.get('*'))
        if answer is None:
            raise DecisionCancelled(f"No scripted answer for {request.creator_id}")
        if isinstance(answer, Exception):
            raise answer
        return answer

    def decide_bulk(self, requests, timeout):
        self.bulk_asked.append([r.creator_id for r in requests])
        if isinstance(self.bulk, Exception):
            raise self.bulk
        return self.bulk


# =============================================================================
# WORKFLOW
# =============================================================================

class DecisionWorkflow:
    """Turns unknown creators into persisted trust decisions.

    Usage:
        workflow = DecisionWorkflow(manager, DecisionConfig(interactive=False))
        outcome = workflow.resolve(template)
        if not outcome.allowed:
            ...
    """

    def __init__(self, manager, config: Optional[DecisionConfig] = None,
                 source: Optional[DecisionSource] = None,
                 target_dir: Optional[Path] = None):
        self.manager = manager
        self.config = config or DecisionConfig.from_trust_config(manager.config)
        self.source = source
        self.target_dir = Path(target_dir) if target_dir else None

    # ---- Request building ----

    def _has_history(self, creator_id: str) -> bool:
        try:
            return bool(self.manager.audit.query(creator_id=creator_id, limit=1))
        except StorageError:
            return False

    def build_request(self, creator: Creator,
                      templates: Sequence[TemplateDescriptor]) -> DecisionRequest:
        history = self._has_history(creator.creator_id)
        ops = [op for t in templates for op in t.operations]
        risk, reasons = assess_risk(ops, has_history=history, target_dir=self.target_dir)
        return DecisionRequest(creator=creator, templates=tuple(templates),
                               risk=risk, reasons=tuple(reasons), has_history=history)

    # ---- Applying choices ----

    def _denied(self, creator_id: str, level: TrustLevel, resolution: Resolution,
                message: str, **kw) -> DecisionOutcome:
        return DecisionOutcome(creator_id, level, resolution, allowed=False,
                               message=message, **kw)

    def _apply_choice(self, request: DecisionRequest, choice: DecisionChoice,
                      prompted: bool) -> DecisionOutcome:
        key = request.creator_id
        context = f"{request.risk.value} risk"
        if request.reasons:
            context += ": " + "; ".join(request.reasons[:5])
        try:
            if choice == DecisionChoice.APPROVE_PERMANENT:
                self.manager.grant(key, permanent=True, context=f"approved ({context})")
                return DecisionOutcome(key, TrustLevel.TRUSTED, Resolution.APPROVED, True,
                                       choice, prompted, "Trusted permanently")
            if choice == DecisionChoice.APPROVE_ONCE:
                self.manager.grant(key, permanent=False, context=f"approved once ({context})")
                return DecisionOutcome(key, TrustLevel.TRUSTED, Resolution.APPROVED, True,
                                       choice, prompted, "Trusted for this session")
            if choice == DecisionChoice.DENY:
                self.manager.distrust(key, reason="declined at prompt",
                                      context=f"declined ({context})")
                return self._denied(key, TrustLevel.UNTRUSTED, Resolution.DENIED,
                                    "Declined; creator marked untrusted",
                                    choice=choice, prompted=prompted)
            if choice == DecisionChoice.BLOCK:
                self.manager.block(key, "blocked at trust prompt", context=f"blocked ({context})")
                return self._denied(key, TrustLevel.BLOCKED, Resolution.BLOCKED,
                                    "Creator blocked", choice=choice, prompted=prompted)
        except StorageError as e:
            logger.error("Could not persist decision for %s: %s", key, e)
            return self._denied(key, TrustLevel.UNKNOWN, Resolution.DENIED,
                                f"Decision could not be saved ({e}); denied",
                                choice=choice, prompted=prompted)
        raise ValidationError(f"Unknown decision choice: {choice!r}")

    def _apply_default(self, request: DecisionRequest, action: str,
                       resolution: Resolution, why: str,
                       prompted: bool) -> DecisionOutcome:
        key = request.creator_id
        try:
            if action == 'temporary-trust':
                self.manager.grant(key, permanent=False, granted_by=GrantedBy.POLICY,
                                   resolution=resolution,
                                   context=f"{why}; default temporary-trust")
                return DecisionOutcome(key, TrustLevel.TRUSTED, resolution, True,
                                       None, prompted, f"{why}; trusted for this session")
            self.manager.audit.record(key, AuditAction.BLOCK, resolution,
                                      context=f"{why}; default block (run denied)",
                                      granted_by=GrantedBy.POLICY)
        except StorageError as e:
            logger.error("Could not record default decision for %s: %s", key, e)
            return self._denied(key, TrustLevel.UNKNOWN, Resolution.DENIED,
                                f"{why}; decision could not be saved ({e})",
                                prompted=prompted)
        logger.info("%s: %s, run denied by default", key, why)
        return self._denied(key, TrustLevel.UNKNOWN, resolution,
                            f"{why}; denied by default", prompted=prompted)

    def _ask(self, request: DecisionRequest) -> DecisionOutcome:
        if not self.config.interactive or self.source is None:
            return self._apply_default(request, self.config.default_on_timeout,
                                       Resolution.POLICY_DEFAULT,
                                       "non-interactive", prompted=False)
        try:
            choice = self.source.decide(request, self.config.timeout_seconds)
        except DecisionTimeout:
            return self._apply_default(
                request, self.config.default_on_timeout, Resolution.TIMEOUT,
                f"prompt timed out after {self.config.timeout_seconds:g}s", prompted=True)
        except DecisionCancelled:
            return self._apply_default(request, self.config.default_on_cancel,
                                       Resolution.TIMEOUT, "prompt cancelled", prompted=True)
        return self._apply_choice(request, choice, prompted=True)

    # ---- Public API ----

    def _current(self, creator: Creator) -> Optional[DecisionOutcome]:
        """Outcome for a creator that already has a decision, else None."""
        key = creator.creator_id
        try:
            level = self.manager.get_trust_level(creator)
        except StorageError as e:
            logger.error("Trust store unavailable for %s: %s", key, e)
            return self._denied(key, TrustLevel.BLOCKED, Resolution.DENIED,
                                f"Trust store unavailable ({e})")
        if level == TrustLevel.BLOCKED:
            return self._denied(key, level, Resolution.BLOCKED, "Creator is blocked")
        if level == TrustLevel.UNKNOWN:
            return None
        return DecisionOutcome(key, level, Resolution.APPROVED, True,
                               message=f"Existing decision: {level.value}")

    def resolve(self, template: TemplateDescriptor) -> DecisionOutcome:
        """Decide for one template's creator."""
        return self.resolve_many([template])[0]

    def resolve_many(self, templates: Sequence[TemplateDescriptor]) -> List[DecisionOutcome]:
        """Decide for several templates, one outcome per template in order.

        When more than one creator is unknown in an interactive run the
        source is first offered a single bulk decision that then applies
        to each of them.
        """
        grouped: Dict[str, Tuple[Creator, List[TemplateDescriptor]]] = {}
        for template in templates:
            creator = parse_creator(template.raw_creator)
            grouped.setdefault(creator.creator_id, (creator, []))[1].append(template)

        outcomes: Dict[str, DecisionOutcome] = {}
        pending: List[DecisionRequest] = []
        for key, (creator, group) in grouped.items():
            current = self._current(creator)
            if current is not None:
                outcomes[key] = current
            else:
                pending.append(self.build_request(creator, group))

        bulk_choice = None
        if len(pending) > 1 and self.config.interactive and self.source is not None:
            try:
                bulk_choice = self.source.decide_bulk(pending, self.config.timeout_seconds)
            except DecisionTimeout:
                for request in pending:
                    outcomes[request.creator_id] = self._apply_default(
                        request, self.config.default_on_timeout, Resolution.TIMEOUT,
                        "bulk prompt timed out", prompted=True)
                pending = []
            except DecisionCancelled:
                for request in pending:
                    outcomes[request.creator_id] = self._apply_default(
                        request, self.config.default_on_cancel, Resolution.TIMEOUT,
                        "bulk prompt cancelled", prompted=True)
                pending = []

        for request in pending:
            if bulk_choice is not None:
                outcomes[request.creator_id] = self._apply_choice(
                    request, bulk_choice, prompted=True)
            else:
                outcomes[request.creator_id] = self._ask(request)

        return [outcomes[parse_creator(t.raw_creator).creator_id] for t in templates]


def describe_choice(choice: DecisionChoice) -> str:
    return {
        DecisionChoice.APPROVE_PERMANENT: "Trust permanently",
        DecisionChoice.APPROVE_ONCE: "Trust for this run only",
        DecisionChoice.DENY: "Do not trust",
        DecisionChoice.BLOCK: "Block this creator",
    }[choice]
