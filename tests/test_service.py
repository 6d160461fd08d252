"""
gentrust — TrustService end-to-end tests.

Exercises the full path discovery -> decision -> authorization -> sandbox
against an in-memory store, plus the file-backed from_config wiring.
"""

import pytest

from gentrust.core.trust.decision import DecisionConfig, ScriptedDecisionSource
from gentrust.core.trust.store import TrustStore
from gentrust.core.types import (
    AuditAction, DecisionChoice, Operation, Permission, Resolution, SandboxStatus,
    SecurityLevel, StorageError, TemplateDescriptor, TrustLevel, ValidationError, Verdict,
)
from gentrust.enforcement.service import TrustService


class TestCheckTrust:

    def test_levels(self, service, manager):
        manager.grant("npm:good")
        manager.block("npm:evil", "malware")
        assert service.check_trust("good").security_level == SecurityLevel.TRUSTED
        assert service.check_trust("evil").security_level == SecurityLevel.BLOCKED
        assert service.check_trust("other").trust_level == TrustLevel.UNKNOWN

    def test_store_down_fails_closed(self, service, manager, memory_store):
        manager.grant("npm:good")
        memory_store.fail_with = StorageError("unreachable")
        check = service.check_trust("npm:good")
        assert check.security_level == SecurityLevel.BLOCKED
        assert check.error
        assert check.to_dict()['error']
        assert check.to_dict()['error_type'] == 'StorageError'
        assert isinstance(check.failure, StorageError)

    def test_check_many(self, service, manager):
        manager.grant("npm:a")
        checks = service.check_many(["npm:a", "npm:b", "acme/kit"])
        assert checks["npm:a"].trust_level == TrustLevel.TRUSTED
        assert checks["npm:b"].trust_level == TrustLevel.UNKNOWN
        assert checks["acme/kit"].creator_id == "github:acme/kit"


class TestEvaluate:

    def test_trusted_creator(self, service, manager, template_factory):
        manager.grant("npm:kit")
        plan = service.evaluate(template_factory(
            "npm:kit", ("add", "src/a.js", "x"), ("sh", "npm install")))
        assert plan.runnable
        assert plan.security_level == SecurityLevel.TRUSTED
        assert [d.verdict for d in plan.decisions] == [Verdict.ALLOW, Verdict.ALLOW]

    def test_untrusted_creator_is_sandboxed(self, service, manager, template_factory):
        manager.distrust("npm:kit")
        plan = service.evaluate(template_factory(
            "npm:kit", ("add", "src/a.js", "x"), ("sh", "echo hi"), ("add", "../x", "")))
        assert plan.runnable
        assert plan.allowed == [plan.template.operations[0]]
        assert plan.sandboxed == [plan.template.operations[1]]
        assert plan.denied == [plan.template.operations[2]]

    def test_prompt_approve_once(self, service, scripted, manager, template_factory):
        scripted.answers['npm:new'] = DecisionChoice.APPROVE_ONCE
        plan = service.evaluate(template_factory("npm:new", ("sh", "npm install")))
        assert plan.runnable
        assert plan.outcome.prompted
        assert plan.decisions[0].verdict == Verdict.ALLOW
        assert manager.is_session_grant("npm:new")

    def test_denied_run_denies_every_operation(self, service, scripted, manager,
                                               template_factory):
        scripted.answers['*'] = DecisionChoice.DENY
        template = template_factory("npm:new", ("add", "a.js", ""), ("sh", "ls"))
        plan = service.evaluate(template)
        assert not plan.runnable
        assert plan.denied == template.operations
        checks = manager.audit.query(action=AuditAction.CHECK)
        assert len(checks) == 2
        assert {c.resolution for c in checks} == {Resolution.DENIED}

    def test_blocked_never_prompts(self, service, scripted, manager, template_factory):
        manager.block("npm:evil", "malware")
        scripted.answers['*'] = DecisionChoice.APPROVE_PERMANENT
        plan = service.evaluate(template_factory("npm:evil", ("add", "a.js", "")))
        assert not plan.runnable
        assert scripted.asked == []
        assert plan.decisions[0].verdict == Verdict.DENY

    def test_evaluate_many(self, service, scripted, manager, template_factory):
        manager.grant("npm:a")
        scripted.answers['npm:b'] = DecisionChoice.BLOCK
        plans = service.evaluate_many([
            template_factory("npm:a", ("add", "a.js", "")),
            template_factory("npm:b", ("add", "b.js", "")),
        ])
        assert [p.runnable for p in plans] == [True, False]
        assert manager.get_trust_level("npm:b") == TrustLevel.BLOCKED

    def test_plan_to_dict(self, service, manager, template_factory):
        manager.grant("npm:a")
        data = service.evaluate(template_factory("npm:a", ("add", "a.js", ""))).to_dict()
        assert data['security_level'] == 'TRUSTED'
        assert data['decisions'][0]['verdict'] == 'allow'

    def test_template_forces_sandbox_for_trusted_creator(self, service, manager,
                                                         template_factory):
        manager.grant("npm:kit")
        plan = service.evaluate(template_factory(
            "npm:kit", ("add", "src/a.js", "x"), ("sh", "echo hi"), force_sandbox=True))
        assert plan.security_level == SecurityLevel.TRUSTED
        assert [d.verdict for d in plan.decisions] == [Verdict.ALLOW, Verdict.SANDBOX]
        report = service.execute(plan)
        assert report.ok
        assert report.results[0].stdout.strip() == "hi"

    def test_force_sandbox_is_per_template(self, service, manager, template_factory):
        manager.grant("npm:kit")
        forced, plain = service.evaluate_many([
            template_factory("npm:kit", ("sh", "echo hi"), force_sandbox=True),
            template_factory("npm:kit", ("sh", "echo hi")),
        ])
        assert forced.decisions[0].verdict == Verdict.SANDBOX
        assert plain.decisions[0].verdict == Verdict.ALLOW


class TestExecute:

    def test_runs_sandboxed_operations(self, service, manager, target_dir, template_factory):
        manager.distrust("npm:kit")
        (target_dir / "old.txt").write_text("x")
        plan = service.evaluate(template_factory(
            "npm:kit",
            ("add", "src/a.js", "rendered by caller"),
            ("delete", "old.txt"),
            ("inject", "missing.js", "x"),
        ))
        report = service.execute(plan)
        assert [r.operation.type for r in report.results] == [
            Permission.FILE_DELETE, Permission.TEMPLATE_INJECT]
        assert not (target_dir / "old.txt").exists()
        # allowed operations are the renderer's job
        assert not (target_dir / "src" / "a.js").exists()
        assert report.violations == []
        assert not report.ok

    def test_violation_reported(self, service, manager, template_factory):
        manager.distrust("npm:kit")
        plan = service.evaluate(template_factory("npm:kit", ("env", "NPM_TOKEN")))
        report = service.execute(plan)
        assert report.results[0].status == SandboxStatus.VIOLATION
        assert len(report.violations) == 1
        assert manager.audit.query(action=AuditAction.VIOLATION)[0].creator_id == "npm:kit"

    def test_not_runnable_executes_nothing(self, service, scripted, template_factory):
        scripted.answers['*'] = DecisionChoice.DENY
        plan = service.evaluate(template_factory("npm:x", ("sh", "echo hi")))
        assert service.execute(plan).results == []


class TestFromConfig:

    def test_file_backed(self, config, target_dir):
        service = TrustService.from_config(
            config, target_dir=target_dir,
            decision_source=ScriptedDecisionSource({'*': DecisionChoice.APPROVE_PERMANENT}),
            decision_config=DecisionConfig(interactive=True))
        template = TemplateDescriptor.from_dict({
            'source': 'github', 'identifier': 'acme/kit',
            'operations': [{'type': 'add', 'target': 'README.md', 'payload': '# hi'}],
        })
        assert service.evaluate(template).runnable
        reloaded = TrustStore.from_config(config).load()
        assert "github:acme/kit" in reloaded.entries

    @pytest.mark.parametrize("data,expected", [
        ({}, False),
        ({'force_sandbox': True}, True),
        ({'sandbox': True}, True),
    ])
    def test_descriptor_force_sandbox(self, data, expected):
        data = dict(data, source='npm', identifier='kit')
        assert TemplateDescriptor.from_dict(data).force_sandbox is expected

    def test_descriptor_force_sandbox_must_be_bool(self):
        with pytest.raises(ValidationError):
            TemplateDescriptor.from_dict({'source': 'npm', 'identifier': 'kit',
                                          'force_sandbox': 'yes'})

    def test_non_interactive_default(self, config, target_dir):
        service = TrustService.from_config(config, target_dir=target_dir)
        plan = service.evaluate(TemplateDescriptor("npm", "left-pad",
                                                   [Operation(Permission.FILE_WRITE, "a")]))
        assert not plan.runnable
        assert plan.outcome.resolution == Resolution.POLICY_DEFAULT
