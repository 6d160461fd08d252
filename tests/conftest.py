"""
Shared pytest fixtures for the gentrust test suite.

Provides configs rooted in tmp_path, in-memory and file-backed trust
stores, and fully wired managers / enforcers / sandboxes so unit tests
never touch the real ~/.gentrust directory.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Import after path fix
from gentrust.core.audit.logger import AuditLogger
from gentrust.core.config import TrustConfig
from gentrust.core.trust.decision import DecisionConfig, ScriptedDecisionSource
from gentrust.core.trust.manager import TrustManager
from gentrust.core.trust.store import MemoryTrustStore, TrustStore
from gentrust.core.types import Operation, Permission, ResourceLimits, TemplateDescriptor
from gentrust.enforcement.enforcer import SecurityEnforcer
from gentrust.enforcement.executor import SandboxedExecutor
from gentrust.enforcement.service import TrustService


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Strip gentrust variables so the host environment cannot leak in."""
    for var in ('GENTRUST_HOME', 'GENTRUST_STORE', 'GENTRUST_NON_INTERACTIVE',
                'GENTRUST_DEFAULT_ON_TIMEOUT', 'GENTRUST_DEFAULT_ON_CANCEL',
                'GENTRUST_DECISION_TIMEOUT', 'GENTRUST_ENCRYPT', 'GENTRUST_AUTO_TRUST',
                'GENTRUST_FORCE_SANDBOX', 'GENTRUST_STORE_KEY', 'CI'):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv('NO_COLOR', '1')


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def target_dir(tmp_path):
    """Generation target directory."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path):
    """A TrustConfig rooted in tmp_path, non-interactive, no auto-trust."""
    return TrustConfig(
        base_dir=tmp_path / "home",
        interactive=False,
        auto_trust_local=False,
        resource_limits=ResourceLimits(max_execution_time_ms=10_000),
    )


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def memory_store():
    return MemoryTrustStore()


@pytest.fixture
def file_store(config):
    return TrustStore.from_config(config)


@pytest.fixture
def audit(memory_store):
    return AuditLogger(memory_store)


@pytest.fixture
def manager(memory_store, audit, config):
    return TrustManager(memory_store, audit, config)


@pytest.fixture
def file_manager(file_store, config):
    return TrustManager(file_store, AuditLogger(file_store), config)


# ---------------------------------------------------------------------------
# Enforcement fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def enforcer(manager, target_dir):
    return SecurityEnforcer(manager, target_dir)


@pytest.fixture
def executor(target_dir, config, audit):
    return SandboxedExecutor(target_dir, config, audit=audit)


@pytest.fixture
def scripted():
    return ScriptedDecisionSource()


@pytest.fixture
def service(manager, target_dir, scripted):
    return TrustService(manager, target_dir, decision_source=scripted,
                        decision_config=DecisionConfig(interactive=True, timeout_seconds=5))


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_template(raw_creator, *ops, name="", force_sandbox=False):
    """TemplateDescriptor from 'source:identifier' and (type, target[, payload]) tuples."""
    source, _, identifier = raw_creator.partition(':')
    operations = []
    for op in ops:
        if isinstance(op, Operation):
            operations.append(op)
            continue
        kind, target = op[0], op[1]
        payload = op[2] if len(op) > 2 else None
        operations.append(Operation(Permission.from_operation_type(kind), target, payload))
    return TemplateDescriptor(source=source, identifier=identifier,
                              operations=operations, name=name,
                              force_sandbox=force_sandbox)


@pytest.fixture
def template_factory():
    return make_template
