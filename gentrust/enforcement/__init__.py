"""
Enforcement Layer — Turning trust decisions into per-operation verdicts.

Classes:
- SecurityEnforcer: allow / deny / sandbox per operation, audited
- SandboxedExecutor: restricted execution with resource limits
- TrustService: wiring plus check_trust / evaluate / execute for one run
"""
# Import from submodules directly:
#   from gentrust.enforcement.enforcer import SecurityEnforcer
#   from gentrust.enforcement.executor import SandboxedExecutor
#   from gentrust.enforcement.service import TrustService
