"""
gentrust Core Trust — Trust persistence, trust decisions and prompting.

Submodules:
- store    : TrustStore / MemoryTrustStore — durable, locked, checksummed storage
- manager  : TrustManager — authoritative trust level per creator
- decision : DecisionWorkflow — resolving unknown creators (prompt or policy)
- prompt   : ConsolePrompt — interactive stdin/stdout decision source
"""
# Import from submodules directly:
#   from gentrust.core.trust.store import TrustStore
#   from gentrust.core.trust.manager import TrustManager
#   from gentrust.core.trust.decision import DecisionWorkflow
#   from gentrust.core.trust.prompt import ConsolePrompt
