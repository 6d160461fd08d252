"""
gentrust Constants — Numeric Values, Limits, and Defaults
===========================================================
Non-pattern constants used across the trust subsystem. Store sizing,
lock timeouts, sandbox resource defaults, environment allow-lists.

Import from: gentrust.core.constants
"""

import sys

# =============================================================================
# PLATFORM DETECTION
# =============================================================================

IS_WINDOWS = sys.platform == 'win32'

# =============================================================================
# TRUST STORE
# =============================================================================

STORE_FILENAME = "trust-store.json"
AUDIT_ARCHIVE_FILENAME = "audit-archive.jsonl"

# Hard ceiling on the persisted store file (bounds DoS via a bloated store)
DEFAULT_MAX_STORE_BYTES = 10 * 1024 * 1024

# Rotated backups kept alongside the store (<store>.bak.1 is the newest)
DEFAULT_BACKUP_COUNT = 5

# Seconds a writer waits for the store lock before giving up
DEFAULT_LOCK_TIMEOUT = 10.0

# Audit records kept inside the store before the oldest move to the archive
DEFAULT_MAX_AUDIT_ENTRIES = 5000


# =============================================================================
# DECISION WORKFLOW
# =============================================================================

DEFAULT_DECISION_TIMEOUT_SECONDS = 60

# =============================================================================
# SANDBOX DEFAULTS
# =============================================================================

DEFAULT_MAX_EXECUTION_TIME_MS = 30_000
DEFAULT_MAX_MEMORY_BYTES = 512 * 1024 * 1024
DEFAULT_MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_FILE_COUNT = 1000

# How often the sandbox samples a running process (seconds)
SANDBOX_POLL_INTERVAL = 0.05

# Captured stdout/stderr is truncated past this many characters
MAX_CAPTURED_OUTPUT = 50_000

# =============================================================================
# ENVIRONMENT
# =============================================================================

# Variables a sandboxed process may inherit from the host. Everything else
# (tokens, credentials, npm/git config) is dropped.
SAFE_ENV_VARS = frozenset({
    'PATH', 'LANG', 'LC_ALL', 'LC_CTYPE', 'TZ', 'TERM',
    'SYSTEMROOT', 'SYSTEMDRIVE', 'WINDIR', 'PATHEXT', 'COMSPEC',
    'NUMBER_OF_PROCESSORS', 'PROCESSOR_ARCHITECTURE', 'OS',
})

# =============================================================================
# COMMAND ALLOW-LIST
# =============================================================================

# Executables a sandboxed shell operation may start. Package managers and
# build tools that generators commonly call after scaffolding are included;
# anything able to escalate privileges or reach the network on its own
# (sudo, curl, wget, ssh) is not.
SANDBOX_EXECUTABLES = frozenset({
    'node', 'npm', 'npx', 'yarn', 'pnpm', 'bun',
    'python', 'python3', 'pip', 'pip3',
    'git', 'echo', 'cat', 'ls', 'mkdir', 'touch', 'cp', 'mv', 'rm',
    'true', 'false', 'sleep', 'test', 'printf',
    'prettier', 'eslint', 'tsc',
})


__all__ = [
    'IS_WINDOWS',
    'STORE_FILENAME', 'AUDIT_ARCHIVE_FILENAME',
    'DEFAULT_MAX_STORE_BYTES', 'DEFAULT_BACKUP_COUNT', 'DEFAULT_LOCK_TIMEOUT',
    'DEFAULT_MAX_AUDIT_ENTRIES',
    'DEFAULT_DECISION_TIMEOUT_SECONDS',
    'DEFAULT_MAX_EXECUTION_TIME_MS', 'DEFAULT_MAX_MEMORY_BYTES',
    'DEFAULT_MAX_FILE_SIZE_BYTES', 'DEFAULT_MAX_FILE_COUNT',
    'SANDBOX_POLL_INTERVAL', 'MAX_CAPTURED_OUTPUT',
    'SAFE_ENV_VARS', 'SANDBOX_EXECUTABLES',
]
