"""
gentrust Security Patterns — Single Source of Truth
=====================================================
All regex patterns used for command and path screening across the
enforcer and the sandbox.

Import from: gentrust.core.patterns
"""

# =============================================================================
# COMMAND PATTERNS
# =============================================================================

# Master list: (regex, severity, description)
# BLOCKED_COMMAND_PATTERNS is derived from this list automatically.
COMMAND_ANALYSIS_PATTERNS = [
    # Privilege escalation
    (r'(?i)(^|[;&|]\s*)sudo\b', 'CRITICAL', 'sudo'),
    (r'(?i)(^|[;&|]\s*)su\s', 'CRITICAL', 'su'),
    (r'(?i)\bdoas\b', 'CRITICAL', 'doas'),
    (r'(?i)\bchmod\s+[0-7]*[4-7][0-7]{3}\b', 'HIGH', 'setuid chmod'),
    (r'(?i)\bchmod\s+[ugo]*\+s\b', 'HIGH', 'setuid chmod'),
    (r'(?i)\bchown\b', 'HIGH', 'Ownership change'),
    # Download + execute
    (r'(?i)(curl|wget)[^|]*\|\s*(ba|z|da)?sh\b', 'CRITICAL', 'Pipe to shell'),
    (r'(?i)(curl|wget)[^|]*\|\s*python', 'CRITICAL', 'Pipe to interpreter'),
    (r'(?i)\beval\s+["\'$`(]', 'HIGH', 'Shell eval'),
    (r'(?i)base64\s+(-d|--decode)', 'HIGH', 'Base64 decoding'),
    # Credential access
    (r'(?i)[/\\]\.ssh[/\\]', 'CRITICAL', 'SSH key access'),
    (r'(?i)[/\\]\.aws[/\\]', 'CRITICAL', 'Cloud credential access'),
    (r'(?i)\.npmrc\b', 'HIGH', 'npm token access'),
    (r'(?i)\.git-credentials', 'CRITICAL', 'Git credential access'),
    (r'(?i)/etc/(passwd|shadow|sudoers)', 'CRITICAL', 'System account files'),
    # Persistence
    (r'(?i)\bcrontab\b', 'HIGH', 'Cron persistence'),
    (r'(?i)\bsystemctl\s+(enable|start)', 'HIGH', 'Service persistence'),
    (r'(?i)(\.bashrc|\.zshrc|\.profile)\b', 'HIGH', 'Shell profile modification'),
    # Disk / system destruction
    (r'(?i)\bmkfs(\.\w+)?\b', 'CRITICAL', 'Filesystem creation'),
    (r'(?i)\bdd\s+if=', 'CRITICAL', 'Raw disk write'),
    (r'(?i):\(\)\s*\{\s*:\|:&\s*\};:', 'CRITICAL', 'Fork bomb'),
    (r'(?i)\bshutdown\b|\breboot\b', 'CRITICAL', 'Power control'),
    # Reverse shells
    (r'(?i)\bnc\b.*\s-e\s', 'CRITICAL', 'Netcat shell'),
    (r'(?i)/dev/tcp/', 'CRITICAL', 'Bash network redirect'),
]

BLOCKED_COMMAND_PATTERNS = [p[0] for p in COMMAND_ANALYSIS_PATTERNS]

# Commands that are allowed to run but destroy data; these need an explicit
# confirmation even from a trusted creator when they point outside the
# generation target directory.
DESTRUCTIVE_COMMAND_PATTERNS = [
    r'(?i)\brm\s+(-[a-z]*r[a-z]*f?|-[a-z]*f[a-z]*r|--recursive)\b',
    r'(?i)\brmdir\s+/s\b',
    r'(?i)\bdel\s+/[sq]\b',
    r'(?i)\bgit\s+(clean\s+-[a-z]*f|reset\s+--hard)',
    r'(?i)\bfind\b.*\s-delete\b',
]

# =============================================================================
# PATH PATTERNS
# =============================================================================

# Never readable or writable by a template, even inside an allowed root.
BLOCKED_PATH_PATTERNS = [
    r'(?i).*[/\\]\.ssh([/\\].*)?$', r'(?i).*[/\\]\.gnupg([/\\].*)?$',
    r'(?i).*[/\\]\.aws([/\\].*)?$', r'(?i).*[/\\]\.kube([/\\].*)?$',
    r'(?i).*\.git-credentials$', r'(?i).*[/\\]\.npmrc$', r'(?i).*[/\\]\.pypirc$',
    r'(?i).*[/\\]\.netrc$', r'(?i).*id_(rsa|ed25519|ecdsa)(\.pub)?$',
    r'(?i).*\.(pem|key|pfx|p12|keystore)$',
    r'(?i).*[/\\]\.git[/\\](config|hooks([/\\].*)?)$',
]


__all__ = [
    'COMMAND_ANALYSIS_PATTERNS',
    'BLOCKED_COMMAND_PATTERNS',
    'DESTRUCTIVE_COMMAND_PATTERNS',
    'BLOCKED_PATH_PATTERNS',
]
