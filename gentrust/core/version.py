"""
gentrust Core — Version Constants

Single source of truth for all version-related values.
Import from here instead of hardcoding versions elsewhere.

Usage:
    from gentrust.core.version import __version__, STORE_FORMAT
"""

# =============================================================================
# PACKAGE VERSION
# =============================================================================

__version__ = "1.0.0"


# =============================================================================
# PERSISTED FORMATS
# =============================================================================

# Envelope marker written at the top level of the trust store file.
# Bump STORE_SCHEMA_VERSION whenever the payload layout changes.
STORE_FORMAT = "gentrust-store"
STORE_SCHEMA_VERSION = 1

# Marker for export snapshots (trust export / trust import)
EXPORT_FORMAT = "gentrust-export"
EXPORT_SCHEMA_VERSION = 1


__all__ = [
    '__version__',
    'STORE_FORMAT',
    'STORE_SCHEMA_VERSION',
    'EXPORT_FORMAT',
    'EXPORT_SCHEMA_VERSION',
]
