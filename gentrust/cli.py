#!/usr/bin/env python3
"""
gentrust Management CLI
=========================

Inspect and edit template trust decisions:

Usage:
  gentrust list [--level L] [--source S]      # Trust entries
  gentrust grant <creator> [--hours N | --expires TS] [--reason R]
  gentrust revoke <creator>                   # Back to unknown
  gentrust block <creator> --reason R         # Deny everything from a creator
  gentrust unblock <creator>                  # Lift a block
  gentrust check <creator> [<creator> ...]    # Trust and security level
  gentrust stats                              # Counts by level, source, action
  gentrust logs [--creator C] [--action A] [--since TS] [--limit N] [--format F]
  gentrust export [--output FILE]             # Portable snapshot
  gentrust import <file> [--merge] [--yes]    # Load a snapshot
  gentrust reset [--yes]                      # Remove every entry
  gentrust verify                             # Store and audit chain integrity

Global options: --json, --home DIR, --store PATH, -v

Exit codes:
  0 ok, 1 error, 2 invalid input, 3 blocked by policy,
  4 store corrupted / key unavailable, 5 lock timeout, 6 store too large,
  7 declined by user
"""

import argparse
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from gentrust.console import Colors, fail_mark, heading, ok_mark, table_row, warn_mark
from gentrust.core.audit.logger import AuditLogger, EXPORT_FORMATS
from gentrust.core.config import TrustConfig
from gentrust.core.creator import normalize_creator_id
from gentrust.core.trust.manager import TrustManager
from gentrust.core.trust.store import TrustStore
from gentrust.core.types import (
    BlockedCreatorError, CorruptedStoreError, SecurityLevel, StorageError,
    StoreLockTimeoutError, StoreTooLargeError, TrustError, TrustLevel,
    ValidationError, parse_timestamp, utcnow,
)
from gentrust.core.version import __version__
from gentrust.enforcement.service import TrustService

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_VALIDATION = 2
EXIT_BLOCKED = 3
EXIT_CORRUPTED = 4
EXIT_LOCK_TIMEOUT = 5
EXIT_TOO_LARGE = 6
EXIT_DECLINED = 7

LEVEL_COLORS = {
    TrustLevel.TRUSTED: Colors.green,
    TrustLevel.UNTRUSTED: Colors.yellow,
    TrustLevel.BLOCKED: Colors.red,
    TrustLevel.UNKNOWN: Colors.dim,
}


class Declined(TrustError):
    """The user answered no to a confirmation."""


# =============================================================================
# WIRING
# =============================================================================

class Context:
    """Per-invocation objects, built lazily so `--help` never touches disk."""

    def __init__(self, args):
        self.args = args
        overrides: Dict[str, Any] = {}
        if args.home:
            overrides['base_dir'] = Path(args.home)
        if args.store:
            overrides['store_path'] = Path(args.store)
        self.config = TrustConfig.from_env(**overrides)
        self._manager: Optional[TrustManager] = None

    @property
    def manager(self) -> TrustManager:
        if self._manager is None:
            store = TrustStore.from_config(self.config)
            self._manager = TrustManager(store, AuditLogger(store), self.config)
        return self._manager

    @property
    def json(self) -> bool:
        return self.args.json


def _emit(ctx: Context, data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def _level(level: TrustLevel) -> str:
    return LEVEL_COLORS[level](level.value)


def _confirm(ctx: Context, question: str) -> None:
    """Ask yes/no on stderr. Raises Declined unless answered yes."""
    if getattr(ctx.args, 'yes', False):
        return
    if not ctx.config.interactive or not sys.stdin.isatty():
        raise Declined(f"{question} (pass --yes to confirm non-interactively)")
    sys.stderr.write(f"  {question} [y/N] ")
    sys.stderr.flush()
    try:
        answer = sys.stdin.readline().strip().lower()
    except KeyboardInterrupt:
        answer = ''
    if answer not in ('y', 'yes'):
        raise Declined("Cancelled")


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_list(ctx: Context) -> int:
    entries = ctx.manager.list_entries(level=ctx.args.level, source=ctx.args.source)
    if ctx.json:
        _emit(ctx, [e.to_dict() for e in entries])
        return EXIT_OK

    heading(f"Trust entries ({len(entries)})")
    if not entries:
        print(f"  {Colors.dim('No trust decisions recorded')}")
    for entry in entries:
        detail = entry.reason or entry.granted_by.value
        if entry.expires_at:
            detail += f", expires {entry.expires_at.isoformat()}"
        elif ctx.manager.is_session_grant(entry.creator_id):
            detail += ", this session"
        table_row(entry.creator_id, f"{_level(entry.trust_level):<20} {Colors.dim(detail)}")
    return EXIT_OK


def cmd_grant(ctx: Context) -> int:
    args = ctx.args
    expires_at = None
    if args.hours is not None and args.expires:
        raise ValidationError("Use either --hours or --expires, not both")
    if args.hours is not None:
        if args.hours <= 0:
            raise ValidationError("--hours must be positive")
        expires_at = utcnow() + timedelta(hours=args.hours)
    elif args.expires:
        expires_at = parse_timestamp(args.expires)

    entry = ctx.manager.grant(args.creator, permanent=expires_at is None,
                              expires_at=expires_at, reason=args.reason or "")
    if ctx.json:
        _emit(ctx, entry.to_dict())
    else:
        until = f" until {expires_at.isoformat()}" if expires_at else ""
        print(f"  {ok_mark()} Trusted {Colors.bold(entry.creator_id)}{until}")
    return EXIT_OK


def cmd_revoke(ctx: Context) -> int:
    previous = ctx.manager.revoke(ctx.args.creator)
    key = normalize_creator_id(ctx.args.creator)
    if ctx.json:
        _emit(ctx, {'creator_id': key, 'previous': previous.value,
                    'trust_level': TrustLevel.UNKNOWN.value})
    else:
        print(f"  {ok_mark()} Revoked {Colors.bold(key)} (was {previous.value})")
    return EXIT_OK


def cmd_block(ctx: Context) -> int:
    entry = ctx.manager.block(ctx.args.creator, ctx.args.reason)
    if ctx.json:
        _emit(ctx, entry.to_dict())
    else:
        print(f"  {fail_mark()} Blocked {Colors.bold(entry.creator_id)}: {entry.reason}")
    return EXIT_OK


def cmd_unblock(ctx: Context) -> int:
    key = normalize_creator_id(ctx.args.creator)
    ctx.manager.unblock(key)
    if ctx.json:
        _emit(ctx, {'creator_id': key, 'trust_level': TrustLevel.UNKNOWN.value})
    else:
        print(f"  {ok_mark()} Unblocked {Colors.bold(key)}")
    return EXIT_OK


def _storage_exit_code(error: StorageError) -> int:
    if isinstance(error, StoreLockTimeoutError):
        return EXIT_LOCK_TIMEOUT
    if isinstance(error, StoreTooLargeError):
        return EXIT_TOO_LARGE
    if isinstance(error, CorruptedStoreError):
        return EXIT_CORRUPTED
    return EXIT_ERROR


def cmd_check(ctx: Context) -> int:
    service = TrustService(ctx.manager)
    checks = [service.check_trust(c) for c in ctx.args.creators]
    if ctx.json:
        _emit(ctx, [c.to_dict() for c in checks])
    else:
        heading("Trust check")
        for check in checks:
            value = f"{_level(check.trust_level):<20} {check.security_level.value}"
            if check.error:
                value += f"  {Colors.red(check.error)}"
            table_row(check.creator_id, value)
    failures = [c.failure for c in checks if c.failure is not None]
    if failures:
        return _storage_exit_code(failures[0])
    if any(c.security_level == SecurityLevel.BLOCKED for c in checks):
        return EXIT_BLOCKED
    return EXIT_OK


def cmd_stats(ctx: Context) -> int:
    stats = ctx.manager.statistics()
    if ctx.json:
        _emit(ctx, stats)
        return EXIT_OK

    heading("Trust statistics")
    table_row("Entries", str(stats['total']))
    for level, count in stats['by_level'].items():
        table_row(f"  {level}", str(count))
    for source, count in stats['by_source'].items():
        table_row(f"  from {source}", str(count))
    table_row("Temporary grants", str(stats['temporary']))
    table_row("Audit records", str(stats['audit_entries']))
    for action, count in sorted(stats['audit_by_action'].items()):
        table_row(f"  {action}", str(count))
    return EXIT_OK


def cmd_logs(ctx: Context) -> int:
    args = ctx.args
    audit = ctx.manager.audit
    creator = normalize_creator_id(args.creator) if args.creator else None
    records = audit.query(creator_id=creator, action=args.action,
                          since=args.since, limit=args.limit)

    fmt = 'json' if ctx.json and args.format == 'table' else args.format
    if fmt in EXPORT_FORMATS:
        sys.stdout.write(audit.export(fmt, records))
        if fmt == 'json':
            sys.stdout.write('\n')
        return EXIT_OK

    heading(f"Audit log ({len(records)} records)")
    for r in records:
        line = (f"{r.timestamp.strftime('%Y-%m-%d %H:%M:%S')}  {r.action.value:<9} "
                f"{r.resolution.value:<14} {r.creator_id}  {Colors.dim(r.context[:80])}")
        if r.action.value in ('block', 'violation') or r.resolution.value == 'blocked':
            print(f"  {Colors.red(line)}")
        elif r.resolution.value in ('denied', 'timeout'):
            print(f"  {Colors.yellow(line)}")
        else:
            print(f"  {line}")
    return EXIT_OK


def cmd_export(ctx: Context) -> int:
    data = json.dumps(ctx.manager.export(), indent=2, sort_keys=True)
    if ctx.args.output:
        Path(ctx.args.output).write_text(data + '\n', encoding='utf-8')
        if not ctx.json:
            print(f"  {ok_mark()} Exported to {ctx.args.output}")
    else:
        print(data)
    return EXIT_OK


def cmd_import(ctx: Context) -> int:
    path = Path(ctx.args.file)
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except OSError as e:
        raise ValidationError(f"Cannot read {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ValidationError(f"{path} is not valid JSON: {e}") from e

    replace = not ctx.args.merge
    if replace:
        _confirm(ctx, "Replace all trust entries and the audit log with the imported data?")
    count = ctx.manager.import_data(data, replace=replace)
    if ctx.json:
        _emit(ctx, {'imported': True, 'mode': 'replace' if replace else 'merge',
                    'entries': count})
    else:
        print(f"  {ok_mark()} Imported {path} ({count} entries, "
              f"{'replace' if replace else 'merge'})")
    return EXIT_OK


def cmd_reset(ctx: Context) -> int:
    _confirm(ctx, "Remove every trust decision, blocks included?")
    removed = ctx.manager.reset()
    if ctx.json:
        _emit(ctx, {'removed': removed})
    else:
        print(f"  {warn_mark()} Removed {len(removed)} entries")
    return EXIT_OK


def cmd_verify(ctx: Context) -> int:
    snapshot = ctx.manager.store.load()
    chain = ctx.manager.audit.verify_chain()
    invalid: List[str] = []
    for entry in snapshot.entries.values():
        try:
            entry.validate()
        except ValidationError as e:
            invalid.append(str(e))

    ok = chain.ok and not invalid
    if ctx.json:
        _emit(ctx, {'ok': ok, 'entries': len(snapshot.entries),
                    'chain': chain.to_dict(), 'invalid_entries': invalid})
    else:
        heading("Integrity")
        table_row("Store", f"{len(snapshot.entries)} entries, checksum OK", ok_mark())
        table_row("Audit chain", chain.message, ok_mark() if chain.ok else fail_mark())
        for problem in invalid:
            table_row("Entry", problem, fail_mark())
    return EXIT_OK if ok else EXIT_CORRUPTED


# =============================================================================
# PARSER / MAIN
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='gentrust',
        description='Inspect and edit template creator trust decisions',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gentrust grant npm:left-pad                 Trust a package permanently
  gentrust grant github:acme/kit --hours 24   Trust for one day
  gentrust block github:evil/repo --reason "known malware"
  gentrust check left-pad acme/kit
  gentrust logs --action violation --format csv
  gentrust export --output trust-backup.json
        """
    )
    parser.add_argument('--version', action='version', version=f'gentrust {__version__}')
    parser.add_argument('--json', action='store_true', help='Structured JSON output')
    parser.add_argument('--home', help='Base directory (default $GENTRUST_HOME or ~/.gentrust)')
    parser.add_argument('--store', help='Trust store file path')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='More logging (-v info, -vv debug)')

    sub = parser.add_subparsers(dest='command')

    list_p = sub.add_parser('list', help='List trust entries')
    list_p.add_argument('--level', choices=['trusted', 'untrusted', 'blocked'])
    list_p.add_argument('--source', choices=['npm', 'github', 'git', 'local'])

    grant_p = sub.add_parser('grant', help='Trust a creator')
    grant_p.add_argument('creator')
    grant_p.add_argument('--hours', type=float, help='Temporary trust for N hours')
    grant_p.add_argument('--expires', help='Temporary trust until an ISO-8601 timestamp')
    grant_p.add_argument('--reason', help='Why this creator is trusted')

    revoke_p = sub.add_parser('revoke', help='Remove a trust decision')
    revoke_p.add_argument('creator')

    block_p = sub.add_parser('block', help='Block a creator')
    block_p.add_argument('creator')
    block_p.add_argument('--reason', required=True, help='Why the creator is blocked')

    unblock_p = sub.add_parser('unblock', help='Lift a block')
    unblock_p.add_argument('creator')

    check_p = sub.add_parser('check', help='Show trust and security level')
    check_p.add_argument('creators', nargs='+')

    sub.add_parser('stats', help='Trust statistics')

    logs_p = sub.add_parser('logs', help='Show or export the audit log')
    logs_p.add_argument('--creator')
    logs_p.add_argument('--action', choices=['grant', 'revoke', 'block', 'unblock',
                                             'check', 'violation'])
    logs_p.add_argument('--since', help='ISO-8601 timestamp')
    logs_p.add_argument('--limit', type=int, default=50, help='Most recent N records')
    logs_p.add_argument('--format', choices=('table',) + EXPORT_FORMATS, default='table')

    export_p = sub.add_parser('export', help='Export entries and audit log')
    export_p.add_argument('--output', '-o', help='Write to a file instead of stdout')

    import_p = sub.add_parser('import', help='Import an export snapshot')
    import_p.add_argument('file')
    import_p.add_argument('--merge', action='store_true',
                          help='Merge over existing entries instead of replacing them')
    import_p.add_argument('--yes', '-y', action='store_true', help='Do not ask for confirmation')

    reset_p = sub.add_parser('reset', help='Remove every trust entry')
    reset_p.add_argument('--yes', '-y', action='store_true', help='Do not ask for confirmation')

    sub.add_parser('verify', help='Check store and audit chain integrity')
    return parser


DISPATCH = {
    'list': cmd_list,
    'grant': cmd_grant,
    'revoke': cmd_revoke,
    'block': cmd_block,
    'unblock': cmd_unblock,
    'check': cmd_check,
    'stats': cmd_stats,
    'logs': cmd_logs,
    'export': cmd_export,
    'import': cmd_import,
    'reset': cmd_reset,
    'verify': cmd_verify,
}


def _fail(ctx_json: bool, code: int, error: Exception) -> int:
    if ctx_json:
        print(json.dumps({'error': str(error), 'type': type(error).__name__,
                          'exit_code': code}))
    else:
        print(f"  {fail_mark()} {error}", file=sys.stderr)
    return code


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format='[%(asctime)s] %(message)s')

    handler = DISPATCH.get(args.command)
    if handler is None:
        parser.print_help()
        return EXIT_VALIDATION

    try:
        return handler(Context(args))
    except KeyboardInterrupt:
        print(f"\n  {Colors.dim('Interrupted.')}", file=sys.stderr)
        return EXIT_DECLINED
    except Declined as e:
        return _fail(args.json, EXIT_DECLINED, e)
    except StorageError as e:
        return _fail(args.json, _storage_exit_code(e), e)
    except BlockedCreatorError as e:
        return _fail(args.json, EXIT_BLOCKED, e)
    except ValidationError as e:
        return _fail(args.json, EXIT_VALIDATION, e)
    except TrustError as e:
        return _fail(args.json, EXIT_ERROR, e)


if __name__ == '__main__':
    sys.exit(main())
