#!/usr/bin/env python3
"""
gentrust Core Audit — Audit Logger
====================================
Append-only, tamper-evident record of every trust decision, grant, block
and sandbox violation.

- Each record carries a sequence number and a SHA-256 chain hash over the
  previous record, so edits and deletions are detectable (verify_chain).
- Records are persisted through the trust store's append_audit(), under
  the store lock, so several processes extend one chain.
- Each record is mirrored to the "gentrust.audit" Python logger: WARNING
  for blocks and violations, INFO otherwise.

Without a store the logger keeps records in memory (tests, dry runs).

Import from: gentrust.core.audit.logger
"""

import csv
import hashlib
import io
import json
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Optional, Union

from gentrust.core.trust.store import GENESIS_HASH
from gentrust.core.types import (
    AuditAction, AuditEntry, AuditWriteError, GrantedBy, Resolution,
    StorageError, ValidationError, parse_timestamp, utcnow,
)

__all__ = ['AuditLogger', 'ChainVerification', 'chain_hash', 'seal_entry', 'EXPORT_FORMATS']

logger = logging.getLogger("gentrust.core.audit.logger")
audit_mirror = logging.getLogger("gentrust.audit")

EXPORT_FORMATS = ('json', 'jsonl', 'csv')

CSV_FIELDS = ['sequence', 'timestamp', 'creator_id', 'action', 'resolution',
              'granted_by', 'context', 'chain_hash']

# Context strings end up in terminals and CSV files
MAX_CONTEXT_LENGTH = 1000


def chain_hash(previous_hash: str, entry: AuditEntry) -> str:
    entry_str = json.dumps(entry.hash_payload(), sort_keys=True)
    return hashlib.sha256(f"{previous_hash}:{entry_str}".encode()).hexdigest()


def seal_entry(entry: AuditEntry, previous: Optional[AuditEntry],
               anchor: str = GENESIS_HASH) -> AuditEntry:
    """Assign the next sequence number and the chain hash."""
    if previous is not None:
        sequence = previous.sequence + 1
        previous_hash = previous.chain_hash
    else:
        sequence = 1
        previous_hash = anchor
    sealed = replace(entry, sequence=sequence, chain_hash="")
    return replace(sealed, chain_hash=chain_hash(previous_hash, sealed))


@dataclass(frozen=True)
class ChainVerification:
    ok: bool
    checked: int
    broken_at: Optional[int] = None
    message: str = ""

    def to_dict(self) -> Dict:
        return {'ok': self.ok, 'checked': self.checked,
                'broken_at': self.broken_at, 'message': self.message}


class AuditLogger:
    """Records audit entries and answers queries over them."""

    def __init__(self, store=None):
        self.store = store
        self._lock = threading.Lock()
        self._records: List[AuditEntry] = []
        self.stats = defaultdict(int)

    # ---- Writing ----

    def record(self, creator_id: str, action: AuditAction, resolution: Resolution,
               context: str = "", granted_by: Optional[GrantedBy] = None,
               timestamp: Optional[datetime] = None) -> AuditEntry:
        """Append one record.

        Raises:
            AuditWriteError: the record could not be persisted. Callers on
                an allow path must treat this as a deny.
        """
        context = (context or "")[:MAX_CONTEXT_LENGTH]
        entry = AuditEntry(
            timestamp=timestamp or utcnow(),
            creator_id=creator_id,
            action=action,
            resolution=resolution,
            context=context,
            granted_by=granted_by,
        )

        with self._lock:
            if self.store is not None:
                try:
                    entry = self.store.append_audit([entry], seal=seal_entry)[0]
                except StorageError as e:
                    logger.error("Audit write failed for %s (%s): %s",
                                 creator_id, action.value, e)
                    raise AuditWriteError(f"Could not persist audit record: {e}") from e
            else:
                previous = self._records[-1] if self._records else None
                entry = seal_entry(entry, previous)
                self._records.append(entry)

        self.announce(entry)
        return entry

    def stage(self, snapshot, creator_id: str, action: AuditAction,
              resolution: Resolution, context: str = "",
              granted_by: Optional[GrantedBy] = None) -> AuditEntry:
        """Append a record to an open store transaction.

        The record is written in the same save as the trust change it
        describes. Call announce() once the transaction has committed.
        """
        previous = snapshot.audit[-1] if snapshot.audit else None
        entry = seal_entry(AuditEntry(
            timestamp=utcnow(),
            creator_id=creator_id,
            action=action,
            resolution=resolution,
            context=(context or "")[:MAX_CONTEXT_LENGTH],
            granted_by=granted_by,
        ), previous, snapshot.audit_anchor)
        snapshot.audit.append(entry)
        return entry

    def announce(self, entry: AuditEntry) -> None:
        """Count and mirror a persisted record to the Python logger."""
        self.stats[entry.action.value] += 1
        self._mirror(entry)

    def _mirror(self, entry: AuditEntry):
        msg = "%s %s [%s] %s"
        args = (entry.action.value.upper(), entry.creator_id,
                entry.resolution.value, entry.context)
        if entry.action in (AuditAction.BLOCK, AuditAction.VIOLATION) \
                or entry.resolution == Resolution.BLOCKED:
            audit_mirror.warning(msg, *args)
        else:
            audit_mirror.info(msg, *args)

    # ---- Reading ----

    def _all(self) -> List[AuditEntry]:
        if self.store is not None:
            return list(self.store.load().audit)
        with self._lock:
            return list(self._records)

    def _anchor(self) -> str:
        if self.store is not None:
            return self.store.load().audit_anchor
        return GENESIS_HASH

    def query(self, creator_id: Optional[str] = None,
              action: Optional[Union[AuditAction, str]] = None,
              since: Optional[Union[datetime, str]] = None,
              limit: Optional[int] = None) -> List[AuditEntry]:
        """Records in ascending timestamp order, ties broken by sequence.

        `limit` keeps the most recent N of the matching records.
        """
        if isinstance(action, str):
            try:
                action = AuditAction(action.lower())
            except ValueError:
                raise ValidationError(f"Unknown audit action: {action!r}") from None
        if isinstance(since, str):
            since = parse_timestamp(since)
        if limit is not None and limit < 0:
            raise ValidationError("limit cannot be negative")

        results = [
            e for e in self._all()
            if (creator_id is None or e.creator_id == creator_id)
            and (action is None or e.action == action)
            and (since is None or e.timestamp >= since)
        ]
        results.sort(key=lambda e: (e.timestamp, e.sequence))
        if limit is not None:
            results = results[-limit:] if limit else []
        return results

    def export(self, fmt: str = 'json', records: Optional[List[AuditEntry]] = None) -> str:
        if fmt not in EXPORT_FORMATS:
            raise ValidationError(
                f"Unsupported export format {fmt!r}; use one of {', '.join(EXPORT_FORMATS)}")
        if records is None:
            records = self.query()
        rows = [r.to_dict() for r in records]

        if fmt == 'json':
            return json.dumps(rows, indent=2)
        if fmt == 'jsonl':
            return ''.join(json.dumps(row, sort_keys=True) + '\n' for row in rows)

        buf = io.StringIO()
        writer = csv.DictWriter(buf, fieldnames=CSV_FIELDS, extrasaction='ignore',
                                lineterminator='\n')
        writer.writeheader()
        for row in rows:
            writer.writerow({k: '' if row.get(k) is None else row.get(k) for k in CSV_FIELDS})
        return buf.getvalue()

    def verify_chain(self) -> ChainVerification:
        """Recompute the hash chain over the stored records."""
        records = sorted(self._all(), key=lambda e: e.sequence)
        previous_hash = self._anchor()
        previous_seq = None
        for entry in records:
            if previous_seq is not None and entry.sequence != previous_seq + 1:
                return ChainVerification(
                    False, records.index(entry), entry.sequence,
                    f"Sequence gap: {previous_seq} -> {entry.sequence}")
            expected = chain_hash(previous_hash, replace(entry, chain_hash=""))
            if entry.chain_hash != expected:
                return ChainVerification(
                    False, records.index(entry), entry.sequence,
                    f"Chain hash mismatch at sequence {entry.sequence}")
            previous_hash = entry.chain_hash
            previous_seq = entry.sequence
        return ChainVerification(True, len(records), message="Audit chain intact")

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats)
