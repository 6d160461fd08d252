#!/usr/bin/env python3
"""
gentrust Core Trust — Trust Store
===================================
Durable, integrity-checked persistence of the trust entry set and the
audit log.

On-disk layout (one JSON document):

    {
      "format": "gentrust-store",
      "version": 1,
      "encrypted": false,
      "checksum": "<sha256 of the canonical payload>",
      "payload": {"entries": [...], "audit": [...], "audit_anchor": "..."}
    }

When encryption is on, "payload" is replaced by "ciphertext" (Fernet
token of the canonical payload) and the checksum covers the plaintext.

Guarantees:
- Writes are atomic (temp file in the same directory, fsync, os.replace).
- Every save rotates backups first (<store>.bak.1 newest ... .bak.N).
- A store failing format/checksum validation is restored from the newest
  valid backup before CorruptedStoreError is raised. The damaged file is
  kept as <store>.corrupt-<timestamp>.
- Serialized size is capped (StoreTooLargeError) on both save and load.
- All writers serialize on an exclusive file lock (<store>.lock); a
  writer that cannot get it in time raises StoreLockTimeoutError.
- Files are created 0600, the store directory 0700.

MemoryTrustStore implements the same interface without touching disk and
can be switched into a failing state to simulate an unreachable store.

Import from: gentrust.core.trust.store
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from filelock import FileLock, Timeout

from gentrust.core.constants import (
    AUDIT_ARCHIVE_FILENAME, DEFAULT_BACKUP_COUNT, DEFAULT_LOCK_TIMEOUT, DEFAULT_MAX_AUDIT_ENTRIES,
    DEFAULT_MAX_STORE_BYTES,
)
from gentrust.core.crypto.keys import KeyProvider, StoreCipher
from gentrust.core.types import (
    AuditEntry, CorruptedStoreError, KeyUnavailableError, StorageError,
    StoreLockTimeoutError, StoreTooLargeError, TrustEntry, ValidationError,
    utcnow,
)
from gentrust.core.version import (
    EXPORT_FORMAT, EXPORT_SCHEMA_VERSION, STORE_FORMAT, STORE_SCHEMA_VERSION,
)

__all__ = [
    'StoreSnapshot', 'BaseTrustStore', 'TrustStore', 'MemoryTrustStore',
    'GENESIS_HASH', 'validate_snapshot_data',
]

logger = logging.getLogger("gentrust.core.trust.store")

GENESIS_HASH = "0" * 64

# seal(entry, previous_entry_or_None, anchor_hash) -> sealed entry
AuditSealer = Callable[[AuditEntry, Optional[AuditEntry], str], AuditEntry]


@dataclass
class StoreSnapshot:
    """In-memory view of everything the store persists."""
    entries: Dict[str, TrustEntry] = field(default_factory=dict)
    audit: List[AuditEntry] = field(default_factory=list)
    # chain hash of the last audit record moved to the archive
    audit_anchor: str = GENESIS_HASH

    def to_payload(self) -> Dict[str, Any]:
        return {
            'entries': [self.entries[k].to_dict() for k in sorted(self.entries)],
            'audit': [a.to_dict() for a in self.audit],
            'audit_anchor': self.audit_anchor,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'StoreSnapshot':
        """Parse and validate a payload. Raises ValidationError."""
        return validate_snapshot_data(payload)


def validate_snapshot_data(data: Dict[str, Any]) -> StoreSnapshot:
    """Check every entry against the trust entry invariants.

    Raises ValidationError on the first violation; nothing is returned
    partially.
    """
    if not isinstance(data, dict):
        raise ValidationError("Snapshot must be an object")
    raw_entries = data.get('entries', [])
    raw_audit = data.get('audit', [])
    if not isinstance(raw_entries, list) or not isinstance(raw_audit, list):
        raise ValidationError("'entries' and 'audit' must be lists")

    entries: Dict[str, TrustEntry] = {}
    for raw in raw_entries:
        entry = TrustEntry.from_dict(raw)
        entry.validate()
        if entry.creator_id in entries:
            raise ValidationError(f"Duplicate entry for {entry.creator_id}")
        entries[entry.creator_id] = entry

    audit = [AuditEntry.from_dict(raw) for raw in raw_audit]
    anchor = str(data.get('audit_anchor') or GENESIS_HASH)
    return StoreSnapshot(entries=entries, audit=audit, audit_anchor=anchor)


def _canonical(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(',', ':')).encode('utf-8')


def _checksum(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class BaseTrustStore:
    """Logic shared by the file and memory stores.

    Subclasses provide `_locked()`, `_load_unlocked()` and `_write()`.
    """

    def __init__(self, max_audit_entries: int = DEFAULT_MAX_AUDIT_ENTRIES):
        self.max_audit_entries = max_audit_entries

    # ---- Subclass hooks ----

    @contextmanager
    def _locked(self) -> Iterator[None]:
        raise NotImplementedError
        yield  # pragma: no cover

    def _load_unlocked(self) -> StoreSnapshot:
        raise NotImplementedError

    def _write(self, snapshot: StoreSnapshot) -> None:
        raise NotImplementedError

    def _archive(self, records: List[AuditEntry]) -> None:
        """Move rotated audit records to archive storage (append-only)."""
        raise NotImplementedError

    # ---- Public API ----

    def load(self) -> StoreSnapshot:
        return self._load_unlocked()

    def save(self, entries: Dict[str, TrustEntry], audit: List[AuditEntry],
             audit_anchor: Optional[str] = None) -> None:
        snapshot = StoreSnapshot(entries=dict(entries), audit=list(audit),
                                 audit_anchor=audit_anchor or GENESIS_HASH)
        for entry in snapshot.entries.values():
            entry.validate()
        with self._locked():
            if audit_anchor is None:
                snapshot.audit_anchor = self._load_unlocked().audit_anchor
            self._write(snapshot)

    @contextmanager
    def transaction(self) -> Iterator[StoreSnapshot]:
        """Lock, load, hand out a mutable snapshot, save on clean exit.

        An exception inside the block leaves the store untouched.
        """
        with self._locked():
            snapshot = self._load_unlocked()
            yield snapshot
            for entry in snapshot.entries.values():
                entry.validate()
            self._rotate_audit(snapshot)
            self._write(snapshot)

    def append_audit(self, records: List[AuditEntry],
                     seal: Optional[AuditSealer] = None) -> List[AuditEntry]:
        """Append audit records under the store lock.

        `seal` assigns sequence numbers and chain hashes against the last
        persisted record, so concurrent processes extend one chain.
        Returns the records as stored.
        """
        stored: List[AuditEntry] = []
        with self._locked():
            snapshot = self._load_unlocked()
            for record in records:
                previous = snapshot.audit[-1] if snapshot.audit else None
                if seal is not None:
                    record = seal(record, previous, snapshot.audit_anchor)
                snapshot.audit.append(record)
                stored.append(record)
            self._rotate_audit(snapshot)
            self._write(snapshot)
        return stored

    def _rotate_audit(self, snapshot: StoreSnapshot) -> None:
        """Move the oldest records beyond max_audit_entries to the archive."""
        overflow = len(snapshot.audit) - self.max_audit_entries
        if overflow <= 0:
            return
        rotated = snapshot.audit[:overflow]
        self._archive(rotated)
        snapshot.audit = snapshot.audit[overflow:]
        snapshot.audit_anchor = rotated[-1].chain_hash or snapshot.audit_anchor
        logger.info("Rotated %d audit records to archive", len(rotated))

    def export(self) -> Dict[str, Any]:
        """Portable snapshot for backup or migration."""
        snapshot = self.load()
        data = snapshot.to_payload()
        data.update({
            'format': EXPORT_FORMAT,
            'version': EXPORT_SCHEMA_VERSION,
            'exported_at': utcnow().isoformat(),
        })
        return data

    def import_data(self, data: Dict[str, Any], replace: bool = True) -> StoreSnapshot:
        """Load an export snapshot.

        Everything is validated before anything is written. `replace`
        swaps in the imported entries and audit log; otherwise imported
        entries are merged over existing ones and the existing audit log
        is kept.
        """
        if not isinstance(data, dict):
            raise ValidationError("Import data must be an object")
        fmt = data.get('format', EXPORT_FORMAT)
        if fmt != EXPORT_FORMAT:
            raise ValidationError(f"Not a gentrust export (format={fmt!r})")
        version = data.get('version', EXPORT_SCHEMA_VERSION)
        if version != EXPORT_SCHEMA_VERSION:
            raise ValidationError(f"Unsupported export version {version!r}")
        imported = validate_snapshot_data(data)

        with self.transaction() as snapshot:
            if replace:
                snapshot.entries = dict(imported.entries)
                snapshot.audit = list(imported.audit)
                snapshot.audit_anchor = imported.audit_anchor
            else:
                snapshot.entries.update(imported.entries)
            result = copy.deepcopy(snapshot)
        return result

    def reset(self) -> List[str]:
        """Remove every trust entry. Audit records are kept.

        Returns the creator ids that were removed.
        """
        with self.transaction() as snapshot:
            removed = sorted(snapshot.entries)
            snapshot.entries.clear()
        return removed


class TrustStore(BaseTrustStore):
    """File-backed trust store. One instance owns one lock domain, keyed by
    its path."""

    def __init__(self, path, *,
                 key_provider: Optional[KeyProvider] = None,
                 max_store_bytes: int = DEFAULT_MAX_STORE_BYTES,
                 backup_count: int = DEFAULT_BACKUP_COUNT,
                 lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
                 max_audit_entries: int = DEFAULT_MAX_AUDIT_ENTRIES,
                 archive_path=None):
        super().__init__(max_audit_entries=max_audit_entries)
        self.path = Path(path)
        self.cipher = StoreCipher(key_provider) if key_provider is not None else None
        self.max_store_bytes = max_store_bytes
        self.backup_count = backup_count
        self.lock_timeout = lock_timeout
        self.archive_path = Path(archive_path) if archive_path else \
            self.path.with_name(AUDIT_ARCHIVE_FILENAME)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._ensure_dir()
        self._file_lock = FileLock(str(self.lock_path), timeout=self.lock_timeout)

    @classmethod
    def from_config(cls, config, key_provider: Optional[KeyProvider] = None) -> 'TrustStore':
        from gentrust.core.crypto.keys import key_provider_from_config
        if key_provider is None:
            key_provider = key_provider_from_config(config)
        return cls(
            config.store_path,
            key_provider=key_provider,
            max_store_bytes=config.max_store_bytes,
            backup_count=config.backup_count,
            lock_timeout=config.lock_timeout,
            max_audit_entries=config.max_audit_entries,
            archive_path=config.audit_archive_path,
        )

    @property
    def encrypted(self) -> bool:
        return self.cipher is not None

    def _ensure_dir(self):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if os.name == 'posix':
                os.chmod(self.path.parent, 0o700)
        except OSError as e:
            raise StorageError(f"Cannot create store directory {self.path.parent}: {e}") from e

    # ---- Locking ----

    @contextmanager
    def _locked(self) -> Iterator[None]:
        try:
            self._file_lock.acquire()
        except Timeout as e:
            raise StoreLockTimeoutError(
                f"Could not lock {self.path} within {self.lock_timeout}s") from e
        try:
            yield
        finally:
            self._file_lock.release()

    # ---- Backups ----

    def backup_path(self, index: int) -> Path:
        return self.path.with_name(f"{self.path.name}.bak.{index}")

    def list_backups(self) -> List[Path]:
        """Existing backups, newest first."""
        return [self.backup_path(i) for i in range(1, self.backup_count + 1)
                if self.backup_path(i).exists()]

    def _rotate_backups(self):
        if self.backup_count <= 0 or not self.path.exists():
            return
        oldest = self.backup_path(self.backup_count)
        if oldest.exists():
            oldest.unlink()
        for i in range(self.backup_count - 1, 0, -1):
            src = self.backup_path(i)
            if src.exists():
                os.replace(src, self.backup_path(i + 1))
        shutil.copy2(self.path, self.backup_path(1))

    # ---- Serialization ----

    def _serialize(self, snapshot: StoreSnapshot) -> bytes:
        payload = snapshot.to_payload()
        canonical = _canonical(payload)
        envelope: Dict[str, Any] = {
            'format': STORE_FORMAT,
            'version': STORE_SCHEMA_VERSION,
            'encrypted': self.encrypted,
            'checksum': _checksum(canonical),
        }
        if self.cipher is not None:
            envelope['ciphertext'] = self.cipher.encrypt(canonical)
        else:
            envelope['payload'] = payload
        return json.dumps(envelope, indent=2, sort_keys=True).encode('utf-8')

    def _deserialize(self, raw: bytes, source: Path) -> StoreSnapshot:
        try:
            envelope = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptedStoreError(f"{source}: not valid JSON ({e})") from e
        if not isinstance(envelope, dict) or envelope.get('format') != STORE_FORMAT:
            raise CorruptedStoreError(f"{source}: not a gentrust store")
        if envelope.get('version') != STORE_SCHEMA_VERSION:
            raise CorruptedStoreError(
                f"{source}: unsupported store version {envelope.get('version')!r}")

        if envelope.get('encrypted'):
            if self.cipher is None:
                raise KeyUnavailableError(
                    f"{source} is encrypted but no key provider is configured")
            token = envelope.get('ciphertext')
            if not isinstance(token, str):
                raise CorruptedStoreError(f"{source}: missing ciphertext")
            canonical = self.cipher.decrypt(token)
            try:
                payload = json.loads(canonical.decode('utf-8'))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise CorruptedStoreError(f"{source}: decrypted payload is not JSON") from e
        else:
            if self.cipher is not None:
                # Never accept plaintext where ciphertext is expected
                raise CorruptedStoreError(
                    f"{source} is not encrypted but encryption is enabled")
            payload = envelope.get('payload')
            if not isinstance(payload, dict):
                raise CorruptedStoreError(f"{source}: missing payload")
            canonical = _canonical(payload)

        if _checksum(canonical) != envelope.get('checksum'):
            raise CorruptedStoreError(f"{source}: checksum mismatch")
        try:
            return validate_snapshot_data(payload)
        except ValidationError as e:
            raise CorruptedStoreError(f"{source}: invalid content ({e})") from e

    def _read(self, source: Path) -> StoreSnapshot:
        try:
            size = source.stat().st_size
            if size > self.max_store_bytes:
                raise StoreTooLargeError(
                    f"{source} is {size} bytes (limit {self.max_store_bytes})")
            raw = source.read_bytes()
        except OSError as e:
            raise StorageError(f"Cannot read {source}: {e}") from e
        return self._deserialize(raw, source)

    # ---- Load / write ----

    def _load_unlocked(self) -> StoreSnapshot:
        if not self.path.exists():
            return StoreSnapshot()
        try:
            return self._read(self.path)
        except CorruptedStoreError as primary_error:
            logger.error("Trust store failed validation: %s", primary_error)
            restored = self._restore_from_backup()
            if restored is None:
                raise
            return restored

    def _restore_from_backup(self) -> Optional[StoreSnapshot]:
        for backup in self.list_backups():
            try:
                snapshot = self._read(backup)
            except StorageError as e:
                logger.warning("Backup %s unusable: %s", backup.name, e)
                continue
            quarantine = self.path.with_name(
                f"{self.path.name}.corrupt-{utcnow().strftime('%Y%m%d%H%M%S')}")
            try:
                os.replace(self.path, quarantine)
                self._write_file(self._serialize(snapshot))
            except OSError as e:
                logger.error("Could not rewrite store from %s: %s", backup.name, e)
            logger.warning("Trust store restored from %s (damaged copy kept as %s)",
                           backup.name, quarantine.name)
            return snapshot
        return None

    def _write(self, snapshot: StoreSnapshot) -> None:
        data = self._serialize(snapshot)
        if len(data) > self.max_store_bytes:
            raise StoreTooLargeError(
                f"Serialized store is {len(data)} bytes (limit {self.max_store_bytes})")
        try:
            self._rotate_backups()
            self._write_file(data)
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e

    def _write_file(self, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=self.path.name + '.', suffix='.tmp',
                                        dir=str(self.path.parent))
        try:
            if os.name == 'posix':
                os.fchmod(fd, 0o600)
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def _archive(self, records: List[AuditEntry]) -> None:
        lines = ''.join(json.dumps(r.to_dict(), sort_keys=True) + '\n' for r in records)
        try:
            fd = os.open(self.archive_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
            with os.fdopen(fd, 'a', encoding='utf-8') as f:
                f.write(lines)
        except OSError as e:
            raise StorageError(f"Cannot append to audit archive {self.archive_path}: {e}") from e

    def read_archive(self) -> List[AuditEntry]:
        if not self.archive_path.exists():
            return []
        records = []
        with open(self.archive_path, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if line:
                    records.append(AuditEntry.from_dict(json.loads(line)))
        return records


class MemoryTrustStore(BaseTrustStore):
    """In-memory store with the TrustStore interface.

    Set `fail_with` to a StorageError instance to make every operation
    raise it (simulates an unreachable or corrupted store).
    """

    def __init__(self, max_audit_entries: int = DEFAULT_MAX_AUDIT_ENTRIES):
        super().__init__(max_audit_entries=max_audit_entries)
        self._snapshot = StoreSnapshot()
        self._lock = threading.RLock()
        self.archived: List[AuditEntry] = []
        self.fail_with: Optional[StorageError] = None
        self.writes = 0

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self._check()
        with self._lock:
            yield

    def _load_unlocked(self) -> StoreSnapshot:
        self._check()
        with self._lock:
            return copy.deepcopy(self._snapshot)

    def _write(self, snapshot: StoreSnapshot) -> None:
        self._check()
        with self._lock:
            self._snapshot = copy.deepcopy(snapshot)
            self.writes += 1

    def _archive(self, records: List[AuditEntry]) -> None:
        self.archived.extend(records)

    def read_archive(self) -> List[AuditEntry]:
        return list(self.archived)
