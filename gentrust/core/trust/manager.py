#!/usr/bin/env python3
"""
gentrust Core Trust — Trust Manager
=====================================
Authoritative source of the current trust level for every creator.

Key Invariants
--------------
- At most one live entry per creator id. Entries are keyed by the
  normalized id, and every read-modify-write runs inside one store
  transaction (file lock + in-process RLock).
- Every mutating call appends exactly one audit record per affected
  creator, written in the same save as the trust change.
- Expired entries read as UNKNOWN. The first query that sees one removes
  it and records the reversion once (revoke / timeout).
- Only unblock() ever lowers a BLOCKED creator. grant, distrust and
  revoke refuse to touch a blocked entry.
- A temporary grant without an expiry is a session grant: held in memory
  by this manager until the process exits, never written to disk.

Import from: gentrust.core.trust.manager
"""

from __future__ import annotations

import fnmatch
import logging
import threading
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from gentrust.core.audit.logger import AuditLogger
from gentrust.core.config import TrustConfig
from gentrust.core.creator import Creator, parse_creator
from gentrust.core.types import (
    AuditAction, AuditEntry, BlockedCreatorError, CreatorSource, GrantedBy,
    Resolution, TrustChangeEvent, TrustEntry, TrustLevel, ValidationError,
    utcnow,
)

__all__ = ['TrustManager', 'TrustSubscriber']

logger = logging.getLogger("gentrust.core.trust.manager")

TrustSubscriber = Callable[[TrustChangeEvent], None]

_RESTRICTIVE = (TrustLevel.BLOCKED, TrustLevel.UNTRUSTED)


def _level(entry: Optional[TrustEntry]) -> TrustLevel:
    return entry.trust_level if entry is not None else TrustLevel.UNKNOWN


class TrustManager:
    """Reads and mutates trust entries through a trust store.

    Usage:
        store = TrustStore.from_config(config)
        manager = TrustManager(store, config=config)

        manager.grant("npm:left-pad")
        manager.get_trust_level("left-pad")       # TrustLevel.TRUSTED
        manager.block("github:evil/repo", "known malware")
        manager.unblock("github:evil/repo")       # back to UNKNOWN
    """

    def __init__(self, store, audit: Optional[AuditLogger] = None,
                 config: Optional[TrustConfig] = None):
        self.store = store
        self.audit = audit if audit is not None else AuditLogger(store)
        self.config = config if config is not None else TrustConfig()
        self._lock = threading.RLock()
        self._session: Dict[str, TrustEntry] = {}
        self._subscribers: List[TrustSubscriber] = []

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _creator(creator_id: Union[str, Creator]) -> Creator:
        return parse_creator(creator_id)

    def _notify(self, events: List[TrustChangeEvent]):
        for event in events:
            for callback in list(self._subscribers):
                try:
                    callback(event)
                except Exception as e:
                    logger.warning("Trust subscriber %r failed: %s", callback, e)

    def _commit(self, staged: List[AuditEntry], events: List[TrustChangeEvent]):
        for entry in staged:
            self.audit.announce(entry)
        self._notify(events)

    def _expire(self, snapshot, key: str, now: datetime,
                staged: List[AuditEntry], events: List[TrustChangeEvent]) -> bool:
        entry = snapshot.entries.get(key)
        if entry is None or not entry.is_expired(now):
            return False
        del snapshot.entries[key]
        staged.append(self.audit.stage(
            snapshot, key, AuditAction.REVOKE, Resolution.TIMEOUT,
            context=f"temporary {entry.trust_level.value} expired at "
                    f"{entry.expires_at.isoformat()}",
            granted_by=GrantedBy.POLICY))
        events.append(TrustChangeEvent(key, entry.trust_level, TrustLevel.UNKNOWN,
                                       AuditAction.REVOKE))
        logger.info("Trust for %s expired; reverted to unknown", key)
        return True

    def _matches_auto_trust(self, creator: Creator) -> bool:
        if creator.is_local and self.config.auto_trust_local:
            return True
        key = creator.creator_id
        for pattern in self.config.auto_trust:
            pattern = pattern.strip().lower()
            if not pattern:
                continue
            if any(c in pattern for c in '*?['):
                if fnmatch.fnmatchcase(key, pattern):
                    return True
            elif key == pattern or key.startswith(pattern):
                return True
        return False

    # =========================================================================
    # Queries
    # =========================================================================

    def get_entry(self, creator_id: Union[str, Creator]) -> Optional[TrustEntry]:
        """Live entry for a creator, or None when unknown.

        A persisted block or distrust made by another process outranks
        this process's session grant, which is dropped. Removes (and
        audits) an expired entry on the way.
        """
        key = self._creator(creator_id).creator_id
        with self._lock:
            entry = self.store.load().entries.get(key)
            session = self._session.get(key)
            if entry is not None and not entry.is_expired() \
                    and entry.trust_level in _RESTRICTIVE:
                if session is not None:
                    del self._session[key]
                    logger.warning("Session grant for %s dropped: stored as %s",
                                   key, entry.trust_level.value)
                return entry
            if session is not None:
                return session
            if entry is None or not entry.is_expired():
                return entry

            staged: List[AuditEntry] = []
            events: List[TrustChangeEvent] = []
            with self.store.transaction() as snapshot:
                # another process may have replaced or removed it meanwhile
                self._expire(snapshot, key, utcnow(), staged, events)
                current = snapshot.entries.get(key)
        self._commit(staged, events)
        return current

    def get_trust_level(self, creator_id: Union[str, Creator]) -> TrustLevel:
        """Current trust level; UNKNOWN when absent or expired.

        Creators covered by the auto-trust policy are granted on first
        query.

        Raises:
            InvalidCreatorIdError: malformed id.
            StorageError: the store could not be read. Callers fail closed.
        """
        creator = self._creator(creator_id)
        entry = self.get_entry(creator)
        if entry is not None:
            return entry.trust_level
        if self._matches_auto_trust(creator):
            self.grant(creator, granted_by=GrantedBy.POLICY,
                       resolution=Resolution.POLICY_DEFAULT,
                       reason="auto-trust policy",
                       context="auto-trust policy")
            return TrustLevel.TRUSTED
        return TrustLevel.UNKNOWN

    def is_session_grant(self, creator_id: Union[str, Creator]) -> bool:
        return self._creator(creator_id).creator_id in self._session

    def purge_expired(self) -> List[str]:
        """Remove every expired entry. Returns the ids removed."""
        staged: List[AuditEntry] = []
        events: List[TrustChangeEvent] = []
        with self._lock:
            now = utcnow()
            if not any(e.is_expired(now) for e in self.store.load().entries.values()):
                return []
            with self.store.transaction() as snapshot:
                for key in sorted(snapshot.entries):
                    self._expire(snapshot, key, now, staged, events)
        self._commit(staged, events)
        return [e.creator_id for e in events]

    def list_entries(self, level: Optional[Union[TrustLevel, str]] = None,
                     source: Optional[Union[CreatorSource, str]] = None) -> List[TrustEntry]:
        """Live entries (persisted and session), sorted by creator id."""
        if isinstance(level, str):
            try:
                level = TrustLevel(level.lower())
            except ValueError:
                raise ValidationError(f"Unknown trust level: {level!r}") from None
        if isinstance(source, str):
            try:
                source = CreatorSource(source.lower())
            except ValueError:
                raise ValidationError(f"Unknown creator source: {source!r}") from None

        self.purge_expired()
        with self._lock:
            entries = dict(self.store.load().entries)
            for key, session in self._session.items():
                if key not in entries or entries[key].trust_level not in _RESTRICTIVE:
                    entries[key] = session

        results = []
        for key in sorted(entries):
            entry = entries[key]
            if level is not None and entry.trust_level != level:
                continue
            if source is not None and key.split(':', 1)[0] != source.value:
                continue
            results.append(entry)
        return results

    def statistics(self) -> Dict[str, Any]:
        entries = self.list_entries()
        snapshot = self.store.load()
        by_level = Counter(e.trust_level.value for e in entries)
        by_source = Counter(e.creator_id.split(':', 1)[0] for e in entries)
        actions = Counter(a.action.value for a in snapshot.audit)
        return {
            'total': len(entries),
            'by_level': {lvl.value: by_level.get(lvl.value, 0)
                         for lvl in TrustLevel if lvl != TrustLevel.UNKNOWN},
            'by_source': {src.value: by_source.get(src.value, 0) for src in CreatorSource},
            'temporary': sum(1 for e in entries if e.expires_at is not None),
            'session_grants': len(self._session),
            'audit_entries': len(snapshot.audit),
            'audit_by_action': dict(actions),
        }

    # =========================================================================
    # Mutations
    # =========================================================================

    def _mutate(self, key: str, apply: Callable[[Any, Optional[TrustEntry]],
                                                Tuple[Optional[TrustEntry], AuditAction,
                                                      Resolution, str, Optional[GrantedBy]]]
                ) -> Optional[TrustEntry]:
        """Run one single-creator mutation in a store transaction.

        `apply(snapshot, previous)` returns (new_entry_or_None, action,
        resolution, context, granted_by) and may raise to abort.
        """
        staged: List[AuditEntry] = []
        events: List[TrustChangeEvent] = []
        with self._lock:
            saved_session = dict(self._session)
            try:
                with self.store.transaction() as snapshot:
                    self._expire(snapshot, key, utcnow(), staged, events)
                    persisted = snapshot.entries.get(key)
                    if persisted is not None and persisted.trust_level == TrustLevel.BLOCKED:
                        previous = persisted
                    else:
                        previous = self._session.get(key) or persisted
                    new_entry, action, resolution, context, granted_by = apply(snapshot, previous)
                    staged.append(self.audit.stage(snapshot, key, action, resolution,
                                                   context=context, granted_by=granted_by))
            except BaseException:
                # nothing was written; session grants roll back too
                self._session = saved_session
                raise
            events.append(TrustChangeEvent(key, _level(previous), _level(new_entry), action))
        self._commit(staged, events)
        return new_entry

    def grant(self, creator_id: Union[str, Creator], permanent: bool = True,
              expires_at: Optional[datetime] = None, reason: str = "",
              granted_by: GrantedBy = GrantedBy.USER,
              resolution: Resolution = Resolution.APPROVED,
              context: str = "") -> TrustEntry:
        """Trust a creator.

        permanent=True and no expires_at: persisted until revoked.
        expires_at given: persisted, reverts to unknown after expiry.
        permanent=False without expires_at: session grant (memory only).

        Raises:
            BlockedCreatorError: the creator is blocked; unblock first.
            ValidationError: expires_at is not in the future.
        """
        key = self._creator(creator_id).creator_id
        now = utcnow()
        if expires_at is not None:
            if expires_at.tzinfo is None:
                raise ValidationError("expires_at must be timezone-aware")
            if expires_at <= now:
                raise ValidationError("expires_at must be in the future")
        session_only = not permanent and expires_at is None

        entry = TrustEntry(creator_id=key, trust_level=TrustLevel.TRUSTED,
                           granted_at=now, granted_by=granted_by,
                           reason=reason, expires_at=expires_at)

        def apply(snapshot, previous):
            if previous is not None and previous.trust_level == TrustLevel.BLOCKED:
                raise BlockedCreatorError(key, previous.reason)
            snapshot.entries.pop(key, None)
            self._session.pop(key, None)
            if session_only:
                self._session[key] = entry
                scope = "for this session"
            else:
                snapshot.entries[key] = entry
                scope = f"until {expires_at.isoformat()}" if expires_at else "permanently"
            msg = context or reason or "trust granted"
            return entry, AuditAction.GRANT, resolution, f"{msg} ({scope})", granted_by

        self._mutate(key, apply)
        logger.info("Granted trust to %s (%s)", key,
                    "session" if session_only else ("temporary" if expires_at else "permanent"))
        return entry

    def distrust(self, creator_id: Union[str, Creator], reason: str = "",
                 granted_by: GrantedBy = GrantedBy.USER,
                 resolution: Resolution = Resolution.DENIED,
                 context: str = "") -> TrustEntry:
        """Record an explicit decision not to trust a creator (untrusted)."""
        key = self._creator(creator_id).creator_id
        entry = TrustEntry(creator_id=key, trust_level=TrustLevel.UNTRUSTED,
                           granted_at=utcnow(), granted_by=granted_by, reason=reason)

        def apply(snapshot, previous):
            if previous is not None and previous.trust_level == TrustLevel.BLOCKED:
                raise BlockedCreatorError(key, previous.reason)
            self._session.pop(key, None)
            snapshot.entries[key] = entry
            return (entry, AuditAction.REVOKE, resolution,
                    f"untrusted: {context or reason or 'trust declined'}", granted_by)

        self._mutate(key, apply)
        logger.info("Marked %s as untrusted", key)
        return entry

    def revoke(self, creator_id: Union[str, Creator], context: str = "",
               resolution: Resolution = Resolution.APPROVED) -> TrustLevel:
        """Remove a creator's entry (back to unknown). Returns the previous level.

        Raises:
            ValidationError: the creator is blocked; use unblock().
        """
        key = self._creator(creator_id).creator_id
        found: List[TrustLevel] = []

        def apply(snapshot, previous):
            if previous is not None and previous.trust_level == TrustLevel.BLOCKED:
                raise ValidationError(f"{key} is blocked; use unblock to remove the block")
            found.append(_level(previous))
            snapshot.entries.pop(key, None)
            self._session.pop(key, None)
            note = context or ("trust revoked" if previous is not None else "no entry to revoke")
            return None, AuditAction.REVOKE, resolution, note, GrantedBy.USER

        self._mutate(key, apply)
        logger.info("Revoked trust for %s", key)
        return found[0]

    def block(self, creator_id: Union[str, Creator], reason: str,
              granted_by: GrantedBy = GrantedBy.USER,
              resolution: Resolution = Resolution.BLOCKED,
              context: str = "") -> TrustEntry:
        """Block a creator. Blocks are permanent until unblock().

        Raises:
            ValidationError: empty reason.
        """
        key = self._creator(creator_id).creator_id
        if not reason or not reason.strip():
            raise ValidationError("Blocking a creator requires a reason")
        entry = TrustEntry(creator_id=key, trust_level=TrustLevel.BLOCKED,
                           granted_at=utcnow(), granted_by=granted_by,
                           reason=reason.strip())

        def apply(snapshot, previous):
            self._session.pop(key, None)
            snapshot.entries[key] = entry
            return entry, AuditAction.BLOCK, resolution, context or reason.strip(), granted_by

        self._mutate(key, apply)
        logger.warning("Blocked creator %s: %s", key, reason.strip())
        return entry

    def unblock(self, creator_id: Union[str, Creator], context: str = "") -> TrustLevel:
        """Explicitly lift a block (blocked -> unknown).

        Raises:
            ValidationError: the creator is not blocked.
        """
        key = self._creator(creator_id).creator_id

        def apply(snapshot, previous):
            if previous is None or previous.trust_level != TrustLevel.BLOCKED:
                raise ValidationError(f"{key} is not blocked")
            del snapshot.entries[key]
            return (None, AuditAction.UNBLOCK, Resolution.APPROVED,
                    context or f"unblocked (was: {previous.reason})", GrantedBy.USER)

        self._mutate(key, apply)
        logger.info("Unblocked creator %s", key)
        return TrustLevel.UNKNOWN

    def reset(self, context: str = "reset") -> List[str]:
        """Remove every entry, blocks included. Each removal is audited."""
        staged: List[AuditEntry] = []
        events: List[TrustChangeEvent] = []
        with self._lock:
            with self.store.transaction() as snapshot:
                removed = dict(snapshot.entries)
                removed.update(self._session)
                snapshot.entries.clear()
                self._session.clear()
                for key in sorted(removed):
                    staged.append(self.audit.stage(
                        snapshot, key, AuditAction.REVOKE, Resolution.APPROVED,
                        context=context, granted_by=GrantedBy.USER))
                    events.append(TrustChangeEvent(
                        key, removed[key].trust_level, TrustLevel.UNKNOWN, AuditAction.REVOKE))
        self._commit(staged, events)
        logger.warning("Trust store reset: %d entries removed", len(events))
        return [e.creator_id for e in events]

    # =========================================================================
    # Import / export
    # =========================================================================

    def export(self) -> Dict[str, Any]:
        return self.store.export()

    def import_data(self, data: Dict[str, Any], replace: bool = True) -> int:
        """Import an export snapshot. Returns the number of live entries after."""
        with self._lock:
            snapshot = self.store.import_data(data, replace=replace)
            self._session.clear()
        logger.info("Imported trust data (%s): %d entries",
                    "replace" if replace else "merge", len(snapshot.entries))
        return len(snapshot.entries)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, callback: TrustSubscriber) -> Callable[[], None]:
        """Register for TrustChangeEvents. Returns an unsubscribe function."""
        self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: TrustSubscriber) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass
