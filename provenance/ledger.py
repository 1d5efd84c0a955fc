"""
Ledger Store

Append-only, hash-linked sequence of LedgerEntry records plus the
DecisionRecord index those entries narrate. Every write returns the new
entry so callers can reference it downstream.

The store is the single writer of the chain: reading the tail hash and
inserting the next entry happen under one lock, so two concurrent appends
can never link to the same previous_hash.
"""

from __future__ import annotations

import asyncio
import json
import threading
from collections import Counter
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, Iterator, Optional
from uuid import uuid4

import structlog
from pydantic import ValidationError as SchemaError

from provenance import config
from provenance.checksum import canonical_json, digest
from provenance.errors import (
    IntegrityViolationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from provenance.models import (
    GENESIS_HASH,
    AuditStatus,
    ChainVerificationResult,
    ComplianceFramework,
    DecisionRecord,
    LedgerEntry,
    LedgerEventType,
    LedgerMetrics,
    LedgerSnapshot,
    SensitivityLevel,
    Vote,
    utcnow,
)
from provenance.persistence import SnapshotStore
from provenance.signing import Attestor

log = structlog.get_logger(__name__)


class LedgerStore:
    """
    Owner of the chain.

    Args:
        persistence:   Snapshot backend; None keeps everything in memory.
        hasher:        bytes -> hex digest used for chain links.
        clock:         Returns the current UTC datetime.
        reject_orphans: When True, appends for unknown decision ids raise
                        NotFoundError instead of being stored unlinked.
        snapshot_key:  Key under which the snapshot blob is saved.
    """

    def __init__(
        self,
        persistence: SnapshotStore | None = None,
        hasher: Callable[[bytes], str] = digest,
        clock: Callable[[], datetime] = utcnow,
        reject_orphans: bool = config.LEDGER_REJECT_ORPHANS,
        snapshot_key: str = config.LEDGER_SNAPSHOT_KEY,
        retention_period_days: int = config.RETENTION_PERIOD_DAYS,
    ):
        self._persistence = persistence
        self._hasher = hasher
        self._clock = clock
        self.reject_orphans = reject_orphans
        self._snapshot_key = snapshot_key
        self._retention_period_days = retention_period_days

        self._entries: dict[str, LedgerEntry] = {}
        self._order: list[str] = []
        self._decisions: dict[str, DecisionRecord] = {}
        self._sequence = 0

        self._lock = threading.RLock()
        self._depth = 0
        self._dirty = False

        self._load()

    # ------------------------------------------------------------------
    # Snapshot load / save
    # ------------------------------------------------------------------

    def _load(self) -> None:
        if self._persistence is None:
            return
        try:
            raw = self._persistence.load(self._snapshot_key)
        except PersistenceError as exc:
            log.error("ledger_load_failed", key=self._snapshot_key, error=str(exc))
            return
        if raw is None:
            return
        try:
            snapshot = LedgerSnapshot.model_validate(raw)
        except SchemaError as exc:
            log.error("ledger_snapshot_invalid", key=self._snapshot_key, error=str(exc))
            return

        entries = sorted(snapshot.entries, key=lambda e: e.sequence)
        self._entries = {e.id: e for e in entries}
        self._order = [e.id for e in entries]
        self._decisions = {d.id: d for d in snapshot.decisions}
        tail = entries[-1].sequence if entries else 0
        self._sequence = max(snapshot.sequence, tail)
        log.info(
            "ledger_loaded",
            entries=len(self._entries),
            decisions=len(self._decisions),
            sequence=self._sequence,
        )

    def _snapshot(self) -> dict[str, Any]:
        snapshot = LedgerSnapshot(
            sequence=self._sequence,
            entries=[self._entries[i] for i in self._order],
            decisions=list(self._decisions.values()),
        )
        return snapshot.model_dump(mode="json")

    def _persist(self) -> None:
        self._dirty = False
        if self._persistence is None:
            return
        try:
            self._persistence.save(self._snapshot_key, self._snapshot())
        except PersistenceError as exc:
            # Availability over durability: keep serving from memory.
            log.error("ledger_save_failed", key=self._snapshot_key, error=str(exc))

    @contextmanager
    def transaction(self) -> Iterator["LedgerStore"]:
        """
        Hold the writer lock across several mutations.

        The snapshot is saved once, when the outermost transaction exits.
        """
        with self._lock:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
                if self._depth == 0 and self._dirty:
                    self._persist()

    def _touch(self) -> None:
        self._dirty = True
        if self._depth == 0:
            self._persist()

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    def compute_entry_hash(self, entry: LedgerEntry) -> str:
        """Recompute *entry*'s chain hash from its canonical fields."""
        return self._hasher(canonical_json(entry.hash_material()).encode("utf-8"))

    def _tail_hash(self) -> str:
        if not self._order:
            return GENESIS_HASH
        return self._entries[self._order[-1]].hash

    @property
    def sequence(self) -> int:
        return self._sequence

    def now(self) -> datetime:
        """Current time from the injected clock."""
        return self._clock()

    # ------------------------------------------------------------------
    # Entry creation
    # ------------------------------------------------------------------

    def append(
        self,
        event_type: LedgerEventType,
        decision_id: str,
        title: str,
        description: str,
        data: Optional[dict[str, Any]] = None,
        *,
        organization_id: str = "default",
        user_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        confidence_score: Optional[float] = None,
        vote: Optional[Vote] = None,
        vote_weight: Optional[float] = None,
        compliance_frameworks: Optional[list[ComplianceFramework]] = None,
        sensitivity_level: SensitivityLevel = SensitivityLevel.INTERNAL,
        pii_involved: bool = False,
    ) -> LedgerEntry:
        """
        Append one entry to the chain and return a copy of it.

        The data payload is normalised through canonical JSON first so the
        stored form hashes identically before and after a snapshot round
        trip.
        """
        payload = json.loads(canonical_json(data or {}))

        with self.transaction():
            decision = self._decisions.get(decision_id)
            if decision is None and self.reject_orphans:
                raise NotFoundError("decision", decision_id)

            sequence = self._sequence + 1
            entry = LedgerEntry(
                id=f"entry-{uuid4().hex}",
                sequence=sequence,
                timestamp=self._clock(),
                event_type=event_type,
                decision_id=decision_id,
                organization_id=organization_id,
                user_id=user_id,
                agent_id=agent_id,
                title=title,
                description=description,
                data=payload,
                confidence_score=confidence_score,
                vote=vote,
                vote_weight=vote_weight,
                previous_hash=self._tail_hash(),
                compliance_frameworks=list(compliance_frameworks or []),
                retention_period_days=self._retention_period_days,
                sensitivity_level=sensitivity_level,
                pii_involved=pii_involved,
            )
            entry.hash = self.compute_entry_hash(entry)

            # Fully built: publish it.
            self._sequence = sequence
            self._entries[entry.id] = entry
            self._order.append(entry.id)

            if decision is not None:
                decision.ledger_entries.append(entry.id)
                if not decision.first_entry_hash:
                    decision.first_entry_hash = entry.hash
                decision.latest_entry_hash = entry.hash

            self._touch()

        log.debug(
            "ledger_entry_appended",
            entry_id=entry.id,
            sequence=entry.sequence,
            event_type=entry.event_type.value,
            decision_id=decision_id,
            orphan=decision is None,
        )
        return entry.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Decision index
    # ------------------------------------------------------------------

    def register_decision(self, decision: DecisionRecord) -> None:
        """Add a new DecisionRecord to the index. Ids must be unique."""
        with self.transaction():
            if decision.id in self._decisions:
                raise ValidationError(f"Decision {decision.id} already exists")
            self._decisions[decision.id] = decision
            self._touch()

    def decision_for_update(self, decision_id: str) -> DecisionRecord:
        """
        Live DecisionRecord for mutation inside ``transaction()``.

        Raises NotFoundError for unknown ids.
        """
        decision = self._decisions.get(decision_id)
        if decision is None:
            raise NotFoundError("decision", decision_id)
        return decision

    def mark_dirty(self) -> None:
        """Schedule a snapshot save after an in-place decision mutation."""
        with self._lock:
            self._touch()

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _ordered_entries(self) -> list[LedgerEntry]:
        with self._lock:
            return [self._entries[i] for i in self._order]

    def verify_chain(self, cancel: threading.Event | None = None) -> ChainVerificationResult:
        """
        Walk the chain from genesis, checking linkage and recomputing hashes.

        Reports the first divergence and stops; nothing is repaired. A set
        *cancel* event interrupts the walk between entries.
        """
        entries = self._ordered_entries()
        if not entries:
            return ChainVerificationResult(
                valid=True, entries_checked=0, message="Empty chain is valid",
            )

        previous_hash = GENESIS_HASH
        for i, entry in enumerate(entries):
            if cancel is not None and cancel.is_set():
                return ChainVerificationResult(
                    valid=False,
                    entries_checked=i,
                    message=f"Verification cancelled after {i} entries",
                    cancelled=True,
                )

            if entry.previous_hash != previous_hash:
                log.warning("chain_linkage_broken", sequence=entry.sequence, entry_id=entry.id)
                return ChainVerificationResult(
                    valid=False,
                    entries_checked=i,
                    broken_at=entry.sequence,
                    broken_entry_id=entry.id,
                    message=f"Chain broken at sequence {entry.sequence}: previous_hash mismatch",
                )

            if entry.hash != self.compute_entry_hash(entry):
                log.warning("chain_hash_mismatch", sequence=entry.sequence, entry_id=entry.id)
                return ChainVerificationResult(
                    valid=False,
                    entries_checked=i,
                    broken_at=entry.sequence,
                    broken_entry_id=entry.id,
                    message=f"Chain broken at sequence {entry.sequence}: hash verification failed",
                )

            previous_hash = entry.hash

        return ChainVerificationResult(
            valid=True,
            entries_checked=len(entries),
            message=f"All {len(entries)} entries verified successfully",
        )

    def assert_chain_valid(self) -> ChainVerificationResult:
        """verify_chain(), raising IntegrityViolationError on a broken chain."""
        result = self.verify_chain()
        if not result.valid:
            raise IntegrityViolationError(
                result.message,
                sequence=result.broken_at,
                entry_id=result.broken_entry_id,
            )
        return result

    def verify_entry(self, entry_id: str, verified_by: str = "system") -> bool:
        """Recompute one entry's hash; mark it verified on success."""
        with self.transaction():
            entry = self._entries.get(entry_id)
            if entry is None:
                return False

            valid = entry.hash == self.compute_entry_hash(entry)
            if valid and not entry.verified:
                entry.verified = True
                entry.verified_at = self._clock()
                entry.verified_by = verified_by
                self._touch()
            return valid

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: str) -> Optional[LedgerEntry]:
        with self._lock:
            entry = self._entries.get(entry_id)
            return entry.model_copy(deep=True) if entry is not None else None

    def get_all_entries(self) -> list[LedgerEntry]:
        """Every entry, newest first."""
        return [e.model_copy(deep=True) for e in reversed(self._ordered_entries())]

    def get_entries_for_decision(self, decision_id: str) -> list[LedgerEntry]:
        """Entries for one decision in chronological (sequence) order."""
        return [
            e.model_copy(deep=True)
            for e in self._ordered_entries()
            if e.decision_id == decision_id
        ]

    def get_decision(self, decision_id: str) -> Optional[DecisionRecord]:
        with self._lock:
            decision = self._decisions.get(decision_id)
            return decision.model_copy(deep=True) if decision is not None else None

    def get_all_decisions(self) -> list[DecisionRecord]:
        """Every decision, most recently proposed first."""
        with self._lock:
            decisions = [d.model_copy(deep=True) for d in self._decisions.values()]
        return sorted(decisions, key=lambda d: d.proposed_at, reverse=True)

    def search_entries(
        self,
        event_type: Optional[LedgerEventType] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        agent_id: Optional[str] = None,
        compliance_framework: Optional[ComplianceFramework] = None,
        pii_only: bool = False,
    ) -> list[LedgerEntry]:
        """Filter entries (newest first). Every supplied criterion must match."""
        results: list[LedgerEntry] = []
        for entry in self.get_all_entries():
            if event_type is not None and entry.event_type != event_type:
                continue
            if start_date is not None and entry.timestamp < start_date:
                continue
            if end_date is not None and entry.timestamp > end_date:
                continue
            if agent_id is not None and entry.agent_id != agent_id:
                continue
            if (compliance_framework is not None
                    and compliance_framework not in entry.compliance_frameworks):
                continue
            if pii_only and not entry.pii_involved:
                continue
            results.append(entry)
        return results

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_for_audit(self, decision_id: str) -> dict[str, Any]:
        """
        Build a JSON-ready audit report for one decision.

        Contains the whole-chain verification result, the decision snapshot
        (None for entries that belong to no DecisionRecord), its entries in
        order, and the (sequence, hash) list needed to re-derive the
        sub-chain independently.
        """
        with self._lock:
            decision = self.get_decision(decision_id)
            entries = self.get_entries_for_decision(decision_id)
            verification = self.verify_chain()

        if decision is None and not entries:
            raise NotFoundError("decision", decision_id)

        return {
            "exported_at": self._clock().isoformat(),
            "chain_integrity": asdict(verification),
            "decision": decision.model_dump(mode="json") if decision is not None else None,
            "entries": [e.model_dump(mode="json") for e in entries],
            "entry_count": len(entries),
            "hash_chain": [{"sequence": e.sequence, "hash": e.hash} for e in entries],
        }

    async def export_for_audit_signed(
        self,
        decision_id: str,
        attestor: Attestor,
        timeout: float = config.SIGNING_TIMEOUT_SECONDS,
    ) -> dict[str, Any]:
        """
        export_for_audit() plus an attestation over its canonical JSON.

        If the signer does not answer within *timeout* the report is
        returned with ``signature = None``.
        """
        report = self.export_for_audit(decision_id)
        payload = canonical_json(report).encode("utf-8")
        try:
            report["signature"] = await asyncio.wait_for(attestor.sign(payload), timeout)
        except asyncio.TimeoutError:
            log.warning("export_signature_timeout", decision_id=decision_id, timeout=timeout)
            report["signature"] = None
        return report

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def get_metrics(self) -> LedgerMetrics:
        entries = self.get_all_entries()
        decisions = self.get_all_decisions()

        by_type: Counter[str] = Counter()
        by_framework: dict[str, int] = {f.value: 0 for f in ComplianceFramework}
        confidences: list[float] = []
        vetoes = approvals = pii = 0

        for e in entries:
            by_type[e.event_type.value] += 1
            for framework in e.compliance_frameworks:
                by_framework[framework.value] += 1
            if e.confidence_score is not None:
                confidences.append(e.confidence_score)
            if e.vote == Vote.VETO:
                vetoes += 1
            if e.vote == Vote.APPROVE:
                approvals += 1
            if e.pii_involved:
                pii += 1

        pending_audits = sum(
            1
            for d in decisions
            for a in d.audit_history
            if a.status in (AuditStatus.PENDING, AuditStatus.IN_PROGRESS)
        )
        verified = [e.verified_at for e in entries if e.verified_at is not None]
        total = len(entries)

        return LedgerMetrics(
            total_entries=total,
            total_decisions=len(decisions),
            entries_by_type=dict(by_type),
            entries_by_framework=by_framework,
            average_confidence=round(sum(confidences) / len(confidences)) if confidences else 0,
            veto_rate=round(vetoes / total * 100) if total else 0,
            approval_rate=round(approvals / total * 100) if total else 0,
            chain_integrity="valid" if self.verify_chain().valid else "broken",
            last_verified_at=max(verified) if verified else None,
            pii_entries_count=pii,
            pending_audits=pending_audits,
        )
