"""
Coordinator for specd.

The only writer of the document store. For one specification, advance()
picks the legal role, spawns a single worker session against a read-only
snapshot, records the session's report, applies its proposals, asks the
gate what the report means and performs the resulting transition.

Sessions on different specifications may run in parallel (advance_many);
on one specification they are serialized by a flock lease.
"""

import concurrent.futures
import logging
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from specd import clarifications, gate, notifications, registry
from specd.gate import GateDecision, Outcome
from specd.lib.agents_config import AgentsConfig, load_agents_config
from specd.lib.config import SpecdConfig
from specd.lib.errors import (
    CapabilityViolationError,
    InfrastructureError,
    InvalidTransitionError,
    LeaseHeldError,
    MissingArtifactError,
    ProtocolError,
    SessionCancelled,
)
from specd.registry import RoleDefinition
from specd.runner.locking import is_leased, lease_file, spec_lease
from specd.runner.session import Snapshot, WorkerSession, take_snapshot
from specd.runner.workers import build_worker
from specd.store import fsm
from specd.store.documents import DocumentStore, ReadOnlyStore
from specd.store.models import (
    ArtifactKind,
    Report,
    ReportStatus,
    SpecStatus,
    Specification,
)

logger = logging.getLogger(__name__)


class Action(Enum):
    CONTINUE = "continue"  # more automatic work is possible
    AWAIT_APPROVAL = "await_approval"
    DONE = "done"  # locked
    WAIT = "wait"  # depends on unfinished specifications
    STOP = "stop"
    FAIL = "fail"
    CLARIFY = "clarify"
    STALLED = "stalled"
    BUSY = "busy"


@dataclass(frozen=True)
class NextAction:
    """What advance() did and what should happen next."""
    spec_id: str
    action: Action
    status: Optional[SpecStatus] = None
    role: Optional[str] = None
    reason: str = ""
    outcome: Optional[str] = None  # gate outcome, when a report was evaluated
    report_id: Optional[str] = None
    transitioned: bool = False
    missing: tuple = ()
    clarification: Optional[str] = None
    error_reason: Optional[str] = None  # reason code of the rejection behind a CLARIFY

    @property
    def progressed(self) -> bool:
        return self.transitioned or self.action == Action.CONTINUE

    def to_dict(self) -> dict:
        return {
            "spec_id": self.spec_id,
            "action": self.action.value,
            "status": self.status.value if self.status else None,
            "role": self.role,
            "reason": self.reason,
            "outcome": self.outcome,
            "report_id": self.report_id,
            "transitioned": self.transitioned,
            "missing": list(self.missing),
            "clarification": self.clarification,
            "error_reason": self.error_reason,
        }


_OUTCOME_ACTIONS = {
    Outcome.GO: Action.CONTINUE,
    Outcome.STOP: Action.STOP,
    Outcome.CLARIFY: Action.CLARIFY,
    Outcome.FAIL: Action.FAIL,
}


class Coordinator:
    """Drives specifications through their lifecycle."""

    def __init__(
        self,
        store: DocumentStore,
        config: SpecdConfig,
        agents: Optional[AgentsConfig] = None,
        worker_factory: Optional[Callable[[RoleDefinition], object]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.config = config
        self.agents = agents if agents is not None else load_agents_config(config.root)
        self.view = ReadOnlyStore(store)
        self.worker_factory = worker_factory or (
            lambda role: build_worker(role, self.agents, config.session_timeout)
        )
        self._sleep = sleep
        self._active: dict[str, WorkerSession] = {}
        self._active_lock = threading.Lock()

    # ── helpers ──────────────────────────────────────────────────────────

    def _log(self, spec_id: str, event: str, **fields) -> None:
        try:
            self.store.log_decision(spec_id, {"event": event, **fields})
        except InfrastructureError as e:
            logger.error(f"[COORD] {spec_id}: could not log decision '{event}': {e}")

    def _result(self, next_action: NextAction) -> NextAction:
        fields = next_action.to_dict()
        self._log(fields.pop("spec_id"), "advance", **fields)
        return next_action

    def _raise_clarification(self, spec_id: str, question: str, source: str,
                             context: str = "", report_id: str = None,
                             missing: Iterable[str] = ()) -> str:
        clq = clarifications.create_clarification(self.store.spec_dir(spec_id), {
            "question": question,
            "context": context,
            "source": source,
            "report_id": report_id,
            "missing": list(missing),
            # stalls are cleared with unstall, not by answering
            "urgency": "non-blocking" if source == "stalled" else "blocking",
        })
        if self.config.notify:
            notifications.notify_event(spec_id, "stalled" if source == "stalled" else "clarify", question)
        return clq.id

    def _backoff_delay(self, attempt: int) -> float:
        return min(self.config.retry_max_delay, self.config.retry_base_delay * (2 ** (attempt - 1)))

    def active_sessions(self) -> dict[str, str]:
        """spec_id -> role of sessions running in this process."""
        with self._active_lock:
            return {spec_id: s.role.name for spec_id, s in self._active.items()}

    # ── advance ──────────────────────────────────────────────────────────

    def advance(self, spec_id: str) -> NextAction:
        """Run at most one worker session for spec_id and apply its outcome."""
        self.store.get_specification(spec_id)
        try:
            with spec_lease(self.config.root, spec_id, timeout=self.config.lease_timeout):
                return self._advance_with_retries(spec_id)
        except LeaseHeldError:
            logger.info(f"[COORD] {spec_id}: busy, another session holds the lease")
            return NextAction(spec_id, Action.BUSY, reason="another session is active")

    def _advance_with_retries(self, spec_id: str) -> NextAction:
        attempts = self.config.retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                return self._advance_once(spec_id)
            except InfrastructureError as e:
                if attempt == attempts:
                    return self._stall(spec_id, f"infrastructure unavailable after {attempts} attempt(s): {e}")
                delay = self._backoff_delay(attempt)
                logger.warning(f"[COORD] {spec_id}: {e}; retry {attempt}/{attempts - 1} in {delay:.1f}s")
                self._sleep(delay)
        raise AssertionError("unreachable")

    def _stall(self, spec_id: str, reason: str) -> NextAction:
        self.store.mark_stalled(spec_id, reason)
        clq_id = self._raise_clarification(spec_id, reason, "stalled")
        status = self.store.get_specification(spec_id).status
        return self._result(NextAction(spec_id, Action.STALLED, status, reason=reason, clarification=clq_id))

    def _unfinished_dependencies(self, spec: Specification) -> list[str]:
        pending = []
        for dep in spec.depends_on:
            if self.store.get_specification(dep).status not in (SpecStatus.COMPLETED, SpecStatus.LOCKED):
                pending.append(dep)
        return pending

    def _already_covered(self, spec_id: str, role: RoleDefinition, snapshot: Snapshot,
                         statuses: tuple) -> bool:
        """True if the role's last report had one of statuses for this exact snapshot."""
        reports = self.store.list_reports(spec_id, role.name)
        if not reports:
            return False
        last = reports[-1]
        return last.status in statuses and last.snapshot_digest == snapshot.digest

    def _advance_once(self, spec_id: str) -> NextAction:
        spec = self.store.get_specification(spec_id)

        if spec.status == SpecStatus.COMPLETED:
            spec = self.store.transition(spec_id, SpecStatus.COMPLETED, SpecStatus.LOCKED)
        if spec.status == SpecStatus.LOCKED:
            return NextAction(spec_id, Action.DONE, spec.status, reason="locked")
        if spec.is_stalled:
            return NextAction(spec_id, Action.STALLED, spec.status, reason=spec.stalled.get("reason", ""))

        if self.store.abort_requested(spec_id):
            logger.info(f"[COORD] {spec_id}: clearing abort request left by an idle session")
            self.store.clear_abort(spec_id)

        spec_dir = self.store.spec_dir(spec_id)
        blocking = clarifications.get_blocking_clarifications(spec_dir)
        if blocking:
            ids = ", ".join(c.id for c in blocking)
            return NextAction(spec_id, Action.CLARIFY, spec.status,
                              reason=f"awaiting operator: {ids}", clarification=blocking[0].id)

        if spec.status == SpecStatus.APPROVED:
            pending = self._unfinished_dependencies(spec)
            if pending:
                return NextAction(spec_id, Action.WAIT, spec.status,
                                  reason=f"waiting on {', '.join(pending)}", missing=tuple(pending))

        answered = [asdict(c) for c in clarifications.get_answered_clarifications(spec_dir)]

        chosen = None
        for role in registry.roles_for(spec.status):
            snapshot = take_snapshot(self.view, spec_id, role, answered)
            if self._already_covered(spec_id, role, snapshot, (ReportStatus.BLOCKED,)):
                return self._result(NextAction(
                    spec_id, Action.CLARIFY, spec.status, role=role.name,
                    reason=f"{role.name} was blocked on this exact snapshot; answer or change it first",
                    error_reason=CapabilityViolationError.reason,
                ))
            skippable = role.name == registry.DOCUMENTATION or (
                role.name == registry.REVIEW and spec.status == SpecStatus.IN_REVIEW
            )
            if skippable and self._already_covered(spec_id, role, snapshot, (ReportStatus.GO, ReportStatus.COMPLETED)):
                logger.debug(f"[COORD] {spec_id}: {role.name} already passed on this snapshot")
                continue
            chosen = (role, snapshot)
            break

        if chosen is None:
            if spec.status == SpecStatus.IN_REVIEW:
                return NextAction(spec_id, Action.AWAIT_APPROVAL, spec.status, reason="reviewed, run 'specd approve'")
            return NextAction(spec_id, Action.CLARIFY, spec.status, reason="no role can act in this status")

        role, snapshot = chosen
        if role.name == registry.IMPLEMENTATION and spec.status == SpecStatus.APPROVED:
            self.store.transition(spec_id, SpecStatus.APPROVED, SpecStatus.IN_PROGRESS)
            snapshot = take_snapshot(self.view, spec_id, role, answered)

        return self._spawn(spec_id, role, snapshot)

    def _spawn(self, spec_id: str, role: RoleDefinition, snapshot: Snapshot) -> NextAction:
        seq = self.store.next_session_seq(spec_id)
        session = WorkerSession(
            role=role,
            spec_id=spec_id,
            snapshot=snapshot,
            worker=self.worker_factory(role),
            seq=seq,
            view=self.view,
            workspace=self.config.workspace,
            agents=self.agents,
        )
        with self._active_lock:
            self._active[spec_id] = session
        self._log(spec_id, "spawn", role=role.name, seq=seq, session_id=session.session_id,
                  snapshot_digest=snapshot.digest)

        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"session-{spec_id}")
        try:
            future = executor.submit(session.run)
            try:
                report = future.result(timeout=self.config.session_timeout)
            except concurrent.futures.TimeoutError:
                session.cancel()
                return self._stall(spec_id, f"{role.name} session timed out after {self.config.session_timeout}s")
            except SessionCancelled:
                self.store.clear_abort(spec_id)
                self._log(spec_id, "aborted", role=role.name, seq=seq, session_id=session.session_id)
                return NextAction(spec_id, Action.STOP, snapshot.status, role=role.name,
                                  reason="session aborted by operator")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            with self._active_lock:
                self._active.pop(spec_id, None)
            session.discard()

        return self.apply_report(report)

    # ── report application ───────────────────────────────────────────────

    def _record_findings_as_learnings(self, report: Report) -> None:
        """Review findings sending a specification back to draft become learnings."""
        proposed = any(p.op == "attach" and p.kind == ArtifactKind.LEARNINGS.value for p in report.proposals)
        if proposed or not report.findings:
            return
        try:
            existing = self.store.read_artifact(report.spec_id, ArtifactKind.LEARNINGS)
        except ProtocolError:
            existing = "# Learnings\n"
        section = f"\n## Review findings (session {report.seq})\n\n{report.findings.strip()}\n"
        self.store.attach_artifact(report.spec_id, ArtifactKind.LEARNINGS, existing.rstrip("\n") + "\n" + section)

    def apply_report(self, report: Report) -> NextAction:
        """Record a report, apply its proposals once, and act on the gate decision.

        Reports are applied in spawn order. One that was already recorded,
        or whose seq is not newer than the last applied one, is a no-op: its
        proposals are ignored and it never moves the specification.
        """
        spec_id = report.spec_id
        duplicate = self.store.has_report(spec_id, report.report_id)
        if not duplicate:
            self.store.record_report(report)
        fresh = not duplicate and self.store.mark_applied(spec_id, report.seq)

        if report.status == ReportStatus.BLOCKED:
            logger.error(f"[COORD] {spec_id}: {report.role} blocked: {report.violation}")
            self._log(spec_id, "capability_violation", role=report.role, report_id=report.report_id,
                      violation=report.violation)
        elif fresh:
            try:
                self.store.apply_proposals(spec_id, report.proposals)
            except ProtocolError as e:
                logger.warning(f"[COORD] {spec_id}: proposals rejected: {e}")
                return self._clarify(report, f"proposal rejected: {e}", e.to_dict().get("missing", ()), fresh,
                                     error_reason=e.reason)
        else:
            logger.info(f"[COORD] {spec_id}: report {report.report_id} already applied or superseded, ignored")

        spec = self.store.get_specification(spec_id)
        decision = gate.evaluate(report, spec)
        logger.info(
            f"[GATE] {spec_id}: {report.role}/{report.status.value} -> {decision.outcome.value}"
            + (f" -> {decision.target.value}" if decision.target else "")
            + f" ({decision.reason})"
        )
        self._log(spec_id, "gate", report_id=report.report_id, **decision.to_dict())

        if report.status == ReportStatus.BLOCKED:
            return self._clarify(report, decision.reason, (), fresh, source="violation",
                                 error_reason=CapabilityViolationError.reason)

        if not fresh:
            return self._result(NextAction(
                spec_id, _OUTCOME_ACTIONS[decision.outcome], spec.status, role=report.role,
                reason=f"report {report.report_id} already applied or superseded",
                outcome=decision.outcome.value, report_id=report.report_id,
            ))

        transitioned = False
        status = spec.status
        if decision.target is not None:
            if decision.target == SpecStatus.DRAFT:
                self._record_findings_as_learnings(report)
            try:
                status = self.store.transition(spec_id, report.observed_status, decision.target).status
                transitioned = True
                if status == SpecStatus.COMPLETED:
                    status = self.store.transition(spec_id, SpecStatus.COMPLETED, SpecStatus.LOCKED).status
            except (MissingArtifactError, InvalidTransitionError) as e:
                logger.warning(f"[COORD] {spec_id}: {e}")
                missing = e.missing if isinstance(e, MissingArtifactError) else ()
                return self._clarify(report, str(e), missing, fresh, decision=decision, error_reason=e.reason)

        if transitioned or decision.outcome == Outcome.GO:
            self.store.clear_stalled(spec_id)

        return self._finish(report, decision, status, transitioned)

    def _clarify(self, report: Report, reason: str, missing: Iterable[str], fresh: bool,
                 source: str = "clarify", decision: GateDecision = None,
                 error_reason: str = None) -> NextAction:
        clq_id = None
        if fresh:
            clq_id = self._raise_clarification(
                report.spec_id, reason, source,
                context=report.findings, report_id=report.report_id, missing=missing,
            )
        status = self.store.get_specification(report.spec_id).status
        return self._result(NextAction(
            report.spec_id, Action.CLARIFY, status, role=report.role, reason=reason,
            outcome=(decision.outcome.value if decision else Outcome.CLARIFY.value),
            report_id=report.report_id, missing=tuple(missing), clarification=clq_id,
            error_reason=error_reason,
        ))

    def _finish(self, report: Report, decision: GateDecision, status: SpecStatus,
                transitioned: bool) -> NextAction:
        spec_id = report.spec_id
        action = _OUTCOME_ACTIONS[decision.outcome]
        clq_id = None

        if status == SpecStatus.LOCKED:
            action = Action.DONE
            if self.config.notify:
                notifications.notify_event(spec_id, "locked")
        elif decision.outcome == Outcome.GO and status == SpecStatus.IN_REVIEW and not transitioned:
            action = Action.AWAIT_APPROVAL
            if self.config.notify:
                notifications.notify_event(spec_id, "awaiting_approval")
        elif decision.outcome == Outcome.CLARIFY:
            clq_id = self._raise_clarification(spec_id, decision.reason, "clarify",
                                               context=report.findings, report_id=report.report_id)

        return self._result(NextAction(
            spec_id, action, status, role=report.role, reason=decision.reason,
            outcome=decision.outcome.value, report_id=report.report_id,
            transitioned=transitioned, missing=decision.missing, clarification=clq_id,
        ))

    # ── operator signals ─────────────────────────────────────────────────

    def approve(self, spec_id: str) -> Specification:
        """Operator approval: draft or in_review -> approved.

        Raises:
            InvalidTransitionError: from any other status
            MissingArtifactError: without requirements
            LeaseHeldError: while a session is running on the specification
        """
        self.store.get_specification(spec_id)
        with spec_lease(self.config.root, spec_id, timeout=self.config.lease_timeout):
            spec = self.store.get_specification(spec_id)
            spec = self.store.transition(spec_id, spec.status, SpecStatus.APPROVED, actor=fsm.ACTOR_OPERATOR)
        self._log(spec_id, "approve", actor=fsm.ACTOR_OPERATOR)
        return spec

    def abort(self, spec_id: str) -> bool:
        """Cancel the running session on spec_id. False if none was running."""
        self.store.get_specification(spec_id)
        with self._active_lock:
            session = self._active.get(spec_id)
        if session is not None:
            session.cancel()
            self._log(spec_id, "abort", scope="in-process", session_id=session.session_id)
            return True

        if is_leased(lease_file(self.config.root, spec_id)):
            self.store.request_abort(spec_id)
            self._log(spec_id, "abort", scope="requested")
            return True
        return False

    def unstall(self, spec_id: str) -> bool:
        cleared = self.store.clear_stalled(spec_id)
        if cleared:
            self._log(spec_id, "unstall", actor=fsm.ACTOR_OPERATOR)
        return cleared

    def advance_many(self, spec_ids: Iterable[str]) -> list[NextAction]:
        """Advance several specifications in parallel, each at most once."""
        unique = list(dict.fromkeys(spec_ids))
        if not unique:
            return []
        workers = min(self.config.max_parallel, len(unique))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="advance") as pool:
            return list(pool.map(self.advance, unique))

    def open_specifications(self) -> list[str]:
        """Ids of specifications that are not locked."""
        return [s.id for s in self.store.list_specifications() if s.status != SpecStatus.LOCKED]

    def status(self, spec_id: str) -> dict:
        """Everything an operator needs to see about one specification."""
        spec = self.store.get_specification(spec_id)
        done, total = spec.task_progress()
        spec_dir = self.store.spec_dir(spec_id)

        edges = {}
        for source, dest in fsm.EDGES:
            if source == spec.status.value:
                edges[dest] = {
                    "actor": fsm.edge_actor(source, dest),
                    "missing": self.store.missing_for(spec, spec.status, SpecStatus(dest)),
                }

        reports = self.store.list_reports(spec_id)
        return {
            "id": spec.id,
            "title": spec.title,
            "status": spec.status.value,
            "tags": spec.tags,
            "depends_on": spec.depends_on,
            "stalled": spec.stalled,
            "tasks": {"done": done, "total": total},
            "artifacts": sorted(k.value for k in spec.artifacts),
            "features": list(spec.features),
            "roles": [r.name for r in registry.roles_for(spec.status)],
            "transitions": edges,
            "pending_clarifications": [c.id for c in clarifications.get_pending_clarifications(spec_dir)],
            "active_role": self.active_sessions().get(spec_id),
            "sessions": spec.session_seq,
            "last_report": reports[-1].to_dict() if reports else None,
        }
