"""
Worker sessions for specd.

A session binds one role to one specification and a read-only snapshot of
its documents, runs a worker, and produces exactly one Report. Workers
never touch the store: every write is staged as a proposal, and only the
coordinator applies proposals, after it has accepted the report.

Lifecycle: created -> executing -> reported -> discarded (or cancelled).
"""

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from specd.lib.agents_config import AgentsConfig, CheckSpec
from specd.lib.errors import (
    CapabilityViolationError,
    ConsistencyError,
    ProtocolError,
    SessionCancelled,
)
from specd.registry import Capability, RoleDefinition, can_remove
from specd.runner.checks import run_check
from specd.store.documents import ReadOnlyStore, digest_documents
from specd.store.models import (
    ArtifactKind,
    CheckResult,
    Mismatch,
    Proposal,
    Report,
    ReportStatus,
    SpecStatus,
)

logger = logging.getLogger(__name__)


class SessionState(Enum):
    CREATED = "created"
    EXECUTING = "executing"
    REPORTED = "reported"
    DISCARDED = "discarded"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Snapshot:
    """What a session sees of its specification, frozen at spawn time."""
    spec_id: str
    title: str
    status: SpecStatus
    documents: dict  # document key -> content
    tasks: tuple  # task dicts
    clarifications: tuple = ()  # answered clarifications as dicts
    digest: str = ""

    def to_dict(self) -> dict:
        return {
            "spec_id": self.spec_id,
            "title": self.title,
            "status": self.status.value,
            "documents": dict(self.documents),
            "tasks": list(self.tasks),
            "clarifications": list(self.clarifications),
        }


def take_snapshot(view: ReadOnlyStore, spec_id: str, role: RoleDefinition,
                  clarifications: list[dict] = ()) -> Snapshot:
    """Read everything role may see of spec_id into an immutable snapshot."""
    spec = view.get_specification(spec_id)
    documents = view.read_documents(spec_id, role.reads)
    tasks = tuple(t.to_dict() for t in spec.tasks)
    answered = tuple(clarifications)

    digest_input = dict(documents)
    digest_input["#status"] = spec.status.value
    digest_input["#tasks"] = json.dumps(tasks, sort_keys=True)
    digest_input["#clarifications"] = json.dumps(answered, sort_keys=True)

    return Snapshot(
        spec_id=spec_id,
        title=spec.title,
        status=spec.status,
        documents=documents,
        tasks=tasks,
        clarifications=answered,
        digest=digest_documents(digest_input),
    )


@dataclass
class WorkerResult:
    """What a worker hands back; the session turns it into a Report."""
    status: ReportStatus
    findings: str = ""
    mismatches: list = field(default_factory=list)
    checks: list = field(default_factory=list)


class Worker:
    """Base class for session workers."""
    name = "worker"

    def run(self, ctx: "SessionContext") -> WorkerResult:
        raise NotImplementedError


class SessionContext:
    """The only handle a worker gets. Every call is checked against the role."""

    def __init__(self, session: "WorkerSession"):
        self._session = session

    @property
    def role(self) -> RoleDefinition:
        return self._session.role

    @property
    def spec_id(self) -> str:
        return self._session.spec_id

    @property
    def snapshot(self) -> Snapshot:
        return self._session.snapshot

    @property
    def workspace(self) -> Path:
        return self._session.workspace

    @property
    def agents(self) -> AgentsConfig:
        return self._session.agents

    def _require(self, capability: Capability, action: str) -> None:
        self._session.ensure_active()
        if not self.role.has(capability):
            raise CapabilityViolationError(self.role.name, action, f"requires {capability.value}")

    def read_artifact(self, kind: ArtifactKind, name: Optional[str] = None) -> str:
        """Fresh read of an artifact the role is allowed to see."""
        self._require(Capability.READ, f"read {kind.value}")
        if kind not in self.role.reads:
            raise CapabilityViolationError(self.role.name, f"read {kind.value}", "not in the role's read set")
        return self._session.view.read_artifact(self.spec_id, kind, name)

    def read_documents(self) -> dict[str, str]:
        """Fresh read of every document in the role's read set."""
        self._require(Capability.READ, "read documents")
        return self._session.view.read_documents(self.spec_id, self.role.reads)

    def propose_artifact(self, kind: ArtifactKind, content: str, name: Optional[str] = None) -> None:
        self._require(Capability.WRITE_ARTIFACT, f"write {kind.value}")
        if not self.role.can_write(kind):
            raise CapabilityViolationError(self.role.name, f"write {kind.value}", "not in the role's write set")
        self._session.stage(Proposal(op="attach", kind=kind.value, name=name, content=content))

    def propose_removal(self, kind: ArtifactKind, name: Optional[str] = None) -> None:
        self._require(Capability.MUTATE_DOCUMENT, f"remove {kind.value}")
        if not can_remove(self.role, kind):
            raise CapabilityViolationError(self.role.name, f"remove {kind.value}", "kind is not removable by this role")
        self._session.stage(Proposal(op="remove", kind=kind.value, name=name))

    def complete_task(self, task_id: str) -> None:
        self._require(Capability.MUTATE_DOCUMENT, f"complete task {task_id}")
        self._session.stage(Proposal(op="complete_task", task_id=task_id))

    def run_check(self, check: CheckSpec) -> CheckResult:
        self._require(Capability.RUN_CHECKS, f"run check {check.name}")
        return self._session.check_runner(check, self.workspace, self.agents.overrides)

    def transition(self, to_status: SpecStatus) -> None:
        """Workers never move a specification; only the coordinator does."""
        self._session.ensure_active()
        raise CapabilityViolationError(
            self.role.name, f"transition to {to_status.value}", "only the coordinator transitions"
        )

    def spawn(self, role_name: str) -> None:
        self._session.ensure_active()
        raise CapabilityViolationError(self.role.name, f"spawn {role_name}", "requires spawn")


class WorkerSession:
    """One worker run against one specification."""

    def __init__(
        self,
        role: RoleDefinition,
        spec_id: str,
        snapshot: Snapshot,
        worker: Worker,
        seq: int,
        view: ReadOnlyStore,
        workspace: Path,
        agents: Optional[AgentsConfig] = None,
        check_runner: Optional[Callable[[CheckSpec, Path, frozenset], CheckResult]] = None,
    ):
        if role.has(Capability.SPAWN):
            raise CapabilityViolationError(role.name, "run as a worker session", "role holds spawn")
        self.session_id = uuid.uuid4().hex[:12]
        self.role = role
        self.spec_id = spec_id
        self.snapshot = snapshot
        self.worker = worker
        self.seq = seq
        self.view = view
        self.workspace = Path(workspace)
        self.agents = agents or AgentsConfig()
        self.check_runner = check_runner or run_check
        self.state = SessionState.CREATED
        self._proposals: list[Proposal] = []
        self._cancelled = threading.Event()
        self._lock = threading.Lock()

    @property
    def proposals(self) -> tuple:
        with self._lock:
            return tuple(self._proposals)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def ensure_active(self) -> None:
        """Raise SessionCancelled once the session was cancelled or aborted."""
        if not self._cancelled.is_set() and self.view.abort_requested(self.spec_id):
            self.cancel()
        if self._cancelled.is_set():
            raise SessionCancelled(f"Session {self.session_id} for {self.spec_id} was cancelled")

    def stage(self, proposal: Proposal) -> None:
        with self._lock:
            if self._cancelled.is_set():
                raise SessionCancelled(f"Session {self.session_id} was cancelled")
            self._proposals.append(proposal)

    def cancel(self) -> None:
        """Stop the session; staged proposals are dropped and never applied."""
        with self._lock:
            self._cancelled.set()
            self._proposals.clear()
            self.state = SessionState.CANCELLED
        logger.info(f"[SESSION] {self.session_id} ({self.role.name}, {self.spec_id}) cancelled")

    def discard(self) -> None:
        with self._lock:
            self._proposals.clear()
            if self.state != SessionState.CANCELLED:
                self.state = SessionState.DISCARDED

    def run(self) -> Report:
        """Execute the worker and build the session's single report.

        Raises:
            SessionCancelled: if the session was cancelled while running
            InfrastructureError: store or tool unavailable (retryable)
        """
        if self.state != SessionState.CREATED:
            raise RuntimeError(f"Session {self.session_id} already ran ({self.state.value})")
        self.state = SessionState.EXECUTING
        started = datetime.now().isoformat()
        logger.info(f"[SESSION] {self.session_id}: {self.role.name} on {self.spec_id} (seq {self.seq})")

        violation = None
        mismatches: list = []
        checks: list = []
        rejected = False
        try:
            result = self.worker.run(SessionContext(self))
            status, findings = result.status, result.findings
            mismatches, checks = list(result.mismatches), list(result.checks)
        except CapabilityViolationError as e:
            logger.error(f"[SESSION] {self.session_id}: capability violation: {e}")
            status, findings, violation = ReportStatus.BLOCKED, str(e), e.to_dict()
        except ConsistencyError as e:
            logger.warning(f"[SESSION] {self.session_id}: {e}")
            status, findings, mismatches = ReportStatus.STOP, str(e), e.mismatches
        except ProtocolError as e:
            # staged proposals are dropped with the rejected request
            logger.warning(f"[SESSION] {self.session_id}: {e.reason}: {e}")
            status, findings, rejected = ReportStatus.CLARIFY, f"{e.reason}: {e}", True

        self.ensure_active()

        with self._lock:
            if rejected or status == ReportStatus.BLOCKED:
                self._proposals.clear()
            proposals = tuple(self._proposals)
            report = Report(
                report_id=uuid.uuid4().hex[:12],
                session_id=self.session_id,
                seq=self.seq,
                spec_id=self.spec_id,
                role=self.role.name,
                status=status,
                observed_status=self.snapshot.status,
                findings=findings,
                mismatches=tuple(m if isinstance(m, Mismatch) else Mismatch(**m) for m in mismatches),
                checks=tuple(checks),
                proposals=proposals,
                violation=violation,
                snapshot_digest=self.snapshot.digest,
                started=started,
                ended=datetime.now().isoformat(),
            )
            self.state = SessionState.REPORTED

        logger.info(f"[SESSION] {self.session_id}: reported {status.value}")
        return report
