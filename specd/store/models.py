"""
Data models for the document store.

Specifications and tasks are mutable records owned by the store. Reports,
mismatches, check results and proposals are immutable once created.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class SpecStatus(Enum):
    """Lifecycle status of a specification.

    Values are the strings persisted in meta.json.
    """
    DRAFT = "draft"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    LOCKED = "locked"


IMMUTABLE_STATUSES = frozenset({SpecStatus.COMPLETED, SpecStatus.LOCKED})


class ArtifactKind(Enum):
    REQUIREMENTS = "requirements"
    LEARNINGS = "learnings"
    REPORT = "report"
    VERIFICATION = "verification"
    FEATURE = "feature"  # zero or more, addressed by name
    PROGRESS = "progress"  # ephemeral, must be gone by completion


PERMANENT_KINDS = frozenset({
    ArtifactKind.REQUIREMENTS,
    ArtifactKind.LEARNINGS,
    ArtifactKind.REPORT,
    ArtifactKind.VERIFICATION,
    ArtifactKind.FEATURE,
})
TRANSIENT_KINDS = frozenset({ArtifactKind.PROGRESS})


class ReportStatus(Enum):
    GO = "go"
    STOP = "stop"
    CLARIFY = "clarify"
    COMPLETED = "completed"
    BLOCKED = "blocked"


def parse_kind(value: str) -> ArtifactKind:
    """Parse an artifact kind string.

    Raises:
        ValueError: for an unknown kind
    """
    try:
        return ArtifactKind(value)
    except ValueError:
        valid = ", ".join(k.value for k in ArtifactKind)
        raise ValueError(f"Unknown artifact kind '{value}' (expected one of: {valid})") from None


@dataclass
class Task:
    """A unit of work inside a specification (a feature or step)."""
    id: str
    description: str
    done: bool = False
    index: int = 0
    depends_on: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "done": self.done,
            "index": self.index,
            "depends_on": list(self.depends_on),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        return cls(
            id=data["id"],
            description=data["description"],
            done=bool(data.get("done", False)),
            index=int(data.get("index", 0)),
            depends_on=list(data.get("depends_on", [])),
        )


@dataclass
class Specification:
    """A unit of work with a lifecycle status, tasks and artifacts."""
    id: str
    title: str
    status: SpecStatus
    tags: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    created: str = ""
    updated: str = ""
    session_seq: int = 0  # Sessions spawned so far
    applied_seq: int = 0  # Sequence of the last report applied
    stalled: Optional[dict] = None  # {"reason": ..., "at": ...} when stalled
    tasks: list[Task] = field(default_factory=list)
    artifacts: frozenset = frozenset()  # ArtifactKinds present
    features: tuple = ()  # Names of feature artifacts

    @property
    def is_immutable(self) -> bool:
        return self.status in IMMUTABLE_STATUSES

    @property
    def is_stalled(self) -> bool:
        return self.stalled is not None

    def incomplete_tasks(self) -> list[Task]:
        return [t for t in self.tasks if not t.done]

    def task_progress(self) -> tuple[int, int]:
        """(done, total)"""
        return sum(1 for t in self.tasks if t.done), len(self.tasks)

    def to_meta(self) -> dict:
        return {
            "version": 1,
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "tags": list(self.tags),
            "depends_on": list(self.depends_on),
            "created": self.created,
            "updated": self.updated,
            "session_seq": self.session_seq,
            "applied_seq": self.applied_seq,
            "stalled": self.stalled,
        }

    @classmethod
    def from_meta(cls, meta: dict, tasks: list[Task], artifacts: frozenset,
                  features: tuple = ()) -> "Specification":
        return cls(
            id=meta["id"],
            title=meta["title"],
            status=SpecStatus(meta["status"]),
            tags=list(meta.get("tags", [])),
            depends_on=list(meta.get("depends_on", [])),
            created=meta.get("created", ""),
            updated=meta.get("updated", ""),
            session_seq=int(meta.get("session_seq", 0)),
            applied_seq=int(meta.get("applied_seq", 0)),
            stalled=meta.get("stalled"),
            tasks=tasks,
            artifacts=artifacts,
            features=features,
        )


@dataclass(frozen=True)
class Mismatch:
    """A documented fact that no longer matches reality."""
    field: str
    expected: str
    actual: str

    def to_dict(self) -> dict:
        return {"field": self.field, "expected": self.expected, "actual": self.actual}


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one external check tool."""
    name: str
    passed: bool
    detail: str = ""
    skipped: bool = False
    override: bool = False  # Skipped with explicit operator override

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "passed": self.passed,
            "detail": self.detail,
            "skipped": self.skipped,
            "override": self.override,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CheckResult":
        return cls(
            name=data["name"],
            passed=bool(data["passed"]),
            detail=data.get("detail", ""),
            skipped=bool(data.get("skipped", False)),
            override=bool(data.get("override", False)),
        )


@dataclass(frozen=True)
class Proposal:
    """A change a session asks the coordinator to apply.

    op is one of "attach", "remove", "complete_task".
    """
    op: str
    kind: Optional[str] = None
    name: Optional[str] = None
    content: Optional[str] = None
    task_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"op": self.op}
        if self.kind is not None:
            data["kind"] = self.kind
            data["name"] = self.name
        if self.content is not None:
            data["content"] = self.content
        if self.task_id is not None:
            data["task_id"] = self.task_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Proposal":
        return cls(
            op=data["op"],
            kind=data.get("kind"),
            name=data.get("name"),
            content=data.get("content"),
            task_id=data.get("task_id"),
        )


@dataclass(frozen=True)
class Report:
    """Immutable outcome of one worker session."""
    report_id: str
    session_id: str
    seq: int
    spec_id: str
    role: str
    status: ReportStatus
    observed_status: SpecStatus  # Specification status when the session was spawned
    findings: str = ""
    mismatches: tuple = ()
    checks: tuple = ()
    proposals: tuple = ()
    violation: Optional[dict] = None
    snapshot_digest: str = ""
    started: str = ""
    ended: str = ""

    def to_dict(self) -> dict:
        return {
            "version": 1,
            "report_id": self.report_id,
            "session_id": self.session_id,
            "seq": self.seq,
            "spec_id": self.spec_id,
            "role": self.role,
            "status": self.status.value,
            "observed_status": self.observed_status.value,
            "findings": self.findings,
            "mismatches": [m.to_dict() for m in self.mismatches],
            "checks": [c.to_dict() for c in self.checks],
            "proposals": [p.to_dict() for p in self.proposals],
            "violation": self.violation,
            "snapshot_digest": self.snapshot_digest,
            "started": self.started,
            "ended": self.ended,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Report":
        return cls(
            report_id=data["report_id"],
            session_id=data["session_id"],
            seq=int(data["seq"]),
            spec_id=data["spec_id"],
            role=data["role"],
            status=ReportStatus(data["status"]),
            observed_status=SpecStatus(data["observed_status"]),
            findings=data.get("findings", ""),
            mismatches=tuple(Mismatch(**m) for m in data.get("mismatches", [])),
            checks=tuple(CheckResult.from_dict(c) for c in data.get("checks", [])),
            proposals=tuple(Proposal.from_dict(p) for p in data.get("proposals", [])),
            violation=data.get("violation"),
            snapshot_digest=data.get("snapshot_digest", ""),
            started=data.get("started", ""),
            ended=data.get("ended", ""),
        )


def check_counts_as_pass(check: CheckResult) -> bool:
    """A check passes, or was skipped under an explicit override."""
    if check.skipped:
        return check.override
    return check.passed


def render_verification(checks: list[CheckResult], summary: str = "") -> str:
    """Serialize a verification record (stored as the verification artifact)."""
    result = "pass" if all(check_counts_as_pass(c) for c in checks) else "fail"
    return json.dumps({
        "result": result,
        "summary": summary,
        "checks": [c.to_dict() for c in checks],
    }, indent=2) + "\n"


def parse_verification(content: str) -> tuple[str, list[CheckResult]] | None:
    """Parse a verification record into (result, checks).

    Returns None when the content is not a verification record.
    """
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict) or data.get("result") not in ("pass", "fail"):
        return None
    try:
        checks = [CheckResult.from_dict(c) for c in data.get("checks", [])]
    except (KeyError, TypeError):
        return None
    return data["result"], checks
