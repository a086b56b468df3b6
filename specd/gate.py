"""
Gate evaluator for specd.

Classifies a session report against the specification it ran on and names
the transition (if any) the coordinator should attempt. Pure: no I/O, no
clock, same inputs give the same decision.

Outcomes:
    GO       continue; apply target if there is one
    STOP     halt, a code or documentation fix is needed
    CLARIFY  halt, a human decision is needed
    FAIL     verification failed; go back to implementation
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from specd import registry
from specd.store import fsm
from specd.store.models import (
    ArtifactKind,
    CheckResult,
    Report,
    ReportStatus,
    SpecStatus,
    Specification,
)


class Outcome(Enum):
    GO = "go"
    STOP = "stop"
    CLARIFY = "clarify"
    FAIL = "fail"


@dataclass(frozen=True)
class GateDecision:
    outcome: Outcome
    target: Optional[SpecStatus] = None
    required_artifacts: tuple = ()
    reason: str = ""
    missing: tuple = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "target": self.target.value if self.target else None,
            "required_artifacts": list(self.required_artifacts),
            "reason": self.reason,
            "missing": list(self.missing),
        }


def _required(source: SpecStatus, target: SpecStatus) -> tuple:
    """Artifact kinds an edge needs (other preconditions are the store's business)."""
    kinds = {k.value for k in ArtifactKind}
    return tuple(r for r in fsm.edge_requirements(source.value, target.value) if r in kinds)


def _decide(outcome: Outcome, reason: str, source: SpecStatus = None,
            target: SpecStatus = None, missing: Iterable[str] = ()) -> GateDecision:
    required = _required(source, target) if source and target else ()
    return GateDecision(outcome, target, required, reason, tuple(missing))


def completion_checklist(
    spec: Specification,
    checks: Iterable[CheckResult],
    artifacts: Iterable[ArtifactKind],
) -> list[str]:
    """Every unmet condition for verifying -> completed. Empty means done."""
    artifacts = set(artifacts)
    unmet = [f"task {t.id} not done" for t in spec.incomplete_tasks()]
    for check in checks:
        if check.skipped and not check.override:
            unmet.append(f"check {check.name} skipped without override")
        elif not check.skipped and not check.passed:
            unmet.append(f"check {check.name} failed")
    for kind in (ArtifactKind.VERIFICATION, ArtifactKind.REPORT):
        if kind not in artifacts:
            unmet.append(f"{kind.value} artifact missing")
    if ArtifactKind.PROGRESS in artifacts:
        unmet.append("progress artifact still present")
    return unmet


def evaluate(report: Report, spec: Specification) -> GateDecision:
    """Map (status, role, report status) to an outcome and target status."""
    status = report.observed_status
    role = report.role
    result = report.status

    if result == ReportStatus.BLOCKED:
        action = (report.violation or {}).get("action", "unknown action")
        return _decide(Outcome.CLARIFY, f"capability violation by {role}: {action}")

    if spec.is_immutable:
        return _decide(Outcome.STOP, f"{spec.id} is {spec.status.value} and immutable")

    if not registry.is_legal(role, status):
        return _decide(Outcome.CLARIFY, f"role {role} is not legal in status {status.value}")

    if result == ReportStatus.CLARIFY and not (status == SpecStatus.IN_REVIEW and role == registry.REVIEW):
        return _decide(Outcome.CLARIFY, report.findings or f"{role} needs a decision")

    if role == registry.REVIEW:
        if status == SpecStatus.DRAFT:
            if result in (ReportStatus.GO, ReportStatus.COMPLETED):
                return _decide(Outcome.GO, "review passed", status, SpecStatus.IN_REVIEW)
            return _decide(Outcome.STOP, report.findings or "review found problems")
        # in_review
        if result in (ReportStatus.GO, ReportStatus.COMPLETED):
            return _decide(Outcome.GO, "reviewed, awaiting operator approval")
        outcome = Outcome.CLARIFY if result == ReportStatus.CLARIFY else Outcome.STOP
        return _decide(outcome, report.findings or "review returned findings", status, SpecStatus.DRAFT)

    if role == registry.DOCUMENTATION:
        if result == ReportStatus.STOP:
            return _decide(Outcome.STOP, report.findings or "documentation mismatch")
        return _decide(Outcome.GO, "documentation consistent")

    if role == registry.IMPLEMENTATION:
        if result == ReportStatus.STOP:
            return _decide(Outcome.STOP, report.findings or "implementation stopped")
        if result == ReportStatus.COMPLETED and status == SpecStatus.IN_PROGRESS:
            return _decide(
                Outcome.GO, "implementation complete", status, SpecStatus.VERIFYING,
                missing=[f"task {t.id} not done" for t in spec.incomplete_tasks()],
            )
        return _decide(Outcome.GO, "implementation continues")

    if role == registry.VERIFICATION:
        if result == ReportStatus.STOP:
            return _decide(Outcome.FAIL, report.findings or "verification failed",
                           status, SpecStatus.IN_PROGRESS)
        unmet = completion_checklist(spec, report.checks, spec.artifacts)
        if unmet:
            return _decide(Outcome.FAIL, "completion checklist not met", status,
                           SpecStatus.IN_PROGRESS, missing=unmet)
        return _decide(Outcome.GO, "verified", status, SpecStatus.COMPLETED)

    return _decide(Outcome.CLARIFY, f"no gate rule for role {role}")
