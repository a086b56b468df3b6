"""Tests for specd.gate module."""

import pytest

from specd.gate import Outcome, completion_checklist, evaluate
from specd.store.models import (
    ArtifactKind,
    CheckResult,
    Report,
    ReportStatus,
    SpecStatus,
    Specification,
    Task,
)


def make_spec(status, artifacts=(), tasks=()):
    return Specification(
        id="0001-login",
        title="Login",
        status=status,
        tasks=list(tasks),
        artifacts=frozenset(artifacts),
    )


def make_report(role, result, observed, checks=(), findings="", violation=None):
    return Report(
        report_id="r1",
        session_id="s1",
        seq=1,
        spec_id="0001-login",
        role=role,
        status=result,
        observed_status=observed,
        findings=findings,
        checks=tuple(checks),
        violation=violation,
    )


COMPLETE_ARTIFACTS = (ArtifactKind.REQUIREMENTS, ArtifactKind.VERIFICATION, ArtifactKind.REPORT)


class TestReview:
    """Review in draft and in_review."""

    def test_draft_go_moves_to_in_review(self):
        decision = evaluate(make_report("review", ReportStatus.GO, SpecStatus.DRAFT),
                            make_spec(SpecStatus.DRAFT))
        assert decision.outcome == Outcome.GO
        assert decision.target == SpecStatus.IN_REVIEW
        assert decision.required_artifacts == ("requirements",)

    def test_draft_stop_stays(self):
        decision = evaluate(make_report("review", ReportStatus.STOP, SpecStatus.DRAFT, findings="vague"),
                            make_spec(SpecStatus.DRAFT))
        assert decision.outcome == Outcome.STOP
        assert decision.target is None
        assert decision.reason == "vague"

    def test_in_review_go_awaits_operator(self):
        decision = evaluate(make_report("review", ReportStatus.GO, SpecStatus.IN_REVIEW),
                            make_spec(SpecStatus.IN_REVIEW))
        assert decision.outcome == Outcome.GO
        assert decision.target is None

    def test_in_review_stop_returns_to_draft(self):
        decision = evaluate(make_report("review", ReportStatus.STOP, SpecStatus.IN_REVIEW),
                            make_spec(SpecStatus.IN_REVIEW))
        assert decision.outcome == Outcome.STOP
        assert decision.target == SpecStatus.DRAFT
        assert decision.required_artifacts == ("learnings",)

    def test_in_review_clarify_returns_to_draft(self):
        decision = evaluate(make_report("review", ReportStatus.CLARIFY, SpecStatus.IN_REVIEW),
                            make_spec(SpecStatus.IN_REVIEW))
        assert decision.outcome == Outcome.CLARIFY
        assert decision.target == SpecStatus.DRAFT


class TestDocumentation:
    """Documentation never moves the specification."""

    def test_go(self):
        decision = evaluate(make_report("documentation", ReportStatus.GO, SpecStatus.APPROVED),
                            make_spec(SpecStatus.APPROVED))
        assert decision.outcome == Outcome.GO
        assert decision.target is None

    def test_mismatch_stops(self):
        decision = evaluate(make_report("documentation", ReportStatus.STOP, SpecStatus.IN_PROGRESS),
                            make_spec(SpecStatus.IN_PROGRESS))
        assert decision.outcome == Outcome.STOP
        assert decision.target is None


class TestImplementation:
    """Implementation in approved and in_progress."""

    def test_go_continues(self):
        decision = evaluate(make_report("implementation", ReportStatus.GO, SpecStatus.IN_PROGRESS),
                            make_spec(SpecStatus.IN_PROGRESS))
        assert decision.outcome == Outcome.GO
        assert decision.target is None

    def test_completed_requests_verification(self):
        decision = evaluate(make_report("implementation", ReportStatus.COMPLETED, SpecStatus.IN_PROGRESS),
                            make_spec(SpecStatus.IN_PROGRESS))
        assert decision.outcome == Outcome.GO
        assert decision.target == SpecStatus.VERIFYING
        assert decision.missing == ()

    def test_completed_lists_unfinished_tasks(self):
        spec = make_spec(SpecStatus.IN_PROGRESS, tasks=[
            Task("T001", "Form", done=True),
            Task("T002", "Endpoint"),
        ])
        decision = evaluate(make_report("implementation", ReportStatus.COMPLETED, SpecStatus.IN_PROGRESS), spec)
        assert decision.target == SpecStatus.VERIFYING
        assert decision.missing == ("task T002 not done",)

    def test_stop(self):
        decision = evaluate(make_report("implementation", ReportStatus.STOP, SpecStatus.IN_PROGRESS),
                            make_spec(SpecStatus.IN_PROGRESS))
        assert decision.outcome == Outcome.STOP


class TestVerification:
    """Verification either completes or sends the specification back."""

    def test_all_clear_completes(self):
        spec = make_spec(SpecStatus.VERIFYING, COMPLETE_ARTIFACTS)
        report = make_report("verification", ReportStatus.COMPLETED, SpecStatus.VERIFYING,
                             checks=[CheckResult("tests", passed=True)])
        decision = evaluate(report, spec)
        assert decision.outcome == Outcome.GO
        assert decision.target == SpecStatus.COMPLETED
        assert set(decision.required_artifacts) == {"verification", "report"}

    def test_zero_checks_pass(self):
        spec = make_spec(SpecStatus.VERIFYING, COMPLETE_ARTIFACTS)
        decision = evaluate(make_report("verification", ReportStatus.COMPLETED, SpecStatus.VERIFYING), spec)
        assert decision.outcome == Outcome.GO

    def test_stop_fails_back_to_in_progress(self):
        spec = make_spec(SpecStatus.VERIFYING, COMPLETE_ARTIFACTS)
        report = make_report("verification", ReportStatus.STOP, SpecStatus.VERIFYING,
                             checks=[CheckResult("tests", passed=False)], findings="failing: tests")
        decision = evaluate(report, spec)
        assert decision.outcome == Outcome.FAIL
        assert decision.target == SpecStatus.IN_PROGRESS

    def test_progress_still_present_fails(self):
        spec = make_spec(SpecStatus.VERIFYING, COMPLETE_ARTIFACTS + (ArtifactKind.PROGRESS,))
        decision = evaluate(make_report("verification", ReportStatus.COMPLETED, SpecStatus.VERIFYING), spec)
        assert decision.outcome == Outcome.FAIL
        assert decision.target == SpecStatus.IN_PROGRESS
        assert "progress artifact still present" in decision.missing

    def test_go_report_with_failing_check_fails(self):
        spec = make_spec(SpecStatus.VERIFYING, COMPLETE_ARTIFACTS)
        report = make_report("verification", ReportStatus.GO, SpecStatus.VERIFYING,
                             checks=[CheckResult("lint", passed=False)])
        decision = evaluate(report, spec)
        assert decision.outcome == Outcome.FAIL
        assert decision.missing == ("check lint failed",)


class TestGuards:
    """Rules that apply before the per-role table."""

    def test_blocked_is_clarify(self):
        report = make_report("review", ReportStatus.BLOCKED, SpecStatus.DRAFT,
                             violation={"action": "write requirements"})
        decision = evaluate(report, make_spec(SpecStatus.DRAFT))
        assert decision.outcome == Outcome.CLARIFY
        assert "write requirements" in decision.reason

    @pytest.mark.parametrize("status", [SpecStatus.COMPLETED, SpecStatus.LOCKED])
    def test_immutable_specification_stops(self, status):
        decision = evaluate(make_report("verification", ReportStatus.COMPLETED, SpecStatus.VERIFYING),
                            make_spec(status, COMPLETE_ARTIFACTS))
        assert decision.outcome == Outcome.STOP
        assert decision.target is None

    def test_role_illegal_in_observed_status(self):
        decision = evaluate(make_report("implementation", ReportStatus.COMPLETED, SpecStatus.DRAFT),
                            make_spec(SpecStatus.DRAFT))
        assert decision.outcome == Outcome.CLARIFY
        assert decision.target is None

    def test_unknown_role(self):
        decision = evaluate(make_report("intruder", ReportStatus.GO, SpecStatus.DRAFT),
                            make_spec(SpecStatus.DRAFT))
        assert decision.outcome == Outcome.CLARIFY

    @pytest.mark.parametrize("role,status", [
        ("review", SpecStatus.DRAFT),
        ("documentation", SpecStatus.APPROVED),
        ("implementation", SpecStatus.IN_PROGRESS),
        ("verification", SpecStatus.VERIFYING),
    ])
    def test_clarify_halts_without_target(self, role, status):
        decision = evaluate(make_report(role, ReportStatus.CLARIFY, status), make_spec(status))
        assert decision.outcome == Outcome.CLARIFY
        assert decision.target is None

    def test_decision_is_deterministic(self):
        report = make_report("review", ReportStatus.GO, SpecStatus.DRAFT)
        spec = make_spec(SpecStatus.DRAFT)
        assert evaluate(report, spec) == evaluate(report, spec)

    def test_to_dict(self):
        decision = evaluate(make_report("review", ReportStatus.GO, SpecStatus.DRAFT),
                            make_spec(SpecStatus.DRAFT))
        assert decision.to_dict() == {
            "outcome": "go",
            "target": "in_review",
            "required_artifacts": ["requirements"],
            "reason": "review passed",
            "missing": [],
        }


class TestCompletionChecklist:
    """Tests for completion_checklist()."""

    def test_everything_missing(self):
        spec = make_spec(SpecStatus.VERIFYING, tasks=[Task("T001", "Form")])
        unmet = completion_checklist(spec, [CheckResult("types", passed=False, skipped=True)],
                                     [ArtifactKind.PROGRESS])
        assert unmet == [
            "task T001 not done",
            "check types skipped without override",
            "verification artifact missing",
            "report artifact missing",
            "progress artifact still present",
        ]

    def test_override_counts(self):
        spec = make_spec(SpecStatus.VERIFYING)
        checks = [CheckResult("types", passed=False, skipped=True, override=True)]
        assert completion_checklist(spec, checks, COMPLETE_ARTIFACTS) == []
