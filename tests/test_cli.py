"""Tests for the specd command line."""

import json
from unittest.mock import patch

import pytest
import yaml

from specd.cli import main
from specd.clarifications import create_clarification
from specd.coordinator import Action, NextAction
from specd.lib import constants
from specd.store.documents import DocumentStore
from specd.store.models import ArtifactKind, ReportStatus, SpecStatus

SPEC_ID = "0001-user-login"


@pytest.fixture
def root(tmp_path):
    (tmp_path / "specd.env").write_text("NOTIFY=false\n")
    return tmp_path


def run(root, *argv) -> int:
    return main(["--root", str(root), *argv])


@pytest.fixture
def spec(root):
    assert run(root, "new", "User login") == 0
    return SPEC_ID


@pytest.fixture
def requirements_file(tmp_path):
    path = tmp_path / "requirements.md"
    path.write_text("# Login\n\nUsers sign in with email and password.\n")
    return path


class TestNew:
    def test_creates_draft(self, root, capsys):
        assert run(root, "new", "User login", "--tag", "auth") == 0
        out = capsys.readouterr().out
        assert f"Created specification: {SPEC_ID}" in out
        assert "artifact attach" in out
        spec = DocumentStore(root).get_specification(SPEC_ID)
        assert spec.status == SpecStatus.DRAFT
        assert spec.tags == ["auth"]

    def test_with_requirements(self, root, requirements_file, capsys):
        assert run(root, "new", "User login", "--requirements", str(requirements_file)) == 0
        assert f"specd advance {SPEC_ID}" in capsys.readouterr().out
        content = DocumentStore(root).read_artifact(SPEC_ID, ArtifactKind.REQUIREMENTS)
        assert "email and password" in content

    def test_missing_requirements_file(self, root, tmp_path, capsys):
        assert run(root, "new", "User login", "--requirements", str(tmp_path / "nope.md")) == 2
        assert "Requirements file not found" in capsys.readouterr().out

    def test_unknown_dependency(self, root, capsys):
        assert run(root, "new", "Logout", "--depends-on", "0042-missing") == constants.EXIT_NOT_FOUND
        err = capsys.readouterr().err
        assert "ERROR:" in err
        assert "REASON=NOT_FOUND" in err


class TestListAndStatus:
    def test_list_empty(self, root, capsys):
        assert run(root, "list") == 0
        assert "No specifications" in capsys.readouterr().out

    def test_list(self, root, spec, capsys):
        capsys.readouterr()
        assert run(root, "list") == 0
        out = capsys.readouterr().out
        assert SPEC_ID in out
        assert "draft" in out
        assert "1 specification(s)" in out

    def test_list_json_with_filter(self, root, spec, capsys):
        capsys.readouterr()
        assert run(root, "list", "--json", "--status", "draft") == 0
        data = json.loads(capsys.readouterr().out)
        assert [s["id"] for s in data] == [SPEC_ID]
        assert data[0]["tasks"] == {"done": 0, "total": 0}

        assert run(root, "list", "--json", "--status", "locked") == 0
        assert json.loads(capsys.readouterr().out) == []

    def test_status_json(self, root, spec, capsys):
        capsys.readouterr()
        assert run(root, "status", SPEC_ID, "--json") == 0
        info = json.loads(capsys.readouterr().out)
        assert info["status"] == "draft"
        assert info["transitions"]["in_review"]["missing"] == ["requirements"]
        assert info["transitions"]["approved"]["actor"] == "operator"

    def test_status_text(self, root, spec, capsys):
        capsys.readouterr()
        assert run(root, "status", SPEC_ID) == 0
        out = capsys.readouterr().out
        assert "Status:    draft" in out
        assert "-> approved (operator): missing: requirements" in out

    def test_status_unknown(self, root, capsys):
        assert run(root, "status", "0009-nothing") == constants.EXIT_NOT_FOUND
        assert "REASON=NOT_FOUND" in capsys.readouterr().err


class TestArtifact:
    def test_attach_show_list(self, root, spec, requirements_file, capsys):
        assert run(root, "artifact", "attach", SPEC_ID, "requirements", "--file", str(requirements_file)) == 0
        assert f"Attached requirements to {SPEC_ID}" in capsys.readouterr().out

        assert run(root, "artifact", "show", SPEC_ID, "requirements") == 0
        assert "email and password" in capsys.readouterr().out

        assert run(root, "artifact", "attach", SPEC_ID, "feature", "--name", "login",
                   "--file", str(requirements_file)) == 0
        capsys.readouterr()
        assert run(root, "artifact", "list", SPEC_ID) == 0
        out = capsys.readouterr().out
        assert "requirements" in out
        assert "feature/login" in out

    def test_feature_needs_name(self, root, spec, requirements_file, capsys):
        code = run(root, "artifact", "attach", SPEC_ID, "feature", "--file", str(requirements_file))
        assert code == constants.EXIT_NOT_FOUND
        assert "REASON=USAGE" in capsys.readouterr().err

    def test_unknown_kind(self, root, spec, capsys):
        assert run(root, "artifact", "show", SPEC_ID, "diagram") == constants.EXIT_NOT_FOUND
        assert "Unknown artifact kind" in capsys.readouterr().err

    def test_show_absent(self, root, spec, capsys):
        assert run(root, "artifact", "show", SPEC_ID, "learnings") == constants.EXIT_NOT_FOUND

    def test_list_empty(self, root, spec, capsys):
        capsys.readouterr()
        assert run(root, "artifact", "list", SPEC_ID) == 0
        assert "has no artifacts" in capsys.readouterr().out


class TestTask:
    def test_add_done_list(self, root, spec, capsys):
        assert run(root, "task", "add", SPEC_ID, "Render the form") == 0
        assert run(root, "task", "add", SPEC_ID, "Rate-limit attempts", "--depends-on", "T001") == 0
        out = capsys.readouterr().out
        assert "Added T001: Render the form" in out
        assert "(depends on T001)" in out

        assert run(root, "task", "done", SPEC_ID, "T001") == 0
        capsys.readouterr()
        assert run(root, "task", "list", SPEC_ID) == 0
        out = capsys.readouterr().out
        assert "[x] T001" in out
        assert "[ ] T002" in out
        assert "1/2 done" in out

    def test_unmet_dependency(self, root, spec, capsys):
        run(root, "task", "add", SPEC_ID, "First")
        run(root, "task", "add", SPEC_ID, "Second", "--depends-on", "T001")
        assert run(root, "task", "done", SPEC_ID, "T002") == constants.EXIT_ERROR
        assert "REASON=UNMET_DEPENDENCY" in capsys.readouterr().err

    def test_import_plan(self, root, spec, tmp_path, capsys):
        plan = tmp_path / "PLAN.md"
        plan.write_text(
            "### T001: Add login form\nDepends: none\nDone: [ ]\n\n"
            "### T002: Rate-limit login attempts\nDepends: T001\nDone: [ ]\n"
        )
        assert run(root, "task", "import", SPEC_ID, str(plan)) == 0
        assert "Imported 2 task(s)" in capsys.readouterr().out
        assert [t.id for t in DocumentStore(root).list_tasks(SPEC_ID)] == ["T001", "T002"]

    def test_import_cycle(self, root, spec, tmp_path, capsys):
        plan = tmp_path / "PLAN.md"
        plan.write_text(
            "### T001: One\nDepends: T002\nDone: [ ]\n\n"
            "### T002: Two\nDepends: T001\nDone: [ ]\n"
        )
        assert run(root, "task", "import", SPEC_ID, str(plan)) == constants.EXIT_CYCLIC_DEPENDENCY
        assert "REASON=CYCLIC_DEPENDENCY" in capsys.readouterr().err
        assert DocumentStore(root).list_tasks(SPEC_ID) == []


class TestApprove:
    def test_requires_requirements(self, root, spec, capsys):
        assert run(root, "approve", SPEC_ID) == constants.EXIT_MISSING_ARTIFACT
        assert "REASON=MISSING_ARTIFACT" in capsys.readouterr().err

    def test_approve_and_log(self, root, spec, requirements_file, capsys):
        run(root, "artifact", "attach", SPEC_ID, "requirements", "--file", str(requirements_file))
        assert run(root, "approve", SPEC_ID) == 0
        assert "Approved" in capsys.readouterr().out
        assert DocumentStore(root).get_specification(SPEC_ID).status == SpecStatus.APPROVED

        assert run(root, "log", SPEC_ID) == 0
        assert "approve" in capsys.readouterr().out

        assert run(root, "log", SPEC_ID, "--json") == 0
        entries = json.loads(capsys.readouterr().out)
        assert entries[-1]["event"] == "approve"

    def test_approve_twice(self, root, spec, requirements_file, capsys):
        run(root, "artifact", "attach", SPEC_ID, "requirements", "--file", str(requirements_file))
        run(root, "approve", SPEC_ID)
        assert run(root, "approve", SPEC_ID) == constants.EXIT_INVALID_TRANSITION
        assert "REASON=INVALID_TRANSITION" in capsys.readouterr().err

    def test_unstall_and_abort_idle(self, root, spec, capsys):
        capsys.readouterr()
        assert run(root, "unstall", SPEC_ID) == 0
        assert run(root, "abort", SPEC_ID) == 0
        out = capsys.readouterr().out
        assert "was not stalled" in out
        assert "No session running" in out

    def test_log_empty(self, root, spec, capsys):
        capsys.readouterr()
        assert run(root, "log", SPEC_ID) == 0
        assert "No decisions logged" in capsys.readouterr().out


class TestClarify:
    def test_list_and_answer(self, root, spec, capsys):
        spec_dir = DocumentStore(root).spec_dir(SPEC_ID)
        create_clarification(spec_dir, {"question": "Which auth provider?"})
        capsys.readouterr()

        assert run(root, "clarify") == 0
        out = capsys.readouterr().out
        assert "CLQ-001" in out
        assert "1 pending clarification(s)" in out

        assert run(root, "clarify", "show", SPEC_ID, "CLQ-001") == 0
        assert "Which auth provider?" in capsys.readouterr().out

        assert run(root, "clarify", "answer", SPEC_ID, "CLQ-001", "--answer", "OIDC") == 0
        assert "Answered CLQ-001" in capsys.readouterr().out

        assert run(root, "clarify", "list", SPEC_ID) == 0
        assert "No pending clarifications" in capsys.readouterr().out

    def test_show_unknown(self, root, spec, capsys):
        assert run(root, "clarify", "show", SPEC_ID, "CLQ-404") == 2
        assert "not found" in capsys.readouterr().out

    def test_answer_unknown(self, root, spec, capsys):
        assert run(root, "clarify", "answer", SPEC_ID, "CLQ-404", "--answer", "x") == constants.EXIT_NOT_FOUND
        assert "REASON=NOT_FOUND" in capsys.readouterr().err


class TestAdvance:
    @patch("specd.commands.advance.Coordinator")
    def test_continue(self, mock_coordinator, root, spec, capsys):
        mock_coordinator.return_value.advance.return_value = NextAction(
            SPEC_ID, Action.CONTINUE, status=SpecStatus.IN_REVIEW, role="review", transitioned=True,
        )
        capsys.readouterr()
        assert run(root, "advance", SPEC_ID) == 0
        assert f"{SPEC_ID} [review]: continue (status: in_review)" in capsys.readouterr().out

    @patch("specd.commands.advance.Coordinator")
    def test_clarify_exit_code(self, mock_coordinator, root, spec, capsys):
        mock_coordinator.return_value.advance.return_value = NextAction(
            SPEC_ID, Action.CLARIFY, status=SpecStatus.DRAFT, role="review",
            reason="missing artifacts", missing=("requirements",), clarification="CLQ-001",
        )
        capsys.readouterr()
        assert run(root, "advance", SPEC_ID) == constants.EXIT_CLARIFY
        captured = capsys.readouterr()
        assert "- requirements" in captured.out
        assert f"specd clarify show {SPEC_ID} CLQ-001" in captured.out
        assert "REASON=CLARIFY" in captured.err

    @patch("specd.commands.advance.Coordinator")
    def test_json(self, mock_coordinator, root, spec, capsys):
        mock_coordinator.return_value.advance.return_value = NextAction(
            SPEC_ID, Action.BUSY, reason="another session is active",
        )
        capsys.readouterr()
        assert run(root, "advance", SPEC_ID, "--json") == constants.EXIT_BUSY
        data = json.loads(capsys.readouterr().out)
        assert data["action"] == "busy"
        assert data["status"] is None


@pytest.fixture
def agent(root, tmp_path):
    """Point a role at a shell script that prints a canned reply."""
    def configure(role, reply):
        reply_file = tmp_path / f"{role}-reply.json"
        reply_file.write_text(json.dumps(reply))
        script = tmp_path / f"{role}-agent.sh"
        script.write_text(f"cat > /dev/null\ncat '{reply_file}'\n")
        agents_file = root / "agents.yaml"
        data = yaml.safe_load(agents_file.read_text()) if agents_file.exists() else {}
        data.setdefault("roles", {})[role] = f"sh {script}"
        agents_file.write_text(yaml.safe_dump(data))
    return configure


class TestAdvanceWithAgents:
    """advance end to end, with agent commands from agents.yaml."""

    def test_review_go(self, root, spec, agent, capsys):
        DocumentStore(root).attach_artifact(SPEC_ID, ArtifactKind.REQUIREMENTS, "# Login\n")
        agent("review", {"status": "go", "findings": "clear"})
        capsys.readouterr()
        assert run(root, "advance", SPEC_ID) == 0
        assert f"{SPEC_ID} [review]: continue (status: in_review)" in capsys.readouterr().out
        assert DocumentStore(root).read_decisions(SPEC_ID)[-1]["event"] == "advance"

    def test_unfinished_tasks(self, root, agent, capsys):
        store = DocumentStore(root)
        spec_id = store.create_specification("User login", status=SpecStatus.IN_PROGRESS)
        store.attach_artifact(spec_id, ArtifactKind.REQUIREMENTS, "# Login\n")
        for n in range(1, 6):
            store.add_task(spec_id, f"Step {n}")
        for task_id in ("T001", "T002", "T003"):
            store.complete_task(spec_id, task_id)
        agent("implementation", {"status": "completed", "findings": "done"})

        assert run(root, "advance", spec_id) == 0  # documentation
        capsys.readouterr()
        assert run(root, "advance", spec_id) == constants.EXIT_MISSING_ARTIFACT
        captured = capsys.readouterr()
        assert "REASON=MISSING_ARTIFACT" in captured.err
        assert "- task:T004" in captured.out
        assert "- task:T005" in captured.out
        assert store.get_specification(spec_id).status == SpecStatus.IN_PROGRESS

    def test_capability_violation(self, root, spec, agent, capsys):
        store = DocumentStore(root)
        store.attach_artifact(SPEC_ID, ArtifactKind.REQUIREMENTS, "# Login\n")
        agent("review", {"status": "go", "artifacts": [{"kind": "requirements", "content": "rewritten\n"}]})
        capsys.readouterr()

        assert run(root, "advance", SPEC_ID) == constants.EXIT_CAPABILITY_VIOLATION
        assert "REASON=CAPABILITY_VIOLATION" in capsys.readouterr().err
        assert store.get_specification(SPEC_ID).status == SpecStatus.DRAFT
        assert store.read_artifact(SPEC_ID, ArtifactKind.REQUIREMENTS) == "# Login\n"
        assert [r.status for r in store.list_reports(SPEC_ID)] == [ReportStatus.BLOCKED]

        # The violation waits for the operator
        assert run(root, "advance", SPEC_ID) == constants.EXIT_CLARIFY


class TestRun:
    @patch("specd.workflow.flows.run_until_idle")
    def test_reports_worst_exit(self, mock_run, root, spec, capsys):
        mock_run.return_value = {
            "rounds": 2,
            "limit_reached": False,
            "specifications": {
                SPEC_ID: {"action": "stop", "status": "in_progress"},
            },
        }
        capsys.readouterr()
        assert run(root, "run", SPEC_ID, "--max-rounds", "5") == constants.EXIT_STOP
        out = capsys.readouterr().out
        assert "Ran 2 round(s)" in out
        args = mock_run.call_args[0]
        assert args[1] == [SPEC_ID]
        assert args[2] == 5

    @patch("specd.workflow.flows.run_until_idle")
    def test_limit_warning(self, mock_run, root, spec, capsys):
        mock_run.return_value = {
            "rounds": 3,
            "limit_reached": True,
            "specifications": {SPEC_ID: {"action": "continue", "status": "in_progress"}},
        }
        capsys.readouterr()
        assert run(root, "run", "--max-rounds", "3") == 0
        assert "stopped after 3 rounds" in capsys.readouterr().out

    @patch("specd.workflow.flows.run_until_idle")
    def test_unknown_id(self, mock_run, root, capsys):
        assert run(root, "run", "0007-ghost") == constants.EXIT_NOT_FOUND
        mock_run.assert_not_called()

    @patch("specd.workflow.flows.run_until_idle")
    def test_rejection_exit_code(self, mock_run, root, spec):
        mock_run.return_value = {
            "rounds": 1,
            "limit_reached": False,
            "specifications": {
                SPEC_ID: {"action": "clarify", "status": "in_progress", "error_reason": "MISSING_ARTIFACT"},
            },
        }
        assert run(root, "run", SPEC_ID) == constants.EXIT_MISSING_ARTIFACT
