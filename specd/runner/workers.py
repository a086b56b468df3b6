"""
Built-in session workers.

- DocumentConsistencyWorker: documentation role. Halts on any documented
  fact that no longer matches the store or the workspace.
- VerificationWorker: verification role. Runs every configured check and
  writes the verification record.
- CommandWorker: hands the session to an external agent command from
  agents.yaml (review and implementation by default).
"""

import json
import logging
import re
import subprocess
from pathlib import Path
from typing import Optional

from specd.lib.agents_config import AgentsConfig, check_binary_available, get_role_command
from specd.lib.errors import CapabilityViolationError, ConsistencyError, InfrastructureError
from specd.lib.validate import ValidationError, validate
from specd.registry import DOCUMENTATION, VERIFICATION, RoleDefinition
from specd.runner.session import SessionContext, Worker, WorkerResult
from specd.store.models import (
    ArtifactKind,
    Mismatch,
    ReportStatus,
    check_counts_as_pass,
    parse_kind,
    render_verification,
)

logger = logging.getLogger(__name__)

ABSENT = "<absent>"

FRONTMATTER_RE = re.compile(r'\A---\n(.*?)\n---\n', re.DOTALL)
KEY_VALUE_RE = re.compile(r'^([A-Za-z_][A-Za-z0-9_-]*):\s*(.*?)\s*$')
CAPABILITY_RE = re.compile(r'^\s*[-*]?\s*capability:\s*(\S+)\s*$', re.MULTILINE)
SIGNATURE_RE = re.compile(r'^\s*[-*]?\s*signature:\s*(\S+?)::(.+?)\s*$', re.MULTILINE)
LINES_RE = re.compile(r'^\s*[-*]?\s*lines:\s*(\S+?):(\d+)-(\d+)\s*$', re.MULTILINE)


# ── document consistency ─────────────────────────────────────────────────

def extract_facts(key: str, content: str) -> dict[str, str]:
    """Facts a document asserts, keyed by a stable field name.

    Recognized: frontmatter keys, "capability: <name>",
    "signature: <path>::<signature>" and "lines: <path>:<start>-<end>".
    """
    facts = {}
    match = FRONTMATTER_RE.match(content)
    if match:
        for line in match.group(1).splitlines():
            kv = KEY_VALUE_RE.match(line)
            if kv:
                facts[f"{key}:{kv.group(1)}"] = kv.group(2)
        content = content[match.end():]

    for m in CAPABILITY_RE.finditer(content):
        facts[f"{key}:capability:{m.group(1)}"] = "declared"
    for m in SIGNATURE_RE.finditer(content):
        facts[f"{key}:signature:{m.group(1)}::{m.group(2).split('(')[0].strip()}"] = m.group(2)
    for m in LINES_RE.finditer(content):
        facts[f"{key}:lines:{m.group(1)}"] = f"{m.group(2)}-{m.group(3)}"
    return facts


def diff_facts(expected: dict[str, str], actual: dict[str, str]) -> list[Mismatch]:
    mismatches = []
    for field in sorted(set(expected) | set(actual)):
        want = expected.get(field, ABSENT)
        have = actual.get(field, ABSENT)
        if want != have:
            mismatches.append(Mismatch(field=field, expected=want, actual=have))
    return mismatches


def _resolve_in_workspace(workspace: Path, rel: str) -> Optional[Path]:
    path = (workspace / rel).resolve()
    if workspace.resolve() not in path.parents and path != workspace.resolve():
        return None
    return path


def check_workspace_claims(workspace: Path, facts: dict[str, str]) -> list[Mismatch]:
    """Compare line-range and signature claims with files in the workspace."""
    mismatches = []
    for field, value in sorted(facts.items()):
        if ":lines:" in field:
            rel = field.split(":lines:", 1)[1]
            start, end = (int(n) for n in value.split("-"))
            path = _resolve_in_workspace(workspace, rel)
            if path is None or not path.is_file():
                mismatches.append(Mismatch(field, f"{rel} lines {value}", "file missing"))
                continue
            count = len(path.read_text(errors="replace").splitlines())
            if start < 1 or start > end or end > count:
                mismatches.append(Mismatch(field, f"{rel} lines {value}", f"{rel} has {count} lines"))

        elif ":signature:" in field:
            rel = field.split(":signature:", 1)[1].split("::", 1)[0]
            path = _resolve_in_workspace(workspace, rel)
            if path is None or not path.is_file():
                mismatches.append(Mismatch(field, value, "file missing"))
                continue
            text = path.read_text(errors="replace")
            if value in text:
                continue
            name = value.split("(")[0].strip()
            found = next((line.strip() for line in text.splitlines() if name in line), "<not found>")
            mismatches.append(Mismatch(field, value, found))
    return mismatches


class DocumentConsistencyWorker(Worker):
    """Stops the line the moment documentation and reality disagree."""
    name = "document-consistency"

    def run(self, ctx: SessionContext) -> WorkerResult:
        fresh = ctx.read_documents()
        snapshot_docs = ctx.snapshot.documents

        mismatches = []
        for key in sorted(set(snapshot_docs) | set(fresh)):
            if key not in fresh:
                mismatches.append(Mismatch(key, "present", ABSENT))
                continue
            expected = extract_facts(key, snapshot_docs.get(key, ""))
            actual = extract_facts(key, fresh[key])
            mismatches.extend(diff_facts(expected, actual))
            mismatches.extend(check_workspace_claims(ctx.workspace, actual))

        if mismatches:
            raise ConsistencyError(mismatches)

        return WorkerResult(
            status=ReportStatus.GO,
            findings=f"{len(fresh)} document(s) consistent",
        )


# ── verification ─────────────────────────────────────────────────────────

def render_report(spec_id: str, title: str, checks: list, tasks: list[dict]) -> str:
    done = sum(1 for t in tasks if t.get("done"))
    lines = [
        f"# Verification report: {title}",
        "",
        f"**Specification:** {spec_id}",
        f"**Tasks:** {done}/{len(tasks)} done",
        "",
        "## Checks",
        "",
    ]
    if not checks:
        lines.append("No checks configured.")
    for check in checks:
        if check.skipped:
            state = "skipped (override)" if check.override else "skipped"
        else:
            state = "pass" if check.passed else "FAIL"
        lines.append(f"- **{check.name}**: {state}")
        if check.detail and not check.passed:
            lines.extend(f"    {line}" for line in check.detail.splitlines())
    lines.append("")
    return "\n".join(lines)


class VerificationWorker(Worker):
    """Runs every configured check and records the outcome."""
    name = "verification"

    def run(self, ctx: SessionContext) -> WorkerResult:
        checks = [ctx.run_check(check) for check in ctx.agents.checks]
        failing = [c.name for c in checks if not check_counts_as_pass(c)]
        summary = "all checks passed" if not failing else f"failing: {', '.join(failing)}"

        ctx.propose_artifact(ArtifactKind.VERIFICATION, render_verification(checks, summary))

        if failing:
            return WorkerResult(status=ReportStatus.STOP, findings=summary, checks=checks)

        snapshot = ctx.snapshot
        ctx.propose_artifact(
            ArtifactKind.REPORT,
            render_report(snapshot.spec_id, snapshot.title, checks, list(snapshot.tasks)),
        )
        if ArtifactKind.PROGRESS.value in snapshot.documents:
            ctx.propose_removal(ArtifactKind.PROGRESS)
        return WorkerResult(status=ReportStatus.COMPLETED, findings=summary, checks=checks)


# ── external agent commands ──────────────────────────────────────────────

def _extract_json(text: str):
    """Decode worker output, unwrapping {"result": "..."} envelopes and code fences."""
    data = json.loads(text.strip())
    if isinstance(data, dict) and "status" not in data and isinstance(data.get("result"), str):
        inner = data["result"].strip()
        fence = re.search(r'```(?:json)?\s*\n(.*?)\n```', inner, re.DOTALL)
        if fence:
            inner = fence.group(1)
        data = json.loads(inner)
    return data


class CommandWorker(Worker):
    """Runs the role's external agent with the snapshot as a JSON prompt.

    The agent prints one JSON object (schema: agent_result):

        {"status": "go", "findings": "...",
         "artifacts": [{"kind": "feature", "name": "login", "content": "..."}],
         "remove": [{"kind": "progress"}],
         "completed_tasks": ["T001"]}
    """
    name = "command"

    def __init__(self, timeout: float = 600.0):
        self.timeout = timeout

    def build_prompt(self, ctx: SessionContext) -> str:
        return json.dumps({
            "role": ctx.role.name,
            "rules": list(ctx.role.rules),
            "writes": sorted(k.value for k in ctx.role.writes),
            "snapshot": ctx.snapshot.to_dict(),
            "respond_with": "one JSON object: status, findings, artifacts, remove, completed_tasks",
        }, indent=2)

    def run(self, ctx: SessionContext) -> WorkerResult:
        prompt = self.build_prompt(ctx)
        role_cmd = get_role_command(ctx.agents, ctx.role.name, {
            "workspace": str(ctx.workspace),
            "spec_id": ctx.spec_id,
            "prompt": prompt,
        })
        if not role_cmd.cmd or not check_binary_available(role_cmd.cmd[0]):
            raise InfrastructureError(f"Worker command for '{ctx.role.name}' not found: {role_cmd.cmd[:1]}")

        try:
            result = subprocess.run(
                role_cmd.cmd,
                cwd=str(ctx.workspace),
                input=role_cmd.get_stdin_input(prompt),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise InfrastructureError(f"{ctx.role.name} worker timed out after {self.timeout}s") from None
        except OSError as e:
            raise InfrastructureError(f"Could not start {ctx.role.name} worker: {e}") from e

        if result.returncode != 0:
            raise InfrastructureError(
                f"{ctx.role.name} worker failed (exit {result.returncode}): {result.stderr.strip()[:500]}"
            )

        try:
            data = _extract_json(result.stdout)
            validate(data, "agent_result")
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"[SESSION] {ctx.role.name} worker output unusable: {e}")
            return WorkerResult(status=ReportStatus.CLARIFY, findings=f"Unusable worker output: {e}")

        return self.apply_result(ctx, data)

    def apply_result(self, ctx: SessionContext, data: dict) -> WorkerResult:
        """Stage everything the agent asked for. Disallowed requests block the session."""
        for artifact in data.get("artifacts", []):
            ctx.propose_artifact(self._kind(ctx, artifact["kind"]), artifact["content"], artifact.get("name"))
        for removal in data.get("remove", []):
            ctx.propose_removal(self._kind(ctx, removal["kind"]), removal.get("name"))
        for task_id in data.get("completed_tasks", []):
            ctx.complete_task(task_id)

        return WorkerResult(status=ReportStatus(data["status"]), findings=data.get("findings", ""))

    @staticmethod
    def _kind(ctx: SessionContext, value: str) -> ArtifactKind:
        try:
            return parse_kind(value)
        except ValueError as e:
            raise CapabilityViolationError(ctx.role.name, f"write {value}", str(e)) from None


def build_worker(role: RoleDefinition, agents: AgentsConfig, timeout: float) -> Worker:
    """Default worker for a role."""
    if role.name == DOCUMENTATION:
        return DocumentConsistencyWorker()
    if role.name == VERIFICATION:
        return VerificationWorker()
    if role.name not in agents.roles:
        raise InfrastructureError(f"No worker command configured for role '{role.name}'")
    return CommandWorker(timeout=timeout)
