"""
Clarification queue (CLQ) for specd.

A clarification is a question for the operator. The coordinator raises one
for every CLARIFY outcome and every stall. Blocking clarifications stop the
coordinator from spawning further sessions on the specification until the
operator answers.

Stored per specification, one JSON record plus a markdown rendering each:

    <spec_dir>/clarifications/pending/CLQ-NNN.{json,md}
    <spec_dir>/clarifications/answered/CLQ-NNN.{json,md}

Ids are claimed with an exclusive create, so two coordinators raising a
question on the same specification never share an id.
"""

import json
import logging
import os
import re
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Optional

from specd.lib.errors import DuplicateIdError, NotFoundError

logger = logging.getLogger(__name__)

PENDING = "pending"
ANSWERED = "answered"
URGENCIES = ("blocking", "non-blocking")
CLQ_ID_RE = re.compile(r'^CLQ-(\d+)$')
MAX_ID_ATTEMPTS = 10


@dataclass(frozen=True)
class Clarification:
    """A question raised for the operator."""
    id: str
    status: str  # pending, answered
    question: str
    spec_id: str
    created: str
    context: str = ""
    source: str = "clarify"  # clarify, stalled, violation, operator
    urgency: str = "blocking"
    report_id: Optional[str] = None
    missing: list[str] = field(default_factory=list)
    answered: Optional[str] = None
    answer: Optional[str] = None
    answered_by: Optional[str] = None

    @property
    def is_blocking(self) -> bool:
        return self.status == PENDING and self.urgency == "blocking"


def _queue(spec_dir: Path, state: str) -> Path:
    return spec_dir / "clarifications" / state


def _read(path: Path) -> Optional[Clarification]:
    try:
        return Clarification(**json.loads(path.read_text()))
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"[CLQ] Unreadable clarification {path.name}: {e}")
        return None


def _list(spec_dir: Path, state: str) -> list[Clarification]:
    queue = _queue(spec_dir, state)
    if not queue.exists():
        return []
    found = (_read(p) for p in sorted(queue.glob("CLQ-*.json")))
    return [c for c in found if c is not None]


def _store(queue: Path, clq: Clarification) -> None:
    """Write record and rendering, replacing whatever is there."""
    for suffix, content in ((".json", json.dumps(asdict(clq), indent=2)), (".md", render_markdown(clq))):
        target = queue / f"{clq.id}{suffix}"
        tmp = target.with_name(f".{target.name}.tmp")
        tmp.write_text(content)
        os.replace(tmp, target)


def generate_clq_id(spec_dir: Path) -> str:
    """Next unused CLQ id for the specification (not reserved)."""
    highest = 0
    for state in (PENDING, ANSWERED):
        queue = _queue(spec_dir, state)
        if not queue.exists():
            continue
        for path in queue.glob("CLQ-*.json"):
            m = CLQ_ID_RE.match(path.stem)
            if m:
                highest = max(highest, int(m.group(1)))
            else:
                logger.warning(f"[CLQ] Ignoring malformed id: {path.stem}")
    return f"CLQ-{highest + 1:03d}"


def create_clarification(spec_dir: Path, data: dict) -> Clarification:
    """Raise a pending clarification.

    Args:
        spec_dir: Specification directory
        data: Dict with question and optional context, source, urgency,
            report_id, missing

    Raises:
        ValueError: for an unknown urgency
        DuplicateIdError: if no id could be claimed
    """
    urgency = data.get("urgency", "blocking")
    if urgency not in URGENCIES:
        raise ValueError(f"Invalid urgency: {urgency}")

    queue = _queue(spec_dir, PENDING)
    queue.mkdir(parents=True, exist_ok=True)
    for _ in range(MAX_ID_ATTEMPTS):
        clq_id = generate_clq_id(spec_dir)
        try:
            with open(queue / f"{clq_id}.json", "x"):
                break
        except FileExistsError:
            continue
    else:
        raise DuplicateIdError(f"Could not claim a clarification id in {spec_dir.name}")

    clq = Clarification(
        id=clq_id,
        status=PENDING,
        question=data["question"],
        spec_id=spec_dir.name,
        created=datetime.now().isoformat(),
        context=data.get("context") or "",
        source=data.get("source", "clarify"),
        urgency=urgency,
        report_id=data.get("report_id"),
        missing=list(data.get("missing", [])),
    )
    _store(queue, clq)
    logger.info(f"[CLQ] {clq.spec_id}: {clq.id} raised ({clq.source}, {clq.urgency})")
    return clq


def get_pending_clarifications(spec_dir: Path) -> list[Clarification]:
    return _list(spec_dir, PENDING)


def get_blocking_clarifications(spec_dir: Path) -> list[Clarification]:
    return [c for c in _list(spec_dir, PENDING) if c.is_blocking]


def get_answered_clarifications(spec_dir: Path) -> list[Clarification]:
    return _list(spec_dir, ANSWERED)


def get_clarification(spec_dir: Path, clq_id: str) -> Optional[Clarification]:
    """Look a CLQ up by id, pending first."""
    for state in (PENDING, ANSWERED):
        path = _queue(spec_dir, state) / f"{clq_id}.json"
        if path.exists():
            return _read(path)
    return None


def answer_clarification(spec_dir: Path, clq_id: str, answer: str, by: str = "operator") -> Clarification:
    """Record the answer and move the CLQ from pending/ to answered/.

    Raises:
        NotFoundError: if no pending CLQ has this id
    """
    pending = _queue(spec_dir, PENDING)
    record = pending / f"{clq_id}.json"
    current = _read(record) if record.exists() else None
    if current is None:
        raise NotFoundError(f"Pending clarification not found: {clq_id}")

    clq = replace(current, status=ANSWERED, answer=answer,
                  answered=datetime.now().isoformat(), answered_by=by)
    answered = _queue(spec_dir, ANSWERED)
    answered.mkdir(parents=True, exist_ok=True)
    _store(answered, clq)

    record.unlink()
    (pending / f"{clq_id}.md").unlink(missing_ok=True)

    logger.info(f"[CLQ] {clq.spec_id}: {clq_id} answered by {by}")
    return clq


def render_markdown(clq: Clarification) -> str:
    """Human-readable form of a CLQ, kept next to its JSON record."""
    out = [
        f"# {clq.id}: {clq.question.splitlines()[0] if clq.question else 'Clarification'}",
        "",
        f"- Specification: {clq.spec_id}",
        f"- Status: {clq.status} ({clq.urgency})",
        f"- Raised by: {clq.source}" + (f", report {clq.report_id}" if clq.report_id else ""),
        f"- Created: {clq.created}",
        "",
        "## Question",
        "",
        clq.question,
        "",
    ]
    if clq.context:
        out += ["## Context", "", clq.context, ""]
    if clq.missing:
        out += ["## Missing", ""] + [f"- {item}" for item in clq.missing] + [""]
    if clq.status == ANSWERED:
        out += ["## Answer", "", f"{clq.answer or '(empty)'}", "",
                f"_Answered by {clq.answered_by} at {clq.answered}_", ""]
    return "\n".join(out)
