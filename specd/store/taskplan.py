"""
Task plan parser for specd.

Extracts tasks from a markdown plan so a whole plan can be inserted into a
specification in one atomic batch:

    ### T001: Add login form
    Depends: none

    Render the form and wire it to the session endpoint.

    Done: [ ]

    ### T002: Rate-limit login attempts
    Depends: T001
    Done: [ ]
"""

import graphlib
import re
from dataclasses import dataclass, field
from pathlib import Path

from specd.store.documents import DocumentStore
from specd.store.models import Task

HEADING_RE = re.compile(r'^###[ \t]+([A-Za-z][A-Za-z0-9_-]*):[ \t]*(.+?)[ \t]*$', re.MULTILINE)
DEPENDS_RE = re.compile(r'^Depends:[ \t]*(.*?)[ \t]*$', re.MULTILINE)
DONE_RE = re.compile(r'^Done:[ \t]*\[([ xX])\][ \t]*$', re.MULTILINE)
COMMENT_RE = re.compile(r'<!--.*?-->', re.DOTALL)


@dataclass
class PlannedTask:
    id: str
    title: str
    done: bool
    line_number: int
    depends_on: list[str] = field(default_factory=list)
    block_content: str = ""


def _parse_depends(value: str) -> list[str]:
    if value.lower() in ("", "none", "-"):
        return []
    return [d for d in re.split(r'[,\s]+', value) if d]


def _blank_comments(text: str) -> str:
    # keep the newlines so line numbers still point into the original file
    return COMMENT_RE.sub(lambda m: "\n" * m.group(0).count("\n"), text)


def parse_plan_text(text: str) -> list[PlannedTask]:
    """Parse plan markdown and return its tasks in order.

    A task is a "### ID: title" heading and everything up to the next one.
    HTML comments are ignored. The last Depends:/Done: line of a block wins.
    """
    text = _blank_comments(text)
    headings = list(HEADING_RE.finditer(text))
    tasks = []
    for i, heading in enumerate(headings):
        end = headings[i + 1].start() if i + 1 < len(headings) else len(text)
        block = text[heading.start():end].rstrip()

        depends = DEPENDS_RE.findall(block)
        done = DONE_RE.findall(block)
        tasks.append(PlannedTask(
            id=heading.group(1),
            title=heading.group(2),
            done=bool(done) and done[-1].lower() == "x",
            line_number=text.count("\n", 0, heading.start()) + 1,
            depends_on=_parse_depends(depends[-1]) if depends else [],
            block_content=block,
        ))
    return tasks


def parse_plan(filepath: Path) -> list[PlannedTask]:
    """Parse a plan file."""
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Plan file not found: {filepath}")
    return parse_plan_text(path.read_text())


def import_plan(store: DocumentStore, spec_id: str, planned: list[PlannedTask]) -> list[Task]:
    """Insert planned tasks into a specification.

    The insert is one atomic batch, so a cycle or unknown dependency leaves
    the specification untouched. Tasks marked done in the plan are then
    completed in plan order.
    """
    if not planned:
        return []

    created = store.add_tasks(spec_id, [
        {"id": p.id, "description": p.title, "depends_on": p.depends_on}
        for p in planned
    ])
    done = {p.id: [d for d in p.depends_on] for p in planned if p.done}
    for task_id in graphlib.TopologicalSorter(done).static_order():
        if task_id in done:
            store.complete_task(spec_id, task_id)
    return created
