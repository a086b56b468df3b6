"""
Document store for specd.

The single source of truth for specifications, their tasks, artifacts,
reports and decision logs. Filesystem backed:

    <root>/ids/NNNN                         id reservations
    <root>/specs/<id>/meta.json             specification metadata
    <root>/specs/<id>/tasks.json            task list
    <root>/specs/<id>/artifacts/...         documents (see ARTIFACT_FILES)
    <root>/specs/<id>/reports/*.json        immutable session reports
    <root>/specs/<id>/decisions.jsonl       coordinator decision log

Every read-compare-write runs under the specification's store mutex and
files are replaced atomically, so updates are linearizable per
specification even with several coordinator processes.
"""

import graphlib
import hashlib
import json
import logging
import os
import re
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from specd.lib.constants import (
    FEATURE_NAME_PATTERN,
    MAX_SLUG_LEN,
    SPEC_ID_DIGITS,
    SPEC_ID_PATTERN,
    TASK_ID_PATTERN,
)
from specd.lib.errors import (
    CyclicDependencyError,
    DuplicateIdError,
    ImmutableSpecificationError,
    InfrastructureError,
    InvalidProposalError,
    InvalidTransitionError,
    MissingArtifactError,
    NotFoundError,
    UnmetDependencyError,
)
from specd.lib.validate import validate_before_write, validate_file
from specd.runner.locking import store_mutex
from specd.store import fsm
from specd.store.models import (
    ArtifactKind,
    Proposal,
    Report,
    SpecStatus,
    Specification,
    Task,
    check_counts_as_pass,
    parse_kind,
    parse_verification,
)

logger = logging.getLogger(__name__)

ARTIFACT_FILES = {
    ArtifactKind.REQUIREMENTS: "requirements.md",
    ArtifactKind.LEARNINGS: "learnings.md",
    ArtifactKind.REPORT: "report.md",
    ArtifactKind.VERIFICATION: "verification.json",
    ArtifactKind.PROGRESS: "progress.md",
}
FEATURES_DIR = "features"

TASK_NUM_RE = re.compile(r'^T(\d+)$')

# store mutex key serializing edits of the cross-specification dependency graph
GRAPH_MUTEX = "_graph"


def _now() -> str:
    return datetime.now().isoformat()


def slugify(title: str) -> str:
    slug = re.sub(r'[^a-z0-9]+', '-', title.lower()).strip('-')
    slug = slug[:MAX_SLUG_LEN].rstrip('-')
    return slug or "spec"


def document_key(kind: ArtifactKind, name: Optional[str] = None) -> str:
    """Key used for a document in snapshots: "requirements", "feature/login"."""
    if kind == ArtifactKind.FEATURE:
        return f"feature/{name}"
    return kind.value


def digest_documents(documents: dict[str, str]) -> str:
    """Stable sha256 over a document mapping."""
    h = hashlib.sha256()
    for key in sorted(documents):
        h.update(key.encode())
        h.update(b"\0")
        h.update(documents[key].encode())
        h.update(b"\0")
    return h.hexdigest()


def _find_cycle(graph: dict[str, Iterable[str]]) -> list[str] | None:
    try:
        graphlib.TopologicalSorter(graph).prepare()
    except graphlib.CycleError as e:
        return list(e.args[1])
    return None


class DocumentStore:
    """Filesystem-backed store of specifications.

    Only the coordinator holds a DocumentStore. Worker sessions receive a
    ReadOnlyStore.
    """

    def __init__(self, root: Path, id_attempts: int = 5):
        self.root = Path(root)
        self.specs_dir = self.root / "specs"
        self.ids_dir = self.root / "ids"
        self.id_attempts = id_attempts

    # ── internals ────────────────────────────────────────────────────────

    @contextmanager
    def _io(self, what: str):
        """Translate filesystem failures into retryable infrastructure errors."""
        try:
            yield
        except OSError as e:
            raise InfrastructureError(f"Store unavailable while {what}: {e}") from e

    def _spec_dir(self, spec_id: str) -> Path:
        spec_dir = self.specs_dir / spec_id
        if not SPEC_ID_PATTERN.match(spec_id) or not (spec_dir / "meta.json").exists():
            raise NotFoundError(f"Specification not found: {spec_id}")
        return spec_dir

    def _write_json(self, path: Path, data, schema_name: str | None) -> None:
        if schema_name:
            validate_before_write(data, schema_name, path)
        self._write_text(path, json.dumps(data, indent=2) + "\n")

    def _write_text(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        tmp.write_text(content)
        os.replace(tmp, path)

    def _read_meta(self, spec_dir: Path) -> dict:
        return validate_file(spec_dir / "meta.json", "meta")

    def _write_meta(self, spec_dir: Path, meta: dict) -> None:
        meta["updated"] = _now()
        self._write_json(spec_dir / "meta.json", meta, "meta")

    def _read_tasks(self, spec_dir: Path) -> list[Task]:
        path = spec_dir / "tasks.json"
        if not path.exists():
            return []
        data = validate_file(path, "tasks")
        return sorted((Task.from_dict(t) for t in data["tasks"]), key=lambda t: t.index)

    def _write_tasks(self, spec_dir: Path, tasks: list[Task]) -> None:
        self._write_json(
            spec_dir / "tasks.json",
            {"version": 1, "tasks": [t.to_dict() for t in tasks]},
            "tasks",
        )

    def _artifact_path(self, spec_dir: Path, kind: ArtifactKind, name: Optional[str]) -> Path:
        if kind == ArtifactKind.FEATURE:
            if not name or not FEATURE_NAME_PATTERN.match(name):
                raise ValueError(f"Feature artifacts need a name matching {FEATURE_NAME_PATTERN.pattern}")
            return spec_dir / "artifacts" / FEATURES_DIR / f"{name}.md"
        if name:
            raise ValueError(f"Only feature artifacts are named (got name for {kind.value})")
        return spec_dir / "artifacts" / ARTIFACT_FILES[kind]

    def _present(self, spec_dir: Path) -> tuple[frozenset, tuple]:
        kinds = set()
        for kind, filename in ARTIFACT_FILES.items():
            if (spec_dir / "artifacts" / filename).exists():
                kinds.add(kind)
        features_dir = spec_dir / "artifacts" / FEATURES_DIR
        features = tuple(sorted(p.stem for p in features_dir.glob("*.md"))) if features_dir.exists() else ()
        if features:
            kinds.add(ArtifactKind.FEATURE)
        return frozenset(kinds), features

    def _load(self, spec_id: str) -> Specification:
        spec_dir = self._spec_dir(spec_id)
        meta = self._read_meta(spec_dir)
        kinds, features = self._present(spec_dir)
        return Specification.from_meta(meta, self._read_tasks(spec_dir), kinds, features)

    @staticmethod
    def _guard_mutable(spec: Specification) -> None:
        if spec.is_immutable:
            raise ImmutableSpecificationError(spec.id, spec.status.value)

    def _reserve_number(self) -> int:
        """Reserve the next free numeric prefix."""
        self.ids_dir.mkdir(parents=True, exist_ok=True)
        taken = [int(p.name) for p in self.ids_dir.iterdir() if p.name.isdigit()]
        candidate = max(taken, default=0) + 1

        for _ in range(self.id_attempts):
            try:
                (self.ids_dir / f"{candidate:0{SPEC_ID_DIGITS}d}").mkdir()
                return candidate
            except FileExistsError:
                logger.debug(f"[STORE] id {candidate} taken, trying next")
                candidate += 1
        raise DuplicateIdError(
            f"Could not reserve a specification id after {self.id_attempts} attempts"
        )

    # ── specifications ───────────────────────────────────────────────────

    def create_specification(
        self,
        title: str,
        status: SpecStatus = SpecStatus.DRAFT,
        tags: Iterable[str] = (),
        depends_on: Iterable[str] = (),
    ) -> str:
        """Create a specification and return its id.

        Raises:
            DuplicateIdError: if no free id could be reserved
            NotFoundError: if depends_on names an unknown specification
        """
        title = title.strip()
        if not title:
            raise ValueError("Specification title must not be empty")
        depends_on = list(dict.fromkeys(depends_on))
        for dep in depends_on:
            self._spec_dir(dep)

        with self._io("creating specification"):
            number = self._reserve_number()
            spec_id = f"{number:0{SPEC_ID_DIGITS}d}-{slugify(title)}"
            spec_dir = self.specs_dir / spec_id
            try:
                spec_dir.mkdir(parents=True)
            except FileExistsError:
                raise DuplicateIdError(f"Specification directory already exists: {spec_id}") from None

            now = _now()
            spec = Specification(
                id=spec_id,
                title=title,
                status=status,
                tags=list(dict.fromkeys(tags)),
                depends_on=depends_on,
                created=now,
                updated=now,
            )
            self._write_json(spec_dir / "meta.json", spec.to_meta(), "meta")
            self._write_tasks(spec_dir, [])

        logger.info(f"[STORE] Created {spec_id} ({status.value})")
        return spec_id

    def get_specification(self, spec_id: str) -> Specification:
        with self._io(f"reading {spec_id}"):
            return self._load(spec_id)

    def list_specifications(self) -> list[Specification]:
        with self._io("listing specifications"):
            if not self.specs_dir.exists():
                return []
            specs = []
            for d in sorted(self.specs_dir.iterdir()):
                if d.is_dir() and (d / "meta.json").exists():
                    specs.append(self._load(d.name))
            return specs

    # ── lifecycle ────────────────────────────────────────────────────────

    def missing_for(self, spec: Specification, from_status: SpecStatus,
                    to_status: SpecStatus) -> list[str]:
        """Every unmet precondition of an edge, in a stable order."""
        with self._io(f"checking artifacts of {spec.id}"):
            return self._missing_for(self._spec_dir(spec.id), spec, from_status, to_status)

    def _missing_for(self, spec_dir: Path, spec: Specification, from_status: SpecStatus,
                     to_status: SpecStatus) -> list[str]:
        missing = []
        for req in fsm.edge_requirements(from_status.value, to_status.value):
            if req == fsm.REQ_TASKS_DONE:
                missing.extend(f"task:{t.id}" for t in spec.incomplete_tasks())
            elif req == fsm.REQ_NO_TRANSIENT:
                if ArtifactKind.PROGRESS in spec.artifacts:
                    missing.append("progress:must-be-removed")
            elif req == fsm.REQ_VERIFICATION_PASSED:
                if ArtifactKind.VERIFICATION not in spec.artifacts:
                    continue  # already reported as a missing artifact
                content = self._artifact_path(spec_dir, ArtifactKind.VERIFICATION, None).read_text()
                parsed = parse_verification(content)
                if parsed is None:
                    missing.append("verification:invalid-record")
                    continue
                result, checks = parsed
                failing = [c.name for c in checks if not check_counts_as_pass(c)]
                missing.extend(f"verification:{name}" for name in failing)
                if result != "pass" and not failing:
                    missing.append("verification:result")
            else:
                if ArtifactKind(req) not in spec.artifacts:
                    missing.append(req)
        return missing

    def transition(
        self,
        spec_id: str,
        from_status: SpecStatus,
        to_status: SpecStatus,
        actor: str = fsm.ACTOR_COORDINATOR,
    ) -> Specification:
        """Move a specification along one edge of the lifecycle graph.

        Raises:
            InvalidTransitionError: edge not in the graph, wrong actor, or
                from_status no longer matches the stored status
            MissingArtifactError: preconditions of the edge are unmet
        """
        source, dest = from_status.value, to_status.value
        if not fsm.is_edge(source, dest):
            raise InvalidTransitionError(spec_id, source, dest, "not in the state graph")
        required_actor = fsm.edge_actor(source, dest)
        if actor != required_actor:
            raise InvalidTransitionError(spec_id, source, dest, f"only the {required_actor} may do this")

        with self._io(f"transitioning {spec_id}"), store_mutex(self.root, spec_id):
            spec_dir = self._spec_dir(spec_id)
            meta = self._read_meta(spec_dir)
            if meta["status"] != source:
                raise InvalidTransitionError(
                    spec_id, source, dest, f"stored status is {meta['status']}"
                )

            kinds, features = self._present(spec_dir)
            spec = Specification.from_meta(meta, self._read_tasks(spec_dir), kinds, features)
            missing = self._missing_for(spec_dir, spec, from_status, to_status)
            if missing:
                raise MissingArtifactError(spec_id, dest, missing)

            machine = fsm.SpecFSM(spec_id, source)
            machine.fire(dest)
            meta["status"] = machine.state
            self._write_meta(spec_dir, meta)
            spec.status = SpecStatus(machine.state)

        return spec

    def mark_stalled(self, spec_id: str, reason: str) -> None:
        with self._io(f"marking {spec_id} stalled"), store_mutex(self.root, spec_id):
            spec_dir = self._spec_dir(spec_id)
            meta = self._read_meta(spec_dir)
            meta["stalled"] = {"reason": reason, "at": _now()}
            self._write_meta(spec_dir, meta)
        logger.warning(f"[STORE] {spec_id} stalled: {reason}")

    def clear_stalled(self, spec_id: str) -> bool:
        """Clear the stalled flag. Returns True if it was set."""
        with self._io(f"clearing stall on {spec_id}"), store_mutex(self.root, spec_id):
            spec_dir = self._spec_dir(spec_id)
            meta = self._read_meta(spec_dir)
            if meta.get("stalled") is None:
                return False
            meta["stalled"] = None
            self._write_meta(spec_dir, meta)
        logger.info(f"[STORE] {spec_id} no longer stalled")
        return True

    def add_dependency(self, spec_id: str, other_id: str) -> None:
        """Record that spec_id builds on other_id.

        The dependency graph spans every specification, so the check and the
        write run under the store-wide graph mutex.

        Raises:
            CyclicDependencyError: if other_id already (transitively) builds on spec_id
        """
        with self._io(f"adding dependency to {spec_id}"), store_mutex(self.root, GRAPH_MUTEX):
            self._spec_dir(other_id)
            graph = {s.id: list(s.depends_on) for s in self.list_specifications()}
            graph.setdefault(spec_id, [])
            if other_id in graph[spec_id]:
                return
            graph[spec_id] = graph[spec_id] + [other_id]
            cycle = _find_cycle(graph)
            if cycle:
                raise CyclicDependencyError(cycle)

            with store_mutex(self.root, spec_id):
                spec = self._load(spec_id)
                self._guard_mutable(spec)
                spec_dir = self._spec_dir(spec_id)
                meta = self._read_meta(spec_dir)
                meta["depends_on"] = meta["depends_on"] + [other_id]
                self._write_meta(spec_dir, meta)
        logger.info(f"[STORE] {spec_id} now depends on {other_id}")

    # ── artifacts ────────────────────────────────────────────────────────

    def attach_artifact(self, spec_id: str, kind: ArtifactKind, content: str,
                        name: Optional[str] = None) -> None:
        """Create or replace an artifact."""
        with self._io(f"attaching {kind.value} to {spec_id}"), store_mutex(self.root, spec_id):
            spec = self._load(spec_id)
            self._guard_mutable(spec)
            path = self._artifact_path(self._spec_dir(spec_id), kind, name)
            self._write_text(path, content)
        logger.info(f"[STORE] {spec_id}: attached {document_key(kind, name)}")

    def remove_artifact(self, spec_id: str, kind: ArtifactKind, name: Optional[str] = None) -> bool:
        """Delete an artifact. Returns False if it was not there."""
        with self._io(f"removing {kind.value} from {spec_id}"), store_mutex(self.root, spec_id):
            spec = self._load(spec_id)
            self._guard_mutable(spec)
            path = self._artifact_path(self._spec_dir(spec_id), kind, name)
            if not path.exists():
                return False
            path.unlink()
        logger.info(f"[STORE] {spec_id}: removed {document_key(kind, name)}")
        return True

    def read_artifact(self, spec_id: str, kind: ArtifactKind, name: Optional[str] = None) -> str:
        with self._io(f"reading {kind.value} of {spec_id}"):
            path = self._artifact_path(self._spec_dir(spec_id), kind, name)
            if not path.exists():
                raise NotFoundError(f"{spec_id} has no {document_key(kind, name)} artifact")
            return path.read_text()

    def list_artifacts(self, spec_id: str) -> set[ArtifactKind]:
        with self._io(f"listing artifacts of {spec_id}"):
            kinds, _ = self._present(self._spec_dir(spec_id))
            return set(kinds)

    def list_features(self, spec_id: str) -> list[str]:
        with self._io(f"listing features of {spec_id}"):
            _, features = self._present(self._spec_dir(spec_id))
            return list(features)

    def read_documents(self, spec_id: str, kinds: Iterable[ArtifactKind]) -> dict[str, str]:
        """Current content of every present artifact among kinds, by document key."""
        with self._io(f"reading documents of {spec_id}"):
            spec_dir = self._spec_dir(spec_id)
            present, features = self._present(spec_dir)
            documents = {}
            for kind in kinds:
                if kind not in present:
                    continue
                if kind == ArtifactKind.FEATURE:
                    for name in features:
                        documents[document_key(kind, name)] = self._artifact_path(spec_dir, kind, name).read_text()
                else:
                    documents[document_key(kind)] = self._artifact_path(spec_dir, kind, None).read_text()
            return documents

    # ── tasks ────────────────────────────────────────────────────────────

    def list_tasks(self, spec_id: str) -> list[Task]:
        with self._io(f"reading tasks of {spec_id}"):
            return self._read_tasks(self._spec_dir(spec_id))

    def add_task(self, spec_id: str, description: str, depends_on: Iterable[str] = (),
                 task_id: Optional[str] = None) -> Task:
        entry = {"description": description, "depends_on": list(depends_on)}
        if task_id:
            entry["id"] = task_id
        return self.add_tasks(spec_id, [entry])[0]

    def add_tasks(self, spec_id: str, entries: list[dict]) -> list[Task]:
        """Insert tasks atomically.

        Each entry has "description", optional "id" and optional
        "depends_on". Entries may depend on existing tasks or on each other.
        Nothing is written unless the whole batch is valid.

        Raises:
            CyclicDependencyError: if the batch closes a dependency cycle
            NotFoundError: if a dependency names an unknown task
            DuplicateIdError: if an id is already used
        """
        with self._io(f"adding tasks to {spec_id}"), store_mutex(self.root, spec_id):
            spec = self._load(spec_id)
            self._guard_mutable(spec)
            existing = spec.tasks
            used = {t.id for t in existing}

            next_num = max(
                (int(m.group(1)) for m in (TASK_NUM_RE.match(t.id) for t in existing) if m),
                default=0,
            ) + 1

            new_tasks = []
            for offset, entry in enumerate(entries):
                description = str(entry.get("description", "")).strip()
                if not description:
                    raise ValueError("Task description must not be empty")
                task_id = entry.get("id")
                if task_id is None:
                    while f"T{next_num:03d}" in used:
                        next_num += 1
                    task_id = f"T{next_num:03d}"
                    next_num += 1
                if not TASK_ID_PATTERN.match(task_id):
                    raise ValueError(f"Invalid task id: {task_id}")
                if task_id in used:
                    raise DuplicateIdError(f"Task id already used in {spec_id}: {task_id}")
                used.add(task_id)
                new_tasks.append(Task(
                    id=task_id,
                    description=description,
                    index=len(existing) + offset,
                    depends_on=list(dict.fromkeys(entry.get("depends_on", []))),
                ))

            for task in new_tasks:
                unknown = [d for d in task.depends_on if d not in used]
                if unknown:
                    raise NotFoundError(f"Task {task.id} depends on unknown task(s): {', '.join(unknown)}")

            graph = {t.id: t.depends_on for t in existing + new_tasks}
            cycle = _find_cycle(graph)
            if cycle:
                raise CyclicDependencyError(cycle)

            self._write_tasks(self._spec_dir(spec_id), existing + new_tasks)

        logger.info(f"[STORE] {spec_id}: added {len(new_tasks)} task(s)")
        return new_tasks

    def set_task_dependencies(self, spec_id: str, task_id: str, depends_on: Iterable[str]) -> Task:
        """Replace a task's dependency list, rejecting cycles."""
        depends_on = list(dict.fromkeys(depends_on))
        with self._io(f"updating task {task_id} of {spec_id}"), store_mutex(self.root, spec_id):
            spec = self._load(spec_id)
            self._guard_mutable(spec)
            tasks = {t.id: t for t in spec.tasks}
            if task_id not in tasks:
                raise NotFoundError(f"Task not found in {spec_id}: {task_id}")
            unknown = [d for d in depends_on if d not in tasks]
            if unknown:
                raise NotFoundError(f"Task {task_id} depends on unknown task(s): {', '.join(unknown)}")

            graph = {t.id: t.depends_on for t in spec.tasks}
            graph[task_id] = depends_on
            cycle = _find_cycle(graph)
            if cycle:
                raise CyclicDependencyError(cycle)

            tasks[task_id].depends_on = depends_on
            self._write_tasks(self._spec_dir(spec_id), spec.tasks)
            return tasks[task_id]

    def complete_task(self, spec_id: str, task_id: str) -> Task:
        """Mark a task done. Already-done tasks are left as they are.

        Raises:
            UnmetDependencyError: if a dependency is not done yet
        """
        with self._io(f"completing task {task_id} of {spec_id}"), store_mutex(self.root, spec_id):
            spec = self._load(spec_id)
            self._guard_mutable(spec)
            tasks = {t.id: t for t in spec.tasks}
            task = tasks.get(task_id)
            if task is None:
                raise NotFoundError(f"Task not found in {spec_id}: {task_id}")
            if task.done:
                return task
            pending = [d for d in task.depends_on if not tasks[d].done]
            if pending:
                raise UnmetDependencyError(task_id, pending)
            task.done = True
            self._write_tasks(self._spec_dir(spec_id), spec.tasks)
        logger.info(f"[STORE] {spec_id}: task {task_id} done")
        return task

    # ── session proposals ────────────────────────────────────────────────

    def apply_proposals(self, spec_id: str, proposals: Iterable[Proposal]) -> None:
        """Apply the proposals of one report as a unit.

        The whole set is checked before anything is written. Task
        completions may come in any order; a task may depend on another
        one completed by the same set.

        Raises:
            InvalidProposalError: unknown op, artifact kind or feature name
            NotFoundError: a completion names an unknown task
            UnmetDependencyError: a completed task depends on an unfinished one
        """
        proposals = list(proposals)
        if not proposals:
            return
        with self._io(f"applying proposals to {spec_id}"), store_mutex(self.root, spec_id):
            spec = self._load(spec_id)
            self._guard_mutable(spec)
            spec_dir = self._spec_dir(spec_id)

            changes = []
            completing = []
            for proposal in proposals:
                if proposal.op == "complete_task":
                    completing.append(proposal.task_id)
                    continue
                if proposal.op not in ("attach", "remove"):
                    raise InvalidProposalError(f"Unknown proposal op: {proposal.op}")
                try:
                    kind = parse_kind(proposal.kind)
                    changes.append((proposal.op, self._artifact_path(spec_dir, kind, proposal.name),
                                    proposal.content))
                except ValueError as e:
                    raise InvalidProposalError(str(e)) from None

            tasks = {t.id: t for t in spec.tasks}
            unknown = [t for t in completing if t not in tasks]
            if unknown:
                raise NotFoundError(f"Task(s) not found in {spec_id}: {', '.join(unknown)}")
            graph = {task_id: tasks[task_id].depends_on for task_id in completing}
            for task_id in graphlib.TopologicalSorter(graph).static_order():
                if task_id not in graph:
                    continue
                pending = [d for d in tasks[task_id].depends_on if not tasks[d].done]
                if pending:
                    raise UnmetDependencyError(task_id, pending)
                tasks[task_id].done = True

            for op, path, content in changes:
                if op == "attach":
                    self._write_text(path, content or "")
                else:
                    path.unlink(missing_ok=True)
            if completing:
                self._write_tasks(spec_dir, spec.tasks)

        logger.info(f"[STORE] {spec_id}: applied {len(proposals)} proposal(s)")

    # ── sessions and reports ─────────────────────────────────────────────

    def next_session_seq(self, spec_id: str) -> int:
        """Allocate the spawn sequence number for a new session."""
        with self._io(f"allocating session for {spec_id}"), store_mutex(self.root, spec_id):
            spec_dir = self._spec_dir(spec_id)
            meta = self._read_meta(spec_dir)
            meta["session_seq"] += 1
            self._write_meta(spec_dir, meta)
            return meta["session_seq"]

    def mark_applied(self, spec_id: str, seq: int) -> bool:
        """Advance applied_seq to seq. False if seq is not newer (stale or duplicate)."""
        with self._io(f"recording applied report for {spec_id}"), store_mutex(self.root, spec_id):
            spec_dir = self._spec_dir(spec_id)
            meta = self._read_meta(spec_dir)
            if seq <= meta["applied_seq"]:
                return False
            meta["applied_seq"] = seq
            self._write_meta(spec_dir, meta)
            return True

    def _reports_dir(self, spec_id: str) -> Path:
        return self._spec_dir(spec_id) / "reports"

    def record_report(self, report: Report) -> Path:
        """Append a report to the audit trail. Reports are never rewritten.

        Raises:
            DuplicateIdError: if this report was already recorded
        """
        data = report.to_dict()
        with self._io(f"recording report for {report.spec_id}"):
            reports_dir = self._reports_dir(report.spec_id)
            path = reports_dir / f"{report.seq:04d}-{report.role}-{report.report_id}.json"
            validate_before_write(data, "report", path)
            reports_dir.mkdir(parents=True, exist_ok=True)
            if self.has_report(report.spec_id, report.report_id):
                raise DuplicateIdError(f"Report already recorded: {report.report_id}")
            try:
                with open(path, "x") as f:
                    f.write(json.dumps(data, indent=2) + "\n")
            except FileExistsError:
                raise DuplicateIdError(f"Report already recorded: {report.report_id}") from None
        return path

    def has_report(self, spec_id: str, report_id: str) -> bool:
        with self._io(f"reading reports of {spec_id}"):
            reports_dir = self._reports_dir(spec_id)
            return reports_dir.exists() and any(reports_dir.glob(f"*-{report_id}.json"))

    def list_reports(self, spec_id: str, role: Optional[str] = None) -> list[Report]:
        """Reports in spawn order, optionally for one role."""
        with self._io(f"reading reports of {spec_id}"):
            reports_dir = self._reports_dir(spec_id)
            if not reports_dir.exists():
                return []
            reports = [Report.from_dict(validate_file(p, "report")) for p in reports_dir.glob("*.json")]
        reports.sort(key=lambda r: r.seq)
        if role:
            reports = [r for r in reports if r.role == role]
        return reports

    # ── decision log and abort requests ──────────────────────────────────

    def log_decision(self, spec_id: str, entry: dict) -> None:
        record = {"at": _now(), **entry}
        with self._io(f"logging decision for {spec_id}"):
            path = self._spec_dir(spec_id) / "decisions.jsonl"
            with open(path, "a") as f:
                f.write(json.dumps(record, sort_keys=True) + "\n")

    def read_decisions(self, spec_id: str) -> list[dict]:
        with self._io(f"reading decisions of {spec_id}"):
            path = self._spec_dir(spec_id) / "decisions.jsonl"
            if not path.exists():
                return []
            entries = []
            for line in path.read_text().splitlines():
                if not line.strip():
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError as e:
                    logger.warning(f"[STORE] Skipping corrupt decision entry in {spec_id}: {e}")
            return entries

    def request_abort(self, spec_id: str) -> None:
        with self._io(f"requesting abort of {spec_id}"):
            (self._spec_dir(spec_id) / "abort.request").write_text(_now() + "\n")

    def abort_requested(self, spec_id: str) -> bool:
        with self._io(f"checking abort of {spec_id}"):
            return (self._spec_dir(spec_id) / "abort.request").exists()

    def clear_abort(self, spec_id: str) -> None:
        with self._io(f"clearing abort of {spec_id}"):
            path = self._spec_dir(spec_id) / "abort.request"
            if path.exists():
                path.unlink()

    def spec_dir(self, spec_id: str) -> Path:
        """Directory of a specification (for clarifications and reports)."""
        return self._spec_dir(spec_id)


class ReadOnlyStore:
    """Read access to one store, handed to worker sessions.

    Exposes no mutating method at all.
    """

    def __init__(self, store: DocumentStore):
        self._store = store

    def get_specification(self, spec_id: str) -> Specification:
        return self._store.get_specification(spec_id)

    def read_artifact(self, spec_id: str, kind: ArtifactKind, name: Optional[str] = None) -> str:
        return self._store.read_artifact(spec_id, kind, name)

    def list_artifacts(self, spec_id: str) -> set[ArtifactKind]:
        return self._store.list_artifacts(spec_id)

    def list_tasks(self, spec_id: str) -> list[Task]:
        return self._store.list_tasks(spec_id)

    def read_documents(self, spec_id: str, kinds: Iterable[ArtifactKind]) -> dict[str, str]:
        return self._store.read_documents(spec_id, kinds)

    def abort_requested(self, spec_id: str) -> bool:
        return self._store.abort_requested(spec_id)
