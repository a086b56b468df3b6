"""
specd task - Manage tasks of a specification.
"""

from pathlib import Path

from specd.lib.config import SpecdConfig
from specd.store.documents import DocumentStore
from specd.store.taskplan import import_plan, parse_plan


def cmd_task_add(args, store: DocumentStore, config: SpecdConfig) -> int:
    task = store.add_task(args.id, args.description, args.depends_on or [], args.task_id)
    deps = f" (depends on {', '.join(task.depends_on)})" if task.depends_on else ""
    print(f"Added {task.id}: {task.description}{deps}")
    return 0


def cmd_task_import(args, store: DocumentStore, config: SpecdConfig) -> int:
    path = Path(args.plan)
    if not path.exists():
        print(f"ERROR: Plan file not found: {path}")
        return 2
    planned = parse_plan(path)
    if not planned:
        print(f"No tasks found in {path}")
        return 0
    created = import_plan(store, args.id, planned)
    print(f"Imported {len(created)} task(s) into {args.id}")
    return 0


def cmd_task_done(args, store: DocumentStore, config: SpecdConfig) -> int:
    task = store.complete_task(args.id, args.task_id)
    print(f"{task.id} done")
    return 0


def cmd_task_list(args, store: DocumentStore, config: SpecdConfig) -> int:
    tasks = store.list_tasks(args.id)
    if not tasks:
        print(f"{args.id} has no tasks")
        return 0
    for task in tasks:
        mark = "x" if task.done else " "
        deps = f"  <- {', '.join(task.depends_on)}" if task.depends_on else ""
        print(f"  [{mark}] {task.id:<8} {task.description}{deps}")
    done = sum(1 for t in tasks if t.done)
    print(f"{done}/{len(tasks)} done")
    return 0
