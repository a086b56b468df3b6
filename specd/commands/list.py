"""
specd list - List specifications.
"""

import json

from specd.lib.config import SpecdConfig
from specd.store.documents import DocumentStore


def cmd_list(args, store: DocumentStore, config: SpecdConfig) -> int:
    specs = store.list_specifications()
    if args.status:
        specs = [s for s in specs if s.status.value == args.status]

    if getattr(args, "json", False):
        print(json.dumps([
            {**s.to_meta(), "tasks": dict(zip(("done", "total"), s.task_progress()))}
            for s in specs
        ], indent=2))
        return 0

    if not specs:
        print("No specifications")
        return 0

    print(f"{'ID':<32} {'STATUS':<12} {'TASKS':<7} TITLE")
    print("-" * 80)
    for spec in specs:
        done, total = spec.task_progress()
        title = spec.title[:30] + "..." if len(spec.title) > 30 else spec.title
        flag = "  [STALLED]" if spec.is_stalled else ""
        print(f"{spec.id:<32} {spec.status.value:<12} {f'{done}/{total}':<7} {title}{flag}")
    print("-" * 80)
    print(f"{len(specs)} specification(s)")
    return 0
