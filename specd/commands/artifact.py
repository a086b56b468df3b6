"""
specd artifact - Attach, show and list specification artifacts.
"""

import sys
from pathlib import Path

from specd.lib.config import SpecdConfig
from specd.store.documents import DocumentStore
from specd.store.models import ArtifactKind, parse_kind


def _read_content(args) -> str:
    if args.file:
        return Path(args.file).read_text()
    return sys.stdin.read()


def cmd_artifact_attach(args, store: DocumentStore, config: SpecdConfig) -> int:
    kind = parse_kind(args.kind)
    if args.file and not Path(args.file).exists():
        print(f"ERROR: File not found: {args.file}")
        return 2
    store.attach_artifact(args.id, kind, _read_content(args), args.name)
    label = f"{kind.value}/{args.name}" if args.name else kind.value
    print(f"Attached {label} to {args.id}")
    return 0


def cmd_artifact_show(args, store: DocumentStore, config: SpecdConfig) -> int:
    content = store.read_artifact(args.id, parse_kind(args.kind), args.name)
    print(content, end="" if content.endswith("\n") else "\n")
    return 0


def cmd_artifact_list(args, store: DocumentStore, config: SpecdConfig) -> int:
    kinds = store.list_artifacts(args.id)
    if not kinds:
        print(f"{args.id} has no artifacts")
        return 0
    for kind in sorted(kinds, key=lambda k: k.value):
        if kind == ArtifactKind.FEATURE:
            for name in store.list_features(args.id):
                print(f"  feature/{name}")
        else:
            print(f"  {kind.value}")
    return 0
