"""
specd new - Create a specification.
"""

from pathlib import Path

from specd.lib.config import SpecdConfig
from specd.store.documents import DocumentStore
from specd.store.models import ArtifactKind


def cmd_new(args, store: DocumentStore, config: SpecdConfig) -> int:
    """Create a draft specification, optionally with its requirements."""
    requirements = None
    if args.requirements:
        path = Path(args.requirements)
        if not path.exists():
            print(f"ERROR: Requirements file not found: {path}")
            return 2
        requirements = path.read_text()

    spec_id = store.create_specification(
        args.title,
        tags=args.tag or [],
        depends_on=args.depends_on or [],
    )
    if requirements is not None:
        store.attach_artifact(spec_id, ArtifactKind.REQUIREMENTS, requirements)

    print(f"Created specification: {spec_id}")
    if requirements is None:
        print(f"  Next: specd artifact attach {spec_id} requirements --file <requirements.md>")
    else:
        print(f"  Next: specd advance {spec_id}")
    return 0
