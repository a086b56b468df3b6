"""
specd approve / abort / unstall - Operator signals.
"""

from specd.coordinator import Coordinator
from specd.lib.config import SpecdConfig
from specd.store.documents import DocumentStore


def cmd_approve(args, store: DocumentStore, config: SpecdConfig) -> int:
    """Approve a draft or reviewed specification for implementation."""
    spec = Coordinator(store, config).approve(args.id)
    print(f"Approved {spec.id} (status: {spec.status.value})")
    print(f"Run 'specd advance {spec.id}' to start implementation")
    return 0


def cmd_abort(args, store: DocumentStore, config: SpecdConfig) -> int:
    if Coordinator(store, config).abort(args.id):
        print(f"Abort requested for {args.id}; the running session's work will be discarded")
    else:
        print(f"No session running for {args.id}")
    return 0


def cmd_unstall(args, store: DocumentStore, config: SpecdConfig) -> int:
    if Coordinator(store, config).unstall(args.id):
        print(f"Cleared stall on {args.id}")
    else:
        print(f"{args.id} was not stalled")
    return 0
