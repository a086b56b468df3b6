"""
specd clarify - Questions the coordinator raised for the operator.
"""

from specd.clarifications import (
    answer_clarification,
    get_clarification,
    get_pending_clarifications,
    render_markdown,
)
from specd.lib.config import SpecdConfig
from specd.store.documents import DocumentStore


def cmd_clarify_list(args, store: DocumentStore, config: SpecdConfig) -> int:
    """List pending clarifications for one or every specification."""
    spec_id = getattr(args, "id", None)
    spec_ids = [spec_id] if spec_id else [s.id for s in store.list_specifications()]

    rows = [clq for sid in spec_ids for clq in get_pending_clarifications(store.spec_dir(sid))]
    if not rows:
        print("No pending clarifications")
        return 0

    print(f"{'ID':<10} {'SPECIFICATION':<32} {'':<3} {'SOURCE':<10} QUESTION")
    for clq in rows:
        question = clq.question.splitlines()[0] if clq.question else ""
        if len(question) > 40:
            question = question[:37] + "..."
        mark = "!" if clq.is_blocking else ""
        print(f"{clq.id:<10} {clq.spec_id:<32} {mark:<3} {clq.source:<10} {question}")
    blocking = sum(1 for clq in rows if clq.is_blocking)
    print(f"\n{len(rows)} pending clarification(s), {blocking} blocking (!)")
    print("Answer with: specd clarify answer <spec> <CLQ-ID> --answer '...'")
    return 0


def cmd_clarify_show(args, store: DocumentStore, config: SpecdConfig) -> int:
    clq = get_clarification(store.spec_dir(args.id), args.clq_id)
    if clq is None:
        print(f"ERROR: Clarification '{args.clq_id}' not found in '{args.id}'")
        return 2
    print(render_markdown(clq))
    if clq.status != "answered":
        print(f"Answer with: specd clarify answer {args.id} {clq.id} --answer '...'")
    return 0


def cmd_clarify_answer(args, store: DocumentStore, config: SpecdConfig) -> int:
    spec_dir = store.spec_dir(args.id)
    answer = args.answer
    if not answer:
        clq = get_clarification(spec_dir, args.clq_id)
        if clq is None:
            print(f"ERROR: Clarification '{args.clq_id}' not found in '{args.id}'")
            return 2
        print(clq.question)
        try:
            answer = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nCancelled")
            return 1
        if not answer:
            print("ERROR: Answer cannot be empty")
            return 1

    answer_clarification(spec_dir, args.clq_id, answer)
    print(f"Answered {args.clq_id}")
    print(f"Run 'specd advance {args.id}' to continue")
    return 0
