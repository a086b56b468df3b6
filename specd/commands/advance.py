"""
specd advance / run - Drive specifications forward.
"""

import json
import sys

from specd.coordinator import Action, Coordinator, NextAction
from specd.lib import constants
from specd.lib.config import SpecdConfig
from specd.lib.errors import CapabilityViolationError, InvalidTransitionError, MissingArtifactError
from specd.store.documents import DocumentStore

ACTION_EXIT_CODES = {
    Action.CONTINUE: constants.EXIT_OK,
    Action.AWAIT_APPROVAL: constants.EXIT_OK,
    Action.DONE: constants.EXIT_OK,
    Action.WAIT: constants.EXIT_OK,
    Action.STOP: constants.EXIT_STOP,
    Action.FAIL: constants.EXIT_STOP,
    Action.CLARIFY: constants.EXIT_CLARIFY,
    Action.STALLED: constants.EXIT_STALLED,
    Action.BUSY: constants.EXIT_BUSY,
}

# rejections behind a CLARIFY that carry their own exit code
ERROR_EXIT_CODES = {
    err.reason: err.exit_code
    for err in (MissingArtifactError, InvalidTransitionError, CapabilityViolationError)
}


def exit_status(next_action: NextAction) -> tuple[int, str]:
    """Exit code and REASON code for an advance result."""
    if next_action.error_reason in ERROR_EXIT_CODES:
        return ERROR_EXIT_CODES[next_action.error_reason], next_action.error_reason
    return ACTION_EXIT_CODES[next_action.action], next_action.action.value.upper()


def print_action(next_action: NextAction) -> None:
    role = f" [{next_action.role}]" if next_action.role else ""
    status = next_action.status.value if next_action.status else "?"
    print(f"{next_action.spec_id}{role}: {next_action.action.value} (status: {status})")
    if next_action.reason:
        print(f"  {next_action.reason}")
    for item in next_action.missing:
        print(f"  - {item}")
    if next_action.clarification:
        print(f"  specd clarify show {next_action.spec_id} {next_action.clarification}")


def cmd_advance(args, store: DocumentStore, config: SpecdConfig) -> int:
    next_action = Coordinator(store, config).advance(args.id)

    if args.json:
        print(json.dumps(next_action.to_dict(), indent=2))
    else:
        print_action(next_action)

    code, reason = exit_status(next_action)
    if code != constants.EXIT_OK:
        print(f"REASON={reason}", file=sys.stderr)
    return code


def cmd_run(args, store: DocumentStore, config: SpecdConfig) -> int:
    """Advance until idle, through the Prefect flow."""
    from specd.workflow.flows import run_until_idle

    for spec_id in args.ids:
        store.get_specification(spec_id)

    result = run_until_idle(config.root, args.ids, args.max_rounds)

    print(f"Ran {result['rounds']} round(s)")
    worst = constants.EXIT_OK
    for spec_id, data in sorted(result["specifications"].items()):
        print(f"  {spec_id:<32} {data['action']:<15} {data['status'] or ''}")
        code = ERROR_EXIT_CODES.get(data.get("error_reason"), ACTION_EXIT_CODES[Action(data["action"])])
        if code != constants.EXIT_OK and worst == constants.EXIT_OK:
            worst = code
    if result["limit_reached"]:
        print(f"WARNING: stopped after {args.max_rounds} rounds")
    return worst
