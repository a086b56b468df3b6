#!/usr/bin/env python3
"""specd CLI entrypoint."""

import argparse
import logging
import sys

from specd import __version__
from specd.commands import advance as cmd_advance_module
from specd.commands import approve as cmd_approve_module
from specd.commands import artifact as cmd_artifact_module
from specd.commands import clarify as cmd_clarify_module
from specd.commands import list as cmd_list_module
from specd.commands import log as cmd_log_module
from specd.commands import new as cmd_new_module
from specd.commands import status as cmd_status_module
from specd.commands import task as cmd_task_module
from specd.lib import constants
from specd.lib.config import load_config, resolve_root
from specd.lib.errors import SpecdError
from specd.store.documents import DocumentStore


def _run(handler):
    """Adapt a command handler to the (args) -> int signature argparse dispatches to."""
    def run(args):
        root = resolve_root(args.root)
        config = load_config(root)
        return handler(args, DocumentStore(root), config)
    return run


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='specd', description='Specification-driven agent coordinator')
    parser.add_argument('--root', '-r', help='Store root (default: $SPECD_ROOT or ./.specd)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    parser.add_argument('--version', action='version', version=f'specd {__version__}')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # specd new
    p_new = subparsers.add_parser('new', help='Create a specification')
    p_new.add_argument('title', help='Specification title')
    p_new.add_argument('--tag', '-t', action='append', help='Tag (repeatable)')
    p_new.add_argument('--depends-on', '-d', action='append', help='Specification it builds on (repeatable)')
    p_new.add_argument('--requirements', help='Markdown file to attach as requirements')
    p_new.set_defaults(func=_run(cmd_new_module.cmd_new))

    # specd list
    p_list = subparsers.add_parser('list', help='List specifications')
    p_list.add_argument('--status', '-s', help='Only this status')
    p_list.add_argument('--json', action='store_true', help='Machine-readable output')
    p_list.set_defaults(func=_run(cmd_list_module.cmd_list))

    # specd status
    p_status = subparsers.add_parser('status', help='Show specification status')
    p_status.add_argument('id', help='Specification ID')
    p_status.add_argument('--json', action='store_true', help='Machine-readable output')
    p_status.set_defaults(func=_run(cmd_status_module.cmd_status))

    # specd advance
    p_advance = subparsers.add_parser('advance', help='Run one worker session and apply its outcome')
    p_advance.add_argument('id', help='Specification ID')
    p_advance.add_argument('--json', action='store_true', help='Machine-readable output')
    p_advance.set_defaults(func=_run(cmd_advance_module.cmd_advance))

    # specd run
    p_run = subparsers.add_parser('run', help='Advance specifications until idle')
    p_run.add_argument('ids', nargs='*', help='Specification IDs (default: every open one)')
    p_run.add_argument('--max-rounds', type=int, default=50, help='Round limit')
    p_run.set_defaults(func=_run(cmd_advance_module.cmd_run))

    # specd approve / abort / unstall
    p_approve = subparsers.add_parser('approve', help='Approve a specification for implementation')
    p_approve.add_argument('id', help='Specification ID')
    p_approve.set_defaults(func=_run(cmd_approve_module.cmd_approve))

    p_abort = subparsers.add_parser('abort', help='Cancel the running session')
    p_abort.add_argument('id', help='Specification ID')
    p_abort.set_defaults(func=_run(cmd_approve_module.cmd_abort))

    p_unstall = subparsers.add_parser('unstall', help='Clear the stalled flag')
    p_unstall.add_argument('id', help='Specification ID')
    p_unstall.set_defaults(func=_run(cmd_approve_module.cmd_unstall))

    # specd artifact
    p_artifact = subparsers.add_parser('artifact', help='Manage artifacts')
    artifact_sub = p_artifact.add_subparsers(dest='artifact_cmd', required=True)

    p_art_attach = artifact_sub.add_parser('attach', help='Attach or replace an artifact')
    p_art_attach.add_argument('id', help='Specification ID')
    p_art_attach.add_argument('kind', help='Artifact kind')
    p_art_attach.add_argument('--name', '-n', help='Feature name (feature artifacts only)')
    p_art_attach.add_argument('--file', '-f', help='Content file (default: stdin)')
    p_art_attach.set_defaults(func=_run(cmd_artifact_module.cmd_artifact_attach))

    p_art_show = artifact_sub.add_parser('show', help='Print an artifact')
    p_art_show.add_argument('id', help='Specification ID')
    p_art_show.add_argument('kind', help='Artifact kind')
    p_art_show.add_argument('--name', '-n', help='Feature name (feature artifacts only)')
    p_art_show.set_defaults(func=_run(cmd_artifact_module.cmd_artifact_show))

    p_art_list = artifact_sub.add_parser('list', help='List artifacts')
    p_art_list.add_argument('id', help='Specification ID')
    p_art_list.set_defaults(func=_run(cmd_artifact_module.cmd_artifact_list))

    # specd task
    p_task = subparsers.add_parser('task', help='Manage tasks')
    task_sub = p_task.add_subparsers(dest='task_cmd', required=True)

    p_task_add = task_sub.add_parser('add', help='Add a task')
    p_task_add.add_argument('id', help='Specification ID')
    p_task_add.add_argument('description', help='Task description')
    p_task_add.add_argument('--depends-on', '-d', action='append', help='Task it depends on (repeatable)')
    p_task_add.add_argument('--task-id', help='Explicit task ID (default: next T###)')
    p_task_add.set_defaults(func=_run(cmd_task_module.cmd_task_add))

    p_task_import = task_sub.add_parser('import', help='Import tasks from a markdown plan')
    p_task_import.add_argument('id', help='Specification ID')
    p_task_import.add_argument('plan', help='Plan file')
    p_task_import.set_defaults(func=_run(cmd_task_module.cmd_task_import))

    p_task_done = task_sub.add_parser('done', help='Mark a task done')
    p_task_done.add_argument('id', help='Specification ID')
    p_task_done.add_argument('task_id', help='Task ID')
    p_task_done.set_defaults(func=_run(cmd_task_module.cmd_task_done))

    p_task_list = task_sub.add_parser('list', help='List tasks')
    p_task_list.add_argument('id', help='Specification ID')
    p_task_list.set_defaults(func=_run(cmd_task_module.cmd_task_list))

    # specd clarify
    p_clarify = subparsers.add_parser('clarify', help='Manage clarification requests')
    p_clarify.set_defaults(func=_run(cmd_clarify_module.cmd_clarify_list))
    clarify_sub = p_clarify.add_subparsers(dest='clarify_cmd')

    p_clarify_list = clarify_sub.add_parser('list', help='List pending clarifications')
    p_clarify_list.add_argument('id', nargs='?', help='Specification ID (default: all)')
    p_clarify_list.set_defaults(func=_run(cmd_clarify_module.cmd_clarify_list))

    p_clarify_show = clarify_sub.add_parser('show', help='Show clarification details')
    p_clarify_show.add_argument('id', help='Specification ID')
    p_clarify_show.add_argument('clq_id', help='Clarification ID (e.g., CLQ-001)')
    p_clarify_show.set_defaults(func=_run(cmd_clarify_module.cmd_clarify_show))

    p_clarify_answer = clarify_sub.add_parser('answer', help='Answer a clarification')
    p_clarify_answer.add_argument('id', help='Specification ID')
    p_clarify_answer.add_argument('clq_id', help='Clarification ID')
    p_clarify_answer.add_argument('--answer', '-a', help='Answer text (prompts if not provided)')
    p_clarify_answer.set_defaults(func=_run(cmd_clarify_module.cmd_clarify_answer))

    # specd log
    p_log = subparsers.add_parser('log', help='Show decision log')
    p_log.add_argument('id', help='Specification ID')
    p_log.add_argument('--reports', action='store_true', help='Show session reports instead')
    p_log.add_argument('--limit', '-n', type=int, default=50, help='Most recent entries to show')
    p_log.add_argument('--json', action='store_true', help='Machine-readable output')
    p_log.set_defaults(func=_run(cmd_log_module.cmd_log))

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except SpecdError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        print(f"REASON={e.reason}", file=sys.stderr)
        return e.exit_code
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        print("REASON=USAGE", file=sys.stderr)
        return constants.EXIT_NOT_FOUND


if __name__ == '__main__':
    sys.exit(main())
