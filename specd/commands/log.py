"""
specd log - Show the decision log and report trail of a specification.
"""

import json

from specd.lib.config import SpecdConfig
from specd.store.documents import DocumentStore


def cmd_log(args, store: DocumentStore, config: SpecdConfig) -> int:
    if args.reports:
        reports = store.list_reports(args.id)
        if args.json:
            print(json.dumps([r.to_dict() for r in reports], indent=2))
            return 0
        for report in reports:
            print(f"{report.seq:>4}  {report.role:<15} {report.status.value:<10} "
                  f"{report.observed_status.value:<12} {report.report_id}")
            if report.violation:
                print(f"      violation: {report.violation.get('message', '')}")
        return 0

    entries = store.read_decisions(args.id)
    if args.json:
        print(json.dumps(entries, indent=2))
        return 0
    if not entries:
        print(f"No decisions logged for {args.id}")
        return 0
    for entry in entries[-args.limit:]:
        event = entry.get("event", "?")
        details = {k: v for k, v in entry.items() if k not in ("at", "event") and v not in (None, "", [], ())}
        summary = " ".join(f"{k}={v}" for k, v in sorted(details.items()))
        print(f"{entry.get('at', ''):<27} {event:<20} {summary}")
    return 0
