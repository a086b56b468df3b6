"""
specd status - Show one specification.
"""

import json

from specd.coordinator import Coordinator
from specd.lib.config import SpecdConfig
from specd.store.documents import DocumentStore


def cmd_status(args, store: DocumentStore, config: SpecdConfig) -> int:
    info = Coordinator(store, config).status(args.id)

    if args.json:
        print(json.dumps(info, indent=2))
        return 0

    print(f"Specification: {info['id']}")
    print("=" * 60)
    print(f"Title:     {info['title']}")
    print(f"Status:    {info['status']}")
    if info["tags"]:
        print(f"Tags:      {', '.join(info['tags'])}")
    if info["depends_on"]:
        print(f"Builds on: {', '.join(info['depends_on'])}")
    print(f"Tasks:     {info['tasks']['done']}/{info['tasks']['total']} done")
    print(f"Artifacts: {', '.join(info['artifacts']) or '(none)'}")
    if info["features"]:
        print(f"Features:  {', '.join(info['features'])}")
    print(f"Sessions:  {info['sessions']}")
    if info["stalled"]:
        print(f"STALLED:   {info['stalled']['reason']} (since {info['stalled']['at']})")
        print(f"           specd unstall {info['id']}")
    print()

    if info["transitions"]:
        print("Next transitions")
        print("-" * 40)
        for dest, edge in info["transitions"].items():
            state = "ready" if not edge["missing"] else "missing: " + ", ".join(edge["missing"])
            who = " (operator)" if edge["actor"] == "operator" else ""
            print(f"  -> {dest}{who}: {state}")
        print()

    if info["pending_clarifications"]:
        print(f"Pending clarifications: {', '.join(info['pending_clarifications'])}")
        print(f"  specd clarify show {info['id']} <CLQ-ID>")
        print()

    last = info["last_report"]
    if last:
        print(f"Last report: seq {last['seq']} {last['role']} -> {last['status']}")
        if last["findings"]:
            print(f"  {last['findings'][:200]}")
    return 0
