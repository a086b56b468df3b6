"""
Desktop notifications for specd.

The coordinator notifies the operator when a specification needs them
(a clarification, a stall, a review awaiting approval) and when one is
locked. Delivery goes through notify-send and is best effort: a missing or
failing notifier never affects the coordinator.
"""

import logging
import shutil
import subprocess
import textwrap

logger = logging.getLogger(__name__)

APP_NAME = "specd"
VALID_URGENCIES = ("low", "normal", "critical")
MAX_NOTIFICATION_LENGTH = 200

# event -> (urgency, body template)
EVENTS = {
    "clarify": ("critical", "Needs a decision: {detail}"),
    "stalled": ("critical", "Stalled: {detail}"),
    "awaiting_approval": ("normal", "Reviewed, awaiting approval"),
    "locked": ("low", "Verified and locked"),
}


def notify(title: str, message: str, urgency: str = "normal") -> bool:
    """Send one desktop notification. Returns True if notify-send accepted it."""
    if urgency not in VALID_URGENCIES:
        logger.warning(f"Invalid urgency '{urgency}', using 'normal'")
        urgency = "normal"

    binary = shutil.which("notify-send")
    if binary is None:
        logger.debug("notify-send not found, skipping notification")
        return False

    body = textwrap.shorten(message, MAX_NOTIFICATION_LENGTH, placeholder="...")
    argv = [binary, "--urgency", urgency, "--app-name", APP_NAME, title, body]
    try:
        result = subprocess.run(argv, capture_output=True, text=True, timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning("notify-send timed out")
        return False
    except OSError as e:
        logger.warning(f"Failed to run notify-send: {e}")
        return False

    if result.returncode != 0:
        logger.warning(f"notify-send failed (exit {result.returncode}): {result.stderr.strip()}")
        return False
    return True


def notify_event(spec_id: str, event: str, detail: str = "") -> bool:
    """Notify the operator about a lifecycle event of one specification."""
    if event not in EVENTS:
        raise ValueError(f"Unknown notification event: {event}")
    urgency, template = EVENTS[event]
    return notify(f"specd: {spec_id}", template.format(detail=detail), urgency)
