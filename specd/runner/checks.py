"""
External check tools (formatters, linters, test runners, type checkers).

specd does not know what a check does. It runs the configured command in
the workspace and records only {name, passed, detail}.
"""

import logging
import shlex
import subprocess
from pathlib import Path

from specd.lib.agents_config import CheckSpec, check_binary_available
from specd.lib.errors import InfrastructureError
from specd.store.models import CheckResult

logger = logging.getLogger(__name__)

MAX_DETAIL_LINES = 20


def _tail(text: str, lines: int = MAX_DETAIL_LINES) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


def run_check(check: CheckSpec, workspace: Path, overrides: frozenset = frozenset()) -> CheckResult:
    """Run one check command and summarize the outcome.

    A missing executable yields a skipped result for optional checks and a
    failure otherwise. Skipped results only count as passing when the check
    is listed in overrides.

    Raises:
        InfrastructureError: if the command cannot be started at all
    """
    if not check_binary_available(check.command):
        if check.optional:
            logger.info(f"[CHECK] {check.name}: executable not found, skipped")
            return CheckResult(
                name=check.name,
                passed=False,
                detail="executable not found",
                skipped=True,
                override=check.name in overrides,
            )
        return CheckResult(name=check.name, passed=False, detail="executable not found")

    try:
        result = subprocess.run(
            shlex.split(check.command),
            cwd=str(workspace),
            capture_output=True,
            text=True,
            timeout=check.timeout,
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"[CHECK] {check.name}: timed out after {check.timeout}s")
        return CheckResult(name=check.name, passed=False, detail=f"timed out after {check.timeout}s")
    except OSError as e:
        raise InfrastructureError(f"Could not run check '{check.name}': {e}") from e

    passed = result.returncode == 0
    output = result.stdout if passed else (result.stderr or result.stdout)
    logger.info(f"[CHECK] {check.name}: {'pass' if passed else f'fail (exit {result.returncode})'}")
    return CheckResult(name=check.name, passed=passed, detail=_tail(output))
