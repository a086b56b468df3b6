"""
Worker and check tool configuration.

Loads agents.yaml from the store root. If the file is missing, the defaults
below apply.

Example agents.yaml:

    roles:
      review: claude -p --output-format json
      implementation: codex exec --full-auto -C {workspace}
    checks:
      - name: lint
        command: ruff check .
      - name: tests
        command: pytest -q
        timeout: 900
      - name: types
        command: mypy .
        optional: true
    overrides:
      - types

Role commands receive the session prompt (JSON) on stdin unless the template
contains {prompt}. Templates may use {workspace} and {spec_id}.

A check marked optional whose binary is missing is recorded as skipped.
Skipped checks block completion unless listed under overrides.
"""

import logging
import re
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

AGENTS_FILENAME = "agents.yaml"

# Roles that the coordinator can hand to an external agent command.
# documentation and verification have built-in workers.
DEFAULT_ROLE_COMMANDS = {
    "review": "claude -p --output-format json",
    "implementation": "codex exec --dangerously-bypass-approvals-and-sandbox -C {workspace}",
}

DEFAULT_CHECK_TIMEOUT = 300


@dataclass(frozen=True)
class CheckSpec:
    """One external check tool (formatter, linter, test runner, type checker)."""
    name: str
    command: str
    timeout: int = DEFAULT_CHECK_TIMEOUT
    optional: bool = False


@dataclass
class AgentsConfig:
    """Agent configuration from agents.yaml."""
    roles: dict[str, str] = field(default_factory=lambda: DEFAULT_ROLE_COMMANDS.copy())
    checks: list[CheckSpec] = field(default_factory=list)
    overrides: frozenset[str] = frozenset()


def _parse_checks(raw) -> list[CheckSpec]:
    checks = []
    seen = set()
    for entry in raw or []:
        if not isinstance(entry, dict) or "name" not in entry or "command" not in entry:
            logger.warning(f"Ignoring malformed check entry: {entry!r}")
            continue
        name = str(entry["name"])
        if name in seen:
            logger.warning(f"Duplicate check '{name}' ignored")
            continue
        seen.add(name)
        checks.append(CheckSpec(
            name=name,
            command=str(entry["command"]),
            timeout=int(entry.get("timeout", DEFAULT_CHECK_TIMEOUT)),
            optional=bool(entry.get("optional", False)),
        ))
    return checks


def load_agents_config(root: Optional[Path]) -> AgentsConfig:
    """Load agents.yaml and return AgentsConfig.

    If root is None or the file doesn't exist, returns defaults.
    """
    if root is None:
        return AgentsConfig()

    config_path = root / AGENTS_FILENAME
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return AgentsConfig()

    roles = DEFAULT_ROLE_COMMANDS.copy()
    roles.update({str(k): str(v) for k, v in (data.get("roles") or {}).items()})

    try:
        checks = _parse_checks(data.get("checks"))
    except (TypeError, ValueError) as e:
        logger.warning(f"Invalid checks in {config_path}: {e}")
        checks = []

    overrides = frozenset(str(name) for name in (data.get("overrides") or []))
    unknown = overrides - {c.name for c in checks}
    if unknown:
        logger.warning(f"Overrides name unknown checks: {sorted(unknown)}")

    return AgentsConfig(roles=roles, checks=checks, overrides=overrides)


@dataclass
class RoleCommand:
    """Result of building a role command."""
    cmd: list[str]
    prompt_via_stdin: bool

    def get_stdin_input(self, prompt: str) -> str | None:
        return prompt if self.prompt_via_stdin else None


def get_role_command(
    config: AgentsConfig,
    role: str,
    context: dict[str, str] | None = None,
) -> RoleCommand:
    """Build the argv for a role's external worker.

    If {prompt} is in the template it is substituted as a single argument,
    otherwise the caller passes the prompt on stdin.

    Raises:
        ValueError: if no command is configured for the role
    """
    if role not in config.roles:
        raise ValueError(f"No command configured for role: {role}")

    cmd_template = config.roles[role]
    prompt_via_stdin = "{prompt}" not in cmd_template

    prompt_value = None
    if context and "prompt" in context:
        prompt_value = context["prompt"]
        cmd_template = cmd_template.replace("{prompt}", "__PROMPT_PLACEHOLDER__")

    if context:
        for key, value in context.items():
            if key != "prompt":
                cmd_template = cmd_template.replace(f"{{{key}}}", str(value))

    remaining_vars = re.findall(r'\{(\w+)\}', cmd_template)
    if remaining_vars:
        logger.error(f"Role '{role}' command has unsubstituted variables: {remaining_vars}")

    cmd = shlex.split(cmd_template)
    if prompt_value is not None:
        cmd = [prompt_value if arg == "__PROMPT_PLACEHOLDER__" else arg for arg in cmd]

    return RoleCommand(cmd=cmd, prompt_via_stdin=prompt_via_stdin)


def check_binary_available(command: str) -> bool:
    """True if the first word of command is on PATH."""
    parts = shlex.split(command)
    return bool(parts) and shutil.which(parts[0]) is not None
