"""
Safe specd.env parser.

Reads KEY=value lines without any shell evaluation. An optional leading
"export " is tolerated so the file can also be sourced by a shell. Values
that look like shell expansion or command chaining are rejected outright.
"""

import logging
import re
from pathlib import Path
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# backticks, $( ), ${ }, ; && || |
FORBIDDEN = re.compile(r'`|\$\(|\$\{|;|&&|\|')

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')
QUOTED = re.compile(r'^(["\'])(.*)\1$', re.DOTALL)

TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def _parse_line(line: str, where: str) -> tuple[str, str]:
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    key, sep, value = line.partition('=')
    if not sep:
        raise ValueError(f"{where}: Invalid syntax (no '=')")

    key = key.strip()
    if not KEY_PATTERN.match(key):
        raise ValueError(f"{where}: Invalid key '{key}'")

    value = value.strip()
    quoted = QUOTED.match(value)
    if quoted:
        value = quoted.group(2)
    if FORBIDDEN.search(value):
        raise ValueError(f"{where}: Forbidden pattern in value of {key}")
    return key, value


def parse_env_text(text: str, source: str = "<string>") -> dict[str, str]:
    """Parse env-file text into a dict. Later assignments win.

    Raises:
        ValueError: on a malformed line, a bad key or a forbidden pattern
    """
    env = {}
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if line and not line.startswith('#'):
            key, value = _parse_line(line, f"{source} line {lineno}")
            env[key] = value
    return env


def load_env(filepath: Path) -> dict[str, str]:
    """Parse an env file. A missing file yields an empty dict."""
    path = Path(filepath)
    if not path.is_file():
        return {}
    return parse_env_text(path.read_text(), source=path.name)


def _typed(env: dict[str, str], key: str, default: T, convert: Callable[[str], T], kind: str) -> T:
    raw = env.get(key, "")
    if raw == "":
        return default
    try:
        return convert(raw)
    except ValueError:
        logger.warning(f"Invalid {kind} for {key}: '{raw}', using {default}")
        return default


def env_int(env: dict[str, str], key: str, default: int) -> int:
    return _typed(env, key, default, int, "integer")


def env_float(env: dict[str, str], key: str, default: float) -> float:
    return _typed(env, key, default, float, "number")


def env_bool(env: dict[str, str], key: str, default: bool) -> bool:
    return _typed(env, key, default, lambda raw: raw.lower() in TRUE_VALUES, "boolean")
