"""
Configuration loader for specd.

Settings live in specd.env at the store root. Every key is optional.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from . import envparse
from .constants import DEFAULT_ROOT_DIRNAME, ROOT_ENV_VAR

CONFIG_FILENAME = "specd.env"


@dataclass
class SpecdConfig:
    """Coordinator settings from specd.env"""
    root: Path
    workspace: Path  # Tree the documentation checks read (line ranges, signatures)
    session_timeout: float = 600.0  # Seconds before a hung session is declared stalled
    lease_timeout: float = 0.0  # Seconds to wait for a busy specification (0 = fail fast)
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    max_parallel: int = 4
    notify: bool = True


def resolve_root(explicit: str | None = None) -> Path:
    """Store root from --root, then $SPECD_ROOT, then ./.specd"""
    if explicit:
        return Path(explicit).resolve()
    env_root = os.environ.get(ROOT_ENV_VAR)
    if env_root:
        return Path(env_root).resolve()
    return (Path.cwd() / DEFAULT_ROOT_DIRNAME).resolve()


def load_config(root: Path) -> SpecdConfig:
    """Load specd.env from the store root and return SpecdConfig."""
    root = Path(root)
    env = envparse.load_env(root / CONFIG_FILENAME)

    workspace = env.get("WORKSPACE")
    if workspace:
        workspace_path = Path(workspace)
        if not workspace_path.is_absolute():
            workspace_path = (root / workspace_path).resolve()
    else:
        workspace_path = root.parent

    retry_attempts = envparse.env_int(env, "RETRY_ATTEMPTS", 3)
    max_parallel = envparse.env_int(env, "MAX_PARALLEL", 4)

    return SpecdConfig(
        root=root,
        workspace=workspace_path,
        session_timeout=envparse.env_float(env, "SESSION_TIMEOUT", 600.0),
        lease_timeout=envparse.env_float(env, "LEASE_TIMEOUT", 0.0),
        retry_attempts=max(1, retry_attempts),
        retry_base_delay=envparse.env_float(env, "RETRY_BASE_DELAY", 1.0),
        retry_max_delay=envparse.env_float(env, "RETRY_MAX_DELAY", 30.0),
        max_parallel=max(1, max_parallel),
        notify=envparse.env_bool(env, "NOTIFY", True),
    )
