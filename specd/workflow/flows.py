"""Prefect flow that drives open specifications until nothing advances.

Each round advances every selected specification once, in parallel across
specifications. The flow stops when a round makes no progress (everything
is waiting on an operator, a dependency, a fix or is done).
"""

import logging
from collections import Counter
from pathlib import Path
from typing import Optional

from prefect import flow, get_run_logger
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Safety limit: a worker that keeps failing verification would loop forever
MAX_ROUNDS = 50


class RunParams(BaseModel):
    """Parameters for a run-until-idle flow."""
    root: str
    spec_ids: list[str] = Field(default_factory=list)  # empty = every open specification
    max_rounds: int = Field(default=MAX_ROUNDS, ge=1)


@flow(
    name="specd-run-until-idle",
    persist_result=False,
    retries=0,
)
def specd_run_until_idle(params: RunParams, coordinator=None) -> dict:
    """Advance specifications round by round until idle.

    Args:
        params: Store root, optional spec ids and the round limit
        coordinator: Pre-built Coordinator (built from params.root if None)

    Returns:
        Dict with rounds run, final action per specification and whether
        the round limit was hit
    """
    from specd.coordinator import Coordinator
    from specd.lib.config import load_config
    from specd.store.documents import DocumentStore

    log = get_run_logger()

    if coordinator is None:
        root = Path(params.root)
        coordinator = Coordinator(DocumentStore(root), load_config(root))

    final: dict[str, dict] = {}
    rounds = 0
    limit_reached = False
    while rounds < params.max_rounds:
        spec_ids = params.spec_ids or coordinator.open_specifications()
        if not spec_ids:
            log.info("No open specifications")
            break

        rounds += 1
        actions = coordinator.advance_many(spec_ids)
        for next_action in actions:
            final[next_action.spec_id] = next_action.to_dict()

        summary = Counter(a.action.value for a in actions)
        log.info(f"Round {rounds}: " + ", ".join(f"{k}={v}" for k, v in sorted(summary.items())))

        if not any(a.progressed for a in actions):
            break
    else:
        limit_reached = True
        log.warning(f"Stopped after {params.max_rounds} rounds without going idle")

    return {
        "rounds": rounds,
        "limit_reached": limit_reached,
        "specifications": final,
    }


def run_until_idle(root: Path, spec_ids: Optional[list[str]] = None,
                   max_rounds: int = MAX_ROUNDS) -> dict:
    """Entry point for the CLI."""
    params = RunParams(root=str(root), spec_ids=list(spec_ids or []), max_rounds=max_rounds)
    return specd_run_until_idle(params)
