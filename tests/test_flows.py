"""Tests for the run-until-idle Prefect flow."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from specd.coordinator import Action, NextAction
from specd.store.models import SpecStatus
from specd.workflow.flows import RunParams, run_until_idle, specd_run_until_idle


def rounds_of(*rounds):
    """Coordinator mock whose advance_many returns the given rounds in order."""
    coordinator = MagicMock()
    coordinator.advance_many.side_effect = list(rounds)
    return coordinator


@patch("specd.workflow.flows.get_run_logger")
class TestRunUntilIdle:
    def test_stops_when_round_makes_no_progress(self, mock_logger):
        coordinator = rounds_of(
            [NextAction("0001-a", Action.CONTINUE, status=SpecStatus.IN_REVIEW, transitioned=True)],
            [NextAction("0001-a", Action.AWAIT_APPROVAL, status=SpecStatus.IN_REVIEW)],
        )
        params = RunParams(root="/tmp/store", spec_ids=["0001-a"])
        result = specd_run_until_idle.fn(params, coordinator=coordinator)

        assert result["rounds"] == 2
        assert result["limit_reached"] is False
        assert result["specifications"]["0001-a"]["action"] == "await_approval"
        coordinator.open_specifications.assert_not_called()

    def test_round_limit(self, mock_logger):
        busy = [NextAction("0001-a", Action.CONTINUE, status=SpecStatus.IN_PROGRESS)]
        coordinator = rounds_of(busy, busy, busy)
        params = RunParams(root="/tmp/store", spec_ids=["0001-a"], max_rounds=3)
        result = specd_run_until_idle.fn(params, coordinator=coordinator)

        assert result["rounds"] == 3
        assert result["limit_reached"] is True
        mock_logger.return_value.warning.assert_called_once()

    def test_nothing_open(self, mock_logger):
        coordinator = MagicMock()
        coordinator.open_specifications.return_value = []
        result = specd_run_until_idle.fn(RunParams(root="/tmp/store"), coordinator=coordinator)

        assert result == {"rounds": 0, "limit_reached": False, "specifications": {}}
        coordinator.advance_many.assert_not_called()

    def test_open_specifications_rechecked_each_round(self, mock_logger):
        coordinator = rounds_of(
            [NextAction("0001-a", Action.DONE, status=SpecStatus.LOCKED, transitioned=True),
             NextAction("0002-b", Action.WAIT, status=SpecStatus.APPROVED)],
            [NextAction("0002-b", Action.STOP, status=SpecStatus.IN_PROGRESS)],
        )
        coordinator.open_specifications.side_effect = [["0001-a", "0002-b"], ["0002-b"]]
        result = specd_run_until_idle.fn(RunParams(root="/tmp/store"), coordinator=coordinator)

        assert result["rounds"] == 2
        assert coordinator.advance_many.call_args_list[1].args[0] == ["0002-b"]
        assert result["specifications"]["0001-a"]["action"] == "done"
        assert result["specifications"]["0002-b"]["action"] == "stop"


class TestRunParams:
    def test_max_rounds_positive(self):
        with pytest.raises(ValidationError):
            RunParams(root="/tmp/store", max_rounds=0)

    @patch("specd.workflow.flows.specd_run_until_idle")
    def test_entry_point_builds_params(self, mock_flow):
        mock_flow.return_value = {"rounds": 0, "limit_reached": False, "specifications": {}}
        run_until_idle(Path("/tmp/store"), ["0001-a"], max_rounds=7)

        params = mock_flow.call_args.args[0]
        assert params.root == "/tmp/store"
        assert params.spec_ids == ["0001-a"]
        assert params.max_rounds == 7
