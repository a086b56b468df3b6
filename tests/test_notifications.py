"""Tests for desktop notifications."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from specd import notifications


@patch("specd.notifications.shutil.which", return_value="/usr/bin/notify-send")
@patch("specd.notifications.subprocess.run")
class TestNotify:
    def test_clarify_event(self, mock_run, mock_which):
        mock_run.return_value = MagicMock(returncode=0, stderr="")
        assert notifications.notify_event("0001-login", "clarify", "missing artifacts")
        argv = mock_run.call_args.args[0]
        assert argv[:5] == ["/usr/bin/notify-send", "--urgency", "critical", "--app-name", "specd"]
        assert argv[5] == "specd: 0001-login"
        assert argv[6] == "Needs a decision: missing artifacts"

    def test_locked_event_is_low_urgency(self, mock_run, mock_which):
        mock_run.return_value = MagicMock(returncode=0, stderr="")
        notifications.notify_event("0001-login", "locked")
        assert mock_run.call_args.args[0][2] == "low"

    def test_unknown_event(self, mock_run, mock_which):
        with pytest.raises(ValueError, match="Unknown notification event"):
            notifications.notify_event("0001-login", "exploded")
        mock_run.assert_not_called()

    def test_invalid_urgency_falls_back(self, mock_run, mock_which, caplog):
        mock_run.return_value = MagicMock(returncode=0, stderr="")
        notifications.notify("t", "m", urgency="loud")
        assert mock_run.call_args.args[0][2] == "normal"
        assert "Invalid urgency" in caplog.text

    def test_long_message_shortened(self, mock_run, mock_which):
        mock_run.return_value = MagicMock(returncode=0, stderr="")
        notifications.notify("t", "word " * 100)
        body = mock_run.call_args.args[0][-1]
        assert len(body) <= notifications.MAX_NOTIFICATION_LENGTH
        assert body.endswith("...")

    def test_failure_reported(self, mock_run, mock_which, caplog):
        mock_run.return_value = MagicMock(returncode=1, stderr="no daemon\n")
        assert not notifications.notify("t", "m")
        assert "no daemon" in caplog.text

    def test_timeout_is_not_fatal(self, mock_run, mock_which, caplog):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="notify-send", timeout=5)
        assert not notifications.notify_event("0001-login", "stalled", "store unavailable")
        assert "timed out" in caplog.text


@patch("specd.notifications.subprocess.run")
@patch("specd.notifications.shutil.which", return_value=None)
def test_skipped_without_notify_send(mock_which, mock_run):
    assert not notifications.notify_event("0001-login", "stalled", "store unavailable")
    mock_run.assert_not_called()
