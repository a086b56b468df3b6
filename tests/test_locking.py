"""Tests for specd.runner.locking."""

import os

import pytest

from specd.lib.errors import LeaseHeldError
from specd.runner.locking import is_leased, lease_file, spec_lease, store_mutex


class TestSpecLease:
    def test_lease_excludes_second_holder(self, tmp_path):
        with spec_lease(tmp_path, "0001-a"):
            assert is_leased(lease_file(tmp_path, "0001-a"))
            with pytest.raises(LeaseHeldError):
                with spec_lease(tmp_path, "0001-a"):
                    pass

    def test_released_on_exit(self, tmp_path):
        with spec_lease(tmp_path, "0001-a"):
            pass
        assert not is_leased(lease_file(tmp_path, "0001-a"))
        with spec_lease(tmp_path, "0001-a"):
            pass

    def test_released_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with spec_lease(tmp_path, "0001-a"):
                raise RuntimeError("boom")
        assert not is_leased(lease_file(tmp_path, "0001-a"))

    def test_independent_specifications(self, tmp_path):
        with spec_lease(tmp_path, "0001-a"):
            with spec_lease(tmp_path, "0002-b"):
                assert is_leased(lease_file(tmp_path, "0002-b"))

    def test_lock_file_records_pid(self, tmp_path):
        with spec_lease(tmp_path, "0001-a"):
            assert lease_file(tmp_path, "0001-a").read_text().strip() == str(os.getpid())

    def test_is_leased_without_file(self, tmp_path):
        assert not is_leased(lease_file(tmp_path, "0001-a"))


class TestStoreMutex:
    def test_timeout(self, tmp_path):
        with store_mutex(tmp_path, "0001-a"):
            with pytest.raises(LeaseHeldError, match="store mutex"):
                with store_mutex(tmp_path, "0001-a", timeout=0.05):
                    pass

    def test_separate_from_lease(self, tmp_path):
        with spec_lease(tmp_path, "0001-a"):
            with store_mutex(tmp_path, "0001-a"):
                pass
