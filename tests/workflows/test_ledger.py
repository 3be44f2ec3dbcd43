"""Tests for SyncLedger."""

import pytest

from workflows import SyncLedger, compute_sha256


@pytest.fixture
def ledger(tmp_path):
    l = SyncLedger(str(tmp_path / "ledger.db"))
    yield l
    l.close()


class TestSyncLedger:
    def test_record_and_confirm(self, ledger, tmp_path):
        path = tmp_path / "a.pdf"
        path.write_bytes(b"content")
        sha = compute_sha256(str(path))

        assert ledger.is_confirmed(str(path), sha) is False
        ledger.record(str(path), sha, "remote-1", "folder-1")
        assert ledger.is_confirmed(str(path), sha) is True
        assert ledger.get(str(path))['remote_object_id'] == "remote-1"

    def test_changed_content_not_confirmed(self, ledger, tmp_path):
        path = tmp_path / "a.pdf"
        path.write_bytes(b"v1")
        ledger.record(str(path), compute_sha256(str(path)), "remote-1")

        path.write_bytes(b"v2")
        assert ledger.is_confirmed(str(path), compute_sha256(str(path))) is False

    def test_forget(self, ledger, tmp_path):
        ledger.record(str(tmp_path / "a"), "sha", "remote-1")
        assert ledger.forget(str(tmp_path / "a")) is True
        assert ledger.forget(str(tmp_path / "a")) is False
        assert ledger.get(str(tmp_path / "a")) is None

    def test_compute_sha256(self, tmp_path):
        path = tmp_path / "empty"
        path.write_bytes(b"")
        assert compute_sha256(str(path)) == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
