"""Tests for the command line entry point."""

import json

import pytest

import mirrorctl

PROFILE = """
source:
  record_backend: filesystem
  record_path: {tmp}/source.json
  blob_backend: filesystem
  blob_root: {tmp}/source-blobs
  bucket: A
target:
  record_backend: filesystem
  record_path: {tmp}/target.json
  blob_backend: filesystem
  blob_root: {tmp}/target-blobs
  bucket: B
replication:
  retry_backoff_seconds: 0
"""


@pytest.fixture
def profile(tmp_path, source_tree, monkeypatch):
    monkeypatch.delenv("TREEMIRROR_CONFIG", raising=False)
    (tmp_path / "source.json").write_text(json.dumps(source_tree))
    blobs = tmp_path / "source-blobs"
    blobs.mkdir()
    (blobs / "img1").write_bytes(b"cover")
    (blobs / "doc1").write_bytes(b"document")
    path = tmp_path / "profile.yaml"
    path.write_text(PROFILE.format(tmp=tmp_path))
    return path


class TestMirrorctl:
    def test_no_command_prints_help(self, capsys):
        assert mirrorctl.main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_migrate_requires_scope(self, profile):
        with pytest.raises(SystemExit):
            mirrorctl.main(["--config", str(profile), "migrate"])

    def test_migrate_all_then_verify(self, profile, tmp_path, capsys):
        assert mirrorctl.main(["--config", str(profile), "--json", "migrate", "--all"]) == 0
        migrated = json.loads(capsys.readouterr().out)
        assert migrated["status"] == "completed"
        assert migrated["progress"]["blobs_copied"] == 2

        target = json.loads((tmp_path / "target.json").read_text())
        assert target["files"]["f1"]["storagePath"] == "B/doc1"

        (tmp_path / "target-blobs" / "img1").write_bytes(b"changed")
        assert mirrorctl.main(["--config", str(profile), "--json", "verify"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert [d["key"] for d in report["storageDiscrepancies"]] == ["img1"]
        assert (tmp_path / "target-blobs" / "img1").read_bytes() == b"cover"

    def test_migrate_missing_project(self, profile, capsys):
        assert mirrorctl.main(["--config", str(profile), "--json", "migrate", "--project", "nope"]) == 1
        assert json.loads(capsys.readouterr().out)["success"] is False

    def test_human_output(self, profile, capsys):
        assert mirrorctl.main(["--config", str(profile), "migrate", "--project", "p1"]) == 0
        assert "COMPLETED" in capsys.readouterr().out

    def test_missing_profile(self, tmp_path):
        assert mirrorctl.main(["--config", str(tmp_path / "nope.yaml"), "show-config"]) == 1

    def test_show_config(self, profile, capsys):
        assert mirrorctl.main(["--config", str(profile), "show-config"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["target"]["bucket"] == "B"
