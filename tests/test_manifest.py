from __future__ import annotations

from pathlib import Path

import pytest

from nerdy_k8s_cluster_backup.manifest import (
    API_VERSION,
    ManifestError,
    backup_from_dict,
    backup_to_dict,
    load_backup_manifest,
    parse_duration,
    status_from_dict,
)
from nerdy_k8s_cluster_backup.models import BackupStatus, ExecHook, VolumeBackupInfo

_MANIFEST = """
apiVersion: backup.nkcb.io/v1
kind: Backup
metadata:
  name: nightly
  labels:
    team: platform
spec:
  includedNamespaces: [ns-a]
  excludedResources: [secrets]
  labelSelector:
    matchLabels:
      app: web
  snapshotVolumes: false
  hooks:
    resources:
      - name: freeze
        includedResources: [pods]
        hooks:
          - exec:
              container: db
              command: [fsfreeze, --freeze, /data]
              onError: Continue
              timeout: 2m
        post:
          - exec:
              command: fsfreeze --unfreeze /data
"""


@pytest.mark.parametrize(
    ("value", "expected"),
    [("30s", 30.0), ("2m", 120.0), ("1h30m", 5400.0), ("500ms", 0.5), ("45", 45.0), (10, 10.0)],
)
def test_parse_duration_with_supported_formats_returns_seconds(value: str | int, expected: float) -> None:
    assert parse_duration(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", ["", "ten seconds", "5d", "1m oops"])
def test_parse_duration_with_invalid_value_raises_manifest_error(value: str) -> None:
    with pytest.raises(ManifestError):
        parse_duration(value)


def test_load_backup_manifest_with_full_document_parses_spec_and_hooks() -> None:
    backup = load_backup_manifest(_MANIFEST)

    assert backup.name == "nightly"
    assert backup.namespace == "nkcb"
    assert backup.labels == {"team": "platform"}
    assert backup.spec.included_namespaces == ("ns-a",)
    assert backup.spec.excluded_resources == ("secrets",)
    assert backup.spec.label_selector == {"matchLabels": {"app": "web"}}
    assert backup.spec.snapshot_volumes is False
    assert backup.spec.include_cluster_resources is None

    hook_spec = backup.spec.hooks[0]
    assert hook_spec.name == "freeze"
    assert hook_spec.hooks == (
        ExecHook(command=("fsfreeze", "--freeze", "/data"), container="db", on_error="Continue", timeout_seconds=120.0),
    )
    assert hook_spec.post_hooks == (ExecHook(command=("fsfreeze --unfreeze /data",)),)


def test_load_backup_manifest_with_path_reads_file(tmp_path: Path) -> None:
    manifest_path = tmp_path / "backup.yaml"
    manifest_path.write_text("metadata:\n  name: from-file\n", encoding="utf-8")

    backup = load_backup_manifest(manifest_path)

    assert backup.name == "from-file"
    assert backup.spec.included_namespaces == ()


def test_load_backup_manifest_with_missing_path_raises_manifest_error(tmp_path: Path) -> None:
    with pytest.raises(ManifestError, match="unable to read"):
        load_backup_manifest(tmp_path / "missing.yaml")


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("metadata: [unterminated", "valid YAML"),
        ("- just\n- a list\n", "YAML mapping"),
        ("kind: Restore\nmetadata:\n  name: x\n", "expected kind"),
        ("metadata: {}\n", "metadata.name is required"),
        ("metadata:\n  name: x\nspec:\n  snapshotVolumes: maybe\n", "spec.snapshotVolumes"),
        ("metadata:\n  name: x\nspec:\n  includedNamespaces: ns-a\n", "spec.includedNamespaces must be a list"),
        ("metadata:\n  name: x\nspec:\n  hooks:\n    resources:\n      - hooks: []\n", r"resources\[0\].name"),
    ],
)
def test_load_backup_manifest_with_invalid_document_raises_manifest_error(text: str, message: str) -> None:
    with pytest.raises(ManifestError, match=message):
        load_backup_manifest(text)


def test_backup_to_dict_with_status_renders_manifest_shape() -> None:
    backup = load_backup_manifest(_MANIFEST)
    backup.status.phase = "Completed"
    backup.status.items_backed_up = 4
    backup.status.volume_backups["pv-1"] = VolumeBackupInfo(
        snapshot_id="snap-1",
        volume_type="gp2",
        availability_zone="us-east-1a",
    )

    document = backup_to_dict(backup)

    assert document["apiVersion"] == API_VERSION
    assert document["kind"] == "Backup"
    assert document["metadata"] == {"name": "nightly", "namespace": "nkcb", "labels": {"team": "platform"}}
    assert document["spec"]["excludedResources"] == ["secrets"]
    assert document["spec"]["snapshotVolumes"] is False
    assert "includeClusterResources" not in document["spec"]
    assert document["spec"]["hooks"]["resources"][0]["hooks"][0]["exec"]["timeout"] == "120s"
    assert document["status"]["itemsBackedUp"] == 4
    assert document["status"]["volumeBackups"]["pv-1"]["snapshotID"] == "snap-1"


def test_backup_to_dict_output_loads_back_into_equal_backup() -> None:
    backup = load_backup_manifest(_MANIFEST)
    backup.status.phase = "CompletedWithErrors"
    backup.status.errors.append("list pods failed")

    document = backup_to_dict(backup)
    restored = backup_from_dict(document)
    restored.status = status_from_dict(document)

    assert restored == backup


def test_status_from_dict_without_status_returns_new_phase() -> None:
    assert status_from_dict({}) == BackupStatus()
