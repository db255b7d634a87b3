from __future__ import annotations

from typing import Any, Protocol

from .models import Backup, VolumeBackupInfo

ZONE_LABELS = ("failure-domain.beta.kubernetes.io/zone", "topology.kubernetes.io/zone")
BACKUP_NAME_TAG = "nkcb.io/backup"
PV_NAME_TAG = "nkcb.io/pv"


class SnapshotService(Protocol):
    def create_snapshot(self, volume_id: str, availability_zone: str | None, tags: dict[str, str]) -> str:
        ...

    def get_volume_info(self, volume_id: str, availability_zone: str | None) -> tuple[str | None, int | None]:
        ...


def get_volume_id(pv: dict[str, Any]) -> str | None:
    """Return the cloud volume ID backing a PersistentVolume, if it is a supported type."""
    spec = pv.get("spec") or {}

    aws_volume = spec.get("awsElasticBlockStore") or {}
    if aws_volume.get("volumeID"):
        # aws://us-east-1a/vol-0123 or a bare vol-0123
        return str(aws_volume["volumeID"]).rstrip("/").rsplit("/", 1)[-1]

    gce_disk = spec.get("gcePersistentDisk") or {}
    if gce_disk.get("pdName"):
        return str(gce_disk["pdName"])

    azure_disk = spec.get("azureDisk") or {}
    if azure_disk.get("diskName"):
        return str(azure_disk["diskName"])

    return None


def get_availability_zone(pv: dict[str, Any]) -> str | None:
    labels = (pv.get("metadata") or {}).get("labels") or {}
    for label in ZONE_LABELS:
        if labels.get(label):
            return labels[label]
    return None


class VolumeSnapshotter:
    def __init__(self, snapshot_service: SnapshotService) -> None:
        self.snapshot_service = snapshot_service

    def take_pv_snapshot(self, log: Any, pv: dict[str, Any], backup: Backup) -> VolumeBackupInfo | None:
        if backup.spec.snapshot_volumes is False:
            log.info("Backup has volume snapshots disabled; skipping volume snapshot")
            return None

        pv_name = (pv.get("metadata") or {}).get("name") or ""
        volume_id = get_volume_id(pv)
        if volume_id is None:
            log.info("PersistentVolume is not a supported volume type for snapshots, skipping.")
            return None

        zone = get_availability_zone(pv)
        snapshot_log = log.with_fields(volume_id=volume_id, zone=zone or "")
        tags = {**backup.labels, BACKUP_NAME_TAG: backup.name, PV_NAME_TAG: pv_name}

        snapshot_log.info("Snapshotting PersistentVolume")
        snapshot_id = self.snapshot_service.create_snapshot(volume_id, zone, tags)
        volume_type, iops = self.snapshot_service.get_volume_info(volume_id, zone)

        info = VolumeBackupInfo(
            snapshot_id=snapshot_id,
            volume_type=volume_type,
            iops=iops,
            availability_zone=zone,
        )
        backup.status.volume_backups[pv_name] = info
        return info
