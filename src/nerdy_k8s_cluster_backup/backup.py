from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Sequence
import hashlib
import logging
import re

from .actions import ItemAction
from .backupper import STATUS_COMPLETED_WITH_ERRORS, STATUS_FAILED, BackupOutcome, Backupper
from .errors import BackupConfigurationError, error_message
from .metadata import BackupMetadataStore
from .models import Backup, BackupRunRecord
from .object_store import ObjectStore
from .persistence import upload_backup

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupManagerConfig:
    backup_dir: Path
    bucket: str = "cluster-backups"
    keep_local_copy: bool = True


class BackupStageError(RuntimeError):
    def __init__(self, *, stage: str, reason: str) -> None:
        normalized_reason = reason.strip() or "unknown error"
        super().__init__(f"{stage} stage failed: {normalized_reason}")
        self.stage = stage


class BackupManager:
    """Runs one backup end to end: local files, engine, checksum, upload, history."""

    def __init__(
        self,
        *,
        backupper: Backupper,
        metadata_store: BackupMetadataStore,
        config: BackupManagerConfig,
        object_store: ObjectStore | None = None,
    ) -> None:
        self.backupper = backupper
        self.metadata_store = metadata_store
        self.config = config
        self.object_store = object_store
        self.config.backup_dir.mkdir(parents=True, exist_ok=True)

    def run(self, backup: Backup, actions: Sequence[ItemAction] = ()) -> BackupRunRecord:
        record = self._run(backup, actions)
        self.metadata_store.record_run(record)
        return record

    def _run(self, backup: Backup, actions: Sequence[ItemAction] = ()) -> BackupRunRecord:
        started_at = _utc_now_iso()
        run_dir = self.config.backup_dir / _sanitize_filesystem_component(backup.name)
        archive_path = run_dir / f"{_sanitize_filesystem_component(backup.name)}.tar.gz"
        log_path = run_dir / f"{_sanitize_filesystem_component(backup.name)}-logs.gz"
        status = STATUS_FAILED
        items_backed_up = 0
        error_count = 0
        checksum_sha256: str | None = None
        kept_archive_path: str | None = None
        kept_log_path: str | None = None
        message = ""

        try:
            outcome = self._execute_backup(
                backup=backup,
                actions=actions,
                run_dir=run_dir,
                archive_path=archive_path,
                log_path=log_path,
            )
            items_backed_up = outcome.items_backed_up
            error_count = len(outcome.error_messages)
            checksum_sha256 = self._validate_archive_and_checksum(archive_path=archive_path)
            if self.object_store is not None:
                self._upload(backup=backup, archive_path=archive_path, log_path=log_path)
            status = outcome.status
            if outcome.error is not None:
                message = f"completed with {error_count} error(s): {outcome.error}"
        except BackupStageError as error:
            message = str(error)
            error_count = max(error_count, 1)
        except Exception as error:  # pylint: disable=broad-except
            message = f"unexpected backup failure: {error_message(error)}"
            error_count = max(error_count, 1)

        if status == STATUS_FAILED:
            backup.status.phase = STATUS_FAILED
            checksum_sha256 = None

        if self.config.keep_local_copy or self.object_store is None:
            kept_archive_path = str(archive_path) if archive_path.exists() else None
            kept_log_path = str(log_path) if log_path.exists() else None
        else:
            archive_path.unlink(missing_ok=True)
            log_path.unlink(missing_ok=True)

        finished_at = _utc_now_iso()
        if status == STATUS_COMPLETED_WITH_ERRORS:
            logger.warning("Backup %s completed with %d error(s)", backup.name, error_count)
        elif status == STATUS_FAILED:
            logger.error("Backup %s failed: %s", backup.name, message)
        else:
            logger.info("Backup %s completed with %d item(s)", backup.name, items_backed_up)

        return BackupRunRecord(
            backup_name=backup.name,
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            items_backed_up=items_backed_up,
            error_count=error_count,
            archive_path=kept_archive_path,
            log_path=kept_log_path,
            checksum_sha256=checksum_sha256,
            message=message,
        )

    def _execute_backup(
        self,
        *,
        backup: Backup,
        actions: Sequence[ItemAction],
        run_dir: Path,
        archive_path: Path,
        log_path: Path,
    ) -> BackupOutcome:
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise BackupStageError(stage="prepare", reason=error_message(error)) from error

        try:
            with archive_path.open("wb") as backup_file, log_path.open("wb") as log_file:
                return self.backupper.backup(backup, backup_file, log_file, actions)
        except BackupConfigurationError as error:
            raise BackupStageError(stage="configure", reason=error_message(error)) from error
        except Exception as error:  # pylint: disable=broad-except
            raise BackupStageError(stage="backup", reason=error_message(error)) from error

    def _validate_archive_and_checksum(self, *, archive_path: Path) -> str:
        try:
            if not archive_path.exists():
                raise RuntimeError(f"archive not found at {archive_path}")
            if archive_path.stat().st_size <= 0:
                raise RuntimeError(f"archive is empty at {archive_path}")
            return _sha256(archive_path)
        except Exception as error:  # pylint: disable=broad-except
            raise BackupStageError(stage="checksum", reason=error_message(error)) from error

    def _upload(self, *, backup: Backup, archive_path: Path, log_path: Path) -> None:
        try:
            with archive_path.open("rb") as backup_file, log_path.open("rb") as log_file:
                upload_backup(self.object_store, self.config.bucket, backup, backup_file, log_file)
        except Exception as error:  # pylint: disable=broad-except
            raise BackupStageError(stage="upload", reason=error_message(error)) from error


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).replace(microsecond=0).isoformat()


def _sanitize_filesystem_component(value: str) -> str:
    sanitized = re.sub(r"[^a-zA-Z0-9._-]", "_", value)
    return sanitized or "unknown"


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as file_handle:
        for chunk in iter(lambda: file_handle.read(64 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()
