from __future__ import annotations

from datetime import timedelta
from typing import BinaryIO
import io
import json
import logging

from .errors import error_message
from .manifest import ManifestError, backup_from_dict, backup_to_dict, status_from_dict
from .models import Backup
from .object_store import ObjectStore, ObjectStoreError

logger = logging.getLogger(__name__)

METADATA_FILE_NAME = "backup.json"
KEY_DELIMITER = "/"


def metadata_key(backup_name: str) -> str:
    return f"{backup_name}/{METADATA_FILE_NAME}"


def archive_key(backup_name: str) -> str:
    return f"{backup_name}/{backup_name}.tar.gz"


def log_key(backup_name: str) -> str:
    return f"{backup_name}/{backup_name}-logs.gz"


def upload_backup(
    store: ObjectStore,
    bucket: str,
    backup: Backup,
    backup_file: BinaryIO,
    log_file: BinaryIO,
) -> None:
    """Upload the run log, the backup metadata and the archive for one backup.

    A failed log upload is logged and ignored. A failed archive upload removes
    the metadata object again so the bucket never lists a backup without data.
    """
    try:
        store.put_object(bucket, log_key(backup.name), log_file)
    except Exception as error:  # pylint: disable=broad-except
        logger.error("Error uploading log file for backup %s: %s", backup.name, error_message(error))

    document = json.dumps(backup_to_dict(backup), sort_keys=True).encode("utf-8")
    try:
        store.put_object(bucket, metadata_key(backup.name), io.BytesIO(document))
    except Exception as error:  # pylint: disable=broad-except
        raise ObjectStoreError(
            f"error uploading metadata for backup {backup.name}: {error_message(error)}"
        ) from error

    try:
        store.put_object(bucket, archive_key(backup.name), backup_file)
    except Exception as error:  # pylint: disable=broad-except
        try:
            store.delete_object(bucket, metadata_key(backup.name))
        except Exception as delete_error:  # pylint: disable=broad-except
            logger.error(
                "Error removing metadata for backup %s after failed upload: %s",
                backup.name,
                error_message(delete_error),
            )
        raise ObjectStoreError(f"error uploading backup {backup.name}: {error_message(error)}") from error


def list_backups(store: ObjectStore, bucket: str) -> list[Backup]:
    """Return every backup in ``bucket`` whose metadata can be read."""
    backups = []
    for prefix in store.list_common_prefixes(bucket, KEY_DELIMITER):
        name = prefix.rstrip(KEY_DELIMITER)
        try:
            backups.append(get_backup(store, bucket, name))
        except (ObjectStoreError, ManifestError) as error:
            logger.warning("Skipping unreadable backup %s: %s", name, error_message(error))
    return backups


def get_backup(store: ObjectStore, bucket: str, backup_name: str) -> Backup:
    with store.get_object(bucket, metadata_key(backup_name)) as reader:
        payload = reader.read()

    try:
        document = json.loads(payload)
    except ValueError as error:
        raise ManifestError(f"metadata for backup {backup_name} is not valid JSON") from error
    if not isinstance(document, dict):
        raise ManifestError(f"metadata for backup {backup_name} must be a JSON object")

    backup = backup_from_dict(document)
    backup.status = status_from_dict(document)
    return backup


def download_backup(store: ObjectStore, bucket: str, backup_name: str) -> BinaryIO:
    return store.get_object(bucket, archive_key(backup_name))


def delete_backup(store: ObjectStore, bucket: str, backup_name: str) -> None:
    """Delete every object stored under the backup's prefix."""
    errors = []
    for key in store.list_objects(bucket, f"{backup_name}{KEY_DELIMITER}"):
        try:
            store.delete_object(bucket, key)
        except Exception as error:  # pylint: disable=broad-except
            errors.append(f"{key}: {error_message(error)}")
    if errors:
        raise ObjectStoreError(f"error deleting backup {backup_name}: {'; '.join(errors)}")


def create_log_download_url(store: ObjectStore, bucket: str, backup_name: str, ttl: timedelta) -> str:
    return store.create_signed_url(bucket, log_key(backup_name), ttl)
