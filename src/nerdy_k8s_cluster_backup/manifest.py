from __future__ import annotations

from pathlib import Path
from typing import Any
import re

import yaml

from .models import (
    DEFAULT_HOOK_TIMEOUT_SECONDS,
    HOOK_ERROR_MODE_FAIL,
    Backup,
    BackupSpec,
    BackupStatus,
    ExecHook,
    ResourceHookSpec,
    VolumeBackupInfo,
)

API_VERSION = "backup.nkcb.io/v1"
BACKUP_KIND = "Backup"
DEFAULT_BACKUP_NAMESPACE = "nkcb"
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


class ManifestError(ValueError):
    """Raised when a backup manifest cannot be parsed."""


def parse_duration(value: str | int | float) -> float:
    """Parse ``30s``, ``2m``, ``1h30m`` or ``500ms`` into seconds; bare numbers are seconds."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)

    text = str(value).strip()
    if not text:
        raise ManifestError("duration must not be empty")
    try:
        return float(text)
    except ValueError:
        pass

    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text) or position == 0:
        raise ManifestError(f"invalid duration {text!r}")
    return total


def load_backup_manifest(source: str | Path) -> Backup:
    """Load a Backup from a YAML file path or YAML text."""
    if isinstance(source, Path):
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as error:
            raise ManifestError(f"unable to read backup manifest {source}: {error}") from error
    else:
        text = source

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as error:
        raise ManifestError(f"backup manifest must be valid YAML: {error.__class__.__name__}") from error

    if not isinstance(document, dict):
        raise ManifestError("backup manifest must be a YAML mapping")
    return backup_from_dict(document)


def backup_from_dict(document: dict[str, Any]) -> Backup:
    kind = document.get("kind", BACKUP_KIND)
    if kind != BACKUP_KIND:
        raise ManifestError(f"expected kind {BACKUP_KIND!r}, got {kind!r}")

    metadata = _mapping(document.get("metadata"), "metadata")
    name = str(metadata.get("name") or "").strip()
    if not name:
        raise ManifestError("metadata.name is required")

    labels = {str(key): str(value) for key, value in _mapping(metadata.get("labels"), "metadata.labels").items()}
    spec = _mapping(document.get("spec"), "spec")
    hooks = _mapping(spec.get("hooks"), "spec.hooks")

    return Backup(
        name=name,
        namespace=str(metadata.get("namespace") or DEFAULT_BACKUP_NAMESPACE),
        labels=labels,
        spec=BackupSpec(
            included_namespaces=_strings(spec.get("includedNamespaces"), "spec.includedNamespaces"),
            excluded_namespaces=_strings(spec.get("excludedNamespaces"), "spec.excludedNamespaces"),
            included_resources=_strings(spec.get("includedResources"), "spec.includedResources"),
            excluded_resources=_strings(spec.get("excludedResources"), "spec.excludedResources"),
            label_selector=_optional_mapping(spec.get("labelSelector"), "spec.labelSelector"),
            snapshot_volumes=_optional_bool(spec.get("snapshotVolumes"), "spec.snapshotVolumes"),
            include_cluster_resources=_optional_bool(
                spec.get("includeClusterResources"),
                "spec.includeClusterResources",
            ),
            hooks=tuple(
                _resource_hook_spec(entry, index)
                for index, entry in enumerate(_list(hooks.get("resources"), "spec.hooks.resources"))
            ),
        ),
    )


def _resource_hook_spec(entry: Any, index: int) -> ResourceHookSpec:
    path = f"spec.hooks.resources[{index}]"
    data = _mapping(entry, path)
    name = str(data.get("name") or "").strip()
    if not name:
        raise ManifestError(f"{path}.name is required")

    return ResourceHookSpec(
        name=name,
        included_namespaces=_strings(data.get("includedNamespaces"), f"{path}.includedNamespaces"),
        excluded_namespaces=_strings(data.get("excludedNamespaces"), f"{path}.excludedNamespaces"),
        included_resources=_strings(data.get("includedResources"), f"{path}.includedResources"),
        excluded_resources=_strings(data.get("excludedResources"), f"{path}.excludedResources"),
        label_selector=_optional_mapping(data.get("labelSelector"), f"{path}.labelSelector"),
        hooks=tuple(
            _exec_hook(hook, f"{path}.hooks[{hook_index}]")
            for hook_index, hook in enumerate(_list(data.get("hooks") or data.get("pre"), f"{path}.hooks"))
        ),
        post_hooks=tuple(
            _exec_hook(hook, f"{path}.post[{hook_index}]")
            for hook_index, hook in enumerate(_list(data.get("post"), f"{path}.post"))
        ),
    )


def _exec_hook(entry: Any, path: str) -> ExecHook:
    exec_spec = _mapping(_mapping(entry, path).get("exec"), f"{path}.exec")
    command = exec_spec.get("command")
    if isinstance(command, str):
        command = [command]
    timeout = exec_spec.get("timeout")
    return ExecHook(
        container=str(exec_spec["container"]) if exec_spec.get("container") else None,
        command=_strings(command, f"{path}.exec.command"),
        on_error=str(exec_spec.get("onError") or HOOK_ERROR_MODE_FAIL),
        timeout_seconds=parse_duration(timeout) if timeout is not None else DEFAULT_HOOK_TIMEOUT_SECONDS,
    )


def _mapping(value: Any, path: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ManifestError(f"{path} must be a mapping")
    return value


def _optional_mapping(value: Any, path: str) -> dict[str, Any] | None:
    if value is None:
        return None
    return _mapping(value, path)


def _list(value: Any, path: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ManifestError(f"{path} must be a list")
    return value


def _strings(value: Any, path: str) -> tuple[str, ...]:
    return tuple(str(item) for item in _list(value, path))


def _optional_bool(value: Any, path: str) -> bool | None:
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ManifestError(f"{path} must be true or false")
    return value


def backup_to_dict(backup: Backup) -> dict[str, Any]:
    """Render a Backup, status included, in the manifest document shape."""
    spec = backup.spec
    document_spec: dict[str, Any] = {
        "includedNamespaces": list(spec.included_namespaces),
        "excludedNamespaces": list(spec.excluded_namespaces),
        "includedResources": list(spec.included_resources),
        "excludedResources": list(spec.excluded_resources),
        "hooks": {"resources": [_resource_hook_spec_to_dict(hook_spec) for hook_spec in spec.hooks]},
    }
    if spec.label_selector is not None:
        document_spec["labelSelector"] = spec.label_selector
    if spec.snapshot_volumes is not None:
        document_spec["snapshotVolumes"] = spec.snapshot_volumes
    if spec.include_cluster_resources is not None:
        document_spec["includeClusterResources"] = spec.include_cluster_resources

    status = backup.status
    return {
        "apiVersion": API_VERSION,
        "kind": BACKUP_KIND,
        "metadata": {"name": backup.name, "namespace": backup.namespace, "labels": dict(backup.labels)},
        "spec": document_spec,
        "status": {
            "phase": status.phase,
            "itemsBackedUp": status.items_backed_up,
            "errors": list(status.errors),
            "volumeBackups": {
                pv_name: {
                    "snapshotID": info.snapshot_id,
                    "type": info.volume_type,
                    "iops": info.iops,
                    "availabilityZone": info.availability_zone,
                }
                for pv_name, info in status.volume_backups.items()
            },
        },
    }


def status_from_dict(document: dict[str, Any]) -> BackupStatus:
    status = _mapping(document.get("status"), "status")
    volume_backups = {}
    for pv_name, entry in _mapping(status.get("volumeBackups"), "status.volumeBackups").items():
        info = _mapping(entry, f"status.volumeBackups.{pv_name}")
        volume_backups[str(pv_name)] = VolumeBackupInfo(
            snapshot_id=str(info.get("snapshotID") or ""),
            volume_type=info.get("type"),
            iops=info.get("iops"),
            availability_zone=info.get("availabilityZone"),
        )
    return BackupStatus(
        phase=str(status.get("phase") or "New"),
        items_backed_up=int(status.get("itemsBackedUp") or 0),
        volume_backups=volume_backups,
        errors=list(_strings(status.get("errors"), "status.errors")),
    )


def _resource_hook_spec_to_dict(hook_spec: ResourceHookSpec) -> dict[str, Any]:
    data: dict[str, Any] = {
        "name": hook_spec.name,
        "includedNamespaces": list(hook_spec.included_namespaces),
        "excludedNamespaces": list(hook_spec.excluded_namespaces),
        "includedResources": list(hook_spec.included_resources),
        "excludedResources": list(hook_spec.excluded_resources),
        "hooks": [_exec_hook_to_dict(hook) for hook in hook_spec.hooks],
        "post": [_exec_hook_to_dict(hook) for hook in hook_spec.post_hooks],
    }
    if hook_spec.label_selector is not None:
        data["labelSelector"] = hook_spec.label_selector
    return data


def _exec_hook_to_dict(hook: ExecHook) -> dict[str, Any]:
    exec_spec: dict[str, Any] = {
        "command": list(hook.command),
        "onError": hook.on_error,
        "timeout": f"{hook.timeout_seconds:g}s",
    }
    if hook.container:
        exec_spec["container"] = hook.container
    return {"exec": exec_spec}
