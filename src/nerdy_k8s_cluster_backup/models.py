from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

HOOK_ERROR_MODE_CONTINUE = "Continue"
HOOK_ERROR_MODE_FAIL = "Fail"
DEFAULT_HOOK_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class GroupResource:
    group: str
    resource: str

    def __str__(self) -> str:
        if not self.group:
            return self.resource
        return f"{self.resource}.{self.group}"


@dataclass(frozen=True)
class GroupVersionResource:
    group: str
    version: str
    resource: str

    def group_resource(self) -> GroupResource:
        return GroupResource(group=self.group, resource=self.resource)

    @property
    def group_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"


def parse_group_resource(value: str) -> GroupResource:
    resource, _, group = value.strip().partition(".")
    return GroupResource(group=group, resource=resource)


def parse_group_version(value: str) -> tuple[str, str]:
    group, separator, version = value.strip().partition("/")
    if not separator:
        return "", group
    return group, version


@dataclass(frozen=True)
class APIResource:
    name: str
    namespaced: bool
    kind: str
    verbs: tuple[str, ...] = ()
    short_names: tuple[str, ...] = ()
    singular_name: str = ""


@dataclass(frozen=True)
class APIResourceGroup:
    group_version: str
    resources: tuple[APIResource, ...]

    @property
    def group(self) -> str:
        return parse_group_version(self.group_version)[0]

    @property
    def version(self) -> str:
        return parse_group_version(self.group_version)[1]


@dataclass(frozen=True)
class ItemKey:
    resource: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"resource={self.resource},namespace={self.namespace},name={self.name}"


@dataclass(frozen=True)
class ExecHook:
    command: tuple[str, ...]
    container: str | None = None
    on_error: str = HOOK_ERROR_MODE_FAIL
    timeout_seconds: float = DEFAULT_HOOK_TIMEOUT_SECONDS


@dataclass(frozen=True)
class ResourceHookSpec:
    name: str
    included_namespaces: tuple[str, ...] = ()
    excluded_namespaces: tuple[str, ...] = ()
    included_resources: tuple[str, ...] = ()
    excluded_resources: tuple[str, ...] = ()
    label_selector: dict[str, Any] | None = None
    hooks: tuple[ExecHook, ...] = ()
    post_hooks: tuple[ExecHook, ...] = ()


@dataclass(frozen=True)
class BackupSpec:
    included_namespaces: tuple[str, ...] = ()
    excluded_namespaces: tuple[str, ...] = ()
    included_resources: tuple[str, ...] = ()
    excluded_resources: tuple[str, ...] = ()
    label_selector: dict[str, Any] | None = None
    snapshot_volumes: bool | None = None
    include_cluster_resources: bool | None = None
    hooks: tuple[ResourceHookSpec, ...] = ()


@dataclass(frozen=True)
class VolumeBackupInfo:
    snapshot_id: str
    volume_type: str | None = None
    iops: int | None = None
    availability_zone: str | None = None


@dataclass
class BackupStatus:
    phase: str = "New"
    items_backed_up: int = 0
    volume_backups: dict[str, VolumeBackupInfo] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


@dataclass
class Backup:
    name: str
    spec: BackupSpec = field(default_factory=BackupSpec)
    namespace: str = "nkcb"
    labels: dict[str, str] = field(default_factory=dict)
    status: BackupStatus = field(default_factory=BackupStatus)

    @property
    def namespaced_name(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ResourceSelector:
    included_resources: tuple[str, ...] = ()
    excluded_resources: tuple[str, ...] = ()
    included_namespaces: tuple[str, ...] = ()
    excluded_namespaces: tuple[str, ...] = ()
    label_selector: str = ""


@dataclass(frozen=True)
class BackupRunRecord:
    backup_name: str
    status: str
    started_at: str
    finished_at: str
    items_backed_up: int = 0
    error_count: int = 0
    archive_path: str | None = None
    log_path: str | None = None
    checksum_sha256: str | None = None
    message: str = ""
