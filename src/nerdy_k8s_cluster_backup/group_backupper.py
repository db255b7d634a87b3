from __future__ import annotations

from .archive import FieldLogger
from .errors import AggregateBackupError
from .item_backupper import BackupContext
from .models import APIResource, APIResourceGroup
from .resource_backupper import ResourceBackupError, ResourceBackupper

PODS_RESOURCE = "pods"


class GroupBackupper:
    def __init__(
        self,
        log: FieldLogger,
        context: BackupContext,
        resource_backupper: ResourceBackupper | None = None,
    ) -> None:
        self.log = log
        self.context = context
        self.resource_backupper = resource_backupper or ResourceBackupper(log, context)

    def backup_group(self, group: APIResourceGroup) -> int:
        log = self.log.with_fields(group=group.group_version)
        log.info("Backing up group")

        errors: list[BaseException] = []
        written = 0
        for resource in _ordered_resources(group):
            try:
                written += self.resource_backupper.backup_resource(group, resource)
            except (AggregateBackupError, ResourceBackupError) as error:
                errors.append(error)

        if errors:
            raise AggregateBackupError(errors)
        return written


def _ordered_resources(group: APIResourceGroup) -> list[APIResource]:
    # Core group: pods first, everything else in discovery order.
    if group.group:
        return list(group.resources)
    return sorted(group.resources, key=lambda resource: resource.name != PODS_RESOURCE)
