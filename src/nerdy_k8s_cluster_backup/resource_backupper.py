from __future__ import annotations

from .archive import FieldLogger
from .errors import AggregateBackupError, ItemBackupError, error_message
from .item_backupper import NAMESPACES_GROUP_RESOURCE, BackupContext, ItemBackupper
from .models import APIResource, APIResourceGroup, GroupResource, GroupVersionResource


class ResourceBackupError(RuntimeError):
    """Raised when the items of a resource cannot be listed."""


class ResourceBackupper:
    def __init__(self, log: FieldLogger, context: BackupContext, item_backupper: ItemBackupper | None = None) -> None:
        self.log = log
        self.context = context
        self.item_backupper = item_backupper or ItemBackupper(context)

    def backup_resource(self, group: APIResourceGroup, resource: APIResource) -> int:
        """Back up every item of one resource and return how many were written.

        Item and listing failures are collected and raised together once every
        namespace has been attempted.
        """
        context = self.context
        group_resource = str(GroupResource(group=group.group, resource=resource.name))
        log = self.log.with_fields(group=group.group_version, resource=group_resource)
        log.info("Evaluating resource")

        cluster_scoped = not resource.namespaced
        if (
            cluster_scoped
            and not context.include_cluster_resources
            and group_resource != NAMESPACES_GROUP_RESOURCE
        ):
            log.info("Skipping resource because it's cluster-scoped and cluster resources are excluded")
            return 0

        if not context.resources.should_include(group_resource):
            log.info("Skipping resource because it's excluded")
            return 0

        if not context.cohabitation.claim(group.group, resource.name):
            cohabitator = context.cohabitation.get(resource.name)
            claimed_by = cohabitator.claimed_by if cohabitator else ""
            log.with_fields(claimed_by=claimed_by).info(
                "Skipping resource because it cohabitates and we've already processed it"
            )
            return 0

        gvr = GroupVersionResource(group=group.group, version=group.version, resource=resource.name)
        errors: list[BaseException] = []
        written = 0
        for namespace in self._namespaces_to_list(cluster_scoped):
            list_log = log.with_fields(list_namespace=namespace or "<all>")
            try:
                items = context.dynamic_factory.client_for(gvr, resource, namespace).list(
                    context.label_selector_string
                )
            except Exception as error:  # pylint: disable=broad-except
                list_log.error("Error listing items", extra={"fields": {"error": error_message(error)}})
                scope = f"namespace {namespace}" if namespace else "all namespaces"
                errors.append(
                    ResourceBackupError(f"error listing {group_resource} in {scope}: {error_message(error)}")
                )
                continue

            list_log.with_fields(count=len(items)).info("Listed items")
            for item in items:
                metadata = item.get("metadata") or {}
                if group_resource == NAMESPACES_GROUP_RESOURCE and not context.namespaces.should_include(
                    metadata.get("name") or ""
                ):
                    continue
                if not context.label_selector.matches(metadata.get("labels")):
                    continue
                try:
                    if self.item_backupper.backup_item(log, item, group_resource):
                        written += 1
                except ItemBackupError as error:
                    log.error("Error backing up item", extra={"fields": {"error": error_message(error)}})
                    errors.append(error)

        if errors:
            raise AggregateBackupError(errors)
        return written

    def _namespaces_to_list(self, cluster_scoped: bool) -> list[str]:
        if cluster_scoped or self.context.namespaces.includes_everything():
            return [""]
        return self.context.namespaces.get_includes()
