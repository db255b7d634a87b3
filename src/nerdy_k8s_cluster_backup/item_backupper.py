from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .actions import ResolvedAction, first_applicable_action
from .archive import ArchiveWriter, FieldLogger
from .cohabitation import CohabitationTable
from .dynamic import DynamicFactory
from .errors import ItemBackupError, error_message
from .hooks import HOOK_PHASE_POST, HOOK_PHASE_PRE, ItemHookHandler, ResourceHook
from .includes_excludes import IncludesExcludes
from .labels import Selector
from .ledger import BackedUpItems
from .models import Backup, ItemKey
from .snapshots import VolumeSnapshotter

NAMESPACES_GROUP_RESOURCE = "namespaces"
PERSISTENT_VOLUMES_GROUP_RESOURCE = "persistentvolumes"


@dataclass
class BackupContext:
    """Run-scoped state shared by the group, resource and item steps."""

    backup: Backup
    namespaces: IncludesExcludes
    resources: IncludesExcludes
    label_selector: Selector
    include_cluster_resources: bool
    dynamic_factory: DynamicFactory
    backed_up_items: BackedUpItems
    cohabitation: CohabitationTable
    resolved_actions: list[ResolvedAction]
    resource_hooks: list[ResourceHook]
    archive: ArchiveWriter
    hook_handler: ItemHookHandler
    snapshotter: VolumeSnapshotter | None = None

    @property
    def label_selector_string(self) -> str:
        return str(self.label_selector)


class ItemBackupper:
    def __init__(self, context: BackupContext) -> None:
        self.context = context

    def backup_item(self, log: FieldLogger, item: dict[str, Any], group_resource: str) -> bool:
        """Back up one item; return True when it was written to the archive."""
        context = self.context
        metadata = item.get("metadata") or {}
        namespace = metadata.get("namespace") or ""
        name = metadata.get("name") or ""
        log = log.with_fields(namespace=namespace, name=name)

        if namespace and not context.namespaces.should_include(namespace):
            log.info("Excluding item because namespace is excluded")
            return False

        if (
            not namespace
            and not context.include_cluster_resources
            and group_resource != NAMESPACES_GROUP_RESOURCE
        ):
            log.info("Excluding item because resource is cluster-scoped and cluster resources are excluded")
            return False

        if not context.resources.should_include(group_resource):
            log.info("Excluding item because resource is excluded")
            return False

        key = ItemKey(resource=group_resource, namespace=namespace, name=name)
        if context.backed_up_items.mark(key):
            log.info("Skipping item because it's already been backed up.")
            return False

        log.info("Backing up resource")
        try:
            context.hook_handler.handle_hooks(log, group_resource, item, context.resource_hooks, HOOK_PHASE_PRE)
        except ItemBackupError:
            raise
        except Exception as error:  # pylint: disable=broad-except
            raise ItemBackupError(f"error backing up item ({key}): {error_message(error)}") from error

        # Once pre hooks ran, post hooks run on every path.
        errors: list[BaseException] = []
        written = False
        try:
            written = self._write_item(log, item, group_resource, namespace, name, metadata.get("labels"))
        except Exception as error:  # pylint: disable=broad-except
            errors.append(error)

        try:
            context.hook_handler.handle_hooks(log, group_resource, item, context.resource_hooks, HOOK_PHASE_POST)
        except Exception as error:  # pylint: disable=broad-except
            log.error("Error running post hooks", extra={"fields": {"error": error_message(error)}})
            errors.append(error)

        if len(errors) == 1 and isinstance(errors[0], ItemBackupError):
            raise errors[0]
        if errors:
            reasons = "; ".join(error_message(error) for error in errors)
            raise ItemBackupError(f"error backing up item ({key}): {reasons}") from errors[0]
        return written

    def _write_item(
        self,
        log: FieldLogger,
        item: dict[str, Any],
        group_resource: str,
        namespace: str,
        name: str,
        labels: dict[str, str] | None,
    ) -> bool:
        context = self.context
        updated_item = self._run_action(log, item, group_resource, namespace, labels)
        if updated_item is None:
            log.info("Skipping item because a custom action vetoed it")
            return False

        snapshot_error: Exception | None = None
        if group_resource == PERSISTENT_VOLUMES_GROUP_RESOURCE and context.snapshotter is not None:
            try:
                context.snapshotter.take_pv_snapshot(log, updated_item, context.backup)
            except Exception as error:  # pylint: disable=broad-except
                log.error("Error snapshotting PersistentVolume", extra={"fields": {"error": error_message(error)}})
                snapshot_error = error

        context.archive.write_item(group_resource, namespace, name, updated_item)

        if snapshot_error is not None:
            key = ItemKey(resource=group_resource, namespace=namespace, name=name)
            raise ItemBackupError(
                f"error snapshotting volume for item ({key}): {error_message(snapshot_error)}"
            ) from snapshot_error
        return True

    def _run_action(
        self,
        log: FieldLogger,
        item: dict[str, Any],
        group_resource: str,
        namespace: str,
        labels: dict[str, str] | None,
    ) -> dict[str, Any] | None:
        action = first_applicable_action(self.context.resolved_actions, group_resource, namespace, labels)
        if action is None:
            return item

        action_log = log.with_fields(action=action.name)
        action_log.info("Executing custom action")
        try:
            return action.action.execute(action_log, item, self.context.backup)
        except Exception as error:  # pylint: disable=broad-except
            raise ItemBackupError(f"error executing custom action {action.name}: {error_message(error)}") from error
