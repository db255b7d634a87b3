from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterable, Protocol, Sequence
import logging

from .actions import ItemAction, resolve_actions
from .archive import ArchiveWriter, FieldLogger
from .cohabitation import CohabitatingResource, CohabitationTable, default_cohabitating_resources
from .discovery import DiscoveryHelper, get_resource_includes_excludes
from .dynamic import DynamicFactory
from .errors import AggregateBackupError, BackupConfigurationError, aggregate, error_message
from .group_backupper import GroupBackupper
from .hooks import ItemHookHandler, PodCommandExecutor, get_resource_hooks
from .includes_excludes import new_includes_excludes
from .item_backupper import BackupContext
from .labels import LabelSelectorError, label_selector_as_selector
from .ledger import BackedUpItems
from .models import Backup
from .snapshots import SnapshotService, VolumeSnapshotter

STATUS_COMPLETED = "Completed"
STATUS_COMPLETED_WITH_ERRORS = "CompletedWithErrors"
STATUS_FAILED = "Failed"
STATUS_IN_PROGRESS = "InProgress"


@dataclass(frozen=True)
class BackupOutcome:
    status: str
    items_backed_up: int
    error: AggregateBackupError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def error_messages(self) -> list[str]:
        return self.error.messages() if self.error is not None else []


class Backupper(Protocol):
    def backup(
        self,
        backup: Backup,
        backup_file: BinaryIO,
        log_file: BinaryIO,
        actions: Sequence[ItemAction] = (),
    ) -> BackupOutcome:
        ...


class KubernetesBackupper:
    """Backs up the cluster objects selected by a Backup into a gzipped tarball."""

    def __init__(
        self,
        discovery_helper: DiscoveryHelper,
        dynamic_factory: DynamicFactory,
        pod_command_executor: PodCommandExecutor,
        snapshot_service: SnapshotService | None = None,
        *,
        cohabitating_resources: Callable[[], Iterable[CohabitatingResource]] = default_cohabitating_resources,
        log_level: int = logging.INFO,
    ) -> None:
        self.discovery_helper = discovery_helper
        self.dynamic_factory = dynamic_factory
        self.pod_command_executor = pod_command_executor
        self.snapshot_service = snapshot_service
        self.cohabitating_resources = cohabitating_resources
        self.log_level = log_level

    def backup(
        self,
        backup: Backup,
        backup_file: BinaryIO,
        log_file: BinaryIO,
        actions: Sequence[ItemAction] = (),
    ) -> BackupOutcome:
        """Write the items selected by ``backup`` to ``backup_file`` and the run log to ``log_file``.

        Configuration problems raise BackupConfigurationError before any item is
        written. Failures inside individual API groups are collected into the
        returned outcome instead. Both streams are finalized on every path.
        """
        with ArchiveWriter(backup_file, log_file, log_level=self.log_level) as archive:
            log = archive.log.with_fields(backup=backup.namespaced_name)
            log.info("Starting backup")
            backup.status.phase = STATUS_IN_PROGRESS

            try:
                context = self._build_context(log, backup, archive, actions)
            except BackupConfigurationError as error:
                log.error("Backup configuration is invalid", extra={"fields": {"error": error_message(error)}})
                backup.status.phase = STATUS_FAILED
                backup.status.errors = [error_message(error)]
                raise

            group_backupper = GroupBackupper(log, context)
            errors: list[BaseException] = []
            for group in self.discovery_helper.resources():
                try:
                    group_backupper.backup_group(group)
                except Exception as error:  # pylint: disable=broad-except
                    log.with_fields(group=group.group_version).error(
                        "Error backing up group",
                        extra={"fields": {"error": error_message(error)}},
                    )
                    errors.append(error)

            run_error = aggregate(errors)
            if run_error is not None:
                run_error = run_error.flatten()

            outcome = BackupOutcome(
                status=STATUS_COMPLETED if run_error is None else STATUS_COMPLETED_WITH_ERRORS,
                items_backed_up=archive.items_written,
                error=run_error,
            )
            backup.status.phase = outcome.status
            backup.status.items_backed_up = outcome.items_backed_up
            backup.status.errors = outcome.error_messages

            if run_error is None:
                log.info("Backup completed successfully")
            else:
                log.info("Backup completed with errors: %s", run_error)
            return outcome

    def _build_context(
        self,
        log: FieldLogger,
        backup: Backup,
        archive: ArchiveWriter,
        actions: Sequence[ItemAction],
    ) -> BackupContext:
        spec = backup.spec

        cohabitating_resources = list(self.cohabitating_resources())

        namespaces = new_includes_excludes(spec.included_namespaces, spec.excluded_namespaces)
        log.info("Including namespaces: %s", namespaces.includes_string())
        log.info("Excluding namespaces: %s", namespaces.excludes_string())

        resources = get_resource_includes_excludes(
            self.discovery_helper,
            spec.included_resources,
            spec.excluded_resources,
            cohabitating_resources,
        )
        log.info("Including resources: %s", resources.includes_string())
        log.info("Excluding resources: %s", resources.excludes_string())

        resource_hooks = get_resource_hooks(spec.hooks, self.discovery_helper, cohabitating_resources)

        try:
            label_selector = label_selector_as_selector(spec.label_selector)
        except LabelSelectorError as error:
            raise BackupConfigurationError(f"backup has an invalid label selector: {error_message(error)}") from error

        resolved_actions = resolve_actions(actions, self.discovery_helper, cohabitating_resources)

        include_cluster_resources = spec.include_cluster_resources
        if include_cluster_resources is None:
            include_cluster_resources = namespaces.includes_everything()

        return BackupContext(
            backup=backup,
            namespaces=namespaces,
            resources=resources,
            label_selector=label_selector,
            include_cluster_resources=include_cluster_resources,
            dynamic_factory=self.dynamic_factory,
            backed_up_items=BackedUpItems(),
            cohabitation=CohabitationTable(cohabitating_resources),
            resolved_actions=resolved_actions,
            resource_hooks=resource_hooks,
            archive=archive,
            hook_handler=ItemHookHandler(self.pod_command_executor),
            snapshotter=VolumeSnapshotter(self.snapshot_service) if self.snapshot_service is not None else None,
        )
