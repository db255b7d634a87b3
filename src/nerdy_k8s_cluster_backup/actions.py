from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from .cohabitation import CohabitatingResource
from .discovery import DiscoveryHelper, get_resource_includes_excludes
from .errors import BackupConfigurationError, error_message
from .includes_excludes import IncludesExcludes, new_includes_excludes
from .labels import LabelSelectorError, Selector, everything, parse_selector
from .models import Backup, ResourceSelector


class ItemAction(Protocol):
    """Per-item extension point.

    ``execute`` returns the (possibly modified) item, or ``None`` to keep the
    item out of the backup.
    """

    def applies_to(self) -> ResourceSelector:
        ...

    def execute(self, log: Any, item: dict[str, Any], backup: Backup) -> dict[str, Any] | None:
        ...


@dataclass(frozen=True)
class ResolvedAction:
    action: ItemAction
    resource_includes_excludes: IncludesExcludes
    namespace_includes_excludes: IncludesExcludes
    selector: Selector

    def applies_to_item(self, group_resource: str, namespace: str, labels: Mapping[str, str] | None) -> bool:
        if not self.resource_includes_excludes.should_include(group_resource):
            return False
        if namespace and not self.namespace_includes_excludes.should_include(namespace):
            return False
        return self.selector.matches(labels)

    @property
    def name(self) -> str:
        return type(self.action).__name__


def resolve_actions(
    actions: Sequence[ItemAction],
    helper: DiscoveryHelper,
    cohabitating_resources: Sequence[CohabitatingResource] | None = None,
) -> list[ResolvedAction]:
    resolved: list[ResolvedAction] = []
    for action in actions:
        action_name = type(action).__name__
        try:
            resource_selector = action.applies_to()
        except Exception as error:  # pylint: disable=broad-except
            raise BackupConfigurationError(
                f"action {action_name} returned an invalid applicability descriptor: {error_message(error)}"
            ) from error

        selector = everything()
        if resource_selector.label_selector:
            try:
                selector = parse_selector(resource_selector.label_selector)
            except LabelSelectorError as error:
                raise BackupConfigurationError(
                    f"action {action_name} has an invalid label selector: {error_message(error)}"
                ) from error

        resolved.append(
            ResolvedAction(
                action=action,
                resource_includes_excludes=get_resource_includes_excludes(
                    helper,
                    resource_selector.included_resources,
                    resource_selector.excluded_resources,
                    cohabitating_resources,
                ),
                namespace_includes_excludes=new_includes_excludes(
                    resource_selector.included_namespaces,
                    resource_selector.excluded_namespaces,
                ),
                selector=selector,
            )
        )

    return resolved


def first_applicable_action(
    actions: Sequence[ResolvedAction],
    group_resource: str,
    namespace: str,
    labels: Mapping[str, str] | None,
) -> ResolvedAction | None:
    for action in actions:
        if action.applies_to_item(group_resource, namespace, labels):
            return action
    return None
