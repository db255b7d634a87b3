from __future__ import annotations

from typing import Any

import pytest

from nerdy_k8s_cluster_backup.actions import first_applicable_action, resolve_actions
from nerdy_k8s_cluster_backup.discovery import StaticDiscoveryHelper
from nerdy_k8s_cluster_backup.errors import BackupConfigurationError
from nerdy_k8s_cluster_backup.models import APIResource, APIResourceGroup, Backup, ResourceSelector

_VERBS = ("create", "delete", "get", "list")


def _helper() -> StaticDiscoveryHelper:
    return StaticDiscoveryHelper(
        [
            APIResourceGroup(
                group_version="v1",
                resources=(
                    APIResource(name="pods", namespaced=True, kind="Pod", verbs=_VERBS, short_names=("po",)),
                    APIResource(name="configmaps", namespaced=True, kind="ConfigMap", verbs=_VERBS, short_names=("cm",)),
                ),
            ),
        ]
    )


class _SelectorAction:
    def __init__(self, selector: ResourceSelector) -> None:
        self.selector = selector

    def applies_to(self) -> ResourceSelector:
        return self.selector

    def execute(self, log: Any, item: dict[str, Any], backup: Backup) -> dict[str, Any] | None:
        return item


class _PodAction(_SelectorAction):
    pass


class _BrokenAction:
    def applies_to(self) -> ResourceSelector:
        raise RuntimeError("descriptor unavailable")

    def execute(self, log: Any, item: dict[str, Any], backup: Backup) -> dict[str, Any] | None:
        return item


def test_resolve_actions_with_short_names_resolves_to_canonical_resources() -> None:
    resolved = resolve_actions(
        [_SelectorAction(ResourceSelector(included_resources=("po",), excluded_namespaces=("kube-system",)))],
        _helper(),
    )

    assert len(resolved) == 1
    assert resolved[0].resource_includes_excludes.get_includes() == ["pods"]
    assert resolved[0].applies_to_item("pods", "ns-a", {}) is True
    assert resolved[0].applies_to_item("pods", "kube-system", {}) is False
    assert resolved[0].applies_to_item("configmaps", "ns-a", {}) is False


def test_resolve_actions_with_cluster_scoped_item_skips_namespace_check() -> None:
    resolved = resolve_actions([_SelectorAction(ResourceSelector(included_namespaces=("ns-a",)))], _helper())

    assert resolved[0].applies_to_item("persistentvolumes", "", {}) is True
    assert resolved[0].applies_to_item("pods", "ns-b", {}) is False


def test_resolve_actions_with_label_selector_matches_only_labelled_items() -> None:
    resolved = resolve_actions([_SelectorAction(ResourceSelector(label_selector="app=web"))], _helper())

    assert resolved[0].applies_to_item("pods", "ns-a", {"app": "web"}) is True
    assert resolved[0].applies_to_item("pods", "ns-a", {"app": "db"}) is False


def test_resolve_actions_with_invalid_label_selector_raises_configuration_error() -> None:
    with pytest.raises(BackupConfigurationError, match="_SelectorAction"):
        resolve_actions([_SelectorAction(ResourceSelector(label_selector="app in ("))], _helper())


def test_resolve_actions_with_failing_descriptor_raises_configuration_error() -> None:
    with pytest.raises(BackupConfigurationError, match="descriptor unavailable"):
        resolve_actions([_BrokenAction()], _helper())


def test_first_applicable_action_with_overlapping_actions_returns_first_in_order() -> None:
    resolved = resolve_actions(
        [
            _SelectorAction(ResourceSelector(included_resources=("cm",))),
            _PodAction(ResourceSelector(included_resources=("pods",))),
            _SelectorAction(ResourceSelector()),
        ],
        _helper(),
    )

    pod_action = first_applicable_action(resolved, "pods", "ns-a", {})
    configmap_action = first_applicable_action(resolved, "configmaps", "ns-a", {})

    assert pod_action is resolved[1]
    assert pod_action.name == "_PodAction"
    assert configmap_action is resolved[0]


def test_first_applicable_action_with_no_match_returns_none() -> None:
    resolved = resolve_actions([_SelectorAction(ResourceSelector(included_resources=("cm",)))], _helper())

    assert first_applicable_action(resolved, "pods", "ns-a", None) is None
