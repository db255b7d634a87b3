from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from kubernetes.client import ApiException

from nerdy_k8s_cluster_backup.discovery import (
    KubernetesDiscoveryError,
    KubernetesDiscoveryHelper,
    ResourceNotFoundError,
    StaticDiscoveryHelper,
    get_resource_includes_excludes,
    resolve_group_resource,
)
from nerdy_k8s_cluster_backup.models import APIResource, APIResourceGroup, GroupVersionResource

_VERBS = ("create", "delete", "get", "list", "patch", "update", "watch")


def _helper() -> StaticDiscoveryHelper:
    return StaticDiscoveryHelper(
        [
            APIResourceGroup(
                group_version="v1",
                resources=(
                    APIResource(name="pods", namespaced=True, kind="Pod", verbs=_VERBS, short_names=("po",), singular_name="pod"),
                    APIResource(name="secrets", namespaced=True, kind="Secret", verbs=_VERBS),
                    APIResource(name="namespaces", namespaced=False, kind="Namespace", verbs=_VERBS, short_names=("ns",)),
                ),
            ),
            APIResourceGroup(
                group_version="extensions/v1beta1",
                resources=(APIResource(name="deployments", namespaced=True, kind="Deployment", verbs=_VERBS),),
            ),
            APIResourceGroup(
                group_version="apps/v1",
                resources=(
                    APIResource(
                        name="deployments",
                        namespaced=True,
                        kind="Deployment",
                        verbs=_VERBS,
                        short_names=("deploy",),
                    ),
                ),
            ),
            APIResourceGroup(
                group_version="networking.k8s.io/v1",
                resources=(APIResource(name="networkpolicies", namespaced=True, kind="NetworkPolicy", verbs=_VERBS),),
            ),
        ]
    )


@pytest.mark.parametrize(
    ("identifier", "expected"),
    [
        ("pods", "pods"),
        ("pod", "pods"),
        ("po", "pods"),
        ("Pod", "pods"),
        ("ns", "namespaces"),
        ("deployments.apps", "deployments.apps"),
        ("deploy", "deployments.apps"),
        ("deployments", "deployments.extensions"),
        ("networkpolicies.networking", "networkpolicies.networking.k8s.io"),
    ],
)
def test_resolve_group_resource_with_known_names_returns_canonical_form(identifier: str, expected: str) -> None:
    assert resolve_group_resource(_helper(), identifier) == expected


def test_resolve_group_resource_with_unknown_name_returns_empty_string() -> None:
    assert resolve_group_resource(_helper(), "widgets") == ""


def test_resource_for_with_unknown_name_raises_resource_not_found() -> None:
    with pytest.raises(ResourceNotFoundError, match="widgets"):
        _helper().resource_for("widgets")


def test_resource_for_with_group_qualified_name_returns_preferred_version() -> None:
    assert _helper().resource_for("deployments.apps") == GroupVersionResource(
        group="apps",
        version="v1",
        resource="deployments",
    )


def test_get_resource_includes_excludes_with_unresolvable_identifier_drops_it_silently() -> None:
    filters = get_resource_includes_excludes(_helper(), ["po", "widgets"], ["secret", "gadgets"])

    assert filters.get_includes() == ["pods"]
    assert filters.get_excludes() == ["secrets"]


def test_get_resource_includes_excludes_with_cohabitating_resource_lists_every_group() -> None:
    filters = get_resource_includes_excludes(_helper(), ["deploy", "pods"], ["networkpolicies"])

    assert filters.get_includes() == ["deployments.apps", "deployments.extensions", "pods"]
    assert filters.get_excludes() == ["networkpolicies.extensions", "networkpolicies.networking.k8s.io"]
    assert filters.should_include("deployments.extensions") is True
    assert filters.should_include("networkpolicies.extensions") is False


def test_get_resource_includes_excludes_with_empty_cohabitation_keeps_single_group() -> None:
    filters = get_resource_includes_excludes(_helper(), ["deployments"], [], cohabitating_resources=[])

    assert filters.get_includes() == ["deployments.extensions"]


def _resource(name: str, *, namespaced: bool = True, kind: str = "", verbs: tuple[str, ...] = _VERBS) -> SimpleNamespace:
    return SimpleNamespace(
        name=name,
        namespaced=namespaced,
        kind=kind or name.capitalize(),
        verbs=list(verbs),
        short_names=None,
        singular_name="",
    )


def test_kubernetes_discovery_helper_refresh_uses_preferred_versions_and_filters_resources() -> None:
    responses = {
        "/apis": SimpleNamespace(
            groups=[
                SimpleNamespace(
                    preferred_version=SimpleNamespace(group_version="apps/v1"),
                    versions=[SimpleNamespace(group_version="apps/v1")],
                ),
                SimpleNamespace(
                    preferred_version=None,
                    versions=[SimpleNamespace(group_version="batch/v1")],
                ),
            ]
        ),
        "/api/v1": SimpleNamespace(
            resources=[
                _resource("pods", kind="Pod"),
                _resource("pods/log", kind="Pod", verbs=("get",)),
                _resource("bindings", kind="Binding", verbs=("create",)),
                _resource("namespaces", namespaced=False, kind="Namespace"),
            ]
        ),
        "/apis/apps/v1": SimpleNamespace(resources=[_resource("deployments", kind="Deployment")]),
        "/apis/batch/v1": SimpleNamespace(resources=[_resource("jobs", kind="Job")]),
    }
    api_client = Mock()
    api_client.call_api.side_effect = lambda path, *args, **kwargs: responses[path]

    helper = KubernetesDiscoveryHelper(api_client, request_timeout_seconds=7)
    groups = helper.resources()

    assert [group.group_version for group in groups] == ["v1", "apps/v1", "batch/v1"]
    assert [resource.name for resource in groups[0].resources] == ["pods", "namespaces"]
    assert groups[0].resources[1].namespaced is False
    assert api_client.call_api.call_args.kwargs["_request_timeout"] == 7

    helper.resources()
    assert api_client.call_api.call_count == 4


def test_kubernetes_discovery_helper_with_api_exception_raises_actionable_error() -> None:
    api_client = Mock()
    api_client.call_api.side_effect = ApiException(status=403, reason="Forbidden")

    with pytest.raises(KubernetesDiscoveryError, match="API status 403 \\(Forbidden\\)"):
        KubernetesDiscoveryHelper(api_client).refresh()


def test_kubernetes_discovery_helper_with_non_positive_timeout_raises_value_error() -> None:
    with pytest.raises(ValueError, match="request_timeout_seconds"):
        KubernetesDiscoveryHelper(Mock(), request_timeout_seconds=0)
