from __future__ import annotations

from unittest.mock import Mock

from nerdy_k8s_cluster_backup.dynamic import KubernetesDynamicFactory, KubernetesResourceClient
from nerdy_k8s_cluster_backup.models import APIResource, GroupVersionResource


def test_resource_client_list_with_namespace_and_selector_passes_filters_and_fills_kind() -> None:
    response = Mock()
    response.to_dict.return_value = {
        "apiVersion": "apps/v1",
        "kind": "DeploymentList",
        "items": [
            {"metadata": {"name": "web", "namespace": "ns-a"}},
            {"apiVersion": "apps/v1", "kind": "Deployment", "metadata": {"name": "api", "namespace": "ns-a"}},
        ],
    }
    api = Mock()
    api.get.return_value = response

    items = KubernetesResourceClient(api, "ns-a", request_timeout_seconds=9).list("app=web")

    api.get.assert_called_once_with(namespace="ns-a", label_selector="app=web", _request_timeout=9)
    assert [(item["apiVersion"], item["kind"], item["metadata"]["name"]) for item in items] == [
        ("apps/v1", "Deployment", "web"),
        ("apps/v1", "Deployment", "api"),
    ]


def test_resource_client_list_cluster_wide_with_plain_dict_response_sends_no_filters() -> None:
    api = Mock()
    api.get.return_value = {"apiVersion": "v1", "kind": "NamespaceList", "items": None}

    assert KubernetesResourceClient(api, "").list() == []
    api.get.assert_called_once_with()


def test_dynamic_factory_client_for_cluster_scoped_resource_drops_namespace() -> None:
    factory = KubernetesDynamicFactory(Mock(), request_timeout_seconds=4)
    dynamic_client = Mock()
    factory._dynamic_client = dynamic_client

    resource_client = factory.client_for(
        GroupVersionResource(group="", version="v1", resource="persistentvolumes"),
        APIResource(name="persistentvolumes", namespaced=False, kind="PersistentVolume"),
        "ns-a",
    )

    dynamic_client.resources.get.assert_called_once_with(api_version="v1", name="persistentvolumes")
    assert resource_client.api is dynamic_client.resources.get.return_value
    assert resource_client.namespace == ""
    assert resource_client.request_timeout_seconds == 4
