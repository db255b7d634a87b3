from __future__ import annotations

from typing import Any, Protocol

from kubernetes import client
from kubernetes.dynamic import DynamicClient

from .models import APIResource, GroupVersionResource


class ResourceClient(Protocol):
    def list(self, label_selector: str = "") -> list[dict[str, Any]]:
        ...


class DynamicFactory(Protocol):
    def client_for(
        self,
        gvr: GroupVersionResource,
        resource: APIResource,
        namespace: str,
    ) -> ResourceClient:
        ...


class KubernetesResourceClient:
    def __init__(self, api: Any, namespace: str, request_timeout_seconds: int | None = None) -> None:
        self.api = api
        self.namespace = namespace
        self.request_timeout_seconds = request_timeout_seconds

    def list(self, label_selector: str = "") -> list[dict[str, Any]]:
        kwargs: dict[str, Any] = {}
        if self.namespace:
            kwargs["namespace"] = self.namespace
        if label_selector:
            kwargs["label_selector"] = label_selector
        if self.request_timeout_seconds:
            kwargs["_request_timeout"] = self.request_timeout_seconds

        response = self.api.get(**kwargs)
        payload = response.to_dict() if hasattr(response, "to_dict") else response
        api_version = payload.get("apiVersion")
        kind = (payload.get("kind") or "").removesuffix("List")
        items: list[dict[str, Any]] = []
        for item in payload.get("items") or []:
            # List responses omit apiVersion/kind on their items.
            item.setdefault("apiVersion", api_version)
            item.setdefault("kind", kind)
            items.append(item)
        return items


class KubernetesDynamicFactory:
    def __init__(self, api_client: client.ApiClient, *, request_timeout_seconds: int | None = None) -> None:
        self.api_client = api_client
        self.request_timeout_seconds = request_timeout_seconds
        self._dynamic_client: DynamicClient | None = None

    @property
    def dynamic_client(self) -> DynamicClient:
        if self._dynamic_client is None:
            self._dynamic_client = DynamicClient(self.api_client)
        return self._dynamic_client

    def client_for(
        self,
        gvr: GroupVersionResource,
        resource: APIResource,
        namespace: str,
    ) -> KubernetesResourceClient:
        api = self.dynamic_client.resources.get(api_version=gvr.group_version, name=resource.name)
        return KubernetesResourceClient(
            api,
            namespace if resource.namespaced else "",
            request_timeout_seconds=self.request_timeout_seconds,
        )
