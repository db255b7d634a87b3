from __future__ import annotations

from typing import Any, Iterable, Protocol
import logging

from kubernetes import client
from kubernetes.client import ApiException

from .cohabitation import CohabitatingResource, default_cohabitating_resources
from .includes_excludes import WILDCARD, IncludesExcludes, generate_includes_excludes
from .models import (
    APIResource,
    APIResourceGroup,
    GroupResource,
    GroupVersionResource,
    parse_group_resource,
)

REQUIRED_VERBS = ("list", "create", "get", "delete")
DEFAULT_DISCOVERY_TIMEOUT_SECONDS = 20

logger = logging.getLogger(__name__)


class ResourceNotFoundError(LookupError):
    """Raised when discovery has no resource matching an identifier."""


class KubernetesDiscoveryError(RuntimeError):
    """Raised when API discovery cannot safely continue."""


class DiscoveryHelper(Protocol):
    def resources(self) -> list[APIResourceGroup]:
        ...

    def resource_for(self, identifier: str) -> GroupVersionResource:
        ...


class StaticDiscoveryHelper:
    """Resolves resource identifiers against a fixed discovery snapshot."""

    def __init__(self, groups: Iterable[APIResourceGroup]) -> None:
        self._groups = list(groups)

    def resources(self) -> list[APIResourceGroup]:
        return list(self._groups)

    def resource_for(self, identifier: str) -> GroupVersionResource:
        return _resource_for(self._groups, identifier)


class KubernetesDiscoveryHelper:
    """Discovers the preferred version of every API group from a live cluster.

    Results are cached by ``refresh()`` and treated as stable for a backup run.
    """

    def __init__(
        self,
        api_client: client.ApiClient,
        *,
        request_timeout_seconds: int = DEFAULT_DISCOVERY_TIMEOUT_SECONDS,
    ) -> None:
        if request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        self.api_client = api_client
        self.request_timeout_seconds = request_timeout_seconds
        self._groups: list[APIResourceGroup] | None = None

    def refresh(self) -> list[APIResourceGroup]:
        group_versions = ["v1"]
        api_groups = self._get("/apis", "V1APIGroupList")
        for api_group in api_groups.groups or []:
            preferred = api_group.preferred_version
            if preferred is None and api_group.versions:
                preferred = api_group.versions[0]
            if preferred is not None:
                group_versions.append(preferred.group_version)

        groups: list[APIResourceGroup] = []
        for group_version in group_versions:
            path = "/api/v1" if group_version == "v1" else f"/apis/{group_version}"
            resource_list = self._get(path, "V1APIResourceList")
            resources = tuple(
                _to_api_resource(resource)
                for resource in resource_list.resources or []
                if _is_backup_candidate(resource)
            )
            groups.append(APIResourceGroup(group_version=group_version, resources=resources))
            logger.debug("Discovered %d resources in %s", len(resources), group_version)

        self._groups = groups
        return list(groups)

    def resources(self) -> list[APIResourceGroup]:
        if self._groups is None:
            self.refresh()
        return list(self._groups or [])

    def resource_for(self, identifier: str) -> GroupVersionResource:
        return _resource_for(self.resources(), identifier)

    def _get(self, path: str, response_type: str) -> Any:
        try:
            return self.api_client.call_api(
                path,
                "GET",
                response_type=response_type,
                auth_settings=["BearerToken"],
                _return_http_data_only=True,
                _request_timeout=self.request_timeout_seconds,
            )
        except ApiException as error:
            status = error.status if error.status is not None else "unknown"
            reason = error.reason or "no reason provided"
            raise KubernetesDiscoveryError(
                f"API discovery failed while reading {path}: API status {status} ({reason}). "
                "Confirm cluster connectivity and that discovery endpoints are readable."
            ) from error
        except Exception as error:
            raise KubernetesDiscoveryError(f"API discovery failed while reading {path}: {error}") from error


def resolve_group_resource(helper: DiscoveryHelper, identifier: str) -> str:
    try:
        gvr = helper.resource_for(identifier)
    except ResourceNotFoundError:
        return ""
    return str(gvr.group_resource())


def get_resource_includes_excludes(
    helper: DiscoveryHelper,
    includes: Iterable[str],
    excludes: Iterable[str],
    cohabitating_resources: Iterable[CohabitatingResource] | None = None,
) -> IncludesExcludes:
    """Resolve configured resource names to canonical group-resource strings.

    Identifiers discovery cannot resolve are dropped from the filter. A
    resource served by several groups expands to every one of them, so the
    filter holds no matter which group lists the items first.
    """
    if cohabitating_resources is None:
        cohabitating_resources = default_cohabitating_resources()
    cohabitating_groups = {cohabitator.resource: cohabitator.groups for cohabitator in cohabitating_resources}

    def expand(identifiers: Iterable[str]) -> list[str]:
        keys: list[str] = []
        for identifier in identifiers:
            if identifier == WILDCARD:
                keys.append(identifier)
                continue
            key = resolve_group_resource(helper, identifier)
            if not key:
                continue
            group_resource = parse_group_resource(key)
            groups = cohabitating_groups.get(group_resource.resource)
            if groups and group_resource.group in groups:
                keys.extend(
                    str(GroupResource(group=group, resource=group_resource.resource)) for group in sorted(groups)
                )
            else:
                keys.append(key)
        return keys

    return generate_includes_excludes(expand(includes), expand(excludes), lambda key: key)


def _resource_for(groups: list[APIResourceGroup], identifier: str) -> GroupVersionResource:
    partial = parse_group_resource(identifier.lower())
    if not partial.resource:
        raise ResourceNotFoundError(f"no resource matches {identifier!r}")

    for group in groups:
        if partial.group and not _group_matches(group.group, partial.group):
            continue
        for resource in group.resources:
            if _resource_matches(resource, partial.resource):
                return GroupVersionResource(group=group.group, version=group.version, resource=resource.name)

    raise ResourceNotFoundError(f"no resource matches {identifier!r}")


def _group_matches(group: str, partial_group: str) -> bool:
    return group == partial_group or group.startswith(f"{partial_group}.")


def _resource_matches(resource: APIResource, name: str) -> bool:
    return (
        resource.name == name
        or resource.singular_name == name
        or resource.kind.lower() == name
        or name in resource.short_names
    )


def _is_backup_candidate(resource: Any) -> bool:
    if "/" in (resource.name or ""):
        return False
    verbs = set(resource.verbs or [])
    return all(verb in verbs for verb in REQUIRED_VERBS)


def _to_api_resource(resource: Any) -> APIResource:
    return APIResource(
        name=resource.name,
        namespaced=bool(resource.namespaced),
        kind=resource.kind or "",
        verbs=tuple(resource.verbs or ()),
        short_names=tuple(resource.short_names or ()),
        singular_name=resource.singular_name or "",
    )
