from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable
import threading


@dataclass
class CohabitatingResource:
    """A resource kind served by more than one API group."""

    resource: str
    groups: frozenset[str]
    seen: bool = False
    claimed_by: str | None = None


def new_cohabitating_resource(resource: str, *groups: str) -> CohabitatingResource:
    return CohabitatingResource(resource=resource, groups=frozenset(groups))


def default_cohabitating_resources() -> list[CohabitatingResource]:
    return [
        new_cohabitating_resource("deployments", "extensions", "apps"),
        new_cohabitating_resource("networkpolicies", "extensions", "networking.k8s.io"),
    ]


class CohabitationTable:
    """Records which group first supplied each cohabitating resource in a run."""

    def __init__(self, resources: Iterable[CohabitatingResource] | None = None) -> None:
        if resources is None:
            resources = default_cohabitating_resources()
        self._resources = {resource.resource: resource for resource in resources}
        self._lock = threading.Lock()

    def claim(self, group: str, resource: str) -> bool:
        """Return True when items of ``resource`` from ``group`` should be backed up."""
        with self._lock:
            cohabitator = self._resources.get(resource)
            if cohabitator is None or group not in cohabitator.groups:
                return True
            if not cohabitator.seen:
                cohabitator.seen = True
                cohabitator.claimed_by = group
                return True
            return cohabitator.claimed_by == group

    def get(self, resource: str) -> CohabitatingResource | None:
        return self._resources.get(resource)

    def __contains__(self, resource: object) -> bool:
        return resource in self._resources
