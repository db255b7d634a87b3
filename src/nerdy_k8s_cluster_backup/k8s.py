from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import tempfile
from typing import Callable, TypeVar

from kubernetes import client, config
from kubernetes.client import ApiException

from .backupper import KubernetesBackupper
from .discovery import DEFAULT_DISCOVERY_TIMEOUT_SECONDS, KubernetesDiscoveryError, KubernetesDiscoveryHelper
from .dynamic import KubernetesDynamicFactory
from .hooks import KubernetesPodCommandExecutor
from .snapshots import SnapshotService

T = TypeVar("T")


@dataclass(frozen=True)
class KubernetesClients:
    api_client: client.ApiClient
    core_api: client.CoreV1Api


class KubernetesAuthenticationError(RuntimeError):
    """Raised when Kubernetes authentication configuration fails."""


def persist_kubeconfig_content(kubeconfig_content: str) -> str:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as handle:
        handle.write(kubeconfig_content)
        path = Path(handle.name)
    os.chmod(path, 0o600)
    return str(path)


def load_kubernetes_clients(
    *,
    kubeconfig_path: str | None,
    context: str | None,
    in_cluster: bool,
) -> KubernetesClients:
    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        if in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=expanded, context=context)
    except Exception as error:  # pylint: disable=broad-except
        raise KubernetesAuthenticationError(
            _format_authentication_error(
                in_cluster=in_cluster,
                kubeconfig_path=expanded,
                context=context,
                error=error,
            )
        ) from error

    api_client = client.ApiClient()
    return KubernetesClients(api_client=api_client, core_api=client.CoreV1Api(api_client))


def list_context_names(kubeconfig_path: str | None = None) -> list[str]:
    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        contexts, _ = config.list_kube_config_contexts(config_file=expanded)
    except Exception as error:  # pylint: disable=broad-except
        reason = str(error).strip() or error.__class__.__name__
        source = expanded or "default kubeconfig search path"
        raise KubernetesAuthenticationError(
            f"Unable to list kubeconfig contexts from '{source}': {reason}. "
            "Verify the kubeconfig path is readable and valid."
        ) from error
    if not contexts:
        return []
    return sorted(context["name"] for context in contexts)


def get_cluster_summary(
    clients: KubernetesClients,
    *,
    request_timeout_seconds: int = DEFAULT_DISCOVERY_TIMEOUT_SECONDS,
) -> dict[str, int]:
    """Count namespaces, API groups and backup-eligible resource kinds."""
    namespaces = _safe_kubernetes_call(
        operation="list namespaces",
        hint="Confirm cluster connectivity and RBAC verbs for namespaces.",
        func=lambda: clients.core_api.list_namespace(_request_timeout=request_timeout_seconds).items,
    )
    groups = KubernetesDiscoveryHelper(
        clients.api_client,
        request_timeout_seconds=request_timeout_seconds,
    ).refresh()
    return {
        "namespaces": len(namespaces),
        "api_groups": len(groups),
        "resource_kinds": sum(len(group.resources) for group in groups),
    }


def list_namespace_names(
    clients: KubernetesClients,
    *,
    request_timeout_seconds: int = DEFAULT_DISCOVERY_TIMEOUT_SECONDS,
) -> list[str]:
    namespaces = _safe_kubernetes_call(
        operation="list namespaces",
        hint="Confirm cluster connectivity and RBAC verbs for namespaces.",
        func=lambda: clients.core_api.list_namespace(_request_timeout=request_timeout_seconds).items,
    )
    return sorted(namespace.metadata.name for namespace in namespaces if namespace.metadata and namespace.metadata.name)


def build_backupper(
    clients: KubernetesClients,
    snapshot_service: SnapshotService | None = None,
    *,
    request_timeout_seconds: int = DEFAULT_DISCOVERY_TIMEOUT_SECONDS,
    log_level: int | None = None,
) -> KubernetesBackupper:
    options = {} if log_level is None else {"log_level": log_level}
    return KubernetesBackupper(
        discovery_helper=KubernetesDiscoveryHelper(
            clients.api_client,
            request_timeout_seconds=request_timeout_seconds,
        ),
        dynamic_factory=KubernetesDynamicFactory(
            clients.api_client,
            request_timeout_seconds=request_timeout_seconds,
        ),
        pod_command_executor=KubernetesPodCommandExecutor(clients.core_api),
        snapshot_service=snapshot_service,
        **options,
    )


def _safe_kubernetes_call(*, operation: str, hint: str, func: Callable[[], T]) -> T:
    try:
        return func()
    except ApiException as error:
        raise KubernetesDiscoveryError(
            _format_api_exception_message(
                operation=operation,
                hint=hint,
                error=error,
            )
        ) from error
    except Exception as error:
        raise KubernetesDiscoveryError(
            f"Kubernetes request failed while trying to {operation}: {error}. {hint}"
        ) from error


def _format_api_exception_message(*, operation: str, hint: str, error: ApiException) -> str:
    status = error.status if error.status is not None else "unknown"
    reason = error.reason or "no reason provided"
    return (
        f"Kubernetes request failed while trying to {operation}: "
        f"API status {status} ({reason}). {hint}"
    )


def _expand_kubeconfig_path(kubeconfig_path: str | None) -> str | None:
    if kubeconfig_path is None:
        return None
    stripped = kubeconfig_path.strip()
    if not stripped:
        return None
    return str(Path(stripped).expanduser())


def _format_authentication_error(
    *,
    in_cluster: bool,
    kubeconfig_path: str | None,
    context: str | None,
    error: Exception,
) -> str:
    reason = str(error).strip() or error.__class__.__name__
    if in_cluster:
        return (
            "Kubernetes authentication setup failed while loading in-cluster service account credentials: "
            f"{reason}. Ensure the pod has a mounted service account token and Kubernetes service host "
            "environment variables."
        )

    kubeconfig_source = kubeconfig_path or "default kubeconfig search path"
    context_message = f" with context '{context}'" if context else ""
    return (
        "Kubernetes authentication setup failed while loading kubeconfig "
        f"from '{kubeconfig_source}'{context_message}: {reason}. "
        "Verify the kubeconfig path and context are valid."
    )
