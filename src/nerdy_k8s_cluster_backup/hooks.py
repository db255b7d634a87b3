from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence
import json
import time

from kubernetes import client
from kubernetes.stream import stream

from .cohabitation import CohabitatingResource
from .discovery import DiscoveryHelper, get_resource_includes_excludes
from .errors import BackupConfigurationError, error_message
from .includes_excludes import IncludesExcludes, new_includes_excludes
from .labels import LabelSelectorError, Selector, label_selector_as_selector
from .manifest import ManifestError, parse_duration
from .models import (
    DEFAULT_HOOK_TIMEOUT_SECONDS,
    HOOK_ERROR_MODE_CONTINUE,
    HOOK_ERROR_MODE_FAIL,
    ExecHook,
    ResourceHookSpec,
)

HOOK_PHASE_PRE = "pre"
HOOK_PHASE_POST = "post"
ANNOTATION_HOOK_DOMAIN = "hook.backup.nkcb.io"
ANNOTATION_HOOK_NAME = "<from-annotation>"
_PODS_GROUP_RESOURCE = "pods"
_ERROR_MODES = {HOOK_ERROR_MODE_CONTINUE, HOOK_ERROR_MODE_FAIL}


class HookExecutionError(RuntimeError):
    """Raised when a hook command cannot run or exits unsuccessfully."""


class PodCommandExecutor(Protocol):
    def execute_pod_command(
        self,
        log: Any,
        item: dict[str, Any],
        namespace: str,
        name: str,
        hook_name: str,
        hook: ExecHook,
    ) -> None:
        ...


@dataclass(frozen=True)
class ResourceHook:
    name: str
    namespaces: IncludesExcludes
    resources: IncludesExcludes
    label_selector: Selector | None = None
    hooks: tuple[ExecHook, ...] = ()
    post_hooks: tuple[ExecHook, ...] = ()

    def applies_to(self, group_resource: str, namespace: str, labels: Mapping[str, str] | None) -> bool:
        if namespace and not self.namespaces.should_include(namespace):
            return False
        if not self.resources.should_include(group_resource):
            return False
        if self.label_selector is not None and not self.label_selector.matches(labels):
            return False
        return True

    def hooks_for_phase(self, phase: str) -> tuple[ExecHook, ...]:
        return self.post_hooks if phase == HOOK_PHASE_POST else self.hooks


def get_resource_hooks(
    specs: Sequence[ResourceHookSpec],
    helper: DiscoveryHelper,
    cohabitating_resources: Sequence[CohabitatingResource] | None = None,
) -> list[ResourceHook]:
    resource_hooks: list[ResourceHook] = []
    for spec in specs:
        label_selector: Selector | None = None
        if spec.label_selector is not None:
            try:
                label_selector = label_selector_as_selector(spec.label_selector)
            except LabelSelectorError as error:
                raise BackupConfigurationError(
                    f"hook {spec.name!r} has an invalid label selector: {error_message(error)}"
                ) from error

        for hook in (*spec.hooks, *spec.post_hooks):
            _validate_exec_hook(spec.name, hook)

        resource_hooks.append(
            ResourceHook(
                name=spec.name,
                namespaces=new_includes_excludes(spec.included_namespaces, spec.excluded_namespaces),
                resources=get_resource_includes_excludes(
                    helper,
                    spec.included_resources,
                    spec.excluded_resources,
                    cohabitating_resources,
                ),
                label_selector=label_selector,
                hooks=tuple(spec.hooks),
                post_hooks=tuple(spec.post_hooks),
            )
        )
    return resource_hooks


def hook_from_pod_annotations(annotations: Mapping[str, str] | None, phase: str, log: Any = None) -> ExecHook | None:
    annotations = annotations or {}
    prefix = f"{phase}.{ANNOTATION_HOOK_DOMAIN}"
    command_value = (annotations.get(f"{prefix}/command") or "").strip()
    if not command_value:
        return None

    if command_value.startswith("["):
        try:
            command = tuple(str(part) for part in json.loads(command_value))
        except (TypeError, ValueError):
            command = (command_value,)
    else:
        command = (command_value,)

    on_error = annotations.get(f"{prefix}/on-error") or HOOK_ERROR_MODE_FAIL
    if on_error not in _ERROR_MODES:
        if log is not None:
            log.warning("Invalid value for hook on-error annotation, using default", extra={"fields": {"value": on_error}})
        on_error = HOOK_ERROR_MODE_FAIL

    timeout_seconds = DEFAULT_HOOK_TIMEOUT_SECONDS
    timeout_value = annotations.get(f"{prefix}/timeout")
    if timeout_value:
        try:
            timeout_seconds = parse_duration(timeout_value)
        except ManifestError:
            if log is not None:
                log.warning("Invalid value for hook timeout annotation, using default", extra={"fields": {"value": timeout_value}})

    return ExecHook(
        command=command,
        container=annotations.get(f"{prefix}/container") or None,
        on_error=on_error,
        timeout_seconds=timeout_seconds,
    )


class ItemHookHandler:
    """Runs pod exec hooks for items that already passed the backup filters."""

    def __init__(self, pod_command_executor: PodCommandExecutor) -> None:
        self.pod_command_executor = pod_command_executor

    def handle_hooks(
        self,
        log: Any,
        group_resource: str,
        item: dict[str, Any],
        resource_hooks: Sequence[ResourceHook],
        phase: str,
    ) -> None:
        if group_resource != _PODS_GROUP_RESOURCE:
            return

        metadata = item.get("metadata") or {}
        namespace = metadata.get("namespace") or ""
        name = metadata.get("name") or ""

        annotation_hook = hook_from_pod_annotations(metadata.get("annotations"), phase, log)
        if annotation_hook is not None:
            self._run_hook(log, item, namespace, name, ANNOTATION_HOOK_NAME, annotation_hook, phase)
            return

        labels = metadata.get("labels") or {}
        for resource_hook in resource_hooks:
            if not resource_hook.applies_to(group_resource, namespace, labels):
                continue
            for hook in resource_hook.hooks_for_phase(phase):
                self._run_hook(log, item, namespace, name, resource_hook.name, hook, phase)

    def _run_hook(
        self,
        log: Any,
        item: dict[str, Any],
        namespace: str,
        name: str,
        hook_name: str,
        hook: ExecHook,
        phase: str,
    ) -> None:
        hook_log = log.with_fields(hook_name=hook_name, hook_phase=phase)
        hook_log.info("Executing hook")
        try:
            self.pod_command_executor.execute_pod_command(hook_log, item, namespace, name, hook_name, hook)
        except Exception as error:  # pylint: disable=broad-except
            hook_log.error("Error executing hook", extra={"fields": {"error": error_message(error)}})
            if hook.on_error != HOOK_ERROR_MODE_FAIL:
                return
            if isinstance(error, HookExecutionError):
                raise
            raise HookExecutionError(
                f"hook {hook_name} failed on pod {namespace}/{name}: {error_message(error)}"
            ) from error


class KubernetesPodCommandExecutor:
    def __init__(self, core_api: client.CoreV1Api, *, poll_interval_seconds: float = 1.0) -> None:
        self.core_api = core_api
        self.poll_interval_seconds = poll_interval_seconds

    def execute_pod_command(
        self,
        log: Any,
        item: dict[str, Any],
        namespace: str,
        name: str,
        hook_name: str,
        hook: ExecHook,
    ) -> None:
        if not hook.command:
            raise HookExecutionError(f"hook {hook_name} on pod {namespace}/{name} has no command")

        container_names = [
            container.get("name")
            for container in (item.get("spec") or {}).get("containers") or []
            if container.get("name")
        ]
        if not container_names:
            raise HookExecutionError(f"pod {namespace}/{name} has no containers")

        container = hook.container or container_names[0]
        if container not in container_names:
            raise HookExecutionError(f"no such container {container!r} in pod {namespace}/{name}")

        log.with_fields(container=container, command=" ".join(hook.command)).info("running exec hook")

        try:
            response = stream(
                self.core_api.connect_get_namespaced_pod_exec,
                name,
                namespace,
                container=container,
                command=list(hook.command),
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False,
            )
        except Exception as error:  # pylint: disable=broad-except
            raise HookExecutionError(
                f"unable to start hook {hook_name} in pod {namespace}/{name}: {error_message(error)}"
            ) from error

        stdout: list[str] = []
        stderr: list[str] = []
        deadline = time.monotonic() + hook.timeout_seconds
        try:
            while response.is_open():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise HookExecutionError(
                        f"hook {hook_name} in pod {namespace}/{name} timed out after {hook.timeout_seconds:g}s"
                    )
                response.update(timeout=min(self.poll_interval_seconds, remaining))
                if response.peek_stdout():
                    stdout.append(response.read_stdout())
                if response.peek_stderr():
                    stderr.append(response.read_stderr())
            return_code = response.returncode
        finally:
            response.close()

        if stdout:
            log.debug("hook stdout", extra={"fields": {"stdout": "".join(stdout).strip()}})
        if return_code:
            detail = "".join(stderr).strip() or "no stderr output"
            raise HookExecutionError(
                f"hook {hook_name} in pod {namespace}/{name} exited with code {return_code}: {detail}"
            )


def _validate_exec_hook(hook_name: str, hook: ExecHook) -> None:
    if not hook.command or not all(part for part in hook.command):
        raise BackupConfigurationError(f"hook {hook_name!r} declares an exec hook without a command")
    if hook.on_error not in _ERROR_MODES:
        raise BackupConfigurationError(
            f"hook {hook_name!r} has invalid onError value {hook.on_error!r}; "
            f"expected one of {', '.join(sorted(_ERROR_MODES))}"
        )
    if hook.timeout_seconds <= 0:
        raise BackupConfigurationError(f"hook {hook_name!r} timeout must be positive")
