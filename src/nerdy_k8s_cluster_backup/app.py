from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any
import os
import re

import streamlit as st
import yaml

from nerdy_k8s_cluster_backup.backup import BackupManager, BackupManagerConfig
from nerdy_k8s_cluster_backup.backupper import STATUS_COMPLETED, STATUS_COMPLETED_WITH_ERRORS
from nerdy_k8s_cluster_backup.config import AppConfig, configure_logging, ensure_directories
from nerdy_k8s_cluster_backup.discovery import KubernetesDiscoveryError
from nerdy_k8s_cluster_backup.k8s import (
    build_backupper,
    get_cluster_summary,
    list_namespace_names,
    load_kubernetes_clients,
    persist_kubeconfig_content,
)
from nerdy_k8s_cluster_backup.labels import (
    LabelSelectorError,
    format_label_selector,
    parse_selector,
    selector_as_label_selector,
)
from nerdy_k8s_cluster_backup.manifest import DEFAULT_BACKUP_NAMESPACE, ManifestError, load_backup_manifest
from nerdy_k8s_cluster_backup.metadata import BackupMetadataStore
from nerdy_k8s_cluster_backup.models import Backup, BackupRunRecord, BackupSpec
from nerdy_k8s_cluster_backup.object_store import ObjectStore, ObjectStoreError, new_object_store
from nerdy_k8s_cluster_backup.persistence import create_log_download_url, list_backups

_AUTH_MODE_USE_KUBECONFIG_PATH = "Use kubeconfig path"
_AUTH_MODE_PASTE_KUBECONFIG = "Paste kubeconfig"
_AUTH_MODE_IN_CLUSTER = "In-cluster service account"

_DEFINITION_FORM = "Form"
_DEFINITION_MANIFEST = "YAML manifest"

_TRISTATE_AUTO = "Auto"
_TRISTATE_YES = "Yes"
_TRISTATE_NO = "No"

_BACKUP_NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$")
_BACKUP_NAME_MAX_LENGTH = 63
_LOG_URL_TTL = timedelta(minutes=10)

_WORKFLOW_STATE_LABELS = {
    "done": "Done",
    "active": "Ready",
    "blocked": "Waiting",
}

_STAGE_HINTS: tuple[tuple[str, str], ...] = (
    (
        "prepare stage failed",
        "Verify the backup directory exists and is writable by the app.",
    ),
    (
        "configure stage failed",
        "Fix the resource names, label selector or hook definitions in the backup definition.",
    ),
    (
        "backup stage failed",
        "Confirm API discovery is reachable and RBAC allows list on the selected resources.",
    ),
    (
        "checksum stage failed",
        "Validate the local backup directory is writable and archive generation completed.",
    ),
    (
        "upload stage failed",
        "Check the object store directory and bucket permissions, then retry the upload.",
    ),
    (
        "completed with",
        "Download the run log and review the errors for the affected groups and items.",
    ),
    (
        "unexpected backup failure",
        "Inspect application logs for this backup attempt.",
    ),
)


def _initialize_state() -> None:
    defaults = {
        "connected": False,
        "connection": {},
        "clients": None,
        "namespace_names": [],
        "last_run_records": [],
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value


def _actionable_next_step(message: str) -> str:
    normalized = message.strip()
    if not normalized:
        return "No follow-up action required."

    for stage, hint in _STAGE_HINTS:
        if stage in normalized:
            return f"{normalized} | Next step: {hint}"
    return f"{normalized} | Next step: Inspect the run log and application logs for more detail."


def _build_run_rows(records: list[BackupRunRecord]) -> list[dict[str, str]]:
    rows: list[dict[str, str]] = []
    for record in records:
        actionable_message = "Backup completed successfully."
        if record.status != STATUS_COMPLETED:
            actionable_message = _actionable_next_step(record.message)

        rows.append(
            {
                "backup": record.backup_name,
                "status": record.status,
                "items": str(record.items_backed_up),
                "errors": str(record.error_count),
                "archive_path": record.archive_path or "",
                "log_path": record.log_path or "",
                "checksum_sha256": record.checksum_sha256 or "",
                "finished_at": record.finished_at,
                "message": record.message,
                "actionable_message": actionable_message,
            }
        )
    return rows


def _build_history_rows(rows: list[dict[str, Any]]) -> list[dict[str, str]]:
    rendered_rows: list[dict[str, str]] = []
    for row in rows:
        status = str(row.get("status", ""))
        message = str(row.get("message", "") or "")
        actionable_message = "Backup completed successfully."
        if status != STATUS_COMPLETED:
            actionable_message = _actionable_next_step(message)

        rendered_rows.append(
            {
                "backup": str(row.get("backup_name", "")),
                "status": status,
                "items": str(row.get("items_backed_up", 0)),
                "errors": str(row.get("error_count", 0)),
                "archive_path": str(row.get("archive_path", "") or ""),
                "checksum_sha256": str(row.get("checksum_sha256", "") or ""),
                "finished_at": str(row.get("finished_at", "")),
                "message": message,
                "actionable_message": actionable_message,
            }
        )
    return rendered_rows


def _build_stored_backup_rows(backups: list[Backup], last_success_map: dict[str, str]) -> list[dict[str, str]]:
    return [
        {
            "backup": backup.name,
            "phase": backup.status.phase,
            "label_selector": _label_selector_text(backup),
            "items": str(backup.status.items_backed_up),
            "errors": str(len(backup.status.errors)),
            "volume_snapshots": str(len(backup.status.volume_backups)),
            "last_successful_run": last_success_map.get(backup.name, "never"),
        }
        for backup in sorted(backups, key=lambda backup: backup.name)
    ]


def _label_selector_text(backup: Backup) -> str:
    try:
        return format_label_selector(backup.spec.label_selector) or "*"
    except LabelSelectorError:
        return "invalid"


def _build_workflow_rows(*, connected: bool, backup_defined: bool, run_count: int) -> list[dict[str, str]]:
    connect_state = "done" if connected else "active"
    define_state = "done" if backup_defined else ("active" if connected else "blocked")
    backup_state = "done" if run_count > 0 else ("active" if backup_defined else "blocked")
    review_state = "done" if run_count > 0 else ("active" if connected else "blocked")

    return [
        {
            "step": "1. Connect",
            "state": _WORKFLOW_STATE_LABELS[connect_state],
            "description": "Authenticate to the cluster from the sidebar.",
        },
        {
            "step": "2. Define",
            "state": _WORKFLOW_STATE_LABELS[define_state],
            "description": "Choose namespaces, resources and a label selector, or paste a Backup manifest.",
        },
        {
            "step": "3. Backup",
            "state": _WORKFLOW_STATE_LABELS[backup_state],
            "description": "Write the cluster objects and run log to a gzipped archive.",
        },
        {
            "step": "4. Review",
            "state": _WORKFLOW_STATE_LABELS[review_state],
            "description": "Inspect the latest run and recent backup history.",
        },
    ]


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _tristate_value(label: str) -> bool | None:
    if label == _TRISTATE_YES:
        return True
    if label == _TRISTATE_NO:
        return False
    return None


def _validate_backup_name(name: str) -> str | None:
    stripped = name.strip()
    if not stripped:
        return "Backup name is required."
    if len(stripped) > _BACKUP_NAME_MAX_LENGTH:
        return f"Backup name must be at most {_BACKUP_NAME_MAX_LENGTH} characters."
    if not _BACKUP_NAME_PATTERN.match(stripped):
        return "Backup name must use lowercase letters, digits, '-' or '.', and start and end alphanumeric."
    return None


def _build_backup_from_form(
    *,
    name: str,
    included_namespaces_input: str,
    excluded_namespaces_input: str,
    included_resources_input: str,
    excluded_resources_input: str,
    label_selector_input: str,
    include_cluster_resources_label: str,
    snapshot_volumes_label: str,
) -> Backup:
    name_error = _validate_backup_name(name)
    if name_error:
        raise ValueError(name_error)

    try:
        label_selector = selector_as_label_selector(parse_selector(label_selector_input))
    except LabelSelectorError as error:
        raise ValueError(f"Invalid label selector: {error}") from error

    return Backup(
        name=name.strip(),
        namespace=DEFAULT_BACKUP_NAMESPACE,
        spec=BackupSpec(
            included_namespaces=_split_csv(included_namespaces_input),
            excluded_namespaces=_split_csv(excluded_namespaces_input),
            included_resources=_split_csv(included_resources_input),
            excluded_resources=_split_csv(excluded_resources_input),
            label_selector=label_selector,
            include_cluster_resources=_tristate_value(include_cluster_resources_label),
            snapshot_volumes=_tristate_value(snapshot_volumes_label),
        ),
    )


def _build_backup_from_manifest(manifest_text: str) -> Backup:
    if not manifest_text.strip():
        raise ValueError("Paste a Backup manifest before running.")
    try:
        backup = load_backup_manifest(manifest_text)
    except ManifestError as error:
        raise ValueError(f"Invalid backup manifest: {error}") from error

    name_error = _validate_backup_name(backup.name)
    if name_error:
        raise ValueError(name_error)
    return backup


def _build_object_store(config: AppConfig) -> ObjectStore | None:
    if config.object_store_dir is None:
        return None
    return new_object_store("filesystem", {"root": str(config.object_store_dir)})


def _validate_connection_inputs(*, auth_mode: str, kubeconfig_path_input: str, kubeconfig_text_input: str) -> str | None:
    if auth_mode == _AUTH_MODE_USE_KUBECONFIG_PATH:
        return _validate_kubeconfig_path_input(kubeconfig_path_input)

    if auth_mode == _AUTH_MODE_PASTE_KUBECONFIG:
        kubeconfig_text = kubeconfig_text_input.strip()
        if not kubeconfig_text:
            return "Paste kubeconfig content before connecting."
        return _validate_kubeconfig_content(
            kubeconfig_content=kubeconfig_text,
            source_label="Pasted kubeconfig",
        )

    if auth_mode == _AUTH_MODE_IN_CLUSTER and not _is_incluster_service_account_environment():
        return (
            "In-cluster service account mode requires Kubernetes pod environment variables and the "
            "service-account token mount."
        )

    return None


def _default_auth_mode() -> str:
    configured_default = os.getenv("NKCB_DEFAULT_AUTH_MODE", "").strip().lower()
    if configured_default in {"kubeconfig", "kubeconfig_path", "path"}:
        return _AUTH_MODE_USE_KUBECONFIG_PATH
    if configured_default in {"paste", "pasted", "kubeconfig_text"}:
        return _AUTH_MODE_PASTE_KUBECONFIG
    if configured_default in {"in-cluster", "in_cluster", "serviceaccount", "service-account"}:
        return _AUTH_MODE_IN_CLUSTER

    if _is_incluster_service_account_environment():
        return _AUTH_MODE_IN_CLUSTER

    return _AUTH_MODE_USE_KUBECONFIG_PATH


def _is_incluster_service_account_environment() -> bool:
    return bool(
        os.getenv("KUBERNETES_SERVICE_HOST")
        and Path("/var/run/secrets/kubernetes.io/serviceaccount/token").exists()
    )


def _validate_kubeconfig_path_input(kubeconfig_path_input: str) -> str | None:
    path_value = kubeconfig_path_input.strip()
    if not path_value:
        return "Kubeconfig path is required when using kubeconfig path authentication."

    expanded_path = Path(path_value).expanduser()
    if not expanded_path.exists():
        return f"Kubeconfig path does not exist: {expanded_path}"
    if not expanded_path.is_file():
        return f"Kubeconfig path must point to a file: {expanded_path}"

    try:
        kubeconfig_content = expanded_path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return f"Kubeconfig path must reference a UTF-8 text file: {expanded_path}"
    except OSError as error:
        return f"Unable to read kubeconfig path {expanded_path}: {error}"

    return _validate_kubeconfig_content(
        kubeconfig_content=kubeconfig_content,
        source_label=f"Kubeconfig file '{expanded_path}'",
    )


def _validate_kubeconfig_content(*, kubeconfig_content: str, source_label: str) -> str | None:
    try:
        parsed = yaml.safe_load(kubeconfig_content)
    except yaml.YAMLError as error:
        return f"{source_label} must be valid YAML: {error.__class__.__name__}."

    if not isinstance(parsed, dict):
        return f"{source_label} must be a YAML mapping."

    required_fields = ("apiVersion", "clusters", "contexts", "users")
    missing_fields = [field for field in required_fields if field not in parsed]
    if missing_fields:
        return f"{source_label} is missing required field(s): {', '.join(missing_fields)}."

    for list_field in ("clusters", "contexts", "users"):
        values = parsed.get(list_field)
        if not isinstance(values, list) or not values:
            return f"{source_label} must include at least one '{list_field}' entry."

    return None


def _render_connection_sidebar() -> None:
    st.sidebar.header("Cluster Connection")
    auth_options = [_AUTH_MODE_USE_KUBECONFIG_PATH, _AUTH_MODE_PASTE_KUBECONFIG, _AUTH_MODE_IN_CLUSTER]
    auth_mode = st.sidebar.radio(
        "Authentication",
        options=auth_options,
        index=auth_options.index(_default_auth_mode()),
    )
    context = st.sidebar.text_input(
        "Kubernetes context (optional)",
        value="",
        help="Ignored for in-cluster service account mode.",
    )

    kubeconfig_path_input = "~/.kube/config"
    kubeconfig_text_input = ""
    if auth_mode == _AUTH_MODE_USE_KUBECONFIG_PATH:
        kubeconfig_path_input = st.sidebar.text_input("Kubeconfig path", value="~/.kube/config")
    elif auth_mode == _AUTH_MODE_PASTE_KUBECONFIG:
        kubeconfig_text_input = st.sidebar.text_area("Kubeconfig content", height=220)

    if st.sidebar.button("Connect", type="primary"):
        connection_error = _validate_connection_inputs(
            auth_mode=auth_mode,
            kubeconfig_path_input=kubeconfig_path_input,
            kubeconfig_text_input=kubeconfig_text_input,
        )
        if connection_error:
            st.sidebar.error(connection_error)
        else:
            try:
                kubeconfig_path: str | None = None
                in_cluster = auth_mode == _AUTH_MODE_IN_CLUSTER
                if auth_mode == _AUTH_MODE_USE_KUBECONFIG_PATH:
                    kubeconfig_path = str(Path(kubeconfig_path_input).expanduser())
                elif auth_mode == _AUTH_MODE_PASTE_KUBECONFIG:
                    kubeconfig_path = persist_kubeconfig_content(kubeconfig_text_input)

                st.session_state.clients = load_kubernetes_clients(
                    kubeconfig_path=kubeconfig_path,
                    context=context or None,
                    in_cluster=in_cluster,
                )
                st.session_state.connected = True
                st.session_state.connection = {"auth_mode": auth_mode, "context": context or None}
                st.session_state.namespace_names = []
                st.session_state.last_run_records = []
                st.success("Connected to Kubernetes cluster.")
            except Exception as error:  # pylint: disable=broad-except
                st.session_state.connected = False
                st.session_state.clients = None
                st.error(f"Connection failed: {error}")

    if st.sidebar.button("Disconnect"):
        st.session_state.connected = False
        st.session_state.clients = None
        st.session_state.connection = {}
        st.session_state.namespace_names = []
        st.session_state.last_run_records = []


def main() -> None:
    st.set_page_config(page_title="Nerdy K8s Cluster Backup", layout="wide")
    _initialize_state()

    base_config = AppConfig()
    configure_logging(base_config.log_level_number)
    ensure_directories(base_config)

    st.title("Nerdy K8s Cluster Backup")
    st.caption("Back up cluster objects by namespace, resource and label, and track backup history.")

    _render_connection_sidebar()
    st.sidebar.header("Storage")
    st.sidebar.caption(f"Backup directory: {base_config.backup_dir}")
    st.sidebar.caption(f"Metadata DB path: {base_config.metadata_db_path}")
    if base_config.object_store_dir is not None:
        st.sidebar.caption(f"Object store: {base_config.object_store_dir} (bucket {base_config.bucket})")

    connected = bool(st.session_state.connected and st.session_state.clients is not None)
    st.subheader("Workflow Status")
    workflow_placeholder = st.empty()

    if not connected:
        workflow_placeholder.dataframe(
            _build_workflow_rows(connected=False, backup_defined=False, run_count=0),
            use_container_width=True,
            hide_index=True,
        )
        st.info("Connect to a cluster from the sidebar to define and run backups.")
        return

    metadata_store = BackupMetadataStore(base_config.metadata_db_path)
    metadata_store.initialize()
    clients = st.session_state.clients

    try:
        summary = get_cluster_summary(clients, request_timeout_seconds=base_config.discovery_timeout_seconds)
        if not st.session_state.namespace_names:
            st.session_state.namespace_names = list_namespace_names(
                clients,
                request_timeout_seconds=base_config.discovery_timeout_seconds,
            )
    except KubernetesDiscoveryError as error:
        st.error(str(error))
        return

    summary_columns = st.columns(3)
    summary_columns[0].metric("Namespaces", summary["namespaces"])
    summary_columns[1].metric("API groups", summary["api_groups"])
    summary_columns[2].metric("Resource kinds", summary["resource_kinds"])

    st.subheader("Backup Definition")
    definition_mode = st.radio("Define backup with", options=[_DEFINITION_FORM, _DEFINITION_MANIFEST], horizontal=True)

    backup: Backup | None = None
    definition_error: str | None = None
    if definition_mode == _DEFINITION_FORM:
        name = st.text_input("Backup name", value="")
        st.caption(f"Namespaces in cluster: {', '.join(st.session_state.namespace_names) or 'none'}")
        namespace_columns = st.columns(2)
        included_namespaces_input = namespace_columns[0].text_input(
            "Included namespaces (comma-separated)",
            value="",
            help="Leave blank or use * to include every namespace.",
        )
        excluded_namespaces_input = namespace_columns[1].text_input("Excluded namespaces (comma-separated)", value="")
        resource_columns = st.columns(2)
        included_resources_input = resource_columns[0].text_input(
            "Included resources (comma-separated)",
            value="",
            help="Accepts plural, singular, kind or short names such as deploy or deployments.apps.",
        )
        excluded_resources_input = resource_columns[1].text_input("Excluded resources (comma-separated)", value="")
        label_selector_input = st.text_input("Label selector", value="", help="Example: app=web,tier in (frontend)")
        option_columns = st.columns(2)
        include_cluster_resources_label = option_columns[0].selectbox(
            "Include cluster-scoped resources",
            options=[_TRISTATE_AUTO, _TRISTATE_YES, _TRISTATE_NO],
            help="Auto includes them only when every namespace is selected.",
        )
        snapshot_volumes_label = option_columns[1].selectbox(
            "Snapshot persistent volumes",
            options=[_TRISTATE_AUTO, _TRISTATE_YES, _TRISTATE_NO],
        )
        if name.strip():
            try:
                backup = _build_backup_from_form(
                    name=name,
                    included_namespaces_input=included_namespaces_input,
                    excluded_namespaces_input=excluded_namespaces_input,
                    included_resources_input=included_resources_input,
                    excluded_resources_input=excluded_resources_input,
                    label_selector_input=label_selector_input,
                    include_cluster_resources_label=include_cluster_resources_label,
                    snapshot_volumes_label=snapshot_volumes_label,
                )
            except ValueError as error:
                definition_error = str(error)
    else:
        manifest_text = st.text_area("Backup manifest (YAML)", height=280)
        if manifest_text.strip():
            try:
                backup = _build_backup_from_manifest(manifest_text)
            except ValueError as error:
                definition_error = str(error)

    if definition_error:
        st.error(definition_error)

    if st.button("Run backup", type="primary", disabled=backup is None):
        try:
            object_store = _build_object_store(base_config)
        except ObjectStoreError as error:
            st.error(f"Object store is not usable: {error}")
        else:
            manager = BackupManager(
                backupper=build_backupper(
                    clients,
                    request_timeout_seconds=base_config.discovery_timeout_seconds,
                    log_level=base_config.log_level_number,
                ),
                metadata_store=metadata_store,
                config=BackupManagerConfig(backup_dir=base_config.backup_dir, bucket=base_config.bucket),
                object_store=object_store,
            )
            with st.spinner(f"Backing up {backup.name}..."):
                record = manager.run(backup)
            st.session_state.last_run_records = [record]

            if record.status == STATUS_COMPLETED:
                st.success(f"Backup {record.backup_name} completed with {record.items_backed_up} item(s).")
            elif record.status == STATUS_COMPLETED_WITH_ERRORS:
                st.warning(
                    f"Backup {record.backup_name} completed with {record.error_count} error(s). "
                    "Review actionable details below."
                )
            else:
                st.error(f"Backup {record.backup_name} failed. Review actionable details below.")

    workflow_placeholder.dataframe(
        _build_workflow_rows(
            connected=True,
            backup_defined=backup is not None,
            run_count=len(st.session_state.last_run_records),
        ),
        use_container_width=True,
        hide_index=True,
    )

    if st.session_state.last_run_records:
        st.subheader("Latest Backup Run")
        latest_rows = _build_run_rows(st.session_state.last_run_records)
        st.dataframe(latest_rows, use_container_width=True, hide_index=True)
        for row in latest_rows:
            if row["status"] != STATUS_COMPLETED:
                st.error(f"{row['backup']}: {row['actionable_message']}")

    st.subheader("Recent Backup History")
    history_rows = _build_history_rows(metadata_store.get_recent_runs(limit=100))
    if history_rows:
        st.caption(f"Showing {len(history_rows)} of {metadata_store.count_runs()} recorded run(s).")
        st.dataframe(history_rows, use_container_width=True, hide_index=True)
    else:
        st.info("No backup history yet. Run your first backup to populate this table.")

    if base_config.object_store_dir is not None:
        _render_stored_backups(base_config, metadata_store)


def _render_stored_backups(base_config: AppConfig, metadata_store: BackupMetadataStore) -> None:
    st.subheader("Stored Backups")
    try:
        object_store = _build_object_store(base_config)
        stored_backups = list_backups(object_store, base_config.bucket) if object_store is not None else []
    except ObjectStoreError as error:
        st.error(f"Object store is not usable: {error}")
        return

    if not stored_backups:
        st.info("No backups in the object store yet.")
        return

    st.dataframe(
        _build_stored_backup_rows(stored_backups, metadata_store.get_last_success_map()),
        use_container_width=True,
        hide_index=True,
    )
    selected_name = st.selectbox("Backup", options=sorted(backup.name for backup in stored_backups))
    if st.button("Create log download link"):
        try:
            url = create_log_download_url(object_store, base_config.bucket, selected_name, _LOG_URL_TTL)
        except ObjectStoreError as error:
            st.error(f"Unable to create a log download link: {error}")
        else:
            st.code(url, language="text")


if __name__ == "__main__":
    main()
