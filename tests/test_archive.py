from __future__ import annotations

import io
import tarfile

import pytest

from nerdy_k8s_cluster_backup.archive import (
    ArchiveWriter,
    iter_archive_items,
    item_path,
    read_log_lines,
)


def test_item_path_with_namespace_and_without_uses_scoped_directories() -> None:
    assert item_path("pods", "ns-a", "web-0") == "resources/pods/namespaces/ns-a/web-0.json"
    assert item_path("persistentvolumes", "", "pv-1") == "resources/persistentvolumes/cluster/pv-1.json"


def test_write_item_with_items_produces_readable_gzipped_tarball() -> None:
    backup_file = io.BytesIO()
    log_file = io.BytesIO()

    with ArchiveWriter(backup_file, log_file) as archive:
        archive.write_item("pods", "ns-a", "web-0", {"kind": "Pod", "metadata": {"name": "web-0"}})
        archive.write_item("namespaces", "", "ns-a", {"kind": "Namespace", "metadata": {"name": "ns-a"}})

    assert archive.closed is True
    assert archive.items_written == 2
    assert not backup_file.closed

    backup_file.seek(0)
    with tarfile.open(fileobj=backup_file, mode="r:gz") as tarball:
        members = tarball.getmembers()
    assert [member.name for member in members] == [
        "resources/pods/namespaces/ns-a/web-0.json",
        "resources/namespaces/cluster/ns-a.json",
    ]
    assert all(member.mode == 0o755 for member in members)

    backup_file.seek(0)
    entries = list(iter_archive_items(backup_file))
    assert [(entry.group_resource, entry.namespace, entry.name) for entry in entries] == [
        ("pods", "ns-a", "web-0"),
        ("namespaces", None, "ns-a"),
    ]
    assert entries[0].item == {"kind": "Pod", "metadata": {"name": "web-0"}}


def test_close_with_no_items_still_produces_valid_empty_streams() -> None:
    backup_file = io.BytesIO()
    log_file = io.BytesIO()

    archive = ArchiveWriter(backup_file, log_file)
    archive.close()
    archive.close()

    backup_file.seek(0)
    log_file.seek(0)
    assert list(iter_archive_items(backup_file)) == []
    assert read_log_lines(log_file) == []


def test_write_item_after_close_raises_runtime_error() -> None:
    archive = ArchiveWriter(io.BytesIO(), io.BytesIO())
    archive.close()

    with pytest.raises(RuntimeError, match="closed"):
        archive.write_item("pods", "ns-a", "web-0", {})


def test_write_item_with_value_json_cannot_represent_raises_and_writes_nothing() -> None:
    backup_file = io.BytesIO()

    with ArchiveWriter(backup_file, io.BytesIO()) as archive:
        with pytest.raises(TypeError):
            archive.write_item("pods", "ns-a", "web-0", {"kind": "Pod", "spec": {"ports": {8080, 8443}}})

    assert archive.items_written == 0
    backup_file.seek(0)
    assert list(iter_archive_items(backup_file)) == []


def test_log_with_fields_writes_logfmt_lines_to_gzip_sink() -> None:
    log_file = io.BytesIO()

    with ArchiveWriter(io.BytesIO(), log_file) as archive:
        log = archive.log.with_fields(backup="nkcb/nightly")
        log.with_fields(resource="pods").info("Listed items", extra={"fields": {"count": 2}})
        log.warning("Skipping item")
        log.debug("Not written at info level")

    log_file.seek(0)
    lines = read_log_lines(log_file)

    assert len(lines) == 2
    assert 'level=info msg="Listed items" backup=nkcb/nightly count=2 resource=pods' in lines[0]
    assert lines[0].startswith('time="')
    assert 'level=warning msg="Skipping item" backup=nkcb/nightly' in lines[1]


def test_log_with_values_containing_spaces_quotes_them() -> None:
    log_file = io.BytesIO()

    with ArchiveWriter(io.BytesIO(), log_file) as archive:
        archive.log.error("Error backing up item", extra={"fields": {"error": "list failed: forbidden"}})

    log_file.seek(0)
    assert 'error="list failed: forbidden"' in read_log_lines(log_file)[0]
