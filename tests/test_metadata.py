from pathlib import Path

from nerdy_k8s_cluster_backup.metadata import BackupMetadataStore
from nerdy_k8s_cluster_backup.models import BackupRunRecord


def _record(
    *,
    backup_name: str,
    status: str,
    finished_at: str,
    started_at: str = "2026-02-23T10:00:00+00:00",
    items_backed_up: int = 0,
    error_count: int = 0,
    archive_path: str | None = None,
    checksum_sha256: str | None = None,
    message: str = "",
) -> BackupRunRecord:
    return BackupRunRecord(
        backup_name=backup_name,
        status=status,
        started_at=started_at,
        finished_at=finished_at,
        items_backed_up=items_backed_up,
        error_count=error_count,
        archive_path=archive_path,
        checksum_sha256=checksum_sha256,
        message=message,
    )


def _store(tmp_path: Path) -> BackupMetadataStore:
    store = BackupMetadataStore(tmp_path / "data" / "backups.db")
    store.initialize()
    return store


def test_initialize_creates_parent_directory_and_is_idempotent(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.initialize()

    assert (tmp_path / "data" / "backups.db").is_file()
    assert store.count_runs() == 0


def test_get_last_success_map_with_mixed_statuses_tracks_latest_completed_run(tmp_path: Path) -> None:
    store = _store(tmp_path)

    store.record_run(_record(backup_name="nightly", status="Completed", finished_at="2026-02-23T09:01:00+00:00"))
    store.record_run(_record(backup_name="nightly", status="Completed", finished_at="2026-02-23T11:01:00+00:00"))
    store.record_run(
        _record(
            backup_name="nightly",
            status="Failed",
            finished_at="2026-02-23T12:01:00+00:00",
            message="backup stage failed: forbidden",
        )
    )
    store.record_run(
        _record(backup_name="weekly", status="CompletedWithErrors", finished_at="2026-02-23T10:01:00+00:00", error_count=2)
    )

    last_success = store.get_last_success_map()

    assert last_success == {"nightly": "2026-02-23T11:01:00+00:00"}


def test_get_last_success_map_with_empty_history_returns_empty_map(tmp_path: Path) -> None:
    assert _store(tmp_path).get_last_success_map() == {}


def test_get_recent_runs_returns_most_recent_first_with_all_fields(tmp_path: Path) -> None:
    store = _store(tmp_path)

    store.record_run(_record(backup_name="nightly", status="Completed", finished_at="2026-02-23T11:01:00+00:00"))
    store.record_run(
        _record(
            backup_name="weekly",
            status="Completed",
            finished_at="2026-02-23T12:01:00+00:00",
            items_backed_up=42,
            archive_path="/backups/weekly/weekly.tar.gz",
            checksum_sha256="abc",
        )
    )

    rows = store.get_recent_runs(limit=10)

    assert [row["backup_name"] for row in rows] == ["weekly", "nightly"]
    assert rows[0]["items_backed_up"] == 42
    assert rows[0]["archive_path"] == "/backups/weekly/weekly.tar.gz"
    assert rows[0]["checksum_sha256"] == "abc"
    assert rows[0]["log_path"] is None


def test_get_recent_runs_with_same_timestamp_orders_by_latest_insert(tmp_path: Path) -> None:
    store = _store(tmp_path)

    timestamp = "2026-02-23T12:01:00+00:00"
    store.record_run(_record(backup_name="first", status="Completed", finished_at=timestamp))
    store.record_run(_record(backup_name="second", status="Failed", finished_at=timestamp))

    rows = store.get_recent_runs(limit=2)

    assert [row["backup_name"] for row in rows] == ["second", "first"]


def test_get_recent_runs_with_non_positive_limit_returns_empty_list(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.record_run(_record(backup_name="nightly", status="Completed", finished_at="2026-02-23T11:01:00+00:00"))

    assert store.get_recent_runs(limit=0) == []
    assert store.get_recent_runs(limit=-1) == []


def test_count_runs_returns_total_history_rows(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.record_run(_record(backup_name="nightly", status="Completed", finished_at="2026-02-23T11:01:00+00:00"))
    store.record_run(_record(backup_name="nightly", status="Failed", finished_at="2026-02-23T11:02:00+00:00"))

    assert store.count_runs() == 2

