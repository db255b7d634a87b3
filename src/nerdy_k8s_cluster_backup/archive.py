from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, BinaryIO, Iterator, MutableMapping
import gzip
import io
import json
import logging
import tarfile
import threading
import time
import uuid

RESOURCES_DIR = "resources"
NAMESPACE_SCOPED_DIR = "namespaces"
CLUSTER_SCOPED_DIR = "cluster"
_ITEM_FILE_MODE = 0o755


@dataclass(frozen=True)
class ArchiveEntry:
    group_resource: str
    namespace: str | None
    name: str
    item: dict[str, Any]


class LogfmtFormatter(logging.Formatter):
    """Renders records as ``time="..." level=info msg="..." key=value`` lines."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=UTC).replace(microsecond=0).isoformat()
        level = "warning" if record.levelno == logging.WARNING else record.levelname.lower()
        parts = [
            f"time={_quote(timestamp)}",
            f"level={level}",
            f"msg={_quote(record.getMessage())}",
        ]
        fields: dict[str, Any] = getattr(record, "fields", None) or {}
        if record.exc_info and "error" not in fields:
            fields = {**fields, "error": self.formatException(record.exc_info).splitlines()[-1]}
        for key in sorted(fields):
            parts.append(f"{key}={_format_value(fields[key])}")
        return " ".join(parts)


class FieldLogger(logging.LoggerAdapter):
    """LoggerAdapter that carries structured fields into every record."""

    def __init__(self, logger: logging.Logger, fields: dict[str, Any] | None = None) -> None:
        super().__init__(logger, dict(fields or {}))

    def with_fields(self, **fields: Any) -> FieldLogger:
        return FieldLogger(self.logger, {**(self.extra or {}), **fields})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        fields = {**(self.extra or {}), **extra.pop("fields", {})}
        kwargs["extra"] = {**extra, "fields": fields}
        return msg, kwargs


class ArchiveWriter:
    """Gzipped tar sink for backed-up items plus a gzipped structured log sink.

    Both streams are written sequentially and finalized by ``close()``; the
    caller's file objects are left open.
    """

    def __init__(self, backup_file: BinaryIO, log_file: BinaryIO, *, log_level: int = logging.INFO) -> None:
        self._lock = threading.Lock()
        self._closed = False
        self.items_written = 0

        self._tar = tarfile.open(fileobj=backup_file, mode="w|gz")
        self._log_stream = io.TextIOWrapper(
            gzip.GzipFile(fileobj=log_file, mode="wb"),
            encoding="utf-8",
        )
        self._handler = logging.StreamHandler(self._log_stream)
        self._handler.setFormatter(LogfmtFormatter())
        # Not registered with logging.getLogger so each run owns its logger.
        self._logger = logging.Logger(f"{__name__}.run.{uuid.uuid4().hex[:8]}", level=log_level)
        self._logger.propagate = False
        self._logger.addHandler(self._handler)
        self.log = FieldLogger(self._logger)

    def __enter__(self) -> ArchiveWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def write_item(self, group_resource: str, namespace: str, name: str, item: dict[str, Any]) -> str:
        path = item_path(group_resource, namespace, name)
        data = json.dumps(item, sort_keys=True, separators=(",", ":")).encode("utf-8")

        info = tarfile.TarInfo(name=path)
        info.size = len(data)
        info.mode = _ITEM_FILE_MODE
        info.mtime = int(time.time())
        info.type = tarfile.REGTYPE

        with self._lock:
            if self._closed:
                raise RuntimeError("archive writer is closed")
            self._tar.addfile(info, io.BytesIO(data))
            self.items_written += 1
        return path

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._tar.close()
            finally:
                self._handler.flush()
                self._logger.removeHandler(self._handler)
                self._handler.close()
                self._log_stream.close()


def item_path(group_resource: str, namespace: str, name: str) -> str:
    if namespace:
        return f"{RESOURCES_DIR}/{group_resource}/{NAMESPACE_SCOPED_DIR}/{namespace}/{name}.json"
    return f"{RESOURCES_DIR}/{group_resource}/{CLUSTER_SCOPED_DIR}/{name}.json"


def iter_archive_items(backup_file: BinaryIO) -> Iterator[ArchiveEntry]:
    with tarfile.open(fileobj=backup_file, mode="r|gz") as archive:
        for member in archive:
            if not member.isfile():
                continue
            entry = _parse_item_path(member.name)
            if entry is None:
                continue
            handle = archive.extractfile(member)
            if handle is None:
                continue
            group_resource, namespace, name = entry
            yield ArchiveEntry(
                group_resource=group_resource,
                namespace=namespace,
                name=name,
                item=json.loads(handle.read().decode("utf-8")),
            )


def read_log_lines(log_file: BinaryIO) -> list[str]:
    with gzip.GzipFile(fileobj=log_file, mode="rb") as handle:
        return handle.read().decode("utf-8").splitlines()


def _parse_item_path(path: str) -> tuple[str, str | None, str] | None:
    parts = path.split("/")
    if len(parts) == 5 and parts[0] == RESOURCES_DIR and parts[2] == NAMESPACE_SCOPED_DIR:
        return parts[1], parts[3], parts[4].removesuffix(".json")
    if len(parts) == 4 and parts[0] == RESOURCES_DIR and parts[2] == CLUSTER_SCOPED_DIR:
        return parts[1], None, parts[3].removesuffix(".json")
    return None


def _quote(value: str) -> str:
    return json.dumps(value)


def _format_value(value: Any) -> str:
    text = str(value)
    if not text or any(character in text for character in ' ="\n\t'):
        return _quote(text)
    return text
