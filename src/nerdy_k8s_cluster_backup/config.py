from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class AppConfig:
    backup_dir: Path = Path(os.getenv("NKCB_BACKUP_DIR", "./backups"))
    metadata_db_path: Path = Path(os.getenv("NKCB_METADATA_DB_PATH", "./data/backups.db"))
    object_store_dir: Path | None = (
        Path(os.environ["NKCB_OBJECT_STORE_DIR"]) if os.getenv("NKCB_OBJECT_STORE_DIR") else None
    )
    bucket: str = os.getenv("NKCB_BUCKET", "cluster-backups")
    discovery_timeout_seconds: int = int(os.getenv("NKCB_DISCOVERY_TIMEOUT_SECONDS", "20"))
    log_level: str = os.getenv("NKCB_LOG_LEVEL", "INFO")

    @property
    def log_level_number(self) -> int:
        level = logging.getLevelName(self.log_level.strip().upper())
        return level if isinstance(level, int) else logging.INFO


def ensure_directories(config: AppConfig) -> None:
    config.backup_dir.mkdir(parents=True, exist_ok=True)
    config.metadata_db_path.parent.mkdir(parents=True, exist_ok=True)
    if config.object_store_dir is not None:
        config.object_store_dir.mkdir(parents=True, exist_ok=True)


def configure_logging(level: str | int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
