from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import List

import structlog

from utils import iso_timestamp

logger = structlog.get_logger("backups")

BACKUP_PREFIX = "backup_"
BACKUP_SUFFIX = ".json"


def backup_filename(moment: dt.datetime) -> str:
    """backup_2025-04-10T03-00-00-000Z.json: sortable and filesystem-safe."""
    stamp = iso_timestamp(moment).replace(":", "-").replace(".", "-")
    return f"{BACKUP_PREFIX}{stamp}{BACKUP_SUFFIX}"


def write_backup(backup_dir: Path, payload: str, moment: dt.datetime) -> Path:
    backup_dir.mkdir(parents=True, exist_ok=True)
    path = backup_dir / backup_filename(moment)
    path.write_text(payload, encoding="utf-8")
    return path


def list_backups(backup_dir: Path) -> List[Path]:
    if not backup_dir.is_dir():
        return []
    return sorted(
        p for p in backup_dir.iterdir()
        if p.name.startswith(BACKUP_PREFIX) and p.name.endswith(BACKUP_SUFFIX)
    )


def prune_backups(backup_dir: Path, retention_days: int, moment: dt.datetime) -> List[Path]:
    """Delete backups whose mtime is older than ``retention_days`` before ``moment``.

    A file that cannot be inspected or removed is logged and skipped.
    """
    cutoff = moment.timestamp() - retention_days * 86400
    removed: List[Path] = []
    for path in list_backups(backup_dir):
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed.append(path)
                logger.info("backup_pruned", file=path.name)
        except OSError as exc:
            logger.warning("backup_prune_failed", file=path.name, error=str(exc))
    return removed
