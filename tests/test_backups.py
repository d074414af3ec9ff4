import datetime as dt
import json
import os
import re
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backups import backup_filename, list_backups, prune_backups  # noqa: E402
from store import ShiftStore  # noqa: E402

BACKUP_NAME_RE = re.compile(r"^backup_\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z\.json$")


def age_file(path: Path, days: float) -> None:
    stamp = time.time() - days * 86400
    os.utime(path, (stamp, stamp))


def test_backup_filename_is_filesystem_safe():
    moment = dt.datetime(2025, 4, 10, 3, 4, 5, 678000, tzinfo=dt.timezone.utc)

    name = backup_filename(moment)

    assert name == "backup_2025-04-10T03-04-05-678Z.json"
    assert BACKUP_NAME_RE.match(name)


def test_save_writes_a_backup_of_the_new_snapshot(tmp_path):
    store = ShiftStore(tmp_path / "database.json", tmp_path / "backups")
    store.save_user("U1", {"display_name": "太郎"})

    backups = list_backups(tmp_path / "backups")

    assert backups
    assert all(BACKUP_NAME_RE.match(p.name) for p in backups)
    latest = json.loads(backups[-1].read_text(encoding="utf-8"))
    assert "U1" in latest["users"]
    assert store.get_dataset().metadata.last_backup_at is not None


def test_backups_older_than_retention_are_pruned(tmp_path):
    backup_dir = tmp_path / "backups"
    backup_dir.mkdir()
    old = backup_dir / "backup_2025-01-01T00-00-00-000Z.json"
    recent = backup_dir / "backup_2025-01-02T00-00-00-000Z.json"
    unrelated = backup_dir / "notes.json"
    for path in (old, recent, unrelated):
        path.write_text("{}", encoding="utf-8")
    age_file(old, 31)
    age_file(recent, 29)
    age_file(unrelated, 90)

    removed = prune_backups(backup_dir, 30, dt.datetime.now(dt.timezone.utc))

    assert removed == [old]
    assert not old.exists()
    assert recent.exists()
    assert unrelated.exists()


def test_store_prunes_on_save(tmp_path):
    backup_dir = tmp_path / "backups"
    backup_dir.mkdir()
    stale = backup_dir / "backup_2024-01-01T00-00-00-000Z.json"
    stale.write_text("{}", encoding="utf-8")
    age_file(stale, 45)
    store = ShiftStore(tmp_path / "database.json", backup_dir, retention_days=30)

    store.save_user("U1", {"display_name": "太郎"})

    assert not stale.exists()
    assert list_backups(backup_dir)


def test_backup_failure_does_not_block_the_save(tmp_path):
    blocked = tmp_path / "backups"
    blocked.write_text("not a directory", encoding="utf-8")
    store = ShiftStore(tmp_path / "database.json", blocked)

    store.save_user("U1", {"display_name": "太郎"})

    reloaded = ShiftStore(tmp_path / "database.json", blocked)
    assert reloaded.get_user("U1").display_name == "太郎"
    assert reloaded.get_dataset().metadata.last_backup_at is None


def test_missing_backup_dir_lists_nothing(tmp_path):
    assert list_backups(tmp_path / "nowhere") == []
    assert prune_backups(tmp_path / "nowhere", 30, dt.datetime.now(dt.timezone.utc)) == []
