# Environment-driven configuration. Values come from the process environment,
# optionally seeded from a local .env file.

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class AppConfig(BaseModel):
    # Storage
    data_root: Path = Field(default_factory=Path.cwd)
    data_file: Path = Path("data/database.json")
    backup_dir: Path = Path("data/backups")
    backup_retention_days: int = 30

    # LINE messaging
    line_channel_secret: str = ""
    line_channel_access_token: str = ""

    # Web
    public_base_url: str = "https://your-app.vercel.app"
    front_origin: str = "http://localhost:3000"

    @property
    def data_path(self) -> Path:
        return self.data_root / self.data_file

    @property
    def backup_path(self) -> Path:
        return self.data_root / self.backup_dir


def load_config() -> AppConfig:
    values = {
        "data_root": os.getenv("SHIFT_DATA_ROOT"),
        "data_file": os.getenv("SHIFT_DATA_FILE"),
        "backup_dir": os.getenv("SHIFT_BACKUP_DIR"),
        "backup_retention_days": os.getenv("SHIFT_BACKUP_RETENTION_DAYS"),
        "line_channel_secret": os.getenv("LINE_CHANNEL_SECRET"),
        "line_channel_access_token": os.getenv("LINE_CHANNEL_ACCESS_TOKEN"),
        "public_base_url": os.getenv("PUBLIC_BASE_URL"),
        "front_origin": os.getenv("FRONT_ORIGIN"),
    }
    # unset variables fall back to the model defaults
    return AppConfig(**{k: v for k, v in values.items() if v})
