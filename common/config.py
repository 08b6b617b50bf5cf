from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _default_env_file() -> str:
    # .env en la raíz del repo, junto a pyproject.toml.
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


@dataclass(frozen=True)
class Settings:
    sqlite_path: str
    sink_url: str

    batch_size: int
    fetch_size: int


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("HA_SYNC_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    sqlite_path = os.getenv("HA_SQLITE_PATH", "")
    sink_url = os.getenv("HA_SINK_URL", "")

    # 500 filas por sentencia mantiene el INSERT por debajo de max_allowed_packet.
    batch_size = int(os.getenv("HA_SYNC_BATCH_SIZE", "500"))
    fetch_size = int(os.getenv("HA_SYNC_FETCH_SIZE", "1000"))

    return Settings(
        sqlite_path=sqlite_path,
        sink_url=sink_url,
        batch_size=batch_size,
        fetch_size=fetch_size,
    )
