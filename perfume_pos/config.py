from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

CONFIG_FILE_NAME = "settings.json"
DB_FILE_NAME = "perfume_pos.db"
ENV_DATA_DIR = "PERFUME_POS_DATA_DIR"
ENV_LOG_LEVEL = "PERFUME_POS_LOG_LEVEL"

DEFAULT_CURRENCY = "UGX"
DEFAULT_DECANTS_PER_BOTTLE = 10


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    db_path: Path
    currency: str = DEFAULT_CURRENCY
    default_decants_per_bottle: int = DEFAULT_DECANTS_PER_BOTTLE
    log_level: str = "INFO"


def _default_data_dir() -> Path:
    return Path.home() / ".perfume_pos"


def _load_persisted_settings(data_dir: Path) -> dict:
    cfg = data_dir / CONFIG_FILE_NAME
    if cfg.exists():
        try:
            return json.loads(cfg.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
    return {}


def persist_data_dir(data_dir_str: str, *, default_dir: Optional[Path] = None) -> Path:
    """Remember a data directory so the next start picks it up.

    The pointer is written into the default folder (that is where
    ``load_settings`` looks) and a copy into the new folder itself.
    """
    data_dir = Path(data_dir_str).expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)

    payload = {"data_dir": str(data_dir)}
    home = (default_dir or _default_data_dir()).expanduser()
    home.mkdir(parents=True, exist_ok=True)
    for folder in {home.resolve(), data_dir}:
        (folder / CONFIG_FILE_NAME).write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return data_dir


def load_settings(data_dir: Optional[str | Path] = None) -> Settings:
    # Priority order:
    # 1) Explicit argument (session override from the Data Management page)
    # 2) Environment variable
    # 3) Persisted settings in default folder
    # 4) Default folder
    if data_dir:
        resolved = Path(data_dir).expanduser().resolve()
    elif os.getenv(ENV_DATA_DIR):
        resolved = Path(os.getenv(ENV_DATA_DIR, "")).expanduser().resolve()
    else:
        default_dir = _default_data_dir()
        persisted = _load_persisted_settings(default_dir)
        resolved = Path(persisted.get("data_dir", default_dir)).expanduser().resolve()

    resolved.mkdir(parents=True, exist_ok=True)
    persisted = _load_persisted_settings(resolved)
    return Settings(
        data_dir=resolved,
        db_path=resolved / DB_FILE_NAME,
        currency=str(persisted.get("currency", DEFAULT_CURRENCY)),
        default_decants_per_bottle=int(persisted.get("default_decants_per_bottle", DEFAULT_DECANTS_PER_BOTTLE)),
        log_level=os.getenv(ENV_LOG_LEVEL, str(persisted.get("log_level", "INFO"))).upper(),
    )
