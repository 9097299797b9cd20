"""Where linksync keeps its linkage database."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .errors import ConfigurationError

DATA_DIR_ENV: Final[str] = "LINKSYNC_DATA_DIR"
DATABASE_FILE_ENV: Final[str] = "LINKSYNC_DATABASE_FILE"
DATABASE_URI_ENV: Final[str] = "DATABASE_URI"

DEFAULT_DB_FILENAME: Final[str] = "linksync.db"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    database_filename: str = DEFAULT_DB_FILENAME

    def __post_init__(self) -> None:
        name = self.database_filename
        if not name or name == ".." or Path(name).name != name:
            raise ConfigurationError(
                f"{DATABASE_FILE_ENV} must be a bare file name, got {self.database_filename!r}"
            )

    def resolve_data_dir(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def database_path(self, *, ensure: bool = True) -> Path:
        data_dir = self.resolve_data_dir()
        if ensure:
            if data_dir.exists() and not data_dir.is_dir():
                raise ConfigurationError(f"Data directory {data_dir} is not a directory")
            data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir / self.database_filename

    def database_uri(self) -> str:
        return f"sqlite+pysqlite:///{self.database_path()}"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


def _xdg_data_home() -> Path:
    base = os.getenv("XDG_DATA_HOME")
    return Path(base) if base else Path.home() / ".local" / "share"


def get_storage_config() -> StorageConfig:
    env_dir = os.getenv(DATA_DIR_ENV)
    data_dir = Path(env_dir) if env_dir else _xdg_data_home() / "linksync"
    filename = os.getenv(DATABASE_FILE_ENV, "").strip() or DEFAULT_DB_FILENAME
    return StorageConfig(data_dir=data_dir, database_filename=filename)


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    """``DATABASE_URI`` wins; otherwise a SQLite file in the data directory."""

    env_uri = os.getenv(DATABASE_URI_ENV, "").strip()
    if env_uri:
        return DatabaseConfig(uri=env_uri)
    return DatabaseConfig(uri=(storage or get_storage_config()).database_uri())
