import os
import sys
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> Path:
    if env := os.environ.get("MPM_DATA_DIR"):
        return Path(env)
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return base / "modpack-manager"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MPM_",
        extra="ignore",
    )

    data_dir: Path = Path("")
    db_path: Path = Path("")
    overrides_dir: Path = Path("")
    instances_dir: Path = Path("")
    curseforge_api_key: str = ""
    github_token: str = ""
    host: str = "127.0.0.1"
    port: int = 8426

    update_check_batch_size: int = 10
    download_batch_size: int = 5
    download_max_retries: int = 3
    download_retry_base_delay: float = 1.0
    download_retry_max_delay: float = 30.0
    remote_fetch_timeout: float = 15.0
    default_config_sync_mode: str = "overwrite"

    @model_validator(mode="after")
    def _resolve_data_paths(self) -> "Settings":
        if self.data_dir == Path(""):
            self.data_dir = _default_data_dir()
        if self.db_path == Path(""):
            self.db_path = self.data_dir / "modpacks.db"
        if self.overrides_dir == Path(""):
            self.overrides_dir = self.data_dir / "overrides"
        if self.instances_dir == Path(""):
            self.instances_dir = self.data_dir / "instances"
        return self


settings = Settings()
