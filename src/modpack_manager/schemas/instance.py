from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class ConfigSyncMode(StrEnum):
    overwrite = "overwrite"
    new_only = "new_only"
    skip = "skip"


class InstanceCreate(BaseModel):
    name: str
    modpack_id: str | None = None
    path: str | None = None
    memory_min_mb: int = 2048
    memory_max_mb: int = 4096


class InstanceUpdate(BaseModel):
    name: str | None = None
    game_version: str | None = None
    loader: str | None = None
    loader_version: str | None = None
    memory_min_mb: int | None = None
    memory_max_mb: int | None = None
    java_args: str | None = None


class InstanceOut(BaseModel):
    id: str
    name: str
    modpack_id: str | None = None
    path: str
    game_version: str = ""
    loader: str = ""
    loader_version: str = ""
    memory_min_mb: int
    memory_max_mb: int
    java_args: str = ""
    created_at: datetime
    last_synced_at: datetime | None = None


class ExpectedFile(BaseModel):
    mod_id: str
    name: str
    filename: str
    folder: str


class DisabledMismatch(BaseModel):
    mod_id: str
    name: str
    filename: str
    expected_disabled: bool


class SyncStatus(BaseModel):
    needs_sync: bool
    total_differences: int
    missing_in_instance: list[ExpectedFile] = []
    extra_in_instance: list[str] = []
    disabled_mismatch: list[DisabledMismatch] = []
    config_differences: int = 0
    loader_version_mismatch: bool = False


class SyncRequest(BaseModel):
    config_sync_mode: ConfigSyncMode = ConfigSyncMode.overwrite
    clear_existing: bool = False


class SyncResult(BaseModel):
    success: bool
    mods_downloaded: int = 0
    mods_skipped: int = 0
    mods_removed: int = 0
    mods_renamed: int = 0
    configs_copied: int = 0
    configs_skipped: int = 0
    errors: list[str] = []
    warnings: list[str] = []


class ConfigPullResult(BaseModel):
    files_copied: int = 0
    errors: list[str] = []
