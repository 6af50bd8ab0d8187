from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel

from modpack_manager.schemas.modpack import ModpackState


class ChangeType(StrEnum):
    add = "add"
    remove = "remove"
    update = "update"
    enable = "enable"
    disable = "disable"
    lock = "lock"
    unlock = "unlock"
    note_add = "note_add"
    note_remove = "note_remove"
    note_change = "note_change"
    loader_change = "loader_change"
    config = "config"
    marker = "marker"


class ModpackChange(BaseModel):
    type: ChangeType
    mod_id: str | None = None
    mod_name: str = ""
    project_key: str | None = None
    previous_mod_id: str | None = None
    previous_version: str | None = None
    new_version: str | None = None
    previous_file_id: str | None = None
    new_file_id: str | None = None
    previous_note: str | None = None
    new_note: str | None = None


class ModSnapshot(BaseModel):
    id: str
    name: str
    version: str = ""
    source: str = "curseforge"
    project_id: str | None = None
    file_id: str | None = None
    filename: str = ""
    content_type: str = "mod"


class VersionSnapshot(BaseModel):
    state: ModpackState
    game_version: str = ""
    mods: list[ModSnapshot] = []


class VersionOut(BaseModel):
    version_id: str
    tag: str
    message: str
    parent_id: str | None = None
    created_at: datetime
    mod_count: int
    changes: list[ModpackChange] = []
    config_snapshot_id: str | None = None


class VersionDetail(VersionOut):
    snapshot: VersionSnapshot


class VersionHistoryOut(BaseModel):
    modpack_id: str
    current_version_id: str | None = None
    versions: list[VersionOut] = []


class CommitRequest(BaseModel):
    message: str
    tag: str | None = None
    force: bool = False


class UnsavedChanges(BaseModel):
    has_changes: bool
    changes: list[ModpackChange] = []
    config_changed: bool = False


class RollbackFailure(BaseModel):
    mod_id: str
    mod_name: str
    reason: str


class RollbackResult(BaseModel):
    success: bool
    version_id: str
    new_version_id: str | None = None
    kept_count: int = 0
    restored_count: int = 0
    failed_count: int = 0
    failed_mods: list[RollbackFailure] = []
    total_mods: int = 0
    original_mod_count: int = 0
    loader_restored: bool = False
    configs_restored: bool = False
    changes: list[ModpackChange] = []


class RollbackPreview(BaseModel):
    version_id: str
    total_mods: int
    available: list[str] = []
    to_reacquire: list[str] = []
    unrestorable: list[RollbackFailure] = []
    broken_dependencies: list[str] = []
    can_rollback: bool = True


class RollbackRequest(BaseModel):
    restore_configs: bool = True
