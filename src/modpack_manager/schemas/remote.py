from datetime import datetime

from pydantic import BaseModel

from modpack_manager.schemas.version import ModpackChange


class RemoteSourceSet(BaseModel):
    url: str
    auto_check: bool = False


class RemoteUpdateCheck(BaseModel):
    has_update: bool
    checksum: str | None = None
    remote_version: str | None = None
    full_diff: bool = False
    changes: list[ModpackChange] = []
    loader_changed: bool = False
    loader_version_changed: bool = False
    game_version_changed: bool = False
    has_version_history_changes: bool = False
    checked_at: datetime


class PublishResult(BaseModel):
    gist_id: str
    html_url: str
    raw_url: str
    share_code: str
    checksum: str
