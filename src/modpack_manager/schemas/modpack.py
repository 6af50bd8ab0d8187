from datetime import datetime

from pydantic import BaseModel


class ModpackCreate(BaseModel):
    name: str
    version: str = "1.0.0"
    description: str = ""
    game_version: str = ""
    loader: str = ""
    loader_version: str = ""


class ModpackUpdate(BaseModel):
    name: str | None = None
    version: str | None = None
    description: str | None = None
    game_version: str | None = None
    loader: str | None = None
    loader_version: str | None = None
    remote_auto_check: bool | None = None


class MemberAdd(BaseModel):
    mod_id: str
    disabled: bool = False


class MemberReplace(BaseModel):
    new_mod_id: str


class MemberFlags(BaseModel):
    enabled: bool | None = None
    locked: bool | None = None
    note: str | None = None


class ModpackEntryOut(BaseModel):
    mod_id: str
    project_key: str
    name: str
    version: str = ""
    content_type: str = "mod"
    disabled: bool = False
    locked: bool = False
    note: str | None = None
    in_library: bool = True


class ModpackOut(BaseModel):
    id: str
    name: str
    version: str
    description: str = ""
    game_version: str = ""
    loader: str = ""
    loader_version: str = ""
    share_code: str | None = None
    current_version_id: str | None = None
    remote_url: str | None = None
    remote_auto_check: bool = False
    remote_last_checked: datetime | None = None
    publish_raw_url: str | None = None
    created_at: datetime
    updated_at: datetime
    mod_count: int
    mods: list[ModpackEntryOut] = []


class ModpackState(BaseModel):
    """Membership and flags of a modpack at one point in time.

    Lists are kept sorted so two equal states serialize identically.
    """

    mod_ids: list[str] = []
    disabled: list[str] = []
    locked: list[str] = []
    notes: dict[str, str] = {}
    loader: str = ""
    loader_version: str = ""


class DependencyIssue(BaseModel):
    mod_id: str
    mod_name: str
    dependency_project_key: str
    kind: str  # "missing" | "incompatible"


class DependencyReport(BaseModel):
    ok: bool
    issues: list[DependencyIssue] = []


class CloneRequest(BaseModel):
    name: str
