from datetime import datetime

from pydantic import BaseModel

from modpack_manager.constants import ContentType
from modpack_manager.identity import ModSource


class ModDependency(BaseModel):
    project_id: str
    type: str


class ModCreate(BaseModel):
    source: ModSource = ModSource.curseforge
    project_id: str
    file_id: str
    name: str
    slug: str = ""
    version: str = ""
    game_version: str = ""
    loader: str = ""
    content_type: ContentType = ContentType.mod
    filename: str = ""
    file_size: int = 0
    download_url: str | None = None
    release_type: str = "release"
    description: str = ""
    dependencies: list[ModDependency] = []


class ModOut(ModCreate):
    id: str
    project_key: str
    created_at: datetime


class ModUpdateInfo(BaseModel):
    mod_id: str
    name: str
    current_file_id: str
    latest_file_id: str | None = None
    latest_version: str | None = None
    has_update: bool = False


class LibraryUpdateReport(BaseModel):
    checked: int
    updates: list[ModUpdateInfo] = []
    errors: list[str] = []


class CatalogAddRequest(BaseModel):
    """Add a catalog file to the library by provenance."""

    source: ModSource = ModSource.curseforge
    project_id: str
    file_id: str
    game_version: str = ""
    loader: str = ""
