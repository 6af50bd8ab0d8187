from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from modpack_manager.constants import ContentType
from modpack_manager.identity import ModSource, make_mod_id, project_key_for
from modpack_manager.schemas.manifest import ManifestVersionHistory


class IncomingMod(BaseModel):
    """One reference from an external manifest, addressed by project and file."""

    source: ModSource = ModSource.curseforge
    project_id: str
    file_id: str
    name: str = ""
    version: str = ""
    filename: str = ""
    content_type: ContentType = ContentType.mod
    disabled: bool = False
    locked: bool = False
    note: str | None = None

    @property
    def mod_id(self) -> str:
        return make_mod_id(self.source, self.project_id, self.file_id)

    @property
    def project_key(self) -> str:
        return project_key_for(self.source, self.project_id)


class IncomingModpack(BaseModel):
    """Normalized import request, whatever manifest format it came from."""

    name: str
    version: str = "1.0.0"
    description: str = ""
    game_version: str = ""
    loader: str = ""
    loader_version: str = ""
    share_code: str | None = None
    checksum: str | None = None
    source_project_id: str | None = None
    source_file_id: str | None = None
    mods: list[IncomingMod] = []
    version_history: ManifestVersionHistory | None = None


class ResolutionChoice(StrEnum):
    use_existing = "use_existing"
    use_new = "use_new"


class ImportConflict(BaseModel):
    mod_name: str
    source: ModSource = ModSource.curseforge
    project_id: str
    existing_file_id: str
    new_file_id: str
    existing_mod_id: str
    new_mod_id: str

    @property
    def project_key(self) -> str:
        return project_key_for(self.source, self.project_id)


class ConflictResolution(BaseModel):
    source: ModSource = ModSource.curseforge
    project_id: str
    choice: ResolutionChoice

    @property
    def project_key(self) -> str:
        return project_key_for(self.source, self.project_id)


class ResolveRequest(BaseModel):
    resolutions: list[ConflictResolution]


class ImportSummary(BaseModel):
    mods_total: int = 0
    mods_reused: int = 0
    mods_added: int = 0
    mods_removed: int = 0
    mods_failed: int = 0
    errors: list[str] = []
    warnings: list[str] = []


class ImportOk(BaseModel):
    kind: Literal["ok"] = "ok"
    modpack_id: str
    summary: ImportSummary = ImportSummary()


class ImportConflictOutcome(BaseModel):
    kind: Literal["conflict"] = "conflict"
    modpack_id: str
    conflicts: list[ImportConflict]
    summary: ImportSummary = ImportSummary()


class ImportFailed(BaseModel):
    kind: Literal["error"] = "error"
    error: str
    modpack_id: str | None = None


ImportOutcome = Annotated[
    ImportOk | ImportConflictOutcome | ImportFailed,
    Field(discriminator="kind"),
]


class PendingImportOut(BaseModel):
    modpack_id: str
    conflicts: list[ImportConflict]
    resolved_count: int
    created_at: datetime


class ImportFromUrl(BaseModel):
    url: str


class ImportPackRequest(BaseModel):
    """Third-party pack archive already on local disk."""

    path: str
    name: str | None = None
