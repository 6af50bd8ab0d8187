"""Manifest shapes: the native share manifest and the third-party pack manifest.

Native manifests exist in two schema versions. Version 2.0 predates the
project-keyed flag lists and stored version history as a bare list; the
migration in ``services.manifest_service`` lifts it to :class:`NativeManifest`
before anything else reads it.
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from modpack_manager.constants import MANIFEST_VERSION
from modpack_manager.identity import ModRef, ModSource, project_key_for
from modpack_manager.schemas.version import ModpackChange, ModSnapshot


class ManifestModpackInfo(BaseModel):
    name: str
    version: str = "1.0.0"
    game_version: str = Field(
        default="", validation_alias=AliasChoices("game_version", "minecraft_version")
    )
    loader: str = ""
    loader_version: str = ""
    description: str = ""
    cf_project_id: int | None = None
    cf_file_id: int | None = None


class ManifestMod(BaseModel):
    name: str = ""
    version: str = ""
    source: ModSource = ModSource.curseforge
    cf_project_id: int | None = Field(
        default=None, validation_alias=AliasChoices("cf_project_id", "project_id")
    )
    cf_file_id: int | None = Field(
        default=None, validation_alias=AliasChoices("cf_file_id", "file_id")
    )
    mr_project_id: str | None = None
    mr_version_id: str | None = None
    content_type: str = "mod"
    filename: str = ""

    @property
    def ref(self) -> ModRef | None:
        if self.source == ModSource.modrinth:
            if self.mr_project_id and self.mr_version_id:
                return ModRef(ModSource.modrinth, self.mr_project_id, self.mr_version_id)
            return None
        if self.cf_project_id is not None and self.cf_file_id is not None:
            return ModRef(ModSource.curseforge, str(self.cf_project_id), str(self.cf_file_id))
        return None


class ProjectRef(BaseModel):
    cf_project_id: int | None = None
    mr_project_id: str | None = None
    name: str = ""

    @property
    def project_key(self) -> str | None:
        if self.cf_project_id is not None:
            return project_key_for(ModSource.curseforge, self.cf_project_id)
        if self.mr_project_id:
            return project_key_for(ModSource.modrinth, self.mr_project_id)
        return None


class ProjectNote(ProjectRef):
    note: str


class ManifestVersion(BaseModel):
    id: str
    tag: str
    message: str = ""
    created_at: str = ""
    parent_id: str | None = None
    mod_ids: list[str] = []
    disabled_mod_ids: list[str] = []
    locked_mod_ids: list[str] = []
    notes: dict[str, str] = {}
    loader: str = ""
    loader_version: str = ""
    game_version: str = ""
    mod_snapshots: list[ModSnapshot] = []
    changes: list[ModpackChange] = []
    config_snapshot_id: str | None = None


class ManifestVersionHistory(BaseModel):
    modpack_id: str = ""
    current_version_id: str | None = None
    versions: list[ManifestVersion] = []


class ManifestStats(BaseModel):
    mod_count: int = 0
    disabled_count: int = 0
    locked_count: int = 0


class NativeManifest(BaseModel):
    manifest_version: str = MANIFEST_VERSION
    share_code: str
    checksum: str | None = None
    version_history_hash: str | None = None
    exported_at: str = ""
    modpack: ManifestModpackInfo
    mods: list[ManifestMod]
    disabled_mods: list[str] = []
    disabled_mods_by_project: list[ProjectRef] = []
    locked_mods: list[str] = []
    locked_mods_by_project: list[ProjectRef] = []
    mod_notes_by_project: list[ProjectNote] = []
    stats: ManifestStats = ManifestStats()
    version_history: ManifestVersionHistory | None = None
    incompatible_mods: list[str] = []


class ExportResult(BaseModel):
    share_code: str
    checksum: str
    manifest: NativeManifest


class CFModLoader(BaseModel):
    id: str
    primary: bool = False


class CFMinecraft(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: str
    mod_loaders: list[CFModLoader] = Field(default=[], alias="modLoaders")


class CFManifestFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: int = Field(alias="projectID")
    file_id: int = Field(alias="fileID")
    required: bool = True


class CFManifest(BaseModel):
    """``manifest.json`` at the root of a third-party pack archive."""

    model_config = ConfigDict(populate_by_name=True)

    minecraft: CFMinecraft
    manifest_type: str = Field(default="minecraftModpack", alias="manifestType")
    manifest_version: int = Field(default=1, alias="manifestVersion")
    name: str = ""
    version: str = ""
    author: str = ""
    files: list[CFManifestFile] = []
    overrides: str = "overrides"
