from datetime import UTC, datetime

from sqlmodel import Column, Field, SQLModel, Text

from modpack_manager.constants import ContentType
from modpack_manager.identity import ModSource


class Mod(SQLModel, table=True):
    """A single immutable catalog file held in the local library."""

    __tablename__ = "mods"

    id: str = Field(primary_key=True)
    source: ModSource = ModSource.curseforge
    project_id: str = Field(index=True)
    file_id: str
    project_key: str = Field(index=True)
    name: str = Field(index=True)
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
    # JSON list of {"project_id": str, "type": str}
    dependencies: str = Field(default="[]", sa_column=Column(Text))
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
