from datetime import UTC, datetime
from typing import TYPE_CHECKING, Optional

from sqlmodel import Field, Relationship, SQLModel, UniqueConstraint

if TYPE_CHECKING:
    from modpack_manager.models.version import ModpackVersion


class Modpack(SQLModel, table=True):
    __tablename__ = "modpacks"

    id: str = Field(primary_key=True)
    name: str = Field(index=True)
    version: str = "1.0.0"
    description: str = ""
    game_version: str = ""
    loader: str = ""
    loader_version: str = ""
    share_code: str | None = Field(default=None, index=True)
    current_version_id: str | None = None

    remote_url: str | None = None
    remote_auto_check: bool = False
    remote_last_checked: datetime | None = None
    remote_last_checksum: str | None = None

    publish_gist_id: str | None = None
    publish_url: str | None = None
    publish_raw_url: str | None = None

    source_project_id: str | None = None
    source_file_id: str | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    entries: list["ModpackEntry"] = Relationship(
        back_populates="modpack",
        cascade_delete=True,
    )
    versions: list["ModpackVersion"] = Relationship(
        back_populates="modpack",
        cascade_delete=True,
    )


class ModpackEntry(SQLModel, table=True):
    """Membership row. ``mod_id`` is not a foreign key: a library mod may be
    deleted while membership and history still name it."""

    __tablename__ = "modpack_entries"
    __table_args__ = (UniqueConstraint("modpack_id", "mod_id"),)

    id: int | None = Field(default=None, primary_key=True)
    modpack_id: str = Field(foreign_key="modpacks.id", index=True, ondelete="CASCADE")
    mod_id: str = Field(index=True)
    project_key: str = Field(index=True)
    disabled: bool = False
    locked: bool = False
    note: str | None = None
    added_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    modpack: Optional["Modpack"] = Relationship(back_populates="entries")
