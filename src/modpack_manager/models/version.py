from datetime import UTC, datetime
from typing import TYPE_CHECKING, Optional

from sqlmodel import Column, Field, Relationship, SQLModel, Text, UniqueConstraint

if TYPE_CHECKING:
    from modpack_manager.models.modpack import Modpack


class ModpackVersion(SQLModel, table=True):
    """One committed snapshot in a modpack's linear history."""

    __tablename__ = "modpack_versions"
    __table_args__ = (UniqueConstraint("modpack_id", "version_id"),)

    id: int | None = Field(default=None, primary_key=True)
    modpack_id: str = Field(foreign_key="modpacks.id", index=True, ondelete="CASCADE")
    version_id: str = Field(index=True)
    seq: int
    tag: str
    message: str = ""
    parent_id: str | None = None
    # JSON of schemas.version.VersionSnapshot
    snapshot: str = Field(default="{}", sa_column=Column(Text))
    # JSON list of schemas.version.ModpackChange
    changes: str = Field(default="[]", sa_column=Column(Text))
    config_snapshot_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    modpack: Optional["Modpack"] = Relationship(back_populates="versions")
