from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class Instance(SQLModel, table=True):
    __tablename__ = "instances"

    id: str = Field(primary_key=True)
    name: str = Field(index=True)
    modpack_id: str | None = Field(default=None, foreign_key="modpacks.id", unique=True)
    path: str
    game_version: str = ""
    loader: str = ""
    loader_version: str = ""
    memory_min_mb: int = 2048
    memory_max_mb: int = 4096
    java_args: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_synced_at: datetime | None = None
